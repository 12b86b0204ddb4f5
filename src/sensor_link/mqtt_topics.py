"""
MQTT topics for sensor-link.

Commands arrive under command/inbox/; readings go out on sensor.
The decode prefix keeps an empty addressing segment (command/inbox//<rest>):
only messages sent to that empty device id are treated as commands.
"""

from __future__ import annotations

from typing import Optional

COMMAND_FILTER = "command/inbox/#"
COMMAND_PREFIX = "command/inbox//"
SENSOR_TOPIC = "sensor"


def command_target(topic: str) -> Optional[str]:
    """
    Return the remainder after the command prefix, or None when the topic is
    not a command topic.
    """
    if not isinstance(topic, str) or not topic.startswith(COMMAND_PREFIX):
        return None
    return topic[len(COMMAND_PREFIX):]
