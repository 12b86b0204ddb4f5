"""
Connect/subscribe option marshaling for sensor-link.

Caller-facing option dataclasses rendered into the transport's native
option dict (Paho-style camelCase wire names).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import IntEnum
from typing import Any, Optional

MQTT_VERSION_3_1_1 = 4


class QoS(IntEnum):
    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1
    EXACTLY_ONCE = 2

    @classmethod
    def from_value(cls, value: Any) -> "QoS":
        """Map 0/1/2 (or a QoS) onto a member. Anything else is rejected."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"QoS must be 0, 1 or 2, got {value!r}")
        try:
            return cls(value)
        except ValueError as exc:
            raise ValueError(f"QoS must be 0, 1 or 2, got {value!r}") from exc


def _seconds(key: str, value: Optional[timedelta]) -> Optional[float]:
    if value is None:
        return None
    if not isinstance(value, timedelta):
        raise TypeError(f"{key} must be a timedelta, got {type(value).__name__}")
    seconds = value.total_seconds()
    if seconds < 0:
        raise ValueError(f"{key} must not be negative: {seconds}")
    return seconds


@dataclass(frozen=True, slots=True)
class ConnectOptions:
    username: Optional[str] = None
    password: Optional[str] = None
    clean_session: bool = True
    reconnect: bool = True
    keep_alive: Optional[timedelta] = None
    connect_timeout: Optional[timedelta] = None

    def to_wire(self, use_ssl: bool) -> dict[str, Any]:
        """
        Render the native connect option dict.

        TLS flag and protocol version are not caller options; use_ssl comes
        from the endpoint scheme and the protocol is pinned to MQTT 3.1.1.
        """
        return {
            "userName": self.username,
            "password": self.password,
            "cleanSession": bool(self.clean_session),
            "reconnect": bool(self.reconnect),
            "keepAliveInterval": _seconds("keep_alive", self.keep_alive),
            "timeout": _seconds("connect_timeout", self.connect_timeout),
            "useSSL": bool(use_ssl),
            "mqttVersion": MQTT_VERSION_3_1_1,
        }


@dataclass(frozen=True, slots=True)
class SubscribeOptions:
    qos: QoS = QoS.AT_MOST_ONCE
    timeout: Optional[timedelta] = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "qos": int(QoS.from_value(self.qos)),
            "timeout": _seconds("timeout", self.timeout),
        }
