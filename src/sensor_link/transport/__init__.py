"""
MQTT transport bindings: the capability protocol, the paho-mqtt binding and
an in-memory double for network-free use.
"""

from sensor_link.transport.base import (
    ON_FAILURE,
    ON_SUCCESS,
    Message,
    Transport,
    TransportError,
)
from sensor_link.transport.memory import InMemoryTransport, PublishedMessage
from sensor_link.transport.paho import PahoTransport

__all__ = [
    "ON_FAILURE",
    "ON_SUCCESS",
    "InMemoryTransport",
    "Message",
    "PahoTransport",
    "PublishedMessage",
    "Transport",
    "TransportError",
]
