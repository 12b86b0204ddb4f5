"""
Transport capability boundary.

The session layer never talks to an MQTT library directly; it drives any
object satisfying the Transport protocol. Connect/subscribe completions are
delivered through handlers carried in the native option dict under the keys
"onSuccess" (no arguments) and "onFailure" (one native error value).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol

ON_SUCCESS = "onSuccess"
ON_FAILURE = "onFailure"


class TransportError(RuntimeError):
    """
    Raised when the transport rejects a request synchronously.

    `error` keeps the native error value (string, dict, reason code...) so the
    session layer can render it uniformly.
    """

    def __init__(self, error: Any = None) -> None:
        super().__init__(error)
        self.error = error


@dataclass(frozen=True, slots=True)
class Message:
    topic: str
    payload: bytes


MessageHandler = Callable[[Message], None]
ConnectionLostHandler = Callable[[Any], None]


class Transport(Protocol):
    """
    Minimal MQTT transport interface the session manager requires.

    Both event handlers may fire at any time after a successful connect, in
    no particular order relative to each other.
    """

    def connect(self, options: dict[str, Any]) -> None:
        """Start connecting; completion arrives via options["onSuccess"/"onFailure"]."""
        ...

    def disconnect(self) -> None:
        ...

    def subscribe(self, topic_filter: str, options: dict[str, Any]) -> None:
        """Start subscribing; completion arrives via options["onSuccess"/"onFailure"]."""
        ...

    def publish(self, topic: str, payload: bytes, qos: int, retained: bool) -> None:
        ...

    def set_on_message_arrived(self, handler: MessageHandler | None) -> None:
        ...

    def set_on_connection_lost(self, handler: ConnectionLostHandler | None) -> None:
        ...

    def is_connected(self) -> bool:
        ...
