"""
In-memory transport double.

Records every call and lets a test (or a simulator) decide when, and how,
each pending connect/subscribe completes. Handlers are never fired from
inside the call that registered them, matching a real event-loop transport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sensor_link.transport.base import (
    ON_FAILURE,
    ON_SUCCESS,
    ConnectionLostHandler,
    Message,
    MessageHandler,
    TransportError,
)

logger = logging.getLogger(__name__)


@dataclass
class PublishedMessage:
    topic: str
    payload: bytes
    qos: int
    retained: bool


@dataclass
class _PendingRequest:
    options: dict[str, Any]
    topic_filter: Optional[str] = None


@dataclass
class InMemoryTransport:
    connected: bool = False
    publish_error: Optional[Any] = None
    disconnect_error: Optional[Any] = None

    connect_calls: list[dict[str, Any]] = field(default_factory=list)
    subscribe_calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    published: list[PublishedMessage] = field(default_factory=list)
    disconnect_calls: int = 0

    _pending_connects: list[_PendingRequest] = field(default_factory=list, init=False, repr=False)
    _pending_subscribes: list[_PendingRequest] = field(default_factory=list, init=False, repr=False)
    _on_message: Optional[MessageHandler] = field(default=None, init=False, repr=False)
    _on_connection_lost: Optional[ConnectionLostHandler] = field(default=None, init=False, repr=False)

    # -------------------------
    # Transport protocol
    # -------------------------
    def connect(self, options: dict[str, Any]) -> None:
        self.connect_calls.append(options)
        self._pending_connects.append(_PendingRequest(options))

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.disconnect_error is not None:
            raise TransportError(self.disconnect_error)
        self.connected = False

    def subscribe(self, topic_filter: str, options: dict[str, Any]) -> None:
        self.subscribe_calls.append((topic_filter, options))
        self._pending_subscribes.append(_PendingRequest(options, topic_filter))

    def publish(self, topic: str, payload: bytes, qos: int, retained: bool) -> None:
        if self.publish_error is not None:
            raise TransportError(self.publish_error)
        if not self.connected:
            raise TransportError("not connected")
        self.published.append(PublishedMessage(topic, bytes(payload), qos, retained))

    def set_on_message_arrived(self, handler: Optional[MessageHandler]) -> None:
        self._on_message = handler

    def set_on_connection_lost(self, handler: Optional[ConnectionLostHandler]) -> None:
        self._on_connection_lost = handler

    def is_connected(self) -> bool:
        return self.connected

    # -------------------------
    # Driver side
    # -------------------------
    @property
    def pending_connects(self) -> int:
        return len(self._pending_connects)

    @property
    def pending_subscribes(self) -> int:
        return len(self._pending_subscribes)

    def complete_connect(self) -> None:
        request = self._pending_connects.pop(0)
        self.connected = True
        request.options[ON_SUCCESS]()

    def fail_connect(self, error: Any) -> None:
        request = self._pending_connects.pop(0)
        self.connected = False
        request.options[ON_FAILURE](error)

    def complete_subscribe(self) -> None:
        request = self._pending_subscribes.pop(0)
        request.options[ON_SUCCESS]()

    def fail_subscribe(self, error: Any) -> None:
        request = self._pending_subscribes.pop(0)
        request.options[ON_FAILURE](error)

    def deliver(self, topic: str, payload: bytes | str) -> None:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        if self._on_message is None:
            logger.debug("No message handler installed; dropping %s", topic)
            return
        self._on_message(Message(topic=topic, payload=payload))

    def lose_connection(self, reason: Any) -> None:
        self.connected = False
        if self._on_connection_lost is not None:
            self._on_connection_lost(reason)
