"""
Session manager: the single point of interaction with one Transport.

Owns completion-handler plumbing for connect/subscribe, converts native
transport errors into readable strings and performs a best-effort
disconnect when the session is closed.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

from sensor_link.options import ConnectOptions, QoS, SubscribeOptions
from sensor_link.transport.base import ON_FAILURE, ON_SUCCESS, Message, Transport, TransportError

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "<unknown>"

_TLS_SCHEMES = frozenset({"wss", "mqtts"})

SuccessCallback = Callable[[], None]
FailureCallback = Callable[[str], None]


class SetupError(RuntimeError):
    """Raised before any network activity when a request cannot be prepared."""


class RequestPendingError(SetupError):
    """Raised when a connect/subscribe is issued while one of the same kind is in flight."""


def describe_error(value: Any) -> str:
    """
    Render a native error value as text.

    Plain strings first, then structured data as compact JSON, else "<unknown>".
    """
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return UNKNOWN_ERROR
    try:
        return json.dumps(value, separators=(",", ":"))
    except (TypeError, ValueError):
        return UNKNOWN_ERROR


@dataclass
class PendingCompletion:
    """Single-fire registration for one in-flight connect or subscribe."""

    request_id: int
    kind: str
    on_success: SuccessCallback
    on_failure: FailureCallback


class SessionManager:
    """
    Wraps one Transport for the lifetime of a logical connection.

    Completion handlers are kept in a table keyed by request id: inserted
    before the transport call, removed on first firing.
    """

    def __init__(self, transport: Transport, endpoint: str) -> None:
        self.transport = transport
        self.endpoint = endpoint
        self.use_ssl = urlsplit(endpoint).scheme.lower() in _TLS_SCHEMES

        self._ids = itertools.count(1)
        self._pending: dict[int, PendingCompletion] = {}
        self._pending_lock = threading.Lock()
        self._closed = False

        self._on_message_arrived: Optional[Callable[[Message], None]] = None
        self._on_connection_lost: Optional[Callable[[str], None]] = None

    def __enter__(self) -> "SessionManager":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -------------------------
    # Requests
    # -------------------------
    def connect(
        self,
        options: ConnectOptions,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
    ) -> None:
        try:
            wire = options.to_wire(self.use_ssl)
        except (TypeError, ValueError) as exc:
            raise SetupError(f"Failed to convert connect options: {exc}") from exc

        pending = self._register("connect", wire, on_success, on_failure)
        self._issue(pending, lambda: self.transport.connect(wire))

    def subscribe(
        self,
        topic_filter: str,
        qos: QoS | int,
        timeout: Optional[timedelta],
        on_success: SuccessCallback,
        on_failure: FailureCallback,
    ) -> None:
        try:
            wire = SubscribeOptions(qos=QoS.from_value(qos), timeout=timeout).to_wire()
        except (TypeError, ValueError) as exc:
            raise SetupError(f"Failed to convert subscribe options: {exc}") from exc

        pending = self._register("subscribe", wire, on_success, on_failure)
        self._issue(pending, lambda: self.transport.subscribe(topic_filter, wire))

    def publish(self, topic: str, payload: bytes | str, qos: QoS | int, retain: bool) -> None:
        """Publish synchronously. Raises TransportError carrying the rendered reason."""
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        level = int(QoS.from_value(qos))
        try:
            self.transport.publish(topic, bytes(payload), level, bool(retain))
        except TransportError as exc:
            raise TransportError(describe_error(exc.error)) from exc

    def is_connected(self) -> bool:
        return self.transport.is_connected()

    def pending_requests(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    # -------------------------
    # Long-lived handlers
    # -------------------------
    def set_on_message_arrived(self, callback: Optional[Callable[[Message], None]]) -> None:
        self._on_message_arrived = callback
        self.transport.set_on_message_arrived(self._message_arrived if callback else None)

    def set_on_connection_lost(self, callback: Optional[Callable[[str], None]]) -> None:
        self._on_connection_lost = callback
        self.transport.set_on_connection_lost(self._connection_lost if callback else None)

    def _message_arrived(self, message: Message) -> None:
        callback = self._on_message_arrived
        if callback is not None:
            callback(message)

    def _connection_lost(self, reason: Any) -> None:
        callback = self._on_connection_lost
        if callback is not None:
            callback(describe_error(reason))

    # -------------------------
    # Teardown
    # -------------------------
    def close(self) -> None:
        """
        Best-effort disconnect, at most once. Never raises.

        A connect still in flight is disconnected when its success arrives.
        """
        if self._closed:
            return
        self._closed = True
        try:
            if self.transport.is_connected():
                self.transport.disconnect()
                logger.info("Disconnected from %s", self.endpoint)
        except Exception as exc:
            logger.debug("Disconnect during teardown failed: %s", exc)

    # -------------------------
    # Handle table
    # -------------------------
    def _register(
        self,
        kind: str,
        wire: dict[str, Any],
        on_success: SuccessCallback,
        on_failure: FailureCallback,
    ) -> PendingCompletion:
        with self._pending_lock:
            if any(p.kind == kind for p in self._pending.values()):
                raise RequestPendingError(f"A {kind} request is already in flight")
            pending = PendingCompletion(next(self._ids), kind, on_success, on_failure)
            try:
                wire[ON_SUCCESS] = lambda *_: self._fire(pending.request_id, None)
                wire[ON_FAILURE] = lambda error=None, *_: self._fire(pending.request_id, error, failed=True)
            except TypeError as exc:
                raise SetupError(f"Failed to attach '{kind}' handlers: {exc}") from exc
            self._pending[pending.request_id] = pending
        return pending

    def _issue(self, pending: PendingCompletion, call: Callable[[], None]) -> None:
        try:
            call()
        except Exception as exc:
            # the transport refused synchronously; it holds no reference to the handlers
            with self._pending_lock:
                self._pending.pop(pending.request_id, None)
            error = exc.error if isinstance(exc, TransportError) else (str(exc) or type(exc).__name__)
            raise TransportError(describe_error(error)) from exc
        logger.debug("%s request %d issued", pending.kind, pending.request_id)

    def _fire(self, request_id: int, error: Any, *, failed: bool = False) -> None:
        with self._pending_lock:
            pending = self._pending.pop(request_id, None)
        if pending is None:
            logger.debug("Ignoring repeated completion for request %d", request_id)
            return
        if self._closed and pending.kind == "connect" and not failed:
            # connection came up after close(); release it here
            logger.info("Connect completed after close; disconnecting from %s", self.endpoint)
            try:
                self.transport.disconnect()
            except Exception as exc:
                logger.debug("Disconnect after late connect failed: %s", exc)
            return
        if failed:
            pending.on_failure(describe_error(error))
        else:
            pending.on_success()
