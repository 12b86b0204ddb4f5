"""
MQTT publisher for sensor-link.

Drives the Connecting -> Subscribing -> Running lifecycle over a
SessionManager, routes command-inbox messages through the CommandDecoder and
exposes send() for publishing sensor readings.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from sensor_link.commands import Command, CommandDecoder
from sensor_link.mqtt_topics import COMMAND_FILTER, SENSOR_TOPIC
from sensor_link.options import ConnectOptions, QoS
from sensor_link.session import SessionManager, SetupError
from sensor_link.transport.base import Message, Transport, TransportError

logger = logging.getLogger(__name__)

SUBSCRIBE_QOS = QoS.AT_MOST_ONCE
SUBSCRIBE_TIMEOUT = timedelta(seconds=5)
KEEP_ALIVE = timedelta(seconds=2)
CONNECT_TIMEOUT = timedelta(seconds=5)
PUBLISH_QOS = QoS.AT_LEAST_ONCE


class ConnectionStatus(str, Enum):
    CONNECTING = "Connecting"
    SUBSCRIBING = "Subscribing"
    RUNNING = "Running"
    DISCONNECTED = "Disconnected"
    STOPPED = "Stopped"


@dataclass(frozen=True, slots=True)
class ConnectionState:
    status: ConnectionStatus
    reason: Optional[str] = None

    def __str__(self) -> str:
        if self.status is ConnectionStatus.DISCONNECTED and self.reason:
            return self.reason
        return self.status.value

    @classmethod
    def disconnected(cls, reason: str) -> "ConnectionState":
        return cls(ConnectionStatus.DISCONNECTED, reason)


@runtime_checkable
class Publisher(Protocol):
    """What the rest of the application needs to push readings out."""

    def send(self, payload: str | bytes) -> None:
        ...


StateCallback = Callable[[ConnectionState], None]
CommandCallback = Callable[[Command], None]


class MqttPublisher:
    """
    Connection lifecycle owner. Construction starts connecting immediately;
    stop() (or leaving a `with` block) disconnects and reports Stopped.

    Transport events arrive on the transport's event thread; send() may be
    called from any thread.
    """

    def __init__(
        self,
        endpoint: str,
        username: Optional[str],
        password: Optional[str],
        *,
        on_connection_state: Optional[StateCallback] = None,
        on_command: Optional[CommandCallback] = None,
        transport: Optional[Transport] = None,
        client_id: Optional[str] = None,
        decoder: Optional[CommandDecoder] = None,
    ) -> None:
        self.topic = SENSOR_TOPIC
        self.qos = PUBLISH_QOS
        self._on_connection_state = on_connection_state
        self._on_command = on_command
        self._decoder = decoder or CommandDecoder()

        self._state = ConnectionState(ConnectionStatus.CONNECTING)
        self._state_lock = threading.Lock()
        self._lock = threading.RLock()  # guards every use of the session
        self._stopped = False

        self._emit(self._state)

        if transport is None:
            from sensor_link.transport.paho import PahoTransport

            transport = PahoTransport(endpoint, client_id)

        self._session = SessionManager(transport, endpoint)
        self._session.set_on_connection_lost(self._connection_lost)
        self._session.set_on_message_arrived(self._message_arrived)

        options = ConnectOptions(
            username=username,
            password=password,
            clean_session=True,
            reconnect=True,
            keep_alive=KEEP_ALIVE,
            connect_timeout=CONNECT_TIMEOUT,
        )
        try:
            with self._lock:
                self._session.connect(options, self._connected, self._connect_failed)
        except (SetupError, TransportError) as exc:
            logger.warning("Failed to connect: %s", exc)
            self._connect_failed(str(exc))

    def __enter__(self) -> "MqttPublisher":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()

    @property
    def state(self) -> ConnectionState:
        return self._state

    # -------------------------
    # Publish contract
    # -------------------------
    def send(self, payload: str | bytes) -> None:
        """Publish to the sensor topic. Raises TransportError if the transport refuses."""
        with self._lock:
            self._session.publish(self.topic, payload, self.qos, False)

    def is_connected(self) -> bool:
        with self._lock:
            return self._session.is_connected()

    def stop(self) -> None:
        with self._state_lock:
            if self._stopped:
                return
            self._stopped = True
        with self._lock:
            self._session.close()
        self._set_state(ConnectionState(ConnectionStatus.STOPPED), force=True)

    # -------------------------
    # Lifecycle callbacks
    # -------------------------
    def _connected(self) -> None:
        if not self._set_state(ConnectionState(ConnectionStatus.SUBSCRIBING), expect=ConnectionStatus.CONNECTING):
            return
        try:
            with self._lock:
                self._session.subscribe(
                    COMMAND_FILTER,
                    SUBSCRIBE_QOS,
                    SUBSCRIBE_TIMEOUT,
                    self._subscribed,
                    self._subscribe_failed,
                )
        except (SetupError, TransportError) as exc:
            logger.warning("Failed to subscribe: %s", exc)
            self._subscribe_failed(str(exc))

    def _connect_failed(self, reason: str) -> None:
        self._set_state(
            ConnectionState.disconnected(f"Failed to connect: {reason}"),
            expect=ConnectionStatus.CONNECTING,
        )

    def _subscribed(self) -> None:
        self._set_state(ConnectionState(ConnectionStatus.RUNNING), expect=ConnectionStatus.SUBSCRIBING)

    def _subscribe_failed(self, reason: str) -> None:
        self._set_state(
            ConnectionState.disconnected(f"Failed to subscribe: {reason}"),
            expect=ConnectionStatus.SUBSCRIBING,
        )

    def _connection_lost(self, reason: str) -> None:
        self._set_state(ConnectionState.disconnected(f"Disconnected: {reason}"))

    def _message_arrived(self, message: Message) -> None:
        if self._stopped:
            return
        command = self._decoder.handle(message)
        if command is None or self._on_command is None:
            return
        try:
            self._on_command(command)
        except Exception:
            logger.exception("Command handler failed for %s", command.kind)

    # -------------------------
    # State
    # -------------------------
    def _set_state(
        self,
        state: ConnectionState,
        *,
        expect: Optional[ConnectionStatus] = None,
        force: bool = False,
    ) -> bool:
        with self._state_lock:
            current = self._state.status
            if not force and (self._stopped or current is ConnectionStatus.STOPPED):
                logger.debug("Ignoring %s after stop", state)
                return False
            if expect is not None and current is not expect:
                logger.debug("Ignoring %s while %s", state, current.value)
                return False
            self._state = state
        self._emit(state)
        return True

    def _emit(self, state: ConnectionState) -> None:
        logger.info("Connection state: %s", state)
        if self._on_connection_state is None:
            return
        try:
            self._on_connection_state(state)
        except Exception:
            logger.exception("Connection state callback failed")
