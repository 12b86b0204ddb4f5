"""
paho-mqtt binding of the Transport protocol.

Translates the native option dict into paho client settings and paho's
network-thread callbacks into onSuccess/onFailure completions and
message/connection-lost events. Failures are reported as
{"errorCode": int, "errorMessage": str} dicts.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from typing import Any, Optional
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from sensor_link.transport.base import (
    ON_FAILURE,
    ON_SUCCESS,
    ConnectionLostHandler,
    Message,
    MessageHandler,
    TransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_S = 60

_DEFAULT_PORTS = {"mqtt": 1883, "mqtts": 8883, "ws": 80, "wss": 443}

_PROTOCOLS = {
    3: mqtt.MQTTv31,
    4: mqtt.MQTTv311,
    5: mqtt.MQTTv5,
}


def _error(code: Any, message: str) -> dict[str, Any]:
    try:
        code = int(getattr(code, "value", code))
    except (TypeError, ValueError):
        code = -1
    return {"errorCode": code, "errorMessage": message}


def _reason_error(reason_code: Any) -> dict[str, Any]:
    name = reason_code.getName() if hasattr(reason_code, "getName") else str(reason_code)
    return _error(reason_code, name)


class PahoTransport:
    """
    Transport over a paho-mqtt client.

    The paho client is created at connect() time because protocol version and
    clean-session flag are connect options. Event handlers may be installed
    before that and are picked up on every callback.
    """

    def __init__(self, endpoint: str, client_id: Optional[str] = None) -> None:
        parts = urlsplit(endpoint)
        scheme = parts.scheme.lower()
        if scheme not in _DEFAULT_PORTS:
            raise ValueError(f"Unsupported MQTT endpoint scheme: {parts.scheme!r}")
        if not parts.hostname:
            raise ValueError(f"MQTT endpoint has no host: {endpoint!r}")

        self.endpoint = endpoint
        self.host = parts.hostname
        self.port = parts.port or _DEFAULT_PORTS[scheme]
        self.websockets = scheme in ("ws", "wss")
        self.path = parts.path or "/mqtt"
        self.client_id = client_id or str(uuid.uuid4())

        self._client: Optional[mqtt.Client] = None
        self._lock = threading.Lock()
        self._closing = False

        self._pending_connect: Optional[dict[str, Any]] = None
        self._pending_subscribes: dict[int, tuple[dict[str, Any], Optional[threading.Timer]]] = {}

        self._on_message: Optional[MessageHandler] = None
        self._on_connection_lost: Optional[ConnectionLostHandler] = None

    # -------------------------
    # Transport protocol
    # -------------------------
    def connect(self, options: dict[str, Any]) -> None:
        version = options.get("mqttVersion") or 4
        if version not in _PROTOCOLS:
            raise TransportError(f"Unsupported MQTT version: {version}")
        protocol = _PROTOCOLS[version]
        clean_session = bool(options.get("cleanSession", True))

        try:
            client = self._build_client(options, protocol, clean_session)
        except (OSError, ValueError) as exc:
            # TLS context or websocket setup rejected before any network I/O
            raise TransportError(f"Failed to configure MQTT client: {exc}") from exc

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message_cb

        keepalive = options.get("keepAliveInterval")
        keepalive_s = max(1, math.ceil(keepalive)) if keepalive is not None else DEFAULT_KEEPALIVE_S

        with self._lock:
            self._closing = False
            self._pending_connect = options
            self._client = client

        logger.info("Connecting to %s:%s as %s", self.host, self.port, self.client_id)
        try:
            if protocol == mqtt.MQTTv5:
                client.connect_async(self.host, self.port, keepalive=keepalive_s, clean_start=clean_session)
            else:
                client.connect_async(self.host, self.port, keepalive=keepalive_s)
            client.loop_start()
        except (OSError, ValueError) as exc:
            with self._lock:
                self._pending_connect = None
            raise TransportError(str(exc)) from exc

    def _build_client(self, options: dict[str, Any], protocol: Any, clean_session: bool) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=None if protocol == mqtt.MQTTv5 else clean_session,
            protocol=protocol,
            transport="websockets" if self.websockets else "tcp",
            reconnect_on_failure=bool(options.get("reconnect", True)),
        )
        if self.websockets:
            client.ws_set_options(path=self.path)
        if options.get("useSSL"):
            client.tls_set()
        if options.get("userName") is not None:
            client.username_pw_set(options["userName"], options.get("password"))
        if options.get("timeout") is not None:
            client.connect_timeout = float(options["timeout"])
        return client

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._closing = True
            timers = [timer for _, timer in self._pending_subscribes.values() if timer]
        for timer in timers:
            timer.cancel()
        if client is None:
            return
        rc = client.disconnect()
        client.loop_stop()
        if rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_NO_CONN):
            raise TransportError(_error(rc, mqtt.error_string(rc)))

    def subscribe(self, topic_filter: str, options: dict[str, Any]) -> None:
        with self._lock:
            client = self._client
            if client is None:
                raise TransportError("not connected")
            result, mid = client.subscribe(topic_filter, qos=int(options.get("qos", 0)))
            if result != mqtt.MQTT_ERR_SUCCESS:
                raise TransportError(_error(result, mqtt.error_string(result)))
            timer = None
            if options.get("timeout") is not None:
                timer = threading.Timer(float(options["timeout"]), self._subscribe_timed_out, args=(mid,))
                timer.daemon = True
            self._pending_subscribes[mid] = (options, timer)
        if timer is not None:
            timer.start()
        logger.debug("Subscribe %s requested (mid=%s)", topic_filter, mid)

    def publish(self, topic: str, payload: bytes, qos: int, retained: bool) -> None:
        client = self._client
        if client is None:
            raise TransportError("not connected")
        info = client.publish(topic, payload=payload, qos=qos, retain=retained)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(_error(info.rc, mqtt.error_string(info.rc)))

    def set_on_message_arrived(self, handler: Optional[MessageHandler]) -> None:
        self._on_message = handler

    def set_on_connection_lost(self, handler: Optional[ConnectionLostHandler]) -> None:
        self._on_connection_lost = handler

    def is_connected(self) -> bool:
        client = self._client
        return bool(client and client.is_connected())

    # -------------------------
    # paho callbacks (network thread)
    # -------------------------
    def _take_pending_connect(self) -> Optional[dict[str, Any]]:
        with self._lock:
            options, self._pending_connect = self._pending_connect, None
        return options

    def _abandon(self, client: mqtt.Client) -> None:
        with self._lock:
            self._closing = True
        client.disconnect()

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        options = self._take_pending_connect()
        if reason_code.is_failure:
            logger.error("MQTT connect refused: %s", reason_code)
            if options is not None:
                # first connect: no retry loop behind a refused CONNACK
                self._abandon(client)
                options[ON_FAILURE](_reason_error(reason_code))
            return
        if options is None:
            logger.info("Reconnected to %s:%s", self.host, self.port)
            return
        logger.info("Connected to %s:%s", self.host, self.port)
        options[ON_SUCCESS]()

    def _on_connect_fail(self, client: mqtt.Client, userdata: Any) -> None:
        options = self._take_pending_connect()
        if options is None:
            logger.warning("Reconnect to %s:%s failed", self.host, self.port)
            return
        self._abandon(client)
        options[ON_FAILURE](
            _error(mqtt.MQTT_ERR_NO_CONN, f"Unable to connect to {self.host}:{self.port}")
        )

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        with self._lock:
            closing = self._closing
            pending = list(self._pending_subscribes.items())
            self._pending_subscribes.clear()
        for _, (_, timer) in pending:
            if timer:
                timer.cancel()

        if closing:
            logger.info("Disconnected from %s:%s", self.host, self.port)
            return

        error = _reason_error(reason_code)
        options = self._take_pending_connect()
        if options is not None:
            # link dropped before CONNACK: same as a refused first connect
            self._abandon(client)
            options[ON_FAILURE](error)
            return
        for _, (sub_options, _) in pending:
            sub_options[ON_FAILURE](error)

        logger.warning("Connection to %s:%s lost: %s", self.host, self.port, reason_code)
        handler = self._on_connection_lost
        if handler is not None:
            handler(error)

    def _on_subscribe(self, client: mqtt.Client, userdata: Any, mid: int, reason_codes: list, properties: Any) -> None:
        with self._lock:
            entry = self._pending_subscribes.pop(mid, None)
        if entry is None:
            logger.debug("SUBACK for unknown mid=%s", mid)
            return
        options, timer = entry
        if timer:
            timer.cancel()
        failed = [rc for rc in reason_codes if rc.is_failure]
        if failed:
            options[ON_FAILURE](_reason_error(failed[0]))
        else:
            options[ON_SUCCESS]()

    def _subscribe_timed_out(self, mid: int) -> None:
        with self._lock:
            entry = self._pending_subscribes.pop(mid, None)
        if entry is None:
            return
        options, _ = entry
        logger.warning("Subscribe mid=%s timed out", mid)
        options[ON_FAILURE](_error(mqtt.MQTT_ERR_UNKNOWN, "subscribe timed out"))

    def _on_message_cb(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            message = Message(topic=msg.topic, payload=bytes(msg.payload))
        except (UnicodeDecodeError, TypeError) as exc:
            logger.warning("Failed to parse incoming message: %s", exc)
            return
        handler = self._on_message
        if handler is not None:
            handler(message)
