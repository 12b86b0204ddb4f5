"""
Unit tests for MqttPublisher connection lifecycle.
"""
import logging
import ssl
from types import SimpleNamespace

import pytest

from sensor_link.commands import Command
from sensor_link.mqtt_client import (
    ConnectionState,
    ConnectionStatus,
    MqttPublisher,
    Publisher,
)
from sensor_link.transport.base import TransportError

pytestmark = pytest.mark.unit


ENDPOINT = "wss://broker.test.local:8884/mqtt"


class StateLog:
    def __init__(self):
        self.states = []

    def __call__(self, state):
        self.states.append(state)

    @property
    def rendered(self):
        return [str(s) for s in self.states]


@pytest.fixture
def states():
    return StateLog()


@pytest.fixture
def commands():
    return []


@pytest.fixture
def publisher(transport, states, commands):
    return MqttPublisher(
        ENDPOINT,
        "device_1",
        "secret",
        on_connection_state=states,
        on_command=commands.append,
        transport=transport,
    )


def _run(transport):
    transport.complete_connect()
    transport.complete_subscribe()


# -------------------------
# Happy path
# -------------------------
def test_connect_options_sent_to_transport(publisher, transport):
    wire = transport.connect_calls[0]
    assert wire["userName"] == "device_1"
    assert wire["password"] == "secret"
    assert wire["cleanSession"] is True
    assert wire["reconnect"] is True
    assert wire["keepAliveInterval"] == 2.0
    assert wire["timeout"] == 5.0
    assert wire["useSSL"] is True


def test_happy_path_reaches_running(publisher, transport, states):
    assert states.rendered == ["Connecting"]

    transport.complete_connect()
    assert states.rendered == ["Connecting", "Subscribing"]
    topic_filter, wire = transport.subscribe_calls[0]
    assert topic_filter == "command/inbox/#"
    assert wire["qos"] == 0
    assert wire["timeout"] == 5.0

    transport.complete_subscribe()
    assert states.rendered == ["Connecting", "Subscribing", "Running"]
    assert publisher.state.status is ConnectionStatus.RUNNING


# -------------------------
# Failures
# -------------------------
def test_connect_failure_never_subscribes(publisher, transport, states):
    transport.fail_connect("bad credentials")

    assert states.rendered == ["Connecting", "Failed to connect: bad credentials"]
    assert states.states[-1].status is ConnectionStatus.DISCONNECTED
    assert transport.subscribe_calls == []


def test_connect_refused_synchronously(transport, states):
    class RefusingTransport(type(transport)):
        def connect(self, options):
            raise TransportError({"errorCode": 4, "errorMessage": "refused"})

    MqttPublisher(ENDPOINT, "u", "p", on_connection_state=states, transport=RefusingTransport())

    assert states.rendered == [
        "Connecting",
        'Failed to connect: {"errorCode":4,"errorMessage":"refused"}',
    ]


def test_subscribe_failure(publisher, transport, states):
    transport.complete_connect()
    transport.fail_subscribe("not authorized")

    assert states.rendered[-1] == "Failed to subscribe: not authorized"
    assert len(states.states) == 3


def test_connection_lost_while_running(publisher, transport, states):
    _run(transport)
    transport.lose_connection("socket closed")

    assert states.rendered[-1] == "Disconnected: socket closed"
    assert states.states[-1].status is ConnectionStatus.DISCONNECTED


def test_connection_lost_while_subscribing(publisher, transport, states):
    transport.complete_connect()
    transport.lose_connection({"errorCode": 7})

    assert states.rendered[-1] == 'Disconnected: {"errorCode":7}'


def test_late_subscribe_completion_after_loss_is_ignored(publisher, transport, states):
    transport.complete_connect()
    transport.lose_connection("gone")
    transport.complete_subscribe()

    assert states.rendered == ["Connecting", "Subscribing", "Disconnected: gone"]


# -------------------------
# Stop
# -------------------------
def test_stop_disconnects_when_connected(publisher, transport, states):
    _run(transport)
    publisher.stop()

    assert transport.disconnect_calls == 1
    assert states.rendered[-1] == "Stopped"


def test_stop_is_idempotent(publisher, transport, states):
    _run(transport)
    publisher.stop()
    publisher.stop()

    assert transport.disconnect_calls == 1
    assert states.rendered.count("Stopped") == 1


def test_stop_without_connection_skips_disconnect(publisher, transport, states):
    publisher.stop()

    assert transport.disconnect_calls == 0
    assert states.rendered == ["Connecting", "Stopped"]


def test_events_after_stop_are_ignored(publisher, transport, states):
    publisher.stop()
    transport.complete_connect()
    transport.lose_connection("late")

    assert states.rendered == ["Connecting", "Stopped"]
    assert transport.subscribe_calls == []


def test_context_manager_stops(transport, states):
    with MqttPublisher(ENDPOINT, "u", "p", on_connection_state=states, transport=transport):
        _run(transport)

    assert states.rendered[-1] == "Stopped"
    assert transport.disconnect_calls == 1


# -------------------------
# Publish
# -------------------------
def test_send_publishes_to_sensor_topic(publisher, transport):
    _run(transport)
    publisher.send('{"cpu":1.5}')

    msg = transport.published[0]
    assert msg.topic == "sensor"
    assert msg.payload == b'{"cpu":1.5}'
    assert msg.qos == 1
    assert msg.retained is False


def test_send_raises_when_transport_refuses(publisher, transport):
    with pytest.raises(TransportError) as exc:
        publisher.send(b"x")
    assert str(exc.value) == "not connected"


def test_is_connected_follows_transport(publisher, transport):
    assert publisher.is_connected() is False
    transport.complete_connect()
    assert publisher.is_connected() is True


# -------------------------
# Commands
# -------------------------
def test_command_forwarded(publisher, transport, commands):
    _run(transport)
    transport.deliver("command/inbox//abc", '{"kind":"ping"}')

    assert commands == [Command(kind="ping")]


def test_non_command_topics_ignored(publisher, transport, commands):
    _run(transport)
    transport.deliver("telemetry/data", '{"kind":"ping"}')

    assert commands == []


def test_undecodable_command_dropped(publisher, transport, commands, caplog):
    _run(transport)
    with caplog.at_level(logging.WARNING):
        transport.deliver("command/inbox//abc", "not json")

    assert commands == []
    assert "Failed to parse command" in caplog.text


def test_command_handler_exception_contained(transport, caplog):
    def boom(command):
        raise RuntimeError("boom")

    MqttPublisher(ENDPOINT, "u", "p", on_command=boom, transport=transport)
    _run(transport)

    with caplog.at_level(logging.ERROR):
        transport.deliver("command/inbox//abc", '{"kind":"ping"}')

    assert "Command handler failed" in caplog.text


def test_state_callback_exception_contained(transport):
    def boom(state):
        raise RuntimeError("boom")

    publisher = MqttPublisher(ENDPOINT, "u", "p", on_connection_state=boom, transport=transport)
    _run(transport)

    assert publisher.state.status is ConnectionStatus.RUNNING


# -------------------------
# Default transport
# -------------------------
def test_builds_paho_transport_when_none_given(fake_paho_client, states):
    publisher = MqttPublisher("mqtt://broker.local", "u", "p", on_connection_state=states, client_id="dev-1")

    assert fake_paho_client.ctor.call_count == 1
    assert fake_paho_client.ctor.call_args.kwargs["client_id"] == "dev-1"
    fake_paho_client.connect_async.assert_called_once()
    assert states.rendered == ["Connecting"]

    publisher.stop()
    fake_paho_client.disconnect.assert_called()


# -------------------------
# ConnectionState
# -------------------------
def test_connection_state_rendering():
    assert str(ConnectionState(ConnectionStatus.RUNNING)) == "Running"
    assert str(ConnectionState.disconnected("Failed to connect: x")) == "Failed to connect: x"
    assert str(ConnectionState(ConnectionStatus.DISCONNECTED)) == "Disconnected"


def test_publisher_satisfies_publish_contract(publisher):
    assert isinstance(publisher, Publisher)


def test_connack_after_stop_is_disconnected(publisher, transport, states):
    publisher.stop()
    assert transport.disconnect_calls == 0

    transport.complete_connect()

    assert transport.disconnect_calls == 1
    assert transport.is_connected() is False
    assert states.rendered == ["Connecting", "Stopped"]


def test_paho_connack_after_stop_is_disconnected(fake_paho_client, states):
    fake_paho_client.is_connected.return_value = False
    publisher = MqttPublisher("mqtt://broker.local", "u", "p", on_connection_state=states)
    publisher.stop()
    fake_paho_client.disconnect.assert_not_called()

    paho_transport = publisher._session.transport
    paho_transport._on_connect(fake_paho_client, None, None, SimpleNamespace(is_failure=False), None)

    fake_paho_client.disconnect.assert_called_once()
    fake_paho_client.loop_stop.assert_called_once()
    assert states.rendered == ["Connecting", "Stopped"]


def test_tls_setup_failure_is_a_connect_failure(fake_paho_client, states):
    fake_paho_client.tls_set.side_effect = ssl.SSLError("bad CA bundle")

    publisher = MqttPublisher(ENDPOINT, "u", "p", on_connection_state=states)

    assert len(states.states) == 2
    assert states.rendered[1].startswith("Failed to connect: Failed to configure MQTT client:")
    assert publisher.state.status is ConnectionStatus.DISCONNECTED
    fake_paho_client.connect_async.assert_not_called()
    assert publisher._session.pending_requests() == 0
