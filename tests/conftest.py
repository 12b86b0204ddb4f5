"""
Pytest configuration and shared fixtures
"""
import os
import sys
import pytest
from unittest.mock import MagicMock

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from sensor_link.transport.memory import InMemoryTransport  # noqa: E402


@pytest.fixture
def mock_env(monkeypatch):
    """Set up mock environment variables"""
    env_vars = {
        'MQTT_ENDPOINT': 'wss://broker.test.local:8884/mqtt',
        'MQTT_USERNAME': 'device_1',
        'MQTT_PASSWORD': 'test-password',
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    for key in ('MQTT_CLIENT_ID', 'SENSOR_INTERVAL_S'):
        monkeypatch.delenv(key, raising=False)

    return env_vars


@pytest.fixture
def transport():
    """In-memory transport; tests drive completions explicitly"""
    return InMemoryTransport()


@pytest.fixture
def recorder():
    """Collects whatever a callback receives"""
    class Recorder:
        def __init__(self):
            self.calls = []

        def __call__(self, *args):
            self.calls.append(args[0] if len(args) == 1 else args)

    return Recorder()


@pytest.fixture
def fake_paho_client(monkeypatch):
    """
    Patch paho.mqtt.client.Client to return a controllable fake.
    """
    fake = MagicMock()
    fake.is_connected.return_value = True
    fake.subscribe.return_value = (0, 7)  # (rc, mid)
    fake.publish.return_value = MagicMock(rc=0)
    fake.disconnect.return_value = 0
    ctor = MagicMock(return_value=fake)

    monkeypatch.setattr("paho.mqtt.client.Client", ctor)
    fake.ctor = ctor
    return fake
