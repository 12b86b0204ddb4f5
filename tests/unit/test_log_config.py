import logging

import pytest

from sensor_link.core import log_config

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("", logging.INFO),
        ("   ", logging.INFO),
        ("debug", logging.DEBUG),
        (" WARNING ", logging.WARNING),
        ("10", 10),
        ("loud", logging.INFO),
        ("basicConfig", logging.INFO),
    ],
)
def test_parse_level(raw, expected):
    assert log_config._parse_level(raw) == expected


def test_level_from_env(monkeypatch):
    monkeypatch.setenv("SENSOR_LOG_LEVEL", "error")
    assert log_config.level_from_env() == logging.ERROR
    monkeypatch.delenv("SENSOR_LOG_LEVEL")
    assert log_config.level_from_env() == logging.INFO


def test_configure_logging_sets_root_level(monkeypatch):
    root = logging.getLogger()
    original = root.level
    monkeypatch.setenv("SENSOR_LOG_LEVEL", "DEBUG")
    try:
        log_config.configure_logging()
        assert root.level == logging.DEBUG
    finally:
        root.setLevel(original)
