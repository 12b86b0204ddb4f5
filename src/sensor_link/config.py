"""
sensor-link configuration.

Single source for runtime configuration. Values come from environment variables,
optionally loaded from standard env files.

Priority (lowest -> highest):
1) /etc/sensor-link/sensor-link.env (system install)
2) ~/.config/sensor-link/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv

_SCHEMES = ("mqtt", "mqtts", "ws", "wss")


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


def _package_version() -> str:
    try:
        return _pkg_version("sensor-link")
    except PackageNotFoundError:
        return "0.0.0+dev"


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/sensor-link/sensor-link.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "sensor-link" / ".env"

    # 3) project override
    yield Path(".env")


def _require_env(key: str) -> str:
    v = os.getenv(key)
    if v is None or v == "":
        raise ConfigError(f"Missing required environment variable: {key}")
    return v


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


def _validate_endpoint(raw: str) -> str:
    parts = urlsplit(raw)
    if parts.scheme.lower() not in _SCHEMES:
        raise ConfigError(
            f"MQTT_ENDPOINT scheme must be one of {', '.join(_SCHEMES)}: {raw!r}"
        )
    if not parts.hostname:
        raise ConfigError(f"MQTT_ENDPOINT has no host: {raw!r}")
    try:
        parts.port
    except ValueError as exc:
        raise ConfigError(f"MQTT_ENDPOINT has an invalid port: {raw!r}") from exc
    return raw


@dataclass(frozen=True, slots=True)
class LinkConfig:
    mqtt_endpoint: str
    mqtt_username: str
    mqtt_password: str
    mqtt_client_id: Optional[str]
    sensor_interval_s: int  # 0 disables periodic readings
    link_version: str


def load_config(*, dotenv_enabled: bool = True) -> LinkConfig:
    """
    Load config by reading env files and then validating required
    environment variables.

    Returns an immutable LinkConfig. Raises ConfigError on failure.
    """
    if dotenv_enabled:
        for p in _env_paths():
            if p.is_file():
                # do not override existing env vars; later files can fill missing
                load_dotenv(p, override=False)

    endpoint = _validate_endpoint(_require_env("MQTT_ENDPOINT"))
    username = _require_env("MQTT_USERNAME")
    password = _require_env("MQTT_PASSWORD")
    client_id = os.getenv("MQTT_CLIENT_ID") or None

    interval_s = _parse_int("SENSOR_INTERVAL_S", os.getenv("SENSOR_INTERVAL_S", "5"))
    if interval_s < 0:
        raise ConfigError("SENSOR_INTERVAL_S must be >= 0 (0 disables)")

    return LinkConfig(
        mqtt_endpoint=endpoint,
        mqtt_username=username,
        mqtt_password=password,
        mqtt_client_id=client_id,
        sensor_interval_s=interval_s,
        link_version=_package_version(),
    )
