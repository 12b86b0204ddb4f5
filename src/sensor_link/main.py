"""
sensor-link entrypoint.

CLI:
  sensor-link run        -> connect, listen for commands, publish readings
  sensor-link --version
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError, version as pkg_version
from typing import Optional

from sensor_link.core.log_config import configure_logging
from sensor_link.mqtt_client import Publisher

logger = logging.getLogger(__name__)

IDLE_WAIT_S = 1.0


def get_version_string() -> str:
    try:
        return pkg_version("sensor-link")
    except PackageNotFoundError:
        return "0.0.0+dev"


@dataclass
class Runtime:
    shutdown: threading.Event
    wake: threading.Event = field(default_factory=threading.Event)
    publisher: Optional[Publisher] = None
    seq: int = 0


def _install_signal_handlers(rt: Runtime) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        rt.shutdown.set()
        rt.wake.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _publish_reading(rt: Runtime, device: str) -> None:
    from sensor_link.core.readings import build_reading, encode_reading
    from sensor_link.transport.base import TransportError

    rt.seq += 1
    payload = encode_reading(build_reading(device, rt.seq))
    try:
        rt.publisher.send(payload)
        logger.debug("Published reading seq=%d", rt.seq)
    except TransportError as exc:
        logger.warning("Failed to publish reading seq=%d: %s", rt.seq, exc)


def run_link() -> int:
    """
    Runtime mode: connect, subscribe to the command inbox, publish readings
    while running, block until shutdown. Returns process exit code.
    """
    from sensor_link.commands import Command
    from sensor_link.config import ConfigError, load_config
    from sensor_link.mqtt_client import ConnectionState, ConnectionStatus, MqttPublisher

    try:
        cfg = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    rt = Runtime(shutdown=threading.Event())
    _install_signal_handlers(rt)

    logger.info("============================================================")
    logger.info("sensor-link")
    logger.info("Version: %s", cfg.link_version)
    logger.info("Endpoint: %s", cfg.mqtt_endpoint)
    logger.info("============================================================")

    def on_state(state: ConnectionState) -> None:
        logger.info("State: %s", state)

    def on_command(command: Command) -> None:
        logger.info("Command: kind=%s id=%s params=%s", command.kind, command.id, command.params)
        if command.kind == "ping":
            rt.wake.set()

    publisher = MqttPublisher(
        cfg.mqtt_endpoint,
        cfg.mqtt_username,
        cfg.mqtt_password,
        on_connection_state=on_state,
        on_command=on_command,
        client_id=cfg.mqtt_client_id,
    )
    rt.publisher = publisher

    try:
        while not rt.shutdown.is_set():
            interval = cfg.sensor_interval_s if cfg.sensor_interval_s > 0 else IDLE_WAIT_S
            woken = rt.wake.wait(timeout=interval)
            rt.wake.clear()
            if rt.shutdown.is_set():
                break
            if publisher.state.status is not ConnectionStatus.RUNNING:
                continue
            if woken or cfg.sensor_interval_s > 0:
                _publish_reading(rt, cfg.mqtt_username)
    finally:
        publisher.stop()

    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sensor-link")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("run", help="Connect and publish sensor readings")

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "run":
        configure_logging()
        raise SystemExit(run_link())

    raise SystemExit(2)


if __name__ == "__main__":
    main()
