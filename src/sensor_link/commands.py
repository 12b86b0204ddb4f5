"""
Command decoding for the command inbox.

Payloads are decoded by an ordered strategy table: the canonical schema first,
then a generic JSON parse followed by the legacy mapping used by older and
third-party producers. The first strategy that yields a command wins.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from sensor_link.mqtt_topics import command_target
from sensor_link.transport.base import Message

logger = logging.getLogger(__name__)

_CANONICAL_KEYS = frozenset({"kind", "id", "params"})

_LEGACY_KIND_KEYS = ("command", "cmd", "type", "action", "kind")
_LEGACY_PARAM_KEYS = ("args", "arguments", "params", "payload")
_LEGACY_ID_KEYS = ("id", "request_id", "requestId")
_LEGACY_DEVICE_KEYS = ("device", "deviceId", "device_id")
_LEGACY_TIME_KEYS = ("timestamp", "ts")


class DecodeError(ValueError):
    """Raised when a payload matches no accepted command shape."""


@dataclass(frozen=True, slots=True)
class Command:
    kind: str
    id: Optional[str] = None
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Command":
        """Strict constructor for the canonical schema. Unknown keys are rejected."""
        if not isinstance(data, dict):
            raise DecodeError("command must be a JSON object")
        unknown = set(data) - _CANONICAL_KEYS
        if unknown:
            raise DecodeError(f"unknown command fields: {sorted(unknown)}")

        kind = data.get("kind")
        if not isinstance(kind, str) or not kind:
            raise DecodeError("'kind' must be a non-empty string")
        cmd_id = data.get("id")
        if cmd_id is not None and not isinstance(cmd_id, str):
            raise DecodeError("'id' must be a string")
        params = data.get("params", {})
        if not isinstance(params, dict):
            raise DecodeError("'params' must be an object")
        return cls(kind=kind, id=cmd_id, params=dict(params))


@dataclass(frozen=True, slots=True)
class LegacyMetadata:
    device: Optional[str] = None
    sent_at: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


def _first(data: dict[str, Any], keys: Sequence[str]) -> tuple[Optional[str], Any]:
    for key in keys:
        if key in data:
            return key, data[key]
    return None, None


def legacy_command(value: Any) -> Optional[tuple[LegacyMetadata, Command]]:
    """
    Map a loosely shaped JSON value onto a Command.

    Returns (metadata, command), or None when no command can be recovered.
    """
    if isinstance(value, str):
        return (LegacyMetadata(), Command(kind=value)) if value else None
    if not isinstance(value, dict):
        return None

    kind_key, kind = _first(value, _LEGACY_KIND_KEYS)
    if not isinstance(kind, str) or not kind:
        return None

    rest = dict(value)
    rest.pop(kind_key)

    id_key, cmd_id = _first(rest, _LEGACY_ID_KEYS)
    if id_key is not None:
        rest.pop(id_key)
        cmd_id = None if cmd_id is None else str(cmd_id)

    device_key, device = _first(rest, _LEGACY_DEVICE_KEYS)
    if device_key is not None:
        rest.pop(device_key)
    time_key, sent_at = _first(rest, _LEGACY_TIME_KEYS)
    if time_key is not None:
        rest.pop(time_key)

    params_key, params = _first(rest, _LEGACY_PARAM_KEYS)
    if isinstance(params, dict):
        rest.pop(params_key)
        extra = rest
    else:
        params, extra = rest, {}

    metadata = LegacyMetadata(
        device=None if device is None else str(device),
        sent_at=None if sent_at is None else str(sent_at),
        extra=extra,
    )
    return metadata, Command(kind=kind, id=cmd_id, params=params)


def _parse_json(payload: bytes) -> Any:
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"not valid JSON: {exc}") from exc


def decode_strict(payload: bytes) -> Command:
    return Command.from_dict(_parse_json(payload))


def decode_legacy(payload: bytes) -> Command:
    value = _parse_json(payload)
    mapped = legacy_command(value)
    if mapped is None:
        raise DecodeError("legacy mapping yielded no command")
    metadata, command = mapped
    logger.debug("Legacy command %s (metadata discarded: %s)", command.kind, metadata)
    return command


DecodeStrategy = Callable[[bytes], Command]

DEFAULT_STRATEGIES: tuple[tuple[str, DecodeStrategy], ...] = (
    ("strict", decode_strict),
    ("legacy", decode_legacy),
)


class CommandDecoder:
    """Topic-filtered, two-tier command decoder."""

    def __init__(self, strategies: Sequence[tuple[str, DecodeStrategy]] = DEFAULT_STRATEGIES) -> None:
        self.strategies = tuple(strategies)

    def decode(self, payload: bytes) -> Command:
        failures = []
        for name, strategy in self.strategies:
            try:
                return strategy(payload)
            except DecodeError as exc:
                failures.append(f"{name}: {exc}")
        raise DecodeError("; ".join(failures))

    def handle(self, message: Message) -> Optional[Command]:
        """Decode a delivered message, or return None if it is ignored or undecodable."""
        target = command_target(message.topic)
        if target is None:
            return None
        try:
            command = self.decode(message.payload)
        except DecodeError as exc:
            logger.warning("Failed to parse command on %s: %s", message.topic, exc)
            return None
        logger.info("Received command %s (target=%r)", command.kind, target)
        return command
