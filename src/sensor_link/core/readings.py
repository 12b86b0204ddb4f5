"""
Sensor reading builder.

Pure-ish helpers producing the JSON payload sent on the sensor topic.
Values come from host load figures (psutil).
"""

from __future__ import annotations

import json
import logging
import platform
from datetime import datetime, timezone
from typing import Any

import psutil

logger = logging.getLogger(__name__)


def now_iso8601() -> str:
    """Return current UTC time as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _cpu_percent() -> float:
    try:
        return float(psutil.cpu_percent(interval=None))
    except Exception as exc:
        logger.debug("cpu_percent unavailable: %s", exc)
        return 0.0


def _memory_percent() -> float:
    try:
        return float(psutil.virtual_memory().percent)
    except Exception as exc:
        logger.debug("virtual_memory unavailable: %s", exc)
        return 0.0


def _disk_percent() -> float:
    try:
        return float(psutil.disk_usage("/").percent)
    except Exception as exc:
        logger.debug("disk_usage unavailable: %s", exc)
        return 0.0


def build_reading(device: str, seq: int) -> dict[str, Any]:
    """
    Build one reading. Contract: device, seq, ts, host, values{cpu,memory,disk}.
    """
    return {
        "device": device,
        "seq": seq,
        "ts": now_iso8601(),
        "host": platform.node() or "unknown",
        "values": {
            "cpu_percent": _cpu_percent(),
            "memory_percent": _memory_percent(),
            "disk_percent": _disk_percent(),
        },
    }


def encode_reading(reading: dict[str, Any]) -> str:
    return json.dumps(reading, separators=(",", ":"))
