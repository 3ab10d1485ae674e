from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_HOST_ENV = "TELEMETRY_HOST"
_PORT_ENV = "TELEMETRY_PORT"
_DB_PATH_ENV = "TELEMETRY_DB_PATH"
_WIRE_FORMAT_ENV = "TELEMETRY_WIRE_FORMAT"
_IDLE_TIMEOUT_ENV = "TELEMETRY_IDLE_TIMEOUT"
_ACCEPT_POLL_ENV = "TELEMETRY_ACCEPT_POLL_INTERVAL"
_DRAIN_TIMEOUT_ENV = "TELEMETRY_DRAIN_TIMEOUT"
_MAX_LINE_BYTES_ENV = "TELEMETRY_MAX_LINE_BYTES"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_WIRE_FORMATS = ("delimited", "structured", "auto")


@dataclass(frozen=True)
class Settings:
    host: str
    port: int
    db_path: str
    wire_format: str
    idle_timeout: float
    accept_poll_interval: float
    drain_timeout: Optional[float]
    max_line_bytes: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_port(default: int) -> int:
    value = os.getenv(_PORT_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if 0 <= parsed <= 65535 else default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_optional_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return None
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_wire_format(default: str) -> str:
    value = os.getenv(_WIRE_FORMAT_ENV)
    if value is None:
        return default
    candidate = value.strip().lower()
    return candidate if candidate in _WIRE_FORMATS else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        host=_read_str_env(_HOST_ENV, "0.0.0.0"),
        port=_read_port(9000),
        db_path=_read_str_env(_DB_PATH_ENV, "received_data.db"),
        wire_format=_read_wire_format("delimited"),
        idle_timeout=_read_positive_float(_IDLE_TIMEOUT_ENV, 300.0),
        accept_poll_interval=_read_positive_float(_ACCEPT_POLL_ENV, 0.1),
        drain_timeout=_read_optional_float(_DRAIN_TIMEOUT_ENV, None),
        max_line_bytes=_read_positive_int(_MAX_LINE_BYTES_ENV, 65536),
        log_level=_read_log_level("INFO"),
    )
