from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Optional

from settings import Settings, get_settings


def load_config(
    host: Optional[str] = None,
    port: Optional[int] = None,
    db_path: Optional[str] = None,
    wire_format: Optional[str] = None,
    idle_timeout: Optional[float] = None,
    drain_timeout: Optional[float] = None,
    log_level: Optional[str] = None,
) -> Settings:
    """Environment settings with any explicitly passed CLI options applied on top."""
    overrides: Dict[str, Any] = {
        "host": host,
        "port": port,
        "db_path": db_path,
        "wire_format": wire_format,
        "idle_timeout": idle_timeout,
        "drain_timeout": drain_timeout,
        "log_level": log_level.upper() if log_level else None,
    }
    return replace(
        get_settings(),
        **{key: value for key, value in overrides.items() if value is not None},
    )
