"""
Process-wide configuration.

Settings are resolved once from the environment the first time
get_settings() is called. Components take explicit values and only fall
back to these defaults when a caller passes None.

Environment variables:
    FYLO_DEBUG_MODE            "1"/"true"/"yes"/"on" enables stream diagnostics
    FYLO_DEFAULT_TIMEOUT_MS    open/close/destroy deadline (default 30000)
    FYLO_POLLING_INTERVAL_MS   watcher polling interval (default 500)
    FYLO_RESTART_DELAY         directory watcher restart delay in seconds (default 1.0)
    FYLO_HIGH_WATER_MARK       stream buffer size in bytes (default 65536)
    FYLO_LOG_DIR               log directory used by setup_logging()
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    debug: bool = False
    default_timeout_ms: int = 30000
    polling_interval_ms: int = 500
    restart_delay: float = 1.0
    high_water_mark: int = 64 * 1024
    log_dir: Optional[Path] = None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    log_dir = os.getenv("FYLO_LOG_DIR")
    return Settings(
        debug=os.getenv("FYLO_DEBUG_MODE", "").lower() in _TRUTHY,
        default_timeout_ms=_env_int("FYLO_DEFAULT_TIMEOUT_MS", 30000),
        polling_interval_ms=_env_int("FYLO_POLLING_INTERVAL_MS", 500),
        restart_delay=_env_float("FYLO_RESTART_DELAY", 1.0),
        high_water_mark=_env_int("FYLO_HIGH_WATER_MARK", 64 * 1024),
        log_dir=Path(log_dir) if log_dir else None,
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get cached process settings (resolved on first access)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None
