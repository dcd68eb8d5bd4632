"""Centralized logging setup for the file explorer hub.

Design goals
- Logging must never be required for functionality.
- Logs are split by purpose (core/access) and rotate by size.
- Runtime toggles are driven by env vars.

Environment variables
- FILE_EXPLORER_LOG_DIR: directory for all hub logs (default: <data dir>/logs)
- FILE_EXPLORER_LOG_CORE_ENABLE: 0/1 (default: 1)
- FILE_EXPLORER_LOG_CORE_LEVEL: ERROR|WARNING|INFO|DEBUG (default: INFO)
- FILE_EXPLORER_LOG_ACCESS_ENABLE: 0/1 (default: 0)
- FILE_EXPLORER_LOG_ROTATE_MAX_MB: max size in MB for each log file before rotation (default: 2)
- FILE_EXPLORER_LOG_ROTATE_BACKUPS: number of rotated files to keep (default: 3)

Notes
- Setup is idempotent to avoid duplicating handlers when several apps are
  created in one process (tests).
- Runtime updates (level/enable/rotate params) are applied via refresh_runtime_from_env().
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Dict, Optional, Tuple


CORE_LOGGER_NAME = "file_explorer"
ACCESS_LOGGER_NAME = "file_explorer.access"

DEFAULT_CORE_LEVEL = "INFO"
DEFAULT_ROTATE_MAX_MB = 2
DEFAULT_ROTATE_BACKUPS = 3


_STATE: Dict[str, object] = {
    "configured": False,
    "log_dir": None,
    "handlers": {},  # type: ignore
}


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.environ.get(name)
    if v is None:
        return default
    s = str(v).strip().lower()
    if s in ("1", "true", "yes", "on", "y"):
        return True
    if s in ("0", "false", "no", "off", "n"):
        return False
    return default


def _env_int(name: str, default: int) -> int:
    v = os.environ.get(name)
    if v is None:
        return default
    try:
        return int(str(v).strip())
    except ValueError:
        return default


def _parse_level(level_name: str) -> int:
    s = (level_name or "").strip().upper()
    if s in ("CRITICAL", "FATAL"):
        return logging.CRITICAL
    if s == "ERROR":
        return logging.ERROR
    if s in ("WARN", "WARNING"):
        return logging.WARNING
    if s == "DEBUG":
        return logging.DEBUG
    # conservative fallback
    return logging.INFO


def get_log_dir(default_dir: Optional[str] = None) -> str:
    """Resolve log directory from env, falling back to ``default_dir``."""
    p = (os.environ.get("FILE_EXPLORER_LOG_DIR") or "").strip()
    if p:
        return p
    return default_dir or os.path.join(os.path.expanduser("~"), ".file-explorer", "logs")


def _mk_rotating_handler(path: str) -> RotatingFileHandler:
    max_mb = max(1, _env_int("FILE_EXPLORER_LOG_ROTATE_MAX_MB", DEFAULT_ROTATE_MAX_MB))
    backups = max(1, _env_int("FILE_EXPLORER_LOG_ROTATE_BACKUPS", DEFAULT_ROTATE_BACKUPS))
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    h = RotatingFileHandler(
        path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding="utf-8",
        delay=True,
    )
    h.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    return h


def setup_logging(log_dir: Optional[str] = None) -> None:
    """Configure core/access loggers with rotating file handlers."""
    if _STATE.get("configured"):
        refresh_runtime_from_env()
        return

    log_dir = log_dir or get_log_dir()
    os.makedirs(log_dir, exist_ok=True)

    core_path, access_path = get_paths(log_dir)
    handlers: Dict[str, RotatingFileHandler] = {
        "core": _mk_rotating_handler(core_path),
        "access": _mk_rotating_handler(access_path),
    }

    core = logging.getLogger(CORE_LOGGER_NAME)
    core.propagate = False
    core.addHandler(handlers["core"])

    access = logging.getLogger(ACCESS_LOGGER_NAME)
    access.propagate = False
    access.addHandler(handlers["access"])

    # Route Flask's app logger (unhandled exceptions) into core as well.
    logging.getLogger("flask.app").addHandler(handlers["core"])

    _STATE["configured"] = True
    _STATE["log_dir"] = log_dir
    _STATE["handlers"] = handlers

    refresh_runtime_from_env()


def core_enabled() -> bool:
    return _env_bool("FILE_EXPLORER_LOG_CORE_ENABLE", default=True)


def access_enabled() -> bool:
    return _env_bool("FILE_EXPLORER_LOG_ACCESS_ENABLE", default=False)


def refresh_runtime_from_env() -> None:
    """Apply runtime settings (levels / rotation params) from env."""
    if not _STATE.get("configured"):
        return

    handlers: Dict[str, RotatingFileHandler] = _STATE.get("handlers") or {}  # type: ignore
    max_mb = max(1, _env_int("FILE_EXPLORER_LOG_ROTATE_MAX_MB", DEFAULT_ROTATE_MAX_MB))
    backups = max(1, _env_int("FILE_EXPLORER_LOG_ROTATE_BACKUPS", DEFAULT_ROTATE_BACKUPS))
    for h in handlers.values():
        h.maxBytes = max_mb * 1024 * 1024
        h.backupCount = backups

    core = logging.getLogger(CORE_LOGGER_NAME)
    core_h = handlers.get("core")
    if not core_enabled():
        core.disabled = True
        if core_h is not None and core_h in core.handlers:
            core.removeHandler(core_h)
        # Keep level very high to drop everything even if .disabled isn't respected somewhere.
        core.setLevel(100)
    else:
        core.disabled = False
        if core_h is not None and core_h not in core.handlers:
            core.addHandler(core_h)
        core.setLevel(_parse_level(os.environ.get("FILE_EXPLORER_LOG_CORE_LEVEL", DEFAULT_CORE_LEVEL)))

    # Access is always INFO internally; the enable flag decides whether we log.
    logging.getLogger(ACCESS_LOGGER_NAME).setLevel(logging.INFO)


def get_paths(log_dir: Optional[str] = None) -> Tuple[str, str]:
    """Return (core_path, access_path)."""
    d = str(log_dir or _STATE.get("log_dir") or get_log_dir())
    return os.path.join(d, "core.log"), os.path.join(d, "access.log")


def core_logger() -> logging.Logger:
    return logging.getLogger(CORE_LOGGER_NAME)


def access_logger() -> logging.Logger:
    return logging.getLogger(ACCESS_LOGGER_NAME)


def core_log(level: str, msg: str, **extra) -> None:
    """Write structured-ish messages into core.log (never raises)."""
    try:
        if extra:
            tail = ", ".join(f"{k}={v}" for k, v in extra.items())
            full = f"{msg} | {tail}"
        else:
            full = msg
        logger = core_logger()
        fn = getattr(logger, str(level or "info").lower(), None)
        if callable(fn):
            fn(full)
        else:
            logger.info(full)
    except Exception:
        # Logging must never affect request handling.
        pass
