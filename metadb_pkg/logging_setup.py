"""Logging configuration and utilities.

This module sets up loguru file logging with configurable paths and levels
via environment variables or the config file:
  - METADB_LOG: Path to log file (default: ~/.metadb/metadb.log)
  - METADB_DEBUG: Enable DEBUG level (else INFO)

Environment variables win over config.yaml values.
"""

from __future__ import annotations

import functools
import os
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from loguru import logger as _log

if TYPE_CHECKING:
    from .config import MetadbConfig


# ========== Helper functions ==========
def env_truthy(name: str, default: bool = False) -> bool:
    """Check if an environment variable is set to a truthy value.

    Args:
        name: Environment variable name to check
        default: Value to return if variable is not set

    Returns:
        True if variable is set to '1', 'true', 'yes', 'y', or 'on'
        (case-insensitive), otherwise the default value
    """
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def default_log_path() -> Path:
    return Path.home() / ".metadb" / "metadb.log"


def init_logger(config: Optional["MetadbConfig"] = None) -> None:
    """Initialize file logging.

    Configures file logging with:
    - Log path from METADB_LOG, then config.log_path, then ~/.metadb/metadb.log
    - DEBUG level if METADB_DEBUG or config.debug_logging is set, else INFO
    - Rotation at 1 MB with 3 file retention

    Configuration errors (unwritable path) leave logging disabled rather
    than stopping the tool.
    """
    log_path = os.environ.get("METADB_LOG") or (config.log_path if config else None) or str(
        default_log_path()
    )
    debug = env_truthy("METADB_DEBUG", bool(config and config.debug_logging))
    level = "DEBUG" if debug else "INFO"

    _log.remove()
    try:
        Path(log_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        _log.add(
            str(Path(log_path).expanduser()),
            level=level,
            rotation="1 MB",
            retention=3,
            enqueue=False,
            backtrace=False,
            diagnose=False,
        )
    except OSError:
        return
    _log.info("Logger initialized at {} with level {}", log_path, level)


# ========== Logging convenience functions ==========
def log_info(msg: str) -> None:
    _log.info(msg)


def log_debug(msg: str) -> None:
    _log.debug(msg)


def log_warning(msg: str) -> None:
    _log.warning(msg)


def log_error(msg: str) -> None:
    _log.error(msg)


# ========== Global exception hook ==========
_orig_excepthook = sys.excepthook


def ex_hook(exc_type: type, exc: BaseException, tb: Any) -> Any:
    """Log unhandled exceptions before handing off to the original hook."""
    _log.opt(exception=(exc_type, exc, tb)).error("Unhandled exception")
    return _orig_excepthook(exc_type, exc, tb)


sys.excepthook = ex_hook


# ========== Performance timing decorator ==========
F = TypeVar("F", bound=Callable[..., Any])


def log_timing(fn: F) -> F:
    """Decorator to log function execution time.

    Measures and logs the execution time of the wrapped function in
    milliseconds at DEBUG level.
    """

    @functools.wraps(fn)
    def _wrap(*args: Any, **kwargs: Any) -> Any:
        start_time = time.perf_counter()
        try:
            return fn(*args, **kwargs)
        finally:
            elapsed_ms = (time.perf_counter() - start_time) * 1000.0
            log_debug(f"{fn.__name__} took {elapsed_ms:.1f} ms")

    return _wrap  # type: ignore[return-value]


# ========== Public API ==========
def setup_logging(config: Optional["MetadbConfig"] = None) -> None:
    """Public wrapper to reinitialize logging after configuration changes."""
    init_logger(config)
