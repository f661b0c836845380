"""Root logger setup shared by the CLI and the tests."""

from __future__ import annotations

import contextlib
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_DEFAULT_MAX_BYTES = 256 * 1024
_DEFAULT_BACKUP_COUNT = 3

_configured = False


def coerce_level(level: Union[int, str]) -> int:
    """Accept ``"debug"``/``"INFO"`` style names or numeric levels."""
    if not isinstance(level, str):
        return int(level)
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level '{level}'")
    return value


def _build_handlers(
    console: bool,
    log_file: Optional[Union[str, Path]],
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console:
        # stdout carries the snapshot tables
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        )
    return handlers


def _clear_root_handlers(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        root.removeHandler(handler)
        with contextlib.suppress(Exception):
            handler.close()


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    force: bool = False,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = _DEFAULT_MAX_BYTES,
    backup_count: int = _DEFAULT_BACKUP_COUNT,
    suppressed_loggers: Iterable[str] = ("asyncio",),
) -> None:
    """Install the volmon handlers on the root logger.

    A second call without ``force`` only changes the level. With neither
    console nor file output a NullHandler is installed so library loggers stay
    quiet.

    Args:
        level: Logging level, numeric or by name.
        force: Rebuild the handlers even if logging was configured before.
        console: Log to stderr.
        log_file: Also log to this rotating file.
        max_bytes: Rotation size of the log file.
        backup_count: Rotated files kept.
        suppressed_loggers: Third-party loggers held at WARNING or above.
    """
    global _configured
    numeric_level = coerce_level(level)
    root = logging.getLogger()

    if _configured and not force:
        root.setLevel(numeric_level)
        return

    _clear_root_handlers(root)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    for handler in _build_handlers(console, log_file, max_bytes, backup_count):
        handler.setFormatter(formatter)
        root.addHandler(handler)
    if not root.handlers:
        root.addHandler(logging.NullHandler())
    root.setLevel(numeric_level)

    for name in suppressed_loggers:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    _configured = True


__all__ = ["LOG_DATEFMT", "LOG_FORMAT", "coerce_level", "configure_logging"]
