"""Command line plumbing shared by volmon entry points."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

from volmon.core.paths import DEFAULT_CONFIG_PATH, DEFAULT_LOG_PATH


LOG_LEVELS: dict[str, int] = {
    name: getattr(logging, name.upper())
    for name in ("critical", "error", "warning", "info", "debug")
}


def add_common_cli_arguments(
    parser: argparse.ArgumentParser,
    *,
    default_config: Optional[Path] = DEFAULT_CONFIG_PATH,
    include_console_control: bool = True,
    default_console_output: bool = True,
) -> None:
    """Add ``--log-level``, ``--log-file``, ``--config`` and the console switches."""
    logging_group = parser.add_argument_group("logging")
    logging_group.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS),
        default="info",
        help="Logging verbosity (default: %(default)s)",
    )
    logging_group.add_argument(
        "--log-file",
        type=Path,
        nargs="?",
        const=DEFAULT_LOG_PATH,
        default=None,
        metavar="PATH",
        help=f"Also log to a rotating file (default location: {DEFAULT_LOG_PATH})",
    )
    if include_console_control:
        console = logging_group.add_mutually_exclusive_group()
        console.add_argument(
            "--console",
            dest="console_output",
            action="store_true",
            default=default_console_output,
            help="Log to stderr (default)",
        )
        console.add_argument(
            "--no-console",
            dest="console_output",
            action="store_false",
            help="Do not log to stderr",
        )

    parser.add_argument(
        "--config",
        type=Path,
        default=default_config,
        metavar="PATH",
        help="key = value settings file; a missing file means defaults (default: %(default)s)",
    )


def _number_at_least(value: str, minimum: float, *, inclusive: bool) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a number") from None
    if number < minimum or (number == minimum and not inclusive):
        bound = "at least" if inclusive else "greater than"
        raise argparse.ArgumentTypeError(f"Value must be {bound} {minimum:g}")
    return number


def positive_float(value: str) -> float:
    return _number_at_least(value, 0.0, inclusive=False)


def non_negative_float(value: str) -> float:
    return _number_at_least(value, 0.0, inclusive=True)


def install_exception_handlers(logger: Any, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
    """Route uncaught exceptions (and unhandled loop errors) to ``logger``."""

    def _excepthook(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = _excepthook

    if loop is None:
        return

    def _loop_exception_handler(_loop, context):
        message = context.get("message", "Unhandled asyncio exception")
        exception = context.get("exception")
        if exception is not None:
            logger.error("Event loop error: %s", message, exc_info=exception)
        else:
            logger.error("Event loop error: %s (%s)", message, context)

    loop.set_exception_handler(_loop_exception_handler)


def install_signal_handlers(app: Any, loop: asyncio.AbstractEventLoop) -> None:
    """SIGINT/SIGTERM call ``app.shutdown()`` once, unless it is already shutting down."""

    def _request_shutdown() -> None:
        if not app.shutdown_event.is_set():
            loop.create_task(app.shutdown())

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform's event loop.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _request_shutdown)


__all__ = [
    "LOG_LEVELS",
    "add_common_cli_arguments",
    "install_exception_handlers",
    "install_signal_handlers",
    "non_negative_float",
    "positive_float",
]
