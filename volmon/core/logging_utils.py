"""Component-tagged loggers for the volmon namespace.

Every module asks for ``get_module_logger("Name")`` and gets a thin wrapper
around ``logging.getLogger("volmon.Name")`` whose messages read
``[Name] ...``. Handlers and formatting are left to ``logging_config``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

LOGGER_NAMESPACE = "volmon"
DEFAULT_COMPONENT = "Core"


def _qualify(name: Optional[str]) -> str:
    if not name or name == LOGGER_NAMESPACE:
        return LOGGER_NAMESPACE
    if name.startswith(LOGGER_NAMESPACE + "."):
        return name
    return f"{LOGGER_NAMESPACE}.{name}"


def _component_for(logger_name: str) -> str:
    if logger_name.startswith(LOGGER_NAMESPACE):
        return logger_name[len(LOGGER_NAMESPACE):].lstrip(".") or DEFAULT_COMPONENT
    return logger_name or DEFAULT_COMPONENT


class StructuredLogger:
    """Wraps a stdlib logger and prefixes messages with ``[component]``.

    Attributes not defined here (``level``, ``handlers``, ``isEnabledFor``...)
    are forwarded to the wrapped logger.
    """

    __slots__ = ("_logger", "_component")

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        self._logger = logger
        self._component = component or _component_for(logger.name)

    def __getattr__(self, item: str) -> Any:
        return getattr(self._logger, item)

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def component(self) -> str:
        return self._component

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _format(self, message: object, args: tuple) -> str:
        text = str(message)
        if args:
            try:
                text = text % args
            except (TypeError, ValueError):
                # Keep the record rather than raising from a log call.
                text = f"{text} | args={' '.join(map(str, args))}"
        tag = f"[{self._component}]"
        return text if text.startswith(tag) else f"{tag} {text}"

    def log(self, level: int, message: object, *args: Any, **kwargs: Any) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, self._format(message, args), **kwargs)

    def debug(self, message: object, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message: object, *args: Any, **kwargs: Any) -> None:
        self.log(logging.INFO, message, *args, **kwargs)

    def warning(self, message: object, *args: Any, **kwargs: Any) -> None:
        self.log(logging.WARNING, message, *args, **kwargs)

    def error(self, message: object, *args: Any, **kwargs: Any) -> None:
        self.log(logging.ERROR, message, *args, **kwargs)

    def exception(self, message: object, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("exc_info", True)
        self.log(logging.ERROR, message, *args, **kwargs)

    def critical(self, message: object, *args: Any, **kwargs: Any) -> None:
        self.log(logging.CRITICAL, message, *args, **kwargs)

    def getChild(self, suffix: str) -> "StructuredLogger":
        return StructuredLogger(
            self._logger.getChild(suffix),
            component=f"{self._component}.{suffix}",
        )


LoggerLike = Union[StructuredLogger, logging.Logger, logging.LoggerAdapter, None]


def ensure_structured_logger(
    logger: LoggerLike,
    *,
    component: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> StructuredLogger:
    """Wrap whatever logger a caller handed us; None falls back to ``fallback_name``."""
    if isinstance(logger, StructuredLogger):
        return logger
    if isinstance(logger, logging.LoggerAdapter):
        logger = logger.logger
    if isinstance(logger, logging.Logger):
        return StructuredLogger(logger, component=component)
    return get_module_logger(fallback_name)


def get_module_logger(name: Optional[str] = None) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(_qualify(name)))


__all__ = [
    "LOGGER_NAMESPACE",
    "LoggerLike",
    "StructuredLogger",
    "ensure_structured_logger",
    "get_module_logger",
]
