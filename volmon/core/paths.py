"""Where volmon looks for its config file and writes its log."""

from __future__ import annotations

import os
from pathlib import Path


def _resolve_config_dir() -> Path:
    override = os.environ.get("VOLMON_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / "volmon"


USER_CONFIG_DIR = _resolve_config_dir()
DEFAULT_CONFIG_PATH = USER_CONFIG_DIR / "volmon.conf"
DEFAULT_LOG_PATH = USER_CONFIG_DIR / "logs" / "volmon.log"


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_LOG_PATH",
    "USER_CONFIG_DIR",
]
