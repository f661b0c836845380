"""Platform command sets for the volume interrogation engine."""

from __future__ import annotations

from typing import Optional

from volmon.core.errors import UnsupportedPlatformError
from volmon.core.platform_info import PlatformInfo, get_platform_info

from .base import (
    Command,
    FileSystemTypeEntry,
    UsageRow,
    VolumePlatform,
    parse_usage_table,
    volume_name_from_mount_point,
)
from .darwin import DarwinPlatform
from .linux import LinuxPlatform


def get_volume_platform(info: Optional[PlatformInfo] = None) -> VolumePlatform:
    """Command set for the host (or for ``info`` when given)."""
    info = info or get_platform_info()
    if info.is_darwin:
        return DarwinPlatform()
    if info.is_linux:
        return LinuxPlatform()
    raise UnsupportedPlatformError(f"Volume interrogation is not supported on '{info.platform}'")


__all__ = [
    "Command",
    "DarwinPlatform",
    "FileSystemTypeEntry",
    "LinuxPlatform",
    "UsageRow",
    "VolumePlatform",
    "get_volume_platform",
    "parse_usage_table",
    "volume_name_from_mount_point",
]
