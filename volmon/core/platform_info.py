"""
Host facts the volume monitor cares about.

Detection happens once per process. The scan engine picks its command set from
``PlatformInfo.platform`` and defers its first scan until the host has been
up for a while, which is why the boot time is recorded here too.
"""

import platform
import sys
import time
from dataclasses import dataclass
from typing import Optional

import psutil

from volmon.core.logging_utils import get_module_logger

logger = get_module_logger("PlatformInfo")


@dataclass(frozen=True)
class PlatformInfo:
    """Immutable snapshot of the host.

    Attributes:
        platform: ``sys.platform`` value ('darwin', 'linux', ...)
        architecture: CPU architecture ('x86_64', 'arm64', ...)
        os_release: Kernel / OS release string
        python_version: Interpreter version
        boot_time: Host boot time as a POSIX timestamp (psutil)
    """

    platform: str
    architecture: str
    os_release: str
    python_version: str
    boot_time: float

    @property
    def is_darwin(self) -> bool:
        return self.platform == "darwin"

    @property
    def is_linux(self) -> bool:
        return self.platform.startswith("linux")

    def uptime_seconds(self, now: Optional[float] = None) -> float:
        current = time.time() if now is None else now
        return max(0.0, current - self.boot_time)

    def __str__(self) -> str:
        return f"{self.platform} {self.os_release} ({self.architecture})"


def detect_platform() -> PlatformInfo:
    info = PlatformInfo(
        platform=sys.platform,
        architecture=platform.machine(),
        os_release=platform.release(),
        python_version=platform.python_version(),
        boot_time=psutil.boot_time(),
    )
    logger.debug("Detected %s, python %s", info, info.python_version)
    return info


_platform_info: Optional[PlatformInfo] = None


def get_platform_info() -> PlatformInfo:
    """Cached ``detect_platform()`` result."""
    global _platform_info
    if _platform_info is None:
        _platform_info = detect_platform()
    return _platform_info


def host_uptime_seconds() -> float:
    """Seconds since boot. Read fresh on every call, unlike ``PlatformInfo``."""
    return max(0.0, time.time() - psutil.boot_time())


__all__ = ["PlatformInfo", "detect_platform", "get_platform_info", "host_uptime_seconds"]
