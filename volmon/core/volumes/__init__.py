"""Volume enumeration, usage reporting and low space alerts."""

from .alert_policy import AlertPolicy, is_volume_shown, percent_free_of
from .interrogator import RequestKey, ScanState, VolumeInterrogator
from .platforms import (
    Command,
    DarwinPlatform,
    FileSystemTypeEntry,
    LinuxPlatform,
    UsageRow,
    VolumePlatform,
    get_volume_platform,
)
from .process_runner import ProcessResult, ProcessRunner
from .settings import IdentificationMethod, MonitorSettings, VolumeCustomization
from .volume_data import ConversionBase, VolumeRecord, VolumeType
from .volume_watcher import VolumeWatcher

__all__ = [
    "AlertPolicy",
    "Command",
    "ConversionBase",
    "DarwinPlatform",
    "FileSystemTypeEntry",
    "IdentificationMethod",
    "LinuxPlatform",
    "MonitorSettings",
    "ProcessResult",
    "ProcessRunner",
    "RequestKey",
    "ScanState",
    "UsageRow",
    "VolumeCustomization",
    "VolumeInterrogator",
    "VolumePlatform",
    "VolumeRecord",
    "VolumeType",
    "VolumeWatcher",
    "get_volume_platform",
    "is_volume_shown",
    "percent_free_of",
]
