"""
Volume data model.

A VolumeRecord is one observation of one volume. Records are immutable:
refining a record (for example once the detail query has answered) builds a
new record through ``replace()`` and swaps it into the results list.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Optional

from volmon.core.errors import ValidationError

BYTES_TO_GB_BASE2 = 1024.0 ** 3
BYTES_TO_GB_BASE10 = 1000.0 ** 3
BLOCK_1K_TO_BYTES = 1024
BLOCK_512_TO_BYTES = 512


class VolumeType(str, Enum):
    """File system types the monitor understands."""
    UNKNOWN = "unknown"
    HFS_PLUS = "hfs"
    APFS = "apfs"
    UDF = "udf"
    MSDOS = "msdos"
    NTFS = "ntfs"
    SMBFS = "smbfs"
    EXT4 = "ext4"
    VFAT = "vfat"
    EXFAT = "exfat"
    XFS = "xfs"
    BTRFS = "btrfs"

    @classmethod
    def is_known(cls, value: Any) -> bool:
        return isinstance(value, str) and value in cls._value2member_map_

    @classmethod
    def parse(cls, value: Any) -> "VolumeType":
        if isinstance(value, cls):
            return value
        if not cls.is_known(value):
            raise ValidationError(f"Unrecognized volume type: {value!r}")
        return cls(value)


class ConversionBase(IntEnum):
    BASE_2 = 2
    BASE_10 = 10


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_optional_str(field_name: str, value: Any) -> None:
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"'{field_name}' must be a string, got {type(value).__name__}")


def _require_size(field_name: str, value: Any) -> None:
    if not _is_number(value):
        raise ValidationError(f"'{field_name}' must be a number, got {type(value).__name__}")
    if value < 0:
        raise ValidationError(f"'{field_name}' must be greater than or equal to 0 ({value})")


@dataclass(frozen=True)
class VolumeRecord:
    """Metrics and flags for a single volume.

    Attributes:
        name: Display name of the volume
        disk_id: Disk identifier (e.g. 'disk1s1'), if known
        volume_type: File system of the volume
        mount_point: Mount point, None when unmounted
        device_node: Device node (e.g. '/dev/disk1s1')
        volume_uuid: Volume UUID, or the device node when the file system has none
        capacity_bytes: Total size in bytes
        free_space_bytes: Remaining space in bytes
        used_space_bytes: Used space in bytes, derived as capacity - free when omitted
        visible: Volume is visible to the user
        shown: Volume passed every exclusion mask
        low_space_alert: Low space threshold has been crossed
    """

    name: Optional[str] = None
    disk_id: Optional[str] = None
    volume_type: VolumeType = VolumeType.UNKNOWN
    mount_point: Optional[str] = None
    device_node: Optional[str] = None
    volume_uuid: Optional[str] = None
    capacity_bytes: int = 0
    free_space_bytes: int = 0
    used_space_bytes: Optional[int] = None
    visible: bool = False
    shown: bool = False
    low_space_alert: bool = False

    def __post_init__(self) -> None:
        for field_name in ("name", "disk_id", "mount_point", "device_node", "volume_uuid"):
            _require_optional_str(field_name, getattr(self, field_name))
        object.__setattr__(self, "volume_type", VolumeType.parse(self.volume_type))

        _require_size("capacity_bytes", self.capacity_bytes)
        _require_size("free_space_bytes", self.free_space_bytes)

        if self.used_space_bytes is None:
            used = self.capacity_bytes - self.free_space_bytes
            if used < 0:
                raise ValidationError(f"Used space cannot be negative ({used})")
            object.__setattr__(self, "used_space_bytes", used)
        else:
            _require_size("used_space_bytes", self.used_space_bytes)

        for field_name in ("visible", "shown", "low_space_alert"):
            if not isinstance(getattr(self, field_name), bool):
                raise ValidationError(f"'{field_name}' must be a bool")

    # ------------------------------------------------------------------
    # Derived views

    @property
    def is_mounted(self) -> bool:
        return bool(self.mount_point)

    @property
    def percent_free(self) -> float:
        """Percentage of free space (0...100). Zero-capacity volumes report 0."""
        if self.capacity_bytes <= 0:
            return 0.0
        return (self.free_space_bytes / self.capacity_bytes) * 100.0

    @property
    def percent_used(self) -> float:
        if self.capacity_bytes <= 0:
            return 0.0
        return (self.used_space_bytes / self.capacity_bytes) * 100.0

    def is_match(self, other: object) -> bool:
        """Equivalence on identity fields only; sizes are expected to drift."""
        return (
            isinstance(other, VolumeRecord)
            and self.name == other.name
            and self.volume_type == other.volume_type
            and self.device_node == other.device_node
            and self.mount_point == other.mount_point
        )

    def replace(self, **changes: Any) -> "VolumeRecord":
        """Return a new, validated record with ``changes`` applied.

        The used space is re-derived unless it is passed explicitly.
        """
        changes.setdefault("used_space_bytes", None)
        return dataclasses.replace(self, **changes)

    # ------------------------------------------------------------------
    # Unit conversions

    @staticmethod
    def convert_bytes_to_gb(num_bytes: float, base: int = ConversionBase.BASE_2) -> float:
        if not _is_number(num_bytes):
            raise ValidationError("'num_bytes' must be a number")
        try:
            resolved = ConversionBase(base)
        except ValueError:
            raise ValidationError(f"'base' has an unsupported value ({base})") from None
        factor = BYTES_TO_GB_BASE10 if resolved is ConversionBase.BASE_10 else BYTES_TO_GB_BASE2
        return num_bytes / factor

    @staticmethod
    def convert_1k_blocks_to_bytes(blocks: int) -> int:
        _require_size("blocks", blocks)
        return blocks * BLOCK_1K_TO_BYTES

    @staticmethod
    def convert_512_blocks_to_bytes(blocks: int) -> int:
        _require_size("blocks", blocks)
        return blocks * BLOCK_512_TO_BYTES


__all__ = [
    "BLOCK_512_TO_BYTES",
    "ConversionBase",
    "VolumeRecord",
    "VolumeType",
]
