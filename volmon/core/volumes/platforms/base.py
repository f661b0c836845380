"""Per-platform command and parser interface.

The interrogation engine is platform agnostic: it only knows the four
inquiry waves. Each platform supplies the commands for those waves and turns
their text output into the typed rows and documents below.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from volmon.core.errors import ParseError

from ..volume_data import VolumeRecord, VolumeType

# Environment override so tabular output is not localized.
C_LOCALE = ("LC_ALL=C",)


@dataclass(frozen=True)
class Command:
    """One external command request."""
    command: str
    arguments: Tuple[str, ...] = ()
    options: Tuple[str, ...] = C_LOCALE

    def __str__(self) -> str:
        return " ".join((self.command,) + self.arguments)


@dataclass(frozen=True)
class FileSystemTypeEntry:
    """One row of the file system type listing."""
    fs_type: str
    count: int
    flags: str = ""


@dataclass(frozen=True)
class UsageRow:
    """One row of a block usage report. Block counts are 512-byte blocks."""
    device_node: str
    total_blocks: int
    used_blocks: int
    available_blocks: int
    capacity_percent: int
    mount_point: str


def volume_name_from_mount_point(mount_point: str) -> str:
    """Text after the last '/', or the mount point itself when that is empty."""
    candidate = mount_point.rsplit("/", 1)[-1]
    return candidate or mount_point


def _parse_int(text: str, what: str, line: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise ParseError(f"Invalid {what} {text!r} in line {line!r}") from None


def parse_usage_table(output: str, *, header_lines: int = 1) -> List[UsageRow]:
    """Parse POSIX ``df`` output.

    Columns: device, 512-blocks, used, available, capacity%, mount point. The
    mount point may contain spaces, so every trailing field is rejoined.
    """
    rows: List[UsageRow] = []
    for line in output.split("\n")[header_lines:]:
        if not line.strip():
            continue
        fields = line.split()
        if len(fields) < 6:
            raise ParseError(f"Expected 6 usage columns, got {len(fields)}: {line!r}")
        capacity_text = fields[4].rstrip("%")
        rows.append(UsageRow(
            device_node=fields[0],
            total_blocks=_parse_int(fields[1], "block count", line),
            used_blocks=_parse_int(fields[2], "used block count", line),
            available_blocks=_parse_int(fields[3], "available block count", line),
            capacity_percent=0 if capacity_text == "-" else _parse_int(capacity_text, "capacity", line),
            mount_point=" ".join(fields[5:]),
        ))
    return rows


class VolumePlatform(ABC):
    """Commands and parsers for one operating system."""

    #: Platform identifier as reported by ``sys.platform``.
    identifier: str = ""

    #: File systems whose detail document carries no volume UUID.
    uuid_optional_types: FrozenSet[str] = frozenset()

    @property
    @abstractmethod
    def watch_folders(self) -> List[str]:
        """Folders whose listing changes when volumes come and go."""

    @abstractmethod
    def visible_volumes_command(self) -> Command: ...

    @abstractmethod
    def filesystem_types_command(self) -> Command: ...

    @abstractmethod
    def usage_command(self, fs_type: str) -> Command: ...

    @abstractmethod
    def detail_command(self, record: VolumeRecord) -> Optional[Command]:
        """Detail query for ``record``, or None when the usage row is final."""

    @abstractmethod
    def parse_visible_volumes(self, output: str) -> List[str]: ...

    @abstractmethod
    def parse_filesystem_types(self, output: str) -> List[FileSystemTypeEntry]: ...

    def parse_usage(self, output: str) -> List[UsageRow]:
        return parse_usage_table(output, header_lines=1)

    @abstractmethod
    def parse_detail(self, output: str, record: Optional[VolumeRecord] = None) -> Dict[str, Any]:
        """Normalize a detail payload into the DeviceIdentifier/VolumeName/... document.

        ``record`` is the provisional record built from the usage row; platforms
        may use it for fields their detail tool leaves blank.
        """

    def free_space_field(self, fs_type: str) -> str:
        return "FreeSpace"

    def is_known_type(self, fs_type: str) -> bool:
        return VolumeType.is_known(fs_type)


__all__ = [
    "C_LOCALE",
    "Command",
    "FileSystemTypeEntry",
    "UsageRow",
    "VolumePlatform",
    "parse_usage_table",
    "volume_name_from_mount_point",
]
