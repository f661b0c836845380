"""macOS commands: ls, lsvfs, df and diskutil."""

from __future__ import annotations

import plistlib
from typing import Any, Dict, List, Optional
from xml.parsers.expat import ExpatError

from volmon.core.errors import ParseError
from volmon.core.logging_utils import get_module_logger

from ..volume_data import VolumeRecord, VolumeType
from .base import Command, FileSystemTypeEntry, VolumePlatform

logger = get_module_logger("DarwinPlatform")

VOLUMES_FOLDER = "/Volumes"
LSVFS_HEADER_LINES = 2
APFS_CONTAINER_FREE = "APFSContainerFree"


class DarwinPlatform(VolumePlatform):

    identifier = "darwin"
    uuid_optional_types = frozenset({VolumeType.UDF.value})

    @property
    def watch_folders(self) -> List[str]:
        return [VOLUMES_FOLDER]

    def visible_volumes_command(self) -> Command:
        return Command("/bin/ls", (VOLUMES_FOLDER,))

    def filesystem_types_command(self) -> Command:
        return Command("/usr/bin/lsvfs")

    def usage_command(self, fs_type: str) -> Command:
        return Command("/bin/df", ("-a", "-P", "-T", fs_type))

    def detail_command(self, record: VolumeRecord) -> Optional[Command]:
        if not record.device_node:
            return None
        return Command("/usr/sbin/diskutil", ("info", "-plist", record.device_node))

    def parse_visible_volumes(self, output: str) -> List[str]:
        return [line for line in output.split("\n") if line]

    def parse_filesystem_types(self, output: str) -> List[FileSystemTypeEntry]:
        """Parse ``lsvfs``: two header lines, then ``type refs flags...``."""
        entries: List[FileSystemTypeEntry] = []
        for line in output.split("\n")[LSVFS_HEADER_LINES:]:
            fields = line.split()
            if not fields:
                continue
            if len(fields) < 2:
                logger.debug("Skipping malformed lsvfs line: %r", line)
                continue
            try:
                count = int(fields[1])
            except ValueError:
                logger.debug("Skipping lsvfs line with bad reference count: %r", line)
                continue
            entries.append(FileSystemTypeEntry(
                fs_type=fields[0].lower(),
                count=count,
                flags=" ".join(fields[2:]),
            ))
        return entries

    def parse_detail(self, output: str, record: Optional[VolumeRecord] = None) -> Dict[str, Any]:
        try:
            document = plistlib.loads(output.encode("utf-8"))
        except (plistlib.InvalidFileException, ExpatError, ValueError) as exc:
            raise ParseError(f"Unable to parse diskutil output: {exc}") from exc
        if not isinstance(document, dict):
            raise ParseError("diskutil output is not a dictionary")
        return document

    def free_space_field(self, fs_type: str) -> str:
        if fs_type == VolumeType.APFS.value:
            return APFS_CONTAINER_FREE
        return "FreeSpace"


__all__ = ["DarwinPlatform"]
