"""Linux commands: findmnt, df and lsblk."""

from __future__ import annotations

import getpass
import json
import os
import stat
from typing import Any, Callable, Dict, List, Optional

from volmon.core.errors import ParseError
from volmon.core.logging_utils import get_module_logger

from ..volume_data import VolumeRecord, VolumeType
from .base import Command, FileSystemTypeEntry, VolumePlatform, volume_name_from_mount_point

logger = get_module_logger("LinuxPlatform")

FINDMNT = "/usr/bin/findmnt"
DF = "/bin/df"
LSBLK = "/usr/bin/lsblk"

LSBLK_COLUMNS = "NAME,LABEL,FSTYPE,MOUNTPOINT,PATH,UUID,FSSIZE,FSAVAIL,SIZE"


def is_block_device(node: str) -> bool:
    """True when ``node`` exists and is a block special file."""
    try:
        return stat.S_ISBLK(os.stat(node).st_mode)
    except OSError:
        return False


def _as_int(value: Any) -> Optional[int]:
    # lsblk reports numbers as strings on older util-linux releases.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


class LinuxPlatform(VolumePlatform):

    identifier = "linux"
    uuid_optional_types = frozenset(item.value for item in VolumeType)

    def __init__(
        self,
        user: Optional[str] = None,
        *,
        block_device_check: Callable[[str], bool] = is_block_device,
    ) -> None:
        self._user = user
        self._is_block_device = block_device_check

    @property
    def watch_folders(self) -> List[str]:
        user = self._user or getpass.getuser()
        return [os.path.join("/media", user), "/mnt"]

    def visible_volumes_command(self) -> Command:
        return Command(FINDMNT, ("--list", "--noheadings", "--output", "TARGET"))

    def filesystem_types_command(self) -> Command:
        return Command(FINDMNT, ("--list", "--noheadings", "--output", "FSTYPE"))

    def usage_command(self, fs_type: str) -> Command:
        return Command(DF, ("--portability", "--block-size=512", "--all", f"--type={fs_type}"))

    def detail_command(self, record: VolumeRecord) -> Optional[Command]:
        # Network shares, pseudo devices and aliases such as /dev/root keep the df row.
        node = record.device_node
        if not node or not node.startswith("/dev/") or not self._is_block_device(node):
            return None
        return Command(
            LSBLK,
            ("--json", "--bytes", "--nodeps", "--output", LSBLK_COLUMNS, node),
        )

    def parse_visible_volumes(self, output: str) -> List[str]:
        return [
            volume_name_from_mount_point(line.strip())
            for line in output.split("\n")
            if line.strip()
        ]

    def parse_filesystem_types(self, output: str) -> List[FileSystemTypeEntry]:
        """Aggregate per-mount types into counts, keeping recognized types only.

        Pseudo file systems (proc, sysfs, cgroup...) are dropped; ``df`` on
        some of them fails outright.
        """
        counts: Dict[str, int] = {}
        for line in output.split("\n"):
            fs_type = line.strip().lower()
            if not fs_type:
                continue
            counts[fs_type] = counts.get(fs_type, 0) + 1

        entries = []
        for fs_type, count in counts.items():
            if not self.is_known_type(fs_type) or fs_type == VolumeType.UNKNOWN.value:
                logger.debug("Ignoring file system type '%s'", fs_type)
                continue
            entries.append(FileSystemTypeEntry(fs_type=fs_type, count=count))
        return entries

    def parse_detail(self, output: str, record: Optional[VolumeRecord] = None) -> Dict[str, Any]:
        """Map ``lsblk --json`` output onto the detail document keys.

        Without udev/blkid access lsblk reports null fstype, uuid and file
        system sizes. The usage row in ``record`` fills those gaps.
        """
        try:
            payload = json.loads(output)
        except ValueError as exc:
            raise ParseError(f"Unable to parse lsblk output: {exc}") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("blockdevices"), list):
            raise ParseError("lsblk output has no 'blockdevices' list")

        devices = payload["blockdevices"]
        if not devices or not isinstance(devices[0], dict):
            return {"Error": True}
        device = devices[0]

        document: Dict[str, Any] = {}
        name = device.get("name")
        if isinstance(name, str) and name:
            document["DeviceIdentifier"] = name

        mount_point = device.get("mountpoint")
        label = device.get("label")
        if isinstance(label, str) and label:
            document["VolumeName"] = label
        elif isinstance(mount_point, str) and mount_point:
            document["VolumeName"] = volume_name_from_mount_point(mount_point)

        fs_type = device.get("fstype")
        if isinstance(fs_type, str) and fs_type:
            document["FilesystemType"] = fs_type.lower()
        elif record is not None:
            document["FilesystemType"] = record.volume_type.value
        document["MountPoint"] = mount_point if isinstance(mount_point, str) else ""
        if isinstance(device.get("path"), str):
            document["DeviceNode"] = device["path"]
        if isinstance(device.get("uuid"), str) and device["uuid"]:
            document["VolumeUUID"] = device["uuid"]

        size = _as_int(device.get("fssize"))
        free = _as_int(device.get("fsavail"))
        if (size is None or free is None) and record is not None:
            size, free = record.capacity_bytes, record.free_space_bytes
        elif size is None:
            size = _as_int(device.get("size"))
        if size is not None:
            document["Size"] = size
        if free is not None:
            document["FreeSpace"] = free
        return document


__all__ = ["LinuxPlatform", "is_block_device"]
