"""Recorded command output for platform parser and engine testing.

Usage:
    from tests.infrastructure.fixtures import darwin_responses, read_fixture

    text = read_fixture("darwin_lsvfs.txt")
    factory = FakeRunnerFactory(darwin_responses())
"""

import plistlib
from pathlib import Path
from typing import Dict, Tuple

from volmon.core.volumes.platforms.linux import LSBLK_COLUMNS

FIXTURES_DIR = Path(__file__).parent

Responses = Dict[Tuple[str, ...], Tuple[bool, str]]

APFS_CONTAINER_SIZE = 499963174912
APFS_CONTAINER_FREE = 153600000000
MACINTOSH_HD_UUID = "7C3A1B22-51E4-4C0F-8D6B-2E9F0A4C7D13"
DATA_UUID = "9D2E4F61-0A3B-47C8-B5E2-6F1D8C9A0B24"
BACKUP_UUID = "5A1E3D2C-0B6F-4E29-9C1A-7F3B2D8E6A41"


def read_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


def diskutil_plist(**fields) -> str:
    return plistlib.dumps(fields).decode("utf-8")


# Darwin command keys

DARWIN_LS = ("/bin/ls", "/Volumes")
DARWIN_LSVFS = ("/usr/bin/lsvfs",)


def darwin_usage_key(fs_type: str) -> Tuple[str, ...]:
    return ("/bin/df", "-a", "-P", "-T", fs_type)


def darwin_detail_key(node: str) -> Tuple[str, ...]:
    return ("/usr/sbin/diskutil", "info", "-plist", node)


# Linux command keys

LINUX_TARGETS = ("/usr/bin/findmnt", "--list", "--noheadings", "--output", "TARGET")
LINUX_FSTYPES = ("/usr/bin/findmnt", "--list", "--noheadings", "--output", "FSTYPE")


def linux_usage_key(fs_type: str) -> Tuple[str, ...]:
    return ("/bin/df", "--portability", "--block-size=512", "--all", f"--type={fs_type}")


def linux_detail_key(node: str) -> Tuple[str, ...]:
    return ("/usr/bin/lsblk", "--json", "--bytes", "--nodeps", "--output", LSBLK_COLUMNS, node)


def darwin_responses() -> Responses:
    """Two APFS volumes and one nearly full HFS+ volume."""
    return {
        DARWIN_LS: (True, read_fixture("darwin_ls_volumes.txt")),
        DARWIN_LSVFS: (True, read_fixture("darwin_lsvfs.txt")),
        darwin_usage_key("apfs"): (True, read_fixture("darwin_df_apfs.txt")),
        darwin_usage_key("hfs"): (True, read_fixture("darwin_df_hfs.txt")),
        darwin_detail_key("/dev/disk1s1"): (True, diskutil_plist(
            DeviceIdentifier="disk1s1",
            VolumeName="Macintosh HD",
            FilesystemType="apfs",
            MountPoint="/",
            DeviceNode="/dev/disk1s1",
            Size=APFS_CONTAINER_SIZE,
            FreeSpace=1000,
            APFSContainerFree=APFS_CONTAINER_FREE,
            VolumeUUID=MACINTOSH_HD_UUID,
        )),
        darwin_detail_key("/dev/disk1s2"): (True, diskutil_plist(
            DeviceIdentifier="disk1s2",
            VolumeName="Data",
            FilesystemType="apfs",
            MountPoint="/System/Volumes/Data",
            DeviceNode="/dev/disk1s2",
            Size=APFS_CONTAINER_SIZE,
            FreeSpace=1000,
            APFSContainerFree=APFS_CONTAINER_FREE,
            VolumeUUID=DATA_UUID,
        )),
        darwin_detail_key("/dev/disk2s1"): (True, read_fixture("darwin_diskutil_disk2s1.plist")),
    }


def linux_responses() -> Responses:
    """Root and USB volumes answered by lsblk; /boot falls back to df values."""
    return {
        LINUX_TARGETS: (True, read_fixture("linux_findmnt_targets.txt")),
        LINUX_FSTYPES: (True, read_fixture("linux_findmnt_fstypes.txt")),
        linux_usage_key("ext4"): (True, read_fixture("linux_df_ext4.txt")),
        linux_usage_key("vfat"): (True, read_fixture("linux_df_vfat.txt")),
        linux_detail_key("/dev/sda2"): (True, read_fixture("linux_lsblk_sda2.json")),
        linux_detail_key("/dev/sda1"): (True, read_fixture("linux_lsblk_empty.json")),
        linux_detail_key("/dev/sdb1"): (True, read_fixture("linux_lsblk_sdb1.json")),
    }
