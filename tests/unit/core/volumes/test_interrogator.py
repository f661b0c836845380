"""Unit tests for the VolumeInterrogator scan engine.

Commands never run here: a FakeRunnerFactory records each request and the
tests decide when (and in which order) completions arrive.
"""

import asyncio
import itertools
import json
from pathlib import Path
from typing import Dict, List

import pytest

from tests.infrastructure.fixtures import (
    APFS_CONTAINER_FREE,
    APFS_CONTAINER_SIZE,
    BACKUP_UUID,
    DARWIN_LS,
    DARWIN_LSVFS,
    MACINTOSH_HD_UUID,
    darwin_detail_key,
    darwin_usage_key,
    diskutil_plist,
    linux_detail_key,
    linux_usage_key,
    read_fixture,
)
from tests.infrastructure.mocks.process_mocks import FakeRunnerFactory
from volmon.core.errors import ValidationError
from volmon.core.volumes import interrogator as interrogator_module
from volmon.core.volumes.interrogator import RequestKey, VolumeInterrogator
from volmon.core.volumes.platforms import DarwinPlatform
from volmon.core.volumes.settings import (
    MAX_PERIOD_HR,
    MIN_PERIOD_HR,
    MonitorSettings,
    VolumeCustomization,
)
from volmon.core.volumes.volume_data import VolumeRecord, VolumeType


class Recorder:
    """Collects scanning/ready signals."""

    def __init__(self):
        self.scanning = 0
        self.ready: List[List[VolumeRecord]] = []

    def on_scanning(self) -> None:
        self.scanning += 1

    def on_ready(self, records: List[VolumeRecord]) -> None:
        self.ready.append(records)


def make_interrogator(runners, platform, settings=None, uptime=lambda: 10_000.0):
    interrogator = VolumeInterrogator(
        settings or MonitorSettings(min_uptime_s=0),
        platform,
        runner_factory=runners,
        uptime_source=uptime,
    )
    recorder = Recorder()
    interrogator.set_scanning_callback(recorder.on_scanning)
    interrogator.set_ready_callback(recorder.on_ready)
    return interrogator, recorder


def by_name(records: List[VolumeRecord]) -> Dict[str, VolumeRecord]:
    return {record.name: record for record in records}


def summary(records: List[VolumeRecord]):
    return sorted(
        (r.name, r.disk_id, r.capacity_bytes, r.free_space_bytes, r.visible, r.shown, r.low_space_alert)
        for r in records
    )


EXPECTED_DARWIN = sorted([
    ("Macintosh HD", "disk1s1", APFS_CONTAINER_SIZE, APFS_CONTAINER_FREE, True, True, False),
    ("Data", "disk1s2", APFS_CONTAINER_SIZE, APFS_CONTAINER_FREE, False, True, False),
    ("Backup", "disk2s1", 512000000, 25600000, True, True, True),
])

FINAL_REQUESTS = [
    darwin_usage_key("apfs"),
    darwin_usage_key("hfs"),
    darwin_detail_key("/dev/disk1s1"),
    darwin_detail_key("/dev/disk1s2"),
    darwin_detail_key("/dev/disk2s1"),
]


class TestDarwinScan:

    @pytest.mark.asyncio
    async def test_full_scan(self, darwin_platform, darwin_runners):
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()

        assert recorder.scanning == 1
        assert interrogator.scan_in_progress is True
        assert interrogator.active is True

        darwin_runners.respond_all()

        assert len(recorder.ready) == 1
        assert summary(recorder.ready[0]) == EXPECTED_DARWIN
        volumes = by_name(recorder.ready[0])
        assert volumes["Macintosh HD"].volume_type is VolumeType.APFS
        assert volumes["Macintosh HD"].volume_uuid == MACINTOSH_HD_UUID
        assert volumes["Macintosh HD"].mount_point == "/"
        assert volumes["Backup"].volume_type is VolumeType.HFS_PLUS
        assert volumes["Backup"].volume_uuid == BACKUP_UUID
        assert interrogator.scan_in_progress is False
        assert interrogator.last_error is None
        assert summary(interrogator.last_results) == EXPECTED_DARWIN

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_command_sequence(self, darwin_platform, darwin_runners):
        interrogator, _ = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        issued = darwin_runners.issued
        assert issued[:2] == [DARWIN_LS, DARWIN_LSVFS]
        assert sorted(issued[2:]) == sorted(FINAL_REQUESTS)
        # autofs reports zero references and is never queried
        assert darwin_usage_key("autofs") not in issued
        assert all(r.options == ("LC_ALL=C",) for r in darwin_runners.runners)
        assert all(isinstance(r.token, RequestKey) for r in darwin_runners.runners)

        await interrogator.terminate()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order", list(itertools.permutations(range(len(FINAL_REQUESTS)))))
    async def test_completion_order_does_not_matter(self, darwin_platform, darwin_runners, order):
        priority = {FINAL_REQUESTS[index]: rank for rank, index in enumerate(order)}
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond(darwin_runners.find(*DARWIN_LS))
        darwin_runners.respond(darwin_runners.find(*DARWIN_LSVFS))

        while darwin_runners.pending:
            assert recorder.ready == []
            runner = min(darwin_runners.pending, key=lambda r: priority[r.argv])
            darwin_runners.respond(runner)

        assert len(recorder.ready) == 1
        assert summary(recorder.ready[0]) == EXPECTED_DARWIN

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_no_types_completes_empty(self, darwin_platform, darwin_runners):
        darwin_runners.responses[DARWIN_LSVFS] = (True, "Filesystem Refs Flags\n---- ---- ----\n")
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        assert recorder.ready == [[]]
        assert interrogator.last_error is None
        assert interrogator.scan_in_progress is False

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_duplicate_type_rows_queried_once(self, darwin_platform, darwin_runners):
        darwin_runners.responses[DARWIN_LSVFS] = (
            True, read_fixture("darwin_lsvfs.txt") + "hfs                                  2 local\n"
        )
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        assert darwin_runners.issued.count(darwin_usage_key("hfs")) == 1
        assert summary(recorder.ready[0]) == EXPECTED_DARWIN

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_unsupported_type_is_skipped(self, darwin_platform, darwin_runners):
        darwin_runners.responses[DARWIN_LSVFS] = (
            True, read_fixture("darwin_lsvfs.txt") + "devfs                                1 \n"
        )
        darwin_runners.responses[darwin_usage_key("devfs")] = (
            True, "Filesystem 512-blocks Used Available Capacity Mounted on\ndevfs 381 381 0 100% /dev\n"
        )
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        assert summary(recorder.ready[0]) == EXPECTED_DARWIN

        await interrogator.terminate()


class TestDetailDocuments:

    @pytest.mark.asyncio
    async def test_error_document_keeps_usage_values(self, darwin_platform, darwin_runners):
        darwin_runners.responses[darwin_detail_key("/dev/disk2s1")] = (True, diskutil_plist(Error=True))
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        backup = by_name(recorder.ready[0])["Backup"]
        assert backup.disk_id is None
        assert backup.volume_uuid is None
        assert backup.device_node == "/dev/disk2s1"
        assert backup.mount_point == "/Volumes/Backup"
        assert backup.capacity_bytes == 1000000 * 512
        assert backup.free_space_bytes == (1000000 - 950000) * 512
        assert backup.visible is True
        assert backup.low_space_alert is True

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_unnamed_volume_is_dropped(self, darwin_platform, darwin_runners):
        darwin_runners.responses[darwin_detail_key("/dev/disk1s2")] = (True, diskutil_plist(
            DeviceIdentifier="disk1s2", VolumeName="", FilesystemType="apfs",
        ))
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        assert set(by_name(recorder.ready[0])) == {"Macintosh HD", "Backup"}
        assert interrogator.last_error is None

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_free_space_falls_back_to_free_space_field(self, darwin_platform, darwin_runners):
        darwin_runners.responses[darwin_detail_key("/dev/disk1s2")] = (True, diskutil_plist(
            DeviceIdentifier="disk1s2", VolumeName="Data", FilesystemType="apfs",
            MountPoint="/System/Volumes/Data", DeviceNode="/dev/disk1s2",
            Size=1000, FreeSpace=100, VolumeUUID="UUID-DATA",
        ))
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        data = by_name(recorder.ready[0])["Data"]
        assert data.free_space_bytes == 100
        assert data.low_space_alert is True

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_unmounted_volume_is_kept(self, darwin_platform, darwin_runners):
        darwin_runners.responses[darwin_detail_key("/dev/disk2s1")] = (True, diskutil_plist(
            DeviceIdentifier="disk2s1", VolumeName="Backup", FilesystemType="hfs",
            MountPoint="", DeviceNode="/dev/disk2s1", Size=1000, FreeSpace=500, VolumeUUID=BACKUP_UUID,
        ))
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        backup = by_name(recorder.ready[0])["Backup"]
        assert backup.mount_point is None
        assert backup.shown is True

        await interrogator.terminate()


class TestScanFailures:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failing", [DARWIN_LS, DARWIN_LSVFS] + FINAL_REQUESTS)
    async def test_failed_command_aborts_scan(self, darwin_platform, darwin_runners, failing):
        darwin_runners.responses[failing] = (False, "boom: permission denied\n")
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        assert recorder.ready == [[]]
        assert "boom" in interrogator.last_error
        assert interrogator.scan_in_progress is False

        await interrogator.terminate()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key,output", [
        (darwin_usage_key("hfs"), "header\n/dev/disk2s1 1000000 950000\n"),
        (darwin_detail_key("/dev/disk1s1"), "garbage"),
        (darwin_detail_key("/dev/disk1s1"), diskutil_plist(Unexpected=True)),
    ])
    async def test_unparseable_output_aborts_scan(self, darwin_platform, darwin_runners, key, output):
        darwin_runners.responses[key] = (True, output)
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        assert recorder.ready == [[]]
        assert interrogator.last_error

        await interrogator.terminate()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key,output,dropped", [
        (darwin_detail_key("/dev/disk1s1"), diskutil_plist(
            DeviceIdentifier="disk1s1", VolumeName="Macintosh HD", FilesystemType="apfs",
            MountPoint="/", DeviceNode="/dev/disk1s1", Size=1000, APFSContainerFree=10,
        ), "Macintosh HD"),
        (darwin_detail_key("/dev/disk2s1"), diskutil_plist(
            DeviceIdentifier="disk2s1", VolumeName="Backup", FilesystemType="hfs",
            MountPoint="/Volumes/Backup", DeviceNode="/dev/disk2s1", Size="big", FreeSpace=10,
            VolumeUUID=BACKUP_UUID,
        ), "Backup"),
        (darwin_detail_key("/dev/disk2s1"), diskutil_plist(
            DeviceIdentifier="disk2s1", VolumeName="Backup", FilesystemType="zfs",
            MountPoint="/Volumes/Backup", DeviceNode="/dev/disk2s1", Size=1000, FreeSpace=10,
            VolumeUUID=BACKUP_UUID,
        ), "Backup"),
    ])
    async def test_invalid_volume_detail_drops_only_that_volume(
        self, darwin_platform, darwin_runners, key, output, dropped
    ):
        darwin_runners.responses[key] = (True, output)
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        names = set(by_name(recorder.ready[0]))
        assert names == {"Macintosh HD", "Data", "Backup"} - {dropped}
        assert interrogator.last_error is None
        assert interrogator.scan_in_progress is False

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_stale_completion_is_ignored(self, darwin_platform, darwin_runners):
        darwin_runners.responses[darwin_usage_key("hfs")] = (False, "df: failed\n")
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond(darwin_runners.find(*DARWIN_LS))
        darwin_runners.respond(darwin_runners.find(*DARWIN_LSVFS))
        stale = darwin_runners.find(*darwin_usage_key("apfs"))
        darwin_runners.respond(darwin_runners.find(*darwin_usage_key("hfs")))
        assert recorder.ready == [[]]

        darwin_runners.responses[darwin_usage_key("hfs")] = (True, read_fixture("darwin_df_hfs.txt"))
        interrogator.start()
        assert recorder.scanning == 2
        spawned = len(darwin_runners.runners)

        darwin_runners.respond(stale)
        assert len(darwin_runners.runners) == spawned
        assert len(recorder.ready) == 1

        darwin_runners.respond_all()
        assert len(recorder.ready) == 2
        assert summary(recorder.ready[1]) == EXPECTED_DARWIN

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_watchdog_resets_stuck_scan(self, darwin_platform, darwin_runners, monkeypatch):
        monkeypatch.setattr(interrogator_module, "WATCHDOG_TIMEOUT_S", 0.02)
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond(darwin_runners.find(*DARWIN_LS))

        # Second trigger while the scan is stuck arms the watchdog.
        interrogator.start()
        await asyncio.sleep(0.08)

        assert recorder.ready == [[]]
        assert interrogator.scan_in_progress is False
        assert "timed out" in interrogator.last_error

        darwin_runners.respond_all()
        assert len(recorder.ready) == 1

        await interrogator.terminate()


class TestTriggers:

    @pytest.mark.asyncio
    async def test_trigger_during_scan_issues_no_commands(self, darwin_platform, darwin_runners):
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        issued = len(darwin_runners.runners)

        interrogator.start()

        assert len(darwin_runners.runners) == issued
        assert recorder.scanning == 1

        darwin_runners.respond_all()
        assert len(recorder.ready) == 1

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_trigger_during_scan_retries_afterwards(self, darwin_platform, darwin_runners, monkeypatch):
        monkeypatch.setattr(interrogator_module, "RETRY_DELAY_S", 0.01)
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        interrogator.start()
        darwin_runners.respond_all()

        await asyncio.sleep(0.05)

        assert recorder.scanning == 2
        assert interrogator.scan_in_progress is True

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_start_deferred_until_uptime_reached(self, darwin_platform, darwin_runners):
        uptimes = iter([0.0, 1000.0])
        interrogator, recorder = make_interrogator(
            darwin_runners,
            darwin_platform,
            settings=MonitorSettings(min_uptime_s=0.02),
            uptime=lambda: next(uptimes),
        )
        interrogator.start()

        assert darwin_runners.runners == []
        assert interrogator.active is False

        await asyncio.sleep(0.06)

        assert recorder.scanning == 1
        assert darwin_runners.issued == [DARWIN_LS]

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_change_notifications_debounced(self, darwin_platform, darwin_runners, monkeypatch):
        monkeypatch.setattr(interrogator_module, "CHANGE_DEBOUNCE_S", 0.01)
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        for name in ("USB", "Camera", "Scratch"):
            interrogator.notify_change("/Volumes", {name}, set())
        await asyncio.sleep(0.05)

        assert recorder.scanning == 2

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_change_ignored_while_inactive(self, darwin_platform, darwin_runners, monkeypatch):
        monkeypatch.setattr(interrogator_module, "CHANGE_DEBOUNCE_S", 0.01)
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)

        interrogator.notify_change("/Volumes", {"USB"}, set())
        await asyncio.sleep(0.03)

        assert recorder.scanning == 0
        assert darwin_runners.runners == []

    @pytest.mark.asyncio
    async def test_watched_folder_change_triggers_scan(self, darwin_runners, tmp_path: Path, monkeypatch):
        class WatchedDarwinPlatform(DarwinPlatform):
            @property
            def watch_folders(self):
                return [str(tmp_path)]

        monkeypatch.setattr(interrogator_module, "CHANGE_DEBOUNCE_S", 0.01)
        interrogator, recorder = make_interrogator(darwin_runners, WatchedDarwinPlatform())
        interrogator.start()
        darwin_runners.respond_all()

        watcher = await interrogator.start_watching()
        assert watcher.watched_folders == [str(tmp_path)]
        (tmp_path / "USB").mkdir()
        await watcher.poll_once()
        await asyncio.sleep(0.05)

        assert recorder.scanning == 2

        await interrogator.terminate()
        assert interrogator.watcher is None
        assert watcher.is_running is False


class TestSettingsAndCallbacks:

    @pytest.mark.asyncio
    async def test_exclusion_masks(self, darwin_platform, darwin_runners):
        settings = MonitorSettings(min_uptime_s=0, exclusion_masks=("^/System",))
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform, settings=settings)
        interrogator.start()
        darwin_runners.respond_all()

        volumes = by_name(recorder.ready[0])
        assert volumes["Data"].shown is False
        assert volumes["Macintosh HD"].shown is True
        assert volumes["Backup"].shown is True

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_customizations(self, darwin_platform, darwin_runners):
        settings = MonitorSettings(min_uptime_s=0, volume_customizations=(
            VolumeCustomization(id_method="name", volume_name="backup"),
            VolumeCustomization(
                id_method="serial_num",
                volume_serial_num=MACINTOSH_HD_UUID.lower(),
                low_space_alarm_active=True,
                alarm_threshold=50,
            ),
        ))
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform, settings=settings)
        interrogator.start()
        darwin_runners.respond_all()

        volumes = by_name(recorder.ready[0])
        assert volumes["Backup"].low_space_alert is False
        assert volumes["Macintosh HD"].low_space_alert is True
        assert volumes["Data"].low_space_alert is False

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_period_setter(self, darwin_platform, darwin_runners):
        interrogator, _ = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        darwin_runners.respond_all()

        interrogator.period_hr = 1.5
        assert interrogator.period_hr == 1.5
        assert interrogator.active is True

        with pytest.raises(ValidationError):
            interrogator.period_hr = 0
        with pytest.raises(ValidationError):
            interrogator.period_hr = MAX_PERIOD_HR + 1
        assert interrogator.period_hr == 1.5

        await interrogator.terminate()

    def test_static_properties(self, darwin_platform, darwin_runners):
        interrogator, _ = make_interrogator(darwin_runners, darwin_platform)
        assert interrogator.platform == "darwin"
        assert interrogator.minimum_period_hr == MIN_PERIOD_HR
        assert interrogator.maximum_period_hr == MAX_PERIOD_HR
        assert interrogator.active is False
        assert interrogator.scan_in_progress is False
        assert interrogator.last_error is None

    @pytest.mark.asyncio
    async def test_async_callbacks_are_scheduled(self, darwin_platform, darwin_runners):
        received = []

        async def on_ready(records):
            received.append(len(records))

        interrogator, _ = make_interrogator(darwin_runners, darwin_platform)
        interrogator.set_ready_callback(on_ready)
        interrogator.start()
        darwin_runners.respond_all()
        await asyncio.sleep(0)

        assert received == [3]

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_break_scan(self, darwin_platform, darwin_runners):
        def broken():
            raise RuntimeError("consumer failure")

        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.set_scanning_callback(broken)
        interrogator.start()
        darwin_runners.respond_all()

        assert summary(recorder.ready[0]) == EXPECTED_DARWIN

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_terminate_drops_everything(self, darwin_platform, darwin_runners):
        interrogator, recorder = make_interrogator(darwin_runners, darwin_platform)
        interrogator.start()
        await interrogator.terminate()

        darwin_runners.respond_all()

        assert interrogator.active is False
        assert interrogator.scan_in_progress is False
        assert recorder.ready == []


class TestLinuxScan:

    @pytest.mark.asyncio
    async def test_full_scan(self, linux_platform, linux_runners):
        interrogator, recorder = make_interrogator(linux_runners, linux_platform)
        interrogator.start()
        linux_runners.respond_all()

        volumes = by_name(recorder.ready[0])
        assert set(volumes) == {"/", "boot", "USB"}

        root = volumes["/"]
        assert root.disk_id == "sda2"
        assert root.volume_type is VolumeType.EXT4
        assert root.capacity_bytes == 51200000000
        assert root.free_space_bytes == 30720000000
        assert root.visible is True
        assert root.low_space_alert is False

        boot = volumes["boot"]
        assert boot.disk_id is None
        assert boot.capacity_bytes == 1000000 * 512
        assert boot.free_space_bytes == 500000 * 512

        usb = volumes["USB"]
        assert usb.volume_type is VolumeType.VFAT
        assert usb.volume_uuid == "ABCD-1234"
        assert usb.low_space_alert is True

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_missing_uuid_uses_device_node(self, linux_platform, linux_runners):
        payload = json.loads(read_fixture("linux_lsblk_sdb1.json"))
        payload["blockdevices"][0]["uuid"] = None
        linux_runners.responses[linux_detail_key("/dev/sdb1")] = (True, json.dumps(payload))
        interrogator, recorder = make_interrogator(linux_runners, linux_platform)
        interrogator.start()
        linux_runners.respond_all()

        assert by_name(recorder.ready[0])["USB"].volume_uuid == "/dev/sdb1"

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_network_share_needs_no_detail(self, linux_platform, linux_runners):
        linux_runners.responses[("/bin/df", "--portability", "--block-size=512", "--all", "--type=vfat")] = (
            True,
            "Filesystem 512-blocks Used Available Capacity Mounted on\n"
            "systemd-1 2000 1000 1000 50% /mnt/auto\n",
        )
        interrogator, recorder = make_interrogator(linux_runners, linux_platform)
        interrogator.start()
        linux_runners.respond_all()

        auto = by_name(recorder.ready[0])["auto"]
        assert auto.device_node == "systemd-1"
        assert auto.capacity_bytes == 2000 * 512
        assert not any(r.argv[-1] == "systemd-1" for r in linux_runners.runners)

        await interrogator.terminate()


    @pytest.mark.asyncio
    async def test_null_lsblk_fields_fall_back_to_usage_row(self, linux_platform, linux_runners):
        payload = json.loads(read_fixture("linux_lsblk_sda2.json"))
        payload["blockdevices"][0].update(fstype=None, uuid=None)
        linux_runners.responses[linux_detail_key("/dev/sda2")] = (True, json.dumps(payload))
        interrogator, recorder = make_interrogator(linux_runners, linux_platform)
        interrogator.start()
        linux_runners.respond_all()

        volumes = by_name(recorder.ready[0])
        assert set(volumes) == {"/", "boot", "USB"}
        assert volumes["/"].volume_type is VolumeType.EXT4
        assert volumes["/"].volume_uuid == "/dev/sda2"
        assert interrogator.last_error is None

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_device_alias_keeps_usage_row(self, linux_platform, linux_runners):
        linux_runners.responses[linux_usage_key("ext4")] = (
            True,
            "Filesystem     512-blocks     Used Available Capacity Mounted on\n"
            "/dev/root       100000000 40000000  60000000      40% /\n"
            "/dev/sda1         1000000   500000    500000      50% /boot\n",
        )
        interrogator, recorder = make_interrogator(linux_runners, linux_platform)
        interrogator.start()
        linux_runners.respond_all()

        volumes = by_name(recorder.ready[0])
        assert set(volumes) == {"/", "boot", "USB"}
        assert volumes["/"].device_node == "/dev/root"
        assert volumes["/"].capacity_bytes == 100000000 * 512
        assert not any(r.argv[-1] == "/dev/root" for r in linux_runners.runners)
        assert interrogator.last_error is None

        await interrogator.terminate()


class TestEnumerationStep:

    @pytest.mark.asyncio
    async def test_scan_waits_for_enumeration(self, darwin_platform, runner_factory):
        interrogator, recorder = make_interrogator(runner_factory, darwin_platform)
        interrogator.start()

        assert runner_factory.issued == [DARWIN_LS]
        assert interrogator.generation == 1
        assert recorder.ready == []

        runner_factory.pending[0].complete(False, "ls: /Volumes: Permission denied\n")

        assert recorder.ready == [[]]
        assert "Permission denied" in interrogator.last_error
        assert interrogator.scan_in_progress is False
        assert interrogator.active is True

        await interrogator.terminate()

    @pytest.mark.asyncio
    async def test_completion_without_request_key_aborts(self, darwin_platform, runner_factory):
        interrogator, recorder = make_interrogator(runner_factory, darwin_platform)
        interrogator.start()

        runner = runner_factory.pending[0]
        runner.token = "not-a-key"
        runner.complete(True, "Macintosh HD\n")

        assert recorder.ready == [[]]
        assert "request key" in interrogator.last_error
        assert runner_factory.issued == [DARWIN_LS]

        await interrogator.terminate()
