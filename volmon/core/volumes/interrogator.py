"""
Volume interrogation engine.

A scan is a chain of fan-out/fan-in command waves:

    visible volumes -> file system types -> usage per type -> detail per volume

Each spawned command is tagged with a RequestKey. Completions are matched
against the pending maps of the current scan generation; anything else is a
leftover from an earlier (aborted or timed out) scan and is ignored. The scan
ends when type discovery has answered and both pending maps are empty, or
when any step fails, in which case "ready" is emitted with an empty list.

All state is owned by the event loop thread. Timers are plain
``loop.call_later`` handles.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from volmon.core.asyncio_utils import cancel_timer, create_logged_task
from volmon.core.errors import ExternalProcessError, ParseError, ProtocolError, ValidationError, VolmonError
from volmon.core.logging_utils import get_module_logger
from volmon.core.platform_info import host_uptime_seconds

from .alert_policy import AlertPolicy, is_volume_shown, percent_free_of
from .platforms import (
    Command,
    FileSystemTypeEntry,
    UsageRow,
    VolumePlatform,
    get_volume_platform,
    volume_name_from_mount_point,
)
from .process_runner import CompletionCallback, ProcessResult, ProcessRunner
from .settings import MAX_PERIOD_HR, MIN_PERIOD_HR, MonitorSettings, validate_period
from .volume_data import BLOCK_512_TO_BYTES, VolumeRecord, VolumeType
from .volume_watcher import VolumeWatcher

logger = get_module_logger("VolumeInterrogator")

RETRY_DELAY_S = 0.25
WATCHDOG_TIMEOUT_S = 120.0
CHANGE_DEBOUNCE_S = 1.0

KIND_ENUMERATE = "enumerate"
KIND_TYPES = "types"
KIND_USAGE = "usage"
KIND_DETAIL = "detail"

RunnerFactory = Callable[[CompletionCallback], ProcessRunner]
ScanningCallback = Callable[[], Any]
ReadyCallback = Callable[[List[VolumeRecord]], Any]


@dataclass(frozen=True)
class RequestKey:
    """Correlates a completion with the request (and scan) that issued it."""
    generation: int
    request_id: int
    kind: str


@dataclass
class ScanState:
    """Mutable bookkeeping for one scan generation."""
    generation: int = 0
    in_progress: bool = False
    pending_steps: Set[RequestKey] = field(default_factory=set)
    pending_types: Dict[RequestKey, FileSystemTypeEntry] = field(default_factory=dict)
    pending_volumes: Dict[RequestKey, VolumeRecord] = field(default_factory=dict)
    visible_names: List[str] = field(default_factory=list)
    records: List[VolumeRecord] = field(default_factory=list)

    @property
    def enumerated(self) -> bool:
        return not self.pending_steps

    @property
    def settled(self) -> bool:
        return self.enumerated and not self.pending_types and not self.pending_volumes

    def is_pending(self, key: Any) -> bool:
        if not isinstance(key, RequestKey) or key.generation != self.generation:
            return False
        if key.kind == KIND_USAGE:
            return key in self.pending_types
        if key.kind == KIND_DETAIL:
            return key in self.pending_volumes
        return key in self.pending_steps

    def key_for_type(self, fs_type: str) -> Optional[RequestKey]:
        for key, entry in self.pending_types.items():
            if entry.fs_type == fs_type:
                return key
        return None


def _default_runner_factory(on_complete: CompletionCallback) -> ProcessRunner:
    return ProcessRunner(on_complete, logger=logger.getChild("ProcessRunner"))


def _require(document: Mapping[str, Any], key: str, kind: type) -> Any:
    value = document.get(key)
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ParseError(f"Detail document field '{key}' is missing or not a {kind.__name__}")
    return value


class VolumeInterrogator:
    """Periodically enumerates mounted volumes and reports their usage.

    Emits "scanning" when a scan starts and "ready" with the list of
    VolumeRecord once it ends. A failed scan reports an empty list; the
    reason is available from ``last_error``.
    """

    MINIMUM_PERIOD_HR = MIN_PERIOD_HR
    MAXIMUM_PERIOD_HR = MAX_PERIOD_HR

    def __init__(
        self,
        settings: Optional[MonitorSettings] = None,
        platform: Optional[VolumePlatform] = None,
        *,
        runner_factory: Optional[RunnerFactory] = None,
        uptime_source: Callable[[], float] = host_uptime_seconds,
        watch_poll_interval: float = 2.0,
    ) -> None:
        self.settings = settings or MonitorSettings()
        self._platform = platform or get_volume_platform()
        self._runner_factory = runner_factory or _default_runner_factory
        self._uptime_source = uptime_source
        self._watch_poll_interval = watch_poll_interval

        self._alert_policy = AlertPolicy(
            self.settings.default_alarm_threshold,
            self.settings.volume_customizations,
        )
        self._exclusion_masks = self.settings.exclusion_masks
        self._period_hr = self.settings.period_hr

        self._state = ScanState()
        self._request_ids = itertools.count(1)
        self._runners: Set[ProcessRunner] = set()
        self._last_error: Optional[str] = None
        self._last_results: List[VolumeRecord] = []

        self._timer: Optional[asyncio.TimerHandle] = None
        self._watchdog_timer: Optional[asyncio.TimerHandle] = None
        self._deferred_start_timer: Optional[asyncio.TimerHandle] = None

        self._watcher: Optional[VolumeWatcher] = None
        self._scanning_callback: Optional[ScanningCallback] = None
        self._ready_callback: Optional[ReadyCallback] = None

    # ------------------------------------------------------------------
    # Properties

    @property
    def platform(self) -> str:
        return self._platform.identifier

    @property
    def minimum_period_hr(self) -> float:
        return self.MINIMUM_PERIOD_HR

    @property
    def maximum_period_hr(self) -> float:
        return self.MAXIMUM_PERIOD_HR

    @property
    def period_hr(self) -> float:
        return self._period_hr

    @period_hr.setter
    def period_hr(self, value: float) -> None:
        self._period_hr = validate_period(value)
        if self.active and not self._state.in_progress:
            self._arm_timer(self._period_hr * 3600.0)
            logger.info("Check period changed to %.3f hours", self._period_hr)

    @property
    def active(self) -> bool:
        return self._timer is not None and not self._timer.cancelled()

    @property
    def scan_in_progress(self) -> bool:
        return self._state.in_progress

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def last_results(self) -> List[VolumeRecord]:
        return list(self._last_results)

    @property
    def generation(self) -> int:
        return self._state.generation

    @property
    def watcher(self) -> Optional[VolumeWatcher]:
        return self._watcher

    def set_scanning_callback(self, callback: Optional[ScanningCallback]) -> None:
        self._scanning_callback = callback

    def set_ready_callback(self, callback: Optional[ReadyCallback]) -> None:
        self._ready_callback = callback

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> None:
        """Start periodic checks, deferring the first one on a freshly booted host."""
        cancel_timer(self._deferred_start_timer)
        self._deferred_start_timer = None
        self.stop()

        uptime = self._uptime_source()
        min_uptime = self.settings.min_uptime_s
        if uptime < min_uptime:
            delay = min_uptime - uptime
            logger.info(
                "Host uptime %.0fs is below %.0fs, deferring start by %.1fs",
                uptime, min_uptime, delay,
            )
            loop = asyncio.get_running_loop()
            self._deferred_start_timer = loop.call_later(delay, self.start)
            return

        self._initiate_check()

    def stop(self) -> None:
        cancel_timer(self._timer)
        self._timer = None

    async def terminate(self) -> None:
        """Stop everything and drop the callbacks. Scans in flight are abandoned."""
        self.stop()
        cancel_timer(self._watchdog_timer)
        self._watchdog_timer = None
        cancel_timer(self._deferred_start_timer)
        self._deferred_start_timer = None
        await self.stop_watching()
        self._scanning_callback = None
        self._ready_callback = None
        self._reset_scan()
        logger.debug("Interrogator terminated")

    def notify_change(self, folder: Optional[str] = None, added=(), removed=()) -> None:
        """Schedule a rescan after a burst of volume changes settles."""
        if not self.active:
            logger.debug("Ignoring change in %s while inactive", folder)
            return
        logger.debug("Volume change in %s (added=%s, removed=%s)", folder, sorted(added), sorted(removed))
        cancel_timer(self._deferred_start_timer)
        loop = asyncio.get_running_loop()
        self._deferred_start_timer = loop.call_later(CHANGE_DEBOUNCE_S, self.start)

    async def start_watching(self) -> VolumeWatcher:
        if self._watcher is None:
            self._watcher = VolumeWatcher(
                self._platform.watch_folders,
                self.notify_change,
                poll_interval=self._watch_poll_interval,
            )
        await self._watcher.start()
        return self._watcher

    async def stop_watching(self) -> None:
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None

    # ------------------------------------------------------------------
    # Scan orchestration

    def _arm_timer(self, delay_s: float) -> None:
        cancel_timer(self._timer)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay_s, self._initiate_check)

    def _initiate_check(self) -> None:
        in_progress = self._state.in_progress
        logger.debug("Initiating check (scan in progress: %s)", in_progress)

        if in_progress:
            if self._watchdog_timer is None:
                loop = asyncio.get_running_loop()
                self._watchdog_timer = loop.call_later(WATCHDOG_TIMEOUT_S, self._on_watchdog)
            self._arm_timer(RETRY_DELAY_S)
            return

        self._arm_timer(self._period_hr * 3600.0)
        self._begin_scan()

    def _begin_scan(self) -> None:
        self._state = ScanState(generation=self._state.generation + 1, in_progress=True)
        logger.info("Scan %d started", self._state.generation)
        self._emit_scanning()

        # A scanning callback may have stopped or reset us.
        if not self._state.in_progress:
            return
        key = self._new_key(KIND_ENUMERATE)
        self._state.pending_steps.add(key)
        self._spawn(self._platform.visible_volumes_command(), key, self._on_visible_volumes)

    def _new_key(self, kind: str) -> RequestKey:
        return RequestKey(self._state.generation, next(self._request_ids), kind)

    def _spawn(self, command: Command, key: RequestKey, handler: Callable[[RequestKey, ProcessResult], None]) -> None:
        def _complete(result: ProcessResult) -> None:
            self._runners.discard(result.runner)
            self._dispatch(handler, result)

        runner = self._runner_factory(_complete)
        self._runners.add(runner)
        logger.debug("Spawning '%s' for %s", command, key)
        runner.run(command.command, command.arguments, command.options, token=key)

    def _dispatch(self, handler: Callable[[RequestKey, ProcessResult], None], result: ProcessResult) -> None:
        key = result.token
        if not isinstance(key, RequestKey):
            if self._state.in_progress:
                self._abort(ProtocolError(f"Completion carries no request key: {key!r}"))
            return
        if not self._state.in_progress or not self._state.is_pending(key):
            logger.debug("Ignoring stale completion %s", key)
            return
        try:
            handler(key, result)
        except VolmonError as exc:
            self._abort(exc)
        except Exception as exc:
            logger.exception("Unexpected failure handling %s", key)
            self._abort(exc)

    @staticmethod
    def _require_valid(result: ProcessResult) -> None:
        if not result.valid:
            raise ExternalProcessError(
                f"'{result.runner.describe()}' failed: {result.output.strip()}"
            )

    def _on_visible_volumes(self, key: RequestKey, result: ProcessResult) -> None:
        self._require_valid(result)
        self._state.visible_names = self._platform.parse_visible_volumes(result.output)
        logger.debug("Visible volumes: %s", self._state.visible_names)

        types_key = self._new_key(KIND_TYPES)
        self._state.pending_steps.add(types_key)
        self._state.pending_steps.discard(key)
        self._spawn(self._platform.filesystem_types_command(), types_key, self._on_filesystem_types)

    def _on_filesystem_types(self, key: RequestKey, result: ProcessResult) -> None:
        self._state.pending_steps.discard(key)
        self._require_valid(result)

        for entry in self._platform.parse_filesystem_types(result.output):
            if entry.count <= 0:
                continue
            existing = self._state.key_for_type(entry.fs_type)
            if existing is not None:
                logger.debug("Type '%s' already pending, updating entry", entry.fs_type)
                self._state.pending_types[existing] = entry
                continue
            usage_key = self._new_key(KIND_USAGE)
            self._state.pending_types[usage_key] = entry
            self._spawn(self._platform.usage_command(entry.fs_type), usage_key, self._on_usage)

        self._update_check_in_progress()

    def _on_usage(self, key: RequestKey, result: ProcessResult) -> None:
        entry = self._state.pending_types.pop(key)
        self._require_valid(result)

        if VolumeType.is_known(entry.fs_type):
            volume_type = VolumeType(entry.fs_type)
            for row in self._platform.parse_usage(result.output):
                record = self._build_provisional(row, volume_type)
                command = self._platform.detail_command(record)
                if command is None:
                    self._state.records.append(record)
                    continue
                detail_key = self._new_key(KIND_DETAIL)
                self._state.pending_volumes[detail_key] = record
                self._spawn(command, detail_key, self._on_detail)
        else:
            logger.debug("Skipping usage of unsupported type '%s'", entry.fs_type)

        self._update_check_in_progress()

    def _on_detail(self, key: RequestKey, result: ProcessResult) -> None:
        provisional = self._state.pending_volumes.pop(key)
        self._require_valid(result)

        document = self._platform.parse_detail(result.output, provisional)
        record = self._merge_detail(provisional, document)
        if record is not None:
            self._state.records.append(record)

        self._update_check_in_progress()

    # ------------------------------------------------------------------
    # Record construction

    def _is_shown(self, mount_point: Optional[str]) -> bool:
        if not mount_point:
            return True
        return is_volume_shown(mount_point, self._exclusion_masks)

    def _build_provisional(self, row: UsageRow, volume_type: VolumeType) -> VolumeRecord:
        name = volume_name_from_mount_point(row.mount_point)
        alert = self._alert_policy.compute_alert(
            name, None, percent_free_of(row.available_blocks, row.total_blocks)
        )
        free_blocks = max(0, row.total_blocks - row.used_blocks)
        return VolumeRecord(
            name=name,
            volume_type=volume_type,
            mount_point=row.mount_point,
            device_node=row.device_node,
            capacity_bytes=row.total_blocks * BLOCK_512_TO_BYTES,
            free_space_bytes=free_blocks * BLOCK_512_TO_BYTES,
            visible=name in self._state.visible_names,
            shown=self._is_shown(row.mount_point),
            low_space_alert=alert,
        )

    def _merge_detail(self, provisional: VolumeRecord, document: Mapping[str, Any]) -> Optional[VolumeRecord]:
        disk_id = document.get("DeviceIdentifier")
        if isinstance(disk_id, str) and disk_id:
            name = document.get("VolumeName")
            if not isinstance(name, str) or not name:
                logger.debug("Dropping unnamed volume %s", disk_id)
                return None

            try:
                return self._build_detailed(disk_id, name, document)
            except (ParseError, ValidationError) as exc:
                logger.debug("Dropping volume %s: %s", disk_id, exc)
                return None

        if document.get("Error") is True:
            logger.debug("Detail query failed for %s, keeping usage values", provisional.device_node)
            alert = self._alert_policy.compute_alert(
                provisional.name,
                provisional.volume_uuid,
                percent_free_of(provisional.free_space_bytes, provisional.capacity_bytes),
            )
            return provisional.replace(shown=self._is_shown(provisional.mount_point), low_space_alert=alert)

        raise ParseError(f"Unexpected detail document for {provisional.device_node}")

    def _build_detailed(self, disk_id: str, name: str, document: Mapping[str, Any]) -> VolumeRecord:
        fs_type = _require(document, "FilesystemType", str)
        mount_point = _require(document, "MountPoint", str)
        device_node = _require(document, "DeviceNode", str)
        size = _require(document, "Size", int)

        free = document.get(self._platform.free_space_field(fs_type))
        if not isinstance(free, int) or isinstance(free, bool):
            free = _require(document, "FreeSpace", int)

        volume_uuid = document.get("VolumeUUID")
        if volume_uuid is None and fs_type in self._platform.uuid_optional_types:
            volume_uuid = device_node
        elif not isinstance(volume_uuid, str) or not volume_uuid:
            raise ParseError(f"Detail document for {disk_id} has no 'VolumeUUID'")

        alert = self._alert_policy.compute_alert(name, volume_uuid, percent_free_of(free, size))
        return VolumeRecord(
            name=name,
            disk_id=disk_id,
            volume_type=fs_type,
            mount_point=mount_point or None,
            device_node=device_node,
            volume_uuid=volume_uuid,
            capacity_bytes=size,
            free_space_bytes=min(free, size),
            visible=name in self._state.visible_names,
            shown=self._is_shown(mount_point),
            low_space_alert=alert,
        )

    # ------------------------------------------------------------------
    # Completion, abort and reset

    def _update_check_in_progress(self) -> None:
        state = self._state
        if not state.in_progress or not state.settled:
            return
        state.in_progress = False
        cancel_timer(self._watchdog_timer)
        self._watchdog_timer = None
        self._last_error = None

        records = list(state.records)
        self._log_snapshot(state.generation, records)
        self._last_results = records
        self._emit_ready(list(records))

    def _abort(self, exc: BaseException) -> None:
        logger.warning("Scan %d aborted: %s", self._state.generation, exc)
        self._last_error = str(exc) or type(exc).__name__
        cancel_timer(self._watchdog_timer)
        self._watchdog_timer = None
        self._reset_scan()
        self._emit_ready([])

    def _on_watchdog(self) -> None:
        self._watchdog_timer = None
        logger.warning(
            "Scan %d did not finish within %.0fs, resetting", self._state.generation, WATCHDOG_TIMEOUT_S
        )
        self._last_error = f"Scan timed out after {WATCHDOG_TIMEOUT_S:.0f}s"
        cancel_timer(self._deferred_start_timer)
        self._deferred_start_timer = None
        self._reset_scan()
        self._emit_ready([])

    def _reset_scan(self) -> None:
        # Generation is kept; the next scan bumps it and stale keys stay stale.
        self._state = ScanState(generation=self._state.generation)

    def _log_snapshot(self, generation: int, records: List[VolumeRecord]) -> None:
        logger.info("Scan %d complete: %d volume(s)", generation, len(records))
        for record in records:
            logger.debug(
                "  %s [%s] %s dev=%s uuid=%s size=%d free=%d visible=%s shown=%s alert=%s",
                record.name,
                record.volume_type.value,
                record.mount_point,
                record.device_node,
                record.volume_uuid,
                record.capacity_bytes,
                record.free_space_bytes,
                record.visible,
                record.shown,
                record.low_space_alert,
            )

    # ------------------------------------------------------------------
    # Signals

    def _invoke(self, label: str, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(*args)
        except Exception:
            logger.exception("%s callback failed", label)
            return
        if inspect.isawaitable(outcome):
            create_logged_task(outcome, logger=logger, context=f"{label} callback")

    def _emit_scanning(self) -> None:
        self._invoke("scanning", self._scanning_callback)

    def _emit_ready(self, records: List[VolumeRecord]) -> None:
        self._invoke("ready", self._ready_callback, records)


__all__ = [
    "CHANGE_DEBOUNCE_S",
    "RETRY_DELAY_S",
    "RequestKey",
    "ScanState",
    "VolumeInterrogator",
    "WATCHDOG_TIMEOUT_S",
]
