"""
Volume folder watcher - notices volumes being mounted or unmounted.

Volumes show up as entries in a handful of well-known folders (/Volumes on
macOS, /media/<user> and /mnt on Linux). The watcher snapshots their
listings periodically and reports the difference.
The interrogator debounces the notifications into a single rescan.
"""

import asyncio
import inspect
import os
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from volmon.core.logging_utils import get_module_logger

logger = get_module_logger("VolumeWatcher")

VolumeChangeCallback = Callable[[str, Set[str], Set[str]], Any]


def list_folder(folder: str) -> FrozenSet[str]:
    """Entries of ``folder``. Raises OSError when it cannot be read."""
    return frozenset(os.listdir(folder))


class VolumeWatcher:
    """
    Polls volume folders and reports added/removed entries.

    Usage:
        watcher = VolumeWatcher(["/Volumes"], interrogator.notify_change)
        await watcher.start()
        ...
        await watcher.stop()
    """

    DEFAULT_POLL_INTERVAL = 2.0

    def __init__(
        self,
        folders: Iterable[str],
        on_change: VolumeChangeCallback,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self._folders = list(folders)
        self._on_change = on_change
        self._poll_interval = poll_interval
        self._snapshots: Dict[str, FrozenSet[str]] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def watched_folders(self) -> List[str]:
        """Folders that were readable when watching started."""
        return list(self._snapshots)

    async def start(self) -> None:
        if self._running:
            return

        self._snapshots = {}
        for folder in self._folders:
            try:
                self._snapshots[folder] = await asyncio.to_thread(list_folder, folder)
            except OSError as e:
                logger.warning(f"Not watching {folder}: {e}")

        self._running = True
        logger.info(f"Volume watcher started on {self.watched_folders}")
        self._task = asyncio.create_task(self._watch_loop())

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Volume watcher stopped")

    async def poll_once(self) -> None:
        """Compare every watched folder against its last snapshot."""
        for folder, previous in list(self._snapshots.items()):
            try:
                current = await asyncio.to_thread(list_folder, folder)
            except OSError as e:
                logger.debug(f"Unable to list {folder}: {e}")
                current = frozenset()

            if current == previous:
                continue

            added = set(current - previous)
            removed = set(previous - current)
            self._snapshots[folder] = current
            logger.info(f"Change in {folder}: added={sorted(added)} removed={sorted(removed)}")
            await self._notify(folder, added, removed)

    async def _watch_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._poll_interval)
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in volume watcher: {e}")

    async def _notify(self, folder: str, added: Set[str], removed: Set[str]) -> None:
        try:
            outcome = self._on_change(folder, added, removed)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Error in volume change callback: {e}")


__all__ = ["VolumeChangeCallback", "VolumeWatcher", "list_folder"]
