"""watchsync client sync status tracking."""
from __future__ import annotations
import asyncio
import logging
import time
from typing import Callable, Optional

from client.reconciler import PlaybackReconciler

logger = logging.getLogger("watchsync.client.status")

STATUS_SYNCED = "synced"
STATUS_OUT_OF_SYNC = "out_of_sync"
STATUS_DISCONNECTED = "disconnected"
STATUS_SYNCING = "syncing"
STATUS_BUFFERING = "buffering"
STATUS_FAILED = "failed"  # reconnect attempts exhausted


class SyncStatusMonitor:
    """Derives a coarse sync status from the channel, the player and the last gap."""

    def __init__(
        self,
        reconciler: PlaybackReconciler,
        is_open: Callable[[], bool],
        interval_s: float = 2.0,
        stale_s: float = 10.0,
    ):
        self.reconciler = reconciler
        self.is_open = is_open
        self.interval_s = interval_s
        self.stale_s = stale_s
        self.status = STATUS_DISCONNECTED
        self.on_change: Optional[Callable[[str, float], None]] = None
        self._task: Optional[asyncio.Task] = None

    def set_status(self, status: str) -> None:
        if status == self.status:
            return
        gap = self.reconciler.gap
        if status == STATUS_OUT_OF_SYNC:
            logger.warning("Sync status: %s (%.1fs)", status, abs(gap))
        else:
            logger.info("Sync status: %s", status)
        self.status = status
        if self.on_change:
            self.on_change(status, gap)

    def evaluate(self, now: Optional[float] = None) -> str:
        if self.status == STATUS_FAILED:
            return self.status
        if now is None:
            now = time.monotonic()
        rec = self.reconciler
        if not self.is_open():
            status = STATUS_DISCONNECTED
        elif rec.view.is_buffering:
            status = STATUS_BUFFERING
        elif now - rec.last_activity > self.stale_s:
            status = STATUS_OUT_OF_SYNC
        else:
            playing = rec.target.playing if rec.target is not None else rec.view.playing
            if abs(rec.gap) <= rec.profile.threshold(playing):
                status = STATUS_SYNCED
            else:
                status = STATUS_OUT_OF_SYNC
        self.set_status(status)
        return status

    # hooks for the clock estimator
    def sync_started(self) -> None:
        if self.status != STATUS_FAILED:
            self.set_status(STATUS_SYNCING)

    def sync_finished(self, completed: bool) -> None:
        self.evaluate()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    def stop(self) -> None:
        if self._task:
            self._task.cancel()
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            self.evaluate()
