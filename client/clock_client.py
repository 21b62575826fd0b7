"""watchsync client-side clock offset estimation against the arbiter."""
from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from shared.clock_sync import ClockEstimate
from shared.protocol import (
    make_frame, parse_number, now_ms,
    CMD_TIME_SYNC_REQUEST_BACKWARD, CMD_TIME_SYNC_REQUEST_FORWARD,
)

logger = logging.getLogger("watchsync.client.clock")


class ClockOffsetEstimator:
    """
    Probes the arbiter in sampling runs and keeps `correction`, the value added
    to the local wall clock to approximate arbiter time.

    A run is `cycles` pairs of backward/forward probes, each probe preceded by
    `probe_delay_ms`. Replies arrive through handle_backward_response /
    handle_forward_response, which the connection calls from its receive loop
    while the run is sleeping.
    """

    def __init__(
        self,
        send: Callable[[str], Awaitable[None]],
        is_open: Callable[[], bool],
        cycles: int = 10,
        probe_delay_ms: int = 500,
        resync_interval_s: float = 120.0,
    ):
        self.send = send
        self.is_open = is_open
        self.cycles = cycles
        self.probe_delay_ms = probe_delay_ms
        self.resync_interval_s = resync_interval_s
        self.estimate = ClockEstimate()
        self.on_run_started: Optional[Callable[[], None]] = None
        self.on_run_finished: Optional[Callable[[bool], None]] = None
        self._run_task: Optional[asyncio.Task] = None
        self._periodic_task: Optional[asyncio.Task] = None

    @property
    def correction(self) -> float:
        return self.estimate.correction

    # ---- replies ----

    def handle_backward_response(self, payload: str) -> None:
        arbiter_time = parse_number(payload)
        correction = self.estimate.add_under_sample(arbiter_time)
        logger.debug("under_estimate=%.1f correction=%.1fms", self.estimate.under_estimate, correction)

    def handle_forward_response(self, payload: str) -> None:
        diff = parse_number(payload)
        correction = self.estimate.add_over_sample(diff)
        logger.debug("over_estimate=%.1f correction=%.1fms", self.estimate.over_estimate, correction)

    # ---- probes ----

    async def probe_backward(self) -> bool:
        if not self.is_open():
            return False
        await self.send(make_frame(CMD_TIME_SYNC_REQUEST_BACKWARD))
        return True

    async def probe_forward(self) -> bool:
        if not self.is_open():
            return False
        await self.send(make_frame(CMD_TIME_SYNC_REQUEST_FORWARD, now_ms()))
        return True

    async def run_sampling(self) -> bool:
        """One sampling run. Returns False if the channel closed part way."""
        logger.info("Starting time synchronization (%d cycles)", self.cycles)
        if self.on_run_started:
            self.on_run_started()
        delay = self.probe_delay_ms / 1000.0
        completed = True
        for i in range(self.cycles):
            if not self.is_open():
                completed = False
                break
            await asyncio.sleep(delay)
            if not await self.probe_backward():
                completed = False
                break
            await asyncio.sleep(delay)
            if not await self.probe_forward():
                completed = False
                break
            logger.debug("Time sync cycle %d/%d completed", i + 1, self.cycles)
        if completed:
            logger.info("Time synchronization completed; correction=%.1fms", self.correction)
        else:
            logger.warning("Channel closed during time sync; correction stays %.1fms", self.correction)
        if self.on_run_finished:
            self.on_run_finished(completed)
        return completed

    def request_sync(self) -> asyncio.Task:
        """Start a sampling run now, unless one is already in progress."""
        if self._run_task is None or self._run_task.done():
            self._run_task = asyncio.create_task(self.run_sampling())
        return self._run_task

    def start_periodic(self, initial_delay_ms: int = 100) -> None:
        self.stop()
        self._periodic_task = asyncio.create_task(self._periodic_loop(initial_delay_ms / 1000.0))

    def stop(self) -> None:
        for task in (self._periodic_task, self._run_task):
            if task and not task.done():
                task.cancel()
        self._periodic_task = None
        self._run_task = None

    async def _periodic_loop(self, initial_delay: float) -> None:
        await asyncio.sleep(initial_delay)
        while True:
            if self.is_open():
                await self.request_sync()
            await asyncio.sleep(self.resync_interval_s)
