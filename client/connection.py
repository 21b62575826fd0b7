"""watchsync client WebSocket connection to the arbiter."""
from __future__ import annotations
import asyncio
import logging
from typing import Optional

import websockets
from websockets.protocol import State

from client.clock_client import ClockOffsetEstimator
from client.player import PlayerBackend, PlatformProfile, get_profile
from client.reconciler import PlaybackReconciler
from client.sync_status import SyncStatusMonitor, STATUS_SYNCING, STATUS_FAILED
from shared.protocol import (
    PlaybackState, ProtocolError, parse_frame,
    CMD_TIME_SYNC_RESPONSE_BACKWARD, CMD_TIME_SYNC_RESPONSE_FORWARD,
    CMD_STATE_UPDATE_FROM_SERVER,
)
from shared.settings import Settings

logger = logging.getLogger("watchsync.client.connection")

NORMAL_CLOSURE = 1000


class ClientConnection:
    """
    Owns the channel to the arbiter and wires it to the clock estimator, the
    reconciler and the status monitor. Reconnects with capped exponential
    backoff after an abnormal close.
    """

    def __init__(self, player: PlayerBackend, settings: Optional[Settings] = None,
                 profile: Optional[PlatformProfile] = None):
        self.settings = settings or Settings()
        self.player = player
        self.profile = profile or get_profile(self.settings.playback.profile)
        self._ws = None
        self._running = False
        self._mismatch_task: Optional[asyncio.Task] = None

        clock_cfg = self.settings.clock
        self.clock = ClockOffsetEstimator(
            self._send, self.is_open,
            cycles=clock_cfg.cycles,
            probe_delay_ms=clock_cfg.probe_delay_ms,
            resync_interval_s=clock_cfg.resync_interval_s,
        )
        self.reconciler = PlaybackReconciler(
            player, self.clock, self._send, self.is_open,
            profile=self.profile,
            verify_delay_ms=self.settings.playback.verify_delay_ms,
        )
        self.status = SyncStatusMonitor(
            self.reconciler, self.is_open,
            interval_s=self.settings.playback.status_interval_s,
            stale_s=self.settings.playback.status_stale_s,
        )
        self.clock.on_run_started = self.status.sync_started
        self.clock.on_run_finished = self.status.sync_finished

        reconnect = self.settings.reconnect
        self.attempts = 0
        self.backoff_ms = reconnect.initial_ms

    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    async def _send(self, frame: str) -> None:
        if self._ws:
            try:
                await self._ws.send(frame)
            except websockets.exceptions.ConnectionClosed as e:
                logger.warning("Send error: %s", e)

    async def run(self, host: str, port: int) -> None:
        """Connect and keep reconnecting until closed normally or attempts run out."""
        uri = f"ws://{host}:{port}"
        reconnect = self.settings.reconnect
        self._running = True
        self.status.start()
        try:
            while self._running:
                closed_normally = await self.connect_once(uri)
                if closed_normally or not self._running:
                    break
                if self.attempts >= reconnect.max_attempts:
                    logger.error("Max reconnection attempts reached; cannot sync")
                    self.status.set_status(STATUS_FAILED)
                    break
                self.attempts += 1
                logger.info("Attempting to reconnect in %dms... (%d/%d)",
                            self.backoff_ms, self.attempts, reconnect.max_attempts)
                await asyncio.sleep(self.backoff_ms / 1000.0)
                self.backoff_ms = min(self.backoff_ms * 2, reconnect.max_ms)
        finally:
            self._running = False
            self.status.stop()

    async def connect_once(self, uri: str) -> bool:
        """One connection lifetime. Returns True if the channel closed normally (code 1000)."""
        logger.info("Connecting to %s", uri)
        try:
            async with websockets.connect(uri) as ws:
                self._on_open(ws)
                async for raw in ws:
                    try:
                        await self._handle_message(raw)
                    except ProtocolError as e:
                        logger.warning("Bad frame from arbiter: %s", e)
            logger.info("Disconnected from arbiter (code %s)", ws.close_code)
            return ws.close_code == NORMAL_CLOSURE or not self._running
        except (OSError, TimeoutError, websockets.exceptions.WebSocketException) as e:
            logger.warning("Connection lost: %s", e)
            return False
        finally:
            self._on_close()

    def _on_open(self, ws) -> None:
        self._ws = ws
        logger.info("Connected to arbiter")
        self.attempts = 0
        self.backoff_ms = self.settings.reconnect.initial_ms
        self.reconciler.reset_identity()
        self.status.set_status(STATUS_SYNCING)
        self.clock.start_periodic(self.settings.clock.initial_delay_ms)
        if self.profile.monitor_state_mismatch:
            self._mismatch_task = asyncio.create_task(self.reconciler.monitor_state_mismatch())

    def _on_close(self) -> None:
        self._ws = None
        self.clock.stop()
        self.reconciler.stop()
        if self._mismatch_task:
            self._mismatch_task.cancel()
            self._mismatch_task = None
        self.status.evaluate()

    async def disconnect(self) -> None:
        """Close the channel without reconnecting."""
        self._running = False
        if self._ws:
            await self._ws.close()

    async def resync(self) -> None:
        """Run a clock sampling run now and re-announce the local state."""
        logger.info("Manual re-sync requested")
        self.clock.request_sync()
        if self.is_open():
            await self.reconciler.send_proposal()

    async def _handle_message(self, raw) -> None:
        command, payload = parse_frame(raw)
        if command == CMD_TIME_SYNC_RESPONSE_BACKWARD:
            self.clock.handle_backward_response(payload)
        elif command == CMD_TIME_SYNC_RESPONSE_FORWARD:
            self.clock.handle_forward_response(payload)
        elif command == CMD_STATE_UPDATE_FROM_SERVER:
            await self.reconciler.apply_remote_state(PlaybackState.from_json(payload))
        else:
            logger.warning("Unknown command from arbiter: %s", command)
