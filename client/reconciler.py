"""watchsync playback reconciliation: authoritative state in, local player actions out."""
from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from client.clock_client import ClockOffsetEstimator
from client.player import (
    PlayerBackend, PlatformProfile, PlayRefusedError, DESKTOP,
    EVENT_PLAY, EVENT_PAUSE, EVENT_SEEKED, EVENT_ENDED, EVENT_READY,
    EVENT_BUFFERING, EVENT_BUFFERING_DONE, STATE_EVENTS,
)
from shared.protocol import (
    PlaybackState, make_frame, now_ms,
    CMD_STATE_UPDATE_FROM_CLIENT,
)

logger = logging.getLogger("watchsync.client.reconciler")

LOCAL_PLAYING = "playing"
LOCAL_PAUSED = "paused"

# Own actions whose player event never showed up are forgotten after this long
ORIGIN_TAG_TTL_S = 2.0


@dataclass
class OriginTag:
    """Marks the player event a programmatic action is expected to produce."""
    event: str
    issued_at: float = field(default_factory=time.monotonic)

    @property
    def expired(self) -> bool:
        return time.monotonic() - self.issued_at > ORIGIN_TAG_TTL_S


@dataclass
class LocalPlaybackView:
    local_video_state: str = LOCAL_PAUSED
    is_buffering: bool = False
    has_user_interaction: bool = False
    pending_seek: Optional[float] = None
    pending_play: bool = False
    own_actions: list[OriginTag] = field(default_factory=list)

    @property
    def playing(self) -> bool:
        return self.local_video_state == LOCAL_PLAYING


class PlaybackReconciler:
    """
    Applies authoritative states from the arbiter to the local player and turns
    user-driven player events into proposals.

    Every play/pause/seek issued here leaves an OriginTag; the matching player
    event is swallowed instead of being proposed back to the arbiter.
    """

    def __init__(
        self,
        player: PlayerBackend,
        clock: ClockOffsetEstimator,
        send: Callable[[str], Awaitable[None]],
        is_open: Callable[[], bool],
        profile: PlatformProfile = DESKTOP,
        verify_delay_ms: int = 100,
    ):
        self.player = player
        self.clock = clock
        self.send = send
        self.is_open = is_open
        self.profile = profile
        self.verify_delay_ms = verify_delay_ms
        self.view = LocalPlaybackView()
        self.client_uid: Optional[int] = None
        self.target: Optional[PlaybackState] = None
        self.gap: float = 0.0
        self.last_activity: float = 0.0  # monotonic time of last update in or out
        self._verify_task: Optional[asyncio.Task] = None
        self._event_tasks: set[asyncio.Task] = set()
        player.listener = self.on_player_event

    def corrected_now_ms(self) -> float:
        return now_ms() + self.clock.correction

    def reset_identity(self) -> None:
        """Forget the arbiter-assigned uid; the next pushed state re-assigns it."""
        self.client_uid = None

    # ---- inbound ----

    def projected_time(self, state: PlaybackState) -> float:
        if state.playing:
            return (self.corrected_now_ms() - state.global_timestamp) / 1000 + state.video_timestamp
        return state.video_timestamp

    async def apply_remote_state(self, state: PlaybackState) -> bool:
        """Reconcile the local player to `state`. Returns False if the state was ignored."""
        if self.client_uid is None:
            self.client_uid = state.client_uid
            logger.info("Assigned client uid: %s", self.client_uid)

        if state.client_uid == self.client_uid:
            logger.debug("Ignoring update from own client")
            return False

        if self.view.is_buffering and self.profile.skip_updates_while_buffering:
            logger.info("Skipping sync update while buffering")
            return False

        self.target = state
        proposed = self.projected_time(state)
        self.gap = proposed - self.player.current_time
        self.last_activity = time.monotonic()
        logger.info("Received state: playing=%s video_timestamp=%.3f gap=%.3fs",
                    state.playing, state.video_timestamp, self.gap)

        if state.playing and self.player.paused:
            await self.attempt_play()
        elif not state.playing and not self.player.paused:
            await self.attempt_pause()

        threshold = self.profile.threshold(state.playing)
        if abs(self.gap) > threshold:
            logger.info("Gap %.3fs exceeds threshold %.3fs, attempting seek", abs(self.gap), threshold)
            await self.attempt_seek(proposed)

        self._schedule_verify(state.playing)
        return True

    def _schedule_verify(self, should_play: bool) -> None:
        if self._verify_task and not self._verify_task.done():
            self._verify_task.cancel()
        self._verify_task = asyncio.create_task(self._verify_later(should_play))

    async def _verify_later(self, should_play: bool) -> None:
        await asyncio.sleep(self.verify_delay_ms / 1000.0)
        await self.force_state(should_play)

    async def force_state(self, should_play: bool) -> None:
        """Re-issue play/pause if the player did not end up where it should be."""
        if should_play and self.player.paused:
            logger.info("Should be playing but player is paused, retrying play")
            await self.attempt_play()
        elif not should_play and not self.player.paused:
            logger.info("Should be paused but player is playing, retrying pause")
            await self.attempt_pause()

    # ---- player actions ----

    def _tag(self, event: str) -> OriginTag:
        tag = OriginTag(event)
        self.view.own_actions.append(tag)
        return tag

    def _untag(self, tag: OriginTag) -> None:
        if tag in self.view.own_actions:
            self.view.own_actions.remove(tag)

    def _consume_origin(self, event: str) -> bool:
        """True if `event` was caused by one of our own actions."""
        self.view.own_actions = [t for t in self.view.own_actions if not t.expired]
        for tag in self.view.own_actions:
            if tag.event == event:
                self.view.own_actions.remove(tag)
                return True
        return False

    async def attempt_play(self) -> bool:
        if self.profile.requires_user_gesture_for_play and not self.view.has_user_interaction:
            logger.info("Play held until the user interacts with the player")
            self.view.pending_play = True
            return False
        tag = self._tag(EVENT_PLAY)
        self.view.local_video_state = LOCAL_PLAYING
        try:
            await self.player.play()
        except PlayRefusedError as e:
            self._untag(tag)
            self.view.local_video_state = LOCAL_PAUSED
            self.view.pending_play = True
            logger.warning("Play refused by player: %s", e)
            return False
        self.view.pending_play = False
        return True

    async def attempt_pause(self) -> bool:
        self._tag(EVENT_PAUSE)
        self.view.local_video_state = LOCAL_PAUSED
        self.view.pending_play = False
        await self.player.pause()
        return True

    async def attempt_seek(self, target: float) -> bool:
        target = max(0.0, target)
        if not self.player.is_ready:
            logger.info("Player not ready for seeking, queuing seek to %.3f", target)
            self.view.pending_seek = target
            return False
        if self.profile.seek_within_buffered_only and not self.player.can_seek_to(target):
            logger.info("Target %.3f not in a buffered range, dropping seek", target)
            return False
        logger.info("Seeking from %.3f to %.3f", self.player.current_time, target)
        self._tag(EVENT_SEEKED)
        await self.player.seek(target)
        return True

    async def notify_user_interaction(self) -> None:
        """The user touched the player; release a play held by autoplay gating."""
        first = not self.view.has_user_interaction
        self.view.has_user_interaction = True
        if first:
            logger.info("User interaction detected")
        if self.view.pending_play and self.target is not None and self.target.playing:
            await self.attempt_play()

    # ---- outbound ----

    def on_player_event(self, event: str) -> None:
        """Listener installed on the player backend."""
        task = asyncio.get_running_loop().create_task(self.handle_player_event(event))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    async def handle_player_event(self, event: str) -> None:
        if event == EVENT_READY:
            if self.view.pending_seek is not None:
                target, self.view.pending_seek = self.view.pending_seek, None
                await self.attempt_seek(target)
            return
        if event == EVENT_BUFFERING:
            self.view.is_buffering = True
            return
        if event == EVENT_BUFFERING_DONE:
            self.view.is_buffering = False
            return
        if event not in STATE_EVENTS:
            return

        if self._consume_origin(event):
            logger.debug("Ignoring programmatically triggered %s event", event)
            return

        video_timestamp = self.player.current_time
        if event == EVENT_PLAY:
            self.view.local_video_state = LOCAL_PLAYING
        elif event == EVENT_PAUSE:
            self.view.local_video_state = LOCAL_PAUSED
        elif event == EVENT_ENDED:
            logger.info("Media ended, rewinding to start")
            self.view.local_video_state = LOCAL_PAUSED
            await self.player.reload()
            video_timestamp = 0.0
        logger.info("Video event: %s, local state: %s", event, self.view.local_video_state)
        await self.send_proposal(video_timestamp)

    def build_proposal(self, video_timestamp: Optional[float] = None) -> PlaybackState:
        if video_timestamp is None:
            video_timestamp = self.player.current_time
        stamp = int(self.corrected_now_ms())
        return PlaybackState(
            video_timestamp=video_timestamp,
            last_updated=stamp,
            playing=self.view.playing,
            global_timestamp=stamp,
            client_uid=self.client_uid,
        )

    async def send_proposal(self, video_timestamp: Optional[float] = None) -> Optional[PlaybackState]:
        """Send the local state to the arbiter; skipped when the channel is down."""
        if not self.is_open():
            logger.warning("Channel not open, cannot send state update")
            return None
        proposal = self.build_proposal(video_timestamp)
        await self.send(make_frame(CMD_STATE_UPDATE_FROM_CLIENT, proposal.to_dict()))
        self.last_activity = time.monotonic()
        logger.debug("State update sent: %s", proposal)
        return proposal

    # ---- monitors ----

    def check_state_mismatch(self) -> bool:
        """Realign the tracked state with the player's. Returns True on mismatch."""
        actual = LOCAL_PAUSED if self.player.paused else LOCAL_PLAYING
        if actual != self.view.local_video_state:
            logger.warning("State mismatch detected: local=%s, actual=%s",
                           self.view.local_video_state, actual)
            self.view.local_video_state = actual
            return True
        return False

    async def monitor_state_mismatch(self, interval_s: float = 1.0) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self.check_state_mismatch()

    def stop(self) -> None:
        if self._verify_task and not self._verify_task.done():
            self._verify_task.cancel()
        self._verify_task = None
