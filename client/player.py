"""watchsync local media player capability interface and platform profiles."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger("watchsync.client.player")

# ---- Player events ----
EVENT_PLAY = "play"
EVENT_PAUSE = "pause"
EVENT_SEEKED = "seeked"
EVENT_ENDED = "ended"
EVENT_READY = "ready"  # metadata loaded / can play
EVENT_BUFFERING = "buffering"
EVENT_BUFFERING_DONE = "buffering_done"

# Events that describe a playback-state change worth proposing
STATE_EVENTS = {EVENT_PLAY, EVENT_PAUSE, EVENT_SEEKED, EVENT_ENDED}


class PlayRefusedError(Exception):
    """The player refused to start (e.g. no user gesture seen yet)."""


@dataclass(frozen=True)
class PlatformProfile:
    name: str
    playing_threshold_s: float
    paused_threshold_s: float
    skip_updates_while_buffering: bool = False
    seek_within_buffered_only: bool = False
    requires_user_gesture_for_play: bool = False
    monitor_state_mismatch: bool = False

    def threshold(self, playing: bool) -> float:
        return self.playing_threshold_s if playing else self.paused_threshold_s


DESKTOP = PlatformProfile("desktop", playing_threshold_s=1.0, paused_threshold_s=0.01)
CONSTRAINED = PlatformProfile(
    "constrained",
    playing_threshold_s=2.5,
    paused_threshold_s=0.5,
    skip_updates_while_buffering=True,
    seek_within_buffered_only=True,
    requires_user_gesture_for_play=True,
    monitor_state_mismatch=True,
)

PROFILES = {p.name: p for p in (DESKTOP, CONSTRAINED)}


def get_profile(name: str) -> PlatformProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(f"Unknown platform profile: {name}") from None


class PlayerBackend:
    """
    What the reconciler needs from a local player.

    Backends report player events by calling ``self.emit(event)``; the
    reconciler installs itself as the listener.
    """

    def __init__(self) -> None:
        self.listener: Optional[Callable[[str], None]] = None

    def emit(self, event: str) -> None:
        logger.debug("Player event: %s", event)
        if self.listener:
            self.listener(event)

    @property
    def current_time(self) -> float:
        raise NotImplementedError

    @property
    def paused(self) -> bool:
        raise NotImplementedError

    @property
    def is_ready(self) -> bool:
        """True once metadata is loaded and seeking is possible at all."""
        raise NotImplementedError

    def buffered_ranges(self) -> list[tuple[float, float]]:
        return []

    def can_seek_to(self, target: float) -> bool:
        ranges = self.buffered_ranges()
        if not ranges:
            return True
        return any(start <= target <= end for start, end in ranges)

    async def play(self) -> None:
        raise NotImplementedError

    async def pause(self) -> None:
        raise NotImplementedError

    async def seek(self, target: float) -> None:
        raise NotImplementedError

    async def reload(self) -> None:
        """Reload the media and rewind to the start, paused."""
        raise NotImplementedError
