"""Shared fakes for watchsync tests."""
import pytest

from client.player import PlayerBackend, PlayRefusedError


class FakePlayer(PlayerBackend):
    """In-memory player; records every call the reconciler makes."""

    def __init__(self, time=0.0, paused=True, ready=True, ranges=None, refuse_play=False):
        super().__init__()
        self.time = time
        self._paused = paused
        self.ready = ready
        self.ranges = ranges or []
        self.refuse_play = refuse_play
        self.calls = []

    @property
    def current_time(self):
        return self.time

    @property
    def paused(self):
        return self._paused

    @property
    def is_ready(self):
        return self.ready

    def buffered_ranges(self):
        return list(self.ranges)

    async def play(self):
        self.calls.append(("play",))
        if self.refuse_play:
            raise PlayRefusedError("NotAllowedError")
        self._paused = False

    async def pause(self):
        self.calls.append(("pause",))
        self._paused = True

    async def seek(self, target):
        self.calls.append(("seek", target))
        self.time = target

    async def reload(self):
        self.calls.append(("reload",))
        self.time = 0.0
        self._paused = True

    def seeks(self):
        return [c[1] for c in self.calls if c[0] == "seek"]


class FakeSession:
    """Arbiter-side session that just collects frames."""

    def __init__(self, client_uid, writable=True):
        self.client_uid = client_uid
        self.writable = writable
        self.sent = []

    @property
    def is_writable(self):
        return self.writable

    async def send(self, frame):
        self.sent.append(frame)


class FakeChannel:
    """Client-side outbound channel."""

    def __init__(self, open_=True):
        self.open = open_
        self.sent = []

    def is_open(self):
        return self.open

    async def send(self, frame):
        self.sent.append(frame)


@pytest.fixture
def make_player():
    return FakePlayer


@pytest.fixture
def make_session():
    return FakeSession


@pytest.fixture
def channel():
    return FakeChannel()
