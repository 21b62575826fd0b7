"""watchsync authoritative playback state and proposal arbitration."""
from __future__ import annotations
import asyncio
import logging
from enum import Enum
from typing import Optional, Protocol

from shared.logging_utils import AuditLog
from shared.protocol import (
    PlaybackState, make_frame, now_ms,
    CMD_STATE_UPDATE_FROM_SERVER,
)

logger = logging.getLogger("watchsync.arbiter.state")

DEFAULT_DEBOUNCE_MS = 250


class Session(Protocol):
    client_uid: int

    @property
    def is_writable(self) -> bool: ...

    async def send(self, frame: str) -> None: ...


class Verdict(str, Enum):
    ACCEPTED = "accepted"
    STALE = "stale"
    DEBOUNCED = "debounced"


class StateArbiter:
    """
    Owns the single authoritative PlaybackState.

    All mutations (connects, disconnects, proposals) go through one inbox consumed by
    a single task, so accept-then-broadcast for one message completes before
    the next message is looked at.
    """

    def __init__(self, debounce_ms: int = DEFAULT_DEBOUNCE_MS, audit: Optional[AuditLog] = None):
        self.debounce_ms = debounce_ms
        self.audit = audit
        self._state = PlaybackState(last_updated=now_ms())
        self._sessions: dict[int, Session] = {}
        self._next_uid = 0
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def users_amount(self) -> int:
        return len(self._sessions)

    def next_uid(self) -> int:
        """Hand out a client uid. Never reused for the life of the arbiter."""
        uid = self._next_uid
        self._next_uid += 1
        return uid

    # ---- decision ----

    def propose(self, new_state: PlaybackState, now: Optional[int] = None) -> Verdict:
        """Apply the acceptance rules and replace the state on accept."""
        if now is None:
            now = now_ms()
        current = self._state
        if new_state.last_updated < current.last_updated:
            return Verdict.STALE
        too_soon = (now - current.last_updated) < self.debounce_ms
        other_origin = new_state.client_uid != current.client_uid
        if too_soon and other_origin:
            return Verdict.DEBOUNCED
        self._state = new_state
        return Verdict.ACCEPTED

    # ---- actor loop ----

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def connect(self, session: Session) -> None:
        await self._inbox.put(("connect", session, None))

    async def submit(self, new_state: PlaybackState, proposer: Session) -> None:
        await self._inbox.put(("propose", proposer, new_state))

    def disconnect(self, session: Session) -> None:
        self._inbox.put_nowait(("disconnect", session, None))

    async def drain(self) -> None:
        """Wait until every queued message has been handled."""
        await self._inbox.join()

    async def _run(self) -> None:
        while True:
            kind, session, payload = await self._inbox.get()
            try:
                if kind == "connect":
                    await self._handle_connect(session)
                elif kind == "disconnect":
                    self._handle_disconnect(session)
                else:
                    await self._handle_proposal(payload, session)
            except Exception:
                logger.exception("Error handling %s from client %s", kind, session.client_uid)
            finally:
                self._inbox.task_done()

    async def _handle_connect(self, session: Session) -> None:
        self._sessions[session.client_uid] = session
        self._state = self._state.with_uid(session.client_uid)
        logger.info("Client %d connected. Amount of users: %d",
                    session.client_uid, self.users_amount)
        await session.send(make_frame(CMD_STATE_UPDATE_FROM_SERVER, self._state.to_dict()))

    def _handle_disconnect(self, session: Session) -> None:
        if self._sessions.get(session.client_uid) is session:
            del self._sessions[session.client_uid]
        logger.info("Client %d disconnected. Amount of users: %d",
                    session.client_uid, self.users_amount)

    async def _handle_proposal(self, new_state: PlaybackState, proposer: Session) -> None:
        verdict = self.propose(new_state)
        if self.audit:
            self.audit.write(
                "proposal", verdict=verdict.value, session=proposer.client_uid,
                state=new_state.to_dict(),
            )
        if verdict is not Verdict.ACCEPTED:
            logger.debug("Dropped %s proposal from client %d (last_updated=%d)",
                         verdict.value, proposer.client_uid, new_state.last_updated)
            return
        logger.info("Accepted state from client %d: playing=%s video_timestamp=%.3f",
                    proposer.client_uid, new_state.playing, new_state.video_timestamp)
        await self.broadcast(new_state, exclude=proposer)

    async def broadcast(self, state: PlaybackState, exclude: Optional[Session] = None) -> None:
        """Best-effort fan-out; sessions that are not writable are skipped."""
        frame = make_frame(CMD_STATE_UPDATE_FROM_SERVER, state.to_dict())
        targets = []
        for session in list(self._sessions.values()):
            if session is exclude:
                continue
            if not session.is_writable:
                logger.debug("Skipping client %d: channel not writable", session.client_uid)
                continue
            targets.append(session.send(frame))
        if targets:
            await asyncio.gather(*targets)
