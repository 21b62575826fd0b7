"""Tests for proposal arbitration and fan-out."""
import json
import pytest
from arbiter.state import StateArbiter, Verdict
from shared.logging_utils import AuditLog
from shared.protocol import PlaybackState, parse_frame, CMD_STATE_UPDATE_FROM_SERVER

T0 = 1_700_000_000_000


def _arbiter(uid=None):
    arbiter = StateArbiter(debounce_ms=250)
    arbiter._state = PlaybackState(last_updated=T0 - 10_000, client_uid=uid)
    return arbiter


def _proposal(last_updated, uid, playing=False, video_timestamp=0.0):
    return PlaybackState(video_timestamp=video_timestamp, global_timestamp=last_updated,
                         playing=playing, last_updated=last_updated, client_uid=uid)


def _decode(frame):
    command, payload = parse_frame(frame)
    assert command == CMD_STATE_UPDATE_FROM_SERVER
    return PlaybackState.from_json(payload)


def test_accepts_fresh_proposal():
    arbiter = _arbiter(uid=5)
    p = _proposal(T0, uid=1)
    assert arbiter.propose(p, now=T0) is Verdict.ACCEPTED
    assert arbiter.state is p


def test_rejects_stale_proposal_from_any_origin():
    arbiter = _arbiter(uid=1)
    assert arbiter.propose(_proposal(T0, uid=1), now=T0) is Verdict.ACCEPTED
    assert arbiter.propose(_proposal(T0 - 1, uid=1), now=T0 + 5000) is Verdict.STALE
    assert arbiter.propose(_proposal(T0 - 1, uid=2), now=T0 + 5000) is Verdict.STALE
    assert arbiter.state.last_updated == T0


def test_debounces_other_origin_within_window():
    arbiter = _arbiter(uid=9)
    assert arbiter.propose(_proposal(T0, uid=1), now=T0) is Verdict.ACCEPTED
    assert arbiter.propose(_proposal(T0 + 100, uid=2), now=T0 + 100) is Verdict.DEBOUNCED
    assert arbiter.state.client_uid == 1


def test_same_origin_within_window_is_accepted():
    arbiter = _arbiter(uid=9)
    assert arbiter.propose(_proposal(T0, uid=1), now=T0) is Verdict.ACCEPTED
    follow_up = _proposal(T0 + 50, uid=1, playing=True)
    assert arbiter.propose(follow_up, now=T0 + 50) is Verdict.ACCEPTED
    assert arbiter.state is follow_up


def test_other_origin_after_window_is_accepted():
    arbiter = _arbiter(uid=9)
    arbiter.propose(_proposal(T0, uid=1), now=T0)
    assert arbiter.propose(_proposal(T0 + 300, uid=2), now=T0 + 300) is Verdict.ACCEPTED


def test_last_updated_never_decreases():
    arbiter = _arbiter(uid=0)
    seen = [arbiter.state.last_updated]
    sequence = [(T0, 1), (T0 + 100, 2), (T0 - 50, 1), (T0 + 400, 2), (T0 + 300, 1), (T0 + 900, 1)]
    for last_updated, uid in sequence:
        arbiter.propose(_proposal(last_updated, uid), now=last_updated + 20)
        seen.append(arbiter.state.last_updated)
    assert seen == sorted(seen)


def test_next_uid_is_never_reused():
    arbiter = StateArbiter()
    assert [arbiter.next_uid() for _ in range(3)] == [0, 1, 2]


@pytest.mark.asyncio
async def test_connect_pushes_state_tagged_with_new_uid(make_session):
    arbiter = StateArbiter()
    arbiter.start()
    try:
        session = make_session(arbiter.next_uid())
        await arbiter.connect(session)
        await arbiter.drain()
        assert arbiter.users_amount == 1
        assert len(session.sent) == 1
        pushed = _decode(session.sent[0])
        assert pushed.client_uid == session.client_uid
        assert arbiter.state.client_uid == session.client_uid
    finally:
        await arbiter.stop()


@pytest.mark.asyncio
async def test_accepted_state_is_broadcast_to_everyone_but_proposer(make_session):
    arbiter = StateArbiter(debounce_ms=0)
    arbiter.start()
    try:
        a, b, c = (make_session(arbiter.next_uid()) for _ in range(3))
        for s in (a, b, c):
            await arbiter.connect(s)
        await arbiter.drain()
        for s in (a, b, c):
            s.sent.clear()

        proposal = _proposal(arbiter.state.last_updated + 1, uid=a.client_uid, playing=True,
                             video_timestamp=33.0)
        await arbiter.submit(proposal, a)
        await arbiter.drain()

        assert a.sent == []
        for s in (b, c):
            assert [_decode(f) for f in s.sent] == [proposal]
    finally:
        await arbiter.stop()


@pytest.mark.asyncio
async def test_rejected_proposal_is_not_broadcast(make_session):
    arbiter = StateArbiter()
    arbiter.start()
    try:
        a, b = make_session(arbiter.next_uid()), make_session(arbiter.next_uid())
        await arbiter.connect(a)
        await arbiter.connect(b)
        await arbiter.drain()
        b.sent.clear()
        await arbiter.submit(_proposal(arbiter.state.last_updated - 1, uid=a.client_uid), a)
        await arbiter.drain()
        assert b.sent == []
    finally:
        await arbiter.stop()


@pytest.mark.asyncio
async def test_unwritable_session_is_skipped(make_session):
    arbiter = StateArbiter(debounce_ms=0)
    arbiter.start()
    try:
        a, b, c = (make_session(arbiter.next_uid()) for _ in range(3))
        for s in (a, b, c):
            await arbiter.connect(s)
        await arbiter.drain()
        b.writable = False
        b.sent.clear()
        c.sent.clear()
        await arbiter.submit(_proposal(arbiter.state.last_updated + 1, uid=a.client_uid), a)
        await arbiter.drain()
        assert b.sent == []
        assert len(c.sent) == 1
    finally:
        await arbiter.stop()


@pytest.mark.asyncio
async def test_disconnect_removes_session(make_session):
    arbiter = StateArbiter()
    arbiter.start()
    try:
        s = make_session(arbiter.next_uid())
        await arbiter.connect(s)
        await arbiter.drain()
        arbiter.disconnect(s)
        await arbiter.drain()
        assert arbiter.users_amount == 0
    finally:
        await arbiter.stop()


@pytest.mark.asyncio
async def test_disconnect_queued_behind_connect_leaves_no_session(make_session):
    arbiter = StateArbiter()
    arbiter.start()
    try:
        s = make_session(arbiter.next_uid())
        await arbiter.connect(s)
        arbiter.disconnect(s)
        await arbiter.drain()
        assert arbiter.users_amount == 0

        b = make_session(arbiter.next_uid())
        await arbiter.connect(b)
        await arbiter.drain()
        await arbiter.broadcast(arbiter.state)
        assert len(s.sent) == 1  # only the connect push
        assert arbiter.users_amount == 1
    finally:
        await arbiter.stop()


@pytest.mark.asyncio
async def test_proposals_are_audited(make_session, tmp_path):
    audit = AuditLog(tmp_path)
    arbiter = StateArbiter(debounce_ms=0, audit=audit)
    arbiter.start()
    try:
        a = make_session(arbiter.next_uid())
        await arbiter.connect(a)
        await arbiter.drain()
        await arbiter.submit(_proposal(arbiter.state.last_updated + 1, uid=a.client_uid), a)
        await arbiter.submit(_proposal(0, uid=a.client_uid), a)
        await arbiter.drain()
    finally:
        await arbiter.stop()
    records = [json.loads(line) for line in audit.current_file.read_text().splitlines()]
    assert [r["verdict"] for r in records] == ["accepted", "stale"]
    assert all(r["event"] == "proposal" for r in records)
