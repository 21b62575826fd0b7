"""Loopback test: a real arbiter server with two viewers."""
import asyncio
import socket
import pytest

from arbiter.server import ArbiterServer
from arbiter.state import StateArbiter
from client.connection import ClientConnection
from client.player import EVENT_PAUSE
from shared.settings import Settings


def _settings():
    settings = Settings()
    settings.clock.cycles = 2
    settings.clock.probe_delay_ms = 5
    settings.clock.initial_delay_ms = 0
    settings.playback.verify_delay_ms = 10
    settings.reconnect.max_attempts = 0
    return settings


async def _wait_for(predicate, timeout=3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_pause_propagates_to_peer(make_player):
    server = ArbiterServer(StateArbiter(), "127.0.0.1", 0)
    await server.start()
    player_a = make_player(time=10.0, paused=True)
    player_b = make_player(time=3.0, paused=False)
    conn_a = ClientConnection(player_a, _settings())
    conn_b = ClientConnection(player_b, _settings())
    runs = [asyncio.create_task(c.run("127.0.0.1", server.port)) for c in (conn_a, conn_b)]
    try:
        await _wait_for(lambda: conn_a.reconciler.client_uid is not None
                        and conn_b.reconciler.client_uid is not None)
        assert conn_a.reconciler.client_uid != conn_b.reconciler.client_uid
        assert server.arbiter.users_amount == 2
        await _wait_for(lambda: conn_a.clock.estimate.sample_count >= 4)
        # step outside the debounce window of the last connect
        await asyncio.sleep(0.3)

        await conn_a.reconciler.handle_player_event(EVENT_PAUSE)

        await _wait_for(lambda: player_b.paused and abs(player_b.time - 10.0) <= 0.01)
        assert server.arbiter.state.video_timestamp == 10.0
        assert server.arbiter.state.client_uid == conn_a.reconciler.client_uid
        assert player_a.calls == []
    finally:
        for c in (conn_a, conn_b):
            await c.disconnect()
        await asyncio.wait_for(asyncio.gather(*runs), timeout=3.0)
        await server.stop()


@pytest.mark.asyncio
async def test_reconnect_gives_up_after_max_attempts(make_player):
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        closed_port = s.getsockname()[1]
    settings = _settings()
    settings.reconnect.max_attempts = 2
    settings.reconnect.initial_ms = 10
    settings.reconnect.max_ms = 20
    conn = ClientConnection(make_player(), settings)
    await asyncio.wait_for(conn.run("127.0.0.1", closed_port), timeout=3.0)
    assert conn.attempts == 2
    assert conn.backoff_ms == 20
    assert conn.status.status == "failed"


@pytest.mark.asyncio
async def test_arbiter_shutdown_triggers_reconnect(make_player):
    server = ArbiterServer(StateArbiter(), "127.0.0.1", 0)
    await server.start()
    settings = _settings()
    settings.reconnect.max_attempts = 2
    settings.reconnect.initial_ms = 10
    settings.reconnect.max_ms = 20
    conn = ClientConnection(make_player(), settings)
    run = asyncio.create_task(conn.run("127.0.0.1", server.port))
    try:
        await _wait_for(conn.is_open)
    finally:
        # closes open channels with 1001 (going away)
        await server.stop()
    await asyncio.wait_for(run, timeout=3.0)
    assert conn.attempts == 2
    assert conn.status.status == "failed"
