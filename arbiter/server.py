"""watchsync arbiter WebSocket server."""
from __future__ import annotations
import logging
from typing import Optional

import websockets
from websockets.protocol import State

from arbiter.state import StateArbiter
from shared.protocol import (
    PlaybackState, ProtocolError, make_frame, parse_frame, parse_number, now_ms,
    CMD_TIME_SYNC_REQUEST_BACKWARD, CMD_TIME_SYNC_REQUEST_FORWARD,
    CMD_STATE_UPDATE_FROM_CLIENT,
    CMD_TIME_SYNC_RESPONSE_BACKWARD, CMD_TIME_SYNC_RESPONSE_FORWARD,
)

logger = logging.getLogger("watchsync.arbiter.server")

DEFAULT_PORT = 9430


class ArbiterSession:
    """One connected viewer."""

    def __init__(self, ws, client_uid: int):
        self.ws = ws
        self.client_uid = client_uid
        self.remote = ws.remote_address

    @property
    def is_writable(self) -> bool:
        return self.ws.state is State.OPEN

    async def send(self, frame: str) -> None:
        try:
            await self.ws.send(frame)
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning("Failed to send to client %d: %s", self.client_uid, e)


class ArbiterServer:
    """
    Accepts viewer connections, answers clock probes directly and hands state
    proposals to the StateArbiter.
    """

    def __init__(self, arbiter: StateArbiter, host: str = "0.0.0.0", port: int = DEFAULT_PORT):
        self.arbiter = arbiter
        self.host = host
        self.port = port
        self._ws_server = None

    async def start(self) -> None:
        self.arbiter.start()
        self._ws_server = await websockets.serve(self._handle_client, self.host, self.port)
        if self.port == 0:
            self.port = next(iter(self._ws_server.sockets)).getsockname()[1]
        logger.info("Arbiter listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self._ws_server:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None
        await self.arbiter.stop()

    async def _handle_client(self, ws) -> None:
        session = ArbiterSession(ws, self.arbiter.next_uid())
        logger.debug("Connection from %s assigned uid %d", session.remote, session.client_uid)
        await self.arbiter.connect(session)
        try:
            async for raw in ws:
                try:
                    await self._handle_message(session, raw)
                except ProtocolError as e:
                    logger.warning("Bad frame from client %d: %s", session.client_uid, e)
        except websockets.exceptions.ConnectionClosedError as e:
            logger.info("Connection to client %d lost: %s", session.client_uid, e)
        finally:
            self.arbiter.disconnect(session)

    async def _handle_message(self, session: ArbiterSession, raw) -> None:
        command, payload = parse_frame(raw)
        if command == CMD_TIME_SYNC_REQUEST_BACKWARD:
            await session.send(make_frame(CMD_TIME_SYNC_RESPONSE_BACKWARD, now_ms()))
        elif command == CMD_TIME_SYNC_REQUEST_FORWARD:
            client_time = parse_number(payload)
            diff = now_ms() - client_time
            if diff == int(diff):
                diff = int(diff)
            await session.send(make_frame(CMD_TIME_SYNC_RESPONSE_FORWARD, diff))
        elif command == CMD_STATE_UPDATE_FROM_CLIENT:
            await self.arbiter.submit(PlaybackState.from_json(payload), session)
        else:
            logger.warning("Unknown command from client %d: %s", session.client_uid, command)
