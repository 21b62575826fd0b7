"""watchsync player backend driving mpv via its JSON IPC socket."""
from __future__ import annotations
import asyncio
import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Any

from client.player import (
    PlayerBackend,
    EVENT_PLAY, EVENT_PAUSE, EVENT_SEEKED, EVENT_ENDED, EVENT_READY,
    EVENT_BUFFERING, EVENT_BUFFERING_DONE,
)

logger = logging.getLogger("watchsync.client.mpv")

OBSERVED_PROPERTIES = ("pause", "time-pos", "paused-for-cache", "eof-reached", "demuxer-cache-state")


class MpvPlayer(PlayerBackend):
    """
    Runs mpv as a subprocess and mirrors its observed properties locally, so
    position and paused state can be read without a round trip.
    """

    def __init__(self, media_path: str, media_root: str = ".", fullscreen: bool = False):
        super().__init__()
        self.media_root = Path(media_root)
        self.media_path = media_path
        self.fullscreen = fullscreen
        self._proc: Optional[subprocess.Popen] = None
        self._socket_path = str(Path(tempfile.gettempdir()) / f"watchsync_mpv_{os.getpid()}.sock")
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._pending: dict[int, asyncio.Future] = {}
        self._request_id = 0
        self._read_task: Optional[asyncio.Task] = None
        self._connected = False

        self._time_pos = 0.0
        self._paused = True
        self._ready = False
        self._seeking = False
        self._buffering = False
        self._ranges: list[tuple[float, float]] = []

    # ---- PlayerBackend ----

    @property
    def current_time(self) -> float:
        return self._time_pos

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def is_ready(self) -> bool:
        return self._ready

    def buffered_ranges(self) -> list[tuple[float, float]]:
        return list(self._ranges)

    async def play(self) -> None:
        await self._command("set_property", "pause", False)

    async def pause(self) -> None:
        await self._command("set_property", "pause", True)

    async def seek(self, target: float) -> None:
        self._time_pos = target
        await self._command("seek", target, "absolute+exact")

    async def reload(self) -> None:
        await self._command("set_property", "pause", True)
        await self.load_file(self.media_path)

    # ---- process / socket ----

    @property
    def absolute_media_path(self) -> str:
        return str((self.media_root / self.media_path).resolve())

    async def start(self) -> bool:
        """Start mpv with the media loaded and paused."""
        if os.path.exists(self._socket_path):
            os.unlink(self._socket_path)

        cmd = [
            "mpv",
            "--no-config",
            "--idle=yes",
            "--pause",
            "--no-terminal",
            "--keep-open=yes",
            f"--input-ipc-server={self._socket_path}",
        ]
        if self.fullscreen:
            cmd.append("--fs")
        try:
            self._proc = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
            logger.info("mpv started (pid=%d)", self._proc.pid)
        except FileNotFoundError:
            logger.error("mpv not found; install mpv to use client playback")
            return False

        for _ in range(50):
            await asyncio.sleep(0.1)
            if os.path.exists(self._socket_path):
                break
        else:
            logger.error("mpv IPC socket did not appear")
            return False

        await self._connect_socket()
        if not self._connected:
            return False
        for i, name in enumerate(OBSERVED_PROPERTIES, start=1):
            await self._command("observe_property", i, name)
        return await self.load_file(self.media_path)

    async def load_file(self, rel_path: str) -> bool:
        self.media_path = rel_path
        self._ready = False
        result = await self._command("loadfile", self.absolute_media_path, "replace")
        return result is not None and result.get("error") == "success"

    async def _connect_socket(self) -> None:
        try:
            self._reader, self._writer = await asyncio.open_unix_connection(self._socket_path)
            self._connected = True
            self._read_task = asyncio.create_task(self._read_loop())
            logger.info("Connected to mpv IPC socket")
        except OSError as e:
            logger.error("Failed to connect to mpv socket: %s", e)
            self._connected = False

    async def _read_loop(self) -> None:
        while self._connected and self._reader:
            line = await self._reader.readline()
            if not line:
                break
            try:
                data = json.loads(line.decode())
            except json.JSONDecodeError as e:
                logger.debug("mpv sent unparseable line: %s", e)
                continue
            if "event" in data:
                self.handle_event(data)
            elif "request_id" in data:
                fut = self._pending.pop(data["request_id"], None)
                if fut and not fut.done():
                    fut.set_result(data)
        self._connected = False
        logger.info("mpv IPC connection closed")

    def handle_event(self, data: dict) -> None:
        """Translate an mpv IPC event into local state and player events."""
        event = data.get("event")
        if event == "property-change":
            self._on_property(data.get("name"), data.get("data"))
        elif event == "start-file":
            self._ready = False
        elif event == "file-loaded":
            self._ready = True
            self.emit(EVENT_READY)
        elif event == "seek":
            self._seeking = True
        elif event == "playback-restart" and self._seeking:
            self._seeking = False
            self.emit(EVENT_SEEKED)

    def _on_property(self, name: Optional[str], value: Any) -> None:
        if name == "time-pos":
            if value is not None:
                self._time_pos = float(value)
        elif name == "pause":
            paused = bool(value)
            if paused != self._paused:
                self._paused = paused
                self.emit(EVENT_PAUSE if paused else EVENT_PLAY)
        elif name == "paused-for-cache":
            buffering = bool(value)
            if buffering != self._buffering:
                self._buffering = buffering
                self.emit(EVENT_BUFFERING if buffering else EVENT_BUFFERING_DONE)
        elif name == "eof-reached":
            if value:
                self.emit(EVENT_ENDED)
        elif name == "demuxer-cache-state":
            ranges = (value or {}).get("seekable-ranges", [])
            self._ranges = [(float(r["start"]), float(r["end"])) for r in ranges]

    async def _command(self, *args: Any) -> Optional[dict]:
        """Send a command to mpv and wait for its reply."""
        if not self._connected or not self._writer:
            return None
        self._request_id += 1
        req_id = self._request_id
        cmd = json.dumps({"command": list(args), "request_id": req_id}) + "\n"
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        try:
            self._writer.write(cmd.encode())
            await self._writer.drain()
            return await asyncio.wait_for(fut, timeout=3.0)
        except asyncio.TimeoutError:
            logger.warning("mpv command timed out: %s", args[0] if args else "")
            return None
        except OSError as e:
            logger.error("mpv command error: %s", e)
            return None
        finally:
            self._pending.pop(req_id, None)

    async def stop_subprocess(self) -> None:
        """Terminate mpv."""
        self._connected = False
        if self._read_task:
            self._read_task.cancel()
        if self._writer:
            self._writer.close()
        if self._proc:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=3)
            except subprocess.TimeoutExpired:
                self._proc.kill()
        if os.path.exists(self._socket_path):
            os.unlink(self._socket_path)
        logger.info("mpv stopped")

    @property
    def is_connected(self) -> bool:
        return self._connected
