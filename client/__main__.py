"""watchsync client entry point."""
from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from client.connection import ClientConnection
from client.discovery_browser import find_arbiter
from client.mpv_controller import MpvPlayer
from client.sync_status import STATUS_FAILED
from shared.logging_utils import setup_rotating_logger
from shared.settings import Settings, SettingsError, load_settings

logger = logging.getLogger("watchsync.client")

COMMANDS_HELP = "Commands: [enter] mark user interaction, r re-sync, q quit"


def make_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="python -m client", description="watchsync viewer")
    p.add_argument("--settings", type=Path, default=None, help="Path to watchsync.toml")
    p.add_argument("--host", default=None, help="Arbiter host (default: discover via mDNS)")
    p.add_argument("--port", type=int, default=None, help="Arbiter port")
    p.add_argument("--media", default=None, help="Media file, relative to playback.media_root")
    p.add_argument("--profile", default=None, help="Platform profile: desktop | constrained")
    p.add_argument("--discover-timeout", type=float, default=5.0, help="Seconds to wait for mDNS")
    p.add_argument("--fullscreen", action="store_true")
    return p


async def _read_commands(connection: ClientConnection) -> None:
    """Console commands; stdin is watched by the event loop (Unix only, like mpv IPC)."""
    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[str] = asyncio.Queue()
    loop.add_reader(sys.stdin, lambda: lines.put_nowait(sys.stdin.readline()))
    print(COMMANDS_HELP)
    try:
        while True:
            line = await lines.get()
            if not line:
                return
            cmd = line.strip().lower()
            if cmd == "q":
                await connection.disconnect()
                return
            if cmd == "r":
                await connection.resync()
            else:
                await connection.reconciler.notify_user_interaction()
    finally:
        loop.remove_reader(sys.stdin)


async def run(settings: Settings, host: str | None, port: int, discover_timeout: float,
              fullscreen: bool) -> int:
    if host is None:
        found = await find_arbiter(discover_timeout)
        if found is None:
            logger.error("No arbiter found on the local network; pass --host")
            return 1
        host, port = found.host, found.port

    player = MpvPlayer(settings.playback.media, settings.playback.media_root, fullscreen)
    if not await player.start():
        return 1
    connection = ClientConnection(player, settings)
    commands = asyncio.create_task(_read_commands(connection))
    try:
        await connection.run(host, port)
    finally:
        commands.cancel()
        connection.reconciler.stop()
        await player.stop_subprocess()
    return 1 if connection.status.status == STATUS_FAILED else 0


def main(argv=None) -> int:
    ns = make_parser().parse_args(argv)
    try:
        settings = load_settings(ns.settings)
    except SettingsError as e:
        print(e, file=sys.stderr)
        return 2
    if ns.media is not None:
        settings.playback.media = ns.media
    if ns.profile is not None:
        settings.playback.profile = ns.profile
    port = ns.port if ns.port is not None else settings.arbiter.port
    errors = settings.validate()
    if not settings.playback.media:
        errors.append("no media file given (playback.media or --media)")
    if errors:
        for err in errors:
            print(f"settings: {err}", file=sys.stderr)
        return 2

    setup_rotating_logger("watchsync", Path(settings.logging.dir), settings.logging.level)
    logger.info("watchsync client starting")
    try:
        return asyncio.run(run(settings, ns.host, port, ns.discover_timeout, ns.fullscreen))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
