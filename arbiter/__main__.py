"""watchsync arbiter entry point."""
from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from arbiter.discovery import ArbiterAdvertiser
from arbiter.server import ArbiterServer
from arbiter.state import StateArbiter
from shared.logging_utils import AuditLog, setup_rotating_logger
from shared.settings import Settings, SettingsError, load_settings


def make_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="python -m arbiter", description="watchsync arbiter")
    p.add_argument("--settings", type=Path, default=None, help="Path to watchsync.toml")
    p.add_argument("--port", type=int, default=None, help="Override arbiter.port")
    p.add_argument("--no-advertise", action="store_true", help="Disable mDNS advertisement")
    return p


async def run(settings: Settings) -> None:
    log_dir = Path(settings.logging.dir)
    arbiter = StateArbiter(debounce_ms=settings.arbiter.debounce_ms, audit=AuditLog(log_dir))
    server = ArbiterServer(arbiter, settings.arbiter.host, settings.arbiter.port)
    await server.start()

    advertiser = None
    if settings.arbiter.advertise:
        advertiser = ArbiterAdvertiser(settings.arbiter.name, server.port)
        await advertiser.start()
    try:
        await asyncio.Future()
    finally:
        if advertiser:
            await advertiser.stop()
        await server.stop()


def main(argv=None) -> int:
    ns = make_parser().parse_args(argv)
    try:
        settings = load_settings(ns.settings)
    except SettingsError as e:
        print(e, file=sys.stderr)
        return 2
    if ns.port is not None:
        settings.arbiter.port = ns.port
    if ns.no_advertise:
        settings.arbiter.advertise = False
    errors = settings.validate()
    if errors:
        for err in errors:
            print(f"settings: {err}", file=sys.stderr)
        return 2

    setup_rotating_logger("watchsync", Path(settings.logging.dir), settings.logging.level)
    logger = logging.getLogger("watchsync.arbiter")
    logger.info("watchsync arbiter starting")
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("watchsync arbiter stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
