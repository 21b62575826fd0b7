"""watchsync client mDNS lookup of the arbiter."""
from __future__ import annotations
import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Optional

from zeroconf import ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

logger = logging.getLogger("watchsync.client.discovery")

SERVICE_TYPE = "_watchsync._tcp.local."


@dataclass
class DiscoveredArbiter:
    name: str
    host: str
    port: int


class DiscoveryBrowser:
    """Browses mDNS for watchsync arbiters."""

    def __init__(self) -> None:
        self._discovered: dict[str, DiscoveredArbiter] = {}
        self._found = asyncio.Event()
        self._zeroconf: Optional[AsyncZeroconf] = None
        self._browser: Optional[AsyncServiceBrowser] = None
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        self._zeroconf = AsyncZeroconf()
        self._browser = AsyncServiceBrowser(
            self._zeroconf.zeroconf, SERVICE_TYPE, handlers=[self._on_service_state_change]
        )
        logger.info("mDNS browser started")

    def _on_service_state_change(self, zeroconf: Zeroconf, service_type: str, name: str,
                                 state_change: ServiceStateChange) -> None:
        if state_change is ServiceStateChange.Added:
            task = asyncio.create_task(self._on_service_added(zeroconf, service_type, name))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _on_service_added(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, 3000):
            logger.warning("No service info for %s", name)
            return
        if not info.addresses or info.port is None:
            logger.warning("No addresses for service: %s", name)
            return
        arbiter = DiscoveredArbiter(name=name, host=socket.inet_ntoa(info.addresses[0]), port=info.port)
        self._discovered[name] = arbiter
        logger.info("Discovered arbiter %s @ %s:%d", name, arbiter.host, arbiter.port)
        self._found.set()

    async def wait_for_first(self, timeout_s: float) -> Optional[DiscoveredArbiter]:
        try:
            await asyncio.wait_for(self._found.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            return None
        return next(iter(self._discovered.values()))

    async def stop(self) -> None:
        if self._browser:
            await self._browser.async_cancel()
        if self._zeroconf:
            await self._zeroconf.async_close()
        self._browser = None
        self._zeroconf = None


async def find_arbiter(timeout_s: float = 5.0) -> Optional[DiscoveredArbiter]:
    """Return the first arbiter advertised on the local network, or None."""
    browser = DiscoveryBrowser()
    await browser.start()
    try:
        return await browser.wait_for_first(timeout_s)
    finally:
        await browser.stop()
