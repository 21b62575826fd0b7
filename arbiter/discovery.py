"""watchsync arbiter advertisement via mDNS/zeroconf."""
from __future__ import annotations
import logging
import socket
from typing import Optional

from zeroconf import NonUniqueNameException, ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

logger = logging.getLogger("watchsync.arbiter.discovery")

SERVICE_TYPE = "_watchsync._tcp.local."


def _local_ip() -> str:
    """Best guess at the LAN address other hosts can reach."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        try:
            s.connect(("10.255.255.255", 1))
            return s.getsockname()[0]
        except OSError:
            return "127.0.0.1"


class ArbiterAdvertiser:
    """Advertises the arbiter via mDNS so viewers can find it without a host name."""

    def __init__(self, name: str, port: int):
        self.name = name
        self.port = port
        self._zeroconf: Optional[AsyncZeroconf] = None
        self._info: Optional[ServiceInfo] = None

    def build_info(self, ip: str) -> ServiceInfo:
        return ServiceInfo(
            SERVICE_TYPE,
            f"{self.name}-{socket.gethostname()}.{SERVICE_TYPE}",
            addresses=[socket.inet_aton(ip)],
            port=self.port,
            properties={b"name": self.name.encode(), b"version": b"1"},
        )

    async def start(self) -> bool:
        try:
            ip = _local_ip()
            self._info = self.build_info(ip)
            self._zeroconf = AsyncZeroconf()
            await self._zeroconf.async_register_service(self._info)
            logger.info("mDNS advertisement started on %s:%d", ip, self.port)
            return True
        except (OSError, NonUniqueNameException) as e:
            logger.warning("Failed to start mDNS: %s", e)
            return False

    async def stop(self) -> None:
        if self._zeroconf and self._info:
            await self._zeroconf.async_unregister_service(self._info)
            await self._zeroconf.async_close()
        self._zeroconf = None
        self._info = None
