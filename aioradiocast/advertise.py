"""Announce the stream endpoint on the local network over mDNS."""

from __future__ import annotations

import logging
from uuid import uuid4

from zeroconf import IPVersion, NonUniqueNameException
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

from aioradiocast.util import get_local_ip

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_radiocast._tcp.local."


class StreamAdvertiser:
    """
    Publishes one `_radiocast._tcp` record pointing players at the stream.

    The record carries the stream path as its `path` property, so a player only
    needs the resolved address and port to tune in.
    """

    def __init__(
        self,
        port: int,
        path: str,
        *,
        name: str | None = None,
        addresses: list[str] | None = None,
    ) -> None:
        """
        Prepare a record; nothing is published until start().

        Args:
            port: TCP port the HTTP server listens on.
            path: URL path of the stream endpoint.
            name: Instance name, a random "radiocast-xxxxxxxx" if None.
            addresses: IPv4 addresses to announce. Defaults to the interface
                used for outgoing traffic.
        """
        self.port = port
        self.path = path
        self.name = name or f"radiocast-{uuid4().hex[:8]}"
        self._addresses = addresses
        self._zeroconf: AsyncZeroconf | None = None
        self._info: AsyncServiceInfo | None = None

    @property
    def advertising(self) -> bool:
        """True while the record is published."""
        return self._info is not None

    def _build_info(self, addresses: list[str]) -> AsyncServiceInfo:
        return AsyncServiceInfo(
            type_=SERVICE_TYPE,
            name=f"{self.name}.{SERVICE_TYPE}",
            server=f"{self.name}.local.",
            parsed_addresses=addresses,
            port=self.port,
            properties={"path": self.path},
        )

    async def start(self) -> bool:
        """Publish the record; returns False if it could not be published."""
        if self._info is not None:
            return True
        if self._addresses:
            addresses = self._addresses
        elif local_ip := get_local_ip():
            addresses = [local_ip]
        else:
            logger.warning("No local address found, not advertising the stream")
            return False

        zeroconf = AsyncZeroconf(ip_version=IPVersion.V4Only)
        info = self._build_info(addresses)
        try:
            await zeroconf.async_register_service(info)
        except NonUniqueNameException:
            logger.error("Another radio named %s is already on the network", self.name)
            await zeroconf.async_close()
            return False
        self._zeroconf = zeroconf
        self._info = info
        logger.info("Advertising %s on %s port %d", self.path, ", ".join(addresses), self.port)
        return True

    async def stop(self) -> None:
        """Withdraw the record; a no-op when not advertising."""
        zeroconf, info = self._zeroconf, self._info
        self._zeroconf = None
        self._info = None
        if zeroconf is None:
            return
        try:
            if info is not None:
                await zeroconf.async_unregister_service(info)
        finally:
            await zeroconf.async_close()
        logger.debug("Stopped advertising %s", self.name)
