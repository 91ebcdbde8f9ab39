"""Best-effort region lookup from a connection's network origin.

Resolves a client address to a coarse region code (ISO country code) through
an HTTP JSON lookup service. Lookups never raise: private, loopback and
unparseable addresses, timeouts, HTTP errors and odd responses all map to the
configured default region.
"""

import asyncio
import ipaddress
import logging
from collections import OrderedDict
from typing import Any

import aiohttp

from voicepair.config import GeoConfig

logger = logging.getLogger(__name__)


def client_address(
    remote_address: str | None, forwarded_for: str | None, trust_forwarded_for: bool = True
) -> str | None:
    """Pick the address to geolocate.

    Args:
        remote_address: Socket peer address
        forwarded_for: Raw ``X-Forwarded-For`` header value
        trust_forwarded_for: Prefer the first forwarded hop over the peer address

    Returns:
        Address string, or None if nothing usable is available
    """
    if trust_forwarded_for and forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    return remote_address or None


def is_public_address(address: str) -> bool:
    """Check whether an address can be meaningfully geolocated."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False

    # IPv4-mapped IPv6 (::ffff:1.2.3.4) is what dual-stack sockets report
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    return ip.is_global


class RegionResolver:
    """Resolves client addresses to region codes.

    Holds one shared ``aiohttp.ClientSession`` between :meth:`start` and
    :meth:`close` and caches resolved addresses (LRU).
    """

    def __init__(self, config: GeoConfig | None = None) -> None:
        """Initialize resolver.

        Args:
            config: Region lookup configuration
        """
        self.config = config or GeoConfig()
        self._session: aiohttp.ClientSession | None = None
        self._cache: OrderedDict[str, str] = OrderedDict()

    async def start(self) -> None:
        """Open the HTTP client session (no-op when lookups are disabled)."""
        if not self.config.enabled:
            return
        if self._session is not None and not self._session.closed:
            return

        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.timeout_s)
        )
        logger.info("Region lookup enabled", extra={"url": self.config.lookup_url})

    async def close(self) -> None:
        """Close the HTTP client session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def resolve(self, remote_address: str | None, forwarded_for: str | None = None) -> str:
        """Resolve the region of a connection.

        Args:
            remote_address: Socket peer address
            forwarded_for: Raw ``X-Forwarded-For`` header value

        Returns:
            Region code, or the default region if undeterminable
        """
        default = self.config.default_region
        address = client_address(remote_address, forwarded_for, self.config.trust_forwarded_for)
        if address is None:
            return default

        if address in self.config.static_regions:
            return self.config.static_regions[address]

        if address in self._cache:
            self._cache.move_to_end(address)
            return self._cache[address]

        if not self.config.enabled or not is_public_address(address):
            return default

        region = await self.lookup(address)
        if region is None:
            return default

        self._remember(address, region)
        return region

    def _remember(self, address: str, region: str) -> None:
        if self.config.cache_size <= 0:
            return
        self._cache[address] = region
        self._cache.move_to_end(address)
        while len(self._cache) > self.config.cache_size:
            self._cache.popitem(last=False)

    async def lookup(self, address: str) -> str | None:
        """Query the lookup service for one address.

        Args:
            address: Public IP address

        Returns:
            Upper-case region code, or None on any failure
        """
        if self._session is None or self._session.closed:
            await self.start()
        if self._session is None:
            return None

        url = self.config.lookup_url.format(ip=address)
        try:
            async with self._session.get(url) as response:
                if response.status != 200:
                    logger.warning(
                        "Region lookup failed",
                        extra={"address": address, "status": response.status},
                    )
                    return None
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Region lookup error", extra={"address": address, "error": str(e)})
            return None

        return self._extract_region(data)

    def _extract_region(self, data: Any) -> str | None:
        if not isinstance(data, dict):
            return None
        if data.get("status") == "fail":
            return None

        region = data.get(self.config.region_field)
        if not isinstance(region, str):
            return None

        region = region.strip().upper()
        if not region or len(region) > 8:
            return None
        return region
