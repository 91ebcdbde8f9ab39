"""Unit tests for region resolution.

The lookup service is replaced by a local aiohttp test server.
"""

from collections.abc import AsyncGenerator
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from voicepair.config import GeoConfig
from voicepair.geo import RegionResolver, client_address, is_public_address


class TestClientAddress:
    """Test address selection."""

    def test_forwarded_for_first_hop(self) -> None:
        assert client_address("10.0.0.1", "203.0.113.7, 10.0.0.2") == "203.0.113.7"

    def test_forwarded_for_untrusted(self) -> None:
        assert client_address("10.0.0.1", "203.0.113.7", trust_forwarded_for=False) == "10.0.0.1"

    def test_peer_address_fallback(self) -> None:
        assert client_address("198.51.100.4", None) == "198.51.100.4"
        assert client_address("198.51.100.4", " , ") == "198.51.100.4"
        assert client_address(None, None) is None


class TestIsPublicAddress:
    """Test which addresses are worth a lookup."""

    @pytest.mark.parametrize("address", ["8.8.8.8", "2001:4860:4860::8888", "::ffff:8.8.8.8"])
    def test_public(self, address: str) -> None:
        assert is_public_address(address) is True

    @pytest.mark.parametrize(
        "address", ["127.0.0.1", "10.1.2.3", "192.168.0.5", "::1", "::ffff:10.0.0.1", "nonsense"]
    )
    def test_not_public(self, address: str) -> None:
        assert is_public_address(address) is False


@pytest.fixture
async def lookup_server() -> AsyncGenerator[tuple[TestServer, list[str]], None]:
    """Fake lookup service recording requested addresses."""
    requested: list[str] = []
    responses: dict[str, Any] = {
        "8.8.8.8": {"status": "success", "countryCode": "us"},
        "1.1.1.1": {"status": "fail", "message": "reserved range"},
        "9.9.9.9": {"status": "success", "countryCode": 42},
        "4.4.4.4": {"status": "success", "countryCode": "NOT-A-REGION"},
    }

    async def handle(request: web.Request) -> web.Response:
        ip = request.match_info["ip"]
        requested.append(ip)
        if ip == "5.5.5.5":
            return web.Response(status=500)
        if ip == "6.6.6.6":
            return web.Response(text="not json")
        return web.json_response(responses.get(ip, {"status": "success", "countryCode": "DE"}))

    app = web.Application()
    app.router.add_get("/json/{ip}", handle)
    server = TestServer(app)
    await server.start_server()
    yield server, requested
    await server.close()


@pytest.fixture
async def resolver(
    lookup_server: tuple[TestServer, list[str]],
) -> AsyncGenerator[RegionResolver, None]:
    server, _ = lookup_server
    config = GeoConfig(
        enabled=True,
        lookup_url=f"http://{server.host}:{server.port}/json/{{ip}}",
        static_regions={"192.0.2.10": "fr"},
        cache_size=2,
    )
    resolver = RegionResolver(config)
    await resolver.start()
    yield resolver
    await resolver.close()


@pytest.mark.asyncio
async def test_lookup_success(resolver: RegionResolver) -> None:
    """Test a region code is upper-cased."""
    assert await resolver.resolve("8.8.8.8") == "US"


@pytest.mark.asyncio
async def test_lookup_uses_forwarded_for(
    resolver: RegionResolver, lookup_server: tuple[TestServer, list[str]]
) -> None:
    _, requested = lookup_server

    assert await resolver.resolve("127.0.0.1", "8.8.8.8, 10.0.0.1") == "US"
    assert requested == ["8.8.8.8"]


@pytest.mark.asyncio
@pytest.mark.parametrize("address", ["1.1.1.1", "9.9.9.9", "4.4.4.4", "5.5.5.5", "6.6.6.6"])
async def test_lookup_failures_use_default(resolver: RegionResolver, address: str) -> None:
    """Test failed lookups, HTTP errors and odd responses."""
    assert await resolver.resolve(address) == "unknown"


@pytest.mark.asyncio
async def test_private_addresses_skip_lookup(
    resolver: RegionResolver, lookup_server: tuple[TestServer, list[str]]
) -> None:
    _, requested = lookup_server

    assert await resolver.resolve("10.0.0.8") == "unknown"
    assert await resolver.resolve(None) == "unknown"
    assert requested == []


@pytest.mark.asyncio
async def test_static_regions(
    resolver: RegionResolver, lookup_server: tuple[TestServer, list[str]]
) -> None:
    _, requested = lookup_server

    assert await resolver.resolve("192.0.2.10") == "FR"
    assert requested == []


@pytest.mark.asyncio
async def test_results_cached_lru(
    resolver: RegionResolver, lookup_server: tuple[TestServer, list[str]]
) -> None:
    """Test repeat lookups are served from the bounded cache."""
    _, requested = lookup_server

    await resolver.resolve("8.8.8.8")
    await resolver.resolve("8.8.8.8")
    assert requested == ["8.8.8.8"]

    await resolver.resolve("2.2.2.2")
    await resolver.resolve("3.3.3.3")  # evicts 8.8.8.8
    await resolver.resolve("8.8.8.8")
    assert requested == ["8.8.8.8", "2.2.2.2", "3.3.3.3", "8.8.8.8"]


@pytest.mark.asyncio
async def test_failures_not_cached(
    resolver: RegionResolver, lookup_server: tuple[TestServer, list[str]]
) -> None:
    _, requested = lookup_server

    await resolver.resolve("5.5.5.5")
    await resolver.resolve("5.5.5.5")
    assert requested == ["5.5.5.5", "5.5.5.5"]


@pytest.mark.asyncio
async def test_unreachable_service() -> None:
    """Test connection errors map to the default region."""
    resolver = RegionResolver(
        GeoConfig(enabled=True, lookup_url="http://127.0.0.1:9/{ip}", timeout_s=0.5)
    )
    await resolver.start()
    try:
        assert await resolver.resolve("8.8.8.8") == "unknown"
    finally:
        await resolver.close()


@pytest.mark.asyncio
async def test_disabled_resolver() -> None:
    """Test lookups are skipped entirely when disabled."""
    resolver = RegionResolver(GeoConfig(enabled=False, default_region="ZZ"))
    await resolver.start()

    assert await resolver.resolve("8.8.8.8") == "ZZ"
    assert await resolver.lookup("8.8.8.8") is None
    await resolver.close()


@pytest.mark.asyncio
async def test_session_reopened_after_close(resolver: RegionResolver) -> None:
    """Test lookups after close open a fresh client session."""
    await resolver.close()
    await resolver.close()

    assert await resolver.resolve("8.8.4.4") == "DE"
