"""Unit tests for the session registry."""

import pytest

from tests.helpers.fakes import FakeConnection
from voicepair.errors import SessionNotFoundError
from voicepair.registry import SessionRegistry, generate_session_id


def sequential_ids(*ids: str):  # type: ignore[no-untyped-def]
    iterator = iter(ids)
    return lambda: next(iterator)


def test_generate_session_id_is_unique() -> None:
    """Test generated identifiers are opaque and distinct."""
    ids = {generate_session_id() for _ in range(1000)}
    assert len(ids) == 1000
    assert all(isinstance(i, str) and i for i in ids)


def test_register_and_lookup() -> None:
    """Test registering a connection."""
    registry = SessionRegistry(id_factory=sequential_ids("a"))
    connection = FakeConnection()

    session_id = registry.register(connection, "US")

    assert session_id == "a"
    assert session_id in registry
    assert len(registry) == 1
    session = registry.require("a")
    assert session.connection is connection
    assert session.region == "US"
    assert session.available is True
    assert session.auto_find is False


def test_register_redraws_on_collision() -> None:
    """Test identifiers are never reused, even after unregister."""
    registry = SessionRegistry(id_factory=sequential_ids("a", "a", "b"))

    first = registry.register(FakeConnection(), "US")
    registry.unregister(first)
    second = registry.register(FakeConnection(), "US")

    assert first == "a"
    assert second == "b"


def test_unregister() -> None:
    """Test unregistering returns the session once."""
    registry = SessionRegistry(id_factory=sequential_ids("a"))
    registry.register(FakeConnection(), "US")

    removed = registry.unregister("a")
    assert removed is not None
    assert removed.session_id == "a"
    assert registry.unregister("a") is None
    assert "a" not in registry


def test_require_unknown_session() -> None:
    """Test strict lookup of an unknown session."""
    registry = SessionRegistry()

    with pytest.raises(SessionNotFoundError) as exc_info:
        registry.require("ghost")

    assert exc_info.value.session_id == "ghost"
    assert isinstance(exc_info.value, KeyError)


def test_accessors_tolerate_missing_sessions() -> None:
    """Test attribute accessors on sessions that are gone."""
    registry = SessionRegistry()

    registry.set_availability("ghost", True)
    registry.set_auto_find("ghost", True)

    assert registry.get_availability("ghost") is False
    assert registry.get_auto_find("ghost") is False
    assert registry.get_region("ghost") is None
    assert registry.get_connection("ghost") is None
    assert registry.get("ghost") is None


def test_attribute_updates() -> None:
    """Test availability and auto-find updates."""
    registry = SessionRegistry(id_factory=sequential_ids("a"))
    registry.register(FakeConnection(), "US")

    registry.set_availability("a", False)
    registry.set_auto_find("a", True)

    assert registry.get_availability("a") is False
    assert registry.get_auto_find("a") is True


class TestAvailableSessions:
    """Test the candidate query used by matchmaking."""

    @pytest.fixture
    def registry(self) -> SessionRegistry:
        registry = SessionRegistry(id_factory=sequential_ids("a", "b", "c", "d", "e"))
        registry.register(FakeConnection(), "US")  # a
        registry.register(FakeConnection(), "DE")  # b
        registry.register(FakeConnection(), "US")  # c
        registry.register(FakeConnection(), "US")  # d
        registry.register(FakeConnection(), "DE")  # e
        return registry

    def test_region_filter(self, registry: SessionRegistry) -> None:
        assert registry.available_sessions(exclude="a", region="US") == ["c", "d"]
        assert registry.available_sessions(exclude="a", region="DE") == ["b", "e"]

    def test_no_region_means_everyone(self, registry: SessionRegistry) -> None:
        assert registry.available_sessions(exclude="a") == ["b", "c", "d", "e"]

    def test_excludes_unavailable(self, registry: SessionRegistry) -> None:
        registry.set_availability("c", False)
        assert registry.available_sessions(exclude="a", region="US") == ["d"]

    def test_excludes_closed_connections(self, registry: SessionRegistry) -> None:
        connection = registry.get_connection("d")
        assert isinstance(connection, FakeConnection)
        connection.open = False

        assert registry.available_sessions(exclude="a", region="US") == ["c"]

    def test_counts(self, registry: SessionRegistry) -> None:
        registry.set_availability("b", False)
        connection = registry.get_connection("e")
        assert isinstance(connection, FakeConnection)
        connection.open = False

        assert registry.online_count() == 4
        assert registry.available_count() == 3
        assert len(registry.open_connections()) == 4
        assert registry.session_ids() == ["a", "b", "c", "d", "e"]
