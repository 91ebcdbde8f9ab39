"""Unit tests for online count broadcasting."""

from tests.helpers.fakes import FakeConnection
from voicepair.presence import PresenceBroadcaster
from voicepair.registry import SessionRegistry


def test_broadcast_to_open_connections() -> None:
    """Test every open connection gets the same count."""
    registry = SessionRegistry()
    connections = [FakeConnection() for _ in range(3)]
    for connection in connections:
        registry.register(connection, "US")
    connections[2].open = False

    count = PresenceBroadcaster(registry).broadcast()

    assert count == 2
    for connection in connections[:2]:
        assert connection.messages() == [{"type": "online_count", "payload": {"count": 2}}]
    assert connections[2].messages() == []


def test_broadcast_counts_unavailable_sessions() -> None:
    """Test paired or idle sessions are still online."""
    registry = SessionRegistry()
    first = registry.register(FakeConnection(), "US")
    registry.register(FakeConnection(), "DE")
    registry.set_availability(first, False)

    assert PresenceBroadcaster(registry).broadcast() == 2


def test_broadcast_empty_registry() -> None:
    assert PresenceBroadcaster(SessionRegistry()).broadcast() == 0
