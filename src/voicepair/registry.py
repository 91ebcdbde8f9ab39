"""In-memory registry of connected sessions.

Maps each session identifier to its connection handle and mutable matchmaking
attributes. Attribute accessors are tolerant of sessions that already went
away: disconnects race with message handling and must not crash it.

Thread-safety: This class is NOT thread-safe. All access goes through
:class:`voicepair.engine.PairingEngine`, which serializes it with one lock.
"""

import logging
import time
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from voicepair.errors import SessionNotFoundError
from voicepair.transport.base import Connection

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """Generate an opaque session identifier."""
    return uuid.uuid4().hex[:12]


@dataclass
class Session:
    """One connected client."""

    session_id: str
    connection: Connection
    region: str
    available: bool = True  # Eligible to be picked by someone else's find_partner
    auto_find: bool = False
    connected_at: float = field(default_factory=time.monotonic)

    @property
    def is_open(self) -> bool:
        return self.connection.is_open


class SessionRegistry:
    """Session identifier → session mapping."""

    def __init__(self, id_factory: Callable[[], str] = generate_session_id) -> None:
        """Initialize registry.

        Args:
            id_factory: Session identifier generator
        """
        self._id_factory = id_factory
        self._sessions: dict[str, Session] = {}
        # Identifiers are never reused within the process lifetime
        self._issued: set[str] = set()

    def register(self, connection: Connection, region: str) -> str:
        """Register a new session for a connection.

        Args:
            connection: Connection handle of the new client
            region: Region derived from the connection origin

        Returns:
            Fresh session identifier
        """
        session_id = self._id_factory()
        while session_id in self._issued:
            logger.warning("Session ID collision, regenerating", extra={"session_id": session_id})
            session_id = self._id_factory()

        self._issued.add(session_id)
        self._sessions[session_id] = Session(
            session_id=session_id,
            connection=connection,
            region=region,
        )
        return session_id

    def unregister(self, session_id: str) -> Session | None:
        """Remove a session.

        Returns:
            Removed session, or None if it was not registered
        """
        return self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        """Strict lookup.

        Raises:
            SessionNotFoundError: If the session is not registered
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    # === Attribute accessors ===

    def set_availability(self, session_id: str, available: bool) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.available = available

    def get_availability(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session.available if session is not None else False

    def set_auto_find(self, session_id: str, auto_find: bool) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.auto_find = auto_find

    def get_auto_find(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session.auto_find if session is not None else False

    def get_region(self, session_id: str) -> str | None:
        session = self._sessions.get(session_id)
        return session.region if session is not None else None

    def get_connection(self, session_id: str) -> Connection | None:
        session = self._sessions.get(session_id)
        return session.connection if session is not None else None

    # === Queries ===

    def available_sessions(self, exclude: str, region: str | None = None) -> list[str]:
        """List sessions that can be paired right now.

        Args:
            exclude: Session to leave out (the requester)
            region: Only include sessions from this region; None means any region

        Returns:
            Identifiers of available sessions with an open connection,
            in registration order
        """
        return [
            session.session_id
            for session in self._sessions.values()
            if session.available
            and session.session_id != exclude
            and session.is_open
            and (region is None or session.region == region)
        ]

    def open_connections(self) -> list[Connection]:
        return [s.connection for s in self._sessions.values() if s.is_open]

    def online_count(self) -> int:
        """Number of sessions whose connection is currently open."""
        return sum(1 for s in self._sessions.values() if s.is_open)

    def available_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.available and s.is_open)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
