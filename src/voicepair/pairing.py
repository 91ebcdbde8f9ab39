"""Symmetric index of active pairings.

Every pairing is stored as two reciprocal entries. Both entries are written
and removed together, so ``partner_of(a) == b`` holds exactly when
``partner_of(b) == a``.
"""

import time


class PairingIndex:
    """Session → partner mapping.

    Thread-safety: This class is NOT thread-safe. Use under the engine lock.
    """

    def __init__(self) -> None:
        self._partners: dict[str, str] = {}
        self._paired_at: dict[str, float] = {}

    def pair(self, first: str, second: str) -> None:
        """Create a pairing between two unpaired sessions.

        Raises:
            ValueError: If the sessions are the same or either one is already paired
        """
        if first == second:
            raise ValueError(f"Cannot pair session with itself: {first}")
        if first in self._partners or second in self._partners:
            raise ValueError(f"Session already paired: {first} / {second}")

        now = time.monotonic()
        self._partners[first] = second
        self._partners[second] = first
        self._paired_at[first] = now
        self._paired_at[second] = now

    def unpair(self, session_id: str) -> str | None:
        """Remove the pairing of a session, both sides at once.

        Returns:
            Former partner identifier, or None if the session was not paired
        """
        partner_id = self._partners.pop(session_id, None)
        self._paired_at.pop(session_id, None)
        if partner_id is None:
            return None

        if self._partners.get(partner_id) == session_id:
            del self._partners[partner_id]
        self._paired_at.pop(partner_id, None)
        return partner_id

    def partner_of(self, session_id: str) -> str | None:
        return self._partners.get(session_id)

    def is_paired(self, session_id: str) -> bool:
        return session_id in self._partners

    def paired_duration(self, session_id: str) -> float | None:
        """Seconds since the session's current pairing was created."""
        started = self._paired_at.get(session_id)
        if started is None:
            return None
        return time.monotonic() - started

    def pairs(self) -> list[tuple[str, str]]:
        """List active pairings, each once."""
        seen: set[str] = set()
        result: list[tuple[str, str]] = []
        for first, second in self._partners.items():
            if first in seen:
                continue
            seen.update((first, second))
            result.append((first, second))
        return result

    def is_consistent(self) -> bool:
        """Check that every entry has its reciprocal."""
        return all(self._partners.get(b) == a for a, b in self._partners.items())

    def __len__(self) -> int:
        """Number of active pairings."""
        return len(self._partners) // 2

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._partners
