"""Per-partner chat history.

Each session owns one :class:`ChatEntry` per partner it has ever been paired
with. Entries are created on first pairing and keep accumulating across later
pairings with the same partner; they outlive the partner's connection and are
never deleted while the process runs.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from voicepair.transport.protocol import (
    ChatEntryPayload,
    ChatRecordPayload,
    Direction,
)


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class ChatRecord:
    """One chat line as seen from the owning session."""

    text: str
    direction: Direction  # "me" if the owner sent it, "partner" otherwise
    timestamp: int

    def to_payload(self) -> ChatRecordPayload:
        return ChatRecordPayload(text=self.text, from_=self.direction, timestamp=self.timestamp)


@dataclass
class ChatEntry:
    """Cumulative log between an owner session and one partner."""

    session_id: str
    partner_id: str
    last_interaction_time: int
    messages: list[ChatRecord] = field(default_factory=list)

    def to_payload(self) -> ChatEntryPayload:
        return ChatEntryPayload(
            session_id=self.session_id,
            partner_id=self.partner_id,
            last_interaction_time=self.last_interaction_time,
            messages=[record.to_payload() for record in self.messages],
        )


class ChatHistoryStore:
    """Chat entries keyed by (owner session, partner session).

    Thread-safety: This class is NOT thread-safe. Use under the engine lock.
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        """Initialize store.

        Args:
            clock: Epoch-millisecond time source
        """
        self._clock = clock
        self._entries: dict[str, dict[str, ChatEntry]] = {}

    def _interaction_time(self, entry: ChatEntry | None) -> int:
        # Strictly increasing per entry, even within one clock tick
        now = self._clock()
        if entry is not None and now <= entry.last_interaction_time:
            return entry.last_interaction_time + 1
        return now

    def touch(self, owner_id: str, partner_id: str) -> ChatEntry:
        """Create the entry if needed and record an interaction.

        Args:
            owner_id: Session owning the entry
            partner_id: Partner the entry is about

        Returns:
            The (possibly new) entry
        """
        owned = self._entries.setdefault(owner_id, {})
        entry = owned.get(partner_id)
        if entry is None:
            entry = ChatEntry(
                session_id=owner_id,
                partner_id=partner_id,
                last_interaction_time=self._interaction_time(None),
            )
            owned[partner_id] = entry
        else:
            entry.last_interaction_time = self._interaction_time(entry)
        return entry

    def append(
        self,
        owner_id: str,
        partner_id: str,
        text: str,
        direction: Direction,
        timestamp: int | None = None,
    ) -> ChatEntry:
        """Append a chat record to the owner's entry for a partner.

        Args:
            owner_id: Session owning the entry
            partner_id: Partner the entry is about
            text: Message text
            direction: "me" when the owner sent it, "partner" when it received it
            timestamp: Receipt time in epoch ms (defaults to now)

        Returns:
            Updated entry
        """
        entry = self.touch(owner_id, partner_id)
        entry.messages.append(
            ChatRecord(
                text=text,
                direction=direction,
                timestamp=timestamp if timestamp is not None else self._clock(),
            )
        )
        return entry

    def get(self, owner_id: str, partner_id: str) -> ChatEntry | None:
        return self._entries.get(owner_id, {}).get(partner_id)

    def entries_for(self, owner_id: str) -> list[ChatEntry]:
        """All entries owned by a session, most recent interaction first."""
        owned = self._entries.get(owner_id, {})
        return sorted(owned.values(), key=lambda e: e.last_interaction_time, reverse=True)

    def __len__(self) -> int:
        return sum(len(owned) for owned in self._entries.values())
