"""Inbound message routing and partner relay.

Routes each decoded client message to its handler. Payload-bearing messages
(voice, chat, typing, voice activity) are forwarded to the sender's current
partner; control messages drive matchmaking and the pairing lifecycle.

Session lifecycle per session:
- IDLE: not paired, not available
- SEARCHING: not paired, available for matching
- PAIRED: has a partner, not available

Transitions:
- IDLE/SEARCHING → PAIRED (find_partner succeeds, for both sides)
- IDLE → SEARCHING (find_partner finds nobody)
- PAIRED → SEARCHING or IDLE (disconnect_call or partner gone; chosen by
  each side's own auto_find flag)
"""

import logging
from collections.abc import Callable
from enum import Enum

from voicepair.config import MatchmakingConfig
from voicepair.history import ChatHistoryStore, now_ms
from voicepair.matchmaker import Matchmaker
from voicepair.metrics import MetricsCollector
from voicepair.pairing import PairingIndex
from voicepair.registry import SessionRegistry
from voicepair.transport.protocol import (
    ChatHistoryMessage,
    ChatHistoryPayload,
    ChatMessage,
    ClientMessage,
    ConnectedMessage,
    DisconnectCallMessage,
    FindPartnerMessage,
    GetChatHistoryMessage,
    PartnerDisconnectedMessage,
    RelayedChatMessage,
    RelayedVoiceDataMessage,
    ServerMessage,
    SetAutoFindMessage,
    TypingStatusMessage,
    UnknownMessage,
    VoiceActivityMessage,
    VoiceDataMessage,
    WaitingMessage,
)

logger = logging.getLogger(__name__)


class SessionPhase(Enum):
    """Pairing lifecycle phase of a session (derived from state)."""

    IDLE = "idle"
    SEARCHING = "searching"
    PAIRED = "paired"


class RelayDispatcher:
    """Routes decoded client messages.

    Thread-safety: This class is NOT thread-safe. ``dispatch`` and
    ``end_pairing`` run under the engine lock.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        pairing: PairingIndex,
        history: ChatHistoryStore,
        matchmaker: Matchmaker,
        metrics: MetricsCollector,
        config: MatchmakingConfig | None = None,
        on_stale_session: Callable[[str], object] | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize dispatcher.

        Args:
            registry: Session registry
            pairing: Pairing index
            history: Chat history store
            matchmaker: Partner selection
            metrics: Metrics collector
            config: Matchmaking messages
            on_stale_session: Called with a session whose connection was found
                closed while it was still registered (runs its teardown)
            clock: Epoch-millisecond time source for chat receipt timestamps
        """
        self._registry = registry
        self._pairing = pairing
        self._history = history
        self._matchmaker = matchmaker
        self._metrics = metrics
        self._config = config or MatchmakingConfig()
        self._on_stale_session = on_stale_session
        self._clock = clock

    def phase_of(self, session_id: str) -> SessionPhase | None:
        """Current lifecycle phase, or None for unknown sessions."""
        if session_id not in self._registry:
            return None
        if self._pairing.is_paired(session_id):
            return SessionPhase.PAIRED
        if self._registry.get_availability(session_id):
            return SessionPhase.SEARCHING
        return SessionPhase.IDLE

    def dispatch(self, session_id: str, message: ClientMessage) -> None:
        """Handle one decoded message from a session.

        Args:
            session_id: Sending session
            message: Decoded client message
        """
        if session_id not in self._registry:
            logger.debug(
                "Message from unregistered session, ignoring",
                extra={"session_id": session_id, "type": message.type},
            )
            return

        if isinstance(message, FindPartnerMessage):
            self._handle_find_partner(session_id, message)
        elif isinstance(message, DisconnectCallMessage):
            self.end_pairing(session_id)
        elif isinstance(message, VoiceDataMessage):
            self._handle_voice_data(session_id, message)
        elif isinstance(message, ChatMessage):
            self._handle_chat_message(session_id, message)
        elif isinstance(message, TypingStatusMessage | VoiceActivityMessage):
            self._forward(session_id, message.type, message)
        elif isinstance(message, SetAutoFindMessage):
            self._registry.set_auto_find(session_id, message.payload.auto_find)
            logger.info(
                "Auto-find updated",
                extra={"session_id": session_id, "auto_find": message.payload.auto_find},
            )
        elif isinstance(message, GetChatHistoryMessage):
            self._handle_get_chat_history(session_id)
        elif isinstance(message, UnknownMessage):
            self._metrics.record_unknown()
            logger.debug(
                "Unknown message type, ignoring",
                extra={"session_id": session_id, "type": message.type},
            )

    # === Control messages ===

    def _send(self, session_id: str, message: ServerMessage) -> bool:
        connection = self._registry.get_connection(session_id)
        if connection is None or not connection.is_open:
            return False
        return connection.send(message)

    def _handle_find_partner(self, session_id: str, message: FindPartnerMessage) -> None:
        partner_id = self._pairing.partner_of(session_id)
        if partner_id is not None:
            # Already paired: repeat the current pairing to the requester only
            partner_region = self._registry.get_region(partner_id) or "unknown"
            self._send(session_id, ConnectedMessage.create(partner_id, partner_region))
            return

        result = self._matchmaker.find_partner(session_id, message.payload.allow_global)
        if result is None:
            self._metrics.record_match_miss()
            self._send(session_id, WaitingMessage.create(self._config.waiting_message))
            return

        partner_connection = self._registry.get_connection(result.partner_id)
        if partner_connection is None or not partner_connection.is_open:
            self._matchmaker.rollback(result)
            self._metrics.record_match_rollback()
            self._send(
                session_id, WaitingMessage.create(self._config.partner_unavailable_message)
            )
            return

        partner_connection.send(ConnectedMessage.create(session_id, result.requester_region))
        self._send(session_id, ConnectedMessage.create(result.partner_id, result.partner_region))
        self._metrics.record_pairing(global_match=result.global_match)

    def end_pairing(self, session_id: str, notify_partner: bool = True) -> str | None:
        """Tear down the pairing of a session, if any.

        Each side's availability becomes its own auto_find flag. The former
        partner is told ``partner_disconnected``; the initiator is not.

        Args:
            session_id: Session ending the pairing
            notify_partner: Send ``partner_disconnected`` to the former partner

        Returns:
            Former partner identifier, or None if the session was not paired
        """
        duration = self._pairing.paired_duration(session_id)
        partner_id = self._pairing.unpair(session_id)
        if partner_id is None:
            return None

        self._registry.set_availability(session_id, self._registry.get_auto_find(session_id))
        self._registry.set_availability(partner_id, self._registry.get_auto_find(partner_id))

        if duration is not None:
            self._metrics.record_pairing_end(duration)

        if notify_partner:
            self._send(partner_id, PartnerDisconnectedMessage())

        logger.info(
            "Pairing ended",
            extra={"session_id": session_id, "partner_id": partner_id},
        )
        return partner_id

    def _handle_get_chat_history(self, session_id: str) -> None:
        entries = self._history.entries_for(session_id)
        history = ChatHistoryPayload(history=[entry.to_payload() for entry in entries])
        self._send(session_id, ChatHistoryMessage(payload=history))

    # === Relay messages ===

    def _partner_connection(self, session_id: str, message_type: str) -> tuple[str, bool] | None:
        """Resolve the partner of a sender.

        Returns:
            (partner_id, deliverable) or None when the sender is not paired
        """
        partner_id = self._pairing.partner_of(session_id)
        if partner_id is None:
            logger.debug(
                "Relay message while not paired, ignoring",
                extra={"session_id": session_id, "type": message_type},
            )
            return None

        connection = self._registry.get_connection(partner_id)
        if connection is None or not connection.is_open:
            self._metrics.record_dropped(message_type)
            logger.debug(
                "Partner connection closed, dropping message",
                extra={"session_id": session_id, "partner_id": partner_id, "type": message_type},
            )
            return partner_id, False

        return partner_id, True

    def _cleanup_stale_partner(self, partner_id: str) -> None:
        if self._on_stale_session is not None and partner_id in self._registry:
            self._on_stale_session(partner_id)

    def _forward(self, session_id: str, message_type: str, message: ServerMessage) -> None:
        resolved = self._partner_connection(session_id, message_type)
        if resolved is None:
            return

        partner_id, deliverable = resolved
        if not deliverable:
            self._cleanup_stale_partner(partner_id)
            return

        if self._send(partner_id, message):
            self._metrics.record_relayed(message_type)
        else:
            self._metrics.record_dropped(message_type)

    def _handle_voice_data(self, session_id: str, message: VoiceDataMessage) -> None:
        self._forward(
            session_id,
            message.type,
            RelayedVoiceDataMessage.create(message.payload.data, sender_id=session_id),
        )

    def _handle_chat_message(self, session_id: str, message: ChatMessage) -> None:
        partner_id = self._pairing.partner_of(session_id)
        if partner_id is None:
            logger.debug(
                "Chat message while not paired, ignoring",
                extra={"session_id": session_id},
            )
            return

        text = message.payload.text
        received_at = self._clock()
        self._history.append(session_id, partner_id, text, "me", received_at)
        self._history.append(partner_id, session_id, text, "partner", received_at)

        self._forward(session_id, message.type, RelayedChatMessage.create(text))
