"""Session matchmaking and relay engine.

:class:`PairingEngine` owns every piece of shared state (session registry,
pairing index, chat history) and serializes all access to it with one
re-entrant lock. Each public operation runs as a single critical section, so
multi-step mutations such as pairing creation or disconnect teardown are
atomic with respect to each other, whether they are called from the event loop
or from worker threads.

Outbound delivery never blocks inside the lock: connections buffer messages
and write them from their own tasks.
"""

import logging
import random
import threading
import time
from collections.abc import Callable
from typing import Any

from voicepair.config import VoicePairConfig
from voicepair.errors import MalformedMessageError
from voicepair.history import ChatHistoryStore, now_ms
from voicepair.matchmaker import Matchmaker
from voicepair.metrics import MetricsCollector, get_metrics_collector
from voicepair.pairing import PairingIndex
from voicepair.presence import PresenceBroadcaster
from voicepair.registry import SessionRegistry, generate_session_id
from voicepair.relay import RelayDispatcher, SessionPhase
from voicepair.transport.base import Connection
from voicepair.transport.protocol import (
    ClientMessage,
    ErrorMessage,
    SessionIdMessage,
    decode_client_message,
)

logger = logging.getLogger(__name__)


class PairingEngine:
    """Coordinates registry, matchmaking, relay and presence.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(
        self,
        config: VoicePairConfig | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = generate_session_id,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            config: Server configuration (defaults used when None)
            rng: Random source for partner selection
            clock: Epoch-millisecond time source for chat timestamps
            id_factory: Session identifier generator
            metrics: Metrics collector (global singleton when None)
        """
        self.config = config or VoicePairConfig()
        self._lock = threading.RLock()
        self._metrics = metrics or get_metrics_collector()

        if rng is None and self.config.matchmaking.seed is not None:
            rng = random.Random(self.config.matchmaking.seed)

        self.registry = SessionRegistry(id_factory=id_factory)
        self.pairing = PairingIndex()
        self.history = ChatHistoryStore(clock=clock)
        self.matchmaker = Matchmaker(self.registry, self.pairing, self.history, rng=rng)
        self.presence = PresenceBroadcaster(self.registry)
        self.dispatcher = RelayDispatcher(
            self.registry,
            self.pairing,
            self.history,
            self.matchmaker,
            self._metrics,
            config=self.config.matchmaking,
            on_stale_session=self.disconnect,
            clock=clock,
        )

    def _update_gauges(self) -> None:
        self._metrics.update_presence(
            online=self.registry.online_count(),
            available=self.registry.available_count(),
            pairings=len(self.pairing),
        )

    # === Lifecycle ===

    def connect(self, connection: Connection, region: str | None = None) -> str:
        """Register a new connection.

        Sends ``session_id`` to the new client, then broadcasts the online count.

        Args:
            connection: Connection handle of the new client
            region: Region derived from the connection origin

        Returns:
            Session identifier issued to the connection
        """
        region = region or self.config.geo.default_region

        with self._lock:
            session_id = self.registry.register(connection, region)
            connection.send(SessionIdMessage.create(session_id, region))
            count = self.presence.broadcast()
            self._metrics.record_connect()
            self._update_gauges()

        logger.info(
            "Session connected",
            extra={"session_id": session_id, "region": region, "online": count},
        )
        return session_id

    def disconnect(self, session_id: str) -> bool:
        """Tear down and remove a session.

        Ends the session's pairing (notifying the partner), removes it from the
        registry and broadcasts the new online count. Calling it again for the
        same session is a no-op.

        Args:
            session_id: Session to remove

        Returns:
            True if the session was removed, False if it was already gone
        """
        with self._lock:
            if session_id not in self.registry:
                return False

            partner_id = self.dispatcher.end_pairing(session_id)
            session = self.registry.unregister(session_id)
            count = self.presence.broadcast()
            if session is not None:
                self._metrics.record_disconnect(time.monotonic() - session.connected_at)
            self._update_gauges()

        logger.info(
            "Session disconnected",
            extra={"session_id": session_id, "partner_id": partner_id, "online": count},
        )
        return True

    # === Messages ===

    def handle_message(self, session_id: str, raw: str | bytes) -> None:
        """Decode and dispatch one inbound frame.

        Malformed frames are answered with an ``error`` message on the sending
        connection only; the connection stays open.

        Args:
            session_id: Sending session
            raw: Frame as received from the transport
        """
        try:
            message = decode_client_message(raw)
        except MalformedMessageError as e:
            self._metrics.record_malformed()
            logger.warning(
                "Malformed message",
                extra={"session_id": session_id, "error": e.reason},
            )
            self.send_error(session_id)
            return
        except Exception:
            logger.exception("Error decoding message", extra={"session_id": session_id})
            self.send_error(session_id)
            return

        self.dispatch(session_id, message)

    def dispatch(self, session_id: str, message: ClientMessage) -> None:
        """Dispatch an already decoded message.

        Args:
            session_id: Sending session
            message: Decoded client message
        """
        logger.debug(
            "Message received",
            extra={"session_id": session_id, "type": message.type},
        )

        try:
            with self._lock:
                self.dispatcher.dispatch(session_id, message)
                self._update_gauges()
        except Exception:
            logger.exception(
                "Error processing message",
                extra={"session_id": session_id, "type": message.type},
            )
            self.send_error(session_id)

    def send_error(self, session_id: str) -> None:
        """Answer a session with the configured ``error`` message, if it is still open."""
        with self._lock:
            connection = self.registry.get_connection(session_id)
            if connection is not None and connection.is_open:
                connection.send(ErrorMessage.create(self.config.matchmaking.error_message))

    # === Introspection ===

    def phase_of(self, session_id: str) -> SessionPhase | None:
        with self._lock:
            return self.dispatcher.phase_of(session_id)

    def partner_of(self, session_id: str) -> str | None:
        with self._lock:
            return self.pairing.partner_of(session_id)

    def stats(self) -> dict[str, Any]:
        """Point-in-time counts for health endpoints."""
        with self._lock:
            return {
                "sessions": len(self.registry),
                "online": self.registry.online_count(),
                "available": self.registry.available_count(),
                "pairings": len(self.pairing),
                "chat_entries": len(self.history),
                "consistent": self.pairing.is_consistent(),
            }
