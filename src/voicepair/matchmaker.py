"""Random partner selection, region first.

Selection order:
1. Available sessions from the requester's region (uniform random choice)
2. If none and the requester allows it, available sessions from any region
3. Otherwise no partner; the requester stays available and waits for someone
   else's ``find_partner`` to pick it

A successful match is committed in one step: both sessions become
unavailable, the reciprocal pairing entries are written and both chat entries
are touched.
"""

import logging
import random
from dataclasses import dataclass

from voicepair.history import ChatHistoryStore
from voicepair.pairing import PairingIndex
from voicepair.registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a successful ``find_partner``."""

    requester_id: str
    partner_id: str
    requester_region: str
    partner_region: str
    global_match: bool = False


class Matchmaker:
    """Pairs a requesting session with a random available partner.

    Thread-safety: This class is NOT thread-safe. ``find_partner`` is one
    multi-step mutation and must run under the engine lock.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        pairing: PairingIndex,
        history: ChatHistoryStore,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize matchmaker.

        Args:
            registry: Session registry
            pairing: Pairing index
            history: Chat history store
            rng: Random source (seed it for reproducible selection)
        """
        self._registry = registry
        self._pairing = pairing
        self._history = history
        self._rng = rng or random.Random()

    def _candidates(self, requester_id: str, region: str | None) -> list[str]:
        return [
            session_id
            for session_id in self._registry.available_sessions(exclude=requester_id, region=region)
            if not self._pairing.is_paired(session_id)
        ]

    def select_candidate(self, requester_id: str, allow_global: bool) -> tuple[str, bool] | None:
        """Pick a partner without committing anything.

        Args:
            requester_id: Session asking for a partner
            allow_global: Fall back to any region when the local pool is empty

        Returns:
            (partner_id, global_match) or None if nobody is available
        """
        region = self._registry.get_region(requester_id)

        # A requester without a recorded region matches against everyone on the
        # first pass, whether or not it allowed global matching.
        candidates = self._candidates(requester_id, region or None)
        if candidates:
            return self._rng.choice(candidates), not region

        if allow_global and region:
            candidates = self._candidates(requester_id, None)
            if candidates:
                return self._rng.choice(candidates), True

        return None

    def find_partner(self, requester_id: str, allow_global: bool = False) -> MatchResult | None:
        """Select a partner and create the pairing.

        Args:
            requester_id: Session asking for a partner
            allow_global: Fall back to any region when the local pool is empty

        Returns:
            Match result, or None if no partner is available right now
        """
        requester = self._registry.get(requester_id)
        if requester is None or not requester.is_open:
            logger.debug("Requester gone before matchmaking", extra={"session_id": requester_id})
            return None

        if self._pairing.is_paired(requester_id):
            logger.warning(
                "find_partner while already paired, ignoring",
                extra={"session_id": requester_id},
            )
            return None

        requester.available = True

        selection = self.select_candidate(requester_id, allow_global)
        if selection is None:
            logger.debug(
                "No partner available",
                extra={"session_id": requester_id, "region": requester.region},
            )
            return None

        partner_id, global_match = selection
        partner = self._registry.require(partner_id)

        requester.available = False
        partner.available = False
        self._pairing.pair(requester_id, partner_id)
        self._history.touch(requester_id, partner_id)
        self._history.touch(partner_id, requester_id)

        logger.info(
            "Sessions paired",
            extra={
                "session_id": requester_id,
                "partner_id": partner_id,
                "region": requester.region,
                "partner_region": partner.region,
                "global_match": global_match,
            },
        )

        return MatchResult(
            requester_id=requester_id,
            partner_id=partner_id,
            requester_region=requester.region,
            partner_region=partner.region,
            global_match=global_match,
        )

    def rollback(self, result: MatchResult) -> None:
        """Undo a match whose partner vanished before it was notified.

        The requester is left available so a later ``find_partner`` can retry.
        The partner stays unavailable; its own disconnect removes it.
        """
        self._pairing.unpair(result.requester_id)
        self._registry.set_availability(result.requester_id, True)
        self._registry.set_availability(result.partner_id, False)

        logger.info(
            "Pairing rolled back, partner unavailable",
            extra={"session_id": result.requester_id, "partner_id": result.partner_id},
        )
