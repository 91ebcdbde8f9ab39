"""Online count broadcasting."""

import logging

from voicepair.registry import SessionRegistry
from voicepair.transport.protocol import OnlineCountMessage

logger = logging.getLogger(__name__)


class PresenceBroadcaster:
    """Pushes the live online count to every open connection.

    Each call recomputes the count from the registry and sends it to everyone;
    there is no delta protocol.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry

    def broadcast(self) -> int:
        """Send the current online count to every open connection.

        Returns:
            Count that was broadcast
        """
        count = self._registry.online_count()
        message = OnlineCountMessage.create(count)

        delivered = 0
        for connection in self._registry.open_connections():
            if connection.send(message):
                delivered += 1

        logger.debug(
            "Online count broadcast",
            extra={
                "count": count,
                "available": self._registry.available_count(),
                "delivered": delivered,
            },
        )
        return count
