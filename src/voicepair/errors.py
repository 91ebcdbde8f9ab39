"""Exception types raised by the pairing engine and wire protocol."""


class VoicePairError(Exception):
    """Base class for all voicepair errors."""


class MalformedMessageError(VoicePairError):
    """Inbound frame could not be decoded into a known message structure.

    Raised for invalid JSON, non-object frames, a missing ``type`` field, or a
    payload whose fields have the wrong structural type.
    """

    def __init__(self, reason: str, raw: str | bytes | None = None) -> None:
        """Initialize error.

        Args:
            reason: Human-readable decode failure
            raw: Offending frame (kept for debug logging only)
        """
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class SessionNotFoundError(VoicePairError, KeyError):
    """Strict lookup of a session that is not registered."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not registered: {self.session_id}"
