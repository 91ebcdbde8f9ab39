"""Anonymous voice/text pairing server.

Tracks connected sessions, pairs them at random (region first), relays voice,
chat, typing and voice-activity messages between partners, and publishes the
live online count.
"""

from voicepair.config import VoicePairConfig
from voicepair.engine import PairingEngine
from voicepair.relay import SessionPhase

__version__ = "0.1.0"

__all__ = ["PairingEngine", "SessionPhase", "VoicePairConfig"]
