"""WebSocket message protocol definitions.

Defines Pydantic models for WebSocket message serialization/deserialization.
Every frame is a JSON text message of the form ``{"type": str, "payload": {}}``.
Payload field names are camelCase on the wire and snake_case in Python.

Client messages form a closed tagged union discriminated by ``type``. Frames
carrying a type outside that union decode to :class:`UnknownMessage`; frames
that cannot be parsed at all raise :class:`MalformedMessageError`.
"""

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from voicepair.errors import MalformedMessageError

Direction = Literal["me", "partner"]


class WireModel(BaseModel):
    """Base model mapping snake_case fields to camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmptyPayload(WireModel):
    """Payload for messages that carry no fields."""


# ============================================================================
# Client → Server payloads
# ============================================================================


class FindPartnerPayload(WireModel):
    allow_global: bool = Field(
        default=False, description="Fall back to any region when no local partner exists"
    )


class VoiceDataPayload(WireModel):
    data: str = Field(..., description="Opaque encoded audio chunk")


class ChatMessagePayload(WireModel):
    text: str = Field(..., description="Chat message text")


class TypingStatusPayload(WireModel):
    is_typing: bool = Field(..., description="Whether the sender is typing")


class VoiceActivityPayload(WireModel):
    is_speaking: bool = Field(..., description="Whether the sender is speaking")


class SetAutoFindPayload(WireModel):
    auto_find: bool = Field(..., description="Re-enter matchmaking after a partner leaves")


# ============================================================================
# Client → Server messages
# ============================================================================


class FindPartnerMessage(WireModel):
    """Client → Server: Request a conversation partner."""

    type: Literal["find_partner"] = "find_partner"
    payload: FindPartnerPayload = Field(default_factory=FindPartnerPayload)


class DisconnectCallMessage(WireModel):
    """Client → Server: End the current pairing."""

    type: Literal["disconnect_call"] = "disconnect_call"
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class VoiceDataMessage(WireModel):
    """Client → Server: Audio chunk for the partner."""

    type: Literal["voice_data"] = "voice_data"
    payload: VoiceDataPayload


class ChatMessage(WireModel):
    """Client ↔ Server: Chat text for the partner."""

    type: Literal["chat_message"] = "chat_message"
    payload: ChatMessagePayload


class TypingStatusMessage(WireModel):
    """Client ↔ Server: Typing indicator, forwarded as received."""

    type: Literal["typing_status"] = "typing_status"
    payload: TypingStatusPayload


class VoiceActivityMessage(WireModel):
    """Client ↔ Server: Speaking indicator, forwarded as received."""

    type: Literal["voice_activity"] = "voice_activity"
    payload: VoiceActivityPayload


class SetAutoFindMessage(WireModel):
    """Client → Server: Toggle automatic re-matching."""

    type: Literal["set_auto_find"] = "set_auto_find"
    payload: SetAutoFindPayload


class GetChatHistoryMessage(WireModel):
    """Client → Server: Request the full chat history of this session."""

    type: Literal["get_chat_history"] = "get_chat_history"
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class UnknownMessage(BaseModel):
    """Client → Server: Frame with a type this server does not handle.

    Kept as an explicit variant so newer clients can talk to older servers;
    the dispatcher ignores it.
    """

    type: str
    payload: Any = None


KnownClientMessage = Annotated[
    FindPartnerMessage
    | DisconnectCallMessage
    | VoiceDataMessage
    | ChatMessage
    | TypingStatusMessage
    | VoiceActivityMessage
    | SetAutoFindMessage
    | GetChatHistoryMessage,
    Field(discriminator="type"),
]

# Union type for all client → server messages
ClientMessage = (
    FindPartnerMessage
    | DisconnectCallMessage
    | VoiceDataMessage
    | ChatMessage
    | TypingStatusMessage
    | VoiceActivityMessage
    | SetAutoFindMessage
    | GetChatHistoryMessage
    | UnknownMessage
)

CLIENT_MESSAGE_TYPES = frozenset(
    {
        "find_partner",
        "disconnect_call",
        "voice_data",
        "chat_message",
        "typing_status",
        "voice_activity",
        "set_auto_find",
        "get_chat_history",
    }
)

# Relay-only types need an active partner to mean anything
RELAY_MESSAGE_TYPES = frozenset(
    {"voice_data", "chat_message", "typing_status", "voice_activity"}
)

_client_message_adapter: TypeAdapter[Any] = TypeAdapter(KnownClientMessage)


# ============================================================================
# Server → Client payloads
# ============================================================================


class SessionIdPayload(WireModel):
    session_id: str
    region: str


class OnlineCountPayload(WireModel):
    count: int = Field(..., ge=0)


class WaitingPayload(WireModel):
    message: str


class ConnectedPayload(WireModel):
    partner_id: str
    partner_region: str


class RelayedVoiceDataPayload(WireModel):
    data: str
    from_: str = Field(..., alias="from", description="Sender session identifier")


class RelayedChatPayload(WireModel):
    text: str
    from_: Direction = Field(default="partner", alias="from")


class ChatRecordPayload(WireModel):
    text: str
    from_: Direction = Field(..., alias="from")
    timestamp: int


class ChatEntryPayload(WireModel):
    session_id: str
    partner_id: str
    last_interaction_time: int
    messages: list[ChatRecordPayload] = Field(default_factory=list)


class ChatHistoryPayload(WireModel):
    history: list[ChatEntryPayload] = Field(default_factory=list)


class ErrorPayload(WireModel):
    message: str


# ============================================================================
# Server → Client messages
# ============================================================================


class SessionIdMessage(WireModel):
    """Server → Client: Session identifier, sent once after registration."""

    type: Literal["session_id"] = "session_id"
    payload: SessionIdPayload

    @classmethod
    def create(cls, session_id: str, region: str) -> "SessionIdMessage":
        return cls(payload=SessionIdPayload(session_id=session_id, region=region))


class OnlineCountMessage(WireModel):
    """Server → Client: Number of sessions with an open connection."""

    type: Literal["online_count"] = "online_count"
    payload: OnlineCountPayload

    @classmethod
    def create(cls, count: int) -> "OnlineCountMessage":
        return cls(payload=OnlineCountPayload(count=count))


class WaitingMessage(WireModel):
    """Server → Client: No partner could be paired right now."""

    type: Literal["waiting"] = "waiting"
    payload: WaitingPayload

    @classmethod
    def create(cls, message: str) -> "WaitingMessage":
        return cls(payload=WaitingPayload(message=message))


class ConnectedMessage(WireModel):
    """Server → Client: Pairing established."""

    type: Literal["connected"] = "connected"
    payload: ConnectedPayload

    @classmethod
    def create(cls, partner_id: str, partner_region: str) -> "ConnectedMessage":
        return cls(
            payload=ConnectedPayload(partner_id=partner_id, partner_region=partner_region)
        )


class PartnerDisconnectedMessage(WireModel):
    """Server → Client: The partner ended the pairing or went away."""

    type: Literal["partner_disconnected"] = "partner_disconnected"
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class RelayedVoiceDataMessage(WireModel):
    """Server → Client: Partner audio chunk tagged with its sender."""

    type: Literal["voice_data"] = "voice_data"
    payload: RelayedVoiceDataPayload

    @classmethod
    def create(cls, data: str, sender_id: str) -> "RelayedVoiceDataMessage":
        return cls(payload=RelayedVoiceDataPayload(data=data, from_=sender_id))


class RelayedChatMessage(WireModel):
    """Server → Client: Partner chat text."""

    type: Literal["chat_message"] = "chat_message"
    payload: RelayedChatPayload

    @classmethod
    def create(cls, text: str) -> "RelayedChatMessage":
        return cls(payload=RelayedChatPayload(text=text, from_="partner"))


class ChatHistoryMessage(WireModel):
    """Server → Client: Every chat entry owned by the requesting session."""

    type: Literal["chat_history"] = "chat_history"
    payload: ChatHistoryPayload = Field(default_factory=ChatHistoryPayload)


class ErrorMessage(WireModel):
    """Server → Client: Error notification.

    Sent when an inbound frame could not be processed. The connection stays open.
    """

    type: Literal["error"] = "error"
    payload: ErrorPayload

    @classmethod
    def create(cls, message: str) -> "ErrorMessage":
        return cls(payload=ErrorPayload(message=message))


# Union type for all server → client messages
ServerMessage = (
    SessionIdMessage
    | OnlineCountMessage
    | WaitingMessage
    | ConnectedMessage
    | PartnerDisconnectedMessage
    | RelayedVoiceDataMessage
    | RelayedChatMessage
    | TypingStatusMessage
    | VoiceActivityMessage
    | ChatHistoryMessage
    | ErrorMessage
)


def decode_client_message(raw: str | bytes) -> ClientMessage:
    """Decode one inbound frame into a typed client message.

    Args:
        raw: WebSocket frame as received

    Returns:
        Typed message, or :class:`UnknownMessage` for unhandled types

    Raises:
        MalformedMessageError: If the frame is not a structurally valid message
    """
    if isinstance(raw, bytes):
        raise MalformedMessageError("Binary frames are not supported", raw)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedMessageError(f"Invalid JSON: {e}", raw) from e
    except RecursionError as e:
        raise MalformedMessageError("JSON nesting too deep", raw) from e

    if not isinstance(data, dict):
        raise MalformedMessageError("Message must be a JSON object", raw)

    message_type = data.get("type")
    if not isinstance(message_type, str) or not message_type:
        raise MalformedMessageError("Message is missing a string 'type' field", raw)

    if message_type not in CLIENT_MESSAGE_TYPES:
        return UnknownMessage(type=message_type, payload=data.get("payload"))

    # Payload-less control messages are allowed ({"type": "disconnect_call"})
    if data.get("payload") is None:
        data = {**data, "payload": {}}

    try:
        message: ClientMessage = _client_message_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedMessageError(
            f"Invalid '{message_type}' payload: {e.error_count()} error(s)", raw
        ) from e
    except RecursionError as e:
        raise MalformedMessageError(
            f"Invalid '{message_type}' payload: nesting too deep", raw
        ) from e

    return message


def encode_server_message(message: ServerMessage) -> str:
    """Serialize a server message to its JSON wire form."""
    return message.model_dump_json(by_alias=True)
