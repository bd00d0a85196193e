"""Wire protocol shared by the gateway, the dispatcher and the relay.

Every frame, in both directions, is a JSON object ``{"event": name, "data": {...}}``.
Inbound frames form a closed set, parsed into one model per event through a
discriminated union so the dispatcher can route on the model type.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from schemas.messages import CamelModel, utcnow

# client -> server
JOIN_PRIVATE_CHAT = "joinPrivateChat"
JOIN_GROUP_CHAT = "joinGroupChat"
LEAVE_CHAT = "leaveChat"
SEND_PRIVATE_MESSAGE = "sendPrivateMessage"
SEND_GROUP_MESSAGE = "sendGroupMessage"
SEND_FILE_MESSAGE = "sendFileMessage"
MARK_MESSAGE_AS_READ = "markMessageAsRead"
ADD_REACTION = "addReaction"
TYPING = "typing"
STOP_TYPING = "stopTyping"

# server -> client
CONNECTED = "connected"
ERROR = "error"
JOINED_PRIVATE_CHAT = "joinedPrivateChat"
JOINED_GROUP_CHAT = "joinedGroupChat"
LEFT_CHAT = "leftChat"
NEW_PRIVATE_MESSAGE = "newPrivateMessage"
NEW_GROUP_MESSAGE = "newGroupMessage"
MESSAGE_READ = "messageRead"
MESSAGE_REACTION_ADDED = "messageReactionAdded"
MESSAGE_EDITED = "messageEdited"
MESSAGE_DELETED = "messageDeleted"
MESSAGE_PINNED = "messagePinned"
USER_TYPING = "userTyping"
USER_STOPPED_TYPING = "userStoppedTyping"


class RecipientData(CamelModel):
    recipient_id: Optional[str] = None


class GroupData(CamelModel):
    group_id: Optional[str] = None


class RoomData(CamelModel):
    room: Optional[str] = None


class PrivateMessageData(CamelModel):
    recipient_id: Optional[str] = None
    content: Optional[str] = None


class GroupMessageData(CamelModel):
    group_id: Optional[str] = None
    content: Optional[str] = None


class FileMessageData(CamelModel):
    recipient_id: Optional[str] = None
    group_id: Optional[str] = None
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None


class MessageRefData(CamelModel):
    message_id: Optional[str] = None


class ReactionData(CamelModel):
    message_id: Optional[str] = None
    reaction: Optional[str] = None


class TypingData(CamelModel):
    chat_type: Optional[str] = None
    recipient_id: Optional[str] = None
    group_id: Optional[str] = None


class JoinPrivateChat(BaseModel):
    event: Literal["joinPrivateChat"]
    data: RecipientData = Field(default_factory=RecipientData)


class JoinGroupChat(BaseModel):
    event: Literal["joinGroupChat"]
    data: GroupData = Field(default_factory=GroupData)


class LeaveChat(BaseModel):
    event: Literal["leaveChat"]
    data: RoomData = Field(default_factory=RoomData)


class SendPrivateMessage(BaseModel):
    event: Literal["sendPrivateMessage"]
    data: PrivateMessageData = Field(default_factory=PrivateMessageData)


class SendGroupMessage(BaseModel):
    event: Literal["sendGroupMessage"]
    data: GroupMessageData = Field(default_factory=GroupMessageData)


class SendFileMessage(BaseModel):
    event: Literal["sendFileMessage"]
    data: FileMessageData = Field(default_factory=FileMessageData)


class MarkMessageAsRead(BaseModel):
    event: Literal["markMessageAsRead"]
    data: MessageRefData = Field(default_factory=MessageRefData)


class AddReaction(BaseModel):
    event: Literal["addReaction"]
    data: ReactionData = Field(default_factory=ReactionData)


class Typing(BaseModel):
    event: Literal["typing"]
    data: TypingData = Field(default_factory=TypingData)


class StopTyping(BaseModel):
    event: Literal["stopTyping"]
    data: TypingData = Field(default_factory=TypingData)


InboundEvent = Annotated[
    Union[
        JoinPrivateChat,
        JoinGroupChat,
        LeaveChat,
        SendPrivateMessage,
        SendGroupMessage,
        SendFileMessage,
        MarkMessageAsRead,
        AddReaction,
        Typing,
        StopTyping,
    ],
    Field(discriminator="event"),
]

_inbound_adapter = TypeAdapter(InboundEvent)


def parse_inbound(frame: str) -> InboundEvent:
    """Parse one client frame. Raises pydantic.ValidationError on malformed JSON or unknown events."""
    return _inbound_adapter.validate_json(frame)


class RelayEnvelope(BaseModel):
    """What travels through the relay: the client frame plus routing metadata."""

    address: str
    event: str
    data: Any = None
    message_id: Optional[str] = None
    actor: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    # connection id excluded from delivery, e.g. the sender of a typing signal
    skip: Optional[str] = None

    def client_frame(self) -> dict:
        return {"event": self.event, "data": self.data}
