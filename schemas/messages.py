from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class CamelModel(BaseModel):
    # Wire payloads are camelCase, Python attributes stay snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ChatType(str, Enum):
    PRIVATE = "private"
    GROUP = "group"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BANNED = "banned"


class PublicUser(CamelModel):
    id: str
    username: str
    avatar: Optional[str] = None


class User(CamelModel):
    id: str = Field(default_factory=new_id)
    username: str
    avatar: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE
    is_online: bool = False
    last_seen: datetime = Field(default_factory=utcnow)

    def public(self) -> PublicUser:
        return PublicUser(id=self.id, username=self.username, avatar=self.avatar)


class Group(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    members: list[str] = Field(default_factory=list)
    admins: list[str] = Field(default_factory=list)


class Reaction(CamelModel):
    user_id: str
    reaction: str
    created_at: datetime = Field(default_factory=utcnow)


class ReadReceipt(CamelModel):
    user_id: str
    read_at: datetime = Field(default_factory=utcnow)


class Message(CamelModel):
    id: str = Field(default_factory=new_id)
    sender_id: str
    chat_type: ChatType
    recipient_id: Optional[str] = None
    group_id: Optional[str] = None
    content: Optional[str] = None
    is_compressed: bool = False
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    reactions: list[Reaction] = Field(default_factory=list)
    read_by: list[ReadReceipt] = Field(default_factory=list)
    is_pinned: bool = False
    pinned_by: Optional[str] = None
    pinned_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    edited_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    def has_reaction(self, user_id: str, reaction: str) -> bool:
        return any(r.user_id == user_id and r.reaction == reaction for r in self.reactions)

    def was_read_by(self, user_id: str) -> bool:
        return any(r.user_id == user_id for r in self.read_by)


class ChatTarget(CamelModel):
    """Where a message goes: a peer for private chats, a group otherwise."""

    chat_type: ChatType
    recipient_id: Optional[str] = None
    group_id: Optional[str] = None

    @classmethod
    def private(cls, recipient_id: Optional[str]) -> "ChatTarget":
        return cls(chat_type=ChatType.PRIVATE, recipient_id=recipient_id)

    @classmethod
    def group(cls, group_id: Optional[str]) -> "ChatTarget":
        return cls(chat_type=ChatType.GROUP, group_id=group_id)


class FileAttachment(CamelModel):
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None


# REST bodies

class EditMessageRequest(BaseModel):
    content: str


class MessageActionResponse(BaseModel):
    success: bool = True
    message: str
    data: Optional[dict] = None


class MessagePageResponse(BaseModel):
    success: bool = True
    data: list[dict]
    page: int
    limit: int


class MessageSearchResponse(MessagePageResponse):
    total: int
    total_pages: int = Field(serialization_alias="totalPages")


class UserChatsResponse(BaseModel):
    success: bool = True
    data: dict
