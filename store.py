"""Persistence boundary consumed by the real-time core.

`ChatStore` lists exactly the operations the gateway, router, broadcaster and
presence tracker need. `InMemoryChatStore` backs single-process runs and tests;
`backend.RedisChatStore` is the shared store for multi-process deployments.

Every change to an existing message goes through `modify_message`, which
re-reads the message and applies the change atomically. The per-message rules
(deleted messages are frozen, only the sender edits or deletes) are checked
inside that step against the fresh copy, never against a copy read earlier.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

from errors import AuthorizationError, NotFoundError
from logging_config import get_logger
from schemas.messages import ChatType, Group, Message, Reaction, ReadReceipt, User

logger = get_logger(__name__)

# Mutates a message in place and returns True, or returns False to leave it unchanged.
# May raise ChatError to abort without writing.
MessageMutation = Callable[[Message], bool]


def _require_live(message: Message) -> None:
    if message.is_deleted:
        raise NotFoundError("Message not found")


class ChatStore(ABC):
    # users / presence

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def save_user(self, user: User) -> User: ...

    @abstractmethod
    async def set_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> None: ...

    # credentials

    @abstractmethod
    async def is_token_revoked(self, token: str) -> bool: ...

    @abstractmethod
    async def revoke_token(self, token: str, ttl: Optional[int] = None) -> None: ...

    # groups

    @abstractmethod
    async def get_group(self, group_id: str) -> Optional[Group]: ...

    @abstractmethod
    async def save_group(self, group: Group) -> Group: ...

    @abstractmethod
    async def list_user_groups(self, user_id: str) -> list[Group]: ...

    # messages

    @abstractmethod
    async def create_message(self, message: Message, conversation: str) -> Message:
        """Persist a new message and index it under its conversation address."""

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[Message]: ...

    @abstractmethod
    async def modify_message(self, message_id: str, mutate: MessageMutation) -> tuple[Optional[Message], bool]:
        """Atomic read-modify-write of one message.

        Returns the current message (None if it does not exist) and whether
        `mutate` changed it. Exceptions raised by `mutate` propagate and
        nothing is written.
        """

    @abstractmethod
    async def list_conversation(self, conversation: str, offset: int = 0, limit: Optional[int] = 20) -> list[Message]:
        """Messages of a conversation, newest first. `limit=None` returns everything after `offset`."""

    @abstractmethod
    async def has_conversation(self, conversation: str) -> bool: ...

    @abstractmethod
    async def list_private_peers(self, user_id: str) -> list[str]:
        """Ids of users with a private conversation with `user_id`, most recent first."""

    async def close(self) -> None:
        pass

    # message mutations, shared by every backend

    async def _modify_existing(self, message_id: str, mutate: MessageMutation) -> Message:
        message, _ = await self.modify_message(message_id, mutate)
        if message is None:
            raise NotFoundError("Message not found")
        return message

    async def edit_message(self, message_id: str, actor_id: str, content: str, is_compressed: bool,
                           edited_at: datetime) -> Message:
        def mutate(message: Message) -> bool:
            _require_live(message)
            if message.sender_id != actor_id:
                raise AuthorizationError("You can only edit your own messages")
            message.content = content
            message.is_compressed = is_compressed
            message.edited_at = edited_at
            return True

        return await self._modify_existing(message_id, mutate)

    async def soft_delete_message(self, message_id: str, actor_id: str, deleted_at: datetime) -> Message:
        def mutate(message: Message) -> bool:
            _require_live(message)
            if message.sender_id != actor_id:
                raise AuthorizationError("You can only delete your own messages")
            # content stays for audit
            message.is_deleted = True
            message.deleted_at = deleted_at
            return True

        return await self._modify_existing(message_id, mutate)

    async def pin_message(self, message_id: str, actor_id: str, pinned_at: datetime) -> Message:
        """Group admin and participant checks belong to the caller; this only guards the message itself."""
        def mutate(message: Message) -> bool:
            _require_live(message)
            message.is_pinned = True
            message.pinned_by = actor_id
            message.pinned_at = pinned_at
            return True

        return await self._modify_existing(message_id, mutate)

    async def add_reaction(self, message_id: str, reaction: Reaction) -> bool:
        """Append unless (user, reaction) already exists. Returns False on duplicate or missing message."""
        def mutate(message: Message) -> bool:
            _require_live(message)
            if message.has_reaction(reaction.user_id, reaction.reaction):
                return False
            message.reactions.append(reaction)
            return True

        _, added = await self.modify_message(message_id, mutate)
        return added

    async def add_read_receipt(self, message_id: str, receipt: ReadReceipt) -> bool:
        """Append unless the user already read the message. Returns False if already read."""
        def mutate(message: Message) -> bool:
            if message.was_read_by(receipt.user_id):
                return False
            message.read_by.append(receipt)
            return True

        _, added = await self.modify_message(message_id, mutate)
        return added


class InMemoryChatStore(ChatStore):
    """Dict-backed store. Every method completes without yielding, so updates are atomic on the event loop."""

    def __init__(self):
        self.users: dict[str, User] = {}
        self.groups: dict[str, Group] = {}
        self.messages: dict[str, Message] = {}
        self.conversations: dict[str, list[str]] = {}
        self.revoked_tokens: set[str] = set()

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self.users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def save_user(self, user: User) -> User:
        self.users[user.id] = user.model_copy(deep=True)
        return user

    async def set_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> None:
        user = self.users.get(user_id)
        if user is None:
            logger.debug(f"Presence update for unknown user {user_id} ignored")
            return
        user.is_online = is_online
        user.last_seen = last_seen

    async def is_token_revoked(self, token: str) -> bool:
        return token in self.revoked_tokens

    async def revoke_token(self, token: str, ttl: Optional[int] = None) -> None:
        self.revoked_tokens.add(token)

    async def get_group(self, group_id: str) -> Optional[Group]:
        group = self.groups.get(group_id)
        return group.model_copy(deep=True) if group else None

    async def save_group(self, group: Group) -> Group:
        self.groups[group.id] = group.model_copy(deep=True)
        return group

    async def list_user_groups(self, user_id: str) -> list[Group]:
        groups = [g for g in self.groups.values() if user_id in g.members]
        return [g.model_copy(deep=True) for g in sorted(groups, key=lambda g: g.name)]

    async def create_message(self, message: Message, conversation: str) -> Message:
        self.messages[message.id] = message.model_copy(deep=True)
        self.conversations.setdefault(conversation, []).append(message.id)
        return message

    async def get_message(self, message_id: str) -> Optional[Message]:
        message = self.messages.get(message_id)
        return message.model_copy(deep=True) if message else None

    async def modify_message(self, message_id: str, mutate: MessageMutation) -> tuple[Optional[Message], bool]:
        message = self.messages.get(message_id)
        if message is None:
            return None, False
        draft = message.model_copy(deep=True)
        changed = mutate(draft)
        if changed:
            self.messages[message_id] = draft
        return draft.model_copy(deep=True), changed

    async def list_conversation(self, conversation: str, offset: int = 0, limit: Optional[int] = 20) -> list[Message]:
        ids = list(reversed(self.conversations.get(conversation, [])))
        end = None if limit is None else offset + limit
        return [self.messages[i].model_copy(deep=True) for i in ids[offset:end]]

    async def has_conversation(self, conversation: str) -> bool:
        return bool(self.conversations.get(conversation))

    async def list_private_peers(self, user_id: str) -> list[str]:
        latest: dict[str, datetime] = {}
        for message in self.messages.values():
            if message.chat_type != ChatType.PRIVATE or user_id not in (message.sender_id, message.recipient_id):
                continue
            peer = message.recipient_id if message.sender_id == user_id else message.sender_id
            if peer not in latest or message.created_at > latest[peer]:
                latest[peer] = message.created_at
        return sorted(latest, key=latest.get, reverse=True)
