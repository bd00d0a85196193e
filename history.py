"""REST read paths over stored conversations.

These are the authoritative recovery path for clients that missed socket
deliveries, so every message goes through the same decompression as live events.
"""

from datetime import datetime, timezone
import math
from typing import Optional

from broadcaster import present_message
from errors import AccessDeniedError, ValidationError
from logging_config import get_logger
from rooms import group_address, private_address
from schemas.messages import ChatType, Message
from store import ChatStore

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


def _page_bounds(page: int, limit: int) -> tuple[int, int]:
    if page < 1 or limit < 1:
        raise ValidationError("Page and limit must be positive")
    limit = min(limit, MAX_PAGE_SIZE)
    return (page - 1) * limit, limit


class MessageHistory:
    def __init__(self, store: ChatStore):
        self.store = store

    async def _senders(self, messages: list[Message]) -> dict:
        senders = {}
        for sender_id in {m.sender_id for m in messages}:
            user = await self.store.get_user(sender_id)
            if user is not None:
                senders[sender_id] = user.public()
        return senders

    async def _present(self, messages: list[Message]) -> list[dict]:
        senders = await self._senders(messages)
        return [present_message(m, senders.get(m.sender_id)) for m in messages]

    async def _conversation_for(self, user_id: str, chat_type: str, chat_id: Optional[str]) -> str:
        if not chat_id:
            raise ValidationError("Chat ID is required")
        if chat_type == ChatType.PRIVATE.value:
            return private_address(user_id, chat_id)
        if chat_type == ChatType.GROUP.value:
            group = await self.store.get_group(chat_id)
            if group is None or user_id not in group.members:
                raise AccessDeniedError("Access denied to group")
            return group_address(chat_id)
        raise ValidationError("Chat type must be private or group")

    async def private_history(self, user_id: str, other_id: str, page: int = 1, limit: int = 20) -> list[dict]:
        offset, limit = _page_bounds(page, limit)
        conversation = await self._conversation_for(user_id, ChatType.PRIVATE.value, other_id)
        messages = await self.store.list_conversation(conversation, offset, limit)
        return await self._present(messages)

    async def group_history(self, user_id: str, group_id: str, page: int = 1, limit: int = 20) -> list[dict]:
        offset, limit = _page_bounds(page, limit)
        conversation = await self._conversation_for(user_id, ChatType.GROUP.value, group_id)
        messages = await self.store.list_conversation(conversation, offset, limit)
        return await self._present(messages)

    async def user_chats(self, user_id: str) -> dict:
        """Conversation list: private peers with their last message, newest first, then the user's groups."""
        private_chats = []
        for peer_id in await self.store.list_private_peers(user_id):
            last = await self.store.list_conversation(private_address(user_id, peer_id), 0, 1)
            if not last:
                continue
            peer = await self.store.get_user(peer_id)
            presented = present_message(last[0])
            private_chats.append({
                "user": peer.public().to_wire() if peer else {"id": peer_id, "username": None, "avatar": None},
                "lastMessage": presented["content"],
                "lastMessageAt": presented["createdAt"],
            })

        groups = await self.store.list_user_groups(user_id)
        group_chats = [group.to_wire() for group in groups]
        return {"privateChats": private_chats, "groupChats": group_chats}

    async def search(self, user_id: str, chat_type: str, chat_id: str, query: Optional[str] = None,
                     page: int = 1, limit: int = 20, start_date: Optional[datetime] = None,
                     end_date: Optional[datetime] = None, file_type: Optional[str] = None) -> dict:
        """Case-insensitive substring match on decompressed content, newest first.

        Optional filters narrow by creation time (inclusive bounds) and by
        attachment type. Returns the page plus `total` and `totalPages`.
        """
        offset, limit = _page_bounds(page, limit)
        conversation = await self._conversation_for(user_id, chat_type, chat_id)
        start_date, end_date = _aware(start_date), _aware(end_date)
        if start_date and end_date and start_date > end_date:
            raise ValidationError("Start date must be before end date")

        messages = [
            m for m in await self.store.list_conversation(conversation, 0, None)
            if (start_date is None or m.created_at >= start_date)
            and (end_date is None or m.created_at <= end_date)
            and (file_type is None or m.file_type == file_type)
        ]

        presented = await self._present(messages)
        if query:
            needle = query.lower()
            presented = [m for m in presented if m.get("content") and needle in m["content"].lower()]

        total = len(presented)
        logger.debug(f"Search in {conversation} for {query!r}: {total} matches")
        return {
            "messages": presented[offset:offset + limit],
            "total": total,
            "page": page,
            "totalPages": math.ceil(total / limit),
        }


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # naive query parameters are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
