from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from constants import REDIS_URL
from errors import InfrastructureError
from logging_config import get_logger
from redis_keys import (
    REDIS_BLACKLIST_KEY,
    REDIS_CONVERSATION_KEY,
    REDIS_GROUP_KEY,
    REDIS_MESSAGE_KEY,
    REDIS_USER_GROUPS_KEY,
    REDIS_USER_KEY,
    REDIS_USER_PEERS_KEY,
)
from schemas.messages import ChatType, Group, Message, User
from store import ChatStore, MessageMutation

logger = get_logger(__name__)


def create_redis_client(url: str = REDIS_URL) -> Redis:
    # from_url does not connect; the first command does
    return Redis.from_url(url, decode_responses=True)


@asynccontextmanager
async def redis_errors(operation: str):
    try:
        yield
    except RedisError as e:
        logger.error(f"Redis error during {operation}: {e}", exc_info=True)
        raise InfrastructureError("Storage unavailable") from e


class RedisChatStore(ChatStore):
    """Shared store: JSON documents per entity plus zset/set indexes per conversation and user."""

    def __init__(self, redis_client: Optional[Redis] = None):
        self.redis_client = redis_client or create_redis_client()
        logger.info("Initializing RedisChatStore")

    async def get_user(self, user_id: str) -> Optional[User]:
        logger.debug(f"Fetching user {user_id}")
        async with redis_errors("get_user"):
            raw = await self.redis_client.get(REDIS_USER_KEY.format(user_id=user_id))
        return User.model_validate_json(raw) if raw else None

    async def save_user(self, user: User) -> User:
        async with redis_errors("save_user"):
            await self.redis_client.set(REDIS_USER_KEY.format(user_id=user.id), user.model_dump_json())
        return user

    async def set_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> None:
        def apply(raw: Optional[str]):
            if not raw:
                return None, False
            user = User.model_validate_json(raw)
            user.is_online = is_online
            user.last_seen = last_seen
            return user.model_dump_json(), True

        async with redis_errors("set_presence"):
            updated = await self._update_doc(REDIS_USER_KEY.format(user_id=user_id), apply)
        if not updated:
            logger.debug(f"Presence update for unknown user {user_id} ignored")

    async def is_token_revoked(self, token: str) -> bool:
        async with redis_errors("is_token_revoked"):
            return bool(await self.redis_client.exists(REDIS_BLACKLIST_KEY.format(token=token)))

    async def revoke_token(self, token: str, ttl: Optional[int] = None) -> None:
        async with redis_errors("revoke_token"):
            await self.redis_client.set(REDIS_BLACKLIST_KEY.format(token=token), "1", ex=ttl)

    async def get_group(self, group_id: str) -> Optional[Group]:
        logger.debug(f"Fetching group {group_id}")
        async with redis_errors("get_group"):
            raw = await self.redis_client.get(REDIS_GROUP_KEY.format(group_id=group_id))
        return Group.model_validate_json(raw) if raw else None

    async def save_group(self, group: Group) -> Group:
        key = REDIS_GROUP_KEY.format(group_id=group.id)
        async with redis_errors("save_group"):
            previous = await self.get_group(group.id)
            removed = set(previous.members) - set(group.members) if previous else set()
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.set(key, group.model_dump_json())
                for user_id in group.members:
                    pipe.sadd(REDIS_USER_GROUPS_KEY.format(user_id=user_id), group.id)
                for user_id in removed:
                    pipe.srem(REDIS_USER_GROUPS_KEY.format(user_id=user_id), group.id)
                await pipe.execute()
        logger.debug(f"Group {group.id} saved with {len(group.members)} members")
        return group

    async def list_user_groups(self, user_id: str) -> list[Group]:
        async with redis_errors("list_user_groups"):
            group_ids = await self.redis_client.smembers(REDIS_USER_GROUPS_KEY.format(user_id=user_id))
            if not group_ids:
                return []
            raws = await self.redis_client.mget([REDIS_GROUP_KEY.format(group_id=g) for g in group_ids])
        groups = [Group.model_validate_json(raw) for raw in raws if raw]
        # the set can briefly lag a membership change
        return sorted((g for g in groups if user_id in g.members), key=lambda g: g.name)

    async def create_message(self, message: Message, conversation: str) -> Message:
        key = REDIS_MESSAGE_KEY.format(message_id=message.id)
        score = message.created_at.timestamp()
        async with redis_errors("create_message"):
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.set(key, message.model_dump_json())
                pipe.zadd(REDIS_CONVERSATION_KEY.format(address=conversation), {message.id: score})
                if message.chat_type == ChatType.PRIVATE:
                    pipe.zadd(REDIS_USER_PEERS_KEY.format(user_id=message.sender_id), {message.recipient_id: score})
                    pipe.zadd(REDIS_USER_PEERS_KEY.format(user_id=message.recipient_id), {message.sender_id: score})
                await pipe.execute()
        logger.debug(f"Message {message.id} stored in conversation {conversation}")
        return message

    async def get_message(self, message_id: str) -> Optional[Message]:
        async with redis_errors("get_message"):
            raw = await self.redis_client.get(REDIS_MESSAGE_KEY.format(message_id=message_id))
        return Message.model_validate_json(raw) if raw else None

    async def modify_message(self, message_id: str, mutate: MessageMutation) -> tuple[Optional[Message], bool]:
        def apply(raw: Optional[str]):
            if not raw:
                return None, (None, False)
            message = Message.model_validate_json(raw)
            changed = mutate(message)
            return (message.model_dump_json() if changed else None), (message, changed)

        async with redis_errors("modify_message"):
            return await self._update_doc(REDIS_MESSAGE_KEY.format(message_id=message_id), apply)

    async def _update_doc(self, key: str, apply: Callable):
        """Optimistic read-modify-write under WATCH, retried when another client writes the key first.

        `apply(raw)` gets the current value (None when missing) and returns
        `(new_value, result)`; a None `new_value` leaves the key untouched.
        Returns `result` from the attempt that committed.
        """
        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    new_value, result = apply(raw)
                    if new_value is None:
                        await pipe.unwatch()
                        return result
                    pipe.multi()
                    pipe.set(key, new_value)
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.debug(f"Concurrent update on {key}, retrying")
                    continue

    async def list_conversation(self, conversation: str, offset: int = 0, limit: Optional[int] = 20) -> list[Message]:
        index_key = REDIS_CONVERSATION_KEY.format(address=conversation)
        end = -1 if limit is None else offset + limit - 1
        async with redis_errors("list_conversation"):
            ids = await self.redis_client.zrevrange(index_key, offset, end)
            if not ids:
                return []
            raws = await self.redis_client.mget([REDIS_MESSAGE_KEY.format(message_id=i) for i in ids])
        return [Message.model_validate_json(raw) for raw in raws if raw]

    async def has_conversation(self, conversation: str) -> bool:
        async with redis_errors("has_conversation"):
            return await self.redis_client.zcard(REDIS_CONVERSATION_KEY.format(address=conversation)) > 0

    async def list_private_peers(self, user_id: str) -> list[str]:
        async with redis_errors("list_private_peers"):
            return await self.redis_client.zrevrange(REDIS_USER_PEERS_KEY.format(user_id=user_id), 0, -1)

    async def close(self) -> None:
        await self.redis_client.aclose()
        logger.info("RedisChatStore connection closed")
