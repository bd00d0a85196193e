"""Room addressing and subscription.

Addresses are pure functions of participant ids so every process, and both
participants of a private chat, compute the same key without coordination.
The broadcaster publishes through these same functions.
"""

from typing import Optional

from connection import Connection
from constants import PRIVATE_JOIN_POLICY
from errors import AccessDeniedError, ValidationError
from logging_config import get_logger
from relay import Relay
from schemas.messages import ChatType, Message
from store import ChatStore

logger = get_logger(__name__)

PRIVATE_SEPARATOR = "-"
GROUP_PREFIX = "group:"
USER_PREFIX = "user:"

JOIN_POLICY_OPEN = "open"
JOIN_POLICY_EXISTING_THREAD = "existing_thread"


def private_address(user_a: str, user_b: str) -> str:
    return PRIVATE_SEPARATOR.join(sorted([str(user_a), str(user_b)]))


def group_address(group_id: str) -> str:
    return f"{GROUP_PREFIX}{group_id}"


def user_address(user_id: str) -> str:
    return f"{USER_PREFIX}{user_id}"


def message_address(message: Message) -> str:
    """The room a stored message belongs to."""
    if message.chat_type == ChatType.GROUP:
        return group_address(message.group_id)
    return private_address(message.sender_id, message.recipient_id)


class RoomRouter:
    def __init__(self, store: ChatStore, relay: Relay, private_join_policy: str = PRIVATE_JOIN_POLICY):
        if private_join_policy not in (JOIN_POLICY_OPEN, JOIN_POLICY_EXISTING_THREAD):
            raise ValueError(f"Unknown private join policy: {private_join_policy}")
        self.store = store
        self.relay = relay
        self.private_join_policy = private_join_policy

    async def join_personal(self, connection: Connection) -> str:
        address = user_address(connection.user_id)
        await self.relay.subscribe(address, connection)
        return address

    async def join_private(self, connection: Connection, other_id: Optional[str]) -> dict:
        if not other_id:
            raise ValidationError("Recipient ID is required")

        address = private_address(connection.user_id, other_id)
        if self.private_join_policy == JOIN_POLICY_EXISTING_THREAD and other_id != connection.user_id:
            if not await self.store.has_conversation(address):
                logger.info(f"User {connection.user_id} denied private chat with {other_id}: no prior thread")
                raise AccessDeniedError("Access denied to private chat")

        await self.relay.subscribe(address, connection)
        logger.info(f"User {connection.user_id} joined private chat with {other_id}")
        return {"room": address, "recipientId": other_id}

    async def join_group(self, connection: Connection, group_id: Optional[str]) -> dict:
        if not group_id:
            raise ValidationError("Group ID is required")

        group = await self.store.get_group(group_id)
        if group is None or connection.user_id not in group.members:
            logger.info(f"User {connection.user_id} denied access to group {group_id}")
            raise AccessDeniedError("Access denied to group")

        await self.relay.subscribe(group_address(group_id), connection)
        logger.info(f"User {connection.user_id} joined group {group_id}")
        return {"groupId": group_id}

    async def leave(self, connection: Connection, address: Optional[str]) -> dict:
        if not address:
            raise ValidationError("Room is required")
        if address == user_address(connection.user_id):
            raise ValidationError("Cannot leave personal channel")
        if address not in connection.rooms:
            raise ValidationError("Not in room")
        await self.relay.unsubscribe(address, connection)
        logger.info(f"User {connection.user_id} left {address}")
        return {"room": address}

    async def leave_all(self, connection: Connection) -> None:
        await self.relay.unsubscribe_all(connection)
