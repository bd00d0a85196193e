from typing import Optional

from connection import Connection
import events
from logging_config import get_logger
from relay import Relay
from rooms import group_address, user_address
from schemas.messages import ChatType

logger = get_logger(__name__)


class EphemeralChannel:
    """Typing indicators. Never persisted, never acknowledged; incomplete requests are ignored."""

    def __init__(self, relay: Relay):
        self.relay = relay

    async def typing(self, connection: Connection, chat_type: Optional[str],
                     recipient_id: Optional[str] = None, group_id: Optional[str] = None) -> None:
        payload = {"userId": connection.user_id, "username": connection.identity.username}
        await self._relay(connection, events.USER_TYPING, payload, chat_type, recipient_id, group_id)

    async def stop_typing(self, connection: Connection, chat_type: Optional[str],
                          recipient_id: Optional[str] = None, group_id: Optional[str] = None) -> None:
        payload = {"userId": connection.user_id}
        await self._relay(connection, events.USER_STOPPED_TYPING, payload, chat_type, recipient_id, group_id)

    async def _relay(self, connection: Connection, event: str, payload: dict, chat_type: Optional[str],
                     recipient_id: Optional[str], group_id: Optional[str]) -> None:
        if chat_type == ChatType.PRIVATE.value and recipient_id:
            address = user_address(recipient_id)
        elif chat_type == ChatType.GROUP.value and group_id:
            address = group_address(group_id)
            # only members that joined the group room may signal into it
            if address not in connection.rooms:
                logger.debug(f"{connection} not in {address}, ignoring {event}")
                return
        else:
            return
        await self.relay.publish(address, event, payload, actor=connection.user_id, skip=connection.id)
