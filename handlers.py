"""Inbound event routing and the per-connection error boundary."""

from pydantic import ValidationError as PayloadError

from broadcaster import MessageBroadcaster
from connection import Connection
from ephemeral import EphemeralChannel
from errors import ChatError, InfrastructureError
import events
from events import (
    AddReaction,
    InboundEvent,
    JoinGroupChat,
    JoinPrivateChat,
    LeaveChat,
    MarkMessageAsRead,
    SendFileMessage,
    SendGroupMessage,
    SendPrivateMessage,
    StopTyping,
    Typing,
)
from logging_config import get_logger
from rooms import RoomRouter
from schemas.messages import ChatTarget, FileAttachment

logger = get_logger(__name__)

# Reported to the client when a handler fails for a reason it should not see
FAILURE_MESSAGES = {
    JoinPrivateChat: "Failed to join private chat",
    JoinGroupChat: "Failed to join group chat",
    LeaveChat: "Failed to leave chat",
    SendPrivateMessage: "Failed to send message",
    SendGroupMessage: "Failed to send message",
    SendFileMessage: "Failed to send message",
    AddReaction: "Failed to add reaction",
}

# Events whose failures are logged only, never reported
SILENT_EVENTS = (MarkMessageAsRead, Typing, StopTyping)


class EventDispatcher:
    def __init__(self, rooms: RoomRouter, broadcaster: MessageBroadcaster, ephemeral: EphemeralChannel):
        self.rooms = rooms
        self.broadcaster = broadcaster
        self.ephemeral = ephemeral

    async def handle_frame(self, connection: Connection, frame: str) -> None:
        try:
            event = events.parse_inbound(frame)
        except PayloadError as e:
            logger.debug(f"Invalid frame from {connection}: {e.errors(include_url=False)}")
            await connection.send_error("Invalid event")
            return
        await self.dispatch(connection, event)

    async def dispatch(self, connection: Connection, event: InboundEvent) -> None:
        """Run one event. Nothing raised here reaches the connection's receive loop."""
        try:
            await self._route(connection, event)
        except ChatError as e:
            if isinstance(event, SILENT_EVENTS):
                logger.warning(f"{event.event} from {connection} failed: {e.message}")
                return
            if isinstance(e, InfrastructureError):
                await connection.send_error(FAILURE_MESSAGES.get(type(event), "Internal server error"))
            else:
                await connection.send_error(e.message)
        except Exception as e:
            logger.error(f"Error handling {event.event} from {connection}: {e}", exc_info=True)
            if not isinstance(event, SILENT_EVENTS):
                await connection.send_error(FAILURE_MESSAGES.get(type(event), "Internal server error"))

    async def _route(self, connection: Connection, event: InboundEvent) -> None:
        identity = connection.identity
        data = event.data

        if isinstance(event, JoinPrivateChat):
            result = await self.rooms.join_private(connection, data.recipient_id)
            await connection.send(events.JOINED_PRIVATE_CHAT, result)

        elif isinstance(event, JoinGroupChat):
            result = await self.rooms.join_group(connection, data.group_id)
            await connection.send(events.JOINED_GROUP_CHAT, result)

        elif isinstance(event, LeaveChat):
            result = await self.rooms.leave(connection, data.room)
            await connection.send(events.LEFT_CHAT, result)

        elif isinstance(event, SendPrivateMessage):
            await self.broadcaster.send_message(identity, ChatTarget.private(data.recipient_id), data.content)

        elif isinstance(event, SendGroupMessage):
            await self.broadcaster.send_message(identity, ChatTarget.group(data.group_id), data.content)

        elif isinstance(event, SendFileMessage):
            target = ChatTarget.private(data.recipient_id) if data.recipient_id else ChatTarget.group(data.group_id)
            attachment = FileAttachment(
                file_url=data.file_url,
                file_type=data.file_type,
                file_name=data.file_name,
                file_size=data.file_size,
            )
            await self.broadcaster.send_file_message(identity, target, attachment)

        elif isinstance(event, MarkMessageAsRead):
            await self.broadcaster.mark_read(data.message_id, identity.user_id)

        elif isinstance(event, AddReaction):
            await self.broadcaster.add_reaction(data.message_id, identity, data.reaction)

        elif isinstance(event, Typing):
            await self.ephemeral.typing(connection, data.chat_type, data.recipient_id, data.group_id)

        elif isinstance(event, StopTyping):
            await self.ephemeral.stop_typing(connection, data.chat_type, data.recipient_id, data.group_id)

        else:
            raise TypeError(f"Unhandled event type: {type(event).__name__}")
