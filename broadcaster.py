"""Message mutations: validate, persist, then publish to the owning room.

Publishing always happens after the store call returned. If the process dies in
between, the change is persisted but not announced; clients recover it from the
REST read paths.
"""

from typing import Optional

from codec import encode_content, read_content
from constants import (
    COMPRESSION_THRESHOLD,
    FILE_TYPES,
    MAX_CONTENT_LENGTH,
    MAX_FILE_SIZE,
    REACTION_TYPES,
)
from errors import AuthorizationError, NotFoundError, ValidationError
import events
from identity import Identity
from logging_config import get_logger
from relay import Relay
from rooms import group_address, message_address, private_address
from schemas.messages import (
    ChatTarget,
    ChatType,
    FileAttachment,
    Message,
    PublicUser,
    Reaction,
    ReadReceipt,
    utcnow,
)
from store import ChatStore

logger = get_logger(__name__)


def present_message(message: Message, sender: Optional[PublicUser] = None) -> dict:
    """Client view of a stored message: content decompressed, sender's public fields attached.

    Soft-deleted messages keep their content at rest for audit, but clients only see the tombstone.
    """
    data = message.to_wire()
    data["isCompressed"] = False
    if message.is_deleted:
        for field in ("content", "fileUrl", "fileName", "fileSize", "fileType"):
            data[field] = None
    else:
        data["content"] = read_content(message.content, message.is_compressed)
    if sender is not None:
        data["sender"] = sender.to_wire()
    return data


class MessageBroadcaster:
    def __init__(self, store: ChatStore, relay: Relay, max_content_length: int = MAX_CONTENT_LENGTH,
                 compression_threshold: int = COMPRESSION_THRESHOLD, max_file_size: int = MAX_FILE_SIZE):
        self.store = store
        self.relay = relay
        self.max_content_length = max_content_length
        self.compression_threshold = compression_threshold
        self.max_file_size = max_file_size

    def _clean_content(self, content: Optional[str], missing_message: str) -> str:
        if not isinstance(content, str) or not content.strip():
            raise ValidationError(missing_message)
        content = content.strip()
        if len(content) > self.max_content_length:
            raise ValidationError(f"Message cannot exceed {self.max_content_length} characters")
        return content

    async def _resolve_target(self, sender: Identity, target: ChatTarget) -> str:
        """Check the sender may post to the target and return its room address."""
        if target.chat_type == ChatType.PRIVATE:
            return private_address(sender.user_id, target.recipient_id)

        group = await self.store.get_group(target.group_id)
        if group is None:
            raise NotFoundError("Group not found")
        if sender.user_id not in group.members:
            raise AuthorizationError("Not a group member")
        return group_address(group.id)

    @staticmethod
    def _missing_target_message(target: ChatTarget) -> str:
        if target.chat_type == ChatType.PRIVATE:
            return "Recipient ID and content are required"
        return "Group ID and content are required"

    @staticmethod
    def _new_message_event(message: Message) -> str:
        if message.chat_type == ChatType.PRIVATE:
            return events.NEW_PRIVATE_MESSAGE
        return events.NEW_GROUP_MESSAGE

    async def _persist_and_announce(self, sender: Identity, message: Message, address: str) -> Message:
        await self.store.create_message(message, address)
        await self.relay.publish(
            address,
            self._new_message_event(message),
            present_message(message, sender.public()),
            message_id=message.id,
            actor=sender.user_id,
        )
        logger.info(f"{message.chat_type.value.capitalize()} message {message.id} sent from {sender.user_id} to {address}")
        return message

    async def send_message(self, sender: Identity, target: ChatTarget, content: Optional[str]) -> Message:
        target_id = target.recipient_id if target.chat_type == ChatType.PRIVATE else target.group_id
        if not target_id:
            raise ValidationError(self._missing_target_message(target))
        content = self._clean_content(content, self._missing_target_message(target))

        address = await self._resolve_target(sender, target)
        stored, compressed = encode_content(content, self.compression_threshold)
        message = Message(
            sender_id=sender.user_id,
            chat_type=target.chat_type,
            recipient_id=target.recipient_id if target.chat_type == ChatType.PRIVATE else None,
            group_id=target.group_id if target.chat_type == ChatType.GROUP else None,
            content=stored,
            is_compressed=compressed,
        )
        return await self._persist_and_announce(sender, message, address)

    async def send_file_message(self, sender: Identity, target: ChatTarget, attachment: FileAttachment) -> Message:
        target_id = target.recipient_id if target.chat_type == ChatType.PRIVATE else target.group_id
        if not target_id or not attachment.file_url:
            raise ValidationError("File URL and a recipient or group are required")
        if attachment.file_type not in FILE_TYPES:
            raise ValidationError(f"File type must be one of: {', '.join(FILE_TYPES)}")
        if attachment.file_size is not None and not 0 <= attachment.file_size <= self.max_file_size:
            raise ValidationError(f"File size cannot exceed {self.max_file_size // (1024 * 1024)}MB")

        address = await self._resolve_target(sender, target)
        message = Message(
            sender_id=sender.user_id,
            chat_type=target.chat_type,
            recipient_id=target.recipient_id if target.chat_type == ChatType.PRIVATE else None,
            group_id=target.group_id if target.chat_type == ChatType.GROUP else None,
            file_url=attachment.file_url,
            file_type=attachment.file_type,
            file_name=attachment.file_name,
            file_size=attachment.file_size,
        )
        return await self._persist_and_announce(sender, message, address)

    async def _load_live(self, message_id: Optional[str]) -> Message:
        message = await self.store.get_message(message_id) if message_id else None
        if message is None or message.is_deleted:
            raise NotFoundError("Message not found")
        return message

    async def edit_message(self, message_id: str, actor_id: str, content: Optional[str]) -> Message:
        if not message_id:
            raise NotFoundError("Message not found")
        content = self._clean_content(content, "Content is required")
        stored, compressed = encode_content(content, self.compression_threshold)
        # ownership and liveness are checked against the fresh copy inside the store
        message = await self.store.edit_message(message_id, actor_id, stored, compressed, utcnow())

        await self.relay.publish(
            message_address(message),
            events.MESSAGE_EDITED,
            {"messageId": message.id, "content": content, "editedAt": message.edited_at.isoformat()},
            message_id=message.id,
            actor=actor_id,
        )
        logger.info(f"Message {message.id} edited by {actor_id}")
        return message

    async def delete_message(self, message_id: str, actor_id: str) -> Message:
        if not message_id:
            raise NotFoundError("Message not found")
        message = await self.store.soft_delete_message(message_id, actor_id, utcnow())

        await self.relay.publish(
            message_address(message),
            events.MESSAGE_DELETED,
            {"messageId": message.id, "deletedBy": actor_id},
            message_id=message.id,
            actor=actor_id,
        )
        logger.info(f"Message {message.id} deleted by {actor_id}")
        return message

    async def pin_message(self, message_id: str, actor_id: str) -> Message:
        message = await self._load_live(message_id)

        if message.chat_type == ChatType.GROUP:
            group = await self.store.get_group(message.group_id)
            if group is None or actor_id not in group.members:
                raise AuthorizationError("Access denied")
            if actor_id not in group.admins:
                raise AuthorizationError("Only group admins can pin messages")
        elif actor_id not in (message.sender_id, message.recipient_id):
            raise AuthorizationError("Access denied")

        message = await self.store.pin_message(message.id, actor_id, utcnow())

        await self.relay.publish(
            message_address(message),
            events.MESSAGE_PINNED,
            {"messageId": message.id, "pinnedBy": actor_id, "pinnedAt": message.pinned_at.isoformat()},
            message_id=message.id,
            actor=actor_id,
        )
        logger.info(f"Message {message.id} pinned by {actor_id}")
        return message

    async def _is_participant(self, message: Message, user_id: str) -> bool:
        if message.chat_type == ChatType.PRIVATE:
            return user_id in (message.sender_id, message.recipient_id)
        group = await self.store.get_group(message.group_id)
        return group is not None and user_id in group.members

    async def add_reaction(self, message_id: Optional[str], actor: Identity, reaction: Optional[str]) -> dict:
        if not message_id or reaction not in REACTION_TYPES:
            raise ValidationError("Invalid message ID or reaction")

        message = await self._load_live(message_id)
        if not await self._is_participant(message, actor.user_id):
            raise AuthorizationError("Access denied")
        if message.has_reaction(actor.user_id, reaction):
            raise ValidationError("Reaction already exists")

        added = await self.store.add_reaction(message.id, Reaction(user_id=actor.user_id, reaction=reaction))
        if not added:
            # lost a race with an identical reaction from another connection
            raise ValidationError("Reaction already exists")

        payload = {
            "messageId": message.id,
            "reaction": reaction,
            "userId": actor.user_id,
            "username": actor.username,
        }
        await self.relay.publish(
            message_address(message),
            events.MESSAGE_REACTION_ADDED,
            payload,
            message_id=message.id,
            actor=actor.user_id,
        )
        logger.info(f"Reaction {reaction} added to message {message.id} by {actor.user_id}")
        return payload

    async def mark_read(self, message_id: Optional[str], actor_id: str) -> Optional[dict]:
        """Returns the published payload, or None when nothing changed."""
        message = await self.store.get_message(message_id) if message_id else None
        if message is None:
            return None
        if not await self._is_participant(message, actor_id):
            logger.debug(f"Ignoring read receipt from non-participant {actor_id} on {message.id}")
            return None
        if message.was_read_by(actor_id):
            return None
        if not await self.store.add_read_receipt(message.id, ReadReceipt(user_id=actor_id)):
            return None

        payload = {"messageId": message.id, "readBy": actor_id}
        await self.relay.publish(
            message_address(message),
            events.MESSAGE_READ,
            payload,
            message_id=message.id,
            actor=actor_id,
        )
        return payload
