from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect, status

from connection import Connection
from errors import AuthenticationError
import events
from handlers import EventDispatcher
from identity import Identity, TokenVerifier, bearer_token
from logging_config import get_logger
from presence import PresenceTracker
from rooms import RoomRouter

logger = get_logger(__name__)


class ConnectionGateway:
    """Owns the socket lifecycle: authenticate once, personal channel, sequential event loop, teardown."""

    def __init__(self, verifier: TokenVerifier, rooms: RoomRouter, presence: PresenceTracker,
                 dispatcher: EventDispatcher):
        self.verifier = verifier
        self.rooms = rooms
        self.presence = presence
        self.dispatcher = dispatcher

    async def authenticate(self, credential: Optional[str]) -> Identity:
        return await self.verifier.verify(credential)

    async def serve(self, websocket: WebSocket, token: Optional[str] = None) -> None:
        credential = token or bearer_token(websocket.headers.get("authorization"))
        try:
            identity = await self.authenticate(credential)
        except AuthenticationError as e:
            logger.info(f"WebSocket connection rejected: {e.message}")
            # a close before accept becomes a bare HTTP 403; accept first so the reason reaches the client
            await websocket.accept()
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
            return

        await websocket.accept()
        connection = Connection(websocket, identity)
        logger.info(f"User connected: {identity.username} ({identity.user_id}), connection {connection.id}")

        try:
            await self.rooms.join_personal(connection)
            await self.presence.on_connect(identity.user_id)
            await connection.send(events.CONNECTED, {
                "userId": identity.user_id,
                "username": identity.username,
                "connectionId": connection.id,
            })

            message_count = 0
            while True:
                frame = await websocket.receive_text()
                message_count += 1
                logger.debug(f"Received frame #{message_count} from {connection}")
                # one frame at a time: handlers for a connection never overlap
                await self.dispatcher.handle_frame(connection, frame)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected for {connection}")
        except Exception as e:
            logger.error(f"WebSocket error for {connection}: {e}", exc_info=True)
        finally:
            await self._teardown(connection)

    async def _teardown(self, connection: Connection) -> None:
        connection.closed = True
        try:
            await self.rooms.leave_all(connection)
        except Exception as e:
            logger.error(f"Error unsubscribing {connection}: {e}", exc_info=True)

        await self.presence.on_disconnect(connection.user_id)
        logger.info(f"User disconnected: {connection.identity.username} ({connection.user_id})")

        try:
            await connection.websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
