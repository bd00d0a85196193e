import json
from typing import Any
import uuid

from fastapi import WebSocket

from identity import Identity
from logging_config import get_logger

logger = get_logger(__name__)


class Connection:
    """One live socket. Identity is fixed at handshake; rooms is the set of addresses it is subscribed to."""

    def __init__(self, websocket: WebSocket, identity: Identity, connection_id: str = None):
        self.id = connection_id or str(uuid.uuid4())
        self.websocket = websocket
        self.identity = identity
        self.rooms: set[str] = set()
        self.closed = False

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    async def send(self, event: str, data: Any) -> None:
        await self.send_raw(json.dumps({"event": event, "data": data}))

    async def send_raw(self, frame: str) -> None:
        if self.closed:
            return
        await self.websocket.send_text(frame)

    async def send_error(self, message: str) -> None:
        await self.send("error", {"message": message})

    def __repr__(self) -> str:
        return f"Connection(id={self.id}, user={self.identity.user_id})"
