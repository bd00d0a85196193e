from dataclasses import dataclass
from typing import Optional

from backend import RedisChatStore
from broadcaster import MessageBroadcaster
import constants
from ephemeral import EphemeralChannel
from gateway import ConnectionGateway
from handlers import EventDispatcher
from history import MessageHistory
from identity import TokenVerifier
from logging_config import get_logger
from presence import PresenceTracker
from relay import LocalRelay, Relay, RedisRelay
from rooms import RoomRouter
from store import ChatStore, InMemoryChatStore

logger = get_logger(__name__)


@dataclass
class ChatServices:
    store: ChatStore
    relay: Relay
    verifier: TokenVerifier
    rooms: RoomRouter
    broadcaster: MessageBroadcaster
    history: MessageHistory
    presence: PresenceTracker
    ephemeral: EphemeralChannel
    dispatcher: EventDispatcher
    gateway: ConnectionGateway

    async def start(self) -> None:
        await self.relay.start()

    async def stop(self) -> None:
        await self.relay.stop()
        await self.store.close()


def build_services(store: Optional[ChatStore] = None, relay: Optional[Relay] = None,
                   jwt_secret: str = constants.JWT_SECRET,
                   private_join_policy: str = constants.PRIVATE_JOIN_POLICY) -> ChatServices:
    if store is None:
        if constants.STORE_BACKEND == "redis":
            store = RedisChatStore()
        else:
            store = InMemoryChatStore()

    if relay is None:
        relay = RedisRelay() if constants.RELAY_BACKEND == "redis" else LocalRelay()

    logger.info(f"Building chat services: store={type(store).__name__}, relay={type(relay).__name__}")

    verifier = TokenVerifier(store, secret=jwt_secret)
    rooms = RoomRouter(store, relay, private_join_policy=private_join_policy)
    broadcaster = MessageBroadcaster(store, relay)
    presence = PresenceTracker(store)
    ephemeral = EphemeralChannel(relay)
    dispatcher = EventDispatcher(rooms, broadcaster, ephemeral)
    gateway = ConnectionGateway(verifier, rooms, presence, dispatcher)

    return ChatServices(
        store=store,
        relay=relay,
        verifier=verifier,
        rooms=rooms,
        broadcaster=broadcaster,
        history=MessageHistory(store),
        presence=presence,
        ephemeral=ephemeral,
        dispatcher=dispatcher,
        gateway=gateway,
    )
