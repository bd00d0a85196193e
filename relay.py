"""Fan-out relay: publish an event to a room address, deliver it to every subscriber on every process.

Each process only tracks its own connections (address -> {connection_id: Connection}).
`LocalRelay` dispatches straight into that table. `RedisRelay` publishes through
Redis pub/sub and a per-process listener feeds received envelopes into the same
table, so callers never know which one they hold.
"""

from abc import ABC, abstractmethod
import asyncio
import json
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from connection import Connection
from constants import RELAY_RECONNECT_MAX_DELAY, RELAY_RECONNECT_MIN_DELAY, REDIS_URL
from events import RelayEnvelope
from logging_config import get_logger
from redis_keys import REDIS_ROOM_CHANNEL

logger = get_logger(__name__)


class Relay(ABC):
    def __init__(self):
        # NOTE: per-process view only. Other processes learn about events through the broker.
        self.room_connections: dict[str, dict[str, Connection]] = {}

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def subscribers(self, address: str) -> list[Connection]:
        return list(self.room_connections.get(address, {}).values())

    def addresses(self) -> list[str]:
        return list(self.room_connections)

    async def subscribe(self, address: str, connection: Connection) -> None:
        members = self.room_connections.setdefault(address, {})
        first = not members
        members[connection.id] = connection
        connection.rooms.add(address)
        logger.debug(f"{connection} subscribed to {address} (local subscribers: {len(members)})")
        if first:
            await self._channel_opened(address)

    async def unsubscribe(self, address: str, connection: Connection) -> None:
        connection.rooms.discard(address)
        members = self.room_connections.get(address)
        if not members or connection.id not in members:
            return
        del members[connection.id]
        logger.debug(f"{connection} unsubscribed from {address}")
        if not members:
            del self.room_connections[address]
            await self._channel_closed(address)

    async def unsubscribe_all(self, connection: Connection) -> None:
        for address in list(connection.rooms):
            await self.unsubscribe(address, connection)

    async def publish(self, address: str, event: str, data: Any, *, message_id: Optional[str] = None,
                      actor: Optional[str] = None, skip: Optional[str] = None) -> None:
        envelope = RelayEnvelope(
            address=address,
            event=event,
            data=data,
            message_id=message_id,
            actor=actor,
            skip=skip,
        )
        await self._publish(envelope)

    @abstractmethod
    async def _publish(self, envelope: RelayEnvelope) -> None: ...

    async def _channel_opened(self, address: str) -> None:
        pass

    async def _channel_closed(self, address: str) -> None:
        pass

    async def deliver(self, envelope: RelayEnvelope) -> int:
        """Send an envelope to this process's subscribers of its address. Returns the number of sends attempted."""
        members = self.room_connections.get(envelope.address)
        if not members:
            logger.debug(f"No local subscribers for {envelope.address}, dropping {envelope.event}")
            return 0

        targets = [c for c in members.values() if c.id != envelope.skip]
        if not targets:
            return 0

        frame = json.dumps(envelope.client_frame())
        results = await asyncio.gather(*(c.send_raw(frame) for c in targets), return_exceptions=True)

        for connection, result in zip(targets, results):
            if isinstance(result, Exception):
                # Connection is gone; its gateway task finishes the teardown
                logger.warning(f"Error sending {envelope.event} to {connection} on {envelope.address}: {result}")
                await self.unsubscribe_all(connection)

        logger.debug(f"Delivered {envelope.event} to {len(targets)} local connections on {envelope.address}")
        return len(targets)


class LocalRelay(Relay):
    """In-process dispatch. For single-process deployments and tests."""

    async def _publish(self, envelope: RelayEnvelope) -> None:
        await self.deliver(envelope)


class RedisRelay(Relay):
    """Redis pub/sub backed relay with one shared subscription connection per process.

    Publishing is fire-and-forget: if Redis is unreachable the envelope is logged
    and dropped. The listener reconnects with exponential backoff and
    resubscribes every channel that still has local subscribers.
    """

    def __init__(self, publisher: Optional[Redis] = None, subscriber: Optional[Redis] = None,
                 url: str = REDIS_URL, min_delay: float = RELAY_RECONNECT_MIN_DELAY,
                 max_delay: float = RELAY_RECONNECT_MAX_DELAY, poll_timeout: float = 1.0):
        super().__init__()
        # Separate connection for pub/sub (required by Redis)
        self.publisher = publisher or Redis.from_url(url, decode_responses=True)
        self.subscriber = subscriber or Redis.from_url(url, decode_responses=True)
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.poll_timeout = poll_timeout
        self.channels: set[str] = set()
        self.connected = False
        self.dropped_publishes = 0
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None

    @staticmethod
    def channel_name(address: str) -> str:
        return REDIS_ROOM_CHANNEL.format(address=address)

    async def start(self) -> None:
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self._listen())
            logger.info("Redis relay listener started")

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self._close_pubsub()
        for client in (self.publisher, self.subscriber):
            try:
                await client.aclose()
            except RedisError as e:
                logger.debug(f"Error closing relay Redis client: {e}")
        logger.info("Redis relay stopped")

    async def _publish(self, envelope: RelayEnvelope) -> None:
        channel = self.channel_name(envelope.address)
        try:
            subscribers = await self.publisher.publish(channel, envelope.model_dump_json())
            logger.debug(f"Published {envelope.event} to {channel}, {subscribers} subscribers")
        except (RedisError, OSError) as e:
            self.dropped_publishes += 1
            logger.warning(f"Relay publish of {envelope.event} to {channel} dropped: {e}")

    async def _channel_opened(self, address: str) -> None:
        channel = self.channel_name(address)
        self.channels.add(channel)
        if self._pubsub is None or not self.connected:
            # picked up by the listener on (re)connect
            return
        try:
            await self._pubsub.subscribe(channel)
            logger.debug(f"Subscribed to Redis channel {channel}")
        except (RedisError, OSError) as e:
            logger.warning(f"Subscribe to {channel} failed, will retry on reconnect: {e}")

    async def _channel_closed(self, address: str) -> None:
        channel = self.channel_name(address)
        self.channels.discard(channel)
        if self._pubsub is None or not self.connected:
            return
        try:
            await self._pubsub.unsubscribe(channel)
            logger.debug(f"Unsubscribed from Redis channel {channel}")
        except (RedisError, OSError) as e:
            logger.warning(f"Unsubscribe from {channel} failed: {e}")

    async def _close_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        self.connected = False
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.debug(f"Error closing pub/sub connection: {e}")

    async def _listen(self) -> None:
        delay = self.min_delay
        while True:
            try:
                self._pubsub = self.subscriber.pubsub(ignore_subscribe_messages=True)
                if self.channels:
                    await self._pubsub.subscribe(*self.channels)
                self.connected = True
                delay = self.min_delay
                logger.info(f"Redis relay connected, {len(self.channels)} channels subscribed")
                await self._consume()
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError) as e:
                logger.warning(f"Redis relay connection lost: {e}; reconnecting in {delay:.2f}s")
                await self._close_pubsub()
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_delay)

    async def _consume(self) -> None:
        while True:
            if not self._pubsub.subscribed:
                await asyncio.sleep(self.poll_timeout)
                continue

            message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=self.poll_timeout)
            if message is None or message.get("type") != "message":
                continue

            try:
                envelope = RelayEnvelope.model_validate_json(message["data"])
            except ValueError as e:
                logger.error(f"Error parsing relay message from {message.get('channel')}: {e}")
                continue

            try:
                await self.deliver(envelope)
            except Exception as e:
                logger.error(f"Error delivering {envelope.event} on {envelope.address}: {e}", exc_info=True)
