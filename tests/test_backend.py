from fakeredis import FakeRedis, FakeServer
from fakeredis.aioredis import FakeRedis as FakeAsyncRedis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from backend import RedisChatStore
from errors import AuthenticationError, InfrastructureError
from identity import TokenVerifier, create_access_token
from redis_keys import REDIS_BLACKLIST_KEY, REDIS_MESSAGE_KEY, REDIS_USER_GROUPS_KEY, REDIS_USER_PEERS_KEY
from rooms import group_address
from schemas.messages import ChatType, Group, Message, Reaction


class UnreachableRedis:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def exists(self, key):
        raise RedisConnectionError("connection refused")


class KeyValueRedis:
    """Just the commands the read paths use."""

    def __init__(self):
        self.values = {}
        self.zsets = {}

    async def get(self, key):
        return self.values.get(key)

    async def mget(self, keys):
        return [self.values.get(k) for k in keys]

    async def zrevrange(self, key, start, end):
        members = [m for m, _ in sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1], reverse=True)]
        return members[start:] if end == -1 else members[start:end + 1]

    async def zcard(self, key):
        return len(self.zsets.get(key, {}))

    def index(self, conversation, message):
        self.values[f"chat:message:{message.id}"] = message.model_dump_json()
        self.zsets.setdefault(f"chat:conversation:{conversation}", {})[message.id] = message.created_at.timestamp()


async def test_redis_failures_surface_as_infrastructure_errors():
    store = RedisChatStore(redis_client=UnreachableRedis())
    with pytest.raises(InfrastructureError, match="Storage unavailable"):
        await store.get_message("m1")


async def test_verifier_reports_unavailable_store(jwt_secret):
    verifier = TokenVerifier(RedisChatStore(redis_client=UnreachableRedis()), secret=jwt_secret)
    with pytest.raises(AuthenticationError, match="Service unavailable"):
        await verifier.verify(create_access_token("u1", "user1", secret=jwt_secret))


async def test_list_conversation_newest_first_with_paging():
    client = KeyValueRedis()
    store = RedisChatStore(redis_client=client)
    messages = [Message(sender_id="u1", recipient_id="u2", chat_type=ChatType.PRIVATE, content=f"m{n}")
                for n in range(4)]
    for n, message in enumerate(messages):
        message.created_at = message.created_at.replace(microsecond=0).replace(second=n)
        client.index("u1-u2", message)

    assert [m.content for m in await store.list_conversation("u1-u2", 0, 2)] == ["m3", "m2"]
    assert [m.content for m in await store.list_conversation("u1-u2", 2, None)] == ["m1", "m0"]
    assert await store.has_conversation("u1-u2") is True
    assert await store.has_conversation("u1-u3") is False


@pytest.fixture
def redis_server():
    return FakeServer()


@pytest.fixture
async def redis_store(redis_server):
    store = RedisChatStore(redis_client=FakeAsyncRedis(server=redis_server, decode_responses=True))
    yield store
    await store.close()


@pytest.fixture
def other_client(redis_server):
    """A second connection to the same server, writing on behalf of another process."""
    return FakeRedis(server=redis_server, decode_responses=True)


async def test_update_retries_after_concurrent_write(redis_store, other_client):
    message = await redis_store.create_message(
        Message(sender_id="u1", recipient_id="u2", chat_type=ChatType.PRIVATE, content="hi"), "u1-u2")
    key = REDIS_MESSAGE_KEY.format(message_id=message.id)
    attempts = []

    def pin(current):
        attempts.append(current.model_copy(deep=True))
        if len(attempts) == 1:
            # commits after our read, before our write
            theirs = Message.model_validate_json(other_client.get(key))
            theirs.reactions.append(Reaction(user_id="u2", reaction="sad"))
            other_client.set(key, theirs.model_dump_json())
        current.is_pinned = True
        return True

    stored, changed = await redis_store.modify_message(message.id, pin)

    assert changed is True
    assert len(attempts) == 2
    assert attempts[0].reactions == []
    assert [r.reaction for r in attempts[1].reactions] == ["sad"]
    persisted = await redis_store.get_message(message.id)
    assert persisted.is_pinned is True
    assert [r.reaction for r in persisted.reactions] == ["sad"]


async def test_unchanged_update_writes_nothing(redis_store, other_client):
    message = await redis_store.create_message(
        Message(sender_id="u1", recipient_id="u2", chat_type=ChatType.PRIVATE, content="hi"), "u1-u2")
    key = REDIS_MESSAGE_KEY.format(message_id=message.id)
    before = other_client.get(key)

    stored, changed = await redis_store.modify_message(message.id, lambda m: False)

    assert changed is False
    assert stored.id == message.id
    assert other_client.get(key) == before
    assert await redis_store.modify_message("missing", lambda m: True) == (None, False)


async def test_create_message_indexes_private_peers(redis_store, other_client):
    await redis_store.create_message(
        Message(sender_id="u1", recipient_id="u2", chat_type=ChatType.PRIVATE, content="hi"), "u1-u2")
    await redis_store.create_message(
        Message(sender_id="u1", group_id="g1", chat_type=ChatType.GROUP, content="all"), group_address("g1"))

    assert other_client.zrange(REDIS_USER_PEERS_KEY.format(user_id="u1"), 0, -1) == ["u2"]
    assert other_client.zrange(REDIS_USER_PEERS_KEY.format(user_id="u2"), 0, -1) == ["u1"]
    assert await redis_store.list_conversation(group_address("g1")) != []


async def test_save_group_maintains_membership_sets(redis_store, other_client):
    group = Group(id="g1", name="Test Group", members=["u1", "u2"], admins=["u1"])
    await redis_store.save_group(group)
    assert other_client.smembers(REDIS_USER_GROUPS_KEY.format(user_id="u2")) == {"g1"}

    group.members = ["u1"]
    await redis_store.save_group(group)

    assert other_client.smembers(REDIS_USER_GROUPS_KEY.format(user_id="u2")) == set()
    assert other_client.smembers(REDIS_USER_GROUPS_KEY.format(user_id="u1")) == {"g1"}


async def test_revoked_tokens_expire(redis_store, other_client):
    await redis_store.revoke_token("t1", ttl=60)

    assert await redis_store.is_token_revoked("t1") is True
    assert await redis_store.is_token_revoked("t2") is False
    assert 0 < other_client.ttl(REDIS_BLACKLIST_KEY.format(token="t1")) <= 60
