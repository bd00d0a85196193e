import asyncio
import json
from typing import Optional

from fastapi import WebSocketDisconnect
import pytest

from connection import Connection
from identity import Identity, create_access_token
from relay import LocalRelay
from schemas.messages import Group, User, UserStatus
from services import build_services
from store import InMemoryChatStore

TEST_SECRET = "test-secret"


class FakeWebSocket:
    """Stands in for a starlette WebSocket: frames pushed by the test, frames sent recorded as dicts."""

    def __init__(self, headers: Optional[dict] = None, fail_sends: bool = False):
        self.headers = headers or {}
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.accepted = False
        self.closed = False
        self.close_code = None
        self.close_reason = None
        self.fail_sends = fail_sends

    async def accept(self):
        self.accepted = True

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    async def send_text(self, data: str):
        if self.fail_sends or self.closed:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(data))

    async def receive_text(self) -> str:
        frame = await self.incoming.get()
        if frame is None:
            raise WebSocketDisconnect(code=1000)
        return frame

    def push(self, event: str, data: Optional[dict] = None):
        self.incoming.put_nowait(json.dumps({"event": event, "data": data or {}}))

    def push_raw(self, frame: str):
        self.incoming.put_nowait(frame)

    def disconnect(self):
        self.incoming.put_nowait(None)

    def events(self, name: str) -> list:
        return [frame["data"] for frame in self.sent if frame["event"] == name]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def jwt_secret() -> str:
    return TEST_SECRET


@pytest.fixture
def eventually():
    return wait_until


@pytest.fixture
def user1() -> User:
    return User(id="u1", username="user1")


@pytest.fixture
def user2() -> User:
    return User(id="u2", username="user2")


@pytest.fixture
def user3() -> User:
    return User(id="u3", username="user3")


@pytest.fixture
def group1(user1, user2) -> Group:
    return Group(id="g1", name="Test Group", members=[user1.id, user2.id], admins=[user1.id])


@pytest.fixture
def store(user1, user2, user3, group1) -> InMemoryChatStore:
    store = InMemoryChatStore()
    for user in (user1, user2, user3):
        store.users[user.id] = user
    store.users["banned"] = User(id="banned", username="banned_user", status=UserStatus.BANNED)
    store.groups[group1.id] = group1
    return store


@pytest.fixture
def relay() -> LocalRelay:
    return LocalRelay()


@pytest.fixture
def services(store, relay):
    return build_services(store=store, relay=relay, jwt_secret=TEST_SECRET, private_join_policy="open")


@pytest.fixture
def token_for():
    def make(user: User, expires_in: int = 3600) -> str:
        return create_access_token(user.id, user.username, expires_in=expires_in, secret=TEST_SECRET)
    return make


def identity_of(user: User) -> Identity:
    return Identity(user_id=user.id, username=user.username, active_status=user.status.value, avatar=user.avatar)


@pytest.fixture
def connect():
    """Build a Connection on a FakeWebSocket for a user, bypassing the handshake."""
    def make(user: User, websocket: Optional[FakeWebSocket] = None) -> Connection:
        return Connection(websocket or FakeWebSocket(), identity_of(user))
    return make


@pytest.fixture
def make_socket():
    return FakeWebSocket


@pytest.fixture
def identity_for():
    return identity_of
