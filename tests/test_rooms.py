import pytest

from errors import AccessDeniedError, ValidationError
from rooms import (
    RoomRouter,
    group_address,
    message_address,
    private_address,
    user_address,
)
from schemas.messages import ChatType, Message


@pytest.mark.parametrize("a, b", [
    ("u1", "u2"),
    ("u2", "u1"),
    ("65f0c3", "65f0c2"),
    ("10", "9"),
    ("same", "same"),
])
def test_private_address_is_symmetric(a, b):
    assert private_address(a, b) == private_address(b, a)


def test_private_address_format():
    assert private_address("u2", "u1") == "u1-u2"


def test_group_and_user_addresses():
    assert group_address("g1") == "group:g1"
    assert user_address("u1") == "user:u1"


def test_message_address_matches_router_addresses():
    private = Message(sender_id="u2", recipient_id="u1", chat_type=ChatType.PRIVATE, content="x")
    group = Message(sender_id="u2", group_id="g1", chat_type=ChatType.GROUP, content="x")
    assert message_address(private) == private_address("u1", "u2")
    assert message_address(group) == group_address("g1")


async def test_join_private_subscribes_both_sides_to_same_room(services, relay, connect, user1, user2):
    c1, c2 = connect(user1), connect(user2)

    r1 = await services.rooms.join_private(c1, user2.id)
    r2 = await services.rooms.join_private(c2, user1.id)

    assert r1 == {"room": "u1-u2", "recipientId": "u2"}
    assert r1["room"] == r2["room"]
    assert {c.id for c in relay.subscribers("u1-u2")} == {c1.id, c2.id}


async def test_join_private_requires_recipient(services, connect, user1):
    with pytest.raises(ValidationError, match="Recipient ID is required"):
        await services.rooms.join_private(connect(user1), None)


async def test_join_group_member(services, relay, connect, user1, group1):
    c1 = connect(user1)
    result = await services.rooms.join_group(c1, group1.id)
    assert result == {"groupId": group1.id}
    assert c1 in relay.subscribers("group:g1")
    assert "group:g1" in c1.rooms


async def test_join_group_non_member_denied_and_not_subscribed(services, relay, connect, user3, group1):
    c3 = connect(user3)
    with pytest.raises(AccessDeniedError, match="Access denied to group"):
        await services.rooms.join_group(c3, group1.id)
    assert relay.subscribers("group:g1") == []
    assert c3.rooms == set()


async def test_join_group_missing_group(services, connect, user1):
    with pytest.raises(AccessDeniedError, match="Access denied to group"):
        await services.rooms.join_group(connect(user1), "nope")


async def test_join_group_requires_id(services, connect, user1):
    with pytest.raises(ValidationError, match="Group ID is required"):
        await services.rooms.join_group(connect(user1), "")


async def test_existing_thread_policy_requires_prior_message(store, relay, connect, user1, user2):
    router = RoomRouter(store, relay, private_join_policy="existing_thread")
    c1 = connect(user1)

    with pytest.raises(AccessDeniedError, match="Access denied to private chat"):
        await router.join_private(c1, user2.id)

    message = Message(sender_id=user2.id, recipient_id=user1.id, chat_type=ChatType.PRIVATE, content="hello")
    await store.create_message(message, private_address(user1.id, user2.id))

    result = await router.join_private(c1, user2.id)
    assert result["room"] == "u1-u2"


def test_unknown_join_policy_rejected(store, relay):
    with pytest.raises(ValueError):
        RoomRouter(store, relay, private_join_policy="friends-only")


async def test_leave_room(services, relay, connect, user1, user2):
    c1 = connect(user1)
    await services.rooms.join_personal(c1)
    await services.rooms.join_private(c1, user2.id)

    assert await services.rooms.leave(c1, "u1-u2") == {"room": "u1-u2"}
    assert relay.subscribers("u1-u2") == []

    with pytest.raises(ValidationError, match="Cannot leave personal channel"):
        await services.rooms.leave(c1, "user:u1")
    with pytest.raises(ValidationError, match="Not in room"):
        await services.rooms.leave(c1, "u1-u2")
