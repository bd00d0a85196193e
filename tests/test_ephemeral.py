import pytest

from ephemeral import EphemeralChannel


@pytest.fixture
def channel(relay):
    return EphemeralChannel(relay)


async def test_private_typing_reaches_recipient_personal_channel(channel, relay, connect, user1, user2):
    sender, recipient = connect(user1), connect(user2)
    await relay.subscribe("user:u1", sender)
    await relay.subscribe("user:u2", recipient)

    await channel.typing(sender, "private", recipient_id="u2")
    await channel.stop_typing(sender, "private", recipient_id="u2")

    assert recipient.websocket.events("userTyping") == [{"userId": "u1", "username": "user1"}]
    assert recipient.websocket.events("userStoppedTyping") == [{"userId": "u1"}]
    assert sender.websocket.sent == []


async def test_group_typing_excludes_sender_connection(channel, relay, connect, user1, user2):
    sender, member = connect(user1), connect(user2)
    await relay.subscribe("group:g1", sender)
    await relay.subscribe("group:g1", member)

    await channel.typing(sender, "group", group_id="g1")

    assert member.websocket.events("userTyping") == [{"userId": "u1", "username": "user1"}]
    assert sender.websocket.sent == []


async def test_group_typing_requires_joined_room(channel, relay, connect, user2, user3):
    outsider, member = connect(user3), connect(user2)
    await relay.subscribe("group:g1", member)

    await channel.typing(outsider, "group", group_id="g1")

    assert member.websocket.sent == []


@pytest.mark.parametrize("chat_type, recipient_id, group_id", [
    ("private", None, None),
    ("group", None, None),
    (None, "u2", None),
    ("channel", "u2", "g1"),
])
async def test_incomplete_typing_requests_are_ignored(channel, relay, connect, user1, user2,
                                                       chat_type, recipient_id, group_id):
    sender, recipient = connect(user1), connect(user2)
    await relay.subscribe("user:u2", recipient)
    await relay.subscribe("group:g1", recipient)
    await relay.subscribe("group:g1", sender)

    await channel.typing(sender, chat_type, recipient_id=recipient_id, group_id=group_id)

    assert recipient.websocket.sent == []
