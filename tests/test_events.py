import json

from pydantic import ValidationError
import pytest

from events import (
    JoinPrivateChat,
    RelayEnvelope,
    SendGroupMessage,
    Typing,
    parse_inbound,
)


def frame(event, data=None):
    body = {"event": event}
    if data is not None:
        body["data"] = data
    return json.dumps(body)


def test_parse_routes_to_event_model():
    event = parse_inbound(frame("sendGroupMessage", {"groupId": "g1", "content": "yo"}))
    assert isinstance(event, SendGroupMessage)
    assert event.data.group_id == "g1"
    assert event.data.content == "yo"


def test_missing_data_defaults_to_empty_payload():
    event = parse_inbound(frame("joinPrivateChat"))
    assert isinstance(event, JoinPrivateChat)
    assert event.data.recipient_id is None


def test_typing_payload():
    event = parse_inbound(frame("typing", {"chatType": "private", "recipientId": "u2"}))
    assert isinstance(event, Typing)
    assert event.data.chat_type == "private"


@pytest.mark.parametrize("raw", [
    "not json",
    frame("deleteEverything", {}),
    json.dumps({"data": {}}),
])
def test_invalid_frames_raise(raw):
    with pytest.raises(ValidationError):
        parse_inbound(raw)


def test_envelope_client_frame_strips_routing_metadata():
    envelope = RelayEnvelope(address="group:g1", event="userTyping", data={"userId": "u1"}, skip="conn-1")
    assert envelope.client_frame() == {"event": "userTyping", "data": {"userId": "u1"}}

    restored = RelayEnvelope.model_validate_json(envelope.model_dump_json())
    assert restored.skip == "conn-1"
    assert restored.address == "group:g1"
