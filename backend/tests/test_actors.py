"""Test actor resolution from headers and body."""

import pytest

from app.actors import resolve_actor
from ledgersync.errors import MissingActorError

USER_ID = "8d3c1f0e-6c1b-4a57-9c0e-2f7b5d9a1e42"


def test_headers_win_over_body():
    actor = resolve_actor(
        {"x-device-id": "laptop", "x-actor-user-id": USER_ID},
        {"deviceId": "phone", "userId": "2f7b5d9a-0000-4a57-9c0e-8d3c1f0e6c1b"},
    )
    assert actor.device_id == "laptop"
    assert actor.user_id == USER_ID


def test_legacy_user_header():
    assert resolve_actor({"x-device-id": "d", "x-user-id": USER_ID}).user_id == USER_ID


def test_body_fallback():
    actor = resolve_actor({}, {"deviceId": "  phone  ", "userId": USER_ID})
    assert actor.device_id == "phone"
    assert actor.user_id == USER_ID


def test_non_uuid_user_dropped():
    assert resolve_actor({"x-device-id": "d", "x-user-id": "alice"}).user_id is None


@pytest.mark.parametrize("headers,body", [({}, None), ({"x-device-id": "   "}, None), ({}, {"deviceId": 7})])
def test_device_required(headers, body):
    with pytest.raises(MissingActorError):
        resolve_actor(headers, body)
