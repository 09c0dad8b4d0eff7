"""Resolve who is performing a request.

The device identifier is mandatory on every mutating call; the user
identifier is optional and only kept when it is a well-formed UUID.
"""

from typing import Any, Mapping

from ledgersync.audit import Actor
from ledgersync.errors import MissingActorError
from ledgersync.ids import is_identifier

USER_HEADERS = ("x-actor-user-id", "x-user-id")
DEVICE_HEADER = "x-device-id"


def resolve_actor(headers: Mapping[str, str], body: Mapping[str, Any] | None = None) -> Actor:
    """Headers take precedence over body fields (``userId``, ``deviceId``).

    Raises:
        MissingActorError: No non-blank device identifier was supplied.
    """
    body = body or {}

    user_id = None
    for header in USER_HEADERS:
        if headers.get(header):
            user_id = headers[header]
            break
    else:
        user_id = body.get("userId")
    if not isinstance(user_id, str) or not is_identifier(user_id):
        user_id = None

    device_id = headers.get(DEVICE_HEADER) or body.get("deviceId")
    if not isinstance(device_id, str) or not device_id.strip():
        raise MissingActorError()

    return Actor(device_id=device_id.strip(), user_id=user_id)
