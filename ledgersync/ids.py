"""Deterministic identity mapping.

Client devices name entities with local strings ("card-1", "tx-42"). The
store keys rows by UUID. Mapping is a pure content hash so two devices that
reference the same local ID converge on the same row without coordination.
"""

import hashlib
import re
import uuid

_IDENTIFIER_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

WORKSPACE_NAMESPACE = "workspace"

ENTITY_CARD = "card"
ENTITY_CATEGORY = "category"
ENTITY_PLAN = "plan"
ENTITY_TRANSACTION = "transaction"


def is_identifier(value) -> bool:
    """True for canonical UUID strings (already-mapped values)."""
    return isinstance(value, str) and bool(_IDENTIFIER_RE.match(value))


def to_surrogate_id(namespace: str, *parts: str) -> str:
    """Derive a stable UUID from a namespace and its parts.

    SHA-1 over ``namespace:part1:part2...`` with version-5 and RFC 4122
    variant bits, so the result is shaped exactly like a natively issued
    UUID.
    """
    name = ":".join((namespace, *parts))
    digest = hashlib.sha1(name.encode("utf-8")).digest()
    return str(uuid.UUID(bytes=digest[:16], version=5))


def workspace_to_id(workspace_key: str) -> str:
    if is_identifier(workspace_key):
        return workspace_key
    return to_surrogate_id(WORKSPACE_NAMESPACE, workspace_key)


def entity_to_id(workspace_id: str, entity: str, source_id: str) -> str:
    """Map a client-local entity ID into the workspace's ID space."""
    return to_surrogate_id(workspace_id, entity, source_id)


def resolve_entity_id(workspace_id: str, entity: str, value: str) -> str:
    """Like :func:`entity_to_id` but passes existing identifiers through."""
    if is_identifier(value):
        return value
    return entity_to_id(workspace_id, entity, value)
