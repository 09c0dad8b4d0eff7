"""Append-only audit trail.

One row per mutating call (sync, admin update/delete/restore), keyed by
actor and entity, with before/after snapshots. Rows are never updated or
deleted.

An audit write happens after the mutation it describes is already
durable. If it fails, the request fails too, but the data change stays:
the trail may be missing that event. That gap is logged with an
``AUDIT GAP`` marker so it can be alerted on.
"""

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .errors import AuditWriteError, StorageError
from .storage.base import AUDIT_EVENTS_TABLE, Store
from .types import utc_now

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    SYNC = "sync"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"


@dataclass(frozen=True)
class Actor:
    """Who performed a mutation. The device is mandatory, the user is not."""

    device_id: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class AuditEvent:
    workspace_id: str
    entity_type: str
    action: AuditAction
    actor: Actor
    entity_id: Optional[str] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    created_at: str = field(default_factory=utc_now)

    def to_row(self) -> Dict[str, Any]:
        return {
            "workspace_id": self.workspace_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": AuditAction(self.action).value,
            "before": self.before,
            "after": self.after,
            "actor_user_id": self.actor.user_id,
            "actor_device_id": self.actor.device_id,
            "created_at": self.created_at,
        }


class AuditRecorder:
    """Writes audit events to the ``audit_events`` table."""

    def __init__(self, store: Store):
        self._store = store

    async def record(self, event: AuditEvent) -> None:
        try:
            await self._store.insert(AUDIT_EVENTS_TABLE, [event.to_row()])
        except StorageError as e:
            logger.error(
                "AUDIT GAP | workspace=%s entity=%s/%s action=%s device=%s | %s",
                event.workspace_id,
                event.entity_type,
                event.entity_id,
                AuditAction(event.action).value,
                event.actor.device_id,
                e.message,
            )
            raise AuditWriteError(f"audit write failed after committed {event.entity_type} change: {e.message}") from e
        logger.debug(
            "Audit %s %s/%s by %s",
            AuditAction(event.action).value,
            event.entity_type,
            event.entity_id,
            asdict(event.actor),
        )
