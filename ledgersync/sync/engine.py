"""Sync engine: one accepted sync call, end to end.

Order of operations for ``SyncEngine.sync``:

1. Load the stored state and revision for the workspace.
2. Revision guard (only when the caller sent a revision).
3. Merge stored and incoming state.
4. Project the merged state into flat rows.
5. Upsert the workspace row, then cards, categories, plans and
   transactions in bounded batches. A failed batch aborts the call.
6. Commit the merged state with ``revision + 1``.
7. Record one audit event.

The revision only moves in step 6, so a call that fails earlier leaves the
revision untouched. Rows written by step 5 are idempotent upserts and are
overwritten by the next successful sync. There is no cross-request
atomicity; the revision guard is the only serialization primitive.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from ..audit import Actor, AuditAction, AuditEvent, AuditRecorder
from ..errors import DuplicateRowError, RevisionConflictError, StorageError
from ..ids import workspace_to_id
from ..storage.base import (
    APP_STATES_TABLE,
    CARDS_TABLE,
    CATEGORIES_TABLE,
    DEFAULT_BATCH_SIZE,
    INSTALLMENT_PLANS_TABLE,
    TRANSACTIONS_TABLE,
    WORKSPACES_TABLE,
    Query,
    Row,
    Store,
    chunked,
)
from ..types import AppState, utc_now
from .merge import merge_states
from .revision import INITIAL_REVISION, check_revision, next_revision
from .transform import SyncRows, project_state

logger = logging.getLogger(__name__)

APP_STATE_ENTITY = "app_state"


@dataclass
class StoredState:
    """The server copy of a workspace's state."""

    workspace_id: str
    state: AppState
    revision: int
    updated_at: Optional[str]


@dataclass
class SyncOutcome:
    state: AppState
    revision: int
    server_updated_at: str
    rows: SyncRows


def state_summary(state: Optional[AppState], revision: int) -> Optional[Dict[str, Any]]:
    """Compact snapshot for audit rows; full states are too large to copy."""
    if state is None:
        return None
    return {
        "revision": revision,
        "updatedAt": state.updated_at,
        "schemaVersion": state.schema_version,
        "counts": state.counts(),
    }


class SyncEngine:
    """Runs sync calls against a :class:`~ledgersync.storage.base.Store`.

    Args:
        store: Storage backend.
        audit: Audit recorder; defaults to one on the same store.
        batch_size: Maximum rows per upsert request.
        clock: Returns the current ISO timestamp (injected for tests).
    """

    def __init__(
        self,
        store: Store,
        audit: Optional[AuditRecorder] = None,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], str] = utc_now,
    ):
        self._store = store
        self._audit = audit or AuditRecorder(store)
        self._batch_size = batch_size
        self._clock = clock

    async def fetch(self, workspace_key: str) -> Optional[StoredState]:
        """Load the stored state for a workspace, or None before its first sync."""
        workspace_id = workspace_to_id(workspace_key)
        rows = await self._store.select(
            Query(table=APP_STATES_TABLE, eq={"workspace_id": workspace_id}, limit=1)
        )
        if not rows:
            return None
        row = rows[0]
        try:
            state = AppState.model_validate(row.get("state") or {})
        except ValidationError as e:
            logger.error(f"Stored state for {workspace_id} failed validation: {e.error_count()} errors")
            raise StorageError(f"stored state for workspace {workspace_id} is invalid") from e
        if not state.updated_at and row.get("updated_at"):
            state = state.model_copy(update={"updated_at": row["updated_at"]})
        return StoredState(
            workspace_id=workspace_id,
            state=state,
            revision=int(row.get("revision") or INITIAL_REVISION),
            updated_at=state.updated_at,
        )

    async def sync(
        self,
        workspace_key: str,
        incoming: AppState,
        *,
        actor: Actor,
        revision: Optional[int] = None,
        schema_version: Optional[int] = None,
    ) -> SyncOutcome:
        stored = await self.fetch(workspace_key)
        stored_revision = stored.revision if stored else INITIAL_REVISION
        check_revision(
            stored_revision,
            revision,
            server_updated_at=stored.updated_at if stored else None,
        )

        now = self._clock()
        merged = merge_states(
            stored.state if stored else None,
            incoming,
            now=now,
            schema_version=schema_version,
        )
        rows = project_state(merged, workspace_key, now_iso=now)
        logger.info(
            f"SYNC | {workspace_key} | base_revision={stored_revision} "
            f"tx={len(rows.transactions)} cards={len(rows.cards)} "
            f"categories={len(rows.categories)} plans={len(rows.installment_plans)}"
        )

        await self._write_rows(rows, now)

        new_revision = next_revision(stored_revision)
        await self._commit_state(
            rows.workspace_id,
            workspace_key,
            merged,
            new_revision,
            expected_revision=stored_revision if revision is not None else None,
            exists=stored is not None,
        )

        await self._audit.record(
            AuditEvent(
                workspace_id=rows.workspace_id,
                entity_type=APP_STATE_ENTITY,
                entity_id=rows.workspace_id,
                action=AuditAction.SYNC,
                actor=actor,
                before=state_summary(stored.state if stored else None, stored_revision),
                after=state_summary(merged, new_revision),
                created_at=now,
            )
        )
        logger.info(f"SYNC COMPLETE | {workspace_key} | revision={new_revision}")
        return SyncOutcome(state=merged, revision=new_revision, server_updated_at=now, rows=rows)

    async def _write_rows(self, rows: SyncRows, now: str) -> None:
        await self._store.upsert(
            WORKSPACES_TABLE,
            [{"id": rows.workspace_id, "key": rows.workspace_key, "updated_at": now}],
        )
        for table, table_rows in (
            (CARDS_TABLE, rows.cards),
            (CATEGORIES_TABLE, rows.categories),
            (INSTALLMENT_PLANS_TABLE, rows.installment_plans),
            (TRANSACTIONS_TABLE, rows.transactions),
        ):
            for batch in chunked(table_rows, self._batch_size):
                await self._store.upsert(table, batch)

    async def _commit_state(
        self,
        workspace_id: str,
        workspace_key: str,
        state: AppState,
        new_revision: int,
        *,
        expected_revision: Optional[int],
        exists: bool,
    ) -> None:
        """Persist the merged state and the new revision in one row write.

        With an expected revision the write is a compare-and-set, so a
        concurrent sync that committed first turns this call into a 409.
        """
        row: Row = {
            "workspace_id": workspace_id,
            "workspace_key": workspace_key,
            "state": state.to_wire(),
            "revision": new_revision,
            "schema_version": state.schema_version,
            "updated_at": state.updated_at,
        }

        if expected_revision is None:
            await self._store.upsert(APP_STATES_TABLE, [row], on_conflict="workspace_id")
            return

        if not exists:
            try:
                await self._store.insert(APP_STATES_TABLE, [row])
            except DuplicateRowError:
                raise await self._lost_race(workspace_key) from None
            return

        updated = await self._store.update(
            APP_STATES_TABLE,
            row,
            {"workspace_id": workspace_id, "revision": expected_revision},
        )
        if not updated:
            raise await self._lost_race(workspace_key)

    async def _lost_race(self, workspace_key: str) -> RevisionConflictError:
        current = await self.fetch(workspace_key)
        logger.warning(f"SYNC CONFLICT | {workspace_key} | concurrent commit won the revision race")
        if current is None:
            return RevisionConflictError(INITIAL_REVISION, None)
        return RevisionConflictError(current.revision, current.updated_at)
