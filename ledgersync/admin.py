"""Admin service: query and correct projected transactions.

Reads go against the flat ``transactions`` rows written by sync. Writes
correct both the stored client state and the row, then write one audit
event with the full row before and after. The corrected item carries the
admin's ``updatedAt``, so resyncs of older device copies keep it; only a
device edit with a newer ``updatedAt`` overwrites it. The state revision
moves with every correction.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from .audit import Actor, AuditAction, AuditEvent, AuditRecorder
from .dates import to_calendar_date, to_month_start
from .errors import EmptyPatchError, InvalidInputError, NotFoundError, RevisionConflictError, StorageError
from .ids import (
    ENTITY_CARD,
    ENTITY_CATEGORY,
    ENTITY_TRANSACTION,
    entity_to_id,
    is_identifier,
    resolve_entity_id,
    workspace_to_id,
)
from .storage.base import APP_STATES_TABLE, CATEGORIES_TABLE, TRANSACTIONS_TABLE, Query, Row, Store
from .sync.revision import INITIAL_REVISION, next_revision
from .types import AppState, Transaction, TransactionKind, TransactionStatus, utc_now

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

TRANSACTION_ENTITY = "transaction"

LIST_COLUMNS = (
    "id",
    "workspace_id",
    "kind",
    "amount",
    "occurred_at",
    "competence_month",
    "status",
    "person",
    "description",
    "category_id",
    "card_id",
    "payment_method",
    "installment_plan_id",
    "installment_index",
    "installment_count",
    "deleted_at",
    "updated_at",
)

SEARCH_COLUMNS = ("description", "person")

REFERENCE_FIELDS = (
    ("category_id", "categoryId", ENTITY_CATEGORY),
    ("card_id", "cardId", ENTITY_CARD),
)

# Row column -> client state key, for the columns a correction can touch.
STATE_KEYS = {
    "amount": "amount",
    "occurred_at": "date",
    "competence_month": "competenceMonth",
    "status": "status",
    "description": "description",
    "person": "personId",
    "deleted_at": "deletedAt",
    "updated_at": "updatedAt",
}

MAX_STATE_ATTEMPTS = 3


@dataclass
class TransactionFilters:
    """Optional list filters. ``limit`` and ``cursor`` are clamped, not rejected."""

    month: Optional[str] = None
    kind: Optional[str] = None
    status: Optional[str] = None
    category_id: Optional[str] = None
    card_id: Optional[str] = None
    q: Optional[str] = None
    limit: Optional[int] = None
    cursor: Optional[int] = None


@dataclass
class TransactionPage:
    data: List[Row]
    next_cursor: Optional[int]


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_PAGE_SIZE
    return min(max(limit, 1), MAX_PAGE_SIZE)


def clamp_cursor(cursor: Optional[int]) -> int:
    return max(cursor or 0, 0)


def present_row(row: Row) -> Row:
    """Add the boolean flags clients display; storage only has timestamps and refs."""
    return {
        **row,
        "deleted": bool(row.get("deleted_at")),
        "installment": bool(row.get("installment_plan_id") or row.get("installment_count")),
    }


def _first_present(changes: Mapping[str, Any], *names: str):
    """Return (present, value) for the first of ``names`` in ``changes``."""
    for name in names:
        if name in changes:
            return True, changes[name]
    return False, None


def build_patch(workspace_id: str, changes: Mapping[str, Any]) -> Row:
    """Translate a client patch body into column updates.

    Only recognized fields are applied; both snake_case and camelCase names
    are accepted. Unknown fields are ignored.

    Raises:
        InvalidInputError: A recognized field has an unusable value.
    """
    updates: Row = {}

    present, amount = _first_present(changes, "amount")
    if present:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount < 0:
            raise InvalidInputError("Invalid amount")
        updates["amount"] = amount

    present, occurred_at = _first_present(changes, "occurred_at", "occurredAt")
    if present:
        normalized = to_calendar_date(str(occurred_at)) if occurred_at is not None else None
        if not normalized:
            raise InvalidInputError("Invalid occurred_at")
        updates["occurred_at"] = normalized

    present, month = _first_present(changes, "competence_month", "competenceMonth")
    if present:
        normalized = to_month_start(str(month)) if month is not None else None
        if not normalized:
            raise InvalidInputError("Invalid competence_month")
        updates["competence_month"] = normalized

    present, status = _first_present(changes, "status")
    if present:
        allowed = {s.value for s in TransactionStatus}
        if status not in allowed:
            raise InvalidInputError(f"Invalid status: expected one of {sorted(allowed)}")
        updates["status"] = status

    present, description = _first_present(changes, "description")
    if present:
        updates["description"] = description or None

    present, person = _first_present(changes, "person", "personId")
    if present:
        updates["person"] = person or None

    for column, camel, entity in REFERENCE_FIELDS:
        present, raw = _first_present(changes, column, camel)
        if present:
            updates[column] = resolve_entity_id(workspace_id, entity, str(raw)) if raw else None

    return updates


def _reference_candidates(state: AppState, entity: str) -> List[str]:
    """Client-local IDs the state already uses for ``entity``."""
    if entity == ENTITY_CATEGORY:
        return (
            list(state.categories)
            + [tx.category_id for tx in state.transactions if tx.category_id]
            + [plan.category_id for plan in state.installment_plans if plan.category_id]
        )
    return (
        [card.id for card in state.cards]
        + [tx.card_id for tx in state.transactions if tx.card_id]
        + [plan.card_id for plan in state.installment_plans if plan.card_id]
    )


def state_fields(workspace_id: str, state: AppState, updates: Row, changes: Mapping[str, Any]) -> Row:
    """Translate column updates back into camelCase state keys.

    References are stored as surrogate UUIDs but the state holds client
    IDs, so each one is matched against the IDs the state already uses.

    Raises:
        InvalidInputError: A reference names an ID the workspace never used.
    """
    fields: Row = {key: updates[column] for column, key in STATE_KEYS.items() if column in updates}
    if "description" in fields:
        fields["description"] = fields["description"] or ""

    for column, camel, entity in REFERENCE_FIELDS:
        if column not in updates:
            continue
        if updates[column] is None:
            fields[camel] = None
            continue
        _, raw = _first_present(changes, column, camel)
        candidates = _reference_candidates(state, entity)
        if raw and not is_identifier(str(raw)):
            candidates.append(str(raw))
        match = next(
            (local for local in candidates if entity_to_id(workspace_id, entity, local) == updates[column]),
            None,
        )
        if match is None:
            raise InvalidInputError(f"Unknown {camel}")
        fields[camel] = match
    return fields


class TransactionAdmin:
    """List, patch, soft-delete and restore projected transactions.

    Args:
        store: Storage backend holding the projected rows.
        audit: Audit recorder; defaults to one on the same store.
        clock: Returns the current ISO timestamp.
    """

    def __init__(
        self,
        store: Store,
        audit: Optional[AuditRecorder] = None,
        *,
        clock: Callable[[], str] = utc_now,
    ):
        self._store = store
        self._audit = audit or AuditRecorder(store)
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_transactions(self, workspace_key: str, filters: TransactionFilters) -> TransactionPage:
        workspace_id = workspace_to_id(workspace_key)
        eq: Dict[str, Any] = {"workspace_id": workspace_id}

        if filters.month:
            month = to_month_start(filters.month)
            if month is None:
                raise InvalidInputError("Invalid month")
            eq["competence_month"] = month
        if filters.kind:
            eq["kind"] = filters.kind
        if filters.status:
            eq["status"] = filters.status
        if filters.category_id:
            eq["category_id"] = resolve_entity_id(workspace_id, ENTITY_CATEGORY, filters.category_id)
        if filters.card_id:
            eq["card_id"] = resolve_entity_id(workspace_id, ENTITY_CARD, filters.card_id)

        limit = clamp_limit(filters.limit)
        cursor = clamp_cursor(filters.cursor)
        search = (filters.q or "").strip() or None

        rows = await self._store.select(
            Query(
                table=TRANSACTIONS_TABLE,
                eq=eq,
                columns=LIST_COLUMNS,
                search_columns=SEARCH_COLUMNS if search else (),
                search_term=search,
                order=[("occurred_at", True), ("updated_at", True)],
                limit=limit,
                offset=cursor,
            )
        )
        next_cursor = cursor + limit if len(rows) == limit else None
        return TransactionPage(data=[present_row(row) for row in rows], next_cursor=next_cursor)

    async def get_transaction(self, workspace_key: str, transaction_id: str) -> Row:
        workspace_id = workspace_to_id(workspace_key)
        return await self._load(workspace_id, resolve_entity_id(workspace_id, ENTITY_TRANSACTION, transaction_id))

    async def monthly_report(self, workspace_key: str, month: str) -> Dict[str, Any]:
        """Totals for one competence month plus an expense breakdown by category.

        Soft-deleted transactions are excluded. ``net_total`` is income minus
        spend, debt payments and interest; transfers count toward nothing.
        """
        month_start = to_month_start(month)
        if month_start is None:
            raise InvalidInputError("Invalid month")
        workspace_id = workspace_to_id(workspace_key)

        rows = await self._store.select(
            Query(
                table=TRANSACTIONS_TABLE,
                eq={"workspace_id": workspace_id, "competence_month": month_start, "deleted_at": None},
                columns=("kind", "amount", "category_id"),
            )
        )

        totals = defaultdict(float)
        by_category: Dict[Optional[str], float] = defaultdict(float)
        for row in rows:
            amount = float(row.get("amount") or 0)
            totals[row.get("kind")] += amount
            if row.get("kind") == TransactionKind.EXPENSE.value:
                by_category[row.get("category_id")] += amount

        income = totals[TransactionKind.INCOME.value]
        spend = totals[TransactionKind.EXPENSE.value]
        debt = totals[TransactionKind.DEBT_PAYMENT.value]
        interest = totals[TransactionKind.FEE_INTEREST.value]

        names = await self._category_names(workspace_id)
        categories = [
            {"category_id": category_id, "category_name": names.get(category_id), "total": round(total, 2)}
            for category_id, total in by_category.items()
        ]
        categories.sort(key=lambda entry: entry["total"], reverse=True)

        summary = None
        if rows:
            summary = {
                "workspace_id": workspace_id,
                "competence_month": month_start,
                "income_total": round(income, 2),
                "spend_total": round(spend, 2),
                "debt_total": round(debt, 2),
                "interest_total": round(interest, 2),
                "net_total": round(income - spend - debt - interest, 2),
            }
        return {"summary": summary, "categories": categories}

    async def _category_names(self, workspace_id: str) -> Dict[str, str]:
        rows = await self._store.select(
            Query(table=CATEGORIES_TABLE, eq={"workspace_id": workspace_id}, columns=("id", "name"))
        )
        return {row["id"]: row["name"] for row in rows}

    async def _load(self, workspace_id: str, transaction_id: str) -> Row:
        rows = await self._store.select(
            Query(
                table=TRANSACTIONS_TABLE,
                eq={"id": transaction_id, "workspace_id": workspace_id},
                limit=1,
            )
        )
        if not rows:
            raise NotFoundError("Transaction not found")
        return rows[0]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def patch_transaction(
        self,
        workspace_key: str,
        transaction_id: str,
        changes: Mapping[str, Any],
        *,
        actor: Actor,
    ) -> Optional[Row]:
        workspace_id = workspace_to_id(workspace_key)
        resolved_id = resolve_entity_id(workspace_id, ENTITY_TRANSACTION, transaction_id)
        before = await self._load(workspace_id, resolved_id)

        updates = build_patch(workspace_id, changes)
        if not updates:
            raise EmptyPatchError()
        updates["updated_at"] = self._clock()

        return await self._write(workspace_id, resolved_id, before, updates, AuditAction.UPDATE, actor, changes)

    async def delete_transaction(self, workspace_key: str, transaction_id: str, *, actor: Actor) -> Optional[Row]:
        """Soft-delete: stamp ``deleted_at``; the row stays queryable."""
        workspace_id = workspace_to_id(workspace_key)
        resolved_id = resolve_entity_id(workspace_id, ENTITY_TRANSACTION, transaction_id)
        before = await self._load(workspace_id, resolved_id)
        now = self._clock()
        return await self._write(
            workspace_id,
            resolved_id,
            before,
            {"deleted_at": now, "updated_at": now},
            AuditAction.DELETE,
            actor,
        )

    async def restore_transaction(self, workspace_key: str, transaction_id: str, *, actor: Actor) -> Optional[Row]:
        workspace_id = workspace_to_id(workspace_key)
        resolved_id = resolve_entity_id(workspace_id, ENTITY_TRANSACTION, transaction_id)
        before = await self._load(workspace_id, resolved_id)
        return await self._write(
            workspace_id,
            resolved_id,
            before,
            {"deleted_at": None, "updated_at": self._clock()},
            AuditAction.RESTORE,
            actor,
        )

    async def _write(
        self,
        workspace_id: str,
        transaction_id: str,
        before: Row,
        updates: Row,
        action: AuditAction,
        actor: Actor,
        changes: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Row]:
        # State first: if the row write fails, the next sync re-projects it.
        await self._correct_state(workspace_id, transaction_id, updates, changes or {})
        rows = await self._store.update(
            TRANSACTIONS_TABLE,
            updates,
            {"id": transaction_id, "workspace_id": workspace_id},
        )
        after = rows[0] if rows else None
        logger.info(
            f"ADMIN {action.value.upper()} | workspace={workspace_id} "
            f"transaction={transaction_id} fields={sorted(updates)}"
        )
        await self._audit.record(
            AuditEvent(
                workspace_id=workspace_id,
                entity_type=TRANSACTION_ENTITY,
                entity_id=transaction_id,
                action=action,
                actor=actor,
                before=before,
                after=after,
                created_at=updates["updated_at"],
            )
        )
        return after

    async def _correct_state(
        self,
        workspace_id: str,
        transaction_id: str,
        updates: Row,
        changes: Mapping[str, Any],
    ) -> None:
        """Apply ``updates`` to the transaction inside the stored client state.

        The state row is written with a compare-and-set on its revision and
        retried when a sync commits in between.

        Raises:
            InvalidInputError: The corrected transaction would be invalid.
            RevisionConflictError: Syncs kept winning the revision race.
        """
        for _ in range(MAX_STATE_ATTEMPTS):
            rows = await self._store.select(
                Query(table=APP_STATES_TABLE, eq={"workspace_id": workspace_id}, limit=1)
            )
            if not rows:
                logger.warning(f"ADMIN | workspace={workspace_id} has no stored state to correct")
                return
            row = rows[0]
            try:
                state = AppState.model_validate(row.get("state") or {})
            except ValidationError as e:
                raise StorageError(f"stored state for workspace {workspace_id} is invalid") from e

            corrected = self._corrected_state(workspace_id, state, transaction_id, updates, changes)
            if corrected is None:
                logger.warning(
                    f"ADMIN | transaction={transaction_id} missing from stored state of workspace={workspace_id}"
                )
                return

            revision = int(row.get("revision") or INITIAL_REVISION)
            written = await self._store.update(
                APP_STATES_TABLE,
                {
                    "state": corrected.to_wire(),
                    "revision": next_revision(revision),
                    "updated_at": corrected.updated_at,
                },
                {"workspace_id": workspace_id, "revision": revision},
            )
            if written:
                return
            logger.warning(f"ADMIN | workspace={workspace_id} state moved past revision {revision}, retrying")
        raise RevisionConflictError(revision, row.get("updated_at"))

    @staticmethod
    def _corrected_state(
        workspace_id: str,
        state: AppState,
        transaction_id: str,
        updates: Row,
        changes: Mapping[str, Any],
    ) -> Optional[AppState]:
        transactions = list(state.transactions)
        for index, tx in enumerate(transactions):
            if entity_to_id(workspace_id, ENTITY_TRANSACTION, tx.id) == transaction_id:
                break
        else:
            return None

        wire = {**tx.to_wire(), **state_fields(workspace_id, state, updates, changes)}
        try:
            transactions[index] = Transaction.model_validate(wire)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid transaction: {e.errors()[0]['msg']}") from e
        return state.model_copy(update={"transactions": transactions, "updated_at": updates["updated_at"]})
