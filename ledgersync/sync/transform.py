"""Flatten the nested client state into independently upsertable rows.

Transactions and plans reference cards, categories and plans by client
string ID. The projection maps those to workspace-scoped UUIDs and makes
sure every reference has a row: a reference to something missing from the
payload gets a placeholder parent instead of failing. Lagging devices that
send a partial state still sync without losing data.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..dates import to_calendar_date, to_month_start
from ..errors import InvalidInputError
from ..ids import (
    ENTITY_CARD,
    ENTITY_CATEGORY,
    ENTITY_PLAN,
    ENTITY_TRANSACTION,
    entity_to_id,
    workspace_to_id,
)
from ..storage.base import Row
from ..types import AppState, Card, InstallmentPlan, PlanStatus, Transaction


@dataclass
class SyncRows:
    """Rows produced from one state, in parent-before-child write order."""

    workspace_id: str
    workspace_key: str
    cards: List[Row] = field(default_factory=list)
    categories: List[Row] = field(default_factory=list)
    installment_plans: List[Row] = field(default_factory=list)
    transactions: List[Row] = field(default_factory=list)


def _required(value: Optional[str], what: str, source: Optional[str]) -> str:
    if value is None:
        raise InvalidInputError(f"Invalid {what}: {source!r}")
    return value


def _month_start(*candidates: Optional[str], fallback: str) -> str:
    """First candidate present, normalized to a month start."""
    for candidate in candidates:
        if candidate:
            return _required(to_month_start(candidate), "month", candidate)
    return _required(to_month_start(fallback), "month", fallback)


def _ordered_unique(values: Iterable[Optional[str]]) -> List[str]:
    return list(dict.fromkeys(value for value in values if value))


class RowProjector:
    """Projects one workspace's state. Pure given ``now_iso``."""

    def __init__(self, workspace_key: str, now_iso: str):
        self.workspace_key = workspace_key
        self.workspace_id = workspace_to_id(workspace_key)
        self.now_iso = now_iso

    def _ref(self, entity: str, source_id: Optional[str]) -> Optional[str]:
        return entity_to_id(self.workspace_id, entity, source_id) if source_id else None

    # === Cards ===

    def card_row(self, card: Card) -> Row:
        return {
            "id": self._ref(ENTITY_CARD, card.id),
            "workspace_id": self.workspace_id,
            "name": card.name,
            "brand": None,
            "limit_amount": card.limit,
            "closing_day": card.closing_day,
            "due_day": card.due_day,
            "archived_at": card.deleted_at,
            "created_at": card.created_at or self.now_iso,
            "updated_at": card.updated_at or self.now_iso,
        }

    def placeholder_card_row(self, card_id: str) -> Row:
        return {
            "id": self._ref(ENTITY_CARD, card_id),
            "workspace_id": self.workspace_id,
            "name": card_id,
            "brand": None,
            "limit_amount": None,
            "closing_day": None,
            "due_day": None,
            "archived_at": None,
            "created_at": self.now_iso,
            "updated_at": self.now_iso,
        }

    # === Categories ===

    def category_row(self, name: str) -> Row:
        return {
            "id": self._ref(ENTITY_CATEGORY, name),
            "workspace_id": self.workspace_id,
            "name": name,
            "kind": None,
            "archived_at": None,
            "created_at": self.now_iso,
            "updated_at": self.now_iso,
        }

    # === Installment plans ===

    def plan_row(self, plan: InstallmentPlan) -> Row:
        canceled_at = None
        if plan.status == PlanStatus.CANCELLED.value:
            canceled_at = plan.updated_at or self.now_iso
        if plan.deleted_at:
            canceled_at = plan.deleted_at
        return {
            "id": self._ref(ENTITY_PLAN, plan.id),
            "workspace_id": self.workspace_id,
            "card_id": self._ref(ENTITY_CARD, plan.card_id),
            "category_id": self._ref(ENTITY_CATEGORY, plan.category_id),
            "description": plan.description or None,
            "total_amount": plan.total_amount,
            "installment_count": plan.total_installments,
            "start_competence_month": _month_start(
                plan.first_installment_date,
                plan.purchase_date,
                plan.created_at,
                fallback=self.now_iso,
            ),
            "canceled_at": canceled_at,
            "created_at": plan.created_at or self.now_iso,
            "updated_at": plan.updated_at or self.now_iso,
        }

    def plan_row_from_installment(self, tx: Transaction) -> Row:
        """Synthesize a plan from the first transaction seen for its group."""
        installment = tx.installment
        total = installment.total
        per_installment = (
            installment.per_installment_amount
            if installment.per_installment_amount is not None
            else abs(tx.amount)
        )
        total_amount = (
            installment.original_total_amount
            if installment.original_total_amount is not None
            else per_installment * total
        )
        return {
            "id": self._ref(ENTITY_PLAN, installment.group_id),
            "workspace_id": self.workspace_id,
            "card_id": self._ref(ENTITY_CARD, tx.card_id),
            "category_id": self._ref(ENTITY_CATEGORY, tx.category_id),
            "description": tx.description or None,
            "total_amount": total_amount,
            "installment_count": total,
            "start_competence_month": _month_start(
                installment.start_date, tx.competence_month, tx.date, fallback=self.now_iso
            ),
            "canceled_at": None,
            "created_at": tx.created_at or self.now_iso,
            "updated_at": tx.updated_at or self.now_iso,
        }

    # === Transactions ===

    def transaction_row(self, tx: Transaction, plans: Dict[str, Row]) -> Row:
        installment = tx.installment
        plan = plans.get(installment.group_id) if installment else None
        if plan is not None:
            # The plan is authoritative over the transaction's own total.
            installment_count = plan["installment_count"]
        else:
            installment_count = installment.total if installment else None
        return {
            "id": self._ref(ENTITY_TRANSACTION, tx.id),
            "workspace_id": self.workspace_id,
            "kind": tx.kind,
            "amount": tx.amount,
            "occurred_at": _required(to_calendar_date(tx.date), "date", tx.date),
            "competence_month": _month_start(tx.competence_month, tx.date, fallback=self.now_iso),
            "status": tx.status,
            "person": tx.person_id,
            "description": tx.description or None,
            "category_id": self._ref(ENTITY_CATEGORY, tx.category_id),
            "payment_method": tx.payment_method,
            "card_id": self._ref(ENTITY_CARD, tx.card_id),
            "installment_plan_id": self._ref(ENTITY_PLAN, installment.group_id if installment else None),
            "installment_index": installment.number if installment else None,
            "installment_count": installment_count,
            "created_at": tx.created_at or self.now_iso,
            "updated_at": tx.updated_at or self.now_iso,
            "deleted_at": tx.deleted_at,
        }

    def project(self, state: AppState) -> SyncRows:
        transactions = state.transactions
        plans = state.installment_plans

        card_refs = _ordered_unique(
            [tx.card_id for tx in transactions] + [plan.card_id for plan in plans]
        )
        category_names = _ordered_unique(
            list(state.categories)
            + [tx.category_id for tx in transactions]
            + [plan.category_id for plan in plans]
        )
        group_refs = _ordered_unique(
            tx.installment.group_id for tx in transactions if tx.installment
        )

        known_cards = {card.id for card in state.cards}
        card_rows = [self.card_row(card) for card in state.cards]
        card_rows += [self.placeholder_card_row(ref) for ref in card_refs if ref not in known_cards]

        plan_rows: Dict[str, Row] = {plan.id: self.plan_row(plan) for plan in plans}
        for group_id in group_refs:
            if group_id in plan_rows:
                continue
            first = next(tx for tx in transactions if tx.installment and tx.installment.group_id == group_id)
            plan_rows[group_id] = self.plan_row_from_installment(first)

        return SyncRows(
            workspace_id=self.workspace_id,
            workspace_key=self.workspace_key,
            cards=card_rows,
            categories=[self.category_row(name) for name in category_names],
            installment_plans=list(plan_rows.values()),
            transactions=[self.transaction_row(tx, plan_rows) for tx in transactions],
        )


def project_state(state: AppState, workspace_key: str, *, now_iso: str) -> SyncRows:
    """Flatten ``state`` for ``workspace_key``; see :class:`RowProjector`."""
    return RowProjector(workspace_key, now_iso).project(state)
