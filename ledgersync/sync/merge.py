"""Merge a stored ledger with an incoming one.

Policy:
- Item collections (transactions, cards, installment plans) merge per id,
  last writer wins on ``updatedAt``. On an exact tie the incoming item
  wins, which keeps a no-op resync idempotent.
- Categories are a set union. A sync can add categories but never remove
  them; removal is a separate administrative action.
- ``monthlyIncome`` and ``variableCap`` come together from whichever
  document has the newer top-level ``updatedAt``, never split field by
  field.
- ``schemaVersion`` never regresses.

Two different concurrent payloads against the same base interleave per
item. This is a collection-level union, not a document CRDT.
"""

import logging
from typing import Dict, List, Optional, Sequence, TypeVar

from ..types import AppState, SyncedEntity, parse_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=SyncedEntity)


def incoming_wins(stored_item: SyncedEntity, incoming_item: SyncedEntity) -> bool:
    """Last-writer-wins with ties going to the incoming item."""
    return parse_timestamp(incoming_item.updated_at) >= parse_timestamp(stored_item.updated_at)


def merge_by_updated_at(stored: Sequence[T], incoming: Sequence[T]) -> List[T]:
    """Merge two id-keyed collections.

    Stored order is kept; items only present in ``incoming`` are appended
    in their incoming order.
    """
    merged: Dict[str, T] = {item.id: item for item in stored}
    for item in incoming:
        current = merged.get(item.id)
        if current is None:
            merged[item.id] = item
            continue
        if not current.updated_at and not item.updated_at and current != item:
            # Neither side is timestamped; incoming wins with no way to tell a
            # genuine collision from a resend.
            logger.warning(f"Merging untimestamped {type(item).__name__} {item.id!r}, incoming wins")
        if incoming_wins(current, item):
            merged[item.id] = item
    return list(merged.values())


def merge_categories(stored: Sequence[str], incoming: Sequence[str]) -> List[str]:
    return sorted(set(stored) | set(incoming))


def merge_states(
    stored: Optional[AppState],
    incoming: AppState,
    *,
    now: str,
    schema_version: Optional[int] = None,
) -> AppState:
    """Combine ``stored`` and ``incoming`` into a new state stamped ``now``.

    Args:
        stored: The server copy, or None before the first sync.
        incoming: The state sent by the client.
        now: Merge timestamp written to ``updatedAt``.
        schema_version: Explicit override from the request, if any.
    """
    versions = [incoming.schema_version]
    if schema_version is not None:
        versions.append(schema_version)

    if stored is None:
        return incoming.model_copy(
            update={"schema_version": max(versions), "updated_at": now},
            deep=True,
        )

    versions.append(stored.schema_version)
    scalar_source = (
        incoming
        if parse_timestamp(incoming.updated_at) >= parse_timestamp(stored.updated_at)
        else stored
    )

    # Unknown top-level keys: stored first, incoming overrides.
    extras = {**(stored.model_extra or {}), **(incoming.model_extra or {})}

    return AppState.model_validate(
        {
            **extras,
            "schema_version": max(versions),
            "monthly_income": scalar_source.monthly_income,
            "variable_cap": scalar_source.variable_cap,
            "categories": merge_categories(stored.categories, incoming.categories),
            "transactions": merge_by_updated_at(stored.transactions, incoming.transactions),
            "cards": merge_by_updated_at(stored.cards, incoming.cards),
            "installment_plans": merge_by_updated_at(
                stored.installment_plans, incoming.installment_plans
            ),
            "updated_at": now,
        }
    )
