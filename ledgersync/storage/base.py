"""Generic storage contract.

The sync core only needs four operations against a relational store:
select, insert, upsert and update. Anything that can do those (PostgREST
via supabase-py, or the in-memory store used in tests) can back it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple

# =============================================================================
# Table Names
# =============================================================================

WORKSPACES_TABLE = "workspaces"
APP_STATES_TABLE = "app_states"
CARDS_TABLE = "cards"
CATEGORIES_TABLE = "categories"
INSTALLMENT_PLANS_TABLE = "installment_plans"
TRANSACTIONS_TABLE = "transactions"
AUDIT_EVENTS_TABLE = "audit_events"

# Maximum rows per upsert request
DEFAULT_BATCH_SIZE = 500

Row = Dict[str, Any]


@dataclass
class Query:
    """A filtered, ordered, paginated read of one table.

    ``eq`` values of ``None`` mean IS NULL. ``search`` is a case-insensitive
    substring match of ``search_term`` against any of ``search_columns``.
    ``order`` is a list of ``(column, descending)`` pairs.
    """

    table: str
    eq: Dict[str, Any] = field(default_factory=dict)
    columns: Sequence[str] = ("*",)
    search_columns: Tuple[str, ...] = ()
    search_term: Optional[str] = None
    order: List[Tuple[str, bool]] = field(default_factory=list)
    limit: Optional[int] = None
    offset: int = 0


class Store(Protocol):
    """Async access to the external relational store."""

    async def select(self, query: Query) -> List[Row]: ...

    async def insert(self, table: str, rows: List[Row]) -> List[Row]: ...

    async def upsert(self, table: str, rows: List[Row], on_conflict: str = "id") -> List[Row]: ...

    async def update(self, table: str, values: Row, match: Dict[str, Any]) -> List[Row]:
        """Update rows matching every ``match`` pair; return the updated rows."""
        ...


def chunked(rows: Sequence[Row], size: int = DEFAULT_BATCH_SIZE) -> Iterator[List[Row]]:
    """Split rows into bounded batches for upserting."""
    if size < 1:
        raise ValueError(f"batch size must be positive, got {size}")
    for start in range(0, len(rows), size):
        yield list(rows[start : start + size])
