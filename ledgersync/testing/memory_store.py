"""In-process implementation of the storage contract."""

import copy
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from ..errors import DuplicateRowError, StorageError
from ..storage.base import APP_STATES_TABLE, Query, Row

# Unique key per table; everything else is keyed by "id".
_UNIQUE_KEYS = {APP_STATES_TABLE: "workspace_id"}


def _sort_key(value: Any) -> Tuple[bool, Any]:
    return (value is None, value if value is not None else "")


class InMemoryStore:
    """Dict-of-lists store that mimics PostgREST semantics closely enough.

    ``calls`` records ``(operation, table, row_count)`` for every request so
    tests can assert write ordering. ``fail_next(operation, table, error)``
    makes the next matching request raise.
    """

    def __init__(self, tables: Optional[Dict[str, List[Row]]] = None):
        self.tables: Dict[str, List[Row]] = defaultdict(list)
        for name, rows in (tables or {}).items():
            self.tables[name] = copy.deepcopy(rows)
        self.calls: List[Tuple[str, str, int]] = []
        self._failures: Dict[Tuple[str, str], Exception] = {}

    def fail_next(self, operation: str, table: str, error: Optional[Exception] = None) -> None:
        self._failures[(operation, table)] = error or StorageError(f"simulated {operation} failure")

    def _check_failure(self, operation: str, table: str) -> None:
        error = self._failures.pop((operation, table), None)
        if error is not None:
            raise error

    @staticmethod
    def _matches(row: Row, match: Dict[str, Any]) -> bool:
        return all(row.get(column) == value for column, value in match.items())

    def _key_column(self, table: str, on_conflict: Optional[str] = None) -> str:
        return on_conflict or _UNIQUE_KEYS.get(table, "id")

    async def select(self, query: Query) -> List[Row]:
        self.calls.append(("select", query.table, 0))
        self._check_failure("select", query.table)
        rows = [row for row in self.tables[query.table] if self._matches(row, query.eq)]

        if query.search_term and query.search_columns:
            term = query.search_term.strip().lower()
            if term:
                rows = [
                    row
                    for row in rows
                    if any(term in str(row.get(column) or "").lower() for column in query.search_columns)
                ]

        # Apply sort keys from least to most significant so the first key wins.
        for column, descending in reversed(query.order):
            rows.sort(key=lambda row: _sort_key(row.get(column)), reverse=descending)

        rows = rows[query.offset :]
        if query.limit is not None:
            rows = rows[: query.limit]

        if list(query.columns) != ["*"]:
            rows = [{column: row.get(column) for column in query.columns} for row in rows]
        return copy.deepcopy(rows)

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        self.calls.append(("insert", table, len(rows)))
        self._check_failure("insert", table)
        key = self._key_column(table)
        existing = {row.get(key) for row in self.tables[table]}
        for row in rows:
            if key in row and row[key] in existing:
                raise DuplicateRowError(f"duplicate key value violates unique constraint on {table}.{key}")
        self.tables[table].extend(copy.deepcopy(rows))
        return copy.deepcopy(rows)

    async def upsert(self, table: str, rows: List[Row], on_conflict: str = "id") -> List[Row]:
        self.calls.append(("upsert", table, len(rows)))
        self._check_failure("upsert", table)
        key = self._key_column(table, on_conflict)
        stored = self.tables[table]
        written = []
        for row in rows:
            for index, current in enumerate(stored):
                if current.get(key) == row.get(key):
                    stored[index] = {**current, **copy.deepcopy(row)}
                    written.append(stored[index])
                    break
            else:
                stored.append(copy.deepcopy(row))
                written.append(stored[-1])
        return copy.deepcopy(written)

    async def update(self, table: str, values: Row, match: Dict[str, Any]) -> List[Row]:
        self.calls.append(("update", table, 1))
        self._check_failure("update", table)
        updated = []
        for row in self.tables[table]:
            if self._matches(row, match):
                row.update(copy.deepcopy(values))
                updated.append(row)
        return copy.deepcopy(updated)
