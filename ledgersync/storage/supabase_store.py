"""Supabase (PostgREST) implementation of the storage contract.

supabase-py is synchronous. Each request runs in a worker thread under
``asyncio.wait_for`` so every storage call has a bounded timeout and the
event loop never blocks on I/O. Timeouts and PostgREST errors surface as
:class:`~ledgersync.errors.StorageError`; nothing is retried here.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from postgrest.exceptions import APIError

from supabase import Client, ClientOptions, create_client

from ..errors import DuplicateRowError, StorageError, StorageNotConfiguredError, StorageTimeoutError
from .base import Query, Row

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 8.0

# Postgres unique_violation
_UNIQUE_VIOLATION = "23505"

# Characters with meaning inside a PostgREST or=(...) filter
_FILTER_METACHARACTERS = re.compile(r"[,()*\\:\"]")


def sanitize_search_term(term: str) -> str:
    return _FILTER_METACHARACTERS.sub(" ", term).strip()


class SupabaseStore:
    """Store backed by a supabase-py ``Client``.

    Args:
        client: A configured supabase client.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, client: Client, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self._client = client
        self._timeout = timeout

    @classmethod
    def from_credentials(
        cls,
        url: Optional[str],
        api_key: Optional[str],
        *,
        schema: str = "public",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> "SupabaseStore":
        if not url or not api_key:
            raise StorageNotConfiguredError()
        options = ClientOptions(schema=schema, postgrest_client_timeout=timeout)
        return cls(create_client(url.rstrip("/"), api_key, options=options), timeout=timeout)

    async def _execute(self, operation: str, builder) -> List[Row]:
        try:
            result = await asyncio.wait_for(asyncio.to_thread(builder.execute), self._timeout)
        except asyncio.TimeoutError:
            logger.error(f"Storage timeout during {operation} after {self._timeout}s")
            raise StorageTimeoutError(operation, self._timeout) from None
        except APIError as e:
            logger.error(f"Storage error during {operation}: {e.code} {e.message}")
            if e.code == _UNIQUE_VIOLATION:
                raise DuplicateRowError(f"supabase {e.code}: {e.message}") from e
            raise StorageError(f"supabase {e.code or 'error'}: {e.message or 'request failed'}") from e
        except httpx.HTTPError as e:
            logger.error(f"Storage transport error during {operation}: {type(e).__name__}")
            raise StorageError(f"supabase transport error: {e}") from e
        return result.data or []

    async def select(self, query: Query) -> List[Row]:
        builder = self._client.table(query.table).select(",".join(query.columns))
        for column, value in query.eq.items():
            builder = builder.is_(column, "null") if value is None else builder.eq(column, value)
        if query.search_term and query.search_columns:
            term = sanitize_search_term(query.search_term)
            if term:
                builder = builder.or_(
                    ",".join(f"{column}.ilike.*{term}*" for column in query.search_columns)
                )
        for column, descending in query.order:
            builder = builder.order(column, desc=descending)
        if query.limit is not None:
            builder = builder.range(query.offset, query.offset + query.limit - 1)
        return await self._execute(f"select {query.table}", builder)

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        if not rows:
            return []
        return await self._execute(f"insert {table}", self._client.table(table).insert(rows))

    async def upsert(self, table: str, rows: List[Row], on_conflict: str = "id") -> List[Row]:
        if not rows:
            return []
        builder = self._client.table(table).upsert(rows, on_conflict=on_conflict)
        return await self._execute(f"upsert {table}", builder)

    async def update(self, table: str, values: Row, match: Dict[str, Any]) -> List[Row]:
        builder = self._client.table(table).update(values)
        for column, value in match.items():
            builder = builder.is_(column, "null") if value is None else builder.eq(column, value)
        return await self._execute(f"update {table}", builder)
