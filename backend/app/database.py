"""Storage wiring for the ledgersync backend.

The store is built once in ``create_app`` and kept on ``app.state``;
route dependencies read it from there. A missing store (no Supabase URL or
key) is a 503 for every route that needs storage.
"""

from typing import Annotated

from fastapi import Depends, Request

from ledgersync.admin import TransactionAdmin
from ledgersync.audit import AuditRecorder
from ledgersync.errors import StorageNotConfiguredError
from ledgersync.storage import Store
from ledgersync.sync import SyncEngine

from .config import Settings


def build_store(settings: Settings) -> Store | None:
    """Create the Supabase-backed store, or None when it is not configured."""
    if not settings.storage_configured:
        return None
    from ledgersync.storage.supabase_store import SupabaseStore

    return SupabaseStore.from_credentials(
        settings.supabase_url,
        settings.supabase_api_key,
        schema=settings.supabase_sync_schema,
        timeout=settings.storage_timeout_seconds,
    )


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> Store:
    """FastAPI dependency for the configured store."""
    store = request.app.state.store
    if store is None:
        raise StorageNotConfiguredError()
    return store


def get_sync_engine(
    store: Annotated[Store, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> SyncEngine:
    return SyncEngine(store, AuditRecorder(store), batch_size=settings.upsert_batch_size)


def get_transaction_admin(store: Annotated[Store, Depends(get_store)]) -> TransactionAdmin:
    return TransactionAdmin(store, AuditRecorder(store))


# Type aliases for dependency injection
Storage = Annotated[Store, Depends(get_store)]
SyncService = Annotated[SyncEngine, Depends(get_sync_engine)]
AdminService = Annotated[TransactionAdmin, Depends(get_transaction_admin)]
