"""Shared-secret authorization for the ledgersync backend.

Two credentials exist:

- Sync: ``x-sync-token`` carrying ``hex(HMAC-SHA256(SYNC_SECRET, workspace_key))``,
  or ``x-sync-key`` carrying ``SYNC_SHARED_KEY``.
- Admin: ``x-admin-token`` or ``Authorization: Bearer <ADMIN_SECRET>``.

An unconfigured secret is a 503 (feature disabled), a wrong or missing
credential a 401. All comparisons are constant-time.
"""

import hashlib
import hmac
from typing import Annotated, Mapping

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ledgersync.errors import AuthorizationError, ConfigurationError, InvalidInputError

from .config import Settings
from .database import get_app_settings, get_store

SYNC_TOKEN_HEADER = "x-sync-token"
SYNC_KEY_HEADER = "x-sync-key"
ADMIN_TOKEN_HEADER = "x-admin-token"

# Make bearer optional so the custom header can be used instead
security = HTTPBearer(auto_error=False)


def compute_sync_token(secret: str, workspace_key: str) -> str:
    """HMAC-SHA256 hex digest of the workspace key."""
    return hmac.new(secret.encode(), workspace_key.encode(), hashlib.sha256).hexdigest()


def _safe_equal(expected: str, provided: str | None) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


def authorize_sync(headers: Mapping[str, str], workspace_key: str, settings: Settings) -> None:
    """Check sync credentials for ``workspace_key``.

    Raises:
        ConfigurationError: Neither SYNC_SECRET nor SYNC_SHARED_KEY is set.
        AuthorizationError: No presented credential matches.
    """
    if not settings.sync_secret and not settings.sync_shared_key:
        raise ConfigurationError("Sync auth not configured")

    if settings.sync_secret:
        expected = compute_sync_token(settings.sync_secret, workspace_key)
        if _safe_equal(expected, headers.get(SYNC_TOKEN_HEADER)):
            return

    if settings.sync_shared_key and _safe_equal(settings.sync_shared_key, headers.get(SYNC_KEY_HEADER)):
        return

    raise AuthorizationError()


async def require_sync_access(
    request: Request,
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> str:
    """FastAPI dependency guarding the sync routes; returns the workspace key.

    Runs before the request body is validated, so credentials are checked
    against the raw ``workspaceId`` from the query string or JSON body.
    """
    raw = request.query_params.get("workspaceId")
    if raw is None and request.method == "POST":
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            raw = body.get("workspaceId")

    workspace_key = raw.strip() if isinstance(raw, str) else ""
    if not workspace_key:
        raise InvalidInputError("workspaceId is required")
    authorize_sync(request.headers, workspace_key, settings)
    return workspace_key


async def require_admin(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> None:
    """FastAPI dependency guarding the admin routes."""
    if not settings.admin_secret:
        raise ConfigurationError("Admin auth not configured")
    provided = request.headers.get(ADMIN_TOKEN_HEADER)
    if not provided and credentials:
        provided = credentials.credentials.strip()
    if not _safe_equal(settings.admin_secret, provided):
        raise AuthorizationError()


async def require_admin_with_storage(
    _store: Annotated[object, Depends(get_store)],
    _admin: Annotated[None, Depends(require_admin)],
) -> None:
    """Storage check first so an unconfigured store is a 503 before any 401."""


# Router-level dependency for the admin routes
AdminAccess = Depends(require_admin_with_storage)

# Authorized workspace key for the sync routes
SyncWorkspace = Annotated[str, Depends(require_sync_access)]
