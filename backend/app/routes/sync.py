"""Sync routes for offline-first client state synchronization."""

from typing import Annotated

from fastapi import APIRouter, Query, Request

from ledgersync.errors import RevisionConflictError
from ledgersync.sync import INITIAL_REVISION

from ..actors import resolve_actor
from ..auth import SyncWorkspace
from ..database import SyncService
from ..logging_config import get_logger, log_sync_operation
from ..models import ConflictResponse, ErrorResponse, SyncRequest, SyncResponse, SyncStateResponse
from ..rate_limit import limiter, sync_rate_limit

logger = get_logger("ledgersync.api.sync")
router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post(
    "",
    response_model=SyncResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        409: {"model": ConflictResponse},
        503: {"model": ErrorResponse},
    },
)
@limiter.limit(sync_rate_limit)
async def sync_state(
    request: Request,
    payload: SyncRequest,
    engine: SyncService,
    workspace_key: SyncWorkspace,
):
    """
    Merge a client state into the stored copy.

    Items merge per id by ``updatedAt``; categories are unioned. With a
    ``revision`` the call is rejected with 409 unless it matches the
    stored revision. Returns the merged state and the new revision.
    """
    actor = resolve_actor(request.headers, {"userId": payload.user_id, "deviceId": payload.device_id})

    logger.info(f"SYNC | {workspace_key} | device={actor.device_id} revision={payload.revision}")
    try:
        outcome = await engine.sync(
            workspace_key,
            payload.state,
            actor=actor,
            revision=payload.revision,
            schema_version=payload.schema_version,
        )
    except RevisionConflictError as e:
        log_sync_operation(
            workspace_key,
            "sync",
            success=False,
            revision=e.current_revision,
            detail=f"stale revision {payload.revision}",
        )
        raise

    counts = outcome.state.counts()
    log_sync_operation(
        workspace_key,
        "sync",
        success=True,
        revision=outcome.revision,
        detail=" ".join(f"{name}={count}" for name, count in counts.items()),
    )
    return SyncResponse(
        state=outcome.state.to_wire(),
        server_updated_at=outcome.server_updated_at,
        revision=outcome.revision,
    )


@router.get("/state", response_model=SyncStateResponse)
async def get_sync_state(
    # Declared for the schema; SyncWorkspace reads and checks it.
    workspace_id: Annotated[str, Query(alias="workspaceId", min_length=1)],
    engine: SyncService,
    workspace_key: SyncWorkspace,
):
    """Stored state and revision, for re-fetching after a 409."""
    stored = await engine.fetch(workspace_key)
    log_sync_operation(
        workspace_key,
        "fetch",
        success=True,
        revision=stored.revision if stored else INITIAL_REVISION,
    )
    if stored is None:
        return SyncStateResponse(state=None, server_updated_at=None, revision=INITIAL_REVISION)
    return SyncStateResponse(
        state=stored.state.to_wire(),
        server_updated_at=stored.updated_at,
        revision=stored.revision,
    )
