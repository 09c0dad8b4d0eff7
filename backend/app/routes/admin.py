"""Admin routes for inspecting and correcting synced transactions.

Every route requires the admin secret. Mutations also require an actor
device id and write one audit event each.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Body, Path, Query, Request

from ledgersync.admin import TransactionFilters
from ledgersync.errors import InvalidInputError

from ..actors import resolve_actor
from ..auth import AdminAccess
from ..database import AdminService
from ..logging_config import get_logger
from ..models import MonthlyReportResponse, TransactionListResponse, TransactionResponse

logger = get_logger("ledgersync.api.admin")

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[AdminAccess])

TransactionId = Annotated[str, Path(min_length=1)]
OptionalBody = Annotated[dict[str, Any] | None, Body()]


def _workspace_key(query_value: str | None, body: dict[str, Any] | None) -> str:
    raw = query_value or (body or {}).get("workspaceId")
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidInputError("workspaceId and id are required")
    return raw.strip()


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    request: Request,
    admin: AdminService,
    workspace_id: Annotated[str, Query(alias="workspaceId", min_length=1)],
    month: str | None = None,
    kind: str | None = None,
    status: str | None = None,
    category_id: Annotated[str | None, Query(alias="categoryId")] = None,
    card_id: Annotated[str | None, Query(alias="cardId")] = None,
    q: str | None = None,
    limit: int | None = None,
    cursor: int | None = None,
):
    """
    List projected transactions, newest first.

    ``limit`` is clamped to [1, 200] (default 50); ``cursor`` is the offset
    returned as ``nextCursor`` by the previous page.
    """
    resolve_actor(request.headers)
    page = await admin.list_transactions(
        workspace_id.strip(),
        TransactionFilters(
            month=month,
            kind=kind,
            status=status,
            category_id=category_id,
            card_id=card_id,
            q=q,
            limit=limit,
            cursor=cursor,
        ),
    )
    return TransactionListResponse(data=page.data, next_cursor=page.next_cursor)


@router.patch("/transactions/{transaction_id}", response_model=TransactionResponse)
async def patch_transaction(
    request: Request,
    admin: AdminService,
    transaction_id: TransactionId,
    body: OptionalBody = None,
    workspace_id: Annotated[str | None, Query(alias="workspaceId")] = None,
):
    """Apply the recognized fields of ``body``; an empty patch is a 400."""
    workspace_key = _workspace_key(workspace_id, body)
    actor = resolve_actor(request.headers, body)
    changes = {key: value for key, value in (body or {}).items() if key not in ("workspaceId", "userId", "deviceId")}
    row = await admin.patch_transaction(workspace_key, transaction_id, changes, actor=actor)
    return TransactionResponse(transaction=row)


@router.delete("/transactions/{transaction_id}", response_model=TransactionResponse)
async def delete_transaction(
    request: Request,
    admin: AdminService,
    transaction_id: TransactionId,
    body: OptionalBody = None,
    workspace_id: Annotated[str | None, Query(alias="workspaceId")] = None,
):
    """Soft-delete a transaction."""
    workspace_key = _workspace_key(workspace_id, body)
    actor = resolve_actor(request.headers, body)
    row = await admin.delete_transaction(workspace_key, transaction_id, actor=actor)
    return TransactionResponse(transaction=row)


@router.post("/transactions/{transaction_id}/restore", response_model=TransactionResponse)
async def restore_transaction(
    request: Request,
    admin: AdminService,
    transaction_id: TransactionId,
    body: OptionalBody = None,
    workspace_id: Annotated[str | None, Query(alias="workspaceId")] = None,
):
    """Clear the soft-delete marker."""
    workspace_key = _workspace_key(workspace_id, body)
    actor = resolve_actor(request.headers, body)
    row = await admin.restore_transaction(workspace_key, transaction_id, actor=actor)
    return TransactionResponse(transaction=row)


@router.get("/reports/monthly", response_model=MonthlyReportResponse)
async def monthly_report(
    request: Request,
    admin: AdminService,
    workspace_id: Annotated[str, Query(alias="workspaceId", min_length=1)],
    month: Annotated[str, Query(min_length=1)],
):
    """Income, spend, debt and interest totals for one competence month."""
    resolve_actor(request.headers)
    report = await admin.monthly_report(workspace_id.strip(), month)
    return MonthlyReportResponse(**report)
