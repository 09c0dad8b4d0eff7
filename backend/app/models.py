"""Pydantic models for API requests and responses.

Wire keys are camelCase; Python attributes are snake_case.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ledgersync.types import AppState


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Sync Models
# =============================================================================

class SyncRequest(ApiModel):
    """Push a whole client state for merging."""
    workspace_id: str = Field(..., min_length=1)
    state: AppState
    schema_version: int | None = Field(default=None, ge=1)
    revision: int | None = Field(default=None, ge=0)
    # Actor fallbacks when the headers are absent
    user_id: str | None = None
    device_id: str | None = None


class SyncResponse(ApiModel):
    """Merged state after a successful sync."""
    state: dict[str, Any]
    server_updated_at: str
    revision: int


class SyncStateResponse(ApiModel):
    """Stored state for re-fetch after a conflict (null before the first sync)."""
    state: dict[str, Any] | None
    server_updated_at: str | None
    revision: int


class ConflictResponse(ApiModel):
    error: str
    current_revision: int
    server_updated_at: str | None


class ErrorResponse(BaseModel):
    error: str


# =============================================================================
# Admin Models
# =============================================================================

class TransactionListResponse(ApiModel):
    """Page of projected transaction rows (snake_case columns as stored)."""
    data: list[dict[str, Any]]
    next_cursor: int | None


class TransactionResponse(BaseModel):
    transaction: dict[str, Any] | None


class MonthlyReportResponse(BaseModel):
    summary: dict[str, Any] | None
    categories: list[dict[str, Any]]


# =============================================================================
# AI Models
# =============================================================================

class SuggestCategoryRequest(ApiModel):
    description: str = ""
    available_categories: list[str] = []


class SuggestCategoryResponse(ApiModel):
    category: str | None = None


class ParseReceiptRequest(ApiModel):
    base64_image: str = Field(..., min_length=1)
    available_categories: list[str] = []


class ParseReceiptResponse(ApiModel):
    amount: float | None = None
    description: str | None = None
    category: str | None = None


class InsightTransaction(ApiModel):
    description: str = ""
    amount: float = 0
    kind: str | None = None


class InsightRequest(ApiModel):
    transactions: list[InsightTransaction] = []
    income: float | None = None


class InsightResponse(ApiModel):
    insight: str | None = None
