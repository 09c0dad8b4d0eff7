"""AI pass-through routes. The provider is injected on ``app.state``."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from ledgersync.errors import LedgerSyncError

from ..ai import AIProvider
from ..logging_config import get_logger
from ..models import (
    InsightRequest,
    InsightResponse,
    ParseReceiptRequest,
    ParseReceiptResponse,
    SuggestCategoryRequest,
    SuggestCategoryResponse,
)

logger = get_logger("ledgersync.api.ai")

router = APIRouter(prefix="/api/ai", tags=["ai"])


def get_ai_provider(request: Request) -> AIProvider:
    return request.app.state.ai_provider


Provider = Annotated[AIProvider, Depends(get_ai_provider)]


@router.post("/suggest-category", response_model=SuggestCategoryResponse)
async def suggest_category(payload: SuggestCategoryRequest, provider: Provider):
    try:
        result = await provider.suggest_category(payload.description, payload.available_categories)
    except Exception as e:
        logger.error(f"AI suggest error: {type(e).__name__}: {e}")
        raise LedgerSyncError("suggest failed") from e
    return SuggestCategoryResponse(**result)


@router.post("/parse-receipt", response_model=ParseReceiptResponse)
async def parse_receipt(payload: ParseReceiptRequest, provider: Provider):
    try:
        result = await provider.parse_receipt(payload.base64_image, payload.available_categories)
    except Exception as e:
        logger.error(f"AI parse error: {type(e).__name__}: {e}")
        raise LedgerSyncError("parse failed") from e
    return ParseReceiptResponse(**result)


@router.post("/insight", response_model=InsightResponse)
async def generate_insight(payload: InsightRequest, provider: Provider):
    transactions = [t.model_dump() for t in payload.transactions]
    try:
        result = await provider.generate_insight(transactions, payload.income)
    except Exception as e:
        logger.error(f"AI insight error: {type(e).__name__}: {e}")
        raise LedgerSyncError("insight failed") from e
    return InsightResponse(**result)
