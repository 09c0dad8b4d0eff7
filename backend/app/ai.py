"""AI pass-through providers.

The service does no model work of its own. A provider is chosen once from
settings in ``create_app`` and injected, so tests substitute a fake without
touching the environment.

``OpenAIProvider`` wraps the ``openai`` SDK, imported lazily so the backend
runs without it installed::

    pip install ledgersync[openai]
"""

import asyncio
import json
import logging
from typing import Any, Protocol

from .config import Settings

logger = logging.getLogger("ledgersync.api.ai")

NOT_CONFIGURED_INSIGHT = "Provider not configured (AI_PROVIDER=none)."
MISSING_KEY_INSIGHT = "Provider not configured (missing OPENAI_API_KEY)."
INSIGHT_UNAVAILABLE = "Insight unavailable."

# Only the most recent transactions go into the insight prompt
INSIGHT_TRANSACTION_LIMIT = 20


class AIProvider(Protocol):
    async def suggest_category(self, description: str, available_categories: list[str]) -> dict[str, Any]: ...

    async def parse_receipt(self, base64_image: str, available_categories: list[str]) -> dict[str, Any]: ...

    async def generate_insight(self, transactions: list[dict[str, Any]], income: float | None) -> dict[str, Any]: ...


class NullProvider:
    """AI_PROVIDER=none: empty suggestions, fixed insight."""

    async def suggest_category(self, description, available_categories):
        return {"category": None}

    async def parse_receipt(self, base64_image, available_categories):
        return {"amount": None, "description": None, "category": None}

    async def generate_insight(self, transactions, income):
        return {"insight": NOT_CONFIGURED_INSIGHT}


class OpenAIProvider:
    """Chat-completions backed provider.

    A suggested category is only returned when it is one of the caller's
    categories; anything else comes back as ``None``.
    """

    def __init__(self, api_key: str | None, model_id: str = "gpt-4o-mini", *, timeout: float = 8.0):
        self._model_id = model_id
        self._timeout = timeout
        self._client = None
        if api_key:
            try:
                import openai as _openai
            except ImportError:
                raise ImportError(
                    "The 'openai' package is required for AI_PROVIDER=openai. "
                    "Install it with: pip install openai"
                ) from None
            self._client = _openai.OpenAI(api_key=api_key, timeout=timeout)

    async def _complete(self, messages: list[dict[str, Any]], **kwargs) -> str:
        def _call():
            return self._client.chat.completions.create(model=self._model_id, messages=messages, **kwargs)

        response = await asyncio.wait_for(asyncio.to_thread(_call), self._timeout)
        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    async def suggest_category(self, description, available_categories):
        if self._client is None:
            return {"category": None}
        prompt = (
            f'Classify the description "{description}" into ONE category from this list: '
            f"{', '.join(available_categories)}. Answer with the exact category name only."
        )
        text = await self._complete([{"role": "user", "content": prompt}], temperature=0.1)
        return {"category": text if text in available_categories else None}

    async def parse_receipt(self, base64_image, available_categories):
        empty = {"amount": None, "description": None, "category": None}
        if self._client is None:
            return empty
        content = [
            {
                "type": "text",
                "text": (
                    "Extract the total, the merchant name and a category "
                    f"({', '.join(available_categories)}). Answer JSON {{amount, description, category}}."
                ),
            },
            {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{base64_image}"}},
        ]
        text = await self._complete([{"role": "user", "content": content}], max_tokens=200, temperature=0.2)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Receipt response was not JSON")
            return empty
        if not isinstance(parsed, dict):
            return empty
        category = parsed.get("category")
        return {
            "amount": parsed.get("amount"),
            "description": parsed.get("description"),
            "category": category if category in available_categories else None,
        }

    async def generate_insight(self, transactions, income):
        if self._client is None:
            return {"insight": MISSING_KEY_INSIGHT}
        summary = ", ".join(
            f"{t.get('description', '')}:{t.get('amount', 0)}" for t in transactions[:INSIGHT_TRANSACTION_LIMIT]
        )
        prompt = (
            f"Monthly income: {income or 0}. Transactions: {summary}. "
            "Give one sentence of insight on the balance between debt and cost of living."
        )
        text = await self._complete([{"role": "user", "content": prompt}], temperature=0.3, max_tokens=60)
        return {"insight": text or INSIGHT_UNAVAILABLE}


def build_ai_provider(settings: Settings) -> AIProvider:
    if settings.ai_provider == "openai":
        return OpenAIProvider(
            settings.openai_api_key,
            settings.openai_model,
            timeout=settings.storage_timeout_seconds,
        )
    return NullProvider()
