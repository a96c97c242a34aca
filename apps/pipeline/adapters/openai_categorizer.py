"""OpenAI chat-completions classifier."""

import json
import re
from typing import Any, List, Optional, Sequence

import structlog
from openai import AsyncOpenAI

from packages.ingestion_engine.models import Transaction
from packages.ingestion_engine.ports import (
    AICategorizationPort,
    CategorizationResult,
    CategoryInfo,
    HistoricalContext,
)

logger = structlog.get_logger()

_JSON_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)
MAX_PROMPT_EXAMPLES = 5

SYSTEM_PROMPT = (
    "You categorize personal finance transactions.\n"
    "Return ONLY a JSON array (no markdown, no extra text), one object per transaction:\n"
    '{ "transactionId": string, "categoryId": string, "categoryName": string, '
    '"confidence": number, "reasoning": string }\n'
    "Choose categoryId ONLY from the provided categories.\n"
    "confidence is 0..100."
)


def _strip_json_fences(text: str) -> str:
    return _JSON_FENCE_RE.sub("", text).strip()


def build_messages(
    transactions: Sequence[Transaction],
    categories: Sequence[CategoryInfo],
    historical_context: Optional[Sequence[HistoricalContext]] = None,
) -> List[dict]:
    payload = {
        "categories": [
            {
                "id": c.id,
                "name": c.name,
                "description": c.description,
                "examples": c.examples,
            }
            for c in categories
        ],
        "transactions": [
            {
                "transactionId": t.id,
                "description": t.description,
                "amount": t.settlement_amount_value
                if t.settlement_amount_value is not None
                else t.original_amount_value,
                "currency": t.original_amount_currency,
                "type": t.transaction_type.value,
                "notes": t.notes,
            }
            for t in transactions
        ],
    }
    if historical_context:
        payload["previouslyCategorized"] = [
            {
                "description": h.description,
                "category": h.category_name,
                "manual": h.was_manual_override,
            }
            for h in list(historical_context)[:MAX_PROMPT_EXAMPLES]
        ]
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": json.dumps(payload, ensure_ascii=False)},
    ]


def parse_results(content: str, transactions: Sequence[Transaction]) -> List[CategorizationResult]:
    """Parse the model's JSON array. Unparseable output yields no results."""
    try:
        items = json.loads(_strip_json_fences(content or ""))
    except json.JSONDecodeError:
        logger.warning("ai_response_not_json", length=len(content or ""))
        return []
    if isinstance(items, dict):
        items = items.get("results") or items.get("transactions") or []
    if not isinstance(items, list):
        return []

    known_ids = {t.id for t in transactions}
    results = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        transaction_id = item.get("transactionId")
        if transaction_id not in known_ids and index < len(transactions):
            transaction_id = transactions[index].id
        results.append(
            CategorizationResult(
                transaction_id=transaction_id,
                category_id=str(item.get("categoryId") or ""),
                category_name=str(item.get("categoryName") or ""),
                confidence_score=_clamp_confidence(item.get("confidence")),
                reasoning=item.get("reasoning"),
            )
        )
    return results


def _clamp_confidence(value: Any) -> Optional[float]:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, min(100.0, score))


class OpenAICategorizer(AICategorizationPort):
    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        max_tokens: int = 1000,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def categorize_batch(
        self,
        transactions: Sequence[Transaction],
        categories: Sequence[CategoryInfo],
        historical_context: Optional[Sequence[HistoricalContext]] = None,
    ) -> List[CategorizationResult]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=build_messages(transactions, categories, historical_context),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        content = response.choices[0].message.content if response.choices else ""
        results = parse_results(content, transactions)
        logger.info(
            "ai_batch_categorized",
            model=self.model,
            requested=len(transactions),
            returned=len(results),
        )
        return results
