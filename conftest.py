"""Shared fixtures: fake external ports and a transaction factory."""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pytest

from packages.ingestion_engine.errors import TransientError
from packages.ingestion_engine.models import (
    ExchangeRate,
    ProcessingStatus,
    Transaction,
    TransactionType,
)
from packages.ingestion_engine.ports import (
    AICategorizationPort,
    CategorizationResult,
    CategoryInfo,
    ExchangeRatePort,
    HistoricalContext,
)

FETCHED_AT = datetime(2025, 11, 15, 12, 0, 0)


class FakeRateProvider(ExchangeRatePort):
    """Quotes fixed rates; records every call."""

    provider_name = "fake-rates"

    def __init__(self, rates: Optional[Dict[str, float]] = None, fail_times: int = 0, error=None):
        self.rates = rates if rates is not None else {"USD": 0.79, "EUR": 0.86, "JPY": 0.0052}
        self.batch_calls: List[List[str]] = []
        self.single_calls: List[str] = []
        self.fail_times = fail_times
        self.error = error or TransientError("network unreachable")

    def _maybe_fail(self):
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.error

    def _quote(self, currency: str, to_currency: str) -> ExchangeRate:
        return ExchangeRate(
            base_currency=to_currency,
            target_currency=currency,
            rate=self.rates[currency],
            fetched_at=FETCHED_AT,
            provider=self.provider_name,
        )

    async def get_rate(self, from_currency: str, to_currency: str) -> ExchangeRate:
        self.single_calls.append(from_currency)
        self._maybe_fail()
        if from_currency not in self.rates:
            raise LookupError(f"no quote for {from_currency}")
        return self._quote(from_currency, to_currency)

    async def get_rates_batch(self, currencies: Sequence[str], to_currency: str) -> Dict[str, ExchangeRate]:
        self.batch_calls.append(list(currencies))
        self._maybe_fail()
        return {c: self._quote(c, to_currency) for c in currencies if c in self.rates}


class FakeAIPort(AICategorizationPort):
    """Answers from a description -> (category_id, confidence) table."""

    def __init__(self, answers: Optional[Dict[str, tuple]] = None, error: Optional[Exception] = None):
        self.answers = answers or {}
        self.error = error
        self.calls: List[dict] = []

    async def categorize_batch(
        self,
        transactions: Sequence[Transaction],
        categories: Sequence[CategoryInfo],
        historical_context: Optional[Sequence[HistoricalContext]] = None,
    ) -> List[CategorizationResult]:
        self.calls.append(
            {
                "transactions": list(transactions),
                "categories": list(categories),
                "context": list(historical_context or []),
            }
        )
        if self.error is not None:
            raise self.error
        names = {c.id: c.name for c in categories}
        results = []
        for t in transactions:
            if t.description not in self.answers:
                continue
            category_id, confidence = self.answers[t.description]
            results.append(
                CategorizationResult(
                    transaction_id=t.id,
                    category_id=category_id,
                    category_name=names.get(category_id, category_id),
                    confidence_score=confidence,
                )
            )
        return results


def _make_transaction(**overrides) -> Transaction:
    values = dict(
        original_transaction_id="tx_1",
        bank_source_id="MONZO",
        transaction_date=datetime(2025, 11, 15, 14, 30, 0),
        transaction_type=TransactionType.DEBIT,
        description="Tesco",
        original_amount_value=23.45,
        original_amount_currency="GBP",
        settlement_amount_value=23.45,
        processing_status=ProcessingStatus.NORMALISED,
    )
    values.update(overrides)
    return Transaction(**values)


@pytest.fixture
def make_transaction():
    return _make_transaction


@pytest.fixture
def rate_provider():
    return FakeRateProvider()


@pytest.fixture
def fake_rate_provider_cls():
    return FakeRateProvider


@pytest.fixture
def fake_ai_port_cls():
    return FakeAIPort


@pytest.fixture
def no_sleep():
    delays = []

    async def _sleep(seconds):
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
