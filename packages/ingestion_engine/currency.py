"""Conversion of transaction amounts into the settlement currency."""

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Optional, Sequence, Union

import structlog

from .errors import ConfigurationError, ConversionError
from .models import DEFAULT_SETTLEMENT_CURRENCY, ExchangeRateSnapshot, Transaction
from .ports import ExchangeRatePort
from .processing_run import ProcessingRun

logger = structlog.get_logger()

# Wraps one suspending provider call, e.g. with a retry policy.
CallWrapper = Callable[[Callable[[], Awaitable]], Awaitable]


async def _direct(fn):
    return await fn()


@dataclass(frozen=True)
class ConversionResult:
    transaction_id: str
    settlement_amount: float
    rate: Optional[float] = None
    snapshot: Optional[ExchangeRateSnapshot] = None


@dataclass(frozen=True)
class ConversionFailure:
    transaction_id: str
    error: ConversionError


ConversionOutcome = Union[ConversionResult, ConversionFailure]


class CurrencyConverter:
    """Converts amounts using the rate cache of the owning processing run.

    Settlement-currency transactions pass through untouched and never reach
    the provider. A batch issues at most one provider call covering every
    uncached currency in it.
    """

    def __init__(
        self,
        provider: ExchangeRatePort,
        run: ProcessingRun,
        settlement_currency: str = DEFAULT_SETTLEMENT_CURRENCY,
        call_wrapper: CallWrapper = _direct,
        provider_name: str = "exchange-rate-provider",
    ):
        self.provider = provider
        self.run = run
        self.settlement_currency = settlement_currency
        self.call_wrapper = call_wrapper
        self.provider_name = provider_name

    @property
    def cache(self) -> Dict[str, ExchangeRateSnapshot]:
        return self.run.rate_cache

    def clear_cache(self) -> None:
        self.cache.clear()

    async def convert_to_gbp(self, transaction: Transaction) -> ConversionResult:
        """Convert one transaction, fetching its rate if it is not cached.

        Raises:
            ConversionError: the provider could not supply the rate.
        """
        currency = transaction.original_amount_currency
        if currency == self.settlement_currency:
            return self._pass_through(transaction)

        snapshot = self.cache.get(currency)
        if snapshot is None:
            try:
                rate = await self.call_wrapper(
                    lambda: self.provider.get_rate(currency, self.settlement_currency)
                )
                snapshot = self._cache_rate(currency, rate)
            except ConfigurationError:
                raise
            except Exception as exc:
                logger.warning(
                    "exchange_rate_fetch_failed",
                    currency=currency,
                    transaction_id=transaction.id,
                    error_type=type(exc).__name__,
                )
                raise ConversionError(transaction.id, currency, exc) from exc

        return self._convert(transaction, snapshot)

    async def convert_batch_to_gbp(
        self, transactions: Sequence[Transaction]
    ) -> Dict[str, ConversionOutcome]:
        """Convert a batch; failures are attributed to the transactions that needed the rate."""
        needed = sorted(self._uncached_currencies(transactions))
        fetch_error: Optional[BaseException] = None
        quote_errors: Dict[str, BaseException] = {}

        if needed:
            logger.info("exchange_rates_batch_fetch", currencies=needed, run_id=self.run.id)
            try:
                rates = await self.call_wrapper(
                    lambda: self.provider.get_rates_batch(needed, self.settlement_currency)
                )
            except ConfigurationError:
                raise
            except Exception as exc:
                logger.warning(
                    "exchange_rates_batch_failed",
                    currencies=needed,
                    error_type=type(exc).__name__,
                )
                fetch_error = exc
                rates = {}
            for currency, rate in rates.items():
                if currency not in needed:
                    continue
                try:
                    self._cache_rate(currency, rate)
                except ValueError as exc:
                    logger.warning("exchange_rate_quote_rejected", currency=currency, error=str(exc))
                    quote_errors[currency] = exc

        results: Dict[str, ConversionOutcome] = {}
        for transaction in transactions:
            currency = transaction.original_amount_currency
            if currency == self.settlement_currency:
                results[transaction.id] = self._pass_through(transaction)
                continue
            snapshot = self.cache.get(currency)
            if snapshot is None:
                cause = quote_errors.get(currency, fetch_error)
                results[transaction.id] = ConversionFailure(
                    transaction.id, ConversionError(transaction.id, currency, cause)
                )
            else:
                results[transaction.id] = self._convert(transaction, snapshot)
        return results

    def _uncached_currencies(self, transactions: Iterable[Transaction]):
        return {
            t.original_amount_currency
            for t in transactions
            if t.original_amount_currency != self.settlement_currency
            and t.original_amount_currency not in self.cache
        }

    def _cache_rate(self, currency: str, rate) -> ExchangeRateSnapshot:
        if rate.rate is None or not rate.rate > 0:
            raise ValueError(f"provider quoted a non-positive rate for {currency}: {rate.rate!r}")
        snapshot = ExchangeRateSnapshot(
            base_currency=self.settlement_currency,
            target_currency=currency,
            rate=rate.rate,
            fetched_at=rate.fetched_at,
            provider=rate.provider or self.provider_name,
            processing_run_id=self.run.id,
        )
        self.cache[currency] = snapshot
        return snapshot

    @staticmethod
    def _pass_through(transaction: Transaction) -> ConversionResult:
        return ConversionResult(
            transaction_id=transaction.id,
            settlement_amount=transaction.original_amount_value,
        )

    @staticmethod
    def _convert(transaction: Transaction, snapshot: ExchangeRateSnapshot) -> ConversionResult:
        return ConversionResult(
            transaction_id=transaction.id,
            settlement_amount=round(snapshot.convert(transaction.original_amount_value), 2),
            rate=snapshot.rate,
            snapshot=snapshot,
        )


def apply_conversion(transaction: Transaction, result: ConversionResult) -> None:
    transaction.settlement_amount_value = result.settlement_amount
    transaction.exchange_rate_value = result.rate
