"""Normalization run: raw export rows -> deduplicated, converted, persisted transactions."""

import asyncio
from typing import Dict, List, Optional, Sequence

import structlog

from packages.ingestion_engine.bank_sources import BankSourceRegistry
from packages.ingestion_engine.currency import ConversionResult, CurrencyConverter, apply_conversion
from packages.ingestion_engine.duplicate_detector import DuplicateDetector
from packages.ingestion_engine.errors import ValidationError, sanitize_error_message
from packages.ingestion_engine.models import (
    DEFAULT_SETTLEMENT_CURRENCY,
    ProcessingStatus,
    RawRow,
    Transaction,
    validate_transaction,
)
from packages.ingestion_engine.normalizers import TransactionNormalizer
from packages.ingestion_engine.ports import ExchangeRatePort, TransactionStore
from packages.ingestion_engine.processing_run import ProcessingRun, RunType
from packages.ingestion_engine.status import StatusManager

from apps.pipeline.core.logging import bound_run
from apps.pipeline.core.retry import RetryPolicy, retrying

logger = structlog.get_logger()


class NormalizationService:
    def __init__(
        self,
        store: TransactionStore,
        rate_provider: ExchangeRatePort,
        registry: Optional[BankSourceRegistry] = None,
        settlement_currency: str = DEFAULT_SETTLEMENT_CURRENCY,
        retry_policy: Optional[RetryPolicy] = None,
        sleep=asyncio.sleep,
    ):
        self.store = store
        self.rate_provider = rate_provider
        self.registry = registry or BankSourceRegistry.default()
        self.settlement_currency = settlement_currency
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep

    def _converter(self, run: ProcessingRun) -> CurrencyConverter:
        return CurrencyConverter(
            self.rate_provider,
            run,
            settlement_currency=self.settlement_currency,
            call_wrapper=retrying(self.retry_policy, "exchange_rates", sleep=self.sleep),
            provider_name=getattr(self.rate_provider, "provider_name", type(self.rate_provider).__name__),
        )

    async def process_source(self, source_id: str, rows: Sequence[RawRow]) -> ProcessingRun:
        """
        Normalize, deduplicate, convert and persist one source's export rows.

        Bad rows are logged against the run and skipped; conversion failures
        are persisted as ERROR transactions. Configuration errors propagate.
        """
        source = self.registry.get(source_id)
        normalizer = TransactionNormalizer.for_sources([source], self.settlement_currency)
        run = ProcessingRun.start(RunType.NORMALISATION)

        with bound_run(run.id, source_id=source.id):
            logger.info("normalization_started", rows=len(rows))
            try:
                run.clear_caches()
                run.duplicate_detector.build(self.store.get_all())

                normalized: List[Transaction] = []
                for row_number, row in enumerate(rows, start=1):
                    try:
                        normalized.append(normalizer.normalize(source.id, row))
                    except ValidationError as exc:
                        logger.warning("row_rejected", row=row_number, field=exc.field, error=exc.detail)
                        run.record_failure(f"row {row_number}", exc.detail)

                fresh = run.duplicate_detector.filter_duplicates(normalized)
                for _ in range(len(normalized) - len(fresh)):
                    run.record_duplicate()

                await self._convert_and_mark(run, fresh)
                self.store.append(fresh)
                source.mark_processed()
            except Exception as exc:
                run.fail(exc)
                logger.error("normalization_failed", error=sanitize_error_message(str(exc)))
                raise

            run.complete()
            logger.info("normalization_finished", **run.summary())
        return run

    async def process_all(self, rows_by_source: Dict[str, Sequence[RawRow]]) -> List[ProcessingRun]:
        """One independent run per source, each with its own caches."""
        runs = []
        for source_id, rows in rows_by_source.items():
            runs.append(await self.process_source(source_id, rows))
        return runs

    async def retry_errors(self) -> ProcessingRun:
        """Re-attempt conversion for transactions left in ERROR by earlier runs.

        An ERROR row whose key has since been imported again stays in ERROR
        and is counted as a duplicate. A recovered row loses any AI category
        from a failed categorization batch so that it is picked up again.
        """
        run = ProcessingRun.start(RunType.NORMALISATION)
        with bound_run(run.id):
            failed = self.store.get_by_status(ProcessingStatus.ERROR)
            logger.info("error_retry_started", count=len(failed))

            retryable = DuplicateDetector().build(self.store.get_all()).filter_duplicates(failed)
            for _ in range(len(failed) - len(retryable)):
                run.record_duplicate()

            outcomes = await self._converter(run).convert_batch_to_gbp(retryable)
            for transaction in retryable:
                outcome = outcomes[transaction.id]
                if isinstance(outcome, ConversionResult):
                    apply_conversion(transaction, outcome)
                    StatusManager.retry_from_error(transaction)
                    transaction.clear_ai_category()
                    run.record_success()
                else:
                    StatusManager.mark_error(transaction, outcome.error.detail)
                    run.record_failure(transaction.id, outcome.error.detail)
                self.store.update(transaction)
            run.complete()
            logger.info("error_retry_finished", **run.summary())
        return run

    async def _convert_and_mark(self, run: ProcessingRun, transactions: List[Transaction]) -> None:
        outcomes = await self._converter(run).convert_batch_to_gbp(transactions)
        for transaction in transactions:
            outcome = outcomes[transaction.id]
            if not isinstance(outcome, ConversionResult):
                StatusManager.mark_error(transaction, outcome.error.detail)
                run.record_failure(transaction.id, outcome.error.detail)
                continue
            apply_conversion(transaction, outcome)
            StatusManager.mark_normalised(transaction)
            try:
                validate_transaction(transaction, self.settlement_currency)
            except ValidationError as exc:
                StatusManager.mark_error(transaction, exc.detail)
                run.record_failure(transaction.id, exc.detail)
                continue
            run.record_success()
