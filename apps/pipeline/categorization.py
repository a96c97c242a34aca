"""Categorization run: normalised transactions -> AI category with calibrated confidence."""

from typing import List, Optional, Tuple

import structlog

from packages.categorization.categorizer import AICategorizer
from packages.categorization.category_resolver import CategoryResolution, ManualOverrideHandler
from packages.ingestion_engine.errors import ValidationError, sanitize_error_message
from packages.ingestion_engine.models import ProcessingStatus, Transaction
from packages.ingestion_engine.ports import TransactionStore
from packages.ingestion_engine.processing_run import ProcessingRun, RunType

from apps.pipeline.core.logging import bound_run

logger = structlog.get_logger()


class CategorizationService:
    def __init__(self, store: TransactionStore, categorizer: AICategorizer, lookback_days: int = 90):
        self.store = store
        self.categorizer = categorizer
        self.lookback_days = lookback_days

    async def categorize(self) -> ProcessingRun:
        """Categorize every normalised transaction without an AI or manual category."""
        pending = AICategorizer.filter_uncategorized(
            self.store.get_by_status(ProcessingStatus.NORMALISED)
        )
        return await self._run(pending, "categorization")

    async def recategorize_all(self) -> ProcessingRun:
        """Re-run the classifier over everything not manually categorised."""
        candidates = [
            t
            for t in self.store.get_by_status(ProcessingStatus.NORMALISED)
            + self.store.get_by_status(ProcessingStatus.CATEGORISED)
            if not t.has_manual_category
        ]
        return await self._run(candidates, "recategorization")

    async def _run(self, transactions: List[Transaction], label: str) -> ProcessingRun:
        run = ProcessingRun.start(RunType.CATEGORISATION)
        with bound_run(run.id):
            logger.info(f"{label}_started", count=len(transactions))
            if not transactions:
                run.complete()
                return run
            try:
                outcome = await self.categorizer.categorize(
                    transactions,
                    self.store.get_categories(),
                    self.store.get_history(self.lookback_days),
                )
            except Exception as exc:
                run.fail(exc)
                logger.error(f"{label}_failed", error=sanitize_error_message(str(exc)))
                raise

            for transaction in outcome.categorized:
                self.store.update_category(transaction)
                run.record_success()
            for failure in outcome.failed:
                self.store.update_category(failure.transaction)
                run.record_failure(failure.transaction.id, failure.error)

            run.complete()
            logger.info(f"{label}_finished", fallbacks=outcome.fallbacks, **run.summary())
        return run


class ManualOverrideService:
    """Applies a human category choice to one stored transaction."""

    def __init__(self, store: TransactionStore, handler: Optional[ManualOverrideHandler] = None):
        self.store = store
        self.handler = handler or ManualOverrideHandler()

    def _load(self, transaction_id: str) -> Transaction:
        transaction = self.store.get_by_id(transaction_id)
        if transaction is None:
            raise ValidationError(f"Transaction {transaction_id} not found", "id", transaction_id)
        return transaction

    def apply(self, transaction_id: str, category_name: str) -> Tuple[Transaction, CategoryResolution]:
        if not category_name or not category_name.strip():
            raise ValidationError("Category name is empty", "category_name", category_name)
        transaction = self._load(transaction_id)
        resolution = self.handler.apply(transaction, category_name, self.store.get_categories())
        self.store.update_category(transaction)
        return transaction, resolution

    def clear(self, transaction_id: str) -> Transaction:
        transaction = self._load(transaction_id)
        self.handler.clear(transaction)
        self.store.update_category(transaction)
        logger.info("manual_override_cleared", transaction_id=transaction_id)
        return transaction
