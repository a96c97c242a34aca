"""AI categorization with historical calibration and per-record fallback."""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import structlog

from packages.ingestion_engine.errors import (
    CategorizationError,
    ConfigurationError,
    sanitize_error_message,
)
from packages.ingestion_engine.models import ProcessingStatus, Transaction
from packages.ingestion_engine.ports import (
    AICategorizationPort,
    CategorizationResult,
    CategoryInfo,
    HistoricalContext,
)
from packages.ingestion_engine.status import StatusManager

from .confidence import ConfidenceCalculator
from .constants import DEFAULT_FALLBACK_CATEGORY
from .historical import HistoricalPatternLearner
from .models import ConfidenceInputs, SimilarityMatch

logger = structlog.get_logger()

CallWrapper = Callable[[Callable[[], Awaitable]], Awaitable]


async def _direct(fn):
    return await fn()


@dataclass
class CategorizerConfig:
    batch_size: int = 10
    use_historical_context: bool = True
    historical_context_size: int = 5
    fallback_category_name: str = DEFAULT_FALLBACK_CATEGORY


@dataclass
class FailedCategorization:
    transaction: Transaction
    error: str


@dataclass
class CategorizationOutcome:
    categorized: List[Transaction] = field(default_factory=list)
    failed: List[FailedCategorization] = field(default_factory=list)
    fallbacks: int = 0
    total_processed: int = 0


class AICategorizer:
    """
    Categorizes normalised transactions in batches.

    Each batch makes one classifier call. Every returned category is
    re-scored by the ConfidenceCalculator against historical matches.
    A transaction whose result is missing or unusable gets the fallback
    category with confidence 0; a batch whose call fails marks only its
    own transactions as ERROR.
    """

    def __init__(
        self,
        ai_port: AICategorizationPort,
        learner: Optional[HistoricalPatternLearner] = None,
        calculator: Optional[ConfidenceCalculator] = None,
        config: Optional[CategorizerConfig] = None,
        call_wrapper: CallWrapper = _direct,
    ):
        self.ai_port = ai_port
        self.learner = learner or HistoricalPatternLearner()
        self.calculator = calculator or ConfidenceCalculator()
        self.config = config or CategorizerConfig()
        self.call_wrapper = call_wrapper

    @staticmethod
    def filter_uncategorized(transactions: Sequence[Transaction]) -> List[Transaction]:
        return [
            t
            for t in transactions
            if t.processing_status not in (ProcessingStatus.UNPROCESSED, ProcessingStatus.ERROR)
            and not t.has_manual_category
            and t.category_ai_id is None
        ]

    async def categorize(
        self,
        transactions: Sequence[Transaction],
        categories: Sequence[CategoryInfo],
        history: Sequence[Transaction] = (),
    ) -> CategorizationOutcome:
        """
        Args:
            transactions: Normalised transactions to categorize.
            categories: Known categories; inactive ones are ignored.
            history: Persisted transactions used as pattern evidence.

        Raises:
            CategorizationError: Nothing to categorize against or an
                unnormalised transaction was passed in.
        """
        active = [c for c in categories if c.is_active]
        if not active:
            raise CategorizationError("No active categories available for categorization")
        for transaction in transactions:
            if transaction.processing_status == ProcessingStatus.UNPROCESSED:
                raise CategorizationError(
                    f"Transaction {transaction.id} must be normalised before categorization"
                )

        fallback = self._fallback_category(active)
        outcome = CategorizationOutcome()
        size = max(1, self.config.batch_size)
        for start in range(0, len(transactions), size):
            batch = list(transactions[start:start + size])
            await self._categorize_batch(batch, active, fallback, history, outcome)
            outcome.total_processed += len(batch)

        logger.info(
            "categorization_complete",
            categorized=len(outcome.categorized),
            failed=len(outcome.failed),
            fallbacks=outcome.fallbacks,
        )
        return outcome

    async def _categorize_batch(self, batch, categories, fallback, history, outcome):
        matches_by_id: Dict[str, List[SimilarityMatch]] = {
            t.id: self.learner.find_similar(t, history, limit=self.config.historical_context_size)
            for t in batch
        }
        context = self._historical_context(matches_by_id) if self.config.use_historical_context else None

        try:
            results = await self.call_wrapper(
                lambda: self.ai_port.categorize_batch(batch, categories, context)
            )
        except ConfigurationError:
            raise
        except Exception as exc:
            message = sanitize_error_message(f"AI categorization failed: {exc}")
            logger.warning("categorization_batch_failed", batch_size=len(batch), error=message)
            for transaction in batch:
                StatusManager.mark_error(transaction, message)
                outcome.failed.append(FailedCategorization(transaction, message))
            return

        by_id: Dict[str, CategorizationResult] = {}
        for result in results or []:
            by_id.setdefault(result.transaction_id, result)

        for transaction in batch:
            category = _resolve_result_category(by_id.get(transaction.id), categories)
            result = by_id.get(transaction.id)
            if category is None or not _valid_confidence(result):
                logger.warning(
                    "categorization_fallback",
                    transaction_id=transaction.id,
                    reason="missing" if result is None else "invalid",
                    fallback=fallback.name,
                )
                self._apply(transaction, fallback, 0)
                outcome.fallbacks += 1
            else:
                matches = matches_by_id[transaction.id]
                breakdown = self.calculator.calculate(
                    ConfidenceInputs(
                        ai_confidence=float(result.confidence_score),
                        ai_category_id=category.id,
                        historical_matches=matches,
                        historical_suggestion=self.learner.suggest_category(matches),
                    )
                )
                self._apply(transaction, category, breakdown.final_score)
            outcome.categorized.append(transaction)

    @staticmethod
    def _apply(transaction: Transaction, category: CategoryInfo, score: float) -> None:
        transaction.category_ai_id = category.id
        transaction.category_ai_name = category.name
        transaction.category_confidence_score = score
        transaction.error_message = None
        StatusManager.mark_categorised(transaction)

    def _historical_context(self, matches_by_id) -> List[HistoricalContext]:
        seen = set()
        context = []
        limit = self.config.historical_context_size * max(1, len(matches_by_id))
        for matches in matches_by_id.values():
            for match in matches:
                key = (match.description.lower(), match.category_name.lower())
                if key in seen:
                    continue
                seen.add(key)
                context.append(
                    HistoricalContext(
                        description=match.description,
                        category_name=match.category_name,
                        was_manual_override=match.was_manual_override,
                    )
                )
        return context[:limit]

    def _fallback_category(self, categories: Sequence[CategoryInfo]) -> CategoryInfo:
        wanted = self.config.fallback_category_name.lower()
        for category in categories:
            if category.name.lower() == wanted:
                return category
        return categories[0]


def _resolve_result_category(
    result: Optional[CategorizationResult], categories: Sequence[CategoryInfo]
) -> Optional[CategoryInfo]:
    if result is None:
        return None
    for category in categories:
        if result.category_id and category.id == result.category_id:
            return category
    name = (result.category_name or "").strip().lower()
    for category in categories:
        if name and category.name.lower() == name:
            return category
    return None


def _valid_confidence(result: Optional[CategorizationResult]) -> bool:
    if result is None:
        return False
    try:
        score = float(result.confidence_score)
    except (TypeError, ValueError):
        return False
    return 0 <= score <= 100
