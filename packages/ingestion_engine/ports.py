"""Abstract capabilities the pipeline core depends on.

Adapters in ``apps.pipeline.adapters`` implement these; the core never does
I/O directly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .models import ExchangeRate, ProcessingStatus, Transaction


@dataclass
class CategoryInfo:
    id: str
    name: str
    description: str = ""
    examples: List[str] = field(default_factory=list)
    is_active: bool = True


@dataclass
class CategorizationResult:
    transaction_id: str
    category_id: str
    category_name: str
    confidence_score: float
    reasoning: Optional[str] = None


@dataclass
class HistoricalContext:
    description: str
    category_name: str
    was_manual_override: bool = False


class ExchangeRatePort(ABC):
    """Source of exchange rates into the settlement currency."""

    @abstractmethod
    async def get_rate(self, from_currency: str, to_currency: str) -> ExchangeRate:
        """Rate such that 1 ``from_currency`` = ``rate`` ``to_currency``."""
        pass

    @abstractmethod
    async def get_rates_batch(
        self, currencies: Sequence[str], to_currency: str
    ) -> Dict[str, ExchangeRate]:
        """
        Fetch several rates in one provider call.

        Returns:
            Currency code -> rate. Currencies the provider does not quote are
            absent from the mapping rather than raising.
        """
        pass


class AICategorizationPort(ABC):
    """External classifier."""

    @abstractmethod
    async def categorize_batch(
        self,
        transactions: Sequence[Transaction],
        categories: Sequence[CategoryInfo],
        historical_context: Optional[Sequence[HistoricalContext]] = None,
    ) -> List[CategorizationResult]:
        pass


class TransactionStore(ABC):
    """Persistence of canonical transactions."""

    @abstractmethod
    def get_by_status(self, status: ProcessingStatus) -> List[Transaction]:
        pass

    @abstractmethod
    def get_all(self) -> List[Transaction]:
        pass

    def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        for transaction in self.get_all():
            if transaction.id == transaction_id:
                return transaction
        return None

    @abstractmethod
    def get_by_merchant(
        self, description: str, limit: int = 10, days_back: int = 90
    ) -> List[Transaction]:
        pass

    @abstractmethod
    def get_history(self, days_back: int) -> List[Transaction]:
        """Categorised transactions dated within the last ``days_back`` days."""
        pass

    @abstractmethod
    def exists_by_original_id(self, bank_source_id: str, original_transaction_id: str) -> bool:
        pass

    @abstractmethod
    def append(self, transactions: Sequence[Transaction]) -> None:
        pass

    @abstractmethod
    def update(self, transaction: Transaction) -> None:
        """Persist status, category, amount and timestamp fields of an existing row."""
        pass

    def update_category(self, transaction: Transaction) -> None:
        self.update(transaction)

    @abstractmethod
    def get_categories(self) -> List[CategoryInfo]:
        pass
