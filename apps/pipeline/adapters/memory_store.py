"""In-memory transaction store for tests and dry runs."""

import copy
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from packages.categorization.constants import default_categories
from packages.categorization.historical import normalize_description
from packages.ingestion_engine.models import ProcessingStatus, Transaction, utcnow
from packages.ingestion_engine.ports import CategoryInfo, TransactionStore


class InMemoryTransactionStore(TransactionStore):
    def __init__(
        self,
        transactions: Sequence[Transaction] = (),
        categories: Optional[Sequence[CategoryInfo]] = None,
    ):
        self._rows: Dict[str, Transaction] = {}
        self._categories = list(categories) if categories is not None else default_categories()
        self.append(transactions)

    def get_by_status(self, status: ProcessingStatus) -> List[Transaction]:
        return [copy.deepcopy(t) for t in self._rows.values() if t.processing_status == status]

    def get_all(self) -> List[Transaction]:
        return [copy.deepcopy(t) for t in self._rows.values()]

    def get_by_merchant(self, description: str, limit: int = 10, days_back: int = 90) -> List[Transaction]:
        cutoff = utcnow() - timedelta(days=days_back)
        wanted = normalize_description(description)
        found = [
            t
            for t in self._rows.values()
            if t.transaction_date >= cutoff and wanted and wanted in normalize_description(t.description)
        ]
        found.sort(key=lambda t: t.transaction_date, reverse=True)
        return [copy.deepcopy(t) for t in found[:limit]]

    def get_history(self, days_back: int) -> List[Transaction]:
        cutoff = utcnow() - timedelta(days=days_back)
        return [
            copy.deepcopy(t)
            for t in self._rows.values()
            if t.transaction_date >= cutoff and t.is_categorized()
        ]

    def exists_by_original_id(self, bank_source_id: str, original_transaction_id: str) -> bool:
        return any(
            t.dedup_key == (bank_source_id, original_transaction_id)
            and t.processing_status != ProcessingStatus.ERROR
            for t in self._rows.values()
        )

    def append(self, transactions: Sequence[Transaction]) -> None:
        for transaction in transactions:
            self._rows[transaction.id] = copy.deepcopy(transaction)

    def update(self, transaction: Transaction) -> None:
        if transaction.id not in self._rows:
            raise KeyError(f"Transaction {transaction.id} is not stored")
        self._rows[transaction.id] = copy.deepcopy(transaction)

    def get_categories(self) -> List[CategoryInfo]:
        return list(self._categories)

    def __len__(self) -> int:
        return len(self._rows)
