"""Hash-indexed duplicate detection keyed by (bank_source_id, original_transaction_id)."""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from .models import ProcessingStatus, Transaction

logger = structlog.get_logger()

DedupKey = Tuple[str, str]


@dataclass
class DuplicateCheck:
    is_duplicate: bool
    existing_transaction: Optional[Transaction] = None


class DuplicateDetector:
    """At-most-once ingestion guard for one processing run.

    Counters are observational only and never influence the outcome.
    """

    def __init__(self):
        self._index: Dict[DedupKey, Transaction] = {}
        self.checked_count = 0
        self.duplicate_count = 0

    def build(self, existing: Iterable[Transaction]) -> "DuplicateDetector":
        """Replace the index with the given persisted transactions, skipping ERROR rows."""
        self._index = {}
        for transaction in existing:
            if transaction.processing_status != ProcessingStatus.ERROR:
                self._index.setdefault(transaction.dedup_key, transaction)
        logger.debug("duplicate_index_built", size=len(self._index))
        return self

    def is_duplicate(self, transaction: Transaction) -> DuplicateCheck:
        self.checked_count += 1
        existing = self._index.get(transaction.dedup_key)
        if existing is None:
            return DuplicateCheck(is_duplicate=False)
        self.duplicate_count += 1
        return DuplicateCheck(is_duplicate=True, existing_transaction=existing)

    def register(self, transaction: Transaction) -> None:
        # First registration wins; re-registering a key is a no-op.
        self._index.setdefault(transaction.dedup_key, transaction)

    def filter_duplicates(self, batch: Iterable[Transaction]) -> List[Transaction]:
        """New transactions only, in input order. Duplicates within the batch are dropped too."""
        fresh = []
        for transaction in batch:
            if self.is_duplicate(transaction).is_duplicate:
                continue
            self.register(transaction)
            fresh.append(transaction)
        return fresh

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, key: DedupKey) -> bool:
        return key in self._index

    def reset_stats(self) -> None:
        self.checked_count = 0
        self.duplicate_count = 0

    def clear(self) -> None:
        self._index = {}
        self.reset_stats()
