"""Processing-run context.

A run owns every piece of mutable per-run state (rate cache, duplicate
index) so independently scheduled runs never share it.
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from .duplicate_detector import DuplicateDetector
from .errors import sanitize_error_message
from .models import ExchangeRateSnapshot, utcnow


class RunType(str, Enum):
    NORMALISATION = "NORMALISATION"
    CATEGORISATION = "CATEGORISATION"


class RunStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"


_RUN_ID_PREFIX = {
    RunType.NORMALISATION: "run",
    RunType.CATEGORISATION: "cat",
}


def new_run_id(run_type: RunType, now: Optional[datetime] = None) -> str:
    ts = int((now or utcnow()).timestamp() * 1000)
    return f"{_RUN_ID_PREFIX[run_type]}-{ts}-{secrets.token_hex(4)}"


@dataclass
class ProcessingRun:
    id: str
    run_type: RunType
    status: RunStatus = RunStatus.IN_PROGRESS
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    transactions_processed: int = 0
    transactions_succeeded: int = 0
    transactions_failed: int = 0
    duplicates_skipped: int = 0
    error_log: List[str] = field(default_factory=list)
    # currency code -> snapshot used for every conversion from that currency
    rate_cache: Dict[str, ExchangeRateSnapshot] = field(default_factory=dict)
    duplicate_detector: DuplicateDetector = field(default_factory=DuplicateDetector)

    @classmethod
    def start(cls, run_type: RunType) -> "ProcessingRun":
        return cls(id=new_run_id(run_type), run_type=run_type)

    @property
    def rate_snapshots(self) -> List[ExchangeRateSnapshot]:
        return list(self.rate_cache.values())

    def clear_caches(self) -> None:
        self.rate_cache.clear()
        self.duplicate_detector.clear()

    def record_success(self) -> None:
        self.transactions_processed += 1
        self.transactions_succeeded += 1

    def record_failure(self, transaction_id: Optional[str], message: str) -> None:
        self.transactions_processed += 1
        self.transactions_failed += 1
        self.log_error(f"{transaction_id}: {message}" if transaction_id else message)

    def record_duplicate(self) -> None:
        self.duplicates_skipped += 1

    def log_error(self, message: str) -> None:
        self.error_log.append(sanitize_error_message(message))

    def complete(self) -> RunStatus:
        if self.transactions_failed == 0:
            self.status = RunStatus.COMPLETED
        elif self.transactions_succeeded > 0:
            self.status = RunStatus.PARTIAL_SUCCESS
        else:
            self.status = RunStatus.FAILED
        self.completed_at = utcnow()
        return self.status

    def fail(self, error: BaseException) -> None:
        self.log_error(str(error))
        self.status = RunStatus.FAILED
        self.completed_at = utcnow()

    def summary(self) -> dict:
        return {
            "run_id": self.id,
            "run_type": self.run_type.value,
            "status": self.status.value,
            "processed": self.transactions_processed,
            "succeeded": self.transactions_succeeded,
            "failed": self.transactions_failed,
            "duplicates_skipped": self.duplicates_skipped,
            "rate_snapshots": len(self.rate_cache),
            "errors": list(self.error_log),
        }
