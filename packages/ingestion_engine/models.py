"""Canonical transaction model and related value objects."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigurationError, ValidationError

# A raw export row: source column label -> cell value.
RawRow = Dict[str, Any]

DEFAULT_SETTLEMENT_CURRENCY = "GBP"


class TransactionType(str, Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class ProcessingStatus(str, Enum):
    """Lifecycle: UNPROCESSED -> NORMALISED -> CATEGORISED, ERROR from anywhere."""

    UNPROCESSED = "UNPROCESSED"
    NORMALISED = "NORMALISED"
    CATEGORISED = "CATEGORISED"
    ERROR = "ERROR"


def new_surrogate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # Naive UTC keeps comparisons with naive export timestamps valid.
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class Transaction:
    """Canonical transaction, independent of the source export schema."""

    original_transaction_id: str
    bank_source_id: str
    transaction_date: datetime
    transaction_type: TransactionType
    description: str
    original_amount_value: float
    original_amount_currency: str
    settlement_amount_value: Optional[float] = None
    exchange_rate_value: Optional[float] = None
    notes: Optional[str] = None
    country: Optional[str] = None
    category_ai_id: Optional[str] = None
    category_ai_name: Optional[str] = None
    category_confidence_score: Optional[float] = None
    category_manual_id: Optional[str] = None
    category_manual_name: Optional[str] = None
    processing_status: ProcessingStatus = ProcessingStatus.UNPROCESSED
    error_message: Optional[str] = None
    id: str = field(default_factory=new_surrogate_id)
    timestamp_created: datetime = field(default_factory=utcnow)
    timestamp_last_modified: datetime = field(default_factory=utcnow)
    timestamp_normalised: Optional[datetime] = None
    timestamp_categorised: Optional[datetime] = None

    @property
    def dedup_key(self) -> Tuple[str, str]:
        return (self.bank_source_id, self.original_transaction_id)

    @property
    def has_manual_category(self) -> bool:
        return bool(self.category_manual_id or self.category_manual_name)

    def is_categorized(self) -> bool:
        return self.has_manual_category or self.category_ai_id is not None

    def effective_category(self) -> Optional[Tuple[Optional[str], str]]:
        """(id, name) of the category in force; manual always wins over AI."""
        if self.category_manual_name:
            return (self.category_manual_id, self.category_manual_name)
        if self.category_ai_id and self.category_ai_name:
            return (self.category_ai_id, self.category_ai_name)
        return None

    def clear_ai_category(self) -> None:
        self.category_ai_id = None
        self.category_ai_name = None
        self.category_confidence_score = None
        self.timestamp_categorised = None

    def to_dict(self) -> Dict[str, Any]:
        """Flat record for persistence."""
        return {
            "id": self.id,
            "original_transaction_id": self.original_transaction_id,
            "bank_source_id": self.bank_source_id,
            "transaction_date": self.transaction_date.isoformat(),
            "transaction_type": self.transaction_type.value,
            "description": self.description,
            "notes": self.notes,
            "country": self.country,
            "original_amount_value": self.original_amount_value,
            "original_amount_currency": self.original_amount_currency,
            "settlement_amount_value": self.settlement_amount_value,
            "exchange_rate_value": self.exchange_rate_value,
            "category_ai_id": self.category_ai_id,
            "category_ai_name": self.category_ai_name,
            "category_confidence_score": self.category_confidence_score,
            "category_manual_id": self.category_manual_id,
            "category_manual_name": self.category_manual_name,
            "processing_status": self.processing_status.value,
            "error_message": self.error_message,
            "timestamp_created": _iso(self.timestamp_created),
            "timestamp_last_modified": _iso(self.timestamp_last_modified),
            "timestamp_normalised": _iso(self.timestamp_normalised),
            "timestamp_categorised": _iso(self.timestamp_categorised),
        }

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "Transaction":
        return cls(
            id=record["id"],
            original_transaction_id=record["original_transaction_id"],
            bank_source_id=record["bank_source_id"],
            transaction_date=_parse_iso(record["transaction_date"]),
            transaction_type=TransactionType(record["transaction_type"]),
            description=record["description"],
            notes=record.get("notes"),
            country=record.get("country"),
            original_amount_value=float(record["original_amount_value"]),
            original_amount_currency=record["original_amount_currency"],
            settlement_amount_value=_optional_float(record.get("settlement_amount_value")),
            exchange_rate_value=_optional_float(record.get("exchange_rate_value")),
            category_ai_id=record.get("category_ai_id"),
            category_ai_name=record.get("category_ai_name"),
            category_confidence_score=_optional_float(record.get("category_confidence_score")),
            category_manual_id=record.get("category_manual_id"),
            category_manual_name=record.get("category_manual_name"),
            processing_status=ProcessingStatus(record["processing_status"]),
            error_message=record.get("error_message"),
            timestamp_created=_parse_iso(record.get("timestamp_created")) or utcnow(),
            timestamp_last_modified=_parse_iso(record.get("timestamp_last_modified")) or utcnow(),
            timestamp_normalised=_parse_iso(record.get("timestamp_normalised")),
            timestamp_categorised=_parse_iso(record.get("timestamp_categorised")),
        )


def validate_transaction(
    transaction: Transaction, settlement_currency: str = DEFAULT_SETTLEMENT_CURRENCY
) -> None:
    """Check the record-level invariants of a normalised transaction.

    Raises:
        ValidationError: naming the first offending field.
    """
    if not transaction.original_transaction_id:
        raise ValidationError("original_transaction_id is required", "original_transaction_id")
    if not transaction.description:
        raise ValidationError("description is required", "description")
    if transaction.original_amount_value < 0:
        raise ValidationError(
            "original_amount_value must be non-negative",
            "original_amount_value",
            transaction.original_amount_value,
        )

    if transaction.original_amount_currency == settlement_currency:
        if transaction.exchange_rate_value is not None:
            raise ValidationError(
                "exchange_rate_value must be empty for settlement-currency transactions",
                "exchange_rate_value",
                transaction.exchange_rate_value,
            )
    elif transaction.processing_status in (
        ProcessingStatus.NORMALISED,
        ProcessingStatus.CATEGORISED,
    ):
        rate = transaction.exchange_rate_value
        if rate is None or rate <= 0:
            raise ValidationError(
                f"exchange_rate_value is required for {transaction.original_amount_currency} transactions",
                "exchange_rate_value",
                rate,
            )

    score = transaction.category_confidence_score
    if score is not None and not 0 <= score <= 100:
        raise ValidationError(
            "category_confidence_score must be between 0 and 100",
            "category_confidence_score",
            score,
        )

    if bool(transaction.category_ai_id) != bool(transaction.category_ai_name):
        raise ValidationError(
            "category_ai_id and category_ai_name must be set together", "category_ai_id"
        )


@dataclass(frozen=True)
class ExchangeRate:
    """One provider quote: 1 unit of ``target_currency`` = ``rate`` units of ``base_currency``."""

    base_currency: str
    target_currency: str
    rate: float
    fetched_at: datetime
    provider: str


@dataclass(frozen=True)
class ExchangeRateSnapshot:
    """Audit record of the rate used for conversions within one processing run."""

    base_currency: str
    target_currency: str
    rate: float
    fetched_at: datetime
    provider: str
    processing_run_id: str

    def __post_init__(self):
        if self.base_currency == self.target_currency:
            raise ConfigurationError("Snapshot base and target currencies must differ")
        if not self.rate or self.rate <= 0:
            raise ConfigurationError(f"Snapshot rate must be positive, got {self.rate}")
        if not self.provider or not self.provider.strip():
            raise ConfigurationError("Snapshot provider is required")
        if not self.processing_run_id or not self.processing_run_id.strip():
            raise ConfigurationError("Snapshot processing_run_id is required")

    def convert(self, amount: float) -> float:
        return amount * self.rate


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # Stored timestamps are naive UTC.
    return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)
