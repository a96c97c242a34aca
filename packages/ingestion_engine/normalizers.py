"""Per-source normalizer strategies and the dispatching orchestrator.

Each bank source has its own strategy class. Strategies share behaviour by
composing ``RowReader`` and the helpers below rather than by inheriting
from a common base, so adding a source never touches an existing one.
"""

from datetime import datetime, time
from typing import Dict, Iterable, Optional, Protocol

import structlog

from . import bank_sources as fields
from .bank_sources import BankSource
from .errors import ConfigurationError, ValidationError
from .import_transactions import generate_fingerprint
from .models import DEFAULT_SETTLEMENT_CURRENCY, RawRow, Transaction, TransactionType
from .validation import (
    is_blank,
    sanitize_cell_text,
    validate_amount,
    validate_currency_code,
    validate_date,
    validate_optional_string,
    validate_required_string,
)

logger = structlog.get_logger()

DEFAULT_TIME = time(0, 0, 0)


class NormalizerStrategy(Protocol):
    source_id: str

    def normalize(self, row: RawRow) -> Transaction:
        ...


class RowReader:
    """Reads canonical fields out of one raw row via a source's column mapping."""

    def __init__(self, source: BankSource, row: RawRow):
        self.source = source
        self.row = row

    def value(self, canonical_field: str):
        column = self.source.column(canonical_field)
        if column is None:
            return None
        return self.row.get(column)

    def required_string(self, canonical_field: str) -> str:
        return validate_required_string(self.value(canonical_field), canonical_field)

    def optional_string(self, canonical_field: str) -> Optional[str]:
        return validate_optional_string(self.value(canonical_field))

    def amount(self, canonical_field: str = fields.AMOUNT) -> float:
        return validate_amount(self.value(canonical_field), canonical_field)

    def date(self, canonical_field: str) -> datetime:
        return validate_date(self.value(canonical_field), canonical_field)

    def optional_date(self, canonical_field: str) -> Optional[datetime]:
        raw = self.value(canonical_field)
        if is_blank(raw):
            return None
        return validate_date(raw, canonical_field)

    def currency(self) -> str:
        return validate_currency_code(self.value(fields.CURRENCY), fields.CURRENCY)


def type_from_sign(amount: float) -> TransactionType:
    return TransactionType.DEBIT if amount < 0 else TransactionType.CREDIT


def type_from_column(raw_type: Optional[str], amount: float) -> TransactionType:
    """Explicit debit/credit value, falling back to the amount sign when unrecognised."""
    if raw_type:
        normalized = raw_type.strip().upper()
        if normalized in ("DEBIT", "DR", "DEBITED"):
            return TransactionType.DEBIT
        if normalized in ("CREDIT", "CR", "CREDITED"):
            return TransactionType.CREDIT
    return type_from_sign(amount)


def combine_date_time(date_value: datetime, time_value: Optional[str]) -> datetime:
    """Merge a separate HH:MM[:SS] column into a date; date-only rows get the default time."""
    if not time_value:
        return datetime.combine(date_value.date(), DEFAULT_TIME)

    parts = str(time_value).strip().split(":")
    try:
        hour = int(parts[0])
        minute = int(parts[1]) if len(parts) > 1 else 0
        second = int(float(parts[2])) if len(parts) > 2 else 0
        return datetime.combine(date_value.date(), time(hour, minute, second))
    except (ValueError, IndexError):
        raise ValidationError(f"time is not a valid time of day: {time_value!r}", "time", time_value)


def build_transaction(
    source: BankSource,
    *,
    original_transaction_id: str,
    transaction_date: datetime,
    transaction_type: TransactionType,
    description: str,
    signed_amount: float,
    currency: str,
    settlement_currency: str,
    notes: Optional[str] = None,
    country: Optional[str] = None,
) -> Transaction:
    """Assemble the canonical record, applying the settlement-currency shortcut."""
    amount = abs(signed_amount)
    in_settlement = currency == settlement_currency
    return Transaction(
        original_transaction_id=original_transaction_id,
        bank_source_id=source.id,
        transaction_date=transaction_date,
        transaction_type=transaction_type,
        description=sanitize_cell_text(description),
        notes=sanitize_cell_text(notes),
        country=country,
        original_amount_value=amount,
        original_amount_currency=currency,
        settlement_amount_value=amount if in_settlement else None,
        exchange_rate_value=None,
    )


class MonzoNormalizer:
    """Native ids; separate date and time columns; sign carries the direction."""

    def __init__(self, source: BankSource, settlement_currency: str = DEFAULT_SETTLEMENT_CURRENCY):
        self.source = source
        self.source_id = source.id
        self.settlement_currency = settlement_currency

    def normalize(self, row: RawRow) -> Transaction:
        reader = RowReader(self.source, row)
        original_id = reader.required_string(fields.TRANSACTION_ID)
        timestamp = combine_date_time(reader.date(fields.DATE), reader.optional_string(fields.TIME))
        amount = reader.amount()
        return build_transaction(
            self.source,
            original_transaction_id=original_id,
            transaction_date=timestamp,
            transaction_type=type_from_sign(amount),
            description=reader.required_string(fields.DESCRIPTION),
            signed_amount=amount,
            currency=reader.currency(),
            settlement_currency=self.settlement_currency,
            notes=reader.optional_string(fields.NOTES),
        )


class RevolutNormalizer:
    """No native ids; completed date preferred over started date."""

    def __init__(self, source: BankSource, settlement_currency: str = DEFAULT_SETTLEMENT_CURRENCY):
        self.source = source
        self.source_id = source.id
        self.settlement_currency = settlement_currency

    def normalize(self, row: RawRow) -> Transaction:
        reader = RowReader(self.source, row)
        completed = reader.optional_date(fields.COMPLETED_DATE)
        timestamp = completed or reader.date(fields.DATE)
        description = reader.required_string(fields.DESCRIPTION)
        amount = reader.amount()
        currency = reader.currency()
        return build_transaction(
            self.source,
            original_transaction_id=generate_fingerprint(timestamp, description, amount, currency),
            transaction_date=timestamp,
            transaction_type=type_from_sign(amount),
            description=description,
            signed_amount=amount,
            currency=currency,
            settlement_currency=self.settlement_currency,
        )


class YonderNormalizer:
    """No native ids; combined date/time column; explicit Debit or Credit column.

    Yonder exports amounts already settled in GBP, so the row's Currency
    column (the card spend currency) never drives a conversion.
    """

    def __init__(self, source: BankSource, settlement_currency: str = DEFAULT_SETTLEMENT_CURRENCY):
        self.source = source
        self.source_id = source.id
        self.settlement_currency = settlement_currency

    def normalize(self, row: RawRow) -> Transaction:
        reader = RowReader(self.source, row)
        timestamp = reader.date(fields.DATE)
        description = reader.required_string(fields.DESCRIPTION)
        amount = reader.amount()
        currency = self.settlement_currency
        transaction_type = type_from_column(reader.optional_string(fields.TYPE), amount)
        return build_transaction(
            self.source,
            original_transaction_id=generate_fingerprint(timestamp, description, amount, currency),
            transaction_date=timestamp,
            transaction_type=transaction_type,
            description=description,
            signed_amount=amount,
            currency=currency,
            settlement_currency=self.settlement_currency,
            country=reader.optional_string(fields.COUNTRY),
        )


# Source id -> strategy class. A new bank source adds one entry here.
STRATEGY_CLASSES = {
    "MONZO": MonzoNormalizer,
    "REVOLUT": RevolutNormalizer,
    "YONDER": YonderNormalizer,
}


class TransactionNormalizer:
    """Dispatches raw rows to the strategy registered for their source."""

    def __init__(self, strategies: Iterable[NormalizerStrategy] = ()):
        self._strategies: Dict[str, NormalizerStrategy] = {}
        for strategy in strategies:
            self.register(strategy)

    @classmethod
    def for_sources(
        cls,
        sources: Iterable[BankSource],
        settlement_currency: str = DEFAULT_SETTLEMENT_CURRENCY,
    ) -> "TransactionNormalizer":
        normalizer = cls()
        for source in sources:
            strategy_cls = STRATEGY_CLASSES.get(source.id)
            if strategy_cls is None:
                raise ConfigurationError(
                    f"No normalizer strategy for bank source {source.id!r}. "
                    f"Available: {', '.join(sorted(STRATEGY_CLASSES))}"
                )
            normalizer.register(strategy_cls(source, settlement_currency))
        return normalizer

    def register(self, strategy: NormalizerStrategy) -> None:
        self._strategies[strategy.source_id] = strategy

    def registered_ids(self):
        return sorted(self._strategies)

    def normalize(self, source_id: str, row: RawRow) -> Transaction:
        strategy = self._strategies.get(source_id)
        if strategy is None:
            logger.error("unregistered_bank_source", source_id=source_id)
            raise ConfigurationError(
                f"No normalizer registered for bank source {source_id!r}. "
                f"Registered: {', '.join(self.registered_ids()) or 'none'}"
            )
        return strategy.normalize(row)
