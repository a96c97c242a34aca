"""Bank source configurations.

A source maps canonical field names to the column labels of its export.
Once a source has been processed its mapping is frozen: changing it would
change the fingerprint inputs and silently break duplicate detection.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from .errors import ConfigurationError
from .models import utcnow

# Canonical field names used as column-mapping keys.
TRANSACTION_ID = "transaction_id"
DATE = "date"
TIME = "time"
COMPLETED_DATE = "completed_date"
DESCRIPTION = "description"
AMOUNT = "amount"
CURRENCY = "currency"
TYPE = "type"
NOTES = "notes"
COUNTRY = "country"

REQUIRED_FIELDS = (DATE, DESCRIPTION, AMOUNT, CURRENCY)


@dataclass
class BankSource:
    id: str
    name: str
    column_mapping: Mapping[str, str]
    has_native_id: bool
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    last_processed_at: Optional[datetime] = None

    def __post_init__(self):
        validate_column_mapping(self.id, self.column_mapping, self.has_native_id)
        self.column_mapping = MappingProxyType(dict(self.column_mapping))

    def column(self, canonical_field: str) -> Optional[str]:
        return self.column_mapping.get(canonical_field)

    def update_mapping(self, column_mapping: Mapping[str, str]) -> None:
        if self.last_processed_at is not None:
            raise ConfigurationError(
                f"Column mapping for {self.id} is immutable after its first processed run"
            )
        validate_column_mapping(self.id, column_mapping, self.has_native_id)
        self.column_mapping = MappingProxyType(dict(column_mapping))

    def mark_processed(self, when: Optional[datetime] = None) -> None:
        self.last_processed_at = when or utcnow()


def validate_column_mapping(
    source_id: str, column_mapping: Mapping[str, str], has_native_id: bool
) -> None:
    missing = [f for f in REQUIRED_FIELDS if not column_mapping.get(f)]
    if missing:
        raise ConfigurationError(
            f"Bank source {source_id} mapping is missing required fields: {', '.join(missing)}"
        )
    if has_native_id and not column_mapping.get(TRANSACTION_ID):
        raise ConfigurationError(
            f"Bank source {source_id} declares native ids but maps no {TRANSACTION_ID} column"
        )
    if not has_native_id and column_mapping.get(TRANSACTION_ID):
        raise ConfigurationError(
            f"Bank source {source_id} maps a {TRANSACTION_ID} column but declares no native ids"
        )


def monzo_source() -> BankSource:
    return BankSource(
        id="MONZO",
        name="Monzo",
        has_native_id=True,
        column_mapping={
            TRANSACTION_ID: "Transaction ID",
            DATE: "Date",
            TIME: "Time",
            DESCRIPTION: "Name",
            AMOUNT: "Amount",
            CURRENCY: "Currency",
            TYPE: "Type",
            NOTES: "Notes and #tags",
        },
    )


def revolut_source() -> BankSource:
    return BankSource(
        id="REVOLUT",
        name="Revolut",
        has_native_id=False,
        column_mapping={
            DATE: "Started Date",
            COMPLETED_DATE: "Completed Date",
            DESCRIPTION: "Description",
            AMOUNT: "Amount",
            CURRENCY: "Currency",
            TYPE: "Type",
        },
    )


def yonder_source() -> BankSource:
    return BankSource(
        id="YONDER",
        name="Yonder",
        has_native_id=False,
        column_mapping={
            DATE: "Date/Time of transaction",
            DESCRIPTION: "Description",
            AMOUNT: "Amount (GBP)",
            CURRENCY: "Currency",
            TYPE: "Debit or Credit",
            COUNTRY: "Country",
        },
    )


class BankSourceRegistry:
    """Bank sources keyed by id."""

    def __init__(self, sources: Optional[List[BankSource]] = None):
        self._sources: Dict[str, BankSource] = {}
        for source in sources or []:
            self.register(source)

    @classmethod
    def default(cls) -> "BankSourceRegistry":
        return cls([monzo_source(), revolut_source(), yonder_source()])

    def register(self, source: BankSource) -> None:
        self._sources[source.id] = source

    def get(self, source_id: str) -> BankSource:
        try:
            return self._sources[source_id]
        except KeyError:
            raise ConfigurationError(
                f"Unknown bank source {source_id!r}. Registered: {', '.join(self.ids())}"
            )

    def ids(self) -> List[str]:
        return sorted(self._sources)

    def active(self) -> List[BankSource]:
        return [s for s in self._sources.values() if s.is_active]
