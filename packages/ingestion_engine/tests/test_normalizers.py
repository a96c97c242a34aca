from datetime import datetime

import pytest

from packages.ingestion_engine.bank_sources import BankSourceRegistry, monzo_source, revolut_source, yonder_source
from packages.ingestion_engine.errors import ConfigurationError, ValidationError
from packages.ingestion_engine.models import TransactionType
from packages.ingestion_engine.normalizers import (
    MonzoNormalizer,
    RevolutNormalizer,
    TransactionNormalizer,
    YonderNormalizer,
    combine_date_time,
    type_from_column,
)


def monzo_row(**overrides):
    row = {
        "Transaction ID": "tx_1",
        "Date": "2025-11-15",
        "Time": "14:30:00",
        "Name": "Tesco",
        "Amount": -23.45,
        "Currency": "GBP",
        "Type": "Card payment",
        "Notes and #tags": None,
    }
    row.update(overrides)
    return row


def revolut_row(**overrides):
    row = {
        "Started Date": "2025-11-14 09:12:00",
        "Completed Date": "2025-11-15 10:00:00",
        "Description": "Uber",
        "Amount": "-12.50",
        "Currency": "USD",
        "Type": "CARD_PAYMENT",
    }
    row.update(overrides)
    return row


def yonder_row(**overrides):
    row = {
        "Date/Time of transaction": "2025-11-15T19:45:00",
        "Description": "Dishoom",
        "Amount (GBP)": "48.20",
        "Currency": "GBP",
        "Debit or Credit": "Debit",
        "Country": "GBR",
    }
    row.update(overrides)
    return row


@pytest.fixture
def normalizer():
    return TransactionNormalizer.for_sources(BankSourceRegistry.default().active())


class TestMonzoNormalizer:
    def test_native_id_row(self):
        """A GBP row with a native id is used verbatim and skips conversion."""
        tx = MonzoNormalizer(monzo_source()).normalize(monzo_row())

        assert tx.original_transaction_id == "tx_1"
        assert tx.transaction_type == TransactionType.DEBIT
        assert tx.original_amount_value == 23.45
        assert tx.settlement_amount_value == 23.45
        assert tx.exchange_rate_value is None
        assert tx.transaction_date == datetime(2025, 11, 15, 14, 30, 0)
        assert tx.bank_source_id == "MONZO"

    def test_positive_amount_is_credit(self):
        tx = MonzoNormalizer(monzo_source()).normalize(monzo_row(Amount="1,200.00"))
        assert tx.transaction_type == TransactionType.CREDIT
        assert tx.original_amount_value == 1200.0

    def test_foreign_currency_defers_settlement(self):
        tx = MonzoNormalizer(monzo_source()).normalize(monzo_row(Currency="eur"))
        assert tx.original_amount_currency == "EUR"
        assert tx.settlement_amount_value is None
        assert tx.exchange_rate_value is None

    def test_missing_time_uses_midnight(self):
        tx = MonzoNormalizer(monzo_source()).normalize(monzo_row(Time=None))
        assert tx.transaction_date == datetime(2025, 11, 15, 0, 0, 0)

    def test_notes_are_kept(self):
        tx = MonzoNormalizer(monzo_source()).normalize(monzo_row(**{"Notes and #tags": "#groceries"}))
        assert tx.notes == "#groceries"

    def test_missing_native_id_fails_on_field(self):
        with pytest.raises(ValidationError) as exc_info:
            MonzoNormalizer(monzo_source()).normalize(monzo_row(**{"Transaction ID": ""}))
        assert exc_info.value.field == "transaction_id"

    def test_bad_amount_fails_on_field(self):
        with pytest.raises(ValidationError) as exc_info:
            MonzoNormalizer(monzo_source()).normalize(monzo_row(Amount="twelve"))
        assert exc_info.value.field == "amount"


class TestRevolutNormalizer:
    def test_fingerprint_is_deterministic(self):
        """Same row twice: same original id, different surrogate ids."""
        strategy = RevolutNormalizer(revolut_source())
        first = strategy.normalize(revolut_row())
        second = strategy.normalize(dict(revolut_row()))

        assert first.original_transaction_id == second.original_transaction_id
        assert len(first.original_transaction_id) == 64
        assert first.id != second.id

    def test_prefers_completed_date(self):
        tx = RevolutNormalizer(revolut_source()).normalize(revolut_row())
        assert tx.transaction_date == datetime(2025, 11, 15, 10, 0, 0)

    def test_falls_back_to_started_date(self):
        tx = RevolutNormalizer(revolut_source()).normalize(revolut_row(**{"Completed Date": None}))
        assert tx.transaction_date == datetime(2025, 11, 14, 9, 12, 0)

    def test_fingerprint_changes_with_content(self):
        strategy = RevolutNormalizer(revolut_source())
        a = strategy.normalize(revolut_row())
        b = strategy.normalize(revolut_row(Amount="-12.51"))
        assert a.original_transaction_id != b.original_transaction_id

    def test_type_from_sign(self):
        tx = RevolutNormalizer(revolut_source()).normalize(revolut_row(Amount="40", Type="TOPUP"))
        assert tx.transaction_type == TransactionType.CREDIT


class TestYonderNormalizer:
    def test_explicit_type_column(self):
        tx = YonderNormalizer(yonder_source()).normalize(yonder_row())
        assert tx.transaction_type == TransactionType.DEBIT
        assert tx.original_amount_value == 48.20
        assert tx.settlement_amount_value == 48.20
        assert tx.country == "GBR"
        assert tx.transaction_date == datetime(2025, 11, 15, 19, 45, 0)

    def test_unrecognised_type_falls_back_to_sign(self):
        tx = YonderNormalizer(yonder_source()).normalize(
            yonder_row(**{"Debit or Credit": "Refund", "Amount (GBP)": "-5.00"})
        )
        assert tx.transaction_type == TransactionType.DEBIT

    def test_credit_type(self):
        tx = YonderNormalizer(yonder_source()).normalize(yonder_row(**{"Debit or Credit": "credit"}))
        assert tx.transaction_type == TransactionType.CREDIT

    def test_foreign_spend_is_already_settled(self):
        tx = YonderNormalizer(yonder_source()).normalize(
            yonder_row(**{"Amount (GBP)": "10.00", "Currency": "EUR", "Country": "FRA"})
        )
        assert tx.original_amount_currency == "GBP"
        assert tx.settlement_amount_value == 10.0
        assert tx.exchange_rate_value is None


class TestTransactionNormalizer:
    def test_dispatches_by_source_id(self, normalizer):
        assert normalizer.normalize("MONZO", monzo_row()).bank_source_id == "MONZO"
        assert normalizer.normalize("YONDER", yonder_row()).bank_source_id == "YONDER"

    def test_unregistered_source_lists_registered_ids(self, normalizer):
        with pytest.raises(ConfigurationError) as exc_info:
            normalizer.normalize("STARLING", monzo_row())
        message = str(exc_info.value)
        assert "STARLING" in message
        assert "MONZO, REVOLUT, YONDER" in message

    def test_for_sources_rejects_source_without_strategy(self):
        source = monzo_source()
        source.id = "CHASE"
        with pytest.raises(ConfigurationError):
            TransactionNormalizer.for_sources([source])

    def test_formula_text_is_neutralised(self, normalizer):
        tx = normalizer.normalize("MONZO", monzo_row(Name="=HYPERLINK(1)"))
        assert tx.description == "'=HYPERLINK(1)"


def test_combine_date_time_rejects_garbage():
    with pytest.raises(ValidationError):
        combine_date_time(datetime(2025, 1, 1), "noon")


def test_type_from_column_aliases():
    assert type_from_column("DR", 5.0) == TransactionType.DEBIT
    assert type_from_column("cr", -5.0) == TransactionType.CREDIT
    assert type_from_column(None, -5.0) == TransactionType.DEBIT
