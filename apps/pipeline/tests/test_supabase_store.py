"""Tests for the Supabase store; the client's query builder is mocked."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from apps.pipeline.adapters.supabase_store import (
    CATEGORY_COLUMNS,
    SupabaseTransactionStore,
    get_supabase,
)
from packages.ingestion_engine.errors import ConfigurationError
from packages.ingestion_engine.models import ProcessingStatus

BUILDER_METHODS = ("select", "eq", "neq", "ilike", "gte", "in_", "order", "limit", "insert", "update")


def mock_client(rows=()):
    query = MagicMock()
    for name in BUILDER_METHODS:
        getattr(query, name).return_value = query
    query.execute.return_value = SimpleNamespace(data=list(rows))
    client = MagicMock()
    client.table.return_value = query
    return client, query


class TestReads:
    def test_get_by_status_round_trips_records(self, make_transaction):
        tx = make_transaction(country="GBR")
        client, query = mock_client([tx.to_dict()])

        result = SupabaseTransactionStore(client).get_by_status(ProcessingStatus.NORMALISED)

        client.table.assert_called_with("transactions")
        query.eq.assert_called_with("processing_status", "NORMALISED")
        assert result[0].id == tx.id
        assert result[0].transaction_date == tx.transaction_date
        assert result[0].country == "GBR"

    def test_history_keeps_categorised_rows_only(self, make_transaction):
        categorised = make_transaction(
            category_ai_id="cat-001", category_ai_name="Groceries",
            processing_status=ProcessingStatus.CATEGORISED,
        )
        client, query = mock_client([categorised.to_dict(), make_transaction().to_dict()])

        history = SupabaseTransactionStore(client).get_history(90)

        assert [t.id for t in history] == [categorised.id]
        query.in_.assert_called_with("processing_status", ["NORMALISED", "CATEGORISED"])

    def test_get_by_id(self, make_transaction):
        tx = make_transaction()
        client, query = mock_client([tx.to_dict()])

        assert SupabaseTransactionStore(client).get_by_id(tx.id).id == tx.id
        query.eq.assert_called_with("id", tx.id)

    def test_get_by_id_missing(self):
        client, _ = mock_client()
        assert SupabaseTransactionStore(client).get_by_id("nope") is None

    def test_exists_by_original_id_ignores_error_rows(self):
        client, query = mock_client([{"id": "abc"}])

        assert SupabaseTransactionStore(client).exists_by_original_id("MONZO", "tx_1")
        query.neq.assert_called_with("processing_status", "ERROR")

    def test_categories_accept_comma_separated_examples(self):
        client, _ = mock_client([{"id": 7, "name": "Pets", "examples": "Vet, Pets at Home", "is_active": True}])

        categories = SupabaseTransactionStore(client, categories_table="cats").get_categories()

        client.table.assert_called_with("cats")
        assert categories[0].id == "7"
        assert categories[0].examples == ["Vet", "Pets at Home"]


class TestWrites:
    def test_append_inserts_all_rows(self, make_transaction):
        client, query = mock_client()
        SupabaseTransactionStore(client).append([make_transaction(), make_transaction()])

        inserted = query.insert.call_args.args[0]
        assert len(inserted) == 2

    def test_append_nothing_is_a_no_op(self):
        client, query = mock_client()
        SupabaseTransactionStore(client).append([])
        query.insert.assert_not_called()

    def test_update_category_writes_category_columns_only(self, make_transaction):
        tx = make_transaction(category_ai_id="cat-001", category_ai_name="Groceries")
        client, query = mock_client()

        SupabaseTransactionStore(client).update_category(tx)

        written = query.update.call_args.args[0]
        assert set(written) == set(CATEGORY_COLUMNS)
        assert "description" not in written
        query.eq.assert_called_with("id", tx.id)


def test_get_supabase_requires_credentials():
    with pytest.raises(ConfigurationError):
        get_supabase("", "key")


@patch("apps.pipeline.adapters.supabase_store.create_client")
def test_get_supabase_creates_client(mock_create_client):
    get_supabase("https://x.supabase.co", "service-key")
    mock_create_client.assert_called_once_with("https://x.supabase.co", "service-key")
