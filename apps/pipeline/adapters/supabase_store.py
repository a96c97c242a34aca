"""Supabase-backed transaction store.

Uses the service-role key: the pipeline runs as a background job, not on
behalf of a user, so Row-Level Security is bypassed.
"""

from datetime import timedelta
from typing import List, Optional, Sequence

import structlog
from supabase import Client, create_client

from packages.ingestion_engine.errors import ConfigurationError
from packages.ingestion_engine.models import ProcessingStatus, Transaction, utcnow
from packages.ingestion_engine.ports import CategoryInfo, TransactionStore

logger = structlog.get_logger()

CATEGORY_COLUMNS = (
    "category_ai_id",
    "category_ai_name",
    "category_confidence_score",
    "category_manual_id",
    "category_manual_name",
    "processing_status",
    "error_message",
    "timestamp_last_modified",
    "timestamp_categorised",
)


def get_supabase(url: str, key: str) -> Client:
    if not url or not key:
        raise ConfigurationError("Supabase environment variables are not configured")
    return create_client(url, key)


class SupabaseTransactionStore(TransactionStore):
    def __init__(
        self,
        client: Client,
        transactions_table: str = "transactions",
        categories_table: str = "categories",
    ):
        self.client = client
        self.transactions_table = transactions_table
        self.categories_table = categories_table

    def _table(self):
        return self.client.table(self.transactions_table)

    def get_by_status(self, status: ProcessingStatus) -> List[Transaction]:
        response = self._table().select("*").eq("processing_status", status.value).execute()
        return [Transaction.from_dict(row) for row in response.data or []]

    def get_all(self) -> List[Transaction]:
        response = self._table().select("*").execute()
        return [Transaction.from_dict(row) for row in response.data or []]

    def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        response = self._table().select("*").eq("id", transaction_id).limit(1).execute()
        rows = response.data or []
        return Transaction.from_dict(rows[0]) if rows else None

    def get_by_merchant(self, description: str, limit: int = 10, days_back: int = 90) -> List[Transaction]:
        cutoff = (utcnow() - timedelta(days=days_back)).isoformat()
        response = (
            self._table()
            .select("*")
            .ilike("description", f"%{description.strip()}%")
            .gte("transaction_date", cutoff)
            .order("transaction_date", desc=True)
            .limit(limit)
            .execute()
        )
        return [Transaction.from_dict(row) for row in response.data or []]

    def get_history(self, days_back: int) -> List[Transaction]:
        cutoff = (utcnow() - timedelta(days=days_back)).isoformat()
        response = (
            self._table()
            .select("*")
            .gte("transaction_date", cutoff)
            .in_("processing_status", [ProcessingStatus.NORMALISED.value, ProcessingStatus.CATEGORISED.value])
            .execute()
        )
        rows = [Transaction.from_dict(row) for row in response.data or []]
        return [t for t in rows if t.is_categorized()]

    def exists_by_original_id(self, bank_source_id: str, original_transaction_id: str) -> bool:
        response = (
            self._table()
            .select("id")
            .eq("bank_source_id", bank_source_id)
            .eq("original_transaction_id", original_transaction_id)
            .neq("processing_status", ProcessingStatus.ERROR.value)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    def append(self, transactions: Sequence[Transaction]) -> None:
        if not transactions:
            return
        self._table().insert([t.to_dict() for t in transactions]).execute()
        logger.info("transactions_appended", count=len(transactions))

    def update(self, transaction: Transaction) -> None:
        record = transaction.to_dict()
        record.pop("id")
        self._table().update(record).eq("id", transaction.id).execute()

    def update_category(self, transaction: Transaction) -> None:
        self._partial_update(transaction, CATEGORY_COLUMNS)

    def _partial_update(self, transaction: Transaction, columns) -> None:
        record = transaction.to_dict()
        self._table().update({c: record[c] for c in columns}).eq("id", transaction.id).execute()

    def get_categories(self) -> List[CategoryInfo]:
        response = self.client.table(self.categories_table).select("*").execute()
        categories = []
        for row in response.data or []:
            examples = row.get("examples") or []
            if isinstance(examples, str):
                examples = [e.strip() for e in examples.split(",") if e.strip()]
            categories.append(
                CategoryInfo(
                    id=str(row["id"]),
                    name=row["name"],
                    description=row.get("description") or "",
                    examples=examples,
                    is_active=row.get("is_active", True),
                )
            )
        return categories
