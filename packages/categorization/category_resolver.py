"""Resolution of typed category names and application of manual overrides."""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import structlog

from packages.ingestion_engine.models import Transaction, utcnow
from packages.ingestion_engine.ports import CategoryInfo

logger = structlog.get_logger()


@dataclass
class CategoryResolution:
    found: bool
    category: Optional[CategoryInfo] = None
    warning: Optional[str] = None


class CategoryResolver:
    def resolve(self, name: str, categories: Iterable[CategoryInfo]) -> CategoryResolution:
        """Case-insensitive match against active categories.

        Unknown names are still accepted as custom categories, without an id.
        """
        if not name or not name.strip():
            return CategoryResolution(found=False, warning="Category name is empty")

        wanted = name.strip().lower()
        for category in categories:
            if category.is_active and category.name.lower() == wanted:
                return CategoryResolution(found=True, category=category)

        warning = (
            f'Custom category name "{name.strip()}" is not a known category; '
            "it will be stored without an id"
        )
        logger.warning("custom_category_name", category_name=name.strip())
        return CategoryResolution(found=False, warning=warning)

    def resolve_many(
        self, names: Iterable[str], categories: Iterable[CategoryInfo]
    ) -> Dict[str, CategoryResolution]:
        categories = list(categories)
        return {name: self.resolve(name, categories) for name in names}

    def suggestions(
        self, name: str, categories: Iterable[CategoryInfo], max_suggestions: int = 3
    ) -> List[str]:
        if not name or not name.strip():
            return []
        wanted = name.strip().lower()
        scored = []
        for category in categories:
            if not category.is_active:
                continue
            candidate = category.name.lower()
            if candidate == wanted:
                score = 100
            elif candidate.startswith(wanted):
                score = 80
            elif wanted in candidate:
                score = 60
            elif candidate in wanted:
                score = 40
            else:
                continue
            scored.append((score, category.name))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [category_name for _, category_name in scored[:max_suggestions]]


class ManualOverrideHandler:
    """Applies or clears a human category choice on a transaction."""

    def __init__(self, resolver: Optional[CategoryResolver] = None):
        self.resolver = resolver or CategoryResolver()

    def apply(
        self, transaction: Transaction, category_name: str, categories: Iterable[CategoryInfo]
    ) -> CategoryResolution:
        resolution = self.resolver.resolve(category_name, categories)
        if resolution.found:
            transaction.category_manual_id = resolution.category.id
            transaction.category_manual_name = resolution.category.name
        elif category_name and category_name.strip():
            transaction.category_manual_id = None
            transaction.category_manual_name = category_name.strip()
        else:
            return resolution
        transaction.timestamp_last_modified = utcnow()
        logger.info(
            "manual_override_applied",
            transaction_id=transaction.id,
            category_name=transaction.category_manual_name,
            custom=not resolution.found,
        )
        return resolution

    def clear(self, transaction: Transaction) -> None:
        transaction.category_manual_id = None
        transaction.category_manual_name = None
        transaction.timestamp_last_modified = utcnow()
