"""Pipeline command-line entry point.

    python -m apps.pipeline.main normalize MONZO exports/monzo.csv
    python -m apps.pipeline.main categorize
    python -m apps.pipeline.main recategorize
    python -m apps.pipeline.main retry-errors
    python -m apps.pipeline.main override TRANSACTION_ID "Eating Out"
    python -m apps.pipeline.main override TRANSACTION_ID --clear
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

import structlog

from packages.categorization.categorizer import AICategorizer, CategorizerConfig
from packages.categorization.confidence import ConfidenceCalculator
from packages.categorization.historical import HistoricalPatternLearner, LearnerConfig
from packages.ingestion_engine.bank_sources import BankSourceRegistry
from packages.ingestion_engine.errors import PipelineError
from packages.ingestion_engine.import_transactions import read_export
from packages.ingestion_engine.processing_run import RunStatus

from apps.pipeline.adapters.exchange_rates import HttpExchangeRateProvider
from apps.pipeline.adapters.openai_categorizer import OpenAICategorizer
from apps.pipeline.adapters.supabase_store import SupabaseTransactionStore, get_supabase
from apps.pipeline.categorization import CategorizationService, ManualOverrideService
from apps.pipeline.core.config import Settings, get_settings
from apps.pipeline.core.logging import setup_logging
from apps.pipeline.core.retry import RetryPolicy, retrying
from apps.pipeline.normalization import NormalizationService

logger = structlog.get_logger()


def build_registry(settings: Settings) -> BankSourceRegistry:
    """Default sources, restricted to ENABLED_SOURCES when it is set."""
    registry = BankSourceRegistry.default()
    enabled = settings.enabled_sources
    if enabled is None:
        return registry
    return BankSourceRegistry([s for s in registry.active() if s.id in enabled])


def build_store(settings: Settings) -> SupabaseTransactionStore:
    settings.require("SUPABASE_URL", "SUPABASE_SERVICE_KEY")
    return SupabaseTransactionStore(
        get_supabase(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY),
        transactions_table=settings.SUPABASE_TRANSACTIONS_TABLE,
        categories_table=settings.SUPABASE_CATEGORIES_TABLE,
    )


def build_categorizer(settings: Settings) -> AICategorizer:
    settings.require("OPENAI_API_KEY")
    # Validates confidence tunables before any call is made.
    calculator = ConfidenceCalculator(settings.confidence_config())
    return AICategorizer(
        OpenAICategorizer(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            temperature=settings.OPENAI_TEMPERATURE,
            max_tokens=settings.OPENAI_MAX_TOKENS,
        ),
        learner=HistoricalPatternLearner(LearnerConfig(lookback_days=settings.HISTORICAL_LOOKBACK_DAYS)),
        calculator=calculator,
        config=CategorizerConfig(
            batch_size=settings.CATEGORIZATION_BATCH_SIZE,
            historical_context_size=settings.HISTORICAL_CONTEXT_SIZE,
            fallback_category_name=settings.FALLBACK_CATEGORY_NAME,
        ),
        call_wrapper=retrying(RetryPolicy.from_settings(settings), "ai_categorization"),
    )


async def run_normalize(settings: Settings, source_id: str, path: str):
    rows = read_export(path)
    async with HttpExchangeRateProvider(
        settings.EXCHANGE_RATE_PROVIDER_URL, timeout=settings.EXCHANGE_RATE_TIMEOUT
    ) as provider:
        service = NormalizationService(
            build_store(settings),
            provider,
            registry=build_registry(settings),
            settlement_currency=settings.SETTLEMENT_CURRENCY,
            retry_policy=RetryPolicy.from_settings(settings),
        )
        return await service.process_source(source_id.upper(), rows)


async def run_retry_errors(settings: Settings):
    async with HttpExchangeRateProvider(
        settings.EXCHANGE_RATE_PROVIDER_URL, timeout=settings.EXCHANGE_RATE_TIMEOUT
    ) as provider:
        service = NormalizationService(
            build_store(settings),
            provider,
            registry=build_registry(settings),
            settlement_currency=settings.SETTLEMENT_CURRENCY,
            retry_policy=RetryPolicy.from_settings(settings),
        )
        return await service.retry_errors()


async def run_categorize(settings: Settings, recategorize: bool = False):
    service = CategorizationService(
        build_store(settings),
        build_categorizer(settings),
        lookback_days=settings.HISTORICAL_LOOKBACK_DAYS,
    )
    if recategorize:
        return await service.recategorize_all()
    return await service.categorize()


def run_override(settings: Settings, transaction_id: str, category_name: Optional[str], clear: bool) -> dict:
    service = ManualOverrideService(build_store(settings))
    if clear:
        transaction = service.clear(transaction_id)
        return {"transaction_id": transaction.id, "category_manual_name": None}
    transaction, resolution = service.apply(transaction_id, category_name or "")
    return {
        "transaction_id": transaction.id,
        "category_manual_id": transaction.category_manual_id,
        "category_manual_name": transaction.category_manual_name,
        "warning": resolution.warning,
    }


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Transaction normalization and categorization pipeline")
    subparsers = parser.add_subparsers(dest="command")

    norm_parser = subparsers.add_parser("normalize", help="Import one bank export")
    norm_parser.add_argument("source", type=str, help="Bank source id, e.g. MONZO")
    norm_parser.add_argument("file", type=str, help="Path to CSV/TSV/Excel export")

    subparsers.add_parser("categorize", help="Categorize normalised transactions")
    subparsers.add_parser("recategorize", help="Re-categorize everything without a manual category")
    subparsers.add_parser("retry-errors", help="Retry conversion of ERROR transactions")

    override_parser = subparsers.add_parser("override", help="Set or clear a manual category")
    override_parser.add_argument("transaction_id", type=str)
    override_parser.add_argument("category", type=str, nargs="?", help="Category name, matched case-insensitively")
    override_parser.add_argument("--clear", action="store_true", help="Remove the manual category")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, json_output=settings.json_logs)

    if args.command == "override":
        try:
            result = run_override(settings, args.transaction_id, args.category, args.clear)
        except PipelineError as exc:
            logger.error("pipeline_command_failed", command=args.command, error=exc.detail)
            return 1
        print(json.dumps(result, indent=2))
        return 0

    try:
        if args.command == "normalize":
            run = asyncio.run(run_normalize(settings, args.source, args.file))
        elif args.command == "categorize":
            run = asyncio.run(run_categorize(settings))
        elif args.command == "recategorize":
            run = asyncio.run(run_categorize(settings, recategorize=True))
        else:
            run = asyncio.run(run_retry_errors(settings))
    except PipelineError as exc:
        logger.error("pipeline_command_failed", command=args.command, error=exc.detail)
        return 1

    print(json.dumps(run.summary(), indent=2))
    return 0 if run.status != RunStatus.FAILED else 1


if __name__ == "__main__":
    sys.exit(main())
