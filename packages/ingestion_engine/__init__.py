"""
Ingestion Engine

Bank export normalization, deduplication and settlement-currency conversion.
"""

__version__ = "0.1.0"

from .bank_sources import BankSource, BankSourceRegistry
from .currency import CurrencyConverter
from .duplicate_detector import DuplicateDetector
from .models import ProcessingStatus, Transaction, TransactionType
from .normalizers import TransactionNormalizer
from .processing_run import ProcessingRun, RunStatus, RunType
from .status import StatusManager

__all__ = [
    "BankSource",
    "BankSourceRegistry",
    "CurrencyConverter",
    "DuplicateDetector",
    "ProcessingRun",
    "ProcessingStatus",
    "RunStatus",
    "RunType",
    "StatusManager",
    "Transaction",
    "TransactionNormalizer",
    "TransactionType",
]
