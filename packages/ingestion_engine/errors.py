"""Pipeline error hierarchy.

Three failure classes flow through ingestion and categorization:

    ValidationError       one record is malformed; the record is marked ERROR
                          and the rest of the batch carries on.
    RetryExhaustedError   a transient external failure outlived the retry
                          policy; attributed to the items awaiting that call.
    ConfigurationError    the pipeline itself is misconfigured; raised
                          immediately and never retried.

Error text that originates outside the process (HTTP bodies, SDK messages)
must pass through ``sanitize_error_message`` before it is stored anywhere.
"""

import re
from typing import Any, Optional


class PipelineError(Exception):
    """Base pipeline error."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ValidationError(PipelineError):
    """A single field of a single record is missing, malformed or out of range."""

    def __init__(self, detail: str, field: Optional[str] = None, value: Any = None):
        super().__init__(detail)
        self.field = field
        self.value = value


class ConfigurationError(PipelineError):
    """Invalid configuration or caller contract. Never retried."""


class TransientError(PipelineError):
    """Network-class failure that may succeed on a later attempt."""

    def __init__(self, detail: str, status_code: Optional[int] = None):
        super().__init__(detail)
        self.status_code = status_code


class RetryExhaustedError(PipelineError):
    """All retry attempts failed."""

    def __init__(self, detail: str, attempts: int, last_error: BaseException):
        super().__init__(detail)
        self.attempts = attempts
        self.last_error = last_error


class ConversionError(PipelineError):
    """No usable exchange rate for one transaction's currency."""

    def __init__(self, transaction_id: str, currency: str, cause: Optional[BaseException] = None):
        reason = sanitize_error_message(str(cause)) if cause else "rate unavailable"
        super().__init__(
            f"Cannot convert transaction {transaction_id} from {currency}: {reason}"
        )
        self.transaction_id = transaction_id
        self.currency = currency
        self.cause = cause


class InvalidStatusTransitionError(PipelineError):
    """Illegal processing-status change."""

    def __init__(self, from_status: Any, to_status: Any):
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(f"Invalid status transition: {from_value} -> {to_value}")
        self.from_status = from_status
        self.to_status = to_status


class CategorizationError(PipelineError):
    """Categorizer called with unusable input."""


# Ordered: URL credentials first so the user:pass pair is not half-matched
# by the key=value rule below.
_REDACTIONS = [
    (re.compile(r"(https?://)[^/\s:@]+:[^/\s@]+@", re.IGNORECASE), r"\1***:***@"),
    (re.compile(r"\bBearer\s+[A-Za-z0-9._\-]+", re.IGNORECASE), "Bearer ***"),
    (re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}"), "sk-***"),
    (
        re.compile(
            r"\b(api[_-]?key|access[_-]?token|token|secret|password|auth)(\s*[:=]\s*)[\"']?[^\s\"',&]+[\"']?",
            re.IGNORECASE,
        ),
        r"\1\2***",
    ),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "***@***"),
]


def sanitize_error_message(message: Any) -> str:
    """Redact credential-shaped substrings from external error text."""
    sanitized = str(message) if message is not None else ""
    for pattern, replacement in _REDACTIONS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized
