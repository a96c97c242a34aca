"""Processing-status lifecycle."""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from .errors import InvalidStatusTransitionError, sanitize_error_message
from .models import ProcessingStatus, Transaction, utcnow

_S = ProcessingStatus

# ERROR is reachable from anywhere; leaving ERROR only goes back to NORMALISED.
ALLOWED_TRANSITIONS: Dict[ProcessingStatus, FrozenSet[ProcessingStatus]] = {
    _S.UNPROCESSED: frozenset({_S.NORMALISED, _S.ERROR}),
    _S.NORMALISED: frozenset({_S.CATEGORISED, _S.ERROR}),
    _S.CATEGORISED: frozenset({_S.CATEGORISED, _S.ERROR}),
    _S.ERROR: frozenset({_S.NORMALISED, _S.ERROR}),
}

_NEXT_STATUS = {
    _S.UNPROCESSED: _S.NORMALISED,
    _S.NORMALISED: _S.CATEGORISED,
}


@dataclass
class StatusTransition:
    previous_status: ProcessingStatus
    new_status: ProcessingStatus


class StatusManager:
    """Applies validated status changes and maintains lifecycle timestamps."""

    @staticmethod
    def can_transition(from_status: ProcessingStatus, to_status: ProcessingStatus) -> bool:
        return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())

    @staticmethod
    def next_status(current: ProcessingStatus) -> Optional[ProcessingStatus]:
        """Forward step, or None for CATEGORISED and ERROR (retry is explicit)."""
        return _NEXT_STATUS.get(current)

    @classmethod
    def mark_normalised(cls, transaction: Transaction) -> StatusTransition:
        result = cls._transition(transaction, _S.NORMALISED)
        transaction.timestamp_normalised = transaction.timestamp_last_modified
        return result

    @classmethod
    def mark_categorised(cls, transaction: Transaction) -> StatusTransition:
        result = cls._transition(transaction, _S.CATEGORISED)
        transaction.timestamp_categorised = transaction.timestamp_last_modified
        return result

    @classmethod
    def mark_error(cls, transaction: Transaction, message: str) -> StatusTransition:
        result = cls._transition(transaction, _S.ERROR)
        transaction.error_message = sanitize_error_message(message)
        return result

    @classmethod
    def retry_from_error(cls, transaction: Transaction) -> StatusTransition:
        if transaction.processing_status != _S.ERROR:
            raise InvalidStatusTransitionError(transaction.processing_status, _S.NORMALISED)
        result = cls.mark_normalised(transaction)
        transaction.error_message = None
        return result

    @classmethod
    def _transition(cls, transaction: Transaction, to_status: ProcessingStatus) -> StatusTransition:
        previous = transaction.processing_status
        if not cls.can_transition(previous, to_status):
            raise InvalidStatusTransitionError(previous, to_status)
        transaction.processing_status = to_status
        transaction.timestamp_last_modified = utcnow()
        return StatusTransition(previous_status=previous, new_status=to_status)
