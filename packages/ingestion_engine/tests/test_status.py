import pytest

from packages.ingestion_engine.errors import InvalidStatusTransitionError
from packages.ingestion_engine.models import ProcessingStatus as S
from packages.ingestion_engine.status import StatusManager


@pytest.mark.parametrize(
    "from_status, to_status, allowed",
    [
        (S.UNPROCESSED, S.NORMALISED, True),
        (S.UNPROCESSED, S.CATEGORISED, False),
        (S.NORMALISED, S.CATEGORISED, True),
        (S.CATEGORISED, S.CATEGORISED, True),
        (S.CATEGORISED, S.NORMALISED, False),
        (S.ERROR, S.NORMALISED, True),
        (S.ERROR, S.CATEGORISED, False),
        (S.NORMALISED, S.ERROR, True),
        (S.CATEGORISED, S.ERROR, True),
    ],
)
def test_can_transition(from_status, to_status, allowed):
    assert StatusManager.can_transition(from_status, to_status) is allowed


def test_next_status():
    assert StatusManager.next_status(S.UNPROCESSED) == S.NORMALISED
    assert StatusManager.next_status(S.NORMALISED) == S.CATEGORISED
    assert StatusManager.next_status(S.CATEGORISED) is None
    assert StatusManager.next_status(S.ERROR) is None


def test_mark_normalised_sets_timestamp(make_transaction):
    tx = make_transaction(processing_status=S.UNPROCESSED)
    result = StatusManager.mark_normalised(tx)

    assert result.previous_status == S.UNPROCESSED
    assert tx.processing_status == S.NORMALISED
    assert tx.timestamp_normalised is not None


def test_backward_transition_raises(make_transaction):
    tx = make_transaction(processing_status=S.CATEGORISED)
    with pytest.raises(InvalidStatusTransitionError, match="CATEGORISED -> NORMALISED"):
        StatusManager.mark_normalised(tx)


def test_mark_error_redacts_message(make_transaction):
    tx = make_transaction()
    StatusManager.mark_error(tx, "provider said api_key=abc123 is invalid")

    assert tx.processing_status == S.ERROR
    assert "abc123" not in tx.error_message


def test_retry_from_error(make_transaction):
    tx = make_transaction()
    StatusManager.mark_error(tx, "boom")
    StatusManager.retry_from_error(tx)

    assert tx.processing_status == S.NORMALISED
    assert tx.error_message is None


def test_retry_requires_error_state(make_transaction):
    with pytest.raises(InvalidStatusTransitionError):
        StatusManager.retry_from_error(make_transaction())
