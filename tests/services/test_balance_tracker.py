"""
BalanceTracker: the only mutator of customer balances.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from revenue_kernel.domain.clock import DeterministicClock
from revenue_kernel.exceptions import ConsistencyViolation, CustomerNotFoundError
from revenue_kernel.models.customer_balance import BalanceAdjustment
from revenue_kernel.services.balance_tracker import BalanceTracker
from revenue_kernel.utils.idempotency import balance_event_id


@pytest.fixture
def tracker(session):
    return BalanceTracker(session, DeterministicClock())


def test_open_account_is_idempotent(tracker):
    first = tracker.open_account("C-1")
    second = tracker.open_account("C-1")
    assert first.id == second.id
    assert tracker.get_balance("C-1") == Decimal("0")


def test_unknown_customer(tracker):
    assert tracker.get_account("C-404") is None
    with pytest.raises(CustomerNotFoundError):
        tracker.get_balance("C-404")
    with pytest.raises(CustomerNotFoundError):
        tracker.lock_account("C-404")


def test_adjust_balance_records_before_and_after(tracker, session):
    tracker.open_account("C-1")
    adjustment = tracker.adjust_balance(
        "C-1", Decimal("100.00"), event_id=balance_event_id("sale", uuid4())
    )
    assert adjustment.event_type == "sale"
    assert adjustment.balance_before == Decimal("0")
    assert adjustment.balance_after == Decimal("100.00")
    assert tracker.get_balance("C-1") == Decimal("100.00")


def test_same_event_applies_once(tracker, session):
    tracker.open_account("C-1")
    event_id = balance_event_id("payment", uuid4())
    tracker.adjust_balance("C-1", Decimal("-30.00"), event_id=event_id, advance_delta=Decimal("30.00"))
    again = tracker.adjust_balance(
        "C-1", Decimal("-30.00"), event_id=event_id, advance_delta=Decimal("30.00")
    )

    assert again.balance_after == Decimal("-30.00")
    info = tracker.get_balance_info("C-1")
    assert info.amount_due == Decimal("-30.00")
    assert info.advance_credit == Decimal("30.00")
    assert info.is_in_credit
    assert session.query(BalanceAdjustment).count() == 1


def test_advance_credit_cannot_go_negative(tracker):
    tracker.open_account("C-1")
    with pytest.raises(ConsistencyViolation):
        tracker.adjust_balance(
            "C-1",
            Decimal("0"),
            event_id=balance_event_id("payment", uuid4()),
            advance_delta=Decimal("-1.00"),
        )


def test_verify_customer_detects_drift(tracker):
    tracker.open_account("C-1")
    # A sale adjustment with no invoice behind it
    tracker.adjust_balance("C-1", Decimal("10.00"), event_id=balance_event_id("sale", uuid4()))
    assert tracker.expected_balance("C-1") == Decimal("0")
    with pytest.raises(ConsistencyViolation) as exc_info:
        tracker.verify_customer("C-1")
    assert exc_info.value.code == "CONSISTENCY_VIOLATION"


def test_adjustments_are_numbered_gaplessly(tracker, session):
    tracker.open_account("C-1")
    for amount in ("10.00", "20.00", "-5.00"):
        tracker.adjust_balance(
            "C-1", Decimal(amount), event_id=balance_event_id("sale", uuid4())
        )
    sequences = [
        row.sequence
        for row in session.query(BalanceAdjustment).order_by(BalanceAdjustment.sequence)
    ]
    assert sequences == [1, 2, 3]
    assert tracker.get_balance_info("C-1").version == 4


def test_zero_delta_still_advances_the_sequence(tracker, session):
    tracker.open_account("C-1")
    # A fully paid sale moves nothing but is still recorded
    tracker.adjust_balance("C-1", Decimal("0.00"), event_id=balance_event_id("sale", uuid4()))
    tracker.adjust_balance("C-1", Decimal("0.00"), event_id=balance_event_id("sale", uuid4()))
    later = tracker.adjust_balance(
        "C-1", Decimal("50.00"), event_id=balance_event_id("sale", uuid4())
    )

    assert later.sequence == 3
    assert later.balance_before == Decimal("0.00")
    assert tracker.get_balance("C-1") == Decimal("50.00")
    assert session.query(BalanceAdjustment).count() == 3
