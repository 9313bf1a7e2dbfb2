from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW, BrokenPublisher
from rental.cancellation import (
    approve_cancellation,
    can_cancel,
    compute_cancellation_fee,
    quote_cancellation,
    reject_cancellation,
    reopen_cancellation,
    request_cancellation,
)
from rental.errors import CancellationNotAllowed, InvalidTransition, ValidationError
from rental.models import Accessory, Cycle


def available(session, model, item_id):
    session.expire_all()
    return session.get(model, item_id).available_quantity


# -----------------------------
# Fee bands
# -----------------------------
def test_flat_fee_when_more_than_a_day_ahead():
    fee, refund = compute_cancellation_fee(Decimal("2825"), NOW + timedelta(hours=24, seconds=1), NOW)
    assert fee == Decimal("100")
    assert refund == Decimal("2725")


def test_flat_fee_at_exactly_24_hours():
    fee, _ = compute_cancellation_fee(Decimal("2825"), NOW + timedelta(hours=24), NOW)
    assert fee == Decimal("100")


def test_no_refund_inside_24_hours():
    fee, refund = compute_cancellation_fee(Decimal("2825"), NOW + timedelta(hours=23, minutes=59), NOW)
    assert fee == Decimal("2825")
    assert refund == Decimal("0")


def test_fee_never_exceeds_total():
    fee, refund = compute_cancellation_fee(Decimal("60"), NOW + timedelta(days=3), NOW)
    assert fee == Decimal("60")
    assert refund == Decimal("0")


# -----------------------------
# Eligibility
# -----------------------------
def test_same_day_pickup_cannot_be_cancelled(book, clock):
    # NOW is 12:00 local, pickup at 18:00 local the same day
    b = book(pickup_in=timedelta(hours=6))
    assert can_cancel(b, clock.now()) is False
    q = quote_cancellation(b, clock.now())
    assert q.eligible is False
    assert q.reason == "pickup is today or in the past"


def test_next_morning_pickup_can_be_cancelled_for_full_fee(book, clock):
    # 08:00 local tomorrow, 20 hours away
    b = book(pickup_in=timedelta(hours=20))
    q = quote_cancellation(b, clock.now())
    assert q.eligible is True
    assert q.cancellation_fee == b.total_amount
    assert q.refund_amount == Decimal("0")


def test_request_same_day_refused_with_detail(session, book, clock):
    b = book(pickup_in=timedelta(hours=6))
    with pytest.raises(CancellationNotAllowed) as exc:
        request_cancellation(session, b.id, "sick", clock.now())
    assert exc.value.detail["hours_until_pickup"] == 6.0
    assert exc.value.detail["cancellation_status"] == "none"
    session.refresh(b)
    assert b.cancellation_status == "none"


# -----------------------------
# Workflow
# -----------------------------
def test_request_then_approve(session, book, clock, publisher, helmet, cycle):
    b = book(accessories=[{"accessory_id": helmet.id, "quantity": 2}])
    assert available(session, Accessory, helmet.id) == 1

    b = request_cancellation(session, b.id, "  plans changed ", clock.now(), publisher)
    assert b.cancellation_status == "requested"
    assert b.cancellation_reason == "plans changed"
    assert b.cancellation_requested_at is not None

    b = approve_cancellation(session, b.id, clock.now(), publisher)
    assert b.booking_status == "cancelled"
    assert b.cancellation_status == "approved"
    assert b.cancellation_fee == Decimal("100")
    assert b.refund_amount == b.total_amount - Decimal("100")
    assert available(session, Cycle, cycle.id) == 2
    assert available(session, Accessory, helmet.id) == 3
    assert publisher.types() == ["CancellationRequested", "BookingCancelled"]
    assert publisher.events[-1][1]["cancellationFee"] == "100.00"


def test_approve_twice_releases_once(session, book, clock, cycle):
    first = book()
    book()
    assert available(session, Cycle, cycle.id) == 0

    request_cancellation(session, first.id, None, clock.now())
    approve_cancellation(session, first.id, clock.now())
    again = approve_cancellation(session, first.id, clock.now())
    assert again.booking_status == "cancelled"
    assert available(session, Cycle, cycle.id) == 1


def test_approve_without_request(session, book, clock):
    b = book()
    with pytest.raises(InvalidTransition):
        approve_cancellation(session, b.id, clock.now())
    session.refresh(b)
    assert b.booking_status == "confirmed"


def test_fee_measured_at_approval_time(session, book, clock):
    b = book(pickup_in=timedelta(days=2))
    request_cancellation(session, b.id, None, clock.now())
    clock.advance(hours=30)
    b = approve_cancellation(session, b.id, clock.now())
    assert b.cancellation_fee == b.total_amount
    assert b.refund_amount == Decimal("0")


def test_reject_requires_reason(session, book, clock):
    b = book()
    request_cancellation(session, b.id, None, clock.now())
    with pytest.raises(ValidationError):
        reject_cancellation(session, b.id, "   ", clock.now())
    session.refresh(b)
    assert b.cancellation_status == "requested"


def test_reject_keeps_booking_and_blocks_new_requests(session, book, clock, publisher):
    b = book()
    request_cancellation(session, b.id, None, clock.now())
    b = reject_cancellation(session, b.id, "festival week, no refunds", clock.now(), publisher)
    assert b.booking_status == "confirmed"
    assert b.cancellation_status == "rejected"
    assert b.rejection_reason == "festival week, no refunds"
    assert publisher.types()[-1] == "CancellationRejected"

    with pytest.raises(InvalidTransition):
        request_cancellation(session, b.id, "please", clock.now())


def test_reopen_allows_a_new_request(session, book, clock):
    b = book()
    request_cancellation(session, b.id, None, clock.now())
    reject_cancellation(session, b.id, "no", clock.now())
    b = reopen_cancellation(session, b.id, clock.now())
    assert b.cancellation_status == "none"
    assert b.rejection_reason is None
    b = request_cancellation(session, b.id, "second try", clock.now())
    assert b.cancellation_status == "requested"


def test_active_booking_can_be_cancelled(session, book, clock, activate, cycle):
    b = book(pickup_in=timedelta(days=2))
    activate(b)
    request_cancellation(session, b.id, None, clock.now())
    b = approve_cancellation(session, b.id, clock.now())
    assert b.booking_status == "cancelled"
    assert available(session, Cycle, cycle.id) == 2


def test_broker_failure_does_not_undo_approval(session, book, clock):
    b = book()
    request_cancellation(session, b.id, None, clock.now(), BrokenPublisher())
    b = approve_cancellation(session, b.id, clock.now(), BrokenPublisher())
    assert b.booking_status == "cancelled"
