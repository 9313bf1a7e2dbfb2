# ============================================================
# state_machine.py — Booking State Machine
# ------------------------------------------------------------
# Single owner of the three status axes of a Booking:
#   booking_status      : confirmed -> active -> completed
#                         confirmed|active -> cancelled
#   payment_status      : pending -> completed | failed
#   cancellation_status : none -> requested -> approved | rejected
#
# transition() checks the guard of the event first and only
# then mutates the booking, so a refused event leaves the
# record untouched. Cancellation and settlement events are fed
# by their own modules; transition_booking() only accepts the
# operator / payment events.
# ============================================================
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional

from sqlmodel import Session

from .errors import InvalidTransition, ReturnNotRecorded, ValidationError
from .models import Booking, BookingStatus, CancellationStatus, PaymentStatus
from .publisher import booking_payload, notify
from .repository import BookingRepository, unit_of_work

log = logging.getLogger(__name__)

B = BookingStatus
P = PaymentStatus
C = CancellationStatus


class BookingEvent(str, Enum):
    ACTIVATE = "activate"
    PAYMENT_CAPTURED = "payment_captured"
    PAYMENT_FAILED = "payment_failed"
    REQUEST_CANCELLATION = "request_cancellation"
    APPROVE_CANCELLATION = "approve_cancellation"
    REJECT_CANCELLATION = "reject_cancellation"
    REOPEN_CANCELLATION = "reopen_cancellation"
    RECORD_RETURN = "record_return"
    RETURN_DEPOSIT = "return_deposit"


# events a caller may send straight to transition_booking()
OPERATOR_EVENTS = frozenset({
    BookingEvent.ACTIVATE,
    BookingEvent.PAYMENT_CAPTURED,
    BookingEvent.PAYMENT_FAILED,
})


def _values(*members) -> FrozenSet[str]:
    return frozenset(m.value for m in members)


@dataclass(frozen=True)
class Rule:
    booking: FrozenSet[str]
    payment: Optional[FrozenSet[str]] = None
    cancellation: Optional[FrozenSet[str]] = None


OPEN = _values(B.CONFIRMED, B.ACTIVE)
NOT_CANCELLING = _values(C.NONE, C.REJECTED)

RULES: Dict[BookingEvent, Rule] = {
    BookingEvent.ACTIVATE: Rule(_values(B.CONFIRMED), _values(P.COMPLETED), NOT_CANCELLING),
    BookingEvent.PAYMENT_CAPTURED: Rule(OPEN, _values(P.PENDING, P.FAILED)),
    BookingEvent.PAYMENT_FAILED: Rule(OPEN, _values(P.PENDING)),
    BookingEvent.REQUEST_CANCELLATION: Rule(OPEN, cancellation=_values(C.NONE)),
    BookingEvent.APPROVE_CANCELLATION: Rule(OPEN, cancellation=_values(C.REQUESTED)),
    BookingEvent.REJECT_CANCELLATION: Rule(OPEN, cancellation=_values(C.REQUESTED)),
    BookingEvent.REOPEN_CANCELLATION: Rule(OPEN, cancellation=_values(C.REJECTED)),
    BookingEvent.RECORD_RETURN: Rule(_values(B.ACTIVE), cancellation=NOT_CANCELLING),
    BookingEvent.RETURN_DEPOSIT: Rule(_values(B.ACTIVE, B.COMPLETED)),
}


def as_event(event) -> BookingEvent:
    try:
        return BookingEvent(event)
    except ValueError:
        raise ValidationError(
            f"unknown booking event {event!r}",
            {"event": str(event), "allowed": [e.value for e in BookingEvent]},
        )


def state_of(b: Booking) -> dict:
    return {
        "booking_status": b.booking_status,
        "payment_status": b.payment_status,
        "cancellation_status": b.cancellation_status,
    }


def _refuse(b: Booking, event: BookingEvent, rule: Rule, reason: str):
    detail = {"event": event.value, "reason": reason, **state_of(b)}
    detail["allowed_booking_status"] = sorted(rule.booking)
    if rule.payment is not None:
        detail["allowed_payment_status"] = sorted(rule.payment)
    if rule.cancellation is not None:
        detail["allowed_cancellation_status"] = sorted(rule.cancellation)
    raise InvalidTransition(f"cannot {event.value} booking {b.booking_code}: {reason}", detail)


def check(b: Booking, event: BookingEvent):
    rule = RULES[event]
    # settlement ordering comes before any status rule
    if event is BookingEvent.RETURN_DEPOSIT and b.cycle_returned_at is None:
        raise ReturnNotRecorded(
            f"cycle of booking {b.booking_code} has not been returned",
            {"booking_id": b.id, **state_of(b)},
        )
    if b.booking_status not in rule.booking:
        _refuse(b, event, rule, f"booking is {b.booking_status}")
    if rule.payment is not None and b.payment_status not in rule.payment:
        _refuse(b, event, rule, f"payment is {b.payment_status}")
    if rule.cancellation is not None and b.cancellation_status not in rule.cancellation:
        _refuse(b, event, rule, f"cancellation is {b.cancellation_status}")
    if event is BookingEvent.RECORD_RETURN and b.cycle_returned_at is not None:
        _refuse(b, event, rule, "cycle already returned")
    if event is BookingEvent.RETURN_DEPOSIT and b.deposit_returned_at is not None:
        _refuse(b, event, rule, "deposit already returned")


# ------------------------------------------------------------
# Effects
# ------------------------------------------------------------
def _activate(b: Booking, now: datetime, data: dict):
    b.booking_status = B.ACTIVE.value
    b.picked_up_at = now


def _payment_captured(b: Booking, now: datetime, data: dict):
    b.payment_status = P.COMPLETED.value


def _payment_failed(b: Booking, now: datetime, data: dict):
    b.payment_status = P.FAILED.value


def _request_cancellation(b: Booking, now: datetime, data: dict):
    b.cancellation_status = C.REQUESTED.value
    b.cancellation_requested_at = now
    b.cancellation_reason = data.get("reason")


def _approve_cancellation(b: Booking, now: datetime, data: dict):
    b.cancellation_status = C.APPROVED.value
    b.booking_status = B.CANCELLED.value
    b.cancelled_at = now
    b.cancellation_fee = data["cancellation_fee"]
    b.refund_amount = data["refund_amount"]


def _reject_cancellation(b: Booking, now: datetime, data: dict):
    b.cancellation_status = C.REJECTED.value
    b.rejection_reason = data["reason"]


def _reopen_cancellation(b: Booking, now: datetime, data: dict):
    b.cancellation_status = C.NONE.value
    b.rejection_reason = None


def _record_return(b: Booking, now: datetime, data: dict):
    # inspection happens at the counter, together with the return
    b.cycle_returned_at = now
    b.cycle_inspected_at = now
    b.cycle_condition = data["condition"]
    b.late_fee = data["late_fee"]
    b.return_photos = list(data["photos"])
    if data["settled"]:
        b.booking_status = B.COMPLETED.value


def _return_deposit(b: Booking, now: datetime, data: dict):
    b.deposit_returned_at = now
    b.deposit_refund_amount = data["refund_amount"]
    b.booking_status = B.COMPLETED.value


EFFECTS: Dict[BookingEvent, Callable[[Booking, datetime, dict], None]] = {
    BookingEvent.ACTIVATE: _activate,
    BookingEvent.PAYMENT_CAPTURED: _payment_captured,
    BookingEvent.PAYMENT_FAILED: _payment_failed,
    BookingEvent.REQUEST_CANCELLATION: _request_cancellation,
    BookingEvent.APPROVE_CANCELLATION: _approve_cancellation,
    BookingEvent.REJECT_CANCELLATION: _reject_cancellation,
    BookingEvent.REOPEN_CANCELLATION: _reopen_cancellation,
    BookingEvent.RECORD_RETURN: _record_return,
    BookingEvent.RETURN_DEPOSIT: _return_deposit,
}


def transition(b: Booking, event, now: datetime, **data) -> Booking:
    event = as_event(event)
    check(b, event)
    before = b.booking_status
    EFFECTS[event](b, now, data)
    b.updated_at = now
    log.info("[booking] %s %s: %s -> %s", b.booking_code, event.value, before, b.booking_status)
    return b


def transition_booking(session: Session, booking_id: int, event, now: datetime, publisher=None) -> Booking:
    event = as_event(event)
    if event not in OPERATOR_EVENTS:
        raise InvalidTransition(
            f"{event.value} is not a direct transition",
            {"event": event.value, "allowed": sorted(e.value for e in OPERATOR_EVENTS)},
        )
    with unit_of_work(session):
        b = BookingRepository(session).require(booking_id, lock=True)
        transition(b, event, now)
    session.refresh(b)
    if event is BookingEvent.ACTIVATE:
        notify(publisher, "BookingActivated", booking_payload(b))
    return b
