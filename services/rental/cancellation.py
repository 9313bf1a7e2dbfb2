# ============================================================
# cancellation.py — Cancellation Policy Engine
# ------------------------------------------------------------
# Renter side : request_cancellation (only while can_cancel)
# Operator    : approve / reject / reopen
#
# Fee bands, measured from "now" to the pickup time:
#   >= 24h : flat fee (100), the rest of total_amount refunded
#   <  24h : the whole total_amount is kept, nothing refunded
# ============================================================
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import update
from sqlmodel import Session

from .clock import as_utc, to_local
from .config import CANCELLATION_FEE, CANCELLATION_WINDOW_HOURS
from .errors import CancellationNotAllowed, ValidationError
from .inventory import release
from .models import Accessory, Booking, BookingStatus, CancellationStatus, Cycle
from .pricing import money
from .publisher import booking_payload, notify
from .repository import BookingRepository, unit_of_work
from .state_machine import BookingEvent, state_of, transition

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationQuote:
    eligible: bool
    reason: Optional[str]
    hours_until_pickup: float
    cancellation_fee: Decimal
    refund_amount: Decimal


def hours_until(pickup_at: datetime, now: datetime) -> float:
    return (as_utc(pickup_at) - as_utc(now)).total_seconds() / 3600


def cancellation_block_reason(b: Booking, now: datetime) -> Optional[str]:
    if b.booking_status in (BookingStatus.CANCELLED.value, BookingStatus.COMPLETED.value):
        return f"booking is {b.booking_status}"
    if b.cancellation_status in (CancellationStatus.REQUESTED.value, CancellationStatus.APPROVED.value):
        return f"cancellation already {b.cancellation_status}"
    # pickup must fall on a later calendar day than today
    if to_local(b.pickup_at).date() <= to_local(now).date():
        return "pickup is today or in the past"
    return None


def can_cancel(b: Booking, now: datetime) -> bool:
    return cancellation_block_reason(b, now) is None


def compute_cancellation_fee(total_amount, pickup_at: datetime, now: datetime) -> Tuple[Decimal, Decimal]:
    total = money(total_amount)
    if hours_until(pickup_at, now) >= CANCELLATION_WINDOW_HOURS:
        fee = min(money(CANCELLATION_FEE), total)
    else:
        fee = total
    return fee, total - fee


def quote_cancellation(b: Booking, now: datetime) -> CancellationQuote:
    fee, refund = compute_cancellation_fee(b.total_amount, b.pickup_at, now)
    reason = cancellation_block_reason(b, now)
    return CancellationQuote(
        eligible=reason is None,
        reason=reason,
        hours_until_pickup=round(hours_until(b.pickup_at, now), 2),
        cancellation_fee=fee,
        refund_amount=refund,
    )


def request_cancellation(
    session: Session,
    booking_id: int,
    reason: Optional[str],
    now: datetime,
    publisher=None,
) -> Booking:
    with unit_of_work(session):
        b = BookingRepository(session).require(booking_id, lock=True)
        blocked = cancellation_block_reason(b, now)
        if blocked:
            raise CancellationNotAllowed(
                f"booking {b.booking_code} cannot be cancelled: {blocked}",
                {
                    "reason": blocked,
                    "pickup_at": as_utc(b.pickup_at).isoformat(),
                    "hours_until_pickup": round(hours_until(b.pickup_at, now), 2),
                    **state_of(b),
                },
            )
        transition(b, BookingEvent.REQUEST_CANCELLATION, now, reason=(reason or "").strip() or None)
    session.refresh(b)
    notify(publisher, "CancellationRequested", booking_payload(b))
    return b


def approve_cancellation(session: Session, booking_id: int, now: datetime, publisher=None) -> Booking:
    repo = BookingRepository(session)
    with unit_of_work(session):
        b = repo.require(booking_id, lock=True)
        retried = b.cancellation_status == CancellationStatus.APPROVED.value
        if not retried:
            # claim the request; a concurrent approver finds it gone
            claimed = session.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.cancellation_status == CancellationStatus.REQUESTED.value)
                .values(cancellation_status=CancellationStatus.APPROVED.value)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                session.refresh(b)
                retried = b.cancellation_status == CancellationStatus.APPROVED.value
        if not retried:
            fee, refund = compute_cancellation_fee(b.total_amount, b.pickup_at, now)
            _approve(session, repo, b, fee, refund, now)
    session.refresh(b)
    if retried:
        return b
    log.info("[cancellation] %s approved, fee=%s refund=%s", b.booking_code, fee, refund)
    notify(publisher, "BookingCancelled", {
        **booking_payload(b),
        "cancellationFee": str(fee),
        "refundAmount": str(refund),
    })
    return b


def _approve(session: Session, repo: BookingRepository, b: Booking, fee, refund, now: datetime):
    transition(b, BookingEvent.APPROVE_CANCELLATION, now, cancellation_fee=fee, refund_amount=refund)
    # the reserved units go back to the shelf
    release(session, Cycle, b.cycle_id)
    for line in repo.lines(b.id):
        release(session, Accessory, line.accessory_id, line.quantity)


def reject_cancellation(
    session: Session,
    booking_id: int,
    reason: str,
    now: datetime,
    publisher=None,
) -> Booking:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("a rejection reason is required", {"field": "reason"})
    with unit_of_work(session):
        b = BookingRepository(session).require(booking_id, lock=True)
        transition(b, BookingEvent.REJECT_CANCELLATION, now, reason=reason)
    session.refresh(b)
    notify(publisher, "CancellationRejected", {**booking_payload(b), "reason": reason})
    return b


def reopen_cancellation(session: Session, booking_id: int, now: datetime) -> Booking:
    """Operator override: a rejected request goes back to none so the renter can ask again."""
    with unit_of_work(session):
        b = BookingRepository(session).require(booking_id, lock=True)
        transition(b, BookingEvent.REOPEN_CANCELLATION, now)
    session.refresh(b)
    return b
