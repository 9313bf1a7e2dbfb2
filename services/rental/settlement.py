# ============================================================
# settlement.py — Return & Settlement Engine
# ------------------------------------------------------------
# Phase 1, record_cycle_return:
#   inspection at the counter, photos required, late fee of
#   50 per started hour past return_at, optional damage report.
#   Without late fee or damage the booking completes here.
# Phase 2, return_deposit (only after phase 1):
#   refund = deposit - late fee - sum(damage costs), no clamp:
#   a negative refund is what the renter still owes.
# ============================================================
import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from sqlmodel import Session

from .clock import as_utc
from .config import LATE_FEE_PER_HOUR, MAX_RETURN_PHOTOS
from .errors import EvidenceRequired, ValidationError
from .inventory import release
from .models import Accessory, Booking, BookingStatus, Cycle, CycleCondition, DamageReport
from .pricing import money
from .publisher import booking_payload, notify
from .repository import BookingRepository, unit_of_work
from .state_machine import BookingEvent, transition

log = logging.getLogger(__name__)

DAMAGE_CONDITIONS = (CycleCondition.FAIR.value, CycleCondition.DAMAGED.value)


def compute_late_fee(return_at: datetime, now: datetime) -> Tuple[int, Decimal]:
    overdue = (as_utc(now) - as_utc(return_at)).total_seconds()
    if overdue <= 0:
        return 0, money(0)
    hours = math.ceil(overdue / 3600)
    return hours, money(LATE_FEE_PER_HOUR * hours)


def _check_return_input(condition, evidence_refs, damage_cost, damage_description) -> Tuple[str, list, Decimal]:
    photos = [r for r in (evidence_refs or []) if r and str(r).strip()]
    if not photos:
        raise EvidenceRequired("at least one photo of the returned cycle is required", {"photos": 0})
    if len(photos) > MAX_RETURN_PHOTOS:
        raise ValidationError(
            f"at most {MAX_RETURN_PHOTOS} photos per return",
            {"photos": len(photos), "max_photos": MAX_RETURN_PHOTOS},
        )
    try:
        condition = CycleCondition(condition).value
    except ValueError:
        raise ValidationError(
            f"unknown cycle condition {condition!r}",
            {"condition": str(condition), "allowed": [c.value for c in CycleCondition]},
        )
    cost = money(damage_cost or 0)
    if cost < 0:
        raise ValidationError("damage cost cannot be negative", {"damage_cost": str(cost)})
    if cost > 0 and condition not in DAMAGE_CONDITIONS:
        raise ValidationError(
            "damage can only be charged for a fair or damaged cycle",
            {"condition": condition, "damage_cost": str(cost), "allowed": list(DAMAGE_CONDITIONS)},
        )
    if cost > 0 and not (damage_description or "").strip():
        raise ValidationError("a damage description is required", {"damage_cost": str(cost)})
    return condition, photos, cost


def record_cycle_return(
    session: Session,
    booking_id: int,
    condition: str,
    evidence_refs: Sequence[str],
    now: datetime,
    damage_cost: Optional[Decimal] = None,
    damage_description: Optional[str] = None,
    publisher=None,
) -> Booking:
    condition, photos, cost = _check_return_input(condition, evidence_refs, damage_cost, damage_description)
    repo = BookingRepository(session)
    with unit_of_work(session):
        b = repo.require(booking_id, lock=True)
        hours_late, late_fee = compute_late_fee(b.return_at, now)
        settled = late_fee == 0 and cost == 0
        transition(
            b, BookingEvent.RECORD_RETURN, now,
            condition=condition, late_fee=late_fee, photos=photos, settled=settled,
        )
        if cost > 0:
            session.add(DamageReport(
                booking_id=b.id,
                cycle_id=b.cycle_id,
                damage_description=damage_description.strip(),
                damage_cost=cost,
                deducted_from_deposit=money(b.security_deposit) - late_fee - cost >= 0,
                photo_urls=photos,
                reported_at=now,
            ))
        release(session, Cycle, b.cycle_id)
        for line in repo.lines(b.id):
            release(session, Accessory, line.accessory_id, line.quantity)
    session.refresh(b)
    log.info("[settlement] %s returned %dh late, late_fee=%s damage=%s", b.booking_code, hours_late, late_fee, cost)
    notify(publisher, "CycleReturned", {
        **booking_payload(b),
        "lateFee": str(late_fee),
        "damageCost": str(cost),
    })
    if b.booking_status == BookingStatus.COMPLETED.value:
        notify(publisher, "BookingCompleted", booking_payload(b))
    return b


def deposit_refund(b: Booking, damage_costs) -> Decimal:
    damages = sum((money(c) for c in damage_costs), Decimal("0"))
    return money(b.security_deposit) - money(b.late_fee or 0) - damages


def return_deposit(session: Session, booking_id: int, now: datetime, publisher=None) -> Booking:
    repo = BookingRepository(session)
    with unit_of_work(session):
        b = repo.require(booking_id, lock=True)
        refund = deposit_refund(b, [r.damage_cost for r in repo.damage_reports(b.id)])
        transition(b, BookingEvent.RETURN_DEPOSIT, now, refund_amount=refund)
    session.refresh(b)
    if refund < 0:
        log.warning("[settlement] %s: renter owes %s beyond the deposit", b.booking_code, -refund)
    notify(publisher, "BookingCompleted", {**booking_payload(b), "depositRefund": str(refund)})
    return b
