# ============================================================
# bookings.py — Booking creation and edits
# ------------------------------------------------------------
# create_booking : price, validate coupon, reserve inventory,
#                  persist booking + accessory lines, redeem the
#                  coupon, all in one transaction; then publish
#                  BookingConfirmed.
# update_booking_accessories : swap accessory lines up to 2h
#                  before pickup and report the price delta.
# reschedule_return : operator override of the return time.
# ============================================================
import logging
import random
import string
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List

from sqlmodel import Session

from .clock import as_utc, from_request
from .config import BOOKING_CODE_PREFIX, EDIT_CUTOFF_HOURS
from .coupons import redeem_coupon, validate_coupon
from .errors import EditWindowClosed, InvalidTransition, PolicyViolation, ValidationError
from .inventory import release, reserve
from .models import (
    Accessory,
    Booking,
    BookingAccessory,
    BookingStatus,
    CancellationStatus,
    Cycle,
)
from .pricing import AccessorySelection, CostBreakdown, CycleRates, as_tier, money, price_booking, return_at_for
from .publisher import booking_payload, notify
from .repository import BookingRepository, CatalogRepository, unit_of_work
from .schemas import AccessoryRequest, BookingCreate
from .state_machine import state_of

log = logging.getLogger(__name__)


def gen_code(n: int = 8) -> str:
    return BOOKING_CODE_PREFIX + "".join(random.choice(string.digits) for _ in range(n))


def new_booking_code(repo: BookingRepository) -> str:
    while True:
        code = gen_code()
        if not repo.get_by_code(code):
            return code


def _apply_cost(b: Booking, cost: CostBreakdown):
    b.cycle_rental_cost = cost.cycle_rental_cost
    b.accessories_cost = cost.accessories_cost
    b.gst_amount = cost.gst_amount
    b.discount_amount = cost.discount_amount
    b.security_deposit = cost.security_deposit
    b.total_amount = cost.total_amount


def _lines_for(booking_id: int, cost: CostBreakdown) -> List[BookingAccessory]:
    return [
        BookingAccessory(
            booking_id=booking_id,
            accessory_id=l.accessory_id,
            quantity=l.quantity,
            days=l.days,
            price_per_day=l.price_per_day,
            security_deposit=l.security_deposit,
            total_cost=l.total_cost,
        )
        for l in cost.lines
    ]


def _quantities(items: Iterable) -> Dict[int, int]:
    qty: Counter = Counter()
    for i in items:
        qty[i.accessory_id] += i.quantity
    return dict(qty)


def create_booking(session: Session, data: BookingCreate, now: datetime, publisher=None) -> Booking:
    tier = as_tier(data.duration_tier)
    pickup_at = from_request(data.pickup_at)
    if pickup_at <= as_utc(now):
        raise PolicyViolation(
            "pickup must be in the future",
            {"pickup_at": pickup_at.isoformat(), "now": as_utc(now).isoformat()},
        )
    return_at = from_request(data.return_at) if data.return_at else return_at_for(pickup_at, tier)
    if return_at <= pickup_at:
        raise ValidationError("return must be after pickup", {"return_at": return_at.isoformat()})

    repo = BookingRepository(session)
    catalog = CatalogRepository(session)
    with unit_of_work(session):
        cycle = catalog.require_cycle(data.cycle_id)
        rates = CycleRates.from_cycle(cycle)
        selections = []
        for req in data.accessories:
            acc = catalog.require_accessory(req.accessory_id)
            selections.append(AccessorySelection(
                accessory_id=acc.id,
                price_per_day=acc.price_per_day,
                quantity=req.quantity,
                days=req.days,
                security_deposit=acc.security_deposit,
            ))

        discount = None
        if data.coupon_code:
            # the coupon is checked against the pre-discount subtotal
            subtotal = price_booking(tier, rates, selections).subtotal
            discount = validate_coupon(session, data.coupon_code, subtotal, now)
        cost = price_booking(tier, rates, selections, discount.discount_amount if discount else 0)

        reserve(session, Cycle, cycle.id)
        for accessory_id, qty in _quantities(cost.lines).items():
            reserve(session, Accessory, accessory_id, qty)

        b = Booking(
            booking_code=new_booking_code(repo),
            user_id=data.user_id,
            cycle_id=cycle.id,
            partner_id=data.partner_id,
            pickup_location_id=data.pickup_location_id,
            coupon_id=discount.coupon_id if discount else None,
            coupon_code=discount.code if discount else None,
            pickup_at=pickup_at,
            return_at=return_at,
            duration_tier=tier.value,
            created_at=now,
            updated_at=now,
        )
        _apply_cost(b, cost)
        repo.add(b)
        session.add_all(_lines_for(b.id, cost))
        if discount:
            redeem_coupon(session, discount, b.id, data.user_id, now)
    session.refresh(b)
    log.info("[booking] %s created for user %s, total=%s", b.booking_code, b.user_id, b.total_amount)
    notify(publisher, "BookingConfirmed", {**booking_payload(b), "totalAmount": str(b.total_amount)})
    return b


# ------------------------------------------------------------
# Edits
# ------------------------------------------------------------
@dataclass
class AccessoryEditResult:
    booking: Booking
    lines: List[BookingAccessory]
    price_delta: Decimal


def edit_cutoff(b: Booking) -> datetime:
    return as_utc(b.pickup_at) - timedelta(hours=EDIT_CUTOFF_HOURS)


def _require_editable(b: Booking, now: datetime):
    if (b.booking_status != BookingStatus.CONFIRMED.value
            or b.cancellation_status in (CancellationStatus.REQUESTED.value, CancellationStatus.APPROVED.value)):
        raise InvalidTransition(
            f"booking {b.booking_code} can no longer be edited",
            {"operation": "edit_accessories", **state_of(b)},
        )
    if as_utc(now) >= edit_cutoff(b):
        raise EditWindowClosed(
            f"bookings cannot be edited within {EDIT_CUTOFF_HOURS} hours of pickup",
            {
                "cutoff_hours": EDIT_CUTOFF_HOURS,
                "cutoff_at": edit_cutoff(b).isoformat(),
                "pickup_at": as_utc(b.pickup_at).isoformat(),
            },
        )


def update_booking_accessories(
    session: Session,
    booking_id: int,
    accessories: List[AccessoryRequest],
    now: datetime,
    publisher=None,
) -> AccessoryEditResult:
    repo = BookingRepository(session)
    catalog = CatalogRepository(session)
    with unit_of_work(session):
        b = repo.require(booking_id, lock=True)
        _require_editable(b, now)
        old_lines = repo.lines(b.id)
        snapshots = {l.accessory_id: l for l in old_lines}

        selections = []
        for req in accessories:
            kept = snapshots.get(req.accessory_id)
            if kept:
                # price snapshot of the original line stays
                price, deposit = kept.price_per_day, kept.security_deposit
            else:
                acc = catalog.require_accessory(req.accessory_id)
                price, deposit = acc.price_per_day, acc.security_deposit
            selections.append(AccessorySelection(
                accessory_id=req.accessory_id,
                price_per_day=price,
                quantity=req.quantity,
                days=req.days,
                security_deposit=deposit,
            ))

        old_accessory_deposit = sum((money(l.security_deposit) * l.quantity for l in old_lines), Decimal("0"))
        rates = CycleRates.flat(b.cycle_rental_cost, money(b.security_deposit) - old_accessory_deposit)
        cost = price_booking(b.duration_tier, rates, selections, b.discount_amount)

        before, after = _quantities(old_lines), _quantities(cost.lines)
        for accessory_id in sorted(set(before) | set(after)):
            diff = after.get(accessory_id, 0) - before.get(accessory_id, 0)
            if diff > 0:
                reserve(session, Accessory, accessory_id, diff)
            elif diff < 0:
                release(session, Accessory, accessory_id, -diff)

        for l in old_lines:
            session.delete(l)
        new_lines = _lines_for(b.id, cost)
        session.add_all(new_lines)

        old_total = money(b.total_amount)
        _apply_cost(b, cost)
        b.updated_at = now
        delta = cost.total_amount - old_total
    session.refresh(b)
    log.info("[booking] %s accessories updated, delta=%s", b.booking_code, delta)
    notify(publisher, "BookingModified", {**booking_payload(b), "priceDelta": str(delta)})
    return AccessoryEditResult(booking=b, lines=repo.lines(b.id), price_delta=delta)


def reschedule_return(session: Session, booking_id: int, return_at: datetime, now: datetime) -> Booking:
    with unit_of_work(session):
        b = BookingRepository(session).require(booking_id, lock=True)
        if (b.booking_status not in (BookingStatus.CONFIRMED.value, BookingStatus.ACTIVE.value)
                or b.cycle_returned_at is not None):
            raise InvalidTransition(
                f"return time of booking {b.booking_code} can no longer change",
                {"operation": "reschedule_return", **state_of(b)},
            )
        if from_request(return_at) <= as_utc(b.pickup_at):
            raise ValidationError(
                "return must be after pickup",
                {"return_at": from_request(return_at).isoformat(), "pickup_at": as_utc(b.pickup_at).isoformat()},
            )
        b.return_at = from_request(return_at)
        b.updated_at = now
    session.refresh(b)
    return b
