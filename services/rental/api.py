# ============================================================
# Rental API Router
# ------------------------------------------------------------
# REST endpoints over the rental engine: quotes, coupons,
# booking creation and edits, operator transitions, the
# cancellation workflow, cycle return and deposit settlement,
# maintenance. Business errors are turned into JSON responses
# by the handler registered in app.py.
# ============================================================
from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlmodel import Session

from . import bookings, cancellation, inventory, settlement
from .clock import Clock
from .coupons import validate_coupon
from .db import get_session
from .errors import ValidationError
from .models import Booking
from .pricing import AccessorySelection, CycleRates, price_booking
from .publisher import EventPublisher
from .repository import BookingRepository, CatalogRepository
from .schemas import (
    AccessoryEdit,
    BookingCreate,
    CancellationRequestBody,
    CouponCheck,
    CycleReturnBody,
    MaintenanceComplete,
    MaintenanceStart,
    QuoteRequest,
    RejectionBody,
    ReturnDateEdit,
    TransitionRequest,
)
from .state_machine import transition_booking

router = APIRouter(prefix="/v1")


def get_clock() -> Clock:
    return Clock()


def get_publisher() -> EventPublisher:
    return EventPublisher()


def booking_out(s: Session, b: Booking) -> dict:
    repo = BookingRepository(s)
    out = b.model_dump()
    out["accessories"] = [l.model_dump() for l in repo.lines(b.id)]
    out["damage_reports"] = [d.model_dump() for d in repo.damage_reports(b.id)]
    return out


# ------------------------------------------------------------
# Pricing & coupons (no side effects)
# ------------------------------------------------------------
@router.post("/quotes")
def quote(body: QuoteRequest, s: Session = Depends(get_session)):
    if body.cycle_id is not None:
        rates = CycleRates.from_cycle(CatalogRepository(s).require_cycle(body.cycle_id))
    elif body.price_per_day is not None:
        rates = CycleRates(
            price_per_day=body.price_per_day,
            price_per_week=body.price_per_week if body.price_per_week is not None else body.price_per_day * 7,
            price_per_month=body.price_per_month,
            deposit_day=body.deposit_day,
            deposit_week=body.deposit_week,
            deposit_month=body.deposit_month,
        )
    else:
        raise ValidationError("cycle_id or price_per_day is required", {"fields": ["cycle_id", "price_per_day"]})
    selections = [AccessorySelection(**a.model_dump()) for a in body.accessories]
    return asdict(price_booking(body.duration_tier, rates, selections, body.discount))


@router.post("/coupons/validate")
def check_coupon(body: CouponCheck, s: Session = Depends(get_session), clock: Clock = Depends(get_clock)):
    return asdict(validate_coupon(s, body.code, body.subtotal, clock.now()))


# ------------------------------------------------------------
# Bookings
# ------------------------------------------------------------
@router.post("/bookings", status_code=201)
def create_booking(
    body: BookingCreate,
    s: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    publisher: EventPublisher = Depends(get_publisher),
):
    b = bookings.create_booking(s, body, clock.now(), publisher)
    return booking_out(s, b)


@router.get("/bookings/{booking_id}")
def get_booking(booking_id: int, s: Session = Depends(get_session)):
    return booking_out(s, BookingRepository(s).require(booking_id))


@router.post("/bookings/{booking_id}/transitions")
def transition(
    booking_id: int,
    body: TransitionRequest,
    s: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    publisher: EventPublisher = Depends(get_publisher),
):
    b = transition_booking(s, booking_id, body.event, clock.now(), publisher)
    return booking_out(s, b)


@router.put("/bookings/{booking_id}/accessories")
def edit_accessories(
    booking_id: int,
    body: AccessoryEdit,
    s: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    publisher: EventPublisher = Depends(get_publisher),
):
    result = bookings.update_booking_accessories(s, booking_id, body.accessories, clock.now(), publisher)
    out = booking_out(s, result.booking)
    out["price_delta"] = result.price_delta
    return out


@router.put("/bookings/{booking_id}/return-date")
def edit_return_date(
    booking_id: int,
    body: ReturnDateEdit,
    s: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    b = bookings.reschedule_return(s, booking_id, body.return_at, clock.now())
    return booking_out(s, b)


# ------------------------------------------------------------
# Cancellation workflow
# ------------------------------------------------------------
@router.get("/bookings/{booking_id}/cancellation")
def cancellation_quote(booking_id: int, s: Session = Depends(get_session), clock: Clock = Depends(get_clock)):
    b = BookingRepository(s).require(booking_id)
    return asdict(cancellation.quote_cancellation(b, clock.now()))


@router.post("/bookings/{booking_id}/cancellation")
def request_cancellation(
    booking_id: int,
    body: CancellationRequestBody,
    s: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    publisher: EventPublisher = Depends(get_publisher),
):
    b = cancellation.request_cancellation(s, booking_id, body.reason, clock.now(), publisher)
    return booking_out(s, b)


@router.post("/bookings/{booking_id}/cancellation/approve")
def approve_cancellation(
    booking_id: int,
    s: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    publisher: EventPublisher = Depends(get_publisher),
):
    b = cancellation.approve_cancellation(s, booking_id, clock.now(), publisher)
    return booking_out(s, b)


@router.post("/bookings/{booking_id}/cancellation/reject")
def reject_cancellation(
    booking_id: int,
    body: RejectionBody,
    s: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    publisher: EventPublisher = Depends(get_publisher),
):
    b = cancellation.reject_cancellation(s, booking_id, body.reason, clock.now(), publisher)
    return booking_out(s, b)


@router.post("/bookings/{booking_id}/cancellation/reopen")
def reopen_cancellation(booking_id: int, s: Session = Depends(get_session), clock: Clock = Depends(get_clock)):
    return booking_out(s, cancellation.reopen_cancellation(s, booking_id, clock.now()))


# ------------------------------------------------------------
# Return & settlement
# ------------------------------------------------------------
@router.post("/bookings/{booking_id}/return")
def record_return(
    booking_id: int,
    body: CycleReturnBody,
    s: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    publisher: EventPublisher = Depends(get_publisher),
):
    b = settlement.record_cycle_return(
        s, booking_id, body.condition, body.evidence_refs, clock.now(),
        damage_cost=body.damage_cost,
        damage_description=body.damage_description,
        publisher=publisher,
    )
    return booking_out(s, b)


@router.post("/bookings/{booking_id}/deposit-return")
def deposit_return(
    booking_id: int,
    s: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    publisher: EventPublisher = Depends(get_publisher),
):
    return booking_out(s, settlement.return_deposit(s, booking_id, clock.now(), publisher))


# ------------------------------------------------------------
# Maintenance
# ------------------------------------------------------------
@router.post("/maintenance", status_code=201)
def start_maintenance(body: MaintenanceStart, s: Session = Depends(get_session), clock: Clock = Depends(get_clock)):
    record = inventory.start_maintenance(s, body.cycle_id, clock.now(), body.maintenance_type, body.description)
    return record.model_dump()


@router.post("/maintenance/{record_id}/complete")
def complete_maintenance(
    record_id: int,
    body: MaintenanceComplete,
    s: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return inventory.complete_maintenance(s, record_id, clock.now(), body.cost).model_dump()
