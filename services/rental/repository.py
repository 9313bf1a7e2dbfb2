# ============================================================
# repository.py — Data access for the Rental Service
# ------------------------------------------------------------
# Repository pattern over the SQLModel tables. Used by the
# engine modules, the FastAPI routes and the RabbitMQ consumer.
# Lookups return None; require_* raise NotFoundError.
# ============================================================
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from .errors import NotFoundError
from .models import (
    Accessory,
    Booking,
    BookingAccessory,
    Coupon,
    Cycle,
    DamageReport,
    MaintenanceRecord,
)


class BookingRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, b: Booking) -> Booking:
        self.session.add(b)
        self.session.flush()
        return b

    def get(self, booking_id: int, lock: bool = False) -> Optional[Booking]:
        stmt = select(Booking).where(Booking.id == booking_id)
        if lock:
            # row lock for read-modify-write (ignored by SQLite)
            stmt = stmt.with_for_update()
        return self.session.exec(stmt).first()

    def get_by_code(self, code: str) -> Optional[Booking]:
        return self.session.exec(select(Booking).where(Booking.booking_code == code)).first()

    def require(self, booking_id: int, lock: bool = False) -> Booking:
        b = self.get(booking_id, lock)
        if not b:
            raise NotFoundError(f"booking {booking_id} not found", {"booking_id": booking_id})
        return b

    def lines(self, booking_id: int) -> List[BookingAccessory]:
        return list(self.session.exec(
            select(BookingAccessory)
            .where(BookingAccessory.booking_id == booking_id)
            .order_by(BookingAccessory.id)
        ).all())

    def damage_reports(self, booking_id: int) -> List[DamageReport]:
        return list(self.session.exec(
            select(DamageReport).where(DamageReport.booking_id == booking_id).order_by(DamageReport.id)
        ).all())


class CatalogRepository:
    def __init__(self, session: Session):
        self.session = session

    def require_cycle(self, cycle_id: int, active_only: bool = True) -> Cycle:
        c = self.session.get(Cycle, cycle_id)
        if not c or (active_only and not c.is_active):
            raise NotFoundError(f"cycle {cycle_id} not found", {"cycle_id": cycle_id})
        return c

    def require_accessory(self, accessory_id: int, active_only: bool = True) -> Accessory:
        a = self.session.get(Accessory, accessory_id)
        if not a or (active_only and not a.is_active):
            raise NotFoundError(f"accessory {accessory_id} not found", {"accessory_id": accessory_id})
        return a

    def find_coupon(self, code: str) -> Optional[Coupon]:
        # lookup is case-insensitive whatever case the code was stored in
        return self.session.exec(
            select(Coupon).where(func.upper(Coupon.code) == code.strip().upper(), Coupon.is_active == True)  # noqa: E712
        ).first()

    def require_maintenance(self, record_id: int) -> MaintenanceRecord:
        m = self.session.get(MaintenanceRecord, record_id)
        if not m:
            raise NotFoundError(f"maintenance record {record_id} not found", {"maintenance_id": record_id})
        return m


# One business operation = one transaction: commit on success,
# rollback on any error so no partial write survives.
@contextmanager
def unit_of_work(session: Session):
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
