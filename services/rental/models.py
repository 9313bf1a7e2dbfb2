# ============================================================
# models.py — SQLModel tables of the Rental Service
# ------------------------------------------------------------
# Inventory : Cycle, Accessory (+ MaintenanceRecord)
# Discounts : Coupon, CouponUsage
# Booking   : Booking, BookingAccessory, DamageReport
# Messaging : ProcessedMessage (consumer de-duplication)
#
# Money columns are Decimal(10, 2). Status columns hold the
# plain string value of the enums below.
# ============================================================
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def Money(default=Decimal("0.00"), **kw):
    return Field(default=default, max_digits=10, decimal_places=2, **kw)


# ------------------------------------------------------------
# Enumerations
# ------------------------------------------------------------
class DurationTier(str, Enum):
    ONE_DAY = "one_day"
    ONE_WEEK = "one_week"
    ONE_MONTH = "one_month"

    @property
    def days(self) -> int:
        return {"one_day": 1, "one_week": 7, "one_month": 30}[self.value]


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CancellationStatus(str, Enum):
    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"


class CycleCondition(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    DAMAGED = "damaged"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


# ------------------------------------------------------------
# Inventory
# ------------------------------------------------------------
# InternalDetails replaces a free-form JSON blob: every reader
# expects these keys, so they are declared once here and the
# column only ever stores a dump of this model.
class InternalDetails(SQLModel):
    vendor: Optional[str] = None
    model_number: Optional[str] = None
    serial_number: Optional[str] = None
    purchase_date: Optional[date] = None
    purchase_cost: Optional[Decimal] = None
    warranty_until: Optional[date] = None
    document_urls: List[str] = Field(default_factory=list)


class InventoryItem(SQLModel):
    name: str
    total_quantity: int = 1
    available_quantity: int = 1
    is_active: bool = True
    internal_details: Optional[dict] = Field(default=None, sa_type=JSON)
    created_at: datetime = Field(default_factory=utcnow)

    def get_details(self) -> InternalDetails:
        return InternalDetails.model_validate(self.internal_details or {})

    def set_details(self, details: InternalDetails):
        self.internal_details = details.model_dump(mode="json")


class Cycle(InventoryItem, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    model: Optional[str] = None
    price_per_day: Decimal = Money()
    price_per_week: Decimal = Money()
    price_per_month: Optional[Decimal] = Money(default=None)
    security_deposit_day: Decimal = Money(Decimal("2000.00"))
    security_deposit_week: Decimal = Money(Decimal("3000.00"))
    security_deposit_month: Decimal = Money(Decimal("5000.00"))


class Accessory(InventoryItem, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    price_per_day: Decimal = Money()
    security_deposit: Decimal = Money()


class MaintenanceRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    cycle_id: int = Field(foreign_key="cycle.id", index=True)
    maintenance_type: str = "repair"
    description: Optional[str] = None
    status: str = "pending"         # pending | completed
    cost: Optional[Decimal] = Money(default=None)
    reported_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


# ------------------------------------------------------------
# Coupons
# ------------------------------------------------------------
class Coupon(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)   # matched case-insensitively
    description: Optional[str] = None
    discount_type: str = DiscountType.PERCENTAGE.value
    discount_value: Decimal = Money()
    min_order_amount: Optional[Decimal] = Money(default=None)
    max_uses: Optional[int] = None
    used_count: int = 0
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class CouponUsage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    coupon_id: int = Field(foreign_key="coupon.id", index=True)
    booking_id: int = Field(foreign_key="booking.id")
    user_id: int
    discount_amount: Decimal = Money()
    used_at: datetime = Field(default_factory=utcnow)


# ------------------------------------------------------------
# Booking
# ------------------------------------------------------------
# Status axes are independent columns but only state_machine,
# cancellation and settlement write them.
class Booking(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    booking_code: str = Field(index=True, unique=True)
    user_id: int
    cycle_id: int = Field(foreign_key="cycle.id")
    partner_id: Optional[int] = None
    pickup_location_id: Optional[int] = None
    coupon_id: Optional[int] = Field(default=None, foreign_key="coupon.id")
    coupon_code: Optional[str] = None

    pickup_at: datetime
    return_at: datetime
    duration_tier: str

    cycle_rental_cost: Decimal = Money()
    accessories_cost: Decimal = Money()
    gst_amount: Decimal = Money()
    discount_amount: Decimal = Money()
    security_deposit: Decimal = Money()
    total_amount: Decimal = Money()
    late_fee: Decimal = Money()
    deposit_refund_amount: Optional[Decimal] = Money(default=None)
    cancellation_fee: Optional[Decimal] = Money(default=None)
    refund_amount: Optional[Decimal] = Money(default=None)

    booking_status: str = BookingStatus.CONFIRMED.value
    payment_status: str = PaymentStatus.PENDING.value
    cancellation_status: str = CancellationStatus.NONE.value
    cancellation_reason: Optional[str] = None
    rejection_reason: Optional[str] = None

    cycle_condition: Optional[str] = None
    return_photos: Optional[list] = Field(default=None, sa_type=JSON)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    picked_up_at: Optional[datetime] = None
    cycle_returned_at: Optional[datetime] = None
    cycle_inspected_at: Optional[datetime] = None
    deposit_returned_at: Optional[datetime] = None
    cancellation_requested_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class BookingAccessory(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    booking_id: int = Field(foreign_key="booking.id", index=True)
    accessory_id: int = Field(foreign_key="accessory.id")
    quantity: int = 1
    days: int = 1
    # snapshots taken when the line is created
    price_per_day: Decimal = Money()
    security_deposit: Decimal = Money()
    total_cost: Decimal = Money()


class DamageReport(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    booking_id: int = Field(foreign_key="booking.id", index=True)
    cycle_id: int = Field(foreign_key="cycle.id")
    damage_description: str
    damage_cost: Decimal = Money()
    deducted_from_deposit: bool = True
    photo_urls: Optional[list] = Field(default=None, sa_type=JSON)
    reported_at: datetime = Field(default_factory=utcnow)


class ProcessedMessage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    message_id: str = Field(index=True, unique=True)
    processed_at: datetime = Field(default_factory=utcnow)
