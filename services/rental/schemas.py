# ============================================================
# schemas.py — Request / response bodies of the Rental API
# ============================================================
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlmodel import Field, SQLModel


class AccessoryRequest(SQLModel):
    accessory_id: int
    quantity: int = 1
    days: Optional[int] = None


class QuoteAccessory(SQLModel):
    accessory_id: int
    price_per_day: Decimal
    quantity: int = 1
    days: Optional[int] = None
    security_deposit: Decimal = Decimal("0")


class QuoteRequest(SQLModel):
    duration_tier: str
    cycle_id: Optional[int] = None
    price_per_day: Optional[Decimal] = None
    price_per_week: Optional[Decimal] = None
    price_per_month: Optional[Decimal] = None
    deposit_day: Decimal = Decimal("2000")
    deposit_week: Decimal = Decimal("3000")
    deposit_month: Decimal = Decimal("5000")
    accessories: List[QuoteAccessory] = Field(default_factory=list)
    discount: Decimal = Decimal("0")


class CouponCheck(SQLModel):
    code: str
    subtotal: Decimal


class BookingCreate(SQLModel):
    user_id: int
    cycle_id: int
    duration_tier: str
    pickup_at: datetime
    return_at: Optional[datetime] = None
    accessories: List[AccessoryRequest] = Field(default_factory=list)
    coupon_code: Optional[str] = None
    partner_id: Optional[int] = None
    pickup_location_id: Optional[int] = None


class TransitionRequest(SQLModel):
    event: str


class AccessoryEdit(SQLModel):
    accessories: List[AccessoryRequest] = Field(default_factory=list)


class ReturnDateEdit(SQLModel):
    return_at: datetime


class CancellationRequestBody(SQLModel):
    reason: Optional[str] = None


class RejectionBody(SQLModel):
    reason: str = ""


class CycleReturnBody(SQLModel):
    condition: str
    evidence_refs: List[str] = Field(default_factory=list)
    damage_cost: Optional[Decimal] = None
    damage_description: Optional[str] = None


class MaintenanceStart(SQLModel):
    cycle_id: int
    maintenance_type: str = "repair"
    description: Optional[str] = None


class MaintenanceComplete(SQLModel):
    cost: Optional[Decimal] = None
