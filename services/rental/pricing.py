# ============================================================
# pricing.py — Pricing Calculator
# ------------------------------------------------------------
# Turns a rental request into a cost breakdown:
#   1. base price looked up by duration tier
#   2. accessories: price/day x quantity x days
#   3. discount taken off the subtotal (never below zero)
#   4. GST on the discounted subtotal, rounded to the rupee
#   5. security deposit of the tier + accessory deposits
# Pure functions only: the same inputs always give the same
# breakdown, so a stored booking can be re-priced on edit.
# ============================================================
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Tuple, Union

from .config import GST_RATE
from .errors import ValidationError
from .models import Cycle, DurationTier

CENT = Decimal("0.01")
RUPEE = Decimal("1")


def money(value) -> Decimal:
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"not a money amount: {value!r}", {"value": str(value)})


def round_rupee(value) -> Decimal:
    return money(Decimal(value).quantize(RUPEE, rounding=ROUND_HALF_UP))


def as_tier(tier: Union[DurationTier, str]) -> DurationTier:
    try:
        return DurationTier(tier)
    except ValueError:
        raise ValidationError(
            f"unknown duration tier {tier!r}",
            {"tier": str(tier), "allowed": [t.value for t in DurationTier]},
        )


def return_at_for(pickup_at: datetime, tier: Union[DurationTier, str]) -> datetime:
    return pickup_at + timedelta(days=as_tier(tier).days)


@dataclass(frozen=True)
class CycleRates:
    price_per_day: Decimal
    price_per_week: Decimal
    price_per_month: Optional[Decimal] = None
    deposit_day: Decimal = Decimal("2000")
    deposit_week: Decimal = Decimal("3000")
    deposit_month: Decimal = Decimal("5000")

    @classmethod
    def from_cycle(cls, cycle: Cycle) -> "CycleRates":
        return cls(
            price_per_day=cycle.price_per_day,
            price_per_week=cycle.price_per_week,
            price_per_month=cycle.price_per_month,
            deposit_day=cycle.security_deposit_day,
            deposit_week=cycle.security_deposit_week,
            deposit_month=cycle.security_deposit_month,
        )

    @classmethod
    def flat(cls, price, deposit) -> "CycleRates":
        # same price and deposit for every tier: re-pricing a stored booking
        return cls(price, price, price, deposit, deposit, deposit)

    def base_price(self, tier: DurationTier) -> Decimal:
        if tier is DurationTier.ONE_DAY:
            return money(self.price_per_day)
        if tier is DurationTier.ONE_WEEK:
            return money(self.price_per_week)
        # no monthly rate configured: 30 daily rates
        if self.price_per_month is None or Decimal(self.price_per_month) <= 0:
            return money(Decimal(self.price_per_day) * DurationTier.ONE_MONTH.days)
        return money(self.price_per_month)

    def deposit(self, tier: DurationTier) -> Decimal:
        return money({
            DurationTier.ONE_DAY: self.deposit_day,
            DurationTier.ONE_WEEK: self.deposit_week,
            DurationTier.ONE_MONTH: self.deposit_month,
        }[tier])


@dataclass(frozen=True)
class AccessorySelection:
    accessory_id: int
    price_per_day: Decimal
    quantity: int = 1
    days: Optional[int] = None     # None: the whole rental
    security_deposit: Decimal = Decimal("0")


@dataclass(frozen=True)
class PricedLine:
    accessory_id: int
    quantity: int
    days: int
    price_per_day: Decimal
    security_deposit: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class CostBreakdown:
    tier: DurationTier
    cycle_rental_cost: Decimal
    accessories_cost: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    discounted_subtotal: Decimal
    gst_amount: Decimal
    rental_total: Decimal
    security_deposit: Decimal
    total_amount: Decimal
    lines: Tuple[PricedLine, ...] = field(default_factory=tuple)


def price_line(tier: DurationTier, sel: AccessorySelection) -> PricedLine:
    if sel.quantity < 1:
        raise ValidationError(
            "accessory quantity must be at least 1",
            {"accessory_id": sel.accessory_id, "quantity": sel.quantity},
        )
    days = tier.days if sel.days is None else sel.days
    if days < 1:
        raise ValidationError(
            "accessory day-count must be at least 1",
            {"accessory_id": sel.accessory_id, "days": days},
        )
    # an accessory cannot outlast the cycle rental
    days = min(days, tier.days)
    price = money(sel.price_per_day)
    deposit = money(sel.security_deposit)
    if price < 0 or deposit < 0:
        raise ValidationError("accessory prices cannot be negative", {"accessory_id": sel.accessory_id})
    return PricedLine(
        accessory_id=sel.accessory_id,
        quantity=sel.quantity,
        days=days,
        price_per_day=price,
        security_deposit=deposit,
        total_cost=money(price * sel.quantity * days),
    )


def price_booking(
    tier: Union[DurationTier, str],
    rates: CycleRates,
    selections: Iterable[AccessorySelection] = (),
    discount=Decimal("0"),
    gst_rate: Decimal = GST_RATE,
) -> CostBreakdown:
    tier = as_tier(tier)
    discount = money(discount)
    if discount < 0:
        raise ValidationError("discount cannot be negative", {"discount": str(discount)})

    base_price = rates.base_price(tier)
    lines = tuple(price_line(tier, s) for s in selections)
    accessories_total = money(sum((l.total_cost for l in lines), Decimal("0")))
    subtotal = base_price + accessories_total

    # the discount never turns the subtotal negative
    discount = min(discount, subtotal)
    discounted = subtotal - discount
    gst = round_rupee(discounted * gst_rate)
    rental_total = discounted + gst

    deposit = rates.deposit(tier) + money(
        sum((l.security_deposit * l.quantity for l in lines), Decimal("0"))
    )

    return CostBreakdown(
        tier=tier,
        cycle_rental_cost=base_price,
        accessories_cost=accessories_total,
        subtotal=subtotal,
        discount_amount=discount,
        discounted_subtotal=discounted,
        gst_amount=gst,
        rental_total=rental_total,
        security_deposit=deposit,
        total_amount=rental_total + deposit,
        lines=lines,
    )
