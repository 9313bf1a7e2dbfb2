# ============================================================
# coupons.py — Coupon Validator
# ------------------------------------------------------------
# validate_coupon() is a preview: it never changes used_count.
# redeem_coupon() is called inside the booking transaction and
# increments used_count with one conditional UPDATE guarded by
# the usage cap.
# ============================================================
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_, update
from sqlmodel import Session

from .clock import as_utc
from .errors import ExpiredCoupon, InvalidCoupon, MinimumOrderNotMet, UsageLimitReached
from .models import Coupon, CouponUsage, DiscountType
from .pricing import money, round_rupee
from .repository import CatalogRepository


@dataclass(frozen=True)
class DiscountResult:
    coupon_id: int
    code: str
    discount_type: str
    discount_value: Decimal
    discount_amount: Decimal


def compute_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    subtotal = money(subtotal)
    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        return min(round_rupee(subtotal * Decimal(coupon.discount_value) / 100), subtotal)
    return min(money(coupon.discount_value), subtotal)


def check_coupon(coupon: Coupon, subtotal: Decimal, now: datetime):
    """Policy checks after lookup, in order; the first failure wins."""
    if coupon.valid_from and as_utc(coupon.valid_from) > as_utc(now):
        raise InvalidCoupon(
            f"coupon {coupon.code} is not valid yet",
            {"code": coupon.code, "valid_from": as_utc(coupon.valid_from).isoformat()},
        )
    if coupon.valid_until and as_utc(coupon.valid_until) < as_utc(now):
        raise ExpiredCoupon(
            f"coupon {coupon.code} has expired",
            {"code": coupon.code, "valid_until": as_utc(coupon.valid_until).isoformat()},
        )
    if coupon.min_order_amount is not None and money(subtotal) < money(coupon.min_order_amount):
        raise MinimumOrderNotMet(
            f"minimum order of {money(coupon.min_order_amount)} not met",
            {
                "code": coupon.code,
                "min_order_amount": str(money(coupon.min_order_amount)),
                "subtotal": str(money(subtotal)),
            },
        )
    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        raise UsageLimitReached(
            f"coupon {coupon.code} has reached its usage limit",
            {"code": coupon.code, "max_uses": coupon.max_uses, "used_count": coupon.used_count},
        )


def validate_coupon(session: Session, code: str, subtotal: Decimal, now: datetime) -> DiscountResult:
    coupon = CatalogRepository(session).find_coupon(code or "")
    if not coupon:
        raise InvalidCoupon(f"invalid coupon code {code!r}", {"code": code})
    check_coupon(coupon, subtotal, now)
    return DiscountResult(
        coupon_id=coupon.id,
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=money(coupon.discount_value),
        discount_amount=compute_discount(coupon, subtotal),
    )


def redeem_coupon(
    session: Session,
    discount: DiscountResult,
    booking_id: int,
    user_id: int,
    now: datetime,
) -> CouponUsage:
    res = session.execute(
        update(Coupon)
        .where(
            Coupon.id == discount.coupon_id,
            Coupon.is_active == True,  # noqa: E712
            or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
        )
        .values(used_count=Coupon.used_count + 1)
    )
    if res.rowcount != 1:
        coupon = session.get(Coupon, discount.coupon_id, populate_existing=True)
        if coupon is None or not coupon.is_active:
            raise InvalidCoupon(f"coupon {discount.code} is no longer active", {"code": discount.code})
        raise UsageLimitReached(
            f"coupon {discount.code} has reached its usage limit",
            {
                "code": discount.code,
                "max_uses": coupon.max_uses,
                "used_count": coupon.used_count,
            },
        )
    usage = CouponUsage(
        coupon_id=discount.coupon_id,
        booking_id=booking_id,
        user_id=user_id,
        discount_amount=discount.discount_amount,
        used_at=now,
    )
    session.add(usage)
    return usage
