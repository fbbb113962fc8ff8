"""
Discount resolution for visit checkout.

A checkout applies at most one discount mode. Modes are modelled as small
frozen dataclasses so callers can branch on the type instead of comparing
mode strings; ``resolve`` turns a mode plus the visit subtotal into the
amount taken off the bill and the line shown on the invoice.

Coupon amounts are never computed here: capping needs the coupon row, so
the coupon validator resolves them (see ``app.services.coupons``).
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, Optional

from app.services.exceptions import ValidationError, errmsg
from app.utils.money import parse_decimal, to_money

POINTS_PER_CURRENCY_UNIT = 20


@dataclass(frozen=True)
class NoDiscount:
    kind: ClassVar[str] = "none"


@dataclass(frozen=True)
class PercentageDiscount:
    # expected in [0, 100]; not clamped here
    value: Decimal
    kind: ClassVar[str] = "percentage"


@dataclass(frozen=True)
class FlatDiscount:
    # may exceed the subtotal, total then goes negative
    value: Decimal
    kind: ClassVar[str] = "flat"


@dataclass(frozen=True)
class LoyaltyPointsDiscount:
    points: int
    kind: ClassVar[str] = "coins"


@dataclass(frozen=True)
class MembershipDiscount:
    percentage: Decimal
    name: Optional[str] = None
    kind: ClassVar[str] = "membership"


@dataclass(frozen=True)
class CouponDiscount:
    code: str
    kind: ClassVar[str] = "coupon"


DISCOUNT_MODES = (
    NoDiscount,
    PercentageDiscount,
    FlatDiscount,
    LoyaltyPointsDiscount,
    MembershipDiscount,
    CouponDiscount,
)


@dataclass(frozen=True)
class DiscountResult:
    amount: Decimal
    description: str


def format_percentage(value) -> str:
    return f"{Decimal(str(value)).normalize():f}"


def resolve(mode, subtotal, points_per_unit=POINTS_PER_CURRENCY_UNIT) -> DiscountResult:
    """Map a discount mode and subtotal to the discount amount and its label."""
    subtotal = Decimal(str(subtotal))

    if isinstance(mode, NoDiscount) or mode is None:
        return DiscountResult(amount=to_money(0), description="")

    if isinstance(mode, PercentageDiscount):
        return DiscountResult(
            amount=to_money(subtotal * mode.value / 100),
            description=f"Discount ({format_percentage(mode.value)}%)",
        )

    if isinstance(mode, FlatDiscount):
        return DiscountResult(amount=to_money(mode.value), description="Flat Discount")

    if isinstance(mode, LoyaltyPointsDiscount):
        return DiscountResult(
            amount=to_money(Decimal(mode.points) / points_per_unit),
            description="Loyalty Points Discount",
        )

    if isinstance(mode, MembershipDiscount):
        return DiscountResult(
            amount=to_money(subtotal * mode.percentage / 100),
            description=f"Membership Discount ({format_percentage(mode.percentage)}%)",
        )

    if isinstance(mode, CouponDiscount):
        raise ValueError("Coupon discounts are resolved by the coupon validator")

    raise TypeError(f"Unknown discount mode: {mode!r}")


def _non_negative_decimal(raw):
    if raw is None or raw == "":
        raise ValidationError(errmsg.DISCOUNT_VALUE_REQUIRED)
    value = parse_decimal(raw)
    if value is None or value < 0:
        raise ValidationError(errmsg.DISCOUNT_VALUE_INVALID)
    return value


def parse_discount_mode(payload, membership_lookup=None):
    """
    Build a discount mode from a checkout payload.

    Accepted ``discount_type`` values are the front-desk names:
    none, percentage, flat, coins, membership, coupon.
    ``membership_lookup`` is called with no arguments for the membership
    mode and must return ``(percentage, name)`` for the visit's customer.
    """
    payload = payload or {}
    mode_name = (payload.get("discount_type") or "none").strip().lower()

    if mode_name == "none":
        return NoDiscount()

    if mode_name == "percentage":
        return PercentageDiscount(_non_negative_decimal(payload.get("discount_value")))

    if mode_name == "flat":
        return FlatDiscount(_non_negative_decimal(payload.get("discount_value")))

    if mode_name in ("coins", "points"):
        raw = payload.get("coins_used", payload.get("discount_value"))
        points = parse_decimal(raw)
        if points is None or points < 0 or points != points.to_integral_value():
            raise ValidationError(errmsg.POINTS_INVALID)
        return LoyaltyPointsDiscount(int(points))

    if mode_name == "membership":
        if membership_lookup is None:
            raise ValidationError(errmsg.NO_MEMBERSHIP)
        percentage, name = membership_lookup()
        return MembershipDiscount(percentage=Decimal(str(percentage)), name=name)

    if mode_name == "coupon":
        code = (payload.get("coupon_code") or "").strip()
        if not code:
            raise ValidationError(errmsg.COUPON_CODE_REQUIRED)
        return CouponDiscount(code.upper())

    raise ValidationError(errmsg.INVALID_DISCOUNT_MODE, discount_type=mode_name)
