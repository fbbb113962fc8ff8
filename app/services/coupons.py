"""
Coupon validation and administration.

``validate_coupon`` runs the redemption checks in a fixed order and stops at
the first failure, so the error a cashier sees is always the earliest rule
the coupon breaks. Validation never touches the usage counter; the counter
is bumped by ``increment_coupon_usage`` once a checkout has committed.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import or_, select, update

from app.extensions import db
from app.models import Coupon
from app.services.exceptions import (
    CouponValidationError,
    NotFoundError,
    ValidationError,
    errmsg,
)
from app.utils.dates import parse_iso_datetime, utcnow
from app.utils.money import format_money, parse_decimal, to_money

COUPON_TYPES = ("flat", "percentage")
_FLAG_VALUES = {"true": True, "1": True, "false": False, "0": False}


def normalize_code(code):
    return (code or "").strip().upper()


@dataclass
class CouponQuote:
    coupon: Coupon
    discount_amount: Decimal
    original_discount_amount: Decimal
    is_capped: bool

    @property
    def description(self):
        return coupon_description(self.coupon)


def coupon_description(coupon, symbol="₹"):
    if coupon.discount_type == "percentage":
        value = f"{Decimal(str(coupon.discount_value)).normalize():f}%"
    else:
        value = format_money(coupon.discount_value, symbol)
    return f"Coupon: {coupon.code} ({value})"


def get_coupon(code, for_update=False) -> Optional[Coupon]:
    stmt = select(Coupon).where(Coupon.code == normalize_code(code))
    if for_update:
        stmt = stmt.with_for_update()
    return db.session.scalars(stmt).first()


def raw_coupon_discount(coupon, subtotal):
    if coupon.discount_type == "percentage":
        return to_money(Decimal(str(subtotal)) * Decimal(str(coupon.discount_value)) / 100)
    return to_money(coupon.discount_value)


def validate_coupon(code, subtotal, now=None) -> CouponQuote:
    """
    Check that ``code`` can be redeemed against ``subtotal``.

    Checks run in order: existence, active flag, validity window, minimum
    order, usage cap. Raises CouponValidationError (NotFoundError for an
    unknown code) on the first failing check. On success the returned quote
    carries the applied amount, the uncapped amount and whether the
    coupon's maximum discount cut it down.
    """
    normalized = normalize_code(code)
    if not normalized:
        raise ValidationError(errmsg.COUPON_CODE_REQUIRED)

    coupon = get_coupon(normalized)
    if coupon is None:
        raise NotFoundError(errmsg.COUPON_NOT_FOUND, code=normalized)

    if not coupon.is_active:
        raise CouponValidationError(errmsg.COUPON_INACTIVE, "inactive", code=normalized)

    now = now or utcnow()
    if coupon.valid_from is not None and now < coupon.valid_from:
        raise CouponValidationError(
            errmsg.COUPON_NOT_YET_VALID, "not_yet_valid", code=normalized
        )
    if coupon.valid_until is not None and now > coupon.valid_until:
        raise CouponValidationError(errmsg.COUPON_EXPIRED, "expired", code=normalized)

    subtotal = to_money(subtotal)
    min_order = to_money(coupon.min_order_amount)
    if subtotal < min_order:
        raise CouponValidationError(
            errmsg.COUPON_MIN_ORDER.format(amount=format_money(min_order)),
            "min_order",
            code=normalized,
            min_order_amount=float(min_order),
        )

    if (
        coupon.max_usage_count is not None
        and (coupon.current_usage_count or 0) >= coupon.max_usage_count
    ):
        raise CouponValidationError(
            errmsg.COUPON_USAGE_LIMIT, "usage_limit", code=normalized
        )

    raw = raw_coupon_discount(coupon, subtotal)
    if coupon.max_discount_amount is not None and raw > to_money(coupon.max_discount_amount):
        return CouponQuote(
            coupon=coupon,
            discount_amount=to_money(coupon.max_discount_amount),
            original_discount_amount=raw,
            is_capped=True,
        )

    return CouponQuote(
        coupon=coupon,
        discount_amount=raw,
        original_discount_amount=raw,
        is_capped=False,
    )


def increment_coupon_usage(code) -> bool:
    """
    Count one redemption of ``code`` in its own transaction.

    The increment is a single conditional UPDATE so concurrent checkouts
    cannot lose a redemption or push the count past ``max_usage_count``.
    Failures are logged and reported as False; they never propagate.
    """
    normalized = normalize_code(code)
    try:
        result = db.session.execute(
            update(Coupon)
            .where(Coupon.code == normalized)
            .where(
                or_(
                    Coupon.max_usage_count.is_(None),
                    Coupon.current_usage_count < Coupon.max_usage_count,
                )
            )
            .values(current_usage_count=Coupon.current_usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to increment usage for coupon {normalized}: {e}")
        return False

    if result.rowcount != 1:
        current_app.logger.warning(
            f"Coupon {normalized} usage not incremented (missing or at its usage cap)"
        )
        return False
    return True


def coupon_status(coupon, now=None):
    """Display label used by the coupon listing."""
    now = now or utcnow()
    if not coupon.is_active:
        return "Inactive"
    if coupon.valid_until is not None and now > coupon.valid_until:
        return "Expired"
    if coupon.valid_from is not None and now < coupon.valid_from:
        return "Scheduled"
    if (
        coupon.max_usage_count is not None
        and (coupon.current_usage_count or 0) >= coupon.max_usage_count
    ):
        return "Exhausted"
    return "Active"


def generate_coupon_code():
    while True:
        code = f"CPN-{uuid.uuid4().hex[:6].upper()}"
        if get_coupon(code) is None:
            return code


def _parse_datetime(raw, field):
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO 8601 datetime")


def _optional_int(raw, field):
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if value != Decimal(str(raw)):
        raise ValidationError(f"{field} must be an integer")
    if value < 0:
        raise ValidationError(f"{field} must be non-negative")
    return value


def _flag(raw, field):
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str) and raw.strip().lower() in _FLAG_VALUES:
        return _FLAG_VALUES[raw.strip().lower()]
    raise ValidationError(f"{field} must be true or false")



def _apply_coupon_fields(coupon, data):
    if "discount_type" in data:
        discount_type = (data.get("discount_type") or "").strip().lower()
        if discount_type not in COUPON_TYPES:
            raise ValidationError(errmsg.COUPON_TYPE_INVALID)
        coupon.discount_type = discount_type

    if "discount_value" in data:
        value = parse_decimal(data.get("discount_value"))
        if value is None or value <= 0:
            raise ValidationError(errmsg.COUPON_VALUE_POSITIVE)
        coupon.discount_value = to_money(value)

    if "min_order_amount" in data:
        raw = data.get("min_order_amount")
        value = Decimal("0") if raw in (None, "") else parse_decimal(raw)
        if value is None or value < 0:
            raise ValidationError("min_order_amount must be a non-negative number")
        coupon.min_order_amount = to_money(value)

    if "max_discount_amount" in data:
        raw = data.get("max_discount_amount")
        if raw in (None, ""):
            coupon.max_discount_amount = None
        else:
            value = parse_decimal(raw)
            if value is None or value < 0:
                raise ValidationError("max_discount_amount must be a non-negative number")
            coupon.max_discount_amount = to_money(value)

    if "valid_from" in data:
        coupon.valid_from = _parse_datetime(data.get("valid_from"), "valid_from")
    if "valid_until" in data:
        coupon.valid_until = _parse_datetime(data.get("valid_until"), "valid_until")
    if (
        coupon.valid_from is not None
        and coupon.valid_until is not None
        and coupon.valid_until < coupon.valid_from
    ):
        raise ValidationError("valid_until must be after valid_from")

    if "max_usage_count" in data:
        coupon.max_usage_count = _optional_int(data.get("max_usage_count"), "max_usage_count")

    if "description" in data:
        coupon.description = data.get("description")

    if "is_active" in data:
        coupon.is_active = _flag(data.get("is_active"), "is_active")


def create_coupon(data):
    """Create a coupon from an admin payload. The caller commits."""
    data = data or {}
    code = normalize_code(data.get("code")) or generate_coupon_code()
    if get_coupon(code) is not None:
        raise ValidationError(errmsg.COUPON_EXISTS, code=code)

    for field in ("discount_type", "discount_value"):
        if data.get(field) in (None, ""):
            raise ValidationError(f"{field} is required")

    coupon = Coupon(
        code=code,
        min_order_amount=Decimal("0.00"),
        current_usage_count=0,
        is_active=True,
    )
    _apply_coupon_fields(coupon, data)
    db.session.add(coupon)
    db.session.flush()
    return coupon


def update_coupon(code, data):
    coupon = get_coupon(code)
    if coupon is None:
        raise NotFoundError(errmsg.COUPON_NOT_FOUND, code=normalize_code(code))
    # code and usage count are not editable
    fields = {k: v for k, v in (data or {}).items() if k not in ("code", "current_usage_count")}
    _apply_coupon_fields(coupon, fields)
    db.session.flush()
    return coupon


def toggle_coupon(code):
    coupon = get_coupon(code)
    if coupon is None:
        raise NotFoundError(errmsg.COUPON_NOT_FOUND, code=normalize_code(code))
    coupon.is_active = not coupon.is_active
    db.session.flush()
    return coupon


def delete_coupon(code):
    coupon = get_coupon(code)
    if coupon is None:
        raise NotFoundError(errmsg.COUPON_NOT_FOUND, code=normalize_code(code))
    db.session.delete(coupon)
    db.session.flush()


def list_coupons(active_only=False):
    stmt = select(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc())
    if active_only:
        stmt = stmt.where(Coupon.is_active.is_(True))
    return db.session.scalars(stmt).all()


def serialize_coupon(coupon, now=None):
    return {
        "id": coupon.id,
        "code": coupon.code,
        "description": coupon.description,
        "discount_type": coupon.discount_type,
        "discount_value": float(coupon.discount_value),
        "min_order_amount": float(coupon.min_order_amount or 0),
        "max_discount_amount": (
            float(coupon.max_discount_amount)
            if coupon.max_discount_amount is not None
            else None
        ),
        "valid_from": coupon.valid_from.isoformat() if coupon.valid_from else None,
        "valid_until": coupon.valid_until.isoformat() if coupon.valid_until else None,
        "max_usage_count": coupon.max_usage_count,
        "current_usage_count": coupon.current_usage_count or 0,
        "is_active": bool(coupon.is_active),
        "status": coupon_status(coupon, now),
    }
