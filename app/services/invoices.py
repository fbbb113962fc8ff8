"""
Visit checkout.

``checkout`` is the single entry point the reception desk calls to bill a
visit. It prices the visit, writes the invoice, the loyalty ledger row, the
completed visit and the customer aggregates in one transaction, and only
then counts the coupon redemption.

A visit is billed at most once: ``invoice.visit_id`` is unique, and a repeat
checkout of an invoiced visit returns the invoice that already exists.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.models import Invoice, InvoiceCounter
from app.services import item_ledger, loyalty, visit_state
from app.services.coupons import (
    coupon_description,
    increment_coupon_usage,
    validate_coupon,
)
from app.services.discounts import (
    POINTS_PER_CURRENCY_UNIT,
    CouponDiscount,
    LoyaltyPointsDiscount,
    NoDiscount,
    resolve,
)
from app.services.exceptions import (
    InvalidVisitTransition,
    ValidationError,
    VisitLockedError,
    errmsg,
)
from app.utils.dates import utcnow
from app.utils.money import parse_decimal, to_money

INVOICE_COUNTER = "invoice"


@dataclass
class CheckoutResult:
    invoice: Invoice
    created: bool
    coupon_usage_recorded: Optional[bool] = None


def next_invoice_id(prefix=None):
    """
    Allocate the next invoice number, e.g. ``VELVET0001``.

    The counter row is bumped with ``value = value + 1`` inside the caller's
    transaction, so the row lock serialises concurrent checkouts and a
    rolled back checkout gives its number back.
    """
    if prefix is None:
        prefix = current_app.config.get("INVOICE_PREFIX", "VELVET")

    result = db.session.execute(
        update(InvoiceCounter)
        .where(InvoiceCounter.name == INVOICE_COUNTER)
        .values(value=InvoiceCounter.value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.add(InvoiceCounter(name=INVOICE_COUNTER, value=1))
        db.session.flush()
        value = 1
    else:
        value = db.session.scalar(
            select(InvoiceCounter.value).where(InvoiceCounter.name == INVOICE_COUNTER)
        )
    return f"{prefix}{value:04d}"


def get_invoice(invoice_id):
    return db.session.scalars(
        select(Invoice).where(Invoice.invoice_id == invoice_id)
    ).first()


def invoice_for_visit(visit_id):
    return db.session.scalars(
        select(Invoice).where(Invoice.visit_id == visit_id)
    ).first()


def invoices_for_customer(customer_id):
    return db.session.scalars(
        select(Invoice)
        .where(Invoice.customer_id == customer_id)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
    ).all()


def invoice_status(total_amount, paid_amount):
    return "paid" if to_money(paid_amount) >= to_money(total_amount) else "partial"


def _amount_paid(raw):
    value = parse_decimal(raw)
    if value is None or value < 0:
        raise ValidationError(errmsg.AMOUNT_PAID_INVALID)
    return to_money(value)


def _price_visit(discount_mode, subtotal):
    points_per_unit = current_app.config.get(
        "POINTS_PER_CURRENCY_UNIT", POINTS_PER_CURRENCY_UNIT
    )
    symbol = current_app.config.get("CURRENCY_SYMBOL", "₹")

    pricing = {
        "discount_type": discount_mode.kind,
        "coupon_code": None,
        "coupon_is_capped": False,
        "coupon_original_discount": None,
        "coupon_applied_discount": None,
        "points_used": 0,
        "points_discount_amount": Decimal("0.00"),
    }

    if isinstance(discount_mode, CouponDiscount):
        quote = validate_coupon(discount_mode.code, subtotal)
        pricing.update(
            discount_amount=quote.discount_amount,
            discount_description=coupon_description(quote.coupon, symbol),
            coupon_code=quote.coupon.code,
            coupon_is_capped=quote.is_capped,
            coupon_original_discount=quote.original_discount_amount,
            coupon_applied_discount=quote.discount_amount,
        )
        return pricing

    result = resolve(discount_mode, subtotal, points_per_unit)
    pricing.update(
        discount_amount=result.amount,
        discount_description=result.description or None,
    )
    if isinstance(discount_mode, LoyaltyPointsDiscount):
        pricing.update(
            points_used=discount_mode.points,
            points_discount_amount=result.amount,
        )
    return pricing


def checkout(visit_id, discount_mode=None, amount_paid=0, payment_mode="cash", notes=None):
    """
    Bill a visit and return a CheckoutResult.

    Validation failures (empty visit, bad amount, rejected coupon, visit not
    ready for billing) raise before anything is written. Persistence errors
    roll the whole checkout back and propagate. The coupon usage count is
    bumped after the commit and a failure there is only logged.
    """
    discount_mode = discount_mode or NoDiscount()
    symbol = current_app.config.get("CURRENCY_SYMBOL", "₹")

    try:
        visit = visit_state.get_visit(visit_id, for_update=True)

        existing = visit.invoice or invoice_for_visit(visit.id)
        if existing is not None:
            current_app.logger.info(
                f"Visit {visit.id} already invoiced as {existing.invoice_id}"
            )
            return CheckoutResult(invoice=existing, created=False)
        if visit_state.is_completed(visit):
            raise VisitLockedError(errmsg.VISIT_COMPLETED, visit_id=visit.id)
        if not visit_state.can_transition(visit.status, visit_state.COMPLETED):
            raise InvalidVisitTransition(visit.status, visit_state.COMPLETED)
        if not visit.items:
            raise ValidationError(errmsg.VISIT_EMPTY, visit_id=visit.id)

        paid = _amount_paid(amount_paid)
        customer = loyalty.get_customer(visit.customer_id)

        subtotal = item_ledger.subtotal(visit)
        pricing = _price_visit(discount_mode, subtotal)
        total = to_money(subtotal - pricing["discount_amount"])
        status = invoice_status(total, paid)

        invoice_id = next_invoice_id()
        items = item_ledger.snapshot_items(visit)

        change = loyalty.apply_checkout(
            customer,
            points_used=pricing["points_used"],
            amount_paid=paid,
            invoice_id=invoice_id,
            visit_id=visit.id,
            bill_details={
                "amount_spent": float(paid),
                "payment_method": payment_mode,
                "discount_given": float(pricing["discount_amount"]),
                "item_count": len(items),
            },
            symbol=symbol,
        )

        invoice = Invoice(
            invoice_id=invoice_id,
            visit_id=visit.id,
            customer_id=customer.id,
            customer_name=visit.customer_name or customer.name,
            customer_phone=visit.customer_phone or customer.phone_number,
            customer_email=visit.customer_email or customer.email,
            items=items,
            subtotal=subtotal,
            total_amount=total,
            paid_amount=paid,
            balance=to_money(total - paid),
            payment_mode=payment_mode,
            status=status,
            loyalty_points_earned=change.delta.earned,
            notes=notes,
            created_at=utcnow(),
            **pricing,
        )
        db.session.add(invoice)

        visit.subtotal = subtotal
        visit.discount_type = pricing["discount_type"]
        visit.discount_amount = pricing["discount_amount"]
        visit.total_amount = total
        visit.paid_amount = paid
        visit.coupon_code = pricing["coupon_code"]
        visit.points_used = pricing["points_used"]
        visit.loyalty_points_earned = change.delta.earned
        visit.invoice_id = invoice_id
        visit_state.complete(visit)

        db.session.commit()

    except IntegrityError:
        db.session.rollback()
        # lost a race with a concurrent checkout of the same visit
        winner = invoice_for_visit(visit_id)
        if winner is None:
            raise
        current_app.logger.warning(
            f"Concurrent checkout of visit {visit_id}; returning {winner.invoice_id}"
        )
        return CheckoutResult(invoice=winner, created=False)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        f"Visit {visit_id} checked out as {invoice.invoice_id} "
        f"(total {invoice.total_amount}, paid {invoice.paid_amount}, {invoice.status})"
    )

    coupon_recorded = None
    if invoice.coupon_code:
        coupon_recorded = increment_coupon_usage(invoice.coupon_code)

    return CheckoutResult(
        invoice=invoice, created=True, coupon_usage_recorded=coupon_recorded
    )


def serialize_invoice(invoice):
    def _money(value):
        return float(value) if value is not None else None

    return {
        "id": invoice.id,
        "invoice_id": invoice.invoice_id,
        "visit_id": invoice.visit_id,
        "customer_id": invoice.customer_id,
        "customer_name": invoice.customer_name,
        "customer_phone": invoice.customer_phone,
        "customer_email": invoice.customer_email,
        "items": invoice.items or [],
        "subtotal": _money(invoice.subtotal),
        "discount_type": invoice.discount_type,
        "discount_description": invoice.discount_description,
        "discount_amount": _money(invoice.discount_amount),
        "coupon_code": invoice.coupon_code,
        "coupon_is_capped": bool(invoice.coupon_is_capped),
        "coupon_original_discount": _money(invoice.coupon_original_discount),
        "coupon_applied_discount": _money(invoice.coupon_applied_discount),
        "points_used": invoice.points_used or 0,
        "points_discount_amount": _money(invoice.points_discount_amount),
        "loyalty_points_earned": invoice.loyalty_points_earned or 0,
        "total_amount": _money(invoice.total_amount),
        "paid_amount": _money(invoice.paid_amount),
        "balance": _money(invoice.balance),
        "payment_mode": invoice.payment_mode,
        "status": invoice.status,
        "notes": invoice.notes,
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }
