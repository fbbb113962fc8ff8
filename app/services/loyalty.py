"""
Loyalty points ledger.

Every balance change writes one ``points_history`` row and moves
``customers.loyalty_points`` by the same ``net`` with an atomic SQL update,
so replaying the history of a customer from zero reproduces their balance.
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import func, select, update

from app.extensions import db
from app.models import Customers, PointsHistory
from app.services.exceptions import NotFoundError, ValidationError, errmsg
from app.utils.dates import utcnow
from app.utils.money import format_money, to_money


@dataclass(frozen=True)
class PointsDelta:
    earned: int
    deducted: int

    @property
    def net(self):
        return self.earned - self.deducted

    @property
    def entry_type(self):
        if self.earned and self.deducted:
            return "adjusted"
        if self.earned:
            return "earned"
        if self.deducted:
            return "deducted"
        return None


@dataclass
class LoyaltyChange:
    delta: PointsDelta
    new_balance: int
    entry: Optional[PointsHistory]


def _floor(value):
    return int(Decimal(str(value)).to_integral_value(rounding=ROUND_FLOOR))


def compute_checkout_points(points_used, amount_paid):
    """One point per whole currency unit paid; redeemed points are deducted."""
    return PointsDelta(
        earned=max(_floor(amount_paid or 0), 0),
        deducted=max(_floor(points_used or 0), 0),
    )


def describe_checkout(delta, amount_paid, invoice_id, symbol="₹"):
    paid = format_money(amount_paid, symbol)
    if delta.earned and delta.deducted:
        return (
            f"Used {delta.deducted} points as discount and earned {delta.earned} "
            f"points from {paid} payment for invoice {invoice_id}"
        )
    if delta.deducted:
        return f"Used {delta.deducted} points as discount for invoice {invoice_id}"
    return f"Earned {delta.earned} points from {paid} payment for invoice {invoice_id}"


def get_customer(customer_id):
    customer = db.session.get(Customers, customer_id)
    if customer is None:
        raise NotFoundError(errmsg.CUSTOMER_NOT_FOUND, customer_id=customer_id)
    return customer


def _move_balance(customer, net, spent=None, visits=0):
    values = {"loyalty_points": Customers.loyalty_points + net}
    if spent is not None:
        values["total_spent"] = Customers.total_spent + to_money(spent)
    if visits:
        values["total_visits"] = Customers.total_visits + visits

    db.session.execute(
        update(Customers)
        .where(Customers.id == customer.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(customer, ["loyalty_points", "total_spent", "total_visits"])

    new_balance = customer.loyalty_points
    if new_balance < 0:
        current_app.logger.warning(
            f"Customer {customer.id} loyalty balance is negative ({new_balance})"
        )
    return new_balance


def apply_checkout(
    customer,
    points_used,
    amount_paid,
    invoice_id,
    visit_id=None,
    bill_details=None,
    symbol="₹",
):
    """
    Record the loyalty effect of one checkout.

    Appends at most one ledger row (a combined ``adjusted`` row when points
    were both redeemed and earned) and bumps the customer's balance,
    ``total_spent`` and ``total_visits`` in a single UPDATE. Runs inside
    the caller's transaction; nothing is committed here.
    """
    delta = compute_checkout_points(points_used, amount_paid)

    entry = None
    if delta.entry_type is not None:
        entry = PointsHistory(
            customer_id=customer.id,
            type=delta.entry_type,
            points_earned=delta.earned,
            points_deducted=delta.deducted,
            net=delta.net,
            description=describe_checkout(delta, amount_paid, invoice_id, symbol),
            visit_id=visit_id,
            invoice_id=invoice_id,
            bill_details=bill_details,
            created_at=utcnow(),
        )
        db.session.add(entry)

    new_balance = _move_balance(customer, delta.net, spent=amount_paid, visits=1)
    return LoyaltyChange(delta=delta, new_balance=new_balance, entry=entry)


def adjust_points(customer, delta, reason=None):
    """Manual staff correction of a balance, positive or negative."""
    if isinstance(delta, bool):
        raise ValidationError("Adjustment must be a non-zero whole number")
    try:
        delta = int(delta)
    except (TypeError, ValueError):
        raise ValidationError("Adjustment must be a non-zero whole number")
    if delta == 0:
        raise ValidationError("Adjustment must be a non-zero whole number")

    entry = PointsHistory(
        customer_id=customer.id,
        type="adjusted",
        points_earned=max(delta, 0),
        points_deducted=max(-delta, 0),
        net=delta,
        description=reason or f"Manual adjustment of {delta:+d} points",
        created_at=utcnow(),
    )
    db.session.add(entry)
    new_balance = _move_balance(customer, delta)
    return LoyaltyChange(
        delta=PointsDelta(earned=max(delta, 0), deducted=max(-delta, 0)),
        new_balance=new_balance,
        entry=entry,
    )


def points_history(customer_id, limit=None):
    stmt = (
        select(PointsHistory)
        .where(PointsHistory.customer_id == customer_id)
        .order_by(PointsHistory.created_at.desc(), PointsHistory.id.desc())
    )
    if limit:
        stmt = stmt.limit(limit)
    return db.session.scalars(stmt).all()


def ledger_balance(customer_id):
    return db.session.scalar(
        select(func.coalesce(func.sum(PointsHistory.net), 0)).where(
            PointsHistory.customer_id == customer_id
        )
    )


def verify_ledger(customer):
    ledger_total = int(ledger_balance(customer.id))
    return {
        "customer_id": customer.id,
        "loyalty_points": customer.loyalty_points,
        "ledger_total": ledger_total,
        "consistent": ledger_total == customer.loyalty_points,
    }


def average_spend(customer):
    """Mean amount spent per visit; zero before the first visit."""
    if not customer.total_visits:
        return to_money(0)
    return to_money(Decimal(str(customer.total_spent or 0)) / customer.total_visits)


def rank_customers(limit=None):
    """Customers by points, highest first; ties go to the bigger spender."""
    stmt = select(Customers).order_by(
        Customers.loyalty_points.desc(),
        Customers.total_spent.desc(),
        Customers.id,
    )
    if limit:
        stmt = stmt.limit(limit)
    return db.session.scalars(stmt).all()
