from decimal import Decimal

from app.extensions import db
from app.models import Membership
from app.services.exceptions import NotFoundError, ValidationError, errmsg


def get_membership(tier_id):
    """Return the membership tier for ``tier_id`` or raise NotFoundError."""
    membership = db.session.get(Membership, tier_id)
    if membership is None:
        raise NotFoundError(errmsg.MEMBERSHIP_NOT_FOUND, membership_id=tier_id)
    return membership


def membership_discount_for(customer):
    """
    Return ``(discount_percentage, name)`` for the customer's tier.

    Raises ValidationError when the customer holds no membership.
    """
    if customer is None or customer.membership_id is None:
        raise ValidationError(errmsg.NO_MEMBERSHIP)

    membership = customer.membership or get_membership(customer.membership_id)
    return Decimal(str(membership.discount_percentage or 0)), membership.name


def serialize_membership(membership):
    if membership is None:
        return None
    return {
        "id": membership.id,
        "name": membership.name,
        "discount_percentage": float(membership.discount_percentage or 0),
        "price": float(membership.price) if membership.price is not None else None,
        "benefits": membership.benefits or [],
    }
