"""
Visit lifecycle.

    CHECKED_IN -> IN_SERVICE -> READY_FOR_BILLING -> COMPLETED

CHECKED_IN may also skip straight to READY_FOR_BILLING. Any other move
raises InvalidVisitTransition, moving to the current state is a no-op and
COMPLETED is terminal.
"""

from sqlalchemy import func, select

from app.extensions import db
from app.models import VISIT_STATUSES, Visit
from app.services.exceptions import InvalidVisitTransition, NotFoundError, errmsg
from app.utils.dates import utcnow

CHECKED_IN, IN_SERVICE, READY_FOR_BILLING, COMPLETED = VISIT_STATUSES

TRANSITIONS = {
    CHECKED_IN: (IN_SERVICE, READY_FOR_BILLING),
    IN_SERVICE: (READY_FOR_BILLING,),
    READY_FOR_BILLING: (COMPLETED,),
    COMPLETED: (),
}

_RANK = {status: rank for rank, status in enumerate(VISIT_STATUSES)}


def can_transition(current, target):
    return current == target or target in TRANSITIONS.get(current, ())


def transition(visit, target):
    if visit.status == target:
        return visit
    if target not in TRANSITIONS.get(visit.status, ()):
        raise InvalidVisitTransition(visit.status, target)

    visit.status = target
    if target == COMPLETED:
        visit.completed_at = utcnow()
    return visit


def start_service(visit):
    return transition(visit, IN_SERVICE)


def mark_ready_for_billing(visit):
    return transition(visit, READY_FOR_BILLING)


def complete(visit):
    return transition(visit, COMPLETED)


def promote_for_new_item(visit):
    # one-way: never moves a visit backwards
    if _RANK[visit.status] < _RANK[READY_FOR_BILLING]:
        visit.status = READY_FOR_BILLING
    return visit


def is_completed(visit):
    return visit.status == COMPLETED


def check_in(customer, items=None, notes=None):
    """Open a CHECKED_IN visit for ``customer`` with ``items`` attached as given."""
    visit = Visit(
        customer_id=customer.id,
        customer_name=customer.name,
        customer_phone=customer.phone_number,
        customer_email=customer.email,
        status=CHECKED_IN,
        notes=notes,
    )
    for position, item in enumerate(items or []):
        item.position = position
        visit.items.append(item)

    db.session.add(visit)
    db.session.flush()
    return visit


def get_visit(visit_id, for_update=False):
    stmt = select(Visit).where(Visit.id == visit_id)
    if for_update:
        stmt = stmt.with_for_update()
    visit = db.session.scalars(stmt).first()
    if visit is None:
        raise NotFoundError(errmsg.VISIT_NOT_FOUND, visit_id=visit_id)
    return visit


def list_visits(status=None, customer_id=None):
    stmt = select(Visit).order_by(Visit.created_at.desc(), Visit.id.desc())
    if status:
        stmt = stmt.where(Visit.status == status)
    if customer_id is not None:
        stmt = stmt.where(Visit.customer_id == customer_id)
    return db.session.scalars(stmt).all()


def count_visits_by_status():
    counts = dict.fromkeys(VISIT_STATUSES, 0)
    rows = db.session.execute(
        select(Visit.status, func.count(Visit.id)).group_by(Visit.status)
    ).all()
    for status, count in rows:
        counts[status] = count
    return counts
