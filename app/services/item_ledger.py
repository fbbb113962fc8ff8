"""Service and product lines attached to a visit."""

from decimal import Decimal

from app.extensions import db
from app.models import Product, Service, VisitItem
from app.services import visit_state
from app.services.exceptions import (
    NotFoundError,
    ValidationError,
    VisitLockedError,
    errmsg,
)
from app.utils.money import parse_decimal, to_money

ITEM_KINDS = ("service", "product")


def _quantity(raw):
    if raw is None or raw == "":
        return 1
    if isinstance(raw, bool):
        raise ValidationError(errmsg.QUANTITY_POSITIVE)
    try:
        quantity = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(errmsg.QUANTITY_POSITIVE)
    if quantity < 1 or quantity != Decimal(str(raw)):
        raise ValidationError(errmsg.QUANTITY_POSITIVE)
    return quantity


def _catalog_row(kind, catalog_id):
    model = Service if kind == "service" else Product
    row = db.session.get(model, catalog_id)
    if row is None or not row.is_active:
        raise NotFoundError(errmsg.CATALOG_ITEM_NOT_FOUND, kind=kind, id=catalog_id)
    return row


def build_item(data):
    """
    Build an unsaved VisitItem from a request payload.

    A line either references the catalog (``service_id`` / ``product_id``),
    in which case name, price and duration are copied from the catalog row,
    or it is ad hoc and must carry its own ``name`` and ``price``. An
    explicit ``price`` always overrides the catalog price.
    """
    data = data or {}
    kind = (data.get("kind") or "").strip().lower()
    if kind not in ITEM_KINDS:
        raise ValidationError(errmsg.INVALID_ITEM_KIND)

    item = VisitItem(
        kind=kind,
        quantity=_quantity(data.get("quantity")),
        status="pending" if kind == "service" else "added",
    )

    catalog_id = data.get(f"{kind}_id")
    if catalog_id is not None:
        row = _catalog_row(kind, catalog_id)
        item.name = row.name
        item.price = to_money(row.price)
        if kind == "service":
            item.service_id = row.id
            item.duration = row.duration
        else:
            item.product_id = row.id
    else:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Item name is required")
        if data.get("price") in (None, ""):
            raise ValidationError("Item price is required")
        item.name = name
        item.duration = data.get("duration")

    if data.get("price") not in (None, ""):
        price = parse_decimal(data.get("price"))
        if price is None or price < 0:
            raise ValidationError(errmsg.PRICE_NEGATIVE)
        item.price = to_money(price)

    if kind == "service" and data.get("staff_id") is not None:
        item.staff_id = data.get("staff_id")

    return item


def build_items(payloads):
    return [build_item(data) for data in (payloads or [])]


def _ensure_open(visit):
    if visit_state.is_completed(visit):
        raise VisitLockedError(errmsg.VISIT_COMPLETED, visit_id=visit.id)


def _item_at(visit, index):
    try:
        index = int(index)
    except (TypeError, ValueError):
        raise NotFoundError(errmsg.ITEM_NOT_FOUND, index=index)
    if index < 0 or index >= len(visit.items):
        raise NotFoundError(errmsg.ITEM_NOT_FOUND, index=index)
    return visit.items[index]


def add_item(visit, item):
    """Append ``item`` (a VisitItem or payload dict) and promote the visit to billing."""
    _ensure_open(visit)
    if isinstance(item, dict):
        item = build_item(item)

    item.position = len(visit.items)
    visit.items.append(item)
    visit_state.promote_for_new_item(visit)
    db.session.flush()
    return item


def remove_item(visit, index):
    _ensure_open(visit)
    item = _item_at(visit, index)
    visit.items.remove(item)
    for position, remaining in enumerate(visit.items):
        remaining.position = position
    db.session.flush()
    return item


def assign_staff(visit, index, staff_id):
    _ensure_open(visit)
    item = _item_at(visit, index)
    if item.kind != "service":
        raise ValidationError(errmsg.ITEM_NOT_SERVICE)
    item.staff_id = staff_id
    db.session.flush()
    return item


def complete_service(visit, index):
    _ensure_open(visit)
    item = _item_at(visit, index)
    if item.kind != "service":
        raise ValidationError(errmsg.ITEM_NOT_SERVICE)
    item.status = "completed"
    db.session.flush()
    return item


def line_total(item):
    return to_money(Decimal(str(item.price)) * item.quantity)


def subtotal(visit):
    """Sum of price x quantity over every line on the visit."""
    return to_money(sum((line_total(item) for item in visit.items), Decimal("0")))


def snapshot_items(visit):
    """Plain-dict copy of the lines, stored on the invoice."""
    return [
        {
            "kind": item.kind,
            "service_id": item.service_id,
            "product_id": item.product_id,
            "name": item.name,
            "price": float(to_money(item.price)),
            "quantity": item.quantity,
            "line_total": float(line_total(item)),
            "duration": item.duration,
            "staff_id": item.staff_id,
            "status": item.status,
        }
        for item in visit.items
    ]
