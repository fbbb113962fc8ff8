# Front desk visits: check-in, line items, checkout
from flask import Blueprint, jsonify, request, current_app
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import VISIT_STATUSES
from app.services import item_ledger, loyalty, visit_state
from app.services.discounts import parse_discount_mode
from app.services.email_service import email_service, format_checkout_email_data
from app.services.exceptions import CheckoutError
from app.services.invoices import (
    CheckoutResult,
    checkout,
    invoice_for_visit,
    serialize_invoice,
)
from app.services.membership import membership_discount_for
from app.utils.responses import error_response, json_body, not_an_object_response

visits_bp = Blueprint("reception_visits", __name__, url_prefix="/api/reception/visits")


def _serialize_item(item, index):
    return {
        "index": index,
        "id": item.id,
        "kind": item.kind,
        "service_id": item.service_id,
        "product_id": item.product_id,
        "name": item.name,
        "price": float(item.price),
        "quantity": item.quantity,
        "line_total": float(item_ledger.line_total(item)),
        "duration": item.duration,
        "staff_id": item.staff_id,
        "status": item.status,
    }


def _serialize_visit(visit):
    def _money(value):
        return float(value) if value is not None else None

    return {
        "id": visit.id,
        "customer_id": visit.customer_id,
        "customer_name": visit.customer_name,
        "customer_phone": visit.customer_phone,
        "customer_email": visit.customer_email,
        "status": visit.status,
        "items": [_serialize_item(item, i) for i, item in enumerate(visit.items)],
        "subtotal": float(item_ledger.subtotal(visit)),
        "discount_type": visit.discount_type,
        "discount_amount": _money(visit.discount_amount),
        "total_amount": _money(visit.total_amount),
        "paid_amount": _money(visit.paid_amount),
        "coupon_code": visit.coupon_code,
        "points_used": visit.points_used,
        "loyalty_points_earned": visit.loyalty_points_earned,
        "invoice_id": visit.invoice_id,
        "notes": visit.notes,
        "created_at": visit.created_at.isoformat() if visit.created_at else None,
        "completed_at": visit.completed_at.isoformat() if visit.completed_at else None,
    }


def _visit_response(visit, message, code=200):
    return jsonify({"status": "success", "message": message, "data": _serialize_visit(visit)}), code


@visits_bp.route("", methods=["POST"])
def check_in_visit():
    """
    Check a customer in and open a visit
    ---
    tags:
      - Reception
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - customer_id
          properties:
            customer_id:
              type: integer
            notes:
              type: string
            items:
              type: array
              items:
                $ref: '#/definitions/VisitItemInput'
    responses:
      201:
        description: Visit opened in CHECKED_IN
      400:
        description: Invalid item payload
      404:
        description: Customer or catalog item not found
    """
    data = json_body()
    if data is None:
        return not_an_object_response()

    customer_id = data.get("customer_id")
    if customer_id is None:
        return jsonify({"status": "error", "message": "customer_id is required"}), 400

    try:
        customer = loyalty.get_customer(customer_id)
        items = item_ledger.build_items(data.get("items"))
        visit = visit_state.check_in(customer, items, notes=data.get("notes"))
        db.session.commit()
        return _visit_response(visit, "Customer checked in", 201)

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to check in customer {customer_id}: {e}")
        return jsonify({"status": "error", "message": "Failed to check in customer", "details": str(e)}), 500


@visits_bp.route("", methods=["GET"])
def list_visits():
    """
    List visits, newest first
    ---
    tags:
      - Reception
    parameters:
      - in: query
        name: status
        type: string
        enum: [CHECKED_IN, IN_SERVICE, READY_FOR_BILLING, COMPLETED]
      - in: query
        name: customer_id
        type: integer
    responses:
      200:
        description: Visits matching the filters
    """
    status = request.args.get("status")
    if status and status not in VISIT_STATUSES:
        return jsonify({"status": "error", "message": f"Invalid status '{status}'"}), 400

    try:
        visits = visit_state.list_visits(
            status=status, customer_id=request.args.get("customer_id", type=int)
        )
        return jsonify({"status": "success", "data": [_serialize_visit(v) for v in visits]}), 200
    except Exception as e:
        current_app.logger.error(f"Failed to list visits: {e}")
        return jsonify({"status": "error", "message": "Failed to list visits", "details": str(e)}), 500


@visits_bp.route("/counts", methods=["GET"])
def visit_counts():
    """
    Visit count per status for the reception board
    ---
    tags:
      - Reception
    responses:
      200:
        description: Counts keyed by status
    """
    try:
        return jsonify({"status": "success", "data": visit_state.count_visits_by_status()}), 200
    except Exception as e:
        current_app.logger.error(f"Failed to count visits: {e}")
        return jsonify({"status": "error", "message": "Failed to count visits", "details": str(e)}), 500


@visits_bp.route("/<int:visit_id>", methods=["GET"])
def get_visit(visit_id):
    try:
        visit = visit_state.get_visit(visit_id)
        return jsonify({"status": "success", "data": _serialize_visit(visit)}), 200
    except CheckoutError as e:
        return error_response(e)


def _transition(visit_id, move, message):
    try:
        visit = visit_state.get_visit(visit_id)
        move(visit)
        db.session.commit()
        return _visit_response(visit, message)

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to update visit {visit_id}: {e}")
        return jsonify({"status": "error", "message": "Failed to update visit", "details": str(e)}), 500


@visits_bp.route("/<int:visit_id>/start", methods=["POST"])
def start_service(visit_id):
    """
    Move a visit from CHECKED_IN to IN_SERVICE
    ---
    tags:
      - Reception
    parameters:
      - in: path
        name: visit_id
        type: integer
        required: true
    responses:
      200:
        description: Visit is in service
      409:
        description: Visit cannot move to IN_SERVICE from its current status
    """
    return _transition(visit_id, visit_state.start_service, "Service started")


@visits_bp.route("/<int:visit_id>/ready", methods=["POST"])
def mark_ready(visit_id):
    """
    Mark a visit ready for billing
    ---
    tags:
      - Reception
    parameters:
      - in: path
        name: visit_id
        type: integer
        required: true
    responses:
      200:
        description: Visit is READY_FOR_BILLING
      409:
        description: Visit is already completed
    """
    return _transition(visit_id, visit_state.mark_ready_for_billing, "Visit ready for billing")


@visits_bp.route("/<int:visit_id>/items", methods=["POST"])
def add_visit_item(visit_id):
    """
    Add a service or product line to a visit
    ---
    tags:
      - Reception
    parameters:
      - in: path
        name: visit_id
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          $ref: '#/definitions/VisitItemInput'
    responses:
      201:
        description: Item added; the visit moves to READY_FOR_BILLING if it was behind it
      409:
        description: Visit is already completed
    """
    data = json_body()
    if data is None:
        return not_an_object_response()

    try:
        visit = visit_state.get_visit(visit_id)
        item_ledger.add_item(visit, data)
        db.session.commit()
        return _visit_response(visit, "Item added", 201)

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to add item to visit {visit_id}: {e}")
        return jsonify({"status": "error", "message": "Failed to add item", "details": str(e)}), 500


@visits_bp.route("/<int:visit_id>/items/<int:index>", methods=["DELETE"])
def remove_visit_item(visit_id, index):
    try:
        visit = visit_state.get_visit(visit_id)
        item_ledger.remove_item(visit, index)
        db.session.commit()
        return _visit_response(visit, "Item removed")

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to remove item {index} from visit {visit_id}: {e}")
        return jsonify({"status": "error", "message": "Failed to remove item", "details": str(e)}), 500


@visits_bp.route("/<int:visit_id>/items/<int:index>/staff", methods=["PATCH"])
def assign_item_staff(visit_id, index):
    data = json_body()
    if data is None:
        return not_an_object_response()

    if "staff_id" not in data:
        return jsonify({"status": "error", "message": "staff_id is required"}), 400

    try:
        visit = visit_state.get_visit(visit_id)
        item_ledger.assign_staff(visit, index, data.get("staff_id"))
        db.session.commit()
        return _visit_response(visit, "Staff assigned")

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to assign staff on visit {visit_id}: {e}")
        return jsonify({"status": "error", "message": "Failed to assign staff", "details": str(e)}), 500


@visits_bp.route("/<int:visit_id>/items/<int:index>/complete", methods=["PATCH"])
def complete_item_service(visit_id, index):
    try:
        visit = visit_state.get_visit(visit_id)
        item_ledger.complete_service(visit, index)
        db.session.commit()
        return _visit_response(visit, "Service marked completed")

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to complete service on visit {visit_id}: {e}")
        return jsonify({"status": "error", "message": "Failed to complete service", "details": str(e)}), 500


def _notify_owner(invoice):
    owner_email = current_app.config.get("OWNER_EMAIL")
    try:
        email_data = format_checkout_email_data(
            invoice, currency_symbol=current_app.config.get("CURRENCY_SYMBOL", "₹")
        )
        result = email_service.send_checkout_receipt(owner_email, email_data)
        if not result.get("success"):
            current_app.logger.warning(
                f"Checkout email for {invoice.invoice_id} not sent: {result.get('error')}"
            )
    except Exception as e:
        current_app.logger.error(f"Checkout email for {invoice.invoice_id} failed: {e}")


@visits_bp.route("/<int:visit_id>/checkout", methods=["POST"])
def checkout_visit(visit_id):
    """
    Bill a visit and issue its invoice
    ---
    tags:
      - Reception
    parameters:
      - in: path
        name: visit_id
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - amount_paid
          properties:
            discount_type:
              type: string
              enum: [none, percentage, flat, coins, membership, coupon]
            discount_value:
              type: number
              description: Percentage or flat amount
            coins_used:
              type: integer
              description: Loyalty points to redeem (20 points = 1 currency unit)
            coupon_code:
              type: string
            amount_paid:
              type: number
            payment_mode:
              type: string
              example: cash
            notes:
              type: string
    responses:
      201:
        description: Invoice created
        schema:
          $ref: '#/definitions/Invoice'
      200:
        description: Visit was already invoiced; the existing invoice is returned
      400:
        description: Invalid discount, amount or coupon
      404:
        description: Visit, customer or coupon not found
      409:
        description: Visit is not ready for billing
    """
    data = json_body()
    if data is None:
        return not_an_object_response()

    try:
        visit = visit_state.get_visit(visit_id)

        # a retry gets the invoice it already has, whatever the payload says now
        existing = invoice_for_visit(visit.id)
        if existing is not None:
            result = CheckoutResult(invoice=existing, created=False)
        else:
            if data.get("amount_paid") in (None, ""):
                return jsonify({"status": "error", "message": "amount_paid is required"}), 400

            def membership_lookup():
                return membership_discount_for(loyalty.get_customer(visit.customer_id))

            discount_mode = parse_discount_mode(data, membership_lookup=membership_lookup)
            result = checkout(
                visit_id,
                discount_mode=discount_mode,
                amount_paid=data.get("amount_paid"),
                payment_mode=data.get("payment_mode") or "cash",
                notes=data.get("notes"),
            )

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Checkout failed for visit {visit_id}: {e}")
        return jsonify({"status": "error", "message": "Checkout failed", "details": str(e)}), 500

    if result.created:
        _notify_owner(result.invoice)

    return jsonify({
        "status": "success",
        "message": "Checkout completed" if result.created else "Visit already checked out",
        "created": result.created,
        "coupon_usage_recorded": result.coupon_usage_recorded,
        "data": serialize_invoice(result.invoice),
    }), 201 if result.created else 200
