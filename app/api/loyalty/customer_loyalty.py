# loyalty.py
from flask import Blueprint, jsonify, request, current_app
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.services import loyalty
from app.services.exceptions import CheckoutError
from app.services.membership import serialize_membership
from app.utils.responses import error_response, json_body, not_an_object_response

loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


def _serialize_entry(entry):
    return {
        "id": entry.id,
        "type": entry.type,
        "points_earned": entry.points_earned,
        "points_deducted": entry.points_deducted,
        "net": entry.net,
        "description": entry.description,
        "visit_id": entry.visit_id,
        "invoice_id": entry.invoice_id,
        "bill_details": entry.bill_details,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def _serialize_standing(customer, points_per_unit):
    return {
        "customer_id": customer.id,
        "name": customer.name,
        "loyalty_points": customer.loyalty_points,
        "redeemable_value": round(max(customer.loyalty_points, 0) / points_per_unit, 2),
        "total_spent": float(customer.total_spent or 0),
        "total_visits": customer.total_visits,
        "average_spend": float(loyalty.average_spend(customer)),
    }


@loyalty_bp.route("/customers", methods=["GET"])
def rank_loyalty_customers():
    """
    Customers ranked by loyalty points, then by total spent
    ---
    tags:
      - Loyalty
    parameters:
      - in: query
        name: limit
        type: integer
        description: Return only the top N customers
    responses:
      200:
        description: Ranked customers
      400:
        description: limit is not a positive integer
    """
    limit = request.args.get("limit")
    if limit is not None:
        try:
            limit = int(limit)
        except ValueError:
            limit = 0
        if limit < 1:
            return jsonify({"status": "error", "message": "limit must be a positive integer"}), 400

    try:
        points_per_unit = current_app.config.get("POINTS_PER_CURRENCY_UNIT", 20)
        customers = loyalty.rank_customers(limit)
        return jsonify({
            "status": "success",
            "count": len(customers),
            "data": [_serialize_standing(c, points_per_unit) for c in customers],
        }), 200

    except Exception as e:
        current_app.logger.error(f"Failed to rank loyalty customers: {e}")
        return jsonify({"status": "error", "message": "Failed to rank customers", "details": str(e)}), 500


@loyalty_bp.route("/customers/<int:customer_id>", methods=["GET"])
def get_loyalty_summary(customer_id):
    """
    Loyalty balance and visit aggregates for a customer
    ---
    tags:
      - Loyalty
    parameters:
      - in: path
        name: customer_id
        type: integer
        required: true
    responses:
      200:
        description: Balance, redeemable value and running totals
      404:
        description: Customer not found
    """
    try:
        customer = loyalty.get_customer(customer_id)
        points_per_unit = current_app.config.get("POINTS_PER_CURRENCY_UNIT", 20)

        data = _serialize_standing(customer, points_per_unit)
        data["membership"] = serialize_membership(customer.membership)

        return jsonify({"status": "success", "data": data}), 200

    except CheckoutError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.error(f"Failed to get loyalty summary for customer {customer_id}: {e}")
        return jsonify({"status": "error", "message": "Failed to get loyalty summary", "details": str(e)}), 500


@loyalty_bp.route("/customers/<int:customer_id>/history", methods=["GET"])
def get_points_history(customer_id):
    """
    Points ledger for a customer, newest first
    ---
    tags:
      - Loyalty
    parameters:
      - in: path
        name: customer_id
        type: integer
        required: true
      - in: query
        name: limit
        type: integer
    responses:
      200:
        description: Ledger entries
      404:
        description: Customer not found
    """
    try:
        loyalty.get_customer(customer_id)
        entries = loyalty.points_history(customer_id, limit=request.args.get("limit", type=int))
        return jsonify({"status": "success", "data": [_serialize_entry(e) for e in entries]}), 200

    except CheckoutError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.error(f"Failed to get points history for customer {customer_id}: {e}")
        return jsonify({"status": "error", "message": "Failed to get points history", "details": str(e)}), 500


@loyalty_bp.route("/customers/<int:customer_id>/adjust", methods=["POST"])
def adjust_customer_points(customer_id):
    """
    Manually add or remove points
    ---
    tags:
      - Loyalty
    parameters:
      - in: path
        name: customer_id
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - points
          properties:
            points:
              type: integer
              description: Signed adjustment, e.g. -50
            reason:
              type: string
    responses:
      200:
        description: Adjustment recorded
      400:
        description: Points missing or zero
      404:
        description: Customer not found
    """
    data = json_body()
    if data is None:
        return not_an_object_response()

    try:
        customer = loyalty.get_customer(customer_id)
        change = loyalty.adjust_points(customer, data.get("points"), data.get("reason"))
        db.session.commit()

        return jsonify({
            "status": "success",
            "message": "Points adjusted",
            "data": {
                "new_balance": change.new_balance,
                "entry": _serialize_entry(change.entry),
            },
        }), 200

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to adjust points for customer {customer_id}: {e}")
        return jsonify({"status": "error", "message": "Failed to adjust points", "details": str(e)}), 500


@loyalty_bp.route("/customers/<int:customer_id>/audit", methods=["GET"])
def audit_customer_ledger(customer_id):
    """
    Compare the stored balance with the sum of the ledger
    ---
    tags:
      - Loyalty
    parameters:
      - in: path
        name: customer_id
        type: integer
        required: true
    responses:
      200:
        description: Audit result; consistent is false when the two disagree
      404:
        description: Customer not found
    """
    try:
        customer = loyalty.get_customer(customer_id)
        report = loyalty.verify_ledger(customer)
        if not report["consistent"]:
            current_app.logger.warning(
                f"Loyalty ledger mismatch for customer {customer_id}: "
                f"balance {report['loyalty_points']}, ledger {report['ledger_total']}"
            )
        return jsonify({"status": "success", "data": report}), 200

    except CheckoutError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.error(f"Failed to audit ledger for customer {customer_id}: {e}")
        return jsonify({"status": "error", "message": "Failed to audit ledger", "details": str(e)}), 500
