# Coupon administration and validation
from flask import Blueprint, jsonify, request, current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db
from app.services import coupons as coupon_service
from app.services.exceptions import CheckoutError, errmsg
from app.utils.dates import utcnow
from app.utils.money import parse_decimal
from app.utils.responses import error_response, json_body, not_an_object_response

coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@coupons_bp.route("", methods=["GET"])
def list_coupons():
    """
    List coupons with their derived status
    ---
    tags:
      - Coupons
    parameters:
      - in: query
        name: active
        type: boolean
        description: Only return coupons whose is_active flag is set
    responses:
      200:
        description: Coupons, newest first
        schema:
          type: object
          properties:
            status:
              type: string
              example: success
            data:
              type: array
              items:
                $ref: '#/definitions/Coupon'
    """
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    try:
        now = utcnow()
        coupons = coupon_service.list_coupons(active_only=active_only)
        return jsonify({
            "status": "success",
            "data": [coupon_service.serialize_coupon(c, now) for c in coupons],
        }), 200
    except Exception as e:
        current_app.logger.error(f"Failed to list coupons: {e}")
        return jsonify({"status": "error", "message": "Failed to list coupons", "details": str(e)}), 500


@coupons_bp.route("", methods=["POST"])
def create_coupon():
    """
    Create a coupon
    ---
    tags:
      - Coupons
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - discount_type
            - discount_value
          properties:
            code:
              type: string
              description: Generated as CPN-XXXXXX when omitted
            description:
              type: string
            discount_type:
              type: string
              enum: [flat, percentage]
            discount_value:
              type: number
            min_order_amount:
              type: number
            max_discount_amount:
              type: number
            valid_from:
              type: string
              format: date-time
            valid_until:
              type: string
              format: date-time
            max_usage_count:
              type: integer
            is_active:
              type: boolean
    responses:
      201:
        description: Coupon created
      400:
        description: Invalid payload or duplicate code
    """
    data = json_body()
    if data is None:
        return not_an_object_response()

    try:
        coupon = coupon_service.create_coupon(data)
        db.session.commit()
        return jsonify({
            "status": "success",
            "message": "Coupon created",
            "data": coupon_service.serialize_coupon(coupon),
        }), 201

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except IntegrityError:
        db.session.rollback()
        return jsonify({"status": "error", "message": errmsg.COUPON_EXISTS}), 400
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to create coupon: {e}")
        return jsonify({"status": "error", "message": "Failed to create coupon", "details": str(e)}), 500


@coupons_bp.route("/validate", methods=["POST"])
def validate_coupon():
    """
    Check a coupon against a subtotal without redeeming it
    ---
    tags:
      - Coupons
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - code
            - subtotal
          properties:
            code:
              type: string
            subtotal:
              type: number
    responses:
      200:
        description: Coupon is redeemable; returns the applied and uncapped discount
      400:
        description: Coupon failed a redemption check
      404:
        description: Coupon not found
    """
    data = json_body()
    if data is None:
        return not_an_object_response()

    subtotal = parse_decimal(data.get("subtotal"))
    if subtotal is None or subtotal < 0:
        return jsonify({"status": "error", "message": "subtotal must be a non-negative number"}), 400

    try:
        quote = coupon_service.validate_coupon(data.get("code"), subtotal)
        return jsonify({
            "status": "success",
            "valid": True,
            "data": {
                "code": quote.coupon.code,
                "discount_amount": float(quote.discount_amount),
                "original_discount_amount": float(quote.original_discount_amount),
                "is_capped": quote.is_capped,
                "description": quote.description,
            },
        }), 200
    except CheckoutError as e:
        return error_response(e)


@coupons_bp.route("/<string:code>", methods=["GET"])
def get_coupon(code):
    coupon = coupon_service.get_coupon(code)
    if coupon is None:
        return jsonify({"status": "error", "message": errmsg.COUPON_NOT_FOUND}), 404
    return jsonify({"status": "success", "data": coupon_service.serialize_coupon(coupon)}), 200


@coupons_bp.route("/<string:code>", methods=["PUT"])
def update_coupon(code):
    """
    Update a coupon; the code and usage count cannot be changed
    ---
    tags:
      - Coupons
    parameters:
      - in: path
        name: code
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          $ref: '#/definitions/Coupon'
    responses:
      200:
        description: Coupon updated
      400:
        description: Invalid field value
      404:
        description: Coupon not found
    """
    data = json_body()
    if data is None:
        return not_an_object_response()

    if not data:
        return jsonify({"status": "error", "message": "JSON body with fields to update is required"}), 400

    try:
        coupon = coupon_service.update_coupon(code, data)
        db.session.commit()
        return jsonify({
            "status": "success",
            "message": "Coupon updated",
            "data": coupon_service.serialize_coupon(coupon),
        }), 200

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to update coupon {code}: {e}")
        return jsonify({"status": "error", "message": "Failed to update coupon", "details": str(e)}), 500


@coupons_bp.route("/<string:code>/toggle", methods=["PATCH"])
def toggle_coupon(code):
    try:
        coupon = coupon_service.toggle_coupon(code)
        db.session.commit()
        state = "activated" if coupon.is_active else "deactivated"
        return jsonify({
            "status": "success",
            "message": f"Coupon {state}",
            "data": coupon_service.serialize_coupon(coupon),
        }), 200

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to toggle coupon {code}: {e}")
        return jsonify({"status": "error", "message": "Failed to toggle coupon", "details": str(e)}), 500


@coupons_bp.route("/<string:code>", methods=["DELETE"])
def delete_coupon(code):
    try:
        coupon_service.delete_coupon(code)
        db.session.commit()
        return jsonify({"status": "success", "message": "Coupon deleted"}), 200

    except CheckoutError as e:
        db.session.rollback()
        return error_response(e)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to delete coupon {code}: {e}")
        return jsonify({"status": "error", "message": "Failed to delete coupon", "details": str(e)}), 500
