# Invoices issued at checkout
from flask import Blueprint, jsonify, request
from ...extensions import db
from ...models import Customers
from ...services.invoices import get_invoice, invoices_for_customer, serialize_invoice

receipts_bp = Blueprint("payment", __name__, url_prefix="/api/receipts")


@receipts_bp.route("/invoices/<string:invoice_id>", methods=["GET"])
def get_invoice_by_id(invoice_id):
    """
    Fetch one invoice by its number
    ---
    tags:
      - Receipts
    parameters:
      - in: path
        name: invoice_id
        type: string
        required: true
        description: Invoice number, e.g. VELVET0001
    responses:
      200:
        description: Invoice snapshot
        schema:
          $ref: '#/definitions/Invoice'
      404:
        description: Invoice not found
    """
    try:
        invoice = get_invoice(invoice_id)
        if not invoice:
            return (
                jsonify(
                    {
                        "status": "error",
                        "message": f"Invoice {invoice_id} not found",
                    }
                ),
                404,
            )

        return jsonify({"status": "success", "data": serialize_invoice(invoice)}), 200

    except Exception as e:
        db.session.rollback()
        return (
            jsonify(
                {
                    "status": "error",
                    "message": "Internal server error",
                    "details": str(e),
                }
            ),
            500,
        )


@receipts_bp.route("/customers/<int:customer_id>/invoices", methods=["GET"])
def get_customer_invoices(customer_id):
    """
    Returns every invoice issued to a customer, newest first, with
    totals across them. Partial invoices contribute their outstanding
    balance to ``outstanding_balance``.
    ---
    tags:
      - Receipts
    parameters:
      - in: path
        name: customer_id
        type: integer
        required: true
      - in: query
        name: status
        type: string
        enum: [paid, partial]
    responses:
      200:
        description: Invoices for the customer
      404:
        description: Customer not found
    """
    try:
        customer = db.session.get(Customers, customer_id)
        if not customer:
            return (
                jsonify(
                    {
                        "status": "error",
                        "message": f"Customer with id {customer_id} not found",
                    }
                ),
                404,
            )

        invoices = invoices_for_customer(customer_id)
        status = request.args.get("status")
        if status:
            invoices = [inv for inv in invoices if inv.status == status]

        outstanding = sum(
            float(inv.balance) for inv in invoices if inv.status == "partial"
        )

        return (
            jsonify(
                {
                    "status": "success",
                    "customer_id": customer_id,
                    "invoice_count": len(invoices),
                    "total_billed": round(sum(float(inv.total_amount) for inv in invoices), 2),
                    "total_paid": round(sum(float(inv.paid_amount) for inv in invoices), 2),
                    "outstanding_balance": round(outstanding, 2),
                    "invoices": [serialize_invoice(inv) for inv in invoices],
                }
            ),
            200,
        )

    except Exception as e:
        db.session.rollback()
        return (
            jsonify(
                {
                    "status": "error",
                    "message": "Internal server error",
                    "details": str(e),
                }
            ),
            500,
        )
