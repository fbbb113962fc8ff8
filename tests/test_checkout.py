import pytest
import json
from decimal import Decimal

from sqlalchemy import update

from app.models import Coupon, Customers, Invoice, PointsHistory
from app.services import email_service as email_module
from app.services import loyalty
from app.services.discounts import (
    CouponDiscount,
    FlatDiscount,
    LoyaltyPointsDiscount,
    MembershipDiscount,
    PercentageDiscount,
)
from app.services.email_service import format_checkout_email_data
from app.services.exceptions import (
    CouponValidationError,
    InvalidVisitTransition,
    ValidationError,
)
from app.services.invoices import checkout, next_invoice_id


@pytest.mark.checkout
class TestCheckout:
    """Pricing, persistence and loyalty effects of billing a visit."""

    def test_percentage_discount(self, make_visit):
        """Test a 10% discount on a 1000 visit."""
        visit = make_visit()

        result = checkout(visit.id, PercentageDiscount(Decimal("10")), amount_paid="900")
        invoice = result.invoice

        assert result.created is True
        assert invoice.subtotal == Decimal("1000.00")
        assert invoice.discount_amount == Decimal("100.00")
        assert invoice.discount_description == "Discount (10%)"
        assert invoice.total_amount == Decimal("900.00")
        assert invoice.balance == Decimal("0.00")
        assert invoice.status == "paid"
        assert invoice.discount_type == "percentage"

    def test_flat_coupon(self, make_visit, make_coupon, db_session):
        """Test a flat coupon above its minimum order."""
        coupon = make_coupon("FLAT200", "flat", "200", min_order_amount="500")
        visit = make_visit()

        result = checkout(visit.id, CouponDiscount("FLAT200"), amount_paid="800")

        assert result.invoice.discount_amount == Decimal("200.00")
        assert result.invoice.total_amount == Decimal("800.00")
        assert result.invoice.coupon_code == "FLAT200"
        assert result.invoice.coupon_is_capped is False
        assert result.invoice.discount_description == "Coupon: FLAT200 (₹200.00)"
        assert result.coupon_usage_recorded is True
        db_session.refresh(coupon)
        assert coupon.current_usage_count == 1

    def test_capped_percentage_coupon(self, make_visit, make_coupon):
        """Test a percentage coupon held to its cap."""
        make_coupon("PCT20", "percentage", "20", max_discount_amount=Decimal("150"))
        visit = make_visit()

        invoice = checkout(visit.id, CouponDiscount("PCT20"), amount_paid="850").invoice

        assert invoice.coupon_original_discount == Decimal("200.00")
        assert invoice.coupon_applied_discount == Decimal("150.00")
        assert invoice.coupon_is_capped is True
        assert invoice.discount_amount == Decimal("150.00")
        assert invoice.total_amount == Decimal("850.00")

    def test_loyalty_points_redemption(self, make_visit, sample_customer, db_session):
        """Test paying part of a visit with loyalty points."""
        loyalty.adjust_points(sample_customer, 300, "Opening balance")
        db_session.commit()
        visit = make_visit()

        invoice = checkout(visit.id, LoyaltyPointsDiscount(100), amount_paid="995").invoice

        assert invoice.discount_amount == Decimal("5.00")
        assert invoice.points_used == 100
        assert invoice.points_discount_amount == Decimal("5.00")
        assert invoice.total_amount == Decimal("995.00")
        assert invoice.loyalty_points_earned == 995

        db_session.refresh(sample_customer)
        assert sample_customer.loyalty_points == 1195
        assert sample_customer.total_visits == 1
        assert sample_customer.total_spent == Decimal("995.00")

        entry = db_session.query(PointsHistory).filter_by(invoice_id=invoice.invoice_id).one()
        assert entry.type == "adjusted"
        assert entry.net == 895
        assert entry.visit_id == visit.id
        assert entry.bill_details["item_count"] == 2
        assert loyalty.verify_ledger(sample_customer)["consistent"] is True

    def test_repeat_checkout_returns_existing_invoice(self, make_visit, sample_customer, db_session):
        """Test a second checkout returns the first invoice untouched."""
        visit = make_visit()

        first = checkout(visit.id, amount_paid="1000")
        second = checkout(visit.id, PercentageDiscount(Decimal("50")), amount_paid="500")

        assert second.created is False
        assert second.invoice.invoice_id == first.invoice.invoice_id
        assert second.invoice.total_amount == Decimal("1000.00")
        assert db_session.query(Invoice).count() == 1
        assert db_session.query(PointsHistory).count() == 1

        db_session.refresh(sample_customer)
        assert sample_customer.loyalty_points == 1000
        assert sample_customer.total_visits == 1

    def test_concurrent_balance_and_usage_updates_survive_checkout(
        self, make_visit, make_coupon, sample_customer, db_session
    ):
        """Test checkout adds to balance and usage written after they were read."""
        coupon = make_coupon("FLAT200")
        loyalty.adjust_points(sample_customer, 300, "Opening balance")
        db_session.commit()
        visit = make_visit()

        assert sample_customer.loyalty_points == 300
        assert coupon.current_usage_count == 0

        # a second desk moves both counters; the loaded rows are now stale
        db_session.execute(
            update(Customers)
            .where(Customers.id == sample_customer.id)
            .values(loyalty_points=Customers.loyalty_points + 50)
            .execution_options(synchronize_session=False)
        )
        db_session.execute(
            update(Coupon)
            .where(Coupon.code == "FLAT200")
            .values(current_usage_count=Coupon.current_usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        assert sample_customer.loyalty_points == 300

        result = checkout(visit.id, CouponDiscount("FLAT200"), amount_paid="800")

        assert result.coupon_usage_recorded is True
        db_session.refresh(sample_customer)
        db_session.refresh(coupon)
        assert sample_customer.loyalty_points == 300 + 50 + 800
        assert coupon.current_usage_count == 2

        report = loyalty.verify_ledger(sample_customer)
        assert report["ledger_total"] == 300 + 800
        assert report["loyalty_points"] - report["ledger_total"] == 50

    def test_membership_discount(self, make_visit, member_customer):
        """Test the membership tier percentage is applied."""
        visit = make_visit(customer=member_customer)

        invoice = checkout(
            visit.id, MembershipDiscount(Decimal("15.00"), "Gold"), amount_paid="850"
        ).invoice

        assert invoice.discount_amount == Decimal("150.00")
        assert invoice.discount_description == "Membership Discount (15%)"
        assert invoice.discount_type == "membership"

    def test_flat_discount_above_subtotal(self, make_visit):
        """Test a flat discount larger than the subtotal is kept as is."""
        visit = make_visit()

        invoice = checkout(visit.id, FlatDiscount(Decimal("1200")), amount_paid="0").invoice

        assert invoice.total_amount == Decimal("-200.00")
        assert invoice.balance == Decimal("-200.00")
        assert invoice.status == "paid"

    def test_partial_payment(self, make_visit):
        """Test an underpaid invoice is partial with a balance."""
        visit = make_visit()

        invoice = checkout(visit.id, amount_paid="400.50", payment_mode="upi").invoice

        assert invoice.status == "partial"
        assert invoice.balance == Decimal("599.50")
        assert invoice.payment_mode == "upi"
        assert invoice.loyalty_points_earned == 400

    def test_overpayment_leaves_negative_balance(self, make_visit):
        """Test overpaying leaves a negative balance."""
        invoice = checkout(make_visit().id, amount_paid="1100").invoice
        assert invoice.status == "paid"
        assert invoice.balance == Decimal("-100.00")

    def test_invoice_ids_are_sequential(self, make_visit):
        """Test invoice numbers count up from VELVET0001."""
        first = checkout(make_visit().id, amount_paid="1000").invoice
        second = checkout(make_visit().id, amount_paid="1000").invoice

        assert first.invoice_id == "VELVET0001"
        assert second.invoice_id == "VELVET0002"

    def test_counter_custom_prefix(self, db_session):
        """Test invoice numbers with a custom prefix."""
        assert next_invoice_id("GLOW") == "GLOW0001"
        assert next_invoice_id("GLOW") == "GLOW0002"

    def test_visit_is_completed_with_billing_fields(self, make_visit, db_session):
        """Test the visit is completed and carries the billing totals."""
        visit = make_visit()

        invoice = checkout(visit.id, PercentageDiscount(Decimal("10")), amount_paid="900").invoice
        db_session.refresh(visit)

        assert visit.status == "COMPLETED"
        assert visit.completed_at is not None
        assert visit.invoice_id == invoice.invoice_id
        assert visit.subtotal == Decimal("1000.00")
        assert visit.discount_amount == Decimal("100.00")
        assert visit.total_amount == Decimal("900.00")
        assert visit.paid_amount == Decimal("900.00")
        assert visit.loyalty_points_earned == 900

    def test_invoice_snapshots_items(self, make_visit, sample_services, db_session):
        """Test the invoice keeps item prices from checkout time."""
        visit = make_visit()
        invoice = checkout(visit.id, amount_paid="1000").invoice

        sample_services["haircut"].price = Decimal("999.00")
        db_session.commit()

        assert [item["name"] for item in invoice.items] == ["Haircut", "Hair Spa"]
        assert invoice.items[0]["price"] == 600.0
        assert invoice.customer_name == "Asha Rao"

    def test_visit_must_be_ready_for_billing(self, make_visit, db_session):
        """Test a visit still checked in cannot be billed."""
        visit = make_visit(ready=False)

        with pytest.raises(InvalidVisitTransition):
            checkout(visit.id, amount_paid="1000")
        assert db_session.query(Invoice).count() == 0

    def test_empty_visit_cannot_be_billed(self, make_visit, db_session):
        """Test a visit with no items cannot be billed."""
        visit = make_visit(items=[])

        with pytest.raises(ValidationError):
            checkout(visit.id, amount_paid="0")
        assert db_session.query(Invoice).count() == 0

    @pytest.mark.parametrize("amount", ["-1", "abc", None])
    def test_invalid_amount_paid(self, make_visit, amount):
        """Test missing or negative payments are rejected."""
        with pytest.raises(ValidationError):
            checkout(make_visit().id, amount_paid=amount)

    def test_rejected_coupon_writes_nothing(self, make_visit, make_coupon, sample_customer, db_session):
        """Test a rejected coupon leaves no trace of the checkout."""
        make_coupon("FLAT200", min_order_amount="5000")
        visit = make_visit()

        with pytest.raises(CouponValidationError):
            checkout(visit.id, CouponDiscount("FLAT200"), amount_paid="1000")

        db_session.refresh(visit)
        db_session.refresh(sample_customer)
        assert visit.status == "READY_FOR_BILLING"
        assert db_session.query(Invoice).count() == 0
        assert db_session.query(PointsHistory).count() == 0
        assert sample_customer.loyalty_points == 0
        assert next_invoice_id() == "VELVET0001"

    def test_exhausted_coupon_after_checkout_is_reported(self, make_visit, make_coupon, db_session, monkeypatch):
        """Test a failed usage count is reported but keeps the invoice."""
        make_coupon("ONCE", max_usage_count=1)
        visit = make_visit()

        monkeypatch.setattr(
            "app.services.invoices.increment_coupon_usage", lambda code: False
        )
        result = checkout(visit.id, CouponDiscount("ONCE"), amount_paid="800")

        assert result.created is True
        assert result.coupon_usage_recorded is False
        assert db_session.query(Invoice).count() == 1

    def test_email_payload(self, make_visit, make_coupon):
        """Test the receipt email fields for a capped coupon."""
        make_coupon("PCT20", "percentage", "20", max_discount_amount=Decimal("150"))
        invoice = checkout(make_visit().id, CouponDiscount("PCT20"), amount_paid="850").invoice

        data = format_checkout_email_data(invoice)

        assert data["invoice_id"] == "VELVET0001"
        assert data["total_amount"] == "₹850.00"
        assert data["has_discount"] is True
        assert data["discount_label"] == "Coupon: PCT20 (20%) (capped from ₹200.00)"
        assert data["items"][0]["line_total"] == "₹600.00"


@pytest.mark.checkout
class TestCheckoutApi:
    """Checkout and receipt endpoints."""

    def _checkout(self, client, visit_id, payload):
        return client.post(
            f"/api/reception/visits/{visit_id}/checkout",
            data=json.dumps(payload),
            content_type="application/json",
        )

    def test_checkout_then_repeat(self, client, make_visit):
        """Test checkout returns 201, then 200 on a repeat."""
        visit = make_visit()

        response = self._checkout(
            client, visit.id, {"discount_type": "percentage", "discount_value": 10, "amount_paid": 900}
        )
        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["created"] is True
        assert data["data"]["invoice_id"] == "VELVET0001"
        assert data["data"]["total_amount"] == 900.0

        response = self._checkout(client, visit.id, {"amount_paid": 900})
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["created"] is False
        assert data["data"]["invoice_id"] == "VELVET0001"

    def test_repeat_checkout_ignores_new_payload(self, client, make_visit):
        """Test a retry returns the invoice even when its discount no longer applies."""
        visit = make_visit()
        response = self._checkout(client, visit.id, {"amount_paid": 1000})
        assert response.status_code == 201

        response = self._checkout(
            client, visit.id, {"amount_paid": 1000, "discount_type": "membership"}
        )
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["created"] is False
        assert data["data"]["invoice_id"] == "VELVET0001"

        response = self._checkout(client, visit.id, {"discount_type": "bogo"})
        assert response.status_code == 200
        assert json.loads(response.data)["data"]["invoice_id"] == "VELVET0001"

    @pytest.mark.parametrize("suffix", ["/checkout", "/items", "/items/0/staff"])
    def test_array_body_rejected(self, client, make_visit, suffix):
        """Test a JSON array body gets a 400 instead of a server error."""
        visit = make_visit()
        method = client.patch if suffix.endswith("staff") else client.post
        response = method(
            f"/api/reception/visits/{visit.id}{suffix}",
            data=json.dumps([1, 2]),
            content_type="application/json",
        )
        assert response.status_code == 400
        assert json.loads(response.data)["message"] == "Request body must be a JSON object"

    def test_check_in_array_body_rejected(self, client):
        """Test check-in rejects a JSON array body."""
        response = client.post(
            "/api/reception/visits", data=json.dumps([1]), content_type="application/json"
        )
        assert response.status_code == 400

    def test_coupon_checkout(self, client, make_visit, make_coupon):
        """Test checkout with a coupon code."""
        make_coupon("FLAT200", min_order_amount="500")
        visit = make_visit()

        response = self._checkout(
            client, visit.id, {"discount_type": "coupon", "coupon_code": "flat200", "amount_paid": 800}
        )

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["coupon_usage_recorded"] is True
        assert data["data"]["coupon_code"] == "FLAT200"

    def test_membership_checkout(self, client, make_visit, member_customer):
        """Test checkout with the customer's membership."""
        visit = make_visit(customer=member_customer)

        response = self._checkout(
            client, visit.id, {"discount_type": "membership", "amount_paid": 850}
        )

        assert response.status_code == 201
        assert json.loads(response.data)["data"]["discount_amount"] == 150.0

    def test_membership_checkout_without_tier(self, client, make_visit):
        """Test membership checkout for a customer without a tier."""
        response = self._checkout(
            client, make_visit().id, {"discount_type": "membership", "amount_paid": 1000}
        )
        assert response.status_code == 400

    def test_amount_paid_required(self, client, make_visit):
        """Test checkout requires amount_paid."""
        response = self._checkout(client, make_visit().id, {"discount_type": "none"})
        assert response.status_code == 400

    def test_rejected_coupon(self, client, make_visit, make_coupon):
        """Test a rejected coupon reports its reason."""
        make_coupon("OFF", is_active=False)
        response = self._checkout(
            client, make_visit().id, {"discount_type": "coupon", "coupon_code": "OFF", "amount_paid": 800}
        )

        assert response.status_code == 400
        assert json.loads(response.data)["reason"] == "inactive"

    def test_not_ready(self, client, make_visit):
        """Test checkout of a visit not ready for billing."""
        response = self._checkout(client, make_visit(ready=False).id, {"amount_paid": 1000})
        assert response.status_code == 409

    def test_unknown_visit(self, client, db_session):
        """Test checkout of a visit that does not exist."""
        assert self._checkout(client, 4040, {"amount_paid": 10}).status_code == 404

    def test_email_failure_does_not_fail_checkout(self, client, make_visit, monkeypatch):
        """Test a failing email does not fail the checkout."""
        def boom(to_email, email_data):
            raise RuntimeError("smtp down")

        monkeypatch.setattr(email_module.email_service, "send_checkout_receipt", boom)

        response = self._checkout(client, make_visit().id, {"amount_paid": 1000})

        assert response.status_code == 201

    def test_owner_is_notified(self, client, make_visit, monkeypatch):
        """Test the owner is emailed once per invoice."""
        sent = []

        def record(to_email, email_data):
            sent.append((to_email, email_data["invoice_id"]))
            return {"success": True}

        monkeypatch.setattr(email_module.email_service, "send_checkout_receipt", record)

        visit = make_visit()
        self._checkout(client, visit.id, {"amount_paid": 1000})
        self._checkout(client, visit.id, {"amount_paid": 1000})

        assert sent == [("owner@example.com", "VELVET0001")]

    def test_receipt_endpoints(self, client, make_visit, sample_customer):
        """Test invoice lookup and customer invoice totals."""
        checkout(make_visit().id, amount_paid="1000")
        checkout(make_visit().id, amount_paid="300")

        response = client.get("/api/receipts/invoices/VELVET0002")
        assert response.status_code == 200
        assert json.loads(response.data)["data"]["status"] == "partial"

        assert client.get("/api/receipts/invoices/VELVET9999").status_code == 404

        response = client.get(f"/api/receipts/customers/{sample_customer.id}/invoices")
        data = json.loads(response.data)
        assert data["invoice_count"] == 2
        assert data["total_billed"] == 2000.0
        assert data["total_paid"] == 1300.0
        assert data["outstanding_balance"] == 700.0
        assert [inv["invoice_id"] for inv in data["invoices"]] == ["VELVET0002", "VELVET0001"]

        response = client.get(
            f"/api/receipts/customers/{sample_customer.id}/invoices?status=paid"
        )
        assert json.loads(response.data)["invoice_count"] == 1

        assert client.get("/api/receipts/customers/999/invoices").status_code == 404
