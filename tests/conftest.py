"""
Pytest configuration and shared fixtures for the salon checkout tests.
"""

import os
from decimal import Decimal

# Must be set before the app modules read their configuration
os.environ["FLASK_ENV"] = "testing"
os.environ["TESTING"] = "True"

import pytest  # noqa: E402
from pathlib import Path  # noqa: E402
from dotenv import load_dotenv  # noqa: E402
from flask import Flask  # noqa: E402

test_env_path = Path(__file__).parent / ".env.test"
if test_env_path.exists():
    load_dotenv(test_env_path, override=True)
    print(f" Loaded test environment from: {test_env_path}")

from main import create_app  # noqa: E402
from app.config import Config, is_production_database  # noqa: E402
from app.extensions import db as database  # noqa: E402
from app.models import (  # noqa: E402
    Base,
    Coupon,
    Customers,
    Membership,
    Product,
    Service,
)
from app.services import item_ledger, visit_state  # noqa: E402


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_TEST_URL") or "sqlite://"
    SECRET_KEY = "test-secret-key-for-testing-only"
    INVOICE_PREFIX = "VELVET"
    CURRENCY_SYMBOL = "₹"
    POINTS_PER_CURRENCY_UNIT = 20
    OWNER_EMAIL = "owner@example.com"
    ENABLE_SCHEDULER = False


@pytest.fixture(scope="session")
def app():
    """Create and configure a test app instance."""
    if is_production_database(TestingConfig.SQLALCHEMY_DATABASE_URI):
        pytest.exit(" DANGER: Database URL appears to be production. Tests aborted.")

    app = create_app(TestingConfig)
    print(f"✅ Running tests against: {app.config['SQLALCHEMY_DATABASE_URI']}")
    yield app


@pytest.fixture
def db(app: Flask):
    """Fresh tables for every test."""
    with app.app_context():
        if not app.config.get("TESTING"):
            pytest.exit(" DANGER: Not in testing mode!")

        Base.metadata.create_all(bind=database.engine)

        yield database

        database.session.remove()
        Base.metadata.drop_all(bind=database.engine)


@pytest.fixture
def db_session(db):
    return db.session


@pytest.fixture
def client(app, db):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def sample_membership(db_session):
    membership = Membership(
        name="Gold",
        discount_percentage=Decimal("15.00"),
        price=Decimal("2999.00"),
        benefits=["15% off every visit", "Priority booking"],
    )
    db_session.add(membership)
    db_session.commit()
    return membership


@pytest.fixture
def sample_customer(db_session):
    customer = Customers(
        name="Asha Rao",
        phone_number="98765-43210",
        email="asha@example.com",
        loyalty_points=0,
        total_spent=Decimal("0.00"),
        total_visits=0,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def member_customer(db_session, sample_membership):
    customer = Customers(
        name="Meera Iyer",
        phone_number="91234-56789",
        email="meera@example.com",
        membership_id=sample_membership.id,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def sample_services(db_session):
    haircut = Service(name="Haircut", price=Decimal("600.00"), duration=45, is_active=True)
    spa = Service(name="Hair Spa", price=Decimal("400.00"), duration=60, is_active=True)
    retired = Service(name="Perm", price=Decimal("1500.00"), duration=120, is_active=False)
    db_session.add_all([haircut, spa, retired])
    db_session.commit()
    return {"haircut": haircut, "spa": spa, "retired": retired}


@pytest.fixture
def sample_products(db_session):
    shampoo = Product(name="Argan Shampoo", price=Decimal("250.00"), stock_qty=10, is_active=True)
    db_session.add(shampoo)
    db_session.commit()
    return {"shampoo": shampoo}


@pytest.fixture
def make_visit(db_session, sample_customer, sample_services):
    """
    Factory for visits. By default the visit holds Haircut (600) and
    Hair Spa (400), a subtotal of 1000, and is READY_FOR_BILLING.
    """

    def _make(customer=None, items=None, ready=True):
        if items is None:
            items = [
                {"kind": "service", "service_id": sample_services["haircut"].id},
                {"kind": "service", "service_id": sample_services["spa"].id},
            ]
        visit = visit_state.check_in(
            customer or sample_customer, item_ledger.build_items(items)
        )
        if ready:
            visit_state.mark_ready_for_billing(visit)
        db_session.commit()
        return visit

    return _make


@pytest.fixture
def make_coupon(db_session):
    def _make(code, discount_type="flat", discount_value="200", **fields):
        coupon = Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(str(discount_value)),
            min_order_amount=Decimal(str(fields.pop("min_order_amount", "0"))),
            current_usage_count=fields.pop("current_usage_count", 0),
            is_active=fields.pop("is_active", True),
            **fields,
        )
        db_session.add(coupon)
        db_session.commit()
        return coupon

    return _make
