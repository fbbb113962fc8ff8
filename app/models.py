from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DECIMAL,
    DateTime,
    Enum,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()
metadata = Base.metadata

VISIT_STATUSES = ("CHECKED_IN", "IN_SERVICE", "READY_FOR_BILLING", "COMPLETED")


class Membership(Base):
    __tablename__ = "membership"
    __table_args__ = (Index("membership_name", "name", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(100), nullable=False)
    discount_percentage = mapped_column(
        DECIMAL(5, 2), nullable=False, default=0, server_default=text("'0.00'")
    )
    price = mapped_column(DECIMAL(10, 2))
    benefits = mapped_column(JSON)
    created_at = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    customers: Mapped[List["Customers"]] = relationship(
        "Customers", uselist=True, back_populates="membership"
    )


class Customers(Base):
    __tablename__ = "customers"
    __table_args__ = (
        ForeignKeyConstraint(
            ["membership_id"],
            ["membership.id"],
            ondelete="SET NULL",
            name="fk_customer_membership",
        ),
        Index("customer_phone", "phone_number"),
        Index("fk_customer_membership", "membership_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(150), nullable=False)
    phone_number = mapped_column(String(30))
    email = mapped_column(String(255))
    membership_id = mapped_column(Integer)
    loyalty_points = mapped_column(
        Integer, nullable=False, default=0, server_default=text("'0'")
    )
    total_spent = mapped_column(
        DECIMAL(12, 2), nullable=False, default=0, server_default=text("'0.00'")
    )
    total_visits = mapped_column(
        Integer, nullable=False, default=0, server_default=text("'0'")
    )
    created_at = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at = mapped_column(
        DateTime,
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
    )

    membership: Mapped[Optional["Membership"]] = relationship(
        "Membership", back_populates="customers"
    )
    visit: Mapped[List["Visit"]] = relationship(
        "Visit", uselist=True, back_populates="customer"
    )
    points_history: Mapped[List["PointsHistory"]] = relationship(
        "PointsHistory",
        uselist=True,
        back_populates="customer",
        order_by="PointsHistory.id",
    )


class Service(Base):
    __tablename__ = "service"

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    name = mapped_column(String(100), nullable=False)
    price = mapped_column(DECIMAL(10, 2), nullable=False, server_default=text("'0.00'"))
    duration = mapped_column(Integer, nullable=False, server_default=text("'30'"))
    is_active = mapped_column(Boolean, nullable=False, default=True)
    created_at = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


class Product(Base):
    __tablename__ = "product"

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    name = mapped_column(String(100), nullable=False)
    price = mapped_column(DECIMAL(10, 2), nullable=False, server_default=text("'0.00'"))
    stock_qty = mapped_column(Integer, nullable=False, default=0)
    is_active = mapped_column(Boolean, nullable=False, default=True)
    created_at = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


class Visit(Base):
    __tablename__ = "visit"
    __table_args__ = (
        ForeignKeyConstraint(
            ["customer_id"], ["customers.id"], name="fk_visit_customer"
        ),
        Index("visit_customer", "customer_id", "created_at"),
        Index("idx_visit_status", "status"),
    )

    id = mapped_column(Integer, primary_key=True)
    customer_id = mapped_column(Integer, nullable=False)
    # snapshot of the customer taken at check-in
    customer_name = mapped_column(String(150))
    customer_phone = mapped_column(String(30))
    customer_email = mapped_column(String(255))
    status = mapped_column(
        Enum(*VISIT_STATUSES, name="visit_status"),
        nullable=False,
        default="CHECKED_IN",
    )
    subtotal = mapped_column(DECIMAL(10, 2))
    discount_type = mapped_column(String(20))
    discount_amount = mapped_column(DECIMAL(10, 2))
    total_amount = mapped_column(DECIMAL(10, 2))
    paid_amount = mapped_column(DECIMAL(10, 2))
    coupon_code = mapped_column(String(50))
    points_used = mapped_column(Integer)
    loyalty_points_earned = mapped_column(Integer)
    invoice_id = mapped_column(String(32))
    notes = mapped_column(Text)
    created_at = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at = mapped_column(
        DateTime,
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
    )
    completed_at = mapped_column(DateTime)

    customer: Mapped["Customers"] = relationship("Customers", back_populates="visit")
    items: Mapped[List["VisitItem"]] = relationship(
        "VisitItem",
        uselist=True,
        back_populates="visit",
        order_by="VisitItem.position",
        cascade="all, delete-orphan",
    )
    invoice: Mapped[Optional["Invoice"]] = relationship(
        "Invoice", uselist=False, back_populates="visit"
    )


class VisitItem(Base):
    __tablename__ = "visit_item"
    __table_args__ = (
        ForeignKeyConstraint(
            ["visit_id"], ["visit.id"], ondelete="CASCADE", name="fk_vi_visit"
        ),
        Index("vi_visit_position", "visit_id", "position"),
    )

    id = mapped_column(Integer, primary_key=True)
    visit_id = mapped_column(Integer, nullable=False)
    position = mapped_column(Integer, nullable=False, default=0)
    kind = mapped_column(Enum("service", "product", name="visit_item_kind"), nullable=False)
    service_id = mapped_column(Integer)
    product_id = mapped_column(Integer)
    name = mapped_column(String(100), nullable=False)
    price = mapped_column(DECIMAL(10, 2), nullable=False)
    quantity = mapped_column(Integer, nullable=False, default=1)
    duration = mapped_column(Integer)
    staff_id = mapped_column(Integer)
    status = mapped_column(
        Enum("pending", "completed", "added", name="visit_item_status"),
        nullable=False,
    )
    created_at = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    visit: Mapped["Visit"] = relationship("Visit", back_populates="items")


class Coupon(Base):
    __tablename__ = "coupon"
    __table_args__ = (Index("coupon_code", "code", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    code = mapped_column(String(50), nullable=False)
    description = mapped_column(String(255))
    discount_type = mapped_column(
        Enum("flat", "percentage", name="coupon_discount_type"), nullable=False
    )
    discount_value = mapped_column(DECIMAL(10, 2), nullable=False)
    min_order_amount = mapped_column(
        DECIMAL(10, 2), nullable=False, default=0, server_default=text("'0.00'")
    )
    max_discount_amount = mapped_column(DECIMAL(10, 2))
    valid_from = mapped_column(DateTime)
    valid_until = mapped_column(DateTime)
    max_usage_count = mapped_column(Integer)
    current_usage_count = mapped_column(
        Integer, nullable=False, default=0, server_default=text("'0'")
    )
    is_active = mapped_column(Boolean, nullable=False, default=True)
    created_at = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at = mapped_column(
        DateTime,
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
    )


class InvoiceCounter(Base):
    __tablename__ = "invoice_counter"
    __table_args__ = {"comment": "Single-row sequence used to allocate invoice ids."}

    name = mapped_column(String(32), primary_key=True)
    value = mapped_column(Integer, nullable=False, default=0)


class Invoice(Base):
    __tablename__ = "invoice"
    __table_args__ = (
        ForeignKeyConstraint(["visit_id"], ["visit.id"], name="fk_inv_visit"),
        ForeignKeyConstraint(
            ["customer_id"], ["customers.id"], name="fk_inv_customer"
        ),
        Index("invoice_number", "invoice_id", unique=True),
        Index("invoice_visit", "visit_id", unique=True),
        Index("invoice_customer", "customer_id", "created_at"),
    )

    id = mapped_column(Integer, primary_key=True)
    invoice_id = mapped_column(String(32), nullable=False)
    visit_id = mapped_column(Integer, nullable=False)
    customer_id = mapped_column(Integer, nullable=False)
    customer_name = mapped_column(String(150))
    customer_phone = mapped_column(String(30))
    customer_email = mapped_column(String(255))
    items = mapped_column(JSON, nullable=False)
    subtotal = mapped_column(DECIMAL(10, 2), nullable=False)
    discount_type = mapped_column(String(20), nullable=False, default="none")
    discount_description = mapped_column(String(255))
    discount_amount = mapped_column(DECIMAL(10, 2), nullable=False, default=0)
    coupon_code = mapped_column(String(50))
    coupon_is_capped = mapped_column(Boolean, nullable=False, default=False)
    coupon_original_discount = mapped_column(DECIMAL(10, 2))
    coupon_applied_discount = mapped_column(DECIMAL(10, 2))
    points_used = mapped_column(Integer, nullable=False, default=0)
    points_discount_amount = mapped_column(DECIMAL(10, 2), nullable=False, default=0)
    loyalty_points_earned = mapped_column(Integer, nullable=False, default=0)
    total_amount = mapped_column(DECIMAL(10, 2), nullable=False)
    paid_amount = mapped_column(DECIMAL(10, 2), nullable=False)
    balance = mapped_column(DECIMAL(10, 2), nullable=False)
    payment_mode = mapped_column(String(30))
    status = mapped_column(Enum("paid", "partial", name="invoice_status"), nullable=False)
    notes = mapped_column(Text)
    created_at = mapped_column(DateTime, nullable=False)

    visit: Mapped["Visit"] = relationship("Visit", back_populates="invoice")


class PointsHistory(Base):
    __tablename__ = "points_history"
    __table_args__ = (
        ForeignKeyConstraint(
            ["customer_id"],
            ["customers.id"],
            ondelete="CASCADE",
            name="fk_ph_customer",
        ),
        Index("ph_customer", "customer_id", "created_at"),
        Index("ph_invoice", "invoice_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    customer_id = mapped_column(Integer, nullable=False)
    type = mapped_column(
        Enum("earned", "deducted", "adjusted", name="points_history_type"),
        nullable=False,
    )
    points_earned = mapped_column(Integer, nullable=False, default=0)
    points_deducted = mapped_column(Integer, nullable=False, default=0)
    net = mapped_column(
        Integer,
        nullable=False,
        comment="points_earned - points_deducted",
    )
    description = mapped_column(String(255))
    visit_id = mapped_column(Integer)
    invoice_id = mapped_column(String(32))
    bill_details = mapped_column(JSON)
    created_at = mapped_column(DateTime, nullable=False)

    customer: Mapped["Customers"] = relationship(
        "Customers", back_populates="points_history"
    )
