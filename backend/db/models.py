"""
StockLevels Database Models

Tables:
  1. products                  - Product catalog with on-hand stock quantity
  2. purchase_orders           - Inbound purchase orders (current status only)
  3. purchase_order_products   - Product <-> purchase order lines
  4. api_clients               - Client credentials exchanged for bearer tokens

Timestamps are stored as naive UTC.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    TypeDecorator,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


PO_STATUSES = ("created", "confirmed", "pending_delivery", "done", "cancelled")


# ─── 1. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    sku = Column(String(100), nullable=False, unique=True)
    name = Column(String(255))
    stock_quantity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_product_stock_non_negative"),
        Index("ix_products_stock_sku", "stock_quantity", "sku"),
    )

    # One-directional index into the association; lines hold no back-reference.
    order_lines = relationship("PurchaseOrderLine", viewonly=True)


# ─── 2. Purchase Orders ────────────────────────────────────────────────────


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    po_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expected_delivery_at = Column(DateTime)
    actual_delivery_at = Column(DateTime)
    status = Column(String(20), nullable=False, default="created")

    __table_args__ = (
        Index("ix_po_status_expected", "status", "expected_delivery_at"),
        CheckConstraint(
            "status IN ('created', 'confirmed', 'pending_delivery', 'done', 'cancelled')",
            name="ck_po_status",
        ),
    )

    lines = relationship("PurchaseOrderLine", cascade="all, delete-orphan")


# ─── 3. Purchase Order Lines ───────────────────────────────────────────────


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_products"

    po_id = Column(GUID(), ForeignKey("purchase_orders.po_id"), primary_key=True)
    product_id = Column(GUID(), ForeignKey("products.product_id"), primary_key=True)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)

    __table_args__ = (
        Index("ix_po_lines_product", "product_id"),
        CheckConstraint("quantity > 0", name="ck_po_line_quantity_positive"),
        CheckConstraint("subtotal >= 0", name="ck_po_line_subtotal_non_negative"),
    )


# ─── 4. API Clients ────────────────────────────────────────────────────────


class ApiClient(Base):
    __tablename__ = "api_clients"

    client_id = Column(String(100), primary_key=True)
    name = Column(String(255), nullable=False)
    secret_hash = Column(String(255), nullable=False)
    scopes = Column(String(255), nullable=False, default="stock:read")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
