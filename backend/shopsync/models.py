"""SQLAlchemy ORM models and enums.

This module defines the tenant-partitioned ingestion schema using UUID primary
keys and explicit relationships. Every commerce entity carries `tenant_id` and
its natural key from Shopify is unique per tenant, never globally, so two
tenants may hold colliding external ids without ever seeing each other's rows.
"""

import uuid
from datetime import datetime, timezone
import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums ---------------------------------------------------------

class InstallStateEnum(str, enum.Enum):
    pending = "pending"
    active = "active"
    revoked = "revoked"


# Tenancy -------------------------------------------------------

class Tenant(Base):
    """Root aggregate. Every other row is owned by exactly one tenant."""
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    shop_connections = relationship("ShopConnection", back_populates="tenant", cascade="all, delete-orphan")

    def __str__(self):
        return f"{self.name} ({self.id})"


class ShopConnection(Base):
    """Link between one Shopify storefront and one tenant.

    WHAT: Holds the (encrypted) Admin API token, install state and sync bookkeeping
    WHY: Webhooks only carry the shop domain; this row is how a delivery is
         resolved to its tenant. The domain is unique across ALL tenants.
    """
    __tablename__ = "shop_connections"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)

    shop_domain = Column(String, nullable=False, unique=True)  # mystore.myshopify.com
    access_token_enc = Column(String, nullable=True)  # Fernet ciphertext (shopsync.security)
    scopes = Column(String, nullable=True)
    install_state = Column(
        Enum(InstallStateEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=InstallStateEnum.pending,
    )
    last_sync_at = Column(DateTime, nullable=True)  # Last successful non-stub full sync

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", back_populates="shop_connections")

    def __str__(self):
        return f"{self.shop_domain} [{self.install_state.value if self.install_state else 'unknown'}]"


# Commerce entities ---------------------------------------------

class Customer(Base):
    """Shopper record. external_id is NULL for locally created customers."""
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_customer_tenant_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    external_id = Column(String, nullable=True)

    email = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    orders = relationship("Order", back_populates="customer")

    def __str__(self):
        return self.email or f"customer {self.external_id or self.id}"


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_product_tenant_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    external_id = Column(String, nullable=True)

    title = Column(String, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __str__(self):
        return self.title


class Order(Base):
    """Order header. Owns its line items.

    WHAT: Total, date and optional customer for one Shopify order
    WHY: `version` is a SQLAlchemy version counter; two writers racing on the
         same order make the slower UPDATE fail instead of silently interleaving
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_order_tenant_external"),
        CheckConstraint("total_price >= 0", name="ck_order_total_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    external_id = Column(String, nullable=True)

    # Nullable for guest checkouts
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True)

    total_price = Column(Numeric(18, 4), nullable=False, default=0)
    order_date = Column(DateTime, nullable=False)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="orders")
    line_items = relationship(
        "OrderLineItem",
        back_populates="order",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    def __str__(self):
        return f"order {self.external_id or self.id} ({self.total_price})"


class OrderLineItem(Base):
    __tablename__ = "order_line_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_line_item_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_line_item_price_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=True)

    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(18, 4), nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow)

    order = relationship("Order", back_populates="line_items")
    product = relationship("Product")


# Webhook ledger ------------------------------------------------

class WebhookEvent(Base):
    """Dedupe ledger entry, one per distinct Shopify event id.

    WHAT: Event id, topic, shop and a sha256 of the raw body
    WHY: The unique constraint on event_id is the only thing standing between
         concurrent sender retries and double application. The body itself
         is deliberately not stored.
    """
    __tablename__ = "webhook_events"

    event_id = Column(String, primary_key=True)
    topic = Column(String, nullable=False)
    shop_domain = Column(String, nullable=False, index=True)
    body_sha256 = Column(String(64), nullable=False)
    triggered_at = Column(DateTime, nullable=True)
    received_at = Column(DateTime, default=utcnow, nullable=False)

    def __str__(self):
        return f"{self.topic} {self.event_id}"
