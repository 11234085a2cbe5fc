"""Tenant-scoped entity reconciliation (upserts).

WHAT:
    Idempotent create-or-update of customers, products and orders (with their
    line items) keyed on Shopify external ids.

WHY:
    - Webhooks and full sync must converge on the same stored state no matter
      how often, or in which order, a record is delivered.
    - The order + line items aggregate has no native conditional upsert, so
      each upsert is fetch-first then create-or-update inside the caller's
      transaction.

ARCHITECTURE:
    EntityReconciler is bound to ONE tenant at construction. Every query it
    issues filters on that tenant and every row it creates carries it; there
    is no method that accepts another tenant id, which keeps cross-tenant
    reads and writes out of reach of its callers.

    The reconciler flushes but never commits. Webhook dispatch commits one
    entity (or one order aggregate) per transaction; full sync commits once
    for the whole run.

REFERENCES:
    - shopsync/services/webhook_dispatcher.py
    - shopsync/services/sync_orchestrator.py
    - shopsync/models.py (unique (tenant_id, external_id) constraints)
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from shopsync.exceptions import ReconciliationError
from shopsync.models import Customer, Order, OrderLineItem, Product, utcnow
from shopsync.services.payloads import (
    CustomerPayload,
    LineItemPayload,
    OrderPayload,
    ProductPayload,
)

logger = logging.getLogger(__name__)

# Shopify allows empty product titles on drafts and omits them on some line items
UNTITLED_PRODUCT = "Untitled"


class EntityReconciler:
    """Upserts Shopify entities into one tenant's partition.

    Usage:
        reconciler = EntityReconciler(db, tenant_id)
        customer = reconciler.upsert_customer("207119551", "bob@example.com", "Bob", "Norman")
        order = reconciler.upsert_order("450789469", customer, Decimal("59.90"), when, line_items)
        db.commit()
    """

    def __init__(self, db: Session, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id
        # Products resolved in this unit of work, keyed by external id
        self._products: Dict[str, Product] = {}

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def find_customer(self, external_id: str) -> Optional[Customer]:
        return (
            self.db.query(Customer)
            .filter(Customer.tenant_id == self.tenant_id, Customer.external_id == external_id)
            .first()
        )

    def find_product(self, external_id: str) -> Optional[Product]:
        return (
            self.db.query(Product)
            .filter(Product.tenant_id == self.tenant_id, Product.external_id == external_id)
            .first()
        )

    def find_order(self, external_id: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .filter(Order.tenant_id == self.tenant_id, Order.external_id == external_id)
            .first()
        )

    # =========================================================================
    # UPSERTS
    # =========================================================================

    def upsert_customer(
        self,
        external_id: str,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Customer:
        """Create or overwrite the customer's mutable fields. tenant/external id never change."""
        try:
            customer = self.find_customer(external_id)
            if customer is None:
                customer = Customer(tenant_id=self.tenant_id, external_id=external_id)
                self.db.add(customer)
                logger.debug("[RECONCILE] New customer %s for tenant %s", external_id, self.tenant_id)

            customer.email = email
            customer.first_name = first_name
            customer.last_name = last_name
            self.db.flush()
        except SQLAlchemyError as exc:
            raise ReconciliationError(
                f"Customer upsert failed: {exc}", entity="customer", external_id=external_id
            ) from exc
        return customer

    def upsert_product(self, external_id: str, title: Optional[str] = None) -> Product:
        """Create or retitle a product. Empty titles fall back to the placeholder."""
        try:
            product = self._products.get(external_id) or self.find_product(external_id)
            if product is None:
                product = Product(tenant_id=self.tenant_id, external_id=external_id)
                self.db.add(product)

            product.title = (title or "").strip() or UNTITLED_PRODUCT
            self.db.flush()
        except SQLAlchemyError as exc:
            raise ReconciliationError(
                f"Product upsert failed: {exc}", entity="product", external_id=external_id
            ) from exc

        self._products[external_id] = product
        return product

    def upsert_order(
        self,
        external_id: str,
        customer: Optional[Customer],
        total_price: Decimal,
        order_date: datetime,
        line_items: Iterable[LineItemPayload],
        recompute_total: bool = False,
    ) -> Order:
        """Create or update an order and rebuild its line items.

        WHAT:
            - Scalar fields (total, date, customer) are overwritten on update
            - Existing line items are deleted, then the new set is inserted
            - With recompute_total the stored total is sum(quantity * unit_price)
              instead of the externally supplied value (full sync)

        Raises:
            ReconciliationError: storage failure or a concurrent writer bumped
                the order's version counter first
        """
        if customer is not None and customer.tenant_id != self.tenant_id:
            raise ReconciliationError(
                "Customer belongs to a different tenant", entity="order", external_id=external_id
            )

        items = list(line_items)
        try:
            order = self.find_order(external_id)
            if order is None:
                order = Order(tenant_id=self.tenant_id, external_id=external_id)
                self.db.add(order)
                logger.debug("[RECONCILE] New order %s for tenant %s", external_id, self.tenant_id)
            else:
                # Delete-then-recreate: no partial patching of line items
                (
                    self.db.query(OrderLineItem)
                    .filter(
                        OrderLineItem.tenant_id == self.tenant_id,
                        OrderLineItem.order_id == order.id,
                    )
                    .delete(synchronize_session=False)
                )
                self.db.expire(order, ["line_items"])

            order.customer_id = customer.id if customer is not None else None
            order.order_date = order_date
            order.total_price = total_price
            order.updated_at = utcnow()
            self.db.flush()

            computed_total = Decimal("0")
            for item in items:
                product = self._resolve_line_item_product(item) if item.product_id else None
                self.db.add(
                    OrderLineItem(
                        tenant_id=self.tenant_id,
                        order_id=order.id,
                        product_id=product.id if product is not None else None,
                        quantity=item.quantity,
                        unit_price=item.price,
                    )
                )
                computed_total += item.price * item.quantity

            if recompute_total:
                order.total_price = computed_total
            self.db.flush()
        except StaleDataError as exc:
            logger.warning("[RECONCILE] Version conflict on order %s (tenant %s)", external_id, self.tenant_id)
            raise ReconciliationError(
                f"Order {external_id} was modified concurrently", entity="order", external_id=external_id
            ) from exc
        except SQLAlchemyError as exc:
            raise ReconciliationError(
                f"Order upsert failed: {exc}", entity="order", external_id=external_id
            ) from exc

        return order

    # =========================================================================
    # PAYLOAD ENTRYPOINTS (shared by webhooks and full sync)
    # =========================================================================

    def apply_customer(self, payload: CustomerPayload) -> Customer:
        return self.upsert_customer(
            payload.external_id, payload.email, payload.first_name, payload.last_name
        )

    def apply_product(self, payload: ProductPayload) -> Product:
        return self.upsert_product(payload.external_id, payload.title)

    def apply_order(
        self,
        payload: OrderPayload,
        triggered_at: Optional[datetime] = None,
        recompute_total: bool = False,
    ) -> Order:
        """Upsert the embedded customer first (if any), then the order aggregate."""
        customer = self.apply_customer(payload.customer) if payload.customer is not None else None
        return self.upsert_order(
            payload.external_id,
            customer,
            payload.total_price,
            payload.order_date(triggered_at) or utcnow(),
            payload.line_items,
            recompute_total=recompute_total,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _resolve_line_item_product(self, item: LineItemPayload) -> Product:
        """Product for a line item's external product id.

        Reuses a product already resolved in this unit of work or stored for the
        tenant (without retitling it); otherwise creates it from the line title.
        """
        external_id = item.product_id
        product = self._products.get(external_id)
        if product is None:
            product = self.find_product(external_id)
            if product is None:
                return self.upsert_product(external_id, item.title)
            self._products[external_id] = product
        return product
