"""Full Shopify resynchronization for one tenant.

WHAT:
    1. Resolve the tenant's active shop connection and decrypt its token
    2. Fetch customers, products and orders concurrently (or load stub data)
    3. Decode every record through the webhook payload models
    4. Upsert customers → products → orders in ONE transaction
    5. Stamp `last_sync_at` (real syncs only) and commit

WHY:
    - Orders reference customers and products by external id, so those are
      written first inside the same transaction; no second pass needed.
    - Fetch failures abort before any write; reconcile failures roll back
      the whole run. A tenant never observes a half-applied sync.
    - Stub mode (no connection / no token / DEV_FAKE_SHOPIFY) keeps local
      development and tests fully offline.

REFERENCES:
    - shopsync/services/shopify_client.py (paginated fetcher)
    - shopsync/services/reconciler.py (upserts)
    - shopsync/workers/arq_worker.py (scheduled sync of every active shop)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopsync.deps import Settings, get_settings
from shopsync.exceptions import PayloadValidationError, ReconciliationError, SyncError
from shopsync.models import InstallStateEnum, ShopConnection, utcnow
from shopsync.security import decrypt_secret
from shopsync.services.payloads import CUSTOMER, ORDER, PRODUCT, decode_payload
from shopsync.services.reconciler import EntityReconciler
from shopsync.services.shopify_client import RESOURCES, ShopifyAPIError, ShopifyClient
from shopsync.services.stub_data import stub_records
from shopsync.telemetry import capture_exception

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ShopConnection, str, Settings], ShopifyClient]

_FAMILY_BY_RESOURCE = {"customers": CUSTOMER, "products": PRODUCT, "orders": ORDER}


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class SyncResult:
    """Summary of one full sync."""
    customers_count: int = 0
    products_count: int = 0
    orders_count: int = 0
    duration_ms: int = 0
    stubbed: bool = False
    skipped_records: int = 0
    shop_domain: Optional[str] = None


@dataclass
class ScheduledSyncReport:
    """Outcome of syncing every active shop."""
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


# =============================================================================
# HELPERS
# =============================================================================

def _default_client_factory(connection: ShopConnection, access_token: str, settings: Settings) -> ShopifyClient:
    return ShopifyClient(
        shop_domain=connection.shop_domain,
        access_token=access_token,
        api_version=settings.SHOPIFY_API_VERSION,
        deadline_seconds=settings.SYNC_DEADLINE_SECONDS,
    )


def _get_active_connection(db: Session, tenant_id: UUID) -> Optional[ShopConnection]:
    """First active connection for the tenant (oldest wins when several exist)."""
    return (
        db.query(ShopConnection)
        .filter(
            ShopConnection.tenant_id == tenant_id,
            ShopConnection.install_state == InstallStateEnum.active,
        )
        .order_by(ShopConnection.created_at, ShopConnection.id)
        .first()
    )


def _get_access_token(connection: ShopConnection) -> Optional[str]:
    if not connection.access_token_enc:
        return None
    try:
        return decrypt_secret(connection.access_token_enc, context=f"shopify:{connection.shop_domain}")
    except ValueError as exc:
        raise SyncError(
            f"Stored token for {connection.shop_domain} cannot be decrypted",
            phase=SyncError.FETCH,
            tenant_id=str(connection.tenant_id),
        ) from exc


def _decode_all(resource: str, records: List[Dict[str, Any]]) -> Tuple[list, int]:
    """Decode raw records, skipping (and counting) invalid ones."""
    family = _FAMILY_BY_RESOURCE[resource]
    decoded = []
    skipped = 0
    for record in records:
        try:
            decoded.append(decode_payload(family, record))
        except PayloadValidationError as e:
            skipped += 1
            logger.warning("[FULL_SYNC] Skipping invalid %s record: %s", family, e.message)
    return decoded, skipped


async def _fetch_resources(client: ShopifyClient) -> Dict[str, List[Dict[str, Any]]]:
    """Fetch every resource concurrently; the first failure cancels the others."""
    tasks = [asyncio.create_task(client.fetch_all(resource)) for resource in RESOURCES]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    errors = [task.exception() for task in tasks if not task.cancelled() and task.exception() is not None]
    for extra in errors[1:]:
        logger.warning("[FULL_SYNC] Additional fetch failure: %s", extra)
    if errors:
        raise errors[0]
    return {resource: task.result() for resource, task in zip(RESOURCES, tasks)}


# =============================================================================
# FULL SYNC
# =============================================================================

async def full_sync(
    db: Session,
    tenant_id: UUID,
    settings: Optional[Settings] = None,
    client_factory: Optional[ClientFactory] = None,
) -> SyncResult:
    """Fetch and reconcile all customers, products and orders for a tenant.

    The caller hands over the session's transaction: full_sync commits on
    success and rolls back on failure.

    Raises:
        SyncError: phase="fetch" (nothing written) or "reconcile" (rolled back)
    """
    settings = settings or get_settings()
    client_factory = client_factory or _default_client_factory
    started = time.monotonic()

    connection = _get_active_connection(db, tenant_id)
    access_token = _get_access_token(connection) if connection is not None else None
    stubbed = settings.DEV_FAKE_SHOPIFY or connection is None or not access_token
    shop_domain = connection.shop_domain if connection is not None else None
    client = None if stubbed else client_factory(connection, access_token, settings)

    # Release the read transaction before network I/O
    db.rollback()

    logger.info(
        "[FULL_SYNC] Starting for tenant %s (shop=%s, stubbed=%s)", tenant_id, shop_domain, stubbed
    )

    # -------------------------------------------------------------------------
    # Fetch phase: no writes
    # -------------------------------------------------------------------------
    try:
        if stubbed:
            raw = {resource: stub_records(resource) for resource in RESOURCES}
        else:
            raw = await _fetch_resources(client)
    except ShopifyAPIError as e:
        logger.error("[FULL_SYNC] Fetch failed for tenant %s (%s): %s", tenant_id, shop_domain, e)
        capture_exception(e, extra={"tenant_id": str(tenant_id), "shop_domain": shop_domain, "phase": "fetch"})
        raise SyncError(f"Fetch failed: {e}", phase=SyncError.FETCH, tenant_id=str(tenant_id)) from e

    customers, skipped_customers = _decode_all("customers", raw["customers"])
    products, skipped_products = _decode_all("products", raw["products"])
    orders, skipped_orders = _decode_all("orders", raw["orders"])

    # -------------------------------------------------------------------------
    # Reconcile phase: one transaction for the whole sync
    # -------------------------------------------------------------------------
    reconciler = EntityReconciler(db, tenant_id)
    try:
        for customer in customers:
            reconciler.apply_customer(customer)
        for product in products:
            reconciler.apply_product(product)
        for order in orders:
            reconciler.apply_order(order, recompute_total=True)

        if not stubbed:
            connection.last_sync_at = utcnow()
        db.commit()
    except (ReconciliationError, SQLAlchemyError) as e:
        db.rollback()
        logger.error("[FULL_SYNC] Reconcile failed for tenant %s, rolled back: %s", tenant_id, e)
        capture_exception(e, extra={"tenant_id": str(tenant_id), "shop_domain": shop_domain, "phase": "reconcile"})
        raise SyncError(f"Reconcile failed: {e}", phase=SyncError.RECONCILE, tenant_id=str(tenant_id)) from e

    result = SyncResult(
        customers_count=len(customers),
        products_count=len(products),
        orders_count=len(orders),
        duration_ms=int((time.monotonic() - started) * 1000),
        stubbed=stubbed,
        skipped_records=skipped_customers + skipped_products + skipped_orders,
        shop_domain=shop_domain,
    )
    logger.info(
        "[FULL_SYNC] Completed for tenant %s: %d customers, %d products, %d orders in %dms%s",
        tenant_id,
        result.customers_count,
        result.products_count,
        result.orders_count,
        result.duration_ms,
        " (stub data)" if stubbed else "",
    )
    return result


async def sync_active_shops(
    db: Session,
    settings: Optional[Settings] = None,
    client_factory: Optional[ClientFactory] = None,
) -> ScheduledSyncReport:
    """Full sync for every tenant with an active shop connection.

    One tenant's failure is logged and reported; the remaining tenants
    still sync.
    """
    tenant_ids = [
        row[0]
        for row in (
            db.query(ShopConnection.tenant_id)
            .filter(ShopConnection.install_state == InstallStateEnum.active)
            .distinct()
            .all()
        )
    ]

    report = ScheduledSyncReport()
    for tenant_id in tenant_ids:
        try:
            await full_sync(db, tenant_id, settings=settings, client_factory=client_factory)
            report.succeeded.append(str(tenant_id))
        except SyncError as e:
            report.failed[str(tenant_id)] = e.message

    logger.info(
        "[FULL_SYNC] Scheduled sync completed: %d succeeded, %d failed",
        len(report.succeeded),
        len(report.failed),
    )
    return report
