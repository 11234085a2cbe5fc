"""Shopify full-sync trigger endpoint.

WHAT:
    POST /sync/{tenant_id}/trigger runs (or enqueues) a full resync of the
    tenant's customers, products and orders.

WHY:
    Operators and the scheduler need a way to repair a tenant on demand
    (after an outage, a reinstall, or a missed webhook window). The route is
    thin: all logic lives in shopsync/services/sync_orchestrator.py.

REFERENCES:
    - shopsync/services/sync_orchestrator.py
    - shopsync/workers/jobs.py (sync.full job)
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from shopsync.database import get_db
from shopsync.deps import Settings, get_job_queue, get_settings, require_internal_token
from shopsync.exceptions import SyncError
from shopsync.models import Tenant
from shopsync.services.sync_orchestrator import full_sync
from shopsync.workers.queue import SYNC_FULL, JobQueue

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/sync",
    tags=["Shopify Sync"],
    dependencies=[Depends(require_internal_token)],
)


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class SyncResultResponse(BaseModel):
    """Response for a completed full sync."""
    tenant_id: UUID
    shop_domain: Optional[str] = Field(None, description="Synced shop, None when stub data was used")
    customers_count: int = Field(description="Customers reconciled")
    products_count: int = Field(description="Products reconciled")
    orders_count: int = Field(description="Orders reconciled")
    skipped_records: int = Field(0, description="Records rejected by payload validation")
    duration_ms: int
    stubbed: bool = Field(description="True when deterministic stub data was used instead of Shopify")


class SyncEnqueuedResponse(BaseModel):
    """Response when the sync was handed to the job queue."""
    tenant_id: UUID
    job_id: Optional[str] = None
    status: str = "enqueued"


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/{tenant_id}/trigger", response_model=SyncResultResponse)
async def trigger_full_sync(
    tenant_id: UUID,
    background: bool = Query(False, description="Enqueue a sync.full job instead of running inline"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    queue: JobQueue = Depends(get_job_queue),
):
    """Run a full sync for one tenant.

    Responses:
        200 sync result
        202 job enqueued (background=true)
        404 unknown tenant
        502 Shopify fetch failed (nothing written)
        500 reconciliation failed (rolled back)
    """
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")

    if background:
        job_id = await queue.enqueue(SYNC_FULL, {"tenant_id": str(tenant_id)})
        logger.info(f"[SYNC] Enqueued full sync for tenant {tenant_id} (job={job_id})")
        body = SyncEnqueuedResponse(tenant_id=tenant_id, job_id=job_id)
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body.model_dump(mode="json"))

    try:
        result = await full_sync(db, tenant_id, settings=settings)
    except SyncError as e:
        code = (
            status.HTTP_502_BAD_GATEWAY
            if e.phase == SyncError.FETCH
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        raise HTTPException(status_code=code, detail=e.message)

    return SyncResultResponse(
        tenant_id=tenant_id,
        shop_domain=result.shop_domain,
        customers_count=result.customers_count,
        products_count=result.products_count,
        orders_count=result.orders_count,
        skipped_records=result.skipped_records,
        duration_ms=result.duration_ms,
        stubbed=result.stubbed,
    )
