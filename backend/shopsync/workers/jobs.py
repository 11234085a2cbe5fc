"""Shared job handler for every queue backend.

WHAT:
    - webhook.process: rebuild the WebhookDelivery and run the dispatcher
    - sync.full: full sync for one tenant

WHY:
    InProcessJobQueue and ArqJobQueue both deliver (job_type, payload) to
    handle_job, so a webhook dequeued from Redis runs exactly the same code
    as one dispatched inline by the HTTP route.

    A failed webhook job is not retried: its event id is already in the
    ledger, so a retry could only be acknowledged as a duplicate. Sync jobs
    raise and are retried by the queue backend.
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from shopsync.database import SessionLocal
from shopsync.deps import get_settings
from shopsync.services.hmac_verifier import WebhookVerifier
from shopsync.services.sync_orchestrator import full_sync
from shopsync.services.webhook_dispatcher import WebhookDelivery, WebhookDispatcher
from shopsync.workers.queue import SYNC_FULL, WEBHOOK_PROCESS

logger = logging.getLogger(__name__)


async def handle_job(job_type: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if job_type == WEBHOOK_PROCESS:
        return await process_webhook_job(payload)
    if job_type == SYNC_FULL:
        return await process_full_sync_job(payload)

    logger.warning("[QUEUE] Unknown job type %s, skipping", job_type)
    return None


async def process_webhook_job(payload: Dict[str, Any]) -> Dict[str, Any]:
    settings = get_settings()
    delivery = WebhookDelivery.from_job_payload(payload)
    verifier = WebhookVerifier(settings.SHOPIFY_API_SECRET, bypass=settings.WEBHOOK_HMAC_BYPASS)

    db = SessionLocal()
    try:
        result = WebhookDispatcher(db, verifier).dispatch(delivery)
    finally:
        db.close()

    return {"outcome": result.outcome.value, "topic": result.topic, "event_id": result.event_id}


async def process_full_sync_job(payload: Dict[str, Any]) -> Dict[str, Any]:
    tenant_id = UUID(str(payload["tenant_id"]))

    db = SessionLocal()
    try:
        result = await full_sync(db, tenant_id)
    finally:
        db.close()

    return {
        "tenant_id": str(tenant_id),
        "customers": result.customers_count,
        "products": result.products_count,
        "orders": result.orders_count,
        "duration_ms": result.duration_ms,
        "stubbed": result.stubbed,
    }
