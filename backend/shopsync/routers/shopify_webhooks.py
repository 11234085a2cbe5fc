"""Shopify webhook ingestion endpoint.

WHAT:
    Single endpoint for every subscribed topic:
    - customers/create, customers/update
    - products/create, products/update
    - orders/create, orders/updated, orders/paid

WHY:
    Shopify identifies the topic in X-Shopify-Topic, so one route plus the
    dispatcher's topic branch replaces a route per topic. The raw body is
    read once and handed over untouched because the HMAC covers exact bytes.

MODES (WEBHOOK_QUEUE_MODE):
    inline: dispatch now, answer with the outcome's status code
    queue:  verify signature/headers, enqueue webhook.process, answer 202

REFERENCES:
    - https://shopify.dev/docs/apps/build/webhooks/subscribe/https
    - shopsync/services/webhook_dispatcher.py
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from shopsync.database import get_db
from shopsync.deps import Settings, get_job_queue, get_settings
from shopsync.services.hmac_verifier import WebhookVerifier
from shopsync.services.webhook_dispatcher import (
    DispatchOutcome,
    DispatchResult,
    WebhookDelivery,
    WebhookDispatcher,
)
from shopsync.workers.queue import WEBHOOK_PROCESS, JobQueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/shopify", tags=["Shopify Webhooks"])


def _to_response(result: DispatchResult) -> JSONResponse:
    content = {"status": result.outcome.value, "message": result.message}
    if result.event_id:
        content["event_id"] = result.event_id
    return JSONResponse(status_code=result.status_code, content=content)


@router.post("")
async def receive_shopify_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    queue: JobQueue = Depends(get_job_queue),
):
    """Receive one Shopify webhook delivery.

    Responses:
        200 processed / duplicate / unhandled topic
        202 unknown shop (ignored) or enqueued
        400 missing headers or malformed payload
        401 bad signature
        500 reconciliation failed (Shopify retries)
    """
    body = await request.body()
    delivery = WebhookDelivery.from_headers(request.headers, body)
    verifier = WebhookVerifier(settings.SHOPIFY_API_SECRET, bypass=settings.WEBHOOK_HMAC_BYPASS)
    dispatcher = WebhookDispatcher(db, verifier)

    if settings.WEBHOOK_QUEUE_MODE == "queue":
        rejected = dispatcher.preflight(delivery)
        if rejected is not None:
            return _to_response(rejected)

        job_id = await queue.enqueue(WEBHOOK_PROCESS, delivery.to_job_payload())
        logger.info(
            "[WEBHOOK] Enqueued %s for %s (job=%s)", delivery.topic, delivery.shop_domain, job_id
        )
        return _to_response(
            DispatchResult(DispatchOutcome.enqueued, "Webhook enqueued", delivery.topic, delivery.event_id)
        )

    return _to_response(dispatcher.dispatch(delivery))
