"""Shopify webhook dispatch.

WHAT:
    Turns one inbound delivery into exactly one outcome:

        verify signature ──✗──> UNAUTHORIZED (401)
              │
        topic + shop present ──✗──> BAD_REQUEST (400)
              │
        shop → tenant ──✗──> IGNORED (202, no writes)
              │
        ledger: seen / record ──dup──> DUPLICATE (200, no writes)
              │
        parse + decode payload ──✗──> BAD_REQUEST (400)
              │
        topic family ──none──> UNHANDLED (200, no writes)
              │
        reconcile + commit ──✗──> FAILED (500, rolled back)
              │
           PROCESSED (200)

WHY:
    - Unknown shops are acknowledged, not rejected: Shopify keeps retrying
      deliveries for shops mid-uninstall or before install completes.
    - Rejections before reconciliation (401/400) are final; only storage
      failures answer 500 so the sender retries.
    - The dispatcher takes a plain WebhookDelivery, so the HTTP route and the
      queue worker run identical logic.

REFERENCES:
    - https://shopify.dev/docs/apps/build/webhooks/subscribe/https
    - shopsync/routers/shopify_webhooks.py (inline / enqueue)
    - shopsync/workers/jobs.py (dequeued execution)
"""

from __future__ import annotations

import base64
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopsync.exceptions import DuplicateEventError, PayloadValidationError, ReconciliationError
from shopsync.models import InstallStateEnum, ShopConnection
from shopsync.services.hmac_verifier import WebhookVerifier, body_sha256
from shopsync.services.idempotency_ledger import IdempotencyLedger
from shopsync.services.payloads import (
    CUSTOMER,
    ORDER,
    PRODUCT,
    decode_payload,
    parse_json_body,
    to_naive_utc,
    topic_family,
)
from shopsync.services.reconciler import EntityReconciler
from shopsync.telemetry import capture_exception

logger = logging.getLogger(__name__)

_datetime_adapter = TypeAdapter(datetime)


# =============================================================================
# DELIVERY
# =============================================================================

@dataclass
class WebhookDelivery:
    """One inbound webhook, transport-independent."""

    topic: Optional[str]
    shop_domain: Optional[str]
    raw_body: bytes
    signature: Optional[str] = None
    event_id: Optional[str] = None
    triggered_at: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], raw_body: bytes) -> "WebhookDelivery":
        """Build from HTTP headers (Starlette headers are case-insensitive)."""
        return cls(
            topic=headers.get("x-shopify-topic"),
            shop_domain=headers.get("x-shopify-shop-domain"),
            raw_body=raw_body,
            signature=headers.get("x-shopify-hmac-sha256"),
            event_id=headers.get("x-shopify-event-id") or headers.get("x-shopify-webhook-id"),
            triggered_at=headers.get("x-shopify-triggered-at"),
        )

    def to_job_payload(self) -> Dict[str, Any]:
        """JSON-safe form for queue transport. Body is base64 so signature bytes survive."""
        return {
            "topic": self.topic,
            "shop_domain": self.shop_domain,
            "raw_body_b64": base64.b64encode(self.raw_body).decode("ascii"),
            "signature": self.signature,
            "event_id": self.event_id,
            "triggered_at": self.triggered_at,
        }

    @classmethod
    def from_job_payload(cls, payload: Mapping[str, Any]) -> "WebhookDelivery":
        return cls(
            topic=payload.get("topic"),
            shop_domain=payload.get("shop_domain"),
            raw_body=base64.b64decode(payload.get("raw_body_b64") or ""),
            signature=payload.get("signature"),
            event_id=payload.get("event_id"),
            triggered_at=payload.get("triggered_at"),
        )


# =============================================================================
# OUTCOMES
# =============================================================================

class DispatchOutcome(str, enum.Enum):
    processed = "processed"
    duplicate = "duplicate"
    unhandled = "unhandled"
    ignored = "ignored"
    enqueued = "enqueued"
    bad_request = "bad_request"
    unauthorized = "unauthorized"
    failed = "failed"


OUTCOME_STATUS_CODES: Dict[DispatchOutcome, int] = {
    DispatchOutcome.processed: 200,
    DispatchOutcome.duplicate: 200,
    DispatchOutcome.unhandled: 200,
    DispatchOutcome.ignored: 202,
    DispatchOutcome.enqueued: 202,
    DispatchOutcome.bad_request: 400,
    DispatchOutcome.unauthorized: 401,
    DispatchOutcome.failed: 500,
}


@dataclass
class DispatchResult:
    outcome: DispatchOutcome
    message: str
    topic: Optional[str] = None
    event_id: Optional[str] = None

    @property
    def status_code(self) -> int:
        return OUTCOME_STATUS_CODES[self.outcome]

    @property
    def accepted(self) -> bool:
        return self.status_code < 400


# =============================================================================
# DISPATCHER
# =============================================================================

class WebhookDispatcher:
    """Runs the webhook state machine against one database session.

    Usage:
        dispatcher = WebhookDispatcher(db, WebhookVerifier(secret))
        result = dispatcher.dispatch(WebhookDelivery.from_headers(request.headers, body))
        return JSONResponse(status_code=result.status_code, content={...})
    """

    def __init__(self, db: Session, verifier: WebhookVerifier):
        self.db = db
        self.verifier = verifier

    def preflight(self, delivery: WebhookDelivery) -> Optional[DispatchResult]:
        """Signature and required-header checks. None means the delivery may proceed.

        Used on its own before enqueueing so a forged or incomplete delivery
        never reaches the queue.
        """
        if not self.verifier.verify(delivery.raw_body, delivery.signature):
            logger.warning(
                "[WEBHOOK] Invalid HMAC signature (topic=%s, shop=%s, body_sha256=%s...)",
                delivery.topic,
                delivery.shop_domain,
                body_sha256(delivery.raw_body)[:12],
            )
            return DispatchResult(DispatchOutcome.unauthorized, "Invalid webhook signature", delivery.topic)

        if not delivery.topic or not delivery.shop_domain:
            logger.warning("[WEBHOOK] Missing topic or shop domain header")
            return DispatchResult(DispatchOutcome.bad_request, "Missing topic or shop domain", delivery.topic)

        return None

    def dispatch(self, delivery: WebhookDelivery) -> DispatchResult:
        rejected = self.preflight(delivery)
        if rejected is not None:
            return rejected

        topic = delivery.topic.strip().lower()
        shop_domain = delivery.shop_domain.strip().lower()
        event_id = delivery.event_id

        connection = self._resolve_connection(shop_domain)
        if connection is None:
            logger.info("[WEBHOOK] Unknown shop %s, %s acknowledged and ignored", shop_domain, topic)
            return DispatchResult(DispatchOutcome.ignored, "Shop not found, webhook acknowledged", topic, event_id)

        triggered_at = self._parse_triggered_at(delivery.triggered_at)

        if event_id:
            ledger = IdempotencyLedger(self.db)
            try:
                if ledger.seen(event_id):
                    raise DuplicateEventError(event_id)
                ledger.record(event_id, topic, shop_domain, body_sha256(delivery.raw_body), triggered_at)
            except DuplicateEventError:
                logger.info("[WEBHOOK] Duplicate event %s (%s) ignored", event_id, topic)
                return DispatchResult(DispatchOutcome.duplicate, "Duplicate event", topic, event_id)
        else:
            logger.info("[WEBHOOK] %s for %s has no event id, processing without dedupe", topic, shop_domain)

        family = topic_family(topic)
        try:
            data = parse_json_body(delivery.raw_body)
            payload = decode_payload(family, data) if family else None
        except PayloadValidationError as e:
            logger.warning("[WEBHOOK] Rejected %s for %s: %s", topic, shop_domain, e.message)
            return DispatchResult(DispatchOutcome.bad_request, e.message, topic, event_id)

        if payload is None:
            logger.info("[WEBHOOK] Unhandled topic %s for %s acknowledged", topic, shop_domain)
            return DispatchResult(DispatchOutcome.unhandled, "Topic not handled", topic, event_id)

        reconciler = EntityReconciler(self.db, connection.tenant_id)
        try:
            if family == CUSTOMER:
                reconciler.apply_customer(payload)
            elif family == PRODUCT:
                reconciler.apply_product(payload)
            elif family == ORDER:
                reconciler.apply_order(payload, triggered_at=triggered_at)
            self.db.commit()
        except (ReconciliationError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error("[WEBHOOK] Reconciliation failed for %s (%s): %s", topic, shop_domain, e)
            capture_exception(e, extra={"topic": topic, "shop_domain": shop_domain, "event_id": event_id})
            return DispatchResult(DispatchOutcome.failed, "Reconciliation failed", topic, event_id)

        logger.info(
            "[WEBHOOK] Processed %s %s for tenant %s",
            topic, payload.external_id, connection.tenant_id,
        )
        return DispatchResult(DispatchOutcome.processed, "Webhook processed", topic, event_id)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _resolve_connection(self, shop_domain: str) -> Optional[ShopConnection]:
        return (
            self.db.query(ShopConnection)
            .filter(
                ShopConnection.shop_domain == shop_domain,
                ShopConnection.install_state != InstallStateEnum.revoked,
            )
            .first()
        )

    @staticmethod
    def _parse_triggered_at(value: Optional[str]) -> Optional[datetime]:
        """RFC3339 trigger time; unparseable values are dropped, not rejected."""
        if not value:
            return None
        try:
            return to_naive_utc(_datetime_adapter.validate_python(value))
        except ValidationError:
            logger.debug("[WEBHOOK] Ignoring unparseable triggered-at %r", value)
            return None
