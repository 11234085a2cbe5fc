"""Webhook idempotency ledger.

WHAT:
    Records each Shopify event id once, before its payload is interpreted.

WHY:
    Shopify retries deliveries and may send the same event concurrently.
    The primary key on `webhook_events.event_id` is the only concurrency
    control against double application.

    Recording commits immediately, ahead of reconciliation: a crash between
    the two drops the event instead of applying it twice (at-most-once).

REFERENCES:
    - shopsync/models.py::WebhookEvent
    - shopsync/services/webhook_dispatcher.py (sole caller)
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopsync.exceptions import DuplicateEventError
from shopsync.models import WebhookEvent

logger = logging.getLogger(__name__)


class IdempotencyLedger:
    """Ledger of processed webhook event ids.

    Usage:
        ledger = IdempotencyLedger(db)
        if ledger.seen(event_id):
            return duplicate
        ledger.record(event_id, topic, shop_domain, body_hash)
    """

    def __init__(self, db: Session):
        self.db = db

    def seen(self, event_id: str) -> bool:
        return self.db.get(WebhookEvent, event_id) is not None

    def record(
        self,
        event_id: str,
        topic: str,
        shop_domain: str,
        body_hash: str,
        triggered_at: Optional[datetime] = None,
    ) -> WebhookEvent:
        """Insert and commit the ledger row.

        Raises:
            DuplicateEventError: another delivery recorded the same id first
        """
        event = WebhookEvent(
            event_id=event_id,
            topic=topic,
            shop_domain=shop_domain,
            body_sha256=body_hash,
            triggered_at=triggered_at,
        )
        self.db.add(event)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateEventError(event_id) from exc

        logger.debug("[LEDGER] Recorded %s (%s) for %s", event_id, topic, shop_domain)
        return event
