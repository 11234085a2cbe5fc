"""
Ingestion Exceptions
====================

Exception types raised by the ingestion core (webhooks, reconciliation, sync).

WHY THIS FILE EXISTS
--------------------
Each failure class maps to a different externally visible outcome:
- Validation errors are rejected and never retried (400)
- Duplicate events are acknowledged as success (200)
- Reconciliation/storage errors surface as retryable failures (500)
- Sync errors carry the phase so the trigger can tell fetch from write failures

Shopify HTTP failures live next to the client (ShopifyAPIError,
FetchDeadlineExceeded in shopsync/services/shopify_client.py) because they
describe the wire, not the ingestion decision.

RELATED FILES
-------------
- shopsync/services/webhook_dispatcher.py: Maps these to DispatchOutcome
- shopsync/services/sync_orchestrator.py: Raises SyncError
- shopsync/routers/shopify_sync.py: Maps SyncError to HTTP status
"""

from typing import Optional


class IngestionError(Exception):
    """
    Base exception for every ingestion-core error.

    USAGE:
        try:
            dispatcher.dispatch(delivery)
        except IngestionError as e:
            logger.error("[WEBHOOK] %s", e.message)
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PayloadValidationError(IngestionError):
    """
    Webhook or sync record is missing a required field or carries a bad value.

    WHAT:
        Raised by the per-topic payload decoders.

    WHY:
        Required-field absence must stop at the decode step instead of
        propagating `None` into the reconciler.
    """

    def __init__(self, message: str, entity: Optional[str] = None):
        super().__init__(message)
        self.entity = entity


class DuplicateEventError(IngestionError):
    """Ledger insert lost the race: another delivery already recorded this event id."""

    def __init__(self, event_id: str):
        super().__init__(f"Webhook event {event_id} already recorded")
        self.event_id = event_id


class ReconciliationError(IngestionError):
    """
    Storage failure while upserting an entity.

    WHAT:
        Wraps SQLAlchemy errors (integrity, stale version counter, connection).

    WHY:
        Callers decide the outcome (500 for webhooks, rollback for sync);
        the reconciler never commits or swallows.
    """

    def __init__(self, message: str, entity: Optional[str] = None, external_id: Optional[str] = None):
        super().__init__(message)
        self.entity = entity
        self.external_id = external_id


class SyncError(IngestionError):
    """
    Full sync failed.

    PARAMETERS:
        phase: "fetch" (nothing was written) or "reconcile" (transaction rolled back)
    """

    FETCH = "fetch"
    RECONCILE = "reconcile"

    def __init__(self, message: str, phase: str, tenant_id: Optional[str] = None):
        super().__init__(message)
        self.phase = phase
        self.tenant_id = tenant_id


class OAuthStateError(IngestionError):
    """OAuth callback failed state or HMAC validation.

    `status_code` is the HTTP status the callback route should answer with.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code
