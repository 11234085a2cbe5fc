"""Tests for the webhook dispatch state machine."""

import json
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from shopsync.exceptions import ReconciliationError
from shopsync.models import Customer, Order, OrderLineItem, Product, WebhookEvent
from shopsync.services import webhook_dispatcher as dispatcher_module
from shopsync.services.hmac_verifier import WebhookVerifier
from shopsync.services.reconciler import EntityReconciler
from shopsync.services.webhook_dispatcher import (
    DispatchOutcome,
    WebhookDelivery,
    WebhookDispatcher,
)

from conftest import SHOP_DOMAIN, SHOPIFY_SECRET

ORDER_BODY = {
    "id": 450789469,
    "total_price": "43.00",
    "created_at": "2024-05-01T10:15:00Z",
    "customer": {"id": 207119551, "email": "bob@example.com", "first_name": "Bob"},
    "line_items": [
        {"product_id": 632910392, "title": "Canvas Tote", "quantity": 1, "price": "24.00"},
        {"product_id": 632910393, "title": "Enamel Mug", "quantity": 1, "price": "14.00"},
    ],
}


def _delivery(verifier, body, topic="orders/create", shop=SHOP_DOMAIN, event_id="E1", signature=None, **extra):
    raw = body if isinstance(body, bytes) else json.dumps(body).encode()
    return WebhookDelivery(
        topic=topic,
        shop_domain=shop,
        raw_body=raw,
        signature=signature if signature is not None else verifier.compute(raw),
        event_id=event_id,
        **extra,
    )


def _counts(db):
    return {
        "customers": db.query(Customer).count(),
        "products": db.query(Product).count(),
        "orders": db.query(Order).count(),
        "line_items": db.query(OrderLineItem).count(),
        "events": db.query(WebhookEvent).count(),
    }


def test_order_webhook_processed(test_db_session, shop_connection, verifier):
    result = WebhookDispatcher(test_db_session, verifier).dispatch(_delivery(verifier, ORDER_BODY))

    assert result.outcome == DispatchOutcome.processed
    assert result.status_code == 200
    assert _counts(test_db_session) == {
        "customers": 1, "products": 2, "orders": 1, "line_items": 2, "events": 1,
    }
    order = test_db_session.query(Order).one()
    assert order.tenant_id == shop_connection.tenant_id
    assert order.order_date == datetime(2024, 5, 1, 10, 15)


def test_duplicate_event_writes_nothing(test_db_session, shop_connection, verifier):
    """Same event id twice: second delivery succeeds without touching entities."""
    dispatcher = WebhookDispatcher(test_db_session, verifier)

    first = dispatcher.dispatch(_delivery(verifier, ORDER_BODY, event_id="E1"))
    after_first = _counts(test_db_session)
    order_version = test_db_session.query(Order).one().version

    second = dispatcher.dispatch(_delivery(verifier, ORDER_BODY, event_id="E1"))

    assert first.outcome == DispatchOutcome.processed
    assert second.outcome == DispatchOutcome.duplicate
    assert second.status_code == 200
    assert _counts(test_db_session) == after_first
    assert test_db_session.query(Order).one().version == order_version


def test_new_event_id_reapplies(test_db_session, shop_connection, verifier):
    dispatcher = WebhookDispatcher(test_db_session, verifier)
    dispatcher.dispatch(_delivery(verifier, ORDER_BODY, event_id="E1"))

    updated = dict(ORDER_BODY, line_items=[{"product_id": 632910392, "quantity": 3, "price": "24.00"}])
    result = dispatcher.dispatch(_delivery(verifier, updated, topic="orders/updated", event_id="E2"))

    assert result.outcome == DispatchOutcome.processed
    assert test_db_session.query(OrderLineItem).count() == 1
    assert test_db_session.query(OrderLineItem).one().quantity == 3


def test_missing_event_id_still_processed(test_db_session, shop_connection, verifier):
    result = WebhookDispatcher(test_db_session, verifier).dispatch(
        _delivery(verifier, {"id": 1, "title": "Hat"}, topic="products/create", event_id=None)
    )
    assert result.outcome == DispatchOutcome.processed
    assert test_db_session.query(WebhookEvent).count() == 0
    assert test_db_session.query(Product).one().title == "Hat"


def test_unknown_shop_ignored_without_writes(test_db_session, shop_connection, verifier):
    result = WebhookDispatcher(test_db_session, verifier).dispatch(
        _delivery(verifier, ORDER_BODY, shop="unmapped.example")
    )

    assert result.outcome == DispatchOutcome.ignored
    assert result.status_code == 202
    assert all(count == 0 for count in _counts(test_db_session).values())


def test_revoked_shop_ignored(test_db_session, shop_connection, verifier):
    from shopsync.models import InstallStateEnum

    shop_connection.install_state = InstallStateEnum.revoked
    test_db_session.commit()

    result = WebhookDispatcher(test_db_session, verifier).dispatch(_delivery(verifier, ORDER_BODY))
    assert result.outcome == DispatchOutcome.ignored


def test_shop_domain_matched_case_insensitively(test_db_session, shop_connection, verifier):
    result = WebhookDispatcher(test_db_session, verifier).dispatch(
        _delivery(verifier, ORDER_BODY, shop=SHOP_DOMAIN.upper())
    )
    assert result.outcome == DispatchOutcome.processed


def test_bad_signature_unauthorized(test_db_session, shop_connection, verifier):
    delivery = _delivery(verifier, ORDER_BODY)
    delivery.raw_body = delivery.raw_body.replace(b"43.00", b"0.01")

    result = WebhookDispatcher(test_db_session, verifier).dispatch(delivery)

    assert result.outcome == DispatchOutcome.unauthorized
    assert result.status_code == 401
    assert _counts(test_db_session)["events"] == 0


def test_missing_signature_unauthorized_unless_bypass(test_db_session, shop_connection, verifier):
    delivery = _delivery(verifier, ORDER_BODY, signature="")
    assert WebhookDispatcher(test_db_session, verifier).dispatch(delivery).status_code == 401

    bypass = WebhookVerifier(SHOPIFY_SECRET, bypass=True)
    assert WebhookDispatcher(test_db_session, bypass).dispatch(delivery).outcome == DispatchOutcome.processed


@pytest.mark.parametrize("field", ["topic", "shop_domain"])
def test_missing_headers_bad_request(test_db_session, shop_connection, verifier, field):
    delivery = _delivery(verifier, ORDER_BODY)
    setattr(delivery, field, None)

    result = WebhookDispatcher(test_db_session, verifier).dispatch(delivery)
    assert result.outcome == DispatchOutcome.bad_request
    assert result.status_code == 400


def test_malformed_json_bad_request(test_db_session, shop_connection, verifier):
    result = WebhookDispatcher(test_db_session, verifier).dispatch(_delivery(verifier, b"{not json"))
    assert result.outcome == DispatchOutcome.bad_request


def test_missing_required_id_bad_request(test_db_session, shop_connection, verifier):
    result = WebhookDispatcher(test_db_session, verifier).dispatch(
        _delivery(verifier, {"email": "no-id@example.com"}, topic="customers/create")
    )
    assert result.outcome == DispatchOutcome.bad_request
    assert test_db_session.query(Customer).count() == 0


def test_unhandled_topic_acknowledged(test_db_session, shop_connection, verifier):
    result = WebhookDispatcher(test_db_session, verifier).dispatch(
        _delivery(verifier, {"id": 1}, topic="app/uninstalled")
    )
    assert result.outcome == DispatchOutcome.unhandled
    assert result.status_code == 200
    assert _counts(test_db_session)["orders"] == 0


def test_reconciliation_failure_rolls_back(test_db_session, shop_connection, verifier, monkeypatch):
    captured = []

    def _fail(self, payload, triggered_at=None, recompute_total=False):
        self.upsert_customer("partial", "partial@example.com")
        raise ReconciliationError("boom", entity="order", external_id=payload.external_id)

    monkeypatch.setattr(EntityReconciler, "apply_order", _fail)
    monkeypatch.setattr(dispatcher_module, "capture_exception", lambda e, extra=None: captured.append(e))

    result = WebhookDispatcher(test_db_session, verifier).dispatch(_delivery(verifier, ORDER_BODY))

    assert result.outcome == DispatchOutcome.failed
    assert result.status_code == 500
    assert test_db_session.query(Customer).count() == 0
    assert len(captured) == 1


def test_zero_quantity_line_item_processed(test_db_session, shop_connection, verifier):
    body = dict(ORDER_BODY, line_items=[{"product_id": 1, "quantity": 0, "price": "5.00"}])

    result = WebhookDispatcher(test_db_session, verifier).dispatch(_delivery(verifier, body, event_id="E-zero"))

    assert result.outcome == DispatchOutcome.processed
    assert test_db_session.query(OrderLineItem).one().quantity == 1


def test_commit_failure_rolls_back_and_reports(test_db_session, shop_connection, verifier, monkeypatch):
    captured = []
    commits = []
    original_commit = test_db_session.commit

    def _commit():
        commits.append(1)
        # First commit is the ledger row
        if len(commits) > 1:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        original_commit()

    monkeypatch.setattr(test_db_session, "commit", _commit)
    monkeypatch.setattr(dispatcher_module, "capture_exception", lambda e, extra=None: captured.append(e))

    result = WebhookDispatcher(test_db_session, verifier).dispatch(_delivery(verifier, ORDER_BODY))

    assert result.outcome == DispatchOutcome.failed
    assert result.status_code == 500
    assert test_db_session.query(Order).count() == 0
    assert test_db_session.query(WebhookEvent).count() == 1
    assert isinstance(captured[0], OperationalError)


def test_triggered_at_used_when_order_has_no_date(test_db_session, shop_connection, verifier):
    body = {"id": 1, "total_price": "5.00"}
    delivery = _delivery(verifier, body, triggered_at="2024-06-01T08:00:00+02:00")

    WebhookDispatcher(test_db_session, verifier).dispatch(delivery)

    assert test_db_session.query(Order).one().order_date == datetime(2024, 6, 1, 6, 0)
    assert test_db_session.query(WebhookEvent).one().triggered_at == datetime(2024, 6, 1, 6, 0)


def test_preflight_passes_valid_delivery(test_db_session, verifier):
    assert WebhookDispatcher(test_db_session, verifier).preflight(_delivery(verifier, ORDER_BODY)) is None


def test_delivery_headers_and_job_payload():
    raw = b'{"id": 1}'
    headers = {
        "x-shopify-topic": "orders/paid",
        "x-shopify-shop-domain": SHOP_DOMAIN,
        "x-shopify-hmac-sha256": "sig",
        "x-shopify-webhook-id": "W1",
        "x-shopify-triggered-at": "2024-06-01T08:00:00Z",
    }
    delivery = WebhookDelivery.from_headers(headers, raw)
    assert delivery.event_id == "W1"

    restored = WebhookDelivery.from_job_payload(json.loads(json.dumps(delivery.to_job_payload())))
    assert restored == delivery
