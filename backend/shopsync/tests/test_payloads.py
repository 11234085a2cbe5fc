"""Tests for webhook/sync payload decoding."""

from datetime import datetime
from decimal import Decimal

import pytest

from shopsync.exceptions import PayloadValidationError
from shopsync.services.payloads import (
    CUSTOMER,
    ORDER,
    PRODUCT,
    CustomerPayload,
    OrderPayload,
    ProductPayload,
    decode_payload,
    parse_json_body,
    topic_family,
)


@pytest.mark.parametrize(
    "topic,family",
    [
        ("customers/create", CUSTOMER),
        ("customers/update", CUSTOMER),
        ("products/create", PRODUCT),
        ("products/update", PRODUCT),
        ("orders/create", ORDER),
        ("orders/updated", ORDER),
        ("orders/paid", ORDER),
        ("ORDERS/PAID", ORDER),
        ("app/uninstalled", None),
        ("orders/cancelled", None),
        ("", None),
        (None, None),
    ],
)
def test_topic_family(topic, family):
    assert topic_family(topic) == family


def test_customer_numeric_id_becomes_string():
    payload = decode_payload(CUSTOMER, {"id": 207119551, "email": "bob@example.com", "note": "ignored"})
    assert isinstance(payload, CustomerPayload)
    assert payload.external_id == "207119551"
    assert payload.email == "bob@example.com"
    assert payload.first_name is None


@pytest.mark.parametrize("family", [CUSTOMER, PRODUCT, ORDER])
@pytest.mark.parametrize("record", [{}, {"id": None}, {"id": ""}, {"id": "   "}])
def test_missing_id_rejected(family, record):
    with pytest.raises(PayloadValidationError) as exc_info:
        decode_payload(family, record)
    assert exc_info.value.entity == family


def test_non_object_record_rejected():
    with pytest.raises(PayloadValidationError):
        decode_payload(PRODUCT, ["not", "an", "object"])


def test_product_title_optional():
    payload = decode_payload(PRODUCT, {"id": 632910392})
    assert isinstance(payload, ProductPayload)
    assert payload.title is None


def test_order_full_decode():
    payload = decode_payload(
        ORDER,
        {
            "id": 450789469,
            "total_price": "598.94",
            "created_at": "2024-05-01T12:00:00-04:00",
            "customer": {"id": 207119551, "email": "bob@example.com"},
            "line_items": [
                {"product_id": 632910392, "title": "IPod Nano", "quantity": 1, "price": "199.00"},
                {"product_id": None, "title": "Custom engraving", "price": "10"},
            ],
        },
    )
    assert isinstance(payload, OrderPayload)
    assert payload.external_id == "450789469"
    assert payload.total_price == Decimal("598.94")
    # Converted to naive UTC
    assert payload.created_at == datetime(2024, 5, 1, 16, 0)
    assert payload.customer.external_id == "207119551"
    assert payload.line_items[0].product_id == "632910392"
    assert payload.line_items[1].product_id is None
    assert payload.line_items[1].quantity == 1


@pytest.mark.parametrize("customer", [None, {}, {"id": None, "email": "guest@example.com"}])
def test_guest_checkout_has_no_customer(customer):
    payload = decode_payload(ORDER, {"id": 1, "customer": customer})
    assert payload.customer is None


def test_order_defaults():
    payload = decode_payload(ORDER, {"id": 1, "total_price": None, "line_items": None})
    assert payload.total_price == Decimal("0")
    assert payload.line_items == []
    assert payload.order_date() is None


def test_order_date_fallbacks():
    triggered = datetime(2024, 6, 1, 9, 30)
    assert decode_payload(ORDER, {"id": 1, "created_at": ""}).order_date(triggered) == triggered

    processed = decode_payload(ORDER, {"id": 1, "processed_at": "2024-05-02T00:00:00Z"})
    assert processed.order_date(triggered) == datetime(2024, 5, 2)


@pytest.mark.parametrize(
    "record",
    [
        {"id": 1, "total_price": "-1.00"},
        {"id": 1, "total_price": "abc"},
        {"id": 1, "total_price": "NaN"},
        {"id": 1, "line_items": [{"product_id": 1, "quantity": "two"}]},
        {"id": 1, "line_items": [{"product_id": 1, "price": "-5"}]},
    ],
)
def test_invalid_order_values_rejected(record):
    with pytest.raises(PayloadValidationError):
        decode_payload(ORDER, record)


@pytest.mark.parametrize("quantity", [0, -2, "0", None])
def test_non_positive_quantity_reads_as_one(quantity):
    payload = decode_payload(
        ORDER, {"id": 1, "line_items": [{"product_id": 1, "quantity": quantity, "price": "5.00"}]}
    )
    assert payload.line_items[0].quantity == 1
    assert payload.line_items[0].price == Decimal("5.00")


def test_parse_json_body():
    assert parse_json_body(b'{"id": 1}') == {"id": 1}
    with pytest.raises(PayloadValidationError):
        parse_json_body(b"{not json")
    with pytest.raises(PayloadValidationError):
        parse_json_body(b"[1, 2]")
    with pytest.raises(PayloadValidationError):
        parse_json_body(b"\xff\xfe")
