"""Deterministic stand-in for Shopify collections.

Used by full sync when a tenant has no active connection or credential, or
when DEV_FAKE_SHOPIFY is set, so the whole pipeline runs offline. Records
mirror the REST Admin API shape so they go through the same decoders as
real data.
"""

import copy
from typing import Any, Dict, List

_CUSTOMERS: List[Dict[str, Any]] = [
    {"id": 9100001, "email": "ada@example.com", "first_name": "Ada", "last_name": "Lovelace"},
    {"id": 9100002, "email": "grace@example.com", "first_name": "Grace", "last_name": "Hopper"},
    {"id": 9100003, "email": "alan@example.com", "first_name": "Alan", "last_name": "Turing"},
]

_PRODUCTS: List[Dict[str, Any]] = [
    {"id": 9200001, "title": "Canvas Tote"},
    {"id": 9200002, "title": "Enamel Mug"},
    {"id": 9200003, "title": "Wool Beanie"},
    {"id": 9200004, "title": "Sticker Pack"},
]

# Shopify order totals include shipping; full sync overwrites them with the
# line-item sum.
_ORDERS: List[Dict[str, Any]] = [
    {
        "id": 9300001,
        "created_at": "2024-05-01T10:15:00Z",
        "total_price": "43.00",
        "customer": {"id": 9100001, "email": "ada@example.com", "first_name": "Ada", "last_name": "Lovelace"},
        "line_items": [
            {"id": 1, "product_id": 9200001, "title": "Canvas Tote", "quantity": 1, "price": "24.00"},
            {"id": 2, "product_id": 9200002, "title": "Enamel Mug", "quantity": 1, "price": "14.00"},
        ],
    },
    {
        "id": 9300002,
        "created_at": "2024-05-02T08:00:00Z",
        "total_price": "33.00",
        "customer": {"id": 9100002, "email": "grace@example.com", "first_name": "Grace", "last_name": "Hopper"},
        "line_items": [
            {"id": 3, "product_id": 9200003, "title": "Wool Beanie", "quantity": 1, "price": "28.00"},
        ],
    },
    {
        "id": 9300003,
        "created_at": "2024-05-03T19:45:00Z",
        "total_price": "20.00",
        "customer": {"id": 9100001, "email": "ada@example.com", "first_name": "Ada", "last_name": "Lovelace"},
        "line_items": [
            {"id": 4, "product_id": 9200004, "title": "Sticker Pack", "quantity": 3, "price": "5.00"},
        ],
    },
    {
        "id": 9300004,
        "created_at": "2024-05-04T12:30:00Z",
        "total_price": "52.00",
        "customer": None,
        "line_items": [
            {"id": 5, "product_id": 9200002, "title": "Enamel Mug", "quantity": 2, "price": "14.00"},
            {"id": 6, "product_id": 9200001, "title": "Canvas Tote", "quantity": 1, "price": "24.00"},
        ],
    },
    {
        "id": 9300005,
        "created_at": "2024-05-05T16:05:00Z",
        "total_price": "0.00",
        "customer": {"id": 9100003, "email": "alan@example.com", "first_name": "Alan", "last_name": "Turing"},
        "line_items": [
            {"id": 7, "product_id": 9200003, "title": "Wool Beanie", "quantity": 2, "price": "28.00"},
            {"id": 8, "product_id": None, "title": "Gift wrap", "quantity": 1, "price": "3.50"},
        ],
    },
]

_COLLECTIONS = {
    "customers": _CUSTOMERS,
    "products": _PRODUCTS,
    "orders": _ORDERS,
}


def stub_records(resource: str) -> List[Dict[str, Any]]:
    """Fresh copies of the stub collection for `resource`."""
    return copy.deepcopy(_COLLECTIONS[resource])
