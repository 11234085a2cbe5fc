"""Typed decoding of Shopify customer/product/order payloads.

WHAT:
    Pydantic models for the subset of Shopify's REST/webhook JSON that the
    reconciler consumes, plus the topic → entity family mapping.

WHY:
    Webhook bodies and REST sync records share one shape per entity. Decoding
    both through the same models means the reconciler only ever sees
    validated, normalized values:
    - external ids become strings (Shopify sends integers)
    - money becomes non-negative Decimal
    - timestamps become naive UTC
    - unknown fields are ignored, a missing `id` is a validation error

REFERENCES:
    - https://shopify.dev/docs/api/admin-rest/2024-07/resources/order
    - https://shopify.dev/docs/api/admin-rest/2024-07/resources/customer
    - https://shopify.dev/docs/api/admin-rest/2024-07/resources/product
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shopsync.exceptions import PayloadValidationError


# =============================================================================
# TOPICS
# =============================================================================

CUSTOMER = "customer"
PRODUCT = "product"
ORDER = "order"

TOPIC_FAMILIES: Dict[str, str] = {
    "customers/create": CUSTOMER,
    "customers/update": CUSTOMER,
    "products/create": PRODUCT,
    "products/update": PRODUCT,
    "orders/create": ORDER,
    "orders/updated": ORDER,
    "orders/paid": ORDER,
}


def topic_family(topic: Optional[str]) -> Optional[str]:
    """Entity family handled for a webhook topic, None when unhandled."""
    if not topic:
        return None
    return TOPIC_FAMILIES.get(topic.strip().lower())


# =============================================================================
# FIELD COERCION
# =============================================================================

def _coerce_external_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("id must be a string or integer")
    text = str(value).strip()
    return text or None


def _required_external_id(value: Any) -> str:
    external_id = _coerce_external_id(value)
    if external_id is None:
        raise ValueError("id is required")
    return external_id


def _coerce_money(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"invalid amount {value!r}")
    if amount < 0:
        raise ValueError("amount must be non-negative")
    return amount


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Storage convention: naive datetimes in UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# =============================================================================
# ENTITY PAYLOADS
# =============================================================================

class CustomerPayload(_Payload):
    external_id: str = Field(alias="id")
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("external_id", mode="before")
    @classmethod
    def _require_id(cls, value: Any) -> str:
        return _required_external_id(value)


class ProductPayload(_Payload):
    external_id: str = Field(alias="id")
    title: Optional[str] = None

    @field_validator("external_id", mode="before")
    @classmethod
    def _require_id(cls, value: Any) -> str:
        return _required_external_id(value)


class LineItemPayload(_Payload):
    """One order line. Missing quantity/price default to 1/0; quantity 0 or below is read as 1."""

    product_id: Optional[str] = None
    title: Optional[str] = None
    quantity: int = 1
    price: Decimal = Decimal("0")

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_id(cls, value: Any) -> Optional[str]:
        return _coerce_external_id(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, value: Any) -> Any:
        # Missing or non-positive quantities count as one unit
        if value is None:
            return 1
        try:
            quantity = int(value)
        except (TypeError, ValueError):
            # Left for the int field to reject
            return value
        return 1 if quantity <= 0 else value

    @field_validator("quantity")
    @classmethod
    def _quantity_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("quantity must be positive")
        return value

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, value: Any) -> Decimal:
        return _coerce_money(value)


class OrderPayload(_Payload):
    external_id: str = Field(alias="id")
    total_price: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    customer: Optional[CustomerPayload] = None
    line_items: List[LineItemPayload] = Field(default_factory=list)

    @field_validator("external_id", mode="before")
    @classmethod
    def _require_id(cls, value: Any) -> str:
        return _required_external_id(value)

    @field_validator("total_price", mode="before")
    @classmethod
    def _total(cls, value: Any) -> Decimal:
        return _coerce_money(value)

    @field_validator("created_at", "processed_at", mode="before")
    @classmethod
    def _blank_dates(cls, value: Any) -> Any:
        return None if value == "" else value

    @field_validator("created_at", "processed_at")
    @classmethod
    def _utc_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)

    @field_validator("customer", mode="before")
    @classmethod
    def _guest_checkout(cls, value: Any) -> Any:
        # Guest checkouts send `customer: null` or an object without an id
        if not isinstance(value, dict) or value.get("id") in (None, ""):
            return None
        return value

    @field_validator("line_items", mode="before")
    @classmethod
    def _line_items(cls, value: Any) -> Any:
        return [] if value is None else value

    def order_date(self, triggered_at: Optional[datetime] = None) -> Optional[datetime]:
        """created_at, then processed_at, then the webhook trigger time."""
        return self.created_at or self.processed_at or to_naive_utc(triggered_at)


EntityPayload = Union[CustomerPayload, ProductPayload, OrderPayload]

_MODELS: Dict[str, Type[_Payload]] = {
    CUSTOMER: CustomerPayload,
    PRODUCT: ProductPayload,
    ORDER: OrderPayload,
}


# =============================================================================
# DECODING
# =============================================================================

def parse_json_body(raw_body: bytes) -> Dict[str, Any]:
    """Parse a webhook body into a JSON object.

    Raises:
        PayloadValidationError: body is not valid JSON or not an object
    """
    try:
        data = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise PayloadValidationError(f"Malformed JSON body: {exc}") from exc
    if not isinstance(data, dict):
        raise PayloadValidationError("Webhook body must be a JSON object")
    return data


def decode_payload(family: str, data: Any) -> EntityPayload:
    """Validate a raw record into the payload model for `family`.

    Raises:
        PayloadValidationError: record is not an object or fails validation
    """
    model = _MODELS[family]
    if not isinstance(data, dict):
        raise PayloadValidationError(f"{family} record must be an object", entity=family)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or family}: {err['msg']}"
            for err in exc.errors()
        )
        raise PayloadValidationError(f"Invalid {family} payload: {problems}", entity=family) from exc
