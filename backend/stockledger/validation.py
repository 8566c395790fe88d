from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from stockledger.time_utils import parse_iso_date
from stockledger.models.inventory import MOVEMENT_TYPES
from stockledger.models.sales import PAYMENT_METHODS

"""
Boundary parsing for engine operations.

Every request body is turned into one of the frozen request structs below
before it reaches a service. Services never see raw dicts.
"""

# Maximum amount: 9,999,999,999 minor units
MAX_AMOUNT_CENTS = 9_999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def require_int(payload: dict, key: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    if key not in payload or payload[key] is None:
        raise ValidationError(f"{key} is required")
    value = _coerce_int(key, payload[key])
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ValidationError(f"{key} must be <= {maximum}")
    return value


def optional_int(payload: dict, key: str, *, minimum: int | None = None, default: int | None = None) -> int | None:
    if payload.get(key) is None or payload.get(key) == "":
        return default
    return require_int(payload, key, minimum=minimum)


def require_text(payload: dict, key: str, *, max_length: int = 255) -> str:
    value = optional_text(payload, key, max_length=max_length)
    if value is None:
        raise ValidationError(f"{key} is required")
    return value


def optional_text(payload: dict, key: str, *, max_length: int | None = None) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{key} must be at most {max_length} characters")
    return text


def optional_date(payload: dict, key: str) -> date | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return parse_iso_date(str(value))
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 date")


def _require_dict(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload


# =============================================================================
# INVENTORY
# =============================================================================

@dataclass(frozen=True)
class ProductCreateRequest:
    sku: str
    name: str
    initial_stock: int = 0
    min_stock: int = 0
    cost_price_cents: int = 0
    price_cents: int = 0
    supplier_id: int | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ProductCreateRequest":
        payload = _require_dict(payload)
        return cls(
            sku=require_text(payload, "sku", max_length=64),
            name=require_text(payload, "name"),
            initial_stock=optional_int(payload, "initial_stock", minimum=0, default=0),
            min_stock=optional_int(payload, "min_stock", minimum=0, default=0),
            cost_price_cents=optional_int(payload, "cost_price_cents", minimum=0, default=0),
            price_cents=optional_int(payload, "price_cents", minimum=0, default=0),
            supplier_id=optional_int(payload, "supplier_id", minimum=1),
        )


@dataclass(frozen=True)
class StockMovementRequest:
    product_id: int
    movement_type: str
    quantity_delta: int
    reason: str
    reference: str | None = None
    notes: str | None = None
    user_name: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "StockMovementRequest":
        payload = _require_dict(payload)
        movement_type = require_text(payload, "type", max_length=32)
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")
        return cls(
            product_id=require_int(payload, "product_id", minimum=1),
            movement_type=movement_type,
            quantity_delta=require_int(payload, "quantity_delta"),
            reason=require_text(payload, "reason"),
            reference=optional_text(payload, "reference", max_length=128),
            notes=optional_text(payload, "notes"),
            user_name=optional_text(payload, "user_name", max_length=128),
        )


@dataclass(frozen=True)
class StockAdjustRequest:
    product_id: int
    new_stock: int
    reason: str
    notes: str | None = None
    user_name: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "StockAdjustRequest":
        payload = _require_dict(payload)
        return cls(
            product_id=require_int(payload, "product_id", minimum=1),
            new_stock=require_int(payload, "new_stock", minimum=0),
            reason=require_text(payload, "reason"),
            notes=optional_text(payload, "notes"),
            user_name=optional_text(payload, "user_name", max_length=128),
        )


@dataclass(frozen=True)
class ReplenishmentRequest:
    product_id: int
    quantity: int
    unit_price_cents: int = 0
    delivery_cost_cents: int = 0
    supplier_id: int | None = None
    receipt_number: str | None = None
    expiration_date: date | None = None
    notes: str | None = None
    user_name: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ReplenishmentRequest":
        payload = _require_dict(payload)
        return cls(
            product_id=require_int(payload, "product_id", minimum=1),
            quantity=require_int(payload, "quantity", minimum=1),
            unit_price_cents=optional_int(payload, "unit_price_cents", minimum=0, default=0),
            delivery_cost_cents=optional_int(payload, "delivery_cost_cents", minimum=0, default=0),
            supplier_id=optional_int(payload, "supplier_id", minimum=1),
            receipt_number=optional_text(payload, "receipt_number", max_length=64),
            expiration_date=optional_date(payload, "expiration_date"),
            notes=optional_text(payload, "notes"),
            user_name=optional_text(payload, "user_name", max_length=128),
        )


@dataclass(frozen=True)
class BatchCreateRequest:
    product_id: int
    quantity: int
    expiration_date: date
    supplier_id: int | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "BatchCreateRequest":
        payload = _require_dict(payload)
        expiration_date = optional_date(payload, "expiration_date")
        if expiration_date is None:
            raise ValidationError("expiration_date is required")
        return cls(
            product_id=require_int(payload, "product_id", minimum=1),
            quantity=require_int(payload, "quantity", minimum=1),
            expiration_date=expiration_date,
            supplier_id=optional_int(payload, "supplier_id", minimum=1),
        )


@dataclass(frozen=True)
class BatchQuantityRequest:
    current_quantity: int
    reason: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "BatchQuantityRequest":
        payload = _require_dict(payload)
        return cls(
            current_quantity=require_int(payload, "current_quantity", minimum=0),
            reason=optional_text(payload, "reason"),
        )


# =============================================================================
# CASH SESSIONS
# =============================================================================

@dataclass(frozen=True)
class OpenSessionRequest:
    opening_amount_cents: int
    cashier_name: str | None = None
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "OpenSessionRequest":
        payload = _require_dict(payload)
        return cls(
            opening_amount_cents=require_int(payload, "opening_amount_cents", minimum=0, maximum=MAX_AMOUNT_CENTS),
            cashier_name=optional_text(payload, "cashier_name", max_length=128),
            notes=optional_text(payload, "notes"),
        )


@dataclass(frozen=True)
class CountCashRequest:
    actual_amount_cents: int
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "CountCashRequest":
        payload = _require_dict(payload)
        return cls(
            actual_amount_cents=require_int(payload, "actual_amount_cents", minimum=0, maximum=MAX_AMOUNT_CENTS),
            notes=optional_text(payload, "notes"),
        )


@dataclass(frozen=True)
class CloseSessionRequest:
    actual_amount_cents: int
    closing_amount_cents: int | None = None
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "CloseSessionRequest":
        payload = _require_dict(payload)
        actual = require_int(payload, "actual_amount_cents", minimum=0, maximum=MAX_AMOUNT_CENTS)
        return cls(
            actual_amount_cents=actual,
            closing_amount_cents=optional_int(payload, "closing_amount_cents", minimum=0, default=actual),
            notes=optional_text(payload, "notes"),
        )


# =============================================================================
# SALES
# =============================================================================

@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    quantity: int
    unit_price_cents: int
    discount_cents: int = 0

    @property
    def total_price_cents(self) -> int:
        return self.quantity * self.unit_price_cents - self.discount_cents

    @classmethod
    def from_payload(cls, payload: Any) -> "SaleLineRequest":
        payload = _require_dict(payload)
        line = cls(
            product_id=require_int(payload, "product_id", minimum=1),
            quantity=require_int(payload, "quantity", minimum=1),
            unit_price_cents=require_int(payload, "unit_price_cents", minimum=0, maximum=MAX_AMOUNT_CENTS),
            discount_cents=optional_int(payload, "discount_cents", minimum=0, default=0),
        )
        if line.total_price_cents < 0:
            raise ValidationError("line discount cannot exceed the line amount")
        return line


@dataclass(frozen=True)
class SaleRequest:
    lines: tuple[SaleLineRequest, ...]
    payment_method: str
    discount_cents: int = 0
    tax_cents: int = 0
    cashier_name: str | None = None
    customer_name: str | None = None
    notes: str | None = None

    @property
    def total_amount_cents(self) -> int:
        return sum(line.total_price_cents for line in self.lines)

    @property
    def final_amount_cents(self) -> int:
        return self.total_amount_cents - self.discount_cents + self.tax_cents

    @classmethod
    def from_payload(cls, payload: Any) -> "SaleRequest":
        payload = _require_dict(payload)
        raw_lines = payload.get("lines")
        if not isinstance(raw_lines, list) or not raw_lines:
            raise ValidationError("lines must be a non-empty list")
        payment_method = (optional_text(payload, "payment_method", max_length=32) or "").lower()
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
        sale = cls(
            lines=tuple(SaleLineRequest.from_payload(raw) for raw in raw_lines),
            payment_method=payment_method,
            discount_cents=optional_int(payload, "discount_cents", minimum=0, default=0),
            tax_cents=optional_int(payload, "tax_cents", minimum=0, default=0),
            cashier_name=optional_text(payload, "cashier_name", max_length=128),
            customer_name=optional_text(payload, "customer_name"),
            notes=optional_text(payload, "notes"),
        )
        if sale.final_amount_cents < 0:
            raise ValidationError("discount cannot exceed the sale amount")
        return sale


@dataclass(frozen=True)
class ReturnLineRequest:
    sale_line_id: int
    quantity: int


@dataclass(frozen=True)
class ReturnRequest:
    items: tuple[ReturnLineRequest, ...] = field(default_factory=tuple)
    reason: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> "ReturnRequest":
        payload = _require_dict(payload)
        raw_items = payload.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("items must be a non-empty list")
        items = []
        for raw in raw_items:
            raw = _require_dict(raw)
            items.append(
                ReturnLineRequest(
                    sale_line_id=require_int(raw, "sale_line_id", minimum=1),
                    quantity=require_int(raw, "quantity", minimum=1),
                )
            )
        return cls(items=tuple(items), reason=require_text(payload, "reason"))
