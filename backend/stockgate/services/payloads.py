"""
Typed payloads for mutation requests.

The mutation_requests table stores every kind in the same columns
(box_delta/kg_delta, field_changed/old_value/new_value). This module is the
single place those columns are written and read back: requests are encoded
once on creation and decoded once before execution, so executors only ever
see one of the dataclasses below.

    new_stock / stock_correction / damage -> QuantityDelta
    product_edit                          -> FieldEdit
    product_create                        -> StagedProduct
    product_delete                        -> ProductRemoval
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Union

from stockgate.errors import ValidationError
from stockgate.models.movements import (
    KIND_DAMAGE,
    KIND_NEW_STOCK,
    KIND_PRODUCT_CREATE,
    KIND_PRODUCT_DELETE,
    KIND_PRODUCT_EDIT,
    KIND_STOCK_CORRECTION,
    QUANTITY_KINDS,
)
from stockgate.validation import (
    parse_date,
    parse_decimal,
    parse_int,
    quantize_kg,
    require_text,
)

PRODUCT_CREATION_FIELD = "product_creation"
PRODUCT_DELETION_FIELD = "product_deletion"
PENDING_DELETION_MARKER = "PENDING_DELETION"


@dataclass(frozen=True)
class QuantityDelta:
    box_delta: int
    kg_delta: Decimal

    @property
    def is_zero(self) -> bool:
        return self.box_delta == 0 and self.kg_delta == 0


@dataclass(frozen=True)
class FieldEdit:
    field: str
    old_value: str | None
    new_value: Any


@dataclass(frozen=True)
class StagedProduct:
    fields: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ProductRemoval:
    product_id: int
    description: str


Payload = Union[QuantityDelta, FieldEdit, StagedProduct, ProductRemoval]


# =============================================================================
# EDITABLE PRODUCT FIELDS
# =============================================================================

def _parse_name(value: Any, name: str) -> str:
    return require_text(value, name, max_length=255)


def _parse_category(value: Any, name: str) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return require_text(value, name, max_length=64)


def _parse_ratio(value: Any, name: str) -> Decimal:
    return parse_decimal(value, name, positive=True)


def _parse_amount(value: Any, name: str) -> Decimal:
    return parse_decimal(value, name)


def _parse_threshold(value: Any, name: str) -> int:
    return parse_int(value, name)


def _parse_expiry(value: Any, name: str) -> date | None:
    return parse_date(value, name)


# Catalog fields an approved product_edit may write. Quantities are excluded;
# they change only through the stock ledger.
EDITABLE_FIELDS: dict[str, Callable[[Any, str], Any]] = {
    "name": _parse_name,
    "category": _parse_category,
    "box_to_kg_ratio": _parse_ratio,
    "cost_per_box": _parse_amount,
    "cost_per_kg": _parse_amount,
    "price_per_box": _parse_amount,
    "price_per_kg": _parse_amount,
    "boxed_low_stock_threshold": _parse_threshold,
    "expiry_date": _parse_expiry,
}

# Fields a staged product may carry, including its opening stock.
CREATABLE_FIELDS: dict[str, Callable[[Any, str], Any]] = {
    **EDITABLE_FIELDS,
    "loose_kg": _parse_amount,
    "boxes": _parse_threshold,
}


def parse_field_value(field_name: str, value: Any) -> Any:
    parser = EDITABLE_FIELDS.get(field_name)
    if parser is None:
        raise ValidationError(f"Field '{field_name}' cannot be edited", {"field": field_name})
    return parser(value, field_name)


def serialize_value(value: Any) -> str | None:
    """String form stored in old_value/new_value columns."""
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(quantize_kg(value))
    return str(value)


def stage_product_fields(raw: dict) -> dict:
    """Validate a product_create payload and return its parsed fields."""
    if not isinstance(raw, dict):
        raise ValidationError("Product data must be an object")
    unknown = sorted(set(raw) - set(CREATABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown product fields: {', '.join(unknown)}", {"fields": unknown})
    if "name" not in raw:
        raise ValidationError("name is required")
    return {name: CREATABLE_FIELDS[name](value, name) for name, value in raw.items()}


# =============================================================================
# ENCODE / DECODE
# =============================================================================

def encode_payload(request, payload: Payload) -> None:
    """Write a typed payload into the request's storage columns."""
    if isinstance(payload, QuantityDelta):
        if request.kind not in QUANTITY_KINDS:
            raise ValidationError(f"{request.kind} requests don't carry quantity deltas")
        if payload.is_zero:
            raise ValidationError("A stock movement needs a non-zero box or kg change")
        request.box_delta = payload.box_delta
        request.kg_delta = quantize_kg(payload.kg_delta)
    elif isinstance(payload, FieldEdit):
        if request.kind != KIND_PRODUCT_EDIT:
            raise ValidationError(f"{request.kind} requests don't carry field edits")
        request.field_changed = payload.field
        request.old_value = payload.old_value
        request.new_value = serialize_value(payload.new_value)
    elif isinstance(payload, StagedProduct):
        if request.kind != KIND_PRODUCT_CREATE:
            raise ValidationError(f"{request.kind} requests don't carry staged products")
        request.field_changed = PRODUCT_CREATION_FIELD
        request.new_value = json.dumps(
            {name: serialize_value(value) for name, value in payload.fields.items()},
            sort_keys=True,
        )
    elif isinstance(payload, ProductRemoval):
        if request.kind != KIND_PRODUCT_DELETE:
            raise ValidationError(f"{request.kind} requests don't carry product removals")
        request.product_id = payload.product_id
        request.field_changed = PRODUCT_DELETION_FIELD
        request.old_value = payload.description
        request.new_value = PENDING_DELETION_MARKER
    else:
        raise ValidationError(f"Unsupported payload type: {type(payload).__name__}")


def decode_payload(request) -> Payload:
    """
    Read a stored request back into its typed payload.

    Raises:
        ValidationError: Stored columns don't match the request kind
    """
    kind = request.kind

    if kind in (KIND_NEW_STOCK, KIND_STOCK_CORRECTION, KIND_DAMAGE):
        delta = QuantityDelta(
            box_delta=int(request.box_delta or 0),
            kg_delta=quantize_kg(Decimal(request.kg_delta or 0)),
        )
        if delta.is_zero:
            raise ValidationError(f"Request {request.id} has no quantity change")
        return delta

    if kind == KIND_PRODUCT_EDIT:
        if not request.field_changed:
            raise ValidationError(f"Request {request.id} has no field to edit")
        return FieldEdit(
            field=request.field_changed,
            old_value=request.old_value,
            new_value=parse_field_value(request.field_changed, request.new_value),
        )

    if kind == KIND_PRODUCT_CREATE:
        try:
            raw = json.loads(request.new_value or "")
        except ValueError:
            raise ValidationError(f"Request {request.id} has an unreadable product payload")
        return StagedProduct(fields=stage_product_fields(raw))

    if kind == KIND_PRODUCT_DELETE:
        if request.product_id is None:
            raise ValidationError(f"Request {request.id} has no product to delete")
        return ProductRemoval(product_id=request.product_id, description=request.old_value or "")

    raise ValidationError(f"Unknown mutation kind: {kind}")
