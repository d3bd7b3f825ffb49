# Overview: Error taxonomy for inventory operations; each error maps to one response category.

from __future__ import annotations

from decimal import Decimal
from typing import Any


class InventoryError(Exception):
    """
    Base class for every business-rule failure raised by the engine.

    `code` is the stable response category returned to callers and
    `status_code` the HTTP status the routes map it to.
    """

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(InventoryError):
    """400-level input problem. Raised before any state change."""

    code = "validation_failed"
    status_code = 400


class NoChangeError(ValidationError):
    """An edit request that would not change anything."""


class NotFoundError(InventoryError):
    """Referenced record does not exist or belongs to another account."""

    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class InsufficientStockError(InventoryError):
    """Allocation cannot be satisfied. Nothing is applied."""

    code = "insufficient_stock"
    status_code = 422

    def __init__(
        self,
        message: str,
        *,
        shortage_kg: Decimal = Decimal("0"),
        shortage_boxes: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        details["shortage_kg"] = str(shortage_kg)
        if shortage_boxes is not None:
            details["shortage_boxes"] = shortage_boxes
        super().__init__(message, details)
        self.shortage_kg = shortage_kg
        self.shortage_boxes = shortage_boxes


class OutOfStockError(InventoryError):
    """A ledger delta would drive loose kg or boxes below zero."""

    code = "insufficient_stock"
    status_code = 422


class ConflictError(InventoryError):
    """409-level business rule conflict."""

    code = "conflict"
    status_code = 409


class AlreadyProcessedError(ConflictError):
    """Transition attempted on a record that already reached a terminal state."""

    def __init__(self, entity: str, entity_id: Any, status: str):
        super().__init__(
            f"{entity} {entity_id} has already been processed (status: {status})",
            {"reason": "already_processed", "entity": entity, "id": entity_id, "status": status},
        )
        self.status = status


class CascadeDeleteFailure(ConflictError):
    """A dependent-record cleanup failed while deleting a product."""

    def __init__(self, product_id: int, failures: list[dict]):
        super().__init__(
            f"Failed to remove records depending on product {product_id}",
            {"product_id": product_id, "failures": failures},
        )
        self.failures = failures
