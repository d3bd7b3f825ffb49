# Overview: The only writer of Product.loose_kg / Product.boxes.

from __future__ import annotations

import logging
from decimal import Decimal

from ..extensions import db
from ..models import Product
from ..errors import NotFoundError, OutOfStockError
from .concurrency import lock_for_update
from stockgate.validation import quantize_kg

logger = logging.getLogger(__name__)
"""
Stock Ledger Invariants (authoritative)

- loose_kg >= 0 and boxes >= 0 for every product at every commit.
- apply_delta is the only code path that changes quantities after a
  product is created.
- Every delta is a locked read-modify-write of the current row. The
  product's version_id turns a lost race into StaleDataError, which
  run_with_retry answers with a fresh read.
- apply_delta flushes but never commits; the caller's unit of work owns the
  transaction so a sale or approval and its stock effect land together.
"""


def get_product(product_id: int, *, account_id: int | None = None, lock: bool = False) -> Product:
    """
    Load a product scoped to an account.

    Raises:
        NotFoundError: Missing product or a product of another account
    """
    query = db.session.query(Product).filter(Product.id == product_id)
    if account_id is not None:
        query = query.filter(Product.account_id == account_id)
    if lock:
        query = lock_for_update(query)
    product = query.one_or_none()
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def stock_snapshot(product: Product) -> dict:
    """JSON-safe view of the quantities, used for before/after audit state."""
    return {
        "product_id": product.id,
        "loose_kg": str(quantize_kg(product.loose_kg)),
        "boxes": product.boxes,
        "box_to_kg_ratio": str(quantize_kg(product.box_to_kg_ratio)),
    }


def apply_delta(
    product_id: int,
    box_delta: int = 0,
    kg_delta=Decimal("0"),
    *,
    account_id: int | None = None,
) -> Product:
    """
    Atomically add signed deltas to a product's stock.

    Args:
        product_id: Product to change
        box_delta: Signed whole-box change
        kg_delta: Signed loose-kg change
        account_id: Tenant scope (None skips the scope check)

    Returns:
        The updated Product (flushed, not committed)

    Raises:
        NotFoundError: Product missing or outside the account
        OutOfStockError: Either quantity would go negative
    """
    box_delta = int(box_delta)
    kg_delta = quantize_kg(Decimal(kg_delta))

    product = get_product(product_id, account_id=account_id, lock=True)

    current_kg = quantize_kg(product.loose_kg)
    new_boxes = product.boxes + box_delta
    new_kg = current_kg + kg_delta

    if new_boxes < 0 or new_kg < 0:
        raise OutOfStockError(
            f"Insufficient stock for product {product.id}: "
            f"{product.boxes} box(es) and {current_kg}kg available",
            {
                "product_id": product.id,
                "current_boxes": product.boxes,
                "current_kg": str(current_kg),
                "box_delta": box_delta,
                "kg_delta": str(kg_delta),
            },
        )

    if box_delta == 0 and kg_delta == 0:
        return product

    product.boxes = new_boxes
    product.loose_kg = new_kg
    db.session.flush()

    logger.debug(
        "Applied delta to product %s: boxes %+d, kg %s (now %s boxes, %skg)",
        product.id, box_delta, kg_delta, new_boxes, new_kg,
    )
    return product
