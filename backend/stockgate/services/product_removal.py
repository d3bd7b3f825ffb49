"""
Product Removal Cascade

Executes an approved product_delete: every record that depends on the
product is cleaned up in a fixed order, then the product row itself goes.
All of it runs inside the approval's transaction.

ORDER:
1. sale_audits        pending audits of the product's sales are rejected,
                      then all are detached (sale_id cleared); their
                      old_values snapshot stays
2. sales              sale line items of the product
3. mutation_requests  every other request for the product (the executing
                      product_delete request is kept)
4. stock_additions
5. stock_corrections
6. damage_records
7. the product        essential; never skipped

POLICY (config CASCADE_DELETE_POLICY):
- best_effort: each cleanup runs in a SAVEPOINT. A storage failure rolls
  that step back, is logged, and is reported in the result's `failures`
  (and from there in the response and the audit entry).
- fail_fast: the first failure raises CascadeDeleteFailure and the whole
  approval rolls back; the product and its dependents stay untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import CascadeDeleteFailure
from ..models import (
    DamageRecord,
    MutationRequest,
    Product,
    Sale,
    SaleAudit,
    StockAddition,
    StockCorrection,
)
from .sale_audit_service import supersede_pending_audits

logger = logging.getLogger(__name__)

POLICY_BEST_EFFORT = "best_effort"
POLICY_FAIL_FAST = "fail_fast"


@dataclass
class RemovalResult:
    product_id: int
    removed: dict = field(default_factory=dict)
    failures: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "removed": dict(self.removed),
            "failures": list(self.failures),
        }


def _sale_ids(product_id: int):
    return db.select(Sale.id).where(Sale.product_id == product_id)


def _detach_sale_audits(product_id: int, keep_request_id: int) -> int:
    supersede_pending_audits(
        SaleAudit.sale_id.in_(_sale_ids(product_id)),
        actor_id=None,
        reason=f"Product {product_id} deleted by request {keep_request_id}",
    )
    return (
        db.session.query(SaleAudit)
        .filter(SaleAudit.sale_id.in_(_sale_ids(product_id)))
        .update({SaleAudit.sale_id: None}, synchronize_session=False)
    )


def _delete_sales(product_id: int, keep_request_id: int) -> int:
    return (
        db.session.query(Sale)
        .filter(Sale.product_id == product_id)
        .delete(synchronize_session=False)
    )


def _delete_other_requests(product_id: int, keep_request_id: int) -> int:
    return (
        db.session.query(MutationRequest)
        .filter(MutationRequest.product_id == product_id, MutationRequest.id != keep_request_id)
        .delete(synchronize_session=False)
    )


def _delete_stock_additions(product_id: int, keep_request_id: int) -> int:
    return (
        db.session.query(StockAddition)
        .filter(StockAddition.product_id == product_id)
        .delete(synchronize_session=False)
    )


def _delete_stock_corrections(product_id: int, keep_request_id: int) -> int:
    return (
        db.session.query(StockCorrection)
        .filter(StockCorrection.product_id == product_id)
        .delete(synchronize_session=False)
    )


def _delete_damage_records(product_id: int, keep_request_id: int) -> int:
    return (
        db.session.query(DamageRecord)
        .filter(DamageRecord.product_id == product_id)
        .delete(synchronize_session=False)
    )


CLEANUP_STEPS = (
    ("sale_audits", _detach_sale_audits),
    ("sales", _delete_sales),
    ("mutation_requests", _delete_other_requests),
    ("stock_additions", _delete_stock_additions),
    ("stock_corrections", _delete_stock_corrections),
    ("damage_records", _delete_damage_records),
)


def _policy() -> str:
    policy = current_app.config.get("CASCADE_DELETE_POLICY", POLICY_BEST_EFFORT)
    if policy not in (POLICY_BEST_EFFORT, POLICY_FAIL_FAST):
        raise ValueError(f"Unknown CASCADE_DELETE_POLICY: {policy}")
    return policy


def remove_product(product: Product, *, request_id: int) -> RemovalResult:
    """
    Delete a product and everything that depends on it.

    Args:
        product: Locked product row
        request_id: The executing product_delete request (kept)

    Returns:
        RemovalResult with per-collection counts and any reported failures

    Raises:
        CascadeDeleteFailure: A cleanup failed under the fail_fast policy
    """
    policy = _policy()
    result = RemovalResult(product_id=product.id)

    for collection, cleanup in CLEANUP_STEPS:
        if policy == POLICY_FAIL_FAST:
            try:
                result.removed[collection] = cleanup(product.id, request_id)
            except SQLAlchemyError as exc:
                logger.error("Cleanup of %s for product %s failed: %s", collection, product.id, exc)
                raise CascadeDeleteFailure(product.id, [{"collection": collection, "error": str(exc)}])
            continue

        try:
            with db.session.begin_nested():
                result.removed[collection] = cleanup(product.id, request_id)
        except SQLAlchemyError as exc:
            logger.warning("Cleanup of %s for product %s failed: %s", collection, product.id, exc)
            result.failures.append({"collection": collection, "error": str(exc)})

    db.session.delete(product)
    db.session.flush()
    result.removed["products"] = 1

    logger.info("Removed product %s: %s", product.id, result.removed)
    return result
