# Overview: Read-only inventory views: stock summary, low-stock list, pending approvals.

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import DamageRecord, MutationRequest, Product, SaleAudit
from ..models.movements import (
    KIND_DAMAGE,
    KIND_NEW_STOCK,
    STATUS_COMPLETED,
    STATUS_PENDING,
)
from ..models.sales import AUDIT_STATUS_PENDING
from .stock_ledger import get_product
from stockgate.validation import quantize_kg

ZERO = Decimal("0")


def get_stock_summary(product_id: int, *, account_id: int | None = None) -> dict:
    """
    Current stock of a product plus the totals of its completed movements.

    totals.boxes_in / kg_in: approved restocks
    totals.boxes_damaged / kg_damaged: approved write-offs (positive numbers)
    """
    product = get_product(product_id, account_id=account_id)

    def _sum_completed(kind: str):
        boxes, kg = (
            db.session.query(
                func.coalesce(func.sum(MutationRequest.box_delta), 0),
                func.coalesce(func.sum(MutationRequest.kg_delta), 0),
            )
            .filter(
                MutationRequest.product_id == product.id,
                MutationRequest.kind == kind,
                MutationRequest.status == STATUS_COMPLETED,
            )
            .one()
        )
        return int(boxes or 0), quantize_kg(Decimal(str(kg or 0)))

    boxes_in, kg_in = _sum_completed(KIND_NEW_STOCK)
    boxes_damaged, kg_damaged = _sum_completed(KIND_DAMAGE)

    loss_value = (
        db.session.query(func.coalesce(func.sum(DamageRecord.loss_value), 0))
        .filter(DamageRecord.product_id == product.id)
        .scalar()
    )

    return {
        "product_id": product.id,
        "name": product.name,
        "current_stock": {
            "boxes": product.boxes,
            "loose_kg": str(quantize_kg(product.loose_kg)),
            "box_to_kg_ratio": str(quantize_kg(product.box_to_kg_ratio)),
            "total_kg": str(quantize_kg(product.total_kg)),
        },
        "low_stock_threshold": product.boxed_low_stock_threshold,
        "is_low_stock": product.is_low_stock,
        "totals": {
            "boxes_in": boxes_in,
            "kg_in": str(kg_in),
            "boxes_damaged": -boxes_damaged,
            "kg_damaged": str(ZERO - kg_damaged),
            "damage_loss_value": str(quantize_kg(Decimal(str(loss_value or 0)))),
        },
    }


def list_low_stock(*, account_id: int | None = None) -> list[Product]:
    query = db.session.query(Product).filter(Product.boxes <= Product.boxed_low_stock_threshold)
    if account_id is not None:
        query = query.filter(Product.account_id == account_id)
    return query.order_by(Product.boxes.asc(), Product.name.asc()).all()


def list_products(*, account_id: int | None = None) -> list[Product]:
    query = db.session.query(Product)
    if account_id is not None:
        query = query.filter(Product.account_id == account_id)
    return query.order_by(Product.name.asc()).all()


def list_pending_approvals(*, account_id: int | None = None) -> dict:
    """Counts of everything waiting for an approver, grouped by kind."""
    requests = db.session.query(MutationRequest.kind, func.count(MutationRequest.id)).filter(
        MutationRequest.status == STATUS_PENDING
    )
    audits = db.session.query(SaleAudit.audit_type, func.count(SaleAudit.id)).filter(
        SaleAudit.status == AUDIT_STATUS_PENDING
    )
    if account_id is not None:
        requests = requests.filter(MutationRequest.account_id == account_id)
        audits = audits.filter(SaleAudit.account_id == account_id)

    request_counts = dict(requests.group_by(MutationRequest.kind).all())
    audit_counts = dict(audits.group_by(SaleAudit.audit_type).all())

    return {
        "mutation_requests": request_counts,
        "sale_audits": audit_counts,
        "total": sum(request_counts.values()) + sum(audit_counts.values()),
    }
