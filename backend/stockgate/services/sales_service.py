"""
Sale Transaction Service

Unlike other movements, a sale deducts stock synchronously: the allocation,
the Sale row and the ledger delta commit as one unit. Later edits and
deletions go through sale audits (see sale_audit_service).

PRICING:
- total = kg_quantity * price_per_kg + boxes_quantity * price_per_box,
  priced off what the customer asked for, not the units that were converted
- remaining = 0 when paid, else total - amount_paid
- profit per unit is snapshotted (price - cost) for reporting
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Sale
from ..models.sales import (
    PAYMENT_METHODS,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUSES,
)
from .allocation import AllocationPlan, allocate
from .audit_trail import ACTION_CREATED, ENTITY_SALE, append_audit_entry
from .concurrency import run_with_retry
from .pagination import apply_date_range, page_params, paginate
from .stock_ledger import apply_delta, get_product, stock_snapshot
from stockgate.validation import (
    optional_text,
    parse_choice,
    parse_decimal,
    parse_int,
    parse_sort,
    quantize_money,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

SORTABLE_FIELDS = {
    "created_at": Sale.created_at,
    "total_amount": Sale.total_amount,
    "remaining_amount": Sale.remaining_amount,
    "id": Sale.id,
}


def _parse_client(client: dict | None, payment_status: str) -> dict:
    client = client or {}
    if not isinstance(client, dict):
        raise ValidationError("client must be an object")

    parsed = {
        "client_id": optional_text(client.get("client_id"), "client_id", max_length=64),
        "client_name": optional_text(client.get("client_name"), "client_name", max_length=255),
        "email_address": optional_text(client.get("email_address"), "email_address", max_length=255),
        "phone": optional_text(client.get("phone"), "phone", max_length=32),
    }
    if payment_status in (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PARTIAL) and not parsed["client_name"]:
        raise ValidationError(
            "Client name is required for pending or partial payments",
            {"field": "client_name"},
        )
    return parsed


def compute_sale_amounts(
    *,
    kg_quantity: Decimal,
    boxes_quantity: int,
    kg_price: Decimal,
    box_price: Decimal,
    payment_status: str,
    amount_paid: Decimal | None,
) -> dict:
    """
    Price a sale and settle its payment fields.

    amount_paid defaults to the full total for paid sales and to zero
    otherwise.

    Raises:
        ValidationError: amount_paid exceeds the total
    """
    total = quantize_money(Decimal(kg_quantity) * Decimal(kg_price) + boxes_quantity * Decimal(box_price))

    if amount_paid is None:
        amount_paid = total if payment_status == PAYMENT_STATUS_PAID else ZERO
    amount_paid = quantize_money(amount_paid)
    if amount_paid > total:
        raise ValidationError(
            "amount_paid cannot exceed the sale total",
            {"total_amount": str(total), "amount_paid": str(amount_paid)},
        )

    remaining = ZERO if payment_status == PAYMENT_STATUS_PAID else total - amount_paid
    return {
        "total_amount": total,
        "amount_paid": amount_paid,
        "remaining_amount": quantize_money(remaining),
    }


def create_sale(
    product_id: int,
    *,
    account_id: int,
    kg_quantity=None,
    boxes_quantity=None,
    payment_method: str | None = None,
    payment_status: str | None = None,
    amount_paid=None,
    client: dict | None = None,
    performed_by: int | None = None,
) -> tuple[Sale, AllocationPlan]:
    """
    Sell kg and/or whole boxes of a product.

    Args:
        product_id: Product being sold
        account_id: Tenant scope
        kg_quantity / boxes_quantity: What the customer asked for
        payment_method: momo_pay | cash | bank_transfer
        payment_status: paid | pending | partial
        amount_paid: Optional; defaults to the total for paid sales
        client: client_id / client_name / email_address / phone
        performed_by: Acting user

    Returns:
        (sale, allocation plan) - the plan's steps are the receipt trace

    Raises:
        ValidationError: Bad input (nothing requested, missing client name...)
        NotFoundError: Unknown product
        InsufficientStockError: Stock can't cover the request; nothing written
    """
    kg = parse_decimal(kg_quantity, "kg_quantity", required=False, default=ZERO)
    boxes = parse_int(boxes_quantity, "boxes_quantity", required=False, default=0)
    if kg <= 0 and boxes <= 0:
        raise ValidationError("Sale must include kg_quantity or boxes_quantity greater than zero")
    payment_method = parse_choice(payment_method, "payment_method", PAYMENT_METHODS)
    payment_status = parse_choice(payment_status, "payment_status", PAYMENT_STATUSES)
    paid = parse_decimal(amount_paid, "amount_paid", required=False)
    client_fields = _parse_client(client, payment_status)

    def _op():
        product = get_product(product_id, account_id=account_id, lock=True)
        before = stock_snapshot(product)

        plan = allocate(
            kg,
            boxes,
            loose_kg=product.loose_kg,
            boxes=product.boxes,
            box_to_kg_ratio=product.box_to_kg_ratio,
        )
        amounts = compute_sale_amounts(
            kg_quantity=kg,
            boxes_quantity=boxes,
            kg_price=product.price_per_kg,
            box_price=product.price_per_box,
            payment_status=payment_status,
            amount_paid=paid,
        )

        sale = Sale(
            account_id=account_id,
            product_id=product.id,
            boxes_quantity=boxes,
            kg_quantity=kg,
            box_price=product.price_per_box,
            kg_price=product.price_per_kg,
            profit_per_box=Decimal(product.price_per_box) - Decimal(product.cost_per_box),
            profit_per_kg=Decimal(product.price_per_kg) - Decimal(product.cost_per_kg),
            payment_status=payment_status,
            payment_method=payment_method,
            allocation_steps=list(plan.steps),
            performed_by=performed_by,
            **amounts,
            **client_fields,
        )
        db.session.add(sale)
        apply_delta(product.id, plan.box_delta, plan.kg_delta, account_id=account_id)
        db.session.flush()

        append_audit_entry(
            account_id=account_id,
            entity_type=ENTITY_SALE,
            entity_id=sale.id,
            action=ACTION_CREATED,
            actor_id=performed_by,
            before=before,
            after={**stock_snapshot(product), "allocation": plan.to_dict()},
        )
        db.session.commit()
        logger.info(
            "Sale %s created for product %s: %s box(es), %skg",
            sale.id, product.id, boxes, kg,
        )
        return sale, plan

    return run_with_retry(_op)


def get_sale(sale_id: int, *, account_id: int | None = None) -> Sale:
    query = db.session.query(Sale).filter(Sale.id == sale_id)
    if account_id is not None:
        query = query.filter(Sale.account_id == account_id)
    sale = query.one_or_none()
    if sale is None:
        raise NotFoundError("Sale", sale_id)
    return sale


def list_sales(
    *,
    account_id: int | None = None,
    product_id=None,
    payment_status: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    page=None,
    limit=None,
    sort_by: str | None = None,
    sort_order: str | None = None,
) -> dict:
    page, limit = page_params(page, limit)
    sort_by, sort_order = parse_sort(sort_by, sort_order, SORTABLE_FIELDS, default="created_at")

    query = db.session.query(Sale)
    if account_id is not None:
        query = query.filter(Sale.account_id == account_id)
    if product_id not in (None, ""):
        query = query.filter(Sale.product_id == parse_int(product_id, "product_id"))
    if payment_status:
        query = query.filter(
            Sale.payment_status == parse_choice(payment_status, "payment_status", PAYMENT_STATUSES)
        )
    query = apply_date_range(query, Sale.created_at, date_from, date_to)

    column = SORTABLE_FIELDS[sort_by]
    ordering = column.asc() if sort_order == "asc" else column.desc()
    return paginate(query.order_by(ordering, Sale.id.desc()), page=page, limit=limit)
