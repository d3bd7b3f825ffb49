"""
Sale Audit Service

Edits and deletions of an existing sale never touch it directly. They create
a pending SaleAudit carrying old/new snapshots; only an approval re-executes
the change against current stock.

CLASSIFICATION (first match wins):
- quantity_change        boxes or kg differ (payment method may change too)
- payment_method_change  only the payment method differs
- deletion               explicit delete request
A request that changes nothing raises NoChangeError and is not recorded.

ON APPROVAL:
- quantity_change: restore the sale's recorded quantities virtually, run the
  allocation for the new quantities on that restored stock, apply the net
  difference to the ledger and update the sale.
- payment_method_change: update the method only.
- deletion: give back exactly the recorded (boxes, kg), reject the sale's
  other pending audits, detach every audit of the sale and delete it.
  old_values keeps the full snapshot.
Rejection never touches the ledger or the sale.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from ..extensions import db
from ..errors import NoChangeError, NotFoundError, ValidationError
from ..models import Sale, SaleAudit
from ..models.sales import (
    AUDIT_DELETION,
    AUDIT_PAYMENT_METHOD_CHANGE,
    AUDIT_QUANTITY_CHANGE,
    AUDIT_STATUS_APPROVED,
    AUDIT_STATUS_PENDING,
    AUDIT_STATUS_REJECTED,
    AUDIT_STATUSES,
    AUDIT_TYPES,
    PAYMENT_METHODS,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUSES,
)
from .allocation import allocate
from .approval_workflow import ApprovalWorkflow
from .audit_trail import ACTION_REJECTED, ACTION_REQUESTED, ENTITY_SALE_AUDIT, append_audit_entry
from .concurrency import lock_for_update, run_with_retry
from .pagination import apply_date_range, page_params, paginate
from .sales_service import compute_sale_amounts, get_sale
from .stock_ledger import apply_delta, get_product, stock_snapshot
from stockgate.validation import (
    parse_choice,
    parse_decimal,
    parse_int,
    parse_sort,
    quantize_kg,
    quantize_money,
    require_text,
)
from stockgate.time_utils import utcnow

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "created_at": SaleAudit.created_at,
    "decided_at": SaleAudit.decided_at,
    "audit_type": SaleAudit.audit_type,
    "status": SaleAudit.status,
    "id": SaleAudit.id,
}


# =============================================================================
# PAYLOADS
# =============================================================================

@dataclass(frozen=True)
class SaleQuantityChange:
    sale_id: int
    boxes_quantity: int
    kg_quantity: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    remaining_amount: Decimal
    payment_method: str | None
    payment_status: str


@dataclass(frozen=True)
class SalePaymentMethodChange:
    sale_id: int
    payment_method: str


@dataclass(frozen=True)
class SaleDeletion:
    sale_id: int


def _decode_audit(audit: SaleAudit):
    if audit.sale_id is None:
        raise NotFoundError("Sale", (audit.old_values or {}).get("id"))

    new_values = audit.new_values or {}
    if audit.audit_type == AUDIT_QUANTITY_CHANGE:
        return SaleQuantityChange(
            sale_id=audit.sale_id,
            boxes_quantity=parse_int(new_values.get("boxes_quantity"), "boxes_quantity"),
            kg_quantity=parse_decimal(new_values.get("kg_quantity"), "kg_quantity"),
            total_amount=parse_decimal(new_values.get("total_amount"), "total_amount"),
            amount_paid=parse_decimal(new_values.get("amount_paid"), "amount_paid"),
            remaining_amount=parse_decimal(new_values.get("remaining_amount"), "remaining_amount"),
            payment_method=new_values.get("payment_method"),
            payment_status=parse_choice(new_values.get("payment_status"), "payment_status", PAYMENT_STATUSES),
        )
    if audit.audit_type == AUDIT_PAYMENT_METHOD_CHANGE:
        return SalePaymentMethodChange(
            sale_id=audit.sale_id,
            payment_method=parse_choice(new_values.get("payment_method"), "payment_method", PAYMENT_METHODS),
        )
    if audit.audit_type == AUDIT_DELETION:
        return SaleDeletion(sale_id=audit.sale_id)
    raise ValidationError(f"Unknown sale audit type: {audit.audit_type}")


# =============================================================================
# WORKFLOW
# =============================================================================

class SaleAuditWorkflow(ApprovalWorkflow):
    model = SaleAudit
    entity_type = ENTITY_SALE_AUDIT
    entity_label = "Sale audit"
    kind_attr = "audit_type"

    pending_status = AUDIT_STATUS_PENDING
    approved_status = AUDIT_STATUS_APPROVED
    rejected_status = AUDIT_STATUS_REJECTED

    def decode(self, record):
        return _decode_audit(record)

    def record_approval(self, record, *, actor_id, note):
        record.approved_by = actor_id
        record.approval_reason = note

    def record_rejection(self, record, *, actor_id, reason):
        record.approved_by = actor_id
        record.approval_reason = reason


sale_audit_workflow = SaleAuditWorkflow()


def _lock_sale(sale_id: int, account_id: int) -> Sale:
    query = db.session.query(Sale).filter(Sale.id == sale_id, Sale.account_id == account_id)
    sale = lock_for_update(query).one_or_none()
    if sale is None:
        raise NotFoundError("Sale", sale_id)
    return sale


def supersede_pending_audits(condition, *, actor_id, reason: str, exclude_id: int | None = None) -> int:
    """Reject every pending audit matching condition. Returns how many were closed."""
    query = db.session.query(SaleAudit).filter(condition, SaleAudit.status == AUDIT_STATUS_PENDING)
    if exclude_id is not None:
        query = query.filter(SaleAudit.id != exclude_id)

    closed = 0
    for pending in lock_for_update(query).all():
        pending.status = AUDIT_STATUS_REJECTED
        pending.approved_by = actor_id
        pending.approval_reason = reason
        pending.decided_at = utcnow()
        append_audit_entry(
            account_id=pending.account_id,
            entity_type=ENTITY_SALE_AUDIT,
            entity_id=pending.id,
            action=ACTION_REJECTED,
            actor_id=actor_id,
            reason=reason,
        )
        closed += 1

    db.session.flush()
    if closed:
        logger.info("Closed %s pending sale audit(s): %s", closed, reason)
    return closed


@sale_audit_workflow.executor(AUDIT_QUANTITY_CHANGE)
def _execute_quantity_change(audit: SaleAudit, payload: SaleQuantityChange, *, actor_id):
    sale = _lock_sale(payload.sale_id, audit.account_id)
    product = get_product(sale.product_id, account_id=audit.account_id, lock=True)
    before = {"sale": sale.to_dict(), "stock": stock_snapshot(product)}

    current_kg = quantize_kg(product.loose_kg)
    plan = allocate(
        payload.kg_quantity,
        payload.boxes_quantity,
        loose_kg=current_kg + Decimal(sale.kg_quantity),
        boxes=product.boxes + sale.boxes_quantity,
        box_to_kg_ratio=product.box_to_kg_ratio,
    )
    apply_delta(
        product.id,
        plan.new_boxes - product.boxes,
        plan.new_loose_kg - current_kg,
        account_id=audit.account_id,
    )

    sale.boxes_quantity = payload.boxes_quantity
    sale.kg_quantity = payload.kg_quantity
    sale.total_amount = payload.total_amount
    sale.amount_paid = payload.amount_paid
    sale.remaining_amount = payload.remaining_amount
    if payload.payment_method:
        sale.payment_method = payload.payment_method
    sale.payment_status = payload.payment_status
    sale.allocation_steps = list(plan.steps)
    db.session.flush()

    return {
        "before": before,
        "after": {"sale": sale.to_dict(), "stock": stock_snapshot(product)},
        "allocation": plan.to_dict(),
    }


@sale_audit_workflow.executor(AUDIT_PAYMENT_METHOD_CHANGE)
def _execute_payment_method_change(audit: SaleAudit, payload: SalePaymentMethodChange, *, actor_id):
    sale = _lock_sale(payload.sale_id, audit.account_id)
    before = {"payment_method": sale.payment_method}
    sale.payment_method = payload.payment_method
    db.session.flush()
    return {"before": before, "after": {"payment_method": sale.payment_method}}


@sale_audit_workflow.executor(AUDIT_DELETION)
def _execute_deletion(audit: SaleAudit, payload: SaleDeletion, *, actor_id):
    sale = _lock_sale(payload.sale_id, audit.account_id)
    product = get_product(sale.product_id, account_id=audit.account_id, lock=True)
    before = {"sale": sale.to_dict(), "stock": stock_snapshot(product)}

    apply_delta(product.id, sale.boxes_quantity, sale.kg_quantity, account_id=audit.account_id)

    supersede_pending_audits(
        SaleAudit.sale_id == sale.id,
        actor_id=actor_id,
        reason=f"Sale {sale.id} deleted by audit {audit.id}",
        exclude_id=audit.id,
    )
    (
        db.session.query(SaleAudit)
        .filter(SaleAudit.sale_id == sale.id, SaleAudit.id != audit.id)
        .update({SaleAudit.sale_id: None}, synchronize_session=False)
    )
    audit.sale_id = None
    db.session.flush()
    db.session.delete(sale)
    db.session.flush()

    return {"before": before, "after": {"sale": None, "stock": stock_snapshot(product)}}


# =============================================================================
# REQUESTS
# =============================================================================

def _create_audit(sale: Sale, *, audit_type: str, reason: str, requested_by, new_values, boxes_change=0, kg_change=Decimal("0")):
    audit = SaleAudit(
        account_id=sale.account_id,
        sale_id=sale.id,
        product_id=sale.product_id,
        audit_type=audit_type,
        status=AUDIT_STATUS_PENDING,
        boxes_change=boxes_change,
        kg_change=kg_change,
        old_values=sale.to_dict(),
        new_values=new_values,
        reason=reason,
        requested_by=requested_by,
    )
    db.session.add(audit)
    db.session.flush()

    append_audit_entry(
        account_id=sale.account_id,
        entity_type=ENTITY_SALE_AUDIT,
        entity_id=audit.id,
        action=ACTION_REQUESTED,
        actor_id=requested_by,
        reason=reason,
        before=audit.old_values,
        after=new_values,
    )
    logger.info("Sale audit %s (%s) requested for sale %s", audit.id, audit_type, sale.id)
    return audit


def request_sale_edit(
    sale_id: int,
    changes: dict,
    *,
    account_id: int,
    requested_by: int | None,
    reason: str | None,
) -> SaleAudit:
    """
    Queue an edit of a sale's quantities and/or payment method.

    Args:
        sale_id: Sale to edit
        changes: Any of boxes_quantity, kg_quantity, payment_method
        reason: Required justification shown to the approver

    Raises:
        ValidationError: Bad input, or quantities edited down to nothing
        NoChangeError: Nothing differs from the current sale
        InsufficientStockError: New quantities don't fit even with the
            original sale's quantities given back
    """
    reason = require_text(reason, "reason")
    if not isinstance(changes, dict):
        raise ValidationError("changes must be an object")

    def _op():
        sale = get_sale(sale_id, account_id=account_id)

        new_boxes = parse_int(changes.get("boxes_quantity"), "boxes_quantity", required=False, default=sale.boxes_quantity)
        new_kg = parse_decimal(changes.get("kg_quantity"), "kg_quantity", required=False, default=quantize_kg(sale.kg_quantity))
        new_method = parse_choice(changes.get("payment_method"), "payment_method", PAYMENT_METHODS, default=sale.payment_method)

        quantity_changed = new_boxes != sale.boxes_quantity or new_kg != quantize_kg(sale.kg_quantity)
        method_changed = new_method != sale.payment_method

        if not quantity_changed and not method_changed:
            raise NoChangeError("No changes detected")

        if not quantity_changed:
            audit = _create_audit(
                sale,
                audit_type=AUDIT_PAYMENT_METHOD_CHANGE,
                reason=reason,
                requested_by=requested_by,
                new_values={"payment_method": new_method},
            )
            db.session.commit()
            return audit

        if new_boxes <= 0 and new_kg <= 0:
            raise ValidationError("A sale can't be edited down to nothing; request a deletion instead")

        product = get_product(sale.product_id, account_id=account_id)
        allocate(
            new_kg,
            new_boxes,
            loose_kg=quantize_kg(product.loose_kg) + Decimal(sale.kg_quantity),
            boxes=product.boxes + sale.boxes_quantity,
            box_to_kg_ratio=product.box_to_kg_ratio,
        )

        new_total = quantize_money(new_kg * Decimal(sale.kg_price) + new_boxes * Decimal(sale.box_price))
        status = sale.payment_status
        paid = None
        overpaid = Decimal("0")
        if status != PAYMENT_STATUS_PAID:
            already_paid = Decimal(sale.amount_paid)
            if already_paid >= new_total:
                status = PAYMENT_STATUS_PAID
                overpaid = quantize_money(already_paid - new_total)
            else:
                paid = already_paid
        amounts = compute_sale_amounts(
            kg_quantity=new_kg,
            boxes_quantity=new_boxes,
            kg_price=sale.kg_price,
            box_price=sale.box_price,
            payment_status=status,
            amount_paid=paid,
        )
        new_values = {
            "boxes_quantity": new_boxes,
            "kg_quantity": str(new_kg),
            "payment_method": new_method,
            "payment_status": status,
            **{name: str(value) for name, value in amounts.items()},
        }
        if overpaid > 0:
            new_values["overpaid_amount"] = str(overpaid)

        audit = _create_audit(
            sale,
            audit_type=AUDIT_QUANTITY_CHANGE,
            reason=reason,
            requested_by=requested_by,
            new_values=new_values,
            boxes_change=new_boxes - sale.boxes_quantity,
            kg_change=new_kg - quantize_kg(sale.kg_quantity),
        )
        db.session.commit()
        return audit

    return run_with_retry(_op)


def request_sale_deletion(
    sale_id: int,
    *,
    account_id: int,
    requested_by: int | None,
    reason: str | None,
) -> SaleAudit:
    """Queue deletion of a sale; approval restores its stock."""
    reason = require_text(reason, "reason")

    def _op():
        sale = get_sale(sale_id, account_id=account_id)
        audit = _create_audit(
            sale,
            audit_type=AUDIT_DELETION,
            reason=reason,
            requested_by=requested_by,
            new_values=None,
        )
        db.session.commit()
        return audit

    return run_with_retry(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def approve(audit_id: int, *, approver_id: int | None, approval_reason: str | None = None, account_id: int | None = None):
    """Re-execute the audited change. Returns (audit, executor result)."""
    return sale_audit_workflow.approve(audit_id, actor_id=approver_id, account_id=account_id, note=approval_reason)


def reject(audit_id: int, *, reason: str | None, approver_id: int | None = None, account_id: int | None = None):
    return sale_audit_workflow.reject(audit_id, actor_id=approver_id, reason=reason, account_id=account_id)


# =============================================================================
# QUERIES
# =============================================================================

def get_sale_audit(audit_id: int, *, account_id: int | None = None) -> SaleAudit:
    return sale_audit_workflow.load(audit_id, account_id=account_id)


def list_sale_audits(
    *,
    account_id: int | None = None,
    sale_id=None,
    audit_type: str | None = None,
    status: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    page=None,
    limit=None,
    sort_by: str | None = None,
    sort_order: str | None = None,
) -> dict:
    page, limit = page_params(page, limit)
    sort_by, sort_order = parse_sort(sort_by, sort_order, SORTABLE_FIELDS, default="created_at")

    query = db.session.query(SaleAudit)
    if account_id is not None:
        query = query.filter(SaleAudit.account_id == account_id)
    if sale_id not in (None, ""):
        query = query.filter(SaleAudit.sale_id == parse_int(sale_id, "sale_id"))
    if audit_type:
        query = query.filter(SaleAudit.audit_type == parse_choice(audit_type, "audit_type", AUDIT_TYPES))
    if status:
        query = query.filter(SaleAudit.status == parse_choice(status, "status", AUDIT_STATUSES))
    query = apply_date_range(query, SaleAudit.created_at, date_from, date_to)

    column = SORTABLE_FIELDS[sort_by]
    ordering = column.asc() if sort_order == "asc" else column.desc()
    return paginate(query.order_by(ordering, SaleAudit.id.desc()), page=page, limit=limit)
