"""
Stock Movement Service

Creates approval-gated mutation requests (restocks, corrections, damage
write-offs, catalog edits, product creation and deletion) and executes them
through the shared ApprovalWorkflow.

LIFECYCLE:
1. Request (pending) - validated and stored; stock and catalog untouched
2. Approve  (completed) - executor re-reads the product and applies the change
   Reject   (rejected)  - reason appended to the request, nothing applied
   Cancel   (cancelled) - requester withdraws, nothing applied

Every creation and transition appends an audit entry in the same transaction.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from ..extensions import db
from ..errors import ConflictError, NoChangeError, OutOfStockError, ValidationError
from ..models import (
    DamageRecord,
    MutationRequest,
    Product,
    StockAddition,
    StockCorrection,
)
from ..models.movements import (
    KIND_DAMAGE,
    KIND_NEW_STOCK,
    KIND_PRODUCT_CREATE,
    KIND_PRODUCT_DELETE,
    KIND_PRODUCT_EDIT,
    KIND_STOCK_CORRECTION,
    MUTATION_KINDS,
    MUTATION_STATUSES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_REJECTED,
)
from .approval_workflow import ApprovalWorkflow
from .audit_trail import ACTION_REQUESTED, ENTITY_MUTATION_REQUEST, append_audit_entry
from .concurrency import run_with_retry
from .pagination import apply_date_range, page_params, paginate
from .payloads import (
    EDITABLE_FIELDS,
    FieldEdit,
    ProductRemoval,
    QuantityDelta,
    StagedProduct,
    decode_payload,
    encode_payload,
    parse_field_value,
    serialize_value,
    stage_product_fields,
)
from .product_removal import remove_product
from .stock_ledger import apply_delta, get_product, stock_snapshot
from stockgate.validation import (
    optional_text,
    parse_choice,
    parse_date,
    parse_decimal,
    parse_int,
    parse_sort,
    quantize_money,
    require_text,
)

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "created_at": MutationRequest.created_at,
    "decided_at": MutationRequest.decided_at,
    "kind": MutationRequest.kind,
    "status": MutationRequest.status,
    "product_id": MutationRequest.product_id,
    "id": MutationRequest.id,
}


# =============================================================================
# WORKFLOW
# =============================================================================

class MovementWorkflow(ApprovalWorkflow):
    model = MutationRequest
    entity_type = ENTITY_MUTATION_REQUEST
    entity_label = "Mutation request"
    kind_attr = "kind"

    pending_status = STATUS_PENDING
    approved_status = STATUS_COMPLETED
    rejected_status = STATUS_REJECTED
    cancelled_status = STATUS_CANCELLED

    def decode(self, record):
        return decode_payload(record)

    def record_rejection(self, record, *, actor_id, reason):
        record.approved_by = actor_id
        if record.reason:
            record.reason = f"{record.reason} | REJECTED: {reason}"
        else:
            record.reason = f"REJECTED: {reason}"
        _sync_source_status(record, STATUS_REJECTED)

    def record_cancellation(self, record, *, actor_id, reason):
        if record.requested_by is not None and actor_id != record.requested_by:
            raise ValidationError("Only the requester can cancel a pending request")
        if reason:
            record.reason = f"{record.reason} | CANCELLED: {reason}" if record.reason else f"CANCELLED: {reason}"
        _sync_source_status(record, STATUS_CANCELLED)

    def record_execution(self, record, result):
        record.before_state = result.get("before")
        record.after_state = result.get("after")


movement_workflow = MovementWorkflow()


def _sync_source_status(record: MutationRequest, status: str) -> None:
    """Keep a request's source document (addition/correction) in step with it."""
    if record.stock_addition_id is not None:
        addition = db.session.get(StockAddition, record.stock_addition_id)
        if addition is not None:
            addition.status = status
    if record.correction_id is not None:
        correction = db.session.get(StockCorrection, record.correction_id)
        if correction is not None:
            correction.status = status


# =============================================================================
# EXECUTORS
# =============================================================================

@movement_workflow.executor(KIND_NEW_STOCK)
@movement_workflow.executor(KIND_STOCK_CORRECTION)
def _execute_quantity_delta(record: MutationRequest, payload: QuantityDelta, *, actor_id):
    product = get_product(record.product_id, account_id=record.account_id, lock=True)
    before = stock_snapshot(product)

    apply_delta(product.id, payload.box_delta, payload.kg_delta, account_id=record.account_id)
    _sync_source_status(record, STATUS_COMPLETED)

    return {"before": before, "after": stock_snapshot(product)}


@movement_workflow.executor(KIND_DAMAGE)
def _execute_damage(record: MutationRequest, payload: QuantityDelta, *, actor_id):
    product = get_product(record.product_id, account_id=record.account_id, lock=True)
    before = stock_snapshot(product)

    apply_delta(product.id, payload.box_delta, payload.kg_delta, account_id=record.account_id)

    damaged_boxes = -payload.box_delta
    damaged_kg = -payload.kg_delta
    loss_value = quantize_money(
        damaged_boxes * Decimal(product.price_per_box) + damaged_kg * Decimal(product.price_per_kg)
    )
    damage = DamageRecord(
        account_id=record.account_id,
        product_id=product.id,
        damaged_boxes=damaged_boxes,
        damaged_kg=damaged_kg,
        loss_value=loss_value,
        reason=record.reason,
        recorded_by=record.requested_by,
        approved_by=actor_id,
    )
    db.session.add(damage)
    db.session.flush()
    record.damage_id = damage.id

    return {
        "before": before,
        "after": stock_snapshot(product),
        "damage": damage.to_dict(),
    }


@movement_workflow.executor(KIND_PRODUCT_EDIT)
def _execute_product_edit(record: MutationRequest, payload: FieldEdit, *, actor_id):
    product = get_product(record.product_id, account_id=record.account_id, lock=True)
    before = {payload.field: serialize_value(getattr(product, payload.field))}

    setattr(product, payload.field, payload.new_value)
    db.session.flush()

    return {"before": before, "after": {payload.field: serialize_value(payload.new_value)}}


@movement_workflow.executor(KIND_PRODUCT_CREATE)
def _execute_product_create(record: MutationRequest, payload: StagedProduct, *, actor_id):
    product = Product(account_id=record.account_id, **payload.fields)
    db.session.add(product)
    db.session.flush()
    record.product_id = product.id

    after = stock_snapshot(product)
    after["name"] = product.name
    return {"before": None, "after": after, "product": product.to_dict()}


@movement_workflow.executor(KIND_PRODUCT_DELETE)
def _execute_product_delete(record: MutationRequest, payload: ProductRemoval, *, actor_id):
    product = get_product(payload.product_id, account_id=record.account_id, lock=True)
    before = product.to_dict()

    removal = remove_product(product, request_id=record.id)

    return {"before": before, "after": removal.to_dict(), "removal": removal.to_dict()}


# =============================================================================
# REQUEST CREATION
# =============================================================================

def _create_request(
    kind: str,
    payload,
    *,
    account_id: int,
    product_id: int | None,
    requested_by: int | None,
    reason: str | None,
    **links: Any,
) -> MutationRequest:
    """Persist a pending request and its audit entry. Caller commits."""
    request = MutationRequest(
        account_id=account_id,
        product_id=product_id,
        kind=kind,
        status=STATUS_PENDING,
        reason=reason,
        requested_by=requested_by,
        **links,
    )
    encode_payload(request, payload)
    db.session.add(request)
    db.session.flush()

    append_audit_entry(
        account_id=account_id,
        entity_type=ENTITY_MUTATION_REQUEST,
        entity_id=request.id,
        action=ACTION_REQUESTED,
        actor_id=requested_by,
        reason=reason,
        after=request.to_dict(),
    )
    logger.info("Mutation request %s (%s) created for product %s", request.id, kind, product_id)
    return request


def request_stock_addition(
    product_id: int,
    *,
    account_id: int,
    requested_by: int | None,
    boxes_added=0,
    kg_added=0,
    total_cost=None,
    delivery_date=None,
    reason: str | None = None,
) -> MutationRequest:
    """
    Record a delivery and queue a pending new_stock request for it.

    Raises:
        ValidationError: Neither boxes nor kg added
        NotFoundError: Unknown product
    """
    boxes = parse_int(boxes_added, "boxes_added", required=False, default=0)
    kg = parse_decimal(kg_added, "kg_added", required=False, default=Decimal("0"))
    cost = parse_decimal(total_cost, "total_cost", required=False, default=Decimal("0"))
    delivered = parse_date(delivery_date, "delivery_date")
    reason = optional_text(reason, "reason")

    if boxes <= 0 and kg <= 0:
        raise ValidationError("At least one of boxes_added or kg_added must be greater than zero")

    def _op():
        get_product(product_id, account_id=account_id)

        addition = StockAddition(
            account_id=account_id,
            product_id=product_id,
            boxes_added=boxes,
            kg_added=kg,
            total_cost=cost,
            delivery_date=delivered,
            status=STATUS_PENDING,
            added_by=requested_by,
        )
        db.session.add(addition)
        db.session.flush()

        request = _create_request(
            KIND_NEW_STOCK,
            QuantityDelta(box_delta=boxes, kg_delta=kg),
            account_id=account_id,
            product_id=product_id,
            requested_by=requested_by,
            reason=reason or f"Stock addition #{addition.id}",
            stock_addition_id=addition.id,
        )
        db.session.commit()
        return request

    return run_with_retry(_op)


def request_stock_correction(
    product_id: int,
    *,
    account_id: int,
    requested_by: int | None,
    box_adjustment=0,
    kg_adjustment=0,
    reason: str | None = None,
) -> MutationRequest:
    """Queue a signed manual adjustment (e.g. after a physical count)."""
    boxes = parse_int(box_adjustment, "box_adjustment", required=False, default=0, allow_negative=True)
    kg = parse_decimal(kg_adjustment, "kg_adjustment", required=False, default=Decimal("0"), allow_negative=True)
    reason = require_text(reason, "reason")

    if boxes == 0 and kg == 0:
        raise ValidationError("A correction needs a non-zero box or kg adjustment")

    def _op():
        get_product(product_id, account_id=account_id)

        correction = StockCorrection(
            account_id=account_id,
            product_id=product_id,
            box_adjustment=boxes,
            kg_adjustment=kg,
            reason=reason,
            status=STATUS_PENDING,
            requested_by=requested_by,
        )
        db.session.add(correction)
        db.session.flush()

        request = _create_request(
            KIND_STOCK_CORRECTION,
            QuantityDelta(box_delta=boxes, kg_delta=kg),
            account_id=account_id,
            product_id=product_id,
            requested_by=requested_by,
            reason=reason,
            correction_id=correction.id,
        )
        db.session.commit()
        return request

    return run_with_retry(_op)


def request_damage(
    product_id: int,
    *,
    account_id: int,
    requested_by: int | None,
    damaged_boxes=0,
    damaged_kg=0,
    reason: str | None = None,
) -> MutationRequest:
    """
    Queue a damage write-off.

    Quantities are checked against current stock now so obviously impossible
    write-offs never reach an approver; approval checks again.
    """
    boxes = parse_int(damaged_boxes, "damaged_boxes", required=False, default=0)
    kg = parse_decimal(damaged_kg, "damaged_kg", required=False, default=Decimal("0"))
    reason = require_text(reason, "reason")

    if boxes <= 0 and kg <= 0:
        raise ValidationError("At least one of damaged_boxes or damaged_kg must be greater than zero")

    def _op():
        product = get_product(product_id, account_id=account_id)
        if boxes > product.boxes or kg > Decimal(product.loose_kg):
            raise OutOfStockError(
                f"Cannot write off more than is in stock ({product.boxes} box(es), {product.loose_kg}kg)",
                {"current_boxes": product.boxes, "current_kg": str(product.loose_kg)},
            )

        request = _create_request(
            KIND_DAMAGE,
            QuantityDelta(box_delta=-boxes, kg_delta=-kg),
            account_id=account_id,
            product_id=product_id,
            requested_by=requested_by,
            reason=reason,
        )
        db.session.commit()
        return request

    return run_with_retry(_op)


def _same_value(current: Any, new: Any) -> bool:
    if isinstance(current, (int, Decimal)) and isinstance(new, (int, Decimal)):
        return Decimal(current) == Decimal(new)
    return current == new


def request_product_edit(
    product_id: int,
    changes: dict,
    *,
    account_id: int,
    requested_by: int | None,
    reason: str | None = None,
) -> list[MutationRequest]:
    """
    Queue one product_edit request per field whose value actually changes.

    Raises:
        ValidationError: Unknown/non-editable field or invalid value
        NoChangeError: Every submitted value equals the current one
    """
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No fields to update")
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}", {"fields": unknown})
    parsed = {name: parse_field_value(name, value) for name, value in changes.items()}
    reason = optional_text(reason, "reason")

    def _op():
        product = get_product(product_id, account_id=account_id)
        requests = []
        for name in sorted(parsed):
            current = getattr(product, name)
            if _same_value(current, parsed[name]):
                continue
            requests.append(
                _create_request(
                    KIND_PRODUCT_EDIT,
                    FieldEdit(field=name, old_value=serialize_value(current), new_value=parsed[name]),
                    account_id=account_id,
                    product_id=product_id,
                    requested_by=requested_by,
                    reason=reason,
                )
            )
        if not requests:
            raise NoChangeError("No changes detected")
        db.session.commit()
        return requests

    return run_with_retry(_op)


def request_product_create(
    fields: dict,
    *,
    account_id: int,
    requested_by: int | None,
    reason: str | None = None,
) -> MutationRequest:
    """Stage a new product; it is inserted only when the request is approved."""
    staged = StagedProduct(fields=stage_product_fields(fields))
    reason = optional_text(reason, "reason")

    def _op():
        request = _create_request(
            KIND_PRODUCT_CREATE,
            staged,
            account_id=account_id,
            product_id=None,
            requested_by=requested_by,
            reason=reason,
        )
        db.session.commit()
        return request

    return run_with_retry(_op)


def request_product_delete(
    product_id: int,
    *,
    account_id: int,
    requested_by: int | None,
    reason: str | None = None,
) -> MutationRequest:
    """
    Queue deletion of a product and all of its dependent records.

    Raises:
        ConflictError: A deletion for this product is already pending
    """
    reason = require_text(reason, "reason")

    def _op():
        product = get_product(product_id, account_id=account_id)
        already_pending = (
            db.session.query(MutationRequest.id)
            .filter(
                MutationRequest.product_id == product_id,
                MutationRequest.kind == KIND_PRODUCT_DELETE,
                MutationRequest.status == STATUS_PENDING,
            )
            .first()
        )
        if already_pending is not None:
            raise ConflictError(
                f"A deletion request for product {product_id} is already pending",
                {"request_id": already_pending.id},
            )

        request = _create_request(
            KIND_PRODUCT_DELETE,
            ProductRemoval(product_id=product.id, description=f"Product: {product.name} (ID: {product.id})"),
            account_id=account_id,
            product_id=product.id,
            requested_by=requested_by,
            reason=reason,
            before_state=product.to_dict(),
        )
        db.session.commit()
        return request

    return run_with_retry(_op)


def create_mutation_request(kind: str, payload: dict, *, account_id: int, requested_by: int | None):
    """
    Generic entry point: dispatch a raw payload to the creator for `kind`.

    Returns a MutationRequest, or a list of them for product_edit.
    """
    kind = parse_choice(kind, "kind", MUTATION_KINDS)
    payload = payload or {}
    product_id = payload.get("product_id")
    reason = payload.get("reason")

    if kind == KIND_PRODUCT_CREATE:
        return request_product_create(
            payload.get("product") or {},
            account_id=account_id,
            requested_by=requested_by,
            reason=reason,
        )

    product_id = parse_int(product_id, "product_id")

    if kind == KIND_NEW_STOCK:
        return request_stock_addition(
            product_id,
            account_id=account_id,
            requested_by=requested_by,
            boxes_added=payload.get("boxes_added"),
            kg_added=payload.get("kg_added"),
            total_cost=payload.get("total_cost"),
            delivery_date=payload.get("delivery_date"),
            reason=reason,
        )
    if kind == KIND_STOCK_CORRECTION:
        return request_stock_correction(
            product_id,
            account_id=account_id,
            requested_by=requested_by,
            box_adjustment=payload.get("box_adjustment"),
            kg_adjustment=payload.get("kg_adjustment"),
            reason=reason,
        )
    if kind == KIND_DAMAGE:
        return request_damage(
            product_id,
            account_id=account_id,
            requested_by=requested_by,
            damaged_boxes=payload.get("damaged_boxes"),
            damaged_kg=payload.get("damaged_kg"),
            reason=reason,
        )
    if kind == KIND_PRODUCT_EDIT:
        return request_product_edit(
            product_id,
            payload.get("changes") or {},
            account_id=account_id,
            requested_by=requested_by,
            reason=reason,
        )
    return request_product_delete(
        product_id,
        account_id=account_id,
        requested_by=requested_by,
        reason=reason,
    )


# =============================================================================
# TRANSITIONS
# =============================================================================

def approve(request_id: int, *, approver_id: int | None, account_id: int | None = None):
    """Execute a pending request exactly once. Returns (request, executor result)."""
    return movement_workflow.approve(request_id, actor_id=approver_id, account_id=account_id)


def reject(request_id: int, *, reason: str | None, approver_id: int | None = None, account_id: int | None = None):
    return movement_workflow.reject(request_id, actor_id=approver_id, reason=reason, account_id=account_id)


def cancel(request_id: int, *, actor_id: int | None, reason: str | None = None, account_id: int | None = None):
    return movement_workflow.cancel(request_id, actor_id=actor_id, reason=reason, account_id=account_id)


# =============================================================================
# QUERIES
# =============================================================================

def get_mutation_request(request_id: int, *, account_id: int | None = None) -> MutationRequest:
    return movement_workflow.load(request_id, account_id=account_id)


def list_mutation_requests(
    *,
    account_id: int | None = None,
    product_id=None,
    kind: str | None = None,
    status: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    page=None,
    limit=None,
    sort_by: str | None = None,
    sort_order: str | None = None,
) -> dict:
    """
    Filtered, sorted, paginated listing of mutation requests.

    Raises:
        ValidationError: Unknown kind/status/sort field or bad dates
    """
    page, limit = page_params(page, limit)
    sort_by, sort_order = parse_sort(sort_by, sort_order, SORTABLE_FIELDS, default="created_at")

    query = db.session.query(MutationRequest)
    if account_id is not None:
        query = query.filter(MutationRequest.account_id == account_id)
    if product_id not in (None, ""):
        query = query.filter(MutationRequest.product_id == parse_int(product_id, "product_id"))
    if kind:
        query = query.filter(MutationRequest.kind == parse_choice(kind, "kind", MUTATION_KINDS))
    if status:
        query = query.filter(MutationRequest.status == parse_choice(status, "status", MUTATION_STATUSES))
    query = apply_date_range(query, MutationRequest.created_at, date_from, date_to)

    column = SORTABLE_FIELDS[sort_by]
    ordering = column.asc() if sort_order == "asc" else column.desc()
    query = query.order_by(ordering, MutationRequest.id.desc())

    return paginate(query, page=page, limit=limit)
