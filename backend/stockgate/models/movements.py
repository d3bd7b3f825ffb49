from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stockgate.time_utils import to_utc_z
from .inventory import _kg


# =============================================================================
# MUTATION REQUEST KINDS AND STATUSES
# =============================================================================

KIND_NEW_STOCK = "new_stock"
KIND_STOCK_CORRECTION = "stock_correction"
KIND_DAMAGE = "damage"
KIND_PRODUCT_EDIT = "product_edit"
KIND_PRODUCT_CREATE = "product_create"
KIND_PRODUCT_DELETE = "product_delete"

QUANTITY_KINDS = (KIND_NEW_STOCK, KIND_STOCK_CORRECTION, KIND_DAMAGE)
CATALOG_KINDS = (KIND_PRODUCT_EDIT, KIND_PRODUCT_CREATE, KIND_PRODUCT_DELETE)
MUTATION_KINDS = QUANTITY_KINDS + CATALOG_KINDS

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_REJECTED = "rejected"
STATUS_CANCELLED = "cancelled"

MUTATION_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_REJECTED, STATUS_CANCELLED)


class MutationRequest(db.Model):
    """
    A durable, approval-gated proposal to change stock or catalog data.

    LIFECYCLE: pending -> completed | rejected | cancelled. Terminal states
    are never reopened; every transition goes through ApprovalWorkflow.

    PAYLOAD: box_delta/kg_delta for quantity kinds, field_changed/old_value/
    new_value for catalog kinds. The string columns are only reinterpreted
    by services.payloads.decode_payload.

    product_id is not a foreign key: completed product_delete requests (and
    their audit entries) outlive the product they removed, and a
    product_create request has no product until it is approved.
    """
    __tablename__ = "mutation_requests"
    __table_args__ = (
        db.Index("ix_mutation_requests_account_status", "account_id", "status"),
        db.Index("ix_mutation_requests_product_kind", "product_id", "kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=True, index=True)

    kind = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING)

    box_delta = db.Column(db.Integer, nullable=False, default=0)
    kg_delta = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))

    field_changed = db.Column(db.String(64), nullable=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)

    reason = db.Column(db.Text, nullable=True)

    # Source documents for quantity kinds
    stock_addition_id = db.Column(db.Integer, db.ForeignKey("stock_additions.id"), nullable=True)
    correction_id = db.Column(db.Integer, db.ForeignKey("stock_corrections.id"), nullable=True)
    damage_id = db.Column(db.Integer, db.ForeignKey("damage_records.id"), nullable=True)

    # Product snapshots taken when the request executed
    before_state = db.Column(db.JSON, nullable=True)
    after_state = db.Column(db.JSON, nullable=True)

    requested_by = db.Column(db.Integer, nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<MutationRequest id={self.id} kind={self.kind} status={self.status} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "product_id": self.product_id,
            "kind": self.kind,
            "status": self.status,
            "box_delta": self.box_delta,
            "kg_delta": _kg(self.kg_delta),
            "field_changed": self.field_changed,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "reason": self.reason,
            "stock_addition_id": self.stock_addition_id,
            "correction_id": self.correction_id,
            "damage_id": self.damage_id,
            "before_state": self.before_state,
            "after_state": self.after_state,
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "decided_at": to_utc_z(self.decided_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
