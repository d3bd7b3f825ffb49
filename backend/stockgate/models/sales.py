from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stockgate.time_utils import to_utc_z
from .inventory import _kg


PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUSES = (PAYMENT_STATUS_PAID, PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PARTIAL)

PAYMENT_METHODS = ("momo_pay", "cash", "bank_transfer")

AUDIT_QUANTITY_CHANGE = "quantity_change"
AUDIT_PAYMENT_METHOD_CHANGE = "payment_method_change"
AUDIT_DELETION = "deletion"
AUDIT_TYPES = (AUDIT_QUANTITY_CHANGE, AUDIT_PAYMENT_METHOD_CHANGE, AUDIT_DELETION)

AUDIT_STATUS_PENDING = "pending"
AUDIT_STATUS_APPROVED = "approved"
AUDIT_STATUS_REJECTED = "rejected"
AUDIT_STATUSES = (AUDIT_STATUS_PENDING, AUDIT_STATUS_APPROVED, AUDIT_STATUS_REJECTED)


class Sale(db.Model):
    """
    A completed sale. Stock is deducted in the same transaction that inserts it.

    boxes_quantity / kg_quantity are what the customer asked for (and was
    charged for), not the physical units the allocation touched. Prices and
    per-unit profit are snapshotted so later catalog edits don't rewrite history.

    INVARIANT: remaining_amount == 0 when payment_status == 'paid',
    otherwise remaining_amount == total_amount - amount_paid.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_account_created", "account_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    boxes_quantity = db.Column(db.Integer, nullable=False, default=0)
    kg_quantity = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))

    box_price = db.Column(db.Numeric(12, 2), nullable=False)
    kg_price = db.Column(db.Numeric(12, 2), nullable=False)
    profit_per_box = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    profit_per_kg = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))

    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    remaining_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    payment_status = db.Column(db.String(16), nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)

    client_id = db.Column(db.String(64), nullable=True)
    client_name = db.Column(db.String(255), nullable=True)
    email_address = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    # Receipt trace from the allocation that fulfilled the sale
    allocation_steps = db.Column(db.JSON, nullable=True)

    performed_by = db.Column(db.Integer, nullable=True)
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
        return f"<Sale id={self.id} product_id={self.product_id} boxes={self.boxes_quantity} kg={self.kg_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "product_id": self.product_id,
            "boxes_quantity": self.boxes_quantity,
            "kg_quantity": _kg(self.kg_quantity),
            "box_price": _kg(self.box_price),
            "kg_price": _kg(self.kg_price),
            "profit_per_box": _kg(self.profit_per_box),
            "profit_per_kg": _kg(self.profit_per_kg),
            "total_amount": _kg(self.total_amount),
            "amount_paid": _kg(self.amount_paid),
            "remaining_amount": _kg(self.remaining_amount),
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "email_address": self.email_address,
            "phone": self.phone,
            "allocation_steps": self.allocation_steps or [],
            "performed_by": self.performed_by,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SaleAudit(db.Model):
    """
    Pending edit or deletion of an existing sale.

    sale_id is cleared when the sale is deleted; old_values keeps the last
    known snapshot of the sale permanently.
    """
    __tablename__ = "sale_audits"
    __table_args__ = (
        db.Index("ix_sale_audits_account_status", "account_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    product_id = db.Column(db.Integer, nullable=True, index=True)

    audit_type = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=AUDIT_STATUS_PENDING)

    boxes_change = db.Column(db.Integer, nullable=False, default=0)
    kg_change = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    reason = db.Column(db.Text, nullable=False)
    approval_reason = db.Column(db.Text, nullable=True)

    requested_by = db.Column(db.Integer, nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<SaleAudit id={self.id} sale_id={self.sale_id} type={self.audit_type} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "audit_type": self.audit_type,
            "status": self.status,
            "boxes_change": self.boxes_change,
            "kg_change": _kg(self.kg_change),
            "old_values": self.old_values,
            "new_values": self.new_values,
            "reason": self.reason,
            "approval_reason": self.approval_reason,
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "decided_at": to_utc_z(self.decided_at),
            "created_at": to_utc_z(self.created_at),
        }
