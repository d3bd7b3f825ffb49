from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stockgate.time_utils import to_iso_date, to_utc_z


def _kg(value) -> str | None:
    """JSON-safe rendering of a Numeric column."""
    if value is None:
        return None
    return str(Decimal(value).quantize(Decimal("0.01")))


class Product(db.Model):
    """
    Product master data plus the authoritative stock quantities.

    QUANTITIES:
    - loose_kg: stock sold by weight, not bound to a box
    - boxes: sealed boxes, each worth box_to_kg_ratio kg
    Both are >= 0 at all times and are written only by
    services.stock_ledger.apply_delta after creation.

    CONCURRENCY: version_id_col makes every UPDATE a compare-and-swap on the
    row version; a concurrent writer surfaces as StaleDataError.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("loose_kg >= 0", name="ck_products_loose_kg_non_negative"),
        db.CheckConstraint("boxes >= 0", name="ck_products_boxes_non_negative"),
        db.CheckConstraint("box_to_kg_ratio > 0", name="ck_products_ratio_positive"),
        db.Index("ix_products_account_name", "account_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    loose_kg = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    boxes = db.Column(db.Integer, nullable=False, default=0)
    box_to_kg_ratio = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("20"))

    cost_per_box = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    cost_per_kg = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    price_per_box = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    price_per_kg = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))

    boxed_low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    expiry_date = db.Column(db.Date, nullable=True)

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
        return f"<Product id={self.id} name={self.name!r} boxes={self.boxes} loose_kg={self.loose_kg}>"

    @property
    def total_kg(self) -> Decimal:
        return Decimal(self.loose_kg) + self.boxes * Decimal(self.box_to_kg_ratio)

    @property
    def is_low_stock(self) -> bool:
        return self.boxes <= self.boxed_low_stock_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "name": self.name,
            "category": self.category,
            "loose_kg": _kg(self.loose_kg),
            "boxes": self.boxes,
            "box_to_kg_ratio": _kg(self.box_to_kg_ratio),
            "total_kg": _kg(self.total_kg),
            "cost_per_box": _kg(self.cost_per_box),
            "cost_per_kg": _kg(self.cost_per_kg),
            "price_per_box": _kg(self.price_per_box),
            "price_per_kg": _kg(self.price_per_kg),
            "boxed_low_stock_threshold": self.boxed_low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "expiry_date": to_iso_date(self.expiry_date),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockAddition(db.Model):
    """
    A delivery of new stock awaiting (or past) approval.

    Mirrors the status of its new_stock mutation request; the quantities are
    only added to the product when that request is approved.
    """
    __tablename__ = "stock_additions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    boxes_added = db.Column(db.Integer, nullable=False, default=0)
    kg_added = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_cost = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    delivery_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending")

    added_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "boxes_added": self.boxes_added,
            "kg_added": _kg(self.kg_added),
            "total_cost": _kg(self.total_cost),
            "delivery_date": to_iso_date(self.delivery_date),
            "status": self.status,
            "added_by": self.added_by,
            "created_at": to_utc_z(self.created_at),
        }


class StockCorrection(db.Model):
    """Signed manual adjustment (count correction) awaiting approval."""
    __tablename__ = "stock_corrections"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    box_adjustment = db.Column(db.Integer, nullable=False, default=0)
    kg_adjustment = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    reason = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")

    requested_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "box_adjustment": self.box_adjustment,
            "kg_adjustment": _kg(self.kg_adjustment),
            "reason": self.reason,
            "status": self.status,
            "requested_by": self.requested_by,
            "created_at": to_utc_z(self.created_at),
        }


class DamageRecord(db.Model):
    """
    Loss accounting for an approved damage write-off.

    loss_value = damaged_boxes * price_per_box + damaged_kg * price_per_kg,
    priced at approval time.
    """
    __tablename__ = "damage_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    damaged_boxes = db.Column(db.Integer, nullable=False, default=0)
    damaged_kg = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    loss_value = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    reason = db.Column(db.Text, nullable=True)

    recorded_by = db.Column(db.Integer, nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "damaged_boxes": self.damaged_boxes,
            "damaged_kg": _kg(self.damaged_kg),
            "loss_value": _kg(self.loss_value),
            "reason": self.reason,
            "recorded_by": self.recorded_by,
            "approved_by": self.approved_by,
            "created_at": to_utc_z(self.created_at),
        }
