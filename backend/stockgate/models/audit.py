from __future__ import annotations

from ..extensions import db
from stockgate.time_utils import to_utc_z


class AuditEntry(db.Model):
    """
    Append-only record of a proposed, executed, rejected or cancelled change.

    Rows are inserted in the same transaction as the event they describe and
    are never updated or deleted, including when the entity itself is removed.
    """
    __tablename__ = "audit_entries"
    __table_args__ = (
        db.Index("ix_audit_entries_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, nullable=False, index=True)

    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(32), nullable=False)

    actor_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.Text, nullable=True)
    before = db.Column(db.JSON, nullable=True)
    after = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<AuditEntry id={self.id} {self.entity_type}:{self.entity_id} action={self.action}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "before": self.before,
            "after": self.after,
            "occurred_at": to_utc_z(self.occurred_at),
        }
