# Overview: Append-only audit trail writes and reads.

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import AuditEntry
from stockgate.time_utils import utcnow
"""
Audit Trail Invariants

- Append-only: entries are never updated or deleted.
- No domain logic here; callers decide what before/after means.
- Entries are written inside the same DB transaction as the event they
  record, so a rolled-back operation leaves no entry behind.
"""

ENTITY_MUTATION_REQUEST = "mutation_request"
ENTITY_SALE_AUDIT = "sale_audit"
ENTITY_SALE = "sale"

ACTION_REQUESTED = "requested"
ACTION_APPROVED = "approved"
ACTION_REJECTED = "rejected"
ACTION_CANCELLED = "cancelled"
ACTION_CREATED = "created"


def append_audit_entry(
    *,
    account_id: int,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_id: int | None = None,
    reason: str | None = None,
    before: Any = None,
    after: Any = None,
    occurred_at: Optional[datetime] = None,
) -> AuditEntry:
    entry = AuditEntry(
        account_id=account_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        reason=reason,
        before=before,
        after=after,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_audit_entries(
    *,
    account_id: int | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    limit: int = 100,
) -> list[AuditEntry]:
    query = db.session.query(AuditEntry)
    if account_id is not None:
        query = query.filter(AuditEntry.account_id == account_id)
    if entity_type:
        query = query.filter(AuditEntry.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditEntry.entity_id == entity_id)
    return query.order_by(AuditEntry.occurred_at.asc(), AuditEntry.id.asc()).limit(limit).all()
