"""
Approval Workflow

One state machine for every approval-gated record (mutation requests and
sale audits). Each record type supplies its terminal status names, how its
payload is decoded and a registry of per-kind executors; the workflow owns
everything else.

LIFECYCLE:
    pending -> approved status   (executor runs, ledger/catalog changes)
    pending -> rejected status   (nothing executes)
    pending -> cancelled         (only when the record type supports it)

GUARANTEES:
- Exactly-once execution: the record is locked and its status re-read
  before anything runs; a terminal record raises AlreadyProcessedError.
- Execution, the status stamp and the audit entry commit together. Any
  failure rolls all three back and the record stays pending, so a retry is
  always safe.
- Two racing approvals serialize on the row lock (or on version_id where
  the database ignores FOR UPDATE); the loser sees the winner's status.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from ..extensions import db
from ..errors import AlreadyProcessedError, NotFoundError, ValidationError
from .audit_trail import (
    ACTION_APPROVED,
    ACTION_CANCELLED,
    ACTION_REJECTED,
    append_audit_entry,
)
from .concurrency import lock_for_update, run_with_retry
from stockgate.time_utils import utcnow

logger = logging.getLogger(__name__)

Executor = Callable[..., dict]


class ApprovalWorkflow:
    """
    Generic pending -> terminal state machine.

    Subclasses set the class attributes and override decode(); executors are
    registered per kind with the `executor` decorator:

        @movement_workflow.executor("new_stock")
        def _execute_new_stock(record, payload, *, actor_id):
            ...
            return {"before": ..., "after": ...}

    An executor returns a dict of results (optionally with "before"/"after"
    snapshots for the audit trail). It must not commit.
    """

    model = None
    entity_type: str = ""
    entity_label: str = ""
    kind_attr: str = "kind"

    pending_status = "pending"
    approved_status: str = ""
    rejected_status: str = ""
    cancelled_status: str | None = None

    def __init__(self):
        self._executors: dict[str, Executor] = {}

    # =========================================================================
    # REGISTRY
    # =========================================================================

    def executor(self, kind: str):
        def decorator(func: Executor) -> Executor:
            self._executors[kind] = func
            return func
        return decorator

    def executor_for(self, kind: str) -> Executor:
        func = self._executors.get(kind)
        if func is None:
            raise ValidationError(f"No executor registered for {self.entity_label} kind '{kind}'")
        return func

    # =========================================================================
    # HOOKS
    # =========================================================================

    def decode(self, record) -> Any:
        raise NotImplementedError

    def record_approval(self, record, *, actor_id: int | None, note: str | None) -> None:
        record.approved_by = actor_id

    def record_rejection(self, record, *, actor_id: int | None, reason: str) -> None:
        record.approved_by = actor_id

    def record_cancellation(self, record, *, actor_id: int | None, reason: str | None) -> None:
        pass

    def record_execution(self, record, result: dict) -> None:
        pass

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def load(self, record_id: int, *, account_id: int | None = None, lock: bool = False):
        query = db.session.query(self.model).filter(self.model.id == record_id)
        if account_id is not None:
            query = query.filter(self.model.account_id == account_id)
        if lock:
            query = lock_for_update(query)
        record = query.one_or_none()
        if record is None:
            raise NotFoundError(self.entity_label, record_id)
        return record

    def ensure_pending(self, record) -> None:
        if record.status != self.pending_status:
            raise AlreadyProcessedError(self.entity_label, record.id, record.status)

    def approve(
        self,
        record_id: int,
        *,
        actor_id: int | None,
        account_id: int | None = None,
        note: str | None = None,
    ) -> tuple[Any, dict]:
        """
        Execute a pending record and mark it approved/completed.

        Returns:
            (record, executor result)

        Raises:
            NotFoundError: Unknown record
            AlreadyProcessedError: Record is already terminal
            Any executor error (ValidationError, OutOfStockError, ...) with
            the record left pending
        """
        def _op():
            record = self.load(record_id, account_id=account_id, lock=True)
            self.ensure_pending(record)

            payload = self.decode(record)
            execute = self.executor_for(getattr(record, self.kind_attr))
            result = execute(record, payload, actor_id=actor_id) or {}

            record.status = self.approved_status
            record.decided_at = utcnow()
            self.record_approval(record, actor_id=actor_id, note=note)
            self.record_execution(record, result)

            append_audit_entry(
                account_id=record.account_id,
                entity_type=self.entity_type,
                entity_id=record.id,
                action=ACTION_APPROVED,
                actor_id=actor_id,
                reason=note,
                before=result.get("before"),
                after=result.get("after"),
            )
            db.session.commit()
            logger.info("%s %s approved by %s", self.entity_label, record.id, actor_id)
            return record, result

        return run_with_retry(_op)

    def reject(
        self,
        record_id: int,
        *,
        actor_id: int | None,
        reason: str | None,
        account_id: int | None = None,
    ):
        """Mark a pending record rejected. Never executes anything."""
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("A rejection reason is required")
        reason = reason.strip()

        def _op():
            record = self.load(record_id, account_id=account_id, lock=True)
            self.ensure_pending(record)

            record.status = self.rejected_status
            record.decided_at = utcnow()
            self.record_rejection(record, actor_id=actor_id, reason=reason)

            append_audit_entry(
                account_id=record.account_id,
                entity_type=self.entity_type,
                entity_id=record.id,
                action=ACTION_REJECTED,
                actor_id=actor_id,
                reason=reason,
            )
            db.session.commit()
            logger.info("%s %s rejected by %s", self.entity_label, record.id, actor_id)
            return record

        return run_with_retry(_op)

    def cancel(
        self,
        record_id: int,
        *,
        actor_id: int | None,
        reason: str | None = None,
        account_id: int | None = None,
    ):
        """Withdraw a pending record. Only for record types with a cancelled status."""
        if self.cancelled_status is None:
            raise ValidationError(f"{self.entity_label} records cannot be cancelled")

        def _op():
            record = self.load(record_id, account_id=account_id, lock=True)
            self.ensure_pending(record)

            record.status = self.cancelled_status
            record.decided_at = utcnow()
            self.record_cancellation(record, actor_id=actor_id, reason=reason)

            append_audit_entry(
                account_id=record.account_id,
                entity_type=self.entity_type,
                entity_id=record.id,
                action=ACTION_CANCELLED,
                actor_id=actor_id,
                reason=reason,
            )
            db.session.commit()
            logger.info("%s %s cancelled by %s", self.entity_label, record.id, actor_id)
            return record

        return run_with_retry(_op)
