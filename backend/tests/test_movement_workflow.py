"""
Tests for approval-gated mutation requests.

Covers request creation, exactly-once approval, rejection/cancellation,
catalog edits, product creation and cascading product deletion.
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockgate.errors import (
    AlreadyProcessedError,
    CascadeDeleteFailure,
    ConflictError,
    NoChangeError,
    OutOfStockError,
    ValidationError,
)
from stockgate.extensions import db
from stockgate.models import (
    DamageRecord,
    MutationRequest,
    Product,
    Sale,
    SaleAudit,
    StockAddition,
)
from stockgate.services import movement_service, product_removal, sale_audit_service, sales_service
from stockgate.services.audit_trail import list_audit_entries
from stockgate.services.stock_ledger import get_product

from conftest import ACCOUNT_ID, MANAGER_ID, REQUESTER_ID


def _restock(product_id, boxes=10, kg="5"):
    return movement_service.request_stock_addition(
        product_id,
        account_id=ACCOUNT_ID,
        requested_by=REQUESTER_ID,
        boxes_added=boxes,
        kg_added=kg,
        total_cost="400",
        delivery_date="2026-10-01",
    )


def _approve(request_id):
    return movement_service.approve(request_id, approver_id=MANAGER_ID, account_id=ACCOUNT_ID)


def _sell(product_id, kg="1"):
    sale, _plan = sales_service.create_sale(
        product_id,
        account_id=ACCOUNT_ID,
        kg_quantity=kg,
        payment_method="cash",
        payment_status="paid",
        performed_by=REQUESTER_ID,
    )
    return sale


class TestStockAddition:
    """new_stock requests change nothing until approved."""

    def test_request_leaves_stock_untouched(self, db_session, product):
        request = _restock(product.id)

        assert request.status == "pending"
        assert request.box_delta == 10
        assert request.kg_delta == Decimal("5")
        assert get_product(product.id).boxes == 2

        addition = db_session.get(StockAddition, request.stock_addition_id)
        assert addition.status == "pending"

    def test_approval_applies_delta(self, db_session, product):
        request = _restock(product.id)

        record, result = _approve(request.id)

        fresh = get_product(product.id)
        assert fresh.boxes == 12
        assert fresh.loose_kg == Decimal("10")
        assert record.status == "completed"
        assert record.approved_by == MANAGER_ID
        assert record.decided_at is not None
        assert result["before"]["boxes"] == 2
        assert result["after"]["boxes"] == 12
        assert db_session.get(StockAddition, record.stock_addition_id).status == "completed"

    def test_approving_twice_applies_once(self, db_session, product):
        request = _restock(product.id)
        _approve(request.id)

        with pytest.raises(AlreadyProcessedError) as exc_info:
            _approve(request.id)

        assert exc_info.value.details["reason"] == "already_processed"
        assert exc_info.value.status_code == 409
        assert get_product(product.id).boxes == 12

    def test_concurrent_approval_applies_once(self, db_session, product, monkeypatch):
        """A second approver commits while this approval is mid-flight."""
        request = _restock(product.id, boxes=3, kg="0")
        execute_new_stock = movement_service.movement_workflow.executor_for("new_stock")
        calls = []

        def _racing_executor(record, payload, *, actor_id):
            if not calls:
                with Session(db.engine) as other:
                    other.get(Product, record.product_id).boxes += 3
                    other.get(MutationRequest, record.id).status = "completed"
                    other.commit()
            calls.append(record.id)
            return execute_new_stock(record, payload, actor_id=actor_id)

        monkeypatch.setitem(movement_service.movement_workflow._executors, "new_stock", _racing_executor)

        with pytest.raises(AlreadyProcessedError):
            _approve(request.id)

        assert calls == [request.id]
        assert get_product(product.id).boxes == 5
        assert movement_service.get_mutation_request(request.id).status == "completed"

    def test_requires_a_quantity(self, db_session, product):
        with pytest.raises(ValidationError):
            _restock(product.id, boxes=0, kg="0")

    def test_audit_trail_records_request_and_approval(self, db_session, product):
        request = _restock(product.id)
        _approve(request.id)

        entries = list_audit_entries(
            account_id=ACCOUNT_ID,
            entity_type="mutation_request",
            entity_id=request.id,
        )
        actions = sorted(entry.action for entry in entries)
        assert actions == ["approved", "requested"]


class TestRejectAndCancel:
    """Terminal transitions that never touch stock."""

    def test_reject_appends_reason(self, db_session, product):
        request = _restock(product.id)

        record = movement_service.reject(
            request.id, reason="Delivery never arrived", approver_id=MANAGER_ID, account_id=ACCOUNT_ID
        )

        assert record.status == "rejected"
        assert record.reason.endswith("| REJECTED: Delivery never arrived")
        assert get_product(product.id).boxes == 2
        assert db_session.get(StockAddition, record.stock_addition_id).status == "rejected"

    def test_reject_requires_reason(self, db_session, product):
        request = _restock(product.id)

        with pytest.raises(ValidationError):
            movement_service.reject(request.id, reason="  ", approver_id=MANAGER_ID, account_id=ACCOUNT_ID)

        assert movement_service.get_mutation_request(request.id).status == "pending"

    def test_rejected_request_cannot_be_approved(self, db_session, product):
        request = _restock(product.id)
        movement_service.reject(request.id, reason="duplicate", approver_id=MANAGER_ID, account_id=ACCOUNT_ID)

        with pytest.raises(AlreadyProcessedError):
            _approve(request.id)
        assert get_product(product.id).boxes == 2

    def test_requester_can_cancel(self, db_session, product):
        request = _restock(product.id)

        record = movement_service.cancel(request.id, actor_id=REQUESTER_ID, reason="typo", account_id=ACCOUNT_ID)

        assert record.status == "cancelled"
        assert "CANCELLED: typo" in record.reason

    def test_only_requester_can_cancel(self, db_session, product):
        request = _restock(product.id)

        with pytest.raises(ValidationError):
            movement_service.cancel(request.id, actor_id=MANAGER_ID, account_id=ACCOUNT_ID)

        assert movement_service.get_mutation_request(request.id).status == "pending"


class TestCorrectionAndDamage:
    """Signed corrections and damage write-offs."""

    def test_negative_correction_beyond_stock_stays_pending(self, db_session, product):
        request = movement_service.request_stock_correction(
            product.id,
            account_id=ACCOUNT_ID,
            requested_by=REQUESTER_ID,
            box_adjustment=-3,
            reason="Physical count",
        )

        with pytest.raises(OutOfStockError):
            _approve(request.id)

        assert movement_service.get_mutation_request(request.id).status == "pending"
        assert get_product(product.id).boxes == 2

    def test_correction_requires_reason(self, db_session, product):
        with pytest.raises(ValidationError):
            movement_service.request_stock_correction(
                product.id, account_id=ACCOUNT_ID, requested_by=REQUESTER_ID, kg_adjustment="1"
            )

    def test_damage_records_loss_value(self, db_session, product):
        request = movement_service.request_damage(
            product.id,
            account_id=ACCOUNT_ID,
            requested_by=REQUESTER_ID,
            damaged_boxes=1,
            damaged_kg="2",
            reason="Freezer failure",
        )
        assert request.box_delta == -1
        assert request.kg_delta == Decimal("-2")

        record, result = _approve(request.id)

        fresh = get_product(product.id)
        assert fresh.boxes == 1
        assert fresh.loose_kg == Decimal("3")

        damage = db_session.get(DamageRecord, record.damage_id)
        assert damage.damaged_boxes == 1
        assert damage.damaged_kg == Decimal("2")
        # 1 x 50 + 2 x 5.50
        assert damage.loss_value == Decimal("61.00")
        assert result["damage"]["loss_value"] == "61.00"

    def test_damage_beyond_stock_is_refused_up_front(self, db_session, product):
        with pytest.raises(OutOfStockError):
            movement_service.request_damage(
                product.id,
                account_id=ACCOUNT_ID,
                requested_by=REQUESTER_ID,
                damaged_kg="6",
                reason="Spoiled",
            )

        assert db_session.query(MutationRequest).count() == 0


class TestProductEdit:
    """One product_edit request per changed field."""

    def test_only_changed_fields_are_queued(self, db_session, product):
        requests = movement_service.request_product_edit(
            product.id,
            {"price_per_kg": "6.00", "name": "Tilapia"},
            account_id=ACCOUNT_ID,
            requested_by=REQUESTER_ID,
        )

        assert len(requests) == 1
        assert requests[0].field_changed == "price_per_kg"
        assert requests[0].old_value == "5.50"
        assert requests[0].new_value == "6.00"

    def test_approval_writes_field(self, db_session, product):
        (request,) = movement_service.request_product_edit(
            product.id, {"price_per_kg": "6"}, account_id=ACCOUNT_ID, requested_by=REQUESTER_ID
        )

        _approve(request.id)

        assert get_product(product.id).price_per_kg == Decimal("6.00")

    def test_no_change_is_rejected(self, db_session, product):
        with pytest.raises(NoChangeError):
            movement_service.request_product_edit(
                product.id, {"price_per_kg": "5.5"}, account_id=ACCOUNT_ID, requested_by=REQUESTER_ID
            )

        assert db_session.query(MutationRequest).count() == 0

    def test_quantities_are_not_editable(self, db_session, product):
        with pytest.raises(ValidationError):
            movement_service.request_product_edit(
                product.id, {"boxes": 99}, account_id=ACCOUNT_ID, requested_by=REQUESTER_ID
            )


class TestProductCreate:
    def test_product_exists_only_after_approval(self, db_session):
        request = movement_service.request_product_create(
            {"name": "Mackerel", "box_to_kg_ratio": "20", "price_per_kg": "7", "boxes": 3},
            account_id=ACCOUNT_ID,
            requested_by=REQUESTER_ID,
        )
        assert request.product_id is None
        assert db_session.query(Product).count() == 0

        record, result = _approve(request.id)

        created = get_product(record.product_id)
        assert created.name == "Mackerel"
        assert created.boxes == 3
        assert created.box_to_kg_ratio == Decimal("20")
        assert result["product"]["name"] == "Mackerel"

    def test_name_is_required(self, db_session):
        with pytest.raises(ValidationError):
            movement_service.request_product_create(
                {"price_per_kg": "7"}, account_id=ACCOUNT_ID, requested_by=REQUESTER_ID
            )


class TestProductDelete:
    """Approved deletions cascade to every dependent record."""

    def _request_delete(self, product_id):
        return movement_service.request_product_delete(
            product_id, account_id=ACCOUNT_ID, requested_by=REQUESTER_ID, reason="Discontinued"
        )

    def test_cascade_removes_dependents(self, db_session, make_product):
        product = make_product(loose_kg=Decimal("50"), boxes=5)
        sales = [_sell(product.id) for _ in range(3)]
        _restock(product.id)
        _restock(product.id, boxes=1, kg="0")
        audit = sale_audit_service.request_sale_deletion(
            sales[0].id, account_id=ACCOUNT_ID, requested_by=REQUESTER_ID, reason="Wrong product"
        )
        request = self._request_delete(product.id)
        assert request.before_state["name"] == "Tilapia"

        record, result = _approve(request.id)

        assert record.status == "completed"
        removal = result["removal"]
        assert removal["failures"] == []
        assert removal["removed"]["sales"] == 3
        assert removal["removed"]["stock_additions"] == 2
        assert removal["removed"]["mutation_requests"] == 2
        assert removal["removed"]["sale_audits"] == 1

        assert db_session.query(Product).filter_by(id=product.id).count() == 0
        assert db_session.query(Sale).filter_by(product_id=product.id).count() == 0
        assert db_session.query(StockAddition).filter_by(product_id=product.id).count() == 0
        assert db_session.query(MutationRequest).filter_by(product_id=product.id).count() == 1
        closed = db_session.get(SaleAudit, audit.id)
        assert closed.sale_id is None
        assert closed.status == "rejected"

    def test_duplicate_pending_delete_conflicts(self, db_session, product):
        self._request_delete(product.id)

        with pytest.raises(ConflictError):
            self._request_delete(product.id)

    def test_fail_fast_aborts_whole_deletion(self, app, db_session, make_product, monkeypatch):
        product = make_product(loose_kg=Decimal("50"), boxes=5)
        for _ in range(3):
            _sell(product.id)
        request = self._request_delete(product.id)

        def _broken(product_id, keep_request_id):
            raise SQLAlchemyError("simulated cleanup failure")

        steps = dict(product_removal.CLEANUP_STEPS)
        monkeypatch.setitem(app.config, "CASCADE_DELETE_POLICY", "fail_fast")
        monkeypatch.setattr(product_removal, "CLEANUP_STEPS", (
            ("sale_audits", steps["sale_audits"]),
            ("sales", steps["sales"]),
            ("stock_additions", _broken),
        ))

        with pytest.raises(CascadeDeleteFailure) as exc_info:
            _approve(request.id)

        assert exc_info.value.failures[0]["collection"] == "stock_additions"
        assert db_session.query(Product).filter_by(id=product.id).count() == 1
        assert db_session.query(Sale).filter_by(product_id=product.id).count() == 3
        assert movement_service.get_mutation_request(request.id).status == "pending"

    def test_best_effort_reports_failures(self, app, db_session, product, monkeypatch, caplog):
        request = self._request_delete(product.id)

        def _broken(product_id, keep_request_id):
            raise SQLAlchemyError("simulated cleanup failure")

        monkeypatch.setitem(app.config, "CASCADE_DELETE_POLICY", "best_effort")
        monkeypatch.setattr(
            product_removal,
            "CLEANUP_STEPS",
            product_removal.CLEANUP_STEPS[:-1] + (("damage_records", _broken),),
        )

        record, result = _approve(request.id)

        assert record.status == "completed"
        failures = result["removal"]["failures"]
        assert [failure["collection"] for failure in failures] == ["damage_records"]
        assert "simulated cleanup failure" in failures[0]["error"]
        assert db_session.query(Product).filter_by(id=product.id).count() == 0
        assert "damage_records" in caplog.text


class TestPendingSummary:
    def test_counts_by_kind(self, db_session, product):
        from stockgate.services.inventory_service import list_pending_approvals

        _restock(product.id)
        _restock(product.id)
        movement_service.request_product_delete(
            product.id, account_id=ACCOUNT_ID, requested_by=REQUESTER_ID, reason="Discontinued"
        )

        summary = list_pending_approvals(account_id=ACCOUNT_ID)

        assert summary["mutation_requests"] == {"new_stock": 2, "product_delete": 1}
        assert summary["total"] == 3
