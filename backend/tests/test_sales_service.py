"""
Tests for sale creation: allocation, pricing and all-or-nothing writes.
"""

from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from stockgate.errors import InsufficientStockError, NotFoundError, OutOfStockError, ValidationError
from stockgate.extensions import db
from stockgate.models import Product, Sale
from stockgate.services import sales_service, stock_ledger
from stockgate.services.audit_trail import list_audit_entries
from stockgate.services.stock_ledger import get_product

from conftest import ACCOUNT_ID, REQUESTER_ID


def _sell(product_id, **kwargs):
    kwargs.setdefault("payment_method", "cash")
    kwargs.setdefault("payment_status", "paid")
    return sales_service.create_sale(
        product_id,
        account_id=ACCOUNT_ID,
        performed_by=REQUESTER_ID,
        **kwargs,
    )


class TestCreateSale:
    """Stock is deducted immediately on sale."""

    def test_converts_box_for_kg_sale(self, db_session, product):
        """12kg from 5kg loose + 2 boxes of 10kg."""
        sale, plan = _sell(product.id, kg_quantity="12")

        fresh = get_product(product.id)
        assert fresh.loose_kg == Decimal("3")
        assert fresh.boxes == 1
        assert plan.boxes_converted == 1

        assert sale.kg_quantity == Decimal("12")
        assert sale.total_amount == Decimal("66.00")
        assert sale.amount_paid == Decimal("66.00")
        assert sale.remaining_amount == Decimal("0")
        assert sale.allocation_steps == list(plan.steps)

    def test_box_sale_snapshots_price_and_profit(self, db_session, product):
        sale, _plan = _sell(product.id, boxes_quantity=1)

        assert sale.total_amount == Decimal("50.00")
        assert sale.box_price == Decimal("50")
        assert sale.profit_per_box == Decimal("10")
        assert sale.profit_per_kg == Decimal("1.50")
        assert get_product(product.id).boxes == 1

    def test_insufficient_stock_writes_nothing(self, db_session, product):
        with pytest.raises(InsufficientStockError) as exc_info:
            _sell(product.id, kg_quantity="30")

        assert exc_info.value.shortage_kg == Decimal("5")
        assert db_session.query(Sale).count() == 0

        fresh = get_product(product.id)
        assert fresh.loose_kg == Decimal("5")
        assert fresh.boxes == 2

    def test_stock_drained_mid_sale_writes_nothing(self, db_session, product, monkeypatch):
        """Another terminal sells out the product between allocation and the ledger write."""
        real_apply_delta = stock_ledger.apply_delta

        def _drained_apply_delta(product_id, box_delta=0, kg_delta=Decimal("0"), *, account_id=None):
            with Session(db.engine) as other:
                competing = other.get(Product, product_id)
                competing.boxes = 0
                competing.loose_kg = Decimal("0")
                other.commit()
            return real_apply_delta(product_id, box_delta, kg_delta, account_id=account_id)

        monkeypatch.setattr(sales_service, "apply_delta", _drained_apply_delta)

        with pytest.raises(OutOfStockError):
            _sell(product.id, kg_quantity="1")

        assert db_session.query(Sale).count() == 0
        fresh = get_product(product.id)
        assert (fresh.boxes, fresh.loose_kg) == (0, Decimal("0"))

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            _sell(999, kg_quantity="1")

    def test_other_account_product_is_not_found(self, db_session, make_product):
        other = make_product(account_id=2)

        with pytest.raises(NotFoundError):
            _sell(other.id, kg_quantity="1")

    def test_records_audit_entry(self, db_session, product):
        sale, _plan = _sell(product.id, kg_quantity="2")

        entries = list_audit_entries(account_id=ACCOUNT_ID, entity_type="sale", entity_id=sale.id)
        assert len(entries) == 1
        assert entries[0].action == "created"
        assert entries[0].before["loose_kg"] == "5.00"
        assert entries[0].after["loose_kg"] == "3.00"


class TestSaleValidation:
    """Bad input is refused before stock is read."""

    def test_nothing_requested(self, db_session, product):
        with pytest.raises(ValidationError):
            _sell(product.id, kg_quantity="0", boxes_quantity=0)

    def test_unknown_payment_method(self, db_session, product):
        with pytest.raises(ValidationError):
            _sell(product.id, kg_quantity="1", payment_method="cheque")

    def test_client_name_required_unless_paid(self, db_session, product):
        with pytest.raises(ValidationError) as exc_info:
            _sell(product.id, kg_quantity="1", payment_status="pending")

        assert exc_info.value.details["field"] == "client_name"
        assert db_session.query(Sale).count() == 0

    def test_overpayment_is_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            _sell(
                product.id,
                kg_quantity="1",
                payment_status="partial",
                amount_paid="100",
                client={"client_name": "Ama"},
            )

        assert get_product(product.id).loose_kg == Decimal("5")


class TestSaleAmounts:
    def test_partial_payment(self, db_session, product):
        sale, _plan = _sell(
            product.id,
            kg_quantity="4",
            payment_status="partial",
            amount_paid="10",
            client={"client_name": "Ama", "phone": "0244000000"},
        )

        assert sale.total_amount == Decimal("22.00")
        assert sale.amount_paid == Decimal("10.00")
        assert sale.remaining_amount == Decimal("12.00")
        assert sale.client_name == "Ama"

    def test_pending_defaults_to_nothing_paid(self):
        amounts = sales_service.compute_sale_amounts(
            kg_quantity=Decimal("2"),
            boxes_quantity=1,
            kg_price=Decimal("5.50"),
            box_price=Decimal("50"),
            payment_status="pending",
            amount_paid=None,
        )

        assert amounts == {
            "total_amount": Decimal("61.00"),
            "amount_paid": Decimal("0.00"),
            "remaining_amount": Decimal("61.00"),
        }


class TestListSales:
    def test_filters_and_paginates(self, db_session, product):
        for _ in range(3):
            _sell(product.id, kg_quantity="1")

        result = sales_service.list_sales(account_id=ACCOUNT_ID, limit=2)

        assert result["count"] == 2
        assert result["pagination"]["total"] == 3
        assert result["pagination"]["has_next"] is True

    def test_rejects_inverted_date_range(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.list_sales(account_id=ACCOUNT_ID, date_from="2026-10-02", date_to="2026-10-01")
