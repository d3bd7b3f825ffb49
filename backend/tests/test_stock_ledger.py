"""
Tests for the stock ledger primitive.
"""

from decimal import Decimal

import pytest

from stockgate.errors import NotFoundError, OutOfStockError
from stockgate.services.stock_ledger import apply_delta, get_product, stock_snapshot


class TestApplyDelta:
    """apply_delta keeps both quantities non-negative."""

    def test_adds_boxes_and_kg(self, db_session, product):
        apply_delta(product.id, 3, Decimal("2.5"), account_id=1)
        db_session.commit()

        fresh = get_product(product.id)
        assert fresh.boxes == 5
        assert fresh.loose_kg == Decimal("7.50")

    def test_deducts_down_to_zero(self, db_session, product):
        apply_delta(product.id, -2, Decimal("-5"), account_id=1)
        db_session.commit()

        fresh = get_product(product.id)
        assert fresh.boxes == 0
        assert fresh.loose_kg == Decimal("0")

    def test_rejects_negative_boxes(self, db_session, product):
        with pytest.raises(OutOfStockError) as exc_info:
            apply_delta(product.id, -3, 0, account_id=1)
        db_session.rollback()

        assert exc_info.value.code == "insufficient_stock"
        assert exc_info.value.details["current_boxes"] == 2
        assert get_product(product.id).boxes == 2

    def test_rejects_negative_kg_without_touching_boxes(self, db_session, product):
        with pytest.raises(OutOfStockError):
            apply_delta(product.id, 1, Decimal("-5.01"), account_id=1)
        db_session.rollback()

        fresh = get_product(product.id)
        assert fresh.boxes == 2
        assert fresh.loose_kg == Decimal("5")

    def test_bumps_row_version(self, db_session, product):
        version = product.version_id
        apply_delta(product.id, 1, 0, account_id=1)
        db_session.commit()

        assert get_product(product.id).version_id == version + 1

    def test_other_account_is_not_found(self, db_session, product):
        with pytest.raises(NotFoundError):
            apply_delta(product.id, 1, 0, account_id=2)


class TestSnapshot:
    def test_snapshot_is_json_safe(self, db_session, product):
        assert stock_snapshot(product) == {
            "product_id": product.id,
            "loose_kg": "5.00",
            "boxes": 2,
            "box_to_kg_ratio": "10.00",
        }
