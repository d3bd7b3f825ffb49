"""
Randomized sequences of sales, restocks, write-offs and approved sale
edits and deletions.

Stock never goes negative, and total kg always equals the opening stock
plus approved additions and returned sale quantities minus sales and damage.
"""

import random
from decimal import Decimal

from stockgate.errors import InsufficientStockError, NoChangeError, OutOfStockError
from stockgate.services import movement_service, sale_audit_service, sales_service
from stockgate.services.stock_ledger import get_product

from conftest import ACCOUNT_ID, MANAGER_ID, REQUESTER_ID


def _total_kg(product_id):
    product = get_product(product_id)
    assert product.boxes >= 0
    assert Decimal(product.loose_kg) >= 0
    return product.total_kg


class TestStockConservation:
    def test_random_sequence_conserves_mass(self, db_session, make_product):
        product = make_product(loose_kg=Decimal("12.5"), boxes=4, box_to_kg_ratio=Decimal("20"))
        ratio = Decimal("20")
        rng = random.Random(42)

        expected = _total_kg(product.id)
        live_sales = {}
        refused = 0

        for _ in range(80):
            action = rng.choice(["sale", "sale", "sale", "restock", "damage", "edit", "delete"])
            if action in ("edit", "delete") and not live_sales:
                action = "sale"

            if action == "sale":
                kg = Decimal(rng.randint(0, 60)) / 2
                boxes = rng.randint(0, 2)
                if kg == 0 and boxes == 0:
                    kg = Decimal("1")
                try:
                    sale, _plan = sales_service.create_sale(
                        product.id,
                        account_id=ACCOUNT_ID,
                        kg_quantity=kg,
                        boxes_quantity=boxes,
                        payment_method="cash",
                        payment_status="paid",
                        performed_by=REQUESTER_ID,
                    )
                except InsufficientStockError:
                    refused += 1
                else:
                    live_sales[sale.id] = (kg, boxes)
                    expected -= kg + boxes * ratio

            elif action == "restock":
                boxes = rng.randint(1, 3)
                kg = Decimal(rng.randint(0, 10))
                request = movement_service.request_stock_addition(
                    product.id,
                    account_id=ACCOUNT_ID,
                    requested_by=REQUESTER_ID,
                    boxes_added=boxes,
                    kg_added=kg,
                )
                movement_service.approve(request.id, approver_id=MANAGER_ID, account_id=ACCOUNT_ID)
                expected += kg + boxes * ratio

            elif action == "damage":
                current = get_product(product.id)
                if current.loose_kg <= 0:
                    continue
                kg = min(Decimal(current.loose_kg), Decimal("1.5"))
                request = movement_service.request_damage(
                    product.id,
                    account_id=ACCOUNT_ID,
                    requested_by=REQUESTER_ID,
                    damaged_kg=kg,
                    reason="Spoiled",
                )
                try:
                    movement_service.approve(request.id, approver_id=MANAGER_ID, account_id=ACCOUNT_ID)
                except OutOfStockError:
                    refused += 1
                else:
                    expected -= kg

            elif action == "edit":
                sale_id = rng.choice(sorted(live_sales))
                old_kg, boxes = live_sales[sale_id]
                new_kg = Decimal(rng.randint(1, 40)) / 2
                try:
                    audit = sale_audit_service.request_sale_edit(
                        sale_id,
                        {"kg_quantity": str(new_kg)},
                        account_id=ACCOUNT_ID,
                        requested_by=REQUESTER_ID,
                        reason="Weighed again",
                    )
                except (InsufficientStockError, NoChangeError):
                    refused += 1
                    continue
                sale_audit_service.approve(audit.id, approver_id=MANAGER_ID, account_id=ACCOUNT_ID)
                live_sales[sale_id] = (new_kg, boxes)
                expected += old_kg - new_kg

            else:
                sale_id = rng.choice(sorted(live_sales))
                kg, boxes = live_sales.pop(sale_id)
                audit = sale_audit_service.request_sale_deletion(
                    sale_id, account_id=ACCOUNT_ID, requested_by=REQUESTER_ID, reason="Entered twice"
                )
                sale_audit_service.approve(audit.id, approver_id=MANAGER_ID, account_id=ACCOUNT_ID)
                expected += kg + boxes * ratio

            assert _total_kg(product.id) == expected

        assert refused < 80
