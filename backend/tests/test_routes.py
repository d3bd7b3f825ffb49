"""
API tests: response envelope, status codes and role checks.
"""

from decimal import Decimal

from stockgate.services import movement_service
from stockgate.services.stock_ledger import get_product

from conftest import actor_headers


class TestAuthentication:
    """Every endpoint needs the gateway identity headers."""

    def test_missing_headers_is_401(self, client, db_session):
        resp = client.get("/api/products")

        assert resp.status_code == 401
        assert resp.json == {"success": False, "error": "Authentication required", "code": "unauthorized"}

    def test_malformed_account_is_401(self, client, db_session):
        resp = client.get("/api/products", headers={"X-User-Id": "10", "X-Account-Id": "abc"})
        assert resp.status_code == 401

    def test_staff_cannot_approve(self, client, db_session, product, staff_headers):
        created = client.post(
            f"/api/products/{product.id}/stock-additions",
            json={"boxes_added": 3},
            headers=staff_headers,
        )
        request_id = created.json["data"]["request"]["id"]

        resp = client.post(f"/api/movements/{request_id}/approve", headers=staff_headers)

        assert resp.status_code == 403
        assert resp.json["code"] == "forbidden"
        assert resp.json["details"]["required_roles"] == ["admin", "manager"]

    def test_other_account_sees_nothing(self, client, db_session, product):
        resp = client.get(f"/api/products/{product.id}", headers=actor_headers(account_id=2))
        assert resp.status_code == 404


class TestProductRoutes:
    def test_list_products(self, client, db_session, product, staff_headers):
        resp = client.get("/api/products", headers=staff_headers)

        assert resp.status_code == 200
        assert resp.json["success"] is True
        assert resp.json["data"]["count"] == 1
        assert resp.json["data"]["items"][0]["loose_kg"] == "5.00"

    def test_unknown_product_is_404(self, client, db_session, staff_headers):
        resp = client.get("/api/products/999", headers=staff_headers)

        assert resp.status_code == 404
        assert resp.json["code"] == "not_found"

    def test_low_stock(self, client, db_session, make_product, staff_headers):
        make_product(name="Low", boxes=1, boxed_low_stock_threshold=5)
        make_product(name="Plenty", boxes=20, boxed_low_stock_threshold=5)

        resp = client.get("/api/products/low-stock", headers=staff_headers)

        assert [item["name"] for item in resp.json["data"]["items"]] == ["Low"]

    def test_edit_returns_202_per_field(self, client, db_session, product, staff_headers):
        resp = client.put(
            f"/api/products/{product.id}",
            json={"changes": {"price_per_kg": "6", "category": "frozen"}},
            headers=staff_headers,
        )

        assert resp.status_code == 202
        assert resp.json["data"]["status"] == "pending_approval"
        fields = sorted(item["field_changed"] for item in resp.json["data"]["requests"])
        assert fields == ["category", "price_per_kg"]

    def test_edit_without_changes_is_400(self, client, db_session, product, staff_headers):
        resp = client.put(
            f"/api/products/{product.id}",
            json={"changes": {"name": "Tilapia"}},
            headers=staff_headers,
        )

        assert resp.status_code == 400
        assert resp.json["code"] == "validation_failed"

    def test_summary_after_restock(self, client, db_session, product, staff_headers, manager_headers):
        created = client.post(
            f"/api/products/{product.id}/stock-additions",
            json={"boxes_added": 4, "kg_added": "2.5", "delivery_date": "2026-10-15"},
            headers=staff_headers,
        )
        assert created.status_code == 202
        request_id = created.json["data"]["request"]["id"]
        client.post(f"/api/movements/{request_id}/approve", headers=manager_headers)

        resp = client.get(f"/api/products/{product.id}/summary", headers=staff_headers)

        data = resp.json["data"]
        assert data["current_stock"]["boxes"] == 6
        assert data["current_stock"]["loose_kg"] == "7.50"
        assert data["totals"]["boxes_in"] == 4
        assert data["totals"]["kg_in"] == "2.50"
        assert data["totals"]["kg_damaged"] == "0.00"


class TestMovementRoutes:
    def test_approve_then_conflict(self, client, db_session, product, staff_headers, manager_headers):
        created = client.post(
            "/api/movements",
            json={"kind": "new_stock", "product_id": product.id, "boxes_added": 3},
            headers=staff_headers,
        )
        assert created.status_code == 202
        request_id = created.json["data"]["request"]["id"]

        first = client.post(f"/api/movements/{request_id}/approve", headers=manager_headers)
        second = client.post(f"/api/movements/{request_id}/approve", headers=manager_headers)

        assert first.status_code == 200
        assert first.json["data"]["request"]["status"] == "completed"
        assert second.status_code == 409
        assert second.json["code"] == "conflict"
        assert second.json["details"]["reason"] == "already_processed"
        assert get_product(product.id).boxes == 5

    def test_approval_that_would_go_negative_is_422(self, client, db_session, product, staff_headers, manager_headers):
        created = client.post(
            f"/api/products/{product.id}/stock-corrections",
            json={"box_adjustment": -5, "reason": "Count"},
            headers=staff_headers,
        )
        request_id = created.json["data"]["request"]["id"]

        resp = client.post(f"/api/movements/{request_id}/approve", headers=manager_headers)

        assert resp.status_code == 422
        assert resp.json["code"] == "insufficient_stock"

    def test_unknown_kind_is_400(self, client, db_session, staff_headers):
        resp = client.post("/api/movements", json={"kind": "teleport"}, headers=staff_headers)
        assert resp.status_code == 400

    def test_list_paginates(self, client, db_session, product, staff_headers):
        for boxes in (1, 2, 3):
            client.post(
                f"/api/products/{product.id}/stock-additions",
                json={"boxes_added": boxes},
                headers=staff_headers,
            )

        resp = client.get("/api/movements?limit=2&sortOrder=asc&sortBy=id", headers=staff_headers)

        data = resp.json["data"]
        assert data["count"] == 2
        assert data["pagination"]["total"] == 3
        assert data["pagination"]["has_next"] is True
        assert [item["box_delta"] for item in data["items"]] == [1, 2]

    def test_bad_sort_field_is_400(self, client, db_session, staff_headers):
        resp = client.get("/api/movements?sortBy=password", headers=staff_headers)
        assert resp.status_code == 400

    def test_unexpected_error_is_500_without_leak(self, client, db_session, staff_headers, monkeypatch):
        def _boom(**kwargs):
            raise RuntimeError("connection string with secrets")

        monkeypatch.setattr(movement_service, "list_mutation_requests", _boom)

        resp = client.get("/api/movements", headers=staff_headers)

        assert resp.status_code == 500
        assert resp.json == {"success": False, "error": "Internal server error", "code": "internal_error"}

    def test_pending_summary(self, client, db_session, product, staff_headers):
        client.delete(f"/api/products/{product.id}", json={"reason": "Discontinued"}, headers=staff_headers)

        resp = client.get("/api/movements/pending", headers=staff_headers)

        assert resp.json["data"]["mutation_requests"] == {"product_delete": 1}


class TestSaleRoutes:
    def test_create_sale_is_201_with_trace(self, client, db_session, product, staff_headers):
        resp = client.post(
            "/api/sales",
            json={
                "product_id": product.id,
                "kg_quantity": "12",
                "payment_method": "momo_pay",
                "payment_status": "paid",
            },
            headers=staff_headers,
        )

        assert resp.status_code == 201
        data = resp.json["data"]
        assert data["status"] == "created"
        assert data["sale"]["total_amount"] == "66.00"
        assert "Converted 1 box(es) to 10kg loose stock" in data["allocation"]["steps"]
        assert get_product(product.id).loose_kg == Decimal("3")

    def test_insufficient_stock_is_422_with_shortage(self, client, db_session, product, staff_headers):
        resp = client.post(
            "/api/sales",
            json={
                "product_id": product.id,
                "kg_quantity": 30,
                "payment_method": "cash",
                "payment_status": "paid",
            },
            headers=staff_headers,
        )

        assert resp.status_code == 422
        assert resp.json["success"] is False
        assert resp.json["code"] == "insufficient_stock"
        assert resp.json["details"]["shortage_kg"] == "5.00"

    def test_missing_product_id_is_400(self, client, db_session, staff_headers):
        resp = client.post(
            "/api/sales",
            json={"kg_quantity": 1, "payment_method": "cash", "payment_status": "paid"},
            headers=staff_headers,
        )
        assert resp.status_code == 400

    def test_edit_and_approve_sale(self, client, db_session, make_product, staff_headers, manager_headers):
        product = make_product(loose_kg=Decimal("50"), boxes=5)
        created = client.post(
            "/api/sales",
            json={"product_id": product.id, "kg_quantity": 10, "payment_method": "cash", "payment_status": "paid"},
            headers=staff_headers,
        )
        sale_id = created.json["data"]["sale"]["id"]

        edit = client.put(
            f"/api/sales/{sale_id}",
            json={"kg_quantity": 6, "reason": "Scale was off"},
            headers=staff_headers,
        )
        assert edit.status_code == 202
        audit_id = edit.json["data"]["audit"]["id"]

        approved = client.post(
            f"/api/sale-audits/{audit_id}/approve",
            json={"approval_reason": "Verified"},
            headers=manager_headers,
        )

        assert approved.status_code == 200
        assert approved.json["data"]["audit"]["status"] == "approved"
        assert approved.json["data"]["after"]["sale"]["kg_quantity"] == "6.00"
        assert get_product(product.id).loose_kg == Decimal("44")

    def test_delete_sale_is_202(self, client, db_session, product, staff_headers):
        created = client.post(
            "/api/sales",
            json={"product_id": product.id, "boxes_quantity": 1, "payment_method": "cash", "payment_status": "paid"},
            headers=staff_headers,
        )
        sale_id = created.json["data"]["sale"]["id"]

        resp = client.delete(f"/api/sales/{sale_id}", json={"reason": "Duplicate"}, headers=staff_headers)

        assert resp.status_code == 202
        assert resp.json["data"]["audit"]["audit_type"] == "deletion"

        listed = client.get("/api/sale-audits?status=pending", headers=staff_headers)
        assert listed.json["data"]["count"] == 1


class TestAuditEntryRoutes:
    def test_lists_entries_for_request(self, client, db_session, product, staff_headers, manager_headers):
        created = client.post(
            f"/api/products/{product.id}/stock-additions",
            json={"boxes_added": 1},
            headers=staff_headers,
        )
        request_id = created.json["data"]["request"]["id"]
        client.post(
            f"/api/movements/{request_id}/reject",
            json={"reason": "Wrong supplier"},
            headers=manager_headers,
        )

        resp = client.get(
            f"/api/audit-entries?entity_type=mutation_request&entity_id={request_id}",
            headers=staff_headers,
        )

        actions = sorted(item["action"] for item in resp.json["data"]["items"])
        assert actions == ["rejected", "requested"]
