# Overview: Flask API routes for mutation requests (stock movements) and their approval.

# backend/stockgate/routes/movements.py
"""
Stock Movement API Routes

DESIGN:
- Any actor can propose a movement; it is stored as pending
- Managers and admins approve or reject; approval executes the change
- Requesters can cancel their own pending requests
- Re-approving or re-rejecting a processed request returns 409 with
  details.reason == "already_processed" so clients refresh instead of retrying
"""

from flask import Blueprint, request, g, current_app

from ..errors import InventoryError
from ..responses import success, failure, internal_error
from ..services import movement_service, inventory_service
from ..decorators import require_actor, require_role


movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")


def _serialize(created):
    if isinstance(created, list):
        return [item.to_dict() for item in created]
    return created.to_dict()


@movements_bp.get("")
@require_actor
def list_movements_route():
    """
    List mutation requests.

    Query params:
    - product_id, kind, status
    - dateFrom / dateTo (ISO-8601; a bare dateTo covers the whole day)
    - page, limit (default 20, max 100)
    - sortBy (created_at, decided_at, kind, status, product_id, id), sortOrder (asc|desc)
    """
    try:
        result = movement_service.list_mutation_requests(
            account_id=g.account_id,
            product_id=request.args.get("product_id"),
            kind=request.args.get("kind") or request.args.get("movement_type"),
            status=request.args.get("status"),
            date_from=request.args.get("dateFrom"),
            date_to=request.args.get("dateTo"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
            sort_by=request.args.get("sortBy"),
            sort_order=request.args.get("sortOrder"),
        )
        return success(result, "Movements retrieved")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list movements")
        return internal_error()


@movements_bp.get("/pending")
@require_actor
def pending_summary_route():
    try:
        return success(inventory_service.list_pending_approvals(account_id=g.account_id))
    except Exception:
        current_app.logger.exception("Failed to summarize pending approvals")
        return internal_error()


@movements_bp.get("/<int:request_id>")
@require_actor
def get_movement_route(request_id: int):
    try:
        record = movement_service.get_mutation_request(request_id, account_id=g.account_id)
        return success(record.to_dict())
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to load movement")
        return internal_error()


@movements_bp.post("")
@require_actor
def create_movement_route():
    """
    Propose a movement of any kind.

    Request body:
    {
        "kind": "new_stock" | "stock_correction" | "damage" |
                "product_edit" | "product_create" | "product_delete",
        "product_id": 1,             (all kinds except product_create)
        "reason": "...",
        ... kind-specific fields (boxes_added, kg_added, box_adjustment,
            kg_adjustment, damaged_boxes, damaged_kg, changes, product)
    }

    Returns:
        202: {"status": "pending_approval", "request": {...}}
    """
    try:
        data = request.get_json(silent=True) or {}
        created = movement_service.create_mutation_request(
            data.get("kind"),
            data,
            account_id=g.account_id,
            requested_by=g.user_id,
        )
        return success(
            {"status": "pending_approval", "request": _serialize(created)},
            "Request submitted for approval",
            202,
        )
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to create movement")
        return internal_error()


@movements_bp.post("/<int:request_id>/approve")
@require_actor
@require_role("manager", "admin")
def approve_movement_route(request_id: int):
    """
    Approve and execute a pending request.

    Returns:
        200: Request completed (includes executor results, e.g. removal failures)
        404: Unknown request
        409: Already processed
        422: Stock would go negative; request stays pending
    """
    try:
        record, result = movement_service.approve(
            request_id,
            approver_id=g.user_id,
            account_id=g.account_id,
        )
        data = {"request": record.to_dict()}
        if "removal" in result:
            data["removal"] = result["removal"]
        if "damage" in result:
            data["damage"] = result["damage"]
        if "product" in result:
            data["product"] = result["product"]
        return success(data, "Request approved")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to approve movement")
        return internal_error()


@movements_bp.post("/<int:request_id>/reject")
@require_actor
@require_role("manager", "admin")
def reject_movement_route(request_id: int):
    """
    Request body:
    {
        "reason": "Delivery never arrived"   (required)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        record = movement_service.reject(
            request_id,
            reason=data.get("reason"),
            approver_id=g.user_id,
            account_id=g.account_id,
        )
        return success({"request": record.to_dict()}, "Request rejected")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to reject movement")
        return internal_error()


@movements_bp.post("/<int:request_id>/cancel")
@require_actor
def cancel_movement_route(request_id: int):
    try:
        data = request.get_json(silent=True) or {}
        record = movement_service.cancel(
            request_id,
            actor_id=g.user_id,
            reason=data.get("reason"),
            account_id=g.account_id,
        )
        return success({"request": record.to_dict()}, "Request cancelled")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to cancel movement")
        return internal_error()
