# Overview: Flask API routes for sale audits (pending sale edits and deletions).

from flask import Blueprint, request, g, current_app

from ..errors import InventoryError
from ..responses import success, failure, internal_error
from ..services import sale_audit_service
from ..decorators import require_actor, require_role


sale_audits_bp = Blueprint("sale_audits", __name__, url_prefix="/api/sale-audits")


@sale_audits_bp.get("")
@require_actor
def list_sale_audits_route():
    """
    Query params: sale_id, audit_type, status, dateFrom, dateTo, page, limit,
    sortBy (created_at, decided_at, audit_type, status, id), sortOrder
    """
    try:
        result = sale_audit_service.list_sale_audits(
            account_id=g.account_id,
            sale_id=request.args.get("sale_id"),
            audit_type=request.args.get("audit_type"),
            status=request.args.get("status") or request.args.get("approval_status"),
            date_from=request.args.get("dateFrom"),
            date_to=request.args.get("dateTo"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
            sort_by=request.args.get("sortBy"),
            sort_order=request.args.get("sortOrder"),
        )
        return success(result, "Sale audits retrieved")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list sale audits")
        return internal_error()


@sale_audits_bp.get("/<int:audit_id>")
@require_actor
def get_sale_audit_route(audit_id: int):
    try:
        audit = sale_audit_service.get_sale_audit(audit_id, account_id=g.account_id)
        return success(audit.to_dict())
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to load sale audit")
        return internal_error()


@sale_audits_bp.post("/<int:audit_id>/approve")
@require_actor
@require_role("manager", "admin")
def approve_sale_audit_route(audit_id: int):
    """
    Request body:
    {
        "approval_reason": "Verified against receipt"   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        audit, result = sale_audit_service.approve(
            audit_id,
            approver_id=g.user_id,
            approval_reason=data.get("approval_reason"),
            account_id=g.account_id,
        )
        return success({"audit": audit.to_dict(), "after": result.get("after")}, "Sale audit approved")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to approve sale audit")
        return internal_error()


@sale_audits_bp.post("/<int:audit_id>/reject")
@require_actor
@require_role("manager", "admin")
def reject_sale_audit_route(audit_id: int):
    try:
        data = request.get_json(silent=True) or {}
        audit = sale_audit_service.reject(
            audit_id,
            reason=data.get("reason") or data.get("approval_reason"),
            approver_id=g.user_id,
            account_id=g.account_id,
        )
        return success({"audit": audit.to_dict()}, "Sale audit rejected")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to reject sale audit")
        return internal_error()
