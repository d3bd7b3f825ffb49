# Overview: Flask API routes for sales; creation deducts stock, edits and deletes go to approval.

from flask import Blueprint, request, g, current_app

from ..errors import InventoryError
from ..responses import success, failure, internal_error
from ..services import sales_service, sale_audit_service
from ..validation import parse_int
from ..decorators import require_actor


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_actor
def create_sale_route():
    """
    Sell kg and/or boxes of a product. Stock is deducted immediately.

    Request body:
    {
        "product_id": 1,
        "kg_quantity": "12.5",          (optional)
        "boxes_quantity": 2,            (optional, at least one > 0)
        "payment_method": "cash",       (momo_pay | cash | bank_transfer)
        "payment_status": "paid",       (paid | pending | partial)
        "amount_paid": "100.00",        (optional, defaults to total when paid)
        "client": {"client_name": "...", "phone": "..."}   (name required unless paid)
    }

    Returns:
        201: {"status": "created", "sale": {...}, "allocation": {...steps...}}
        400: Validation failed
        404: Unknown product
        422: Insufficient stock (details.shortage_kg); nothing recorded
    """
    try:
        data = request.get_json(silent=True) or {}
        sale, plan = sales_service.create_sale(
            parse_int(data.get("product_id"), "product_id"),
            account_id=g.account_id,
            kg_quantity=data.get("kg_quantity"),
            boxes_quantity=data.get("boxes_quantity"),
            payment_method=data.get("payment_method"),
            payment_status=data.get("payment_status"),
            amount_paid=data.get("amount_paid"),
            client=data.get("client"),
            performed_by=g.user_id,
        )
        return success(
            {"status": "created", "sale": sale.to_dict(), "allocation": plan.to_dict()},
            "Sale recorded",
            201,
        )
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return internal_error()


@sales_bp.get("")
@require_actor
def list_sales_route():
    try:
        result = sales_service.list_sales(
            account_id=g.account_id,
            product_id=request.args.get("product_id"),
            payment_status=request.args.get("payment_status"),
            date_from=request.args.get("dateFrom"),
            date_to=request.args.get("dateTo"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
            sort_by=request.args.get("sortBy"),
            sort_order=request.args.get("sortOrder"),
        )
        return success(result, "Sales retrieved")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return internal_error()


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    try:
        return success(sales_service.get_sale(sale_id, account_id=g.account_id).to_dict())
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return internal_error()


@sales_bp.put("/<int:sale_id>")
@require_actor
def edit_sale_route(sale_id: int):
    """
    Request body:
    {
        "boxes_quantity": 1,            (optional)
        "kg_quantity": "6",             (optional)
        "payment_method": "momo_pay",   (optional)
        "reason": "count correction"    (required)
    }

    Returns:
        202: {"status": "pending_approval", "audit": {...}}
        400: No changes detected / validation failed
    """
    try:
        data = request.get_json(silent=True) or {}
        changes = {
            key: data[key]
            for key in ("boxes_quantity", "kg_quantity", "payment_method")
            if key in data
        }
        audit = sale_audit_service.request_sale_edit(
            sale_id,
            changes,
            account_id=g.account_id,
            requested_by=g.user_id,
            reason=data.get("reason"),
        )
        return success(
            {"status": "pending_approval", "audit": audit.to_dict()},
            "Sale edit submitted for approval",
            202,
        )
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to request sale edit")
        return internal_error()


@sales_bp.delete("/<int:sale_id>")
@require_actor
def delete_sale_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        audit = sale_audit_service.request_sale_deletion(
            sale_id,
            account_id=g.account_id,
            requested_by=g.user_id,
            reason=data.get("reason"),
        )
        return success(
            {"status": "pending_approval", "audit": audit.to_dict()},
            "Sale deletion submitted for approval",
            202,
        )
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to request sale deletion")
        return internal_error()
