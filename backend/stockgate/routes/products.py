# Overview: Flask API routes for products; reads are direct, every change is approval-gated.

from flask import Blueprint, request, g, current_app

from ..errors import InventoryError
from ..responses import success, failure, internal_error
from ..services import inventory_service, movement_service
from ..services.stock_ledger import get_product
from ..decorators import require_actor


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _pending(created, message: str):
    if isinstance(created, list):
        payload = {"status": "pending_approval", "requests": [item.to_dict() for item in created]}
    else:
        payload = {"status": "pending_approval", "request": created.to_dict()}
    return success(payload, message, 202)


@products_bp.get("")
@require_actor
def list_products_route():
    try:
        products = inventory_service.list_products(account_id=g.account_id)
        return success({"items": [p.to_dict() for p in products], "count": len(products)})
    except Exception:
        current_app.logger.exception("Failed to list products")
        return internal_error()


@products_bp.get("/low-stock")
@require_actor
def low_stock_route():
    try:
        products = inventory_service.list_low_stock(account_id=g.account_id)
        return success({"items": [p.to_dict() for p in products], "count": len(products)})
    except Exception:
        current_app.logger.exception("Failed to list low-stock products")
        return internal_error()


@products_bp.get("/<int:product_id>")
@require_actor
def get_product_route(product_id: int):
    try:
        return success(get_product(product_id, account_id=g.account_id).to_dict())
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to load product")
        return internal_error()


@products_bp.get("/<int:product_id>/summary")
@require_actor
def stock_summary_route(product_id: int):
    try:
        return success(inventory_service.get_stock_summary(product_id, account_id=g.account_id))
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to build stock summary")
        return internal_error()


@products_bp.post("")
@require_actor
def create_product_route():
    """
    Stage a new product for approval.

    Request body:
    {
        "product": {"name": "Tilapia", "box_to_kg_ratio": 20, "price_per_kg": 5, ...},
        "reason": "New supplier line"   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        created = movement_service.request_product_create(
            data.get("product") or {},
            account_id=g.account_id,
            requested_by=g.user_id,
            reason=data.get("reason"),
        )
        return _pending(created, "Product creation submitted for approval")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to stage product")
        return internal_error()


@products_bp.put("/<int:product_id>")
@require_actor
def update_product_route(product_id: int):
    """
    Propose catalog edits; one pending request per changed field.

    Request body:
    {
        "changes": {"price_per_kg": "6.50", "expiry_date": "2026-11-01"},
        "reason": "Supplier price increase"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        created = movement_service.request_product_edit(
            product_id,
            data.get("changes") or {},
            account_id=g.account_id,
            requested_by=g.user_id,
            reason=data.get("reason"),
        )
        return _pending(created, "Product changes submitted for approval")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to request product edit")
        return internal_error()


@products_bp.delete("/<int:product_id>")
@require_actor
def delete_product_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        created = movement_service.request_product_delete(
            product_id,
            account_id=g.account_id,
            requested_by=g.user_id,
            reason=data.get("reason"),
        )
        return _pending(created, "Product deletion submitted for approval")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to request product deletion")
        return internal_error()


@products_bp.post("/<int:product_id>/stock-additions")
@require_actor
def add_stock_route(product_id: int):
    """
    Request body:
    {
        "boxes_added": 10,
        "kg_added": "5.5",
        "total_cost": "1200.00",
        "delivery_date": "2026-10-15"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        created = movement_service.request_stock_addition(
            product_id,
            account_id=g.account_id,
            requested_by=g.user_id,
            boxes_added=data.get("boxes_added"),
            kg_added=data.get("kg_added"),
            total_cost=data.get("total_cost"),
            delivery_date=data.get("delivery_date"),
            reason=data.get("reason"),
        )
        return _pending(created, "Stock addition submitted for approval")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to request stock addition")
        return internal_error()


@products_bp.post("/<int:product_id>/stock-corrections")
@require_actor
def correct_stock_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        created = movement_service.request_stock_correction(
            product_id,
            account_id=g.account_id,
            requested_by=g.user_id,
            box_adjustment=data.get("box_adjustment"),
            kg_adjustment=data.get("kg_adjustment"),
            reason=data.get("reason"),
        )
        return _pending(created, "Stock correction submitted for approval")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to request stock correction")
        return internal_error()


@products_bp.post("/<int:product_id>/damage")
@require_actor
def record_damage_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        created = movement_service.request_damage(
            product_id,
            account_id=g.account_id,
            requested_by=g.user_id,
            damaged_boxes=data.get("damaged_boxes"),
            damaged_kg=data.get("damaged_kg"),
            reason=data.get("reason"),
        )
        return _pending(created, "Damage report submitted for approval")
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to record damage")
        return internal_error()
