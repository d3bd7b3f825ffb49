# Overview: Read-only audit trail endpoint.

from flask import Blueprint, request, g, current_app

from ..errors import InventoryError
from ..responses import success, failure, internal_error
from ..services.audit_trail import list_audit_entries
from ..validation import parse_int
from ..decorators import require_actor


audit_entries_bp = Blueprint("audit_entries", __name__, url_prefix="/api/audit-entries")


@audit_entries_bp.get("")
@require_actor
def list_audit_entries_route():
    """Query params: entity_type, entity_id, limit (default 100, max 500)."""
    try:
        limit = parse_int(request.args.get("limit"), "limit", required=False, default=100)
        entries = list_audit_entries(
            account_id=g.account_id,
            entity_type=request.args.get("entity_type"),
            entity_id=parse_int(request.args.get("entity_id"), "entity_id", required=False),
            limit=min(max(limit, 1), 500),
        )
        return success({"items": [e.to_dict() for e in entries], "count": len(entries)})
    except InventoryError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list audit entries")
        return internal_error()
