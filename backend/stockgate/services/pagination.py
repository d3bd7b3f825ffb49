# Overview: Shared list helpers (pagination envelope, date-range filters).

from __future__ import annotations

from flask import current_app

from ..errors import ValidationError
from stockgate.time_utils import parse_date_bound
from stockgate.validation import parse_pagination


def page_params(page, limit) -> tuple[int, int]:
    return parse_pagination(
        page,
        limit,
        default_limit=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
        max_limit=current_app.config.get("MAX_PAGE_SIZE", 100),
    )


def apply_date_range(query, column, date_from, date_to):
    """Filter `column` to [date_from, date_to]; a bare end date covers the whole day."""
    try:
        start = parse_date_bound(date_from)
        end = parse_date_bound(date_to, end_of_day=True)
    except ValueError:
        raise ValidationError("dateFrom/dateTo must be ISO-8601 dates")
    if start is not None and end is not None and start > end:
        raise ValidationError("dateFrom must be before dateTo")
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column <= end)
    return query


def paginate(query, *, page: int, limit: int) -> dict:
    """
    Run a list query one page at a time.

    Returns:
        Dict with 'items', 'count' and 'pagination' metadata.
    """
    total = query.count()
    total_pages = (total + limit - 1) // limit if total > 0 else 0
    items = query.offset((page - 1) * limit).limit(limit).all()

    return {
        "items": [item.to_dict() for item in items],
        "count": len(items),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
