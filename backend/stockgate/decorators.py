# Overview: Actor/tenant context decorators for API routes.

from functools import wraps
from flask import request, g

from .responses import error_response


def _header_int(name: str):
    value = request.headers.get(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def require_actor(f):
    """
    Require an upstream-authenticated actor and establish tenant context.

    The authentication gateway in front of this service resolves the session
    and forwards identity as headers. Sets on flask.g:
    - g.user_id:    X-User-Id (int)
    - g.account_id: X-Account-Id (int), the owning account every query is scoped to
    - g.role:       X-User-Role (lower-cased, defaults to "staff")

    Returns 401 if either id is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = _header_int("X-User-Id")
        account_id = _header_int("X-Account-Id")

        if user_id is None or account_id is None:
            return error_response("Authentication required", "unauthorized", 401)

        g.user_id = user_id
        g.account_id = account_id
        g.role = (request.headers.get("X-User-Role") or "staff").strip().lower()

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles. Must be stacked under @require_actor.

    Returns 403 if the actor's role is not allowed.
    """
    allowed = {role.lower() for role in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "role"):
                return error_response("Authentication required", "unauthorized", 401)
            if g.role not in allowed:
                return error_response(
                    "Permission denied",
                    "forbidden",
                    403,
                    {"required_roles": sorted(allowed)},
                )
            return f(*args, **kwargs)

        return decorated_function

    return decorator
