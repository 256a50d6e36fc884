# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .identity import resolve_identity


def require_identity(f):
    """
    Require a caller identity.

    Sets g.identity (user_id, role). Returns 401 when the gateway did not
    supply one.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity = resolve_identity(current_app, request)
        if identity is None:
            return jsonify({"error": "Authentication required"}), 401
        g.identity = identity
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles.

    Usage:
        @bp.post("/<int:kot_id>/reverse")
        @require_role("admin", "manager")
        def reverse(kot_id): ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            identity = resolve_identity(current_app, request)
            if identity is None:
                return jsonify({"error": "Authentication required"}), 401
            if identity.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            g.identity = identity
            return f(*args, **kwargs)

        return decorated_function

    return decorator
