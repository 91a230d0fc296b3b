# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, "salon_context")


def _requested_salon_id() -> int | None:
    raw = request.headers.get("X-Salon-Id")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def require_auth(f):
    """
    Require authentication and establish tenant context.

    MULTI-TENANT: Sets g.salon_context, the SalonContext every service call
    receives. Super-admins select the target salon with the X-Salon-Id header.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, revoked or expired token
    - Staff account deactivated
    - Salon missing or deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required", "code": "UNAUTHORIZED"}), 401

        token = auth_header.split(" ", 1)[1]

        context = session_service.validate_session(token, requested_salon_id=_requested_salon_id())
        if not context:
            return jsonify({"error": "Invalid or expired token", "code": "UNAUTHORIZED"}), 401

        g.salon_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission. Must be stacked under @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "code": "UNAUTHORIZED"}), 401

            if not g.salon_context.has_permission(permission_code):
                return jsonify({
                    "error": "Permission denied",
                    "code": "FORBIDDEN",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
