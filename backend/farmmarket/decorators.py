# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_token: The plaintext bearer token of this request

    Returns 401 if the Authorization header is missing, or the token is
    invalid, expired, revoked or belongs to a deactivated account.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required", "code": "AuthenticationError"}), 401

        context = session_service.validate_session(token)
        if context is None:
            return jsonify({"error": "Invalid or expired token", "code": "AuthenticationError"}), 401

        g.current_user = context.user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_roles(*roles: str):
    """Allow only users whose role is in `roles`; use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required", "code": "AuthenticationError"}), 401
            if user.role not in roles:
                return jsonify({
                    "error": "Insufficient permissions",
                    "code": "AuthorizationError",
                    "details": {"required_roles": list(roles), "role": user.role},
                }), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator
