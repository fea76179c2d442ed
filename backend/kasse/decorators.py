# Overview: Request authentication and role decorators for API routes.

from functools import wraps

from flask import request, jsonify, g, current_app

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user to the authenticated User.

    Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_roles(*role_names: str):
    """
    Require any of the named roles. Must be stacked under @require_auth.

    Role names are matched exactly; "Administrator" does not imply "Admin".
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"error": "Authentication required"}), 401

            user_roles = set(g.current_user.role_names)
            if not user_roles.intersection(role_names):
                current_app.logger.info(
                    "Role check failed: user=%s path=%s required=%s has=%s",
                    g.current_user.id, request.path, role_names, sorted(user_roles),
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(role_names),
                    "message": f"Requires any of: {', '.join(role_names)}"
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
