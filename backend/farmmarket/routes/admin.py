# Overview: Flask API routes for admin login and user management; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_roles
from ..errors import MarketError
from ..models.auth import ROLE_ADMIN
from ..schemas import UserDTO, pagination_dict, stats_dict
from ..services import auth_service, user_service
from ..time_utils import to_utc_z
from ..validation import parse_bool_param, parse_pagination

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.post("/auth/login")
def admin_login_route():
    """
    Admin login.

    SECURITY: failures are counted per client IP; 5 failures within 15
    minutes lock the IP out (429 with retry_after_seconds).
    """
    data = request.get_json(silent=True) or {}
    try:
        result = auth_service.admin_login(
            data.get("email"),
            data.get("password"),
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({
            "data": {
                "user": UserDTO.from_model(result.user).to_dict(),
                "token": result.token,
                "expires_at": to_utc_z(result.expires_at),
            }
        }), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Admin login failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@admin_bp.get("/users")
@require_auth
@require_roles(ROLE_ADMIN)
def list_users_route():
    """
    Query params:
    - role: farmer | retailer | admin
    - is_active, is_verified: true | false
    - search: name or email contains
    - limit (max 50), offset
    """
    try:
        limit, offset = parse_pagination(request.args, default_limit=20)
        users, total = user_service.list_users(
            role=request.args.get("role") or None,
            is_active=parse_bool_param(request.args, "is_active"),
            is_verified=parse_bool_param(request.args, "is_verified"),
            search=request.args.get("search") or None,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "data": [UserDTO.from_model(u).to_dict() for u in users],
            "pagination": pagination_dict(limit=limit, offset=offset, total=total),
        }), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list users")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@admin_bp.get("/dashboard")
@require_auth
@require_roles(ROLE_ADMIN)
def dashboard_route():
    """Active users by role, product and order counts by status, payment totals and paid revenue."""
    try:
        return jsonify({"data": stats_dict(user_service.get_dashboard_stats())}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build admin dashboard")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@admin_bp.get("/users/stats")
@require_auth
@require_roles(ROLE_ADMIN)
def user_stats_route():
    try:
        return jsonify({"data": user_service.get_user_stats()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute user stats")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@admin_bp.get("/users/<int:user_id>")
@require_auth
@require_roles(ROLE_ADMIN)
def get_user_route(user_id: int):
    try:
        user = user_service.get_user(user_id)
        return jsonify({"data": UserDTO.from_model(user).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get user")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@admin_bp.patch("/users/<int:user_id>/verify")
@require_auth
@require_roles(ROLE_ADMIN)
def verify_user_route(user_id: int):
    try:
        user = user_service.verify_user(user_id)
        return jsonify({"data": UserDTO.from_model(user).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify user")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@admin_bp.patch("/users/<int:user_id>/activate")
@require_auth
@require_roles(ROLE_ADMIN)
def activate_user_route(user_id: int):
    try:
        user = user_service.activate_user(user_id)
        return jsonify({"data": UserDTO.from_model(user).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to activate user")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@admin_bp.patch("/users/<int:user_id>/deactivate")
@require_auth
@require_roles(ROLE_ADMIN)
def deactivate_user_route(user_id: int):
    """Deactivate an account; all of its sessions are revoked."""
    try:
        user = user_service.deactivate_user(user_id, acting_admin_id=g.current_user.id)
        return jsonify({"data": UserDTO.from_model(user).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate user")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@admin_bp.delete("/users/<int:user_id>")
@require_auth
@require_roles(ROLE_ADMIN)
def delete_user_route(user_id: int):
    try:
        user_service.delete_user(user_id, acting_admin_id=g.current_user.id)
        return jsonify({"ok": True}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500
