# Overview: Flask API routes for public user profiles; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify

from ..decorators import require_auth, require_roles
from ..errors import MarketError
from ..models.auth import ROLE_ADMIN, ROLE_FARMER, ROLE_RETAILER
from ..schemas import PublicProfileDTO
from ..services import user_service

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("/<int:user_id>")
@require_auth
@require_roles(ROLE_FARMER, ROLE_RETAILER, ROLE_ADMIN)
def public_profile_route(user_id: int):
    """
    Another user's public profile.

    Phone and address are only included once the account is verified.
    Deactivated accounts are reported as not found.
    """
    try:
        user = user_service.get_public_profile(user_id)
        return jsonify({"data": PublicProfileDTO.from_model(user).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get public profile")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500
