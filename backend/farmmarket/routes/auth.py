# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Password registration and login (bcrypt, strength check, throttled)
- Bearer session tokens; logout revokes the presented token
- WhatsApp OTP signup and passwordless login under /otp
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import MarketError, ValidationError
from ..schemas import UserDTO
from ..services import auth_service, otp_service, session_service
from ..time_utils import to_utc_z

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _login_response(result, status: int = 200):
    return jsonify({
        "data": {
            "user": UserDTO.from_model(result.user).to_dict(),
            "token": result.token,
            "expires_at": to_utc_z(result.expires_at),
        }
    }), status


def _client():
    return {
        "user_agent": request.headers.get("User-Agent"),
        "ip_address": request.remote_addr,
    }


@auth_bp.post("/register")
def register_route():
    """
    Self-registration for farmers and retailers.

    Request body:
    {
        "email": "tani@example.com",
        "password": "Secret123!",
        "full_name": "Pak Tani",
        "role": "farmer" | "retailer",
        "phone": "+6281234567890",     (optional)
        "business_name": "Toko Segar", (required for retailers)
        "address": "..."               (optional)
    }

    Returns:
        201: {user, token, expires_at}
        400: validation / weak password
        409: email or phone already registered
    """
    data = request.get_json(silent=True)
    try:
        user = auth_service.register_user(data)
        result = auth_service.start_session(user, **_client())
        return _login_response(result, 201)
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Registration failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate with email and password.

    SECURITY:
    - Locked for 15 minutes after 5 failed attempts for the same email (429)
    - Deactivated accounts cannot log in
    """
    data = request.get_json(silent=True) or {}
    try:
        result = auth_service.login(data.get("email"), data.get("password"), **_client())
        return _login_response(result)
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token)
        return jsonify({"message": "Logged out successfully"}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Logout failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"data": UserDTO.from_model(g.current_user).to_dict()}), 200


@auth_bp.post("/verify-token")
@require_auth
def verify_token_route():
    """Check a stored token; an invalid, expired or revoked one gets 401 from require_auth."""
    return jsonify({
        "data": {
            "valid": True,
            "user": UserDTO.from_model(g.current_user).to_dict(),
        }
    }), 200


@auth_bp.put("/profile")
@require_auth
def update_profile_route():
    data = request.get_json(silent=True)
    try:
        user = auth_service.update_profile(g.current_user, data)
        return jsonify({"data": UserDTO.from_model(user).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Profile update failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@auth_bp.put("/change-password")
@require_auth
def change_password_route():
    """Change password; every other session of the user is revoked."""
    data = request.get_json(silent=True) or {}
    try:
        current_password = data.get("current_password")
        new_password = data.get("new_password")
        if not current_password or not new_password:
            raise ValidationError("current_password and new_password are required")
        auth_service.change_password(
            g.current_user,
            current_password,
            new_password,
            keep_token=g.session_token,
        )
        return jsonify({"message": "Password changed successfully"}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Password change failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


# =============================================================================
# WHATSAPP OTP
# =============================================================================

def _sender():
    return otp_service.get_sender(current_app.config)


@auth_bp.post("/otp/register")
def otp_register_route():
    """
    Start a WhatsApp signup. Same body as /register but phone and address
    are required; the account is created by /otp/verify.
    """
    data = request.get_json(silent=True)
    try:
        result = otp_service.start_registration(data, _sender())
        return jsonify({"message": "OTP sent to WhatsApp", "data": result}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("OTP registration failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@auth_bp.post("/otp/verify")
def otp_verify_route():
    """Request body: {"phone": "+628...", "otp": "123456"}"""
    data = request.get_json(silent=True) or {}
    try:
        user = otp_service.verify_registration(data.get("phone"), data.get("otp"))
        result = auth_service.start_session(user, **_client())
        return _login_response(result, 201)
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("OTP verification failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@auth_bp.post("/otp/resend")
def otp_resend_route():
    data = request.get_json(silent=True) or {}
    try:
        result = otp_service.resend(data.get("phone"), _sender())
        return jsonify({"message": "OTP resent", "data": result}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("OTP resend failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@auth_bp.post("/otp/request-login")
def otp_request_login_route():
    data = request.get_json(silent=True) or {}
    try:
        result = otp_service.request_login(data.get("phone"), _sender())
        return jsonify({"message": "OTP sent to WhatsApp", "data": result}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("OTP login request failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@auth_bp.post("/otp/verify-login")
def otp_verify_login_route():
    data = request.get_json(silent=True) or {}
    try:
        user = otp_service.verify_login(data.get("phone"), data.get("otp"))
        result = auth_service.start_session(user, **_client())
        return _login_response(result)
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("OTP login failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500
