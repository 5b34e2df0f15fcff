# Overview: Flask API routes for gateway webhooks and payment status; parses input and returns JSON responses.

"""
Payment routes.

Webhooks are unauthenticated; the gateway signature is the credential.
The raw body is passed on untouched because signatures are computed over
the exact bytes the gateway sent.

Webhook responses:
    200  applied, duplicate, ignored, or reconciliation conflict (logged)
    400  malformed payload / missing transaction id / missing signature
    401  signature check failed
    404  unknown transaction
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import MarketError
from ..services import payment_service, webhook_service

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _handle_webhook(gateway):
    raw = request.get_data()
    try:
        result = webhook_service.handle_request(gateway, raw, request.headers)
        return jsonify({"received": True, "data": result.to_dict()}), 200
    except MarketError as e:
        current_app.logger.warning(
            "Webhook rejected (%s): %s", gateway or "auto", e.message
        )
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Webhook processing failed")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@payments_bp.post("/webhook")
def webhook_route():
    """Gateway is detected from the signature header it sends."""
    return _handle_webhook(None)


@payments_bp.post("/webhook/<gateway>")
def gateway_webhook_route(gateway: str):
    return _handle_webhook(gateway)


@payments_bp.get("/status/<transaction_id>")
@require_auth
def payment_status_route(transaction_id: str):
    try:
        status = payment_service.get_payment_status(transaction_id, g.current_user.id, g.current_user.role)
        return jsonify({"data": status}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get payment status")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500
