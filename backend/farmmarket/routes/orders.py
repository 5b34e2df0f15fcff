# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

- POST   /api/orders              place an order (retailer/admin)
- GET    /api/orders              list orders visible to the caller
- GET    /api/orders/<id>         one order
- PATCH  /api/orders/<id>/status  move along the state machine
- PATCH  /api/orders/<id>         change quantity of a pending order
- POST   /api/orders/<id>/pay     open a gateway checkout session
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_roles
from ..errors import MarketError, ValidationError
from ..models.auth import ROLE_ADMIN, ROLE_RETAILER
from ..schemas import OrderDTO, pagination_dict
from ..services import order_service, payment_service
from ..validation import parse_pagination

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _optional_int(name: str) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


@orders_bp.post("")
@require_auth
@require_roles(ROLE_RETAILER, ROLE_ADMIN)
def create_order_route():
    """
    Place an order for one product.

    Request body:
    {
        "product_id": 12,
        "quantity": 3,
        "delivery_address": "Jl. Pasar Baru 10, Bandung",
        "notes": "Morning delivery"  (optional)
    }

    Returns:
        201: Order
        400: validation failure (including insufficient stock)
        403: not a retailer/admin
        404: product not found
    """
    data = request.get_json(silent=True) or {}
    try:
        if data.get("product_id") is None:
            raise ValidationError("product_id is required")
        try:
            product_id = int(data["product_id"])
        except (TypeError, ValueError):
            raise ValidationError("Invalid product ID")

        order = order_service.create_order(
            retailer_id=g.current_user.id,
            product_id=product_id,
            quantity=data.get("quantity"),
            delivery_address=data.get("delivery_address"),
            notes=data.get("notes"),
        )
        return jsonify({"data": OrderDTO.from_model(order).to_dict()}), 201
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    Query params:
    - status: pending | confirmed | delivered | completed | cancelled
    - retailer_id, farmer_id: admin-only filters
    - limit (max 50), offset
    """
    try:
        limit, offset = parse_pagination(request.args)
        orders, total = order_service.list_orders(
            actor_id=g.current_user.id,
            actor_role=g.current_user.role,
            status=request.args.get("status") or None,
            retailer_id=_optional_int("retailer_id"),
            farmer_id=_optional_int("farmer_id"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "data": [OrderDTO.from_model(o).to_dict() for o in orders],
            "pagination": pagination_dict(limit=limit, offset=offset, total=total),
        }), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order_for_actor(order_id, g.current_user.id, g.current_user.role)
        return jsonify({"data": OrderDTO.from_model(order).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_auth
def update_order_status_route(order_id: int):
    """
    Request body: {"status": "confirmed"}

    Returns:
        200: Order
        400: unknown status
        403: role/ownership not allowed for this transition
        409: transition not allowed from the current status
    """
    data = request.get_json(silent=True) or {}
    try:
        status = data.get("status")
        if not status:
            raise ValidationError("status is required")
        order = order_service.update_status(order_id, status, g.current_user.id, g.current_user.role)
        return jsonify({"data": OrderDTO.from_model(order).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@orders_bp.patch("/<int:order_id>")
@require_auth
@require_roles(ROLE_RETAILER, ROLE_ADMIN)
def update_order_quantity_route(order_id: int):
    """Request body: {"quantity": 5}"""
    data = request.get_json(silent=True) or {}
    try:
        if "quantity" not in data:
            raise ValidationError("quantity is required")
        order = order_service.update_quantity(order_id, data["quantity"], g.current_user.id, g.current_user.role)
        return jsonify({"data": OrderDTO.from_model(order).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@orders_bp.post("/<int:order_id>/pay")
@require_auth
@require_roles(ROLE_RETAILER, ROLE_ADMIN)
def pay_order_route(order_id: int):
    """
    Request body: {"payment_gateway": "midtrans" | "xendit" | "stripe"}

    Returns:
        200: {transaction_id, payment_url, token, gateway, amount, order_id}
        409: already paid
        502: gateway failed or timed out; safe to resubmit
    """
    data = request.get_json(silent=True) or {}
    try:
        result = payment_service.request_payment(
            order_id,
            g.current_user.id,
            g.current_user.role,
            gateway=data.get("payment_gateway"),
        )
        return jsonify({"data": result}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create payment request")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500
