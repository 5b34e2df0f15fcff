# Overview: Flask API routes for the farmer dashboard; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_auth, require_roles
from ..errors import MarketError
from ..models.auth import ROLE_FARMER
from ..schemas import OrderDTO, ProductDTO, RetailerContactDTO, TransactionDTO, UserDTO, stats_dict
from ..services import farmer_service

farmer_bp = Blueprint("farmer", __name__, url_prefix="/api/farmer")


def _order_with_retailer(order) -> dict:
    data = OrderDTO.from_model(order).to_dict()
    data["retailer"] = RetailerContactDTO.from_model(order.retailer).to_dict() if order.retailer else None
    return data


@farmer_bp.get("/dashboard")
@require_auth
@require_roles(ROLE_FARMER)
def dashboard_route():
    """
    Profile, every listing, and the most recent orders and payments on the
    caller's products. Orders carry the retailer's contact details.
    """
    try:
        dashboard = farmer_service.get_dashboard(g.current_user.id)
        return jsonify({
            "data": {
                "farmer": UserDTO.from_model(dashboard.farmer).to_dict(),
                "products": [ProductDTO.from_model(p).to_dict() for p in dashboard.products],
                "orders": [_order_with_retailer(o) for o in dashboard.orders],
                "transactions": [TransactionDTO.from_model(t).to_dict() for t in dashboard.transactions],
            }
        }), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build farmer dashboard")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@farmer_bp.get("/stats")
@require_auth
@require_roles(ROLE_FARMER)
def stats_route():
    try:
        stats = farmer_service.get_stats(g.current_user.id)
        return jsonify({"data": stats_dict(stats)}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute farmer stats")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500
