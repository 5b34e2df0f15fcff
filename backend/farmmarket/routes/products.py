# Overview: Flask API routes for product listings and stock; parses input and returns JSON responses.

"""
Product routes.

Listing and reading products is public. Writes require a farmer (owner) or
an admin; ownership is checked in product_service.
"""

from decimal import Decimal, InvalidOperation

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_roles
from ..errors import MarketError, ValidationError
from ..models import Product
from ..models.auth import ROLE_ADMIN, ROLE_FARMER
from ..schemas import ProductDTO, pagination_dict
from ..services import product_service
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_product,
    parse_bool_param,
    parse_pagination,
    validate_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "quantity", "unit", "price", "harvest_date", "image_url", "status"},
    required_on_create={"name", "quantity", "price"},
)

STOCK_POLICY = ModelValidationPolicy(writable_fields={"quantity", "status"})

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _decimal_arg(name: str) -> Decimal | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number")


def _list_response(farmer_id: int | None):
    limit, offset = parse_pagination(request.args, default_limit=20)
    ascending = parse_bool_param(request.args, "ascending")
    rows, total = product_service.list_products(
        status=request.args.get("status") or None,
        farmer_id=farmer_id,
        search=request.args.get("search") or None,
        min_price=_decimal_arg("min_price"),
        max_price=_decimal_arg("max_price"),
        sort_by=request.args.get("sort_by") or "created_at",
        ascending=bool(ascending),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "data": [ProductDTO.from_model(p).to_dict() for p in rows],
        "pagination": pagination_dict(limit=limit, offset=offset, total=total),
    }), 200


@products_bp.get("")
def list_products_route():
    """
    Public catalogue.

    Query params:
    - status, farmer_id, search (name contains), min_price, max_price
    - sort_by: created_at | name | price | harvest_date; ascending=true|false
    - limit (max 50), offset
    """
    try:
        farmer_id = request.args.get("farmer_id")
        if farmer_id not in (None, ""):
            try:
                farmer_id = int(farmer_id)
            except ValueError:
                raise ValidationError("farmer_id must be an integer")
        else:
            farmer_id = None
        return _list_response(farmer_id)
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@products_bp.get("/mine")
@require_auth
@require_roles(ROLE_FARMER)
def list_my_products_route():
    try:
        return _list_response(g.current_user.id)
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list farmer products")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = product_service.get_product(product_id)
        return jsonify({"data": ProductDTO.from_model(product).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@products_bp.post("")
@require_auth
@require_roles(ROLE_FARMER, ROLE_ADMIN)
def create_product_route():
    """
    Create a listing owned by the caller.

    Status is derived from quantity unless given: 0 means sold.
    """
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        product = product_service.create_product(farmer_id=g.current_user.id, patch=patch)
        return jsonify({"data": ProductDTO.from_model(product).to_dict()}), 201
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@products_bp.put("/<int:product_id>")
@require_auth
@require_roles(ROLE_FARMER, ROLE_ADMIN)
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        product = product_service.update_product(
            product_id=product_id,
            actor_id=g.current_user.id,
            actor_role=g.current_user.role,
            patch=patch,
        )
        return jsonify({"data": ProductDTO.from_model(product).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@products_bp.patch("/<int:product_id>/stock")
@require_auth
@require_roles(ROLE_FARMER, ROLE_ADMIN)
def update_stock_route(product_id: int):
    """
    Set the absolute stock level and/or status.

    Request body: {"quantity": "25.5", "status": "available"}

    Returns 409 if a reservation changed the stock while the update ran.
    """
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=STOCK_POLICY, partial=True)
        enforce_rules_product(patch)
        product = product_service.update_stock(
            product_id=product_id,
            actor_id=g.current_user.id,
            actor_role=g.current_user.role,
            quantity=patch.get("quantity"),
            status=patch.get("status"),
        )
        return jsonify({"data": ProductDTO.from_model(product).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update stock")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_roles(ROLE_FARMER, ROLE_ADMIN)
def delete_product_route(product_id: int):
    try:
        product_service.delete_product(
            product_id=product_id,
            actor_id=g.current_user.id,
            actor_role=g.current_user.role,
        )
        return jsonify({"ok": True}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500
