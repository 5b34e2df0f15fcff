# Overview: Flask API routes for payment transactions; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_roles
from ..errors import AuthorizationError, InvalidTransition, MarketError, NotFoundError, ValidationError
from ..models.auth import ROLE_ADMIN, ROLE_FARMER, ROLE_RETAILER
from ..schemas import TransactionDTO, pagination_dict, stats_dict
from ..services import order_service, transaction_service
from ..validation import parse_date_param, parse_pagination

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _check_visible(txn) -> None:
    user = g.current_user
    if txn.order is None or not order_service.can_view(txn.order, user.id, user.role):
        raise AuthorizationError("You do not have permission to view this transaction")


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    """
    Retailers see transactions of their orders, farmers those of orders
    containing their products, admins everything.

    Query params: status, gateway, date_from, date_to, limit (max 50), offset;
    admins may also filter by retailer_id / farmer_id.
    """
    user = g.current_user
    try:
        limit, offset = parse_pagination(request.args)
        retailer_id = request.args.get("retailer_id", type=int)
        farmer_id = request.args.get("farmer_id", type=int)
        if user.role == ROLE_RETAILER:
            retailer_id, farmer_id = user.id, None
        elif user.role == ROLE_FARMER:
            retailer_id, farmer_id = None, user.id

        rows, total = transaction_service.list_transactions(
            status=request.args.get("status") or None,
            gateway=request.args.get("gateway") or None,
            retailer_id=retailer_id,
            farmer_id=farmer_id,
            date_from=parse_date_param(request.args, "date_from"),
            date_to=parse_date_param(request.args, "date_to"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "data": [TransactionDTO.from_model(t).to_dict() for t in rows],
            "pagination": pagination_dict(limit=limit, offset=offset, total=total),
        }), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@transactions_bp.get("/stats")
@require_auth
@require_roles(ROLE_ADMIN)
def transaction_stats_route():
    try:
        stats = transaction_service.get_stats(
            date_from=parse_date_param(request.args, "date_from"),
            date_to=parse_date_param(request.args, "date_to"),
        )
        data = stats_dict(stats)
        return jsonify({"data": data}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute transaction stats")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@transactions_bp.get("/<transaction_id>")
@require_auth
def get_transaction_route(transaction_id: str):
    try:
        txn = transaction_service.get_transaction(transaction_id)
        _check_visible(txn)
        return jsonify({"data": TransactionDTO.from_model(txn).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get transaction")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@transactions_bp.get("/order/<int:order_id>")
@require_auth
def get_transaction_by_order_route(order_id: int):
    try:
        order_service.get_order_for_actor(order_id, g.current_user.id, g.current_user.role)
        txn = transaction_service.get_by_order(order_id)
        if txn is None:
            raise NotFoundError("No transaction for this order")
        return jsonify({"data": TransactionDTO.from_model(txn).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get transaction by order")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@transactions_bp.patch("/<transaction_id>/status")
@require_auth
@require_roles(ROLE_ADMIN)
def update_transaction_status_route(transaction_id: str):
    """
    Manual settlement.

    Request body:
    {
        "payment_status": "paid" | "failed" | "pending",
        "gateway_transaction_id": "..."  (required for paid)
    }

    Final states cannot be changed (409).
    """
    data = request.get_json(silent=True) or {}
    try:
        payment_status = data.get("payment_status")
        if not payment_status:
            raise ValidationError("payment_status is required")
        outcome = transaction_service.admin_set_status(
            transaction_id,
            payment_status,
            gateway_transaction_id=data.get("gateway_transaction_id"),
        )
        if outcome.payment_status != payment_status:
            raise InvalidTransition(
                f"Transaction is already {outcome.payment_status}",
                details={"from": outcome.payment_status, "to": payment_status},
            )
        txn = transaction_service.get_transaction(outcome.transaction_id)
        body = {"data": TransactionDTO.from_model(txn).to_dict()}
        if outcome.conflict:
            body["warning"] = outcome.conflict
        return jsonify(body), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update transaction status")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500
