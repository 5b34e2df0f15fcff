# Overview: Flask API routes for in-app notifications; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import MarketError
from ..schemas import NotificationDTO, pagination_dict
from ..services import notification_service
from ..validation import parse_bool_param, parse_pagination

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    """Query params: is_read=true|false, type, limit (max 50), offset."""
    try:
        limit, offset = parse_pagination(request.args, default_limit=20)
        rows, total = notification_service.list_notifications(
            g.current_user.id,
            is_read=parse_bool_param(request.args, "is_read"),
            type=request.args.get("type") or None,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "data": [NotificationDTO.from_model(n).to_dict() for n in rows],
            "pagination": pagination_dict(limit=limit, offset=offset, total=total),
            "unread_count": notification_service.unread_count(g.current_user.id),
        }), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@notifications_bp.get("/unread-count")
@require_auth
def unread_count_route():
    try:
        return jsonify({"data": {"unread_count": notification_service.unread_count(g.current_user.id)}}), 200
    except Exception:
        current_app.logger.exception("Failed to count notifications")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@notifications_bp.patch("/read-all")
@require_auth
def mark_all_read_route():
    try:
        count = notification_service.mark_all_read(g.current_user.id)
        return jsonify({"data": {"updated": count}}), 200
    except Exception:
        current_app.logger.exception("Failed to mark notifications read")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@notifications_bp.patch("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(notification_id, g.current_user.id)
        return jsonify({"data": NotificationDTO.from_model(notification).to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark notification read")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


@notifications_bp.delete("/<int:notification_id>")
@require_auth
def delete_notification_route(notification_id: int):
    try:
        notification_service.delete_notification(notification_id, g.current_user.id)
        return jsonify({"ok": True}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete notification")
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500
