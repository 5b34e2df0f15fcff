# Overview: Flask API route for service health.

"""
System health endpoint.

Reports database reachability and the configured payment gateways. Gateway
secrets are never echoed, only whether each one is configured.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        active_sessions = db.session.query(SessionToken).filter(SessionToken.is_revoked.is_(False)).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "active_sessions": active_sessions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_gateways() -> dict:
    config = current_app.config
    return {
        "status": "healthy",
        "default": config.get("DEFAULT_PAYMENT_GATEWAY"),
        "configured": {
            "midtrans": bool(config.get("MIDTRANS_SERVER_KEY")),
            "xendit": bool(config.get("XENDIT_SECRET_KEY")),
            "stripe": bool(config.get("STRIPE_SECRET_KEY")),
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "gateways": check_gateways(),
        },
    }
    return response, 200 if healthy else 503
