# Overview: Service-layer operations for admin user management, public profiles and the admin dashboard.

from __future__ import annotations

import logging
from datetime import timedelta

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Notification, Order, Product, SessionToken, User
from ..models.auth import VALID_ROLES
from ..models.catalog import PRODUCT_STATUSES
from ..models.orders import ORDER_STATUSES
from ..time_utils import utcnow
from . import notification_service, session_service, transaction_service

logger = logging.getLogger(__name__)


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_public_profile(user_id: int) -> User:
    """Deactivated accounts are hidden from other users."""
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("User not found")
    return user


def list_users(
    *,
    role: str | None = None,
    is_active: bool | None = None,
    is_verified: bool | None = None,
    search: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[User], int]:
    query = db.session.query(User)
    if role:
        if role not in VALID_ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(VALID_ROLES)}")
        query = query.filter(User.role == role)
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))
    if is_verified is not None:
        query = query.filter(User.is_verified.is_(is_verified))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(db.or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))

    total = query.count()
    rows = query.order_by(User.created_at.desc(), User.id.desc()).limit(limit).offset(offset).all()
    return rows, total


def verify_user(user_id: int) -> User:
    user = get_user(user_id)
    if not user.is_verified:
        user.is_verified = True
        notification_service.notify(
            user.id,
            "Account verified",
            "Your account has been verified by an administrator.",
            type="account",
        )
        db.session.commit()
        logger.info("User %s verified", user_id)
    return user


def activate_user(user_id: int) -> User:
    user = get_user(user_id)
    if not user.is_active:
        user.is_active = True
        notification_service.notify(
            user.id,
            "Account activated",
            "Your account has been activated.",
            type="account",
        )
        db.session.commit()
        logger.info("User %s activated", user_id)
    return user


def deactivate_user(user_id: int, *, acting_admin_id: int) -> User:
    """Deactivate an account and end all of its sessions."""
    if user_id == acting_admin_id:
        raise ValidationError("You cannot deactivate your own account")
    user = get_user(user_id)
    if user.is_active:
        user.is_active = False
        session_service.revoke_all_user_sessions(user.id, commit=False)
        db.session.commit()
        logger.info("User %s deactivated by admin %s", user_id, acting_admin_id)
    return user


def delete_user(user_id: int, *, acting_admin_id: int) -> None:
    """
    Remove an account with no marketplace history.

    Users that own products or have placed orders are refused with
    ConflictError; deactivate them instead.
    """
    if user_id == acting_admin_id:
        raise ValidationError("You cannot delete your own account")
    user = get_user(user_id)

    has_products = db.session.query(Product.id).filter(Product.farmer_id == user_id).first() is not None
    has_orders = db.session.query(Order.id).filter(Order.retailer_id == user_id).first() is not None
    if has_products or has_orders:
        raise ConflictError(
            "User has products or orders and cannot be deleted; deactivate the account instead",
            details={"has_products": has_products, "has_orders": has_orders},
        )

    db.session.query(SessionToken).filter(SessionToken.user_id == user_id).delete(synchronize_session=False)
    db.session.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)
    db.session.delete(user)
    db.session.commit()
    logger.info("User %s deleted by admin %s", user_id, acting_admin_id)


# =============================================================================
# STATISTICS
# =============================================================================

def _count(query) -> int:
    return query.with_entities(db.func.count(User.id)).scalar() or 0


def get_user_stats(now=None) -> dict:
    """Account counts by role, by verification/activation flag and by signup age."""
    now = now or utcnow()
    users = db.session.query(User)

    by_role = {role: 0 for role in VALID_ROLES}
    for role, count in db.session.query(User.role, db.func.count(User.id)).group_by(User.role).all():
        by_role[role] = count

    total = _count(users)
    verified = _count(users.filter(User.is_verified.is_(True)))
    active = _count(users.filter(User.is_active.is_(True)))

    return {
        "total": total,
        "by_role": by_role,
        "by_status": {
            "verified": verified,
            "unverified": total - verified,
            "active": active,
            "inactive": total - active,
        },
        "recent": {
            "last_7_days": _count(users.filter(User.created_at >= now - timedelta(days=7))),
            "last_30_days": _count(users.filter(User.created_at >= now - timedelta(days=30))),
        },
    }


def get_dashboard_stats() -> dict:
    """
    Marketplace totals for the admin home screen.

    Only active accounts are counted under users. Revenue is what was
    actually paid; commission is the platform's share of it.
    """
    active_users = {role: 0 for role in VALID_ROLES}
    rows = (
        db.session.query(User.role, db.func.count(User.id))
        .filter(User.is_active.is_(True))
        .group_by(User.role)
        .all()
    )
    for role, count in rows:
        active_users[role] = count
    active_users["total"] = sum(active_users.values())

    products = {"total": 0}
    products.update({status: 0 for status in PRODUCT_STATUSES})
    for status, count in db.session.query(Product.status, db.func.count(Product.id)).group_by(Product.status).all():
        products["total"] += count
        products[status] = count

    orders = {"total": 0}
    orders.update({status: 0 for status in ORDER_STATUSES})
    for status, count in db.session.query(Order.status, db.func.count(Order.id)).group_by(Order.status).all():
        orders["total"] += count
        orders[status] = count

    transactions = transaction_service.get_stats()

    return {
        "users": active_users,
        "products": products,
        "orders": orders,
        "transactions": transactions,
        "revenue": {
            "gross": transactions["paid_amount"],
            "commission": transactions["paid_commission"],
        },
    }
