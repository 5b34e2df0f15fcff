# Overview: Service-layer operations for notifications; a fire-and-forget sink for domain events.

from __future__ import annotations

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Notification, User
from ..models.auth import ROLE_ADMIN
from ..models.notifications import NOTIFICATION_TYPES
from ..time_utils import utcnow


def notify(
    user_id: int,
    title: str,
    message: str,
    *,
    type: str = "info",
    related_type: str | None = None,
    related_id: int | None = None,
) -> Notification:
    """
    Queue a notification row in the current DB transaction.

    Does not commit: the caller's commit publishes it together with the
    change it describes, and a rollback discards both.
    """
    if type not in NOTIFICATION_TYPES:
        type = "info"
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        related_type=related_type,
        related_id=related_id,
        is_read=False,
    )
    db.session.add(notification)
    return notification


def notify_admins(title: str, message: str, **kwargs) -> int:
    admin_ids = [
        row.id for row in db.session.query(User.id).filter(
            User.role == ROLE_ADMIN,
            User.is_active.is_(True),
        )
    ]
    for admin_id in admin_ids:
        notify(admin_id, title, message, **kwargs)
    return len(admin_ids)


def list_notifications(
    user_id: int,
    *,
    is_read: bool | None = None,
    type: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Notification], int]:
    query = db.session.query(Notification).filter(Notification.user_id == user_id)
    if is_read is not None:
        query = query.filter(Notification.is_read.is_(is_read))
    if type:
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Invalid notification type. Must be one of: {', '.join(NOTIFICATION_TYPES)}")
        query = query.filter(Notification.type == type)

    total = query.count()
    rows = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total


def unread_count(user_id: int) -> int:
    return db.session.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read.is_(False),
    ).count()


def _get_owned(notification_id: int, user_id: int) -> Notification:
    notification = db.session.query(Notification).filter_by(id=notification_id, user_id=user_id).first()
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


def mark_read(notification_id: int, user_id: int) -> Notification:
    notification = _get_owned(notification_id, user_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.session.commit()
    return notification


def mark_all_read(user_id: int) -> int:
    count = db.session.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read.is_(False),
    ).update({Notification.is_read: True, Notification.read_at: utcnow()}, synchronize_session=False)
    db.session.commit()
    return count


def delete_notification(notification_id: int, user_id: int) -> None:
    notification = _get_owned(notification_id, user_id)
    db.session.delete(notification)
    db.session.commit()
