"""
Login Throttling Service

Limits failed login attempts so passwords cannot be brute-forced.

- Counts failures per (scope, key); admin logins are keyed by client IP,
  regular logins by email
- Lockout after MAX_FAILED_ATTEMPTS failures within LOCKOUT_WINDOW
- Lockout lasts LOCKOUT_DURATION
- Counters live in the login_attempts table, so every server process
  shares them; each increment is one UPDATE
- A successful login clears the counter
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import AccountLockedError
from ..models import LoginAttempt
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

SCOPE_LOGIN = "login"
SCOPE_ADMIN_LOGIN = "admin_login"

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_WINDOW = timedelta(minutes=15)
LOCKOUT_DURATION = timedelta(minutes=15)


def _row_query(scope: str, key: str):
    return db.session.query(LoginAttempt).filter(LoginAttempt.scope == scope, LoginAttempt.key == key)


def is_locked(scope: str, key: str) -> tuple[bool, int | None]:
    """
    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    row = _row_query(scope, key).first()
    now = utcnow()
    if row is None or row.locked_until is None or row.locked_until <= now:
        return False, None
    return True, int((row.locked_until - now).total_seconds()) + 1


def ensure_not_locked(scope: str, key: str) -> None:
    locked, seconds = is_locked(scope, key)
    if locked:
        minutes = max(1, (seconds + 59) // 60)
        raise AccountLockedError(
            f"Too many failed login attempts. Try again in {minutes} minutes.",
            details={"retry_after_seconds": seconds},
        )


def record_failed_attempt(scope: str, key: str) -> int:
    """
    Count one failure and lock the key once the limit is reached.

    Returns the failure count in the current window.
    """
    now = utcnow()

    # Start a fresh window if the old one ran out
    _row_query(scope, key).filter(LoginAttempt.window_expires_at <= now).update(
        {
            LoginAttempt.count: 0,
            LoginAttempt.window_expires_at: now + LOCKOUT_WINDOW,
            LoginAttempt.locked_until: None,
        },
        synchronize_session=False,
    )

    updated = _row_query(scope, key).update(
        {LoginAttempt.count: LoginAttempt.count + 1},
        synchronize_session=False,
    )
    if not updated:
        db.session.add(LoginAttempt(scope=scope, key=key, count=1, window_expires_at=now + LOCKOUT_WINDOW))
        try:
            db.session.commit()
        except IntegrityError:
            # Another request inserted the row first
            db.session.rollback()
            _row_query(scope, key).update(
                {LoginAttempt.count: LoginAttempt.count + 1},
                synchronize_session=False,
            )

    _row_query(scope, key).filter(
        LoginAttempt.count >= MAX_FAILED_ATTEMPTS,
        db.or_(LoginAttempt.locked_until.is_(None), LoginAttempt.locked_until <= now),
    ).update({LoginAttempt.locked_until: now + LOCKOUT_DURATION}, synchronize_session=False)
    db.session.commit()

    db.session.expire_all()
    row = _row_query(scope, key).first()
    count = row.count if row is not None else 0
    if count >= MAX_FAILED_ATTEMPTS:
        logger.warning("Login throttle engaged for %s key %s after %s failures", scope, key, count)
    return count


def clear_failed_attempts(scope: str, key: str) -> None:
    _row_query(scope, key).delete(synchronize_session=False)
    db.session.commit()


def cleanup_expired_attempts() -> int:
    now = utcnow()
    deleted = db.session.query(LoginAttempt).filter(
        LoginAttempt.window_expires_at <= now,
        db.or_(LoginAttempt.locked_until.is_(None), LoginAttempt.locked_until <= now),
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def get_lockout_status(scope: str, key: str) -> dict:
    row = _row_query(scope, key).first()
    locked, seconds = is_locked(scope, key)
    return {
        "locked": locked,
        "failed_attempts": row.count if row is not None else 0,
        "max_attempts": MAX_FAILED_ATTEMPTS,
        "seconds_until_unlock": seconds,
        "lockout_window_minutes": int(LOCKOUT_WINDOW.total_seconds() / 60),
        "lockout_duration_minutes": int(LOCKOUT_DURATION.total_seconds() / 60),
    }
