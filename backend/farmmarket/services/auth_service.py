# Overview: Service-layer operations for auth; accounts, passwords and login flows.

"""
Authentication Service

- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters with uppercase, lowercase, digit and special char
- Self-registration is limited to farmer and retailer; retailers must give
  a business name
- Session tokens are managed separately (see session_service.py)
- Failed logins are throttled (see login_throttle_service.py)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import bcrypt
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import AuthenticationError, ConflictError, ValidationError
from ..models import SessionToken, User
from ..models.auth import ROLE_ADMIN, ROLE_FARMER, ROLE_RETAILER
from ..time_utils import utcnow
from ..validation import validate_email, validate_phone
from . import login_throttle_service, notification_service, session_service
from .login_throttle_service import SCOPE_ADMIN_LOGIN, SCOPE_LOGIN

logger = logging.getLogger(__name__)

SELF_SERVICE_ROLES = (ROLE_FARMER, ROLE_RETAILER)
PROFILE_FIELDS = {"full_name", "phone", "address", "business_name", "avatar_url"}


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


@dataclass
class LoginResult:
    user: User
    token: str
    expires_at: object


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost factor 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


# =============================================================================
# REGISTRATION
# =============================================================================

def normalize_registration(data: dict, *, require_phone: bool = False) -> dict:
    """
    Validate a signup payload and return the cleaned fields.

    The returned dict carries password_hash instead of the password so it
    can be parked (e.g. alongside a pending OTP) without keeping plaintext.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    email = validate_email(data.get("email"))

    full_name = (data.get("full_name") or "").strip()
    if not 2 <= len(full_name) <= 100:
        raise ValidationError("Full name must be between 2 and 100 characters")

    role = data.get("role")
    if role not in SELF_SERVICE_ROLES:
        raise ValidationError("Role must be either farmer or retailer")

    phone = data.get("phone")
    if phone or require_phone:
        phone = validate_phone(phone)
    else:
        phone = None

    business_name = (data.get("business_name") or "").strip() or None
    if role == ROLE_RETAILER and not business_name:
        raise ValidationError("Business name is required for retailers")
    if business_name and not 2 <= len(business_name) <= 255:
        raise ValidationError("Business name must be between 2 and 255 characters")

    address = (data.get("address") or "").strip() or None
    if address and len(address) > 500:
        raise ValidationError("Address must not exceed 500 characters")

    return {
        "email": email,
        "password_hash": hash_password(data.get("password")),
        "full_name": full_name,
        "role": role,
        "phone": phone,
        "business_name": business_name,
        "address": address,
    }


def ensure_identity_available(email: str, phone: str | None) -> None:
    if db.session.query(User.id).filter(User.email == email).first() is not None:
        raise ConflictError("User with this email already exists")
    if phone and db.session.query(User.id).filter(User.phone == phone).first() is not None:
        raise ConflictError("User with this phone number already exists")


def create_user_from_registration(fields: dict, *, is_verified: bool = False) -> User:
    """Insert a user from normalize_registration() output."""
    ensure_identity_available(fields["email"], fields.get("phone"))

    user = User(
        email=fields["email"],
        password_hash=fields["password_hash"],
        full_name=fields["full_name"],
        role=fields["role"],
        phone=fields.get("phone"),
        business_name=fields.get("business_name"),
        address=fields.get("address"),
        is_verified=is_verified,
        is_active=True,
    )
    db.session.add(user)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("User with this email or phone number already exists")

    notification_service.notify(
        user.id,
        "Welcome to the marketplace",
        f"Hi {user.full_name}, your {user.role} account is ready.",
        type="welcome",
    )
    db.session.commit()
    logger.info("User %s registered as %s", user.id, user.role)
    return user


def register_user(data: dict) -> User:
    return create_user_from_registration(normalize_registration(data))


def create_admin(email: str, password: str, full_name: str) -> User:
    email = validate_email(email)
    ensure_identity_available(email, None)
    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=full_name.strip() or "Administrator",
        role=ROLE_ADMIN,
        is_verified=True,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    logger.info("Admin user %s created", user.id)
    return user


# =============================================================================
# LOGIN
# =============================================================================

def start_session(user: User, *, user_agent: str | None = None, ip_address: str | None = None) -> LoginResult:
    user.last_login_at = utcnow()
    db.session.commit()
    session, token = session_service.create_session(user.id, user_agent=user_agent, ip_address=ip_address)
    return LoginResult(user=user, token=token, expires_at=session.expires_at)


def login(email: str, password: str, *, user_agent: str | None = None, ip_address: str | None = None) -> LoginResult:
    """
    Password login for any active user.

    Raises:
        AccountLockedError: too many recent failures for this email
        AuthenticationError: bad credentials or inactive account
    """
    key = (email or "").strip().lower()
    if not key or not password:
        raise ValidationError("Email and password are required")

    login_throttle_service.ensure_not_locked(SCOPE_LOGIN, key)

    user = db.session.query(User).filter(User.email == key).first()
    if user is None or not verify_password(password, user.password_hash):
        login_throttle_service.record_failed_attempt(SCOPE_LOGIN, key)
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")

    login_throttle_service.clear_failed_attempts(SCOPE_LOGIN, key)
    return start_session(user, user_agent=user_agent, ip_address=ip_address)


def admin_login(email: str, password: str, *, ip_address: str | None, user_agent: str | None = None) -> LoginResult:
    """
    Admin-only login, throttled per client IP.

    Every failure (unknown email, wrong password, non-admin) counts
    against the same IP and returns the same message.
    """
    key = ip_address or "unknown"
    login_throttle_service.ensure_not_locked(SCOPE_ADMIN_LOGIN, key)

    email = (email or "").strip().lower()
    user = db.session.query(User).filter(
        User.email == email,
        User.role == ROLE_ADMIN,
        User.is_active.is_(True),
    ).first()

    if user is None or not verify_password(password, user.password_hash):
        login_throttle_service.record_failed_attempt(SCOPE_ADMIN_LOGIN, key)
        logger.warning("Admin login failed for %s from %s", email, key)
        raise AuthenticationError("Invalid admin credentials")

    login_throttle_service.clear_failed_attempts(SCOPE_ADMIN_LOGIN, key)
    logger.info("Admin %s logged in from %s", user.id, key)
    return start_session(user, user_agent=user_agent, ip_address=ip_address)


# =============================================================================
# PROFILE
# =============================================================================

def update_profile(user: User, data: dict) -> User:
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = set(data) - PROFILE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    if "full_name" in data:
        full_name = (data["full_name"] or "").strip()
        if not 2 <= len(full_name) <= 100:
            raise ValidationError("Full name must be between 2 and 100 characters")
        user.full_name = full_name
    if "phone" in data:
        phone = validate_phone(data["phone"]) if data["phone"] else None
        if phone and db.session.query(User.id).filter(User.phone == phone, User.id != user.id).first():
            raise ConflictError("User with this phone number already exists")
        user.phone = phone
    if "business_name" in data:
        business_name = (data["business_name"] or "").strip() or None
        if user.role == ROLE_RETAILER and not business_name:
            raise ValidationError("Business name is required for retailers")
        user.business_name = business_name
    if "address" in data:
        user.address = (data["address"] or "").strip() or None
    if "avatar_url" in data:
        user.avatar_url = (data["avatar_url"] or "").strip() or None

    db.session.commit()
    return user


def change_password(user: User, current_password: str, new_password: str, *, keep_token: str | None = None) -> None:
    """Change a password and revoke every other session of the user."""
    if not verify_password(current_password, user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    if current_password == new_password:
        raise ValidationError("New password must be different from the current password")

    user.password_hash = hash_password(new_password)
    keep_hash = session_service.hash_token(keep_token) if keep_token else None

    query = db.session.query(SessionToken).filter(
        SessionToken.user_id == user.id,
        SessionToken.is_revoked.is_(False),
    )
    if keep_hash:
        query = query.filter(SessionToken.token_hash != keep_hash)
    query.update(
        {SessionToken.is_revoked: True, SessionToken.revoked_at: utcnow()},
        synchronize_session=False,
    )
    db.session.commit()
    logger.info("User %s changed password", user.id)
