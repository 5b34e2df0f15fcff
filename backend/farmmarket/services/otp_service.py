# Overview: Service-layer operations for WhatsApp one-time codes; signup and passwordless login.

"""
OTP Verification Service

- 6-digit codes from `secrets`, stored only as a SHA-256 hash
- Codes expire after OTP_TTL (5 minutes)
- MAX_ATTEMPTS wrong guesses burn the code; a new one must be requested
- RESEND_COOLDOWN between codes for the same phone
- A code can be used once: the verified flag flips in a guarded UPDATE

Registration parks the validated signup payload (password already hashed)
on the OTP row; the account is only created when the code is verified.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Mapping, Optional

import httpx

from ..extensions import db
from ..errors import AuthenticationError, NotFoundError, UpstreamError, ValidationError
from ..models import OtpVerification, User
from ..time_utils import utcnow
from ..validation import validate_phone
from . import auth_service
from .concurrency import conditional_update

logger = logging.getLogger(__name__)

PURPOSE_REGISTER = "register"
PURPOSE_LOGIN = "login"

OTP_TTL = timedelta(minutes=5)
RESEND_COOLDOWN = timedelta(seconds=60)
MAX_ATTEMPTS = 3


# =============================================================================
# DELIVERY
# =============================================================================

class OtpSender(ABC):
    @abstractmethod
    def send(self, phone: str, code: str, purpose: str) -> None:
        ...


def build_message(code: str, purpose: str) -> str:
    if purpose == PURPOSE_LOGIN:
        return f"Your login code is {code}. It is valid for 5 minutes. Do not share this code with anyone."
    return f"Your verification code is {code}. It is valid for 5 minutes. Do not share this code with anyone."


class LoggingOtpSender(OtpSender):
    """Development sender: writes the code to the application log."""

    def send(self, phone: str, code: str, purpose: str) -> None:
        logger.info("OTP for %s (%s): %s", phone, purpose, code)


class WhatsAppCloudSender(OtpSender):
    """Sends codes as WhatsApp text messages through an HTTP messaging API."""

    def __init__(self, api_url: str, api_token: str, *, timeout: float = 10.0, transport=None):
        self.api_url = api_url
        self.api_token = api_token
        self.timeout = timeout
        self._transport = transport

    @staticmethod
    def format_phone(phone: str) -> str:
        digits = "".join(ch for ch in phone if ch.isdigit())
        if digits.startswith("0"):
            # Local Indonesian numbers
            digits = "62" + digits[1:]
        return digits

    def send(self, phone: str, code: str, purpose: str) -> None:
        payload = {
            "messaging_product": "whatsapp",
            "to": self.format_phone(phone),
            "type": "text",
            "text": {"body": build_message(code, purpose)},
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_token}"},
                )
        except httpx.HTTPError as exc:
            logger.warning("WhatsApp OTP delivery to %s failed: %s", phone, exc)
            raise UpstreamError("Failed to send OTP") from exc
        if response.is_error:
            logger.warning("WhatsApp OTP delivery to %s rejected: HTTP %s", phone, response.status_code)
            raise UpstreamError("Failed to send OTP", details={"status_code": response.status_code})


def get_sender(config: Mapping[str, Any]) -> OtpSender:
    api_url = config.get("WHATSAPP_API_URL")
    if not api_url:
        return LoggingOtpSender()
    return WhatsAppCloudSender(
        api_url,
        config.get("WHATSAPP_API_TOKEN") or "",
        timeout=float(config.get("GATEWAY_TIMEOUT_SECONDS", 10)),
        transport=config.get("WHATSAPP_HTTP_TRANSPORT"),
    )


# =============================================================================
# CODES
# =============================================================================

def generate_code() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def _latest(phone: str, purpose: str | None = None) -> Optional[OtpVerification]:
    query = db.session.query(OtpVerification).filter(
        OtpVerification.phone == phone,
        OtpVerification.is_verified.is_(False),
    )
    if purpose:
        query = query.filter(OtpVerification.purpose == purpose)
    return query.order_by(OtpVerification.created_at.desc(), OtpVerification.id.desc()).first()


def _enforce_cooldown(record: Optional[OtpVerification]) -> None:
    if record is None:
        return
    waited = utcnow() - record.created_at
    if waited < RESEND_COOLDOWN:
        seconds = int((RESEND_COOLDOWN - waited).total_seconds()) + 1
        raise ValidationError(
            f"Please wait {seconds} seconds before requesting a new OTP",
            details={"retry_after_seconds": seconds},
        )


def _issue(phone: str, purpose: str, user_data: dict, sender: OtpSender) -> dict:
    code = generate_code()
    now = utcnow()
    db.session.add(OtpVerification(
        phone=phone,
        code_hash=hash_code(code),
        purpose=purpose,
        user_data=user_data,
        attempts=0,
        is_verified=False,
        expires_at=now + OTP_TTL,
        created_at=now,
    ))
    db.session.commit()

    sender.send(phone, code, purpose)
    return {"phone": phone, "expires_in": int(OTP_TTL.total_seconds())}


def _consume(phone: str, code: str, purpose: str) -> OtpVerification:
    """
    Check a code against the newest pending OTP for phone+purpose.

    Wrong guesses are counted with a single UPDATE so parallel guesses
    cannot exceed MAX_ATTEMPTS.
    """
    record = _latest(phone, purpose)
    if record is None:
        raise NotFoundError("No pending verification found for this phone number")

    if record.expires_at <= utcnow():
        raise ValidationError("OTP has expired. Please request a new OTP.")
    if record.attempts >= MAX_ATTEMPTS:
        raise ValidationError("Too many failed attempts. Please request a new OTP.")

    record_id = record.id
    if not hmac.compare_digest(record.code_hash, hash_code((code or "").strip())):
        conditional_update(
            db.session.query(OtpVerification).filter(OtpVerification.id == record_id),
            {OtpVerification.attempts: OtpVerification.attempts + 1},
        )
        db.session.commit()
        remaining = max(0, MAX_ATTEMPTS - db.session.get(OtpVerification, record_id).attempts)
        if remaining == 0:
            raise ValidationError("Invalid OTP. Maximum attempts exceeded. Please request a new OTP.")
        raise ValidationError(f"Invalid OTP. {remaining} attempt(s) remaining.")

    used = conditional_update(
        db.session.query(OtpVerification).filter(
            OtpVerification.id == record_id,
            OtpVerification.is_verified.is_(False),
        ),
        {OtpVerification.is_verified: True},
    )
    if not used:
        raise ValidationError("OTP has already been used")
    return db.session.get(OtpVerification, record_id)


# =============================================================================
# FLOWS
# =============================================================================

def start_registration(data: dict, sender: OtpSender) -> dict:
    """Validate a signup, park it with a fresh code and send the code."""
    fields = auth_service.normalize_registration(data, require_phone=True)
    if not fields.get("address") or len(fields["address"]) < 5:
        raise ValidationError("Address is required and must be between 5 and 500 characters")
    auth_service.ensure_identity_available(fields["email"], fields["phone"])

    _enforce_cooldown(_latest(fields["phone"], PURPOSE_REGISTER))
    return _issue(fields["phone"], PURPOSE_REGISTER, fields, sender)


def verify_registration(phone: str, code: str) -> User:
    phone = validate_phone(phone)
    record = _consume(phone, code, PURPOSE_REGISTER)
    fields = dict(record.user_data or {})
    if not fields:
        raise ValidationError("Registration data is missing; please register again")
    # The verified flag is committed together with the new account
    return auth_service.create_user_from_registration(fields, is_verified=True)


def resend(phone: str, sender: OtpSender) -> dict:
    phone = validate_phone(phone)
    record = _latest(phone)
    if record is None:
        raise NotFoundError("No pending verification found for this phone number")
    _enforce_cooldown(record)
    return _issue(phone, record.purpose, dict(record.user_data or {}), sender)


def request_login(phone: str, sender: OtpSender) -> dict:
    phone = validate_phone(phone)
    user = db.session.query(User).filter(User.phone == phone, User.is_active.is_(True)).first()
    if user is None:
        raise NotFoundError("No active user found with this phone number")
    _enforce_cooldown(_latest(phone, PURPOSE_LOGIN))
    return _issue(phone, PURPOSE_LOGIN, {}, sender)


def verify_login(phone: str, code: str) -> User:
    phone = validate_phone(phone)
    _consume(phone, code, PURPOSE_LOGIN)
    user = db.session.query(User).filter(User.phone == phone).first()
    if user is None or not user.is_active:
        db.session.rollback()
        raise AuthenticationError("User not found or inactive")
    db.session.commit()
    return user


def cleanup_expired() -> int:
    deleted = db.session.query(OtpVerification).filter(
        OtpVerification.expires_at < utcnow(),
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
