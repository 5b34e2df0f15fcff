from __future__ import annotations

from ..extensions import db

ROLE_FARMER = "farmer"
ROLE_RETAILER = "retailer"
ROLE_ADMIN = "admin"
VALID_ROLES = (ROLE_FARMER, ROLE_RETAILER, ROLE_ADMIN)


class User(db.Model):
    """
    Marketplace account. One role per user; is_active gates login and
    is_verified is set by an admin (or by completing WhatsApp OTP signup).
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("role IN ('farmer', 'retailer', 'admin')", name="ck_users_role"),
        db.Index("ix_users_role_active", "role", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(20), nullable=True, unique=True)
    role = db.Column(db.String(20), nullable=False)
    address = db.Column(db.Text, nullable=True)
    business_name = db.Column(db.String(255), nullable=True)
    avatar_url = db.Column(db.Text, nullable=True)

    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"


class SessionToken(db.Model):
    """
    Bearer session. Only the SHA-256 of the token is stored; the plaintext
    is handed to the client once at login.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_revoked", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship("User")


class OtpVerification(db.Model):
    """One-time code sent over WhatsApp for signup or passwordless login."""
    __tablename__ = "otp_verifications"
    __table_args__ = (
        db.CheckConstraint("purpose IN ('register', 'login')", name="ck_otp_purpose"),
        db.Index("ix_otp_phone_purpose_created", "phone", "purpose", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    phone = db.Column(db.String(20), nullable=False)
    code_hash = db.Column(db.String(64), nullable=False)
    purpose = db.Column(db.String(20), nullable=False, default="register")

    # Pending registration payload (password already hashed); empty for login
    user_data = db.Column(db.JSON, nullable=False, default=dict)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)


class LoginAttempt(db.Model):
    """
    Failed-login counter keyed by (scope, key) with a window expiry.

    Rows live in the shared database so every server process sees the same
    count; increments are single UPDATE statements.
    """
    __tablename__ = "login_attempts"
    __table_args__ = (
        db.UniqueConstraint("scope", "key", name="uq_login_attempts_scope_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(32), nullable=False)
    key = db.Column(db.String(255), nullable=False)
    count = db.Column(db.Integer, nullable=False, default=0)
    window_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    locked_until = db.Column(db.DateTime(timezone=True), nullable=True)
