# Overview: Domain error taxonomy shared by services and routes.

"""
Every error raised by the service layer derives from MarketError and carries
the HTTP status it maps to at the route boundary, so handlers never have to
guess:

    ValidationError        400  bad input or broken business rule
    AuthenticationError    401  missing/invalid credentials or session
    SignatureInvalid       401  webhook signature check failed
    AuthorizationError     403  role or ownership check failed
    NotFoundError          404  entity missing
    ConflictError          409  state already settled / uniqueness clash
    InvalidTransition      409  illegal order or payment state change
    AccountLockedError     429  too many failed logins
    UpstreamError          502  payment gateway failed or timed out
    StoreUnavailableError  503  database still failing after retries
"""

from __future__ import annotations


class MarketError(Exception):
    """Base class for errors that map onto a typed HTTP response."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": type(self).__name__}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(MarketError):
    status_code = 400


class InsufficientStock(ValidationError):
    pass


class ProductUnavailable(ValidationError):
    pass


class AuthenticationError(MarketError):
    status_code = 401


class SignatureInvalid(MarketError):
    status_code = 401


class AuthorizationError(MarketError):
    status_code = 403


class NotFoundError(MarketError):
    status_code = 404


class TransactionNotFound(NotFoundError):
    pass


class ConflictError(MarketError):
    status_code = 409


class InvalidTransition(MarketError):
    status_code = 409


class AccountLockedError(MarketError):
    status_code = 429


class UpstreamError(MarketError):
    status_code = 502


class StoreUnavailableError(MarketError):
    status_code = 503
