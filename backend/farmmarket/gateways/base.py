# Overview: Gateway adapter contract; request/session/event shapes shared by every payment provider.

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

import httpx

from ..errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class PaymentRequest:
    transaction_id: str
    order_id: int
    amount: Decimal
    description: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None


@dataclass(frozen=True)
class PaymentSession:
    payment_url: str
    token: Optional[str]
    gateway_transaction_id: Optional[str]


@dataclass(frozen=True)
class CanonicalPaymentEvent:
    """
    Provider-neutral view of a webhook.

    At most one of is_success / is_failed is true. Both false means an
    intermediate event (pending, authorized, ...) that callers acknowledge
    without changing anything.
    """
    transaction_id: Optional[str]
    gateway_transaction_id: Optional[str]
    amount: Optional[Decimal]
    status: Optional[str]
    is_success: bool = False
    is_failed: bool = False


def to_decimal(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def load_json(raw_payload: bytes) -> Optional[dict]:
    try:
        payload = json.loads(raw_payload)
    except (TypeError, ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


class GatewayAdapter(ABC):
    """
    One payment provider.

    Subclasses build the provider's checkout request, verify its webhook
    signature and translate its status vocabulary. Providers without an SDK
    go through _post so every call carries the configured timeout; SDK-backed
    providers map the SDK's errors themselves. Either way every transport or
    provider failure surfaces as UpstreamError.
    """

    name: str = ""
    signature_header: str = ""

    def __init__(self, config: Mapping[str, Any], *, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.timeout = float(config.get("GATEWAY_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
        self.frontend_url = str(config.get("FRONTEND_URL", "")).rstrip("/")
        self._transport = transport

    # ------------------------------------------------------------------
    # Provider contract
    # ------------------------------------------------------------------

    @abstractmethod
    def create_payment(self, request: PaymentRequest) -> PaymentSession:
        ...

    @abstractmethod
    def verify_signature(self, raw_payload: bytes, signature_header: Optional[str]) -> bool:
        ...

    @abstractmethod
    def parse_webhook(self, payload: dict) -> CanonicalPaymentEvent:
        ...

    def signature_from_headers(self, headers: Mapping[str, str], payload: Optional[dict] = None) -> Optional[str]:
        return headers.get(self.signature_header)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @property
    def success_url(self) -> str:
        return f"{self.frontend_url}/payment/success"

    @property
    def failure_url(self) -> str:
        return f"{self.frontend_url}/payment/error"

    def _require_secret(self, key: str) -> str:
        value = self.config.get(key) or ""
        if not value:
            raise UpstreamError(f"Payment gateway '{self.name}' is not configured")
        return value

    def _post(self, url: str, **kwargs) -> dict:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s request timed out after %ss", self.name, self.timeout)
            raise UpstreamError(f"Payment gateway '{self.name}' timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("%s request failed: %s", self.name, exc)
            raise UpstreamError(f"Payment gateway '{self.name}' is unreachable") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error:
            logger.warning("%s rejected payment request: HTTP %s", self.name, response.status_code)
            raise UpstreamError(
                f"Payment gateway '{self.name}' rejected the request",
                details={"status_code": response.status_code, "gateway_error": self._error_message(body)},
            )
        if not isinstance(body, dict):
            raise UpstreamError(f"Payment gateway '{self.name}' returned an unreadable response")
        return body

    def _error_message(self, body) -> Optional[str]:
        if isinstance(body, dict):
            for key in ("error_messages", "message", "error"):
                value = body.get(key)
                if isinstance(value, list):
                    return ", ".join(str(v) for v in value)
                if isinstance(value, dict):
                    return value.get("message")
                if value:
                    return str(value)
        return None
