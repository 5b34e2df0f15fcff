# Overview: Payment gateway package.
# The adapter for a request is chosen once, here, and used through the GatewayAdapter contract.

from __future__ import annotations

from typing import Any, Mapping, Optional

from ..errors import ValidationError
from .base import CanonicalPaymentEvent, GatewayAdapter, PaymentRequest, PaymentSession
from .midtrans import MidtransAdapter
from .stripe import StripeAdapter
from .xendit import XenditAdapter

ADAPTERS: dict[str, type[GatewayAdapter]] = {
    MidtransAdapter.name: MidtransAdapter,
    XenditAdapter.name: XenditAdapter,
    StripeAdapter.name: StripeAdapter,
}


def get_adapter(name: str, config: Mapping[str, Any], *, transport=None) -> GatewayAdapter:
    adapter_cls = ADAPTERS.get((name or "").strip().lower())
    if adapter_cls is None:
        raise ValidationError(
            f"Unsupported payment gateway '{name}'. Must be one of: {', '.join(ADAPTERS)}"
        )
    return adapter_cls(config, transport=transport)


def detect_gateway(headers: Mapping[str, str], payload: Optional[dict] = None) -> Optional[str]:
    """Guess the sender of a webhook from its signature header (or Midtrans' signature_key field)."""
    if headers.get(StripeAdapter.signature_header):
        return StripeAdapter.name
    if headers.get(XenditAdapter.signature_header):
        return XenditAdapter.name
    if headers.get(MidtransAdapter.signature_header):
        return MidtransAdapter.name
    if payload is not None and "signature_key" in payload:
        return MidtransAdapter.name
    return None


__all__ = [
    "ADAPTERS",
    "CanonicalPaymentEvent",
    "GatewayAdapter",
    "MidtransAdapter",
    "PaymentRequest",
    "PaymentSession",
    "StripeAdapter",
    "XenditAdapter",
    "detect_gateway",
    "get_adapter",
]
