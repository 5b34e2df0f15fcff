# Overview: Stripe Checkout adapter built on the stripe SDK; sessions and signed webhook events.

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import stripe

from ..errors import UpstreamError
from .base import CanonicalPaymentEvent, GatewayAdapter, PaymentRequest, PaymentSession

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300

SUCCESS_EVENTS = frozenset({"checkout.session.completed", "checkout.session.async_payment_succeeded"})
FAILURE_EVENTS = frozenset({"checkout.session.expired", "checkout.session.async_payment_failed"})


class StripeAdapter(GatewayAdapter):
    """
    Stripe Checkout.

    Amounts go to Stripe in minor units. The Checkout Session id doubles as
    the gateway reference and the client token; our transaction id travels
    as client_reference_id and in metadata so webhooks can find it again.
    """

    name = "stripe"
    signature_header = "Stripe-Signature"

    def create_payment(self, request: PaymentRequest) -> PaymentSession:
        secret_key = self._require_secret("STRIPE_SECRET_KEY")
        unit_amount = int((request.amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [{
                "price_data": {
                    "currency": "usd",
                    "product_data": {"name": request.description},
                    "unit_amount": unit_amount,
                },
                "quantity": 1,
            }],
            "success_url": f"{self.success_url}?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": self.failure_url,
            "client_reference_id": request.transaction_id,
            "metadata": {
                "transaction_id": request.transaction_id,
                "order_id": str(request.order_id),
            },
        }
        if request.customer_email:
            params["customer_email"] = request.customer_email

        try:
            session = stripe.checkout.Session.create(
                api_key=secret_key,
                idempotency_key=f"checkout_{request.transaction_id}_{unit_amount}",
                **params,
            )
        except stripe.APIConnectionError as exc:
            logger.warning("stripe request failed: %s", exc)
            raise UpstreamError(f"Payment gateway '{self.name}' is unreachable") from exc
        except stripe.StripeError as exc:
            logger.warning("stripe rejected payment request: HTTP %s", exc.http_status)
            raise UpstreamError(
                f"Payment gateway '{self.name}' rejected the request",
                details={"status_code": exc.http_status, "gateway_error": exc.user_message or str(exc)},
            ) from exc

        return PaymentSession(
            payment_url=session.url,
            token=session.id,
            gateway_transaction_id=session.id,
        )

    def verify_signature(self, raw_payload: bytes, signature_header: Optional[str]) -> bool:
        secret = self.config.get("STRIPE_WEBHOOK_SECRET") or ""
        if not signature_header or not secret:
            return False
        try:
            payload = raw_payload.decode("utf-8")
        except UnicodeDecodeError:
            return False

        tolerance = int(self.config.get("STRIPE_WEBHOOK_TOLERANCE_SECONDS", DEFAULT_TOLERANCE_SECONDS))
        # Signature only; webhook_service parses the body itself
        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance=tolerance)
        except stripe.SignatureVerificationError as exc:
            logger.debug("Stripe signature rejected: %s", exc)
            return False
        return True

    def parse_webhook(self, payload: dict) -> CanonicalPaymentEvent:
        event_type = payload.get("type")
        obj = (payload.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}
        transaction_id = metadata.get("transaction_id") or obj.get("client_reference_id")

        amount_total = obj.get("amount_total")
        amount = None
        if isinstance(amount_total, int) and not isinstance(amount_total, bool):
            amount = (Decimal(amount_total) / 100).quantize(Decimal("0.01"))

        is_success = event_type in SUCCESS_EVENTS
        # A completed session can still be waiting on an async method
        if event_type == "checkout.session.completed" and obj.get("payment_status") == "unpaid":
            is_success = False

        return CanonicalPaymentEvent(
            transaction_id=str(transaction_id) if transaction_id is not None else None,
            gateway_transaction_id=obj.get("id"),
            amount=amount,
            status=event_type,
            is_success=is_success,
            is_failed=event_type in FAILURE_EVENTS,
        )
