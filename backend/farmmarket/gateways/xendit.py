# Overview: Xendit invoice adapter; SHA-256 callback-token signatures.

from __future__ import annotations

import hashlib
import hmac
from typing import Optional

from .base import CanonicalPaymentEvent, GatewayAdapter, PaymentRequest, PaymentSession, to_decimal

INVOICES_URL = "https://api.xendit.co/v2/invoices"

SUCCESS_STATUSES = frozenset({"PAID", "SETTLED"})
FAILURE_STATUSES = frozenset({"EXPIRED", "FAILED"})


class XenditAdapter(GatewayAdapter):
    name = "xendit"
    signature_header = "X-Callback-Token"

    def create_payment(self, request: PaymentRequest) -> PaymentSession:
        secret_key = self._require_secret("XENDIT_SECRET_KEY")
        payload = {
            "external_id": request.transaction_id,
            "amount": float(request.amount),
            "description": request.description,
            "success_redirect_url": self.success_url,
            "failure_redirect_url": self.failure_url,
        }
        if request.customer_email:
            payload["payer_email"] = request.customer_email
        body = self._post(INVOICES_URL, json=payload, auth=(secret_key, ""))
        return PaymentSession(
            payment_url=body.get("invoice_url"),
            token=body.get("id"),
            gateway_transaction_id=body.get("id"),
        )

    def verify_signature(self, raw_payload: bytes, signature_header: Optional[str]) -> bool:
        token = self.config.get("XENDIT_WEBHOOK_TOKEN") or ""
        if not signature_header or not token:
            return False
        expected = hashlib.sha256(raw_payload + token.encode("utf-8")).hexdigest()
        return hmac.compare_digest(expected, signature_header.strip().lower())

    def parse_webhook(self, payload: dict) -> CanonicalPaymentEvent:
        status = str(payload.get("status") or "").upper() or None
        external_id = payload.get("external_id")
        gateway_id = payload.get("id")
        return CanonicalPaymentEvent(
            transaction_id=str(external_id) if external_id is not None else None,
            gateway_transaction_id=str(gateway_id) if gateway_id is not None else None,
            amount=to_decimal(payload.get("paid_amount", payload.get("amount"))),
            status=status,
            is_success=status in SUCCESS_STATUSES,
            is_failed=status in FAILURE_STATUSES,
        )
