# Overview: Midtrans Snap adapter; SHA-512 notification signatures.

from __future__ import annotations

import hashlib
import hmac
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional

from .base import (
    CanonicalPaymentEvent,
    GatewayAdapter,
    PaymentRequest,
    PaymentSession,
    load_json,
    to_decimal,
)

SUCCESS_STATUSES = frozenset({"capture", "settlement"})
FAILURE_STATUSES = frozenset({"deny", "cancel", "expire", "failure"})

SANDBOX_SNAP_URL = "https://app.sandbox.midtrans.com/snap/v1/transactions"
PRODUCTION_SNAP_URL = "https://app.midtrans.com/snap/v1/transactions"


class MidtransAdapter(GatewayAdapter):
    name = "midtrans"
    signature_header = "X-Signature"

    @property
    def snap_url(self) -> str:
        return PRODUCTION_SNAP_URL if self.config.get("MIDTRANS_IS_PRODUCTION") else SANDBOX_SNAP_URL

    def create_payment(self, request: PaymentRequest) -> PaymentSession:
        server_key = self._require_secret("MIDTRANS_SERVER_KEY")
        payload = {
            "transaction_details": {
                "order_id": request.transaction_id,
                # IDR has no minor unit
                "gross_amount": int(request.amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
            },
            "credit_card": {"secure": True},
            "customer_details": {
                "first_name": request.customer_name or "Customer",
                "email": request.customer_email,
                "phone": request.customer_phone,
            },
            "callbacks": {"finish": self.success_url, "error": self.failure_url},
        }
        body = self._post(
            self.snap_url,
            json=payload,
            auth=(server_key, ""),
            headers={"Accept": "application/json"},
        )
        return PaymentSession(
            payment_url=body.get("redirect_url"),
            token=body.get("token"),
            gateway_transaction_id=body.get("transaction_id"),
        )

    def expected_signature(self, payload: dict) -> str:
        server_key = self.config.get("MIDTRANS_SERVER_KEY") or ""
        raw = f"{payload.get('order_id', '')}{payload.get('status_code', '')}{payload.get('gross_amount', '')}{server_key}"
        return hashlib.sha512(raw.encode("utf-8")).hexdigest()

    def verify_signature(self, raw_payload: bytes, signature_header: Optional[str]) -> bool:
        if not signature_header or not self.config.get("MIDTRANS_SERVER_KEY"):
            return False
        payload = load_json(raw_payload)
        if payload is None:
            return False
        return hmac.compare_digest(self.expected_signature(payload), signature_header.strip().lower())

    def signature_from_headers(self, headers: Mapping[str, str], payload: Optional[dict] = None) -> Optional[str]:
        # Midtrans puts the signature in the notification body
        header = headers.get(self.signature_header)
        if header:
            return header
        if payload is not None:
            return payload.get("signature_key")
        return None

    def parse_webhook(self, payload: dict) -> CanonicalPaymentEvent:
        status = payload.get("transaction_status")
        if status == "capture" and payload.get("fraud_status") == "challenge":
            # Held for manual review; Midtrans sends a follow-up notification
            status = "challenge"
        order_id = payload.get("order_id")
        gateway_id = payload.get("transaction_id")
        return CanonicalPaymentEvent(
            transaction_id=str(order_id) if order_id is not None else None,
            gateway_transaction_id=str(gateway_id) if gateway_id is not None else None,
            amount=to_decimal(payload.get("gross_amount")),
            status=status,
            is_success=status in SUCCESS_STATUSES,
            is_failed=status in FAILURE_STATUSES,
        )
