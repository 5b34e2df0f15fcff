# Overview: Service-layer handling for inbound payment webhooks; verify, normalize, settle.

"""
Webhook Reconciliation Engine

Checks run in a fixed order and the first failure decides the response the
provider sees:

    1. signature      -> SignatureInvalid (401)
    2. JSON body      -> ValidationError (400)
    3. transaction id -> ValidationError (400)
    4. transaction    -> TransactionNotFound (404)
    5. settle         -> mark_paid / mark_failed / acknowledge

Providers redeliver on any non-2xx, so step 5 must be replay-safe. It is,
because the Transaction Manager only moves pending rows: a second delivery
of the same event finds the row already final and changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional

from flask import current_app

from .. import gateways
from ..errors import SignatureInvalid, ValidationError
from ..gateways.base import load_json
from . import transaction_service

logger = logging.getLogger(__name__)

ACTION_PAID = "paid"
ACTION_FAILED = "failed"
ACTION_DUPLICATE = "duplicate"
ACTION_IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookResult:
    gateway: str
    transaction_id: int
    action: str
    event_status: Optional[str]
    payment_status: str
    order_status: Optional[str] = None
    conflict: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def handle(
    gateway: str,
    raw_payload: bytes,
    signature_header: Optional[str],
    *,
    config: Optional[Mapping[str, Any]] = None,
) -> WebhookResult:
    cfg = config if config is not None else current_app.config
    adapter = gateways.get_adapter(gateway, cfg)

    if not adapter.verify_signature(raw_payload, signature_header):
        logger.warning("Rejected %s webhook: invalid signature", adapter.name)
        raise SignatureInvalid("Invalid webhook signature")

    payload = load_json(raw_payload)
    if payload is None:
        raise ValidationError("Webhook payload must be a JSON object")

    event = adapter.parse_webhook(payload)
    if not event.transaction_id:
        raise ValidationError("Transaction ID not found in webhook payload")

    txn = transaction_service.get_transaction(event.transaction_id)
    txn_id = txn.id

    if event.amount is not None and event.amount != Decimal(txn.amount):
        logger.warning(
            "Amount mismatch on %s webhook for transaction %s: event %s, expected %s",
            adapter.name, txn_id, event.amount, txn.amount,
        )

    if event.is_success:
        outcome = transaction_service.mark_paid(txn_id, event.gateway_transaction_id)
        action = ACTION_PAID if outcome.changed else ACTION_DUPLICATE
    elif event.is_failed:
        outcome = transaction_service.mark_failed(txn_id, cancel_order=True)
        action = ACTION_FAILED if outcome.changed else ACTION_DUPLICATE
    else:
        logger.info("Acknowledged %s webhook for transaction %s with status %s", adapter.name, txn_id, event.status)
        txn = transaction_service.get_transaction(txn_id)
        return WebhookResult(
            gateway=adapter.name,
            transaction_id=txn_id,
            action=ACTION_IGNORED,
            event_status=event.status,
            payment_status=txn.payment_status,
            order_status=txn.order.status if txn.order is not None else None,
        )

    logger.info(
        "Processed %s webhook for transaction %s: %s (payment %s, order %s)",
        adapter.name, txn_id, action, outcome.payment_status, outcome.order_status,
    )
    return WebhookResult(
        gateway=adapter.name,
        transaction_id=txn_id,
        action=action,
        event_status=event.status,
        payment_status=outcome.payment_status,
        order_status=outcome.order_status,
        conflict=outcome.conflict,
    )


def handle_request(
    gateway: Optional[str],
    raw_payload: bytes,
    headers: Mapping[str, str],
    *,
    config: Optional[Mapping[str, Any]] = None,
) -> WebhookResult:
    """
    Entry point for the HTTP layer.

    Without an explicit gateway the sender is detected from its signature
    header. The signature itself is then pulled from wherever that provider
    puts it.
    """
    cfg = config if config is not None else current_app.config
    payload = load_json(raw_payload)

    if not gateway:
        gateway = gateways.detect_gateway(headers, payload)
        if gateway is None:
            raise ValidationError("Missing signature header")

    adapter = gateways.get_adapter(gateway, cfg)
    signature = adapter.signature_from_headers(headers, payload)
    return handle(adapter.name, raw_payload, signature, config=cfg)
