# Overview: Service-layer orchestration for starting a payment; order -> transaction -> gateway checkout.

from __future__ import annotations

import logging
from decimal import Decimal

from flask import current_app

from .. import gateways
from ..errors import AuthorizationError, ConflictError, ValidationError
from ..models.auth import ROLE_ADMIN
from ..models.orders import ORDER_PENDING
from ..models.payments import PAYMENT_FAILED, PAYMENT_PAID
from ..schemas import money_str
from ..time_utils import to_utc_z
from . import order_service, transaction_service

logger = logging.getLogger(__name__)


def _adapter(gateway: str):
    config = current_app.config
    return gateways.get_adapter(gateway, config, transport=config.get("GATEWAY_HTTP_TRANSPORT"))


def request_payment(order_id: int, actor_id: int, actor_role: str, gateway: str | None = None) -> dict:
    """
    Open a checkout session for a pending order.

    The transaction row is created (or reused) first; the gateway call
    happens outside any DB transaction. A gateway failure raises
    UpstreamError and leaves the pending transaction in place, so the
    client can simply resubmit.

    Raises:
        AuthorizationError: not the owning retailer or an admin
        ConflictError: the order's transaction is already settled
        ValidationError: order not pending / unknown gateway
        UpstreamError: the gateway call failed or timed out
    """
    gateway = (gateway or current_app.config.get("DEFAULT_PAYMENT_GATEWAY") or "midtrans").strip().lower()
    adapter = _adapter(gateway)

    order = order_service.get_order(order_id)
    if actor_role != ROLE_ADMIN and order.retailer_id != actor_id:
        raise AuthorizationError("You can only pay for your own orders")

    existing = transaction_service.get_by_order(order_id)
    if existing is not None and existing.payment_status == PAYMENT_PAID:
        raise ConflictError("Order has already been paid", details={"transaction_id": existing.id})
    if existing is not None and existing.payment_status == PAYMENT_FAILED:
        raise ConflictError("Payment for this order has already failed", details={"transaction_id": existing.id})
    if order.status != ORDER_PENDING:
        raise ValidationError("Only pending orders can be paid", details={"status": order.status})

    retailer = order.retailer
    txn = transaction_service.get_or_create(order_id, order.total_amount, gateway)
    txn_id = txn.id
    amount = Decimal(txn.amount)

    session = adapter.create_payment(gateways.PaymentRequest(
        transaction_id=str(txn_id),
        order_id=order_id,
        amount=amount,
        description=f"Payment for Order {order_id}",
        customer_name=retailer.full_name if retailer else None,
        customer_email=retailer.email if retailer else None,
        customer_phone=retailer.phone if retailer else None,
    ))

    stored = transaction_service.record_gateway_session(
        txn_id,
        gateway=adapter.name,
        payment_url=session.payment_url,
        token=session.token,
        gateway_transaction_id=session.gateway_transaction_id,
    )
    if not stored:
        # Settled by a webhook while we were talking to the gateway
        current = transaction_service.get_transaction(txn_id)
        raise ConflictError(
            f"Transaction is already {current.payment_status}",
            details={"transaction_id": txn_id},
        )

    logger.info("Payment session opened for order %s via %s (transaction %s)", order_id, adapter.name, txn_id)
    return {
        "transaction_id": txn_id,
        "order_id": order_id,
        "gateway": adapter.name,
        "amount": money_str(amount),
        "payment_url": session.payment_url,
        "token": session.token,
    }


def get_payment_status(transaction_id, actor_id: int, actor_role: str) -> dict:
    txn = transaction_service.get_transaction(transaction_id)
    order = txn.order
    if actor_role != ROLE_ADMIN and (order is None or order.retailer_id != actor_id):
        raise AuthorizationError("You can only view your own payment status")
    return {
        "transaction_id": txn.id,
        "order_id": txn.order_id,
        "amount": money_str(txn.amount),
        "payment_status": txn.payment_status,
        "payment_gateway": txn.payment_gateway,
        "order_status": order.status if order is not None else None,
        "paid_at": to_utc_z(txn.paid_at),
        "created_at": to_utc_z(txn.created_at),
    }
