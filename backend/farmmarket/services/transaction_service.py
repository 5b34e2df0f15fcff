# Overview: Service-layer operations for payment transactions; one per order, final states are immutable.

"""
Transaction Manager

payment_status only ever moves pending -> paid or pending -> failed, and
both moves are a single UPDATE guarded by `payment_status = 'pending'`.
Whoever loses that race (duplicate webhook, admin override, concurrent
delivery) sees a zero row count and gets the current state back unchanged.

When a payment settles, the linked order is moved by the state machine in
the same DB transaction. If the order can no longer make that move (an admin
cancelled it first, say) the payment still stands: the mismatch is logged as
a reconciliation conflict, admins are notified, and the outcome carries it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InvalidTransition, TransactionNotFound, ValidationError
from ..models import Order, OrderItem, Product, Transaction
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_PENDING,
)
from ..models.payments import (
    PAYMENT_FAILED,
    PAYMENT_GATEWAYS,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_STATUSES,
)
from ..time_utils import utcnow
from . import notification_service, order_service
from .concurrency import conditional_update, run_with_retry

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
DEFAULT_COMMISSION_RATE = Decimal("0.05")
MAX_PAGE_SIZE = 50

# Order states that already reflect a settled payment
_ORDER_PAID_STATES = frozenset({ORDER_CONFIRMED, ORDER_DELIVERED, ORDER_COMPLETED})


@dataclass(frozen=True)
class PaymentOutcome:
    transaction_id: int
    payment_status: str
    changed: bool
    order_status: str | None = None
    order_transitioned: bool = False
    conflict: str | None = None


# =============================================================================
# READS
# =============================================================================

def parse_transaction_id(raw) -> int:
    """Gateway-facing ids are strings; anything non-numeric cannot match a row."""
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise TransactionNotFound("Transaction not found", details={"transaction_id": raw})
    if value <= 0:
        raise TransactionNotFound("Transaction not found", details={"transaction_id": raw})
    return value


def get_transaction(transaction_id) -> Transaction:
    txn = db.session.get(Transaction, parse_transaction_id(transaction_id))
    if txn is None:
        raise TransactionNotFound("Transaction not found", details={"transaction_id": transaction_id})
    return txn


def get_by_order(order_id: int) -> Transaction | None:
    return db.session.query(Transaction).filter_by(order_id=order_id).first()


def list_transactions(
    *,
    status: str | None = None,
    gateway: str | None = None,
    retailer_id: int | None = None,
    farmer_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 10,
    offset: int = 0,
) -> tuple[list[Transaction], int]:
    query = db.session.query(Transaction).join(Order, Order.id == Transaction.order_id)

    if status:
        if status not in PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status. Must be one of: {', '.join(PAYMENT_STATUSES)}")
        query = query.filter(Transaction.payment_status == status)
    if gateway:
        if gateway not in PAYMENT_GATEWAYS:
            raise ValidationError(f"Invalid payment gateway. Must be one of: {', '.join(PAYMENT_GATEWAYS)}")
        query = query.filter(Transaction.payment_gateway == gateway)
    if retailer_id is not None:
        query = query.filter(Order.retailer_id == retailer_id)
    if farmer_id is not None:
        farmer_orders = (
            select(OrderItem.order_id)
            .join(Product, Product.id == OrderItem.product_id)
            .where(Product.farmer_id == farmer_id)
        )
        query = query.filter(Transaction.order_id.in_(farmer_orders))
    if date_from is not None:
        query = query.filter(Transaction.created_at >= date_from)
    if date_to is not None:
        query = query.filter(Transaction.created_at <= date_to)

    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    offset = max(0, int(offset))

    total = query.count()
    rows = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total


def get_stats(date_from: datetime | None = None, date_to: datetime | None = None) -> dict:
    """Totals per payment status plus platform commission, over an optional date window."""
    query = db.session.query(
        Transaction.payment_status,
        db.func.count(Transaction.id),
        db.func.coalesce(db.func.sum(Transaction.amount), 0),
        db.func.coalesce(db.func.sum(Transaction.commission), 0),
    )
    if date_from is not None:
        query = query.filter(Transaction.created_at >= date_from)
    if date_to is not None:
        query = query.filter(Transaction.created_at <= date_to)

    stats = {
        "total_transactions": 0,
        "total_amount": Decimal("0"),
        "total_commission": Decimal("0"),
    }
    for status in PAYMENT_STATUSES:
        stats[f"{status}_transactions"] = 0
        stats[f"{status}_amount"] = Decimal("0")
    stats["paid_commission"] = Decimal("0")

    for status, count, amount, commission in query.group_by(Transaction.payment_status).all():
        amount = Decimal(amount)
        commission = Decimal(commission)
        stats["total_transactions"] += count
        stats["total_amount"] += amount
        stats["total_commission"] += commission
        stats[f"{status}_transactions"] = count
        stats[f"{status}_amount"] = amount
        if status == PAYMENT_PAID:
            stats["paid_commission"] = commission

    return stats


# =============================================================================
# CREATION
# =============================================================================

def _commission_rate() -> Decimal:
    return Decimal(str(current_app.config.get("PLATFORM_COMMISSION_RATE", DEFAULT_COMMISSION_RATE)))


def get_or_create(order_id: int, amount, gateway: str) -> Transaction:
    """
    Return the order's transaction, creating a pending one if none exists.

    Two callers racing here both try the INSERT; the unique order_id
    constraint lets exactly one through and the loser reads back the
    winner's row instead of failing.
    """
    existing = get_by_order(order_id)
    if existing is not None:
        return existing

    if gateway not in PAYMENT_GATEWAYS:
        raise ValidationError(f"Invalid payment gateway. Must be one of: {', '.join(PAYMENT_GATEWAYS)}")
    amount = Decimal(str(amount)).quantize(CENTS)
    if amount <= 0:
        raise ValidationError("Transaction amount must be positive")
    commission = (amount * _commission_rate()).quantize(CENTS, rounding=ROUND_HALF_UP)

    txn = Transaction(
        order_id=order_id,
        amount=amount,
        commission=commission,
        payment_status=PAYMENT_PENDING,
        payment_gateway=gateway,
    )
    db.session.add(txn)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        winner = get_by_order(order_id)
        if winner is None:
            raise
        logger.info("Transaction for order %s created concurrently; using %s", order_id, winner.id)
        return winner

    logger.info("Transaction %s created for order %s (%s via %s)", txn.id, order_id, amount, gateway)
    return txn


# =============================================================================
# SETTLEMENT
# =============================================================================

def _report_conflict(transaction_id: int, order_id: int, message: str) -> str:
    logger.error("Reconciliation conflict on transaction %s / order %s: %s", transaction_id, order_id, message)
    notification_service.notify_admins(
        "Payment reconciliation needed",
        f"Transaction #{transaction_id} / order #{order_id}: {message}",
        type="payment",
        related_type="transaction",
        related_id=transaction_id,
    )
    return message


def _outcome(transaction_id: int, *, changed: bool, **kwargs) -> PaymentOutcome:
    txn = db.session.get(Transaction, transaction_id)
    order = db.session.get(Order, txn.order_id)
    return PaymentOutcome(
        transaction_id=transaction_id,
        payment_status=txn.payment_status,
        changed=changed,
        order_status=order.status if order is not None else None,
        **kwargs,
    )


def mark_paid(transaction_id, gateway_transaction_id: str | None = None) -> PaymentOutcome:
    """
    Settle a pending transaction as paid and confirm its order.

    Already paid or failed: returns the current state with changed=False.
    """
    txn_id = get_transaction(transaction_id).id

    def _op():
        txn = db.session.get(Transaction, txn_id)
        order_id = txn.order_id
        now = utcnow()

        values = {Transaction.payment_status: PAYMENT_PAID, Transaction.paid_at: now}
        if gateway_transaction_id:
            values[Transaction.gateway_transaction_id] = str(gateway_transaction_id)

        swapped = conditional_update(
            db.session.query(Transaction).filter(
                Transaction.id == txn_id,
                Transaction.payment_status == PAYMENT_PENDING,
            ),
            values,
        )
        if not swapped:
            db.session.rollback()
            return _outcome(txn_id, changed=False)

        transitioned = False
        conflict = None
        order = db.session.get(Order, order_id)
        if order.status == ORDER_PENDING:
            try:
                order_service.apply_payment_transition(order_id, ORDER_CONFIRMED)
                transitioned = True
            except InvalidTransition as exc:
                conflict = _report_conflict(txn_id, order_id, f"payment settled but order not confirmed: {exc.message}")
        elif order.status not in _ORDER_PAID_STATES:
            conflict = _report_conflict(txn_id, order_id, f"payment settled but order is {order.status}")

        notification_service.notify(
            order.retailer_id,
            "Payment received",
            f"Payment for order #{order_id} was successful.",
            type="payment",
            related_type="order",
            related_id=order_id,
        )
        db.session.commit()
        return _outcome(txn_id, changed=True, order_transitioned=transitioned, conflict=conflict)

    outcome = run_with_retry(_op)
    if outcome.changed:
        logger.info("Transaction %s marked paid; order now %s", txn_id, outcome.order_status)
    else:
        logger.info("Transaction %s already %s; paid event ignored", txn_id, outcome.payment_status)
    return outcome


def mark_failed(transaction_id, cancel_order: bool = True) -> PaymentOutcome:
    """
    Settle a pending transaction as failed, optionally cancelling its order.

    Already paid or failed: returns the current state with changed=False.
    """
    txn_id = get_transaction(transaction_id).id

    def _op():
        txn = db.session.get(Transaction, txn_id)
        order_id = txn.order_id

        swapped = conditional_update(
            db.session.query(Transaction).filter(
                Transaction.id == txn_id,
                Transaction.payment_status == PAYMENT_PENDING,
            ),
            {Transaction.payment_status: PAYMENT_FAILED, Transaction.failed_at: utcnow()},
        )
        if not swapped:
            db.session.rollback()
            return _outcome(txn_id, changed=False)

        transitioned = False
        conflict = None
        order = db.session.get(Order, order_id)
        if cancel_order:
            if order.status == ORDER_PENDING:
                try:
                    order_service.apply_payment_transition(order_id, ORDER_CANCELLED)
                    transitioned = True
                except InvalidTransition as exc:
                    conflict = _report_conflict(txn_id, order_id, f"payment failed but order not cancelled: {exc.message}")
            elif order.status != ORDER_CANCELLED:
                conflict = _report_conflict(txn_id, order_id, f"payment failed but order is {order.status}")

        notification_service.notify(
            order.retailer_id,
            "Payment failed",
            f"Payment for order #{order_id} failed.",
            type="payment",
            related_type="order",
            related_id=order_id,
        )
        db.session.commit()
        return _outcome(txn_id, changed=True, order_transitioned=transitioned, conflict=conflict)

    outcome = run_with_retry(_op)
    if outcome.changed:
        logger.info("Transaction %s marked failed; order now %s", txn_id, outcome.order_status)
    else:
        logger.info("Transaction %s already %s; failed event ignored", txn_id, outcome.payment_status)
    return outcome


def admin_set_status(transaction_id, payment_status: str, gateway_transaction_id: str | None = None) -> PaymentOutcome:
    """Manual override: same guarded moves as a webhook, nothing else."""
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status. Must be one of: {', '.join(PAYMENT_STATUSES)}")

    txn = get_transaction(transaction_id)
    if payment_status == PAYMENT_PAID:
        if not gateway_transaction_id:
            raise ValidationError("gateway_transaction_id is required when marking a transaction paid")
        return mark_paid(txn.id, gateway_transaction_id)
    if payment_status == PAYMENT_FAILED:
        return mark_failed(txn.id, cancel_order=True)

    if txn.payment_status != PAYMENT_PENDING:
        raise InvalidTransition(
            f"Cannot move a {txn.payment_status} transaction back to pending",
            details={"from": txn.payment_status, "to": PAYMENT_PENDING},
        )
    return _outcome(txn.id, changed=False)


def record_gateway_session(
    transaction_id: int,
    *,
    gateway: str,
    payment_url: str,
    token: str | None,
    gateway_transaction_id: str | None,
) -> bool:
    """Persist gateway checkout details while the transaction is still pending."""
    values = {
        Transaction.payment_gateway: gateway,
        Transaction.gateway_payment_url: payment_url,
        Transaction.gateway_token: token,
    }
    if gateway_transaction_id:
        values[Transaction.gateway_transaction_id] = gateway_transaction_id

    def _op():
        updated = conditional_update(
            db.session.query(Transaction).filter(
                Transaction.id == transaction_id,
                Transaction.payment_status == PAYMENT_PENDING,
            ),
            values,
        )
        db.session.commit()
        return bool(updated)

    return run_with_retry(_op)
