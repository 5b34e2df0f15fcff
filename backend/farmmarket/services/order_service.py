# Overview: Service-layer operations for orders; creation, status state machine, and quantity edits.

"""
Order Lifecycle Service

================================================================================
STATE MACHINE
================================================================================

    pending -> confirmed -> delivered -> completed
       |           |
       +-----------+--> cancelled

    | From      | To        | Roles                         | Side effect            |
    |-----------|-----------|-------------------------------|------------------------|
    | pending   | confirmed | farmer (owns an item), admin  | confirmed_at; confirm  |
    | confirmed | delivered | farmer (owns an item), admin  | delivered_at           |
    | delivered | completed | retailer (owner), admin       | completed_at           |
    | pending   | cancelled | retailer (owner), admin       | cancelled_at; release  |
    | confirmed | cancelled | admin                         | cancelled_at; release  |

RULES:
1. Any edge not in the table raises InvalidTransition (no skipping states).
2. completed and cancelled are terminal.
3. The status write is a compare-and-set on the status read at the start of
   the operation; a concurrent writer makes it fail with InvalidTransition.
4. Payment events drive pending -> confirmed and pending -> cancelled as the
   system actor (apply_payment_transition); they skip role checks only.
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select

from ..extensions import db
from ..errors import (
    AuthorizationError,
    ConflictError,
    InsufficientStock,
    InvalidTransition,
    NotFoundError,
    ProductUnavailable,
    ValidationError,
)
from ..models import Order, OrderItem, Product, Transaction, User
from ..models.auth import ROLE_ADMIN, ROLE_FARMER, ROLE_RETAILER
from ..models.catalog import PRODUCT_AVAILABLE
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_STATUSES,
)
from ..time_utils import utcnow
from . import notification_service, stock_service
from .concurrency import conditional_update, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
MAX_PAGE_SIZE = 50
DEFAULT_PAGE_SIZE = 10

STOCK_CONFIRM = "confirm"
STOCK_RELEASE = "release"


@dataclass(frozen=True)
class TransitionRule:
    roles: frozenset
    timestamp_field: str
    stock_effect: str | None = None


TRANSITIONS: dict[tuple[str, str], TransitionRule] = {
    (ORDER_PENDING, ORDER_CONFIRMED): TransitionRule(
        frozenset({ROLE_FARMER, ROLE_ADMIN}), "confirmed_at", STOCK_CONFIRM
    ),
    (ORDER_CONFIRMED, ORDER_DELIVERED): TransitionRule(
        frozenset({ROLE_FARMER, ROLE_ADMIN}), "delivered_at"
    ),
    (ORDER_DELIVERED, ORDER_COMPLETED): TransitionRule(
        frozenset({ROLE_RETAILER, ROLE_ADMIN}), "completed_at"
    ),
    (ORDER_PENDING, ORDER_CANCELLED): TransitionRule(
        frozenset({ROLE_RETAILER, ROLE_ADMIN}), "cancelled_at", STOCK_RELEASE
    ),
    (ORDER_CONFIRMED, ORDER_CANCELLED): TransitionRule(
        frozenset({ROLE_ADMIN}), "cancelled_at", STOCK_RELEASE
    ),
}

# Edges a payment event may drive without a human actor
PAYMENT_TRANSITIONS = {
    (ORDER_PENDING, ORDER_CONFIRMED),
    (ORDER_PENDING, ORDER_CANCELLED),
}

TERMINAL_STATUSES = frozenset({ORDER_COMPLETED, ORDER_CANCELLED})

_STATUS_MESSAGES = {
    ORDER_CONFIRMED: ("Order confirmed", "Order #{id} has been confirmed."),
    ORDER_DELIVERED: ("Order delivered", "Order #{id} has been delivered."),
    ORDER_COMPLETED: ("Order completed", "Order #{id} has been completed."),
    ORDER_CANCELLED: ("Order cancelled", "Order #{id} has been cancelled."),
}


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def validate_status(status: str) -> None:
    if status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid order status '{status}'. Must be one of: {', '.join(ORDER_STATUSES)}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    validate_status(from_status)
    validate_status(to_status)
    return (from_status, to_status) in TRANSITIONS


def allowed_next_statuses(from_status: str) -> list[str]:
    return [to for (frm, to) in TRANSITIONS if frm == from_status]


def _parse_item_quantity(quantity) -> int:
    if isinstance(quantity, bool):
        raise ValidationError("Quantity must be a positive integer")
    if isinstance(quantity, str) and quantity.strip().isdigit():
        quantity = int(quantity.strip())
    if not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be a positive integer")
    return quantity


def _validate_delivery(delivery_address, notes) -> tuple[str, str | None]:
    address = (delivery_address or "").strip() if isinstance(delivery_address, str) else ""
    if not 10 <= len(address) <= 500:
        raise ValidationError("Delivery address must be between 10 and 500 characters")
    if notes is not None:
        if not isinstance(notes, str):
            raise ValidationError("Notes must be text")
        notes = notes.strip() or None
        if notes and len(notes) > 1000:
            raise ValidationError("Notes must not exceed 1000 characters")
    return address, notes


# =============================================================================
# READS & PERMISSIONS
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def _farmer_ids_for_order(order_id: int) -> set[int]:
    rows = (
        db.session.query(Product.farmer_id)
        .join(OrderItem, OrderItem.product_id == Product.id)
        .filter(OrderItem.order_id == order_id)
        .all()
    )
    return {row.farmer_id for row in rows}


def can_view(order: Order, actor_id: int, actor_role: str) -> bool:
    """Admin sees all; retailer sees own orders; farmer sees orders with their products."""
    if actor_role == ROLE_ADMIN:
        return True
    if actor_role == ROLE_RETAILER:
        return order.retailer_id == actor_id
    if actor_role == ROLE_FARMER:
        return actor_id in _farmer_ids_for_order(order.id)
    return False


def get_order_for_actor(order_id: int, actor_id: int, actor_role: str) -> Order:
    order = get_order(order_id)
    if not can_view(order, actor_id, actor_role):
        raise AuthorizationError("You do not have permission to view this order")
    return order


def list_orders(
    *,
    actor_id: int,
    actor_role: str,
    status: str | None = None,
    retailer_id: int | None = None,
    farmer_id: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> tuple[list[Order], int]:
    """
    List orders visible to the actor.

    Non-admins are pinned to their own scope: retailer_id / farmer_id filters
    from the request are replaced by the actor's id.
    """
    if actor_role == ROLE_RETAILER:
        retailer_id, farmer_id = actor_id, None
    elif actor_role == ROLE_FARMER:
        retailer_id, farmer_id = None, actor_id
    elif actor_role != ROLE_ADMIN:
        raise AuthorizationError("You do not have permission to list orders")

    query = db.session.query(Order)
    if status:
        validate_status(status)
        query = query.filter(Order.status == status)
    if retailer_id is not None:
        query = query.filter(Order.retailer_id == retailer_id)
    if farmer_id is not None:
        farmer_orders = (
            select(OrderItem.order_id)
            .join(Product, Product.id == OrderItem.product_id)
            .where(Product.farmer_id == farmer_id)
        )
        query = query.filter(Order.id.in_(farmer_orders))

    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    offset = max(0, int(offset))

    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return orders, total


# =============================================================================
# CREATION
# =============================================================================

def create_order(
    retailer_id: int,
    product_id: int,
    quantity,
    delivery_address: str,
    notes: str | None = None,
) -> Order:
    """
    Place a single-product order and reserve its stock.

    The reservation, the order row and its item are written in one DB
    transaction. If anything fails after the reservation, the rollback in
    run_with_retry gives the stock back and removes any partial rows before
    the error reaches the caller.

    Raises:
        AuthorizationError: retailer inactive or not allowed to order
        NotFoundError: product missing
        ProductUnavailable / InsufficientStock: product cannot cover the order
    """
    qty = _parse_item_quantity(quantity)
    address, notes = _validate_delivery(delivery_address, notes)

    def _op():
        retailer = db.session.get(User, retailer_id)
        if retailer is None or not retailer.is_active:
            raise AuthorizationError("Account is not active")
        if retailer.role not in (ROLE_RETAILER, ROLE_ADMIN):
            raise AuthorizationError("Only retailers can create orders")

        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if product.status != PRODUCT_AVAILABLE:
            raise ProductUnavailable(
                "Product is not available for ordering",
                details={"product_id": product_id, "status": product.status},
            )
        if Decimal(qty) > Decimal(product.quantity):
            raise InsufficientStock(
                "Quantity exceeds available stock",
                details={"product_id": product_id, "requested_quantity": qty},
            )

        unit_price = Decimal(product.price).quantize(CENTS)
        total_price = (unit_price * qty).quantize(CENTS)
        product_name = product.name
        farmer_id = product.farmer_id

        # Authoritative check: the guarded decrement, not the read above
        stock_service.reserve(product_id, qty)

        order = Order(
            retailer_id=retailer_id,
            total_amount=total_price,
            status=ORDER_PENDING,
            delivery_address=address,
            notes=notes,
            ordered_at=utcnow(),
        )
        db.session.add(order)
        db.session.flush()

        db.session.add(OrderItem(
            order_id=order.id,
            product_id=product_id,
            product_name=product_name,
            quantity=qty,
            unit_price=unit_price,
            total_price=total_price,
        ))

        notification_service.notify(
            farmer_id,
            "New order received",
            f"Order #{order.id}: {qty} x {product_name}.",
            type="order",
            related_type="order",
            related_id=order.id,
        )

        db.session.commit()
        return order.id

    order_id = run_with_retry(_op)
    logger.info("Order %s created by retailer %s for product %s x%s", order_id, retailer_id, product_id, qty)
    return get_order(order_id)


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def _authorize_transition(order: Order, rule: TransitionRule, actor_id: int, actor_role: str, to_status: str) -> None:
    if actor_role not in rule.roles:
        raise AuthorizationError(
            f"Role '{actor_role}' cannot move an order from {order.status} to {to_status}"
        )
    if actor_role == ROLE_ADMIN:
        return
    if actor_role == ROLE_RETAILER and order.retailer_id != actor_id:
        raise AuthorizationError("You can only update your own orders")
    if actor_role == ROLE_FARMER and actor_id not in _farmer_ids_for_order(order.id):
        raise AuthorizationError("You can only update orders that contain your products")


def _apply_transition(order_id: int, from_status: str, to_status: str, rule: TransitionRule) -> None:
    """Compare-and-set the status, stamp the transition, then run the stock side effect."""
    swapped = conditional_update(
        db.session.query(Order).filter(Order.id == order_id, Order.status == from_status),
        {Order.status: to_status, getattr(Order, rule.timestamp_field): utcnow()},
    )
    if not swapped:
        current = db.session.get(Order, order_id)
        raise InvalidTransition(
            "Order status was changed by another request",
            details={"expected": from_status, "current": current.status if current else None},
        )

    items = db.session.query(OrderItem).filter_by(order_id=order_id).all()
    if rule.stock_effect == STOCK_CONFIRM:
        for item in items:
            stock_service.confirm(item.product_id)
    elif rule.stock_effect == STOCK_RELEASE:
        for item in items:
            stock_service.release(item.product_id, item.quantity)


def _notify_status_change(order_id: int, retailer_id: int, to_status: str) -> None:
    title, template = _STATUS_MESSAGES[to_status]
    notification_service.notify(
        retailer_id,
        title,
        template.format(id=order_id),
        type="order",
        related_type="order",
        related_id=order_id,
    )


def _rule_for(from_status: str, to_status: str) -> TransitionRule:
    if from_status == to_status:
        raise InvalidTransition(f"Order is already {from_status}")
    rule = TRANSITIONS.get((from_status, to_status))
    if rule is None:
        raise InvalidTransition(
            f"Cannot change order status from {from_status} to {to_status}",
            details={
                "from": from_status,
                "to": to_status,
                "allowed": allowed_next_statuses(from_status),
            },
        )
    return rule


def update_status(order_id: int, new_status: str, actor_id: int, actor_role: str) -> Order:
    """
    Move an order along the state machine on behalf of a user.

    Raises:
        ValidationError: unknown status value
        NotFoundError: order missing
        InvalidTransition: edge not in the table, or lost a concurrent race
        AuthorizationError: actor role/ownership not allowed for this edge
    """
    validate_status(new_status)

    def _op():
        order = get_order(order_id)
        from_status = order.status
        rule = _rule_for(from_status, new_status)
        _authorize_transition(order, rule, actor_id, actor_role, new_status)

        retailer_id = order.retailer_id
        _apply_transition(order_id, from_status, new_status, rule)
        _notify_status_change(order_id, retailer_id, new_status)

        db.session.commit()
        return from_status

    from_status = run_with_retry(_op)
    logger.info(
        "Order %s moved %s -> %s by %s %s", order_id, from_status, new_status, actor_role, actor_id
    )
    return get_order(order_id)


def apply_payment_transition(order_id: int, new_status: str) -> None:
    """
    Drive a payment-triggered transition as the system actor.

    Does not commit; the Transaction Manager commits it together with the
    payment status change.
    """
    order = get_order(order_id)
    from_status = order.status
    if (from_status, new_status) not in PAYMENT_TRANSITIONS:
        raise InvalidTransition(
            f"Payment cannot move order from {from_status} to {new_status}",
            details={"from": from_status, "to": new_status},
        )
    retailer_id = order.retailer_id
    _apply_transition(order_id, from_status, new_status, TRANSITIONS[(from_status, new_status)])
    _notify_status_change(order_id, retailer_id, new_status)


# =============================================================================
# QUANTITY UPDATES
# =============================================================================

def update_quantity(order_id: int, new_quantity, actor_id: int, actor_role: str) -> Order:
    """
    Change the quantity of a pending single-item order.

    The reservation moves by the difference: growing the order needs that
    many extra units still available, shrinking it returns the surplus.
    Item total and order total are recomputed server-side.

    Raises:
        AuthorizationError: not the owning retailer or an admin
        InvalidTransition: order no longer pending
        ConflictError: payment already initiated for the order
        InsufficientStock: not enough stock for the increase
    """
    qty = _parse_item_quantity(new_quantity)

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError("Order not found")
        if actor_role != ROLE_ADMIN and not (actor_role == ROLE_RETAILER and order.retailer_id == actor_id):
            raise AuthorizationError("You can only update your own orders")
        if order.status != ORDER_PENDING:
            raise InvalidTransition("Only pending orders can be updated")
        if db.session.query(Transaction.id).filter_by(order_id=order_id).first() is not None:
            raise ConflictError("Order quantity cannot change after payment has been initiated")

        items = list(order.items)
        if len(items) != 1:
            raise ValidationError("Quantity can only be changed on single-item orders")
        item = items[0]

        item_id = item.id
        product_id = item.product_id
        delta = qty - item.quantity
        new_total = (Decimal(item.unit_price) * qty).quantize(CENTS)

        if delta == 0:
            # Nothing to write; end the transaction so the row lock goes too
            db.session.rollback()
            return

        stock_service.adjust_reservation(product_id, delta)

        conditional_update(
            db.session.query(OrderItem).filter(OrderItem.id == item_id),
            {OrderItem.quantity: qty, OrderItem.total_price: new_total},
        )
        order_total = (
            db.session.query(db.func.sum(OrderItem.total_price))
            .filter(OrderItem.order_id == order_id)
            .scalar()
        )
        still_pending = conditional_update(
            db.session.query(Order).filter(Order.id == order_id, Order.status == ORDER_PENDING),
            {Order.total_amount: Decimal(order_total).quantize(CENTS)},
        )
        if not still_pending:
            raise InvalidTransition("Only pending orders can be updated")

        db.session.commit()

    run_with_retry(_op)
    logger.info("Order %s quantity set to %s by %s %s", order_id, qty, actor_role, actor_id)
    return get_order(order_id)
