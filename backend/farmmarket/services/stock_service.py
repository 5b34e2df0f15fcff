# Overview: Service-layer operations for product stock; reservations tied to the order lifecycle.

"""
Stock Ledger

Product.quantity is the stock still available for new orders. It moves
only through the functions below, each of which is one guarded UPDATE
statement, never a read-modify-write:

    reserve(p, n)   quantity -= n   WHERE status='available' AND quantity >= n
                    then status='ordered' if nothing is left
    confirm(p)      status='sold'   WHERE quantity = 0 (quantity untouched)
    release(p, n)   quantity += n, status='available'
                    silently skipped if the product no longer exists

None of them commit. They run inside the caller's DB transaction so that a
failure later in the same operation (e.g. the order insert) rolls the
reservation back together with everything else.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from ..extensions import db
from ..errors import InsufficientStock, NotFoundError, ProductUnavailable, ValidationError
from ..models import Product
from ..models.catalog import PRODUCT_AVAILABLE, PRODUCT_ORDERED, PRODUCT_SOLD
from .concurrency import conditional_update

logger = logging.getLogger(__name__)


def _as_quantity(quantity) -> Decimal:
    try:
        qty = Decimal(str(quantity))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Quantity must be a number")
    if not qty.is_finite() or qty <= 0:
        raise ValidationError("Quantity must be positive")
    return qty


def reserve(product_id: int, quantity, *, require_available: bool = True) -> Product:
    """
    Take `quantity` units out of a product's available stock.

    Raises:
        NotFoundError: product does not exist
        ProductUnavailable: status is not 'available' (only when require_available)
        InsufficientStock: fewer than `quantity` units left
    """
    qty = _as_quantity(quantity)

    guard = db.session.query(Product).filter(
        Product.id == product_id,
        Product.quantity >= qty,
    )
    if require_available:
        guard = guard.filter(Product.status == PRODUCT_AVAILABLE)

    updated = conditional_update(guard, {Product.quantity: Product.quantity - qty})

    if not updated:
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if require_available and product.status != PRODUCT_AVAILABLE:
            raise ProductUnavailable(
                "Product is not available for ordering",
                details={"product_id": product_id, "status": product.status},
            )
        raise InsufficientStock(
            "Quantity exceeds available stock",
            details={
                "product_id": product_id,
                "requested_quantity": str(qty),
                "available_quantity": format(Decimal(product.quantity).normalize(), "f"),
            },
        )

    conditional_update(
        db.session.query(Product).filter(
            Product.id == product_id,
            Product.quantity <= 0,
            Product.status == PRODUCT_AVAILABLE,
        ),
        {Product.status: PRODUCT_ORDERED},
    )

    product = db.session.get(Product, product_id)
    logger.debug("Reserved %s of product %s; %s left", qty, product_id, product.quantity)
    return product


def confirm(product_id: int | None) -> bool:
    """Mark a product sold once a paid order has taken its last unit."""
    if product_id is None:
        return False
    return bool(conditional_update(
        db.session.query(Product).filter(
            Product.id == product_id,
            Product.quantity <= 0,
        ),
        {Product.status: PRODUCT_SOLD},
    ))


def release(product_id: int | None, quantity) -> bool:
    """
    Give reserved units back and make the product orderable again.

    Returns False (and does nothing) if the product has been deleted.
    """
    if product_id is None:
        return False
    qty = _as_quantity(quantity)
    released = conditional_update(
        db.session.query(Product).filter(Product.id == product_id),
        {
            Product.quantity: Product.quantity + qty,
            Product.status: PRODUCT_AVAILABLE,
        },
    )
    if not released:
        logger.info("Release of %s skipped: product %s no longer exists", qty, product_id)
    return bool(released)


def adjust_reservation(product_id: int | None, delta: int) -> None:
    """
    Move an existing reservation by `delta` units.

    A positive delta needs that many units still available; the product's
    status does not matter since part of it is already held by this order.
    """
    if delta > 0:
        if product_id is None:
            raise ProductUnavailable("Product no longer exists")
        reserve(product_id, delta, require_available=False)
    elif delta < 0:
        release(product_id, -delta)
