# Overview: Service-layer operations for product listings; CRUD with ownership checks and stock edits.

from __future__ import annotations

import logging
from decimal import Decimal

from ..extensions import db
from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..models import Order, OrderItem, Product, User
from ..models.auth import ROLE_ADMIN, ROLE_FARMER
from ..models.catalog import PRODUCT_AVAILABLE, PRODUCT_SOLD, PRODUCT_STATUSES
from ..models.orders import ORDER_CONFIRMED, ORDER_PENDING
from .concurrency import conditional_update, run_with_retry

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {"name", "description", "quantity", "unit", "price", "harvest_date", "image_url", "status"}

SORTABLE_FIELDS = {
    "created_at": Product.created_at,
    "name": Product.name,
    "price": Product.price,
    "harvest_date": Product.harvest_date,
}

# Orders that still hold (or are about to consume) a reservation
_OPEN_ORDER_STATUSES = (ORDER_PENDING, ORDER_CONFIRMED)


def _reconcile_status(quantity: Decimal, status: str | None) -> str:
    """
    Keep status consistent with stock after an owner edit.

    Without an explicit status, stock on hand means available and an empty
    shelf means sold. An explicit status is kept, except that nothing can
    be available with no stock.
    """
    if status is None:
        return PRODUCT_AVAILABLE if quantity > 0 else PRODUCT_SOLD
    if quantity <= 0 and status == PRODUCT_AVAILABLE:
        raise ValidationError("A product with no stock cannot be available")
    return status


def _check_owner(product: Product, actor_id: int, actor_role: str) -> None:
    if actor_role == ROLE_ADMIN:
        return
    if actor_role != ROLE_FARMER or product.farmer_id != actor_id:
        raise AuthorizationError("You can only manage your own products")


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product


def list_products(
    *,
    status: str | None = None,
    farmer_id: int | None = None,
    search: str | None = None,
    min_price: Decimal | None = None,
    max_price: Decimal | None = None,
    sort_by: str = "created_at",
    ascending: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Product], int]:
    query = db.session.query(Product)

    if status:
        if status not in PRODUCT_STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(PRODUCT_STATUSES)}")
        query = query.filter(Product.status == status)
    if farmer_id is not None:
        query = query.filter(Product.farmer_id == farmer_id)
    if search:
        query = query.filter(Product.name.ilike(f"%{search.strip()}%"))
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)

    sort_col = SORTABLE_FIELDS.get(sort_by)
    if sort_col is None:
        raise ValidationError(f"sort_by must be one of: {', '.join(SORTABLE_FIELDS)}")

    total = query.count()
    rows = (
        query.order_by(sort_col.asc() if ascending else sort_col.desc(), Product.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total


def create_product(*, farmer_id: int, patch: dict) -> Product:
    """Create a listing for a farmer from a validated patch dict."""
    farmer = db.session.get(User, farmer_id)
    if farmer is None or not farmer.is_active:
        raise AuthorizationError("Account is not active")
    if farmer.role not in (ROLE_FARMER, ROLE_ADMIN):
        raise AuthorizationError("Only farmers can create products")

    quantity = patch["quantity"]
    status = _reconcile_status(quantity, patch.get("status"))

    product = Product(farmer_id=farmer_id)
    for k, v in patch.items():
        if k in PRODUCT_MUTABLE_FIELDS:
            setattr(product, k, v)
    product.status = status
    if not product.unit:
        product.unit = "kg"

    db.session.add(product)
    db.session.commit()
    logger.info("Product %s created by farmer %s", product.id, farmer_id)
    return product


def _swap_stock(product_id: int, observed: Decimal, quantity: Decimal | None, status: str | None) -> tuple[Decimal, str]:
    """
    Write quantity/status conditional on the quantity read earlier.

    Does not commit. A reservation landing in between makes it fail with
    ConflictError instead of silently overwriting the decrement.
    """
    if status is not None and status not in PRODUCT_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(PRODUCT_STATUSES)}")

    new_quantity = observed if quantity is None else Decimal(quantity)
    if new_quantity < 0:
        raise ValidationError("Quantity must be a non-negative number")
    new_status = _reconcile_status(new_quantity, status)

    swapped = conditional_update(
        db.session.query(Product).filter(Product.id == product_id, Product.quantity == observed),
        {Product.quantity: new_quantity, Product.status: new_status},
    )
    if not swapped:
        raise ConflictError("Stock changed while updating; reload the product and retry")
    return new_quantity, new_status


def update_product(*, product_id: int, actor_id: int, actor_role: str, patch: dict) -> Product:
    """
    Apply a validated patch as one unit of work.

    quantity/status go through the same compare-and-set as update_stock and
    run before the other fields are touched; if either part fails nothing
    from the patch is saved.
    """
    stock_fields = {k: patch[k] for k in ("quantity", "status") if k in patch}

    def _op():
        product = get_product(product_id)
        _check_owner(product, actor_id, actor_role)

        if stock_fields:
            _swap_stock(
                product_id,
                Decimal(product.quantity),
                stock_fields.get("quantity"),
                stock_fields.get("status"),
            )
            product = get_product(product_id)

        for k, v in patch.items():
            if k in PRODUCT_MUTABLE_FIELDS and k not in stock_fields:
                setattr(product, k, v)
        db.session.commit()

    run_with_retry(_op)
    logger.info("Product %s updated by %s %s (%s)", product_id, actor_role, actor_id, ", ".join(sorted(patch)))
    return get_product(product_id)


def update_stock(
    *,
    product_id: int,
    actor_id: int,
    actor_role: str,
    quantity: Decimal | None = None,
    status: str | None = None,
) -> Product:
    """Set a product's absolute stock level and/or status."""
    if quantity is None and status is None:
        raise ValidationError("quantity or status is required")

    def _op():
        product = get_product(product_id)
        _check_owner(product, actor_id, actor_role)
        result = _swap_stock(product_id, Decimal(product.quantity), quantity, status)
        db.session.commit()
        return result

    new_quantity, new_status = run_with_retry(_op)
    logger.info("Product %s stock set to %s (%s) by %s %s", product_id, new_quantity, new_status, actor_role, actor_id)
    return get_product(product_id)

def delete_product(*, product_id: int, actor_id: int, actor_role: str) -> None:
    """
    Delete a listing.

    Refused while a pending or confirmed order still references it. Older
    order items keep their product_name and lose the product link.
    """
    product = get_product(product_id)
    _check_owner(product, actor_id, actor_role)

    open_orders = (
        db.session.query(OrderItem.order_id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(OrderItem.product_id == product_id, Order.status.in_(_OPEN_ORDER_STATUSES))
        .count()
    )
    if open_orders:
        raise ConflictError(
            "Product has open orders and cannot be deleted",
            details={"open_orders": open_orders},
        )

    db.session.query(OrderItem).filter(OrderItem.product_id == product_id).update(
        {OrderItem.product_id: None}, synchronize_session=False
    )
    db.session.delete(product)
    db.session.commit()
    logger.info("Product %s deleted by %s %s", product_id, actor_role, actor_id)
