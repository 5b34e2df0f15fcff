# Overview: Service-layer read models for the farmer dashboard; listings, incoming orders and their payments.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select

from ..extensions import db
from ..errors import NotFoundError
from ..models import Order, OrderItem, Product, Transaction, User
from ..models.auth import ROLE_FARMER
from ..models.catalog import PRODUCT_STATUSES
from ..models.orders import ORDER_CANCELLED, ORDER_STATUSES
from ..models.payments import PAYMENT_STATUSES

# Orders and transactions shown on the dashboard, newest first
DASHBOARD_RECENT_LIMIT = 20


@dataclass
class FarmerDashboard:
    farmer: User
    products: list
    orders: list
    transactions: list


def _get_farmer(farmer_id: int) -> User:
    farmer = db.session.get(User, farmer_id)
    if farmer is None or farmer.role != ROLE_FARMER:
        raise NotFoundError("Farmer not found")
    return farmer


def _order_ids_for(farmer_id: int):
    """Orders holding at least one item of this farmer's products."""
    return (
        select(OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .where(Product.farmer_id == farmer_id)
    )


def get_dashboard(farmer_id: int) -> FarmerDashboard:
    """
    Everything the farmer home screen shows in one read.

    Items whose product was deleted lose the product link, so those orders
    drop off the dashboard while staying visible under /api/orders.
    """
    farmer = _get_farmer(farmer_id)

    products = (
        db.session.query(Product)
        .filter(Product.farmer_id == farmer_id)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .all()
    )
    orders = (
        db.session.query(Order)
        .filter(Order.id.in_(_order_ids_for(farmer_id)))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(DASHBOARD_RECENT_LIMIT)
        .all()
    )
    transactions = (
        db.session.query(Transaction)
        .filter(Transaction.order_id.in_(_order_ids_for(farmer_id)))
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(DASHBOARD_RECENT_LIMIT)
        .all()
    )
    return FarmerDashboard(farmer=farmer, products=products, orders=orders, transactions=transactions)


def get_stats(farmer_id: int) -> dict:
    """
    Counts per status for the farmer's products, orders and transactions.

    total_revenue sums the farmer's item totals over orders that were not
    cancelled; total_commission is what the platform keeps on those orders.
    """
    _get_farmer(farmer_id)

    products = {"total": 0}
    products.update({status: 0 for status in PRODUCT_STATUSES})
    rows = (
        db.session.query(Product.status, db.func.count(Product.id))
        .filter(Product.farmer_id == farmer_id)
        .group_by(Product.status)
        .all()
    )
    for status, count in rows:
        products["total"] += count
        products[status] = count

    orders = {"total": 0}
    orders.update({status: 0 for status in ORDER_STATUSES})
    orders["total_revenue"] = Decimal("0")
    rows = (
        db.session.query(
            Order.status,
            db.func.count(Order.id.distinct()),
            db.func.coalesce(db.func.sum(OrderItem.total_price), 0),
        )
        .join(OrderItem, OrderItem.order_id == Order.id)
        .join(Product, Product.id == OrderItem.product_id)
        .filter(Product.farmer_id == farmer_id)
        .group_by(Order.status)
        .all()
    )
    for status, count, revenue in rows:
        orders["total"] += count
        orders[status] = count
        if status != ORDER_CANCELLED:
            orders["total_revenue"] += Decimal(revenue)

    transactions = {"total": 0}
    transactions.update({status: 0 for status in PAYMENT_STATUSES})
    transactions["total_commission"] = Decimal("0")
    rows = (
        db.session.query(
            Transaction.payment_status,
            db.func.count(Transaction.id),
            db.func.coalesce(db.func.sum(Transaction.commission), 0),
        )
        .filter(Transaction.order_id.in_(_order_ids_for(farmer_id)))
        .group_by(Transaction.payment_status)
        .all()
    )
    for status, count, commission in rows:
        transactions["total"] += count
        transactions[status] = count
        transactions["total_commission"] += Decimal(commission)

    return {"products": products, "orders": orders, "transactions": transactions}
