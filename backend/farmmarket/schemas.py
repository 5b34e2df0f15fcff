# Overview: Response DTOs; the only shapes the API serializes.

"""
Wire representations for each entity.

Routes never serialize model rows directly. Each DTO is built from a model
with from_model() and rendered with to_dict(), so columns added to a table
(hashes, gateway tokens, internal flags) do not leak into responses unless a
DTO names them.

Money is rendered as a string with two decimals and stock quantities as plain
decimal strings, so clients never see binary-float rounding.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from decimal import Decimal
from typing import Optional

from .time_utils import to_utc_z

CENTS = Decimal("0.01")


def money_str(value) -> Optional[str]:
    if value is None:
        return None
    return str(Decimal(value).quantize(CENTS))


def quantity_str(value) -> Optional[str]:
    if value is None:
        return None
    return format(Decimal(value).normalize(), "f")


@dataclass(frozen=True)
class UserDTO:
    id: int
    email: str
    full_name: str
    phone: Optional[str]
    role: str
    address: Optional[str]
    business_name: Optional[str]
    avatar_url: Optional[str]
    is_verified: bool
    is_active: bool
    created_at: Optional[str]
    last_login_at: Optional[str]

    @classmethod
    def from_model(cls, user) -> "UserDTO":
        return cls(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            phone=user.phone,
            role=user.role,
            address=user.address,
            business_name=user.business_name,
            avatar_url=user.avatar_url,
            is_verified=bool(user.is_verified),
            is_active=bool(user.is_active),
            created_at=to_utc_z(user.created_at),
            last_login_at=to_utc_z(user.last_login_at),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PublicProfileDTO:
    """What one marketplace user may see of another; contact details only once verified."""
    id: int
    full_name: str
    role: str
    business_name: Optional[str]
    is_verified: bool
    created_at: Optional[str]
    phone: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def from_model(cls, user) -> "PublicProfileDTO":
        verified = bool(user.is_verified)
        return cls(
            id=user.id,
            full_name=user.full_name,
            role=user.role,
            business_name=user.business_name,
            is_verified=verified,
            created_at=to_utc_z(user.created_at),
            phone=user.phone if verified else None,
            address=user.address if verified else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RetailerContactDTO:
    id: int
    full_name: str
    business_name: Optional[str]
    email: str
    phone: Optional[str]

    @classmethod
    def from_model(cls, user) -> "RetailerContactDTO":
        return cls(
            id=user.id,
            full_name=user.full_name,
            business_name=user.business_name,
            email=user.email,
            phone=user.phone,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ProductDTO:
    id: int
    farmer_id: int
    name: str
    description: Optional[str]
    quantity: str
    unit: str
    price: str
    harvest_date: Optional[str]
    image_url: Optional[str]
    status: str
    created_at: Optional[str]
    farmer_name: Optional[str] = None

    @classmethod
    def from_model(cls, product) -> "ProductDTO":
        return cls(
            id=product.id,
            farmer_id=product.farmer_id,
            name=product.name,
            description=product.description,
            quantity=quantity_str(product.quantity),
            unit=product.unit,
            price=money_str(product.price),
            harvest_date=product.harvest_date.isoformat() if product.harvest_date else None,
            image_url=product.image_url,
            status=product.status,
            created_at=to_utc_z(product.created_at),
            farmer_name=product.farmer.full_name if product.farmer else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class OrderItemDTO:
    id: int
    product_id: Optional[int]
    product_name: str
    farmer_id: Optional[int]
    quantity: int
    unit_price: str
    total_price: str

    @classmethod
    def from_model(cls, item) -> "OrderItemDTO":
        return cls(
            id=item.id,
            product_id=item.product_id,
            product_name=item.product_name,
            farmer_id=item.product.farmer_id if item.product else None,
            quantity=item.quantity,
            unit_price=money_str(item.unit_price),
            total_price=money_str(item.total_price),
        )


@dataclass(frozen=True)
class OrderDTO:
    id: int
    retailer_id: int
    status: str
    total_amount: str
    delivery_address: str
    notes: Optional[str]
    ordered_at: Optional[str]
    confirmed_at: Optional[str]
    delivered_at: Optional[str]
    completed_at: Optional[str]
    cancelled_at: Optional[str]
    items: list = field(default_factory=list)
    payment_status: Optional[str] = None

    @classmethod
    def from_model(cls, order) -> "OrderDTO":
        txn = order.transaction
        return cls(
            id=order.id,
            retailer_id=order.retailer_id,
            status=order.status,
            total_amount=money_str(order.total_amount),
            delivery_address=order.delivery_address,
            notes=order.notes,
            ordered_at=to_utc_z(order.ordered_at),
            confirmed_at=to_utc_z(order.confirmed_at),
            delivered_at=to_utc_z(order.delivered_at),
            completed_at=to_utc_z(order.completed_at),
            cancelled_at=to_utc_z(order.cancelled_at),
            items=[OrderItemDTO.from_model(i) for i in order.items],
            payment_status=txn.payment_status if txn is not None else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TransactionDTO:
    id: int
    order_id: int
    amount: str
    commission: str
    payment_status: str
    payment_gateway: str
    gateway_transaction_id: Optional[str]
    payment_url: Optional[str]
    paid_at: Optional[str]
    failed_at: Optional[str]
    created_at: Optional[str]
    order_status: Optional[str] = None
    retailer_id: Optional[int] = None

    @classmethod
    def from_model(cls, txn) -> "TransactionDTO":
        order = txn.order
        return cls(
            id=txn.id,
            order_id=txn.order_id,
            amount=money_str(txn.amount),
            commission=money_str(txn.commission),
            payment_status=txn.payment_status,
            payment_gateway=txn.payment_gateway,
            gateway_transaction_id=txn.gateway_transaction_id,
            payment_url=txn.gateway_payment_url,
            paid_at=to_utc_z(txn.paid_at),
            failed_at=to_utc_z(txn.failed_at),
            created_at=to_utc_z(txn.created_at),
            order_status=order.status if order is not None else None,
            retailer_id=order.retailer_id if order is not None else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class NotificationDTO:
    id: int
    title: str
    message: str
    type: str
    related_type: Optional[str]
    related_id: Optional[int]
    is_read: bool
    read_at: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_model(cls, n) -> "NotificationDTO":
        return cls(
            id=n.id,
            title=n.title,
            message=n.message,
            type=n.type,
            related_type=n.related_type,
            related_id=n.related_id,
            is_read=bool(n.is_read),
            read_at=to_utc_z(n.read_at),
            created_at=to_utc_z(n.created_at),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def stats_dict(stats: dict) -> dict:
    """Render a stats mapping, nested sections included; Decimal sums become money strings."""
    rendered = {}
    for key, value in stats.items():
        if isinstance(value, dict):
            rendered[key] = stats_dict(value)
        elif isinstance(value, Decimal):
            rendered[key] = money_str(value)
        else:
            rendered[key] = value
    return rendered


def pagination_dict(*, limit: int, offset: int, total: int) -> dict:
    return {
        "limit": limit,
        "offset": offset,
        "total": total,
        "has_more": offset + limit < total,
    }
