"""
Order lifecycle tests.

Verifies:
- Order creation reserves stock and computes totals server-side
- The state machine: allowed edges, role checks, no skipping, terminal states
- Cancellation returns stock; confirmation marks empty products sold
- Quantity edits move the reservation and the totals together
"""

from decimal import Decimal

import pytest

from farmmarket.errors import (
    AuthorizationError,
    ConflictError,
    InsufficientStock,
    InvalidTransition,
    ValidationError,
)
from farmmarket.extensions import db
from farmmarket.models import Notification, Order, OrderItem, Product
from farmmarket.services import notification_service, order_service, transaction_service


def _product(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id)


# =============================================================================
# CREATION
# =============================================================================


class TestCreateOrder:
    def test_reserves_stock_and_totals(self, retailer, product, make_order):
        order = make_order(retailer, product, quantity=3)

        assert order.status == "pending"
        assert order.total_amount == Decimal("3000.00")
        assert len(order.items) == 1
        assert order.items[0].unit_price == Decimal("1000.00")
        assert order.items[0].product_name == "Tomatoes"
        assert order.ordered_at is not None

        reloaded = _product(product.id)
        assert reloaded.quantity == Decimal("7")
        assert reloaded.status == "available"

    def test_last_units_mark_product_ordered(self, retailer, product, make_order):
        make_order(retailer, product, quantity=3)
        make_order(retailer, product, quantity=7)

        reloaded = _product(product.id)
        assert reloaded.quantity == Decimal("0")
        assert reloaded.status == "ordered"

    def test_insufficient_stock_creates_nothing(self, retailer, product, make_order):
        with pytest.raises(InsufficientStock):
            make_order(retailer, product, quantity=11)

        assert db.session.query(Order).count() == 0
        assert _product(product.id).quantity == Decimal("10")

    def test_failure_after_reservation_rolls_back(self, retailer, product, make_order, monkeypatch):
        product_id = product.id

        def broken_notify(*args, **kwargs):
            raise RuntimeError("notification store unavailable")

        monkeypatch.setattr(notification_service, "notify", broken_notify)

        with pytest.raises(RuntimeError):
            make_order(retailer, product, quantity=4)

        assert _product(product_id).quantity == Decimal("10")
        assert db.session.query(Order).count() == 0
        assert db.session.query(OrderItem).count() == 0

    def test_notifies_farmer(self, retailer, farmer, product, make_order):
        order = make_order(retailer, product)
        note = db.session.query(Notification).filter_by(user_id=farmer.id, type="order").one()
        assert note.related_id == order.id

    def test_farmer_cannot_order(self, farmer, product, make_order):
        with pytest.raises(AuthorizationError):
            make_order(farmer, product)

    @pytest.mark.parametrize("quantity", [0, -2, "two", 1.5, True])
    def test_rejects_bad_quantity(self, retailer, product, make_order, quantity):
        with pytest.raises(ValidationError):
            make_order(retailer, product, quantity=quantity)

    def test_rejects_short_address(self, retailer, product, make_order):
        with pytest.raises(ValidationError):
            make_order(retailer, product, address="short")


# =============================================================================
# STATE MACHINE
# =============================================================================


class TestStatusTransitions:
    def test_full_happy_path(self, retailer, farmer, product, make_order):
        order = make_order(retailer, product)

        order = order_service.update_status(order.id, "confirmed", farmer.id, "farmer")
        assert order.status == "confirmed"
        assert order.confirmed_at is not None

        order = order_service.update_status(order.id, "delivered", farmer.id, "farmer")
        assert order.delivered_at is not None

        order = order_service.update_status(order.id, "completed", retailer.id, "retailer")
        assert order.status == "completed"
        assert order.completed_at is not None

    def test_cannot_skip_states(self, retailer, admin, product, make_order):
        order = make_order(retailer, product)
        with pytest.raises(InvalidTransition):
            order_service.update_status(order.id, "delivered", admin.id, "admin")
        assert order_service.get_order(order.id).status == "pending"

    def test_cannot_cancel_after_delivery(self, retailer, admin, product, make_order):
        order = make_order(retailer, product)
        order_service.update_status(order.id, "confirmed", admin.id, "admin")
        order_service.update_status(order.id, "delivered", admin.id, "admin")

        with pytest.raises(InvalidTransition):
            order_service.update_status(order.id, "cancelled", admin.id, "admin")

    def test_terminal_states_are_final(self, retailer, product, make_order):
        order = make_order(retailer, product)
        order_service.update_status(order.id, "cancelled", retailer.id, "retailer")
        for status in ("pending", "confirmed", "delivered", "completed"):
            with pytest.raises(InvalidTransition):
                order_service.update_status(order.id, status, retailer.id, "retailer")

    def test_retailer_cannot_confirm(self, retailer, product, make_order):
        order = make_order(retailer, product)
        with pytest.raises(AuthorizationError):
            order_service.update_status(order.id, "confirmed", retailer.id, "retailer")

    def test_other_farmer_cannot_confirm(self, retailer, product, make_order, make_user):
        stranger = make_user("farmer")
        order = make_order(retailer, product)
        with pytest.raises(AuthorizationError):
            order_service.update_status(order.id, "confirmed", stranger.id, "farmer")

    def test_only_admin_cancels_confirmed(self, retailer, farmer, admin, product, make_order):
        order = make_order(retailer, product)
        order_service.update_status(order.id, "confirmed", farmer.id, "farmer")

        with pytest.raises(AuthorizationError):
            order_service.update_status(order.id, "cancelled", retailer.id, "retailer")

        order = order_service.update_status(order.id, "cancelled", admin.id, "admin")
        assert order.status == "cancelled"

    def test_unknown_status(self, retailer, admin, product, make_order):
        order = make_order(retailer, product)
        with pytest.raises(ValidationError):
            order_service.update_status(order.id, "shipped", admin.id, "admin")

    def test_cancel_restores_stock(self, retailer, product, make_order):
        order = make_order(retailer, product, quantity=3)
        order_service.update_status(order.id, "cancelled", retailer.id, "retailer")

        reloaded = _product(product.id)
        assert reloaded.quantity == Decimal("10")
        assert reloaded.status == "available"
        assert order_service.get_order(order.id).cancelled_at is not None

    def test_confirm_marks_empty_product_sold(self, retailer, farmer, product, make_order):
        order = make_order(retailer, product, quantity=10)
        order_service.update_status(order.id, "confirmed", farmer.id, "farmer")
        assert _product(product.id).status == "sold"

    def test_confirm_keeps_product_with_stock(self, retailer, farmer, product, make_order):
        order = make_order(retailer, product, quantity=4)
        order_service.update_status(order.id, "confirmed", farmer.id, "farmer")
        assert _product(product.id).status == "available"

    def test_allowed_next_statuses(self):
        assert set(order_service.allowed_next_statuses("pending")) == {"confirmed", "cancelled"}
        assert order_service.allowed_next_statuses("completed") == []


# =============================================================================
# VISIBILITY
# =============================================================================


class TestListOrders:
    def test_scoped_by_role(self, retailer, farmer, admin, product, make_order, make_user, make_product):
        other_retailer = make_user("retailer")
        other_farmer = make_user("farmer")
        other_product = make_product(other_farmer, name="Chillies")

        mine = make_order(retailer, product)
        theirs = make_order(other_retailer, other_product)

        orders, total = order_service.list_orders(actor_id=retailer.id, actor_role="retailer")
        assert [o.id for o in orders] == [mine.id] and total == 1

        orders, _ = order_service.list_orders(actor_id=other_farmer.id, actor_role="farmer")
        assert [o.id for o in orders] == [theirs.id]

        orders, total = order_service.list_orders(actor_id=admin.id, actor_role="admin")
        assert total == 2

    def test_retailer_cannot_widen_scope(self, retailer, product, make_order, make_user, make_product):
        other_retailer = make_user("retailer")
        make_order(other_retailer, product)

        _, total = order_service.list_orders(
            actor_id=retailer.id, actor_role="retailer", retailer_id=other_retailer.id
        )
        assert total == 0

    def test_limit_is_capped(self, admin):
        _, total = order_service.list_orders(actor_id=admin.id, actor_role="admin", limit=500)
        assert total == 0


# =============================================================================
# QUANTITY UPDATES
# =============================================================================


class TestUpdateQuantity:
    def test_increase_moves_reservation_and_total(self, retailer, product, make_order):
        order = make_order(retailer, product, quantity=3)
        order = order_service.update_quantity(order.id, 5, retailer.id, "retailer")

        assert order.items[0].quantity == 5
        assert order.items[0].total_price == Decimal("5000.00")
        assert order.total_amount == Decimal("5000.00")
        assert _product(product.id).quantity == Decimal("5")

    def test_decrease_returns_stock(self, retailer, product, make_order):
        order = make_order(retailer, product, quantity=10)
        order_service.update_quantity(order.id, 4, retailer.id, "retailer")

        reloaded = _product(product.id)
        assert reloaded.quantity == Decimal("6")
        assert reloaded.status == "available"

    def test_same_quantity_releases_lock(self, retailer, product, make_order, monkeypatch):
        order = make_order(retailer, product, quantity=3)
        rollbacks = []
        real_rollback = db.session.rollback

        def counting_rollback():
            rollbacks.append(True)
            real_rollback()

        monkeypatch.setattr(db.session, "rollback", counting_rollback)

        order = order_service.update_quantity(order.id, 3, retailer.id, "retailer")

        assert rollbacks == [True]
        assert order.items[0].quantity == 3
        assert order.total_amount == Decimal("3000.00")
        assert _product(product.id).quantity == Decimal("7")

        monkeypatch.undo()
        order = order_service.update_quantity(order.id, 4, retailer.id, "retailer")
        assert order.total_amount == Decimal("4000.00")

    def test_increase_beyond_stock(self, retailer, product, make_order):
        order = make_order(retailer, product, quantity=3)
        with pytest.raises(InsufficientStock):
            order_service.update_quantity(order.id, 20, retailer.id, "retailer")

        assert _product(product.id).quantity == Decimal("7")
        assert order_service.get_order(order.id).total_amount == Decimal("3000.00")

    def test_only_pending(self, retailer, admin, product, make_order):
        order = make_order(retailer, product)
        order_service.update_status(order.id, "confirmed", admin.id, "admin")
        with pytest.raises(InvalidTransition):
            order_service.update_quantity(order.id, 2, retailer.id, "retailer")

    def test_refused_once_payment_started(self, retailer, product, make_order):
        order = make_order(retailer, product)
        transaction_service.get_or_create(order.id, order.total_amount, "midtrans")
        with pytest.raises(ConflictError):
            order_service.update_quantity(order.id, 2, retailer.id, "retailer")

    def test_other_retailer_refused(self, retailer, product, make_order, make_user):
        stranger = make_user("retailer")
        order = make_order(retailer, product)
        with pytest.raises(AuthorizationError):
            order_service.update_quantity(order.id, 2, stranger.id, "retailer")
