"""
Transaction manager tests.

Verifies:
- One transaction per order; commission computed from the platform rate
- pending -> paid / failed moves are guarded and final
- Settlement drives the order (confirm / cancel) in the same DB transaction
- Reconciliation conflicts are reported, not raised
"""

from decimal import Decimal

import pytest

from farmmarket.errors import InvalidTransition, TransactionNotFound, ValidationError
from farmmarket.extensions import db
from farmmarket.models import Notification, Product, Transaction
from farmmarket.services import order_service, transaction_service


@pytest.fixture
def pending_txn(retailer, product, make_order):
    order = make_order(retailer, product, quantity=3)
    return transaction_service.get_or_create(order.id, order.total_amount, "midtrans")


def _product(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id)


class TestGetOrCreate:
    def test_commission_and_defaults(self, pending_txn):
        assert pending_txn.amount == Decimal("3000.00")
        assert pending_txn.commission == Decimal("150.00")
        assert pending_txn.payment_status == "pending"
        assert pending_txn.payment_gateway == "midtrans"

    def test_reuses_existing(self, pending_txn):
        again = transaction_service.get_or_create(pending_txn.order_id, Decimal("3000"), "xendit")
        assert again.id == pending_txn.id
        assert db.session.query(Transaction).count() == 1

    def test_concurrent_insert_returns_winner(self, pending_txn, monkeypatch):
        winner_id = pending_txn.id
        order_id = pending_txn.order_id
        real_lookup = transaction_service.get_by_order
        lookups = []

        def stale_first_lookup(oid):
            # The first read misses the row another request just committed
            lookups.append(oid)
            return None if len(lookups) == 1 else real_lookup(oid)

        monkeypatch.setattr(transaction_service, "get_by_order", stale_first_lookup)

        again = transaction_service.get_or_create(order_id, Decimal("3000"), "xendit")

        assert again.id == winner_id
        assert again.payment_gateway == "midtrans"
        assert lookups == [order_id, order_id]
        assert db.session.query(Transaction).count() == 1

    def test_commission_rounds_half_up(self, retailer, farmer, make_product, make_order):
        product = make_product(farmer, price="10.10")
        order = make_order(retailer, product, quantity=1)
        txn = transaction_service.get_or_create(order.id, order.total_amount, "stripe")
        # 10.10 * 0.05 = 0.505
        assert txn.commission == Decimal("0.51")

    def test_unknown_gateway(self, retailer, product, make_order):
        order = make_order(retailer, product)
        with pytest.raises(ValidationError):
            transaction_service.get_or_create(order.id, order.total_amount, "paypal")


class TestLookup:
    @pytest.mark.parametrize("raw", ["abc", "", None, "-4", "0"])
    def test_non_numeric_ids_are_not_found(self, raw):
        with pytest.raises(TransactionNotFound):
            transaction_service.get_transaction(raw)

    def test_string_id(self, pending_txn):
        assert transaction_service.get_transaction(str(pending_txn.id)).id == pending_txn.id


class TestMarkPaid:
    def test_confirms_order(self, pending_txn):
        outcome = transaction_service.mark_paid(pending_txn.id, "gw-123")

        assert outcome.changed is True
        assert outcome.payment_status == "paid"
        assert outcome.order_transitioned is True
        assert outcome.order_status == "confirmed"
        assert outcome.conflict is None

        txn = transaction_service.get_transaction(pending_txn.id)
        assert txn.paid_at is not None
        assert txn.gateway_transaction_id == "gw-123"
        assert txn.order.confirmed_at is not None

    def test_is_idempotent(self, pending_txn, retailer):
        transaction_service.mark_paid(pending_txn.id, "gw-123")
        confirmed_at = transaction_service.get_transaction(pending_txn.id).order.confirmed_at
        payment_notes = db.session.query(Notification).filter_by(user_id=retailer.id, type="payment").count()

        outcome = transaction_service.mark_paid(pending_txn.id, "gw-other")

        assert outcome.changed is False
        assert outcome.order_transitioned is False
        txn = transaction_service.get_transaction(pending_txn.id)
        assert txn.gateway_transaction_id == "gw-123"
        assert txn.order.confirmed_at == confirmed_at
        assert db.session.query(Notification).filter_by(user_id=retailer.id, type="payment").count() == payment_notes

    def test_failed_is_final(self, pending_txn):
        transaction_service.mark_failed(pending_txn.id)
        outcome = transaction_service.mark_paid(pending_txn.id, "late")

        assert outcome.changed is False
        assert outcome.payment_status == "failed"

    def test_order_already_confirmed_is_consistent(self, pending_txn, farmer):
        order_service.update_status(pending_txn.order_id, "confirmed", farmer.id, "farmer")
        outcome = transaction_service.mark_paid(pending_txn.id, "gw-1")

        assert outcome.changed is True
        assert outcome.conflict is None
        assert outcome.order_status == "confirmed"

    def test_cancelled_order_is_a_conflict(self, pending_txn, retailer, admin):
        order_service.update_status(pending_txn.order_id, "cancelled", retailer.id, "retailer")
        outcome = transaction_service.mark_paid(pending_txn.id, "gw-1")

        assert outcome.changed is True
        assert outcome.payment_status == "paid"
        assert outcome.order_status == "cancelled"
        assert outcome.conflict
        assert db.session.query(Notification).filter_by(user_id=admin.id, type="payment").count() == 1

    def test_marks_empty_product_sold(self, retailer, farmer, make_product, make_order):
        product = make_product(farmer, quantity="3")
        order = make_order(retailer, product, quantity=3)
        txn = transaction_service.get_or_create(order.id, order.total_amount, "midtrans")

        transaction_service.mark_paid(txn.id)
        assert _product(product.id).status == "sold"


class TestMarkFailed:
    def test_cancels_order_and_releases_stock(self, pending_txn, product):
        outcome = transaction_service.mark_failed(pending_txn.id)

        assert outcome.changed is True
        assert outcome.payment_status == "failed"
        assert outcome.order_status == "cancelled"
        assert _product(product.id).quantity == Decimal("10")
        assert transaction_service.get_transaction(pending_txn.id).failed_at is not None

    def test_keep_order(self, pending_txn):
        outcome = transaction_service.mark_failed(pending_txn.id, cancel_order=False)
        assert outcome.order_status == "pending"
        assert outcome.conflict is None

    def test_paid_is_final(self, pending_txn):
        transaction_service.mark_paid(pending_txn.id)
        outcome = transaction_service.mark_failed(pending_txn.id)

        assert outcome.changed is False
        assert outcome.payment_status == "paid"
        assert outcome.order_status == "confirmed"

    def test_confirmed_order_is_a_conflict(self, pending_txn, farmer):
        order_service.update_status(pending_txn.order_id, "confirmed", farmer.id, "farmer")
        outcome = transaction_service.mark_failed(pending_txn.id)

        assert outcome.payment_status == "failed"
        assert outcome.order_status == "confirmed"
        assert outcome.conflict


class TestAdminSetStatus:
    def test_paid_requires_gateway_id(self, pending_txn):
        with pytest.raises(ValidationError):
            transaction_service.admin_set_status(pending_txn.id, "paid")

    def test_paid(self, pending_txn):
        outcome = transaction_service.admin_set_status(pending_txn.id, "paid", "manual-1")
        assert outcome.payment_status == "paid"

    def test_back_to_pending_refused(self, pending_txn):
        transaction_service.admin_set_status(pending_txn.id, "failed")
        with pytest.raises(InvalidTransition):
            transaction_service.admin_set_status(pending_txn.id, "pending")

    def test_unknown_status(self, pending_txn):
        with pytest.raises(ValidationError):
            transaction_service.admin_set_status(pending_txn.id, "refunded")


class TestGatewaySession:
    def test_recorded_while_pending(self, pending_txn):
        stored = transaction_service.record_gateway_session(
            pending_txn.id,
            gateway="xendit",
            payment_url="https://checkout.example/inv-1",
            token="inv-1",
            gateway_transaction_id="inv-1",
        )
        assert stored is True
        txn = transaction_service.get_transaction(pending_txn.id)
        assert txn.payment_gateway == "xendit"
        assert txn.gateway_payment_url == "https://checkout.example/inv-1"

    def test_not_recorded_after_settlement(self, pending_txn):
        transaction_service.mark_paid(pending_txn.id)
        stored = transaction_service.record_gateway_session(
            pending_txn.id,
            gateway="xendit",
            payment_url="https://checkout.example/inv-1",
            token=None,
            gateway_transaction_id=None,
        )
        assert stored is False


class TestStats:
    def test_totals_by_status(self, retailer, farmer, make_product, make_order):
        first = make_order(retailer, make_product(farmer), quantity=2)
        second = make_order(retailer, make_product(farmer), quantity=1)
        paid = transaction_service.get_or_create(first.id, first.total_amount, "midtrans")
        transaction_service.get_or_create(second.id, second.total_amount, "midtrans")
        transaction_service.mark_paid(paid.id)

        stats = transaction_service.get_stats()

        assert stats["total_transactions"] == 2
        assert stats["total_amount"] == Decimal("3000.00")
        assert stats["paid_transactions"] == 1
        assert stats["paid_amount"] == Decimal("2000.00")
        assert stats["pending_transactions"] == 1
        assert stats["failed_transactions"] == 0
        assert stats["paid_commission"] == Decimal("100.00")
