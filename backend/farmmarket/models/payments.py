from __future__ import annotations

from ..extensions import db

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED)

GATEWAY_MIDTRANS = "midtrans"
GATEWAY_XENDIT = "xendit"
GATEWAY_STRIPE = "stripe"
PAYMENT_GATEWAYS = (GATEWAY_MIDTRANS, GATEWAY_XENDIT, GATEWAY_STRIPE)


class Transaction(db.Model):
    """
    Payment record for an order (exactly one per order).

    payment_status only moves pending -> paid or pending -> failed. Both
    moves are guarded by the current status in the UPDATE itself.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_transactions_order_id"),
        db.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        db.CheckConstraint("commission >= 0", name="ck_transactions_commission_nonnegative"),
        db.CheckConstraint("payment_status IN ('pending', 'paid', 'failed')", name="ck_transactions_status"),
        db.CheckConstraint(
            "payment_gateway IN ('midtrans', 'xendit', 'stripe')",
            name="ck_transactions_gateway",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    commission = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)

    payment_gateway = db.Column(db.String(20), nullable=False)
    gateway_transaction_id = db.Column(db.String(255), nullable=True, index=True)
    gateway_payment_url = db.Column(db.Text, nullable=True)
    gateway_token = db.Column(db.String(255), nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    order = db.relationship("Order", backref=db.backref("transaction", uselist=False, lazy=True))

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} order_id={self.order_id} status={self.payment_status}>"
