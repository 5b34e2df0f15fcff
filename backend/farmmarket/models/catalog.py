from __future__ import annotations

from ..extensions import db

PRODUCT_AVAILABLE = "available"
PRODUCT_ORDERED = "ordered"
PRODUCT_SOLD = "sold"
PRODUCT_STATUSES = (PRODUCT_AVAILABLE, PRODUCT_ORDERED, PRODUCT_SOLD)


class Product(db.Model):
    """
    Produce listing owned by one farmer.

    quantity is the stock still available for new orders. It is only ever
    changed through stock_service (reservations) or an explicit stock update
    by the owner, and the CHECK keeps it from going negative.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_nonnegative"),
        db.CheckConstraint("price > 0", name="ck_products_price_positive"),
        db.CheckConstraint("status IN ('available', 'ordered', 'sold')", name="ck_products_status"),
        db.Index("ix_products_farmer_status", "farmer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    farmer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit = db.Column(db.String(20), nullable=False, default="kg")
    price = db.Column(db.Numeric(12, 2), nullable=False)
    harvest_date = db.Column(db.Date, nullable=True)
    image_url = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=PRODUCT_AVAILABLE, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    farmer = db.relationship("User", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} qty={self.quantity} status={self.status}>"
