from __future__ import annotations

from ..extensions import db
from ..money import to_json
from ..time_utils import to_utc_z, utcnow

ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_REFUNDED = "refunded"

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_PIX = "pix"
PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_CREDIT = "credit"

VALID_PAYMENT_METHODS = [
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_PIX,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_CREDIT,
]

# Settled at confirmation time (no credit account involved)
IMMEDIATE_PAYMENT_METHODS = {PAYMENT_METHOD_CASH, PAYMENT_METHOD_PIX, PAYMENT_METHOD_CARD}


class Order(db.Model):
    """
    Purchase record.

    LIFECYCLE:
    - pending -> completed (full settlement) or cancelled (sale reversal)
    - completed -> pending when an operator reopens it (engine operation)

    Credit orders point at their CreditAccount through credit_account_id,
    set on confirmation and rewritten on transfer.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status", "status"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(16), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    credit_account_id = db.Column(db.Integer, db.ForeignKey("credit_accounts.id"), nullable=True, index=True)

    total = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING)
    notes = db.Column(db.Text, nullable=True)

    # Stock is deducted exactly once per order, on first confirmation
    stock_applied = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    credit_account = db.relationship("CreditAccount", backref=db.backref("orders", lazy=True))
    items = db.relationship("OrderItem", backref="order", lazy=True, cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_credit(self) -> bool:
        return self.payment_method == PAYMENT_METHOD_CREDIT

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "credit_account_id": self.credit_account_id,
            "total": to_json(self.total),
            "payment_method": self.payment_method,
            "status": self.status,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line item; unit price is captured at order time."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": to_json(self.unit_price),
            "total_price": to_json(self.total_price),
        }
