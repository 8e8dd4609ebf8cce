from __future__ import annotations

from ..extensions import db
from ..money import to_json
from ..time_utils import to_utc_z, utcnow

TRANSACTION_TYPE_INCOME = "income"
TRANSACTION_TYPE_EXPENSE = "expense"

TRANSACTION_STATUS_PENDING = "pending"
TRANSACTION_STATUS_COMPLETED = "completed"
TRANSACTION_STATUS_CANCELLED = "cancelled"

CATEGORY_CREDIT = "Crediário"
CATEGORY_SALES = "Vendas"
CATEGORY_REVERSAL = "Estorno"

SOURCE_CREDIT_WEBHOOK = "credit_webhook"
SOURCE_ORDER_WEBHOOK = "order_webhook"
SOURCE_SALE_REVERSAL = "sale_reversal"
SOURCE_AUDIT_FIX = "audit_fix"


class FinancialTransaction(db.Model):
    """
    Bookkeeping entry derived from orders and credit payments.

    System-generated rows are never edited by staff; corrections are new
    rows (or a status change to cancelled by the audit fixer).
    """
    __tablename__ = "financial_transactions"
    __table_args__ = (
        db.Index("ix_transactions_type", "type"),
        db.Index("ix_transactions_status", "status"),
        db.Index("ix_transactions_date", "date"),
        db.Index("ix_transactions_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False)
    category = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TRANSACTION_STATUS_COMPLETED)
    payment_method = db.Column(db.String(16), nullable=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    credit_payment_id = db.Column(db.Integer, db.ForeignKey("credit_payments.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    metadata_json = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def signed_amount(self):
        """Income positive, expense negative."""
        if self.type == TRANSACTION_TYPE_EXPENSE:
            return -self.amount
        return self.amount

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "description": self.description,
            "amount": to_json(self.amount),
            "status": self.status,
            "payment_method": self.payment_method,
            "date": to_utc_z(self.date),
            "credit_payment_id": self.credit_payment_id,
            "order_id": self.order_id,
            "metadata": self.metadata_json or {},
            "created_at": to_utc_z(self.created_at),
        }
