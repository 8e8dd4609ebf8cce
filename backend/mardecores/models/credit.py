from __future__ import annotations

from ..extensions import db
from ..money import to_json
from ..time_utils import to_utc_z, utcnow

ACCOUNT_STATUS_ACTIVE = "active"
ACCOUNT_STATUS_PAID_OFF = "paid_off"

CREDIT_PAYMENT_STATUS_COMPLETED = "completed"

# Compensating payment methods written by the engine (never entered by staff)
CREDIT_METHOD_REVERSAL = "reversal"
CREDIT_METHOD_TRANSFER_IN = "transfer_in"
CREDIT_METHOD_TRANSFER_OUT = "transfer_out"

VALID_CREDIT_PAYMENT_METHODS = ["cash", "pix", "card"]

PAYMENT_FREQUENCY_WEEKLY = "weekly"
PAYMENT_FREQUENCY_MONTHLY = "monthly"
VALID_PAYMENT_FREQUENCIES = [PAYMENT_FREQUENCY_WEEKLY, PAYMENT_FREQUENCY_MONTHLY]


class CreditAccount(db.Model):
    """
    Running crediário balance for one customer.

    INVARIANTS (kept by the reconciliation engine, checked by the audit):
    - remaining_amount == max(0, total_amount - paid_amount)
    - paid_amount == sum(completed credit_payments.amount)
    - status == paid_off <=> remaining_amount == 0 (closed_at set)
    """
    __tablename__ = "credit_accounts"
    __table_args__ = (
        db.Index("ix_credit_accounts_customer_status", "customer_id", "status"),
        db.Index("ix_credit_accounts_next_payment", "next_payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_number = db.Column(db.String(16), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    remaining_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=ACCOUNT_STATUS_ACTIVE, index=True)

    installments = db.Column(db.Integer, nullable=False, default=1)
    payment_frequency = db.Column(db.String(16), nullable=False, default=PAYMENT_FREQUENCY_MONTHLY)
    next_payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("credit_accounts", lazy=True))
    payments = db.relationship(
        "CreditPayment",
        backref="credit_account",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="CreditPayment.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "account_number": self.account_number,
            "customer_id": self.customer_id,
            "total_amount": to_json(self.total_amount),
            "paid_amount": to_json(self.paid_amount),
            "remaining_amount": to_json(self.remaining_amount),
            "status": self.status,
            "installments": self.installments,
            "payment_frequency": self.payment_frequency,
            "next_payment_date": to_utc_z(self.next_payment_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "closed_at": to_utc_z(self.closed_at),
            "version_id": self.version_id,
        }
        if include_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class CreditPayment(db.Model):
    """
    Append-only payment line on a credit account.

    Negative amounts are compensating lines (reversal, transfer_out);
    they keep paid_amount equal to the sum of the ledger.
    """
    __tablename__ = "credit_payments"
    __table_args__ = (
        db.Index("ix_credit_payments_account_created", "credit_account_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_account_id = db.Column(db.Integer, db.ForeignKey("credit_accounts.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=CREDIT_PAYMENT_STATUS_COMPLETED)
    installment_number = db.Column(db.Integer, nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_account_id": self.credit_account_id,
            "amount": to_json(self.amount),
            "payment_method": self.payment_method,
            "notes": self.notes,
            "status": self.status,
            "installment_number": self.installment_number,
            "idempotency_key": self.idempotency_key,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
        }
