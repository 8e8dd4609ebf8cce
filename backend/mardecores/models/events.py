from __future__ import annotations

from ..extensions import db
from ..money import to_json
from ..time_utils import to_utc_z, utcnow


class ReconciliationEvent(db.Model):
    """
    Notification outbox.

    Written in the same DB transaction as the ledger change it describes,
    delivered after commit. event_id is the idempotency key subscribers
    dedupe on; delivered_at marks at-least-once delivery as done.
    """
    __tablename__ = "reconciliation_events"
    __table_args__ = (
        db.Index("ix_reconciliation_events_pending", "delivered_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(36), nullable=False, unique=True)
    event_type = db.Column(db.String(48), nullable=False, index=True)
    account_id = db.Column(db.Integer, nullable=True, index=True)
    order_id = db.Column(db.Integer, nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=True)
    new_status = db.Column(db.String(16), nullable=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(255), nullable=True)

    def to_message(self) -> dict:
        """Wire shape sent to subscribers."""
        return {
            "event_id": self.event_id,
            "type": self.event_type,
            "account_id": self.account_id,
            "order_id": self.order_id,
            "amount": to_json(self.amount),
            "new_status": self.new_status,
            "data": self.payload or {},
            "occurred_at": to_utc_z(self.created_at),
        }

    def to_dict(self) -> dict:
        data = self.to_message()
        data.update({
            "id": self.id,
            "delivered_at": to_utc_z(self.delivered_at),
            "attempts": self.attempts,
            "last_error": self.last_error,
        })
        return data
