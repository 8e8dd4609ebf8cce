from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Next number per document type (ORDER, CREDIT_ACCOUNT).

    Incremented with a single UPDATE so concurrent allocations never
    hand out the same number.
    """
    __tablename__ = "document_sequences"

    document_type = db.Column(db.String(32), primary_key=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
