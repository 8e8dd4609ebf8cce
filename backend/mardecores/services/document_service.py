# Overview: Sequential human-facing numbers for orders and credit accounts.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..models.orders import PAYMENT_METHOD_CREDIT

SEQUENCE_ORDER = "ORDER"
SEQUENCE_CREDIT_ACCOUNT = "CREDIT_ACCOUNT"

ORDER_PREFIX_CASH = "PED"
ORDER_PREFIX_CREDIT = "CRE"
ACCOUNT_PREFIX = "CRE"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _allocate(document_type: str) -> int:
    """
    Atomically allocate the next number for a document type.

    Runs inside the caller's transaction; the UPDATE takes the row lock.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(*, document_type: str, prefix: str, pad: int = 4) -> str:
    number = _allocate(document_type)
    return f"{prefix}{str(number).zfill(pad)}"


def next_order_number(payment_method: str) -> str:
    """PED0001 for cash/pix/card, CRE0002 for credit; one shared counter."""
    prefix = ORDER_PREFIX_CREDIT if payment_method == PAYMENT_METHOD_CREDIT else ORDER_PREFIX_CASH
    return next_document_number(document_type=SEQUENCE_ORDER, prefix=prefix)


def next_account_number() -> str:
    return next_document_number(document_type=SEQUENCE_CREDIT_ACCOUNT, prefix=ACCOUNT_PREFIX)
