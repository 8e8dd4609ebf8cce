# Overview: Read-only financial views over the transaction ledger.

from __future__ import annotations

from datetime import datetime, timedelta

from ..errors import ValidationError
from ..extensions import db
from ..models import FinancialTransaction
from ..models.finance import (
    TRANSACTION_STATUS_CANCELLED,
    TRANSACTION_TYPE_EXPENSE,
    TRANSACTION_TYPE_INCOME,
)
from ..money import ZERO, to_json, to_money
from ..time_utils import parse_iso_date


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    """
    Inclusive window. A date-only end ("2026-03-31") covers the whole day.
    """
    try:
        start_dt = parse_iso_date(start)
        end_dt = parse_iso_date(end)
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {exc}")
    if end_dt is not None and len(end.strip()) == 10:
        end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must be before end")
    return start_dt, end_dt


def _window(query, start_dt, end_dt):
    if start_dt:
        query = query.filter(FinancialTransaction.date >= start_dt)
    if end_dt:
        query = query.filter(FinancialTransaction.date <= end_dt)
    return query


def list_transactions(
    *,
    start: str | None = None,
    end: str | None = None,
    type: str | None = None,
    category: str | None = None,
    include_cancelled: bool = False,
) -> list[FinancialTransaction]:
    start_dt, end_dt = _parse_range(start, end)
    query = _window(db.session.query(FinancialTransaction), start_dt, end_dt)
    if type:
        query = query.filter(FinancialTransaction.type == type)
    if category:
        query = query.filter(FinancialTransaction.category == category)
    if not include_cancelled:
        query = query.filter(FinancialTransaction.status != TRANSACTION_STATUS_CANCELLED)
    return query.order_by(FinancialTransaction.date.desc(), FinancialTransaction.id.desc()).all()


def financial_summary(*, start: str | None = None, end: str | None = None) -> dict:
    """
    Income, expense and net over non-cancelled transactions.

    Per-category totals are signed (income positive, expense negative), so
    a crediário reversal nets against the payments it offsets.
    """
    income = expense = ZERO
    by_category: dict[str, object] = {}
    count = 0
    for txn in list_transactions(start=start, end=end):
        amount = to_money(txn.amount)
        if txn.type == TRANSACTION_TYPE_INCOME:
            income += amount
        elif txn.type == TRANSACTION_TYPE_EXPENSE:
            expense += amount
        by_category[txn.category] = by_category.get(txn.category, ZERO) + to_money(txn.signed_amount)
        count += 1

    return {
        "start": start,
        "end": end,
        "income": to_json(income),
        "expense": to_json(expense),
        "net": to_json(income - expense),
        "transaction_count": count,
        "by_category": {k: to_json(v) for k, v in sorted(by_category.items())},
    }
