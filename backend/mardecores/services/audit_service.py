# Overview: Sync/Audit reporter; detects ledger drift and heals it through engine primitives.

"""
Sync/Audit Reporter

WHY: Balances, order status and bookkeeping can drift (legacy rows, manual
SQL, crashes between writes in older code). This sweep recomputes what the
stored values should be from the append-only payment ledger and reports
each mismatch as a Divergence. auto_fix brings the stored state back in
line, one credit account at a time under the same per-account lock the
engine uses, so it never races a live payment.

CHECKS (per credit account):
- paid_amount      == sum(completed credit_payments.amount)
- total_amount     == sum(linked non-cancelled orders.total)
- remaining_amount == max(0, total - ledger paid)
- status           == paid_off <=> expected remaining == 0
- linked orders: completed/paid when paid off, pending/pending otherwise
- every completed credit_payment has exactly one live financial
  transaction with the same signed amount

CHECKS (global sweep only):
- live transactions pointing at a missing or non-completed payment
- completed cash/pix/card orders without a sale income transaction

Corrections append or cancel rows dated now; past periods are never
rewritten.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..models import CreditAccount, CreditPayment, FinancialTransaction, Order
from ..models.credit import ACCOUNT_STATUS_ACTIVE, ACCOUNT_STATUS_PAID_OFF, CREDIT_PAYMENT_STATUS_COMPLETED
from ..models.finance import (
    CATEGORY_SALES,
    SOURCE_AUDIT_FIX,
    TRANSACTION_STATUS_CANCELLED,
    TRANSACTION_TYPE_INCOME,
)
from ..models.orders import (
    IMMEDIATE_PAYMENT_METHODS,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
)
from ..money import compare, is_zero, non_negative, to_json, to_money, total_of
from ..time_utils import utcnow
from . import ledger_store, notification_service
from .concurrency import account_locks, run_with_retry
from .order_service import record_sale_income
from .reconciliation_service import apply_account_state, mirror_payment

ENTITY_CREDIT_ACCOUNT = "credit_account"
ENTITY_ORDER = "order"
ENTITY_CREDIT_PAYMENT = "credit_payment"
ENTITY_FINANCIAL_TRANSACTION = "financial_transaction"


@dataclass
class Divergence:
    entity_type: str
    entity_id: int
    field: str
    expected: object
    actual: object
    account_id: int | None = None

    @property
    def key(self) -> tuple:
        return (self.entity_type, self.entity_id, self.field)

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "field": self.field,
            "expected": self.expected,
            "actual": self.actual,
            "account_id": self.account_id,
        }


@dataclass
class AutoFixResult:
    fixed: int = 0
    remaining: list[Divergence] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"fixed": self.fixed, "remaining": [d.to_dict() for d in self.remaining]}


@dataclass
class SyncReport:
    started_at: object
    finished_at: object = None
    divergences: list[Divergence] = field(default_factory=list)
    fixed: int = 0
    remaining: list[Divergence] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "divergences": [d.to_dict() for d in self.divergences],
            "fixed": self.fixed,
            "remaining": [d.to_dict() for d in self.remaining],
        }


def _money(value):
    return to_json(value) if value is not None else None


def _live_transactions(payment_id: int) -> list[FinancialTransaction]:
    return [
        t for t in ledger_store.transactions_for_payment(payment_id)
        if t.status != TRANSACTION_STATUS_CANCELLED
    ]


# =============================================================================
# AUDIT (read-only)
# =============================================================================

def _expected_account_state(account: CreditAccount) -> dict:
    payments = ledger_store.list_payments(account.id)
    ledger_paid = total_of(p.amount for p in payments)

    all_orders = ledger_store.linked_orders(account.id, include_cancelled=True)
    live_orders = [o for o in all_orders if o.status != ORDER_STATUS_CANCELLED]
    # Accounts without any linked order (legacy/manual) keep their stored total
    total = total_of(o.total for o in live_orders) if all_orders else to_money(account.total_amount)

    remaining = non_negative(total - ledger_paid)
    paid_off = is_zero(remaining)
    return {
        "payments": payments,
        "orders": live_orders,
        "paid": ledger_paid,
        "total": total,
        "remaining": remaining,
        "status": ACCOUNT_STATUS_PAID_OFF if paid_off else ACCOUNT_STATUS_ACTIVE,
        "order_state": (
            (ORDER_STATUS_COMPLETED, PAYMENT_STATUS_PAID) if paid_off
            else (ORDER_STATUS_PENDING, PAYMENT_STATUS_PENDING)
        ),
    }


def audit_account(account: CreditAccount) -> list[Divergence]:
    found: list[Divergence] = []
    expected = _expected_account_state(account)

    def diverge(entity_type, entity_id, name, exp, act):
        found.append(Divergence(entity_type, entity_id, name, exp, act, account_id=account.id))

    for name in ("paid", "total", "remaining"):
        stored = getattr(account, f"{name}_amount")
        if compare(stored, expected[name]) != 0:
            diverge(ENTITY_CREDIT_ACCOUNT, account.id, f"{name}_amount", _money(expected[name]), _money(stored))
    if account.status != expected["status"]:
        diverge(ENTITY_CREDIT_ACCOUNT, account.id, "status", expected["status"], account.status)

    exp_status, exp_payment_status = expected["order_state"]
    for order in expected["orders"]:
        if order.status != exp_status:
            diverge(ENTITY_ORDER, order.id, "status", exp_status, order.status)
        if order.payment_status != exp_payment_status:
            diverge(ENTITY_ORDER, order.id, "payment_status", exp_payment_status, order.payment_status)

    for payment in expected["payments"]:
        txns = _live_transactions(payment.id)
        if len(txns) != 1:
            diverge(ENTITY_CREDIT_PAYMENT, payment.id, "transaction_count", 1, len(txns))
        elif compare(txns[0].signed_amount, payment.amount) != 0:
            diverge(
                ENTITY_CREDIT_PAYMENT, payment.id, "transaction_amount",
                _money(payment.amount), _money(txns[0].signed_amount),
            )
    return found


def _orphan_transactions() -> list[Divergence]:
    found = []
    rows = (
        db.session.query(FinancialTransaction, CreditPayment)
        .outerjoin(CreditPayment, FinancialTransaction.credit_payment_id == CreditPayment.id)
        .filter(
            FinancialTransaction.credit_payment_id.isnot(None),
            FinancialTransaction.status != TRANSACTION_STATUS_CANCELLED,
        )
        .order_by(FinancialTransaction.id)
        .all()
    )
    for txn, payment in rows:
        if payment is None or payment.status != CREDIT_PAYMENT_STATUS_COMPLETED:
            found.append(Divergence(
                ENTITY_FINANCIAL_TRANSACTION, txn.id, "credit_payment_id",
                None, txn.credit_payment_id,
                account_id=payment.credit_account_id if payment else None,
            ))
    return found


def _unbooked_sales() -> list[Divergence]:
    found = []
    orders = (
        db.session.query(Order)
        .filter(
            Order.status == ORDER_STATUS_COMPLETED,
            Order.payment_method.in_(sorted(IMMEDIATE_PAYMENT_METHODS)),
        )
        .order_by(Order.id)
        .all()
    )
    for order in orders:
        booked = [
            t for t in ledger_store.transactions_for_order(order.id)
            if t.category == CATEGORY_SALES
            and t.type == TRANSACTION_TYPE_INCOME
            and t.status != TRANSACTION_STATUS_CANCELLED
        ]
        if not booked:
            found.append(Divergence(ENTITY_ORDER, order.id, "sale_transaction", _money(order.total), None))
    return found


def _scope_ids(scope) -> list[int] | None:
    if scope is None:
        return None
    if isinstance(scope, int):
        return [scope]
    return [int(s) for s in scope]


def run_audit(scope: int | Iterable[int] | None = None) -> list[Divergence]:
    """
    Sweep credit accounts and report divergences.

    Args:
        scope: an account id or ids; None sweeps everything, including
            orphan transactions and cash sales without income.
    """
    account_ids = _scope_ids(scope)
    query = db.session.query(CreditAccount).order_by(CreditAccount.id)
    if account_ids is not None:
        query = query.filter(CreditAccount.id.in_(account_ids))

    divergences: list[Divergence] = []
    for account in query.all():
        divergences.extend(audit_account(account))

    if account_ids is None:
        divergences.extend(_orphan_transactions())
        divergences.extend(_unbooked_sales())
    return divergences


# =============================================================================
# AUTO FIX
# =============================================================================

def _cancel_transaction(txn: FinancialTransaction, reason: str) -> None:
    txn.status = TRANSACTION_STATUS_CANCELLED
    metadata = dict(txn.metadata_json or {})
    metadata.update({"cancelled_by": SOURCE_AUDIT_FIX, "cancel_reason": reason})
    txn.metadata_json = metadata
    ledger_store.save_transaction(txn)


def _heal_account(account_id: int):
    def _op():
        account = ledger_store.get_credit_account(account_id, for_update=True)
        expected = _expected_account_state(account)
        before = {
            "paid_amount": _money(account.paid_amount),
            "total_amount": _money(account.total_amount),
            "status": account.status,
        }

        account.paid_amount = expected["paid"]
        account.total_amount = expected["total"]
        affected = apply_account_state(account)

        created = cancelled = 0
        for payment in expected["payments"]:
            txns = _live_transactions(payment.id)
            keep = next((t for t in txns if compare(t.signed_amount, payment.amount) == 0), None)
            for txn in txns:
                if txn is not keep:
                    _cancel_transaction(txn, "duplicate or wrong amount")
                    cancelled += 1
            if keep is None:
                mirror_payment(payment, account, source=SOURCE_AUDIT_FIX)
                created += 1

        event = notification_service.record_event(
            notification_service.EVENT_AUDIT_FIX,
            account_id=account.id,
            amount=account.remaining_amount,
            new_status=account.status,
            data={
                "before": before,
                "affected_order_ids": [o.id for o in affected],
                "transactions_created": created,
                "transactions_cancelled": cancelled,
            },
        )
        db.session.commit()
        return event

    with account_locks.hold(account_id):
        return run_with_retry(_op)


def _heal_orphan(transaction_id: int) -> None:
    def _op():
        txn = ledger_store.get_transaction(transaction_id)
        if txn.status != TRANSACTION_STATUS_CANCELLED:
            _cancel_transaction(txn, "payment missing or not completed")
        db.session.commit()

    run_with_retry(_op)


def _book_missing_sale(order_id: int) -> None:
    def _op():
        order = ledger_store.get_order(order_id, for_update=True)
        booked = [
            t for t in ledger_store.transactions_for_order(order.id)
            if t.category == CATEGORY_SALES and t.status != TRANSACTION_STATUS_CANCELLED
        ]
        if order.status == ORDER_STATUS_COMPLETED and not booked:
            record_sale_income(order, source=SOURCE_AUDIT_FIX)
        db.session.commit()

    run_with_retry(_op)


def auto_fix(divergences: list[Divergence]) -> AutoFixResult:
    """
    Bring stored state in line with the ledger for the given divergences.

    Account-level problems are healed as a whole account (balances, status,
    linked orders and payment mirrors) in one transaction per account.
    Returns how many of the given divergences are gone and which remain.
    """
    if not divergences:
        return AutoFixResult()

    account_ids = sorted({d.account_id for d in divergences if d.account_id is not None})
    events = []
    for account_id in account_ids:
        events.append(_heal_account(account_id))

    for d in divergences:
        if d.entity_type == ENTITY_FINANCIAL_TRANSACTION and d.field == "credit_payment_id":
            _heal_orphan(d.entity_id)
        elif d.entity_type == ENTITY_ORDER and d.field == "sale_transaction":
            _book_missing_sale(d.entity_id)

    notification_service.dispatch(events)

    global_sweep = any(d.account_id is None for d in divergences)
    after = run_audit(None if global_sweep else account_ids)
    wanted = {d.key for d in divergences}
    remaining = [d for d in after if d.key in wanted]
    return AutoFixResult(fixed=len(divergences) - len(remaining), remaining=remaining)


# =============================================================================
# SYNC JOB
# =============================================================================

def run_sync_job(*, fix: bool = True) -> SyncReport:
    """One pass of audit (+ auto fix). Logs a single summary line."""
    report = SyncReport(started_at=utcnow())
    report.divergences = run_audit()
    if fix and report.divergences:
        result = auto_fix(report.divergences)
        report.fixed = result.fixed
        report.remaining = result.remaining
    else:
        report.remaining = list(report.divergences)
    report.finished_at = utcnow()

    current_app.logger.info(
        "Ledger sync: %s divergence(s), %s fixed, %s remaining",
        len(report.divergences), report.fixed, len(report.remaining),
    )
    return report


def run_sync_loop(*, interval_minutes: int, iterations: int | None = None, fix: bool = True, sleep=time.sleep):
    """
    Repeat run_sync_job every interval.

    iterations=None runs until interrupted and keeps no reports (each run
    already logs its summary); a bounded run returns its reports.
    """
    reports = []
    count = 0
    while iterations is None or count < iterations:
        try:
            report = run_sync_job(fix=fix)
            if iterations is not None:
                reports.append(report)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Ledger sync run failed")
        count += 1
        if iterations is not None and count >= iterations:
            break
        sleep(interval_minutes * 60)
    return reports
