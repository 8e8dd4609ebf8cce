# Overview: Persistence access for orders, credit accounts, payments and transactions.

"""
Ledger Store

Read accessors raise NotFoundError when an id does not resolve. Writes only
stage rows in the session (add + flush); the reconciliation engine decides
when a unit of work commits, so account + payment + transaction + order
status always land in one DB transaction.

Hot rows carry a version_id column: a concurrent writer that commits first
makes our flush fail with StaleDataError, which run_with_retry turns into a
retry and, if it keeps happening, a ConflictError.
"""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import (
    CreditAccount,
    CreditPayment,
    Customer,
    FinancialTransaction,
    Order,
    Product,
)
from ..models.credit import ACCOUNT_STATUS_ACTIVE, CREDIT_PAYMENT_STATUS_COMPLETED
from ..models.orders import ORDER_STATUS_CANCELLED
from .concurrency import lock_for_update


def _get(model, entity_id, label: str, for_update: bool = False):
    if entity_id is None:
        raise NotFoundError(f"{label} id is required")
    query = db.session.query(model).filter_by(id=entity_id)
    if for_update:
        query = lock_for_update(query)
    obj = query.first()
    if obj is None:
        raise NotFoundError(f"{label} {entity_id} not found")
    return obj


# =============================================================================
# READS
# =============================================================================

def get_order(order_id: int, *, for_update: bool = False) -> Order:
    return _get(Order, order_id, "Order", for_update)


def get_customer(customer_id: int) -> Customer:
    return _get(Customer, customer_id, "Customer")


def get_product(product_id: int, *, for_update: bool = False) -> Product:
    return _get(Product, product_id, "Product", for_update)


def get_credit_account(
    account_id: int | None = None,
    *,
    customer_id: int | None = None,
    for_update: bool = False,
) -> CreditAccount:
    """
    Resolve an account by id, or the customer's active account.

    With customer_id and several active accounts (legacy data), the oldest
    one wins.
    """
    if account_id is not None:
        return _get(CreditAccount, account_id, "Credit account", for_update)
    if customer_id is None:
        raise NotFoundError("account_id or customer_id is required")

    account = find_active_account(customer_id, for_update=for_update)
    if account is None:
        raise NotFoundError(f"No active credit account for customer {customer_id}")
    return account


def find_active_account(customer_id: int, *, for_update: bool = False) -> CreditAccount | None:
    query = (
        db.session.query(CreditAccount)
        .filter_by(customer_id=customer_id, status=ACCOUNT_STATUS_ACTIVE)
        .order_by(CreditAccount.id)
    )
    if for_update:
        query = lock_for_update(query)
    return query.first()


def list_accounts(*, status: str | None = None, customer_id: int | None = None) -> list[CreditAccount]:
    query = db.session.query(CreditAccount)
    if status:
        query = query.filter_by(status=status)
    if customer_id:
        query = query.filter_by(customer_id=customer_id)
    return query.order_by(CreditAccount.id).all()


def list_payments(account_id: int, *, completed_only: bool = True) -> list[CreditPayment]:
    _get(CreditAccount, account_id, "Credit account")
    query = db.session.query(CreditPayment).filter_by(credit_account_id=account_id)
    if completed_only:
        query = query.filter_by(status=CREDIT_PAYMENT_STATUS_COMPLETED)
    return query.order_by(CreditPayment.id).all()


def find_payment_by_key(idempotency_key: str) -> CreditPayment | None:
    if not idempotency_key:
        return None
    return db.session.query(CreditPayment).filter_by(idempotency_key=idempotency_key).first()


def linked_orders(account_id: int, *, include_cancelled: bool = False) -> list[Order]:
    query = db.session.query(Order).filter_by(credit_account_id=account_id)
    if not include_cancelled:
        query = query.filter(Order.status != ORDER_STATUS_CANCELLED)
    return query.order_by(Order.id).all()


def get_transaction(transaction_id: int) -> FinancialTransaction:
    return _get(FinancialTransaction, transaction_id, "Financial transaction")


def transactions_for_payment(payment_id: int) -> list[FinancialTransaction]:
    return (
        db.session.query(FinancialTransaction)
        .filter_by(credit_payment_id=payment_id)
        .order_by(FinancialTransaction.id)
        .all()
    )


def transactions_for_order(order_id: int) -> list[FinancialTransaction]:
    return (
        db.session.query(FinancialTransaction)
        .filter_by(order_id=order_id)
        .order_by(FinancialTransaction.id)
        .all()
    )


# =============================================================================
# WRITES (staged; committed by the caller's unit of work)
# =============================================================================

def _save(obj):
    db.session.add(obj)
    db.session.flush()
    return obj


def save_order(order: Order) -> Order:
    return _save(order)


def save_credit_account(account: CreditAccount) -> CreditAccount:
    return _save(account)


def save_payment(payment: CreditPayment) -> CreditPayment:
    return _save(payment)


def save_transaction(transaction: FinancialTransaction) -> FinancialTransaction:
    return _save(transaction)


def save_customer(customer: Customer) -> Customer:
    return _save(customer)


@contextmanager
def atomic():
    """
    One unit of work: commit on success, roll back on any failure.

    A stale optimistic version at commit time surfaces as ConflictError.
    """
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError("Ledger row was modified concurrently; retry the operation") from exc
    except Exception:
        db.session.rollback()
        raise
