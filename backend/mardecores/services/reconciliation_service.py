# Overview: Credit ledger reconciliation engine; sole writer of balances and order status.

"""
Reconciliation Engine

WHY: An order's status, its credit account balance, the account's payment
ledger and the financial transactions must agree after every money event.
Every transition that touches more than one of them lives here and runs as
one DB transaction, serialized per credit account.

STATE MACHINE (per CreditAccount):
- active   (remaining_amount > 0)
- paid_off (remaining_amount == 0, closed_at set)

Credit order status follows its account: orders linked to a paid_off
account are completed/paid, orders linked to an active account are
pending/pending.

LEDGER RULES:
- paid_amount always equals the sum of completed credit_payments. Reversals
  and transfers append compensating lines (negative amounts) instead of
  editing history.
- Every credit payment line gets exactly one financial transaction with the
  same signed amount, created in the same transaction. If it cannot be
  written, the payment is not written either.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from ..errors import (
    ConflictError,
    CrossAccountIntegrityError,
    IdempotencyKeyReuseError,
    InvalidAmountError,
    InvalidStateTransitionError,
    ValidationError,
)
from ..extensions import db
from ..models import CreditAccount, CreditPayment, FinancialTransaction, Order
from ..models.credit import (
    ACCOUNT_STATUS_ACTIVE,
    ACCOUNT_STATUS_PAID_OFF,
    CREDIT_METHOD_REVERSAL,
    CREDIT_METHOD_TRANSFER_IN,
    CREDIT_METHOD_TRANSFER_OUT,
    CREDIT_PAYMENT_STATUS_COMPLETED,
    PAYMENT_FREQUENCY_MONTHLY,
    PAYMENT_FREQUENCY_WEEKLY,
    VALID_CREDIT_PAYMENT_METHODS,
    VALID_PAYMENT_FREQUENCIES,
)
from ..models.finance import (
    CATEGORY_CREDIT,
    CATEGORY_REVERSAL,
    SOURCE_CREDIT_WEBHOOK,
    SOURCE_SALE_REVERSAL,
    TRANSACTION_STATUS_COMPLETED,
    TRANSACTION_TYPE_EXPENSE,
    TRANSACTION_TYPE_INCOME,
)
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_REFUNDED,
)
from ..money import (
    ZERO,
    compare,
    is_positive,
    is_zero,
    non_negative,
    prorate,
    to_json,
    to_money,
)
from ..time_utils import add_months, utcnow
from . import inventory_service, ledger_store, notification_service
from .concurrency import account_locks, run_with_retry
from .document_service import next_account_number


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class PaymentResult:
    payment: CreditPayment
    account: CreditAccount
    affected_orders: list[Order] = field(default_factory=list)
    transaction: FinancialTransaction | None = None
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "payment": self.payment.to_dict(),
            "account": self.account.to_dict(),
            "affected_orders": [o.to_dict() for o in self.affected_orders],
            "transaction": self.transaction.to_dict() if self.transaction else None,
            "replayed": self.replayed,
        }


@dataclass
class RevertResult:
    order: Order
    account: CreditAccount | None = None
    transaction: FinancialTransaction | None = None

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "account": self.account.to_dict() if self.account else None,
            "transaction": self.transaction.to_dict() if self.transaction else None,
        }


@dataclass
class ReversalResult:
    order: Order
    transaction: FinancialTransaction | None = None
    account: CreditAccount | None = None

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "transaction": self.transaction.to_dict() if self.transaction else None,
            "account": self.account.to_dict() if self.account else None,
        }


@dataclass
class TransferResult:
    order: Order
    source_account: CreditAccount | None = None
    dest_account: CreditAccount | None = None

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "source_account": self.source_account.to_dict() if self.source_account else None,
            "dest_account": self.dest_account.to_dict() if self.dest_account else None,
        }


# =============================================================================
# ENGINE PRIMITIVES (shared with order_service and audit_service)
# =============================================================================

def _advance(base, frequency: str):
    if frequency == PAYMENT_FREQUENCY_WEEKLY:
        return base + timedelta(days=7)
    return add_months(base, 1)


def _next_payment_date(account: CreditAccount, now):
    return _advance(account.next_payment_date or now, account.payment_frequency)


def open_account(
    customer_id: int,
    *,
    notes: str | None = None,
    installments: int = 1,
    frequency: str = PAYMENT_FREQUENCY_MONTHLY,
) -> CreditAccount:
    """Stage a new active account (CRE0001...) for a customer."""
    ledger_store.get_customer(customer_id)
    now = utcnow()
    account = CreditAccount(
        account_number=next_account_number(),
        customer_id=customer_id,
        total_amount=ZERO,
        paid_amount=ZERO,
        remaining_amount=ZERO,
        status=ACCOUNT_STATUS_ACTIVE,
        installments=installments,
        payment_frequency=frequency,
        next_payment_date=_advance(now, frequency),
        notes=notes,
    )
    return ledger_store.save_credit_account(account)


def open_manual_account(
    customer_id: int,
    total_amount,
    *,
    installments: int = 1,
    frequency: str = PAYMENT_FREQUENCY_MONTHLY,
    next_payment_date=None,
    notes: str | None = None,
) -> CreditAccount:
    """
    Admin entry: open an account for a balance that did not come from an
    order (a debt carried over from the paper notebook, for instance).

    The customer must not already have an active account; credit orders
    accumulate into that one instead.

    Raises:
        NotFoundError, InvalidAmountError, ValidationError,
        InvalidStateTransitionError
    """
    total = to_money(total_amount)
    if not is_positive(total):
        raise InvalidAmountError("Opening balance must be positive")
    if isinstance(installments, bool) or not isinstance(installments, int) or installments < 1:
        raise ValidationError("Installments must be a positive integer")
    if frequency not in VALID_PAYMENT_FREQUENCIES:
        raise ValidationError(
            f"Invalid payment frequency: {frequency}. Must be one of {VALID_PAYMENT_FREQUENCIES}"
        )
    ledger_store.get_customer(customer_id)

    def _op():
        if ledger_store.find_active_account(customer_id, for_update=True) is not None:
            raise InvalidStateTransitionError(
                f"Customer {customer_id} already has an active credit account"
            )
        account = open_account(customer_id, notes=notes, installments=installments, frequency=frequency)
        if next_payment_date is not None:
            account.next_payment_date = next_payment_date
        account.total_amount = total
        apply_account_state(account)

        event = notification_service.record_event(
            notification_service.EVENT_ACCOUNT_OPENED,
            account_id=account.id,
            amount=total,
            new_status=account.status,
            data={
                "account_number": account.account_number,
                "customer_id": customer_id,
                "installments": installments,
                "payment_frequency": frequency,
            },
        )
        db.session.commit()
        return account, event

    with account_locks.hold(customers=[customer_id]):
        account, event = run_with_retry(_op)

    notification_service.dispatch([event])
    return account


def apply_account_state(account: CreditAccount, *, now=None) -> list[Order]:
    """
    Recompute remaining/status from total and paid, and align linked orders.

    Returns the orders whose status changed.
    """
    now = now or utcnow()
    total = to_money(account.total_amount)
    paid = to_money(account.paid_amount)
    account.remaining_amount = non_negative(total - paid)

    if is_zero(account.remaining_amount):
        if account.status != ACCOUNT_STATUS_PAID_OFF or account.closed_at is None:
            account.status = ACCOUNT_STATUS_PAID_OFF
            account.closed_at = account.closed_at or now
        account.next_payment_date = None
        target = (ORDER_STATUS_COMPLETED, PAYMENT_STATUS_PAID)
    else:
        if account.status != ACCOUNT_STATUS_ACTIVE:
            account.status = ACCOUNT_STATUS_ACTIVE
            account.next_payment_date = account.next_payment_date or _advance(now, account.payment_frequency)
        account.closed_at = None
        target = (ORDER_STATUS_PENDING, PAYMENT_STATUS_PENDING)

    changed = []
    for order in ledger_store.linked_orders(account.id):
        if (order.status, order.payment_status) == target:
            continue
        order.status, order.payment_status = target
        order.completed_at = now if target[0] == ORDER_STATUS_COMPLETED else None
        changed.append(order)

    ledger_store.save_credit_account(account)
    return changed


def mirror_payment(
    payment: CreditPayment,
    account: CreditAccount,
    *,
    source: str = SOURCE_CREDIT_WEBHOOK,
    description: str | None = None,
) -> FinancialTransaction:
    """
    Create the financial transaction for a credit payment line.

    Positive lines are income, compensating (negative) lines are expense.
    """
    amount = to_money(payment.amount)
    is_income = amount >= 0
    txn = FinancialTransaction(
        type=TRANSACTION_TYPE_INCOME if is_income else TRANSACTION_TYPE_EXPENSE,
        category=CATEGORY_CREDIT,
        description=description or f"Pagamento crediário - Conta {account.account_number}",
        amount=abs(amount),
        status=TRANSACTION_STATUS_COMPLETED,
        payment_method=payment.payment_method if payment.payment_method in VALID_CREDIT_PAYMENT_METHODS else None,
        credit_payment_id=payment.id,
        order_id=payment.order_id,
        metadata_json={
            "source": source,
            "credit_account_id": account.id,
            "account_number": account.account_number,
            "customer_id": account.customer_id,
            "credit_payment_id": payment.id,
            "order_id": payment.order_id,
        },
    )
    return ledger_store.save_transaction(txn)


def append_ledger_line(
    account: CreditAccount,
    amount,
    method: str,
    *,
    notes: str | None = None,
    order_id: int | None = None,
    idempotency_key: str | None = None,
    description: str | None = None,
) -> tuple[CreditPayment, FinancialTransaction]:
    """Append a payment line, bump paid_amount and mirror it, all staged."""
    amount = to_money(amount)
    installment_number = None
    if amount > 0 and method in VALID_CREDIT_PAYMENT_METHODS:
        previous = (
            db.session.query(CreditPayment)
            .filter(
                CreditPayment.credit_account_id == account.id,
                CreditPayment.amount > 0,
                CreditPayment.payment_method.in_(VALID_CREDIT_PAYMENT_METHODS),
            )
            .count()
        )
        installment_number = previous + 1

    payment = CreditPayment(
        credit_account_id=account.id,
        amount=amount,
        payment_method=method,
        notes=notes,
        status=CREDIT_PAYMENT_STATUS_COMPLETED,
        installment_number=installment_number,
        idempotency_key=idempotency_key,
        order_id=order_id,
    )
    ledger_store.save_payment(payment)
    account.paid_amount = to_money(account.paid_amount) + amount
    txn = mirror_payment(payment, account, description=description)
    return payment, txn


def _reversal_expense(order: Order, amount, *, description: str, reason: str | None) -> FinancialTransaction:
    txn = FinancialTransaction(
        type=TRANSACTION_TYPE_EXPENSE,
        category=CATEGORY_REVERSAL,
        description=description,
        amount=to_money(amount),
        status=TRANSACTION_STATUS_COMPLETED,
        payment_method=order.payment_method,
        order_id=order.id,
        metadata_json={
            "source": SOURCE_SALE_REVERSAL,
            "order_id": order.id,
            "order_number": order.order_number,
            "customer_id": order.customer_id,
            "reason": reason,
        },
    )
    return ledger_store.save_transaction(txn)


# =============================================================================
# RECORD PAYMENT
# =============================================================================

def _replay(idempotency_key: str | None, account_id: int, amount) -> PaymentResult | None:
    existing = ledger_store.find_payment_by_key(idempotency_key)
    if existing is None:
        return None
    # compare() is epsilon-aware, so a clamped final payment still matches
    if existing.credit_account_id != account_id or compare(existing.amount, amount) != 0:
        raise IdempotencyKeyReuseError(
            f"Idempotency key {idempotency_key!r} was already used for a different payment"
        )
    account = ledger_store.get_credit_account(existing.credit_account_id)
    txns = ledger_store.transactions_for_payment(existing.id)
    return PaymentResult(
        payment=existing,
        account=account,
        affected_orders=[],
        transaction=txns[0] if txns else None,
        replayed=True,
    )


def record_payment(
    account_id: int,
    amount,
    method: str,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> PaymentResult:
    """
    Apply a customer payment to a credit account.

    Steps (one DB transaction, account lock held):
    1. Validate 0 < amount <= remaining_amount + epsilon
    2. paid_amount += amount; remaining = max(0, total - paid)
    3. Append the CreditPayment line and its FinancialTransaction
    4. On remaining == 0: account paid_off, linked orders completed/paid
    5. Stage a credit_payment event, commit, then notify

    Replaying the same idempotency_key returns the original result without
    touching the ledger.

    Raises:
        NotFoundError, InvalidAmountError, ValidationError,
        IdempotencyKeyReuseError, ConflictError
    """
    amount = to_money(amount)
    if not is_positive(amount):
        raise InvalidAmountError("Payment amount must be positive")
    if method not in VALID_CREDIT_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}. Must be one of {VALID_CREDIT_PAYMENT_METHODS}"
        )
    idempotency_key = (idempotency_key or "").strip() or None

    replayed = _replay(idempotency_key, account_id, amount)
    if replayed:
        return replayed

    def _op():
        replay = _replay(idempotency_key, account_id, amount)
        if replay:
            return replay, None

        account = ledger_store.get_credit_account(account_id, for_update=True)
        remaining = to_money(account.remaining_amount)
        if account.status == ACCOUNT_STATUS_PAID_OFF or is_zero(remaining):
            raise InvalidAmountError(f"Credit account {account.account_number} has no remaining balance")
        if compare(amount, remaining) > 0:
            raise InvalidAmountError(
                f"Payment {amount} exceeds remaining balance {remaining} on account {account.account_number}"
            )

        applied = min(amount, remaining)
        payment, txn = append_ledger_line(
            account,
            applied,
            method,
            notes=notes,
            idempotency_key=idempotency_key,
        )
        now = utcnow()
        affected = apply_account_state(account, now=now)
        if account.status == ACCOUNT_STATUS_ACTIVE:
            account.next_payment_date = _next_payment_date(account, now)

        event = notification_service.record_event(
            notification_service.EVENT_CREDIT_PAYMENT,
            account_id=account.id,
            amount=applied,
            new_status=account.status,
            data={
                "payment_id": payment.id,
                "transaction_id": txn.id,
                "remaining_amount": to_json(account.remaining_amount),
                "affected_order_ids": [o.id for o in affected],
            },
        )
        db.session.commit()
        return PaymentResult(payment=payment, account=account, affected_orders=affected, transaction=txn), event

    with account_locks.hold(account_id):
        try:
            result, event = run_with_retry(_op)
        except IntegrityError:
            # Lost a race on the idempotency key against another process
            replay = _replay(idempotency_key, account_id, amount)
            if replay:
                return replay
            raise ConflictError("Payment could not be recorded; retry the operation")

    notification_service.dispatch([event])
    return result


# =============================================================================
# REVERT ORDER TO PENDING
# =============================================================================

def revert_order_to_pending(order_id: int) -> RevertResult:
    """
    Reopen a completed order.

    Credit orders: paid_amount drops by this order's total (compensating
    reversal line + mirrored expense), the account reopens to active with
    closed_at cleared, and its linked orders go back to pending.

    Cash/pix/card orders: the order returns to pending/pending and an
    offsetting expense for the sale amount is booked.
    """
    account_id = ledger_store.get_order(order_id).credit_account_id

    def _op():
        order = ledger_store.get_order(order_id, for_update=True)
        if order.credit_account_id != account_id:
            raise ConflictError(f"Order {order.order_number} moved to another account; retry")
        if order.status != ORDER_STATUS_COMPLETED:
            raise InvalidStateTransitionError(
                f"Only completed orders can be reverted. Order {order.order_number} is {order.status}"
            )

        now = utcnow()
        account = None
        txn = None
        if order.is_credit and account_id is not None:
            account = ledger_store.get_credit_account(account_id, for_update=True)
            decrement = min(to_money(order.total), to_money(account.paid_amount))
            if is_positive(decrement):
                _, txn = append_ledger_line(
                    account,
                    -decrement,
                    CREDIT_METHOD_REVERSAL,
                    notes=f"Pedido {order.order_number} reaberto",
                    order_id=order.id,
                    description=f"Estorno crediário - Pedido {order.order_number} reaberto",
                )
            apply_account_state(account, now=now)
        else:
            order.status = ORDER_STATUS_PENDING
            order.payment_status = PAYMENT_STATUS_PENDING
            order.completed_at = None
            if not order.is_credit:
                txn = _reversal_expense(
                    order,
                    order.total,
                    description=f"Reabertura do pedido {order.order_number}",
                    reason="order_reverted",
                )
            ledger_store.save_order(order)

        event = notification_service.record_event(
            notification_service.EVENT_ORDER_REVERTED,
            account_id=account.id if account else None,
            order_id=order.id,
            amount=order.total,
            new_status=order.status,
            data={"transaction_id": txn.id if txn else None},
        )
        db.session.commit()
        return RevertResult(order=order, account=account, transaction=txn), event

    with account_locks.hold(account_id):
        result, event = run_with_retry(_op)

    notification_service.dispatch([event])
    return result


# =============================================================================
# REVERSE SALE
# =============================================================================

def reverse_sale(order_id: int, reason: str) -> ReversalResult:
    """
    Cancel a sale: restore stock, book the offsetting expense, order -> cancelled.

    Credit orders leave their account (total_amount -= order.total); money
    already collected beyond the account's new total is refunded through a
    reversal line whose mirrored expense is the offsetting transaction.

    Irreversible; the operator confirms upstream.
    """
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to reverse a sale")
    account_id = ledger_store.get_order(order_id).credit_account_id

    def _op():
        order = ledger_store.get_order(order_id, for_update=True)
        if order.credit_account_id != account_id:
            raise ConflictError(f"Order {order.order_number} moved to another account; retry")
        if order.status == ORDER_STATUS_CANCELLED:
            raise InvalidStateTransitionError(f"Order {order.order_number} is already cancelled")

        now = utcnow()
        was_completed = order.status == ORDER_STATUS_COMPLETED
        inventory_service.restore_order_stock(order, reason="sale_reversal")

        account = None
        txn = None
        order.status = ORDER_STATUS_CANCELLED
        order.cancelled_at = now
        order.cancel_reason = reason.strip()[:255]
        order.completed_at = None

        if order.is_credit and account_id is not None:
            account = ledger_store.get_credit_account(account_id, for_update=True)
            new_total = non_negative(to_money(account.total_amount) - to_money(order.total))
            account.total_amount = new_total
            excess = to_money(account.paid_amount) - new_total
            if is_positive(excess):
                _, txn = append_ledger_line(
                    account,
                    -excess,
                    CREDIT_METHOD_REVERSAL,
                    notes=reason,
                    order_id=order.id,
                    description=f"Estorno venda - Pedido {order.order_number}",
                )
            ledger_store.save_order(order)
            apply_account_state(account, now=now)
        elif was_completed and not order.is_credit:
            txn = _reversal_expense(
                order,
                order.total,
                description=f"Estorno venda - Pedido {order.order_number}",
                reason=reason,
            )

        order.payment_status = PAYMENT_STATUS_REFUNDED if txn is not None else PAYMENT_STATUS_PENDING
        ledger_store.save_order(order)

        event = notification_service.record_event(
            notification_service.EVENT_SALE_REVERSED,
            account_id=account.id if account else None,
            order_id=order.id,
            amount=order.total,
            new_status=order.status,
            data={
                "reason": order.cancel_reason,
                "transaction_id": txn.id if txn else None,
                "refunded_amount": to_json(txn.amount) if txn else None,
            },
        )
        db.session.commit()
        return ReversalResult(order=order, transaction=txn, account=account), event

    with account_locks.hold(account_id):
        result, event = run_with_retry(_op)

    notification_service.dispatch([event])
    return result


# =============================================================================
# TRANSFER ORDER
# =============================================================================

def transfer_order(order_id: int, new_customer_id: int) -> TransferResult:
    """
    Reassign an order to another customer, moving its credit balance along.

    The moved share is order.total of total_amount and the proportional
    part of paid_amount (paid * order.total / total). Paid money moves as a
    transfer_out line on the source and a transfer_in line on the
    destination, each mirrored in the books.

    The destination customer is locked first (an account may be opened
    for them), then both accounts in ascending id order.

    Raises:
        CrossAccountIntegrityError: either account would go negative
    """
    order = ledger_store.get_order(order_id)
    ledger_store.get_customer(new_customer_id)
    if order.customer_id == new_customer_id:
        raise InvalidStateTransitionError(f"Order {order.order_number} already belongs to customer {new_customer_id}")
    if order.status == ORDER_STATUS_CANCELLED:
        raise InvalidStateTransitionError(f"Cancelled order {order.order_number} cannot be transferred")

    source_id = order.credit_account_id
    moves_balance = order.is_credit and source_id is not None
    dest_id = None

    def _op():
        order = ledger_store.get_order(order_id, for_update=True)
        if order.credit_account_id != source_id:
            raise ConflictError(f"Order {order.order_number} moved to another account; retry")

        previous_customer_id = order.customer_id
        order.customer_id = new_customer_id

        source = dest = None
        if moves_balance:
            now = utcnow()
            source = ledger_store.get_credit_account(source_id, for_update=True)
            dest = ledger_store.find_active_account(new_customer_id, for_update=True)
            if (dest.id if dest else None) != dest_id:
                raise ConflictError(f"Credit accounts of customer {new_customer_id} changed; retry")
            if dest is None:
                dest = open_account(new_customer_id)

            share_total = to_money(order.total)
            source_total = to_money(source.total_amount)
            source_paid = to_money(source.paid_amount)
            share_paid = prorate(source_paid, share_total, source_total)
            share_paid = max(ZERO, min(share_paid, source_paid))

            new_source_total = source_total - share_total
            new_source_paid = source_paid - share_paid
            new_dest_total = to_money(dest.total_amount) + share_total
            new_dest_paid = to_money(dest.paid_amount) + share_paid

            if compare(new_source_total, ZERO) < 0 or compare(new_source_total - new_source_paid, ZERO) < 0:
                raise CrossAccountIntegrityError(
                    f"Transfer would leave account {source.account_number} with a negative balance"
                )
            if compare(new_dest_total - new_dest_paid, ZERO) < 0:
                raise CrossAccountIntegrityError(
                    f"Transfer would leave account {dest.account_number} with a negative balance"
                )

            source.total_amount = non_negative(new_source_total)
            dest.total_amount = new_dest_total
            if is_positive(share_paid):
                label = f"Transferência do pedido {order.order_number}"
                append_ledger_line(
                    source,
                    -share_paid,
                    CREDIT_METHOD_TRANSFER_OUT,
                    notes=f"{label} para conta {dest.account_number}",
                    order_id=order.id,
                    description=f"{label} - saída da conta {source.account_number}",
                )
                append_ledger_line(
                    dest,
                    share_paid,
                    CREDIT_METHOD_TRANSFER_IN,
                    notes=f"{label} da conta {source.account_number}",
                    order_id=order.id,
                    description=f"{label} - entrada na conta {dest.account_number}",
                )

            order.credit_account_id = dest.id
            ledger_store.save_order(order)
            apply_account_state(source, now=now)
            apply_account_state(dest, now=now)
        else:
            ledger_store.save_order(order)

        event = notification_service.record_event(
            notification_service.EVENT_ORDER_TRANSFERRED,
            account_id=dest.id if dest else None,
            order_id=order.id,
            amount=order.total,
            new_status=order.status,
            data={
                "from_customer_id": previous_customer_id,
                "to_customer_id": new_customer_id,
                "source_account_id": source.id if source else None,
                "dest_account_id": dest.id if dest else None,
            },
        )
        db.session.commit()
        return TransferResult(order=order, source_account=source, dest_account=dest), event

    with account_locks.hold(customers=[new_customer_id] if moves_balance else []):
        dest_existing = ledger_store.find_active_account(new_customer_id) if moves_balance else None
        dest_id = dest_existing.id if dest_existing else None
        with account_locks.hold(source_id, dest_id):
            result, event = run_with_retry(_op)

    notification_service.dispatch([event])
    return result
