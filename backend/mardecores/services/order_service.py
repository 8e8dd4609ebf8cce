# Overview: Order creation and confirmation (the entry points that feed the credit ledger).

"""
Order Service

LIFECYCLE:
- create_order: pending/pending, numbered PED#### or CRE#### from one counter
- confirm_order:
    cash/pix/card -> completed/paid + "Vendas" income transaction
    credit        -> linked to the customer's active CreditAccount (opened
                     on demand); stays pending until that account is paid off

Stock is deducted on confirmation, once per order.
"""

from __future__ import annotations

from ..errors import ConflictError, InvalidAmountError, InvalidStateTransitionError, ValidationError
from ..extensions import db
from ..models import FinancialTransaction, Order, OrderItem
from ..models.finance import (
    CATEGORY_SALES,
    SOURCE_ORDER_WEBHOOK,
    TRANSACTION_STATUS_COMPLETED,
    TRANSACTION_TYPE_INCOME,
)
from ..models.orders import (
    IMMEDIATE_PAYMENT_METHODS,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
    VALID_PAYMENT_METHODS,
)
from ..money import ZERO, multiply, to_json, to_money
from ..time_utils import utcnow
from . import customer_service, inventory_service, ledger_store, notification_service
from .concurrency import account_locks, run_with_retry
from .document_service import next_order_number
from .reconciliation_service import apply_account_state, open_account


def _parse_quantity(raw) -> int:
    if isinstance(raw, bool) or isinstance(raw, float):
        raise ValidationError(f"Invalid quantity: {raw!r}")
    try:
        quantity = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid quantity: {raw!r}")
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")
    return quantity


def create_order(
    items: list[dict],
    payment_method: str,
    *,
    customer_id: int | None = None,
    customer: dict | None = None,
    notes: str | None = None,
) -> Order:
    """
    Create a pending order.

    Args:
        items: [{"product_id", "quantity", "unit_price"?}]
        payment_method: cash, pix, card or credit
        customer_id / customer: existing customer, or identity data for a new one

    Raises:
        ValidationError, InvalidAmountError, NotFoundError
    """
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}"
        )
    if not items:
        raise ValidationError("Order must have at least one item")

    try:
        buyer = customer_service.resolve_customer(customer_id=customer_id, customer=customer)

        lines = []
        total = ZERO
        for raw in items:
            product = ledger_store.get_product(raw.get("product_id"))
            quantity = _parse_quantity(raw.get("quantity"))
            unit_price = raw.get("unit_price")
            unit_price = to_money(product.price if unit_price is None else unit_price)
            if unit_price < 0:
                raise InvalidAmountError("Unit price cannot be negative")
            line_total = multiply(unit_price, quantity)
            total = to_money(total + line_total)
            lines.append(OrderItem(
                product_id=product.id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=line_total,
            ))

        order = Order(
            order_number=next_order_number(payment_method),
            customer_id=buyer.id,
            total=total,
            payment_method=payment_method,
            status=ORDER_STATUS_PENDING,
            payment_status=PAYMENT_STATUS_PENDING,
            notes=notes,
        )
        order.items = lines
        ledger_store.save_order(order)
        db.session.commit()
        return order
    except Exception:
        db.session.rollback()
        raise


def record_sale_income(order: Order, *, source: str = SOURCE_ORDER_WEBHOOK) -> FinancialTransaction:
    """Income entry for a settled cash/pix/card order."""
    txn = FinancialTransaction(
        type=TRANSACTION_TYPE_INCOME,
        category=CATEGORY_SALES,
        description=f"Venda - Pedido {order.order_number}",
        amount=to_money(order.total),
        status=TRANSACTION_STATUS_COMPLETED,
        payment_method=order.payment_method,
        order_id=order.id,
        metadata_json={
            "source": source,
            "order_id": order.id,
            "order_number": order.order_number,
            "customer_id": order.customer_id,
        },
    )
    return ledger_store.save_transaction(txn)


def confirm_order(order_id: int) -> Order:
    """
    Confirm a pending order.

    Cash/pix/card settle immediately. Credit orders accumulate into the
    customer's active account (oldest one when several exist) or a new one.

    Raises:
        NotFoundError, InvalidStateTransitionError (not pending, or not
        enough stock), ConflictError
    """
    order = ledger_store.get_order(order_id)
    customer_id = order.customer_id
    is_credit = order.is_credit
    existing_id = None

    def _op():
        order = ledger_store.get_order(order_id, for_update=True)
        if order.status != ORDER_STATUS_PENDING or order.payment_status != PAYMENT_STATUS_PENDING:
            raise InvalidStateTransitionError(
                f"Only pending orders can be confirmed. Order {order.order_number} is "
                f"{order.status}/{order.payment_status}"
            )
        if order.credit_account_id is not None:
            raise InvalidStateTransitionError(
                f"Order {order.order_number} is already linked to a credit account"
            )
        if order.customer_id != customer_id:
            raise ConflictError(f"Order {order.order_number} changed customer; retry")

        now = utcnow()
        inventory_service.consume_order_stock(order)
        order.confirmed_at = now

        account = None
        data = {}
        if order.payment_method in IMMEDIATE_PAYMENT_METHODS:
            order.status = ORDER_STATUS_COMPLETED
            order.payment_status = PAYMENT_STATUS_PAID
            order.completed_at = now
            txn = record_sale_income(order)
            data["transaction_id"] = txn.id
        else:
            account = ledger_store.find_active_account(customer_id, for_update=True)
            if (account.id if account else None) != existing_id:
                raise ConflictError(f"Credit accounts of customer {customer_id} changed; retry")
            if account is None:
                account = open_account(customer_id)
            account.total_amount = to_money(to_money(account.total_amount) + to_money(order.total))
            order.credit_account_id = account.id
            ledger_store.save_order(order)
            apply_account_state(account, now=now)
            data["account_number"] = account.account_number
            data["remaining_amount"] = to_json(account.remaining_amount)

        ledger_store.save_order(order)
        event = notification_service.record_event(
            notification_service.EVENT_ORDER_CONFIRMED,
            account_id=account.id if account else None,
            order_id=order.id,
            amount=order.total,
            new_status=order.status,
            data=data,
        )
        db.session.commit()
        return order, event

    # The customer lock covers the read below, so a concurrent confirmation
    # cannot open a second active account for the same customer
    with account_locks.hold(customers=[customer_id] if is_credit else []):
        existing = ledger_store.find_active_account(customer_id) if is_credit else None
        existing_id = existing.id if existing else None
        with account_locks.hold(existing_id):
            order, event = run_with_retry(_op)

    notification_service.dispatch([event])
    return order


def list_orders(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    credit_account_id: int | None = None,
) -> list[Order]:
    query = db.session.query(Order)
    if status:
        query = query.filter_by(status=status)
    if customer_id:
        query = query.filter_by(customer_id=customer_id)
    if credit_account_id:
        query = query.filter_by(credit_account_id=credit_account_id)
    return query.order_by(Order.id.desc()).all()
