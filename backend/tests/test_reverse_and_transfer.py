# Overview: Pytest coverage for sale reversal and order transfer between customers.

from decimal import Decimal

import pytest

from mardecores.errors import (
    CrossAccountIntegrityError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from mardecores.extensions import db
from mardecores.models import Product
from mardecores.services import audit_service, ledger_store
from mardecores.services.reconciliation_service import record_payment, reverse_sale, transfer_order


def _product_stock(order) -> int:
    product = db.session.get(Product, order.items[0].product_id)
    return product.stock


class TestReverseSale:

    def test_cash_sale_reversal_restores_stock_and_books_expense(self, db_session, customer, make_order):
        order = make_order(customer, total="50.00", payment_method="cash", quantity=2)
        assert _product_stock(order) == 8

        result = reverse_sale(order.id, "Produto com defeito")

        assert result.order.status == "cancelled"
        assert result.order.payment_status == "refunded"
        assert result.order.cancel_reason == "Produto com defeito"
        assert _product_stock(order) == 10
        assert result.transaction.type == "expense"
        assert result.transaction.category == "Estorno"
        assert result.transaction.amount == result.order.total
        assert result.transaction.metadata_json["reason"] == "Produto com defeito"

    def test_reason_is_required(self, db_session, customer, make_order):
        order = make_order(customer, total="50.00", payment_method="cash")
        with pytest.raises(ValidationError):
            reverse_sale(order.id, "  ")

    def test_cancelled_order_cannot_be_reversed_twice(self, db_session, customer, make_order):
        order = make_order(customer, total="50.00", payment_method="cash")
        reverse_sale(order.id, "cliente desistiu")
        with pytest.raises(InvalidStateTransitionError):
            reverse_sale(order.id, "de novo")

    def test_unconfirmed_order_reversal_has_nothing_to_refund(self, db_session, customer, make_order):
        order = make_order(customer, total="50.00", payment_method="pix", confirm=False)

        result = reverse_sale(order.id, "pedido duplicado")

        assert result.order.status == "cancelled"
        assert result.order.payment_status == "pending"
        assert result.transaction is None
        assert _product_stock(order) == 10

    def test_credit_reversal_refunds_collected_excess(self, db_session, credit_order):
        record_payment(credit_order.credit_account_id, "30", "pix")

        result = reverse_sale(credit_order.id, "devolução")

        account = result.account
        assert account.total_amount == Decimal("0.00")
        assert account.paid_amount == Decimal("0.00")
        assert account.remaining_amount == Decimal("0.00")
        assert result.order.status == "cancelled"
        assert result.order.payment_status == "refunded"
        assert result.transaction.type == "expense"
        assert result.transaction.category == "Crediário"
        assert result.transaction.amount == Decimal("30.00")
        assert audit_service.run_audit() == []

    def test_credit_reversal_keeps_other_orders_on_account(self, db_session, customer, make_order):
        keep = make_order(customer, total="100.00")
        drop = make_order(customer, total="50.00")
        record_payment(keep.credit_account_id, "40", "pix")

        result = reverse_sale(drop.id, "troca")

        account = result.account
        assert account.total_amount == Decimal("100.00")
        assert account.paid_amount == Decimal("40.00")
        assert account.remaining_amount == Decimal("60.00")
        assert account.status == "active"
        assert result.transaction is None
        assert keep.status == "pending"
        assert audit_service.run_audit() == []


class TestTransferOrder:

    def test_credit_order_moves_with_its_paid_share(self, db_session, customer, other_customer, credit_order):
        record_payment(credit_order.credit_account_id, "40", "pix")

        result = transfer_order(credit_order.id, other_customer.id)

        source, dest = result.source_account, result.dest_account
        assert result.order.customer_id == other_customer.id
        assert result.order.credit_account_id == dest.id
        assert dest.customer_id == other_customer.id
        assert dest.account_number == "CRE0002"
        assert dest.total_amount == Decimal("100.00")
        assert dest.paid_amount == Decimal("40.00")
        assert dest.remaining_amount == Decimal("60.00")
        assert dest.status == "active"
        assert source.total_amount == Decimal("0.00")
        assert source.paid_amount == Decimal("0.00")

        methods = [p.payment_method for p in ledger_store.list_payments(source.id)]
        assert methods == ["pix", "transfer_out"]
        methods = [p.payment_method for p in ledger_store.list_payments(dest.id)]
        assert methods == ["transfer_in"]
        assert audit_service.run_audit() == []

    def test_share_is_proportional_and_accumulates_into_active_account(
        self, db_session, customer, other_customer, make_order
    ):
        moving = make_order(customer, total="100.00")
        make_order(customer, total="100.00")
        existing = make_order(other_customer, total="50.00")
        record_payment(moving.credit_account_id, "50", "pix")

        result = transfer_order(moving.id, other_customer.id)

        # 50 paid over 200 owed: the moved order carries 25
        assert result.source_account.total_amount == Decimal("100.00")
        assert result.source_account.paid_amount == Decimal("25.00")
        assert result.dest_account.id == existing.credit_account_id
        assert result.dest_account.total_amount == Decimal("150.00")
        assert result.dest_account.paid_amount == Decimal("25.00")
        assert result.dest_account.remaining_amount == Decimal("125.00")

    def test_completed_order_stays_completed_on_new_account(self, db_session, other_customer, credit_order):
        record_payment(credit_order.credit_account_id, "100", "pix")

        result = transfer_order(credit_order.id, other_customer.id)

        assert result.dest_account.status == "paid_off"
        assert result.order.status == "completed"

    def test_negative_balance_aborts_without_partial_transfer(
        self, db_session, customer, other_customer, credit_order
    ):
        account = ledger_store.get_credit_account(credit_order.credit_account_id)
        account.total_amount = Decimal("50.00")  # drifted below the order total
        db.session.commit()

        with pytest.raises(CrossAccountIntegrityError):
            transfer_order(credit_order.id, other_customer.id)

        order = ledger_store.get_order(credit_order.id)
        assert order.customer_id == customer.id
        assert order.credit_account_id == account.id
        assert ledger_store.find_active_account(other_customer.id) is None

    def test_same_customer_rejected(self, db_session, customer, credit_order):
        with pytest.raises(InvalidStateTransitionError):
            transfer_order(credit_order.id, customer.id)

    def test_unknown_customer_rejected(self, db_session, credit_order):
        with pytest.raises(NotFoundError):
            transfer_order(credit_order.id, 99999)

    def test_cash_order_only_changes_customer(self, db_session, customer, other_customer, make_order):
        order = make_order(customer, total="50.00", payment_method="cash")

        result = transfer_order(order.id, other_customer.id)

        assert result.order.customer_id == other_customer.id
        assert result.source_account is None
        assert result.dest_account is None
