# Overview: Pytest coverage for payments and order reopening in the reconciliation engine.

"""
Reconciliation Engine: record_payment / revert_order_to_pending

Every test starts from a confirmed R$ 100,00 credit order, so the account
is total=100, paid=0, remaining=100, active.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from mardecores.errors import IdempotencyKeyReuseError, InvalidAmountError, InvalidStateTransitionError, ValidationError
from mardecores.extensions import db
from mardecores.models import CreditPayment, FinancialTransaction
from mardecores.services import audit_service, ledger_store
from mardecores.services.reconciliation_service import open_manual_account, record_payment, revert_order_to_pending
from mardecores.time_utils import utcnow


def _account(order):
    return ledger_store.get_credit_account(order.credit_account_id)


class TestRecordPayment:

    def test_scenario_a_partial_payment(self, db_session, credit_order):
        result = record_payment(credit_order.credit_account_id, "30", "pix")

        account = result.account
        assert account.paid_amount == Decimal("30.00")
        assert account.remaining_amount == Decimal("70.00")
        assert account.status == "active"
        assert account.closed_at is None
        assert result.affected_orders == []
        assert credit_order.status == "pending"

    def test_scenario_b_payoff_completes_linked_orders(self, db_session, credit_order):
        record_payment(credit_order.credit_account_id, "30", "pix")
        result = record_payment(credit_order.credit_account_id, "70", "pix")

        account = result.account
        assert account.paid_amount == Decimal("100.00")
        assert account.remaining_amount == Decimal("0.00")
        assert account.status == "paid_off"
        assert account.closed_at is not None
        assert account.next_payment_date is None
        assert [o.id for o in result.affected_orders] == [credit_order.id]
        assert credit_order.status == "completed"
        assert credit_order.payment_status == "paid"

    def test_scenario_d_negative_amount_rejected(self, db_session, credit_order):
        with pytest.raises(InvalidAmountError):
            record_payment(credit_order.credit_account_id, "-5", "pix")

        account = _account(credit_order)
        assert account.paid_amount == Decimal("0.00")
        assert db.session.query(CreditPayment).count() == 0
        assert db.session.query(FinancialTransaction).count() == 0

    @pytest.mark.parametrize("amount", ["0", "0.00", "abc", "1e30", "1e11"])
    def test_zero_or_malformed_amount_rejected(self, db_session, credit_order, amount):
        with pytest.raises(InvalidAmountError):
            record_payment(credit_order.credit_account_id, amount, "pix")

    def test_overpayment_beyond_tolerance_rejected(self, db_session, credit_order):
        with pytest.raises(InvalidAmountError):
            record_payment(credit_order.credit_account_id, "100.01", "pix")
        assert _account(credit_order).paid_amount == Decimal("0.00")

    def test_payment_on_paid_off_account_rejected(self, db_session, credit_order):
        record_payment(credit_order.credit_account_id, "100", "cash")
        with pytest.raises(InvalidAmountError):
            record_payment(credit_order.credit_account_id, "1", "cash")

    def test_unknown_method_rejected(self, db_session, credit_order):
        with pytest.raises(ValidationError):
            record_payment(credit_order.credit_account_id, "10", "reversal")

    def test_payment_is_mirrored_by_one_income_transaction(self, db_session, credit_order):
        result = record_payment(credit_order.credit_account_id, "30", "card", notes="1a parcela")

        txns = ledger_store.transactions_for_payment(result.payment.id)
        assert len(txns) == 1
        txn = txns[0]
        assert txn is result.transaction
        assert txn.type == "income"
        assert txn.category == "Crediário"
        assert txn.status == "completed"
        assert txn.amount == Decimal("30.00")
        assert txn.metadata_json["source"] == "credit_webhook"
        assert txn.metadata_json["credit_account_id"] == credit_order.credit_account_id
        assert result.payment.installment_number == 1

    def test_installments_are_numbered(self, db_session, credit_order):
        first = record_payment(credit_order.credit_account_id, "10", "pix")
        second = record_payment(credit_order.credit_account_id, "10", "pix")
        assert (first.payment.installment_number, second.payment.installment_number) == (1, 2)


class TestIdempotency:

    def test_same_key_records_once(self, db_session, credit_order):
        first = record_payment(credit_order.credit_account_id, "30", "pix", idempotency_key="req-1")
        again = record_payment(credit_order.credit_account_id, "30", "pix", idempotency_key="req-1")

        assert not first.replayed
        assert again.replayed
        assert again.payment.id == first.payment.id
        assert db.session.query(CreditPayment).count() == 1
        assert db.session.query(FinancialTransaction).count() == 1
        assert _account(credit_order).paid_amount == Decimal("30.00")

    def test_key_reuse_with_other_amount_is_rejected(self, db_session, credit_order):
        record_payment(credit_order.credit_account_id, "30", "pix", idempotency_key="req-1")
        with pytest.raises(IdempotencyKeyReuseError):
            record_payment(credit_order.credit_account_id, "40", "pix", idempotency_key="req-1")
        assert _account(credit_order).paid_amount == Decimal("30.00")


class TestRevertOrderToPending:

    def test_scenario_c_revert_reopens_account(self, db_session, credit_order):
        record_payment(credit_order.credit_account_id, "30", "pix")
        record_payment(credit_order.credit_account_id, "70", "pix")

        result = revert_order_to_pending(credit_order.id)

        account = result.account
        assert account.status == "active"
        assert account.closed_at is None
        assert account.remaining_amount == Decimal("100.00")
        assert account.paid_amount == Decimal("0.00")
        assert result.order.status == "pending"
        assert result.order.payment_status == "pending"

    def test_revert_appends_compensating_line_and_expense(self, db_session, credit_order):
        record_payment(credit_order.credit_account_id, "100", "pix")
        result = revert_order_to_pending(credit_order.id)

        payments = ledger_store.list_payments(credit_order.credit_account_id)
        assert [p.amount for p in payments] == [Decimal("100.00"), Decimal("-100.00")]
        assert payments[-1].payment_method == "reversal"
        assert result.transaction.type == "expense"
        assert result.transaction.amount == Decimal("100.00")
        assert result.transaction.credit_payment_id == payments[-1].id

    def test_round_trip_restores_pre_payment_state(self, db_session, credit_order):
        before = _account(credit_order)
        before_state = (before.remaining_amount, before.status)

        record_payment(credit_order.credit_account_id, before.remaining_amount, "pix")
        revert_order_to_pending(credit_order.id)

        after = _account(credit_order)
        assert (after.remaining_amount, after.status) == before_state

    def test_only_completed_orders_revert(self, db_session, credit_order):
        with pytest.raises(InvalidStateTransitionError):
            revert_order_to_pending(credit_order.id)

    def test_revert_reopens_every_order_on_the_account(self, db_session, customer, make_order):
        first = make_order(customer, total="60.00")
        second = make_order(customer, total="40.00")
        assert first.credit_account_id == second.credit_account_id

        record_payment(first.credit_account_id, "100", "pix")
        assert (first.status, second.status) == ("completed", "completed")

        result = revert_order_to_pending(first.id)
        assert result.account.paid_amount == Decimal("40.00")
        assert result.account.remaining_amount == Decimal("60.00")
        assert (first.status, second.status) == ("pending", "pending")

    def test_cash_order_revert_books_offsetting_expense(self, db_session, customer, make_order):
        order = make_order(customer, total="50.00", payment_method="cash")
        assert order.status == "completed"

        result = revert_order_to_pending(order.id)

        assert result.order.status == "pending"
        assert result.order.payment_status == "pending"
        assert result.account is None
        assert result.transaction.type == "expense"
        assert result.transaction.category == "Estorno"
        assert result.transaction.amount == Decimal("50.00")


class TestInvariantsHold:

    def test_ledger_is_clean_after_a_full_cycle(self, db_session, credit_order):
        record_payment(credit_order.credit_account_id, "30", "pix")
        record_payment(credit_order.credit_account_id, "70", "pix")
        revert_order_to_pending(credit_order.id)
        record_payment(credit_order.credit_account_id, "100", "cash")

        account = _account(credit_order)
        payments = ledger_store.list_payments(account.id)
        assert account.paid_amount == sum(p.amount for p in payments)
        assert account.remaining_amount == max(Decimal("0"), account.total_amount - account.paid_amount)
        assert account.status == "paid_off"
        for payment in payments:
            txns = ledger_store.transactions_for_payment(payment.id)
            assert len(txns) == 1
            assert txns[0].signed_amount == payment.amount

        assert audit_service.run_audit() == []


class TestOpenManualAccount:

    def test_weekly_account_with_installments(self, db_session, customer, events):
        account = open_manual_account(customer.id, "240", installments=4, frequency="weekly")

        assert account.account_number == "CRE0001"
        assert account.total_amount == Decimal("240.00")
        assert account.paid_amount == Decimal("0.00")
        assert account.remaining_amount == Decimal("240.00")
        assert account.status == "active"
        assert account.installments == 4
        assert account.payment_frequency == "weekly"
        assert utcnow() + timedelta(days=6) < account.next_payment_date <= utcnow() + timedelta(days=7)
        assert [e["type"] for e in events] == ["account_opened"]
        assert events[0]["data"]["installments"] == 4
        assert audit_service.run_audit() == []

    def test_weekly_payment_moves_due_date_one_week(self, db_session, customer):
        account = open_manual_account(customer.id, "240", installments=4, frequency="weekly")
        due = account.next_payment_date

        record_payment(account.id, "60", "pix")

        account = ledger_store.get_credit_account(account.id)
        assert account.next_payment_date == due + timedelta(days=7)
        assert account.remaining_amount == Decimal("180.00")

    def test_explicit_due_date_is_kept(self, db_session, customer):
        due = utcnow().replace(microsecond=0) + timedelta(days=3)

        account = open_manual_account(customer.id, "50", next_payment_date=due)

        assert account.next_payment_date == due
        assert account.payment_frequency == "monthly"

    def test_customer_with_active_account_is_rejected(self, db_session, customer, credit_order):
        with pytest.raises(InvalidStateTransitionError):
            open_manual_account(customer.id, "50")

        assert len(ledger_store.list_accounts(customer_id=customer.id)) == 1

    @pytest.mark.parametrize("amount", ["0", "-10", "1e11"])
    def test_opening_balance_must_be_positive_and_storable(self, db_session, customer, amount):
        with pytest.raises(InvalidAmountError):
            open_manual_account(customer.id, amount)

    @pytest.mark.parametrize("kwargs", [
        {"installments": 0},
        {"installments": "3"},
        {"installments": True},
        {"frequency": "daily"},
    ])
    def test_bad_schedule_is_rejected(self, db_session, customer, kwargs):
        with pytest.raises(ValidationError):
            open_manual_account(customer.id, "50", **kwargs)

        assert ledger_store.find_active_account(customer.id) is None
