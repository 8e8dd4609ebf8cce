# Overview: Pytest coverage for the ledger audit sweep, auto fix and sync job.

import gc
import logging
import weakref
from decimal import Decimal

import pytest

from mardecores.extensions import db
from mardecores.models import FinancialTransaction
from mardecores.services import audit_service, ledger_store
from mardecores.services.reconciliation_service import record_payment
from mardecores.time_utils import utcnow


class TestAuditDetection:

    def test_clean_ledger_has_no_divergences(self, db_session, credit_order):
        record_payment(credit_order.credit_account_id, "30", "pix")
        assert audit_service.run_audit() == []

    def test_scenario_e_corrupted_paid_amount(self, db_session, credit_order):
        record_payment(credit_order.credit_account_id, "30", "pix")
        account = ledger_store.get_credit_account(credit_order.credit_account_id)
        account.paid_amount = Decimal("55.00")
        db.session.commit()

        found = audit_service.run_audit()

        assert len(found) == 1
        d = found[0]
        assert (d.entity_type, d.entity_id, d.field) == ("credit_account", account.id, "paid_amount")
        assert (d.expected, d.actual) == ("30.00", "55.00")
        assert d.account_id == account.id

    def test_order_status_drift(self, db_session, credit_order):
        credit_order.status = "completed"
        db.session.commit()

        found = audit_service.run_audit(credit_order.credit_account_id)

        assert [(d.entity_type, d.field, d.expected, d.actual) for d in found] == [
            ("order", "status", "pending", "completed"),
        ]

    def test_missing_and_duplicate_mirrors(self, db_session, customer, make_order):
        first = make_order(customer, total="100.00")
        one = record_payment(first.credit_account_id, "10", "pix")
        two = record_payment(first.credit_account_id, "20", "pix")

        db.session.delete(one.transaction)
        db.session.add(FinancialTransaction(
            type="income", category="Crediário", description="duplicado",
            amount=Decimal("20.00"), credit_payment_id=two.payment.id,
        ))
        db.session.commit()

        found = {(d.entity_id, d.field): d for d in audit_service.run_audit()}
        assert found[(one.payment.id, "transaction_count")].actual == 0
        assert found[(two.payment.id, "transaction_count")].actual == 2

    def test_scope_limits_sweep_to_given_accounts(self, db_session, customer, other_customer, make_order):
        mine = make_order(customer, total="100.00")
        theirs = make_order(other_customer, total="50.00")
        account = ledger_store.get_credit_account(theirs.credit_account_id)
        account.total_amount = Decimal("10.00")
        db.session.commit()

        assert audit_service.run_audit(mine.credit_account_id) == []
        assert audit_service.run_audit([theirs.credit_account_id]) != []

    def test_cash_sale_without_income(self, db_session, customer, make_order):
        order = make_order(customer, total="25.00", payment_method="pix")
        for txn in ledger_store.transactions_for_order(order.id):
            db.session.delete(txn)
        db.session.commit()

        found = audit_service.run_audit()

        assert [(d.entity_type, d.entity_id, d.field, d.expected) for d in found] == [
            ("order", order.id, "sale_transaction", "25.00"),
        ]
        assert found[0].account_id is None


class TestAutoFix:

    def test_scenario_e_fix_restores_ledger_sum(self, db_session, credit_order, events):
        record_payment(credit_order.credit_account_id, "30", "pix")
        account = ledger_store.get_credit_account(credit_order.credit_account_id)
        account.paid_amount = Decimal("55.00")
        db.session.commit()

        result = audit_service.auto_fix(audit_service.run_audit())

        assert result.fixed == 1
        assert result.remaining == []
        account = ledger_store.get_credit_account(account.id)
        assert account.paid_amount == Decimal("30.00")
        assert account.remaining_amount == Decimal("70.00")
        assert audit_service.run_audit() == []
        assert events[-1]["type"] == "audit_fix"
        assert events[-1]["data"]["before"]["paid_amount"] == "55.00"

    def test_fix_recreates_missing_and_cancels_duplicate(self, db_session, customer, make_order):
        order = make_order(customer, total="100.00")
        one = record_payment(order.credit_account_id, "10", "pix")
        two = record_payment(order.credit_account_id, "20", "pix")
        db.session.delete(one.transaction)
        db.session.add(FinancialTransaction(
            type="income", category="Crediário", description="duplicado",
            amount=Decimal("20.00"), credit_payment_id=two.payment.id,
        ))
        db.session.commit()

        result = audit_service.auto_fix(audit_service.run_audit())

        assert result.fixed == 2
        recreated = ledger_store.transactions_for_payment(one.payment.id)
        assert len(recreated) == 1
        assert recreated[0].metadata_json["source"] == "audit_fix"
        statuses = [t.status for t in ledger_store.transactions_for_payment(two.payment.id)]
        assert statuses == ["completed", "cancelled"]
        assert audit_service.run_audit() == []

    def test_fix_status_drift_moves_order_back(self, db_session, credit_order):
        credit_order.status = "completed"
        credit_order.payment_status = "paid"
        db.session.commit()

        result = audit_service.auto_fix(audit_service.run_audit())

        assert result.fixed == 2
        order = ledger_store.get_order(credit_order.id)
        assert (order.status, order.payment_status) == ("pending", "pending")

    def test_fix_cancels_orphan_and_rebalances(self, db_session, credit_order):
        result = record_payment(credit_order.credit_account_id, "30", "pix")
        result.payment.status = "cancelled"
        db.session.commit()

        found = audit_service.run_audit()
        assert {d.field for d in found} == {"paid_amount", "remaining_amount", "credit_payment_id"}

        fixed = audit_service.auto_fix(found)

        assert fixed.fixed == 3
        assert ledger_store.get_transaction(result.transaction.id).status == "cancelled"
        account = ledger_store.get_credit_account(credit_order.credit_account_id)
        assert account.paid_amount == Decimal("0.00")
        assert account.remaining_amount == Decimal("100.00")
        assert audit_service.run_audit() == []

    def test_fix_books_missing_sale(self, db_session, customer, make_order):
        order = make_order(customer, total="25.00", payment_method="card")
        for txn in ledger_store.transactions_for_order(order.id):
            db.session.delete(txn)
        db.session.commit()

        result = audit_service.auto_fix(audit_service.run_audit())

        assert result.fixed == 1
        txns = ledger_store.transactions_for_order(order.id)
        assert [(t.category, t.amount, t.metadata_json["source"]) for t in txns] == [
            ("Vendas", Decimal("25.00"), "audit_fix"),
        ]

    def test_nothing_to_fix(self, db_session):
        result = audit_service.auto_fix([])
        assert (result.fixed, result.remaining) == (0, [])


class TestSyncJob:

    def test_sync_job_logs_summary(self, db_session, credit_order, caplog):
        account = ledger_store.get_credit_account(credit_order.credit_account_id)
        account.paid_amount = Decimal("5.00")
        db.session.commit()

        with caplog.at_level(logging.INFO):
            report = audit_service.run_sync_job()

        assert len(report.divergences) == 1
        assert report.fixed == 1
        assert report.remaining == []
        assert report.finished_at >= report.started_at
        assert "Ledger sync: 1 divergence(s), 1 fixed, 0 remaining" in caplog.text

    def test_sync_job_without_fix_leaves_drift(self, db_session, credit_order):
        account = ledger_store.get_credit_account(credit_order.credit_account_id)
        account.paid_amount = Decimal("5.00")
        db.session.commit()

        report = audit_service.run_sync_job(fix=False)

        assert report.fixed == 0
        assert len(report.remaining) == 1
        assert ledger_store.get_credit_account(account.id).paid_amount == Decimal("5.00")

    def test_sync_loop_runs_given_iterations(self, db_session):
        naps = []
        reports = audit_service.run_sync_loop(interval_minutes=5, iterations=2, sleep=naps.append)

        assert len(reports) == 2
        assert naps == [300]

    def test_unbounded_loop_does_not_keep_old_reports(self, db_session, monkeypatch):
        produced = []

        def fake_job(*, fix):
            report = audit_service.SyncReport(started_at=utcnow())
            produced.append(weakref.ref(report))
            return report

        class Stop(Exception):
            pass

        naps = []

        def sleep(seconds):
            naps.append(seconds)
            if len(naps) == 3:
                raise Stop

        monkeypatch.setattr(audit_service, "run_sync_job", fake_job)
        with pytest.raises(Stop):
            audit_service.run_sync_loop(interval_minutes=1, sleep=sleep)

        gc.collect()
        assert len(produced) == 3
        # Only the run in flight when the loop stopped may still be referenced
        assert [ref() for ref in produced[:-1]] == [None, None]
