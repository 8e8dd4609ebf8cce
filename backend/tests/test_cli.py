# Overview: Pytest coverage for the flask CLI command groups.

from decimal import Decimal

from mardecores.services import ledger_store
from mardecores.services.notification_service import notifier
from mardecores.services.reconciliation_service import record_payment


class TestLedgerCommands:

    def test_audit_clean(self, app, db_session, credit_order):
        result = app.test_cli_runner().invoke(args=["ledger", "audit"])
        assert result.exit_code == 0
        assert "PASS No divergences found." in result.output

    def test_audit_reports_then_fixes(self, app, db_session, credit_order):
        account = ledger_store.get_credit_account(credit_order.credit_account_id)
        account.paid_amount = Decimal("9.99")
        db_session.commit()
        runner = app.test_cli_runner()

        result = runner.invoke(args=["ledger", "audit"])
        assert "WARN 1 divergence(s) found:" in result.output
        assert "paid_amount: expected=0.00 actual=9.99" in result.output

        result = runner.invoke(args=["ledger", "audit", "--account-id", str(account.id), "--fix"])
        assert result.exit_code == 0
        assert "PASS Fixed 1 divergence(s)." in result.output
        assert ledger_store.get_credit_account(account.id).paid_amount == Decimal("0.00")

    def test_accounts_listing(self, app, db_session, credit_order):
        result = app.test_cli_runner().invoke(args=["ledger", "accounts", "--status", "active"])
        assert "CRE0001" in result.output
        assert "remaining=R$ 100,00" in result.output

    def test_sync_job_once(self, app, db_session, credit_order):
        result = app.test_cli_runner().invoke(args=["ledger", "sync-job", "--once"])
        assert result.exit_code == 0
        assert "PASS Sync complete: 0 found, 0 fixed, 0 remaining." in result.output


class TestEventCommands:

    def test_pending_and_redeliver(self, app, db_session, credit_order):
        def offline(message):
            raise RuntimeError("offline")

        notifier.subscribe(offline)
        record_payment(credit_order.credit_account_id, "10", "cash")
        runner = app.test_cli_runner()

        result = runner.invoke(args=["events", "pending"])
        assert "credit_payment" in result.output
        assert "offline" in result.output

        notifier.unsubscribe(offline)
        result = runner.invoke(args=["events", "redeliver"])
        assert "PASS Delivered 1 event(s), 0 still failing." in result.output

        result = runner.invoke(args=["events", "pending"])
        assert "No pending events." in result.output


class TestSystemCommands:

    def test_init_db_is_idempotent(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init-db"])
        assert result.exit_code == 0
        assert "PASS Schema ready." in result.output
