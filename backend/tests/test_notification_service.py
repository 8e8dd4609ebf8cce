# Overview: Pytest coverage for the reconciliation event outbox and its delivery.

from decimal import Decimal

import httpx

from mardecores.extensions import db
from mardecores.models import ReconciliationEvent
from mardecores.services import ledger_store, notification_service
from mardecores.services.notification_service import notifier
from mardecores.services.reconciliation_service import record_payment


class TestInProcessDelivery:

    def test_payment_event_is_delivered_after_commit(self, db_session, credit_order, events):
        record_payment(credit_order.credit_account_id, "30", "pix")

        message = events[-1]
        assert message["type"] == "credit_payment"
        assert message["account_id"] == credit_order.credit_account_id
        assert message["amount"] == "30.00"
        assert message["new_status"] == "active"
        assert message["data"]["remaining_amount"] == "70.00"
        assert message["event_id"]

        event = db.session.query(ReconciliationEvent).filter_by(event_id=message["event_id"]).one()
        assert event.delivered_at is not None
        assert event.attempts == 1

    def test_confirmation_emits_event(self, db_session, customer, make_order, events):
        order = make_order(customer, total="80.00")
        assert [e["type"] for e in events] == ["order_confirmed"]
        assert events[0]["order_id"] == order.id

    def test_failing_subscriber_never_rolls_back_the_ledger(self, db_session, credit_order):
        def broken(message):
            raise RuntimeError("subscriber down")

        notifier.subscribe(broken)
        result = record_payment(credit_order.credit_account_id, "30", "pix")

        account = ledger_store.get_credit_account(credit_order.credit_account_id)
        assert account.paid_amount == Decimal("30.00")
        assert result.payment.id is not None

        pending = notification_service.pending_events()
        assert len(pending) == 1
        assert pending[0].attempts == 1
        assert "subscriber down" in pending[0].last_error

        notifier.unsubscribe(broken)
        assert notification_service.redeliver_pending() == (1, 0)
        assert notification_service.pending_events() == []

    def test_delivered_event_is_not_sent_again(self, db_session, credit_order, events):
        record_payment(credit_order.credit_account_id, "30", "pix")
        event = db.session.query(ReconciliationEvent).filter_by(event_type="credit_payment").one()
        count = len(events)

        assert notification_service.deliver_event(event) is True
        assert len(events) == count
        assert event.attempts == 1


class TestWebhookDelivery:

    def test_posts_json_with_event_id_header(self, app, db_session, credit_order, monkeypatch):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        notifier.http_transport = httpx.MockTransport(handler)
        monkeypatch.setitem(app.config, "WEBHOOK_URLS", ["http://erp.local/hooks/ledger"])

        record_payment(credit_order.credit_account_id, "30", "pix")

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "http://erp.local/hooks/ledger"
        assert request.headers["X-Event-Type"] == "credit_payment"
        event = db.session.query(ReconciliationEvent).filter_by(event_type="credit_payment").one()
        assert request.headers["X-Event-Id"] == event.event_id
        assert event.delivered_at is not None

    def test_server_error_is_retried(self, app, db_session, credit_order, monkeypatch):
        statuses = iter([500, 200])
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(next(statuses))

        notifier.http_transport = httpx.MockTransport(handler)
        monkeypatch.setitem(app.config, "WEBHOOK_URLS", ["http://erp.local/hooks/ledger"])

        record_payment(credit_order.credit_account_id, "30", "pix")

        assert len(calls) == 2
        assert notification_service.pending_events() == []

    def test_unreachable_endpoint_stays_pending(self, app, db_session, credit_order, monkeypatch):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        notifier.http_transport = httpx.MockTransport(handler)
        monkeypatch.setitem(app.config, "WEBHOOK_URLS", ["http://erp.local/hooks/ledger"])

        record_payment(credit_order.credit_account_id, "30", "pix")

        pending = notification_service.pending_events()
        assert len(pending) == 1
        assert "erp.local" in pending[0].last_error
        assert ledger_store.get_credit_account(credit_order.credit_account_id).paid_amount == Decimal("30.00")
