# Overview: Reconciliation event outbox and post-commit delivery to subscribers.

"""
Webhook/Event Notifier

Engine operations stage a ReconciliationEvent row inside their own DB
transaction (outbox). Only after the ledger commit do we dispatch it:

- in-process subscribers registered with ``notifier.subscribe(callback)``
- HTTP subscribers listed in ``WEBHOOK_URLS`` (JSON POST via httpx, with
  ``X-Event-Id`` so receivers can dedupe)

Delivery is at-least-once. Each target gets ``NOTIFY_MAX_ATTEMPTS`` tries
with exponential backoff and a short timeout. A failure is logged and left
on the outbox row (attempts/last_error) for ``redeliver_pending``; it never
propagates to the caller and never touches the committed ledger rows.
"""

from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable

import httpx
from flask import Flask, current_app

from ..errors import NotificationDeliveryError
from ..extensions import db
from ..models import ReconciliationEvent
from ..money import to_money
from ..time_utils import utcnow

EVENT_ACCOUNT_OPENED = "account_opened"
EVENT_CREDIT_PAYMENT = "credit_payment"
EVENT_ORDER_CONFIRMED = "order_confirmed"
EVENT_ORDER_REVERTED = "order_reverted"
EVENT_SALE_REVERSED = "sale_reversed"
EVENT_ORDER_TRANSFERRED = "order_transferred"
EVENT_AUDIT_FIX = "audit_fix"


class Notifier:
    def __init__(self):
        self._subscribers: list[Callable[[dict], None]] = []
        self._executor: ThreadPoolExecutor | None = None
        # Tests inject httpx.MockTransport here
        self.http_transport: httpx.BaseTransport | None = None

    def init_app(self, app: Flask) -> None:
        app.extensions["reconciliation_notifier"] = self

    def subscribe(self, callback: Callable[[dict], None]) -> Callable[[dict], None]:
        """Register an in-process consumer; usable as a decorator."""
        if callback not in self._subscribers:
            self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: Callable[[dict], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def clear(self) -> None:
        self._subscribers.clear()

    @property
    def subscribers(self) -> list[Callable[[dict], None]]:
        return list(self._subscribers)

    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="notifier")
        return self._executor

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


notifier = Notifier()


# =============================================================================
# OUTBOX
# =============================================================================

def record_event(
    event_type: str,
    *,
    account_id: int | None = None,
    order_id: int | None = None,
    amount=None,
    new_status: str | None = None,
    data: dict | None = None,
) -> ReconciliationEvent:
    """Stage an outbox row in the caller's transaction."""
    event = ReconciliationEvent(
        event_id=str(uuid.uuid4()),
        event_type=event_type,
        account_id=account_id,
        order_id=order_id,
        amount=to_money(amount) if amount is not None else None,
        new_status=new_status,
        payload=data or {},
    )
    db.session.add(event)
    db.session.flush()
    return event


# =============================================================================
# DELIVERY
# =============================================================================

def _send_http(url: str, message: dict, timeout: float) -> None:
    headers = {"X-Event-Id": message["event_id"], "X-Event-Type": message["type"]}
    with httpx.Client(timeout=timeout, transport=notifier.http_transport) as client:
        response = client.post(url, json=message, headers=headers)
        response.raise_for_status()


def _deliver_to_target(target, message: dict, *, attempts: int, backoff: float, timeout: float) -> None:
    label = target if isinstance(target, str) else getattr(target, "__name__", repr(target))
    last_exc: Exception | None = None
    for attempt in range(attempts):
        try:
            if isinstance(target, str):
                _send_http(target, message, timeout)
            else:
                target(message)
            return
        except Exception as exc:
            last_exc = exc
            if attempt < attempts - 1:
                time.sleep(backoff * (2 ** attempt))
    raise NotificationDeliveryError(f"{label}: {last_exc}")


def deliver_event(event: ReconciliationEvent) -> bool:
    """
    Push one event to every subscriber. Returns True when all accepted it.

    Already-delivered events are skipped (idempotent by event id).
    """
    if event.delivered_at is not None:
        return True

    config = current_app.config
    attempts = max(1, int(config.get("NOTIFY_MAX_ATTEMPTS", 3)))
    backoff = float(config.get("NOTIFY_BACKOFF_SECONDS", 0.2))
    timeout = float(config.get("NOTIFY_TIMEOUT_SECONDS", 2.0))
    targets: list = list(notifier.subscribers) + list(config.get("WEBHOOK_URLS") or [])

    message = event.to_message()
    errors: list[str] = []
    for target in targets:
        try:
            _deliver_to_target(target, message, attempts=attempts, backoff=backoff, timeout=timeout)
        except NotificationDeliveryError as exc:
            errors.append(str(exc))

    event.attempts = (event.attempts or 0) + 1
    if errors:
        event.last_error = "; ".join(errors)[:255]
        current_app.logger.warning(
            "Reconciliation event %s (%s) not delivered after %s attempt(s): %s",
            event.event_id, event.event_type, event.attempts, event.last_error,
        )
    else:
        event.delivered_at = utcnow()
        event.last_error = None
    db.session.commit()
    return not errors


def _deliver_ids(event_ids: list[int]) -> None:
    events = (
        db.session.query(ReconciliationEvent)
        .filter(ReconciliationEvent.id.in_(event_ids))
        .order_by(ReconciliationEvent.id)
        .all()
    )
    for event in events:
        deliver_event(event)


def _deliver_in_background(app: Flask, event_ids: list[int]) -> None:
    with app.app_context():
        try:
            _deliver_ids(event_ids)
        except Exception:
            db.session.rollback()
            app.logger.exception("Background notification dispatch failed")
        finally:
            db.session.remove()


def dispatch(events: Iterable[ReconciliationEvent | None]) -> None:
    """
    Deliver committed events. Never raises.

    NOTIFY_ASYNC hands the work to a small thread pool so the request
    returns as soon as the ledger commit is done.
    """
    event_ids = [e.id for e in events if e is not None and e.id is not None]
    if not event_ids:
        return
    try:
        if current_app.config.get("NOTIFY_ASYNC", False):
            app = current_app._get_current_object()
            notifier.executor().submit(_deliver_in_background, app, event_ids)
        else:
            _deliver_ids(event_ids)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to dispatch reconciliation events %s", event_ids)


def pending_events(limit: int = 100) -> list[ReconciliationEvent]:
    return (
        db.session.query(ReconciliationEvent)
        .filter(ReconciliationEvent.delivered_at.is_(None))
        .order_by(ReconciliationEvent.id)
        .limit(limit)
        .all()
    )


def redeliver_pending(limit: int = 100) -> tuple[int, int]:
    """Retry undelivered outbox rows. Returns (delivered, still_failing)."""
    delivered = failed = 0
    for event in pending_events(limit):
        if deliver_event(event):
            delivered += 1
        else:
            failed += 1
    return delivered, failed
