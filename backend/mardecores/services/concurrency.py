# Overview: Locking and retry helpers shared by every ledger write path.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterable

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


class AccountLockRegistry:
    """
    In-process mutexes per credit account and per customer.

    Reconciliation operations on the same account are serialized here;
    operations on different accounts run in parallel. Operations that may
    open an account take the customer lock first, so one customer never
    ends up with two active accounts from concurrent confirmations.

    Lock order: customer locks, then account locks, each in ascending id
    order. Nested holds must follow the same order (customer outside,
    account inside) so two transfers between the same pair of accounts
    cannot deadlock.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, int], threading.Lock] = {}

    def _lock_for(self, kind: str, entity_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get((kind, entity_id))
            if lock is None:
                lock = threading.Lock()
                self._locks[(kind, entity_id)] = lock
            return lock

    @staticmethod
    def ordered(ids: Iterable[int | None]) -> list[int]:
        return sorted({i for i in ids if i is not None})

    @contextmanager
    def hold(self, *account_ids: int | None, customers: Iterable[int | None] = ()):
        keys = [("customer", c) for c in self.ordered(customers)]
        keys += [("credit account", a) for a in self.ordered(account_ids)]
        acquired: list[threading.Lock] = []
        try:
            for kind, entity_id in keys:
                lock = self._lock_for(kind, entity_id)
                if not lock.acquire(timeout=self.timeout):
                    raise ConflictError(f"Timed out waiting for {kind} {entity_id}")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


account_locks = AccountLockRegistry()


def _default_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3))
    return 3


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any failure rolls the session back so
    no partial ledger update survives. Exhausted retries raise ConflictError.
    """
    attempts = attempts or _default_attempts()
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConflictError(
                    f"Concurrent modification detected; retry the operation ({exc.__class__.__name__})"
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise ConflictError("Operation could not be completed")
