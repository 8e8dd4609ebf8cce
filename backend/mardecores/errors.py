# Overview: Typed errors raised by the ledger services and mapped to HTTP codes by routes.

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every reconciliation/ledger failure."""

    status_code = 400


class NotFoundError(LedgerError):
    """Order, account, payment, transaction or customer id did not resolve."""

    status_code = 404


class InvalidAmountError(LedgerError):
    """Non-positive, malformed, or over-limit money amount."""

    status_code = 400


class ValidationError(LedgerError):
    """400-level input problem (missing field, unknown payment method)."""

    status_code = 400


class InvalidStateTransitionError(LedgerError):
    """The entity is not in a state that allows the requested operation."""

    status_code = 400


class ConflictError(LedgerError):
    """
    Concurrent modification detected (stale optimistic version, lock timeout).

    Callers should retry the whole operation, never a partial step.
    """

    status_code = 409


class IdempotencyKeyReuseError(ConflictError):
    """An idempotency key was replayed with a different payload."""


class CrossAccountIntegrityError(LedgerError):
    """A transfer would leave either account with a negative balance."""

    status_code = 422


class NotificationDeliveryError(LedgerError):
    """
    A subscriber could not be notified.

    Non-fatal: the ledger transaction is already committed when this happens.
    """

    status_code = 502
