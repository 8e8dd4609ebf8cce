# Overview: Flask API routes for crediário accounts and their payment ledger.

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError, ValidationError
from ..services import ledger_store, order_service, reconciliation_service
from ..time_utils import parse_iso_date


credit_accounts_bp = Blueprint("credit_accounts", __name__, url_prefix="/api/credit-accounts")


@credit_accounts_bp.get("/")
def list_accounts_route():
    accounts = ledger_store.list_accounts(
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
    )
    return jsonify({"credit_accounts": [a.to_dict() for a in accounts]}), 200


@credit_accounts_bp.post("/")
def open_account_route():
    """
    Open a credit account by admin entry (balance not tied to an order).

    Request body:
    {
        "customer_id": 12,
        "total_amount": "250.00",
        "installments": 5,  (optional, default 1)
        "payment_frequency": "weekly",  (optional, default monthly)
        "next_payment_date": "2026-11-01",  (optional)
        "notes": "Saldo do caderno"  (optional)
    }

    Returns:
        201: Account opened
        400: Invalid amount, installments, frequency or date;
             customer already has an active account
        404: Customer not found
    """
    try:
        data = request.get_json() or {}
        if not data.get("customer_id"):
            return jsonify({"error": "customer_id required"}), 400
        if data.get("total_amount") is None:
            return jsonify({"error": "total_amount required"}), 400
        try:
            next_payment_date = parse_iso_date(data.get("next_payment_date"))
        except (ValueError, AttributeError):
            raise ValidationError(f"Invalid next_payment_date: {data.get('next_payment_date')}")

        account = reconciliation_service.open_manual_account(
            data.get("customer_id"),
            data.get("total_amount"),
            installments=data.get("installments", 1),
            frequency=data.get("payment_frequency", "monthly"),
            next_payment_date=next_payment_date,
            notes=data.get("notes"),
        )
        return jsonify({"credit_account": account.to_dict()}), 201

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open credit account")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.get("/<int:account_id>")
def get_account_route(account_id: int):
    try:
        account = ledger_store.get_credit_account(account_id)
        data = account.to_dict()
        data["payments"] = [p.to_dict() for p in ledger_store.list_payments(account_id, completed_only=False)]
        data["orders"] = [o.to_dict() for o in order_service.list_orders(credit_account_id=account_id)]
        return jsonify({"credit_account": data}), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code


@credit_accounts_bp.post("/<int:account_id>/payments")
def record_payment_route(account_id: int):
    """
    Record a customer payment on a credit account.

    Headers:
        Idempotency-Key: client-generated key (optional, or "idempotency_key" in body)

    Request body:
    {
        "amount": "30.00",
        "payment_method": "pix",
        "notes": "2a parcela"  (optional)
    }

    Returns:
        201: Payment recorded
        200: Replay of an earlier request with the same key
        400: Non-positive or over-limit amount, unknown method
        404: Account not found
        409: Concurrent modification, or key reused with a different payload
    """
    try:
        data = request.get_json() or {}
        if data.get("amount") is None:
            return jsonify({"error": "amount required"}), 400

        result = reconciliation_service.record_payment(
            account_id,
            data.get("amount"),
            data.get("payment_method"),
            notes=data.get("notes"),
            idempotency_key=request.headers.get("Idempotency-Key") or data.get("idempotency_key"),
        )
        return jsonify(result.to_dict()), 200 if result.replayed else 201

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record credit payment")
        return jsonify({"error": "Internal server error"}), 500
