# Overview: Flask API routes for orders; every status change goes through the reconciliation engine.

# backend/mardecores/routes/orders.py
"""
Order API Routes

WHY: Order status on credit orders is derived from the credit account, so
there is no generic "PATCH status" endpoint. Each transition is a named
engine operation (confirm, revert, reverse, transfer) that updates order,
account, payment ledger and bookkeeping together or not at all.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..services import ledger_store, order_service, reconciliation_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# ORDER CREATION / LOOKUP
# =============================================================================

@orders_bp.post("/")
def create_order_route():
    """
    Create a pending order.

    Request body:
    {
        "customer_id": 12,  (or "customer": {"name", "phone", "email"?})
        "items": [{"product_id": 1, "quantity": 2, "unit_price": "39.90"}],
        "payment_method": "credit",
        "notes": "..."  (optional)
    }

    Returns:
        201: Order created (PED#### / CRE####)
        400: Invalid input
        404: Customer or product not found
    """
    try:
        data = request.get_json() or {}
        order = order_service.create_order(
            items=data.get("items") or [],
            payment_method=data.get("payment_method"),
            customer_id=data.get("customer_id"),
            customer=data.get("customer"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(include_items=True)}), 201

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/")
def list_orders_route():
    orders = order_service.list_orders(
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
        credit_account_id=request.args.get("credit_account_id", type=int),
    )
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = ledger_store.get_order(order_id)
        data = order.to_dict(include_items=True)
        data["transactions"] = [t.to_dict() for t in ledger_store.transactions_for_order(order_id)]
        return jsonify({"order": data}), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code


# =============================================================================
# ENGINE TRANSITIONS
# =============================================================================

@orders_bp.post("/<int:order_id>/confirm")
def confirm_order_route(order_id: int):
    """
    Confirm a pending order.

    Returns:
        200: cash/pix/card order completed, or credit order linked to its account
        400: Order not pending, or insufficient stock
        409: Concurrent modification, retry
    """
    try:
        order = order_service.confirm_order(order_id)
        account = order.credit_account.to_dict() if order.credit_account else None
        return jsonify({"order": order.to_dict(), "credit_account": account}), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/revert")
def revert_order_route(order_id: int):
    """
    Reopen a completed order (completed -> pending).

    Credit orders reopen their account too; it is never a separate call.
    """
    try:
        result = reconciliation_service.revert_order_to_pending(order_id)
        return jsonify(result.to_dict()), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to revert order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/reverse")
def reverse_sale_route(order_id: int):
    """
    Cancel a sale (irreversible).

    Request body:
    {
        "reason": "Produto com defeito"
    }
    """
    try:
        data = request.get_json() or {}
        result = reconciliation_service.reverse_sale(order_id, data.get("reason"))
        return jsonify(result.to_dict()), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reverse sale")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/transfer")
def transfer_order_route(order_id: int):
    """
    Move an order (and its credit balance share) to another customer.

    Request body:
    {
        "customer_id": 34
    }

    Returns:
        200: Transferred
        422: Either account would end with a negative balance
    """
    try:
        data = request.get_json() or {}
        new_customer_id = data.get("customer_id")
        if not new_customer_id:
            return jsonify({"error": "customer_id required"}), 400

        result = reconciliation_service.transfer_order(order_id, new_customer_id)
        return jsonify(result.to_dict()), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transfer order")
        return jsonify({"error": "Internal server error"}), 500
