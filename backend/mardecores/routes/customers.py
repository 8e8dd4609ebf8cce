# Overview: Flask API routes for the customer directory.

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..services import customer_service, ledger_store


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("/")
def list_customers_route():
    search = request.args.get("search")
    customers = customer_service.list_customers(search)
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@customers_bp.post("/")
def create_customer_route():
    """
    Request body:
    {
        "name": "Maria Silva",
        "phone": "(11) 98765-4321",  (optional)
        "email": "maria@example.com"  (optional)
    }
    """
    try:
        data = request.get_json() or {}
        customer = customer_service.create_customer(
            name=data.get("name"),
            phone=data.get("phone"),
            email=data.get("email"),
        )
        return jsonify({"customer": customer.to_dict()}), 201

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        customer = ledger_store.get_customer(customer_id)
        data = customer.to_dict()
        data["credit_accounts"] = [a.to_dict() for a in ledger_store.list_accounts(customer_id=customer_id)]
        return jsonify({"customer": data}), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
