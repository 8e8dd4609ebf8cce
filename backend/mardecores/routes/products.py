# Overview: Flask API routes for the product/stock collaborator.

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..extensions import db
from ..models import Product
from ..services import inventory_service, ledger_store


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/")
def list_products_route():
    products = db.session.query(Product).order_by(Product.name).all()
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@products_bp.post("/")
def create_product_route():
    """
    Request body:
    {
        "name": "Batom Matte Coral",
        "price": "39.90",
        "stock": 12,  (optional)
        "sku": "BAT-CORAL"  (optional)
    }
    """
    try:
        data = request.get_json() or {}
        if data.get("price") is None:
            return jsonify({"error": "price required"}), 400
        product = inventory_service.create_product(
            name=data.get("name"),
            price=data.get("price"),
            stock=data.get("stock", 0),
            sku=data.get("sku"),
        )
        return jsonify({"product": product.to_dict()}), 201

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = ledger_store.get_product(product_id)
        data = product.to_dict()
        data["movements"] = [m.to_dict() for m in product.movements]
        return jsonify({"product": data}), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code


@products_bp.post("/<int:product_id>/adjust")
def adjust_stock_route(product_id: int):
    """
    Request body:
    {
        "stock": 20,
        "reason": "contagem mensal"  (optional)
    }
    """
    try:
        data = request.get_json() or {}
        movement = inventory_service.adjust_stock(product_id, data.get("stock"), data.get("reason"))
        return jsonify({"movement": movement.to_dict()}), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
