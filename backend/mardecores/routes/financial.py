# Overview: Flask API routes for financial reporting over the transaction ledger.

from flask import Blueprint, request, jsonify

from ..errors import LedgerError
from ..services import reporting_service


financial_bp = Blueprint("financial", __name__, url_prefix="/api/financial")


@financial_bp.get("/summary")
def summary_route():
    """
    Query params:
        start, end: ISO dates (inclusive, optional)
    """
    try:
        summary = reporting_service.financial_summary(
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
        return jsonify(summary), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code


@financial_bp.get("/transactions")
def transactions_route():
    try:
        transactions = reporting_service.list_transactions(
            start=request.args.get("start"),
            end=request.args.get("end"),
            type=request.args.get("type"),
            category=request.args.get("category"),
            include_cancelled=request.args.get("include_cancelled", "").lower() in {"1", "true", "yes"},
        )
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
