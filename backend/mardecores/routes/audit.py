# Overview: Flask API routes for the ledger consistency audit.

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..services import audit_service


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("/")
def run_audit_route():
    """
    Report divergences between stored balances/status and the payment ledger.

    Query params:
        account_id: limit the sweep to one credit account (optional)
    """
    try:
        account_id = request.args.get("account_id", type=int)
        divergences = audit_service.run_audit(account_id)
        return jsonify({
            "divergences": [d.to_dict() for d in divergences],
            "count": len(divergences),
        }), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Audit failed")
        return jsonify({"error": "Internal server error"}), 500


@audit_bp.post("/fix")
def auto_fix_route():
    """
    Audit and repair in one call.

    Request body (optional):
    {
        "account_id": 7
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        divergences = audit_service.run_audit(data.get("account_id"))
        result = audit_service.auto_fix(divergences)
        current_app.logger.info(
            "Audit fix requested: %s divergence(s), %s fixed, %s remaining",
            len(divergences), result.fixed, len(result.remaining),
        )
        body = result.to_dict()
        body["found"] = len(divergences)
        return jsonify(body), 200

    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Audit fix failed")
        return jsonify({"error": "Internal server error"}), 500
