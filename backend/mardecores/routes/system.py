# backend/mardecores/routes/system.py
"""
System health endpoint.

Reports database connectivity plus the two numbers an operator watches on
this service: open credit accounts and undelivered reconciliation events.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import CreditAccount, ReconciliationEvent
from ..models.credit import ACCOUNT_STATUS_ACTIVE
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        active_accounts = db.session.query(CreditAccount).filter_by(status=ACCOUNT_STATUS_ACTIVE).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"active_credit_accounts": active_accounts},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_notifier_health() -> dict:
    """Undelivered outbox rows degrade, but do not fail, the service."""
    try:
        pending = db.session.query(ReconciliationEvent).filter(
            ReconciliationEvent.delivered_at.is_(None)
        ).count()
        return {
            "status": "degraded" if pending else "healthy",
            "details": {
                "pending_events": pending,
                "webhook_targets": len(current_app.config.get("WEBHOOK_URLS") or []),
            },
        }
    except Exception:
        current_app.logger.exception("Notifier health check failed")
        return {"status": "unhealthy", "error": "Notifier error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    database_health = check_database_health()
    notifier_health = check_notifier_health()

    all_checks = [database_health, notifier_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {
            "database": database_health,
            "notifier": notifier_health,
        }
    }
    return response, http_status
