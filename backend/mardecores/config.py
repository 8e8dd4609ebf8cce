# backend/mardecores/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> list[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/mardecores.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///mardecores.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Tolerance for legacy float residue on money comparisons (R$ 0.005)
    LEDGER_EPSILON = os.environ.get("LEDGER_EPSILON", "0.005")
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))

    # Reconciliation event subscribers (dashboards, cache invalidation)
    WEBHOOK_URLS = _env_list("WEBHOOK_URLS")
    NOTIFY_TIMEOUT_SECONDS = float(os.environ.get("NOTIFY_TIMEOUT_SECONDS", "2.0"))
    NOTIFY_MAX_ATTEMPTS = int(os.environ.get("NOTIFY_MAX_ATTEMPTS", "3"))
    NOTIFY_BACKOFF_SECONDS = float(os.environ.get("NOTIFY_BACKOFF_SECONDS", "0.2"))
    NOTIFY_ASYNC = _env_bool("NOTIFY_ASYNC", True)

    SYNC_JOB_INTERVAL_MINUTES = int(os.environ.get("SYNC_JOB_INTERVAL_MINUTES", "30"))
