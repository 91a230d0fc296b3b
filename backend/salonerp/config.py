# backend/salonerp/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/salonerp.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///salonerp.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "lenient" accepts overpayments and raw admin overrides of bill payment fields.
    # "strict" rejects both.
    PAYMENT_STRICTNESS = os.environ.get("PAYMENT_STRICTNESS", "lenient")

    # Bounds for ledger/reconciliation writes (see services/concurrency.py)
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.05"))
    LEDGER_DEADLINE_SECONDS = float(os.environ.get("LEDGER_DEADLINE_SECONDS", "5.0"))

    EXPIRY_WINDOW_DAYS = int(os.environ.get("EXPIRY_WINDOW_DAYS", "30"))
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
