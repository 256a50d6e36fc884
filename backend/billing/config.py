# backend/billing/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/billing.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///billing.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound on how long a writer waits for a row/database lock before
    # the operation fails with a retryable Contention error.
    LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))

    # Absolute rounding tolerance (in cents) for payment reconciliation.
    PAYMENT_TOLERANCE_CENTS = int(os.environ.get("PAYMENT_TOLERANCE_CENTS", "1"))

    # Company tax fallbacks, used when no company_profile row exists
    SELLER_STATE = os.environ.get("SELLER_STATE", "")
    DEFAULT_TAX_RATE_BPS = int(os.environ.get("DEFAULT_TAX_RATE_BPS", "500"))
    TAX_NAME = os.environ.get("TAX_NAME", "GST")
    ENABLE_TAX = _env_bool("ENABLE_TAX", True)

    # Invoice due date = invoice date + N days
    INVOICE_DUE_DAYS = int(os.environ.get("INVOICE_DUE_DAYS", "0"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Callable(request) -> Identity | None. None means trusted gateway headers.
    IDENTITY_RESOLVER = None
