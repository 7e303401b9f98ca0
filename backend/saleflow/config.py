# backend/saleflow/config.py
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

    # SQLite DB stored in backend/instance/saleflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///saleflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Receipt numbers look like RCP-000123
    RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "RCP")

    # Basis points (1600 = 16%); used when a product has no rate of its own
    DEFAULT_TAX_RATE_BPS = int(os.environ.get("DEFAULT_TAX_RATE_BPS", "0"))

    # Optimistic stock compare-and-adjust attempts before giving up
    STOCK_UPDATE_ATTEMPTS = int(os.environ.get("STOCK_UPDATE_ATTEMPTS", "5"))

    # Whole-operation retries on lock / stale version errors
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))

    # Voiding a sale restocks inventory and reverses customer statistics
    VOID_REVERSES_EFFECTS = _env_bool("VOID_REVERSES_EFFECTS", True)

    AUDIT_LOG_ENABLED = _env_bool("AUDIT_LOG_ENABLED", True)
