# backend/hwpos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_ids(name: str) -> frozenset[int]:
    raw = os.environ.get(name) or ""
    return frozenset(int(part) for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/hwpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///hwpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sale numbers look like "S-MAIN-000123"
    STORE_CODE = os.environ.get("STORE_CODE", "MAIN")
    SALE_NUMBER_PREFIX = os.environ.get("SALE_NUMBER_PREFIX", "S")

    # Tax rates in basis points (1200 = 12%)
    VAT_RATE_BPS = int(os.environ.get("VAT_RATE_BPS", "1200"))
    EWT_RATE_BPS = int(os.environ.get("EWT_RATE_BPS", "100"))

    # Receivables policy
    AR_ALLOW_OVER_LIMIT = _env_bool("AR_ALLOW_OVER_LIMIT", False)
    AR_OVERPAYMENT_POLICY = os.environ.get("AR_OVERPAYMENT_POLICY", "CLAMP")  # CLAMP, CREDIT
    # Users who may approve an over-limit AR charge at the counter (comma-separated ids)
    AR_OVER_LIMIT_APPROVER_IDS = _env_ids("AR_OVER_LIMIT_APPROVER_IDS")

    # Shift close-out variance band (in cents)
    CASH_VARIANCE_WARNING_CENTS = int(os.environ.get("CASH_VARIANCE_WARNING_CENTS", "500"))

    # Optimistic-lock / deadlock retry
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE = float(os.environ.get("RETRY_BACKOFF_BASE", "0.1"))
