# backend/pos_core/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pos_core.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pos_core.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Seconds a SQLite connection waits for the write lock
    SQLITE_BUSY_TIMEOUT = float(os.environ.get("SQLITE_BUSY_TIMEOUT", "15"))

    # Transient store failures (deadlocks, lock timeouts, version conflicts)
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE = float(os.environ.get("RETRY_BACKOFF_BASE", "0.1"))

    # Fresh order numbers tried on unique-constraint collisions
    ORDER_NUMBER_ATTEMPTS = int(os.environ.get("ORDER_NUMBER_ATTEMPTS", "3"))

    # Receipt header/footer snapshot
    RECEIPT_BUSINESS_NAME = os.environ.get("RECEIPT_BUSINESS_NAME", "POS Core Store")
    RECEIPT_FOOTER = os.environ.get("RECEIPT_FOOTER", "Thank you for your business!")
