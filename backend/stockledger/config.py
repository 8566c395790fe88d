# backend/stockledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Alert thresholds
    EXPIRATION_ALERT_DAYS = int(os.environ.get("EXPIRATION_ALERT_DAYS", "30"))
    STOCK_CRITICAL_RATIO = float(os.environ.get("STOCK_CRITICAL_RATIO", "0.25"))

    # Whole-operation retry on lock/optimistic-version conflicts
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.1"))
