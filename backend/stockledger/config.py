# backend/stockledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the process by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Conflicts are never retried by the services; the HTTP layer retries
    # a whole settlement/payment this many times before answering 409.
    LEDGER_CONFLICT_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_CONFLICT_RETRY_ATTEMPTS", "3"))
    LEDGER_CONFLICT_RETRY_BACKOFF = float(os.environ.get("LEDGER_CONFLICT_RETRY_BACKOFF", "0.05"))
