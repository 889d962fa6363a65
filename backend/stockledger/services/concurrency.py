# Overview: Row locking and caller-side retry for optimistic-concurrency conflicts.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id check on Product/Order catches what SQLite cannot lock.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Re-run a whole ledger operation when it loses a concurrency race.

    The services never retry on their own: each call re-reads state, so the
    retried operation recomputes FIFO costs and balances from fresh data.
    Only ConflictError (and the raw SQLAlchemy conflicts it wraps) are retried;
    validation and not-found errors propagate immediately.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (ConflictError, OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.info(
                "Ledger conflict on attempt %s/%s, retrying: %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def retry_settings() -> dict:
    """Retry keyword arguments from app config, for run_with_retry(**retry_settings())."""
    return {
        "attempts": int(current_app.config.get("LEDGER_CONFLICT_RETRY_ATTEMPTS", 3)),
        "backoff_base": float(current_app.config.get("LEDGER_CONFLICT_RETRY_BACKOFF", 0.05)),
    }
