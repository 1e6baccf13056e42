# Overview: Locking, retry and atomic-write helpers shared by the finance services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def _apply_statement_timeout() -> None:
    """Bound the atomic unit on dialects with a per-transaction statement timeout."""
    if db.engine.dialect.name != "postgresql":
        return
    timeout_ms = int(float(current_app.config.get("ATOMIC_WRITE_TIMEOUT_SECONDS", 15)) * 1000)
    db.session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


def run_atomic(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func() as one atomic unit: commit on success, roll back on any error.

    WHY: Each state-changing operation (sale, adjustment, transfer) must land
    all of its writes or none. Lock/timeout failures are retried as a whole;
    domain errors raised inside func() roll back and propagate untouched.

    Args:
        func: Zero-argument callable doing the reads and writes of the unit.
            It is re-invoked on retry, so it must load its rows itself.

    Returns:
        Whatever func() returns.
    """
    def _op():
        try:
            _apply_statement_timeout()
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
