# Overview: Post-commit best-effort steps with retry and a durable failure record.

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..logging_config import operation_logger
from ..models import SideEffectFailure
from creditpos.time_utils import utcnow

logger = logging.getLogger(__name__)

SCHEDULE_RECOMPUTE = "schedule.recompute"
BONUS_CALCULATE = "bonus.calculate"
DELIVERY_AUDIT_TASK = "task.delivery_audit"


def _attempts() -> int:
    return max(1, int(current_app.config.get("SIDE_EFFECT_ATTEMPTS", 3)))


def _record_failure(name: str, transaction_id: int | None, error: Exception, attempts: int) -> None:
    try:
        db.session.add(SideEffectFailure(
            name=name,
            transaction_id=transaction_id,
            error=f"{type(error).__name__}: {error}",
            attempts=attempts,
        ))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Could not record side effect failure %s for transaction %s", name, transaction_id)


def run_after_commit(name: str, fn, *, transaction_id: int | None = None) -> bool:
    """
    Run a best-effort step after the primary write has committed.

    The step is retried SIDE_EFFECT_ATTEMPTS times. Each failure is logged at
    WARNING bound to the transaction id; after the last attempt a
    SideEffectFailure row is written so `flask finance retry-failures` can
    replay it. Never raises.

    Returns:
        True when the step eventually succeeded.
    """
    log = operation_logger(__name__, transaction_id=transaction_id, side_effect=name)
    attempts = _attempts()
    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            fn()
            return True
        except Exception as exc:  # noqa: BLE001 - best-effort boundary
            db.session.rollback()
            last_exc = exc
            log.warning("Side effect failed (attempt %s/%s): %s", attempt, attempts, exc)

    log.error("Side effect gave up after %s attempts", attempts)
    _record_failure(name, transaction_id, last_exc, attempts)
    return False


def _handler_for(name: str):
    # Lazy imports: the handlers' modules import this one.
    if name == SCHEDULE_RECOMPUTE:
        from .schedule_service import recompute_schedule
        return recompute_schedule
    if name == BONUS_CALCULATE:
        from .bonus_service import recalculate_for_transaction
        return recalculate_for_transaction
    if name == DELIVERY_AUDIT_TASK:
        from .task_service import create_audit_task
        return create_audit_task
    return None


def list_open_failures() -> list[SideEffectFailure]:
    return (
        SideEffectFailure.query
        .filter(SideEffectFailure.resolved_at.is_(None))
        .order_by(SideEffectFailure.id.asc())
        .all()
    )


def retry_failures() -> dict:
    """
    Replay every unresolved SideEffectFailure once.

    Returns:
        {"resolved": [ids], "failed": [ids], "skipped": [ids]}
    """
    outcome = {"resolved": [], "failed": [], "skipped": []}
    for failure in list_open_failures():
        failure_id = failure.id
        handler = _handler_for(failure.name)
        if handler is None or failure.transaction_id is None:
            outcome["skipped"].append(failure_id)
            continue

        log = operation_logger(__name__, transaction_id=failure.transaction_id, side_effect=failure.name)
        try:
            handler(failure.transaction_id)
        except Exception as exc:  # noqa: BLE001 - best-effort boundary
            db.session.rollback()
            log.warning("Retry failed: %s", exc)
            failure = db.session.get(SideEffectFailure, failure_id)
            failure.attempts += 1
            failure.error = f"{type(exc).__name__}: {exc}"
            db.session.commit()
            outcome["failed"].append(failure_id)
            continue

        failure = db.session.get(SideEffectFailure, failure_id)
        failure.attempts += 1
        failure.resolved_at = utcnow()
        db.session.commit()
        log.info("Side effect resolved on retry")
        outcome["resolved"].append(failure_id)
    return outcome
