# Overview: Audit task creation for transactions that need follow-up (delivery).

from __future__ import annotations

import logging

from ..extensions import db
from ..models import AuditTask, Transaction
from .errors import NotFoundError

logger = logging.getLogger(__name__)

DELIVERY_AUDIT = "DELIVERY_AUDIT"


def create_audit_task(transaction_id: int, task_type: str = DELIVERY_AUDIT) -> AuditTask:
    """Open an audit task for a transaction. Idempotent per (transaction, type)."""
    if db.session.get(Transaction, transaction_id) is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})

    existing = AuditTask.query.filter_by(transaction_id=transaction_id, task_type=task_type).first()
    if existing:
        return existing

    task = AuditTask(transaction_id=transaction_id, task_type=task_type, status="OPEN")
    db.session.add(task)
    db.session.commit()
    logger.info("Audit task %s opened for transaction %s", task_type, transaction_id)
    return task


def list_tasks(transaction_id: int | None = None, status: str | None = None) -> list[AuditTask]:
    query = AuditTask.query
    if transaction_id:
        query = query.filter_by(transaction_id=transaction_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(AuditTask.id.desc()).all()
