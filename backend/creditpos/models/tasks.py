from __future__ import annotations

from ..extensions import db
from creditpos.time_utils import to_utc_z


class AuditTask(db.Model):
    """Follow-up task opened for a transaction (delivery audit)."""
    __tablename__ = "audit_tasks"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "task_type", name="uq_audit_tasks_tx_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    task_type = db.Column(db.String(32), nullable=False, default="DELIVERY_AUDIT")
    status = db.Column(db.String(16), nullable=False, default="OPEN")  # OPEN, DONE

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "task_type": self.task_type,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class SideEffectFailure(db.Model):
    """
    A post-commit step that exhausted its attempts.

    WHY: best-effort steps never fail the primary write, so their failures are
    kept here for `flask finance retry-failures` instead of being discarded.
    """
    __tablename__ = "side_effect_failures"
    __table_args__ = (
        db.Index("ix_side_effect_failures_open", "resolved_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    transaction_id = db.Column(db.Integer, nullable=True, index=True)
    error = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "transaction_id": self.transaction_id,
            "error": self.error,
            "attempts": self.attempts,
            "created_at": to_utc_z(self.created_at),
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
        }
