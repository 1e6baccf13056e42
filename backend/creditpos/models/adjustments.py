from __future__ import annotations

from ..extensions import db
from creditpos.time_utils import to_utc_z


ACTION_TYPES = ("DEFECTIVE", "FIXED", "RETURN", "EXCHANGE")
CASH_DIRECTIONS = ("PLUS", "MINUS")


class DefectiveLog(db.Model):
    """
    Append-only record of a DEFECTIVE / FIXED / RETURN / EXCHANGE action.

    cash_amount_cents is signed: negative means cash left the register,
    positive means cash came in.
    """
    __tablename__ = "defective_logs"
    __table_args__ = (
        db.Index("ix_defective_logs_branch_created", "branch_id", "created_at"),
        db.Index("ix_defective_logs_action", "action_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)
    action_type = db.Column(db.String(16), nullable=False, default="DEFECTIVE")
    cash_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_adjustment_direction = db.Column(db.String(8), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    handled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "description": self.description,
            "action_type": self.action_type,
            "cash_amount_cents": self.cash_amount_cents,
            "cash_adjustment_direction": self.cash_adjustment_direction,
            "user_id": self.user_id,
            "handled_by_user_id": self.handled_by_user_id,
            "branch_id": self.branch_id,
            "transaction_id": self.transaction_id,
            "created_at": to_utc_z(self.created_at),
        }
