from __future__ import annotations

from ..extensions import db
from creditpos.time_utils import to_utc_z


BONUS_REASONS = ("SALES_BONUS", "SALES_PENALTY")


class Bonus(db.Model):
    """
    Seller bonus (positive amount) or penalty (negative amount).

    Amounts are in the settlement currency. bonus_products is a snapshot of
    the giveaways at calculation time so later price edits do not rewrite
    history.
    """
    __tablename__ = "bonuses"
    __table_args__ = (
        db.Index("ix_bonuses_user_date", "user_id", "bonus_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    description = db.Column(db.Text, nullable=True)
    bonus_products = db.Column(db.JSON, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    bonus_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "branch_id": self.branch_id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "reason": self.reason,
            "description": self.description,
            "bonus_products": self.bonus_products,
            "created_by_user_id": self.created_by_user_id,
            "bonus_date": to_utc_z(self.bonus_date),
        }
