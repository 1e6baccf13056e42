from __future__ import annotations

from ..extensions import db
from creditpos.time_utils import to_utc_z


class CashierReport(db.Model):
    """Per-day cash rollup for one cashier in one branch."""
    __tablename__ = "cashier_reports"
    __table_args__ = (
        db.UniqueConstraint("cashier_id", "branch_id", "report_date", name="uq_cashier_reports_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    report_date = db.Column(db.DateTime(timezone=True), nullable=False)

    # All amounts in cents
    cash_total_cents = db.Column(db.Integer, nullable=False, default=0)
    card_total_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_total_cents = db.Column(db.Integer, nullable=False, default=0)
    installment_total_cents = db.Column(db.Integer, nullable=False, default=0)
    upfront_total_cents = db.Column(db.Integer, nullable=False, default=0)
    upfront_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    upfront_card_cents = db.Column(db.Integer, nullable=False, default=0)
    sold_quantity = db.Column(db.Integer, nullable=False, default=0)
    sold_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    repayment_total_cents = db.Column(db.Integer, nullable=False, default=0)
    defective_plus_cents = db.Column(db.Integer, nullable=False, default=0)
    defective_minus_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "branch_id": self.branch_id,
            "report_date": to_utc_z(self.report_date),
            "cash_total_cents": self.cash_total_cents,
            "card_total_cents": self.card_total_cents,
            "credit_total_cents": self.credit_total_cents,
            "installment_total_cents": self.installment_total_cents,
            "upfront_total_cents": self.upfront_total_cents,
            "upfront_cash_cents": self.upfront_cash_cents,
            "upfront_card_cents": self.upfront_card_cents,
            "sold_quantity": self.sold_quantity,
            "sold_amount_cents": self.sold_amount_cents,
            "repayment_total_cents": self.repayment_total_cents,
            "defective_plus_cents": self.defective_plus_cents,
            "defective_minus_cents": self.defective_minus_cents,
        }
