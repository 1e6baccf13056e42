from __future__ import annotations

from ..extensions import db
from creditpos.time_utils import to_utc_z


class Branch(db.Model):
    """
    Retail branch (store location).

    cash_balance_cents is a running register balance; defective/return/exchange
    actions add their signed cash delta to it with an atomic increment.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    cash_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "cash_balance_cents": self.cash_balance_cents,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """Staff member. Only the role and branch are consumed by the finance engine."""
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True)
    role = db.Column(db.String(32), nullable=False, default="CASHIER")  # ADMIN, CASHIER, SELLER, MANAGER
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    branch = db.relationship("Branch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "branch_id": self.branch_id,
        }


class Customer(db.Model):
    """Buyer of record for credit/installment sales, keyed by phone."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False, default="")
    phone = db.Column(db.String(32), nullable=False, unique=True)
    passport_series = db.Column(db.String(32), nullable=True)
    jshshir = db.Column(db.String(32), nullable=True)  # personal identification number
    address = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "passport_series": self.passport_series,
            "jshshir": self.jshshir,
            "address": self.address,
        }
