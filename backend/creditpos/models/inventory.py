from __future__ import annotations

from ..extensions import db
from creditpos.time_utils import to_utc_z


# Product status labels. The label is derived from quantity changes; the
# counters are the source of truth.
PRODUCT_STATUSES = (
    "IN_STORE",
    "IN_WAREHOUSE",
    "SOLD",
    "DEFECTIVE",
    "FIXED",
    "RETURNED",
    "EXCHANGED",
)


class Product(db.Model):
    """
    Stock record for one product in one branch.

    price_cents is the cost basis in the base currency (Config.BASE_CURRENCY).
    quantity is the sellable on-hand count; defective/returned/exchanged are
    cumulative counters maintained by the adjustment flow.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("barcode", "branch_id", name="uq_products_barcode_branch"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_nonneg"),
        db.CheckConstraint("defective_quantity >= 0", name="ck_products_defective_nonneg"),
        db.CheckConstraint("returned_quantity >= 0", name="ck_products_returned_nonneg"),
        db.CheckConstraint("exchanged_quantity >= 0", name="ck_products_exchanged_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    model = db.Column(db.String(255), nullable=True)
    barcode = db.Column(db.String(128), nullable=True, index=True)
    unit_type = db.Column(db.String(16), nullable=False, default="PIECE")

    price_cents = db.Column(db.Integer, nullable=False, default=0)
    market_price_cents = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    initial_quantity = db.Column(db.Integer, nullable=False, default=0)
    defective_quantity = db.Column(db.Integer, nullable=False, default=0)
    returned_quantity = db.Column(db.Integer, nullable=False, default=0)
    exchanged_quantity = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="IN_STORE", index=True)

    # Share of the margin (0-100) paid to the seller as a bonus
    bonus_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    branch = db.relationship("Branch", backref=db.backref("products", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "name": self.name,
            "model": self.model,
            "barcode": self.barcode,
            "unit_type": self.unit_type,
            "price_cents": self.price_cents,
            "market_price_cents": self.market_price_cents,
            "quantity": self.quantity,
            "initial_quantity": self.initial_quantity,
            "defective_quantity": self.defective_quantity,
            "returned_quantity": self.returned_quantity,
            "exchanged_quantity": self.exchanged_quantity,
            "status": self.status,
            "bonus_percentage": str(self.bonus_percentage) if self.bonus_percentage is not None else "0",
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }


class CurrencyExchangeRate(db.Model):
    """
    Conversion rate from_currency -> to_currency.

    Rows with branch_id NULL are global; a branch-scoped active row wins.
    """
    __tablename__ = "currency_exchange_rates"
    __table_args__ = (
        db.Index("ix_rates_pair_branch", "from_currency", "to_currency", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_currency = db.Column(db.String(3), nullable=False)
    to_currency = db.Column(db.String(3), nullable=False)
    rate = db.Column(db.Numeric(18, 6), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "rate": str(self.rate),
            "branch_id": self.branch_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
