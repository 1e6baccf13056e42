from __future__ import annotations

from ..extensions import db
from creditpos.time_utils import to_utc_z


TRANSACTION_TYPES = ("SALE", "PURCHASE", "TRANSFER", "RETURN", "WRITE_OFF", "DELIVERY")
TRANSACTION_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED")
PAYMENT_TYPES = ("CASH", "CARD", "TERMINAL", "CREDIT", "INSTALLMENT")
SCHEDULED_PAYMENT_TYPES = ("CREDIT", "INSTALLMENT")
UPFRONT_PAYMENT_TYPES = ("CASH", "CARD", "TERMINAL")
SPLIT_PAYMENT_METHODS = ("CASH", "CARD", "TERMINAL", "TOVAR")
TERM_UNITS = ("MONTHS", "DAYS")


class Transaction(db.Model):
    """
    Sale / purchase / transfer document.

    WHY: The financial figures (total, final_total, remaining balance) are
    computed once at creation and persisted; later reads never re-derive
    interest. Partial returns adjust them through schedule recomputation.

    user_id is the creator (cashier); sold_by_user_id is the seller of record
    and the beneficiary of bonuses/penalties.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_type_created", "type", "created_at"),
        db.Index("ix_transactions_seller_created", "sold_by_user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)

    payment_type = db.Column(db.String(16), nullable=True)
    upfront_payment_type = db.Column(db.String(16), nullable=False, default="CASH")
    term_unit = db.Column(db.String(8), nullable=False, default="MONTHS")
    months = db.Column(db.Integer, nullable=False, default=0)
    days = db.Column(db.Integer, nullable=False, default=0)

    # All amounts in cents
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    final_total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    down_payment_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    extra_profit_cents = db.Column(db.Integer, nullable=False, default=0)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    from_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    sold_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    delivery_type = db.Column(db.String(16), nullable=True)
    delivery_address = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    from_branch = db.relationship("Branch", foreign_keys=[from_branch_id])
    to_branch = db.relationship("Branch", foreign_keys=[to_branch_id])
    user = db.relationship("User", foreign_keys=[user_id])
    sold_by = db.relationship("User", foreign_keys=[sold_by_user_id])
    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        order_by="TransactionItem.id",
    )
    payments = db.relationship("TransactionPayment", backref="transaction", lazy=True)
    schedules = db.relationship(
        "PaymentSchedule",
        backref="transaction",
        lazy=True,
        order_by="PaymentSchedule.month",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def upfront_cents(self) -> int:
        """Upfront component: the down payment when recorded, else amount paid."""
        return self.down_payment_cents or self.amount_paid_cents or 0

    @property
    def is_scheduled(self) -> bool:
        return self.payment_type in SCHEDULED_PAYMENT_TYPES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "payment_type": self.payment_type,
            "upfront_payment_type": self.upfront_payment_type,
            "term_unit": self.term_unit,
            "months": self.months,
            "days": self.days,
            "total_cents": self.total_cents,
            "final_total_cents": self.final_total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "down_payment_cents": self.down_payment_cents,
            "remaining_balance_cents": self.remaining_balance_cents,
            "extra_profit_cents": self.extra_profit_cents,
            "customer_id": self.customer_id,
            "from_branch_id": self.from_branch_id,
            "to_branch_id": self.to_branch_id,
            "user_id": self.user_id,
            "sold_by_user_id": self.sold_by_user_id,
            "delivery_type": self.delivery_type,
            "delivery_address": self.delivery_address,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "items": [item.to_dict() for item in self.items],
            "payments": [payment.to_dict() for payment in self.payments],
        }


class TransactionItem(db.Model):
    """
    One line of a transaction.

    quantity shrinks on return/exchange and never goes negative; a line reduced
    to zero is kept with status RETURNED. original_quantity records the
    quantity at sale time and is what schedule recomputation uses to recover
    the pre-return principal.
    """
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_transaction_items_quantity_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    original_quantity = db.Column(db.Integer, nullable=False)

    price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=True)
    original_price_cents = db.Column(db.Integer, nullable=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    # Currency selling_price_cents is expressed in
    currency = db.Column(db.String(3), nullable=False)

    credit_month = db.Column(db.Integer, nullable=True)  # months, or days when term_unit is DAYS
    credit_percent_bps = db.Column(db.Integer, nullable=True)
    monthly_payment_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # ACTIVE, PENDING, RETURNED

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    @property
    def unit_sold_cents(self) -> int:
        """Unit price actually charged on this line."""
        if self.selling_price_cents is not None:
            return self.selling_price_cents
        return self.price_cents or 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "original_quantity": self.original_quantity,
            "price_cents": self.price_cents,
            "selling_price_cents": self.selling_price_cents,
            "original_price_cents": self.original_price_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "credit_month": self.credit_month,
            "credit_percent_bps": self.credit_percent_bps,
            "monthly_payment_cents": self.monthly_payment_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class TransactionPayment(db.Model):
    """Tendered split of a simple sale (CASH, CARD, TERMINAL, TOVAR)."""
    __tablename__ = "transaction_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    method = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
        }


class TransactionBonusProduct(db.Model):
    """
    Product given away free with a sale.

    Rows are deleted (not decremented) when a return restocks them, which is
    what keeps a second return from restocking twice.
    """
    __tablename__ = "transaction_bonus_products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    # Set when the row mirrors a zero-price sale line; that line owns the stock
    source_item_id = db.Column(db.Integer, db.ForeignKey("transaction_items.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "source_item_id": self.source_item_id,
        }


class PaymentSchedule(db.Model):
    """
    One period of a credit/installment plan.

    Rows of a transaction are replaced as a set whenever the principal
    changes; they are never patched individually.
    """
    __tablename__ = "payment_schedules"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "month", name="uq_payment_schedules_tx_month"),
        db.CheckConstraint("remaining_balance_cents >= 0", name="ck_payment_schedules_balance_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    month = db.Column(db.Integer, nullable=False)  # 1-based period ordinal

    payment_cents = db.Column(db.Integer, nullable=False)
    remaining_balance_cents = db.Column(db.Integer, nullable=False)
    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    installment_type = db.Column(db.String(16), nullable=False, default="MONTHLY")  # MONTHLY, DAILY
    total_periods = db.Column(db.Integer, nullable=False, default=1)
    remaining_periods = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "month": self.month,
            "payment_cents": self.payment_cents,
            "remaining_balance_cents": self.remaining_balance_cents,
            "is_paid": self.is_paid,
            "paid_amount_cents": self.paid_amount_cents,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "due_date": to_utc_z(self.due_date) if self.due_date else None,
            "installment_type": self.installment_type,
            "total_periods": self.total_periods,
            "remaining_periods": self.remaining_periods,
        }


class CreditRepayment(db.Model):
    """Money received against a credit/installment balance after the sale."""
    __tablename__ = "credit_repayments"
    __table_args__ = (
        db.Index("ix_credit_repayments_payer_paid", "paid_by_user_id", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    schedule_id = db.Column(db.Integer, db.ForeignKey("payment_schedules.id", ondelete="SET NULL"), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    channel = db.Column(db.String(8), nullable=False, default="CASH")  # CASH, CARD
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    transaction = db.relationship("Transaction")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "schedule_id": self.schedule_id,
            "amount_cents": self.amount_cents,
            "channel": self.channel,
            "paid_at": to_utc_z(self.paid_at),
            "paid_by_user_id": self.paid_by_user_id,
            "branch_id": self.branch_id,
        }
