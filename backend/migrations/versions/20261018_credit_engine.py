"""Credit/installment engine schema

Revision ID: 20261018_credit_engine
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_credit_engine"
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False)


def upgrade():
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("cash_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("role", sa.String(32), nullable=False, server_default="CASHIER"),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_branch_id", ["branch_id"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("passport_series", sa.String(32), nullable=True),
        sa.Column("jshshir", sa.String(32), nullable=True),
        sa.Column("address", sa.String(255), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("phone"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("model", sa.String(255), nullable=True),
        sa.Column("barcode", sa.String(128), nullable=True),
        sa.Column("unit_type", sa.String(16), nullable=False, server_default="PIECE"),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("market_price_cents", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("initial_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("defective_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("returned_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("exchanged_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="IN_STORE"),
        sa.Column("bonus_percentage", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("barcode", "branch_id", name="uq_products_barcode_branch"),
        sa.CheckConstraint("quantity >= 0", name="ck_products_quantity_nonneg"),
        sa.CheckConstraint("defective_quantity >= 0", name="ck_products_defective_nonneg"),
        sa.CheckConstraint("returned_quantity >= 0", name="ck_products_returned_nonneg"),
        sa.CheckConstraint("exchanged_quantity >= 0", name="ck_products_exchanged_nonneg"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_products_barcode", ["barcode"], unique=False)
        batch_op.create_index("ix_products_status", ["status"], unique=False)

    op.create_table(
        "currency_exchange_rates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("from_currency", sa.String(3), nullable=False),
        sa.Column("to_currency", sa.String(3), nullable=False),
        sa.Column("rate", sa.Numeric(18, 6), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("currency_exchange_rates", schema=None) as batch_op:
        batch_op.create_index("ix_rates_pair_branch", ["from_currency", "to_currency", "branch_id"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="COMPLETED"),
        sa.Column("payment_type", sa.String(16), nullable=True),
        sa.Column("upfront_payment_type", sa.String(16), nullable=False, server_default="CASH"),
        sa.Column("term_unit", sa.String(8), nullable=False, server_default="MONTHS"),
        sa.Column("months", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("final_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("down_payment_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("remaining_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("extra_profit_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("from_branch_id", sa.Integer(), nullable=True),
        sa.Column("to_branch_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("sold_by_user_id", sa.Integer(), nullable=True),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("delivery_type", sa.String(16), nullable=True),
        sa.Column("delivery_address", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["from_branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["to_branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["sold_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["updated_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.create_index("ix_transactions_type", ["type"], unique=False)
        batch_op.create_index("ix_transactions_status", ["status"], unique=False)
        batch_op.create_index("ix_transactions_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_transactions_from_branch_id", ["from_branch_id"], unique=False)
        batch_op.create_index("ix_transactions_to_branch_id", ["to_branch_id"], unique=False)
        batch_op.create_index("ix_transactions_type_created", ["type", "created_at"], unique=False)
        batch_op.create_index("ix_transactions_seller_created", ["sold_by_user_id", "created_at"], unique=False)

    op.create_table(
        "transaction_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("product_name", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("original_quantity", sa.Integer(), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("selling_price_cents", sa.Integer(), nullable=True),
        sa.Column("original_price_cents", sa.Integer(), nullable=True),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("credit_month", sa.Integer(), nullable=True),
        sa.Column("credit_percent_bps", sa.Integer(), nullable=True),
        sa.Column("monthly_payment_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        _created_at(),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("quantity >= 0", name="ck_transaction_items_quantity_nonneg"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transaction_items", schema=None) as batch_op:
        batch_op.create_index("ix_transaction_items_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_transaction_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "transaction_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transaction_payments", schema=None) as batch_op:
        batch_op.create_index("ix_transaction_payments_transaction_id", ["transaction_id"], unique=False)

    op.create_table(
        "transaction_bonus_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("source_item_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["source_item_id"], ["transaction_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transaction_bonus_products", schema=None) as batch_op:
        batch_op.create_index("ix_transaction_bonus_products_transaction_id", ["transaction_id"], unique=False)

    op.create_table(
        "payment_schedules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("payment_cents", sa.Integer(), nullable=False),
        sa.Column("remaining_balance_cents", sa.Integer(), nullable=False),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("paid_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("installment_type", sa.String(16), nullable=False, server_default="MONTHLY"),
        sa.Column("total_periods", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("remaining_periods", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id", "month", name="uq_payment_schedules_tx_month"),
        sa.CheckConstraint("remaining_balance_cents >= 0", name="ck_payment_schedules_balance_nonneg"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payment_schedules", schema=None) as batch_op:
        batch_op.create_index("ix_payment_schedules_transaction_id", ["transaction_id"], unique=False)

    op.create_table(
        "credit_repayments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("schedule_id", sa.Integer(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("channel", sa.String(8), nullable=False, server_default="CASH"),
        sa.Column("paid_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("paid_by_user_id", sa.Integer(), nullable=True),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["schedule_id"], ["payment_schedules.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["paid_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("credit_repayments", schema=None) as batch_op:
        batch_op.create_index("ix_credit_repayments_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_credit_repayments_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_credit_repayments_payer_paid", ["paid_by_user_id", "paid_at"], unique=False)

    op.create_table(
        "defective_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("action_type", sa.String(16), nullable=False, server_default="DEFECTIVE"),
        sa.Column("cash_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cash_adjustment_direction", sa.String(8), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("handled_by_user_id", sa.Integer(), nullable=True),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["handled_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("defective_logs", schema=None) as batch_op:
        batch_op.create_index("ix_defective_logs_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_defective_logs_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_defective_logs_branch_created", ["branch_id", "created_at"], unique=False)
        batch_op.create_index("ix_defective_logs_action", ["action_type"], unique=False)

    op.create_table(
        "bonuses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("bonus_products", sa.JSON(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("bonus_date", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("bonuses", schema=None) as batch_op:
        batch_op.create_index("ix_bonuses_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_bonuses_user_date", ["user_id", "bonus_date"], unique=False)

    op.create_table(
        "cashier_reports",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cashier_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("report_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cash_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("card_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("credit_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("installment_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("upfront_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("upfront_cash_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("upfront_card_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sold_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sold_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("repayment_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("defective_plus_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("defective_minus_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["cashier_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cashier_id", "branch_id", "report_date", name="uq_cashier_reports_day"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "audit_tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("task_type", sa.String(32), nullable=False, server_default="DELIVERY_AUDIT"),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        _created_at(),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id", "task_type", name="uq_audit_tasks_tx_type"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("audit_tasks", schema=None) as batch_op:
        batch_op.create_index("ix_audit_tasks_transaction_id", ["transaction_id"], unique=False)

    op.create_table(
        "side_effect_failures",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("side_effect_failures", schema=None) as batch_op:
        batch_op.create_index("ix_side_effect_failures_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_side_effect_failures_open", ["resolved_at"], unique=False)


def downgrade():
    for table in (
        "side_effect_failures",
        "audit_tasks",
        "cashier_reports",
        "bonuses",
        "defective_logs",
        "credit_repayments",
        "payment_schedules",
        "transaction_bonus_products",
        "transaction_payments",
        "transaction_items",
        "transactions",
        "currency_exchange_rates",
        "products",
        "customers",
        "users",
        "branches",
    ):
        op.drop_table(table)
