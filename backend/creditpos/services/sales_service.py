"""
Sale mutation orchestrator.

WHY: A sale touches customer, transaction, lines, payment splits, giveaways,
schedule rows and stock. All of those land in one atomic write; bonus
calculation and delivery audit tasks run after commit so they can never
roll back or block the sale.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..logging_config import operation_logger
from ..models import (
    Bonus,
    Customer,
    CreditRepayment,
    DefectiveLog,
    PaymentSchedule,
    Product,
    Transaction,
    TransactionBonusProduct,
    TransactionItem,
    TransactionPayment,
    User,
    AuditTask,
)
from ..models.transactions import (
    PAYMENT_TYPES,
    SPLIT_PAYMENT_METHODS,
    TERM_UNITS,
    TRANSACTION_STATUSES,
    UPFRONT_PAYMENT_TYPES,
)
from ..money import round_cents, round_to_units, bps_to_fraction, to_decimal
from ..validation import coerce_cents, coerce_choice, coerce_int, coerce_quantity
from creditpos.time_utils import coerce_datetime
from . import schedule_service
from .concurrency import lock_for_update, run_atomic
from .errors import ConflictingStateError, InsufficientStockError, InvalidRequestError, NotFoundError
from .inventory_service import decrement_stock, increment_stock
from .side_effects import DELIVERY_AUDIT_TASK, run_after_commit

logger = logging.getLogger(__name__)

CREATABLE_TYPES = ("SALE", "PURCHASE", "DELIVERY")
UPDATABLE_FIELDS = {
    "description",
    "delivery_type",
    "delivery_address",
    "customer_id",
    "sold_by_user_id",
    "upfront_payment_type",
}

__all__ = [
    "ConflictingStateError",
    "InsufficientStockError",
    "InvalidRequestError",
    "NotFoundError",
    "create_transaction",
    "finalize_sale",
    "attach_bonus_products",
    "update_status",
    "update_transaction",
    "delete_transaction",
    "get_statistics",
    "get_product_sales",
    "is_delivery",
]


# =============================================================================
# Request normalization (runs before any write)
# =============================================================================

def _monthly_payment_estimate(price_cents: int, quantity: int, credit_month, credit_percent_bps) -> int:
    """Per-line display estimate: price * qty * (1 + pct) / months."""
    if not credit_month or not credit_percent_bps:
        return 0
    with_interest = to_decimal(price_cents * quantity) * (1 + bps_to_fraction(credit_percent_bps))
    return round_cents(with_interest / credit_month)


def _normalize_item(raw: dict, index: int, default_currency: str) -> dict:
    field = f"items[{index}]"
    product_id = coerce_int(raw.get("product_id"), f"{field}.product_id")
    quantity = coerce_quantity(raw.get("quantity"), f"{field}.quantity")
    price = coerce_cents(raw.get("price_cents", 0), f"{field}.price_cents")
    selling = coerce_cents(raw.get("selling_price_cents"), f"{field}.selling_price_cents", allow_none=True)
    original = coerce_cents(raw.get("original_price_cents"), f"{field}.original_price_cents", allow_none=True)
    total = coerce_cents(raw.get("total_cents"), f"{field}.total_cents", allow_none=True)
    credit_month = coerce_int(raw.get("credit_month"), f"{field}.credit_month", allow_none=True)
    credit_bps = coerce_int(raw.get("credit_percent_bps"), f"{field}.credit_percent_bps", allow_none=True)
    monthly = coerce_cents(raw.get("monthly_payment_cents"), f"{field}.monthly_payment_cents", allow_none=True)

    if credit_month is not None and credit_month < 0:
        raise InvalidRequestError(f"{field}.credit_month cannot be negative")
    if credit_bps is not None and credit_bps < 0:
        raise InvalidRequestError(f"{field}.credit_percent_bps cannot be negative")

    return {
        "product_id": product_id,
        "product_name": raw.get("product_name"),
        "quantity": quantity,
        "price_cents": price,
        "selling_price_cents": selling if selling else price,
        "original_price_cents": original if original else price,
        "total_cents": total if total else price * quantity,
        "currency": str(raw.get("currency") or default_currency).upper(),
        "credit_month": credit_month,
        "credit_percent_bps": credit_bps,
        "monthly_payment_cents": monthly if monthly else _monthly_payment_estimate(price, quantity, credit_month, credit_bps),
        "status": coerce_choice(raw.get("status"), f"{field}.status", ("ACTIVE", "PENDING"), default="ACTIVE"),
    }


def _normalize_payments(raw_payments) -> list[dict]:
    """Keep positive splits with a known method."""
    payments = []
    for index, raw in enumerate(raw_payments or []):
        method = str(raw.get("method") or "").strip().upper()
        amount = coerce_cents(raw.get("amount_cents", 0) or 0, f"payments[{index}].amount_cents", allow_negative=True)
        if amount > 0 and method in SPLIT_PAYMENT_METHODS:
            payments.append({"method": method, "amount_cents": amount})
    return payments


def _normalize_bonus_products(raw_list) -> list[dict]:
    normalized = []
    for index, raw in enumerate(raw_list or []):
        normalized.append({
            "product_id": coerce_int(raw.get("product_id"), f"bonus_products[{index}].product_id"),
            "quantity": coerce_quantity(raw.get("quantity", 1), f"bonus_products[{index}].quantity"),
        })
    return normalized


def _require_products(product_ids) -> dict[int, Product]:
    ids = set(product_ids)
    if not ids:
        return {}
    products = {p.id: p for p in Product.query.filter(Product.id.in_(ids)).all()}
    missing = sorted(ids - set(products))
    if missing:
        raise NotFoundError(f"Product {missing[0]} not found", {"product_ids": missing})
    return products


def is_delivery(source) -> bool:
    """
    Any one signal marks a delivery: method/type DELIVERY, a boolean flag,
    or a non-empty address. `source` is a request payload or a Transaction.
    """
    if isinstance(source, Transaction):
        values = {
            "delivery_type": source.delivery_type,
            "delivery_address": source.delivery_address,
        }
    else:
        values = source or {}
    method = str(values.get("delivery_method") or "").upper()
    delivery_type = str(values.get("delivery_type") or "").upper()
    flag = values.get("delivery") is True
    address = values.get("delivery_address")
    has_address = isinstance(address, str) and bool(address.strip())
    return method == "DELIVERY" or delivery_type == "DELIVERY" or flag or has_address


def _upsert_customer(data: dict | None) -> int | None:
    """Find by phone and update changed fields, or create."""
    if not data:
        return None
    phone = str(data.get("phone") or "").strip()
    if not phone:
        raise InvalidRequestError("customer.phone is required")

    existing = Customer.query.filter_by(phone=phone).first()
    if existing is None:
        customer = Customer(
            full_name=data.get("full_name") or "",
            phone=phone,
            passport_series=data.get("passport_series") or None,
            jshshir=data.get("jshshir") or None,
            address=data.get("address") or None,
        )
        db.session.add(customer)
        db.session.flush()
        return customer.id

    for key in ("full_name", "passport_series", "jshshir"):
        value = data.get(key)
        if value and value != getattr(existing, key):
            setattr(existing, key, value)
    if isinstance(data.get("address"), str) and data["address"] != existing.address:
        existing.address = data["address"]
    return existing.id


# =============================================================================
# Create
# =============================================================================

def create_transaction(payload: dict, user_id: int | None = None, *, finalize: bool = True) -> Transaction:
    """
    Create a SALE / PURCHASE / DELIVERY transaction atomically.

    WHY: Totals, interest and the schedule are computed once here and
    persisted; they are never re-derived on read.

    Args:
        payload: items, type, payment_type, upfront_payment_type, term_unit,
            months/days, down_payment_cents, amount_paid_cents, payments,
            customer, sold_by_user_id, from_branch_id, to_branch_id,
            delivery_type, delivery_address, description, bonus_products.
        user_id: Creator (cashier).
        finalize: When False the bonus calculation is deferred until
            finalize_sale() is called after giveaways are attached.

    Returns:
        The committed Transaction.

    Raises:
        NotFoundError: user, product or branch does not exist.
        InvalidRequestError: malformed input or payment split mismatch.
        InsufficientStockError: a product ran out during the write.
    """
    if user_id is not None and db.session.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})

    tx_type = coerce_choice(payload.get("type"), "type", CREATABLE_TYPES, default="SALE")
    payment_type = coerce_choice(payload.get("payment_type"), "payment_type", PAYMENT_TYPES)
    upfront_type = coerce_choice(
        payload.get("upfront_payment_type"), "upfront_payment_type", UPFRONT_PAYMENT_TYPES, default="CASH",
    )
    term_unit = coerce_choice(payload.get("term_unit"), "term_unit", TERM_UNITS, default="MONTHS")
    status = coerce_choice(
        payload.get("status"),
        "status",
        TRANSACTION_STATUSES,
        default="PENDING" if tx_type == "DELIVERY" else "COMPLETED",
    )
    down_payment = coerce_cents(payload.get("down_payment_cents") or 0, "down_payment_cents")
    amount_paid = coerce_cents(payload.get("amount_paid_cents") or 0, "amount_paid_cents")
    months = coerce_int(payload.get("months"), "months", allow_none=True) or 0
    days = coerce_int(payload.get("days"), "days", allow_none=True) or 0

    raw_items = payload.get("items") or []
    if not raw_items:
        raise InvalidRequestError("Transaction must have at least one item")
    default_currency = current_app.config["SETTLEMENT_CURRENCY"]
    items = [_normalize_item(raw, i, default_currency) for i, raw in enumerate(raw_items)]
    bonus_products = _normalize_bonus_products(payload.get("bonus_products"))
    products = _require_products(
        [item["product_id"] for item in items] + [bp["product_id"] for bp in bonus_products]
    )

    sold_by = payload.get("sold_by_user_id")
    seller_id = sold_by if sold_by is not None else (user_id if user_id is not None else payload.get("user_id"))
    if seller_id is not None and db.session.get(User, seller_id) is None:
        raise NotFoundError(f"User {seller_id} not found", {"user_id": seller_id})
    created_by_id = user_id if user_id is not None else payload.get("user_id")

    plan = schedule_service.compute_plan(
        [
            schedule_service.PlanItem(
                principal_cents=item["price_cents"] * item["quantity"],
                credit_percent_bps=item["credit_percent_bps"],
                credit_term=item["credit_month"],
            )
            for item in items
        ],
        down_payment or amount_paid,
        payment_type,
        term_unit,
    )

    payments = _normalize_payments(payload.get("payments"))
    if payments:
        expected_units = round_to_units(plan.total_principal_cents)
        tendered_units = round_to_units(sum(p["amount_cents"] for p in payments))
        if expected_units != tendered_units:
            raise InvalidRequestError(
                f"Payment split does not match item total. Items: {expected_units}, payments: {tendered_units}",
                {"items_total": expected_units, "payments_total": tendered_units},
            )

    log = operation_logger(__name__, op="create_transaction", type=tx_type, seller_id=seller_id)

    def _write():
        customer_id = _upsert_customer(payload.get("customer"))
        tx = Transaction(
            type=tx_type,
            status=status,
            payment_type=payment_type,
            upfront_payment_type=upfront_type,
            term_unit=term_unit,
            months=0 if term_unit == "DAYS" else months,
            days=days if term_unit == "DAYS" else 0,
            total_cents=plan.total_principal_cents,
            final_total_cents=plan.final_total_cents,
            down_payment_cents=down_payment,
            amount_paid_cents=amount_paid,
            remaining_balance_cents=plan.remaining_with_interest_cents,
            customer_id=customer_id,
            from_branch_id=payload.get("from_branch_id"),
            to_branch_id=payload.get("to_branch_id"),
            user_id=created_by_id,
            sold_by_user_id=seller_id,
            delivery_type=payload.get("delivery_type"),
            delivery_address=payload.get("delivery_address"),
            description=payload.get("description"),
        )
        db.session.add(tx)
        db.session.flush()

        for item in items:
            db.session.add(TransactionItem(
                transaction_id=tx.id,
                product_id=item["product_id"],
                product_name=item["product_name"] or products[item["product_id"]].name,
                quantity=item["quantity"],
                original_quantity=item["quantity"],
                price_cents=item["price_cents"],
                selling_price_cents=item["selling_price_cents"],
                original_price_cents=item["original_price_cents"],
                total_cents=item["total_cents"],
                currency=item["currency"],
                credit_month=item["credit_month"],
                credit_percent_bps=item["credit_percent_bps"],
                monthly_payment_cents=item["monthly_payment_cents"],
                status=item["status"],
            ))
        for payment in payments:
            db.session.add(TransactionPayment(transaction_id=tx.id, **payment))

        schedule_service.persist_rows(tx.id, plan)

        if tx_type == "SALE":
            for item in items:
                decrement_stock(item["product_id"], item["quantity"])
        elif tx_type == "PURCHASE":
            for item in items:
                increment_stock(item["product_id"], item["quantity"], status="IN_WAREHOUSE")

        _add_bonus_products(tx.id, bonus_products)
        return tx.id

    transaction_id = run_atomic(_write)
    log = log.bind(transaction_id=transaction_id)
    log.info("Transaction created: total=%s final_total=%s rows=%s",
             plan.total_principal_cents, plan.final_total_cents, len(plan.rows))

    if tx_type == "SALE" and is_delivery(payload):
        from .task_service import create_audit_task
        run_after_commit(
            DELIVERY_AUDIT_TASK,
            lambda: create_audit_task(transaction_id),
            transaction_id=transaction_id,
        )

    if tx_type == "SALE" and seller_id is not None and finalize:
        from .bonus_service import calculate_sales_bonuses
        calculate_sales_bonuses(transaction_id, seller_id, created_by_id)

    return db.session.get(Transaction, transaction_id)


def _add_bonus_products(transaction_id: int, bonus_products: list[dict]) -> None:
    """Persist giveaways and take them out of stock (inside the caller's unit)."""
    for bp in bonus_products:
        db.session.add(TransactionBonusProduct(
            transaction_id=transaction_id,
            product_id=bp["product_id"],
            quantity=bp["quantity"],
        ))
        decrement_stock(bp["product_id"], bp["quantity"])


def attach_bonus_products(transaction_id: int, bonus_products: list[dict]) -> list[TransactionBonusProduct]:
    """Attach giveaways to an existing sale; call finalize_sale() afterwards."""
    normalized = _normalize_bonus_products(bonus_products)
    _require_products(bp["product_id"] for bp in normalized)
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
    if tx.type != "SALE":
        raise InvalidRequestError("Bonus products can only be attached to sales")

    def _op():
        _add_bonus_products(transaction_id, normalized)

    run_atomic(_op)
    return TransactionBonusProduct.query.filter_by(transaction_id=transaction_id).all()


def finalize_sale(transaction_id: int) -> list[Bonus]:
    """
    Explicit completion signal: run the bonus calculation now that every
    line and giveaway is attached.
    """
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
    if tx.type != "SALE":
        raise InvalidRequestError("Only sales can be finalized")
    if tx.sold_by_user_id is None:
        return []
    from .bonus_service import calculate_sales_bonuses
    return calculate_sales_bonuses(transaction_id, tx.sold_by_user_id, tx.user_id)


# =============================================================================
# Lifecycle
# =============================================================================

def _get_transaction(transaction_id: int) -> Transaction:
    if not transaction_id or transaction_id <= 0:
        raise InvalidRequestError("Invalid transaction ID provided", {"transaction_id": transaction_id})
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
    return tx


def update_status(transaction_id: int, status: str, user_id: int | None = None) -> Transaction:
    """
    Move a transaction to a new status.

    Completing a DELIVERY takes its lines out of stock in the same unit.
    """
    status = coerce_choice(status, "status", TRANSACTION_STATUSES)
    _get_transaction(transaction_id)

    def _op():
        tx = lock_for_update(Transaction.query.filter_by(id=transaction_id)).first()
        if status == "COMPLETED":
            pending = TransactionItem.query.filter_by(transaction_id=tx.id, status="PENDING").count()
            if pending:
                raise ConflictingStateError(
                    "Cannot complete transaction with pending items",
                    {"transaction_id": tx.id, "pending_items": pending},
                )
            if tx.type == "DELIVERY" and tx.status != "COMPLETED":
                for line in tx.items:
                    if line.product_id and line.quantity > 0:
                        decrement_stock(line.product_id, line.quantity)
        tx.status = status
        tx.updated_by_user_id = user_id
        return tx.id

    run_atomic(_op)
    return db.session.get(Transaction, transaction_id)


def update_transaction(transaction_id: int, changes: dict) -> Transaction:
    """Edit descriptive fields; COMPLETED transactions are immutable."""
    tx = _get_transaction(transaction_id)
    if tx.status == "COMPLETED":
        raise ConflictingStateError("Completed transactions cannot be modified", {"transaction_id": transaction_id})

    unknown = sorted(set(changes) - UPDATABLE_FIELDS)
    if unknown:
        raise InvalidRequestError(f"Fields not editable: {', '.join(unknown)}", {"fields": unknown})
    if "upfront_payment_type" in changes:
        changes = dict(changes)
        changes["upfront_payment_type"] = coerce_choice(
            changes["upfront_payment_type"], "upfront_payment_type", UPFRONT_PAYMENT_TYPES, default="CASH",
        )

    def _op():
        locked = lock_for_update(Transaction.query.filter_by(id=transaction_id)).first()
        for key, value in changes.items():
            setattr(locked, key, value)
        return locked.id

    run_atomic(_op)
    return db.session.get(Transaction, transaction_id)


def delete_transaction(transaction_id: int, current_user: User | None = None) -> None:
    """
    Delete a transaction and everything hanging off it.

    Sold units and giveaways go back to stock. COMPLETED transactions need
    an ADMIN.
    """
    tx = _get_transaction(transaction_id)
    if tx.status == "COMPLETED" and (current_user is None or current_user.role != "ADMIN"):
        raise ConflictingStateError("Completed transactions cannot be deleted", {"transaction_id": transaction_id})

    log = operation_logger(__name__, transaction_id=transaction_id, op="delete_transaction")

    def _op():
        locked = lock_for_update(Transaction.query.filter_by(id=transaction_id)).first()
        restock = locked.type == "SALE" or (locked.type == "DELIVERY" and locked.status == "COMPLETED")
        if restock:
            for line in locked.items:
                if line.product_id and line.quantity > 0:
                    increment_stock(line.product_id, line.quantity, status="IN_STORE")
            giveaways = TransactionBonusProduct.query.filter_by(transaction_id=locked.id, source_item_id=None)
            for bp in giveaways.all():
                increment_stock(bp.product_id, bp.quantity)

        CreditRepayment.query.filter_by(transaction_id=locked.id).delete(synchronize_session="fetch")
        PaymentSchedule.query.filter_by(transaction_id=locked.id).delete(synchronize_session="fetch")
        TransactionPayment.query.filter_by(transaction_id=locked.id).delete(synchronize_session="fetch")
        TransactionBonusProduct.query.filter_by(transaction_id=locked.id).delete(synchronize_session="fetch")
        Bonus.query.filter_by(transaction_id=locked.id).delete(synchronize_session="fetch")
        AuditTask.query.filter_by(transaction_id=locked.id).delete(synchronize_session="fetch")
        DefectiveLog.query.filter_by(transaction_id=locked.id).update(
            {"transaction_id": None}, synchronize_session="fetch"
        )
        TransactionItem.query.filter_by(transaction_id=locked.id).delete(synchronize_session="fetch")
        # Collections still hold the bulk-deleted children
        db.session.expire(locked, ["items", "payments", "schedules"])
        db.session.delete(locked)

    run_atomic(_op)
    log.info("Transaction deleted")


# =============================================================================
# Reporting
# =============================================================================

def _period_filter(query, column, start: datetime | None, end: datetime | None):
    start = coerce_datetime(start)
    end = coerce_datetime(end)
    if start:
        query = query.filter(column >= start)
    if end:
        query = query.filter(column <= end)
    return query


def _sum_and_count(base, *, type_=None, payment_type=None, upfront_type=None, column=None):
    query = base
    if type_:
        query = query.filter(Transaction.type == type_)
    if payment_type:
        query = query.filter(Transaction.payment_type == payment_type)
    if upfront_type:
        query = query.filter(Transaction.upfront_payment_type == upfront_type)
    column = column if column is not None else Transaction.final_total_cents
    total, count = query.with_entities(
        func.coalesce(func.sum(column), 0),
        func.count(Transaction.id),
    ).one()
    return int(total or 0), int(count or 0)


def get_statistics(branch_id: int | None = None, start=None, end=None) -> dict:
    """Sales totals by payment type, purchases, transfers, upfront and repayments."""
    base = db.session.query(Transaction)
    if branch_id:
        base = base.filter(db.or_(Transaction.from_branch_id == branch_id, Transaction.to_branch_id == branch_id))
    base = _period_filter(base, Transaction.created_at, start, end)

    total_sales, total_count = _sum_and_count(base, type_="SALE")
    credit_sales, credit_count = _sum_and_count(base, type_="SALE", payment_type="CREDIT")
    installment_sales, installment_count = _sum_and_count(base, type_="SALE", payment_type="INSTALLMENT")
    cash_sales, cash_count = _sum_and_count(base, type_="SALE", payment_type="CASH")
    card_sales, card_count = _sum_and_count(base, type_="SALE", payment_type="CARD")
    purchases, purchase_count = _sum_and_count(base, type_="PURCHASE")
    transfers, transfer_count = _sum_and_count(base, type_="TRANSFER")
    upfront_column = Transaction.down_payment_cents + Transaction.amount_paid_cents
    upfront_cash, upfront_cash_count = _sum_and_count(
        base, type_="SALE", upfront_type="CASH", column=upfront_column,
    )
    upfront_card, upfront_card_count = _sum_and_count(
        base, type_="SALE", upfront_type="CARD", column=upfront_column,
    )

    repayments = db.session.query(CreditRepayment)
    if branch_id:
        repayments = repayments.filter(CreditRepayment.branch_id == branch_id)
    repayments = _period_filter(repayments, CreditRepayment.paid_at, start, end)
    by_channel = dict(
        (channel, (int(total or 0), int(count or 0)))
        for channel, total, count in repayments.with_entities(
            CreditRepayment.channel,
            func.coalesce(func.sum(CreditRepayment.amount_cents), 0),
            func.count(CreditRepayment.id),
        ).group_by(CreditRepayment.channel).all()
    )
    cash_repayments, cash_repayment_count = by_channel.get("CASH", (0, 0))
    card_repayments, card_repayment_count = by_channel.get("CARD", (0, 0))

    return {
        "total_sales_cents": total_sales,
        "total_transactions": total_count,
        "credit_sales_cents": credit_sales,
        "credit_transactions": credit_count,
        "installment_sales_cents": installment_sales,
        "installment_transactions": installment_count,
        "cash_sales_cents": cash_sales,
        "cash_transactions": cash_count,
        "card_sales_cents": card_sales,
        "card_transactions": card_count,
        "total_purchases_cents": purchases,
        "purchase_transactions": purchase_count,
        "total_transfers_cents": transfers,
        "transfer_transactions": transfer_count,
        "upfront_cash_total_cents": upfront_cash,
        "upfront_cash_transactions": upfront_cash_count,
        "upfront_card_total_cents": upfront_card,
        "upfront_card_transactions": upfront_card_count,
        "credit_repayments_cash_cents": cash_repayments,
        "credit_repayments_card_cents": card_repayments,
        "total_credit_repayments_cents": cash_repayments + card_repayments,
        "credit_repayment_transactions": cash_repayment_count + card_repayment_count,
    }


def get_product_sales(
    product_id: int | None = None,
    branch_id: int | None = None,
    start=None,
    end=None,
) -> dict:
    """Sold quantity/amount per product and per day."""
    query = (
        db.session.query(TransactionItem, Transaction.created_at)
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .filter(Transaction.type == "SALE")
    )
    if product_id:
        query = query.filter(TransactionItem.product_id == product_id)
    if branch_id:
        query = query.filter(Transaction.from_branch_id == branch_id)
    query = _period_filter(query, Transaction.created_at, start, end)

    by_product: dict[int, dict] = {}
    by_day: dict[str, dict] = {}
    for line, created_at in query.order_by(Transaction.created_at.desc()).all():
        pid = line.product_id or 0
        product_row = by_product.setdefault(pid, {
            "product_id": pid,
            "product_name": line.product_name or (line.product.name if line.product else None),
            "total_quantity": 0,
            "total_amount_cents": 0,
        })
        product_row["total_quantity"] += line.quantity
        product_row["total_amount_cents"] += line.total_cents

        day = (created_at or line.created_at).strftime("%Y-%m-%d")
        day_row = by_day.setdefault(day, {"date": day, "total_quantity": 0, "total_amount_cents": 0})
        day_row["total_quantity"] += line.quantity
        day_row["total_amount_cents"] += line.total_cents

    products = sorted(by_product.values(), key=lambda p: p["total_quantity"], reverse=True)
    daily = sorted(by_day.values(), key=lambda d: d["date"])
    return {
        "products": products,
        "daily": daily,
        "totals": {
            "total_quantity": sum(p["total_quantity"] for p in products),
            "total_amount_cents": sum(p["total_amount_cents"] for p in products),
        },
    }
