"""
Post-sale adjustments: DEFECTIVE, FIXED, RETURN, EXCHANGE.

WHY: Each action moves stock, cash and (when linked to a sale) the sold
line in one atomic write. The DefectiveLog row is the last write of the
unit. Schedule recomputation for credit sales runs after commit.

| Action    | Stock                                   | Cash (default)      |
|-----------|-----------------------------------------|---------------------|
| DEFECTIVE | quantity -= n (untouched if from sale)  | -price * n          |
| FIXED     | quantity += n, defective -= n           | +price * n          |
| RETURN    | quantity += n                           | -unit sold * n      |
| EXCHANGE  | quantity += n, replacement -= m         | +price * n          |
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..logging_config import operation_logger
from ..models import (
    Bonus,
    Branch,
    DefectiveLog,
    Product,
    Transaction,
    TransactionBonusProduct,
    TransactionItem,
)
from ..models.adjustments import ACTION_TYPES, CASH_DIRECTIONS
from ..money import round_cents
from ..validation import coerce_cents, coerce_choice, coerce_int, coerce_quantity
from creditpos.time_utils import coerce_datetime
from . import schedule_service
from .concurrency import lock_for_update, run_atomic
from .errors import InsufficientStockError, InvalidRequestError, NotFoundError
from .inventory_service import decrement_stock, increment_stock

logger = logging.getLogger(__name__)

__all__ = [
    "InsufficientStockError",
    "InvalidRequestError",
    "NotFoundError",
    "record_action",
    "mark_as_fixed",
    "return_product",
    "exchange_product",
    "mark_as_defective",
    "mark_partial_defective",
    "restore_defective",
    "get_by_cashier",
    "get_statistics",
]


@dataclass
class _Request:
    product_id: int
    quantity: int
    action_type: str
    description: str | None
    user_id: int | None
    branch_id: int | None
    is_from_sale: bool
    transaction_id: int | None
    handled_by_user_id: int | None
    direction: str | None
    cash_amount_cents: int | None
    replacement_product_id: int | None
    replacement_quantity: int | None
    replacement_unit_price_cents: int | None
    created_at: object


def _parse(payload: dict) -> _Request:
    try:
        created_at = coerce_datetime(payload.get("created_at"))
    except (TypeError, ValueError):
        raise InvalidRequestError("created_at must be an ISO-8601 datetime", {"field": "created_at"})

    return _Request(
        product_id=coerce_int(payload.get("product_id"), "product_id"),
        quantity=coerce_quantity(payload.get("quantity")),
        action_type=coerce_choice(payload.get("action_type"), "action_type", ACTION_TYPES, default="DEFECTIVE"),
        description=payload.get("description"),
        user_id=coerce_int(payload.get("user_id"), "user_id", allow_none=True),
        branch_id=coerce_int(payload.get("branch_id"), "branch_id", allow_none=True),
        is_from_sale=bool(payload.get("is_from_sale")),
        transaction_id=coerce_int(payload.get("transaction_id"), "transaction_id", allow_none=True),
        handled_by_user_id=coerce_int(payload.get("handled_by_user_id"), "handled_by_user_id", allow_none=True),
        direction=coerce_choice(payload.get("cash_adjustment_direction"), "cash_adjustment_direction", CASH_DIRECTIONS),
        cash_amount_cents=coerce_cents(
            payload.get("cash_amount_cents"), "cash_amount_cents", allow_none=True, allow_negative=True,
        ),
        replacement_product_id=coerce_int(
            payload.get("exchange_with_product_id"), "exchange_with_product_id", allow_none=True,
        ),
        replacement_quantity=coerce_int(payload.get("replacement_quantity"), "replacement_quantity", allow_none=True),
        replacement_unit_price_cents=coerce_cents(
            payload.get("replacement_unit_price_cents"), "replacement_unit_price_cents", allow_none=True,
        ),
        created_at=created_at,
    )


def _sold_line(transaction: Transaction, product_id: int) -> TransactionItem | None:
    """First line for the product, preferring lines that still hold units."""
    candidates = [line for line in transaction.items if line.product_id == product_id]
    for line in candidates:
        if line.quantity > 0:
            return line
    return candidates[0] if candidates else None


def _signed(direction: str, amount: int) -> int:
    return abs(amount) if direction == "PLUS" else -abs(amount)


def _cash_amount(req: _Request, product: Product, line: TransactionItem | None) -> int:
    if req.action_type == "DEFECTIVE":
        return -(product.price_cents * req.quantity)
    if req.action_type == "FIXED":
        return product.price_cents * req.quantity
    if req.action_type == "RETURN":
        # Override only when a non-zero amount comes with a direction.
        if req.cash_amount_cents is not None and abs(req.cash_amount_cents) > 0 and req.direction:
            return _signed(req.direction, req.cash_amount_cents)
        unit = line.unit_sold_cents if line is not None else product.price_cents
        return -(unit * req.quantity)
    if req.cash_amount_cents is not None and req.direction:
        return _signed(req.direction, req.cash_amount_cents)
    return product.price_cents * req.quantity


def _apply_product_counters(product: Product, req: _Request) -> None:
    n = req.quantity
    if req.action_type == "DEFECTIVE":
        if not req.is_from_sale:
            if product.quantity < n:
                raise InsufficientStockError(product.id, n, product.quantity)
            product.quantity -= n
        product.defective_quantity += n
        product.status = "DEFECTIVE" if product.quantity == 0 else "IN_STORE"
    elif req.action_type == "FIXED":
        product.defective_quantity = max(0, product.defective_quantity - n)
        product.quantity += n
        product.status = "IN_STORE"
    elif req.action_type == "RETURN":
        product.returned_quantity += n
        product.quantity += n
        product.status = "RETURNED"
    else:
        product.exchanged_quantity += n
        product.quantity += n
        product.status = "EXCHANGED"


def _reduce_line(line: TransactionItem, quantity: int) -> None:
    remaining = max(0, line.quantity - quantity)
    if remaining == 0:
        line.quantity = 0
        line.total_cents = 0
        line.status = "RETURNED"
    else:
        line.total_cents = remaining * line.unit_sold_cents
        line.quantity = remaining


def _reverse_giveaways(tx: Transaction, log) -> None:
    """Restock giveaways once; the join rows are deleted so a second return finds none."""
    rows = TransactionBonusProduct.query.filter_by(transaction_id=tx.id).all()
    for row in rows:
        if row.source_item_id is not None:
            # Zero-price sale line; its units come back when that line is returned
            continue
        try:
            with db.session.begin_nested():
                increment_stock(row.product_id, row.quantity)
        except (SQLAlchemyError, NotFoundError) as exc:
            log.warning("Giveaway restock failed for product %s: %s", row.product_id, exc)
    if rows:
        TransactionBonusProduct.query.filter_by(transaction_id=tx.id).delete(synchronize_session="fetch")
    Bonus.query.filter_by(transaction_id=tx.id).delete(synchronize_session="fetch")


def _reduce_extra_profit(tx: Transaction, returned: int, line_quantity_before: int) -> None:
    original = tx.extra_profit_cents or 0
    if line_quantity_before <= 0:
        return
    proportional = round_cents(Decimal(original) * returned / line_quantity_before)
    tx.extra_profit_cents = max(0, original - proportional)


def _add_replacement(tx: Transaction, original_line: TransactionItem, req: _Request, quantity: int) -> None:
    """Merge into the latest same-product/same-price line, else add a new line."""
    price = req.replacement_unit_price_cents or 0
    existing = (
        TransactionItem.query
        .filter_by(transaction_id=tx.id, product_id=req.replacement_product_id, price_cents=price)
        .order_by(TransactionItem.created_at.desc(), TransactionItem.id.desc())
        .first()
    )
    if existing is not None:
        existing.quantity += quantity
        existing.total_cents = existing.quantity * existing.unit_sold_cents
        if existing.status == "RETURNED":
            existing.status = "ACTIVE"
    else:
        replacement = db.session.get(Product, req.replacement_product_id)
        db.session.add(TransactionItem(
            transaction_id=tx.id,
            product_id=req.replacement_product_id,
            product_name=replacement.name if replacement else None,
            quantity=quantity,
            original_quantity=0,
            price_cents=price,
            selling_price_cents=price,
            original_price_cents=price,
            total_cents=quantity * price,
            currency=original_line.currency,
            # The replacement stays on the credit terms of the line it replaces
            credit_month=original_line.credit_month,
            credit_percent_bps=original_line.credit_percent_bps,
            status="ACTIVE",
        ))
    decrement_stock(req.replacement_product_id, quantity)


def record_action(payload: dict) -> DefectiveLog:
    """
    Apply one adjustment atomically and return its DefectiveLog.

    Payload: product_id, quantity, action_type, description, user_id,
    branch_id, is_from_sale, transaction_id, handled_by_user_id,
    cash_adjustment_direction (PLUS | MINUS), cash_amount_cents,
    exchange_with_product_id, replacement_quantity,
    replacement_unit_price_cents, created_at.

    Raises:
        NotFoundError: product, branch, transaction, sold line or replacement
            missing.
        InvalidRequestError: quantity exceeds stock or the sold line, a linked
            exchange names no replacement, or created_at is malformed.
    """
    req = _parse(payload)

    product = db.session.get(Product, req.product_id)
    if product is None:
        raise NotFoundError("Product not found", {"product_id": req.product_id})
    if req.branch_id is not None and db.session.get(Branch, req.branch_id) is None:
        raise NotFoundError("Branch not found", {"branch_id": req.branch_id})
    if req.action_type == "DEFECTIVE" and not req.is_from_sale and req.quantity > product.quantity:
        raise InsufficientStockError(product.id, req.quantity, product.quantity)

    linked = req.is_from_sale and req.transaction_id is not None
    line = None
    tx = None
    if linked:
        tx = db.session.get(Transaction, req.transaction_id)
        if tx is None:
            raise NotFoundError("Transaction not found", {"transaction_id": req.transaction_id})
        line = _sold_line(tx, req.product_id)
        if line is None and req.action_type in ("RETURN", "EXCHANGE"):
            raise NotFoundError(
                "Sale line not found",
                {"transaction_id": req.transaction_id, "product_id": req.product_id},
            )
        if line is not None and req.quantity > line.quantity:
            raise InvalidRequestError(
                f"Cannot return or exchange more than sold on this line ({line.quantity})",
                {"line_quantity": line.quantity, "requested": req.quantity},
            )

    replacement_quantity = None
    if linked and req.action_type == "EXCHANGE" and req.replacement_product_id is None:
        raise InvalidRequestError(
            "exchange_with_product_id is required to exchange a sold item",
            {"field": "exchange_with_product_id"},
        )
    if req.action_type == "EXCHANGE" and req.replacement_product_id is not None:
        replacement_quantity = max(1, req.replacement_quantity or req.quantity)
        replacement = db.session.get(Product, req.replacement_product_id)
        if replacement is None:
            raise NotFoundError("Replacement product not found", {"product_id": req.replacement_product_id})
        if replacement_quantity > replacement.quantity:
            raise InsufficientStockError(replacement.id, replacement_quantity, replacement.quantity)

    cash_amount = _cash_amount(req, product, line)
    recompute = bool(
        linked and line is not None and tx.is_scheduled and req.action_type in ("RETURN", "EXCHANGE")
    )
    log = operation_logger(
        __name__,
        op="record_action",
        action=req.action_type,
        product_id=req.product_id,
        transaction_id=req.transaction_id,
    )

    def _op():
        locked_product = lock_for_update(Product.query.filter_by(id=req.product_id)).first()
        _apply_product_counters(locked_product, req)

        if linked and line is not None and req.action_type in ("RETURN", "EXCHANGE"):
            locked_tx = lock_for_update(Transaction.query.filter_by(id=req.transaction_id)).first()
            locked_line = db.session.get(TransactionItem, line.id)
            line_quantity_before = locked_line.quantity
            if req.quantity > line_quantity_before:
                raise InvalidRequestError(
                    f"Cannot return or exchange more than sold on this line ({line_quantity_before})",
                    {"line_quantity": line_quantity_before, "requested": req.quantity},
                )
            _reduce_line(locked_line, req.quantity)

            if req.action_type == "RETURN":
                _reverse_giveaways(locked_tx, log)
                _reduce_extra_profit(locked_tx, req.quantity, line_quantity_before)
            elif replacement_quantity is not None:
                _add_replacement(locked_tx, locked_line, req, replacement_quantity)

        if req.branch_id is not None:
            db.session.execute(
                update(Branch)
                .where(Branch.id == req.branch_id)
                .values(cash_balance_cents=Branch.cash_balance_cents + cash_amount)
                .execution_options(synchronize_session="fetch")
            )

        entry = DefectiveLog(
            product_id=req.product_id,
            quantity=req.quantity,
            description=req.description,
            action_type=req.action_type,
            cash_amount_cents=cash_amount,
            cash_adjustment_direction=req.direction,
            user_id=req.user_id,
            handled_by_user_id=req.handled_by_user_id,
            branch_id=req.branch_id,
            transaction_id=req.transaction_id,
        )
        if req.created_at is not None:
            entry.created_at = req.created_at
        db.session.add(entry)
        db.session.flush()
        return entry.id

    log_id = run_atomic(_op)
    log.info("Adjustment recorded: quantity=%s cash=%s", req.quantity, cash_amount)

    if recompute:
        schedule_service.run_recompute(req.transaction_id)

    return db.session.get(DefectiveLog, log_id)


def mark_as_fixed(product_id: int, quantity: int, user_id: int | None = None, branch_id: int | None = None) -> DefectiveLog:
    return record_action({
        "product_id": product_id,
        "quantity": quantity,
        "description": "Product repaired",
        "user_id": user_id,
        "branch_id": branch_id,
        "action_type": "FIXED",
    })


def return_product(product_id: int, quantity: int, description: str, user_id: int | None = None, branch_id: int | None = None) -> DefectiveLog:
    return record_action({
        "product_id": product_id,
        "quantity": quantity,
        "description": description,
        "user_id": user_id,
        "branch_id": branch_id,
        "action_type": "RETURN",
    })


def exchange_product(product_id: int, quantity: int, description: str, user_id: int | None = None, branch_id: int | None = None) -> DefectiveLog:
    return record_action({
        "product_id": product_id,
        "quantity": quantity,
        "description": description,
        "user_id": user_id,
        "branch_id": branch_id,
        "action_type": "EXCHANGE",
    })


# =============================================================================
# Product-level defect helpers
# =============================================================================

def _write_stock_document(tx_type: str, product_id: int, quantity: int, description: str, user_id) -> None:
    """Zero-value WRITE_OFF / RETURN transaction documenting a stock move."""
    tx = Transaction(
        type=tx_type,
        status="COMPLETED",
        user_id=user_id,
        total_cents=0,
        final_total_cents=0,
        amount_paid_cents=0,
        remaining_balance_cents=0,
        description=description,
    )
    db.session.add(tx)
    db.session.flush()
    db.session.add(TransactionItem(
        transaction_id=tx.id,
        product_id=product_id,
        quantity=quantity,
        original_quantity=quantity,
        price_cents=0,
        total_cents=0,
        currency=current_app.config["SETTLEMENT_CURRENCY"],
    ))


def _locked_product(product_id: int) -> Product:
    product = lock_for_update(Product.query.filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError("Product not found", {"product_id": product_id})
    return product


def mark_as_defective(product_id: int, description: str, user_id: int | None = None) -> Product:
    """Write off the whole on-hand stock of a product as defective."""
    def _op():
        product = _locked_product(product_id)
        if product.quantity == 0:
            raise InvalidRequestError("Product quantity is 0; nothing to mark defective", {"product_id": product_id})
        count = product.quantity
        product.defective_quantity += count
        product.quantity = 0
        product.status = "DEFECTIVE"
        _write_stock_document(
            "WRITE_OFF", product_id, count,
            f"Product fully marked defective: {count} units. Reason: {description}", user_id,
        )
        db.session.add(DefectiveLog(
            product_id=product_id, quantity=count, description=description,
            action_type="DEFECTIVE", cash_amount_cents=0, user_id=user_id,
        ))
        return product.id

    run_atomic(_op)
    return db.session.get(Product, product_id)


def mark_partial_defective(product_id: int, count: int, description: str, user_id: int | None = None) -> Product:
    count = coerce_quantity(count, "count")

    def _op():
        product = _locked_product(product_id)
        if count > product.quantity:
            raise InsufficientStockError(product_id, count, product.quantity)
        product.quantity -= count
        product.defective_quantity += count
        if product.quantity == 0:
            product.status = "DEFECTIVE"
        _write_stock_document(
            "WRITE_OFF", product_id, count,
            f"{count} units marked defective. Reason: {description}", user_id,
        )
        db.session.add(DefectiveLog(
            product_id=product_id, quantity=count, description=description,
            action_type="DEFECTIVE", cash_amount_cents=0, user_id=user_id,
        ))
        return product.id

    run_atomic(_op)
    return db.session.get(Product, product_id)


def restore_defective(product_id: int, count: int, user_id: int | None = None) -> Product:
    """Move defective units back to sellable stock; FIXED once none remain defective."""
    count = coerce_quantity(count, "count")

    def _op():
        product = _locked_product(product_id)
        if not product.defective_quantity:
            raise InvalidRequestError("Product has no defective units", {"product_id": product_id})
        if count > product.defective_quantity:
            raise InvalidRequestError(
                "Restore count exceeds defective quantity",
                {"requested": count, "defective_quantity": product.defective_quantity},
            )
        product.quantity += count
        product.defective_quantity -= count
        if product.defective_quantity == 0:
            product.status = "FIXED"
        _write_stock_document("RETURN", product_id, count, f"{count} defective units restored", user_id)
        return product.id

    run_atomic(_op)
    return db.session.get(Product, product_id)


# =============================================================================
# Reads
# =============================================================================

def _log_query(branch_id=None, start=None, end=None):
    query = DefectiveLog.query
    if branch_id:
        query = query.filter(DefectiveLog.branch_id == branch_id)
    start = coerce_datetime(start)
    end = coerce_datetime(end)
    if start:
        query = query.filter(DefectiveLog.created_at >= start)
    if end:
        query = query.filter(DefectiveLog.created_at <= end)
    return query


def get_by_cashier(cashier_id: int, start=None, end=None, branch_id=None, action_type=None) -> dict:
    """
    Cash in (plus) and out (minus) handled by a cashier, plus refund items.

    A RETURN logged with zero cash is valued from its sale line.
    """
    query = _log_query(branch_id, start, end).filter(
        db.or_(DefectiveLog.handled_by_user_id == cashier_id, DefectiveLog.user_id == cashier_id)
    )
    if action_type:
        query = query.filter(DefectiveLog.action_type == str(action_type).upper())

    plus = 0
    minus = 0
    items = []
    for entry in query.order_by(DefectiveLog.created_at.desc(), DefectiveLog.id.desc()).all():
        raw = entry.cash_amount_cents or 0
        if entry.cash_adjustment_direction == "MINUS":
            signed = -abs(raw)
        elif entry.cash_adjustment_direction == "PLUS":
            signed = abs(raw)
        else:
            signed = raw
        is_return = entry.action_type == "RETURN"
        tx = db.session.get(Transaction, entry.transaction_id) if entry.transaction_id else None
        if signed == 0 and is_return and tx is not None:
            line = _sold_line(tx, entry.product_id)
            if line is not None and line.unit_sold_cents > 0 and entry.quantity > 0:
                signed = -(line.unit_sold_cents * entry.quantity)
        if signed == 0:
            continue
        if signed > 0:
            plus += signed
        else:
            minus += abs(signed)
        if is_return and signed < 0:
            items.append({
                "id": entry.id,
                "created_at": entry.created_at,
                "amount_cents": abs(signed),
                "transaction_id": entry.transaction_id,
                "product_id": entry.product_id,
                "quantity": entry.quantity,
                "customer": tx.customer.to_dict() if tx is not None and tx.customer else None,
                "sold_by": tx.sold_by.to_dict() if tx is not None and tx.sold_by else None,
            })
    return {"plus_cents": plus, "minus_cents": minus, "items": items}


def get_statistics(branch_id: int | None = None, start=None, end=None) -> dict:
    """Per-action quantity, cash and count plus total cash flow."""
    base = _log_query(branch_id, start, end)
    rows = (
        base.with_entities(
            DefectiveLog.action_type,
            func.coalesce(func.sum(DefectiveLog.quantity), 0),
            func.coalesce(func.sum(DefectiveLog.cash_amount_cents), 0),
            func.count(DefectiveLog.id),
        )
        .group_by(DefectiveLog.action_type)
        .all()
    )
    by_action = {action: (int(qty), int(cash), int(count)) for action, qty, cash, count in rows}

    def _bucket(action):
        qty, cash, count = by_action.get(action, (0, 0, 0))
        return {"quantity": qty, "cash_amount_cents": cash, "count": count}

    return {
        "defective_products": _bucket("DEFECTIVE"),
        "fixed_products": _bucket("FIXED"),
        "returned_products": _bucket("RETURN"),
        "exchanged_products": _bucket("EXCHANGE"),
        "total_cash_flow_cents": sum(cash for _, cash, _ in by_action.values()),
    }
