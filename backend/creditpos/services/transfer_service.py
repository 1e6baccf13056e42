# Overview: Branch-to-branch stock transfers; stock moves on creation, approval only closes the document.

from __future__ import annotations

import logging
import uuid

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..logging_config import operation_logger
from ..models import Branch, Product, Transaction, TransactionItem
from ..validation import coerce_cents, coerce_int, coerce_quantity
from .concurrency import lock_for_update, run_atomic
from .errors import ConflictingStateError, InvalidRequestError, NotFoundError
from .inventory_service import decrement_stock

logger = logging.getLogger(__name__)

__all__ = [
    "ConflictingStateError",
    "InvalidRequestError",
    "NotFoundError",
    "create_transfer",
    "approve_transfer",
    "reject_transfer",
    "get_transfers_by_branch",
    "get_pending_transfers",
]


def _find_target(source: Product, to_branch_id: int) -> Product | None:
    """Same barcode in the target branch, else same name and model (case-insensitive)."""
    if source.barcode:
        match = Product.query.filter_by(barcode=source.barcode, branch_id=to_branch_id).first()
        if match is not None:
            return match

    query = Product.query.filter(
        Product.branch_id == to_branch_id,
        func.lower(Product.name) == (source.name or "").strip().lower(),
    )
    model = (source.model or "").strip()
    if model:
        query = query.filter(func.lower(Product.model) == model.lower())
    else:
        query = query.filter(or_(Product.model.is_(None), Product.model == ""))
    return query.order_by(Product.id.asc()).first()


def _fresh_barcode(source: Product, to_branch_id: int) -> str:
    if source.barcode and Product.query.filter_by(barcode=source.barcode, branch_id=to_branch_id).first() is None:
        return source.barcode
    return f"TRANSFER_{uuid.uuid4().hex[:12]}"


def _move_line(line: TransactionItem, to_branch_id: int, log) -> int:
    """Move up to line.quantity units; returns what actually moved."""
    source = lock_for_update(Product.query.filter_by(id=line.product_id)).first()
    if source is None:
        log.warning("Source product %s not found; line skipped", line.product_id)
        return 0

    requested = line.quantity
    moved = min(max(0, requested), source.quantity)
    if moved <= 0:
        log.warning("Nothing to move for product %s (available %s)", source.id, source.quantity)
    else:
        decrement_stock(source.id, moved)
        target = _find_target(source, to_branch_id)
        if target is not None:
            target.quantity += moved
            target.status = "IN_WAREHOUSE"
            if source.bonus_percentage is not None:
                target.bonus_percentage = source.bonus_percentage
        else:
            db.session.add(Product(
                branch_id=to_branch_id,
                name=source.name,
                model=source.model,
                barcode=_fresh_barcode(source, to_branch_id),
                unit_type=source.unit_type,
                price_cents=source.price_cents,
                market_price_cents=source.market_price_cents,
                quantity=moved,
                initial_quantity=moved,
                status="IN_WAREHOUSE",
                bonus_percentage=source.bonus_percentage or 0,
            ))

    if moved != requested:
        log.info("Line %s clamped from %s to %s", line.id, requested, moved)
        line.quantity = moved
        line.total_cents = moved * (line.price_cents or 0)
    return moved


def create_transfer(payload: dict, user_id: int | None = None) -> Transaction:
    """
    Create a PENDING TRANSFER and move the stock immediately.

    Each line is clamped to what the source product has on hand; the
    transfer total reflects what actually moved.
    """
    from_branch_id = coerce_int(payload.get("from_branch_id"), "from_branch_id")
    to_branch_id = coerce_int(payload.get("to_branch_id"), "to_branch_id")
    if from_branch_id == to_branch_id:
        raise InvalidRequestError("Source and target branch must differ")
    for branch_id in (from_branch_id, to_branch_id):
        if db.session.get(Branch, branch_id) is None:
            raise NotFoundError("Branch not found", {"branch_id": branch_id})

    raw_items = payload.get("items") or []
    if not raw_items:
        raise InvalidRequestError("Transfer must have at least one item")
    items = []
    for index, raw in enumerate(raw_items):
        product_id = coerce_int(raw.get("product_id"), f"items[{index}].product_id")
        if db.session.get(Product, product_id) is None:
            raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
        price = coerce_cents(raw.get("price_cents", 0), f"items[{index}].price_cents")
        items.append({
            "product_id": product_id,
            "quantity": coerce_quantity(raw.get("quantity"), f"items[{index}].quantity"),
            "price_cents": price,
            "selling_price_cents": coerce_cents(raw.get("selling_price_cents"), "selling_price_cents", allow_none=True) or price,
            "original_price_cents": coerce_cents(raw.get("original_price_cents"), "original_price_cents", allow_none=True) or price,
        })

    log = operation_logger(__name__, op="create_transfer", from_branch_id=from_branch_id, to_branch_id=to_branch_id)

    currency = current_app.config["BASE_CURRENCY"]

    def _op():
        total = sum(item["price_cents"] * item["quantity"] for item in items)
        tx = Transaction(
            type="TRANSFER",
            status="PENDING",
            from_branch_id=from_branch_id,
            to_branch_id=to_branch_id,
            user_id=user_id,
            total_cents=total,
            final_total_cents=total,
            description=payload.get("description"),
        )
        db.session.add(tx)
        db.session.flush()

        lines = []
        for item in items:
            line = TransactionItem(
                transaction_id=tx.id,
                product_id=item["product_id"],
                quantity=item["quantity"],
                original_quantity=item["quantity"],
                price_cents=item["price_cents"],
                selling_price_cents=item["selling_price_cents"],
                original_price_cents=item["original_price_cents"],
                total_cents=item["price_cents"] * item["quantity"],
                currency=currency,
            )
            db.session.add(line)
            lines.append(line)
        db.session.flush()

        bound = log.bind(transaction_id=tx.id)
        for line in lines:
            _move_line(line, to_branch_id, bound)

        moved_total = sum(line.total_cents for line in lines)
        tx.total_cents = moved_total
        tx.final_total_cents = moved_total
        return tx.id

    transaction_id = run_atomic(_op)
    log.bind(transaction_id=transaction_id).info("Transfer created")
    return db.session.get(Transaction, transaction_id)


def _get_transfer(transaction_id: int) -> Transaction:
    if not transaction_id or transaction_id <= 0:
        raise InvalidRequestError("Invalid transaction ID provided", {"transaction_id": transaction_id})
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
    if tx.type != "TRANSFER":
        raise InvalidRequestError("Only transfer transactions can be approved or rejected")
    return tx


def approve_transfer(transaction_id: int, approved_by_id: int) -> Transaction:
    """Close a pending transfer; the stock already moved on creation."""
    _get_transfer(transaction_id)

    def _op():
        tx = lock_for_update(Transaction.query.filter_by(id=transaction_id)).first()
        if tx.status != "PENDING":
            raise ConflictingStateError("Transaction is not pending", {"status": tx.status})
        tx.status = "COMPLETED"
        tx.user_id = approved_by_id
        return tx.id

    run_atomic(_op)
    return db.session.get(Transaction, transaction_id)


def reject_transfer(transaction_id: int) -> Transaction:
    """Mark a pending transfer CANCELLED. Moved stock is not reversed."""
    _get_transfer(transaction_id)

    def _op():
        tx = lock_for_update(Transaction.query.filter_by(id=transaction_id)).first()
        if tx.status != "PENDING":
            raise ConflictingStateError("Transaction is not pending", {"status": tx.status})
        tx.status = "CANCELLED"
        return tx.id

    run_atomic(_op)
    return db.session.get(Transaction, transaction_id)


def get_transfers_by_branch(branch_id: int) -> list[Transaction]:
    return (
        Transaction.query
        .filter(Transaction.type == "TRANSFER")
        .filter(or_(Transaction.from_branch_id == branch_id, Transaction.to_branch_id == branch_id))
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .all()
    )


def get_pending_transfers(branch_id: int | None = None) -> list[Transaction]:
    query = Transaction.query.filter(Transaction.type == "TRANSFER", Transaction.status == "PENDING")
    if branch_id:
        query = query.filter(or_(Transaction.from_branch_id == branch_id, Transaction.to_branch_id == branch_id))
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()
