# Overview: Stock mutation primitives; every quantity change is a conditional UPDATE.

from __future__ import annotations

from sqlalchemy import case, select, update

from ..extensions import db
from ..models import Product
from .errors import InsufficientStockError, NotFoundError


def available_quantity(product_id: int) -> int | None:
    return db.session.execute(
        select(Product.quantity).where(Product.id == product_id)
    ).scalar_one_or_none()


def decrement_stock(product_id: int, quantity: int) -> None:
    """
    Decrement-if-sufficient.

    One UPDATE guarded by `quantity >= n`; the status label follows in the
    same statement (SOLD when the last unit leaves, IN_STORE otherwise).
    SET expressions see the pre-update row, so the CASE tests the old value.

    Raises:
        InsufficientStockError: fewer than `quantity` units on hand.
        NotFoundError: product does not exist.
    """
    if quantity <= 0:
        return
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.quantity >= quantity)
        .values(
            quantity=Product.quantity - quantity,
            status=case((Product.quantity - quantity == 0, "SOLD"), else_="IN_STORE"),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        available = available_quantity(product_id)
        if available is None:
            raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
        raise InsufficientStockError(product_id, quantity, available)


def increment_stock(product_id: int, quantity: int, *, status: str | None = None) -> None:
    if quantity <= 0:
        return
    values = {"quantity": Product.quantity + quantity}
    if status:
        values["status"] = status
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
