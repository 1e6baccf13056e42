"""
Seller bonus / penalty calculator.

Amounts:
- Product cost (price_cents) is in BASE_CURRENCY and converted to the
  settlement currency with one rate per transaction: branch rate, then
  global rate, then 1.
- Selling prices are read in the currency tagged on the line.
- Giveaway cost is subtracted once from the transaction-level pool, then
  the pool is allocated back to lines by their share of the raw difference.

Outcome per transaction (mutually exclusive):
- gross margin >= 0: one SALES_BONUS row per line with a positive bonus.
- gross margin < 0: exactly one SALES_PENALTY row, amount = gross margin.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..logging_config import operation_logger
from ..models import Bonus, Product, Transaction, TransactionBonusProduct, User
from ..money import percent_of, round_cents, to_decimal
from .currency_service import resolve_rate
from .errors import InvalidRequestError, NotFoundError
from .side_effects import BONUS_CALCULATE, run_after_commit

logger = logging.getLogger(__name__)

REASON_BONUS = "SALES_BONUS"
REASON_PENALTY = "SALES_PENALTY"

__all__ = [
    "NotFoundError",
    "InvalidRequestError",
    "calculate_sales_bonuses",
    "recalculate_for_transaction",
    "list_bonuses",
]


@dataclass
class _LineFigures:
    product_id: int | None
    name: str
    model: str | None
    quantity: int
    selling_cents: int
    cost_cents: int
    bonus_percentage: Decimal
    price_difference_cents: int = 0


def _format_money(cents: int, currency: str) -> str:
    return f"{cents / 100:,.2f} {currency}"


def _selling_in_settlement(line, rate: Decimal, base: str, settlement: str, branch_id) -> int:
    """Selling unit price in settlement cents, read by the line's currency tag."""
    raw = line.selling_price_cents if line.selling_price_cents is not None else line.price_cents
    raw = raw or 0
    currency = (line.currency or settlement).upper()
    if currency == settlement:
        return int(raw)
    if currency == base:
        return round_cents(Decimal(raw) * rate)
    return round_cents(Decimal(raw) * resolve_rate(currency, settlement, branch_id))


def _giveaway_snapshot(rows: list[TransactionBonusProduct], rate: Decimal) -> list[dict]:
    snapshot = []
    for row in rows:
        product = row.product
        unit = round_cents(Decimal(product.price_cents if product else 0) * rate)
        snapshot.append({
            "product_id": row.product_id,
            "product_name": product.name if product else None,
            "product_model": product.model if product else None,
            "product_code": product.barcode if product else None,
            "quantity": row.quantity,
            "price_cents": unit,
            "total_value_cents": unit * row.quantity,
        })
    return snapshot


def _calculate(transaction_id: int, seller_id: int, created_by_id: int | None, converter=None) -> list[Bonus]:
    log = operation_logger(__name__, transaction_id=transaction_id, op="bonus_calculate", seller_id=seller_id)
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
    seller = db.session.get(User, seller_id)
    if seller is None:
        log.info("Seller not found; no bonus calculated")
        return []

    base = current_app.config["BASE_CURRENCY"].upper()
    settlement = current_app.config["SETTLEMENT_CURRENCY"].upper()
    branch_ctx = tx.from_branch_id or tx.to_branch_id or seller.branch_id
    if converter is not None:
        rate = to_decimal(converter(1, base, settlement, branch_ctx))
    else:
        rate = resolve_rate(base, settlement, branch_ctx)

    # Recalculation replaces earlier results.
    Bonus.query.filter(
        Bonus.transaction_id == tx.id,
        Bonus.reason.in_((REASON_BONUS, REASON_PENALTY)),
    ).delete(synchronize_session="fetch")

    giveaways = TransactionBonusProduct.query.filter_by(transaction_id=tx.id).all()
    if not giveaways:
        # Zero-price lines are implicit giveaways; record them for the audit trail.
        for line in tx.items:
            if line.product_id and line.quantity > 0 and not (line.selling_price_cents or line.price_cents):
                row = TransactionBonusProduct(
                    transaction_id=tx.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    source_item_id=line.id,
                )
                db.session.add(row)
                giveaways.append(row)
        if giveaways:
            db.session.flush()
            log.info("Recorded %s zero-price lines as giveaways", len(giveaways))

    giveaway_ids = {row.product_id for row in giveaways}
    giveaway_cost = 0
    for row in giveaways:
        product = row.product or db.session.get(Product, row.product_id)
        giveaway_cost += round_cents(Decimal(product.price_cents if product else 0) * rate) * row.quantity

    lines: list[_LineFigures] = []
    for line in tx.items:
        if line.quantity <= 0:
            continue
        if not (line.selling_price_cents or line.price_cents) and line.product_id in giveaway_ids:
            continue
        product = line.product
        lines.append(_LineFigures(
            product_id=line.product_id,
            name=(product.name if product else None) or line.product_name or "-",
            model=product.model if product else None,
            quantity=line.quantity,
            selling_cents=_selling_in_settlement(line, rate, base, settlement, branch_ctx),
            cost_cents=round_cents(Decimal(product.price_cents if product else 0) * rate),
            bonus_percentage=to_decimal(product.bonus_percentage if product else 0),
        ))

    total_difference = 0
    for figures in lines:
        if figures.selling_cents > figures.cost_cents and figures.bonus_percentage > 0:
            figures.price_difference_cents = (figures.selling_cents - figures.cost_cents) * figures.quantity
            total_difference += figures.price_difference_cents

    selling_total = sum(f.selling_cents * f.quantity for f in lines)
    cost_total = sum(f.cost_cents * f.quantity for f in lines)
    gross = selling_total - (cost_total + giveaway_cost)
    tx.extra_profit_cents = gross

    snapshot = _giveaway_snapshot(giveaways, rate) or None
    created: list[Bonus] = []

    if gross < 0:
        below_cost = [f for f in lines if f.selling_cents < f.cost_cents]
        parts = [
            f"{f.name} ({f.model or '-'}): sold {_format_money(f.selling_cents, settlement)}, "
            f"cost {_format_money(f.cost_cents, settlement)}, qty {f.quantity}, "
            f"loss {_format_money((f.cost_cents - f.selling_cents) * f.quantity, settlement)}"
            for f in below_cost
        ]
        if giveaway_cost:
            parts.append(f"giveaways cost {_format_money(giveaway_cost, settlement)}")
        penalty = Bonus(
            user_id=seller_id,
            branch_id=branch_ctx,
            transaction_id=tx.id,
            amount_cents=gross,
            currency=settlement,
            reason=REASON_PENALTY,
            description=f"Sold below cost. Transaction {tx.id}. " + "; ".join(parts),
            bonus_products=snapshot,
            created_by_user_id=created_by_id or seller_id,
        )
        db.session.add(penalty)
        created.append(penalty)
    else:
        pool = max(0, total_difference - giveaway_cost)
        for figures in lines:
            if figures.price_difference_cents <= 0:
                continue
            share = Decimal(figures.price_difference_cents) / Decimal(total_difference)
            net_extra = round_cents(Decimal(pool) * share)
            amount = percent_of(net_extra, figures.bonus_percentage)
            if amount <= 0:
                continue
            bonus = Bonus(
                user_id=seller_id,
                branch_id=branch_ctx,
                transaction_id=tx.id,
                product_id=figures.product_id,
                amount_cents=amount,
                currency=settlement,
                reason=REASON_BONUS,
                description=(
                    f"{figures.name} ({figures.model or '-'}) sold above cost. Transaction {tx.id}, "
                    f"selling {_format_money(figures.selling_cents, settlement)}, "
                    f"cost {_format_money(figures.cost_cents, settlement)}, qty {figures.quantity}, "
                    f"giveaways {_format_money(giveaway_cost, settlement)}, "
                    f"net extra {_format_money(net_extra, settlement)}, bonus {figures.bonus_percentage}%"
                ),
                bonus_products=snapshot,
                created_by_user_id=created_by_id or seller_id,
            )
            db.session.add(bonus)
            created.append(bonus)

    db.session.commit()
    log.info(
        "Bonus calculation done: rate=%s selling=%s cost=%s giveaways=%s gross=%s records=%s",
        rate, selling_total, cost_total, giveaway_cost, gross, len(created),
    )
    return created


def calculate_sales_bonuses(
    transaction_id: int,
    seller_id: int,
    created_by_id: int | None = None,
    converter=None,
) -> list[Bonus]:
    """
    Compute and store the seller's bonus or penalty for one sale.

    Idempotent: earlier SALES_BONUS / SALES_PENALTY rows of the transaction
    are replaced. Runs as a post-commit side effect, so a failure is logged
    and recorded but never raised.

    Args:
        converter: Optional callable (amount, from, to, branch_id) -> amount
            used instead of the exchange-rate table.

    Returns:
        The created Bonus rows; empty on failure.
    """
    created: list[Bonus] = []

    def _run():
        created[:] = _calculate(transaction_id, seller_id, created_by_id, converter)

    run_after_commit(BONUS_CALCULATE, _run, transaction_id=transaction_id)
    return created


def recalculate_for_transaction(transaction_id: int) -> list[Bonus]:
    """Re-run the calculation for the stored seller; raises on failure."""
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
    if tx.type != "SALE" or tx.sold_by_user_id is None:
        return []
    return _calculate(tx.id, tx.sold_by_user_id, tx.user_id)


def list_bonuses(user_id: int | None = None, transaction_id: int | None = None) -> list[Bonus]:
    query = Bonus.query
    if user_id:
        query = query.filter(Bonus.user_id == user_id)
    if transaction_id:
        query = query.filter(Bonus.transaction_id == transaction_id)
    return query.order_by(Bonus.bonus_date.desc(), Bonus.id.desc()).all()
