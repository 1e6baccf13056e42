# Overview: Currency conversion adapter over the exchange-rate table.

from __future__ import annotations

import logging
from decimal import Decimal

from ..extensions import db
from ..models import CurrencyExchangeRate
from ..money import to_decimal
from .errors import NotFoundError

logger = logging.getLogger(__name__)

ONE = Decimal(1)


def _latest_rate(from_currency: str, to_currency: str, branch_id: int | None) -> Decimal | None:
    query = CurrencyExchangeRate.query.filter_by(
        from_currency=from_currency,
        to_currency=to_currency,
        is_active=True,
    )
    if branch_id is None:
        query = query.filter(CurrencyExchangeRate.branch_id.is_(None))
    else:
        query = query.filter(CurrencyExchangeRate.branch_id == branch_id)
    row = query.order_by(CurrencyExchangeRate.id.desc()).first()
    if row is None or row.rate is None or to_decimal(row.rate) <= 0:
        return None
    return to_decimal(row.rate)


def _rate_in_scope(from_currency: str, to_currency: str, branch_id: int | None) -> Decimal | None:
    direct = _latest_rate(from_currency, to_currency, branch_id)
    if direct is not None:
        return direct
    inverse = _latest_rate(to_currency, from_currency, branch_id)
    if inverse is not None:
        return ONE / inverse
    return None


def find_rate(from_currency: str, to_currency: str, branch_id: int | None = None) -> Decimal | None:
    """Branch-scoped rate, then global rate; None when neither exists."""
    from_currency = from_currency.upper()
    to_currency = to_currency.upper()
    if from_currency == to_currency:
        return ONE
    if branch_id is not None:
        rate = _rate_in_scope(from_currency, to_currency, branch_id)
        if rate is not None:
            return rate
    return _rate_in_scope(from_currency, to_currency, None)


def convert(amount, from_currency: str, to_currency: str, branch_id: int | None = None) -> Decimal:
    """
    Convert an amount between currencies.

    Side-effect free. A missing branch context falls back to the global rate.

    Raises:
        NotFoundError: no rate exists for the pair in either scope.
    """
    rate = find_rate(from_currency, to_currency, branch_id)
    if rate is None:
        raise NotFoundError(
            f"No exchange rate for {from_currency}->{to_currency}",
            {"from_currency": from_currency, "to_currency": to_currency, "branch_id": branch_id},
        )
    return to_decimal(amount) * rate


def resolve_rate(from_currency: str, to_currency: str, branch_id: int | None = None) -> Decimal:
    """Rate used by the bonus calculator: branch -> global -> 1. Never raises."""
    rate = find_rate(from_currency, to_currency, branch_id)
    if rate is None:
        logger.warning(
            "No exchange rate for %s->%s (branch %s); using 1",
            from_currency, to_currency, branch_id,
        )
        return ONE
    return rate


def create_rate(from_currency: str, to_currency: str, rate, branch_id: int | None = None) -> CurrencyExchangeRate:
    row = CurrencyExchangeRate(
        from_currency=from_currency.upper(),
        to_currency=to_currency.upper(),
        rate=to_decimal(rate),
        branch_id=branch_id,
        is_active=True,
    )
    db.session.add(row)
    db.session.commit()
    return row
