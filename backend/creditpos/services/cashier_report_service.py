# Overview: Per-day cash rollup for a cashier, upserted on (cashier, branch, day).

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..extensions import db
from ..logging_config import operation_logger
from ..models import CashierReport, CreditRepayment, DefectiveLog, Transaction
from ..models.transactions import SCHEDULED_PAYMENT_TYPES
from creditpos.time_utils import coerce_datetime
from .concurrency import run_with_retry
from .errors import InvalidRequestError

logger = logging.getLogger(__name__)

CARD_LIKE = ("CARD", "TERMINAL")


def day_bounds(day) -> tuple[datetime, datetime]:
    """[00:00, 23:59:59.999999] of the given date."""
    start = coerce_datetime(day)
    if start is None:
        raise InvalidRequestError("date is required", {"field": "date"})
    start = start.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


def _totals(cashier_id: int, branch_id: int, start: datetime, end: datetime) -> dict:
    totals = {
        "cash_total_cents": 0,
        "card_total_cents": 0,
        "credit_total_cents": 0,
        "installment_total_cents": 0,
        "upfront_total_cents": 0,
        "upfront_cash_cents": 0,
        "upfront_card_cents": 0,
        "sold_quantity": 0,
        "sold_amount_cents": 0,
        "repayment_total_cents": 0,
        "defective_plus_cents": 0,
        "defective_minus_cents": 0,
    }

    sales = (
        Transaction.query
        .filter(
            Transaction.sold_by_user_id == cashier_id,
            Transaction.from_branch_id == branch_id,
            Transaction.type == "SALE",
            Transaction.created_at >= start,
            Transaction.created_at <= end,
        )
        .all()
    )
    for tx in sales:
        final_total = tx.final_total_cents or tx.total_cents or 0
        upfront = (tx.amount_paid_cents or 0) if tx.payment_type in SCHEDULED_PAYMENT_TYPES else 0

        if tx.payments:
            for payment in tx.payments:
                if not payment.amount_cents:
                    continue
                if payment.method == "CASH":
                    totals["cash_total_cents"] += payment.amount_cents
                elif payment.method in CARD_LIKE:
                    totals["card_total_cents"] += payment.amount_cents
        elif tx.payment_type == "CASH":
            totals["cash_total_cents"] += final_total
        elif tx.payment_type in CARD_LIKE:
            totals["card_total_cents"] += final_total
        elif tx.payment_type in SCHEDULED_PAYMENT_TYPES:
            bucket = "credit_total_cents" if tx.payment_type == "CREDIT" else "installment_total_cents"
            totals[bucket] += final_total
            totals["upfront_total_cents"] += upfront
            if tx.upfront_payment_type == "CASH":
                totals["upfront_cash_cents"] += upfront
            elif tx.upfront_payment_type in CARD_LIKE:
                totals["upfront_card_cents"] += upfront

        for line in tx.items:
            totals["sold_quantity"] += line.quantity or 0
            totals["sold_amount_cents"] += line.total_cents or 0

    repayments = (
        CreditRepayment.query
        .join(Transaction, Transaction.id == CreditRepayment.transaction_id)
        .filter(
            CreditRepayment.paid_by_user_id == cashier_id,
            Transaction.from_branch_id == branch_id,
            CreditRepayment.paid_at >= start,
            CreditRepayment.paid_at <= end,
        )
        .all()
    )
    totals["repayment_total_cents"] = sum(r.amount_cents or 0 for r in repayments)

    logs = (
        DefectiveLog.query
        .filter(
            DefectiveLog.user_id == cashier_id,
            DefectiveLog.branch_id == branch_id,
            DefectiveLog.created_at >= start,
            DefectiveLog.created_at <= end,
        )
        .all()
    )
    for entry in logs:
        amount = entry.cash_amount_cents or 0
        if amount > 0:
            totals["defective_plus_cents"] += amount
        elif amount < 0:
            totals["defective_minus_cents"] += abs(amount)

    return totals


def generate_cashier_report(cashier_id: int, branch_id: int, start, end=None) -> CashierReport:
    """
    Recompute the rollup for [start, end] and upsert it keyed on
    (cashier_id, branch_id, start).
    """
    start = coerce_datetime(start)
    end = coerce_datetime(end) if end is not None else day_bounds(start)[1]
    totals = _totals(cashier_id, branch_id, start, end)
    log = operation_logger(__name__, op="cashier_report", cashier_id=cashier_id, branch_id=branch_id)

    def _op():
        report = CashierReport.query.filter_by(
            cashier_id=cashier_id, branch_id=branch_id, report_date=start,
        ).first()
        if report is None:
            report = CashierReport(cashier_id=cashier_id, branch_id=branch_id, report_date=start)
            db.session.add(report)
        for key, value in totals.items():
            setattr(report, key, value)
        db.session.commit()
        return report

    report = run_with_retry(_op)
    log.info("Cashier report stored for %s", start.date())
    return report


def get_cashier_report(cashier_id: int, branch_id: int, start, end=None) -> CashierReport:
    """Stored report for (cashier, branch, start), generated on first request."""
    start = coerce_datetime(start)
    existing = CashierReport.query.filter_by(
        cashier_id=cashier_id, branch_id=branch_id, report_date=start,
    ).first()
    if existing is not None:
        return existing
    return generate_cashier_report(cashier_id, branch_id, start, end)


def list_reports(
    cashier_id: int | None = None,
    branch_id: int | None = None,
    start=None,
    end=None,
    limit: int | str | None = 100,
) -> list[CashierReport]:
    query = CashierReport.query
    if cashier_id:
        query = query.filter(CashierReport.cashier_id == cashier_id)
    if branch_id:
        query = query.filter(CashierReport.branch_id == branch_id)
    start = coerce_datetime(start)
    end = coerce_datetime(end)
    if start:
        query = query.filter(CashierReport.report_date >= start)
    if end:
        query = query.filter(CashierReport.report_date <= end)
    query = query.order_by(CashierReport.report_date.desc())
    if limit != "all" and limit is not None:
        query = query.limit(int(limit))
    return query.all()
