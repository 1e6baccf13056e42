# Overview: Schedule engine; principal, blended interest and per-period payment plans.

# backend/creditpos/services/schedule_service.py
"""
Credit / installment schedule invariants (authoritative)

Amounts:
- All amounts are integer cents. Interest and per-period payments are
  rounded half-up to the cent.
- principal(line) = price_cents * quantity.
- effective percent = sum(principal * bps) / sum(principal where bps set);
  lines without a credit percent count toward the principal only.

Plan:
- remaining principal = max(0, total principal - upfront).
- interest applies to CREDIT / INSTALLMENT only.
- MONTHS: one row per month; every row but the last pays the rounded
  regular amount, the last row pays whatever balance remains. Therefore
  sum(payment) == remaining_with_interest exactly and the last
  remaining balance is 0.
- DAYS: exactly one DAILY row carrying the whole balance, due after N days.
- No rows when the payment type is not scheduled, principal is 0, or term is 0.

Recomputation:
- Original principal is recovered from original_quantity of every line
  (returned lines included); the new plan uses lines with quantity > 0.
- The upfront payment is re-apportioned: upfront * remaining / original.
- Rows are deleted and recreated as a set. Amounts already repaid are
  re-applied to the new rows in month order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..logging_config import operation_logger
from ..models import CreditRepayment, PaymentSchedule, Transaction, TransactionItem
from ..money import BPS_PER_UNIT, round_cents, to_decimal
from creditpos.time_utils import add_days, add_months, utcnow
from .concurrency import lock_for_update, run_atomic
from .errors import NotFoundError, InvalidRequestError
from .side_effects import SCHEDULE_RECOMPUTE, run_after_commit
from ..models.transactions import SCHEDULED_PAYMENT_TYPES


INSTALLMENT_MONTHLY = "MONTHLY"
INSTALLMENT_DAILY = "DAILY"


# =============================================================================
# Pure plan computation
# =============================================================================

@dataclass(frozen=True)
class PlanItem:
    """Schedule input for one line."""
    principal_cents: int
    credit_percent_bps: Optional[int] = None
    credit_term: Optional[int] = None


@dataclass(frozen=True)
class ScheduleRow:
    month: int
    payment_cents: int
    remaining_balance_cents: int
    installment_type: str
    due_date: Optional[datetime]
    total_periods: int
    remaining_periods: int


@dataclass(frozen=True)
class SchedulePlan:
    total_principal_cents: int
    effective_percent: Decimal
    term: int
    upfront_cents: int
    remaining_principal_cents: int
    interest_cents: int
    remaining_with_interest_cents: int
    rows: tuple = field(default_factory=tuple)

    @property
    def final_total_cents(self) -> int:
        return self.upfront_cents + self.remaining_with_interest_cents

    @property
    def scheduled_sum_cents(self) -> int:
        return sum(row.payment_cents for row in self.rows)


def plan_item_for_line(line: TransactionItem, *, use_original_quantity: bool = False) -> PlanItem:
    quantity = line.original_quantity if use_original_quantity else line.quantity
    return PlanItem(
        principal_cents=(line.price_cents or 0) * (quantity or 0),
        credit_percent_bps=line.credit_percent_bps,
        credit_term=line.credit_month,
    )


def blended_percent(items: Iterable[PlanItem]) -> Decimal:
    """Principal-weighted average credit percent as a fraction (0.10 == 10%)."""
    weighted = 0
    base = 0
    for item in items:
        if item.credit_percent_bps:
            weighted += item.principal_cents * item.credit_percent_bps
            base += item.principal_cents
    if base <= 0:
        return Decimal(0)
    return Decimal(weighted) / (Decimal(base) * BPS_PER_UNIT)


def compute_plan(
    items: Iterable[PlanItem],
    upfront_cents: int,
    payment_type: Optional[str],
    term_unit: str = "MONTHS",
    *,
    start: Optional[datetime] = None,
) -> SchedulePlan:
    """
    Compute the full financial breakdown and rows for a set of lines.

    Pure: no database access. `start` anchors due dates (defaults to now).
    """
    items = list(items)
    total_principal = sum(item.principal_cents for item in items)
    effective = blended_percent(items)
    term = max((item.credit_term or 0 for item in items), default=0)
    upfront = max(0, int(upfront_cents or 0))

    scheduled = payment_type in SCHEDULED_PAYMENT_TYPES
    remaining_principal = max(0, total_principal - upfront)
    interest = round_cents(Decimal(remaining_principal) * effective) if scheduled else 0
    remaining_with_interest = remaining_principal + interest

    rows: tuple = ()
    if scheduled and total_principal > 0 and term > 0:
        anchor = start or utcnow()
        if term_unit == "DAYS":
            rows = (_daily_row(remaining_with_interest, term, anchor),)
        else:
            rows = tuple(_monthly_rows(remaining_with_interest, term, anchor))

    return SchedulePlan(
        total_principal_cents=total_principal,
        effective_percent=effective,
        term=term,
        upfront_cents=upfront,
        remaining_principal_cents=remaining_principal,
        interest_cents=interest,
        remaining_with_interest_cents=remaining_with_interest,
        rows=rows,
    )


def _monthly_rows(balance_cents: int, term: int, anchor: datetime):
    regular = round_cents(to_decimal(balance_cents) / term)
    balance = balance_cents
    for month in range(1, term + 1):
        # Last month absorbs the rounding residue
        payment = balance if month == term else min(regular, balance)
        balance = max(0, balance - payment)
        yield ScheduleRow(
            month=month,
            payment_cents=payment,
            remaining_balance_cents=balance,
            installment_type=INSTALLMENT_MONTHLY,
            due_date=add_months(anchor, month),
            total_periods=term,
            remaining_periods=term - month + 1,
        )


def _daily_row(balance_cents: int, days: int, anchor: datetime) -> ScheduleRow:
    return ScheduleRow(
        month=1,
        payment_cents=balance_cents,
        remaining_balance_cents=balance_cents,
        installment_type=INSTALLMENT_DAILY,
        due_date=add_days(anchor, days),
        total_periods=days,
        remaining_periods=days,
    )


# =============================================================================
# Persistence
# =============================================================================

def persist_rows(transaction_id: int, plan: SchedulePlan) -> list[PaymentSchedule]:
    """Add plan rows to the session (caller owns the commit)."""
    rows = []
    for row in plan.rows:
        schedule = PaymentSchedule(
            transaction_id=transaction_id,
            month=row.month,
            payment_cents=row.payment_cents,
            remaining_balance_cents=row.remaining_balance_cents,
            is_paid=False,
            paid_amount_cents=0,
            due_date=row.due_date,
            installment_type=row.installment_type,
            total_periods=row.total_periods,
            remaining_periods=row.remaining_periods,
        )
        db.session.add(schedule)
        rows.append(schedule)
    return rows


def generate_schedule(transaction: Transaction) -> SchedulePlan:
    """Compute and add schedule rows for a freshly created transaction."""
    plan = compute_plan(
        [plan_item_for_line(line) for line in transaction.items if line.quantity > 0],
        transaction.upfront_cents,
        transaction.payment_type,
        transaction.term_unit,
    )
    persist_rows(transaction.id, plan)
    return plan


def _recompute_plan(transaction: Transaction) -> Optional[SchedulePlan]:
    """Plan from remaining lines with proportionally rescaled upfront; None if nothing remains."""
    remaining = [line for line in transaction.items if line.quantity > 0]
    if not remaining:
        return None

    original_principal = sum(
        plan_item_for_line(line, use_original_quantity=True).principal_cents for line in transaction.items
    )
    remaining_items = [plan_item_for_line(line) for line in remaining]
    remaining_principal = sum(item.principal_cents for item in remaining_items)
    upfront = transaction.upfront_cents
    if original_principal > 0:
        proportional_upfront = round_cents(
            Decimal(upfront) * Decimal(remaining_principal) / Decimal(original_principal)
        )
    else:
        proportional_upfront = 0

    return compute_plan(
        remaining_items,
        proportional_upfront,
        transaction.payment_type,
        transaction.term_unit,
        start=transaction.created_at,
    )


def _reapply_paid(rows: list[PaymentSchedule], paid_cents: int, paid_at) -> int:
    left = paid_cents
    for row in rows:
        if left <= 0:
            break
        take = min(row.payment_cents, left)
        row.paid_amount_cents = take
        if take >= row.payment_cents:
            row.is_paid = True
            row.paid_at = paid_at
        left -= take
    return paid_cents - left


def recompute_schedule(transaction_id: int) -> Optional[SchedulePlan]:
    """
    Regenerate a transaction's schedule from its remaining lines.

    WHY: After a partial return/exchange the stored rows describe a principal
    that no longer exists. Rows are replaced as a set so a transaction never
    holds two overlapping schedules.

    Idempotent: running it twice yields the same rows. No-op when the
    transaction is not CREDIT/INSTALLMENT or has no remaining lines.

    Returns:
        The new SchedulePlan, or None when nothing was recomputed.

    Raises:
        NotFoundError: transaction does not exist.
    """
    log = operation_logger(__name__, transaction_id=transaction_id, op="recompute_schedule")

    def _op():
        tx = lock_for_update(Transaction.query.filter_by(id=transaction_id)).first()
        if tx is None:
            raise NotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
        if not tx.is_scheduled:
            return None

        plan = _recompute_plan(tx)
        if plan is None:
            log.info("No remaining lines; schedule left unchanged")
            return None

        old_rows = PaymentSchedule.query.filter_by(transaction_id=tx.id).all()
        paid_cents = sum(row.paid_amount_cents or 0 for row in old_rows)
        last_paid_at = max((row.paid_at for row in old_rows if row.paid_at), default=None)

        db.session.execute(
            update(CreditRepayment)
            .where(CreditRepayment.transaction_id == tx.id)
            .values(schedule_id=None)
            .execution_options(synchronize_session=False)
        )
        PaymentSchedule.query.filter_by(transaction_id=tx.id).delete(synchronize_session="fetch")
        db.session.flush()

        new_rows = persist_rows(tx.id, plan)
        applied = _reapply_paid(new_rows, paid_cents, last_paid_at)

        tx.total_cents = plan.total_principal_cents
        tx.final_total_cents = plan.remaining_with_interest_cents
        tx.remaining_balance_cents = max(0, plan.remaining_with_interest_cents - applied)

        log.info(
            "Schedule recomputed: principal=%s upfront=%s rwi=%s rows=%s",
            plan.total_principal_cents,
            plan.upfront_cents,
            plan.remaining_with_interest_cents,
            len(plan.rows),
        )
        return plan

    return run_atomic(_op)


def run_recompute(transaction_id: int) -> bool:
    """
    Post-commit recomputation used by the adjustment flow.

    With SCHEDULE_RECOMPUTE_STRICT the failure is raised to the caller;
    otherwise it is logged and queued for `flask finance retry-failures`.
    """
    if current_app.config.get("SCHEDULE_RECOMPUTE_STRICT"):
        recompute_schedule(transaction_id)
        return True
    return run_after_commit(
        SCHEDULE_RECOMPUTE,
        lambda: recompute_schedule(transaction_id),
        transaction_id=transaction_id,
    )


# =============================================================================
# Reconciliation
# =============================================================================

def find_drifted_transactions() -> list[int]:
    """
    CREDIT/INSTALLMENT transactions whose stored schedule disagrees with
    the schedule their current lines imply.
    """
    stored_sums = dict(
        db.session.query(PaymentSchedule.transaction_id, func.coalesce(func.sum(PaymentSchedule.payment_cents), 0))
        .group_by(PaymentSchedule.transaction_id)
        .all()
    )
    drifted = []
    candidates = (
        Transaction.query
        .filter(Transaction.payment_type.in_(SCHEDULED_PAYMENT_TYPES))
        .filter(Transaction.status != "CANCELLED")
        .order_by(Transaction.id.asc())
        .all()
    )
    for tx in candidates:
        plan = _recompute_plan(tx)
        if plan is None:
            continue
        if int(stored_sums.get(tx.id, 0)) != plan.scheduled_sum_cents:
            drifted.append(tx.id)
    return drifted


def reconcile_schedules(*, dry_run: bool = False) -> dict:
    """Recompute every drifted schedule; failures are queued, not raised."""
    drifted = find_drifted_transactions()
    repaired = []
    if not dry_run:
        for transaction_id in drifted:
            ok = run_after_commit(
                SCHEDULE_RECOMPUTE,
                lambda tid=transaction_id: recompute_schedule(tid),
                transaction_id=transaction_id,
            )
            if ok:
                repaired.append(transaction_id)
    return {"drifted": drifted, "repaired": repaired, "dry_run": dry_run}


# =============================================================================
# Reads and payment marks
# =============================================================================

def _get_transaction(transaction_id: int) -> Transaction:
    if not transaction_id or transaction_id <= 0:
        raise InvalidRequestError("Invalid transaction ID provided", {"transaction_id": transaction_id})
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
    return tx


def get_payment_schedules(transaction_id: int) -> list[PaymentSchedule]:
    _get_transaction(transaction_id)
    return (
        PaymentSchedule.query
        .filter_by(transaction_id=transaction_id)
        .order_by(PaymentSchedule.month.asc())
        .all()
    )


def update_payment_status(transaction_id: int, month: int, paid: bool) -> PaymentSchedule:
    """Mark one schedule row fully paid or unpaid."""
    _get_transaction(transaction_id)

    def _op():
        row = lock_for_update(
            PaymentSchedule.query.filter_by(transaction_id=transaction_id, month=month)
        ).first()
        if row is None:
            raise NotFoundError("Payment schedule not found", {"transaction_id": transaction_id, "month": month})
        row.is_paid = bool(paid)
        row.paid_amount_cents = row.payment_cents if paid else 0
        row.paid_at = utcnow() if paid else None
        return row

    return run_atomic(_op)


def get_debts(branch_id: Optional[int] = None, customer_id: Optional[int] = None) -> dict:
    """
    Outstanding credit/installment debt per transaction and per customer.

    outstanding = scheduled payable - paid against the schedule. The upfront
    payment is already excluded from the schedule and is reported in
    total_paid only.
    """
    query = (
        Transaction.query
        .filter(Transaction.payment_type.in_(SCHEDULED_PAYMENT_TYPES))
        .filter(Transaction.status != "CANCELLED")
    )
    if customer_id:
        query = query.filter(Transaction.customer_id == customer_id)
    if branch_id:
        query = query.filter(db.or_(Transaction.from_branch_id == branch_id, Transaction.to_branch_id == branch_id))

    debts = []
    for tx in query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all():
        schedules = list(tx.schedules)
        total_payable = sum(s.payment_cents for s in schedules)
        paid_on_schedule = sum(s.paid_amount_cents or 0 for s in schedules)
        outstanding = max(0, total_payable - paid_on_schedule)
        if outstanding <= 0:
            continue
        next_due = next(
            (s for s in schedules if not s.is_paid and (s.paid_amount_cents or 0) < s.payment_cents),
            None,
        )
        debts.append({
            "transaction_id": tx.id,
            "customer": (
                {"id": tx.customer.id, "full_name": tx.customer.full_name, "phone": tx.customer.phone}
                if tx.customer else None
            ),
            "payment_type": tx.payment_type,
            "total_payable_cents": total_payable,
            "total_paid_cents": paid_on_schedule + tx.upfront_cents,
            "outstanding_cents": outstanding,
            "monthly_payment_cents": schedules[0].payment_cents if schedules else 0,
            "next_due": (
                {
                    "month": next_due.month,
                    "amount_due_cents": max(0, next_due.payment_cents - (next_due.paid_amount_cents or 0)),
                    "remaining_balance_cents": next_due.remaining_balance_cents,
                    "due_date": next_due.due_date,
                }
                if next_due else None
            ),
            "items": [
                {
                    "id": line.id,
                    "product_id": line.product_id,
                    "product_name": line.product_name or (line.product.name if line.product else None),
                    "quantity": line.quantity,
                    "price_cents": line.price_cents,
                    "total_cents": line.total_cents,
                }
                for line in tx.items
            ],
        })

    customers: dict[int, dict] = {}
    for debt in debts:
        key = debt["customer"]["id"] if debt["customer"] else 0
        agg = customers.setdefault(key, {
            "customer_id": key,
            "full_name": debt["customer"]["full_name"] if debt["customer"] else None,
            "phone": debt["customer"]["phone"] if debt["customer"] else None,
            "total_payable_cents": 0,
            "total_paid_cents": 0,
            "outstanding_cents": 0,
            "transactions": [],
        })
        agg["total_payable_cents"] += debt["total_payable_cents"]
        agg["total_paid_cents"] += debt["total_paid_cents"]
        agg["outstanding_cents"] += debt["outstanding_cents"]
        agg["transactions"].append(debt)

    customer_list = sorted(customers.values(), key=lambda c: c["outstanding_cents"], reverse=True)
    return {
        "debts": debts,
        "customers": customer_list,
        "summary": {
            "total_outstanding_cents": sum(d["outstanding_cents"] for d in debts),
            "total_customers": len(customer_list),
            "total_debt_transactions": len(debts),
        },
    }
