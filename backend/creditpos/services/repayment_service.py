# Overview: Repayments against credit/installment schedules.

from __future__ import annotations

import logging

from ..extensions import db
from ..logging_config import operation_logger
from ..models import CreditRepayment, PaymentSchedule, Transaction
from ..validation import coerce_cents, coerce_choice, coerce_int
from creditpos.time_utils import coerce_datetime, utcnow
from .concurrency import lock_for_update, run_atomic
from .errors import InvalidRequestError, NotFoundError

logger = logging.getLogger(__name__)

REPAYMENT_CHANNELS = ("CASH", "CARD")


def _outstanding(rows: list[PaymentSchedule]) -> int:
    return sum(max(0, row.payment_cents - (row.paid_amount_cents or 0)) for row in rows)


def record_repayment(
    transaction_id: int,
    amount_cents: int,
    channel: str = "CASH",
    paid_by_user_id: int | None = None,
    schedule_month: int | None = None,
    branch_id: int | None = None,
    paid_at=None,
) -> CreditRepayment:
    """
    Apply a repayment to a credit/installment schedule.

    The amount fills the given month first (when set), then the earliest
    unpaid rows. A row is marked paid once fully covered. The transaction's
    remaining balance drops by the amount.

    Raises:
        NotFoundError: transaction or month does not exist.
        InvalidRequestError: not a scheduled sale, bad channel, or the
            amount exceeds what is still owed.
    """
    amount_cents = coerce_cents(amount_cents, "amount_cents")
    if amount_cents <= 0:
        raise InvalidRequestError("amount_cents must be positive", {"field": "amount_cents"})
    channel = coerce_choice(channel, "channel", REPAYMENT_CHANNELS, default="CASH")
    schedule_month = coerce_int(schedule_month, "schedule_month", allow_none=True)
    paid_at = coerce_datetime(paid_at) or utcnow()

    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
    if not tx.is_scheduled:
        raise InvalidRequestError("Only credit or installment sales take repayments", {"payment_type": tx.payment_type})

    log = operation_logger(__name__, transaction_id=transaction_id, op="record_repayment", channel=channel)

    def _op():
        locked = lock_for_update(Transaction.query.filter_by(id=transaction_id)).first()
        rows = (
            lock_for_update(PaymentSchedule.query.filter_by(transaction_id=transaction_id))
            .order_by(PaymentSchedule.month.asc())
            .all()
        )
        owed = _outstanding(rows)
        if amount_cents > owed:
            raise InvalidRequestError(
                "Repayment exceeds the outstanding balance",
                {"outstanding_cents": owed, "amount_cents": amount_cents},
            )

        ordered = rows
        if schedule_month is not None:
            target = [row for row in rows if row.month == schedule_month]
            if not target:
                raise NotFoundError("Payment schedule not found", {"month": schedule_month})
            ordered = target + [row for row in rows if row.month != schedule_month]

        left = amount_cents
        first_row_id = None
        for row in ordered:
            if left <= 0:
                break
            due = row.payment_cents - (row.paid_amount_cents or 0)
            if due <= 0:
                continue
            take = min(due, left)
            row.paid_amount_cents = (row.paid_amount_cents or 0) + take
            if row.paid_amount_cents >= row.payment_cents:
                row.is_paid = True
                row.paid_at = paid_at
            if first_row_id is None:
                first_row_id = row.id
            left -= take

        locked.remaining_balance_cents = max(0, (locked.remaining_balance_cents or 0) - amount_cents)

        repayment = CreditRepayment(
            transaction_id=transaction_id,
            schedule_id=first_row_id,
            amount_cents=amount_cents,
            channel=channel,
            paid_at=paid_at,
            paid_by_user_id=paid_by_user_id,
            branch_id=branch_id if branch_id is not None else locked.from_branch_id,
        )
        db.session.add(repayment)
        db.session.flush()
        return repayment.id

    repayment_id = run_atomic(_op)
    log.info("Repayment recorded: amount=%s", amount_cents)
    return db.session.get(CreditRepayment, repayment_id)


def list_repayments(transaction_id: int) -> list[CreditRepayment]:
    return (
        CreditRepayment.query
        .filter_by(transaction_id=transaction_id)
        .order_by(CreditRepayment.paid_at.asc(), CreditRepayment.id.asc())
        .all()
    )
