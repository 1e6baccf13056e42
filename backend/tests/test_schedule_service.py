"""
Schedule engine tests: pure plan math, persistence, recompute and reconciliation.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from creditpos.extensions import db
from creditpos.models import PaymentSchedule, Transaction
from creditpos.services import adjustment_service, repayment_service, sales_service, schedule_service
from creditpos.services.errors import NotFoundError
from creditpos.services.schedule_service import PlanItem, compute_plan


ANCHOR = datetime(2026, 1, 31, 12, 0, 0)


def _credit_sale(product, quantity, price_cents, *, months=3, bps=1000, payment_type="CREDIT", **payload):
    body = {
        "type": "SALE",
        "payment_type": payment_type,
        "from_branch_id": product.branch_id,
        "items": [{
            "product_id": product.id,
            "quantity": quantity,
            "price_cents": price_cents,
            "credit_month": months,
            "credit_percent_bps": bps,
        }],
    }
    body.update(payload)
    return sales_service.create_transaction(body)


class TestComputePlan:

    def test_simple_credit_sale(self):
        plan = compute_plan(
            [PlanItem(principal_cents=100_000_000, credit_percent_bps=1000, credit_term=3)],
            0,
            "CREDIT",
            start=ANCHOR,
        )
        assert plan.remaining_principal_cents == 100_000_000
        assert plan.interest_cents == 10_000_000
        assert plan.remaining_with_interest_cents == 110_000_000
        assert [row.payment_cents for row in plan.rows] == [36_666_667, 36_666_667, 36_666_666]
        assert plan.rows[-1].remaining_balance_cents == 0
        assert [row.remaining_periods for row in plan.rows] == [3, 2, 1]

    @pytest.mark.parametrize("principal,term,bps", [
        (100, 7, 1250),
        (99_999, 12, 333),
        (1_000_001, 5, 0),
        (250_000, 1, 2000),
    ])
    def test_payments_sum_to_balance(self, principal, term, bps):
        plan = compute_plan(
            [PlanItem(principal_cents=principal, credit_percent_bps=bps, credit_term=term)],
            0,
            "INSTALLMENT",
            start=ANCHOR,
        )
        assert plan.scheduled_sum_cents == plan.remaining_with_interest_cents
        assert plan.rows[-1].remaining_balance_cents == 0
        assert len(plan.rows) == term

    def test_due_dates_clamp_to_month_end(self):
        plan = compute_plan([PlanItem(30_000, 0, 2)], 0, "CREDIT", start=ANCHOR)
        assert plan.rows[0].due_date == datetime(2026, 2, 28, 12, 0, 0)
        assert plan.rows[1].due_date == datetime(2026, 3, 31, 12, 0, 0)

    def test_blended_percent_is_principal_weighted(self):
        plan = compute_plan(
            [
                PlanItem(principal_cents=30_000, credit_percent_bps=1000, credit_term=2),
                PlanItem(principal_cents=10_000, credit_percent_bps=2000, credit_term=4),
                PlanItem(principal_cents=10_000, credit_percent_bps=None, credit_term=None),
            ],
            0,
            "CREDIT",
            start=ANCHOR,
        )
        assert plan.effective_percent == Decimal("0.125")
        assert plan.total_principal_cents == 50_000
        assert plan.interest_cents == 6_250
        assert plan.term == 4

    def test_upfront_reduces_principal(self):
        plan = compute_plan([PlanItem(100_000, 1000, 2)], 20_000, "CREDIT", start=ANCHOR)
        assert plan.remaining_principal_cents == 80_000
        assert plan.remaining_with_interest_cents == 88_000
        assert plan.final_total_cents == 108_000
        assert [row.payment_cents for row in plan.rows] == [44_000, 44_000]

    def test_days_term_is_single_row(self):
        plan = compute_plan([PlanItem(50_000, 500, 10)], 0, "INSTALLMENT", "DAYS", start=ANCHOR)
        assert len(plan.rows) == 1
        row = plan.rows[0]
        assert row.installment_type == "DAILY"
        assert row.payment_cents == 52_500
        assert row.remaining_balance_cents == 52_500
        assert row.total_periods == 10
        assert row.due_date == datetime(2026, 2, 10, 12, 0, 0)

    @pytest.mark.parametrize("payment_type,principal,term", [
        ("CASH", 10_000, 3),
        ("CREDIT", 0, 3),
        ("CREDIT", 10_000, 0),
    ])
    def test_no_rows(self, payment_type, principal, term):
        plan = compute_plan([PlanItem(principal, 1000, term)], 0, payment_type, start=ANCHOR)
        assert plan.rows == ()

    def test_cash_sale_has_no_interest(self):
        plan = compute_plan([PlanItem(10_000, 1000, 3)], 0, "CASH", start=ANCHOR)
        assert plan.interest_cents == 0
        assert plan.final_total_cents == 10_000


class TestPersistedSchedule:

    def test_credit_sale_persists_rows(self, db_session, make_product):
        product = make_product(quantity=5)
        tx = _credit_sale(product, 2, 50_000_000)

        rows = schedule_service.get_payment_schedules(tx.id)
        assert [row.payment_cents for row in rows] == [36_666_667, 36_666_667, 36_666_666]
        assert tx.total_cents == 100_000_000
        assert tx.final_total_cents == 110_000_000
        assert tx.remaining_balance_cents == 110_000_000

    def test_partial_return_halves_principal(self, db_session, make_product, branch):
        product = make_product(quantity=5)
        tx = _credit_sale(product, 2, 50_000_000)

        adjustment_service.record_action({
            "product_id": product.id,
            "quantity": 1,
            "action_type": "RETURN",
            "is_from_sale": True,
            "transaction_id": tx.id,
            "branch_id": branch.id,
        })

        rows = schedule_service.get_payment_schedules(tx.id)
        assert [row.month for row in rows] == [1, 2, 3]
        assert sum(row.payment_cents for row in rows) == 55_000_000
        assert rows[-1].payment_cents == 18_333_334
        tx = db.session.get(Transaction, tx.id)
        assert tx.total_cents == 50_000_000
        assert tx.final_total_cents == 55_000_000
        assert PaymentSchedule.query.filter_by(transaction_id=tx.id).count() == 3

    def test_partial_return_rescales_upfront(self, db_session, make_product):
        product = make_product(quantity=5)
        tx = _credit_sale(product, 2, 50_000, months=2, down_payment_cents=20_000)
        assert [row.payment_cents for row in tx.schedules] == [44_000, 44_000]

        adjustment_service.record_action({
            "product_id": product.id,
            "quantity": 1,
            "action_type": "RETURN",
            "is_from_sale": True,
            "transaction_id": tx.id,
        })

        plan = schedule_service.recompute_schedule(tx.id)
        # upfront 20,000 * 50,000 / 100,000
        assert plan.upfront_cents == 10_000
        assert plan.remaining_with_interest_cents == 44_000
        rows = schedule_service.get_payment_schedules(tx.id)
        assert [row.payment_cents for row in rows] == [22_000, 22_000]

    def test_recompute_is_idempotent(self, db_session, make_product):
        product = make_product(quantity=5)
        tx = _credit_sale(product, 3, 10_000, months=4)
        first = [(r.month, r.payment_cents) for r in schedule_service.get_payment_schedules(tx.id)]
        schedule_service.recompute_schedule(tx.id)
        schedule_service.recompute_schedule(tx.id)
        second = [(r.month, r.payment_cents) for r in schedule_service.get_payment_schedules(tx.id)]
        assert first == second

    def test_recompute_reapplies_repayments(self, db_session, make_product):
        product = make_product(quantity=5)
        tx = _credit_sale(product, 2, 10_000, months=2, bps=0)
        repayment_service.record_repayment(tx.id, 10_000)

        schedule_service.recompute_schedule(tx.id)

        rows = schedule_service.get_payment_schedules(tx.id)
        assert rows[0].is_paid is True
        assert rows[0].paid_amount_cents == 10_000
        assert rows[1].is_paid is False
        assert db.session.get(Transaction, tx.id).remaining_balance_cents == 10_000

    def test_recompute_skips_cash_sale(self, db_session, make_product, make_sale):
        product = make_product()
        tx = make_sale([(product, 1, 10_000)])
        assert schedule_service.recompute_schedule(tx.id) is None

    def test_recompute_unknown_transaction(self, db_session):
        with pytest.raises(NotFoundError):
            schedule_service.recompute_schedule(999)

    def test_days_sale_sets_days_only(self, db_session, make_product):
        product = make_product()
        tx = _credit_sale(product, 1, 10_000, months=15, bps=0, payment_type="INSTALLMENT",
                          term_unit="DAYS", days=15)
        assert tx.months == 0
        assert tx.days == 15
        rows = schedule_service.get_payment_schedules(tx.id)
        assert len(rows) == 1
        assert rows[0].installment_type == "DAILY"

    def test_update_payment_status(self, db_session, make_product):
        product = make_product()
        tx = _credit_sale(product, 1, 30_000, bps=0)

        row = schedule_service.update_payment_status(tx.id, 2, True)
        assert row.is_paid is True
        assert row.paid_amount_cents == 10_000

        row = schedule_service.update_payment_status(tx.id, 2, False)
        assert row.is_paid is False
        assert row.paid_at is None

        with pytest.raises(NotFoundError):
            schedule_service.update_payment_status(tx.id, 9, True)


class TestDebtsAndReconciliation:

    def test_get_debts_reports_outstanding(self, db_session, make_product):
        product = make_product()
        tx = _credit_sale(
            product, 1, 30_000, bps=0, amount_paid_cents=6_000,
            customer={"full_name": "Ali Valiyev", "phone": "+998901112233"},
        )
        repayment_service.record_repayment(tx.id, 8_000)

        debts = schedule_service.get_debts()
        assert debts["summary"]["total_debt_transactions"] == 1
        debt = debts["debts"][0]
        assert debt["total_payable_cents"] == 24_000
        assert debt["outstanding_cents"] == 16_000
        assert debt["total_paid_cents"] == 14_000
        assert debt["next_due"]["month"] == 2
        assert debts["customers"][0]["phone"] == "+998901112233"

    def test_reconcile_repairs_drift(self, db_session, make_product):
        product = make_product()
        tx = _credit_sale(product, 1, 30_000, bps=0)
        row = PaymentSchedule.query.filter_by(transaction_id=tx.id, month=1).first()
        row.payment_cents = 1
        db.session.commit()

        assert schedule_service.find_drifted_transactions() == [tx.id]
        dry = schedule_service.reconcile_schedules(dry_run=True)
        assert dry["repaired"] == []

        result = schedule_service.reconcile_schedules()
        assert result["repaired"] == [tx.id]
        assert schedule_service.find_drifted_transactions() == []

    def test_strict_recompute_raises(self, app, db_session, make_product, monkeypatch):
        product = make_product()
        tx = _credit_sale(product, 1, 30_000)
        monkeypatch.setitem(app.config, "SCHEDULE_RECOMPUTE_STRICT", True)

        def _boom(transaction_id):
            raise RuntimeError("database went away")

        monkeypatch.setattr(schedule_service, "recompute_schedule", _boom)
        with pytest.raises(RuntimeError):
            schedule_service.run_recompute(tx.id)
