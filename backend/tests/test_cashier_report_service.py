"""
Cashier daily report tests.
"""

from datetime import datetime, timedelta

import pytest

from creditpos.models import CashierReport
from creditpos.services import adjustment_service, cashier_report_service, repayment_service, sales_service
from creditpos.services.errors import InvalidRequestError
from creditpos.time_utils import utcnow


def test_day_bounds():
    start, end = cashier_report_service.day_bounds("2026-05-01")
    assert start == datetime(2026, 5, 1)
    assert end == datetime(2026, 5, 1, 23, 59, 59, 999999)

    with pytest.raises(InvalidRequestError):
        cashier_report_service.day_bounds(None)


class TestCashierReport:

    def _seed(self, branch, cashier, make_product):
        product = make_product(price_cents=10_000, quantity=20)
        line = {"product_id": product.id, "quantity": 1, "price_cents": 10_000}
        base = {"from_branch_id": branch.id, "sold_by_user_id": cashier.id}

        sales_service.create_transaction(dict(base, payment_type="CASH", items=[line]))
        sales_service.create_transaction(dict(
            base,
            payment_type="CASH",
            items=[line],
            payments=[{"method": "CASH", "amount_cents": 4_000}, {"method": "TERMINAL", "amount_cents": 6_000}],
        ))
        credit = sales_service.create_transaction(dict(
            base,
            payment_type="CREDIT",
            amount_paid_cents=2_000,
            upfront_payment_type="CASH",
            items=[dict(line, credit_month=2, credit_percent_bps=1000)],
        ))
        repayment_service.record_repayment(credit.id, 1_500, paid_by_user_id=cashier.id)
        adjustment_service.record_action({
            "product_id": product.id,
            "quantity": 1,
            "action_type": "DEFECTIVE",
            "branch_id": branch.id,
            "user_id": cashier.id,
        })
        return credit

    def test_generate_rollup(self, db_session, branch, cashier, make_product):
        self._seed(branch, cashier, make_product)
        start, end = cashier_report_service.day_bounds(utcnow().date())

        report = cashier_report_service.generate_cashier_report(cashier.id, branch.id, start, end)

        assert report.cash_total_cents == 14_000
        assert report.card_total_cents == 6_000
        # upfront 2,000 + (8,000 principal + 800 interest)
        assert report.credit_total_cents == 10_800
        assert report.installment_total_cents == 0
        assert report.upfront_total_cents == 2_000
        assert report.upfront_cash_cents == 2_000
        assert report.upfront_card_cents == 0
        assert report.sold_quantity == 3
        assert report.sold_amount_cents == 30_000
        assert report.repayment_total_cents == 1_500
        assert report.defective_minus_cents == 10_000
        assert report.defective_plus_cents == 0

    def test_regenerate_upserts_one_row(self, db_session, branch, cashier, make_product):
        self._seed(branch, cashier, make_product)
        start, end = cashier_report_service.day_bounds(utcnow().date())

        cashier_report_service.generate_cashier_report(cashier.id, branch.id, start, end)
        cashier_report_service.generate_cashier_report(cashier.id, branch.id, start, end)

        assert CashierReport.query.count() == 1

    def test_get_returns_stored_report(self, db_session, branch, cashier, make_product):
        start, end = cashier_report_service.day_bounds(utcnow().date())
        empty = cashier_report_service.get_cashier_report(cashier.id, branch.id, start, end)
        assert empty.cash_total_cents == 0

        self._seed(branch, cashier, make_product)
        stored = cashier_report_service.get_cashier_report(cashier.id, branch.id, start, end)
        assert stored.id == empty.id
        assert stored.cash_total_cents == 0

    def test_other_days_excluded(self, db_session, branch, cashier, make_product):
        self._seed(branch, cashier, make_product)
        start, end = cashier_report_service.day_bounds(utcnow().date() - timedelta(days=1))
        report = cashier_report_service.generate_cashier_report(cashier.id, branch.id, start, end)
        assert report.cash_total_cents == 0
        assert report.sold_quantity == 0

    def test_list_reports(self, db_session, branch, cashier):
        today = utcnow().date()
        for offset in range(3):
            start, end = cashier_report_service.day_bounds(today - timedelta(days=offset))
            cashier_report_service.generate_cashier_report(cashier.id, branch.id, start, end)

        assert len(cashier_report_service.list_reports(cashier_id=cashier.id, limit=2)) == 2
        reports = cashier_report_service.list_reports(branch_id=branch.id, limit="all")
        assert len(reports) == 3
        assert reports[0].report_date > reports[-1].report_date
