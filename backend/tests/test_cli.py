"""
Flask CLI command tests.
"""

from creditpos.models import CashierReport, CurrencyExchangeRate, PaymentSchedule
from creditpos.services import sales_service, side_effects


def _invoke(app, *args):
    return app.test_cli_runner().invoke(args=list(args))


def _credit_sale(branch, cashier, make_product):
    product = make_product(price_cents=10_000)
    return sales_service.create_transaction({
        "from_branch_id": branch.id,
        "sold_by_user_id": cashier.id,
        "payment_type": "CREDIT",
        "items": [{
            "product_id": product.id,
            "quantity": 1,
            "price_cents": 10_000,
            "credit_month": 2,
            "credit_percent_bps": 1000,
        }],
    })


class TestFinanceCommands:

    def test_reconcile_clean(self, app, db_session, branch, cashier, make_product):
        _credit_sale(branch, cashier, make_product)
        result = _invoke(app, "finance", "reconcile-schedules", "--dry-run")
        assert result.exit_code == 0
        assert "OK No drifted schedules" in result.output

    def test_reconcile_repairs_drift(self, app, db_session, branch, cashier, make_product):
        tx = _credit_sale(branch, cashier, make_product)
        row = PaymentSchedule.query.filter_by(transaction_id=tx.id, month=1).one()
        row.payment_cents += 999
        db_session.commit()

        dry = _invoke(app, "finance", "reconcile-schedules", "--dry-run")
        assert f"WARN 1 drifted: {tx.id}" in dry.output
        assert "INFO Dry run, nothing changed" in dry.output

        fixed = _invoke(app, "finance", "reconcile-schedules")
        assert "OK Repaired 1" in fixed.output
        assert "OK No drifted schedules" in _invoke(app, "finance", "reconcile-schedules", "--dry-run").output

    def test_recompute_schedule(self, app, db_session, branch, cashier, make_product):
        tx = _credit_sale(branch, cashier, make_product)
        result = _invoke(app, "finance", "recompute-schedule", str(tx.id))
        assert result.exit_code == 0
        assert f"OK Transaction {tx.id}: principal=10000 with_interest=11000 rows=2" in result.output

    def test_recompute_cash_sale_is_noop(self, app, db_session, make_product, make_sale):
        sale = make_sale([(make_product(), 1, 10_000)])
        result = _invoke(app, "finance", "recompute-schedule", str(sale.id))
        assert f"INFO Transaction {sale.id} has nothing to recompute" in result.output

    def test_recompute_missing_transaction(self, app, db_session):
        result = _invoke(app, "finance", "recompute-schedule", "404")
        assert result.exit_code == 1
        assert "Transaction 404 not found" in result.output

    def test_failures_and_retry(self, app, db_session):
        assert "OK No open failures" in _invoke(app, "finance", "failures").output

        side_effects.run_after_commit("legacy.step", lambda: 1 / 0, transaction_id=3)
        listed = _invoke(app, "finance", "failures").output
        assert "legacy.step tx=3 attempts=3 ZeroDivisionError" in listed

        retried = _invoke(app, "finance", "retry-failures")
        assert "OK resolved=0 failed=0 skipped=1" in retried.output


class TestRatesAndReports:

    def test_set_rate(self, app, db_session, branch):
        result = _invoke(app, "rates", "set", "--from", "usd", "--to", "uzs", "--rate", "12650", "--branch-id", str(branch.id))
        assert result.exit_code == 0
        assert result.output.startswith("OK USD->UZS = 12650")
        assert f"(branch {branch.id})" in result.output
        assert CurrencyExchangeRate.query.one().branch_id == branch.id

    def test_cashier_report(self, app, db_session, branch, cashier):
        result = _invoke(
            app, "reports", "cashier",
            "--cashier-id", str(cashier.id), "--branch-id", str(branch.id), "--date", "2026-05-01",
        )
        assert result.exit_code == 0
        assert "cash_total_cents: 0" in result.output
        assert CashierReport.query.count() == 1

    def test_cashier_report_bad_date(self, app, db_session, branch, cashier):
        result = _invoke(
            app, "reports", "cashier",
            "--cashier-id", str(cashier.id), "--branch-id", str(branch.id), "--date", "not-a-day",
        )
        assert result.exit_code == 1
