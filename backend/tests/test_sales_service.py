"""
Sale orchestrator tests: atomic create, stock guard, lifecycle rules and reporting.
"""

import pytest

from creditpos.extensions import db
from creditpos.models import (
    AuditTask,
    Customer,
    PaymentSchedule,
    Product,
    Transaction,
    TransactionBonusProduct,
    TransactionItem,
)
from creditpos.services import repayment_service, sales_service
from creditpos.services.errors import (
    ConflictingStateError,
    InsufficientStockError,
    InvalidRequestError,
    NotFoundError,
)


def _quantity(product_id):
    return db.session.get(Product, product_id).quantity


class TestCreateTransaction:

    def test_cash_sale_decrements_stock(self, db_session, make_product, make_sale):
        product = make_product(quantity=3)
        tx = make_sale([(product, 2, 15_000)])

        assert tx.type == "SALE"
        assert tx.status == "COMPLETED"
        assert tx.total_cents == 30_000
        assert tx.final_total_cents == 30_000
        assert tx.schedules == []
        assert _quantity(product.id) == 1

        line = tx.items[0]
        assert line.original_quantity == 2
        assert line.currency == "UZS"

    def test_last_unit_marks_product_sold(self, db_session, make_product, make_sale):
        product = make_product(quantity=1)
        make_sale([(product, 1, 15_000)])
        product = db.session.get(Product, product.id)
        assert product.quantity == 0
        assert product.status == "SOLD"

    def test_insufficient_stock_rolls_back_everything(self, db_session, make_product, make_sale):
        plenty = make_product(quantity=10)
        scarce = make_product(quantity=1)

        with pytest.raises(InsufficientStockError) as excinfo:
            make_sale([(plenty, 2, 15_000), (scarce, 5, 15_000)])

        assert excinfo.value.product_id == scarce.id
        assert excinfo.value.available == 1
        assert _quantity(plenty.id) == 10
        assert _quantity(scarce.id) == 1
        assert Transaction.query.count() == 0
        assert TransactionItem.query.count() == 0

    def test_purchase_increments_stock(self, db_session, make_product, branch):
        product = make_product(quantity=2)
        sales_service.create_transaction({
            "type": "PURCHASE",
            "to_branch_id": branch.id,
            "items": [{"product_id": product.id, "quantity": 5, "price_cents": 9_000}],
        })
        product = db.session.get(Product, product.id)
        assert product.quantity == 7
        assert product.status == "IN_WAREHOUSE"

    def test_payment_split_must_match_total(self, db_session, make_product, make_sale):
        product = make_product()
        with pytest.raises(InvalidRequestError):
            make_sale(
                [(product, 1, 15_000)],
                payments=[{"method": "CASH", "amount_cents": 10_000}, {"method": "CARD", "amount_cents": 4_000}],
            )
        assert Transaction.query.count() == 0

    def test_payment_split_is_stored(self, db_session, make_product, make_sale):
        product = make_product()
        tx = make_sale(
            [(product, 1, 15_000)],
            payments=[
                {"method": "CASH", "amount_cents": 10_000},
                {"method": "TERMINAL", "amount_cents": 5_000},
                {"method": "CASH", "amount_cents": 0},
            ],
        )
        assert sorted((p.method, p.amount_cents) for p in tx.payments) == [("CASH", 10_000), ("TERMINAL", 5_000)]

    @pytest.mark.parametrize("payload,error", [
        ({"upfront_payment_type": "CHEQUE"}, InvalidRequestError),
        ({"payment_type": "BARTER"}, InvalidRequestError),
        ({"items": []}, InvalidRequestError),
        ({"items": [{"product_id": 999, "quantity": 1}]}, NotFoundError),
        ({"sold_by_user_id": 999}, NotFoundError),
    ])
    def test_validation_happens_before_writes(self, db_session, make_product, make_sale, payload, error):
        product = make_product()
        with pytest.raises(error):
            make_sale([(product, 1, 15_000)], **payload)
        assert Transaction.query.count() == 0
        assert _quantity(product.id) == 10

    def test_fractional_quantity_rejected(self, db_session, make_product):
        product = make_product()
        with pytest.raises(InvalidRequestError):
            sales_service.create_transaction({
                "items": [{"product_id": product.id, "quantity": "1.5", "price_cents": 100}],
            })

    def test_unknown_user_rejected(self, db_session, make_product, make_sale):
        product = make_product()
        with pytest.raises(NotFoundError):
            make_sale([(product, 1, 15_000)], user_id=999)

    def test_customer_upserted_by_phone(self, db_session, make_product, make_sale):
        product = make_product()
        make_sale([(product, 1, 15_000)], customer={"full_name": "Old Name", "phone": "+998900000001"})
        make_sale(
            [(product, 1, 15_000)],
            customer={"full_name": "New Name", "phone": "+998900000001", "address": "Tashkent"},
        )
        customers = Customer.query.all()
        assert len(customers) == 1
        assert customers[0].full_name == "New Name"
        assert customers[0].address == "Tashkent"

    def test_giveaways_leave_stock_with_the_sale(self, db_session, make_product, make_sale):
        product = make_product()
        gift = make_product(price_cents=2_000, quantity=4)
        tx = make_sale([(product, 1, 15_000)], bonus_products=[{"product_id": gift.id, "quantity": 2}])

        assert TransactionBonusProduct.query.filter_by(transaction_id=tx.id).count() == 1
        assert _quantity(gift.id) == 2

    def test_delivery_sale_opens_audit_task(self, db_session, make_product, make_sale):
        product = make_product()
        tx = make_sale([(product, 1, 15_000)], delivery_address="Chilonzor 5")
        tasks = AuditTask.query.filter_by(transaction_id=tx.id).all()
        assert len(tasks) == 1
        assert tasks[0].task_type == "DELIVERY_AUDIT"

    @pytest.mark.parametrize("payload,expected", [
        ({"delivery_method": "delivery"}, True),
        ({"delivery": True}, True),
        ({"delivery_address": "   "}, False),
        ({"delivery": "yes"}, False),
        ({}, False),
    ])
    def test_is_delivery(self, payload, expected):
        assert sales_service.is_delivery(payload) is expected


class TestLifecycle:

    def test_completed_transaction_is_immutable(self, db_session, make_product, make_sale):
        product = make_product()
        tx = make_sale([(product, 1, 15_000)])
        with pytest.raises(ConflictingStateError):
            sales_service.update_transaction(tx.id, {"description": "edited"})

    def test_pending_transaction_editable_fields(self, db_session, make_product, make_sale):
        product = make_product()
        tx = make_sale([(product, 1, 15_000)], status="PENDING")

        updated = sales_service.update_transaction(tx.id, {"description": "edited", "upfront_payment_type": "card"})
        assert updated.description == "edited"
        assert updated.upfront_payment_type == "CARD"

        with pytest.raises(InvalidRequestError):
            sales_service.update_transaction(tx.id, {"total_cents": 1})

    def test_cannot_complete_with_pending_items(self, db_session, make_product, branch):
        product = make_product()
        tx = sales_service.create_transaction({
            "status": "PENDING",
            "from_branch_id": branch.id,
            "items": [{"product_id": product.id, "quantity": 1, "price_cents": 100, "status": "PENDING"}],
        })
        with pytest.raises(ConflictingStateError):
            sales_service.update_status(tx.id, "COMPLETED")

    def test_completing_delivery_takes_stock(self, db_session, make_product, branch, cashier):
        product = make_product(quantity=3)
        tx = sales_service.create_transaction({
            "type": "DELIVERY",
            "from_branch_id": branch.id,
            "items": [{"product_id": product.id, "quantity": 2, "price_cents": 100}],
        })
        assert tx.status == "PENDING"
        assert _quantity(product.id) == 3

        tx = sales_service.update_status(tx.id, "COMPLETED", user_id=cashier.id)
        assert tx.status == "COMPLETED"
        assert tx.updated_by_user_id == cashier.id
        assert _quantity(product.id) == 1

    def test_delete_completed_requires_admin(self, db_session, make_product, make_sale, cashier):
        product = make_product()
        tx = make_sale([(product, 1, 15_000)])
        with pytest.raises(ConflictingStateError):
            sales_service.delete_transaction(tx.id, cashier)
        with pytest.raises(ConflictingStateError):
            sales_service.delete_transaction(tx.id)

    def test_admin_delete_restocks_and_removes_children(self, db_session, make_product, admin, branch):
        product = make_product(quantity=5)
        gift = make_product(quantity=5)
        tx = sales_service.create_transaction({
            "payment_type": "CREDIT",
            "from_branch_id": branch.id,
            "items": [{
                "product_id": product.id, "quantity": 2, "price_cents": 10_000,
                "credit_month": 2, "credit_percent_bps": 0,
            }],
            "bonus_products": [{"product_id": gift.id, "quantity": 1}],
        })
        repayment_service.record_repayment(tx.id, 5_000)
        tx_id = tx.id

        sales_service.delete_transaction(tx_id, admin)

        assert db.session.get(Transaction, tx_id) is None
        assert TransactionItem.query.filter_by(transaction_id=tx_id).count() == 0
        assert PaymentSchedule.query.filter_by(transaction_id=tx_id).count() == 0
        assert TransactionBonusProduct.query.filter_by(transaction_id=tx_id).count() == 0
        assert _quantity(product.id) == 5
        assert _quantity(gift.id) == 5

    def test_admin_delete_restocks_zero_price_line_once(self, db_session, make_product, admin, branch, seller):
        phone = make_product(quantity=5)
        case = make_product(price_cents=2_000, quantity=5)
        tx = sales_service.create_transaction({
            "from_branch_id": branch.id,
            "sold_by_user_id": seller.id,
            "items": [
                {"product_id": phone.id, "quantity": 1, "price_cents": 15_000},
                {"product_id": case.id, "quantity": 1, "price_cents": 0},
            ],
        })
        assert TransactionBonusProduct.query.filter_by(transaction_id=tx.id).count() == 1

        sales_service.delete_transaction(tx.id, admin)

        assert _quantity(phone.id) == 5
        assert _quantity(case.id) == 5

    def test_delete_missing_transaction(self, db_session, admin):
        with pytest.raises(NotFoundError):
            sales_service.delete_transaction(12345, admin)


class TestReporting:

    def test_statistics_by_payment_type(self, db_session, make_product, make_sale, branch, cashier):
        product = make_product(quantity=20)
        make_sale([(product, 1, 10_000)])
        make_sale([(product, 1, 20_000)], payment_type="CARD")
        credit = sales_service.create_transaction({
            "payment_type": "CREDIT",
            "from_branch_id": branch.id,
            "amount_paid_cents": 5_000,
            "upfront_payment_type": "CARD",
            "items": [{
                "product_id": product.id, "quantity": 1, "price_cents": 30_000,
                "credit_month": 5, "credit_percent_bps": 0,
            }],
        })
        repayment_service.record_repayment(credit.id, 1_000, channel="CASH", paid_by_user_id=cashier.id)

        stats = sales_service.get_statistics(branch_id=branch.id)
        assert stats["total_transactions"] == 3
        assert stats["cash_sales_cents"] == 10_000
        assert stats["card_sales_cents"] == 20_000
        assert stats["credit_transactions"] == 1
        assert stats["upfront_card_total_cents"] == 5_000
        assert stats["credit_repayments_cash_cents"] == 1_000
        assert stats["total_credit_repayments_cents"] == 1_000

    def test_product_sales(self, db_session, make_product, make_sale):
        first = make_product()
        second = make_product()
        make_sale([(first, 2, 10_000), (second, 1, 5_000)])
        make_sale([(first, 1, 10_000)])

        report = sales_service.get_product_sales()
        assert report["totals"] == {"total_quantity": 4, "total_amount_cents": 35_000}
        assert report["products"][0]["product_id"] == first.id
        assert report["products"][0]["total_quantity"] == 3
        assert len(report["daily"]) == 1
