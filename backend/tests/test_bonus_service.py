"""
Bonus / penalty calculator tests.
"""

from decimal import Decimal

from creditpos.extensions import db
from creditpos.models import Bonus, Product, Transaction, TransactionBonusProduct
from creditpos.services import bonus_service, currency_service, sales_service


def _one_to_one(amount, from_currency, to_currency, branch_id):
    return Decimal(amount)


def _sale(branch, seller, lines, **payload):
    body = {
        "type": "SALE",
        "payment_type": "CASH",
        "from_branch_id": branch.id,
        "sold_by_user_id": seller.id,
        "items": [
            {"product_id": product.id, "quantity": quantity, "price_cents": price, "selling_price_cents": price}
            for product, quantity, price in lines
        ],
    }
    body.update(payload)
    return sales_service.create_transaction(body, finalize=False)


class TestBonusCalculation:

    def test_sale_above_cost_earns_bonus(self, db_session, branch, seller, make_product):
        product = make_product(price_cents=10_000, bonus_percentage=20)
        tx = _sale(branch, seller, [(product, 2, 15_000)])

        created = bonus_service.calculate_sales_bonuses(tx.id, seller.id, converter=_one_to_one)

        assert len(created) == 1
        bonus = created[0]
        assert bonus.reason == "SALES_BONUS"
        assert bonus.amount_cents == 2_000
        assert bonus.currency == "UZS"
        assert bonus.product_id == product.id
        assert db.session.get(Transaction, tx.id).extra_profit_cents == 10_000

    def test_sale_below_cost_records_one_penalty(self, db_session, branch, seller, make_product):
        product = make_product(price_cents=10_000, bonus_percentage=20)
        tx = _sale(branch, seller, [(product, 1, 8_000)])

        created = bonus_service.calculate_sales_bonuses(tx.id, seller.id, converter=_one_to_one)

        assert [(b.reason, b.amount_cents) for b in created] == [("SALES_PENALTY", -2_000)]
        assert Bonus.query.filter_by(transaction_id=tx.id).count() == 1
        assert db.session.get(Transaction, tx.id).extra_profit_cents == -2_000

    def test_bonus_and_penalty_never_both(self, db_session, branch, seller, make_product):
        winner = make_product(price_cents=10_000, bonus_percentage=50)
        loser = make_product(price_cents=10_000, bonus_percentage=50)
        tx = _sale(branch, seller, [(winner, 1, 12_000), (loser, 1, 5_000)])

        created = bonus_service.calculate_sales_bonuses(tx.id, seller.id, converter=_one_to_one)

        reasons = {b.reason for b in created}
        assert reasons == {"SALES_PENALTY"}
        assert created[0].amount_cents == -3_000

    def test_giveaway_cost_reduces_pool(self, db_session, branch, seller, make_product):
        product = make_product(price_cents=10_000, bonus_percentage=10)
        gift = make_product(price_cents=3_000)
        tx = _sale(branch, seller, [(product, 1, 20_000)], bonus_products=[{"product_id": gift.id, "quantity": 1}])

        created = bonus_service.calculate_sales_bonuses(tx.id, seller.id, converter=_one_to_one)

        # pool = 10,000 difference - 3,000 giveaway
        assert [b.amount_cents for b in created] == [700]
        assert created[0].bonus_products[0]["product_id"] == gift.id
        assert created[0].bonus_products[0]["total_value_cents"] == 3_000
        assert db.session.get(Transaction, tx.id).extra_profit_cents == 7_000

    def test_zero_price_line_counts_as_giveaway(self, db_session, branch, seller, make_product):
        product = make_product(price_cents=10_000, bonus_percentage=10)
        gift = make_product(price_cents=3_000)
        tx = _sale(branch, seller, [(product, 1, 20_000), (gift, 1, 0)])

        created = bonus_service.calculate_sales_bonuses(tx.id, seller.id, converter=_one_to_one)

        assert [b.amount_cents for b in created] == [700]
        rows = TransactionBonusProduct.query.filter_by(transaction_id=tx.id).all()
        assert [(r.product_id, r.quantity) for r in rows] == [(gift.id, 1)]

    def test_bonus_share_split_across_lines(self, db_session, branch, seller, make_product):
        first = make_product(price_cents=10_000, bonus_percentage=10)
        second = make_product(price_cents=10_000, bonus_percentage=20)
        gift = make_product(price_cents=4_000)
        tx = _sale(
            branch, seller,
            [(first, 1, 13_000), (second, 1, 15_000)],
            bonus_products=[{"product_id": gift.id, "quantity": 1}],
        )

        created = bonus_service.calculate_sales_bonuses(tx.id, seller.id, converter=_one_to_one)

        # pool 4,000 split 3:5 -> 1,500 and 2,500
        assert sorted((b.product_id, b.amount_cents) for b in created) == [(first.id, 150), (second.id, 500)]

    def test_recalculation_replaces_previous_rows(self, db_session, branch, seller, make_product):
        product = make_product(price_cents=10_000, bonus_percentage=20)
        tx = _sale(branch, seller, [(product, 2, 15_000)])

        bonus_service.calculate_sales_bonuses(tx.id, seller.id, converter=_one_to_one)
        bonus_service.calculate_sales_bonuses(tx.id, seller.id, converter=_one_to_one)

        assert Bonus.query.filter_by(transaction_id=tx.id).count() == 1

    def test_missing_seller_records_nothing(self, db_session, branch, seller, make_product):
        product = make_product(price_cents=10_000, bonus_percentage=20)
        tx = _sale(branch, seller, [(product, 1, 15_000)])
        assert bonus_service.calculate_sales_bonuses(tx.id, 999) == []
        assert Bonus.query.count() == 0

    def test_cost_converted_with_branch_rate(self, db_session, branch, seller, make_product):
        currency_service.create_rate("USD", "UZS", "11000")
        currency_service.create_rate("USD", "UZS", "12000", branch_id=branch.id)
        # 10 USD cost, sold for 150,000 UZS
        product = make_product(price_cents=1_000, bonus_percentage=10)

        tx = sales_service.create_transaction({
            "from_branch_id": branch.id,
            "sold_by_user_id": seller.id,
            "items": [{"product_id": product.id, "quantity": 1, "price_cents": 15_000_000}],
        })

        bonuses = bonus_service.list_bonuses(transaction_id=tx.id)
        assert [b.amount_cents for b in bonuses] == [300_000]

    def test_base_currency_selling_price_is_converted(self, db_session, branch, seller, make_product):
        currency_service.create_rate("USD", "UZS", "12000")
        product = make_product(price_cents=1_000, bonus_percentage=10)

        tx = sales_service.create_transaction({
            "from_branch_id": branch.id,
            "sold_by_user_id": seller.id,
            "items": [{"product_id": product.id, "quantity": 1, "price_cents": 1_500, "currency": "USD"}],
        })

        # (18,000,000 - 12,000,000) * 10%
        assert [b.amount_cents for b in bonus_service.list_bonuses(user_id=seller.id)] == [600_000]
        assert db.session.get(Transaction, tx.id).extra_profit_cents == 6_000_000

    def test_finalize_after_attaching_giveaways(self, db_session, branch, seller, make_product):
        product = make_product(price_cents=10_000, bonus_percentage=10)
        gift = make_product(price_cents=3_000, quantity=2)
        tx = _sale(branch, seller, [(product, 1, 20_000)])
        assert Bonus.query.count() == 0

        sales_service.attach_bonus_products(tx.id, [{"product_id": gift.id, "quantity": 1}])
        created = sales_service.finalize_sale(tx.id)

        assert [b.amount_cents for b in created] == [700]
        assert db.session.get(Product, gift.id).quantity == 1
