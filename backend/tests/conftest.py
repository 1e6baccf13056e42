"""
Pytest fixtures for the credit engine tests.

Provides the in-memory database, branches, users, products and a sale
factory. Services are called directly.
"""

import pytest

from creditpos import create_app
from creditpos.extensions import db
from creditpos.models import Branch, Product, User
from creditpos.services import sales_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BASE_CURRENCY': 'USD',
        'SETTLEMENT_CURRENCY': 'UZS',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch(db_session):
    branch = Branch(name="Main branch")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="Second branch")
    db_session.add(branch)
    db_session.commit()
    return branch


def _user(db_session, username, role, branch):
    user = User(username=username, role=role, branch_id=branch.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier(db_session, branch):
    return _user(db_session, "cashier", "CASHIER", branch)


@pytest.fixture(scope='function')
def seller(db_session, branch):
    return _user(db_session, "seller", "SELLER", branch)


@pytest.fixture(scope='function')
def admin(db_session, branch):
    return _user(db_session, "admin", "ADMIN", branch)


@pytest.fixture(scope='function')
def make_product(db_session, branch):
    """Factory: product in the main branch; price_cents is the cost price."""
    counter = {"n": 0}

    def _make(price_cents=10000, quantity=10, bonus_percentage=0, name=None, barcode=None, branch_id=None):
        counter["n"] += 1
        product = Product(
            branch_id=branch_id or branch.id,
            name=name or f"Phone {counter['n']}",
            model=f"M{counter['n']}",
            barcode=barcode or f"BC{counter['n']:04d}",
            price_cents=price_cents,
            quantity=quantity,
            initial_quantity=quantity,
            bonus_percentage=bonus_percentage,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_sale(db_session, branch):
    """Factory: SALE with one line per (product, quantity, selling price) tuple."""

    def _make(lines, user_id=None, **payload):
        items = []
        for product, quantity, price in lines:
            item = {
                "product_id": product.id,
                "quantity": quantity,
                "price_cents": price,
                "selling_price_cents": price,
            }
            items.append(item)
        body = {
            "type": "SALE",
            "payment_type": "CASH",
            "from_branch_id": branch.id,
            "items": items,
        }
        body.update(payload)
        return sales_service.create_transaction(body, user_id=user_id)

    return _make

