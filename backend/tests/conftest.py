"""
Pytest fixtures for RetailPOS backend tests.

Provides an in-memory application, a per-test clean database, common
entities (users, stocks, products, parties, money boxes) and auth helpers.
"""

import pytest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import Customer, MoneyBox, Product, Stock, Supplier, User
from retailpos.services.auth_service import hash_password

ADMIN_PASSWORD = "admin123"
CASHIER_PASSWORD = "cashier123"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    license_dir = tmp_path_factory.mktemp("license")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BOOTSTRAP_ON_START': False,
        'LICENSE_DIR': str(license_dir),
        'LICENSE_API_URL': 'http://license.test/api',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    user = User(username="admin", name="Administrator", password_hash=hash_password(ADMIN_PASSWORD), role="admin")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier_user(db_session):
    user = User(username="cashier", name="Cashier", password_hash=hash_password(CASHIER_PASSWORD), role="user")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def main_stock(db_session):
    stock = Stock(name="Main warehouse", code="MAIN", address="Baghdad", capacity=0.0, is_main_stock=True)
    db_session.add(stock)
    db_session.commit()
    return stock


@pytest.fixture(scope='function')
def secondary_stock(db_session):
    stock = Stock(name="Branch warehouse", code="BR1", address="Basra", capacity=0.0, is_main_stock=False)
    db_session.add(stock)
    db_session.commit()
    return stock


@pytest.fixture(scope='function')
def product(db_session, main_stock):
    """Product with no stock on hand; purchase 10, sell 15."""
    product = Product(
        name="Tea 500g",
        sku="TEA-500",
        barcode="6260000000011",
        purchase_price=10.0,
        selling_price=15.0,
        current_stock=0,
        min_stock=5,
        stock_id=main_stock.id,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Ali Hassan", phone="07700000001", current_balance=0.0)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Rafidain Trading", credit_limit=1000.0, current_balance=0.0)
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def money_box(db_session):
    box = MoneyBox(name="safe", amount=0.0, is_default=True)
    db_session.add(box)
    db_session.commit()
    return box


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json['data']['token']
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, "admin", ADMIN_PASSWORD))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_user):
    return auth_headers(get_auth_token(client, "cashier", CASHIER_PASSWORD))
