"""
Pytest fixtures for PDV backend tests.

Provides test database setup, operators per role, catalog/customer rows and
a test client.
"""

import pytest
from pdv import create_app
from pdv.extensions import db
from pdv.models import Customer, Product, User
from pdv.permissions import ROLE_ADMIN, ROLE_SELLER, ROLE_STOCK_CLERK, ROLE_TRAINEE
from pdv.services.auth_service import hash_password
from pdv.services.session_service import OperatorContext

TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'DOCUMENT_RENDERER': None,
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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(db_session, username: str, role: str) -> User:
    user = User(username=username, password_hash=hash_password(TEST_PASSWORD), role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def seller_user(db_session):
    return _make_user(db_session, "vendedor", ROLE_SELLER)


@pytest.fixture(scope='function')
def trainee_user(db_session):
    return _make_user(db_session, "estagiario", ROLE_TRAINEE)


@pytest.fixture(scope='function')
def stock_user(db_session):
    return _make_user(db_session, "estoquista", ROLE_STOCK_CLERK)


@pytest.fixture(scope='function')
def operator(seller_user):
    """OperatorContext for service calls."""
    return OperatorContext.for_user(seller_user)


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Maria Silva", phone="11999990000", cpf="123.456.789-00")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def product(db_session):
    """Price 1000 cents, 10 on hand."""
    product = Product(name="Camiseta", category="Roupas", price_cents=1000, stock=10, min_stock=2)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session):
    """Price 2500 cents, 5 on hand."""
    product = Product(name="Calça Jeans", category="Roupas", price_cents=2500, stock=5, min_stock=1)
    db_session.add(product)
    db_session.commit()
    return product


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def seller_headers(client, seller_user):
    return auth_headers(get_auth_token(client, "vendedor"))


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, "admin"))


@pytest.fixture(scope='function')
def trainee_headers(client, trainee_user):
    return auth_headers(get_auth_token(client, "estagiario"))


@pytest.fixture(scope='function')
def stock_headers(client, stock_user):
    return auth_headers(get_auth_token(client, "estoquista"))
