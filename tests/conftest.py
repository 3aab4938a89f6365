import pytest
from decimal import Decimal
import uuid

from config import TestingConfig
from salesdesk import create_app
from salesdesk.database import create_all, get_session, get_engine
from salesdesk.models import AppUser, Customer, Product, UserRole
from salesdesk.pricing import TaxMethod


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application instance backed by a throwaway SQLite file."""
    class _Config(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'salesdesk.db'}"

    app = create_app(_Config)
    create_all()
    yield app

    get_session().remove()
    get_engine().dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session for testing (same scoped session the app uses)."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope='function')
def sales_service(app):
    """The application's settlement orchestrator."""
    return app.extensions['sales_service']


@pytest.fixture(scope='function')
def make_product(session):
    """Factory for products with sensible defaults."""
    def _make_product(**overrides):
        suffix = str(uuid.uuid4())[:8]
        values = {
            'sku': f'SKU-{suffix}',
            'name': f'Product {suffix}',
            'price': Decimal('100.00'),
            'tax_rate': Decimal('0'),
            'tax_method': TaxMethod.EXCLUSIVE,
            'stock_qty': 10,
            'low_stock_threshold': 0,
            'active': True,
        }
        values.update(overrides)
        product = Product(**values)
        session.add(product)
        session.commit()
        session.refresh(product)
        session.expunge(product)
        return product
    return _make_product


@pytest.fixture(scope='function')
def product(make_product):
    """Plain product: price 100.00, no tax, 10 in stock."""
    return make_product(name='Widget', price=Decimal('100.00'), stock_qty=10)


@pytest.fixture(scope='function')
def taxed_product(make_product):
    """Product priced 50.00 with 10% exclusive tax."""
    return make_product(
        name='Taxed Gadget',
        price=Decimal('50.00'),
        tax_rate=Decimal('10'),
        tax_method=TaxMethod.EXCLUSIVE,
        stock_qty=20
    )


@pytest.fixture(scope='function')
def customer(session):
    """Create test customer."""
    customer = Customer(name='Jane Buyer', email='jane@example.com', due_balance=Decimal('0'))
    session.add(customer)
    session.commit()
    session.refresh(customer)
    session.expunge(customer)
    return customer


def _create_user(session, role):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(
        email=f'{role.lower()}-{suffix}@test.com',
        full_name=f'{role.title()} User',
        role=role,
        active=True
    )
    user.set_password('password123')
    session.add(user)
    session.commit()
    session.refresh(user)
    session.expunge(user)
    return user


@pytest.fixture(scope='function')
def owner_user(session):
    """Create OWNER user."""
    return _create_user(session, UserRole.OWNER.value)


@pytest.fixture(scope='function')
def cashier_user(session):
    """Create CASHIER user."""
    return _create_user(session, UserRole.CASHIER.value)


@pytest.fixture(scope='function')
def authenticated_client(client, owner_user):
    """Create client logged in as the owner."""
    with client.session_transaction() as sess:
        sess['user_id'] = owner_user.id
    return client


@pytest.fixture(scope='function')
def cashier_client(app, cashier_user):
    """Create client logged in as a cashier."""
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['user_id'] = cashier_user.id
    return client
