"""
Unit tests for SQLAlchemy models.
"""

import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy.exc import IntegrityError
from salesdesk.models import (
    AppUser, Product, QuotationStatus, Sale, SaleStatus, UserRole,
    resolve_quotation_status, resolve_sale_status
)
from salesdesk.pricing import TaxMethod


class TestProductModel:
    """Tests for Product model."""

    def test_create_product_defaults(self, session):
        product = Product(name='Plain', price=Decimal('9.99'))
        session.add(product)
        session.commit()

        assert product.id is not None
        assert product.stock_qty == 0
        assert product.low_stock_threshold == 0
        assert product.tax_method == TaxMethod.EXCLUSIVE
        assert product.price == Decimal('9.99')

    def test_product_sku_unique(self, session, product):
        session.add(Product(name='Duplicate', sku=product.sku, price=Decimal('1')))

        with pytest.raises(IntegrityError):
            session.commit()


class TestAppUserModel:
    """Tests for AppUser model."""

    def test_password_hashing(self):
        user = AppUser(email='user@test.com', active=True)
        user.set_password('mypassword')

        assert user.password_hash != 'mypassword'
        assert user.check_password('mypassword') is True
        assert user.check_password('wrongpassword') is False

    def test_user_without_password_cannot_log_in(self):
        assert AppUser(email='nopass@test.com').check_password('') is False

    def test_default_role(self, session):
        user = AppUser(email='cashier@test.com')
        session.add(user)
        session.commit()

        assert user.role == UserRole.CASHIER.value

    def test_user_email_unique(self, session, owner_user):
        session.add(AppUser(email=owner_user.email))

        with pytest.raises(IntegrityError):
            session.commit()


class TestSaleModel:
    """Tests for Sale model."""

    def test_invoice_number_unique(self, session):
        session.add(Sale(invoice_number='INV-240101-000000-100'))
        session.commit()
        session.add(Sale(invoice_number='INV-240101-000000-100'))

        with pytest.raises(IntegrityError):
            session.commit()

    @pytest.mark.parametrize('paid, due, expected', [
        (Decimal('0'), Decimal('10'), SaleStatus.UNPAID),
        (Decimal('4'), Decimal('6'), SaleStatus.PARTIAL),
        (Decimal('10'), Decimal('0'), SaleStatus.PAID),
        (Decimal('0'), Decimal('0'), SaleStatus.PAID),
    ])
    def test_resolve_sale_status(self, paid, due, expected):
        assert resolve_sale_status(paid, due) is expected

    @pytest.mark.parametrize('valid_until, requested, expected', [
        (None, None, QuotationStatus.ACTIVE),
        (date(2024, 3, 10), None, QuotationStatus.ACTIVE),     # valid through the whole day
        (date(2024, 3, 9), None, QuotationStatus.EXPIRED),
        (date(2024, 3, 9), QuotationStatus.ACTIVE, QuotationStatus.EXPIRED),
        (date(2024, 3, 9), QuotationStatus.DRAFT, QuotationStatus.DRAFT),
        (None, QuotationStatus.DRAFT, QuotationStatus.DRAFT),
        (date(2024, 12, 31), QuotationStatus.EXPIRED, QuotationStatus.EXPIRED),
    ])
    def test_resolve_quotation_status(self, valid_until, requested, expected):
        today = date(2024, 3, 10)
        assert resolve_quotation_status(valid_until, requested, today=today) is expected
