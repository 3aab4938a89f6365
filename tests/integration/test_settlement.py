"""
Integration tests for sale settlement against a real database.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from sqlalchemy import event

from salesdesk.exceptions import (
    BusinessLogicError, InsufficientStockError, InvoiceNumberUnavailableError, NotFoundError,
    SettlementError
)
from salesdesk.models import (
    Customer, PaymentMethod, Product, QuotationStatus, Sale, SaleDocumentType, SaleItem,
    SalePayment, SaleStatus
)
from salesdesk.pricing import DiscountType, InvoiceDiscount, InvoiceTaxOverride, TaxMethod
from salesdesk.services.cart_validation import PaymentRequest, SaleItemRequest, SaleRequest
from salesdesk.services.invoice_number_service import InvoiceNumberAllocator
from salesdesk.services.sales_service import SalesService, SettlementSettings


def _request(*items, **kwargs):
    return SaleRequest(items=tuple(SaleItemRequest(product_id=pid, quantity=qty) for pid, qty in items), **kwargs)


def _stock(session, product_id):
    return session.get(Product, product_id).stock_qty


class TestCreateInvoice:
    """Tests for SalesService.create_invoice."""

    def test_settles_invoice(self, session, sales_service, product, taxed_product, owner_user):
        """Test a two-line invoice is priced, persisted and decrements stock."""
        sale = sales_service.create_invoice(
            session,
            _request((product.id, 2), (taxed_product.id, 3)),
            actor_id=owner_user.id
        )

        assert sale.id is not None
        assert sale.invoice_number.startswith('INV-')
        assert sale.document_type == SaleDocumentType.INVOICE
        assert sale.subtotal == Decimal('350.00')
        assert sale.tax_total == Decimal('15.00')
        assert sale.grand_total == Decimal('365.00')
        assert sale.due_total == Decimal('365.00')
        assert sale.status == SaleStatus.UNPAID
        assert sale.created_by_user_id == owner_user.id
        assert [item.product_id for item in sale.items] == [product.id, taxed_product.id]
        assert [item.position for item in sale.items] == [0, 1]

        assert _stock(session, product.id) == 8
        assert _stock(session, taxed_product.id) == 17

    def test_header_totals_come_from_pricing(self, session, sales_service, product, taxed_product):
        sale = sales_service.create_invoice(
            session,
            _request(
                (product.id, 1), (taxed_product.id, 2),
                invoice_discount=InvoiceDiscount(DiscountType.PERCENT, Decimal('10'))
            )
        )

        assert sale.invoice_discount_amount == Decimal('20.00')
        assert sum(item.invoice_discount_amount for item in sale.items) == sale.invoice_discount_amount
        assert sale.grand_total == sum(item.line_total for item in sale.items)
        assert sale.tax_total == sum(item.line_tax_amount for item in sale.items)

    def test_uses_catalog_price_and_tax(self, session, sales_service, make_product):
        product = make_product(price=Decimal('100.00'), tax_rate=Decimal('10'), tax_method=TaxMethod.INCLUSIVE)

        sale = sales_service.create_invoice(session, _request((product.id, 1)))

        item = sale.items[0]
        assert item.unit_price == Decimal('100.00')
        assert item.tax_method == TaxMethod.INCLUSIVE
        assert item.line_tax_amount == Decimal('9.09')
        assert sale.grand_total == Decimal('100.00')

    def test_invoice_tax_override_is_stored(self, session, sales_service, product):
        override = InvoiceTaxOverride(rate=Decimal('21'), method=TaxMethod.EXCLUSIVE)
        sale = sales_service.create_invoice(session, _request((product.id, 1), invoice_tax_override=override))

        assert sale.invoice_tax_rate == Decimal('21.00')
        assert sale.invoice_tax_method == TaxMethod.EXCLUSIVE
        assert sale.grand_total == Decimal('121.00')

    def test_oversell_is_rejected_without_writes(self, session, sales_service, make_product):
        """Test requesting 3 of a product with 2 in stock leaves nothing behind."""
        scarce = make_product(name='Scarce', stock_qty=2)

        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.create_invoice(session, _request((scarce.id, 3)))

        assert exc_info.value.available == 2
        assert exc_info.value.requested == 3
        assert session.query(Sale).count() == 0
        assert session.query(SaleItem).count() == 0
        assert _stock(session, scarce.id) == 2

    def test_failure_on_later_line_rolls_back_earlier_lines(self, session, sales_service, product, make_product):
        scarce = make_product(name='Scarce', stock_qty=1)

        with pytest.raises(InsufficientStockError):
            sales_service.create_invoice(session, _request((product.id, 1), (scarce.id, 2)))

        assert _stock(session, product.id) == 10
        assert session.query(Sale).count() == 0

    def test_repeated_product_is_checked_against_combined_quantity(self, session, sales_service, make_product):
        product = make_product(stock_qty=5)

        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.create_invoice(session, _request((product.id, 3), (product.id, 3)))

        assert exc_info.value.requested == 6
        assert _stock(session, product.id) == 5

    def test_unknown_product(self, session, sales_service, product):
        with pytest.raises(NotFoundError):
            sales_service.create_invoice(session, _request((product.id, 1), (999999, 1)))

        assert _stock(session, product.id) == 10
        assert session.query(Sale).count() == 0

    def test_inactive_product(self, session, sales_service, make_product):
        retired = make_product(active=False)
        with pytest.raises(BusinessLogicError):
            sales_service.create_invoice(session, _request((retired.id, 1)))

    def test_unknown_customer(self, session, sales_service, product):
        with pytest.raises(NotFoundError):
            sales_service.create_invoice(session, _request((product.id, 1), customer_id=424242))

    def test_price_override_rejected_unless_permitted(self, session, sales_service, product):
        request = SaleRequest(items=(
            SaleItemRequest(product_id=product.id, quantity=1, unit_price_override=Decimal('1.00')),
        ))

        with pytest.raises(BusinessLogicError):
            sales_service.create_invoice(session, request)

        sale = sales_service.create_invoice(session, request, allow_price_override=True)
        assert sale.items[0].unit_price == Decimal('1.00')
        assert sale.grand_total == Decimal('1.00')

    def test_price_override_allowed_by_settings(self, session, product):
        service = SalesService(settings=SettlementSettings(allow_unit_price_override=True))
        request = SaleRequest(items=(
            SaleItemRequest(product_id=product.id, quantity=2, unit_price_override=Decimal('80.00')),
        ))

        sale = service.create_invoice(session, request)

        assert sale.subtotal == Decimal('160.00')


class TestPaymentsAtCreation:
    """Tests for payments taken when the invoice is settled."""

    def test_full_payment_marks_paid(self, session, sales_service, product):
        sale = sales_service.create_invoice(session, _request(
            (product.id, 1),
            payments=(PaymentRequest(PaymentMethod.CASH, Decimal('100.00')),)
        ))

        assert sale.status == SaleStatus.PAID
        assert sale.paid_total == Decimal('100.00')
        assert sale.due_total == Decimal('0.00')
        assert sale.payment_method == 'CASH'
        assert len(sale.payments) == 1

    def test_split_partial_payment(self, session, sales_service, product):
        sale = sales_service.create_invoice(session, _request(
            (product.id, 2),
            payments=(
                PaymentRequest(PaymentMethod.CARD, Decimal('50.00'), reference='AUTH-1'),
                PaymentRequest(PaymentMethod.CASH, Decimal('25.00')),
            )
        ))

        assert sale.status == SaleStatus.PARTIAL
        assert sale.paid_total == Decimal('75.00')
        assert sale.due_total == Decimal('125.00')
        assert sale.payment_method == 'CARD'
        assert [p.method for p in sale.payments] == ['CARD', 'CASH']

    def test_overpayment_rejected(self, session, sales_service, product):
        with pytest.raises(BusinessLogicError):
            sales_service.create_invoice(session, _request(
                (product.id, 1),
                payments=(PaymentRequest(PaymentMethod.CASH, Decimal('100.01')),)
            ))
        assert _stock(session, product.id) == 10

    def test_shipping_is_added_to_grand_total(self, session, sales_service, product):
        sale = sales_service.create_invoice(session, _request((product.id, 1), shipping_total=Decimal('12.50')))

        assert sale.shipping_total == Decimal('12.50')
        assert sale.grand_total == Decimal('112.50')
        assert sale.due_total == Decimal('112.50')

    def test_customer_due_balance_tracks_unpaid_amount(self, session, sales_service, product, customer):
        sales_service.create_invoice(session, _request(
            (product.id, 1),
            customer_id=customer.id,
            payments=(PaymentRequest(PaymentMethod.CASH, Decimal('40.00')),)
        ))

        refreshed = session.get(Customer, customer.id)
        assert refreshed.due_balance == Decimal('60.00')


class TestAddPayment:
    """Tests for SalesService.add_payment."""

    def test_payment_settles_invoice(self, session, sales_service, product, customer):
        sale = sales_service.create_invoice(session, _request((product.id, 1), customer_id=customer.id))

        sale = sales_service.add_payment(session, sale.id, PaymentRequest(PaymentMethod.TRANSFER, Decimal('30.00')))
        assert sale.status == SaleStatus.PARTIAL
        assert sale.due_total == Decimal('70.00')

        sale = sales_service.add_payment(session, sale.id, PaymentRequest(PaymentMethod.CASH, Decimal('70.00')))
        assert sale.status == SaleStatus.PAID
        assert sale.due_total == Decimal('0.00')
        assert sale.payment_method == 'CASH'
        assert len(sale.payments) == 2
        assert session.get(Customer, customer.id).due_balance == Decimal('0.00')

    def test_payment_above_due_rejected(self, session, sales_service, product):
        sale = sales_service.create_invoice(session, _request((product.id, 1)))

        with pytest.raises(BusinessLogicError):
            sales_service.add_payment(session, sale.id, PaymentRequest(PaymentMethod.CASH, Decimal('150.00')))

        assert session.query(SalePayment).count() == 0

    def test_paid_invoice_rejects_payment(self, session, sales_service, product):
        sale = sales_service.create_invoice(session, _request(
            (product.id, 1), payments=(PaymentRequest(PaymentMethod.CASH, Decimal('100.00')),)
        ))

        with pytest.raises(BusinessLogicError):
            sales_service.add_payment(session, sale.id, PaymentRequest(PaymentMethod.CASH, Decimal('1.00')))

    def test_unknown_sale(self, session, sales_service):
        with pytest.raises(NotFoundError):
            sales_service.add_payment(session, 31337, PaymentRequest(PaymentMethod.CASH, Decimal('1.00')))


class TestQuotations:
    """Tests for quotation documents and their conversion."""

    def test_quotation_does_not_touch_stock(self, session, sales_service, product):
        quotation = sales_service.create_invoice(
            session, _request((product.id, 4), document_type=SaleDocumentType.QUOTATION)
        )

        assert quotation.invoice_number.startswith('QUO-')
        assert quotation.quotation_status == QuotationStatus.ACTIVE
        assert quotation.grand_total == Decimal('400.00')
        assert _stock(session, product.id) == 10

    def test_quotation_may_exceed_stock(self, session, sales_service, make_product):
        scarce = make_product(stock_qty=1)
        quotation = sales_service.create_invoice(
            session, _request((scarce.id, 5), document_type=SaleDocumentType.QUOTATION)
        )
        assert quotation.id is not None

    def test_quotation_rejects_payments(self, session, sales_service, product):
        with pytest.raises(BusinessLogicError):
            sales_service.create_invoice(session, _request(
                (product.id, 1),
                document_type=SaleDocumentType.QUOTATION,
                payments=(PaymentRequest(PaymentMethod.CASH, Decimal('10.00')),)
            ))

    def test_quotation_rejects_payment_application(self, session, sales_service, product):
        quotation = sales_service.create_invoice(
            session, _request((product.id, 1), document_type=SaleDocumentType.QUOTATION)
        )
        with pytest.raises(BusinessLogicError):
            sales_service.add_payment(session, quotation.id, PaymentRequest(PaymentMethod.CASH, Decimal('1.00')))

    def test_conversion_keeps_quoted_prices(self, session, sales_service, product, customer):
        quotation = sales_service.create_invoice(session, _request(
            (product.id, 2),
            document_type=SaleDocumentType.QUOTATION,
            customer_id=customer.id,
            invoice_discount=InvoiceDiscount(DiscountType.FIXED, Decimal('20'))
        ))

        # Catalog price changes after the quotation was issued
        session.get(Product, product.id).price = Decimal('150.00')
        session.commit()

        quotation, invoice = sales_service.convert_quotation(session, quotation.id)

        assert quotation.quotation_status == QuotationStatus.CONVERTED
        assert quotation.converted_to_sale_id == invoice.id
        assert quotation.converted_at is not None
        assert invoice.document_type == SaleDocumentType.INVOICE
        assert invoice.invoice_number.startswith('INV-')
        assert invoice.items[0].unit_price == Decimal('100.00')
        assert invoice.grand_total == Decimal('180.00')
        assert invoice.customer_id == customer.id
        assert _stock(session, product.id) == 8
        assert session.get(Customer, customer.id).due_balance == Decimal('180.00')

    def test_conversion_twice_rejected(self, session, sales_service, product):
        quotation = sales_service.create_invoice(
            session, _request((product.id, 1), document_type=SaleDocumentType.QUOTATION)
        )
        sales_service.convert_quotation(session, quotation.id)

        with pytest.raises(BusinessLogicError):
            sales_service.convert_quotation(session, quotation.id)

        assert session.query(Sale).filter(Sale.document_type == SaleDocumentType.INVOICE).count() == 1

    def test_conversion_checks_stock(self, session, sales_service, make_product):
        scarce = make_product(stock_qty=1)
        quotation = sales_service.create_invoice(
            session, _request((scarce.id, 3), document_type=SaleDocumentType.QUOTATION)
        )

        with pytest.raises(InsufficientStockError):
            sales_service.convert_quotation(session, quotation.id)

        assert session.get(Sale, quotation.id).quotation_status == QuotationStatus.ACTIVE
        assert _stock(session, scarce.id) == 1

    def test_invoice_cannot_be_converted(self, session, sales_service, product):
        sale = sales_service.create_invoice(session, _request((product.id, 1)))
        with pytest.raises(BusinessLogicError):
            sales_service.convert_quotation(session, sale.id)

    def test_quotation_past_validity_is_expired(self, session, sales_service, product):
        quotation = sales_service.create_invoice(session, _request(
            (product.id, 1),
            document_type=SaleDocumentType.QUOTATION,
            valid_until=date(2020, 1, 31)
        ))

        assert quotation.quotation_status == QuotationStatus.EXPIRED
        assert quotation.valid_until == date(2020, 1, 31)

    def test_draft_quotation_stays_draft(self, session, sales_service, product):
        quotation = sales_service.create_invoice(session, _request(
            (product.id, 1),
            document_type=SaleDocumentType.QUOTATION,
            valid_until=date(2020, 1, 31),
            quotation_status=QuotationStatus.DRAFT
        ))
        assert quotation.quotation_status == QuotationStatus.DRAFT

    def test_conversion_note_and_date(self, session, sales_service, product):
        quotation = sales_service.create_invoice(session, _request(
            (product.id, 1), document_type=SaleDocumentType.QUOTATION, notes='Quoted by phone'
        ))

        quotation, invoice = sales_service.convert_quotation(
            session, quotation.id, note='Signed by client', conversion_date=datetime(2026, 2, 14)
        )

        assert invoice.notes == 'Signed by client'
        assert quotation.converted_at.replace(tzinfo=None) == datetime(2026, 2, 14)

    def test_conversion_keeps_quotation_notes_without_note(self, session, sales_service, product):
        quotation = sales_service.create_invoice(session, _request(
            (product.id, 1), document_type=SaleDocumentType.QUOTATION, notes='Quoted by phone'
        ))

        _, invoice = sales_service.convert_quotation(session, quotation.id)

        assert invoice.notes == 'Quoted by phone'


class TestLowStockAlerts:
    """Tests for low stock alerts raised by settlements."""

    def test_alert_published_after_commit(self, session, make_product):
        product = make_product(stock_qty=6, low_stock_threshold=5)
        seen = []
        service = SalesService(stock_observer=seen.append)

        service.create_invoice(session, _request((product.id, 2)))

        assert len(seen) == 1
        alert = seen[0]
        assert alert.product_id == product.id
        assert alert.previous_qty == 6
        assert alert.stock_qty == 4
        assert alert.source == 'sale'
        assert _stock(session, product.id) == 4

    def test_no_alert_when_sale_rolls_back(self, session, make_product):
        product = make_product(stock_qty=6, low_stock_threshold=5)
        seen = []
        service = SalesService(stock_observer=seen.append)

        def reject_item(mapper, connection, target):
            raise RuntimeError('disk full')

        event.listen(SaleItem, 'before_insert', reject_item)
        try:
            with pytest.raises(SettlementError):
                service.create_invoice(session, _request((product.id, 2)))
        finally:
            event.remove(SaleItem, 'before_insert', reject_item)

        assert seen == []
        assert _stock(session, product.id) == 6
        assert session.query(Sale).count() == 0


class TestInvoiceNumbers:
    """Tests for invoice number allocation against stored sales."""

    def test_same_second_collision_is_skipped(self, session, product):
        suffixes = iter([111, 111, 222])
        allocator = InvoiceNumberAllocator(
            clock=lambda: datetime(2024, 1, 2, 3, 4, 5),
            randint=lambda a, b: next(suffixes)
        )
        service = SalesService(allocator=allocator)

        first = service.create_invoice(session, _request((product.id, 1)))
        second = service.create_invoice(session, _request((product.id, 1)))

        assert first.invoice_number == 'INV-240102-030405-111'
        assert second.invoice_number == 'INV-240102-030405-222'

    def test_many_invoices_in_one_second_are_unique(self, session, make_product):
        product = make_product(stock_qty=100)
        service = SalesService(allocator=InvoiceNumberAllocator(clock=lambda: datetime(2024, 1, 2, 3, 4, 5)))

        numbers = [service.create_invoice(session, _request((product.id, 1))).invoice_number for _ in range(20)]

        assert len(set(numbers)) == 20

    def test_exhausted_attempts_fail_loudly(self, session, product):
        allocator = InvoiceNumberAllocator(
            clock=lambda: datetime(2024, 1, 2, 3, 4, 5),
            randint=lambda a, b: 500
        )
        service = SalesService(allocator=allocator)
        service.create_invoice(session, _request((product.id, 1)))

        with pytest.raises(InvoiceNumberUnavailableError) as exc_info:
            service.create_invoice(session, _request((product.id, 1)))

        assert exc_info.value.status_code == 503
        assert exc_info.value.to_dict()['retryable'] is True
        assert session.query(Sale).count() == 1
        assert _stock(session, product.id) == 9

    def test_number_taken_concurrently_is_retryable(self, session, product):
        """Test a number claimed between the existence check and the insert."""
        class _UncheckedAllocator(InvoiceNumberAllocator):
            def allocate(self, session, document_type=SaleDocumentType.INVOICE):
                return 'INV-240102-030405-777'

        service = SalesService(allocator=_UncheckedAllocator())
        service.create_invoice(session, _request((product.id, 1)))

        with pytest.raises(InvoiceNumberUnavailableError) as exc_info:
            service.create_invoice(session, _request((product.id, 1)))

        assert exc_info.value.status_code == 503
        assert exc_info.value.to_dict()['retryable'] is True
        assert session.query(Sale).count() == 1
        assert _stock(session, product.id) == 9


class TestQueries:
    """Tests for get_sale and list_sales."""

    def test_list_sales_newest_first_with_filters(self, session, sales_service, product):
        first = sales_service.create_invoice(session, _request((product.id, 1)))
        quotation = sales_service.create_invoice(
            session, _request((product.id, 1), document_type=SaleDocumentType.QUOTATION)
        )
        last = sales_service.create_invoice(session, _request(
            (product.id, 1), payments=(PaymentRequest(PaymentMethod.CASH, Decimal('100.00')),)
        ))

        sales, total = sales_service.list_sales(session)
        assert total == 3
        assert [s.id for s in sales] == [last.id, quotation.id, first.id]

        sales, total = sales_service.list_sales(session, document_type=SaleDocumentType.QUOTATION)
        assert total == 1 and sales[0].id == quotation.id

        sales, total = sales_service.list_sales(session, status=SaleStatus.PAID)
        assert [s.id for s in sales] == [last.id]

        sales, total = sales_service.list_sales(session, page=2, per_page=2)
        assert total == 3
        assert [s.id for s in sales] == [first.id]

    def test_get_sale_unknown(self, session, sales_service):
        with pytest.raises(NotFoundError):
            sales_service.get_sale(session, 12345)
