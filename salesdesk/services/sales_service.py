"""
Sales service with transactional settlement logic.

Turns a validated sale request into a persisted, stock-adjusted Sale in a
single unit of work: PRICING -> STOCK_CHECK -> PERSISTING -> COMMITTED, or
ABORTED with everything rolled back.
"""
import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from salesdesk.models import (
    Customer, Product, Sale, SaleItem, SalePayment,
    SaleDocumentType, SaleStatus, QuotationStatus,
    resolve_quotation_status, resolve_sale_status
)
from salesdesk.pricing import (
    CartLine, InvoiceDiscount, InvoiceTaxOverride, PricingResult,
    ZERO, compute_pricing, round_money
)
from salesdesk.exceptions import (
    AppError, BusinessLogicError, InvoiceNumberUnavailableError, NotFoundError, SettlementError
)
from salesdesk.services.cart_validation import PaymentRequest, SaleItemRequest, SaleRequest
from salesdesk.services.invoice_number_service import InvoiceNumberAllocator, DEFAULT_MAX_ATTEMPTS
from salesdesk.services.stock_service import (
    LowStockAlert, StockObserver, decrement_stock, ensure_available,
    load_product_for_pricing, publish_low_stock_alerts
)

logger = logging.getLogger(__name__)


class SettlementState(str, enum.Enum):
    PRICING = 'PRICING'
    STOCK_CHECK = 'STOCK_CHECK'
    PERSISTING = 'PERSISTING'
    COMMITTED = 'COMMITTED'
    ABORTED = 'ABORTED'


@dataclass(frozen=True)
class SettlementSettings:
    """Knobs the orchestrator is built with."""
    allow_unit_price_override: bool = False
    invoice_number_attempts: int = DEFAULT_MAX_ATTEMPTS

    @classmethod
    def from_config(cls, config) -> 'SettlementSettings':
        return cls(
            allow_unit_price_override=bool(config.get('ALLOW_UNIT_PRICE_OVERRIDE', False)),
            invoice_number_attempts=int(config.get('INVOICE_NUMBER_MAX_ATTEMPTS', DEFAULT_MAX_ATTEMPTS))
        )


class _Settlement:
    """Tracks the state of one settlement and the alerts it raised."""

    def __init__(self, action: str):
        self.action = action
        self.state = SettlementState.PRICING
        self.low_stock_alerts: List[LowStockAlert] = []

    def enter(self, state: SettlementState) -> None:
        logger.debug(f"[{self.action}] {self.state.value} -> {state.value}")
        self.state = state


class SalesService:
    """
    Sale settlement orchestrator.

    All collaborators are injected; the service keeps no per-request state,
    so one instance can serve every request of an application.
    """

    def __init__(
        self,
        settings: Optional[SettlementSettings] = None,
        allocator: Optional[InvoiceNumberAllocator] = None,
        stock_observer: Optional[StockObserver] = None
    ):
        self.settings = settings or SettlementSettings()
        self.allocator = allocator or InvoiceNumberAllocator(
            max_attempts=self.settings.invoice_number_attempts
        )
        self.stock_observer = stock_observer

    # =====================================================
    # PRICING PREVIEW
    # =====================================================

    def compute_pricing(
        self,
        lines: Iterable[CartLine],
        invoice_discount: Optional[InvoiceDiscount] = None,
        invoice_tax_override: Optional[InvoiceTaxOverride] = None
    ) -> PricingResult:
        """Price a cart without touching storage (cart previews)."""
        return compute_pricing(lines, invoice_discount, invoice_tax_override)

    # =====================================================
    # SETTLEMENT
    # =====================================================

    def create_invoice(
        self,
        session: Session,
        request: SaleRequest,
        actor_id: Optional[int] = None,
        allow_price_override: Optional[bool] = None
    ) -> Sale:
        """
        Settle a sale request: price it, check and decrement stock, persist
        header, items and payments, and commit.

        Any error rolls back the whole transaction; the caller either gets
        the committed Sale or an exception meaning no sale was created.
        """
        if allow_price_override is None:
            allow_price_override = self.settings.allow_unit_price_override

        settlement = _Settlement('create_invoice')
        sale = self._in_transaction(
            session,
            settlement,
            lambda: self._settle(session, settlement, request, actor_id, allow_price_override)
        )
        logger.info(
            f"Sale {sale.invoice_number} settled: id={sale.id} grand_total={sale.grand_total} "
            f"items={len(request.items)} actor={actor_id}"
        )
        return self.get_sale(session, sale.id)

    def _in_transaction(self, session: Session, settlement: _Settlement, operation: Callable):
        try:
            result = operation()
            session.commit()
            settlement.enter(SettlementState.COMMITTED)
        except AppError as e:
            session.rollback()
            logger.warning(
                f"[{settlement.action}] aborted during {settlement.state.value}: {e.message}"
            )
            settlement.enter(SettlementState.ABORTED)
            raise
        except Exception as e:
            session.rollback()
            logger.exception(f"[{settlement.action}] failed during {settlement.state.value}")
            settlement.enter(SettlementState.ABORTED)
            raise SettlementError(f'Unable to settle the sale: {e}') from e

        publish_low_stock_alerts(self.stock_observer, settlement.low_stock_alerts)
        return result

    def _settle(
        self,
        session: Session,
        settlement: _Settlement,
        request: SaleRequest,
        actor_id: Optional[int],
        allow_price_override: bool
    ) -> Sale:
        is_invoice = request.document_type == SaleDocumentType.INVOICE

        # 1. PRICING - lock products in cart order, price with their data
        products = self._lock_products(session, request.items)
        customer = self._resolve_customer(session, request.customer_id)

        cart_lines = [
            CartLine(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=self._resolve_unit_price(products[item.product_id], item, allow_price_override),
                line_discount_type=item.line_discount_type,
                line_discount_value=item.line_discount_value,
                tax_rate=products[item.product_id].tax_rate,
                tax_method=products[item.product_id].tax_method
            )
            for item in request.items
        ]
        pricing = compute_pricing(cart_lines, request.invoice_discount, request.invoice_tax_override)

        shipping_total = round_money(request.shipping_total)
        grand_total = round_money(pricing.grand_total + shipping_total)
        paid_total = self._validate_payments(request, grand_total)

        # 2. STOCK_CHECK - locked quantities must cover the whole cart
        settlement.enter(SettlementState.STOCK_CHECK)
        if is_invoice:
            for product_id, quantity in self._requested_quantities(request.items).items():
                ensure_available(products[product_id], quantity)

        # 3. PERSISTING - header, stock, items, payments
        settlement.enter(SettlementState.PERSISTING)
        due_total = round_money(max(grand_total - paid_total, ZERO))
        override = pricing.invoice_tax_override

        sale = Sale(
            invoice_number=self.allocator.allocate(session, request.document_type),
            document_type=request.document_type,
            customer_id=customer.id if customer else None,
            customer_name=request.customer_name or (customer.name if customer else None),
            payment_method=request.payments[0].method.value if request.payments else None,
            subtotal=pricing.subtotal,
            discount_total=pricing.discount_total,
            tax_total=pricing.tax_total,
            shipping_total=shipping_total,
            grand_total=grand_total,
            paid_total=paid_total,
            due_total=due_total,
            invoice_discount_type=pricing.invoice_discount_type,
            invoice_discount_value=pricing.invoice_discount_value,
            invoice_discount_amount=pricing.invoice_discount_amount,
            invoice_tax_rate=override.rate if override else None,
            invoice_tax_method=override.method if override else None,
            notes=request.notes,
            created_by_user_id=actor_id
        )
        if is_invoice:
            sale.status = resolve_sale_status(paid_total, due_total)
        else:
            sale.status = SaleStatus.UNPAID
            sale.valid_until = request.valid_until
            sale.quotation_status = resolve_quotation_status(request.valid_until, request.quotation_status)
        session.add(sale)
        self._flush_header(session, sale)

        for position, line in enumerate(pricing.lines):
            if is_invoice:
                alert = decrement_stock(session, products[line.product_id], line.quantity, 'sale')
                if alert:
                    settlement.low_stock_alerts.append(alert)
            session.add(SaleItem(
                sale_id=sale.id,
                position=position,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_base=line.line_base,
                line_discount_type=line.line_discount_type,
                line_discount_value=line.line_discount_value,
                line_discount_amount=line.line_discount_amount,
                invoice_discount_amount=line.invoice_discount_amount,
                tax_rate=line.tax_rate,
                tax_method=line.tax_method,
                line_tax_amount=line.line_tax_amount,
                line_total=line.line_total
            ))

        for payment in request.payments:
            session.add(SalePayment(
                sale_id=sale.id,
                method=payment.method.value,
                amount=round_money(payment.amount),
                reference=payment.reference,
                created_by_user_id=actor_id
            ))

        if is_invoice and customer and due_total > 0:
            customer.due_balance = round_money(customer.due_balance + due_total)

        session.flush()
        return sale

    # =====================================================
    # PAYMENTS
    # =====================================================

    def add_payment(
        self,
        session: Session,
        sale_id: int,
        payment: PaymentRequest,
        actor_id: Optional[int] = None
    ) -> Sale:
        """Append a payment to an invoice and recompute its paid/due totals."""
        settlement = _Settlement('add_payment')
        settlement.state = SettlementState.PERSISTING
        self._in_transaction(
            session,
            settlement,
            lambda: self._apply_payment(session, sale_id, payment, actor_id)
        )
        logger.info(f"Payment of {payment.amount} ({payment.method.value}) applied to sale {sale_id}")
        return self.get_sale(session, sale_id)

    def _apply_payment(self, session: Session, sale_id: int, payment: PaymentRequest, actor_id: Optional[int]) -> Sale:
        sale = session.query(Sale).filter(Sale.id == sale_id).with_for_update().first()
        if not sale:
            raise NotFoundError(f'Sale "{sale_id}" not found.')
        if sale.document_type != SaleDocumentType.INVOICE:
            raise BusinessLogicError('Payments can only be applied to invoices.')
        if sale.status == SaleStatus.PAID:
            raise BusinessLogicError('Invoice is already fully paid.')

        amount = round_money(payment.amount)
        if amount <= 0:
            raise BusinessLogicError('Payment amount must be positive.')
        if amount > sale.due_total:
            raise BusinessLogicError(f'Payment amount ({amount}) exceeds invoice due ({sale.due_total}).')

        session.add(SalePayment(
            sale_id=sale.id,
            method=payment.method.value,
            amount=amount,
            reference=payment.reference,
            created_by_user_id=actor_id
        ))

        sale.paid_total = round_money(sale.paid_total + amount)
        sale.due_total = round_money(max(sale.grand_total - sale.paid_total, ZERO))
        sale.payment_method = payment.method.value
        sale.status = resolve_sale_status(sale.paid_total, sale.due_total)

        if sale.customer_id:
            customer = session.query(Customer).filter(Customer.id == sale.customer_id).with_for_update().first()
            if customer:
                customer.due_balance = round_money(customer.due_balance - amount)

        session.flush()
        return sale

    # =====================================================
    # QUOTATIONS
    # =====================================================

    def convert_quotation(
        self,
        session: Session,
        quotation_id: int,
        actor_id: Optional[int] = None,
        note: Optional[str] = None,
        conversion_date: Optional[datetime] = None
    ) -> Tuple[Sale, Sale]:
        """
        Settle a quotation as a new invoice at the prices it was quoted at.

        The note replaces the quotation's notes on the invoice; the
        conversion date is recorded instead of now when given.
        Returns (quotation, invoice).
        """
        settlement = _Settlement('convert_quotation')
        invoice = self._in_transaction(
            session,
            settlement,
            lambda: self._convert(session, settlement, quotation_id, actor_id, note, conversion_date)
        )
        logger.info(f"Quotation {quotation_id} converted into sale {invoice.invoice_number}")
        return self.get_sale(session, quotation_id), self.get_sale(session, invoice.id)

    def _convert(
        self,
        session: Session,
        settlement: _Settlement,
        quotation_id: int,
        actor_id: Optional[int],
        note: Optional[str],
        conversion_date: Optional[datetime]
    ) -> Sale:
        quotation = session.query(Sale).options(
            selectinload(Sale.items)
        ).filter(Sale.id == quotation_id).with_for_update().first()

        if not quotation:
            raise NotFoundError(f'Sale "{quotation_id}" not found.')
        if quotation.document_type != SaleDocumentType.QUOTATION:
            raise BusinessLogicError('Only quotations can be converted to invoices.')
        if quotation.quotation_status == QuotationStatus.CONVERTED:
            raise BusinessLogicError('Quotation is already converted.')

        override = None
        if quotation.invoice_tax_rate is not None and quotation.invoice_tax_method is not None:
            override = InvoiceTaxOverride(rate=quotation.invoice_tax_rate, method=quotation.invoice_tax_method)

        request = SaleRequest(
            items=tuple(
                SaleItemRequest(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    line_discount_type=item.line_discount_type,
                    line_discount_value=item.line_discount_value,
                    unit_price_override=item.unit_price
                )
                for item in quotation.items
            ),
            document_type=SaleDocumentType.INVOICE,
            customer_id=quotation.customer_id,
            customer_name=quotation.customer_name,
            invoice_discount=InvoiceDiscount(
                type=quotation.invoice_discount_type,
                value=quotation.invoice_discount_value
            ),
            invoice_tax_override=override,
            shipping_total=quotation.shipping_total,
            notes=note or quotation.notes
        )

        # Quoted prices are honoured regardless of the override setting
        invoice = self._settle(session, settlement, request, actor_id, allow_price_override=True)

        if isinstance(conversion_date, datetime):
            converted_at = conversion_date
        elif isinstance(conversion_date, date):
            converted_at = datetime.combine(conversion_date, time.min)
        else:
            converted_at = datetime.now()

        quotation.quotation_status = QuotationStatus.CONVERTED
        quotation.converted_at = converted_at
        quotation.converted_to_sale_id = invoice.id
        session.flush()
        return invoice

    # =====================================================
    # QUERIES
    # =====================================================

    def get_sale(self, session: Session, sale_id: int) -> Sale:
        """Load a sale with its items and payments materialised."""
        sale = session.query(Sale).options(
            selectinload(Sale.items),
            selectinload(Sale.payments)
        ).filter(Sale.id == sale_id).first()

        if not sale:
            raise NotFoundError(f'Sale "{sale_id}" not found.')
        return sale

    def list_sales(
        self,
        session: Session,
        page: int = 1,
        per_page: int = 20,
        status: Optional[SaleStatus] = None,
        document_type: Optional[SaleDocumentType] = None
    ) -> Tuple[List[Sale], int]:
        """Return one page of sales, newest first, and the total count."""
        query = session.query(Sale)
        if status:
            query = query.filter(Sale.status == status)
        if document_type:
            query = query.filter(Sale.document_type == document_type)

        total = query.count()
        sales = query.options(
            selectinload(Sale.items),
            selectinload(Sale.payments)
        ).order_by(Sale.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
        return sales, total

    # =====================================================
    # PRIVATE HELPERS
    # =====================================================

    def _lock_products(self, session: Session, items: Iterable[SaleItemRequest]) -> Dict[int, Product]:
        """Lock each referenced product once, in cart line order."""
        products: Dict[int, Product] = OrderedDict()
        for item in items:
            if item.product_id not in products:
                products[item.product_id] = load_product_for_pricing(session, item.product_id)
        return products

    def _flush_header(self, session: Session, sale: Sale) -> None:
        """
        Insert the sale header.

        Two transactions can both see a candidate number as free; the one
        that loses the UNIQUE constraint gets the retryable error.
        """
        try:
            session.flush()
        except IntegrityError as e:
            if 'invoice_number' not in str(e.orig):
                raise
            logger.warning(f"Invoice number {sale.invoice_number} was taken concurrently")
            raise InvoiceNumberUnavailableError(self.allocator.max_attempts) from e

    @staticmethod
    def _requested_quantities(items: Iterable[SaleItemRequest]) -> Dict[int, int]:
        """Total quantity per product (a product may appear on several lines)."""
        totals: Dict[int, int] = OrderedDict()
        for item in items:
            totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
        return totals

    @staticmethod
    def _resolve_unit_price(product: Product, item: SaleItemRequest, allow_override: bool):
        if item.unit_price_override is None:
            return product.price
        if not allow_override:
            raise BusinessLogicError(f'Unit price overrides are not permitted (product "{product.name}").')
        return item.unit_price_override

    @staticmethod
    def _resolve_customer(session: Session, customer_id: Optional[int]) -> Optional[Customer]:
        if not customer_id:
            return None
        customer = session.query(Customer).filter(Customer.id == customer_id).with_for_update().first()
        if not customer:
            raise NotFoundError(f'Customer #{customer_id} not found.')
        return customer

    @staticmethod
    def _validate_payments(request: SaleRequest, grand_total):
        if request.document_type == SaleDocumentType.QUOTATION and request.payments:
            raise BusinessLogicError('Quotation documents cannot receive payments.')

        paid_total = round_money(sum((p.amount for p in request.payments), ZERO))
        if paid_total > grand_total:
            raise BusinessLogicError(
                f'Paid amount ({paid_total}) cannot exceed invoice total ({grand_total}).'
            )
        return paid_total
