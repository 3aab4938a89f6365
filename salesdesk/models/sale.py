"""Sale model."""
from sqlalchemy import Column, String, Text, Numeric, Date, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from salesdesk.database import Base, IdType
from salesdesk.pricing import DiscountType, TaxMethod
import enum
from datetime import date


class SaleStatus(str, enum.Enum):
    """Payment status of a sale."""
    UNPAID = 'UNPAID'
    PARTIAL = 'PARTIAL'
    PAID = 'PAID'


class SaleDocumentType(str, enum.Enum):
    """Invoices move stock and take payments; quotations do neither."""
    INVOICE = 'INVOICE'
    QUOTATION = 'QUOTATION'


class QuotationStatus(str, enum.Enum):
    DRAFT = 'DRAFT'
    ACTIVE = 'ACTIVE'
    EXPIRED = 'EXPIRED'
    CONVERTED = 'CONVERTED'


def resolve_sale_status(paid_total, due_total) -> SaleStatus:
    """Derive the sale status from its paid and due totals."""
    if due_total <= 0:
        return SaleStatus.PAID
    if paid_total > 0:
        return SaleStatus.PARTIAL
    return SaleStatus.UNPAID


def resolve_quotation_status(valid_until, requested=None, today=None) -> QuotationStatus:
    """
    Status for a newly issued quotation.

    A requested DRAFT always stays a draft. Otherwise a quotation whose
    valid_until date is already in the past is EXPIRED, as is one issued
    explicitly as EXPIRED; everything else is ACTIVE.
    """
    if requested == QuotationStatus.DRAFT:
        return QuotationStatus.DRAFT

    today = today or date.today()
    if valid_until and valid_until < today:
        return QuotationStatus.EXPIRED

    if requested == QuotationStatus.EXPIRED:
        return QuotationStatus.EXPIRED

    return QuotationStatus.ACTIVE


class Sale(Base):
    """
    Sale header (invoice or quotation).

    Monetary totals are copied from the pricing engine when the sale is
    settled and are never edited on their own afterwards; only payment
    application moves paid_total/due_total/status.
    """

    __tablename__ = 'sale'

    id = Column(IdType, primary_key=True, autoincrement=True)
    invoice_number = Column(String(40), nullable=False, unique=True, index=True)
    document_type = Column(Enum(SaleDocumentType, name='sale_document_type'), nullable=False, default=SaleDocumentType.INVOICE)
    status = Column(Enum(SaleStatus, name='sale_status'), nullable=False, default=SaleStatus.UNPAID)
    quotation_status = Column(Enum(QuotationStatus, name='quotation_status'), nullable=True)

    customer_id = Column(IdType, ForeignKey('customer.id'), nullable=True)
    customer_name = Column(String(160), nullable=True)
    payment_method = Column(String(20), nullable=True)

    subtotal = Column(Numeric(14, 2), nullable=False, default=0)
    discount_total = Column(Numeric(14, 2), nullable=False, default=0)
    tax_total = Column(Numeric(14, 2), nullable=False, default=0)
    shipping_total = Column(Numeric(14, 2), nullable=False, default=0)
    grand_total = Column(Numeric(14, 2), nullable=False, default=0)
    paid_total = Column(Numeric(14, 2), nullable=False, default=0)
    due_total = Column(Numeric(14, 2), nullable=False, default=0)

    invoice_discount_type = Column(Enum(DiscountType, name='discount_type'), nullable=False, default=DiscountType.NONE)
    invoice_discount_value = Column(Numeric(14, 2), nullable=False, default=0)
    invoice_discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    invoice_tax_rate = Column(Numeric(5, 2), nullable=True)
    invoice_tax_method = Column(Enum(TaxMethod, name='tax_method'), nullable=True)

    valid_until = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    converted_to_sale_id = Column(IdType, ForeignKey('sale.id'), nullable=True)
    converted_at = Column(DateTime(timezone=True), nullable=True)

    created_by_user_id = Column(IdType, ForeignKey('app_user.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='sales')
    created_by = relationship('AppUser')
    items = relationship('SaleItem', back_populates='sale', cascade='all, delete-orphan', order_by='SaleItem.position')
    payments = relationship('SalePayment', back_populates='sale', cascade='all, delete-orphan', order_by='SalePayment.id')

    def __repr__(self):
        return f"<Sale(id={self.id}, invoice_number='{self.invoice_number}', grand_total={self.grand_total})>"
