"""Models package - exports all SQLAlchemy models."""
from salesdesk.models.app_user import AppUser, UserRole
from salesdesk.models.customer import Customer
from salesdesk.models.product import Product
from salesdesk.models.sale import (
    Sale, SaleStatus, SaleDocumentType, QuotationStatus,
    resolve_quotation_status, resolve_sale_status
)
from salesdesk.models.sale_item import SaleItem
from salesdesk.models.sale_payment import SalePayment, PaymentMethod

__all__ = [
    'AppUser', 'UserRole',
    'Customer', 'Product',
    'Sale', 'SaleStatus', 'SaleDocumentType', 'QuotationStatus',
    'resolve_quotation_status', 'resolve_sale_status',
    'SaleItem', 'SalePayment', 'PaymentMethod',
]
