"""Pricing package - money helpers and the cart pricing engine."""
from salesdesk.pricing.money import MONEY_PLACES, ZERO, clamp, round_money, to_decimal
from salesdesk.pricing.engine import (
    CartLine, DiscountType, InvoiceDiscount, InvoiceTaxOverride,
    PricedLine, PricingResult, TaxMethod, allocate_invoice_discount, compute_discount_amount,
    compute_pricing
)

__all__ = [
    'MONEY_PLACES', 'ZERO', 'clamp', 'round_money', 'to_decimal',
    'CartLine', 'DiscountType', 'InvoiceDiscount', 'InvoiceTaxOverride',
    'PricedLine', 'PricingResult', 'TaxMethod', 'allocate_invoice_discount',
    'compute_discount_amount', 'compute_pricing',
]
