"""
Pricing engine.

Turns a cart of lines plus discount/tax configuration into a reconciled
set of priced lines and invoice totals. Pure computation: no I/O, no
side effects, never raises for validated input.
"""
import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from salesdesk.pricing.money import ZERO, clamp, round_money, to_decimal

HUNDRED = Decimal('100')
DEFAULT_TAX_RATE = ZERO


class DiscountType(str, enum.Enum):
    """How a discount value is interpreted."""
    NONE = 'NONE'
    PERCENT = 'PERCENT'
    FIXED = 'FIXED'


class TaxMethod(str, enum.Enum):
    """Whether tax is embedded in the price or added on top of it."""
    INCLUSIVE = 'INCLUSIVE'
    EXCLUSIVE = 'EXCLUSIVE'


@dataclass(frozen=True)
class CartLine:
    """One product entry of a cart, as handed to the engine."""
    product_id: int
    quantity: int
    unit_price: Decimal
    line_discount_type: DiscountType = DiscountType.NONE
    line_discount_value: Decimal = ZERO
    tax_rate: Optional[Decimal] = None
    tax_method: Optional[TaxMethod] = None


@dataclass(frozen=True)
class InvoiceDiscount:
    type: DiscountType = DiscountType.NONE
    value: Decimal = ZERO


@dataclass(frozen=True)
class InvoiceTaxOverride:
    rate: Decimal
    method: TaxMethod


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    unit_price: Decimal
    line_base: Decimal
    line_discount_type: DiscountType
    line_discount_value: Decimal
    line_discount_amount: Decimal
    invoice_discount_amount: Decimal
    tax_rate: Decimal
    tax_method: TaxMethod
    line_tax_amount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class PricingResult:
    lines: Tuple[PricedLine, ...] = field(default_factory=tuple)
    subtotal: Decimal = ZERO
    discount_total: Decimal = ZERO
    tax_total: Decimal = ZERO
    grand_total: Decimal = ZERO
    invoice_discount_type: DiscountType = DiscountType.NONE
    invoice_discount_value: Decimal = ZERO
    invoice_discount_amount: Decimal = ZERO
    invoice_tax_override: Optional[InvoiceTaxOverride] = None


def compute_discount_amount(base: Decimal, discount_type: DiscountType, discount_value) -> Decimal:
    """Discount formula shared by line-level and invoice-level discounts."""
    value = to_decimal(discount_value)
    if discount_type == DiscountType.PERCENT:
        return round_money(base * clamp(value, ZERO, HUNDRED) / HUNDRED)
    if discount_type == DiscountType.FIXED:
        return round_money(clamp(value, ZERO, base))
    return ZERO


def _compute_tax(taxable_base: Decimal, rate: Decimal, method: TaxMethod) -> Tuple[Decimal, Decimal]:
    """Return (tax amount, line total) for a taxable base."""
    if method == TaxMethod.INCLUSIVE:
        divisor = HUNDRED + rate
        if divisor <= 0:
            return ZERO, taxable_base
        return round_money(taxable_base * rate / divisor), taxable_base

    tax_amount = round_money(taxable_base * rate / HUNDRED)
    return tax_amount, round_money(taxable_base + tax_amount)


def allocate_invoice_discount(line_nets, amount: Decimal, discountable_base: Decimal) -> list:
    """
    Split an invoice discount across lines in proportion to their net amounts.

    Every line but the last gets its rounded proportional share; the last one
    gets the exact remainder. Shares are clamped to [0, line net] and to what
    is left of the pool. If the last line cannot absorb the whole remainder,
    the leftover cents go to earlier lines that still have room, walking
    backwards. The returned shares always sum to amount (amount never exceeds
    the sum of line nets).
    """
    weight = ZERO if discountable_base <= 0 else amount / discountable_base
    last_index = len(line_nets) - 1
    allocated = ZERO
    shares = []

    for index, line_net in enumerate(line_nets):
        if index == last_index:
            share = round_money(amount - allocated)
        else:
            share = round_money(line_net * weight)
        share = clamp(share, ZERO, min(line_net, amount - allocated))
        allocated = round_money(allocated + share)
        shares.append(share)

    residual = round_money(amount - allocated)
    index = last_index
    while residual > 0 and index >= 0:
        extra = min(residual, round_money(line_nets[index] - shares[index]))
        if extra > 0:
            shares[index] = round_money(shares[index] + extra)
            residual = round_money(residual - extra)
        index -= 1

    return shares


def compute_pricing(
    lines: Iterable[CartLine],
    invoice_discount: Optional[InvoiceDiscount] = None,
    invoice_tax_override: Optional[InvoiceTaxOverride] = None
) -> PricingResult:
    """
    Price a cart.

    Line order matters: the invoice-level discount is split proportionally
    across lines and the last line absorbs the rounding remainder, so the
    per-line shares always add up to the invoice discount amount.
    """
    lines = list(lines)
    if not lines:
        return PricingResult()

    discount = invoice_discount or InvoiceDiscount()
    invoice_discount_type = discount.type or DiscountType.NONE
    invoice_discount_value = round_money(discount.value)

    # 1. Per-line base and line discount
    seeded = []
    for line in lines:
        unit_price = round_money(line.unit_price)
        line_base = round_money(line.quantity * unit_price)
        line_discount_type = line.line_discount_type or DiscountType.NONE
        line_discount_value = round_money(line.line_discount_value)

        if invoice_tax_override is not None:
            tax_rate = invoice_tax_override.rate
            tax_method = invoice_tax_override.method
        else:
            tax_rate = line.tax_rate if line.tax_rate is not None else DEFAULT_TAX_RATE
            tax_method = line.tax_method or TaxMethod.EXCLUSIVE

        seeded.append({
            'product_id': line.product_id,
            'quantity': line.quantity,
            'unit_price': unit_price,
            'line_base': line_base,
            'line_discount_type': line_discount_type,
            'line_discount_value': line_discount_value,
            'line_discount_amount': compute_discount_amount(line_base, line_discount_type, line_discount_value),
            'tax_rate': round_money(tax_rate),
            'tax_method': tax_method,
        })

    # 2. Invoice-level discount over what the line discounts left
    subtotal = round_money(sum((l['line_base'] for l in seeded), ZERO))
    discountable_base = round_money(
        sum((l['line_base'] - l['line_discount_amount'] for l in seeded), ZERO)
    )
    invoice_discount_amount = compute_discount_amount(
        discountable_base, invoice_discount_type, invoice_discount_value
    )

    # 3. Proportional allocation of the invoice discount, then tax
    line_nets = [round_money(l['line_base'] - l['line_discount_amount']) for l in seeded]
    shares = allocate_invoice_discount(line_nets, invoice_discount_amount, discountable_base)
    priced = []

    for line, line_net, share in zip(seeded, line_nets, shares):
        taxable_base = round_money(line_net - share)
        tax_amount, line_total = _compute_tax(taxable_base, line['tax_rate'], line['tax_method'])

        priced.append(PricedLine(
            invoice_discount_amount=share,
            line_tax_amount=tax_amount,
            line_total=line_total,
            **line
        ))

    line_discount_total = round_money(sum((l.line_discount_amount for l in priced), ZERO))

    return PricingResult(
        lines=tuple(priced),
        subtotal=subtotal,
        discount_total=round_money(line_discount_total + invoice_discount_amount),
        tax_total=round_money(sum((l.line_tax_amount for l in priced), ZERO)),
        grand_total=round_money(sum((l.line_total for l in priced), ZERO)),
        invoice_discount_type=invoice_discount_type,
        invoice_discount_value=invoice_discount_value,
        invoice_discount_amount=invoice_discount_amount,
        invoice_tax_override=invoice_tax_override,
    )
