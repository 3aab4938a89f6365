"""
Request validation for sale creation, pricing previews and payments.

Turns raw JSON bodies into typed, immutable request objects. Every problem
found is collected per field and reported at once through ValidationError,
so nothing malformed ever reaches the pricing engine.
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from salesdesk.exceptions import ValidationError
from salesdesk.models import PaymentMethod, QuotationStatus, SaleDocumentType
from salesdesk.pricing import (
    CartLine, DiscountType, InvoiceDiscount, InvoiceTaxOverride, TaxMethod, ZERO
)

MAX_ITEMS = 500


@dataclass(frozen=True)
class SaleItemRequest:
    product_id: int
    quantity: int
    line_discount_type: DiscountType = DiscountType.NONE
    line_discount_value: Decimal = ZERO
    unit_price_override: Optional[Decimal] = None


@dataclass(frozen=True)
class PaymentRequest:
    method: PaymentMethod
    amount: Decimal
    reference: Optional[str] = None


@dataclass(frozen=True)
class SaleRequest:
    items: Tuple[SaleItemRequest, ...]
    document_type: SaleDocumentType = SaleDocumentType.INVOICE
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    invoice_discount: InvoiceDiscount = InvoiceDiscount()
    invoice_tax_override: Optional[InvoiceTaxOverride] = None
    payments: Tuple[PaymentRequest, ...] = ()
    shipping_total: Decimal = ZERO
    notes: Optional[str] = None
    valid_until: Optional[date] = None
    quotation_status: Optional[QuotationStatus] = None


@dataclass(frozen=True)
class PricingRequest:
    lines: Tuple[CartLine, ...]
    invoice_discount: InvoiceDiscount = InvoiceDiscount()
    invoice_tax_override: Optional[InvoiceTaxOverride] = None


@dataclass(frozen=True)
class ConversionRequest:
    note: Optional[str] = None
    conversion_date: Optional[datetime] = None


# =====================================================
# FIELD PARSERS
# =====================================================

def _parse_int(value: Any, field: str, errors: Dict[str, str], minimum: int = 1) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        errors[field] = 'must be an integer'
        return None
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        errors[field] = 'must be an integer'
        return None
    if parsed < minimum:
        errors[field] = f'must be at least {minimum}'
        return None
    return parsed


def _parse_money(value: Any, field: str, errors: Dict[str, str], positive: bool = False) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        errors[field] = 'must be a number'
        return None
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        errors[field] = 'must be a number'
        return None
    if not parsed.is_finite():
        errors[field] = 'must be a number'
        return None
    if parsed.as_tuple().exponent < -2:
        errors[field] = 'must have at most 2 decimal places'
        return None
    if positive and parsed <= 0:
        errors[field] = 'must be greater than 0'
        return None
    if parsed < 0:
        errors[field] = 'must not be negative'
        return None
    return parsed


def _parse_enum(enum_cls, value: Any, field: str, errors: Dict[str, str], default=None):
    if value is None:
        return default
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        errors[field] = f'must be one of: {allowed}'
        return None


def _parse_text(value: Any, field: str, errors: Dict[str, str], max_length: int) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        errors[field] = 'must be a string'
        return None
    cleaned = value.strip()
    if len(cleaned) > max_length:
        errors[field] = f'must be at most {max_length} characters'
        return None
    return cleaned or None


def _parse_datetime(value: Any, field: str, errors: Dict[str, str]) -> Optional[datetime]:
    """ISO 8601 date or date-time string."""
    if value is None:
        return None
    if not isinstance(value, str):
        errors[field] = 'must be an ISO 8601 date'
        return None
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        errors[field] = 'must be an ISO 8601 date'
        return None


def _parse_invoice_discount(value: Any, errors: Dict[str, str]) -> InvoiceDiscount:
    if value is None:
        return InvoiceDiscount()
    if not isinstance(value, dict):
        errors['invoice_discount'] = 'must be an object'
        return InvoiceDiscount()
    discount_type = _parse_enum(DiscountType, value.get('type'), 'invoice_discount.type', errors, DiscountType.NONE)
    discount_value = _parse_money(value.get('value', 0), 'invoice_discount.value', errors)
    return InvoiceDiscount(type=discount_type or DiscountType.NONE, value=discount_value or ZERO)


def _parse_tax_override(value: Any, errors: Dict[str, str]) -> Optional[InvoiceTaxOverride]:
    if value is None:
        return None
    if not isinstance(value, dict):
        errors['invoice_tax_override'] = 'must be an object'
        return None
    rate = _parse_money(value.get('rate'), 'invoice_tax_override.rate', errors)
    method = _parse_enum(TaxMethod, value.get('method'), 'invoice_tax_override.method', errors)
    if method is None and 'invoice_tax_override.method' not in errors:
        errors['invoice_tax_override.method'] = 'is required'
    if rate is None or method is None:
        return None
    return InvoiceTaxOverride(rate=rate, method=method)


def _items_list(payload: Dict[str, Any], errors: Dict[str, str], allow_empty: bool = False) -> List[Any]:
    items = payload.get('items')
    if not isinstance(items, list):
        errors['items'] = 'must be a list of items'
        return []
    if not items and not allow_empty:
        errors['items'] = 'at least one item is required'
        return []
    if len(items) > MAX_ITEMS:
        errors['items'] = f'at most {MAX_ITEMS} items are allowed'
        return []
    return items


def _require_object(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError({'body': 'must be a JSON object'})
    return payload


# =====================================================
# REQUEST VALIDATORS
# =====================================================

def validate_sale_request(payload: Any) -> SaleRequest:
    """Validate a sale creation body."""
    payload = _require_object(payload)
    errors: Dict[str, str] = {}

    items = []
    for index, raw in enumerate(_items_list(payload, errors)):
        prefix = f'items[{index}]'
        if not isinstance(raw, dict):
            errors[prefix] = 'must be an object'
            continue
        product_id = _parse_int(raw.get('product_id'), f'{prefix}.product_id', errors)
        quantity = _parse_int(raw.get('quantity'), f'{prefix}.quantity', errors)
        discount_type = _parse_enum(
            DiscountType, raw.get('line_discount_type'), f'{prefix}.line_discount_type', errors, DiscountType.NONE
        )
        discount_value = _parse_money(raw.get('line_discount_value', 0), f'{prefix}.line_discount_value', errors)
        unit_price = None
        if raw.get('unit_price') is not None:
            unit_price = _parse_money(raw['unit_price'], f'{prefix}.unit_price', errors)
        items.append(SaleItemRequest(
            product_id=product_id,
            quantity=quantity,
            line_discount_type=discount_type or DiscountType.NONE,
            line_discount_value=discount_value or ZERO,
            unit_price_override=unit_price
        ))

    document_type = _parse_enum(
        SaleDocumentType, payload.get('document_type'), 'document_type', errors, SaleDocumentType.INVOICE
    )

    customer_id = None
    if payload.get('customer_id') is not None:
        customer_id = _parse_int(payload['customer_id'], 'customer_id', errors)

    raw_payments = payload.get('payments') or []
    payments = []
    if not isinstance(raw_payments, list):
        errors['payments'] = 'must be a list'
        raw_payments = []
    for index, raw in enumerate(raw_payments):
        payments.append(_parse_payment(raw, f'payments[{index}]', errors))

    shipping_total = _parse_money(payload.get('shipping_total', 0), 'shipping_total', errors)

    valid_until = _parse_datetime(payload.get('valid_until'), 'valid_until', errors)
    quotation_status = _parse_enum(QuotationStatus, payload.get('quotation_status'), 'quotation_status', errors)
    if quotation_status == QuotationStatus.CONVERTED:
        errors['quotation_status'] = 'must be one of: DRAFT, ACTIVE, EXPIRED'
        quotation_status = None
    if document_type == SaleDocumentType.INVOICE:
        if payload.get('valid_until') is not None:
            errors['valid_until'] = 'only applies to quotations'
        if payload.get('quotation_status') is not None:
            errors['quotation_status'] = 'only applies to quotations'

    request = SaleRequest(
        items=tuple(items),
        document_type=document_type,
        customer_id=customer_id,
        customer_name=_parse_text(payload.get('customer_name'), 'customer_name', errors, 160),
        invoice_discount=_parse_invoice_discount(payload.get('invoice_discount'), errors),
        invoice_tax_override=_parse_tax_override(payload.get('invoice_tax_override'), errors),
        payments=tuple(payments),
        shipping_total=shipping_total or ZERO,
        notes=_parse_text(payload.get('notes'), 'notes', errors, 1000),
        valid_until=valid_until.date() if valid_until else None,
        quotation_status=quotation_status
    )

    if errors:
        raise ValidationError(errors)
    return request


def validate_pricing_request(payload: Any) -> PricingRequest:
    """Validate a pricing preview body. Lines carry their own price and tax."""
    payload = _require_object(payload)
    errors: Dict[str, str] = {}

    lines = []
    for index, raw in enumerate(_items_list(payload, errors, allow_empty=True)):
        prefix = f'items[{index}]'
        if not isinstance(raw, dict):
            errors[prefix] = 'must be an object'
            continue
        tax_rate = None
        if raw.get('tax_rate') is not None:
            tax_rate = _parse_money(raw['tax_rate'], f'{prefix}.tax_rate', errors)
        lines.append(CartLine(
            product_id=_parse_int(raw.get('product_id'), f'{prefix}.product_id', errors),
            quantity=_parse_int(raw.get('quantity'), f'{prefix}.quantity', errors),
            unit_price=_parse_money(raw.get('unit_price'), f'{prefix}.unit_price', errors) or ZERO,
            line_discount_type=_parse_enum(
                DiscountType, raw.get('line_discount_type'), f'{prefix}.line_discount_type', errors, DiscountType.NONE
            ) or DiscountType.NONE,
            line_discount_value=_parse_money(
                raw.get('line_discount_value', 0), f'{prefix}.line_discount_value', errors
            ) or ZERO,
            tax_rate=tax_rate,
            tax_method=_parse_enum(TaxMethod, raw.get('tax_method'), f'{prefix}.tax_method', errors)
        ))

    request = PricingRequest(
        lines=tuple(lines),
        invoice_discount=_parse_invoice_discount(payload.get('invoice_discount'), errors),
        invoice_tax_override=_parse_tax_override(payload.get('invoice_tax_override'), errors)
    )

    if errors:
        raise ValidationError(errors)
    return request


def _parse_payment(raw: Any, prefix: str, errors: Dict[str, str]) -> Optional[PaymentRequest]:
    if not isinstance(raw, dict):
        errors[prefix] = 'must be an object'
        return None
    method = _parse_enum(PaymentMethod, raw.get('method'), f'{prefix}.method', errors)
    if method is None and f'{prefix}.method' not in errors:
        errors[f'{prefix}.method'] = 'is required'
    amount = _parse_money(raw.get('amount'), f'{prefix}.amount', errors, positive=True)
    reference = _parse_text(raw.get('reference'), f'{prefix}.reference', errors, 120)
    return PaymentRequest(method=method, amount=amount, reference=reference)


def validate_payment(payload: Any) -> PaymentRequest:
    """Validate a payment application body."""
    payload = _require_object(payload)
    errors: Dict[str, str] = {}
    payment = _parse_payment(payload, 'payment', errors)
    if errors:
        raise ValidationError(errors)
    return payment


def validate_conversion(payload: Any) -> ConversionRequest:
    """Validate a quotation conversion body. An empty body is allowed."""
    payload = _require_object({} if payload is None else payload)
    errors: Dict[str, str] = {}
    request = ConversionRequest(
        note=_parse_text(payload.get('note'), 'note', errors, 1000),
        conversion_date=_parse_datetime(payload.get('conversion_date'), 'conversion_date', errors)
    )
    if errors:
        raise ValidationError(errors)
    return request
