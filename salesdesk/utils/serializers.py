"""JSON serialization for sales and pricing results."""
import enum
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict

from salesdesk.models import Sale
from salesdesk.pricing import PricingResult


def serialize_value(value: Any) -> Any:
    """Decimals become fixed-point strings so no precision is lost in JSON."""
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def pricing_to_dict(result: PricingResult) -> Dict[str, Any]:
    data = asdict(result) if is_dataclass(result) else dict(result)
    return serialize_value(data)


def sale_to_dict(sale: Sale) -> Dict[str, Any]:
    return serialize_value({
        'id': sale.id,
        'invoice_number': sale.invoice_number,
        'document_type': sale.document_type,
        'status': sale.status,
        'quotation_status': sale.quotation_status,
        'customer_id': sale.customer_id,
        'customer_name': sale.customer_name,
        'payment_method': sale.payment_method,
        'subtotal': sale.subtotal,
        'discount_total': sale.discount_total,
        'tax_total': sale.tax_total,
        'shipping_total': sale.shipping_total,
        'grand_total': sale.grand_total,
        'paid_total': sale.paid_total,
        'due_total': sale.due_total,
        'invoice_discount': {
            'type': sale.invoice_discount_type,
            'value': sale.invoice_discount_value,
            'amount': sale.invoice_discount_amount,
        },
        'invoice_tax_override': (
            {'rate': sale.invoice_tax_rate, 'method': sale.invoice_tax_method}
            if sale.invoice_tax_rate is not None else None
        ),
        'notes': sale.notes,
        'valid_until': sale.valid_until,
        'converted_to_sale_id': sale.converted_to_sale_id,
        'converted_at': sale.converted_at,
        'created_by_user_id': sale.created_by_user_id,
        'created_at': sale.created_at,
        'items': [
            {
                'id': item.id,
                'position': item.position,
                'product_id': item.product_id,
                'quantity': item.quantity,
                'unit_price': item.unit_price,
                'line_base': item.line_base,
                'line_discount_type': item.line_discount_type,
                'line_discount_value': item.line_discount_value,
                'line_discount_amount': item.line_discount_amount,
                'invoice_discount_amount': item.invoice_discount_amount,
                'tax_rate': item.tax_rate,
                'tax_method': item.tax_method,
                'line_tax_amount': item.line_tax_amount,
                'line_total': item.line_total,
            }
            for item in sale.items
        ],
        'payments': [
            {
                'id': payment.id,
                'method': payment.method,
                'amount': payment.amount,
                'reference': payment.reference,
                'created_at': payment.created_at,
            }
            for payment in sale.payments
        ],
    })
