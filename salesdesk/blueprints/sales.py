"""Sales blueprint - JSON API for pricing, settlement, payments and documents."""
from flask import Blueprint, request, jsonify, send_file, current_app, g, Response
from typing import Callable, Tuple

from salesdesk.database import get_session
from salesdesk.models import SaleStatus, SaleDocumentType
from salesdesk.services.cart_validation import (
    validate_sale_request, validate_pricing_request, validate_payment, validate_conversion
)
from salesdesk.services.sales_service import SalesService
from salesdesk.services.sale_pdf_service import render_sale_pdf
from salesdesk.utils.serializers import pricing_to_dict, sale_to_dict
from salesdesk.decorators.permissions import require_permission, has_permission
from salesdesk.blueprints.metrics import record_settlement
from salesdesk.exceptions import AppError, ValidationError

sales_bp = Blueprint('sales', __name__, url_prefix='/api/sales')

MAX_PER_PAGE = 100


def _sales_service() -> SalesService:
    return current_app.extensions['sales_service']


def _settle_and_record(operation: Callable):
    """Run a settlement and count its outcome."""
    try:
        result = operation()
    except AppError as e:
        record_settlement('rejected' if e.status_code < 500 else 'failed')
        raise
    except Exception:
        record_settlement('failed')
        raise
    record_settlement('committed')
    return result


def _list_filters() -> Tuple[int, int, SaleStatus, SaleDocumentType]:
    errors = {}
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', 20, type=int)
    if page is None or page < 1:
        errors['page'] = 'must be a positive integer'
    if per_page is None or not 1 <= per_page <= MAX_PER_PAGE:
        errors['per_page'] = f'must be between 1 and {MAX_PER_PAGE}'

    status = None
    if request.args.get('status'):
        try:
            status = SaleStatus(request.args['status'].upper())
        except ValueError:
            errors['status'] = 'must be one of: ' + ', '.join(s.value for s in SaleStatus)

    document_type = None
    if request.args.get('document_type'):
        try:
            document_type = SaleDocumentType(request.args['document_type'].upper())
        except ValueError:
            errors['document_type'] = 'must be one of: ' + ', '.join(d.value for d in SaleDocumentType)

    if errors:
        raise ValidationError(errors)
    return page, per_page, status, document_type


# ============================================================================
# Pricing preview
# ============================================================================

@sales_bp.route('/pricing', methods=['POST'])
@require_permission('sales.view')
def preview_pricing() -> Response:
    """Price a cart without persisting anything."""
    pricing_request = validate_pricing_request(request.get_json(silent=True))
    result = _sales_service().compute_pricing(
        pricing_request.lines,
        pricing_request.invoice_discount,
        pricing_request.invoice_tax_override
    )
    return jsonify({'status': 'success', 'pricing': pricing_to_dict(result)})


# ============================================================================
# Settlement
# ============================================================================

@sales_bp.route('', methods=['POST'])
@sales_bp.route('/', methods=['POST'])
@require_permission('sales.create')
def create_sale() -> Tuple[Response, int]:
    """Create an invoice or quotation from a cart."""
    db_session = get_session()
    service = _sales_service()
    sale_request = validate_sale_request(request.get_json(silent=True))

    allow_override = (
        service.settings.allow_unit_price_override
        or has_permission(g.user_role, 'sales.override_price')
    )
    sale = _settle_and_record(
        lambda: service.create_invoice(
            db_session, sale_request, actor_id=g.user_id, allow_price_override=allow_override
        )
    )
    return jsonify({'status': 'success', 'sale': sale_to_dict(sale)}), 201


@sales_bp.route('/<int:sale_id>/convert', methods=['POST'])
@require_permission('sales.create')
def convert_quotation(sale_id: int) -> Tuple[Response, int]:
    """Convert a quotation into an invoice, optionally with a note and conversion date."""
    db_session = get_session()
    conversion = validate_conversion(request.get_json(silent=True))
    quotation, invoice = _settle_and_record(
        lambda: _sales_service().convert_quotation(
            db_session,
            sale_id,
            actor_id=g.user_id,
            note=conversion.note,
            conversion_date=conversion.conversion_date
        )
    )
    return jsonify({
        'status': 'success',
        'quotation': sale_to_dict(quotation),
        'sale': sale_to_dict(invoice)
    }), 201


@sales_bp.route('/<int:sale_id>/payments', methods=['POST'])
@require_permission('sales.payment')
def add_payment(sale_id: int) -> Response:
    """Apply a payment to an invoice."""
    db_session = get_session()
    payment = validate_payment(request.get_json(silent=True))
    sale = _sales_service().add_payment(db_session, sale_id, payment, actor_id=g.user_id)
    return jsonify({'status': 'success', 'sale': sale_to_dict(sale)})


# ============================================================================
# Queries
# ============================================================================

@sales_bp.route('', methods=['GET'])
@sales_bp.route('/', methods=['GET'])
@require_permission('sales.view')
def list_sales() -> Response:
    """List sales, newest first."""
    page, per_page, status, document_type = _list_filters()
    sales, total = _sales_service().list_sales(
        get_session(), page=page, per_page=per_page, status=status, document_type=document_type
    )
    return jsonify({
        'status': 'success',
        'sales': [sale_to_dict(sale) for sale in sales],
        'page': page,
        'per_page': per_page,
        'total': total
    })


@sales_bp.route('/<int:sale_id>', methods=['GET'])
@require_permission('sales.view')
def detail_sale(sale_id: int) -> Response:
    """Show one sale with its items and payments."""
    sale = _sales_service().get_sale(get_session(), sale_id)
    return jsonify({'status': 'success', 'sale': sale_to_dict(sale)})


@sales_bp.route('/<int:sale_id>/pdf', methods=['GET'])
@require_permission('sales.view')
def sale_pdf(sale_id: int) -> Response:
    """Download the sale as a PDF document."""
    sale = _sales_service().get_sale(get_session(), sale_id)

    business_info = {
        'name': current_app.config.get('BUSINESS_NAME', ''),
        'address': current_app.config.get('BUSINESS_ADDRESS', ''),
        'phone': current_app.config.get('BUSINESS_PHONE', ''),
        'email': current_app.config.get('BUSINESS_EMAIL', ''),
    }
    pdf_buffer = render_sale_pdf(sale, business_info)

    return send_file(
        pdf_buffer,
        mimetype='application/pdf',
        as_attachment=True,
        download_name=f"{sale.invoice_number}.pdf"
    )
