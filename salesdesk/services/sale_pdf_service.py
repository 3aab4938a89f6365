"""Invoice / quotation PDF rendering."""

from io import BytesIO
from typing import Any, Dict

from reportlab.lib.pagesizes import A4
from reportlab.lib import colors
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER

from salesdesk.models import Sale, SaleDocumentType
from salesdesk.pricing import DiscountType
from salesdesk.utils.formatters import money, percent, date_time


def _product_label(item) -> str:
    if item.product is not None:
        return item.product.name
    return f"Product #{item.product_id}"


def render_sale_pdf(sale: Sale, business_info: Dict[str, Any]) -> BytesIO:
    """
    Render a settled sale as a PDF document.

    Every figure is taken from the persisted sale; nothing is recomputed.
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=0.75*inch,
        leftMargin=0.75*inch,
        topMargin=0.75*inch,
        bottomMargin=0.75*inch
    )

    elements = []
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        'CustomTitle',
        parent=styles['Heading1'],
        fontSize=24,
        textColor=colors.HexColor('#2C3E50'),
        spaceAfter=12,
        alignment=TA_CENTER,
        fontName='Helvetica-Bold'
    )

    header_style = ParagraphStyle(
        'CustomHeader',
        parent=styles['Normal'],
        fontSize=10,
        textColor=colors.HexColor('#7F8C8D'),
        alignment=TA_CENTER,
        spaceAfter=6
    )

    # 1. Title and Business Header
    is_quotation = sale.document_type == SaleDocumentType.QUOTATION
    elements.append(Paragraph("QUOTATION" if is_quotation else "INVOICE", title_style))

    if business_info.get('name'):
        elements.append(Paragraph(f"<b>{business_info['name']}</b>", header_style))
    if business_info.get('address'):
        elements.append(Paragraph(business_info['address'], header_style))

    contact_parts = []
    if business_info.get('phone'):
        contact_parts.append(f"Tel: {business_info['phone']}")
    if business_info.get('email'):
        contact_parts.append(f"Email: {business_info['email']}")
    if contact_parts:
        elements.append(Paragraph(" | ".join(contact_parts), header_style))

    elements.append(Spacer(1, 0.3*inch))

    # 2. Document metadata
    info_data = [
        ['Number:', sale.invoice_number],
        ['Issued:', date_time(sale.created_at)],
        ['Status:', sale.status.value if sale.status else '-'],
    ]
    if is_quotation:
        info_data[2] = ['Status:', sale.quotation_status.value if sale.quotation_status else '-']
        info_data.append(['Valid until:', date_time(sale.valid_until, with_time=False)])
    if sale.customer_name:
        info_data.append(['Customer:', sale.customer_name])
    if sale.payment_method:
        info_data.append(['Payment method:', sale.payment_method])

    info_table = Table(info_data, colWidths=[2*inch, 3*inch])
    info_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (0, -1), 'RIGHT'),
        ('ALIGN', (1, 0), (1, -1), 'LEFT'),
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('TEXTCOLOR', (0, 0), (-1, -1), colors.HexColor('#34495E')),
    ]))
    elements.append(info_table)
    elements.append(Spacer(1, 0.3*inch))

    # 3. Items table
    table_data = [['Product', 'Qty', 'Unit price', 'Discount', 'Tax', 'Total']]
    for item in sale.items:
        discount = item.line_discount_amount + item.invoice_discount_amount
        table_data.append([
            _product_label(item),
            str(item.quantity),
            money(item.unit_price),
            money(discount),
            f"{money(item.line_tax_amount)} ({percent(item.tax_rate)})",
            money(item.line_total)
        ])

    items_table = Table(table_data, colWidths=[2.2*inch, 0.5*inch, 0.9*inch, 0.9*inch, 1.3*inch, 0.9*inch])
    items_table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#3498DB')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('ALIGN', (0, 0), (-1, 0), 'CENTER'),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 12),
        ('ALIGN', (1, 1), (1, -1), 'CENTER'),
        ('ALIGN', (2, 1), (-1, -1), 'RIGHT'),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#BDC3C7')),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#ECF0F1')]),
    ]))
    elements.append(items_table)
    elements.append(Spacer(1, 0.2*inch))

    # 4. Totals
    totals_data = [['Subtotal:', money(sale.subtotal)]]
    if sale.discount_total:
        label = 'Discounts:'
        if sale.invoice_discount_type == DiscountType.PERCENT:
            label = f"Discounts (invoice {percent(sale.invoice_discount_value)}):"
        totals_data.append([label, f"-{money(sale.discount_total)}"])
    totals_data.append(['Tax:', money(sale.tax_total)])
    if sale.shipping_total:
        totals_data.append(['Shipping:', money(sale.shipping_total)])
    totals_data.append(['TOTAL:', money(sale.grand_total)])
    if not is_quotation:
        totals_data.append(['Paid:', money(sale.paid_total)])
        totals_data.append(['Due:', money(sale.due_total)])

    total_index = 1 + (1 if sale.discount_total else 0) + 1 + (1 if sale.shipping_total else 0)
    totals_table = Table(totals_data, colWidths=[5.7*inch, 1*inch])
    totals_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('FONTNAME', (0, total_index), (-1, total_index), 'Helvetica-Bold'),
        ('FONTSIZE', (0, total_index), (-1, total_index), 14),
        ('TEXTCOLOR', (0, total_index), (-1, total_index), colors.HexColor('#27AE60')),
        ('BACKGROUND', (0, total_index), (-1, total_index), colors.HexColor('#E8F8F5')),
    ]))
    elements.append(totals_table)

    # 5. Payments
    if sale.payments:
        elements.append(Spacer(1, 0.3*inch))
        payment_rows = [['Payment', 'Reference', 'Amount']]
        for payment in sale.payments:
            payment_rows.append([payment.method, payment.reference or '-', money(payment.amount)])
        payments_table = Table(payment_rows, colWidths=[2*inch, 3*inch, 1.7*inch])
        payments_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('ALIGN', (2, 0), (2, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#BDC3C7')),
        ]))
        elements.append(payments_table)

    elements.append(Spacer(1, 0.4*inch))
    footer_style = ParagraphStyle('Footer', parent=styles['Normal'], fontSize=9, textColor=colors.HexColor('#95A5A6'), alignment=TA_CENTER)
    footer_text = "<i>Not a tax invoice.</i>" if is_quotation else "Thank you for your purchase."
    if sale.notes:
        footer_text += f"<br/><br/><b>Notes:</b> {sale.notes}"
    elements.append(Paragraph(footer_text, footer_style))

    doc.build(elements)
    buffer.seek(0)
    return buffer
