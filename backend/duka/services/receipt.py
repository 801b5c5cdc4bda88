"""
销售小票 PDF

小票窄版（80mm）排版；内置 Helvetica 字体不含中文，票面文字使用英文。
"""

from io import BytesIO
from datetime import datetime
from decimal import Decimal

from reportlab.lib import colors
from reportlab.lib.units import mm
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.enums import TA_CENTER
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

RECEIPT_WIDTH = 80 * mm

PAYMENT_LABELS = {
    "CASH": "Cash",
    "CARD": "Card",
    "MPESA": "M-Pesa",
}


def _fmt(amount, currency: str) -> str:
    return f"{currency} {Decimal(str(amount or 0)):,.2f}"


def build_receipt_pdf(sale, organization) -> bytes:
    """生成销售小票，sale 需已加载 items"""
    currency = sale.currency or organization.currency
    buffer = BytesIO()

    title = ParagraphStyle("title", fontName="Helvetica-Bold", fontSize=12, alignment=TA_CENTER, leading=15)
    small = ParagraphStyle("small", fontName="Helvetica", fontSize=7.5, alignment=TA_CENTER, leading=9)

    story = [
        Paragraph(organization.name, title),
        Paragraph(f"Receipt {sale.sale_number}", small),
        Paragraph((sale.completed_at or sale.created_at or datetime.utcnow()).strftime("%d/%m/%Y %H:%M"), small),
        Spacer(1, 3 * mm),
    ]

    rows = [["Item", "Qty", "Price", "Total"]]
    for item in sale.items:
        rows.append([
            (item.product_name or f"#{item.product_id}")[:22],
            str(item.quantity),
            f"{item.unit_price:,.2f}",
            f"{item.line_total:,.2f}",
        ])
    items_table = Table(rows, colWidths=[30 * mm, 8 * mm, 15 * mm, 17 * mm])
    items_table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
        ("FONTSIZE", (0, 0), (-1, -1), 7.5),
        ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
        ("LINEBELOW", (0, 0), (-1, 0), 0.5, colors.black),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 1.5),
        ("TOPPADDING", (0, 0), (-1, -1), 1.5),
    ]))
    story.append(items_table)
    story.append(Spacer(1, 2 * mm))

    summary = [
        ["Subtotal", _fmt(sale.subtotal, currency)],
        [f"Discount ({Decimal(str(sale.discount_rate or 0)) * 100:.1f}%)", "-" + _fmt(sale.discount_amount, currency)],
        [f"Tax ({Decimal(str(sale.tax_rate or 0)) * 100:.1f}%)", _fmt(sale.tax_amount, currency)],
        ["TOTAL", _fmt(sale.total, currency)],
        [f"Paid ({PAYMENT_LABELS.get(sale.payment_method, sale.payment_method)})", _fmt(sale.amount_paid, currency)],
    ]
    if sale.payment_method == "CASH":
        summary.append(["Change", _fmt(sale.change_due, currency)])
    if sale.mpesa_receipt:
        summary.append(["M-Pesa Ref", sale.mpesa_receipt])
    summary_table = Table(summary, colWidths=[35 * mm, 35 * mm])
    summary_table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
        ("FONTNAME", (0, 3), (-1, 3), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("ALIGN", (1, 0), (1, -1), "RIGHT"),
        ("LINEABOVE", (0, 3), (-1, 3), 0.5, colors.black),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 1.5),
        ("TOPPADDING", (0, 0), (-1, -1), 1.5),
    ]))
    story.append(summary_table)
    story.append(Spacer(1, 4 * mm))
    story.append(Paragraph("Thank you for shopping with us", small))

    # 高度随明细行数变化
    height = (90 + 6 * len(rows) + 6 * len(summary)) * mm
    doc = SimpleDocTemplate(
        buffer,
        pagesize=(RECEIPT_WIDTH, height),
        leftMargin=4 * mm,
        rightMargin=4 * mm,
        topMargin=5 * mm,
        bottomMargin=5 * mm,
        title=f"Receipt {sale.sale_number}",
    )
    doc.build(story)
    return buffer.getvalue()
