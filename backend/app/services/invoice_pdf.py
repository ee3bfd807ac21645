from __future__ import annotations

from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Table, TableStyle

from app.models.facility import Facility
from app.models.invoice import Invoice, InvoiceStatus
from app.models.patient import Patient


def _format_money(currency: str, amount) -> str:
    return f"{currency} {amount:,.2f}"


def _draw_header(pdf: canvas.Canvas, facility: Facility, title: str) -> None:
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(20 * mm, 280 * mm, facility.name)
    pdf.setFont("Helvetica", 10)
    y = 274 * mm
    for line in (facility.address, facility.phone, facility.email):
        if line:
            pdf.drawString(20 * mm, y, line)
            y -= 4 * mm
    pdf.setFont("Helvetica-Bold", 14)
    pdf.drawRightString(190 * mm, 280 * mm, title)
    pdf.setStrokeColor(colors.lightgrey)
    pdf.line(20 * mm, 258 * mm, 190 * mm, 258 * mm)


def _draw_patient_block(pdf: canvas.Canvas, patient: Patient) -> None:
    pdf.setFont("Helvetica-Bold", 11)
    pdf.drawString(20 * mm, 245 * mm, "Billed to")
    pdf.setFont("Helvetica", 10)
    pdf.drawString(20 * mm, 240 * mm, f"{patient.full_name} ({patient.patient_code})")
    y = 235 * mm
    for line in (patient.address, patient.phone, patient.email):
        if line:
            pdf.drawString(20 * mm, y, line)
            y -= 5 * mm


def _draw_invoice_meta(pdf: canvas.Canvas, invoice: Invoice) -> None:
    pdf.setFont("Helvetica-Bold", 10)
    pdf.drawString(120 * mm, 245 * mm, f"Invoice: {invoice.invoice_number}")
    pdf.setFont("Helvetica", 10)
    pdf.drawString(120 * mm, 240 * mm, f"Issued: {invoice.created_at:%Y-%m-%d}")
    pdf.drawString(120 * mm, 235 * mm, f"Status: {invoice.status.value}")
    if invoice.paid_at:
        pdf.drawString(120 * mm, 230 * mm, f"Paid: {invoice.paid_at:%Y-%m-%d %H:%M}")


def _draw_items_table(pdf: canvas.Canvas, invoice: Invoice, currency: str) -> None:
    data = [["Service", "Qty", "Unit price", "Total"]]
    for item in invoice.items:
        label = item.service_name
        if item.description:
            label = f"{label} - {item.description}"
        data.append(
            [
                label,
                str(item.quantity),
                _format_money(currency, item.unit_price),
                _format_money(currency, item.total_price),
            ]
        )
    table = Table(data, colWidths=[85 * mm, 15 * mm, 35 * mm, 35 * mm])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f0f0f0")),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.lightgrey),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
            ]
        )
    )
    _, height = table.wrapOn(pdf, 170 * mm, 100 * mm)
    table.drawOn(pdf, 20 * mm, 215 * mm - height)


def _draw_totals(pdf: canvas.Canvas, invoice: Invoice, currency: str, y: float) -> None:
    rows = [
        ("Subtotal", invoice.subtotal),
        (f"Discount ({invoice.discount_percentage:.2f}%)", invoice.discount_amount),
        ("Total", invoice.total_amount),
    ]
    for index, (label, amount) in enumerate(rows):
        pdf.setFont("Helvetica-Bold" if label == "Total" else "Helvetica", 10)
        pdf.drawRightString(160 * mm, y - index * 12, label)
        pdf.drawRightString(190 * mm, y - index * 12, _format_money(currency, amount))


def _draw_paid_stamp(pdf: canvas.Canvas) -> None:
    pdf.saveState()
    pdf.setFont("Helvetica-Bold", 60)
    pdf.setFillColor(colors.lightgrey)
    pdf.translate(105 * mm, 150 * mm)
    pdf.rotate(30)
    pdf.drawCentredString(0, 0, "PAID")
    pdf.restoreState()


def build_invoice_pdf(invoice: Invoice, *, facility: Facility, patient: Patient, currency: str) -> bytes:
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    _draw_header(pdf, facility, "Invoice")
    _draw_patient_block(pdf, patient)
    _draw_invoice_meta(pdf, invoice)
    _draw_items_table(pdf, invoice, currency)
    _draw_totals(pdf, invoice, currency, 100 * mm)
    if invoice.status == InvoiceStatus.paid:
        _draw_paid_stamp(pdf)
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()
