"""
Invoice PDF Generator
Renders an invoice with its line items, totals and payments using reportlab
"""

import io
import logging
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ...models import Organization
from ...models_invoice import Invoice
from .calculations import format_cents

logger = logging.getLogger(__name__)


class InvoicePDFGenerator:
    """Generate a printable invoice"""

    def __init__(self, invoice: Invoice, issuer: Organization, client: Organization):
        self.invoice = invoice
        self.issuer = issuer
        self.client = client

        self.page_width, self.page_height = letter
        self.margin = 0.75 * inch
        self.content_width = self.page_width - (2 * self.margin)

        self.brand_color = colors.HexColor(issuer.brand_color or "#1e40af")
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

    def _money(self, cents: int) -> str:
        return format_cents(cents, self.invoice.currency or "USD")

    def generate(self) -> bytes:
        invoice = self.invoice
        logger.info(f"📄 Generating PDF for invoice {invoice.invoice_number}")

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Invoice {invoice.invoice_number}",
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "InvoiceTitle", parent=styles["Heading1"], fontSize=24, textColor=self.brand_color, spaceAfter=12
        )
        heading_style = ParagraphStyle(
            "InvoiceHeading",
            parent=styles["Heading2"],
            fontSize=13,
            textColor=self.dark_gray,
            spaceAfter=8,
            spaceBefore=16,
        )
        body_style = ParagraphStyle(
            "InvoiceBody", parent=styles["Normal"], fontSize=10, textColor=self.dark_gray, spaceAfter=6
        )

        story = [Paragraph("INVOICE", title_style)]

        info_data = [
            ["Invoice #:", invoice.invoice_number],
            ["From:", self.issuer.name],
            ["Bill To:", self.client.name],
            ["Issue Date:", invoice.issue_date.strftime("%B %d, %Y")],
            ["Due Date:", invoice.due_date.strftime("%B %d, %Y")],
            ["Status:", invoice.status.replace("_", " ").title()],
        ]
        info_table = Table(info_data, colWidths=[1.5 * inch, 4.5 * inch])
        info_table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 10),
                    ("FONT", (1, 0), (1, -1), "Helvetica", 10),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        story.append(info_table)
        story.append(Spacer(1, 0.3 * inch))

        # Line items
        table_data = [["Description", "Qty", "Unit Price", "Amount"]]
        for item in invoice.line_items:
            quantity = f"{item.quantity:g}"
            table_data.append(
                [
                    Paragraph(escape(item.description), body_style),
                    quantity,
                    self._money(item.unit_price_cents),
                    self._money(item.amount_cents),
                ]
            )
        items_table = Table(
            table_data,
            colWidths=[3.4 * inch, 0.8 * inch, 1.2 * inch, 1.2 * inch],
            repeatRows=1,
        )
        items_table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), self.brand_color),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 10),
                    ("FONT", (1, 1), (-1, -1), "Helvetica", 9),
                    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, self.light_gray]),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                    ("TOPPADDING", (0, 0), (-1, -1), 6),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        story.append(items_table)
        story.append(Spacer(1, 0.2 * inch))

        # Totals
        totals = [["Subtotal", self._money(invoice.subtotal_cents)]]
        if invoice.discount_cents:
            totals.append(["Discount", f"-{self._money(invoice.discount_cents)}"])
        if invoice.tax_cents:
            totals.append([f"Tax ({invoice.tax_rate / 100:g}%)", self._money(invoice.tax_cents)])
        totals.append(["Total", self._money(invoice.total_cents)])
        if invoice.amount_paid_cents:
            totals.append(["Paid", f"-{self._money(invoice.amount_paid_cents)}"])
        totals.append(["Balance Due", self._money(invoice.balance_due_cents)])

        totals_table = Table(totals, colWidths=[5.4 * inch, 1.2 * inch])
        totals_table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (-1, -1), "Helvetica", 10),
                    ("FONT", (0, -1), (-1, -1), "Helvetica-Bold", 11),
                    ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
                    ("LINEABOVE", (0, -1), (-1, -1), 1, self.dark_gray),
                ]
            )
        )
        story.append(totals_table)

        if invoice.notes:
            story.append(Paragraph("NOTES", heading_style))
            story.append(Paragraph(escape(invoice.notes), body_style))
        if invoice.terms:
            story.append(Paragraph("TERMS", heading_style))
            story.append(Paragraph(escape(invoice.terms), body_style))
        if invoice.footer:
            story.append(Spacer(1, 0.4 * inch))
            story.append(
                Paragraph(
                    f"<i>{escape(invoice.footer)}</i>",
                    ParagraphStyle("Footer", parent=body_style, fontSize=8, textColor=colors.grey, alignment=1),
                )
            )

        doc.build(story, onFirstPage=self._add_page_number, onLaterPages=self._add_page_number)
        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"✅ Generated invoice PDF ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    def _add_page_number(self, canvas_obj, doc):
        canvas_obj.setFont("Helvetica", 9)
        canvas_obj.setFillColor(colors.grey)
        canvas_obj.drawRightString(
            self.page_width - self.margin, self.margin / 2, f"Page {canvas_obj.getPageNumber()}"
        )
