"""
Bill PDF renderer.

Turns a persisted, fully populated Bill into a printable A4 document using
fpdf2. Pure presentation: nothing here reads or writes the database.
"""

import logging
from decimal import Decimal
from typing import Optional

from fpdf import FPDF

from app.core.config import settings
from app.models.bill import Bill

logger = logging.getLogger(__name__)


def _safe(text) -> str:
    # Core PDF fonts only cover latin-1
    return str(text).encode("latin-1", "replace").decode("latin-1")


class BillPDFRenderer:
    """Renders bills with the pharmacy header, customer block, item table and totals."""

    PAGE_WIDTH = 210
    MARGIN = 15

    PRIMARY_COLOR = (0, 102, 179)
    TEXT_COLOR = (50, 50, 50)
    MUTED_COLOR = (110, 110, 110)

    # Item table column widths (mm), total = PAGE_WIDTH - 2 * MARGIN
    COLUMNS = (("Item", 95), ("Qty", 20), ("Price", 30), ("Total", 35))

    def __init__(
        self,
        pharmacy_name: Optional[str] = None,
        tagline: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        currency: Optional[str] = None,
    ):
        self.pharmacy_name = pharmacy_name or settings.PHARMACY_NAME
        self.tagline = tagline or settings.PHARMACY_TAGLINE
        self.phone = phone or settings.PHARMACY_PHONE
        self.email = email or settings.PHARMACY_EMAIL
        self.currency = currency or settings.CURRENCY_SYMBOL

    def render(self, bill: Bill, worker_name: Optional[str] = None, employee_id: Optional[str] = None) -> bytes:
        logger.info(f"Rendering PDF for bill {bill.bill_number}")

        pdf = FPDF()
        pdf.set_margins(self.MARGIN, self.MARGIN, self.MARGIN)
        pdf.set_auto_page_break(auto=True, margin=20)
        pdf.add_page()
        pdf.set_title(_safe(f"Bill {bill.bill_number}"))

        self._add_header(pdf, bill, worker_name, employee_id)
        self._add_customer(pdf, bill)
        self._add_items(pdf, bill)
        self._add_totals(pdf, bill)
        self._add_footer(pdf, bill)

        # fpdf2's output() returns bytearray
        data = bytes(pdf.output())
        logger.info(f"Bill {bill.bill_number} PDF generated: {len(data)} bytes")
        return data

    def _money(self, amount: Decimal) -> str:
        return f"{self.currency}{Decimal(amount):.2f}"

    def _add_header(self, pdf: FPDF, bill: Bill, worker_name: Optional[str], employee_id: Optional[str]) -> None:
        top = pdf.get_y()

        pdf.set_text_color(*self.PRIMARY_COLOR)
        pdf.set_font("Helvetica", "B", 20)
        pdf.cell(100, 10, _safe(self.pharmacy_name), new_x="LMARGIN", new_y="NEXT")

        pdf.set_text_color(*self.MUTED_COLOR)
        pdf.set_font("Helvetica", size=9)
        for line in (self.tagline, f"Phone: {self.phone}", f"Email: {self.email}"):
            pdf.cell(100, 5, _safe(line), new_x="LMARGIN", new_y="NEXT")
        bottom = pdf.get_y()

        # Bill block on the right
        right_x = self.PAGE_WIDTH - self.MARGIN - 75
        pdf.set_xy(right_x, top)
        pdf.set_text_color(*self.TEXT_COLOR)
        pdf.set_font("Helvetica", "B", 13)
        pdf.cell(75, 8, _safe(f"Bill #: {bill.bill_number}"), align="R", new_x="LEFT", new_y="NEXT")
        pdf.set_font("Helvetica", size=9)
        lines = [
            f"Date: {bill.created_at.strftime('%d/%m/%Y')}",
            f"Time: {bill.created_at.strftime('%H:%M:%S')}",
        ]
        if worker_name:
            lines.append(f"Served by: {worker_name}")
            lines.append(f"Employee ID: {employee_id or 'N/A'}")
        for line in lines:
            pdf.cell(75, 5, _safe(line), align="R", new_x="LEFT", new_y="NEXT")

        pdf.set_y(max(bottom, pdf.get_y()) + 4)
        pdf.set_draw_color(*self.PRIMARY_COLOR)
        pdf.set_line_width(0.5)
        pdf.line(self.MARGIN, pdf.get_y(), self.PAGE_WIDTH - self.MARGIN, pdf.get_y())
        pdf.ln(5)

    def _add_customer(self, pdf: FPDF, bill: Bill) -> None:
        customer = bill.customer or {}
        if not customer.get("name"):
            return

        pdf.set_text_color(*self.TEXT_COLOR)
        pdf.set_font("Helvetica", "B", 11)
        pdf.cell(0, 7, "Customer Details:", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", size=9)
        pdf.cell(0, 5, _safe(f"Name: {customer['name']}"), new_x="LMARGIN", new_y="NEXT")
        if customer.get("phone"):
            pdf.cell(0, 5, _safe(f"Phone: {customer['phone']}"), new_x="LMARGIN", new_y="NEXT")
        if customer.get("email"):
            pdf.cell(0, 5, _safe(f"Email: {customer['email']}"), new_x="LMARGIN", new_y="NEXT")
        pdf.ln(4)

    def _add_items(self, pdf: FPDF, bill: Bill) -> None:
        pdf.set_text_color(*self.TEXT_COLOR)
        pdf.set_font("Helvetica", "B", 10)
        pdf.set_fill_color(235, 242, 250)
        for title, width in self.COLUMNS:
            align = "L" if title == "Item" else "R"
            pdf.cell(width, 8, title, border="B", align=align, fill=True)
        pdf.ln()

        pdf.set_font("Helvetica", size=9)
        for item in bill.items:
            label = f"{item.name} ({item.brand}) - {item.strength}"
            widths = [width for _, width in self.COLUMNS]
            pdf.cell(widths[0], 7, _safe(label)[:60])
            pdf.cell(widths[1], 7, str(item.quantity), align="R")
            pdf.cell(widths[2], 7, _safe(self._money(item.unit_price)), align="R")
            pdf.cell(widths[3], 7, _safe(self._money(item.line_total)), align="R")
            pdf.ln()
        pdf.ln(3)

    def _add_totals(self, pdf: FPDF, bill: Bill) -> None:
        label_x = self.PAGE_WIDTH - self.MARGIN - 80
        pdf.set_draw_color(*self.MUTED_COLOR)
        pdf.set_line_width(0.2)
        pdf.line(label_x, pdf.get_y(), self.PAGE_WIDTH - self.MARGIN, pdf.get_y())
        pdf.ln(2)

        rows = [("Subtotal:", self._money(bill.subtotal))]
        if bill.tax > 0:
            rate = (settings.TAX_RATE * 100).normalize()
            rows.append((f"Tax ({rate}%):", self._money(bill.tax)))
        if bill.discount > 0:
            rows.append(("Discount:", f"-{self._money(bill.discount)}"))

        pdf.set_font("Helvetica", size=10)
        for label, value in rows:
            pdf.set_x(label_x)
            pdf.cell(45, 6, label)
            pdf.cell(35, 6, _safe(value), align="R", new_x="LMARGIN", new_y="NEXT")

        pdf.set_font("Helvetica", "B", 12)
        pdf.set_x(label_x)
        pdf.cell(45, 8, "Total Amount:")
        pdf.cell(35, 8, _safe(self._money(bill.total_amount)), align="R", new_x="LMARGIN", new_y="NEXT")
        pdf.ln(4)

    def _add_footer(self, pdf: FPDF, bill: Bill) -> None:
        pdf.set_text_color(*self.TEXT_COLOR)
        pdf.set_font("Helvetica", size=9)
        method = getattr(bill.payment_method, "value", bill.payment_method)
        pdf.cell(0, 5, _safe(f"Payment Method: {method}"), new_x="LMARGIN", new_y="NEXT")
        status = getattr(bill.status, "value", bill.status)
        pdf.cell(0, 5, _safe(f"Status: {status}"), new_x="LMARGIN", new_y="NEXT")
        if bill.notes:
            pdf.multi_cell(0, 5, _safe(f"Notes: {bill.notes}"), new_x="LMARGIN", new_y="NEXT")

        pdf.ln(8)
        pdf.set_text_color(*self.MUTED_COLOR)
        pdf.set_font("Helvetica", "I", 8)
        pdf.cell(0, 4, "Thank you for your business!", align="C", new_x="LMARGIN", new_y="NEXT")
        pdf.cell(0, 4, _safe(f"Generated by {self.pharmacy_name} POS"), align="C", new_x="LMARGIN", new_y="NEXT")
