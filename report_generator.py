import logging
import os
import tempfile
from datetime import date
from typing import List, Optional, Dict

import pandas as pd
from fpdf import FPDF, XPos, YPos

from config import Config
from models import Bill, Customer, MilkEntry, ReportRow
from settings import BillingSettings

logger = logging.getLogger(__name__)

NEXT_LINE = {"new_x": XPos.LMARGIN, "new_y": YPos.NEXT}

UNICODE_FAMILY = "DairyUnicode"

CURRENCY_FALLBACKS = {"\u20b9": "Rs.", "\u20ac": "EUR"}


def lines_differ(bill: Bill, entries: List[MilkEntry]) -> bool:
    """True when the invoice rows no longer sum to the frozen bill subtotal."""
    return round(sum(e.amount for e in entries), 2) != round(bill.total_amount, 2)


class DairyReportGenerator:
    def __init__(self, output_dir: Optional[str] = None, currency: Optional[str] = None,
                 font_path: Optional[str] = None, bold_font_path: Optional[str] = None):
        """Initialize the report generator."""
        self.output_dir = output_dir or Config.EXPORT_FOLDER or tempfile.gettempdir()
        self.currency = currency or Config.CURRENCY_SYMBOL
        self.font_path = font_path or Config.PDF_FONT_PATH
        self.bold_font_path = bold_font_path or Config.PDF_FONT_BOLD_PATH or self.font_path

    def _output_path(self, filename):
        os.makedirs(self.output_dir, exist_ok=True)
        return os.path.join(self.output_dir, filename)

    def _setup_font(self, pdf: FPDF) -> str:
        """Register the configured Unicode font, else use core Helvetica."""
        if not self.font_path:
            return "Helvetica"
        pdf.add_font(UNICODE_FAMILY, "", self.font_path)
        pdf.add_font(UNICODE_FAMILY, "B", self.bold_font_path)
        return UNICODE_FAMILY

    def _text(self, family: str, value) -> str:
        text = str(value)
        if family != "Helvetica":
            return text
        # Core fonts only cover Latin-1
        for symbol, spelled in CURRENCY_FALLBACKS.items():
            text = text.replace(symbol, spelled)
        return text.encode("latin-1", "replace").decode("latin-1")

    def create_bill_pdf(self, bill: Bill, customer: Customer, entries: List[MilkEntry],
                        billing: Optional[BillingSettings] = None,
                        output_filename: Optional[str] = None) -> str:
        """Create a PDF invoice for a bill with one row per milk entry.

        Text outside Latin-1 needs a Unicode font (``font_path`` or
        PDF_FONT_PATH); without one such characters are printed as "?".
        If the entries no longer add up to the billed subtotal, a note says
        the billed amounts apply.
        """
        billing = billing or BillingSettings()
        pdf = FPDF(orientation="P", unit="mm", format="A4")
        pdf.add_page()
        family = self._setup_font(pdf)

        def cell(w, h, txt="", **kwargs):
            pdf.cell(w, h, self._text(family, txt), **kwargs)

        # Title
        pdf.set_font(family, "B", 18)
        cell(0, 12, billing.invoice_header, align="C", **NEXT_LINE)
        pdf.set_font(family, "", 10)
        cell(0, 6, "Farm Management System", align="C", **NEXT_LINE)
        pdf.line(10, pdf.get_y() + 2, 200, pdf.get_y() + 2)
        pdf.ln(6)

        # Invoice details
        pdf.set_font(family, "", 12)
        cell(95, 8, f"Invoice: {bill.bill_number}")
        cell(95, 8, f"Date: {date.today().strftime('%d-%m-%Y')}", align="R", **NEXT_LINE)
        cell(0, 8, f"Period: {bill.period_label}", **NEXT_LINE)
        pdf.ln(2)

        # Customer details
        pdf.set_fill_color(245, 245, 245)
        pdf.set_font(family, "B", 12)
        cell(0, 8, f"Bill To: {customer.name}", fill=True, **NEXT_LINE)
        pdf.set_font(family, "", 10)
        if customer.phone:
            cell(0, 6, customer.phone, fill=True, **NEXT_LINE)
        if customer.address:
            cell(0, 6, customer.address, fill=True, **NEXT_LINE)
        pdf.ln(5)

        # Entries table
        widths = (28, 24, 24, 24, 24, 26, 40)
        headers = ("Date", "Session", "Regular", "Extra", "Total", "Rate", f"Amount ({self.currency})")
        pdf.set_font(family, "B", 10)
        for width, header in zip(widths, headers):
            cell(width, 8, header, border=1, align="C")
        pdf.ln()

        pdf.set_font(family, "", 9)
        for entry in entries:
            values = (
                entry.date.strftime("%d-%m-%Y"),
                entry.session.capitalize(),
                f"{entry.regular_quantity:.2f} L",
                f"{entry.extra_quantity:.2f} L",
                f"{entry.quantity:.2f} L",
                f"{entry.rate_per_liter:.2f}",
                f"{entry.amount:.2f}",
            )
            for width, value in zip(widths, values):
                cell(width, 7, value, border=1, align="C")
            pdf.ln()

        if lines_differ(bill, entries):
            pdf.ln(2)
            pdf.set_font(family, "", 8)
            cell(0, 5, "Entries changed after billing; the billed amounts below apply.", **NEXT_LINE)

        # Summary
        pdf.ln(6)
        summary = [
            ("Total Liters:", f"{bill.total_liters:.2f} L"),
            ("Subtotal:", f"{self.currency} {bill.total_amount:.2f}"),
        ]
        if bill.discount > 0:
            summary.append(("Discount:", f"-{self.currency} {bill.discount:.2f}"))
        if bill.late_fee > 0:
            summary.append(("Late Fee:", f"+{self.currency} {bill.late_fee:.2f}"))

        pdf.set_font(family, "", 11)
        for label, value in summary:
            cell(130, 7, "")
            cell(30, 7, label)
            cell(30, 7, value, align="R", **NEXT_LINE)

        pdf.set_font(family, "B", 12)
        cell(130, 9, "")
        cell(30, 9, "Total Amount:")
        cell(30, 9, f"{self.currency} {bill.final_amount:.2f}", align="R", **NEXT_LINE)

        if bill.is_paid:
            pdf.set_font(family, "", 10)
            paid_on = bill.payment_date.strftime("%d-%m-%Y") if bill.payment_date else ""
            cell(0, 8, f"Paid via {(bill.payment_mode or '').upper()} on {paid_on}", align="R",
                 **NEXT_LINE)

        # Footer
        pdf.ln(15)
        pdf.set_font(family, "", 10)
        cell(0, 8, billing.invoice_footer, align="C", **NEXT_LINE)

        if not output_filename:
            safe_name = customer.name.replace(" ", "_")
            output_filename = self._output_path(f"Invoice_{bill.bill_number}_{safe_name}.pdf")

        pdf.output(output_filename)
        logger.info(f"Invoice PDF written: {output_filename}")
        return output_filename

    def export_entries_to_excel(self, entries: List[MilkEntry], customers: Optional[Dict[int, str]] = None,
                                start_date: Optional[date] = None, end_date: Optional[date] = None,
                                output_filename: Optional[str] = None) -> str:
        """Export milk entries to Excel."""
        customers = customers or {}
        data = []
        for e in entries:
            data.append({
                'Date': e.date,
                'Customer': customers.get(e.customer_id, e.customer_id),
                'Session': e.session,
                'Regular (L)': e.regular_quantity,
                'Extra (L)': e.extra_quantity,
                'Total (L)': round(e.quantity, 2),
                'Rate': e.rate_per_liter,
                'Amount': round(e.amount, 2),
                'Delivered': "Yes" if e.delivered else "No",
            })

        df = pd.DataFrame(data, columns=['Date', 'Customer', 'Session', 'Regular (L)', 'Extra (L)',
                                         'Total (L)', 'Rate', 'Amount', 'Delivered'])

        if not output_filename:
            date_str = ""
            if start_date and end_date:
                date_str = f"_{start_date.strftime('%Y%m%d')}_to_{end_date.strftime('%Y%m%d')}"
            output_filename = self._output_path(f"milk_entries{date_str}.xlsx")

        df.to_excel(output_filename, index=False)
        return output_filename

    def export_report_to_excel(self, rows: List[ReportRow], group_by: str,
                               output_filename: Optional[str] = None) -> str:
        """Export report rows to Excel."""
        df = pd.DataFrame(
            [{group_by.capitalize(): r.label, 'Liters': r.total_liters, 'Amount': r.total_amount}
             for r in rows],
            columns=[group_by.capitalize(), 'Liters', 'Amount'],
        )

        if not output_filename:
            output_filename = self._output_path(f"report_by_{group_by}.xlsx")

        df.to_excel(output_filename, index=False)
        return output_filename
