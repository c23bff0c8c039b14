"""
Unit tests for invoice PDFs and Excel exports.
"""

import os
from datetime import date

import pandas as pd
import pytest

import billing
import deliveries
import reports
from report_generator import DairyReportGenerator, lines_differ
from settings import BillingSettings


DEJAVU = "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"


@pytest.fixture
def generator(tmp_path):
    return DairyReportGenerator(output_dir=str(tmp_path), currency="Rs.")


class TestBillPdf:

    def test_pdf_written(self, db, november_entries, generator):
        bill = billing.generate_bill(db, november_entries.id, 11, 2024, discount=60, late_fee=50)
        entries = billing.bill_line_items(db, bill)
        path = generator.create_bill_pdf(bill, november_entries, entries,
                                         BillingSettings(invoice_header="Gokul Dairy"))

        assert path.endswith(f"Invoice_{bill.bill_number}_Ramesh_Kumar.pdf")
        with open(path, "rb") as f:
            assert f.read(4) == b"%PDF"

    def test_paid_bill_with_explicit_filename(self, db, november_entries, generator, tmp_path):
        bill = billing.generate_bill(db, november_entries.id, 11, 2024)
        bill = billing.mark_paid(db, bill.id, "upi", payment_date=date(2024, 12, 5))
        target = str(tmp_path / "paid.pdf")
        assert generator.create_bill_pdf(bill, november_entries, billing.bill_line_items(db, bill),
                                         output_filename=target) == target


    def test_non_latin1_text_without_unicode_font(self, db, november_entries, tmp_path):
        november_entries.name = "रमेश कुमार"
        november_entries.address = "गली नं. 4, मथुरा"
        db.update_customer(november_entries)
        generator = DairyReportGenerator(output_dir=str(tmp_path), currency="₹")
        bill = billing.generate_bill(db, november_entries.id, 11, 2024)

        path = generator.create_bill_pdf(bill, db.get_customer(november_entries.id),
                                         billing.bill_line_items(db, bill),
                                         BillingSettings(invoice_footer="धन्यवाद"))
        with open(path, "rb") as f:
            assert f.read(4) == b"%PDF"

    def test_latin1_fallback_spells_out_currency(self, generator):
        assert generator._text("Helvetica", "Amount (₹)") == "Amount (Rs.)"
        assert generator._text("Helvetica", "रमेश") == "????"
        assert generator._text("Helvetica", "José") == "José"

    @pytest.mark.skipif(not os.path.exists(DEJAVU), reason="DejaVu Sans not installed")
    def test_unicode_font_is_registered(self, db, november_entries, tmp_path):
        november_entries.name = "Łukasz Dąbrowski"
        db.update_customer(november_entries)
        generator = DairyReportGenerator(output_dir=str(tmp_path), currency="€", font_path=DEJAVU)
        bill = billing.generate_bill(db, november_entries.id, 11, 2024)

        path = generator.create_bill_pdf(bill, db.get_customer(november_entries.id),
                                         billing.bill_line_items(db, bill))
        assert path.endswith("Łukasz_Dąbrowski.pdf")
        with open(path, "rb") as f:
            assert f.read(4) == b"%PDF"
        assert generator._text("DairyUnicode", "€ Łukasz") == "€ Łukasz"


class TestLineTotals:

    def test_rows_match_fresh_bill(self, db, november_entries):
        bill = billing.generate_bill(db, november_entries.id, 11, 2024)
        assert not lines_differ(bill, billing.bill_line_items(db, bill))

    def test_entry_edited_after_billing(self, db, november_entries):
        bill = billing.generate_bill(db, november_entries.id, 11, 2024)
        entry = db.get_entries(date(2024, 11, 4), date(2024, 11, 4))[0]
        deliveries.set_extra_quantity(db, entry.id, 2)

        entries = billing.bill_line_items(db, bill)
        assert lines_differ(bill, entries)
        assert db.get_bill(bill.id).total_amount == 660


class TestExcelExports:

    def test_entries_export(self, db, november_entries, generator):
        entries = db.get_entries(date(2024, 11, 1), date(2024, 11, 30))
        path = generator.export_entries_to_excel(entries, {november_entries.id: "Ramesh Kumar"},
                                                 date(2024, 11, 1), date(2024, 11, 30))
        assert path.endswith("milk_entries_20241101_to_20241130.xlsx")

        df = pd.read_excel(path)
        assert len(df) == 2
        assert list(df["Customer"]) == ["Ramesh Kumar", "Ramesh Kumar"]
        assert df["Amount"].sum() == 660

    def test_report_export(self, db, november_entries, generator):
        rows = reports.build_report(db, date(2024, 11, 1), date(2024, 11, 30), "customer")
        df = pd.read_excel(generator.export_report_to_excel(rows, "customer"))
        assert list(df.columns) == ["Customer", "Liters", "Amount"]
        assert df.iloc[0]["Liters"] == 11
