import streamlit as st
import pandas as pd
import os
import base64
from datetime import date, timedelta

import billing
import deliveries
import reports
from config import Config, setup_logging
from database import DairyDatabase
from errors import DairyError
from models import Customer, Expense, ExpenseCategory, MILK_TYPES, PAYMENT_MODES
from report_generator import DairyReportGenerator, lines_differ
from settings import SettingsStore

# Set page title and favicon
st.set_page_config(
    page_title="Dairy Billing",
    page_icon="🐄",
    layout="wide"
)

setup_logging()


# Initialize database
@st.cache_resource
def get_database():
    return DairyDatabase()


# Settings are loaded once per process and reloaded by SettingsStore.save
@st.cache_resource
def get_settings():
    return SettingsStore(get_database())


# Initialize report generator
@st.cache_resource
def get_report_generator():
    return DairyReportGenerator()


db = get_database()
settings = get_settings()
report_gen = get_report_generator()


def get_download_link(file_path, link_text):
    """Generate a download link for a file."""
    with open(file_path, "rb") as f:
        data = f.read()
    b64 = base64.b64encode(data).decode()
    href = f'<a href="data:application/octet-stream;base64,{b64}" download="{os.path.basename(file_path)}">{link_text}</a>'
    return href


def customer_names():
    return {c.id: c.name for c in db.get_all_customers()}


def month_picker(key):
    today = date.today()
    col1, col2 = st.columns(2)
    with col1:
        month = st.selectbox("Month", options=list(range(1, 13)), index=today.month - 1, key=f"{key}_month")
    with col2:
        year = st.number_input("Year", min_value=2000, max_value=2100, value=today.year, step=1, key=f"{key}_year")
    return int(month), int(year)


# Main app structure
def main():
    st.title(f"🐄 {settings.app.app_name}")

    pages = {
        "Dashboard": show_dashboard,
        "Milk Entry": show_milk_entry_page,
        "Bills": show_bills_page,
        "Payments": show_payments_page,
        "Customers": show_customers_page,
        "Expenses": show_expenses_page,
        "Reports": show_reports_page,
        "Settings": show_settings_page,
    }
    page = st.sidebar.radio("Go to", list(pages))
    pages[page]()


# Dashboard page
def show_dashboard():
    st.header("Dashboard")
    summary = reports.dashboard_summary(db)

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Active Customers", summary["active_customers"])
    with col2:
        sessions = " | ".join(f"{k.capitalize()}: {v:.1f} L" for k, v in summary["today_by_session"].items())
        st.metric("Today's Milk", f"{summary['today_liters']:.1f} L", help=sessions or None)
    with col3:
        st.metric("Monthly Revenue", f"{Config.CURRENCY_SYMBOL} {summary['month_revenue']:,.2f}")
    with col4:
        st.metric("Unpaid Bills", summary["unpaid_bills"],
                  help=f"{Config.CURRENCY_SYMBOL} {summary['unpaid_amount']:,.2f}")

    today = date.today()
    start = (today.replace(day=1) - timedelta(days=150)).replace(day=1)
    st.subheader("Revenue vs Expenses")
    profit = reports.profit_by_month(db, start, today)
    st.bar_chart(profit.set_index("Month")[["Revenue", "Expenses"]])


# Milk entry page
def show_milk_entry_page():
    st.header("Daily Milk Entry")

    col1, col2 = st.columns(2)
    with col1:
        entry_date = st.date_input("Date", value=date.today())
    with col2:
        session = st.radio("Session", billing.sessions_for(Config.ENTRIES_PER_DAY), horizontal=True)

    if st.button("Load customers for this session"):
        try:
            deliveries.seed_day(db, entry_date, session)
        except DairyError as e:
            st.error(str(e))

    entries = db.get_entries(entry_date, entry_date, session=session)
    names = customer_names()
    if not entries:
        st.info("No entries for this session yet.")
        return

    for entry in entries:
        c1, c2, c3, c4 = st.columns([3, 2, 2, 1])
        with c1:
            st.write(f"**{names.get(entry.customer_id, 'Unknown')}** - {entry.regular_quantity:.2f} L")
        with c2:
            extra = st.number_input("Extra (L)", min_value=0.0, step=0.5, value=float(entry.extra_quantity),
                                    key=f"extra_{entry.id}")
            if extra != entry.extra_quantity:
                deliveries.set_extra_quantity(db, entry.id, extra)
                st.rerun()
        with c3:
            st.write(f"{Config.CURRENCY_SYMBOL} {entry.amount:.2f}")
        with c4:
            label = "Delivered" if entry.delivered else "Pending"
            if st.button(label, key=f"toggle_{entry.id}"):
                deliveries.toggle_delivery(db, entry.customer_id, entry_date, session)
                st.rerun()

    totals = billing.summarize_entries(entries, None, entry_date, entry_date)
    st.metric("Delivered this session", f"{totals.total_liters:.2f} L")


# Bills page
def show_bills_page():
    st.header("Monthly Bills")

    if st.session_state.get("auto_billed") != date.today():
        try:
            created = billing.generate_due_bills(db, settings.billing)
        except DairyError as e:
            st.error(str(e))
        else:
            st.session_state.auto_billed = date.today()
            if created:
                st.info(f"{len(created)} bills generated automatically for last month.")

    tab1, tab2 = st.tabs(["Generate Bills", "View Bills"])

    with tab1:
        show_generate_bills_form()

    with tab2:
        show_bills_list()


def request_generation(kind):
    # on_click runs before the rerun, so the buttons below are drawn disabled
    st.session_state.generating = kind


def run_generation(kind, customer_id, month, year):
    try:
        if kind == "one":
            bill = billing.generate_bill(db, customer_id, month, year, billing=settings.billing)
            return "success", f"Bill {bill.bill_number} generated: {Config.CURRENCY_SYMBOL} {bill.final_amount:.2f}"
        created, skipped = billing.generate_all_bills(db, month, year, billing=settings.billing)
        return "success", f"{len(created)} bills generated, {len(skipped)} skipped."
    except DairyError as e:
        return "error", str(e)


def show_generate_bills_form():
    st.subheader("Generate Bills")
    month, year = month_picker("generate")
    customers = db.get_all_customers(active_only=True)

    if not customers:
        st.warning("No customers found. Please add a customer first.")
        return

    customer_id = st.selectbox(
        "Select Customer",
        options=[c.id for c in customers],
        format_func=lambda x: next((c.name for c in customers if c.id == x), "")
    )

    busy = st.session_state.get("generating")
    col1, col2 = st.columns(2)
    with col1:
        st.button("Generate Bill", disabled=bool(busy), on_click=request_generation, args=("one",))
    with col2:
        st.button("Generate All Bills", disabled=bool(busy), on_click=request_generation, args=("all",))

    if busy:
        with st.spinner("Generating bills..."):
            st.session_state.generate_result = run_generation(busy, customer_id, month, year)
        st.session_state.generating = None
        st.rerun()

    result = st.session_state.pop("generate_result", None)
    if result:
        level, message = result
        getattr(st, level)(message)


def show_bills_list():
    st.subheader("Bills")
    month, year = month_picker("list")
    status = st.selectbox("Status", ["all", "paid", "unpaid"])
    search = st.text_input("Search by customer or bill number")

    bills = db.get_bills(month=month, year=year, status=None if status == "all" else status)
    names = customer_names()
    if search:
        query = search.lower()
        bills = [b for b in bills if query in names.get(b.customer_id, "").lower() or query in b.bill_number.lower()]

    stats = reports.bill_stats(bills)
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Total Bills", stats["total_bills"])
    col2.metric(f"Collected ({stats['paid_count']})", f"{Config.CURRENCY_SYMBOL} {stats['collected']:,.2f}")
    col3.metric("Pending", f"{Config.CURRENCY_SYMBOL} {stats['pending']:,.2f}")
    col4.metric("Total Revenue", f"{Config.CURRENCY_SYMBOL} {stats['total_amount']:,.2f}")

    if not bills:
        st.info("No bills found for the selected criteria.")
        return

    st.dataframe(pd.DataFrame([{
        "Bill": b.bill_number,
        "Customer": names.get(b.customer_id, "Unknown"),
        "Period": b.period_label,
        "Liters": b.total_liters,
        "Amount": b.final_amount,
        "Status": b.status,
        "Payment Mode": b.payment_mode or "",
    } for b in bills]))

    bill_id = st.selectbox("Select Bill", options=[b.id for b in bills],
                           format_func=lambda x: next((b.bill_number for b in bills if b.id == x), ""))
    bill = next(b for b in bills if b.id == bill_id)

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Download Invoice"):
            entries = billing.bill_line_items(db, bill)
            if lines_differ(bill, entries):
                st.warning("Entries changed after this bill was generated; the invoice shows the billed amounts.")
            pdf_path = report_gen.create_bill_pdf(bill, db.get_customer(bill.customer_id), entries,
                                                  settings.billing)
            st.markdown(get_download_link(pdf_path, "Download PDF Invoice"), unsafe_allow_html=True)
    with col2:
        if not bill.is_paid:
            mode = st.selectbox("Payment Mode", PAYMENT_MODES)
            if st.button("Mark as Paid"):
                try:
                    billing.mark_paid(db, bill.id, mode, record_payment=True)
                    st.success(f"Bill {bill.bill_number} marked as paid")
                    st.rerun()
                except DairyError as e:
                    st.error(str(e))


# Payments page
def show_payments_page():
    st.header("Payments")

    col1, col2 = st.columns(2)
    with col1:
        start_date = st.date_input("From Date", value=date.today() - timedelta(days=30))
    with col2:
        end_date = st.date_input("To Date", value=date.today())

    payments = db.get_payments(start_date, end_date)
    totals = reports.payment_mode_totals(payments)

    cols = st.columns(len(totals) + 1)
    cols[0].metric("Total Collected", f"{Config.CURRENCY_SYMBOL} {sum(totals.values()):,.2f}")
    for col, (mode, amount) in zip(cols[1:], totals.items()):
        col.metric(mode.upper(), f"{Config.CURRENCY_SYMBOL} {amount:,.2f}")

    if payments:
        names = customer_names()
        st.dataframe(pd.DataFrame([{
            "Date": p.payment_date,
            "Customer": names.get(p.customer_id, "Unknown"),
            "Bill": p.bill_id,
            "Amount": p.amount,
            "Mode": p.payment_mode,
            "Notes": p.notes or "",
        } for p in payments]))
    else:
        st.info("No payments found for the selected period.")


# Customers page
def show_customers_page():
    st.header("Customer Management")

    tab1, tab2, tab3 = st.tabs(["View Customers", "Add Customer", "Edit Customer"])

    with tab1:
        show_customers_list()

    with tab2:
        show_add_customer_form()

    with tab3:
        show_edit_customer_form()


def show_customers_list():
    col1, col2 = st.columns([3, 1])
    with col1:
        search = st.text_input("Search by name or phone")
    with col2:
        milk_type = st.selectbox("Milk Type", ["all"] + list(MILK_TYPES), key="customer_milk_filter")

    customers = db.find_customers(search, None if milk_type == "all" else milk_type)
    if not customers:
        st.info("No customers found. Add a customer to get started.")
        return

    st.dataframe(pd.DataFrame([{
        "ID": c.id,
        "Name": c.name,
        "Phone": c.phone,
        "Milk Type": c.milk_type,
        "Daily (L)": c.daily_quantity,
        "Rate": c.rate_per_liter,
        "Active": c.is_active,
    } for c in customers]))

    customer_id = st.selectbox("Customer", options=[c.id for c in customers],
                               format_func=lambda x: next((c.name for c in customers if c.id == x), ""),
                               key="toggle_customer")
    customer = next(c for c in customers if c.id == customer_id)
    if st.button("Deactivate" if customer.is_active else "Activate"):
        db.set_customer_active(customer.id, not customer.is_active)
        st.rerun()


def show_edit_customer_form():
    customers = db.get_all_customers()
    if not customers:
        st.info("No customers to edit.")
        return

    customer_id = st.selectbox("Customer", options=[c.id for c in customers],
                               format_func=lambda x: next((c.name for c in customers if c.id == x), ""),
                               key="edit_customer")
    customer = next(c for c in customers if c.id == customer_id)

    with st.form(f"edit_customer_form_{customer.id}"):
        name = st.text_input("Customer Name", value=customer.name, key=f"edit_name_{customer.id}")
        phone = st.text_input("Phone Number", value=customer.phone or "", key=f"edit_phone_{customer.id}")
        address = st.text_area("Address", value=customer.address or "", key=f"edit_address_{customer.id}")
        milk_type = st.radio("Milk Type", MILK_TYPES, index=MILK_TYPES.index(customer.milk_type),
                             horizontal=True, key=f"edit_milk_type_{customer.id}")
        daily_quantity = st.number_input("Daily Quantity (L)", min_value=0.0, step=0.5,
                                         value=float(customer.daily_quantity), key=f"edit_daily_{customer.id}")
        rate = st.number_input("Rate per liter", min_value=0.0, step=1.0, value=float(customer.rate_per_liter),
                               key=f"edit_rate_{customer.id}")
        is_active = st.checkbox("Active", value=customer.is_active, key=f"edit_active_{customer.id}")

        if st.form_submit_button("Save Changes"):
            if not name:
                st.error("Customer name is required.")
            else:
                db.update_customer(Customer(
                    id=customer.id,
                    name=name,
                    phone=phone,
                    address=address,
                    milk_type=milk_type,
                    daily_quantity=daily_quantity,
                    rate_per_liter=rate,
                    is_active=is_active,
                ))
                st.success(f"Customer '{name}' updated.")


def show_add_customer_form():
    with st.form("add_customer_form"):
        name = st.text_input("Customer Name")
        phone = st.text_input("Phone Number")
        address = st.text_area("Address")
        milk_type = st.radio("Milk Type", MILK_TYPES, horizontal=True)
        daily_quantity = st.number_input("Daily Quantity (L)", min_value=0.0, step=0.5)
        rate = st.number_input("Rate per liter (0 uses the default rate)", min_value=0.0, step=1.0)

        submit = st.form_submit_button("Add Customer")

        if submit:
            if name:
                customer = Customer(
                    name=name,
                    phone=phone,
                    address=address,
                    milk_type=milk_type,
                    daily_quantity=daily_quantity,
                    rate_per_liter=rate or settings.milk_rates.rate_for(milk_type),
                )
                db.add_customer(customer)
                st.success(f"Customer '{name}' added successfully!")
            else:
                st.error("Customer name is required.")


# Expenses page
def show_expenses_page():
    st.header("Expenses")

    categories = db.get_expense_categories()
    with st.form("add_expense_form"):
        category_id = st.selectbox("Category", options=[None] + [c.id for c in categories],
                                   format_func=lambda x: next((c.name for c in categories if c.id == x), "Other"))
        expense_date = st.date_input("Date", value=date.today())
        amount = st.number_input("Amount", min_value=0.0, step=100.0)
        description = st.text_input("Description")

        if st.form_submit_button("Add Expense"):
            if amount <= 0:
                st.error("Expense amount must be greater than zero.")
            else:
                db.add_expense(Expense(category_id=category_id, date=expense_date, amount=amount,
                                       description=description))
                st.success("Expense recorded.")

    with st.form("add_category_form"):
        category_name = st.text_input("New Category")
        if st.form_submit_button("Add Category") and category_name:
            db.add_expense_category(ExpenseCategory(name=category_name))
            st.rerun()

    start = date.today().replace(day=1)
    by_category = reports.expenses_by_category(db, start, date.today())
    if by_category:
        st.subheader("This Month by Category")
        st.bar_chart(pd.Series(by_category, name="Amount"))

    expenses = db.get_expenses(start, date.today())
    if expenses:
        st.dataframe(pd.DataFrame([{"ID": e.id, "Date": e.date, "Amount": e.amount,
                                    "Description": e.description or ""} for e in expenses]))
        expense_id = st.selectbox("Select Expense", options=[e.id for e in expenses])
        if st.button("Delete Expense"):
            db.delete_expense(expense_id)
            st.rerun()


# Reports page
def show_reports_page():
    st.header("Reports")

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        start_date = st.date_input("From Date", value=date.today() - timedelta(days=30))
    with col2:
        end_date = st.date_input("To Date", value=date.today())
    with col3:
        group_by = st.selectbox("Group By", reports.GROUP_BY)
    with col4:
        source = st.selectbox("Source", reports.SOURCES)

    try:
        rows = reports.build_report(db, start_date, end_date, group_by, source=source)
    except DairyError as e:
        st.error(str(e))
        return

    if not rows:
        st.info("No data for the selected period.")
        return

    df = reports.report_to_frame(rows)
    st.bar_chart(df["Amount"])
    st.dataframe(df)

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Export Report to Excel"):
            path = report_gen.export_report_to_excel(rows, group_by)
            st.markdown(get_download_link(path, "Download Excel Report"), unsafe_allow_html=True)
    with col2:
        if source == "milk" and st.button("Export Entries to Excel"):
            path = report_gen.export_entries_to_excel(db.get_entries(start_date, end_date), customer_names(),
                                                      start_date, end_date)
            st.markdown(get_download_link(path, "Download Entries"), unsafe_allow_html=True)


# Settings page
def show_settings_page():
    st.header("Settings")

    rates = settings.milk_rates
    with st.form("milk_rates_form"):
        cow_rate = st.number_input("Cow Milk Rate (per liter)", min_value=0.0, value=float(rates.cow_rate))
        buffalo_rate = st.number_input("Buffalo Milk Rate (per liter)", min_value=0.0,
                                       value=float(rates.buffalo_rate))
        if st.form_submit_button("Save Rates"):
            settings.save("milk_rates", type(rates)(cow_rate=cow_rate, buffalo_rate=buffalo_rate))
            st.success("Milk rates updated successfully!")

    bill_settings = settings.billing
    with st.form("billing_form"):
        auto_bill_generation = st.checkbox("Generate last month's bills automatically",
                                           value=bill_settings.auto_bill_generation)
        include_late_fee = st.checkbox("Include late fee", value=bill_settings.include_late_fee)
        late_fee_amount = st.number_input("Late fee amount", min_value=0.0,
                                          value=float(bill_settings.late_fee_amount))
        discount_enabled = st.checkbox("Enable discount", value=bill_settings.discount_enabled)
        discount_percentage = st.number_input("Discount (%)", min_value=0.0, max_value=100.0,
                                              value=float(bill_settings.discount_percentage))
        invoice_header = st.text_input("Invoice header", value=bill_settings.invoice_header)
        invoice_footer = st.text_input("Invoice footer", value=bill_settings.invoice_footer)
        if st.form_submit_button("Save Billing Settings"):
            settings.save("billing", type(bill_settings)(
                auto_bill_generation=auto_bill_generation,
                include_late_fee=include_late_fee,
                late_fee_amount=late_fee_amount,
                discount_enabled=discount_enabled,
                discount_percentage=discount_percentage,
                invoice_header=invoice_header,
                invoice_footer=invoice_footer,
            ))
            st.success("Billing settings saved!")

    prefs = settings.app
    with st.form("app_preferences_form"):
        app_name = st.text_input("App name", value=prefs.app_name)
        notifications = st.checkbox("Notifications", value=prefs.notifications)
        email_alerts = st.checkbox("Email alerts", value=prefs.email_alerts)
        if st.form_submit_button("Save App Settings"):
            settings.save("app", type(prefs)(app_name=app_name or prefs.app_name,
                                             notifications=notifications,
                                             email_alerts=email_alerts))
            st.success("App settings saved!")


if __name__ == "__main__":
    main()
