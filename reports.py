"""
Dashboard and report aggregation.

Everything here is read-only: the same inputs over unchanged data give the
same rows in the same order.
"""

from datetime import date, timedelta
from typing import Dict, List, Optional

import pandas as pd

from billing import summarize_entries
from config import Config
from errors import ValidationError
from models import Bill, Payment, ReportRow, PAYMENT_MODES

GROUP_BY = ("day", "month", "customer")
SOURCES = ("milk", "expenses")


def _month_start(day):
    return day.replace(day=1)


def _next_month(day):
    return (day.replace(day=28) + timedelta(days=4)).replace(day=1)


def period_labels(start_date: date, end_date: date, group_by: str) -> List[str]:
    """Every day or month label between two dates, in order."""
    labels = []
    if group_by == "day":
        day = start_date
        while day <= end_date:
            labels.append(day.isoformat())
            day += timedelta(days=1)
    elif group_by == "month":
        month = _month_start(start_date)
        while month <= end_date:
            labels.append(month.strftime("%Y-%m"))
            month = _next_month(month)
    else:
        raise ValidationError(f"Cannot list periods for grouping '{group_by}'")
    return labels


def build_report(db, start_date: date, end_date: date, group_by: str = "day",
                 source: str = "milk", include_undelivered: Optional[bool] = None,
                 fill_empty: bool = False) -> List[ReportRow]:
    """Group milk entries or expenses of a date range into chart rows.

    Args:
        db: Record Store
        start_date, end_date: inclusive range
        group_by: 'day' (YYYY-MM-DD), 'month' (YYYY-MM) or 'customer' (name)
        source: 'milk' for entries, 'expenses' for expense amounts
        include_undelivered: count undelivered entries (milk only)
        fill_empty: emit zero rows for days/months without data

    Returns:
        list of ReportRow. Day and month rows are chronological; customer rows
        are ordered by liters descending, then by name.
    """
    if group_by not in GROUP_BY:
        raise ValidationError(f"Invalid grouping: {group_by}")
    if source not in SOURCES:
        raise ValidationError(f"Invalid report source: {source}")
    if source == "expenses" and group_by == "customer":
        raise ValidationError("Expenses cannot be grouped by customer")
    if start_date > end_date:
        raise ValidationError("Start date must not be after end date")
    if include_undelivered is None:
        include_undelivered = Config.INCLUDE_UNDELIVERED

    groups: Dict[str, ReportRow] = {}

    if source == "milk":
        names = {}
        if group_by == "customer":
            names = {c.id: c.name for c in db.get_all_customers()}

        for entry in db.get_entries(start_date, end_date):
            if not (include_undelivered or entry.delivered):
                continue
            if group_by == "day":
                key = entry.date.isoformat()
            elif group_by == "month":
                key = entry.date.strftime("%Y-%m")
            else:
                key = entry.customer_id

            row = groups.setdefault(key, ReportRow(label=names.get(key, str(key))))
            row.total_liters += entry.quantity
            row.total_amount += entry.amount
    else:
        for expense in db.get_expenses(start_date, end_date):
            key = expense.date.isoformat() if group_by == "day" else expense.date.strftime("%Y-%m")
            row = groups.setdefault(key, ReportRow(label=key))
            row.total_amount += expense.amount

    for row in groups.values():
        row.total_liters = round(row.total_liters, 2)
        row.total_amount = round(row.total_amount, 2)

    if group_by == "customer":
        return sorted(groups.values(), key=lambda r: (-r.total_liters, r.label))

    if fill_empty:
        return [groups.get(label, ReportRow(label=label))
                for label in period_labels(start_date, end_date, group_by)]
    return [groups[label] for label in sorted(groups)]


def report_to_frame(rows: List[ReportRow]) -> pd.DataFrame:
    """Rows as a DataFrame indexed by label, ready for charts and exports."""
    df = pd.DataFrame(
        [{"Label": r.label, "Liters": r.total_liters, "Amount": r.total_amount} for r in rows],
        columns=["Label", "Liters", "Amount"],
    )
    return df.set_index("Label")


def dashboard_summary(db, today: Optional[date] = None, include_undelivered: Optional[bool] = None,
                      entries_per_day: Optional[int] = None) -> dict:
    """Headline numbers for the dashboard."""
    today = today or date.today()
    if include_undelivered is None:
        include_undelivered = Config.INCLUDE_UNDELIVERED
    if entries_per_day is None:
        entries_per_day = Config.ENTRIES_PER_DAY

    todays = summarize_entries(db.get_entries(today, today), None, today, today,
                               include_undelivered=include_undelivered,
                               entries_per_day=entries_per_day)
    month_start = _month_start(today)
    month_to_date = summarize_entries(db.get_entries(month_start, today), None, month_start, today,
                                      include_undelivered=include_undelivered,
                                      entries_per_day=entries_per_day)
    unpaid = db.get_bills(status="unpaid")

    return {
        "active_customers": len(db.get_all_customers(active_only=True)),
        "today_liters": todays.total_liters,
        "today_by_session": todays.by_session,
        "month_revenue": month_to_date.total_amount,
        "unpaid_bills": len(unpaid),
        "unpaid_amount": round(sum(b.final_amount for b in unpaid), 2),
    }


def profit_by_month(db, start_date: date, end_date: date,
                    include_undelivered: Optional[bool] = None) -> pd.DataFrame:
    """Revenue, expenses, profit and liters for each month of the range."""
    milk = {r.label: r for r in build_report(db, start_date, end_date, "month",
                                             include_undelivered=include_undelivered,
                                             fill_empty=True)}
    spent = {r.label: r.total_amount for r in build_report(db, start_date, end_date, "month",
                                                           source="expenses", fill_empty=True)}
    data = []
    for label in period_labels(start_date, end_date, "month"):
        revenue = milk[label].total_amount
        data.append({
            "Month": label,
            "Revenue": revenue,
            "Expenses": spent[label],
            "Profit": round(revenue - spent[label], 2),
            "Liters": milk[label].total_liters,
        })
    return pd.DataFrame(data, columns=["Month", "Revenue", "Expenses", "Profit", "Liters"])


def bill_stats(bills: List[Bill]) -> dict:
    total = round(sum(b.final_amount for b in bills), 2)
    collected = round(sum(b.final_amount for b in bills if b.is_paid), 2)
    return {
        "total_bills": len(bills),
        "paid_count": sum(1 for b in bills if b.is_paid),
        "total_amount": total,
        "collected": collected,
        "pending": round(total - collected, 2),
    }


def payment_mode_totals(payments: List[Payment]) -> Dict[str, float]:
    totals = {mode: 0.0 for mode in PAYMENT_MODES}
    for payment in payments:
        totals[payment.payment_mode] = totals.get(payment.payment_mode, 0.0) + payment.amount
    return {mode: round(amount, 2) for mode, amount in totals.items()}


def expenses_by_category(db, start_date: date, end_date: date) -> Dict[str, float]:
    """Total spent per category name; uncategorised expenses go under 'Other'."""
    names = {c.id: c.name for c in db.get_expense_categories()}
    totals = {}
    for expense in db.get_expenses(start_date, end_date):
        name = names.get(expense.category_id, "Other")
        totals[name] = totals.get(name, 0.0) + expense.amount
    return {name: round(totals[name], 2) for name in sorted(totals)}
