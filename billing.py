"""
Monthly billing: aggregating milk entries, generating bills and settling them.

Bills are computed once from the delivered entries of a calendar month and
never recomputed afterwards; editing an entry later does not touch its bill.
"""

import calendar
import logging
import sqlite3
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from config import Config
from errors import (
    ConflictError,
    DuplicateBillError,
    InvalidTransitionError,
    NoEntriesError,
    NotFoundError,
    ValidationError,
)
from models import Bill, EntryTotals, MilkEntry, Payment, PAYMENT_MODES, SESSIONS

logger = logging.getLogger(__name__)


def sessions_for(entries_per_day: int) -> Tuple[str, ...]:
    """Session tags that entries may carry under the given delivery model."""
    if entries_per_day == 2:
        return SESSIONS
    if entries_per_day == 1:
        # A full-day entry is stored under the morning tag
        return SESSIONS[:1]
    raise ValidationError(f"Entries per day must be 1 or 2, got {entries_per_day}")


def month_range(month: int, year: int) -> Tuple[date, date]:
    """First and last calendar day of a month."""
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month: {month}")
    if year < 1:
        raise ValidationError(f"Invalid year: {year}")
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def summarize_entries(entries: List[MilkEntry], customer_id: int, start_date: date, end_date: date,
                      include_undelivered: bool = False, entries_per_day: int = 2) -> EntryTotals:
    """Reduce already-fetched entries into period totals."""
    sessions_for(entries_per_day)

    kept = [
        e for e in entries
        if (include_undelivered or e.delivered) and start_date <= e.date <= end_date
    ]
    kept.sort(key=lambda e: (e.date, SESSIONS.index(e.session) if e.session in SESSIONS else len(SESSIONS)))

    totals = EntryTotals(customer_id=customer_id, start_date=start_date, end_date=end_date, entries=kept)
    by_session = {}
    for entry in kept:
        totals.regular_liters += entry.regular_quantity or 0
        totals.extra_liters += entry.extra_quantity or 0
        totals.total_liters += entry.quantity
        totals.total_amount += entry.amount

        key = entry.session if entries_per_day == 2 else "day"
        by_session[key] = by_session.get(key, 0) + entry.quantity

    totals.regular_liters = round(totals.regular_liters, 2)
    totals.extra_liters = round(totals.extra_liters, 2)
    totals.total_liters = round(totals.total_liters, 2)
    totals.total_amount = round(totals.total_amount, 2)
    totals.by_session = {k: round(v, 2) for k, v in by_session.items()}
    return totals


def aggregate_entries(db, customer_id: int, start_date: date, end_date: date,
                      include_undelivered: Optional[bool] = None,
                      entries_per_day: Optional[int] = None) -> EntryTotals:
    """Sum a customer's milk entries over an inclusive date range.

    Args:
        db: Record Store
        customer_id: Customer whose entries are summed
        start_date: First day of the range
        end_date: Last day of the range
        include_undelivered: Count entries not marked delivered
            (defaults to Config.INCLUDE_UNDELIVERED)
        entries_per_day: 1 or 2 (defaults to Config.ENTRIES_PER_DAY)

    Returns:
        EntryTotals: totals plus the entry list; ``is_empty`` is True when no
        entry matched, which is distinct from entries summing to zero
    """
    if include_undelivered is None:
        include_undelivered = Config.INCLUDE_UNDELIVERED
    if entries_per_day is None:
        entries_per_day = Config.ENTRIES_PER_DAY
    if start_date > end_date:
        raise ValidationError("Start date must not be after end date")

    entries = db.get_entries(start_date, end_date, customer_id=customer_id)
    return summarize_entries(entries, customer_id, start_date, end_date,
                             include_undelivered=include_undelivered,
                             entries_per_day=entries_per_day)


def final_amount(total_amount: float, discount: float = 0.0, late_fee: float = 0.0) -> float:
    return round(total_amount - discount + late_fee, 2)


def _next_bill_number(db, month: int, year: int) -> str:
    prefix = f"BILL-{year}{month:02d}-"
    sequence = 0
    for row in db.query("bills", {"month": month, "year": year}):
        number = row["bill_number"]
        if number.startswith(prefix) and number[len(prefix):].isdigit():
            sequence = max(sequence, int(number[len(prefix):]))
    return f"{prefix}{sequence + 1:04d}"


def generate_bill(db, customer_id: int, month: int, year: int,
                  discount: Optional[float] = None, late_fee: Optional[float] = None,
                  billing=None, include_undelivered: Optional[bool] = None,
                  entries_per_day: Optional[int] = None) -> Bill:
    """Create the monthly bill of one customer.

    Discount and late fee come from ``billing`` (BillingSettings) when not
    passed explicitly, and are 0 when neither is given.

    Raises:
        DuplicateBillError: a bill already exists for the period
        NoEntriesError: the customer has no counted entries in the month
        NotFoundError: unknown customer
        ValidationError: bad month/year or negative adjustments
    """
    start_date, end_date = month_range(month, year)
    if discount is not None and discount < 0:
        raise ValidationError("Discount cannot be negative")
    if late_fee is not None and late_fee < 0:
        raise ValidationError("Late fee cannot be negative")

    if db.get_customer(customer_id) is None:
        raise NotFoundError(f"Customer {customer_id} not found")

    try:
        with db.transaction():
            if db.query("bills", {"customer_id": customer_id, "month": month, "year": year}):
                raise DuplicateBillError(customer_id, month, year)

            totals = aggregate_entries(db, customer_id, start_date, end_date,
                                       include_undelivered=include_undelivered,
                                       entries_per_day=entries_per_day)
            if totals.is_empty:
                raise NoEntriesError(customer_id, month, year)

            if discount is None:
                discount = billing.discount_for(totals.total_amount) if billing else 0.0
            if late_fee is None:
                late_fee = billing.late_fee_for() if billing else 0.0

            row = db.insert("bills", {
                "bill_number": _next_bill_number(db, month, year),
                "customer_id": customer_id,
                "month": month,
                "year": year,
                "total_liters": totals.total_liters,
                "total_amount": totals.total_amount,
                "discount": discount,
                "late_fee": late_fee,
                "final_amount": final_amount(totals.total_amount, discount, late_fee),
                "status": "unpaid",
            })
    except sqlite3.IntegrityError as e:
        message = str(e)
        if "bills.customer_id" in message:
            raise DuplicateBillError(customer_id, month, year) from e
        if "bills.bill_number" in message:
            raise ConflictError(f"Bill number already taken for {month:02d}/{year}") from e
        raise
    except (DuplicateBillError, NoEntriesError) as e:
        logger.warning(f"Bill not generated: {e}")
        raise

    bill = Bill.from_row(row)
    logger.info(f"Bill {bill.bill_number} generated for customer {customer_id}: "
                f"{bill.total_liters} L, final {bill.final_amount:.2f}")
    return bill


def generate_all_bills(db, month: int, year: int, billing=None,
                       include_undelivered: Optional[bool] = None,
                       entries_per_day: Optional[int] = None) -> Tuple[List[Bill], Dict[int, str]]:
    """Generate bills for every active customer of a month.

    Returns:
        (created bills, {customer_id: reason} for customers skipped)
    """
    month_range(month, year)
    created = []
    skipped = {}

    for customer in db.get_all_customers(active_only=True):
        try:
            created.append(generate_bill(db, customer.id, month, year, billing=billing,
                                         include_undelivered=include_undelivered,
                                         entries_per_day=entries_per_day))
        except DuplicateBillError:
            skipped[customer.id] = "duplicate"
        except NoEntriesError:
            skipped[customer.id] = "no entries"

    logger.info(f"Generated {len(created)} bills for {month:02d}/{year}, skipped {len(skipped)}")
    return created, skipped


def previous_month(today: date) -> Tuple[int, int]:
    if today.month == 1:
        return 12, today.year - 1
    return today.month - 1, today.year


def generate_due_bills(db, billing, today: Optional[date] = None) -> List[Bill]:
    """Bill last month for every active customer when auto generation is on.

    Safe to call repeatedly: customers already billed are skipped.
    """
    if billing is None or not billing.auto_bill_generation:
        return []
    month, year = previous_month(today or date.today())
    created, _ = generate_all_bills(db, month, year, billing=billing)
    return created


def bill_line_items(db, bill: Bill, include_undelivered: Optional[bool] = None,
                    entries_per_day: Optional[int] = None) -> List[MilkEntry]:
    """Entries of the bill's month, as shown on the invoice.

    These are read live. The bill itself is frozen, so an entry edited after
    billing makes the rows disagree with the bill totals; see
    report_generator.lines_differ.
    """
    start_date, end_date = month_range(bill.month, bill.year)
    return aggregate_entries(db, bill.customer_id, start_date, end_date,
                             include_undelivered=include_undelivered,
                             entries_per_day=entries_per_day).entries


def mark_paid(db, bill_id: int, mode: str, payment_date: Optional[date] = None,
              record_payment: bool = False, amount: Optional[float] = None,
              notes: Optional[str] = None) -> Bill:
    """Settle an unpaid bill.

    With ``record_payment`` a Payment row is written in the same transaction
    as the status change, so either both land or neither does. Partial
    payments are not supported: ``amount`` must equal the bill's final amount.

    Raises:
        NotFoundError: unknown bill
        InvalidTransitionError: the bill is already paid
        ValidationError: unknown payment mode or partial amount
    """
    if mode not in PAYMENT_MODES:
        raise ValidationError(f"Invalid payment mode: {mode}")
    payment_date = payment_date or date.today()

    with db.transaction():
        bill = db.get_bill(bill_id)
        if bill is None:
            raise NotFoundError(f"Bill {bill_id} not found")
        if bill.is_paid:
            raise InvalidTransitionError(f"Bill {bill.bill_number} is already paid")
        if amount is not None and round(amount, 2) != round(bill.final_amount, 2):
            raise ValidationError(
                f"Payment must settle the full amount of {bill.final_amount:.2f}, got {amount:.2f}"
            )

        if record_payment:
            db.insert("payments", {
                "bill_id": bill.id,
                "customer_id": bill.customer_id,
                "amount": bill.final_amount,
                "payment_mode": mode,
                "payment_date": payment_date,
                "notes": notes,
            })

        changed = db.update("bills", {"id": bill_id, "status": "unpaid"}, {
            "status": "paid",
            "payment_mode": mode,
            "payment_date": payment_date,
            "updated_at": datetime.now().isoformat(timespec="seconds"),
        })
        if not changed:
            raise InvalidTransitionError(f"Bill {bill.bill_number} is already paid")

        bill = db.get_bill(bill_id)

    logger.info(f"Bill {bill.bill_number} marked paid via {mode}")
    return bill


def bill_payments(db, bill: Bill) -> List[Payment]:
    return db.get_payments(bill_id=bill.id)
