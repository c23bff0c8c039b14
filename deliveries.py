"""
Daily delivery log: one milk entry per customer, date and session.

Entries are either seeded for a whole day from each customer's defaults, or
created on the first delivery toggle. The rate is copied onto the entry when
it is created and never looked up from the customer again.
"""

import logging
from datetime import date
from typing import List, Optional

from billing import sessions_for
from config import Config
from errors import NotFoundError, ValidationError
from models import Customer, MilkEntry

logger = logging.getLogger(__name__)


def entry_amount(regular_quantity, extra_quantity, rate_per_liter):
    return round(((regular_quantity or 0) + (extra_quantity or 0)) * rate_per_liter, 2)


def _check_session(session, entries_per_day):
    if session not in sessions_for(entries_per_day):
        raise ValidationError(f"Session '{session}' is not used with {entries_per_day} entries per day")


def default_entry(customer: Customer, day: date, session: str, entries_per_day: int,
                  delivered: bool = False) -> MilkEntry:
    """A new entry pre-filled from the customer's daily quantity and rate."""
    regular = round(customer.daily_quantity / entries_per_day, 2)
    return MilkEntry(
        customer_id=customer.id,
        date=day,
        session=session,
        regular_quantity=regular,
        extra_quantity=0.0,
        rate_per_liter=customer.rate_per_liter,
        delivered=delivered,
        total_amount=entry_amount(regular, 0.0, customer.rate_per_liter),
    )


def _find_entry(db, customer_id, day, session) -> Optional[MilkEntry]:
    rows = db.query("milk_entries", {"customer_id": customer_id, "date": day, "session": session})
    return MilkEntry.from_row(rows[0]) if rows else None


def _insert_entry(db, entry: MilkEntry) -> MilkEntry:
    row = db.insert("milk_entries", {
        "customer_id": entry.customer_id,
        "date": entry.date,
        "session": entry.session,
        "regular_quantity": entry.regular_quantity,
        "extra_quantity": entry.extra_quantity,
        "rate_per_liter": entry.rate_per_liter,
        "delivered": entry.delivered,
        "total_amount": entry.total_amount,
    })
    return MilkEntry.from_row(row)


def seed_day(db, day: date, session: str = "morning",
             entries_per_day: Optional[int] = None) -> List[MilkEntry]:
    """Make sure every active customer has an entry for the day and session.

    Existing entries are left untouched. Returns all entries of the session.
    """
    if entries_per_day is None:
        entries_per_day = Config.ENTRIES_PER_DAY
    _check_session(session, entries_per_day)

    created = 0
    with db.transaction():
        existing = {e.customer_id for e in db.get_entries(day, day, session=session)}
        for customer in db.get_all_customers(active_only=True):
            if customer.id in existing:
                continue
            _insert_entry(db, default_entry(customer, day, session, entries_per_day))
            created += 1

    if created:
        logger.info(f"Seeded {created} {session} entries for {day}")
    return db.get_entries(day, day, session=session)


def toggle_delivery(db, customer_id: int, day: date, session: str = "morning",
                    entries_per_day: Optional[int] = None) -> MilkEntry:
    """Flip the delivered flag, creating the entry as delivered if it is missing."""
    if entries_per_day is None:
        entries_per_day = Config.ENTRIES_PER_DAY
    _check_session(session, entries_per_day)

    with db.transaction():
        entry = _find_entry(db, customer_id, day, session)
        if entry is None:
            customer = db.get_customer(customer_id)
            if customer is None:
                raise NotFoundError(f"Customer {customer_id} not found")
            entry = _insert_entry(db, default_entry(customer, day, session, entries_per_day,
                                                    delivered=True))
        else:
            db.update("milk_entries", {"id": entry.id}, {"delivered": not entry.delivered})
            entry = db.get_entry(entry.id)

    logger.info(f"Customer {customer_id} {session} {day}: delivered={entry.delivered}")
    return entry


def set_extra_quantity(db, entry_id: int, extra_quantity: float) -> MilkEntry:
    """Change the extra liters of an entry; negative values count as zero."""
    extra_quantity = max(0.0, float(extra_quantity or 0))

    with db.transaction():
        entry = db.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Milk entry {entry_id} not found")
        db.update("milk_entries", {"id": entry_id}, {
            "extra_quantity": extra_quantity,
            "total_amount": entry_amount(entry.regular_quantity, extra_quantity, entry.rate_per_liter),
        })
        entry = db.get_entry(entry_id)

    return entry
