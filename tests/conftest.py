"""
Shared pytest fixtures for the dairy billing tests.

Every test gets its own file-backed SQLite database, so nothing leaks
between tests.
"""

import os
import sys
from datetime import date

import pytest

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import DairyDatabase
from models import Customer


@pytest.fixture
def db(tmp_path):
    """Fresh database per test."""
    return DairyDatabase(str(tmp_path / "dairy_test.db"))


@pytest.fixture
def make_customer(db):
    """Factory for customers with sensible defaults."""
    def _make(name="Ramesh Kumar", milk_type="cow", daily_quantity=5.0, rate_per_liter=60.0,
              is_active=True, phone="9876543210"):
        return db.add_customer(Customer(
            name=name,
            phone=phone,
            milk_type=milk_type,
            daily_quantity=daily_quantity,
            rate_per_liter=rate_per_liter,
            is_active=is_active,
        ))
    return _make


@pytest.fixture
def make_entry(db):
    """Factory for milk entries; total_amount is computed unless given."""
    def _make(customer_id, day, regular=5.0, extra=0.0, rate=60.0, session="morning",
              delivered=True, total_amount="auto"):
        row = {
            "customer_id": customer_id,
            "date": day,
            "session": session,
            "regular_quantity": regular,
            "extra_quantity": extra,
            "rate_per_liter": rate,
            "delivered": delivered,
        }
        if total_amount == "auto":
            row["total_amount"] = (regular + extra) * rate
        elif total_amount is not None:
            row["total_amount"] = total_amount
        return db.insert("milk_entries", row)
    return _make


@pytest.fixture
def customer(make_customer):
    return make_customer()


@pytest.fixture
def november_entries(customer, make_entry):
    """Two delivered days in November 2024: 6 L and 5 L at 60."""
    make_entry(customer.id, date(2024, 11, 3), regular=5, extra=1, rate=60)
    make_entry(customer.id, date(2024, 11, 4), regular=5, extra=0, rate=60)
    return customer
