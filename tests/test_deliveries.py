"""
Unit tests for the daily delivery log.
"""

from datetime import date

import pytest

import deliveries
from errors import NotFoundError, ValidationError

DAY = date(2024, 12, 1)


class TestSeedDay:

    def test_seeds_active_customers_from_defaults(self, db, make_customer):
        ramesh = make_customer(name="Ramesh", daily_quantity=5, rate_per_liter=60)
        make_customer(name="Inactive", is_active=False)

        entries = deliveries.seed_day(db, DAY, "morning", entries_per_day=2)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.customer_id == ramesh.id
        assert entry.regular_quantity == 2.5
        assert entry.extra_quantity == 0
        assert entry.rate_per_liter == 60
        assert entry.total_amount == 150
        assert entry.delivered is False

    def test_full_day_entries(self, db, make_customer):
        make_customer(daily_quantity=5, rate_per_liter=60)
        entries = deliveries.seed_day(db, DAY, "morning", entries_per_day=1)
        assert entries[0].regular_quantity == 5
        assert entries[0].total_amount == 300

    def test_seeding_twice_keeps_existing_entries(self, db, customer):
        first = deliveries.seed_day(db, DAY, "evening", entries_per_day=2)
        deliveries.set_extra_quantity(db, first[0].id, 1)
        second = deliveries.seed_day(db, DAY, "evening", entries_per_day=2)
        assert [e.id for e in second] == [first[0].id]
        assert second[0].extra_quantity == 1

    def test_evening_not_allowed_with_one_entry_per_day(self, db, customer):
        with pytest.raises(ValidationError):
            deliveries.seed_day(db, DAY, "evening", entries_per_day=1)


class TestToggleDelivery:

    def test_first_toggle_creates_delivered_entry(self, db, customer):
        entry = deliveries.toggle_delivery(db, customer.id, DAY, "morning", entries_per_day=2)
        assert entry.id is not None
        assert entry.delivered is True
        assert entry.regular_quantity == 2.5

    def test_toggle_flips_existing_entry(self, db, customer):
        created = deliveries.toggle_delivery(db, customer.id, DAY, "morning", entries_per_day=2)
        flipped = deliveries.toggle_delivery(db, customer.id, DAY, "morning", entries_per_day=2)
        assert flipped.id == created.id
        assert flipped.delivered is False
        assert len(db.get_entries(DAY, DAY)) == 1

    def test_rate_is_fixed_at_creation(self, db, customer):
        entry = deliveries.toggle_delivery(db, customer.id, DAY, "morning", entries_per_day=2)
        customer.rate_per_liter = 75
        db.update_customer(customer)
        again = deliveries.toggle_delivery(db, customer.id, DAY, "morning", entries_per_day=2)
        assert again.rate_per_liter == entry.rate_per_liter == 60

    def test_unknown_customer(self, db):
        with pytest.raises(NotFoundError):
            deliveries.toggle_delivery(db, 999, DAY, "morning", entries_per_day=2)

    def test_unknown_session(self, db, customer):
        with pytest.raises(ValidationError):
            deliveries.toggle_delivery(db, customer.id, DAY, "night", entries_per_day=2)


class TestExtraQuantity:

    def test_updates_total_amount(self, db, customer):
        entry = deliveries.toggle_delivery(db, customer.id, DAY, "morning", entries_per_day=1)
        updated = deliveries.set_extra_quantity(db, entry.id, 1.5)
        assert updated.extra_quantity == 1.5
        assert updated.total_amount == 390

    def test_negative_is_clamped_to_zero(self, db, customer):
        entry = deliveries.toggle_delivery(db, customer.id, DAY, "morning", entries_per_day=1)
        updated = deliveries.set_extra_quantity(db, entry.id, -3)
        assert updated.extra_quantity == 0
        assert updated.total_amount == 300

    def test_unknown_entry(self, db):
        with pytest.raises(NotFoundError):
            deliveries.set_extra_quantity(db, 999, 1)
