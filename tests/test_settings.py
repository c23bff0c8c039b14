"""
Unit tests for typed settings stored in app_settings.
"""

import pytest

from errors import ValidationError
from models import AppSetting
from settings import AppPreferences, BillingSettings, MilkRates, SettingsStore


class TestDefaults:

    def test_empty_table_gives_defaults(self, db):
        store = SettingsStore(db)
        assert store.milk_rates == MilkRates(cow_rate=60.0, buffalo_rate=80.0)
        assert store.billing.include_late_fee is False
        assert store.billing.discount_enabled is False
        assert store.app.app_name == "DairyFlow"

    def test_rate_for_milk_type(self):
        rates = MilkRates(cow_rate=62, buffalo_rate=85)
        assert rates.rate_for("cow") == 62
        assert rates.rate_for("buffalo") == 85
        with pytest.raises(ValidationError):
            rates.rate_for("goat")

    def test_billing_adjustments(self):
        settings = BillingSettings(discount_enabled=True, discount_percentage=5,
                                   include_late_fee=True, late_fee_amount=50)
        assert settings.discount_for(9000) == 450
        assert settings.late_fee_for() == 50
        assert BillingSettings().discount_for(9000) == 0
        assert BillingSettings().late_fee_for() == 0


class TestSaveAndReload:

    def test_save_reloads_store(self, db):
        store = SettingsStore(db)
        store.save("milk_rates", MilkRates(cow_rate=65, buffalo_rate=90))
        assert store.milk_rates.cow_rate == 65
        assert len(db.query("app_settings")) == 1

    def test_saving_twice_updates_single_row(self, db):
        store = SettingsStore(db)
        store.save("billing", BillingSettings(include_late_fee=True))
        store.save("billing", BillingSettings(include_late_fee=False, invoice_header="Gokul Dairy"))
        rows = db.query("app_settings", {"setting_key": "billing"})
        assert len(rows) == 1
        assert rows[0]["setting_value"]["invoice_header"] == "Gokul Dairy"
        assert store.billing.include_late_fee is False

    def test_other_stores_see_changes_only_after_load(self, db):
        reader = SettingsStore(db)
        SettingsStore(db).save("app", AppPreferences(app_name="Gokul"))
        assert reader.app.app_name == "DairyFlow"
        reader.load()
        assert reader.app.app_name == "Gokul"

    def test_unknown_stored_fields_are_ignored(self, db):
        db.insert("app_settings", {"setting_key": "milk_rates",
                                   "setting_value": {"cowRate": 1, "buffalo_rate": 95}})
        store = SettingsStore(db)
        assert store.milk_rates == MilkRates(cow_rate=60.0, buffalo_rate=95)

    def test_invalid_saves(self, db):
        store = SettingsStore(db)
        with pytest.raises(ValidationError):
            store.save("theme", MilkRates())
        with pytest.raises(ValidationError):
            store.save("billing", MilkRates())

    def test_stored_row_maps_to_app_setting(self, db):
        SettingsStore(db).save("app", AppPreferences(app_name="Gokul", email_alerts=True))
        row = AppSetting.from_row(db.query("app_settings", {"setting_key": "app"})[0])
        assert row.setting_value["email_alerts"] is True
        assert row.updated_at
