"""
Page-level tests for the Streamlit front end, run headless with AppTest.
"""

import os
from datetime import date

import pytest
import streamlit as st
from streamlit.testing.v1 import AppTest

from config import Config
from database import DairyDatabase
from models import Customer
from settings import SettingsStore

APP_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "app.py")


@pytest.fixture
def app_db(tmp_path, monkeypatch):
    """Point the app at a fresh database and drop cached resources."""
    path = str(tmp_path / "app_test.db")
    monkeypatch.setattr(Config, "DATABASE_PATH", path)
    st.cache_resource.clear()
    yield DairyDatabase(path)
    st.cache_resource.clear()


def _customer(name, phone, milk_type="cow"):
    return Customer(name=name, phone=phone, milk_type=milk_type, daily_quantity=5, rate_per_liter=60)


def open_page(name):
    at = AppTest.from_file(APP_PATH, default_timeout=30)
    at.run()
    at.sidebar.radio[0].set_value(name).run()
    return at


def widget(elements, label):
    return next(e for e in elements if e.label == label)


class TestBillsPage:

    def test_generate_bill_then_buttons_enabled_again(self, app_db):
        customer = app_db.add_customer(_customer("Ramesh Kumar", "9876543210"))
        today = date.today()
        app_db.insert("milk_entries", {"customer_id": customer.id, "date": today, "session": "morning",
                                       "regular_quantity": 5, "rate_per_liter": 60, "delivered": True,
                                       "total_amount": 300})

        at = open_page("Bills")
        widget(at.button, "Generate Bill").click().run()

        assert not at.exception
        assert any("generated" in s.value for s in at.success)
        assert not widget(at.button, "Generate Bill").disabled
        assert not widget(at.button, "Generate All Bills").disabled
        assert len(app_db.get_bills(month=today.month, year=today.year)) == 1

        widget(at.button, "Generate Bill").click().run()
        assert any("already" in e.value.lower() for e in at.error)
        assert len(app_db.get_bills(month=today.month, year=today.year)) == 1


class TestCustomersPage:

    def test_search_filters_list(self, app_db):
        app_db.add_customer(_customer("Ramesh Kumar", "9876543210"))
        app_db.add_customer(_customer("Sunita Devi", "9123456780", milk_type="buffalo"))

        at = open_page("Customers")
        widget(at.text_input, "Search by name or phone").set_value("sunita").run()
        assert list(at.dataframe[0].value["Name"]) == ["Sunita Devi"]

        widget(at.text_input, "Search by name or phone").set_value("").run()
        widget(at.selectbox, "Milk Type").set_value("cow").run()
        assert list(at.dataframe[0].value["Name"]) == ["Ramesh Kumar"]

    def test_toggle_reactivates(self, app_db):
        customer = app_db.add_customer(_customer("Ramesh Kumar", "9876543210"))
        app_db.set_customer_active(customer.id, False)

        at = open_page("Customers")
        widget(at.button, "Activate").click().run()
        assert app_db.get_customer(customer.id).is_active is True

    def test_edit_customer(self, app_db):
        customer = app_db.add_customer(_customer("Ramesh Kumar", "9876543210"))

        at = open_page("Customers")
        at.text_input(key=f"edit_phone_{customer.id}").set_value("9000000001")
        widget(at.button, "Save Changes").click().run()

        assert not at.exception
        assert app_db.get_customer(customer.id).phone == "9000000001"


class TestSettingsPage:

    def test_app_preferences_saved(self, app_db):
        at = open_page("Settings")
        widget(at.text_input, "App name").set_value("Gokul Dairy")
        widget(at.checkbox, "Email alerts").check()
        widget(at.button, "Save App Settings").click().run()

        prefs = SettingsStore(app_db).app
        assert prefs.app_name == "Gokul Dairy"
        assert prefs.email_alerts is True
