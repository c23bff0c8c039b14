import logging
from dataclasses import dataclass, asdict, fields, field
from datetime import datetime

from errors import ValidationError
from models import AppSetting

logger = logging.getLogger(__name__)


@dataclass
class MilkRates:
    cow_rate: float = 60.0
    buffalo_rate: float = 80.0

    def rate_for(self, milk_type: str) -> float:
        """Default rate per liter for a milk type."""
        if milk_type == "cow":
            return self.cow_rate
        if milk_type == "buffalo":
            return self.buffalo_rate
        raise ValidationError(f"Unknown milk type: {milk_type}")


@dataclass
class BillingSettings:
    auto_bill_generation: bool = True
    include_late_fee: bool = False
    late_fee_amount: float = 50.0
    discount_enabled: bool = False
    discount_percentage: float = 5.0
    invoice_header: str = "DairyFlow Farm"
    invoice_footer: str = "Thank you for your business!"

    def discount_for(self, total_amount: float) -> float:
        if not self.discount_enabled:
            return 0.0
        return round(total_amount * self.discount_percentage / 100, 2)

    def late_fee_for(self) -> float:
        return self.late_fee_amount if self.include_late_fee else 0.0


@dataclass
class AppPreferences:
    app_name: str = "DairyFlow"
    notifications: bool = True
    email_alerts: bool = False


SETTING_TYPES = {
    "milk_rates": MilkRates,
    "billing": BillingSettings,
    "app": AppPreferences,
}


def _from_value(cls, value):
    # Unknown keys in a stored payload are dropped, missing ones keep defaults
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (value or {}).items() if k in names})


@dataclass
class AppSettings:
    milk_rates: MilkRates = field(default_factory=MilkRates)
    billing: BillingSettings = field(default_factory=BillingSettings)
    app: AppPreferences = field(default_factory=AppPreferences)


class SettingsStore:
    """Typed view over the app_settings table.

    Settings are read once when the store is created and kept in memory.
    Every save writes the row and then reloads, so callers holding the store
    see the new values; nothing else is notified.
    """

    def __init__(self, db):
        self.db = db
        self.current = AppSettings()
        self.load()

    @property
    def milk_rates(self) -> MilkRates:
        return self.current.milk_rates

    @property
    def billing(self) -> BillingSettings:
        return self.current.billing

    @property
    def app(self) -> AppPreferences:
        return self.current.app

    def load(self) -> AppSettings:
        """Read every known key from the database."""
        rows = {s.setting_key: s.setting_value
                for s in map(AppSetting.from_row, self.db.query("app_settings"))}
        self.current = AppSettings(**{
            key: _from_value(cls, rows.get(key)) for key, cls in SETTING_TYPES.items()
        })
        return self.current

    def save(self, key: str, value) -> AppSettings:
        """Persist one settings group and reload."""
        cls = SETTING_TYPES.get(key)
        if cls is None:
            raise ValidationError(f"Unknown settings key: {key}")
        if not isinstance(value, cls):
            raise ValidationError(f"Settings '{key}' must be a {cls.__name__}")

        payload = asdict(value)
        now = datetime.now().isoformat(timespec="seconds")
        with self.db.transaction():
            updated = self.db.update("app_settings", {"setting_key": key},
                                     {"setting_value": payload, "updated_at": now})
            if not updated:
                self.db.insert("app_settings", {"setting_key": key, "setting_value": payload,
                                                "updated_at": now})

        logger.info(f"Settings saved: {key}")
        return self.load()
