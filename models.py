import calendar
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Optional, List, Dict


MILK_TYPES = ("cow", "buffalo")
BILL_STATUSES = ("unpaid", "paid")
PAYMENT_MODES = ("cash", "online", "upi")
SESSIONS = ("morning", "evening")


def _to_date(value):
    # Stored dates are ISO text; timestamps keep only their date part
    if isinstance(value, str):
        return datetime.fromisoformat(value[:10]).date()
    if isinstance(value, datetime):
        return value.date()
    return value


class RowMixin:
    @classmethod
    def from_row(cls, row):
        """Build the model from a Record Store row (a dict)."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})


@dataclass
class Customer(RowMixin):
    id: Optional[int] = None
    name: str = ""
    phone: str = ""
    address: str = ""
    milk_type: str = "cow"
    daily_quantity: float = 0.0
    rate_per_liter: float = 0.0
    is_active: bool = True

    def __post_init__(self):
        self.is_active = bool(self.is_active)


@dataclass
class MilkEntry(RowMixin):
    id: Optional[int] = None
    customer_id: int = 0
    date: date = None
    session: str = "morning"
    regular_quantity: float = 0.0
    extra_quantity: float = 0.0
    rate_per_liter: float = 0.0
    delivered: bool = False
    total_amount: Optional[float] = None

    @property
    def quantity(self) -> float:
        return (self.regular_quantity or 0) + (self.extra_quantity or 0)

    @property
    def amount(self) -> float:
        """Stored total amount, or quantity x rate when the row has none."""
        if self.total_amount is not None:
            return self.total_amount
        return self.quantity * self.rate_per_liter

    def __post_init__(self):
        self.date = _to_date(self.date) or date.today()
        self.delivered = bool(self.delivered)


@dataclass
class Bill(RowMixin):
    id: Optional[int] = None
    bill_number: str = ""
    customer_id: int = 0
    month: int = 0
    year: int = 0
    total_liters: float = 0.0
    total_amount: float = 0.0
    discount: float = 0.0
    late_fee: float = 0.0
    final_amount: float = 0.0
    status: str = "unpaid"
    payment_mode: Optional[str] = None
    payment_date: Optional[date] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.status == "paid"

    @property
    def period_label(self) -> str:
        return f"{calendar.month_name[self.month]} {self.year}"

    def __post_init__(self):
        self.payment_date = _to_date(self.payment_date)
        self.discount = self.discount or 0.0
        self.late_fee = self.late_fee or 0.0


@dataclass
class Payment(RowMixin):
    id: Optional[int] = None
    bill_id: int = 0
    customer_id: int = 0
    amount: float = 0.0
    payment_mode: str = "cash"
    payment_date: date = None
    notes: Optional[str] = None

    def __post_init__(self):
        self.payment_date = _to_date(self.payment_date) or date.today()


@dataclass
class ExpenseCategory(RowMixin):
    id: Optional[int] = None
    name: str = ""
    icon: Optional[str] = None


@dataclass
class Expense(RowMixin):
    id: Optional[int] = None
    category_id: Optional[int] = None
    date: date = None
    amount: float = 0.0
    description: Optional[str] = None
    receipt_url: Optional[str] = None

    def __post_init__(self):
        self.date = _to_date(self.date) or date.today()


@dataclass
class AppSetting(RowMixin):
    id: Optional[int] = None
    setting_key: str = ""
    setting_value: Optional[dict] = None
    updated_at: Optional[str] = None


@dataclass
class EntryTotals:
    """Aggregated milk entries of one customer over a date range."""
    customer_id: int
    start_date: date
    end_date: date
    total_liters: float = 0.0
    total_amount: float = 0.0
    regular_liters: float = 0.0
    extra_liters: float = 0.0
    by_session: Dict[str, float] = field(default_factory=dict)
    entries: List[MilkEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        # No rows at all, as opposed to rows that sum to zero
        return not self.entries


@dataclass
class ReportRow:
    label: str
    total_liters: float = 0.0
    total_amount: float = 0.0
