import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import asdict
from datetime import date, datetime
from typing import List, Optional, Dict, Any

from config import Config
from models import Customer, MilkEntry, Bill, Payment, Expense, ExpenseCategory

logger = logging.getLogger(__name__)


SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS customers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        phone TEXT,
        address TEXT,
        milk_type TEXT NOT NULL DEFAULT 'cow' CHECK (milk_type IN ('cow', 'buffalo')),
        daily_quantity REAL NOT NULL DEFAULT 0,
        rate_per_liter REAL NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS milk_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        customer_id INTEGER NOT NULL,
        date TEXT NOT NULL,
        session TEXT NOT NULL CHECK (session IN ('morning', 'evening')),
        regular_quantity REAL NOT NULL DEFAULT 0,
        extra_quantity REAL NOT NULL DEFAULT 0 CHECK (extra_quantity >= 0),
        rate_per_liter REAL NOT NULL,
        delivered INTEGER NOT NULL DEFAULT 0,
        total_amount REAL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (customer_id, date, session),
        FOREIGN KEY (customer_id) REFERENCES customers (id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS bills (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        bill_number TEXT NOT NULL UNIQUE,
        customer_id INTEGER NOT NULL,
        month INTEGER NOT NULL CHECK (month BETWEEN 1 AND 12),
        year INTEGER NOT NULL,
        total_liters REAL NOT NULL DEFAULT 0,
        total_amount REAL NOT NULL DEFAULT 0,
        discount REAL NOT NULL DEFAULT 0,
        late_fee REAL NOT NULL DEFAULT 0,
        final_amount REAL NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'unpaid' CHECK (status IN ('unpaid', 'paid')),
        payment_mode TEXT CHECK (payment_mode IN ('cash', 'online', 'upi')),
        payment_date TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT,
        UNIQUE (customer_id, month, year),
        FOREIGN KEY (customer_id) REFERENCES customers (id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        bill_id INTEGER NOT NULL,
        customer_id INTEGER NOT NULL,
        amount REAL NOT NULL,
        payment_mode TEXT NOT NULL CHECK (payment_mode IN ('cash', 'online', 'upi')),
        payment_date TEXT NOT NULL,
        notes TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (bill_id) REFERENCES bills (id),
        FOREIGN KEY (customer_id) REFERENCES customers (id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS expense_categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        icon TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS expenses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        category_id INTEGER,
        date TEXT NOT NULL,
        amount REAL NOT NULL,
        description TEXT,
        receipt_url TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (category_id) REFERENCES expense_categories (id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS app_settings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        setting_key TEXT NOT NULL UNIQUE,
        setting_value TEXT,
        updated_at TEXT
    )
    ''',
]

TABLE_COLUMNS = {
    "customers": ("id", "name", "phone", "address", "milk_type", "daily_quantity",
                  "rate_per_liter", "is_active", "created_at", "updated_at"),
    "milk_entries": ("id", "customer_id", "date", "session", "regular_quantity",
                     "extra_quantity", "rate_per_liter", "delivered", "total_amount",
                     "created_at"),
    "bills": ("id", "bill_number", "customer_id", "month", "year", "total_liters",
              "total_amount", "discount", "late_fee", "final_amount", "status",
              "payment_mode", "payment_date", "created_at", "updated_at"),
    "payments": ("id", "bill_id", "customer_id", "amount", "payment_mode",
                 "payment_date", "notes", "created_at"),
    "expense_categories": ("id", "name", "icon", "created_at"),
    "expenses": ("id", "category_id", "date", "amount", "description", "receipt_url",
                 "created_at"),
    "app_settings": ("id", "setting_key", "setting_value", "updated_at"),
}

JSON_COLUMNS = {("app_settings", "setting_value")}

OPERATORS = {
    "eq": "=",
    "ne": "!=",
    "lt": "<",
    "lte": "<=",
    "gt": ">",
    "gte": ">=",
    "in": "IN",
}


def _to_db(value):
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def as_row(model) -> Dict[str, Any]:
    """Insertable column values of a model; the id and unset fields are left to the store."""
    return {k: v for k, v in asdict(model).items() if k != "id" and v is not None}


class DairyDatabase:
    def __init__(self, db_path=None):
        """Initialize the database connection and create tables if they don't exist."""
        self.db_path = db_path or Config.DATABASE_PATH
        # One connection and transaction state per thread; Streamlit sessions share this object
        self._local = threading.local()
        self.initialize_database()

    @property
    def conn(self):
        return getattr(self._local, "conn", None)

    @conn.setter
    def conn(self, value):
        self._local.conn = value

    @property
    def cursor(self):
        return getattr(self._local, "cursor", None)

    @cursor.setter
    def cursor(self, value):
        self._local.cursor = value

    @property
    def _in_transaction(self):
        return getattr(self._local, "in_transaction", False)

    @_in_transaction.setter
    def _in_transaction(self, value):
        self._local.in_transaction = value

    def connect(self):
        """Establish connection to the database."""
        self.conn = sqlite3.connect(self.db_path, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.cursor = self.conn.cursor()

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            self.cursor = None

    def initialize_database(self):
        """Create necessary tables if they don't exist."""
        self.connect()
        for statement in SCHEMA:
            self.cursor.execute(statement)
        self.close()

    @contextmanager
    def transaction(self):
        """Run the enclosed Record Store calls atomically on one connection.

        BEGIN IMMEDIATE takes the write lock up front, so a read-then-write
        inside the block cannot interleave with another writer.
        """
        if self._in_transaction:
            yield self
            return

        self.connect()
        self.cursor.execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield self
            self.cursor.execute("COMMIT")
        except Exception:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise
        finally:
            self._in_transaction = False
            self.close()

    @contextmanager
    def _session(self):
        # Reuse the open transaction's connection, else one connection per call
        if self._in_transaction:
            yield self.cursor
            return
        self.connect()
        try:
            yield self.cursor
        finally:
            self.close()

    # Record Store contract
    def _check_table(self, table):
        if table not in TABLE_COLUMNS:
            raise ValueError(f"Unknown table: {table}")

    def _check_column(self, table, column):
        if column not in TABLE_COLUMNS[table]:
            raise ValueError(f"Unknown column for {table}: {column}")

    def _value(self, table, column, value):
        if (table, column) in JSON_COLUMNS and value is not None:
            return json.dumps(value)
        return _to_db(value)

    def _where(self, table, filters):
        clauses = []
        params = []

        for key, value in (filters or {}).items():
            column, _, op = key.partition("__")
            op = op or "eq"
            self._check_column(table, column)
            if op not in OPERATORS:
                raise ValueError(f"Unknown filter operator: {op}")

            if op == "in":
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' * len(values))})")
                params.extend(_to_db(v) for v in values)
            elif value is None and op in ("eq", "ne"):
                clauses.append(f"{column} IS {'NOT ' if op == 'ne' else ''}NULL")
            else:
                clauses.append(f"{column} {OPERATORS[op]} ?")
                params.append(_to_db(value))

        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _order_by(self, table, ordering):
        terms = []
        for name in ordering or []:
            column = name.lstrip("-")
            self._check_column(table, column)
            terms.append(f"{column} {'DESC' if name.startswith('-') else 'ASC'}")
        return " ORDER BY " + ", ".join(terms) if terms else ""

    def _decode(self, table, row):
        data = dict(row)
        for column in data:
            if (table, column) in JSON_COLUMNS and data[column] is not None:
                data[column] = json.loads(data[column])
        return data

    def query(self, table: str, filters: Optional[Dict[str, Any]] = None,
              ordering: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Select rows of a table matching all filters."""
        self._check_table(table)
        where, params = self._where(table, filters)
        sql = f"SELECT * FROM {table}{where}{self._order_by(table, ordering)}"

        with self._session() as cursor:
            cursor.execute(sql, tuple(params))
            rows = cursor.fetchall()

        return [self._decode(table, row) for row in rows]

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored, generated id included."""
        self._check_table(table)
        columns = list(row)
        for column in columns:
            self._check_column(table, column)

        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' * len(columns))})"
        params = tuple(self._value(table, c, row[c]) for c in columns)

        with self._session() as cursor:
            cursor.execute(sql, params)
            row_id = cursor.lastrowid
            cursor.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,))
            stored = cursor.fetchone()

        return self._decode(table, stored)

    def update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> int:
        """Apply a patch to every matching row; returns the number of rows changed."""
        self._check_table(table)
        if not patch:
            raise ValueError("Nothing to update")
        for column in patch:
            self._check_column(table, column)

        where, where_params = self._where(table, filters)
        assignments = ", ".join(f"{c} = ?" for c in patch)
        params = [self._value(table, c, v) for c, v in patch.items()] + where_params

        with self._session() as cursor:
            cursor.execute(f"UPDATE {table} SET {assignments}{where}", tuple(params))
            return cursor.rowcount

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete every matching row; returns the number of rows removed."""
        self._check_table(table)
        where, params = self._where(table, filters)
        if not where:
            raise ValueError("Refusing to delete without filters")

        with self._session() as cursor:
            cursor.execute(f"DELETE FROM {table}{where}", tuple(params))
            return cursor.rowcount

    # Customer methods
    def add_customer(self, customer: Customer) -> Customer:
        """Add a new customer to the database."""
        row = self.insert("customers", as_row(customer))
        logger.info(f"Customer added: {row['name']} (id {row['id']})")
        return Customer.from_row(row)

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        """Get a customer by ID."""
        rows = self.query("customers", {"id": customer_id})
        return Customer.from_row(rows[0]) if rows else None

    def get_all_customers(self, active_only: bool = False) -> List[Customer]:
        """Get all customers ordered by name."""
        filters = {"is_active": True} if active_only else None
        return [Customer.from_row(r) for r in self.query("customers", filters, ["name", "id"])]

    def update_customer(self, customer: Customer) -> bool:
        """Update a customer's information."""
        if not customer.id:
            return False
        patch = as_row(customer)
        patch["updated_at"] = datetime.now().isoformat(timespec="seconds")
        return self.update("customers", {"id": customer.id}, patch) > 0

    def find_customers(self, search: str = "", milk_type: Optional[str] = None,
                       active_only: bool = False) -> List[Customer]:
        """Customers whose name or phone contains ``search`` (case-insensitive)."""
        filters = {}
        if milk_type:
            filters["milk_type"] = milk_type
        if active_only:
            filters["is_active"] = True
        customers = [Customer.from_row(r) for r in self.query("customers", filters, ["name", "id"])]

        needle = (search or "").strip().lower()
        if not needle:
            return customers
        return [c for c in customers
                if needle in (c.name or "").lower() or needle in (c.phone or "").lower()]

    def set_customer_active(self, customer_id: int, active: bool) -> bool:
        """Start or stop deliveries to a customer without touching their history."""
        patch = {"is_active": active, "updated_at": datetime.now().isoformat(timespec="seconds")}
        return self.update("customers", {"id": customer_id}, patch) > 0

    def deactivate_customer(self, customer_id: int) -> bool:
        return self.set_customer_active(customer_id, False)

    # Milk entry methods
    def get_entry(self, entry_id: int) -> Optional[MilkEntry]:
        rows = self.query("milk_entries", {"id": entry_id})
        return MilkEntry.from_row(rows[0]) if rows else None

    def get_entries(self, start_date: date, end_date: date, customer_id: Optional[int] = None,
                    session: Optional[str] = None) -> List[MilkEntry]:
        """Get milk entries within an inclusive date range."""
        filters = {"date__gte": start_date, "date__lte": end_date}
        if customer_id is not None:
            filters["customer_id"] = customer_id
        if session is not None:
            filters["session"] = session
        rows = self.query("milk_entries", filters, ["date", "session", "customer_id"])
        return [MilkEntry.from_row(r) for r in rows]

    # Bill methods
    def get_bill(self, bill_id: int) -> Optional[Bill]:
        rows = self.query("bills", {"id": bill_id})
        return Bill.from_row(rows[0]) if rows else None

    def get_bills(self, month: Optional[int] = None, year: Optional[int] = None,
                  status: Optional[str] = None, customer_id: Optional[int] = None) -> List[Bill]:
        """Get bills, newest period first."""
        filters = {}
        if month is not None:
            filters["month"] = month
        if year is not None:
            filters["year"] = year
        if status is not None:
            filters["status"] = status
        if customer_id is not None:
            filters["customer_id"] = customer_id
        rows = self.query("bills", filters, ["-year", "-month", "bill_number"])
        return [Bill.from_row(r) for r in rows]

    # Payment methods
    def get_payments(self, start_date: Optional[date] = None, end_date: Optional[date] = None,
                     bill_id: Optional[int] = None) -> List[Payment]:
        """Get payments, optionally filtered by date range or bill."""
        filters = {}
        if start_date:
            filters["payment_date__gte"] = start_date
        if end_date:
            filters["payment_date__lte"] = end_date
        if bill_id is not None:
            filters["bill_id"] = bill_id
        rows = self.query("payments", filters, ["-payment_date", "-id"])
        return [Payment.from_row(r) for r in rows]

    # Expense methods
    def add_expense_category(self, category: ExpenseCategory) -> ExpenseCategory:
        return ExpenseCategory.from_row(self.insert("expense_categories", as_row(category)))

    def get_expense_categories(self) -> List[ExpenseCategory]:
        return [ExpenseCategory.from_row(r) for r in self.query("expense_categories", ordering=["name"])]

    def add_expense(self, expense: Expense) -> Expense:
        """Add a new expense."""
        row = self.insert("expenses", as_row(expense))
        logger.info(f"Expense recorded: {row['amount']:.2f} on {row['date']}")
        return Expense.from_row(row)

    def get_expenses(self, start_date: Optional[date] = None, end_date: Optional[date] = None,
                     category_id: Optional[int] = None) -> List[Expense]:
        """Get expenses, optionally filtered by date range and category."""
        filters = {}
        if start_date:
            filters["date__gte"] = start_date
        if end_date:
            filters["date__lte"] = end_date
        if category_id is not None:
            filters["category_id"] = category_id
        return [Expense.from_row(r) for r in self.query("expenses", filters, ["-date", "-id"])]

    def delete_expense(self, expense_id: int) -> bool:
        """Delete an expense."""
        return self.delete("expenses", {"id": expense_id}) > 0
