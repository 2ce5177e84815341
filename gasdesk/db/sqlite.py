"""SQLite database operations for gasdesk."""

import json
import sqlite3
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from gasdesk.config import settings
from gasdesk.models import CardDetails, StockHistoryEntry, StockItem, Transaction, ensure_utc, utc_now

# SQL schema
SCHEMA = """
CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    date TEXT NOT NULL,
    date_ms INTEGER NOT NULL,
    gas_type TEXT NOT NULL,
    kgs REAL NOT NULL,
    payment_method TEXT NOT NULL,
    total REAL NOT NULL,
    currency TEXT NOT NULL,
    created_at TEXT,
    customer_name TEXT,
    phone_number TEXT,
    due_date TEXT,
    paid INTEGER,
    paid_date TEXT,
    card_details TEXT,
    is_restock INTEGER,
    reason TEXT,
    extra TEXT
);

CREATE INDEX IF NOT EXISTS idx_transactions_date_ms ON transactions(date_ms);
CREATE INDEX IF NOT EXISTS idx_transactions_gas_type ON transactions(gas_type);

CREATE TABLE IF NOT EXISTS stock (
    gas_type TEXT PRIMARY KEY,
    price REAL NOT NULL,
    stock REAL NOT NULL,
    last_updated TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stock_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    gas_type TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    previous_stock REAL NOT NULL,
    new_stock REAL NOT NULL,
    change_amount REAL NOT NULL,
    reason TEXT NOT NULL,
    transaction_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_stock_history_gas_type ON stock_history(gas_type);
"""

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

COLUMNS = (
    "id, date, date_ms, gas_type, kgs, payment_method, total, currency, created_at, "
    "customer_name, phone_number, due_date, paid, paid_date, card_details, is_restock, reason, extra"
)
_PLACEHOLDERS = ", ".join("?" * len(COLUMNS.split(", ")))


def to_epoch_ms(value: datetime) -> int:
    """Convert a timestamp to integer epoch milliseconds (naive means UTC)."""
    return (ensure_utc(value) - EPOCH) // timedelta(milliseconds=1)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _flag(value: bool | None) -> int | None:
    return None if value is None else int(value)


class StockItemNotFoundError(Exception):
    """Raised when a gas type has no stock item."""

    def __init__(self, gas_type: str):
        super().__init__(f"Stock item not found: {gas_type}")
        self.gas_type = gas_type


class InsufficientStockError(Exception):
    """Raised when a sale would take a stock level below zero."""

    def __init__(self, gas_type: str, available: float, requested: float):
        super().__init__(f"Insufficient stock for {gas_type}: {available} kg available, {requested} kg requested")
        self.gas_type = gas_type
        self.available = available
        self.requested = requested


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or settings.db_path
        settings.ensure_directories()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def add_transaction(self, transaction: Transaction) -> bool:
        """Add a transaction. Returns True if added, False if the id is taken."""
        with self._get_connection() as conn:
            try:
                conn.execute(f"INSERT INTO transactions ({COLUMNS}) VALUES ({_PLACEHOLDERS})", self._to_row(transaction))
                conn.commit()
                return True
            except sqlite3.IntegrityError:
                return False

    def add_transactions_batch(self, transactions: list[Transaction]) -> int:
        """Add multiple transactions in one commit. Either all land or none do."""
        if not transactions:
            return 0
        with self._get_connection() as conn:
            with conn:
                conn.executemany(
                    f"INSERT INTO transactions ({COLUMNS}) VALUES ({_PLACEHOLDERS})",
                    [self._to_row(txn) for txn in transactions],
                )
        return len(transactions)

    def list_all(self) -> list[Transaction]:
        """Get every transaction, oldest first."""
        with self._get_connection() as conn:
            cursor = conn.execute(f"SELECT {COLUMNS} FROM transactions ORDER BY date_ms ASC, rowid ASC")
            return [self._row_to_transaction(row) for row in cursor.fetchall()]

    def list_since(self, timestamp: datetime) -> list[Transaction]:
        """Get transactions dated at or after ``timestamp``, newest first."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT {COLUMNS} FROM transactions WHERE date_ms >= ? ORDER BY date_ms DESC, rowid DESC",
                (to_epoch_ms(timestamp),),
            )
            return [self._row_to_transaction(row) for row in cursor.fetchall()]

    def exists(self, transaction_id: str) -> bool:
        """Check if a transaction with this id is stored."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT 1 FROM transactions WHERE id = ?", (transaction_id,))
            return cursor.fetchone() is not None

    def get_transaction_by_id(self, transaction_id: str) -> Transaction | None:
        """Get a single transaction by ID."""
        with self._get_connection() as conn:
            cursor = conn.execute(f"SELECT {COLUMNS} FROM transactions WHERE id = ?", (transaction_id,))
            row = cursor.fetchone()
            return self._row_to_transaction(row) if row else None

    def delete_transaction(self, transaction_id: str) -> bool:
        """Delete one transaction. Returns False if it did not exist."""
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))
            conn.commit()
            return cursor.rowcount > 0

    def delete_batch(self, transaction_ids: Iterable[str]) -> int:
        """Delete many transactions in a single atomic commit."""
        ids = list(transaction_ids)
        if not ids:
            return 0
        with self._get_connection() as conn:
            # The connection context manager rolls back on any error
            with conn:
                deleted = 0
                for transaction_id in ids:
                    cursor = conn.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))
                    deleted += cursor.rowcount
        return deleted

    def get_transaction_count(self) -> int:
        """Get total number of transactions."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) as count FROM transactions")
            return cursor.fetchone()["count"]

    def add_transaction_with_stock(self, transaction: Transaction, change: float, reason: str) -> StockHistoryEntry:
        """
        Store a transaction and apply its stock change in one commit.

        Raises:
            StockItemNotFoundError: If the gas type has no stock item
            InsufficientStockError: If the change would leave negative stock
        """
        with self._get_connection() as conn:
            with conn:
                # Take the write lock before reading the current level
                conn.execute("BEGIN IMMEDIATE")
                previous = self._current_stock(conn, transaction.gas_type)
                new_quantity = round(previous + change, 3)
                if new_quantity < 0:
                    raise InsufficientStockError(transaction.gas_type, previous, -change)
                entry = self._record_stock_change(
                    conn, transaction.gas_type, previous, new_quantity, reason, transaction.id
                )
                conn.execute(f"INSERT INTO transactions ({COLUMNS}) VALUES ({_PLACEHOLDERS})", self._to_row(transaction))
        return entry

    def add_stock_item(self, item: StockItem) -> bool:
        """Add a stock item. Returns False if the gas type is already tracked."""
        with self._get_connection() as conn:
            try:
                conn.execute(
                    "INSERT INTO stock (gas_type, price, stock, last_updated) VALUES (?, ?, ?, ?)",
                    (item.gas_type, item.price, item.stock, _iso(item.last_updated or utc_now())),
                )
                conn.commit()
                return True
            except sqlite3.IntegrityError:
                return False

    def get_stock_item(self, gas_type: str) -> StockItem | None:
        """Get the stock item for a gas type."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM stock WHERE gas_type = ?", (gas_type,)).fetchone()
            return self._row_to_stock_item(row) if row else None

    def list_stock(self) -> list[StockItem]:
        """Get all stock items ordered by gas type."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT * FROM stock ORDER BY gas_type")
            return [self._row_to_stock_item(row) for row in cursor.fetchall()]

    def set_stock_quantity(self, gas_type: str, new_quantity: float, reason: str) -> StockHistoryEntry:
        """Overwrite a stock level and record the change."""
        with self._get_connection() as conn:
            with conn:
                conn.execute("BEGIN IMMEDIATE")
                previous = self._current_stock(conn, gas_type)
                return self._record_stock_change(conn, gas_type, previous, new_quantity, reason)

    def get_stock_history(self, gas_type: str | None = None, limit: int = 50) -> list[StockHistoryEntry]:
        """Get stock changes, newest first."""
        query = "SELECT * FROM stock_history"
        params: list = []
        if gas_type:
            query += " WHERE gas_type = ?"
            params.append(gas_type)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            return [StockHistoryEntry(**dict(row)) for row in cursor.fetchall()]

    def _current_stock(self, conn: sqlite3.Connection, gas_type: str) -> float:
        row = conn.execute("SELECT stock FROM stock WHERE gas_type = ?", (gas_type,)).fetchone()
        if row is None:
            raise StockItemNotFoundError(gas_type)
        return row["stock"]

    def _record_stock_change(
        self,
        conn: sqlite3.Connection,
        gas_type: str,
        previous: float,
        new_quantity: float,
        reason: str,
        transaction_id: str | None = None,
    ) -> StockHistoryEntry:
        """Update the level and append a history entry on an open connection."""
        now = utc_now()
        change = round(new_quantity - previous, 3)
        conn.execute(
            "UPDATE stock SET stock = ?, last_updated = ? WHERE gas_type = ?",
            (new_quantity, now.isoformat(), gas_type),
        )
        cursor = conn.execute(
            """
            INSERT INTO stock_history
                (gas_type, timestamp, previous_stock, new_stock, change_amount, reason, transaction_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (gas_type, now.isoformat(), previous, new_quantity, change, reason, transaction_id),
        )
        return StockHistoryEntry(
            id=cursor.lastrowid,
            gas_type=gas_type,
            timestamp=now,
            previous_stock=previous,
            new_stock=new_quantity,
            change_amount=change,
            reason=reason,
            transaction_id=transaction_id,
        )

    def _row_to_stock_item(self, row: sqlite3.Row) -> StockItem:
        return StockItem(
            gas_type=row["gas_type"],
            price=row["price"],
            stock=row["stock"],
            last_updated=datetime.fromisoformat(row["last_updated"]),
        )

    def _to_row(self, transaction: Transaction) -> tuple:
        """Convert a Transaction model into column values."""
        card_details = (
            json.dumps(transaction.card_details.model_dump(by_alias=True, exclude_none=True))
            if transaction.card_details is not None
            else None
        )
        extra = json.dumps(transaction.model_extra) if transaction.model_extra else None
        return (
            transaction.id,
            transaction.date.isoformat(),
            to_epoch_ms(transaction.date),
            transaction.gas_type,
            transaction.kgs,
            transaction.payment_method,
            transaction.total,
            transaction.currency,
            _iso(transaction.created_at),
            transaction.customer_name,
            transaction.phone_number,
            _iso(transaction.due_date),
            _flag(transaction.paid),
            _iso(transaction.paid_date),
            card_details,
            _flag(transaction.is_restock),
            transaction.reason,
            extra,
        )

    def _row_to_transaction(self, row: sqlite3.Row) -> Transaction:
        """Convert a database row to a Transaction model."""
        extra = json.loads(row["extra"]) if row["extra"] else {}
        return Transaction(
            **extra,
            id=row["id"],
            date=datetime.fromisoformat(row["date"]),
            gas_type=row["gas_type"],
            kgs=row["kgs"],
            payment_method=row["payment_method"],
            total=row["total"],
            currency=row["currency"],
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
            customer_name=row["customer_name"],
            phone_number=row["phone_number"],
            due_date=datetime.fromisoformat(row["due_date"]) if row["due_date"] else None,
            paid=bool(row["paid"]) if row["paid"] is not None else None,
            paid_date=datetime.fromisoformat(row["paid_date"]) if row["paid_date"] else None,
            card_details=CardDetails(**json.loads(row["card_details"])) if row["card_details"] else None,
            is_restock=bool(row["is_restock"]) if row["is_restock"] is not None else None,
            reason=row["reason"],
        )


# Global database instance
db = Database()
