"""Pytest configuration for test isolation.

The application creates its SQLite database under ``DATA_DIR`` as soon as
``gasdesk.db.sqlite`` is imported. Point it at a throwaway directory before
any test module imports the package so tests never touch ``~/.gasdesk``.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="gasdesk-tests-"))

from gasdesk.db.sqlite import Database  # noqa: E402
from gasdesk.models import StockItem, Transaction  # noqa: E402

BASE_TIME = datetime(2024, 3, 15, 10, 0, 0, tzinfo=timezone.utc)


def make_transaction(
    txn_id: str,
    seconds: float = 0,
    gas_type: str = "LPG",
    kgs: float = 12.5,
    payment_method: str = "Cash",
    total: float = 25.0,
    **extra,
) -> Transaction:
    """Create a test transaction dated ``seconds`` after BASE_TIME."""
    return Transaction(
        id=txn_id,
        date=BASE_TIME + timedelta(seconds=seconds),
        gas_type=gas_type,
        kgs=kgs,
        payment_method=payment_method,
        total=total,
        currency="USD",
        **extra,
    )


@pytest.fixture
def repo(tmp_path: Path) -> Database:
    """A fresh SQLite database per test."""
    return Database(db_path=tmp_path / "test.db")


def seed_stock(repo: Database, gas_type: str = "LPG", stock: float = 500.0, price: float = 2.5) -> None:
    """Start tracking a gas type with the given kilograms on hand."""
    repo.add_stock_item(StockItem(gas_type=gas_type, price=price, stock=stock))
