"""Cylinder stock levels.

Sales draw stock down by the kilograms sold and restocks add to it. Every
change appends a history entry with the previous and new levels.
"""

import logging

from gasdesk.db.sqlite import StockItemNotFoundError, db
from gasdesk.models import (
    StockHistoryEntry,
    StockItem,
    StockItemCreate,
    Transaction,
    TransactionKind,
    utc_now,
)

logger = logging.getLogger(__name__)


class StockItemExistsError(Exception):
    """Raised when a gas type is already tracked."""

    def __init__(self, gas_type: str):
        super().__init__(f"Stock item already exists: {gas_type}")
        self.gas_type = gas_type


def stock_change_for(transaction: Transaction) -> tuple[float, str]:
    """Return the stock delta and history reason for a transaction."""
    if transaction.kind == TransactionKind.RESTOCK:
        return transaction.kgs, transaction.reason or "Restock"
    return -transaction.kgs, "Sale"


def list_stock() -> list[StockItem]:
    return db.list_stock()


def get_stock_item(gas_type: str) -> StockItem:
    """Get a stock item or raise StockItemNotFoundError."""
    item = db.get_stock_item(gas_type)
    if item is None:
        raise StockItemNotFoundError(gas_type)
    return item


def add_stock_item(payload: StockItemCreate) -> StockItem:
    """Start tracking a gas type."""
    item = StockItem(gas_type=payload.gas_type, price=payload.price, stock=payload.stock, last_updated=utc_now())
    if not db.add_stock_item(item):
        raise StockItemExistsError(payload.gas_type)
    logger.info(f"Tracking stock for {item.gas_type}: {item.stock} kg at {item.price}/kg")
    return item


def update_stock_quantity(gas_type: str, new_quantity: float, reason: str = "Manual update") -> StockHistoryEntry:
    """Set a stock level by hand, recording the change."""
    entry = db.set_stock_quantity(gas_type, new_quantity, reason)
    logger.info(f"Stock for {gas_type} set to {entry.new_stock} kg ({entry.change_amount:+} kg, {reason})")
    return entry


def stock_history(gas_type: str | None = None, limit: int = 50) -> list[StockHistoryEntry]:
    """Get recent stock changes, newest first."""
    if limit < 1:
        raise ValueError("limit must be at least 1")
    return db.get_stock_history(gas_type, limit)
