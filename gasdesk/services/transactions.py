"""Transaction recording, listing and monthly analytics."""

import logging
import math
import re
from uuid import uuid4

from gasdesk.config import settings
from gasdesk.db.sqlite import db
from gasdesk.models import (
    DuplicateCheck,
    DuplicateReport,
    GasTypeSummary,
    MonthlySummary,
    Transaction,
    TransactionCreate,
    TransactionKind,
    TransactionPage,
)
from gasdesk.services.dedup import filter_duplicates, find_duplicate_groups, get_grouping_strategy
from gasdesk.services.reconcile import validate_incoming_transaction
from gasdesk.services.stock import stock_change_for

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("all", "gasType", "paymentMethod", "date", "id", "customerName")
MONTH_PATTERN = re.compile(r"\d{4}-(0[1-9]|1[0-2])")


class TransactionNotFoundError(Exception):
    """Raised when a transaction id is not stored."""

    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class DuplicateTransactionError(Exception):
    """Raised when a new transaction looks like a recently stored one."""

    def __init__(self, existing: Transaction):
        super().__init__(f"Transaction appears to duplicate {existing.id}")
        self.existing = existing


def create_transaction(payload: TransactionCreate, force: bool = False) -> Transaction:
    """
    Record a new sale or restock and apply it to stock.

    The pre-submit duplicate guard runs first. A suspected duplicate raises
    DuplicateTransactionError unless ``force`` is set, in which case it is
    recorded anyway. Sales deduct their kilograms from the gas type's stock and
    restocks add them; the transaction and the stock change commit together.

    Args:
        payload: One of the TransactionCreate variants.
        force: Store even if the guard flags a duplicate.

    Raises:
        DuplicateTransactionError: If the guard flags a duplicate and not forced
        StockItemNotFoundError: If the gas type has no stock item
        InsufficientStockError: If a sale exceeds the stock on hand
    """
    check = DuplicateCheck(
        gas_type=payload.gas_type,
        kgs=payload.kgs,
        payment_method=payload.payment_method,
        date=payload.date,
    )
    validation = validate_incoming_transaction(check, repository=db)
    if validation.is_duplicate and not force:
        raise DuplicateTransactionError(validation.existing_transaction)
    if validation.error:
        # Guard is best effort; reconcile catches anything it misses
        logger.warning(f"Duplicate guard unavailable, recording anyway: {validation.error}")

    transaction = payload.to_transaction(str(uuid4()), settings.default_currency)
    change, reason = stock_change_for(transaction)
    db.add_transaction_with_stock(transaction, change, reason)
    logger.info(f"Recorded {transaction.kind.value} transaction {transaction.id} ({transaction.gas_type}, {transaction.kgs} kg)")
    return transaction


def get_transaction(transaction_id: str) -> Transaction:
    """Get a stored transaction or raise TransactionNotFoundError."""
    transaction = db.get_transaction_by_id(transaction_id)
    if transaction is None:
        raise TransactionNotFoundError(transaction_id)
    return transaction


def delete_transaction(transaction_id: str) -> None:
    """Manually delete a single transaction."""
    if not db.delete_transaction(transaction_id):
        raise TransactionNotFoundError(transaction_id)
    logger.info(f"Deleted transaction {transaction_id}")


def _matches_search(txn: Transaction, term: str, field: str) -> bool:
    """Case-insensitive substring search over the chosen field."""
    date_text = txn.date.isoformat().lower()
    if field == "gasType":
        return term in txn.gas_type.lower()
    if field == "paymentMethod":
        return term in txn.payment_method.lower()
    if field == "date":
        return term in date_text
    if field == "id":
        return term in txn.id.lower()
    if field == "customerName":
        return term in (txn.customer_name or "").lower()
    return (
        term in txn.gas_type.lower()
        or term in txn.payment_method.lower()
        or term in txn.currency.lower()
        or term in str(txn.total)
        or term in str(txn.kgs)
        or term in (txn.customer_name or "").lower()
        or term in date_text
    )


def validate_month(month: str) -> None:
    """Raise ValueError unless ``month`` is a "YYYY-MM" string."""
    if not MONTH_PATTERN.fullmatch(month):
        raise ValueError(f"Invalid month {month!r}, expected YYYY-MM")


def _in_month(txn: Transaction, month: str) -> bool:
    return txn.date.strftime("%Y-%m") == month


def list_transactions(
    month: str | None = None,
    search: str | None = None,
    search_field: str = "all",
    page: int = 1,
    page_size: int | None = None,
    hide_duplicates: bool = True,
) -> TransactionPage:
    """
    Get one page of transactions, newest first.

    Duplicates are filtered out before the month and search filters so that
    grouping always sees the full history.
    """
    if search_field not in SEARCH_FIELDS:
        raise ValueError(f"Unsupported search field: {search_field!r}. Allowed: {list(SEARCH_FIELDS)}")
    if page_size is None:
        page_size = settings.page_size
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    if month:
        validate_month(month)
    page = max(page, 1)

    transactions = list(reversed(db.list_all()))
    strategy = get_grouping_strategy(settings.grouping_strategy)
    groups = find_duplicate_groups(transactions, settings.duplicate_window_ms, strategy)

    visible = transactions
    if hide_duplicates:
        visible = filter_duplicates(transactions, settings.duplicate_window_ms, strategy)
    duplicates_hidden = len(transactions) - len(visible)
    if duplicates_hidden:
        logger.info(f"{duplicates_hidden} duplicate transactions hidden from view")

    if month:
        visible = [t for t in visible if _in_month(t, month)]
    if search:
        term = search.strip().lower()
        visible = [t for t in visible if _matches_search(t, term, search_field)]

    total = len(visible)
    start = (page - 1) * page_size
    return TransactionPage(
        items=visible[start : start + page_size],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
        duplicates_hidden=duplicates_hidden,
        duplicate_group_count=len(groups),
    )


def duplicate_report() -> DuplicateReport:
    """Preview the duplicate groups currently stored without deleting anything."""
    strategy = get_grouping_strategy(settings.grouping_strategy)
    groups = find_duplicate_groups(db.list_all(), settings.duplicate_window_ms, strategy)
    return DuplicateReport(
        group_count=len(groups),
        removable_count=sum(len(group) - 1 for group in groups),
        groups=groups,
    )


def summarize_month(month: str) -> MonthlySummary:
    """
    Summarize sales and restocks for one month ("YYYY-MM").

    Works on the de-duplicated set so flagged duplicates don't inflate totals.
    """
    validate_month(month)
    transactions = filter_duplicates(
        db.list_all(),
        settings.duplicate_window_ms,
        get_grouping_strategy(settings.grouping_strategy),
    )
    in_month = [t for t in transactions if _in_month(t, month)]

    by_gas: dict[str, GasTypeSummary] = {}
    revenue = 0.0
    outstanding = 0.0
    for txn in in_month:
        summary = by_gas.setdefault(txn.gas_type, GasTypeSummary(gas_type=txn.gas_type))
        if txn.kind == TransactionKind.RESTOCK:
            summary.kgs_restocked += txn.kgs
            continue
        summary.sales_count += 1
        summary.kgs_sold += txn.kgs
        summary.revenue += txn.total
        revenue += txn.total
        if txn.kind == TransactionKind.CREDIT and not txn.paid:
            outstanding += txn.total

    # Sort by revenue descending
    ordered = sorted(by_gas.values(), key=lambda s: s.revenue, reverse=True)
    for summary in ordered:
        summary.revenue = round(summary.revenue, 2)
        summary.kgs_sold = round(summary.kgs_sold, 3)
        summary.kgs_restocked = round(summary.kgs_restocked, 3)

    return MonthlySummary(
        month=month,
        transaction_count=len(in_month),
        revenue=round(revenue, 2),
        outstanding_credit=round(outstanding, 2),
        by_gas_type=ordered,
    )
