"""Duplicate cleanup and the pre-submit duplicate guard.

Both entry points convert every failure into a result value so callers (the
API, scheduled jobs) never see an exception from them. Neither retries: a
failed run is safe to repeat because the cleanup commit is all-or-nothing.
"""

import logging
from datetime import datetime, timedelta

from gasdesk.config import settings
from gasdesk.db.repository import TransactionRepository
from gasdesk.models import DuplicateCheck, ReconcileResult, ValidationResult, ensure_utc, utc_now
from gasdesk.services.dedup import (
    GroupingStrategy,
    find_duplicate_groups,
    get_grouping_strategy,
    removable_members,
)

logger = logging.getLogger(__name__)


def _default_repository() -> TransactionRepository:
    from gasdesk.db.sqlite import db

    return db


def _still_exists(repository: TransactionRepository, transaction_id: str) -> bool:
    """Re-check a candidate before deleting it; lookup failures count as gone."""
    try:
        return repository.exists(transaction_id)
    except Exception as e:
        logger.warning(f"Existence check failed for {transaction_id}, skipping: {e}")
        return False


def reconcile(
    repository: TransactionRepository | None = None,
    window_ms: int | None = None,
    strategy: GroupingStrategy | None = None,
) -> ReconcileResult:
    """
    Detect duplicate transactions and delete all but the earliest of each group.

    Args:
        repository: Transaction store. Defaults to the SQLite database.
        window_ms: Duplicate time window. Defaults to settings.
        strategy: Grouping strategy. Defaults to the configured one.

    Returns:
        ReconcileResult with the number of records actually removed.
    """
    if repository is None:
        repository = _default_repository()
    window_ms = window_ms if window_ms is not None else settings.duplicate_window_ms
    strategy = strategy or get_grouping_strategy(settings.grouping_strategy)

    try:
        transactions = repository.list_all()
        duplicate_groups = find_duplicate_groups(transactions, window_ms, strategy)

        if not duplicate_groups:
            logger.info(f"Scanned {len(transactions)} transactions, no duplicates found")
            return ReconcileResult(
                success=True,
                message="No duplicate transactions found",
                removed_count=0,
            )

        to_delete: list[str] = []
        for group in duplicate_groups:
            for duplicate in removable_members(group):
                if _still_exists(repository, duplicate.id):
                    to_delete.append(duplicate.id)
                else:
                    logger.debug(f"Duplicate {duplicate.id} already removed, skipping")

        if to_delete:
            repository.delete_batch(to_delete)
        removed_count = len(to_delete)

        logger.info(
            f"Removed {removed_count} duplicate transactions "
            f"from {len(duplicate_groups)} groups ({len(transactions)} scanned)"
        )
        return ReconcileResult(
            success=True,
            message=f"Successfully removed {removed_count} duplicate transactions",
            removed_count=removed_count,
            duplicate_groups=duplicate_groups,
        )
    except Exception as e:
        logger.error(f"Error deduplicating transactions: {e}")
        return ReconcileResult(
            success=False,
            message="Failed to deduplicate transactions",
            error=str(e),
        )


def validate_incoming_transaction(
    candidate: DuplicateCheck,
    repository: TransactionRepository | None = None,
    now: datetime | None = None,
    window_ms: int | None = None,
    lookback_ms: int | None = None,
) -> ValidationResult:
    """
    Check a new transaction against recently stored ones before it is saved.

    Only entries dated within the lookback period (2 minutes by default) are
    considered. This is best effort: two concurrent submissions can both pass
    before either is stored, and ``reconcile`` is the backstop for that.
    """
    if repository is None:
        repository = _default_repository()
    window = timedelta(milliseconds=window_ms if window_ms is not None else settings.duplicate_window_ms)
    lookback = timedelta(milliseconds=lookback_ms if lookback_ms is not None else settings.presubmit_lookback_ms)
    now = ensure_utc(now) if now is not None else utc_now()
    candidate_date = candidate.date or now

    try:
        for existing in repository.list_since(now - lookback):
            if (
                existing.gas_type == candidate.gas_type
                and existing.kgs == candidate.kgs
                and existing.payment_method == candidate.payment_method
                and abs(existing.date - candidate_date) <= window
            ):
                logger.info(f"Incoming {candidate.gas_type} transaction matches existing {existing.id}")
                return ValidationResult(
                    success=False,
                    is_duplicate=True,
                    message="This appears to be a duplicate transaction",
                    existing_transaction=existing,
                )

        return ValidationResult(success=True, is_duplicate=False, message="Transaction is valid")
    except Exception as e:
        logger.error(f"Error validating transaction: {e}")
        return ValidationResult(
            success=False,
            is_duplicate=False,
            message="Failed to validate transaction",
            error=str(e),
        )
