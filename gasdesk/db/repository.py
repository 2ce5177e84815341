"""Storage boundary used by the duplicate reconciliation services."""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from gasdesk.models import Transaction


class TransactionRepository(Protocol):
    """What the reconciliation engine needs from a transaction store."""

    def list_all(self) -> list[Transaction]:
        """Return every transaction ordered by ``date`` ascending."""
        ...

    def exists(self, transaction_id: str) -> bool:
        """Return True if a transaction with this id is still stored."""
        ...

    def delete_batch(self, transaction_ids: Iterable[str]) -> int:
        """Delete all ids in one atomic commit. Returns the number deleted."""
        ...

    def list_since(self, timestamp: datetime) -> list[Transaction]:
        """Return transactions whose ``date`` is at or after ``timestamp``."""
        ...
