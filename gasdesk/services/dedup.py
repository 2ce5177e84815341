"""Duplicate transaction detection for gasdesk.

Two sale records are duplicates when they share gas type, quantity and payment
method exactly and their event times (``date``) lie within a time window of
each other. Groups of duplicates are resolved by keeping the earliest record
(the canonical one) and treating the rest as removable.

Two grouping strategies are available:

- ``AnchoredGrouping`` (default): the earliest unvisited record anchors a
  group and only records within the window *of the anchor* join it. Chains
  A-B-C where only neighbours are within the window are split.
- ``TransitiveClosureGrouping``: records join a group when they are within
  the window of *any* member, so such chains merge into one group.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import timedelta
from typing import Protocol

from gasdesk.models import Transaction

DEFAULT_WINDOW_MS = 60_000

DuplicateGroup = list[Transaction]
_BucketKey = tuple[str, float, str]


def _bucket_key(txn: Transaction) -> _BucketKey:
    return (txn.gas_type, txn.kgs, txn.payment_method)


def _window(window_ms: int) -> timedelta:
    return timedelta(milliseconds=window_ms)


def sort_by_date(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Stable sort by event time, oldest first."""
    return sorted(transactions, key=lambda t: t.date)


def is_duplicate_pair(a: Transaction, b: Transaction, window_ms: int = DEFAULT_WINDOW_MS) -> bool:
    """
    Check whether two transactions look like the same real-world sale.

    String fields are compared exactly (no case or whitespace folding) and the
    window boundary is inclusive.
    """
    if a.gas_type != b.gas_type or a.kgs != b.kgs or a.payment_method != b.payment_method:
        return False
    return abs(a.date - b.date) <= _window(window_ms)


class GroupingStrategy(Protocol):
    """Partitions transactions into duplicate groups."""

    name: str

    def group(self, transactions: Sequence[Transaction], window_ms: int) -> list[DuplicateGroup]: ...


def _buckets(ordered: Sequence[Transaction]) -> dict[_BucketKey, list[int]]:
    """Index positions of the date-ordered list by duplicate-relevant fields."""
    buckets: dict[_BucketKey, list[int]] = defaultdict(list)
    for position, txn in enumerate(ordered):
        buckets[_bucket_key(txn)].append(position)
    return buckets


class AnchoredGrouping:
    """Groups every record within the window of the earliest unvisited record.

    Only records in the anchor's bucket can match it, and since positions in a
    bucket are date-ordered the forward scan stops at the first record past
    the window. Earlier records in the bucket are always already visited.
    """

    name = "anchored"

    def group(self, transactions: Sequence[Transaction], window_ms: int) -> list[DuplicateGroup]:
        ordered = sort_by_date(transactions)
        buckets = _buckets(ordered)
        window = _window(window_ms)
        visited: set[int] = set()
        groups: list[DuplicateGroup] = []

        for position, anchor in enumerate(ordered):
            if position in visited:
                continue
            visited.add(position)
            group = [anchor]

            for candidate in buckets[_bucket_key(anchor)]:
                if candidate in visited:
                    continue
                if ordered[candidate].date - anchor.date > window:
                    break
                group.append(ordered[candidate])
                visited.add(candidate)

            if len(group) > 1:
                groups.append(group)

        return groups


class TransitiveClosureGrouping:
    """Merges chains of records whose neighbours fall within the window."""

    name = "transitive"

    def group(self, transactions: Sequence[Transaction], window_ms: int) -> list[DuplicateGroup]:
        ordered = sort_by_date(transactions)
        window = _window(window_ms)
        chains: list[tuple[int, DuplicateGroup]] = []

        for positions in _buckets(ordered).values():
            current = [positions[0]]
            for previous, position in zip(positions, positions[1:]):
                if ordered[position].date - ordered[previous].date <= window:
                    current.append(position)
                else:
                    chains.append((current[0], [ordered[p] for p in current]))
                    current = [position]
            chains.append((current[0], [ordered[p] for p in current]))

        # Emit in order of each group's earliest member, like the anchored scan
        chains.sort(key=lambda chain: chain[0])
        return [group for _, group in chains if len(group) > 1]


_STRATEGIES: dict[str, type] = {
    AnchoredGrouping.name: AnchoredGrouping,
    TransitiveClosureGrouping.name: TransitiveClosureGrouping,
}


def get_grouping_strategy(name: str) -> GroupingStrategy:
    """Look up a grouping strategy by name ("anchored" or "transitive")."""
    try:
        return _STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"Unknown grouping strategy: {name!r}. Allowed: {sorted(_STRATEGIES)}") from None


def find_duplicate_groups(
    transactions: Sequence[Transaction],
    window_ms: int = DEFAULT_WINDOW_MS,
    strategy: GroupingStrategy | None = None,
) -> list[DuplicateGroup]:
    """
    Partition transactions into duplicate groups.

    Only groups with more than one member are returned. Each group lists its
    members oldest first.
    """
    if not transactions:
        return []
    return (strategy or AnchoredGrouping()).group(transactions, window_ms)


def canonical_of(group: Sequence[Transaction]) -> Transaction:
    """Return the member kept from a duplicate group: the earliest by date."""
    if not group:
        raise ValueError("Cannot pick a canonical transaction from an empty group")
    return sort_by_date(group)[0]


def removable_members(group: Sequence[Transaction]) -> list[Transaction]:
    """Return every member of a group except the canonical one."""
    return sort_by_date(group)[1:]


def filter_duplicates(
    transactions: Sequence[Transaction],
    window_ms: int = DEFAULT_WINDOW_MS,
    strategy: GroupingStrategy | None = None,
) -> list[Transaction]:
    """
    Drop non-canonical duplicates without touching storage.

    Survivors keep the caller's original ordering.
    """
    ids_to_remove = {
        txn.id
        for group in find_duplicate_groups(transactions, window_ms, strategy)
        for txn in removable_members(group)
    }
    return [txn for txn in transactions if txn.id not in ids_to_remove]
