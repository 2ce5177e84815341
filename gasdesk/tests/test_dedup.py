"""Tests for duplicate transaction detection."""

import random

import pytest
from conftest import make_transaction

from gasdesk.services.dedup import (
    AnchoredGrouping,
    TransitiveClosureGrouping,
    canonical_of,
    filter_duplicates,
    find_duplicate_groups,
    get_grouping_strategy,
    is_duplicate_pair,
    removable_members,
)


def ids(transactions) -> list[str]:
    return [t.id for t in transactions]


class TestIsDuplicatePair:
    """Test the pairwise duplicate rule."""

    def test_matching_fields_within_window(self):
        """Should flag identical sales 20 seconds apart."""
        a = make_transaction("a", 0)
        b = make_transaction("b", 20)
        assert is_duplicate_pair(a, b) is True

    def test_symmetric(self):
        """Should give the same answer regardless of argument order."""
        pairs = [
            (make_transaction("a", 0), make_transaction("b", 59)),
            (make_transaction("a", 0), make_transaction("b", 61)),
            (make_transaction("a", 0), make_transaction("b", 5, kgs=6.0)),
            (make_transaction("a", 30), make_transaction("b", 0, payment_method="Card")),
        ]
        for a, b in pairs:
            assert is_duplicate_pair(a, b) == is_duplicate_pair(b, a)

    def test_window_boundary_is_inclusive(self):
        """Should match at exactly the window and not one millisecond past it."""
        a = make_transaction("a", 0)
        assert is_duplicate_pair(a, make_transaction("b", 60)) is True
        assert is_duplicate_pair(a, make_transaction("c", 60.001)) is False

    def test_custom_window(self):
        """Should honour a caller supplied window."""
        a = make_transaction("a", 0)
        b = make_transaction("b", 90)
        assert is_duplicate_pair(a, b, window_ms=60_000) is False
        assert is_duplicate_pair(a, b, window_ms=120_000) is True

    def test_different_gas_type(self):
        """Should not match different gas types."""
        assert is_duplicate_pair(make_transaction("a", 0), make_transaction("b", 1, gas_type="Propane")) is False

    def test_different_quantity(self):
        """Should compare quantities exactly."""
        assert is_duplicate_pair(make_transaction("a", 0), make_transaction("b", 1, kgs=12.6)) is False

    def test_different_payment_method(self):
        """Should not match different payment methods."""
        assert is_duplicate_pair(make_transaction("a", 0), make_transaction("b", 1, payment_method="Card")) is False

    def test_string_fields_compared_exactly(self):
        """Should not fold case or whitespace."""
        a = make_transaction("a", 0, gas_type="LPG")
        assert is_duplicate_pair(a, make_transaction("b", 1, gas_type="lpg")) is False
        assert is_duplicate_pair(a, make_transaction("c", 1, gas_type="LPG ")) is False

    def test_uses_event_time_not_write_time(self):
        """Should window on ``date`` even when created_at differs wildly."""
        a = make_transaction("a", 0, created_at="2024-01-01T00:00:00Z")
        b = make_transaction("b", 30, created_at="2024-06-01T00:00:00Z")
        assert is_duplicate_pair(a, b) is True


class TestFindDuplicateGroups:
    """Test anchored duplicate grouping."""

    def test_empty_input(self):
        """Should return no groups for no transactions."""
        assert find_duplicate_groups([]) == []

    def test_no_duplicates(self):
        """Should return no groups when nothing matches."""
        transactions = [
            make_transaction("a", 0),
            make_transaction("b", 10, kgs=6.0),
            make_transaction("c", 300),
        ]
        assert find_duplicate_groups(transactions) == []

    def test_scenario_three_sales_one_outside_anchor_window(self):
        """Should group T+0 and T+20 and leave T+90 standalone."""
        transactions = [
            make_transaction("t0", 0),
            make_transaction("t20", 20),
            make_transaction("t90", 90),
        ]
        groups = find_duplicate_groups(transactions, 60_000)
        assert len(groups) == 1
        assert ids(groups[0]) == ["t0", "t20"]

    def test_chain_is_split_at_the_anchor_window(self):
        """Should compare candidates to the anchor only, not to every member."""
        # A-B and B-C are within 60s but A-C is not
        transactions = [
            make_transaction("A", 0),
            make_transaction("B", 40),
            make_transaction("C", 80),
        ]
        groups = find_duplicate_groups(transactions)
        assert [ids(g) for g in groups] == [["A", "B"]]

    def test_later_chain_member_anchors_its_own_group(self):
        """Should let an unvisited record start a new group after the first one."""
        transactions = [
            make_transaction("A", 0),
            make_transaction("B", 40),
            make_transaction("C", 80),
            make_transaction("D", 100),
        ]
        groups = find_duplicate_groups(transactions)
        assert [ids(g) for g in groups] == [["A", "B"], ["C", "D"]]

    def test_sorts_by_date_before_grouping(self):
        """Should anchor on the earliest record regardless of input order."""
        transactions = [
            make_transaction("late", 50),
            make_transaction("early", 0),
            make_transaction("mid", 30),
        ]
        groups = find_duplicate_groups(transactions)
        assert [ids(g) for g in groups] == [["early", "mid", "late"]]

    def test_interleaved_buckets(self):
        """Should keep groups of different products apart."""
        transactions = [
            make_transaction("lpg-1", 0),
            make_transaction("o2-1", 5, gas_type="Oxygen"),
            make_transaction("lpg-2", 10),
            make_transaction("o2-2", 15, gas_type="Oxygen"),
            make_transaction("card", 12, payment_method="Card"),
        ]
        groups = find_duplicate_groups(transactions)
        assert [ids(g) for g in groups] == [["lpg-1", "lpg-2"], ["o2-1", "o2-2"]]

    def test_same_timestamp_keeps_input_order(self):
        """Should sort stably when dates tie."""
        transactions = [make_transaction("x", 0), make_transaction("y", 0), make_transaction("z", 0)]
        groups = find_duplicate_groups(transactions)
        assert [ids(g) for g in groups] == [["x", "y", "z"]]

    def test_deterministic_across_runs_and_input_orders(self):
        """Should produce the same groups every time for the same records."""
        transactions = [make_transaction(f"t{i}", i * 25) for i in range(12)]
        transactions += [make_transaction(f"c{i}", i * 25 + 1, payment_method="Card") for i in range(6)]
        expected = [ids(g) for g in find_duplicate_groups(transactions)]

        rng = random.Random(42)
        for _ in range(10):
            shuffled = transactions[:]
            rng.shuffle(shuffled)
            assert [ids(g) for g in find_duplicate_groups(shuffled)] == expected

    def test_groups_match_naive_anchor_scan(self):
        """Should agree with a direct scan of every anchor against every record."""
        rng = random.Random(7)
        transactions = [
            make_transaction(
                f"t{i}",
                rng.randint(0, 600),
                gas_type=rng.choice(["LPG", "Oxygen"]),
                kgs=rng.choice([6.0, 12.5]),
                payment_method=rng.choice(["Cash", "Card"]),
            )
            for i in range(80)
        ]

        ordered = sorted(transactions, key=lambda t: t.date)
        visited: set[str] = set()
        expected = []
        for anchor in ordered:
            if anchor.id in visited:
                continue
            visited.add(anchor.id)
            group = [anchor]
            for other in ordered:
                if other.id not in visited and is_duplicate_pair(anchor, other):
                    group.append(other)
                    visited.add(other.id)
            if len(group) > 1:
                expected.append(ids(group))

        assert [ids(g) for g in find_duplicate_groups(transactions)] == expected


class TestTransitiveClosureGrouping:
    """Test the opt-in transitive grouping strategy."""

    def test_merges_chains(self):
        """Should merge A-B-C when neighbours are within the window."""
        transactions = [
            make_transaction("A", 0),
            make_transaction("B", 40),
            make_transaction("C", 80),
        ]
        groups = find_duplicate_groups(transactions, strategy=TransitiveClosureGrouping())
        assert [ids(g) for g in groups] == [["A", "B", "C"]]

    def test_breaks_on_gap(self):
        """Should start a new group after a gap larger than the window."""
        transactions = [
            make_transaction("A", 0),
            make_transaction("B", 40),
            make_transaction("C", 200),
            make_transaction("D", 230),
        ]
        groups = find_duplicate_groups(transactions, strategy=TransitiveClosureGrouping())
        assert [ids(g) for g in groups] == [["A", "B"], ["C", "D"]]

    def test_orders_groups_by_earliest_member(self):
        """Should emit groups in the same order as the anchored scan."""
        transactions = [
            make_transaction("o2-1", 5, gas_type="Oxygen"),
            make_transaction("o2-2", 15, gas_type="Oxygen"),
            make_transaction("lpg-1", 0),
            make_transaction("lpg-2", 10),
        ]
        groups = find_duplicate_groups(transactions, strategy=TransitiveClosureGrouping())
        assert [ids(g) for g in groups] == [["lpg-1", "lpg-2"], ["o2-1", "o2-2"]]


class TestGetGroupingStrategy:
    """Test strategy lookup by name."""

    def test_known_names(self):
        """Should build the named strategies."""
        assert isinstance(get_grouping_strategy("anchored"), AnchoredGrouping)
        assert isinstance(get_grouping_strategy("transitive"), TransitiveClosureGrouping)

    def test_unknown_name(self):
        """Should reject unknown names."""
        with pytest.raises(ValueError, match="Unknown grouping strategy"):
            get_grouping_strategy("fuzzy")


class TestCanonicalOf:
    """Test canonical record selection."""

    def test_returns_earliest_regardless_of_order(self):
        """Should pick the minimum date for every permutation."""
        group = [make_transaction("b", 20), make_transaction("c", 45), make_transaction("a", 3)]
        for shift in range(len(group)):
            rotated = group[shift:] + group[:shift]
            assert canonical_of(rotated).id == "a"
            assert canonical_of(list(reversed(rotated))).id == "a"

    def test_removable_members_excludes_canonical(self):
        """Should return every other member, oldest first."""
        group = [make_transaction("b", 20), make_transaction("a", 0), make_transaction("c", 40)]
        assert ids(removable_members(group)) == ["b", "c"]

    def test_empty_group(self):
        """Should refuse an empty group."""
        with pytest.raises(ValueError):
            canonical_of([])


class TestFilterDuplicates:
    """Test non-destructive duplicate filtering."""

    def test_scenario_keeps_first_and_standalone(self):
        """Should keep T+0 and T+90 and drop T+20."""
        transactions = [
            make_transaction("t0", 0),
            make_transaction("t20", 20),
            make_transaction("t90", 90),
        ]
        assert ids(filter_duplicates(transactions, 60_000)) == ["t0", "t90"]

    def test_preserves_caller_order(self):
        """Should keep survivors in the order they were given (newest first here)."""
        transactions = [
            make_transaction("t300", 300, kgs=6.0),
            make_transaction("t20", 20),
            make_transaction("t10", 10, gas_type="Oxygen"),
            make_transaction("t0", 0),
        ]
        assert ids(filter_duplicates(transactions)) == ["t300", "t10", "t0"]

    def test_idempotent(self):
        """Should be a no-op when applied to its own output."""
        rng = random.Random(3)
        transactions = [
            make_transaction(f"t{i}", rng.randint(0, 400), kgs=rng.choice([6.0, 12.5]))
            for i in range(60)
        ]
        for strategy in (AnchoredGrouping(), TransitiveClosureGrouping()):
            once = filter_duplicates(transactions, strategy=strategy)
            twice = filter_duplicates(once, strategy=strategy)
            assert ids(twice) == ids(once)

    def test_passthrough_fields_survive(self):
        """Should not drop credit, restock or unknown fields."""
        credit = make_transaction(
            "credit",
            0,
            payment_method="Credit",
            customer_name="Amina",
            phone_number="0700000000",
            due_date="2024-04-01T00:00:00Z",
            paid=False,
            card_details={},
            userId="user-1",
        )
        restock = make_transaction("restock", 500, is_restock=True, reason="Weekly delivery")
        result = filter_duplicates([credit, restock])

        assert result[0].customer_name == "Amina"
        assert result[0].paid is False
        assert result[0].to_record()["userId"] == "user-1"
        assert result[1].is_restock is True
        assert result[1].reason == "Weekly delivery"

    def test_empty(self):
        """Should return an empty list for no transactions."""
        assert filter_duplicates([]) == []
