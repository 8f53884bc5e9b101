"""
Tests for the two-pass matcher.
"""
from datetime import date, datetime, timezone
from decimal import Decimal

from ledgermatch.models import (
    EntryKind,
    LedgerEntry,
    MatchMethod,
    ReconciliationConfig,
    Strategy,
    Transaction,
)
from ledgermatch.services.matching import Matcher

FIXED_NOW = datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)


def _txn(txn_id, amount, when, description, direction="credit"):
    return Transaction(
        id=txn_id, date=when, amount=Decimal(amount), direction=direction, description=description,
    )


def _entry(entry_id, amount, when, description, kind=EntryKind.REVENUE):
    return LedgerEntry(id=entry_id, date=when, amount=Decimal(amount), kind=kind, description=description)


def _mixed_batch():
    """Pairs of decreasing quality, each transaction with its own entry."""
    transactions = [
        _txn("t1", "1500.00", date(2024, 3, 1), "Payment received from Client 12"),
        _txn("t2", "820.00", date(2024, 3, 4), "Office rent March", direction="debit"),
        _txn("t3", "300.00", date(2024, 3, 6), "Consulting fee"),
        _txn("t4", "1500.00", date(2024, 3, 9), "Payment received from Client 40"),
    ]
    entries = [
        _entry("e1", "1500.00", date(2024, 3, 1), "Client 12 payment"),
        _entry("e2", "820.00", date(2024, 3, 4), "Office rent March", kind=EntryKind.EXPENSE),
        _entry("e3", "300.00", date(2024, 3, 8), "consulting"),
        _entry("e4", "1530.00", date(2024, 3, 9), "Client 40 payment"),
    ]
    return transactions, entries


class TestMatcher:
    """Tests for Matcher.match."""

    def setup_method(self):
        self.matcher = Matcher(clock=lambda: FIXED_NOW)

    def test_exact_pair_is_automatic(self):
        """Same amount and date is an automatic first-pass match."""
        t = _txn("t1", "1500.00", date(2024, 3, 1), "Payment received from Client 12")
        e = _entry("e1", "1500.00", date(2024, 3, 1), "Client 12 payment")

        result = self.matcher.match([t], [e])

        assert len(result.matched) == 1
        match = result.matched[0]
        assert match.automatic is True
        assert match.method == MatchMethod.PASS_1
        assert abs(match.score - 0.86) < 1e-9
        assert result.unmatched_transactions == []
        assert result.unmatched_entries == []

    def test_value_divergence_left_unmatched_under_moderate(self):
        """A 2% divergence scores too low for the moderate second pass."""
        t = _txn("t1", "1500.00", date(2024, 3, 1), "Payment received from Client 12")
        e = _entry("e1", "1530.00", date(2024, 3, 1), "Client 12 payment")

        result = self.matcher.match([t], [e], ReconciliationConfig(strategy=Strategy.MODERATE))

        # 0.3 date + 0.06 description is under the moderate floor
        assert result.matched == []
        assert result.pass_2_count == 0
        assert [x.id for x in result.unmatched_transactions] == ["t1"]

    def test_value_divergence_matched_in_second_pass_under_aggressive(self):
        """Aggressive accepts the same pair in the second pass, for review."""
        t = _txn("t1", "1500.00", date(2024, 3, 1), "Payment received from Client 12")
        e = _entry("e1", "1530.00", date(2024, 3, 1), "Client 12 payment")

        result = self.matcher.match([t], [e], ReconciliationConfig(strategy=Strategy.AGGRESSIVE))

        assert result.pass_1_count == 0
        assert result.pass_2_count == 1
        match = result.matched[0]
        assert match.method == MatchMethod.PASS_2
        assert match.automatic is False
        assert abs(match.score - 0.36) < 1e-9

    def test_conservative_skips_second_pass(self):
        """Conservative never runs the second pass."""
        t = _txn("t1", "1500.00", date(2024, 3, 1), "Payment received from Client 12")
        e = _entry("e1", "1530.00", date(2024, 3, 1), "Client 12 payment")

        result = self.matcher.match([t], [e], ReconciliationConfig(strategy=Strategy.CONSERVATIVE))

        assert result.matched == []
        assert result.pass_2_count == 0

    def test_incompatible_kind_is_never_matched(self):
        """A credit never matches an expense."""
        t = _txn("t1", "1500.00", date(2024, 3, 1), "Client 12 payment")
        e = _entry("e1", "1500.00", date(2024, 3, 1), "Client 12 payment", kind=EntryKind.EXPENSE)

        result = self.matcher.match([t], [e], ReconciliationConfig(strategy=Strategy.AGGRESSIVE))

        assert result.matched == []

    def test_tie_goes_to_first_entry(self):
        """Equal scores keep the first entry."""
        t = _txn("t1", "1500.00", date(2024, 3, 1), "Client 12 payment")
        first = _entry("e1", "1500.00", date(2024, 3, 1), "Client 12 payment")
        second = _entry("e2", "1500.00", date(2024, 3, 1), "Client 12 payment")

        result = self.matcher.match([t], [first, second])

        assert result.matched[0].entry.id == "e1"
        assert [e.id for e in result.unmatched_entries] == ["e2"]

    def test_each_entry_is_used_once(self):
        """An entry is never matched twice."""
        t1 = _txn("t1", "1500.00", date(2024, 3, 1), "Client 12 payment")
        t2 = _txn("t2", "1500.00", date(2024, 3, 1), "Client 12 payment")
        e = _entry("e1", "1500.00", date(2024, 3, 1), "Client 12 payment")

        result = self.matcher.match([t1, t2], [e])

        assert len(result.matched) == 1
        assert [t.id for t in result.unmatched_transactions] == ["t2"]

    def test_malformed_rows_are_reported_not_raised(self):
        """Bad rows are collected as errors and the rest still match."""
        rows = [
            {"id": "t1", "date": "2024-03-01", "amount": "1500.00", "direction": "credit",
             "description": "Client 12 payment"},
            {"id": "t2", "date": "not-a-date", "amount": "10", "direction": "credit"},
            {"id": "t3", "date": "2024-03-01", "amount": "abc", "direction": "credit"},
        ]
        entries = [{"id": "e1", "date": "2024-03-01", "amount": "1500.00", "kind": "revenue",
                    "description": "Client 12 payment"}]

        result = self.matcher.match(rows, entries)

        assert len(result.matched) == 1
        assert [err.record_id for err in result.errors] == ["t2", "t3"]
        assert all(err.record_type == "transaction" for err in result.errors)

    def test_duplicate_ids_in_batch_are_reported(self):
        """Repeated transaction ids are reported and kept once."""
        t = _txn("t1", "1500.00", date(2024, 3, 1), "Client 12 payment")
        result = self.matcher.match([t, t], [])
        assert len(result.errors) == 1
        assert result.errors[0].reason == "duplicate id in batch"
        assert len(result.unmatched_transactions) == 1

    def test_match_is_deterministic(self):
        """Same inputs, same result, under every strategy."""
        transactions, entries = _mixed_batch()
        for strategy in Strategy:
            config = ReconciliationConfig(strategy=strategy)
            first = self.matcher.match(transactions, entries, config)
            second = self.matcher.match(transactions, entries, config)
            assert first.model_dump() == second.model_dump()

    def test_automatic_matches_grow_with_permissiveness(self):
        """Looser strategies never give fewer automatic matches."""
        transactions, entries = _mixed_batch()
        counts = {
            strategy: self.matcher.match(transactions, entries, ReconciliationConfig(strategy=strategy)).automatic_count
            for strategy in Strategy
        }
        assert counts[Strategy.AGGRESSIVE] >= counts[Strategy.MODERATE] >= counts[Strategy.CONSERVATIVE]

    def test_inputs_are_not_mutated(self):
        """Matching does not modify the caller's entries."""
        transactions, entries = _mixed_batch()
        before = [e.model_dump() for e in entries]
        self.matcher.match(transactions, entries)
        assert [e.model_dump() for e in entries] == before


class TestManualMatching:
    def setup_method(self):
        self.matcher = Matcher(clock=lambda: FIXED_NOW)

    def test_manual_match_is_never_automatic(self):
        """Manual matches are scored but always need review."""
        t = _txn("t1", "1500.00", date(2024, 3, 1), "Client 12 payment")
        e = _entry("e1", "1500.00", date(2024, 3, 1), "Client 12 payment")

        candidate = self.matcher.match_manually(t, e)

        assert candidate.automatic is False
        assert candidate.method == MatchMethod.MANUAL
        assert candidate.matched_at == FIXED_NOW
        assert 0.0 <= candidate.score <= 1.0

    def test_undo_returns_original_records(self):
        """Undo gives back the pair unchanged."""
        t = _txn("t1", "1500.00", date(2024, 3, 1), "Client 12 payment")
        e = _entry("e1", "1500.00", date(2024, 3, 1), "Client 12 payment")

        transaction, entry = Matcher.undo_match(self.matcher.match_manually(t, e))

        assert transaction == t
        assert entry == e
