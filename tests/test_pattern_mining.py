"""
Tests for pattern mining and mapping rules.
"""
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from ledgermatch.models import (
    EntryKind,
    LedgerEntry,
    MappingRule,
    MatchCandidate,
    MatchMethod,
    PatternConfig,
    PatternKind,
    RuleMode,
    Transaction,
)
from ledgermatch.services.pattern_mining import (
    PatternMiner,
    classify_periodicity,
    extract_text_rule,
    keywords_key,
    rule_proximity,
)
from ledgermatch.services.pattern_store import PatternCatalog

FIXED_NOW = datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)


def _subscriptions():
    return [
        Transaction(
            id=f"t{month}", date=date(2024, month, 5), amount=Decimal("49.00"), direction="debit",
            description="ACME monthly subscription", counterparty="Acme",
        )
        for month in (1, 2, 3)
    ]


def _confirmed(transactions):
    return [
        MatchCandidate(
            transaction=t,
            entry=LedgerEntry(
                id=f"e-{t.id}", date=t.date, amount=t.amount, kind=EntryKind.EXPENSE,
                description="Acme subscription fee",
            ),
            score=0.95,
            automatic=True,
            method=MatchMethod.PASS_1,
            matched_at=FIXED_NOW,
        )
        for t in transactions
    ]


class TestHelpers:
    def test_keywords_key_sorts_long_words(self):
        """Short words are dropped and the rest sorted."""
        assert keywords_key("Payment, from ACME Corporation!") == "corporation_payment"

    def test_text_rule_needs_two_descriptions(self):
        """One description cannot produce a rule."""
        assert extract_text_rule(["ACME monthly subscription"]) is None

    def test_text_rule_is_common_words(self):
        """The rule is the alternation of shared words."""
        rule = extract_text_rule(["ACME monthly subscription", "acme subscription renewal"])
        assert rule == "(acme|subscription)"

    def test_text_rule_none_without_common_words(self):
        assert extract_text_rule(["alpha beta", "gamma delta"]) is None

    @pytest.mark.parametrize("dates,expected", [
        ([date(2024, 1, 5), date(2024, 2, 5), date(2024, 3, 5)], PatternKind.RECURRING),
        ([date(2024, 1, 1), date(2024, 4, 1), date(2024, 7, 1)], PatternKind.RECURRING),
        ([date(2022, 6, 1), date(2023, 6, 1), date(2024, 6, 1)], PatternKind.SEASONAL),
        ([date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)], PatternKind.PERIODIC),
        ([date(2024, 1, 1), date(2024, 1, 2), date(2024, 3, 1)], PatternKind.SINGULAR),
        ([date(2024, 1, 1)], PatternKind.SINGULAR),
    ])
    def test_periodicity(self, dates, expected):
        """Intervals between dates decide the pattern kind."""
        assert classify_periodicity(dates) == expected

    def test_rule_proximity(self):
        """Proximity is 1 for identical pairs and 0 when far apart."""
        t = Transaction(id="t", date=date(2024, 3, 1), amount=Decimal("100"), direction="credit")
        e = LedgerEntry(id="e", date=date(2024, 3, 1), amount=Decimal("100"), kind=EntryKind.REVENUE)
        assert rule_proximity(t, e) == pytest.approx(1.0)
        far = e.model_copy(update={"amount": Decimal("150"), "date": date(2024, 4, 1)})
        assert rule_proximity(t, far) == 0.0


class TestPatternMiner:
    def setup_method(self):
        self.catalog = PatternCatalog()
        self.miner = PatternMiner(self.catalog, clock=lambda: FIXED_NOW)

    def test_detects_text_and_day_of_month_patterns(self):
        """Three monthly debits give a text pattern and a day-of-month pattern."""
        result = self.miner.mine(_subscriptions())

        keys = sorted(p.key for p in result.new_patterns)
        assert keys == ["day:5:Acme", "text:(acme|monthly|subscription)"]

        text = next(p for p in result.new_patterns if p.key.startswith("text:"))
        assert text.kind == PatternKind.RECURRING
        assert text.confidence == pytest.approx(0.75)
        assert text.occurrences == 3
        assert text.matches("acme invoice")

        day = next(p for p in result.new_patterns if p.key.startswith("day:"))
        assert day.conditions == {"day_of_month": 5, "counterparty": "Acme"}
        assert day.confidence == pytest.approx(0.9)

    def test_redetection_updates_existing_pattern(self):
        """Seeing the group again raises occurrences and confidence."""
        self.miner.mine(_subscriptions())
        result = self.miner.mine(_subscriptions())

        assert result.new_patterns == []
        text = next(p for p in result.patterns if p.key.startswith("text:"))
        assert text.occurrences == 6
        assert text.confidence == pytest.approx(0.8)
        assert len(self.catalog.patterns()) == 2

    def test_examples_are_capped(self):
        """At most five examples are kept per pattern."""
        for _ in range(6):
            self.miner.mine(_subscriptions())
        text = next(p for p in self.catalog.patterns() if p.key.startswith("text:"))
        assert len(text.examples) == 5

    def test_small_groups_are_ignored(self):
        """Two transactions are not a pattern."""
        assert self.miner.mine(_subscriptions()[:2]).new_patterns == []

    def test_confirmed_matches_promote_rule(self):
        """Confirmed matches turn a text pattern into a suggested rule once."""
        transactions = _subscriptions()
        result = self.miner.mine(transactions, confirmed=_confirmed(transactions))

        assert len(result.new_rules) == 1
        rule = result.new_rules[0]
        assert rule.transaction_rule == "(acme|monthly|subscription)"
        assert rule.entry_rule == "(acme|subscription)"
        assert rule.mode == RuleMode.SUGGESTED
        assert rule.confidence == pytest.approx(0.9)

        # promotion is not repeated for the same rule pair
        again = self.miner.mine(transactions, confirmed=_confirmed(transactions))
        assert again.new_rules == []

    def test_returned_patterns_are_copies(self):
        """Editing a returned pattern leaves the catalog alone."""
        result = self.miner.mine(_subscriptions())
        result.patterns[0].confidence = 0.01
        assert all(p.confidence > 0.01 for p in self.catalog.patterns())

    def test_improvement_potential_is_capped(self):
        result = self.miner.mine(_subscriptions())
        assert 0.0 <= result.improvement_potential <= 0.95


class TestMappingRules:
    def setup_method(self):
        self.catalog = PatternCatalog()
        self.miner = PatternMiner(self.catalog, PatternConfig(min_rule_confidence=0.8), clock=lambda: FIXED_NOW)
        self.catalog.add_rule(MappingRule(
            id="rule_1", transaction_rule="(stripe)", entry_rule="(settlement)",
            confidence=0.9, successes=19, mode=RuleMode.AUTOMATIC,
        ))

    def test_each_entry_is_suggested_once(self):
        """A rule pairs each entry with at most one transaction."""
        transactions = [
            Transaction(id=f"t{i}", date=date(2024, 3, 1), amount=Decimal("100.00"),
                        direction="credit", description=f"STRIPE PAYOUT {i}")
            for i in range(2)
        ]
        entries = [LedgerEntry(id="e1", date=date(2024, 3, 1), amount=Decimal("100.00"),
                               kind=EntryKind.REVENUE, description="Card settlement")]

        suggestions = self.miner.apply_mapping_rules(transactions, entries)

        assert [(s.transaction.id, s.entry.id) for s in suggestions] == [("t0", "e1")]
        assert suggestions[0].automatic is True
        assert suggestions[0].method == MatchMethod.MAPPING_RULE

    def test_incompatible_entries_are_skipped(self):
        """A debit is never suggested against revenue."""
        t = Transaction(id="t1", date=date(2024, 3, 1), amount=Decimal("100.00"),
                        direction="debit", description="STRIPE fee")
        e = LedgerEntry(id="e1", date=date(2024, 3, 1), amount=Decimal("100.00"),
                        kind=EntryKind.REVENUE, description="Card settlement")
        assert self.miner.apply_mapping_rules([t], [e]) == []

    def test_outcomes_adjust_rule_confidence(self):
        """An undone match counts as a rule failure."""
        t = Transaction(id="t1", date=date(2024, 3, 1), amount=Decimal("100.00"),
                        direction="credit", description="STRIPE PAYOUT")
        e = LedgerEntry(id="e1", date=date(2024, 3, 1), amount=Decimal("100.00"),
                        kind=EntryKind.REVENUE, description="Card settlement")
        candidate = MatchCandidate(transaction=t, entry=e, score=0.9, method=MatchMethod.MANUAL, matched_at=FIXED_NOW)

        self.miner.record_outcomes(confirmed=[], undone=[candidate])

        rule = self.catalog.rules()[0]
        assert rule.failures == 1
        assert rule.confidence == pytest.approx(0.5 + 0.5 * (19 / 20))

    def test_uncovered_confirmations_learn_rule(self):
        """Confirmations no rule explains create a new one."""
        transactions = _subscriptions()
        learned = self.miner.record_outcomes(confirmed=_confirmed(transactions))

        assert len(learned) == 1
        assert learned[0].transaction_rule == "(acme|monthly|subscription)"
        assert learned[0].entry_rule == "(acme|subscription)"
        assert len(self.catalog.rules()) == 2

    def test_statistics(self):
        stats = self.miner.statistics()
        assert stats["total_rules"] == 1
        assert stats["active_rules"] == 1
        assert stats["config"]["min_rule_confidence"] == 0.8
