"""
Tests for the pattern catalog and its SQLite persistence.
"""
from datetime import datetime, timezone

from ledgermatch.models import MappingRule, Pattern, PatternKind, RuleMode
from ledgermatch.services.pattern_store import CatalogStore, PatternCatalog

FIXED_NOW = datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)


def _pattern(key="text:(rent)", occurrences=4):
    return Pattern(
        id=f"pat_{key}", key=key, kind=PatternKind.RECURRING, rule="(rent)",
        confidence=0.8, occurrences=occurrences, last_seen=FIXED_NOW,
    )


def _rule(confidence=0.9):
    return MappingRule(
        id="rule_1", transaction_rule="(rent)", entry_rule="(lease)",
        confidence=confidence, successes=5, mode=RuleMode.SUGGESTED,
    )


class TestPatternCatalog:
    def setup_method(self):
        self.catalog = PatternCatalog()

    def test_lookups(self):
        """Patterns are found by key and rules by both sides."""
        self.catalog.add_pattern(_pattern())
        self.catalog.add_rule(_rule())

        assert self.catalog.find_pattern("text:(rent)") is not None
        assert self.catalog.find_pattern("text:(other)") is None
        assert self.catalog.find_rule("(rent)", "(lease)") is not None
        assert self.catalog.find_rule("(rent)") is None

    def test_active_rules_filter_on_confidence(self):
        """Rules below the minimum confidence are inactive."""
        self.catalog.add_rule(_rule(confidence=0.7))
        assert self.catalog.active_rules(0.8) == []
        assert len(self.catalog.active_rules(0.7)) == 1

    def test_statistics(self):
        """Statistics count patterns, rules and automation potential."""
        self.catalog.add_pattern(_pattern())
        self.catalog.add_rule(_rule())

        stats = self.catalog.statistics(min_rule_confidence=0.8, items=100)

        assert stats["total_patterns"] == 1
        assert stats["patterns_by_kind"]["recurring"] == 1
        assert stats["active_rules"] == 1
        # (4 pattern occurrences + 5 rule successes) / 100 items
        assert abs(stats["automation_potential"] - 0.09) < 1e-9

    def test_automation_potential_is_capped(self):
        """Automation potential is capped at 0.95 and 0 for no items."""
        self.catalog.add_pattern(_pattern(occurrences=1000))
        assert self.catalog.automation_potential(10, 0.8) == 0.95
        assert self.catalog.automation_potential(0, 0.8) == 0.0

    def test_reset(self):
        self.catalog.add_pattern(_pattern())
        self.catalog.reset()
        assert self.catalog.patterns() == []


class TestCatalogStore:
    def test_catalog_survives_restart(self, tmp_path):
        """Patterns and rules are reloaded from SQLite."""
        db_path = str(tmp_path / "catalog.db")
        catalog = PatternCatalog(store=CatalogStore(db_path))
        catalog.add_pattern(_pattern())
        catalog.add_rule(_rule())
        catalog.save()

        reloaded = PatternCatalog(store=CatalogStore(db_path))

        assert [p.key for p in reloaded.patterns()] == ["text:(rent)"]
        assert reloaded.rules()[0].entry_rule == "(lease)"
        assert reloaded.patterns()[0].last_seen == FIXED_NOW

    def test_save_upserts(self, tmp_path):
        """Saving twice updates the stored rule in place."""
        db_path = str(tmp_path / "catalog.db")
        catalog = PatternCatalog(store=CatalogStore(db_path))
        catalog.add_rule(_rule())
        catalog.save()

        with catalog.lock:
            catalog.live_rules()[0].successes = 9
        catalog.save()

        rules = CatalogStore(db_path).load_rules()
        assert len(rules) == 1
        assert rules[0].successes == 9

    def test_reset_clears_tables(self, tmp_path):
        """Reset empties the stored patterns."""
        store = CatalogStore(str(tmp_path / "catalog.db"))
        catalog = PatternCatalog(store=store)
        catalog.add_pattern(_pattern())
        catalog.save()
        catalog.reset()
        assert store.load_patterns() == []
