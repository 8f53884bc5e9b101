"""Pattern and mapping-rule catalog, with optional SQLite persistence."""
from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ledgermatch.models import MappingRule, Pattern, PatternKind
from ledgermatch.services.db import DB

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("LEDGERMATCH_STATE_DB", os.path.join(os.getcwd(), "ledgermatch.sqlite3"))


class CatalogStore:
    def __init__(self, db_path: str = DB_PATH) -> None:
        self.db = DB(sqlite_path=db_path)
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        self.db.execute(
            """
            CREATE TABLE IF NOT EXISTS lm_patterns (
                pattern_id TEXT PRIMARY KEY,
                pattern_key TEXT,
                payload TEXT,
                last_updated TEXT
            )
            """
        )
        self.db.execute(
            """
            CREATE TABLE IF NOT EXISTS lm_mapping_rules (
                rule_id TEXT PRIMARY KEY,
                transaction_rule TEXT,
                payload TEXT,
                last_updated TEXT
            )
            """
        )

    def save(self, patterns: List[Pattern], rules: List[MappingRule]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self.db.executemany(
            """
            INSERT INTO lm_patterns (pattern_id, pattern_key, payload, last_updated)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(pattern_id) DO UPDATE SET
                pattern_key=excluded.pattern_key,
                payload=excluded.payload,
                last_updated=excluded.last_updated
            """,
            [(p.id, p.key, p.model_dump_json(), now) for p in patterns],
        )
        self.db.executemany(
            """
            INSERT INTO lm_mapping_rules (rule_id, transaction_rule, payload, last_updated)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(rule_id) DO UPDATE SET
                transaction_rule=excluded.transaction_rule,
                payload=excluded.payload,
                last_updated=excluded.last_updated
            """,
            [(r.id, r.transaction_rule, r.model_dump_json(), now) for r in rules],
        )

    def load_patterns(self) -> List[Pattern]:
        rows = self.db.fetchall("SELECT payload FROM lm_patterns ORDER BY rowid")
        return [Pattern.model_validate_json(row[0]) for row in rows]

    def load_rules(self) -> List[MappingRule]:
        rows = self.db.fetchall("SELECT payload FROM lm_mapping_rules ORDER BY rowid")
        return [MappingRule.model_validate_json(row[0]) for row in rows]

    def clear(self) -> None:
        self.db.execute("DELETE FROM lm_patterns")
        self.db.execute("DELETE FROM lm_mapping_rules")


class PatternCatalog:
    """
    The long-lived Pattern/MappingRule state shared between batches.

    Every mutation happens under `lock`; callers that read-modify-write
    (the miner) hold it for the whole operation. Readers get deep copies.
    """

    def __init__(self, store: Optional[CatalogStore] = None) -> None:
        self.lock = threading.RLock()
        self.store = store
        self._patterns: List[Pattern] = []
        self._rules: List[MappingRule] = []
        if store is not None:
            self._patterns = store.load_patterns()
            self._rules = store.load_rules()
            logger.info("Loaded %d patterns and %d mapping rules", len(self._patterns), len(self._rules))

    def patterns(self) -> List[Pattern]:
        with self.lock:
            return [p.model_copy(deep=True) for p in self._patterns]

    def rules(self) -> List[MappingRule]:
        with self.lock:
            return [r.model_copy(deep=True) for r in self._rules]

    def find_pattern(self, key: str) -> Optional[Pattern]:
        """Live object; only mutate while holding `lock`."""
        with self.lock:
            return next((p for p in self._patterns if p.key == key), None)

    def find_rule(self, transaction_rule: str, entry_rule: Optional[str] = None) -> Optional[MappingRule]:
        with self.lock:
            return next(
                (r for r in self._rules if r.transaction_rule == transaction_rule and r.entry_rule == entry_rule),
                None,
            )

    def add_pattern(self, pattern: Pattern) -> None:
        with self.lock:
            self._patterns.append(pattern)

    def add_rule(self, rule: MappingRule) -> None:
        with self.lock:
            self._rules.append(rule)

    def live_rules(self) -> List[MappingRule]:
        """Live objects in insertion order; only mutate while holding `lock`."""
        with self.lock:
            return list(self._rules)

    def active_rules(self, min_confidence: float) -> List[MappingRule]:
        with self.lock:
            return [r for r in self._rules if r.confidence >= min_confidence]

    def automation_potential(self, items: int, min_rule_confidence: float) -> float:
        if items <= 0:
            return 0.0
        with self.lock:
            with_patterns = sum(p.occurrences for p in self._patterns)
            mapped = sum(r.successes for r in self._rules if r.confidence >= min_rule_confidence)
        return min(0.95, (with_patterns + mapped) / items)

    def statistics(self, min_rule_confidence: float, items: int = 200) -> Dict:
        with self.lock:
            by_kind = {kind.value: 0 for kind in PatternKind}
            for pattern in self._patterns:
                by_kind[pattern.kind.value] += 1
            return {
                "total_patterns": len(self._patterns),
                "total_rules": len(self._rules),
                "patterns_by_kind": by_kind,
                "active_rules": len([r for r in self._rules if r.confidence >= min_rule_confidence]),
                "automation_potential": self.automation_potential(items, min_rule_confidence),
            }

    def save(self) -> None:
        if self.store is None:
            return
        with self.lock:
            self.store.save(self._patterns, self._rules)

    def reset(self) -> None:
        with self.lock:
            self._patterns = []
            self._rules = []
            if self.store is not None:
                self.store.clear()
        logger.info("Pattern catalog reset")
