"""
Pattern mining for reconciliation.

Finds recurring groups of transactions (by counterparty, else by description
keywords), classifies their periodicity, and promotes patterns backed by
confirmed matches into mapping rules that pair a class of transaction
descriptions with a class of entry descriptions.
"""
from __future__ import annotations

import logging
import re
import statistics
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from ledgermatch.models import (
    AnalysisResult,
    LedgerEntry,
    MappingRule,
    MatchCandidate,
    MatchMethod,
    Pattern,
    PatternConfig,
    PatternKind,
    RuleMode,
    Transaction,
)
from ledgermatch.models.patterns import rule_matches
from ledgermatch.services import scoring
from ledgermatch.services.matching import Clock, utc_now
from ledgermatch.services.pattern_store import PatternCatalog

logger = logging.getLogger(__name__)

NON_WORD = re.compile(r"[^\w\s]")

REDETECTION_BOOST = 0.05
RULE_VALUE_WINDOW_PCT = 0.01
RULE_DATE_WINDOW_DAYS = 5
RULE_MATCH_THRESHOLD = 0.6


def keywords_key(description: str) -> str:
    """Canonical grouping key: sorted words longer than 4 characters."""
    words = NON_WORD.sub("", (description or "").lower()).split()
    return "_".join(sorted(w for w in words if len(w) > 4))


def extract_text_rule(descriptions: Sequence[str]) -> Optional[str]:
    """Alternation of the words (longer than 3 characters) shared by every description."""
    if len(descriptions) < 2:
        return None
    common: Optional[set] = None
    for description in descriptions:
        words = {w for w in NON_WORD.sub(" ", (description or "").lower()).split() if len(w) > 3}
        common = words if common is None else common & words
        if not common:
            return None
    return "(" + "|".join(re.escape(w) for w in sorted(common)) + ")"


def classify_periodicity(dates: Iterable) -> PatternKind:
    ordered = sorted(dates)
    gaps = [(b - a).days for a, b in zip(ordered, ordered[1:])]
    if not gaps:
        return PatternKind.SINGULAR

    mean = statistics.fmean(gaps)
    std = statistics.pstdev(gaps)
    if 25 <= mean <= 35 and std < 5:
        return PatternKind.RECURRING  # monthly
    if 85 <= mean <= 95 and std < 10:
        return PatternKind.RECURRING  # quarterly
    if 350 <= mean <= 380:
        return PatternKind.SEASONAL
    if std < mean * 0.3:
        return PatternKind.PERIODIC
    return PatternKind.SINGULAR


def rule_proximity(transaction: Transaction, entry: LedgerEntry) -> float:
    """Value (within 1%) and date (within 5 days) proximity, half-weighted each."""
    total = 0.0
    diff = scoring.relative_difference(transaction.amount, entry.amount)
    if diff <= RULE_VALUE_WINDOW_PCT:
        total += 0.5 * (1 - diff / RULE_VALUE_WINDOW_PCT)
    gap = scoring.day_gap(transaction.date, entry.date)
    if gap <= RULE_DATE_WINDOW_DAYS:
        total += 0.5 * (1 - gap / RULE_DATE_WINDOW_DAYS)
    return total


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class PatternMiner:
    def __init__(
        self,
        catalog: PatternCatalog,
        config: Optional[PatternConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.catalog = catalog
        self.config = config or PatternConfig()
        self.clock = clock or utc_now

    def mine(
        self,
        transactions: Sequence[Transaction],
        confirmed: Optional[Sequence[MatchCandidate]] = None,
        entries: Optional[Sequence[LedgerEntry]] = None,
    ) -> AnalysisResult:
        """Detect text and day-of-month patterns; promote confirmed ones to rules."""
        new_patterns: List[Pattern] = []
        new_rules: List[MappingRule] = []
        now = self.clock()

        with self.catalog.lock:
            for group in self._group_transactions(transactions).values():
                if len(group) < self.config.min_occurrences:
                    continue
                rule = extract_text_rule([t.description for t in group])
                if not rule:
                    continue

                pattern = self._upsert_pattern(
                    key=f"text:{rule}",
                    occurrences=len(group),
                    example=group[0],
                    now=now,
                    create=lambda: Pattern(
                        id=_new_id("pat"),
                        key=f"text:{rule}",
                        kind=classify_periodicity(t.date for t in group),
                        rule=rule,
                        description=f"Pattern in transactions: {group[0].description[:30]}",
                        confidence=0.6 + min(0.3, len(group) / 20),
                        occurrences=len(group),
                        last_seen=now,
                        examples=[group[0]],
                    ),
                )
                if pattern is not None:
                    new_patterns.append(pattern)

                if confirmed:
                    promoted = self._promote(rule, confirmed, now)
                    if promoted is not None:
                        new_rules.append(promoted)

            new_patterns.extend(self._mine_day_of_month(transactions, now))

            items = len(transactions) + len(entries or [])
            potential = self.catalog.automation_potential(items, self.config.min_rule_confidence)
            self.catalog.save()

            result = AnalysisResult(
                patterns=self.catalog.patterns(),
                new_patterns=[p.model_copy(deep=True) for p in new_patterns],
                mapping_rules=self.catalog.rules(),
                new_rules=[r.model_copy(deep=True) for r in new_rules],
                improvement_potential=potential,
            )

        if new_patterns or new_rules:
            logger.info("Detected %d new patterns and %d new mapping rules", len(new_patterns), len(new_rules))
        return result

    def apply_mapping_rules(
        self,
        transactions: Sequence[Transaction],
        entries: Sequence[LedgerEntry],
        rule_weight: float = 1.0,
    ) -> List[MatchCandidate]:
        """
        Suggest matches from active mapping rules.

        The first active rule whose transaction and entry sides both find a
        candidate wins for a transaction. Each entry is suggested at most once.
        The suggestion score is the rule confidence (times `rule_weight`)
        before the rule's counters are updated.
        """
        suggestions: List[MatchCandidate] = []
        claimed = set()
        now = self.clock()

        with self.catalog.lock:
            rules = self.catalog.active_rules(self.config.min_rule_confidence)
            if not rules:
                return suggestions

            for transaction in transactions:
                for rule in rules:
                    if not rule.entry_rule or not rule.matches_transaction(transaction.description):
                        continue
                    pool = [
                        e for e in entries
                        if e.id not in claimed and e.is_compatible_with(transaction) and rule.matches_entry(e.description)
                    ]
                    entry = self._best_rule_entry(transaction, pool)
                    if entry is None:
                        continue

                    suggestions.append(MatchCandidate(
                        transaction=transaction,
                        entry=entry,
                        score=min(1.0, rule.confidence * rule_weight),
                        automatic=rule.mode == RuleMode.AUTOMATIC,
                        method=MatchMethod.MAPPING_RULE,
                        matched_at=now,
                    ))
                    claimed.add(entry.id)
                    rule.successes += 1
                    rule.last_used = now
                    rule.recompute_confidence()
                    break

            if suggestions:
                self.catalog.save()

        logger.info("Mapping rules suggested %d matches", len(suggestions))
        return suggestions

    def record_outcomes(
        self,
        confirmed: Sequence[MatchCandidate],
        undone: Sequence[MatchCandidate] = (),
    ) -> List[MappingRule]:
        """
        Feed reviewed matches back into the rules.

        Confirmed matches count as successes and undone ones as failures for
        every rule whose transaction side matches. Confirmed matches no rule
        covers are grouped by transaction keywords and learned as new rules.
        """
        now = self.clock()
        learned: List[MappingRule] = []
        min_occurrences = self.config.min_occurrences

        with self.catalog.lock:
            rules = self.catalog.live_rules()
            for outcome, is_success in [(c, True) for c in confirmed] + [(u, False) for u in undone]:
                for rule in rules:
                    if rule.matches_transaction(outcome.transaction.description):
                        if is_success:
                            rule.successes += 1
                        else:
                            rule.failures += 1
                        rule.last_used = now
                        rule.recompute_confidence()

            uncovered = [
                c for c in confirmed
                if not any(r.matches_transaction(c.transaction.description) for r in rules)
            ]
            if len(uncovered) >= min_occurrences:
                groups: Dict[str, List[MatchCandidate]] = defaultdict(list)
                for candidate in uncovered:
                    groups[keywords_key(candidate.transaction.description)].append(candidate)

                for group in groups.values():
                    if len(group) < min_occurrences:
                        continue
                    transaction_rule = extract_text_rule([c.transaction.description for c in group])
                    entry_rule = extract_text_rule([c.entry.description for c in group])
                    if not transaction_rule or not entry_rule:
                        continue
                    if self.catalog.find_rule(transaction_rule, entry_rule) is not None:
                        continue
                    rule = self._new_rule(transaction_rule, entry_rule, len(group), now)
                    self.catalog.add_rule(rule)
                    learned.append(rule)
                    logger.info("Learned mapping rule %s -> %s", transaction_rule, entry_rule)

            self.catalog.save()
        return [r.model_copy(deep=True) for r in learned]

    def statistics(self) -> Dict:
        stats = self.catalog.statistics(self.config.min_rule_confidence)
        stats["config"] = self.config.model_dump()
        return stats

    # ------------------------------------------------------------------ #
    # Internal
    # ------------------------------------------------------------------ #
    @staticmethod
    def _group_transactions(transactions: Sequence[Transaction]) -> Dict[str, List[Transaction]]:
        groups: Dict[str, List[Transaction]] = defaultdict(list)
        for transaction in transactions:
            if transaction.counterparty:
                key = f"counterparty:{transaction.counterparty}"
            else:
                key = f"desc:{keywords_key(transaction.description)}"
            groups[key].append(transaction)
        return groups

    def _upsert_pattern(self, key: str, occurrences: int, example: Transaction, now: datetime, create) -> Optional[Pattern]:
        """Returns the pattern when it is new; re-detections update in place."""
        existing = self.catalog.find_pattern(key)
        if existing is not None:
            existing.occurrences += occurrences
            existing.last_seen = now
            existing.add_example(example)
            existing.confidence = min(1.0, existing.confidence + REDETECTION_BOOST)
            return None
        pattern = create()
        self.catalog.add_pattern(pattern)
        return pattern

    def _mine_day_of_month(self, transactions: Sequence[Transaction], now: datetime) -> List[Pattern]:
        by_day: Dict[int, List[Transaction]] = defaultdict(list)
        for transaction in transactions:
            by_day[transaction.date.day].append(transaction)

        found: List[Pattern] = []
        for day, group in by_day.items():
            if len(group) < self.config.min_occurrences:
                continue
            frequency: Dict[str, List[Transaction]] = defaultdict(list)
            for transaction in group:
                if transaction.counterparty:
                    frequency[transaction.counterparty].append(transaction)

            for counterparty, members in frequency.items():
                if len(members) < self.config.min_occurrences:
                    continue
                key = f"day:{day}:{counterparty}"
                pattern = self._upsert_pattern(
                    key=key,
                    occurrences=len(members),
                    example=members[0],
                    now=now,
                    create=lambda: Pattern(
                        id=_new_id("pat"),
                        key=key,
                        kind=PatternKind.RECURRING,
                        rule=re.escape(counterparty.lower()),
                        description=f"Transactions from {counterparty} on day {day} of each month",
                        confidence=0.7 + min(0.2, len(members) / 10),
                        occurrences=len(members),
                        last_seen=now,
                        examples=[members[0]],
                        conditions={"day_of_month": day, "counterparty": counterparty},
                    ),
                )
                if pattern is not None:
                    found.append(pattern)
        return found

    def _promote(self, rule: str, confirmed: Sequence[MatchCandidate], now: datetime) -> Optional[MappingRule]:
        backing = [c for c in confirmed if rule_matches(rule, c.transaction.description)]
        if len(backing) < self.config.min_confirmed_for_rule:
            return None
        entry_rule = extract_text_rule([c.entry.description for c in backing])
        if not entry_rule or self.catalog.find_rule(rule, entry_rule) is not None:
            return None
        mapping = self._new_rule(rule, entry_rule, len(backing), now)
        self.catalog.add_rule(mapping)
        return mapping

    @staticmethod
    def _new_rule(transaction_rule: str, entry_rule: str, backing: int, now: datetime) -> MappingRule:
        return MappingRule(
            id=_new_id("rule"),
            transaction_rule=transaction_rule,
            entry_rule=entry_rule,
            confidence=0.7 + min(0.2, backing / 10),
            successes=backing,
            failures=0,
            last_used=now,
            mode=RuleMode.SUGGESTED,
        )

    @staticmethod
    def _best_rule_entry(transaction: Transaction, entries: Sequence[LedgerEntry]) -> Optional[LedgerEntry]:
        best: Optional[LedgerEntry] = None
        best_score = -1.0
        for entry in entries:
            proximity = rule_proximity(transaction, entry)
            if proximity > best_score:
                best, best_score = entry, proximity
        return best if best_score >= RULE_MATCH_THRESHOLD else None
