"""
Autonomous resolution of reconciliation leftovers.

Runs over the matcher's unmatched sets in a fixed order, each stage
toggled independently:
1. Duplicate entries: keep the principal, match it, discard the siblings
2. Value divergences: rewrite the entry amount to the bank amount
3. Mapping rules learned by the pattern miner
4. Internal movements: set aside, never matched
5. Orphan transactions: synthesize (and classify) a ledger entry
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from ledgermatch.models import (
    COMPATIBLE_KINDS,
    EntryKind,
    EntryStatus,
    LedgerEntry,
    MatchCandidate,
    MatchMethod,
    MatchResult,
    ReconciliationConfig,
    ResolutionConfig,
    ResolutionResult,
    Transaction,
)
from ledgermatch.services import scoring
from ledgermatch.services.classification import Classifier
from ledgermatch.services.matching import Clock, utc_now
from ledgermatch.services.pattern_mining import PatternMiner

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
GENERIC_CATEGORY = "Miscellaneous"
GENERIC_CONFIDENCE = 0.7
AUTO_NOTE = "Created automatically by autonomous reconciliation"


@dataclass
class _Working:
    """Mutable per-call scratch state; never shared outside resolve()."""
    transactions: List[Transaction]
    entries: List[LedgerEntry]
    matched: List[MatchCandidate]
    corrected: List[LedgerEntry] = field(default_factory=list)
    synthesized: List[LedgerEntry] = field(default_factory=list)
    ignored: List[Transaction] = field(default_factory=list)
    discarded: List[LedgerEntry] = field(default_factory=list)

    def commit(
        self,
        candidate: MatchCandidate,
        source_entry_ids: Tuple[str, ...] = (),
        owns_entry: bool = True,
    ) -> None:
        """
        Record a match and remove its records from the unmatched sets.
        With owns_entry=False the matched entry was created here and is not
        in `entries`, so only `source_entry_ids` are dropped.
        """
        self.matched.append(candidate)
        self.transactions = [t for t in self.transactions if t.id != candidate.transaction.id]
        drop = set(source_entry_ids)
        if owns_entry:
            drop.add(candidate.entry.id)
        self.entries = [e for e in self.entries if e.id not in drop]


def duplicate_key(entry: LedgerEntry) -> Tuple[EntryKind, object, Decimal]:
    return entry.kind, entry.date, entry.magnitude.quantize(CENTS)


def divergence_to_transaction(transaction: Transaction, entry: LedgerEntry) -> float:
    """Relative difference measured against the bank amount."""
    if transaction.magnitude == 0:
        return 0.0 if entry.magnitude == 0 else float("inf")
    return float(abs(transaction.magnitude - entry.magnitude) / transaction.magnitude)


class AutonomousResolver:
    def __init__(
        self,
        config: Optional[ResolutionConfig] = None,
        reconciliation_config: Optional[ReconciliationConfig] = None,
        classifier: Optional[Classifier] = None,
        miner: Optional[PatternMiner] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config or ResolutionConfig()
        self.reconciliation_config = reconciliation_config or ReconciliationConfig()
        self.classifier = classifier
        self.miner = miner
        self.clock = clock or utc_now

    def resolve(
        self,
        match_result: MatchResult,
        config: Optional[ResolutionConfig] = None,
        rule_weight: float = 1.0,
    ) -> ResolutionResult:
        config = config or self.config
        work = _Working(
            transactions=list(match_result.unmatched_transactions),
            entries=list(match_result.unmatched_entries),
            matched=list(match_result.matched),
        )
        duplicates = divergences = rules_applied = synthesized = 0

        if config.resolve_duplicates:
            duplicates = self._resolve_duplicates(work)
            logger.info("%d duplicate entries resolved", duplicates)

        if config.correct_divergences:
            divergences = self._correct_divergences(work, config)
            logger.info("%d value divergences corrected", divergences)

        if config.apply_mapping_rules and self.miner is not None:
            rules_applied = self._apply_rules(work, config, rule_weight)
            logger.info("%d matches made from mapping rules", rules_applied)

        if config.filter_internal_transfers:
            self._filter_internal(work, config)
            logger.info("%d internal transactions ignored", len(work.ignored))

        if config.synthesize_orphan_entries:
            synthesized = self._synthesize(work, config)
            logger.info("%d ledger entries created automatically", synthesized)

        return ResolutionResult(
            matched=work.matched,
            unmatched_transactions=work.transactions,
            unmatched_entries=work.entries,
            corrected_entries=work.corrected,
            synthesized_entries=work.synthesized,
            ignored_transactions=work.ignored,
            discarded_duplicates=work.discarded,
            duplicates_resolved=duplicates,
            divergences_corrected=divergences,
            entries_synthesized=synthesized,
            rules_applied=rules_applied,
            errors=list(match_result.errors),
        )

    # ------------------------------------------------------------------ #
    # Stages
    # ------------------------------------------------------------------ #
    def _resolve_duplicates(self, work: _Working) -> int:
        groups: Dict[tuple, List[LedgerEntry]] = defaultdict(list)
        for entry in work.entries:
            groups[duplicate_key(entry)].append(entry)

        resolved = 0
        for group in groups.values():
            if len(group) < 2:
                continue
            principal = group[0]
            for entry in group[1:]:
                if entry.confidence > principal.confidence:
                    principal = entry

            transaction = next(
                (t for t in work.transactions if scoring.corresponds(t, principal, self.reconciliation_config)),
                None,
            )
            if transaction is None:
                continue

            siblings = [e for e in group if e.id != principal.id]
            work.commit(
                MatchCandidate(
                    transaction=transaction,
                    entry=principal,
                    score=scoring.score(transaction, principal, self.reconciliation_config),
                    automatic=True,
                    method=MatchMethod.DUPLICATE,
                    matched_at=self.clock(),
                ),
                source_entry_ids=tuple(e.id for e in siblings),
            )
            work.discarded.extend(siblings)
            resolved += len(siblings)
        return resolved

    def _correct_divergences(self, work: _Working, config: ResolutionConfig) -> int:
        corrected = 0
        for transaction in list(work.transactions):
            best: Optional[LedgerEntry] = None
            best_score = -1.0
            for entry in work.entries:
                if not entry.is_compatible_with(transaction):
                    continue
                if scoring.day_gap(transaction.date, entry.date) > config.max_backtrack_days:
                    continue
                if divergence_to_transaction(transaction, entry) > config.divergence_tolerance_pct:
                    continue
                if not scoring.description_overlap(transaction.description, entry.description):
                    continue
                candidate_score = scoring.correspondence_score(transaction, entry, config.divergence_tolerance_pct)
                if candidate_score > best_score:
                    best, best_score = entry, candidate_score

            if best is None:
                continue

            fixed = best.model_copy(update={"status": EntryStatus.RECONCILED})
            if best.magnitude != transaction.magnitude:
                new_amount = transaction.magnitude if best.amount >= 0 else -transaction.magnitude
                fixed = fixed.model_copy(update={"amount": new_amount}).with_note(
                    f"Amount corrected from {best.amount} to {new_amount} "
                    f"to match bank transaction {transaction.id}"
                )
                work.corrected.append(fixed)
                corrected += 1

            work.commit(MatchCandidate(
                transaction=transaction,
                entry=fixed,
                score=best_score,
                automatic=True,
                method=MatchMethod.DIVERGENCE,
                matched_at=self.clock(),
            ))
        return corrected

    def _apply_rules(self, work: _Working, config: ResolutionConfig, rule_weight: float) -> int:
        suggestions = self.miner.apply_mapping_rules(work.transactions, work.entries, rule_weight=rule_weight)
        applied = 0
        for suggestion in suggestions:
            if suggestion.score < config.minimum_confidence_to_resolve:
                continue
            work.commit(suggestion)
            applied += 1
        return applied

    @staticmethod
    def _filter_internal(work: _Working, config: ResolutionConfig) -> None:
        patterns = [re.compile(p, re.IGNORECASE) for p in config.internal_patterns]
        remaining: List[Transaction] = []
        for transaction in work.transactions:
            if any(p.search(transaction.description or "") for p in patterns):
                work.ignored.append(transaction)
            else:
                remaining.append(transaction)
        work.transactions = remaining

    def _synthesize(self, work: _Working, config: ResolutionConfig) -> int:
        created = 0
        for transaction in list(work.transactions):
            entry = self._classified_entry(self._generic_entry(transaction), config)
            work.synthesized.append(entry)
            work.commit(MatchCandidate(
                transaction=transaction,
                entry=entry,
                score=entry.confidence,
                automatic=entry.confidence >= config.minimum_confidence_to_resolve,
                method=MatchMethod.SYNTHESIZED,
                matched_at=self.clock(),
            ), owns_entry=False)
            created += 1
        return created

    @staticmethod
    def _generic_entry(transaction: Transaction) -> LedgerEntry:
        return LedgerEntry(
            id=f"auto-{transaction.id}",
            date=transaction.date,
            amount=transaction.magnitude,
            kind=COMPATIBLE_KINDS[transaction.direction],
            description=transaction.description,
            category=transaction.category or GENERIC_CATEGORY,
            counterparty=transaction.counterparty,
            confidence=GENERIC_CONFIDENCE,
            status=EntryStatus.PENDING,
            notes=AUTO_NOTE,
            auto_generated=True,
        )

    def _classified_entry(self, generic: LedgerEntry, config: ResolutionConfig) -> LedgerEntry:
        if self.classifier is None:
            return generic
        # Anything the classifier returns is untrusted until it passes validation here
        try:
            refined, confidence = self.classifier.classify(generic)
            confidence = _checked_confidence(confidence)
            if not isinstance(refined, LedgerEntry):
                raise TypeError(f"classifier returned {type(refined).__name__}, expected LedgerEntry")
            if confidence < config.minimum_confidence_to_resolve:
                return generic
            return LedgerEntry.model_validate({
                **refined.model_dump(),
                "id": generic.id,
                "confidence": confidence,
                "auto_generated": True,
                "notes": refined.notes or AUTO_NOTE,
            })
        except Exception as exc:  # noqa: BLE001
            logger.warning("Classifier failed for %s, keeping generic entry: %s", generic.id, exc)
            return generic


def _checked_confidence(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"classifier confidence must be a number, got {value!r}")
    value = float(value)
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"classifier confidence {value} outside [0, 1]")
    return value
