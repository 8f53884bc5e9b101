"""Adaptive learning from reviewer decisions.

Learns from reviewer actions to retune:
- Value tolerance for divergence correction
- Backtrack window for late bookings
- Duplicate / divergence auto-resolution toggles
- Advisory confidence for text patterns and learned correspondences
- A learned correspondence rule that re-matches what a run leaves over

This is rule adjustment over an explicit parameter set, not a trained
statistical model. Training is a pure function of the decision log.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, TypeVar

from ledgermatch.models import (
    DecisionKind,
    HumanDecision,
    Insight,
    LearnedParameters,
    LearnerStats,
    LedgerEntry,
    MatchCandidate,
    MatchMethod,
    ReconciliationConfig,
    ResolutionConfig,
    ResolutionResult,
    Transaction,
)
from ledgermatch.services import scoring
from ledgermatch.services.decision_store import DecisionStore
from ledgermatch.services.errors import InvalidDecisionError
from ledgermatch.services.matching import Clock, utc_now

logger = logging.getLogger(__name__)

MIN_TRAINING_DECISIONS = 10
RETRAIN_INTERVAL = timedelta(days=1)

MIN_VALUE_TOLERANCE = 0.005
DEFAULT_VALUE_TOLERANCE = 0.02
MIN_DAY_WINDOW = 7
DEFAULT_DAY_WINDOW = 90
RECOMMENDED_MIN_CONFIDENCE = 0.75

# Undo ratio at or above which an auto-resolution feature is recommended off
DUPLICATE_UNDO_LIMIT = 0.10
DIVERGENCE_UNDO_LIMIT = 0.15

MAX_CORRESPONDENCE_CONFIDENCE = 0.95

# Learned correspondence rule, applied to leftovers once trained
LEARNED_DAY_WINDOW = 5
LEARNED_VALUE_TOLERANCE = 0.05
LEARNED_MATCH_THRESHOLD = 0.8

ConfigT = TypeVar("ConfigT", ReconciliationConfig, ResolutionConfig)


def percentile(values: Sequence[float], fraction: float) -> Optional[float]:
    """Nearest-rank style: the value at index floor(n * fraction) of the sorted list."""
    if not values:
        return None
    ordered = sorted(values)
    return ordered[min(len(ordered) - 1, math.floor(len(ordered) * fraction))]


def derive_parameters(decisions: Sequence[HumanDecision]) -> LearnedParameters:
    by_kind: Dict[DecisionKind, List[HumanDecision]] = {kind: [] for kind in DecisionKind}
    for decision in decisions:
        by_kind[decision.kind].append(decision)
    accepts = by_kind[DecisionKind.ACCEPT]
    corrections = by_kind[DecisionKind.CORRECT]

    divergences = [d.value_divergence for d in accepts + corrections if d.value_divergence is not None]
    p90 = percentile(divergences, 0.9)
    value_tolerance = max(MIN_VALUE_TOLERANCE, p90) if p90 is not None else DEFAULT_VALUE_TOLERANCE

    gaps = [d.day_gap for d in accepts if d.day_gap is not None]
    p95 = percentile(gaps, 0.95)
    day_window = math.ceil(max(MIN_DAY_WINDOW, p95)) if p95 is not None else DEFAULT_DAY_WINDOW

    undo_ratio = len(by_kind[DecisionKind.UNDO]) / max(1, len(decisions))

    described = [
        d for d in accepts
        if d.transaction is not None and d.entry is not None
        and d.transaction.description and d.entry.description
    ]
    if len(described) < 5:
        text_confidence = 0.3
    else:
        text_confidence = min(0.4 + len(described) / 25, 0.9)

    correspondence_samples = len(accepts) + len(corrections)

    return LearnedParameters(
        value_tolerance_pct=value_tolerance,
        value_tolerance_samples=len(divergences),
        day_window=day_window,
        day_window_samples=len(gaps),
        minimum_confidence_to_resolve=RECOMMENDED_MIN_CONFIDENCE,
        resolve_duplicates=undo_ratio < DUPLICATE_UNDO_LIMIT,
        correct_divergences=undo_ratio < DIVERGENCE_UNDO_LIMIT,
        undo_ratio=undo_ratio,
        text_pattern_confidence=text_confidence,
        text_pattern_samples=len(described),
        correspondence_confidence=min(0.5 + correspondence_samples / 20, MAX_CORRESPONDENCE_CONFIDENCE),
        correspondence_samples=correspondence_samples,
    )


def learned_pair_score(transaction: Transaction, entry: LedgerEntry) -> float:
    """Value closeness (up to 0.5), five-day date decay (0.3) and description (0.2)."""
    total = scoring.VALUE_WEIGHT * (1 - scoring.relative_difference(transaction.amount, entry.amount))
    total += scoring.window_date_score(transaction.date, entry.date, LEARNED_DAY_WINDOW)
    total += scoring.correspondence_text_score(transaction.description, entry.description)
    return min(1.0, total)


def sample_confidence(samples: int) -> float:
    return min(0.5 + samples / 20, 0.95)


class AdaptiveLearner:
    """
    Keeps the decision log and the parameters derived from it.

    Storage:
    - In-memory log for fast access
    - Optionally backed by a DecisionStore for persistence
    """

    def __init__(self, store: Optional[DecisionStore] = None, clock: Optional[Clock] = None) -> None:
        self.store = store
        self.clock = clock or utc_now
        self._decisions: List[HumanDecision] = store.list() if store is not None else []
        self._ids = {d.id for d in self._decisions}
        self._reset_model()

    def _reset_model(self) -> None:
        self.parameters = LearnedParameters()
        self.trained = False
        self.model_version = 0
        self.last_trained: Optional[datetime] = None
        self.precision = 0.0
        self.accuracy = 0.0

    @property
    def decisions(self) -> List[HumanDecision]:
        return list(self._decisions)

    def record_decision(self, decision: HumanDecision) -> None:
        """Append to the log; retrain when enough data and time have accumulated."""
        if decision.id in self._ids:
            raise InvalidDecisionError(f"decision {decision.id} already recorded")

        self._decisions.append(decision)
        self._ids.add(decision.id)
        if self.store is not None:
            self.store.append(decision)
        logger.info("Recorded %s decision by %s", decision.kind.value, decision.actor)

        if len(self._decisions) >= MIN_TRAINING_DECISIONS and (
            self.last_trained is None or self.clock() - self.last_trained >= RETRAIN_INTERVAL
        ):
            self.train()

    def train(self) -> bool:
        """Re-derive parameters from the full log. False when the log is too small."""
        if len(self._decisions) < MIN_TRAINING_DECISIONS:
            logger.info("Not enough decisions to train (%d < %d)", len(self._decisions), MIN_TRAINING_DECISIONS)
            return False

        self.parameters = derive_parameters(self._decisions)
        self.trained = True
        self.model_version += 1
        self.last_trained = self.clock()

        samples = len(self._decisions)
        self.precision = 0.7 + min(0.25, samples / 100)
        self.accuracy = self.precision * 0.95

        logger.info(
            "Training complete: version %d, precision %.1f%% over %d decisions",
            self.model_version, self.precision * 100, samples,
        )
        return True

    def recommended_config(self, current: ConfigT) -> ConfigT:
        """A copy of `current` with learned values merged in; `current` is never touched."""
        if not self.trained:
            return current.model_copy()

        params = self.parameters
        if isinstance(current, ResolutionConfig):
            update = {
                "divergence_tolerance_pct": params.value_tolerance_pct,
                "max_backtrack_days": params.day_window,
                "minimum_confidence_to_resolve": params.minimum_confidence_to_resolve,
                "resolve_duplicates": params.resolve_duplicates,
                "correct_divergences": params.correct_divergences,
            }
        elif isinstance(current, ReconciliationConfig):
            update = {"value_tolerance_pct": params.value_tolerance_pct}
        else:
            raise TypeError(f"cannot recommend values for {type(current).__name__}")

        # Round-trip through validation; model_copy(update=...) alone does not validate
        return type(current).model_validate({**current.model_dump(), **update})

    def confidence_multipliers(self) -> Dict[str, float]:
        """Advisory multipliers for mined text patterns and learned rules (1.0 until trained)."""
        if not self.trained:
            return {"text_pattern": 1.0, "correspondence": 1.0}
        return {
            "text_pattern": self.parameters.text_pattern_confidence,
            "correspondence": self.parameters.correspondence_confidence / MAX_CORRESPONDENCE_CONFIDENCE,
        }

    def stats(self) -> LearnerStats:
        return LearnerStats(
            trained=self.trained,
            decision_count=len(self._decisions),
            model_version=self.model_version,
            last_trained=self.last_trained,
            precision=self.precision,
            accuracy=self.accuracy,
        )

    def insights(self) -> List[Insight]:
        if not self.trained:
            return [Insight(
                kind="model_not_trained",
                description="Not enough reviewer decisions have been recorded to train yet.",
                confidence=1.0,
                applicable=False,
            )]

        params = self.parameters
        insights = [Insight(
            kind="divergence_tolerance",
            description=(
                f"Ideal divergence tolerance is {params.value_tolerance_pct * 100:.1f}% "
                f"based on {params.value_tolerance_samples} decisions."
            ),
            confidence=sample_confidence(params.value_tolerance_samples),
            applicable=params.value_tolerance_samples > 5,
            recommended={"divergence_tolerance_pct": params.value_tolerance_pct},
        )]

        if params.day_window_samples > 5:
            insights.append(Insight(
                kind="backtrack_days",
                description=f"Most manual matches happen within {params.day_window} days of the transaction.",
                confidence=sample_confidence(params.day_window_samples),
                applicable=True,
                recommended={"max_backtrack_days": params.day_window},
            ))

        if not (params.resolve_duplicates and params.correct_divergences):
            insights.append(Insight(
                kind="auto_resolution_undone",
                description=(
                    f"{params.undo_ratio:.0%} of decisions undo automatic work; "
                    "consider reviewing duplicate resolution and divergence correction."
                ),
                confidence=sample_confidence(len(self._decisions)),
                applicable=True,
                recommended={
                    "resolve_duplicates": params.resolve_duplicates,
                    "correct_divergences": params.correct_divergences,
                },
            ))

        insights.append(Insight(
            kind="description_patterns",
            description="Recurring description patterns can improve automatic matching accuracy.",
            confidence=params.text_pattern_confidence,
            applicable=params.text_pattern_confidence > 0.7,
        ))

        insights.append(Insight(
            kind="overall_performance",
            description=(
                f"Estimated precision {self.precision * 100:.1f}% "
                f"based on {len(self._decisions)} decisions."
            ),
            confidence=0.9 if len(self._decisions) > 20 else 0.6,
            applicable=False,
        ))
        return insights

    # ==================== LEARNED CORRESPONDENCE ====================

    def learned_matches(
        self,
        transactions: Sequence[Transaction],
        entries: Sequence[LedgerEntry],
    ) -> List[MatchCandidate]:
        """
        Pairs accepted by the learned correspondence rule: compatible kind,
        at most five days and 5% apart, scoring at least 0.8. Each transaction
        takes the first qualifying entry and each entry is claimed once.
        Empty until the learner is trained.
        """
        if not self.trained:
            return []

        available = list(entries)
        found: List[MatchCandidate] = []
        for transaction in transactions:
            for index, entry in enumerate(available):
                if not entry.is_compatible_with(transaction):
                    continue
                if scoring.day_gap(transaction.date, entry.date) > LEARNED_DAY_WINDOW:
                    continue
                if scoring.relative_difference(transaction.amount, entry.amount) > LEARNED_VALUE_TOLERANCE:
                    continue
                pair_score = learned_pair_score(transaction, entry)
                if pair_score < LEARNED_MATCH_THRESHOLD:
                    continue
                found.append(MatchCandidate(
                    transaction=transaction,
                    entry=entry,
                    score=pair_score,
                    automatic=True,
                    method=MatchMethod.LEARNED,
                    matched_at=self.clock(),
                ))
                del available[index]
                break
        return found

    def apply_learned_correspondence(self, result: ResolutionResult) -> ResolutionResult:
        """Re-match the leftovers of `result`; returns `result` itself when nothing new matches."""
        new = self.learned_matches(result.unmatched_transactions, result.unmatched_entries)
        if not new:
            return result

        transaction_ids = {m.transaction.id for m in new}
        entry_ids = {m.entry.id for m in new}
        logger.info("%d new matches from learned correspondence rules", len(new))
        return result.model_copy(update={
            "matched": result.matched + new,
            "unmatched_transactions": [t for t in result.unmatched_transactions if t.id not in transaction_ids],
            "unmatched_entries": [e for e in result.unmatched_entries if e.id not in entry_ids],
            "learned_matches": result.learned_matches + len(new),
        })

    def reset(self) -> None:
        self._decisions = []
        self._ids = set()
        if self.store is not None:
            self.store.clear()
        self._reset_model()
        logger.info("Learner reset")


