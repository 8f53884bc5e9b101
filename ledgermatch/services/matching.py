"""Two-pass transaction/entry matcher."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import reduce
from typing import Callable, Iterable, Optional, Tuple

from ledgermatch.models import (
    LedgerEntry,
    MatchCandidate,
    MatchMethod,
    MatchResult,
    ReconciliationConfig,
    Strategy,
    Transaction,
)
from ledgermatch.services import scoring
from ledgermatch.services.reconciliation_inputs import load_entries, load_transactions

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PassOutcome:
    """State threaded through one pass: nothing is mutated in place."""
    committed: Tuple[MatchCandidate, ...] = ()
    unmatched_transactions: Tuple[Transaction, ...] = ()
    remaining_entries: Tuple[LedgerEntry, ...] = ()


class Matcher:
    """
    Matches bank transactions to ledger entries.

    Pass 1 commits the best kind-compatible entry when it reaches the
    strategy's acceptance cutoff. Pass 2 (moderate and aggressive only)
    relaxes the value gate to twice the tolerance and commits anything above
    the rejection floor, always flagged for human review.
    """

    def __init__(self, config: Optional[ReconciliationConfig] = None, clock: Optional[Clock] = None):
        self.config = config or ReconciliationConfig()
        self.clock = clock or utc_now

    def score(self, transaction: Transaction, entry: LedgerEntry) -> float:
        return scoring.score(transaction, entry, self.config)

    def match(
        self,
        transactions: Iterable,
        entries: Iterable,
        config: Optional[ReconciliationConfig] = None,
    ) -> MatchResult:
        config = config or self.config
        txns, txn_errors = load_transactions(transactions)
        ents, ent_errors = load_entries(entries)

        first = self._run_pass(txns, ents, config, MatchMethod.PASS_1)
        committed = first.committed
        unmatched_txns = first.unmatched_transactions
        remaining = first.remaining_entries
        pass_2_count = 0

        if config.strategy != Strategy.CONSERVATIVE:
            second = self._run_pass(unmatched_txns, remaining, config, MatchMethod.PASS_2)
            committed = committed + second.committed
            unmatched_txns = second.unmatched_transactions
            remaining = second.remaining_entries
            pass_2_count = len(second.committed)

        result = MatchResult(
            matched=list(committed),
            unmatched_transactions=list(unmatched_txns),
            unmatched_entries=list(remaining),
            errors=txn_errors + ent_errors,
            pass_1_count=len(first.committed),
            pass_2_count=pass_2_count,
        )
        logger.info(
            "Matched %d of %d transactions (pass 1: %d, pass 2: %d, strategy %s)",
            len(result.matched), len(txns), result.pass_1_count, pass_2_count, config.strategy.value,
        )
        return result

    def match_manually(self, transaction: Transaction, entry: LedgerEntry) -> MatchCandidate:
        """Reviewer-made pair; the score is kept for audit only."""
        candidate = MatchCandidate(
            transaction=transaction,
            entry=entry,
            score=self.score(transaction, entry),
            automatic=False,
            method=MatchMethod.MANUAL,
            matched_at=self.clock(),
        )
        logger.info("Manual match %s -> %s (score %.2f)", transaction.id, entry.id, candidate.score)
        return candidate

    @staticmethod
    def undo_match(candidate: MatchCandidate) -> Tuple[Transaction, LedgerEntry]:
        logger.info("Undo match %s -> %s", candidate.transaction.id, candidate.entry.id)
        return candidate.transaction, candidate.entry

    def _run_pass(
        self,
        transactions: Iterable[Transaction],
        entries: Iterable[LedgerEntry],
        config: ReconciliationConfig,
        method: MatchMethod,
    ) -> PassOutcome:
        if method == MatchMethod.PASS_1:
            cutoff = config.acceptance_cutoff
            value_gate = None
        else:
            cutoff = config.rejection_floor
            value_gate = 2 * config.value_tolerance_pct

        def step(state: PassOutcome, transaction: Transaction) -> PassOutcome:
            best_index, best_score = self._best_entry(transaction, state.remaining_entries, config, value_gate)
            if best_index is None or best_score < cutoff:
                return PassOutcome(
                    committed=state.committed,
                    unmatched_transactions=state.unmatched_transactions + (transaction,),
                    remaining_entries=state.remaining_entries,
                )

            entry = state.remaining_entries[best_index]
            automatic = method == MatchMethod.PASS_1 and best_score >= config.automatic_score_threshold
            candidate = MatchCandidate(
                transaction=transaction,
                entry=entry,
                score=best_score,
                automatic=automatic,
                method=method,
                matched_at=self.clock(),
            )
            return PassOutcome(
                committed=state.committed + (candidate,),
                unmatched_transactions=state.unmatched_transactions,
                remaining_entries=state.remaining_entries[:best_index] + state.remaining_entries[best_index + 1:],
            )

        return reduce(step, transactions, PassOutcome(remaining_entries=tuple(entries)))

    @staticmethod
    def _best_entry(
        transaction: Transaction,
        entries: Tuple[LedgerEntry, ...],
        config: ReconciliationConfig,
        value_gate: Optional[float],
    ) -> Tuple[Optional[int], float]:
        """First entry reaching the maximum score wins ties."""
        best_index: Optional[int] = None
        best_score = 0.0
        for index, entry in enumerate(entries):
            if not entry.is_compatible_with(transaction):
                continue
            if value_gate is not None and scoring.relative_difference(transaction.amount, entry.amount) > value_gate:
                continue
            candidate_score = scoring.score(transaction, entry, config)
            if candidate_score > best_score:
                best_index, best_score = index, candidate_score
        return best_index, best_score
