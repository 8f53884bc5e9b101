"""Reconciliation and matching models."""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Tuple

from pydantic import ConfigDict, Field

from ledgermatch.models.base import LMBaseModel
from ledgermatch.models.transactions import LedgerEntry, RecordError, Transaction


class Strategy(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


# (acceptance cutoff, rejection floor) per strategy
STRATEGY_CUTOFFS: Dict[Strategy, Tuple[float, float]] = {
    Strategy.CONSERVATIVE: (0.9, 0.7),
    Strategy.MODERATE: (0.8, 0.5),
    Strategy.AGGRESSIVE: (0.7, 0.3),
}


class MatchMethod(str, Enum):
    PASS_1 = "pass_1"
    PASS_2 = "pass_2"
    MANUAL = "manual"
    DUPLICATE = "duplicate"
    DIVERGENCE = "divergence"
    MAPPING_RULE = "mapping_rule"
    SYNTHESIZED = "synthesized"
    LEARNED = "learned"


class ReconciliationConfig(LMBaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    automatic_score_threshold: float = Field(default=0.85, gt=0, le=1)
    date_tolerance_days: int = Field(default=3, ge=0)
    value_tolerance_pct: float = Field(default=0.01, ge=0)
    consider_counterparty: bool = True
    strategy: Strategy = Strategy.MODERATE

    @property
    def acceptance_cutoff(self) -> float:
        return STRATEGY_CUTOFFS[self.strategy][0]

    @property
    def rejection_floor(self) -> float:
        return STRATEGY_CUTOFFS[self.strategy][1]


class MatchCandidate(LMBaseModel):
    transaction: Transaction
    entry: LedgerEntry
    score: float = Field(..., ge=0, le=1)
    automatic: bool = False
    method: MatchMethod = MatchMethod.PASS_1
    matched_at: datetime


class MatchResult(LMBaseModel):
    matched: List[MatchCandidate] = Field(default_factory=list)
    unmatched_transactions: List[Transaction] = Field(default_factory=list)
    unmatched_entries: List[LedgerEntry] = Field(default_factory=list)
    errors: List[RecordError] = Field(default_factory=list)
    pass_1_count: int = 0
    pass_2_count: int = 0

    @property
    def automatic_count(self) -> int:
        return sum(1 for m in self.matched if m.automatic)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "matched": len(self.matched),
            "automatic": self.automatic_count,
            "pass_1": self.pass_1_count,
            "pass_2": self.pass_2_count,
            "unmatched_transactions": len(self.unmatched_transactions),
            "unmatched_entries": len(self.unmatched_entries),
            "errors": len(self.errors),
        }
