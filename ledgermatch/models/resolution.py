"""Autonomous resolution config and results."""
import re
from typing import Dict, List

from pydantic import ConfigDict, Field, field_validator

from ledgermatch.models.base import LMBaseModel
from ledgermatch.models.reconciliation import MatchCandidate
from ledgermatch.models.transactions import LedgerEntry, RecordError, Transaction


DEFAULT_INTERNAL_PATTERNS = [
    r"internal transfer",
    r"transfer between (own )?accounts",
    r"own account",
    r"bank (fee|charge)s?",
    r"(account )?maintenance (fee|charge)",
    r"monthly (account )?fee",
    r"service charge",
    r"interest (credit|earned|paid)",
    r"yield",
    r"(atm|cash|owner'?s?) withdrawal",
    r"opening balance",
    r"balance brought forward",
]


class ResolutionConfig(LMBaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    resolve_duplicates: bool = True
    correct_divergences: bool = True
    apply_mapping_rules: bool = True
    filter_internal_transfers: bool = True
    synthesize_orphan_entries: bool = False
    divergence_tolerance_pct: float = Field(default=0.02, ge=0)
    minimum_confidence_to_resolve: float = Field(default=0.8, ge=0, le=1)
    max_backtrack_days: int = Field(default=90, ge=0)
    internal_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_INTERNAL_PATTERNS))

    @field_validator("internal_patterns")
    @classmethod
    def compilable(cls, value: List[str]) -> List[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid internal pattern {pattern!r}: {exc}") from exc
        return value


class ResolutionResult(LMBaseModel):
    matched: List[MatchCandidate] = Field(default_factory=list)
    unmatched_transactions: List[Transaction] = Field(default_factory=list)
    unmatched_entries: List[LedgerEntry] = Field(default_factory=list)
    corrected_entries: List[LedgerEntry] = Field(default_factory=list)
    synthesized_entries: List[LedgerEntry] = Field(default_factory=list)
    ignored_transactions: List[Transaction] = Field(default_factory=list)
    discarded_duplicates: List[LedgerEntry] = Field(default_factory=list)
    duplicates_resolved: int = 0
    divergences_corrected: int = 0
    entries_synthesized: int = 0
    rules_applied: int = 0
    learned_matches: int = 0
    errors: List[RecordError] = Field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "matched": len(self.matched),
            "unmatched_transactions": len(self.unmatched_transactions),
            "unmatched_entries": len(self.unmatched_entries),
            "ignored": len(self.ignored_transactions),
            "duplicates_resolved": self.duplicates_resolved,
            "divergences_corrected": self.divergences_corrected,
            "entries_synthesized": self.entries_synthesized,
            "rules_applied": self.rules_applied,
            "learned_matches": self.learned_matches,
        }
