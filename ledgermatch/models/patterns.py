"""Mined patterns and learned mapping rules."""
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from ledgermatch.models.base import LMBaseModel
from ledgermatch.models.transactions import Transaction

MAX_EXAMPLES = 5


class PatternKind(str, Enum):
    RECURRING = "recurring"
    SEASONAL = "seasonal"
    PERIODIC = "periodic"
    SINGULAR = "singular"


class RuleMode(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    SUGGESTED = "suggested"


def rule_matches(rule: Optional[str], text: str) -> bool:
    """Case-insensitive search; an invalid regex degrades to a substring test."""
    if not rule or not text:
        return False
    try:
        return bool(re.search(rule, text, re.IGNORECASE))
    except re.error:
        return rule.lower() in text.lower()


class Pattern(LMBaseModel):
    """
    A recurring group of transactions.

    `key` identifies the pattern across mining runs: textual patterns are
    keyed on their rule, temporal ones on (day of month, counterparty).
    """

    id: str
    key: str
    kind: PatternKind
    rule: str
    description: str = ""
    confidence: float = Field(..., ge=0, le=1)
    occurrences: int = Field(default=0, ge=0)
    last_seen: datetime
    examples: List[Transaction] = Field(default_factory=list, max_length=MAX_EXAMPLES)
    conditions: Dict[str, Any] = Field(default_factory=dict)

    def matches(self, description: str) -> bool:
        return rule_matches(self.rule, description)

    def add_example(self, transaction: Transaction) -> None:
        self.examples = [*self.examples, transaction][-MAX_EXAMPLES:]


class MappingRule(LMBaseModel):
    id: str
    transaction_rule: str
    entry_rule: Optional[str] = None
    confidence: float = Field(..., ge=0, le=1)
    successes: int = Field(default=0, ge=0)
    failures: int = Field(default=0, ge=0)
    last_used: Optional[datetime] = None
    mode: RuleMode = RuleMode.SUGGESTED

    @property
    def total_uses(self) -> int:
        return self.successes + self.failures

    def matches_transaction(self, description: str) -> bool:
        return rule_matches(self.transaction_rule, description)

    def matches_entry(self, description: str) -> bool:
        return rule_matches(self.entry_rule, description)

    def recompute_confidence(self) -> float:
        """Success rate weighted by experience; saturates after 20 uses."""
        total = self.total_uses
        if total == 0:
            return self.confidence
        success_rate = self.successes / total
        experience = min(1.0, total / 20)
        self.confidence = 0.5 + 0.5 * success_rate * experience
        return self.confidence


class PatternConfig(LMBaseModel):
    min_occurrences: int = Field(default=3, ge=2)
    min_rule_confidence: float = Field(default=0.8, ge=0, le=1)
    min_confirmed_for_rule: int = Field(default=2, ge=1)


class AnalysisResult(LMBaseModel):
    patterns: List[Pattern] = Field(default_factory=list)
    new_patterns: List[Pattern] = Field(default_factory=list)
    mapping_rules: List[MappingRule] = Field(default_factory=list)
    new_rules: List[MappingRule] = Field(default_factory=list)
    improvement_potential: float = Field(default=0.0, ge=0, le=1)
