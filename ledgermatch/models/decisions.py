"""Human review decisions and learner outputs."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ConfigDict, Field

from ledgermatch.models.base import LMBaseModel
from ledgermatch.models.transactions import LedgerEntry, Transaction


class DecisionKind(str, Enum):
    ACCEPT = "accept"
    IGNORE = "ignore"
    CORRECT = "correct"
    UNDO = "undo"


class HumanDecision(LMBaseModel):
    """Append-only audit record of a reviewer action."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, frozen=True)

    id: str
    kind: DecisionKind
    transaction: Optional[Transaction] = None
    entry: Optional[LedgerEntry] = None
    value_divergence: Optional[float] = Field(default=None, ge=0)
    day_gap: Optional[int] = Field(default=None, ge=0)
    text_similarity: Optional[float] = Field(default=None, ge=0, le=1)
    actor: str = Field(..., min_length=1)
    decided_at: datetime


class LearnedParameters(LMBaseModel):
    value_tolerance_pct: float = 0.02
    value_tolerance_samples: int = 0
    day_window: int = 90
    day_window_samples: int = 0
    minimum_confidence_to_resolve: float = 0.75
    resolve_duplicates: bool = True
    correct_divergences: bool = True
    undo_ratio: float = 0.0
    text_pattern_confidence: float = 0.3
    text_pattern_samples: int = 0
    correspondence_confidence: float = 0.5
    correspondence_samples: int = 0


class LearnerStats(LMBaseModel):
    trained: bool = False
    decision_count: int = 0
    model_version: int = 0
    last_trained: Optional[datetime] = None
    precision: float = 0.0
    accuracy: float = 0.0


class Insight(LMBaseModel):
    kind: str
    description: str
    confidence: float = Field(..., ge=0, le=1)
    applicable: bool = False
    recommended: Dict[str, Any] = Field(default_factory=dict)
