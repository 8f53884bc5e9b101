from ledgermatch.models.base import LMBaseModel, RecordModel
from ledgermatch.models.transactions import (
    COMPATIBLE_KINDS,
    Direction,
    EntryKind,
    EntryStatus,
    LedgerEntry,
    RecordError,
    Transaction,
)
from ledgermatch.models.reconciliation import (
    STRATEGY_CUTOFFS,
    MatchCandidate,
    MatchMethod,
    MatchResult,
    ReconciliationConfig,
    Strategy,
)
from ledgermatch.models.resolution import DEFAULT_INTERNAL_PATTERNS, ResolutionConfig, ResolutionResult
from ledgermatch.models.patterns import (
    AnalysisResult,
    MappingRule,
    Pattern,
    PatternConfig,
    PatternKind,
    RuleMode,
)
from ledgermatch.models.runs import ReconciliationRun
from ledgermatch.models.decisions import (
    DecisionKind,
    HumanDecision,
    Insight,
    LearnedParameters,
    LearnerStats,
)

__all__ = [
    "AnalysisResult",
    "COMPATIBLE_KINDS",
    "DEFAULT_INTERNAL_PATTERNS",
    "DecisionKind",
    "Direction",
    "EntryKind",
    "EntryStatus",
    "HumanDecision",
    "Insight",
    "LMBaseModel",
    "LearnedParameters",
    "LearnerStats",
    "LedgerEntry",
    "MappingRule",
    "MatchCandidate",
    "MatchMethod",
    "MatchResult",
    "Pattern",
    "PatternConfig",
    "PatternKind",
    "ReconciliationConfig",
    "ReconciliationRun",
    "RecordError",
    "RecordModel",
    "ResolutionConfig",
    "ResolutionResult",
    "RuleMode",
    "STRATEGY_CUTOFFS",
    "Strategy",
    "Transaction",
]
