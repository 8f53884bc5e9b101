"""Aggregate result of one orchestrated reconciliation run."""
from typing import Dict, List, Optional

from pydantic import Field

from ledgermatch.models.base import LMBaseModel
from ledgermatch.models.patterns import AnalysisResult
from ledgermatch.models.reconciliation import MatchResult, ReconciliationConfig
from ledgermatch.models.resolution import ResolutionConfig, ResolutionResult
from ledgermatch.models.transactions import RecordError


class ReconciliationRun(LMBaseModel):
    run_id: str
    match: MatchResult
    resolution: ResolutionResult
    analysis: Optional[AnalysisResult] = None
    reconciliation_config: ReconciliationConfig
    resolution_config: ResolutionConfig
    errors: List[RecordError] = Field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def summary(self) -> Dict[str, int]:
        counts = dict(self.resolution.counts)
        counts["pass_1"] = self.match.pass_1_count
        counts["pass_2"] = self.match.pass_2_count
        counts["errors"] = len(self.errors)
        return counts
