"""Environment-driven engine settings."""
import os
from dataclasses import dataclass
from typing import Optional

from ledgermatch.models import Strategy


@dataclass
class EngineSettings:
    """
    Process-level settings read from the environment.

    - state_db: SQLite file for the pattern catalog and decision log (None = in memory)
    - strategy: default matching strategy for new engines
    - classifier_url: external classification service; keyword rules when unset
    """
    state_db: Optional[str] = None
    strategy: Strategy = Strategy.MODERATE
    classifier_url: Optional[str] = None
    classifier_timeout_secs: float = 5.0
    slack_webhook_url: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.strategy, str) and not isinstance(self.strategy, Strategy):
            try:
                self.strategy = Strategy(self.strategy.lower())
            except ValueError:
                choices = ", ".join(s.value for s in Strategy)
                raise ValueError(f"Unknown strategy '{self.strategy}' (expected one of: {choices})")
        if self.classifier_timeout_secs <= 0:
            raise ValueError("Classifier timeout must be positive")

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            state_db=os.getenv("LEDGERMATCH_STATE_DB") or None,
            strategy=os.getenv("LEDGERMATCH_STRATEGY", Strategy.MODERATE.value),
            classifier_url=os.getenv("LEDGERMATCH_CLASSIFIER_URL") or None,
            classifier_timeout_secs=float(os.getenv("LEDGERMATCH_CLASSIFIER_TIMEOUT_SECS", "5")),
            slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL") or None,
        )
