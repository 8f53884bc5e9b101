"""
ledgermatch Engine

Thin orchestrator over the reconciliation core:

Matcher -> PatternMiner -> AutonomousResolver -> (reviewer) -> AdaptiveLearner

The engine owns the pattern catalog and the learner; configs are passed by
value into every stage so a run never mutates shared configuration.
"""
from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from typing import Any, Dict, Iterable, Optional, Tuple

from pydantic import ValidationError

from ledgermatch.core.settings import EngineSettings
from ledgermatch.models import (
    DecisionKind,
    HumanDecision,
    LedgerEntry,
    MatchCandidate,
    PatternConfig,
    ReconciliationConfig,
    ReconciliationRun,
    ResolutionConfig,
    Transaction,
)
from ledgermatch.services import scoring
from ledgermatch.services.classification import Classifier, HttpClassifier, KeywordClassifier
from ledgermatch.services.decision_store import DecisionStore
from ledgermatch.services.errors import ConfigError, InvalidDecisionError, ReconciliationError
from ledgermatch.services.learning import AdaptiveLearner
from ledgermatch.services.logging import log_error, log_reconciliation_run
from ledgermatch.services.matching import Clock, Matcher, utc_now
from ledgermatch.services.notifications import NotificationService
from ledgermatch.services.pattern_mining import PatternMiner
from ledgermatch.services.pattern_store import CatalogStore, PatternCatalog
from ledgermatch.services.reconciliation_inputs import load_entries, load_transactions
from ledgermatch.services.resolution import AutonomousResolver

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    def __init__(
        self,
        reconciliation_config: Optional[ReconciliationConfig] = None,
        resolution_config: Optional[ResolutionConfig] = None,
        pattern_config: Optional[PatternConfig] = None,
        catalog: Optional[PatternCatalog] = None,
        learner: Optional[AdaptiveLearner] = None,
        classifier: Optional[Classifier] = None,
        notifier: Optional[NotificationService] = None,
        clock: Optional[Clock] = None,
    ):
        self.reconciliation_config = reconciliation_config or ReconciliationConfig()
        self.resolution_config = resolution_config or ResolutionConfig()
        self.clock = clock or utc_now
        self.catalog = catalog or PatternCatalog()
        self.learner = learner or AdaptiveLearner(clock=self.clock)
        self.classifier = classifier or KeywordClassifier()
        self.notifier = notifier

        self.matcher = Matcher(self.reconciliation_config, clock=self.clock)
        self.miner = PatternMiner(self.catalog, pattern_config, clock=self.clock)
        self.resolver = AutonomousResolver(
            config=self.resolution_config,
            reconciliation_config=self.reconciliation_config,
            classifier=self.classifier,
            miner=self.miner,
            clock=self.clock,
        )

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "ReconciliationEngine":
        if settings.state_db:
            catalog = PatternCatalog(store=CatalogStore(settings.state_db))
            learner = AdaptiveLearner(store=DecisionStore(settings.state_db))
        else:
            catalog, learner = PatternCatalog(), AdaptiveLearner()

        if settings.classifier_url:
            classifier: Classifier = HttpClassifier(settings.classifier_url, timeout=settings.classifier_timeout_secs)
        else:
            classifier = KeywordClassifier()

        engine = cls(
            reconciliation_config=ReconciliationConfig(strategy=settings.strategy),
            catalog=catalog,
            learner=learner,
            classifier=classifier,
            notifier=NotificationService(webhook_url=settings.slack_webhook_url or ""),
        )
        if learner.decisions:
            learner.train()
        return engine

    # ==================== CONFIGURATION ====================

    def configure(
        self,
        reconciliation: Optional[Dict[str, Any]] = None,
        resolution: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ReconciliationConfig, ResolutionConfig]:
        """
        Merge partial updates into the live configs.
        Both are validated before either is applied; out-of-range values raise ConfigError.
        """
        try:
            new_reconciliation = ReconciliationConfig.model_validate(
                {**self.reconciliation_config.model_dump(), **(reconciliation or {})}
            )
        except ValidationError as exc:
            raise ConfigError.from_validation("reconciliation", exc) from exc
        try:
            new_resolution = ResolutionConfig.model_validate(
                {**self.resolution_config.model_dump(), **(resolution or {})}
            )
        except ValidationError as exc:
            raise ConfigError.from_validation("resolution", exc) from exc

        self._set_configs(new_reconciliation, new_resolution)
        logger.info("Configuration updated: strategy=%s", new_reconciliation.strategy.value)
        return new_reconciliation, new_resolution

    def recommended_configs(self) -> Tuple[ReconciliationConfig, ResolutionConfig]:
        return (
            self.learner.recommended_config(self.reconciliation_config),
            self.learner.recommended_config(self.resolution_config),
        )

    def apply_recommendations(self) -> Tuple[ReconciliationConfig, ResolutionConfig]:
        reconciliation, resolution = self.recommended_configs()
        self._set_configs(reconciliation, resolution)
        return reconciliation, resolution

    def _set_configs(self, reconciliation: ReconciliationConfig, resolution: ResolutionConfig) -> None:
        self.reconciliation_config = reconciliation
        self.resolution_config = resolution
        self.matcher.config = reconciliation
        self.resolver.config = resolution
        self.resolver.reconciliation_config = reconciliation

    # ==================== RECONCILIATION ====================

    def run(
        self,
        transactions: Iterable,
        entries: Iterable,
        apply_learned: bool = False,
        notify: bool = True,
    ) -> ReconciliationRun:
        """
        One full batch: match, mine, resolve, then the learner's correspondence
        rule over whatever is still unmatched (a no-op until it is trained).

        With `apply_learned`, the learner's recommendations (and its advisory
        rule weight) are used for this run only; live configs stay as they are.
        """
        run_id = f"run_{uuid.uuid4().hex[:12]}"
        started = time.perf_counter()

        txns, txn_errors = load_transactions(transactions)
        ents, ent_errors = load_entries(entries)
        errors = txn_errors + ent_errors

        if apply_learned:
            reconciliation_config, resolution_config = self.recommended_configs()
            rule_weight = self.learner.confidence_multipliers()["correspondence"]
        else:
            reconciliation_config, resolution_config = self.reconciliation_config, self.resolution_config
            rule_weight = 1.0

        match_result = self.matcher.match(txns, ents, reconciliation_config)
        match_result = match_result.model_copy(update={"errors": errors})

        resolver = AutonomousResolver(
            config=resolution_config,
            reconciliation_config=reconciliation_config,
            classifier=self.classifier,
            miner=self.miner,
            clock=self.clock,
        )
        # Only catalog persistence can fail hard; per-record problems are already in `errors`
        try:
            analysis = self.miner.mine(
                txns,
                confirmed=[m for m in match_result.matched if m.automatic],
                entries=ents,
            )
            resolution = resolver.resolve(match_result, rule_weight=rule_weight)
        except sqlite3.Error as exc:
            log_error("catalog_persistence", str(exc), {"run_id": run_id}, exception=exc)
            raise ReconciliationError("pattern catalog", str(exc)) from exc

        resolution = self.learner.apply_learned_correspondence(resolution)

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        run = ReconciliationRun(
            run_id=run_id,
            match=match_result,
            resolution=resolution,
            analysis=analysis,
            reconciliation_config=reconciliation_config,
            resolution_config=resolution_config,
            errors=errors,
            duration_ms=duration_ms,
        )

        log_reconciliation_run(run_id, run.summary, transactions=len(txns), entries=len(ents), duration_ms=duration_ms)
        if notify and self.notifier is not None:
            self.notifier.send_run_summary(run_id, resolution)
        return run

    # ==================== REVIEW ====================

    def match_manually(self, transaction: Transaction, entry: LedgerEntry, actor: str) -> MatchCandidate:
        candidate = self.matcher.match_manually(transaction, entry)
        self.record_review(DecisionKind.ACCEPT, actor, transaction=transaction, entry=entry, candidate=candidate)
        return candidate

    def undo_match(self, candidate: MatchCandidate, actor: str) -> Tuple[Transaction, LedgerEntry]:
        """Split a committed pair; every undo is logged as a reviewer decision."""
        transaction, entry = self.matcher.undo_match(candidate)
        self.record_review(DecisionKind.UNDO, actor, transaction=transaction, entry=entry)
        self.miner.record_outcomes(confirmed=[], undone=[candidate])
        return transaction, entry

    def record_review(
        self,
        kind: DecisionKind,
        actor: str,
        transaction: Optional[Transaction] = None,
        entry: Optional[LedgerEntry] = None,
        candidate: Optional[MatchCandidate] = None,
    ) -> HumanDecision:
        """
        Log a reviewer action and derive its learning features.
        Accepted pairs also count as confirmed matches for the mapping rules.
        """
        if kind in (DecisionKind.ACCEPT, DecisionKind.CORRECT, DecisionKind.UNDO) and (
            transaction is None or entry is None
        ):
            raise InvalidDecisionError(f"'{kind.value}' decisions need both a transaction and an entry")

        features: Dict[str, Any] = {}
        if transaction is not None and entry is not None:
            features = {
                "value_divergence": scoring.relative_difference(transaction.amount, entry.amount),
                "day_gap": scoring.day_gap(transaction.date, entry.date),
                "text_similarity": scoring.text_similarity(transaction.description, entry.description),
            }

        try:
            decision = HumanDecision(
                id=f"dec_{uuid.uuid4().hex[:12]}",
                kind=kind,
                transaction=transaction,
                entry=entry,
                actor=actor,
                decided_at=self.clock(),
                **features,
            )
        except ValidationError as exc:
            raise InvalidDecisionError(str(exc)) from exc

        self.learner.record_decision(decision)
        if kind == DecisionKind.ACCEPT:
            self.miner.record_outcomes(
                confirmed=[candidate or self.matcher.match_manually(transaction, entry)],
                undone=[],
            )
        return decision

    def train(self) -> bool:
        return self.learner.train()

    # ==================== REPORTING ====================

    def learner_stats(self):
        return self.learner.stats()

    def insights(self):
        return self.learner.insights()

    def pattern_statistics(self) -> Dict[str, Any]:
        return self.miner.statistics()


_engine: Optional[ReconciliationEngine] = None


def get_engine() -> ReconciliationEngine:
    """Get the global engine instance."""
    global _engine
    if _engine is None:
        _engine = ReconciliationEngine.from_settings(EngineSettings.from_env())
    return _engine


def set_engine(engine: Optional[ReconciliationEngine]) -> None:
    """Replace the global engine (None rebuilds it from the environment on next use)."""
    global _engine
    _engine = engine
