"""
ledgermatch Engine API

REST API over the reconciliation engine.

- Batches go in as raw JSON rows; malformed rows come back as errors, never as a 4xx
- Every reviewer action is recorded as a decision for the learner
- Handlers that can reach the classifier, the webhook or SQLite are plain `def` and run in the threadpool
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ledgermatch.core.engine import get_engine
from ledgermatch.models import DecisionKind, LedgerEntry, MatchCandidate, Transaction
from ledgermatch.services.errors import LedgerMatchError, to_http_exception

router = APIRouter(prefix="/engine", tags=["ledgermatch Engine"])


# ==================== REQUEST MODELS ====================

class ReconcileRequest(BaseModel):
    """One reconciliation batch."""
    transactions: List[Dict[str, Any]] = Field(default_factory=list)
    entries: List[Dict[str, Any]] = Field(default_factory=list)
    apply_learned: bool = Field(False, description="Run with the learner's recommended configuration")
    notify: bool = True


class ConfigUpdateRequest(BaseModel):
    """Partial configuration update; omitted fields keep their current value."""
    reconciliation: Optional[Dict[str, Any]] = None
    resolution: Optional[Dict[str, Any]] = None


class DecisionRequest(BaseModel):
    kind: DecisionKind
    actor: str = Field(..., min_length=1, max_length=200)
    transaction: Optional[Transaction] = None
    entry: Optional[LedgerEntry] = None


class ManualMatchRequest(BaseModel):
    transaction: Transaction
    entry: LedgerEntry
    actor: str = Field(..., min_length=1, max_length=200)


class UndoMatchRequest(BaseModel):
    candidate: MatchCandidate
    actor: str = Field(..., min_length=1, max_length=200)


def _config_payload(engine) -> Dict[str, Any]:
    return {
        "reconciliation": engine.reconciliation_config.model_dump(mode="json"),
        "resolution": engine.resolution_config.model_dump(mode="json"),
    }


# ==================== RECONCILIATION ====================

@router.post("/reconcile")
def run_reconciliation(request: ReconcileRequest):
    """
    Run one batch: matching, pattern mining, autonomous resolution and
    learned correspondence.
    Unmatched work is returned for human review.
    """
    engine = get_engine()
    try:
        run = engine.run(
            request.transactions,
            request.entries,
            apply_learned=request.apply_learned,
            notify=request.notify,
        )
    except LedgerMatchError as e:
        raise to_http_exception(e)
    return {"status": "success", "summary": run.summary, "run": run.model_dump(mode="json")}


@router.get("/config")
async def get_config():
    return _config_payload(get_engine())


@router.put("/config")
async def update_config(request: ConfigUpdateRequest):
    engine = get_engine()
    try:
        engine.configure(reconciliation=request.reconciliation, resolution=request.resolution)
    except LedgerMatchError as e:
        raise to_http_exception(e)
    return {"status": "success", **_config_payload(engine)}


# ==================== REVIEW ====================

@router.post("/matches/manual")
def match_manually(request: ManualMatchRequest):
    """Pair a transaction and an entry by hand (never automatic)."""
    engine = get_engine()
    try:
        candidate = engine.match_manually(request.transaction, request.entry, actor=request.actor)
    except LedgerMatchError as e:
        raise to_http_exception(e)
    return {"status": "success", "match": candidate.model_dump(mode="json")}


@router.post("/matches/undo")
def undo_match(request: UndoMatchRequest):
    """Split a committed pair back into its transaction and entry."""
    engine = get_engine()
    try:
        transaction, entry = engine.undo_match(request.candidate, actor=request.actor)
    except LedgerMatchError as e:
        raise to_http_exception(e)
    return {
        "status": "success",
        "transaction": transaction.model_dump(mode="json"),
        "entry": entry.model_dump(mode="json"),
    }


@router.post("/decisions")
def record_decision(request: DecisionRequest):
    engine = get_engine()
    try:
        decision = engine.record_review(
            request.kind,
            request.actor,
            transaction=request.transaction,
            entry=request.entry,
        )
    except LedgerMatchError as e:
        raise to_http_exception(e)
    return {"status": "success", "decision": decision.model_dump(mode="json")}


# ==================== LEARNING ====================

@router.post("/learning/train")
def train():
    engine = get_engine()
    trained = engine.train()
    return {"trained": trained, "stats": engine.learner_stats().model_dump(mode="json")}


@router.get("/learning/stats")
async def learner_stats():
    return get_engine().learner_stats().model_dump(mode="json")


@router.get("/learning/insights")
async def insights():
    return {"insights": [i.model_dump(mode="json") for i in get_engine().insights()]}


@router.get("/learning/recommendations")
async def recommendations():
    """Recommended configuration; the live configuration is left untouched."""
    reconciliation, resolution = get_engine().recommended_configs()
    return {
        "reconciliation": reconciliation.model_dump(mode="json"),
        "resolution": resolution.model_dump(mode="json"),
    }


@router.post("/learning/recommendations/apply")
async def apply_recommendations():
    engine = get_engine()
    if not engine.learner.trained:
        raise HTTPException(status_code=409, detail="Learner has not been trained yet")
    engine.apply_recommendations()
    return {"status": "success", **_config_payload(engine)}


# ==================== PATTERNS ====================

@router.get("/patterns")
async def patterns():
    engine = get_engine()
    return {
        "patterns": [p.model_dump(mode="json") for p in engine.catalog.patterns()],
        "mapping_rules": [r.model_dump(mode="json") for r in engine.catalog.rules()],
        "statistics": engine.pattern_statistics(),
    }
