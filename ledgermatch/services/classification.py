"""Ledger entry classifiers used when synthesizing entries for orphan transactions.

The resolver depends only on the `Classifier` protocol. `KeywordClassifier`
is the built-in rule set; `HttpClassifier` is a real HTTP client for an
external classification service configured through
LEDGERMATCH_CLASSIFIER_URL.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol, Tuple

import httpx
from pydantic import ValidationError

from ledgermatch.models import EntryKind, EntryStatus, LedgerEntry
from ledgermatch.services.errors import ClassificationError

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    def classify(self, entry: LedgerEntry) -> Tuple[LedgerEntry, float]:
        """Return a refined copy of `entry` and the classification confidence."""
        ...


# (keywords, category, confidence), first hit wins
REVENUE_RULES: List[Tuple[Tuple[str, ...], str, float]] = [
    (("client", "customer", "payment", "sale", "invoice"), "Sales", 0.8),
    (("interest", "dividend", "yield"), "Investment Income", 0.85),
    (("service", "consulting", "fees"), "Professional Services", 0.8),
]
EXPENSE_RULES: List[Tuple[Tuple[str, ...], str, float]] = [
    (("electricity", "energy", "water", "power", "phone", "telephone", "internet"), "Utilities", 0.85),
    (("tax", "irs", "vat", "payroll tax"), "Taxes", 0.85),
    (("salary", "salaries", "payroll", "wages", "employee"), "Payroll", 0.85),
    (("supplier", "vendor", "purchase", "materials"), "Suppliers", 0.8),
    (("rent", "lease"), "Rent", 0.85),
    (("fee", "charge", "bank"), "Financial Expenses", 0.85),
]
DEFAULT_CATEGORIES = {
    EntryKind.REVENUE: ("Other Revenue", 0.7),
    EntryKind.EXPENSE: ("Other Expenses", 0.6),
    EntryKind.TRANSFER: ("Transfers", 0.5),
}


class KeywordClassifier:
    """Categorizes entries from description keywords."""

    def __init__(self, status_threshold: float = 0.7):
        self.status_threshold = status_threshold

    def classify(self, entry: LedgerEntry) -> Tuple[LedgerEntry, float]:
        category, confidence = self.categorize(entry.kind, entry.description)
        status = EntryStatus.CLASSIFIED if confidence >= self.status_threshold else EntryStatus.PENDING
        refined = entry.model_copy(update={
            "category": category,
            "confidence": confidence,
            "status": status,
        })
        return refined, confidence

    @staticmethod
    def categorize(kind: EntryKind, description: str) -> Tuple[str, float]:
        text = (description or "").lower()
        words = set(text.split())
        rules = REVENUE_RULES if kind == EntryKind.REVENUE else EXPENSE_RULES if kind == EntryKind.EXPENSE else []
        for keywords, category, confidence in rules:
            for keyword in keywords:
                if (" " in keyword and keyword in text) or keyword in words:
                    return category, confidence
        return DEFAULT_CATEGORIES[kind]


class HttpClassifier:
    """
    Client for an external classification service.

    POSTs the draft entry as JSON and expects `{"entry": {...}, "confidence": float}`.
    Every transport, status or payload failure surfaces as ClassificationError.
    """

    def __init__(self, url: str, timeout: float = 5.0, headers: Dict[str, str] | None = None):
        self.url = url
        self.timeout = timeout
        self.headers = {"Accept": "application/json", "Content-Type": "application/json", **(headers or {})}

    def classify(self, entry: LedgerEntry) -> Tuple[LedgerEntry, float]:
        payload = {"entry": entry.model_dump(mode="json")}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(self.url, json=payload, headers=self.headers)
                resp.raise_for_status()
                body = resp.json()
        except httpx.TimeoutException as exc:
            raise ClassificationError(f"timed out after {self.timeout}s", entry_id=entry.id) from exc
        except httpx.HTTPStatusError as exc:
            raise ClassificationError(
                f"service answered {exc.response.status_code}", entry_id=entry.id
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ClassificationError(str(exc), entry_id=entry.id) from exc

        return self._parse(entry, body)

    @staticmethod
    def _parse(entry: LedgerEntry, body: Any) -> Tuple[LedgerEntry, float]:
        if not isinstance(body, dict) or "confidence" not in body:
            raise ClassificationError("malformed classifier response", entry_id=entry.id)
        try:
            confidence = float(body["confidence"])
            refined = LedgerEntry.model_validate({**entry.model_dump(), **(body.get("entry") or {})})
        except (TypeError, ValueError, ValidationError) as exc:
            raise ClassificationError(f"malformed classifier response: {exc}", entry_id=entry.id) from exc
        if not 0.0 <= confidence <= 1.0:
            raise ClassificationError(f"confidence {confidence} out of range", entry_id=entry.id)
        return refined, confidence
