"""
Transaction-to-entry scoring for ledgermatch.

Weighted sum of independent terms, each clamped to its slice:
- Value match: 0-0.5
- Date proximity: 0-0.3
- Description similarity: 0-0.2
- Counterparty bonus: +0.1 on top of a 0.9 headroom

The boolean correspondence predicate and the correspondence score used by
the autonomous resolver reuse the same feature functions.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ledgermatch.models import LedgerEntry, ReconciliationConfig, Transaction

VALUE_WEIGHT = 0.5
DATE_WEIGHT = 0.3
DESCRIPTION_WEIGHT = 0.2
CONTAINMENT_SCORE = 0.15
TOKEN_SCORE = 0.03
TOKEN_SCORE_CAP = 0.1
COUNTERPARTY_BONUS = 0.1
BONUS_HEADROOM = 1.0 - COUNTERPARTY_BONUS

# Date window used when ranking correction candidates
CORRESPONDENCE_WINDOW_DAYS = 5


@dataclass
class ScoreBreakdown:
    """Detailed breakdown of a transaction/entry score."""
    value_score: float = 0.0
    date_score: float = 0.0
    description_score: float = 0.0
    counterparty_bonus: float = 0.0

    value_detail: str = ""
    date_detail: str = ""
    description_detail: str = ""

    @property
    def total_score(self) -> float:
        base = self.value_score + self.date_score + self.description_score
        if self.counterparty_bonus:
            base = min(BONUS_HEADROOM, base) + self.counterparty_bonus
        return max(0.0, min(1.0, base))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_score": self.total_score,
            "value": {"score": self.value_score, "detail": self.value_detail},
            "date": {"score": self.date_score, "detail": self.date_detail},
            "description": {"score": self.description_score, "detail": self.description_detail},
            "counterparty_bonus": self.counterparty_bonus,
        }


def relative_difference(a: Decimal, b: Decimal) -> float:
    """|a - b| relative to the larger magnitude; 0 when both are zero."""
    a, b = abs(a), abs(b)
    largest = max(a, b)
    if largest == 0:
        return 0.0
    return float(abs(a - b) / largest)


def day_gap(a: dt.date, b: dt.date) -> int:
    return abs((a - b).days)


def tokens(text: Optional[str], min_length: int = 4) -> List[str]:
    """Lower-cased whitespace tokens of at least `min_length` characters."""
    if not text:
        return []
    return [tok for tok in text.lower().split() if len(tok) >= min_length]


def shared_tokens(a: Optional[str], b: Optional[str]) -> int:
    return len(set(tokens(a)) & set(tokens(b)))


def value_score(t_amount: Decimal, e_amount: Decimal, tolerance_pct: float) -> float:
    t_amount, e_amount = abs(t_amount), abs(e_amount)
    if t_amount == e_amount:
        return VALUE_WEIGHT
    diff = relative_difference(t_amount, e_amount)
    if tolerance_pct <= 0 or diff > tolerance_pct:
        return 0.0
    return VALUE_WEIGHT * (1 - diff / tolerance_pct)


def date_score(t_date: dt.date, e_date: dt.date, tolerance_days: int) -> float:
    gap = day_gap(t_date, e_date)
    if gap == 0:
        return DATE_WEIGHT
    if tolerance_days <= 0 or gap > tolerance_days:
        return 0.0
    return DATE_WEIGHT * (1 - gap / tolerance_days)


def description_score(t_description: Optional[str], e_description: Optional[str]) -> float:
    a = (t_description or "").strip().lower()
    b = (e_description or "").strip().lower()
    if not a or not b:
        return 0.0
    if a == b:
        return DESCRIPTION_WEIGHT
    if a in b or b in a:
        return CONTAINMENT_SCORE
    shared = shared_tokens(a, b)
    if shared:
        return min(TOKEN_SCORE_CAP, shared * TOKEN_SCORE)
    return 0.0


def same_counterparty(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


def score_breakdown(
    transaction: Transaction,
    entry: LedgerEntry,
    config: ReconciliationConfig,
    value_tolerance_pct: Optional[float] = None,
) -> ScoreBreakdown:
    tolerance = config.value_tolerance_pct if value_tolerance_pct is None else value_tolerance_pct
    breakdown = ScoreBreakdown()

    breakdown.value_score = value_score(transaction.amount, entry.amount, tolerance)
    breakdown.value_detail = (
        f"{transaction.magnitude} vs {entry.magnitude} "
        f"({relative_difference(transaction.amount, entry.amount):.2%} apart, tolerance {tolerance:.2%})"
    )

    breakdown.date_score = date_score(transaction.date, entry.date, config.date_tolerance_days)
    breakdown.date_detail = (
        f"{day_gap(transaction.date, entry.date)} day(s) apart, tolerance {config.date_tolerance_days}"
    )

    breakdown.description_score = description_score(transaction.description, entry.description)
    breakdown.description_detail = (
        f"{shared_tokens(transaction.description, entry.description)} shared token(s)"
    )

    if config.consider_counterparty and same_counterparty(transaction.counterparty, entry.counterparty):
        breakdown.counterparty_bonus = COUNTERPARTY_BONUS

    return breakdown


def score(
    transaction: Transaction,
    entry: LedgerEntry,
    config: ReconciliationConfig,
    value_tolerance_pct: Optional[float] = None,
) -> float:
    """Similarity of a transaction/entry pair in [0, 1]."""
    return score_breakdown(transaction, entry, config, value_tolerance_pct).total_score


def description_overlap(a: Optional[str], b: Optional[str]) -> bool:
    """Equal, containing, or sharing a (sub)token of at least 4 characters."""
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True
    return _overlapping_tokens(a, b) > 0


def _overlapping_tokens(a: str, b: str) -> int:
    b_tokens = tokens(b)
    return sum(1 for t1 in tokens(a) if any(t1 in t2 or t2 in t1 for t2 in b_tokens))


def corresponds(transaction: Transaction, entry: LedgerEntry, config: ReconciliationConfig) -> bool:
    """Boolean reduction of the score: compatible, in window, in tolerance, overlapping text."""
    if not entry.is_compatible_with(transaction):
        return False
    if day_gap(transaction.date, entry.date) > config.date_tolerance_days:
        return False
    if relative_difference(transaction.amount, entry.amount) > config.value_tolerance_pct:
        return False
    return description_overlap(transaction.description, entry.description)


def correspondence_score(transaction: Transaction, entry: LedgerEntry, tolerance_pct: float) -> float:
    """Ranks correction candidates: value within `tolerance_pct`, date within five days, text."""
    total = value_score(transaction.amount, entry.amount, tolerance_pct)
    total += window_date_score(transaction.date, entry.date, CORRESPONDENCE_WINDOW_DAYS)
    total += correspondence_text_score(transaction.description, entry.description)
    return min(1.0, total)


def window_date_score(t_date: dt.date, e_date: dt.date, window_days: int) -> float:
    """Linear decay from DATE_WEIGHT at the same day to 0 at `window_days`."""
    gap = day_gap(t_date, e_date)
    if window_days <= 0 or gap > window_days:
        return 0.0
    return DATE_WEIGHT * (1 - gap / window_days)


def correspondence_text_score(a: Optional[str], b: Optional[str]) -> float:
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    if not a or not b:
        return 0.0
    if a == b:
        return DESCRIPTION_WEIGHT
    if a in b or b in a:
        return CONTAINMENT_SCORE
    common = _overlapping_tokens(a, b)
    if common >= 3:
        return CONTAINMENT_SCORE
    if common >= 1:
        return TOKEN_SCORE_CAP
    return 0.0


def text_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Jaccard similarity of the token sets, 1.0 for identical text."""
    a_norm = (a or "").strip().lower()
    b_norm = (b or "").strip().lower()
    if a_norm and a_norm == b_norm:
        return 1.0
    left, right = set(tokens(a_norm)), set(tokens(b_norm))
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)
