"""Similarity and feature functions used by the matching strategies.

All functions are pure. Amount arithmetic stays in Decimal; only the final
similarity scores are floats in [0, 1]. Naive datetimes are treated as UTC.
"""

import math
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Set

DATE_WINDOW_DAYS = 7.0
DATE_DECAY_DAYS = 3.0

_TOKEN_SPLIT = re.compile(r"[^0-9a-z]+")


def to_decimal(value) -> Optional[Decimal]:
    """Convert value to Decimal, going through str for floats."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(a: datetime, b: datetime) -> float:
    """Absolute distance between two instants in (fractional) days."""
    return abs((_as_utc(a) - _as_utc(b)).total_seconds()) / 86400.0


def same_calendar_day(a: datetime, b: datetime) -> bool:
    """True when both instants fall on the same UTC calendar day."""
    return _as_utc(a).date() == _as_utc(b).date()


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


# =============================================================================
# String similarity
# =============================================================================

def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """1 - distance / longest length. Empty input never counts as similar."""
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    return _clamp(1.0 - levenshtein_distance(a, b) / longest)


def reference_similarity(description: Optional[str], identifiers: Iterable[Optional[str]]) -> float:
    """Best similarity between a free-text description and record identifiers.

    A description that literally contains an identifier scores 1.0.
    """
    if not description:
        return 0.0
    text = description.lower()
    best = 0.0
    for identifier in identifiers:
        if not identifier:
            continue
        ident = identifier.lower()
        if ident in text:
            return 1.0
        best = max(best, string_similarity(text, ident))
    return best


# =============================================================================
# Amount and date similarity
# =============================================================================

def amount_similarity(a, b) -> float:
    """1 - |a - b| / average(a, b), computed in Decimal.

    Zero only matches zero.
    """
    a = to_decimal(a)
    b = to_decimal(b)
    if a == b:
        return 1.0
    if a == 0 or b == 0:
        return 0.0
    average = (abs(a) + abs(b)) / 2
    difference = abs(a - b)
    score = Decimal(1) - difference / average
    return _clamp(float(score))


def date_proximity(a: datetime, b: datetime, window_days: float = DATE_WINDOW_DAYS) -> float:
    """Linear decay from 1.0 at zero distance to 0.0 at window_days."""
    if window_days <= 0:
        return 1.0 if same_calendar_day(a, b) else 0.0
    return _clamp(1.0 - days_between(a, b) / window_days)


def exponential_date_decay(a: datetime, b: datetime, decay_days: float = DATE_DECAY_DAYS) -> float:
    """exp(-days / decay_days)."""
    return _clamp(math.exp(-days_between(a, b) / decay_days))


# =============================================================================
# Feature helpers for weighted scoring
# =============================================================================

def amount_ratio_feature(a, b) -> float:
    """exp(-|ln(a / b)|): 1.0 at equal amounts, decaying with the ratio."""
    a = to_decimal(a)
    b = to_decimal(b)
    if a == b:
        return 1.0
    if a <= 0 or b <= 0:
        return 0.0
    return _clamp(math.exp(-abs(float((a / b).ln()))))


def reference_tokens(text: Optional[str]) -> Set[str]:
    """Lowercase alphanumeric tokens longer than two characters."""
    if not text:
        return set()
    return {t for t in _TOKEN_SPLIT.split(text.lower()) if len(t) > 2}


def token_overlap(description: Optional[str], identifiers: Iterable[Optional[str]]) -> float:
    """Share of tokens in common between a description and identifiers.

    Containment of any identifier in the description scores 1.0.
    """
    if not description:
        return 0.0
    text = description.lower()
    id_tokens: Set[str] = set()
    for identifier in identifiers:
        if not identifier:
            continue
        if identifier.lower() in text:
            return 1.0
        id_tokens |= reference_tokens(identifier)

    desc_tokens = reference_tokens(description)
    if not desc_tokens or not id_tokens:
        return 0.0
    common = desc_tokens & id_tokens
    return _clamp(len(common) / max(len(desc_tokens), len(id_tokens)))


_MAGNITUDE_BUCKETS: List[tuple] = [
    (Decimal("10"), 0.1),
    (Decimal("100"), 0.3),
    (Decimal("1000"), 0.5),
    (Decimal("10000"), 0.7),
]


def amount_magnitude_bucket(amount) -> float:
    """Bucket an amount's magnitude into 0.1 / 0.3 / 0.5 / 0.7 / 0.9."""
    value = abs(to_decimal(amount))
    for upper, bucket in _MAGNITUDE_BUCKETS:
        if value < upper:
            return bucket
    return 0.9


def sigmoid(z: float) -> float:
    """Numerically stable logistic function."""
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)
