"""Matching strategies.

A matching strategy pairs one internal record with at most one external
record from a candidate list:

- ExactMatchingStrategy: equal amount, equal currency, same calendar day
- FuzzyMatchingStrategy: weighted amount/currency/date/reference score
- WeightedScoreMatchingStrategy: fixed-weight feature scoring through a
  sigmoid, standing in for a learned classifier

The engine only passes still-unmatched externals to find_match, so a
record takes part in at most one match per run.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Sequence

from reconciliation.models import (
    ExternalRecord,
    MatchCandidate,
    MatchResult,
    PaymentRecord,
)
from reconciliation.similarity import (
    amount_magnitude_bucket,
    amount_ratio_feature,
    amount_similarity,
    date_proximity,
    exponential_date_decay,
    reference_similarity,
    same_calendar_day,
    sigmoid,
    token_overlap,
)


class MatchingStrategy(ABC):
    """Base class for record matching algorithms."""

    strategy_name: str = "base"

    @abstractmethod
    def score(self, internal: PaymentRecord, external: ExternalRecord) -> float:
        """Confidence in [0, 1] that the two records describe one payment."""
        pass

    @abstractmethod
    def find_match(self, internal: PaymentRecord, externals: Sequence[ExternalRecord]) -> MatchResult:
        """Pick the best external record for internal, or report no match."""
        pass

    def find_potential_matches(
        self,
        internal: PaymentRecord,
        externals: Sequence[ExternalRecord],
    ) -> List[MatchCandidate]:
        """Candidates at or above the acceptance threshold, best first."""
        threshold = self.threshold
        candidates = [
            c for c in self._rank(internal, externals) if c.confidence >= threshold
        ]
        return candidates

    @property
    def threshold(self) -> float:
        return 1.0

    def describe(self, internal: PaymentRecord, external: ExternalRecord) -> str:
        return f"{self.strategy_name} score"

    def _best_above_threshold(
        self,
        internal: PaymentRecord,
        externals: Sequence[ExternalRecord],
    ) -> MatchResult:
        best_score = -1.0
        best_external = None
        for external in externals:
            confidence = self.score(internal, external)
            # strict > keeps the first external on ties
            if confidence >= self.threshold and confidence > best_score:
                best_score = confidence
                best_external = external

        if best_external is None:
            return MatchResult.no_match(
                f"No candidate reached confidence {self.threshold:.2f}"
            )
        return MatchResult(
            matched=True,
            matched_record=best_external,
            confidence_score=best_score,
            message=self.describe(internal, best_external),
        )

    def _rank(self, internal: PaymentRecord, externals: Sequence[ExternalRecord]) -> List[MatchCandidate]:
        scored = [
            MatchCandidate(
                external_record=external,
                confidence=self.score(internal, external),
                reason=self.describe(internal, external),
            )
            for external in externals
        ]
        # sorted() is stable, so equal scores keep ingestion order
        return sorted(scored, key=lambda c: c.confidence, reverse=True)


def explain_no_match(
    strategy: MatchingStrategy,
    internal: PaymentRecord,
    externals: Sequence[ExternalRecord],
    limit: int = 5,
) -> List[MatchCandidate]:
    """Rank every external for internal, including those under the threshold.

    Used by reviewers to see why a record went unmatched.
    """
    return strategy._rank(internal, externals)[:limit]


# =============================================================================
# Exact
# =============================================================================

class ExactMatchingStrategy(MatchingStrategy):
    """Amount equal, currency equal, same calendar day. Confidence is 1.0."""

    strategy_name = "exact"

    def score(self, internal: PaymentRecord, external: ExternalRecord) -> float:
        if (
            internal.amount == external.amount
            and internal.currency == external.currency
            and same_calendar_day(internal.transaction_date, external.settlement_date)
        ):
            return 1.0
        return 0.0

    def describe(self, internal: PaymentRecord, external: ExternalRecord) -> str:
        return "Exact match on amount, currency and date"

    def find_match(self, internal: PaymentRecord, externals: Sequence[ExternalRecord]) -> MatchResult:
        for external in externals:
            if self.score(internal, external) == 1.0:
                return MatchResult(
                    matched=True,
                    matched_record=external,
                    confidence_score=1.0,
                    message=self.describe(internal, external),
                )
        return MatchResult.no_match("No exact match found")


# =============================================================================
# Fuzzy
# =============================================================================

class FuzzyMatchingStrategy(MatchingStrategy):
    """Weighted similarity score.

    amount 40%, currency 20%, date proximity 20% (7-day window),
    reference 20%. Accepts at >= min_confidence, highest score wins.
    """

    strategy_name = "fuzzy"

    AMOUNT_WEIGHT = 0.4
    CURRENCY_WEIGHT = 0.2
    DATE_WEIGHT = 0.2
    REFERENCE_WEIGHT = 0.2

    def __init__(self, min_confidence: float = 0.7, date_window_days: float = 7.0):
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError("min_confidence must be within [0, 1]")
        self.min_confidence = min_confidence
        self.date_window_days = date_window_days

    @property
    def threshold(self) -> float:
        return self.min_confidence

    def components(self, internal: PaymentRecord, external: ExternalRecord) -> Dict[str, float]:
        return {
            "amount": amount_similarity(internal.amount, external.amount),
            "currency": 1.0 if internal.currency == external.currency else 0.0,
            "date": date_proximity(
                internal.transaction_date, external.settlement_date, self.date_window_days
            ),
            "reference": reference_similarity(
                external.description, [internal.transaction_id, internal.order_id]
            ),
        }

    def score(self, internal: PaymentRecord, external: ExternalRecord) -> float:
        c = self.components(internal, external)
        total = (
            c["amount"] * self.AMOUNT_WEIGHT
            + c["currency"] * self.CURRENCY_WEIGHT
            + c["date"] * self.DATE_WEIGHT
            + c["reference"] * self.REFERENCE_WEIGHT
        )
        return max(0.0, min(1.0, total))

    def describe(self, internal: PaymentRecord, external: ExternalRecord) -> str:
        c = self.components(internal, external)
        parts = ", ".join(f"{name}={value:.2f}" for name, value in c.items())
        return f"Fuzzy match ({parts})"

    def find_match(self, internal: PaymentRecord, externals: Sequence[ExternalRecord]) -> MatchResult:
        return self._best_above_threshold(internal, externals)


# =============================================================================
# Weighted score (simulated learned model)
# =============================================================================

class WeightedScoreMatchingStrategy(MatchingStrategy):
    """Feature-weighted scoring passed through a sigmoid.

    NOTE: this is a fixed-weight heuristic placeholder, not a trained model.
    The weights and the sigmoid scaling are hand-set; a real classifier can
    replace score() behind the same interface.

    Features (each in [0, 1]):
    - amount: exp(-|ln(a/b)|)
    - currency: 1 if equal
    - date: exp(-days / 3)
    - reference: token overlap between description and ids
    - magnitude: amount bucket (0.1 .. 0.9)
    """

    strategy_name = "weighted_score"

    WEIGHTS: Dict[str, float] = {
        "amount": 0.3,
        "currency": 0.25,
        "date": 0.2,
        "reference": 0.15,
        "magnitude": 0.1,
    }

    # Scaling so a perfect feature vector lands near 0.95 and a currency
    # mismatch falls well below the acceptance threshold.
    SCALE = 10.0
    OFFSET = 6.5

    def __init__(self, min_confidence: float = 0.8):
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError("min_confidence must be within [0, 1]")
        self.min_confidence = min_confidence

    @property
    def threshold(self) -> float:
        return self.min_confidence

    def features(self, internal: PaymentRecord, external: ExternalRecord) -> Dict[str, float]:
        return {
            "amount": amount_ratio_feature(internal.amount, external.amount),
            "currency": 1.0 if internal.currency == external.currency else 0.0,
            "date": exponential_date_decay(internal.transaction_date, external.settlement_date),
            "reference": token_overlap(
                external.description, [internal.transaction_id, internal.order_id]
            ),
            "magnitude": amount_magnitude_bucket(internal.amount),
        }

    def score(self, internal: PaymentRecord, external: ExternalRecord) -> float:
        features = self.features(internal, external)
        linear = sum(self.WEIGHTS[name] * value for name, value in features.items())
        return sigmoid(linear * self.SCALE - self.OFFSET)

    def describe(self, internal: PaymentRecord, external: ExternalRecord) -> str:
        features = self.features(internal, external)
        parts = ", ".join(f"{name}={value:.2f}" for name, value in features.items())
        return f"Weighted score ({parts})"

    def find_match(self, internal: PaymentRecord, externals: Sequence[ExternalRecord]) -> MatchResult:
        return self._best_above_threshold(internal, externals)


MATCHING_STRATEGIES = {
    ExactMatchingStrategy.strategy_name: ExactMatchingStrategy,
    FuzzyMatchingStrategy.strategy_name: FuzzyMatchingStrategy,
    WeightedScoreMatchingStrategy.strategy_name: WeightedScoreMatchingStrategy,
}
