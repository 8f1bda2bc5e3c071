"""
Matching Strategy Tests

Pass criteria:
1. Exact matching is deterministic and binary (confidence 1.0 or no match)
2. Fuzzy matching never accepts below its threshold and always picks the
   best candidate, keeping the first on ties
3. Weighted scoring stays in [0, 1] and rejects currency mismatches
4. Every strategy returns confidences within [0, 1]
"""

from datetime import timedelta

import pytest

from conftest import DAY1, make_external, make_internal
from reconciliation.matching import (
    MATCHING_STRATEGIES,
    ExactMatchingStrategy,
    FuzzyMatchingStrategy,
    WeightedScoreMatchingStrategy,
    explain_no_match,
)


class TestExactMatching:
    """Exact amount, currency and calendar day."""

    def test_exact_scenario(self):
        """99.99 USD on day 1 matches 99.99 USD settled on day 1."""
        internal = make_internal(amount="99.99")
        external = make_external(amount="99.99", when=DAY1 + timedelta(hours=3))

        result = ExactMatchingStrategy().find_match(internal, [external])

        assert result.matched
        assert result.matched_record is external
        assert result.confidence_score == 1.0

    @pytest.mark.parametrize("field,value", [
        ("amount", "99.98"),
        ("currency", "EUR"),
        ("when", DAY1 + timedelta(days=1)),
    ])
    def test_any_difference_means_no_match(self, field, value):
        internal = make_internal(amount="99.99")
        external = make_external(**{field: value})

        result = ExactMatchingStrategy().find_match(internal, [external])

        assert not result.matched
        assert result.matched_record is None
        assert result.confidence_score == 0.0

    def test_first_hit_wins(self):
        internal = make_internal()
        first = make_external("EXT-A")
        second = make_external("EXT-B")

        result = ExactMatchingStrategy().find_match(internal, [first, second])

        assert result.matched_record.reference_id == "EXT-A"

    def test_potential_matches_only_exact_hits(self):
        internal = make_internal()
        candidates = ExactMatchingStrategy().find_potential_matches(
            internal, [make_external("EXT-A"), make_external("EXT-B", amount="1.00")]
        )
        assert [c.external_record.reference_id for c in candidates] == ["EXT-A"]


class TestFuzzyMatching:
    """Weighted fuzzy score with a 0.7 acceptance threshold."""

    def test_fee_deducted_scenario(self):
        """150.00 vs 147.50 matches above 0.7 but below 1.0."""
        internal = make_internal("TXN002", "150.00", order_id="ORDER002")
        external = make_external("EXT002", "147.50", description="Payment for ORDER002")

        result = FuzzyMatchingStrategy().find_match(internal, [external])

        assert result.matched
        assert 0.7 <= result.confidence_score < 1.0

    def test_returns_highest_candidate(self):
        internal = make_internal(amount="100.00")
        near = make_external("EXT-NEAR", amount="90.00", description="")
        exact = make_external("EXT-EXACT", amount="100.00", description="")

        result = FuzzyMatchingStrategy().find_match(internal, [near, exact])

        assert result.matched_record.reference_id == "EXT-EXACT"

    def test_ties_keep_first_seen(self):
        internal = make_internal()
        a = make_external("EXT-A")
        b = make_external("EXT-B")

        result = FuzzyMatchingStrategy().find_match(internal, [a, b])

        assert result.matched_record.reference_id == "EXT-A"

    def test_never_accepts_below_threshold(self):
        """Different currency, a distant date and no reference stay unmatched."""
        internal = make_internal(amount="100.00")
        far = make_external(
            amount="60.00", currency="GBP", description="", when=DAY1 + timedelta(days=10)
        )

        strategy = FuzzyMatchingStrategy()
        result = strategy.find_match(internal, [far])

        assert not result.matched
        assert strategy.score(internal, far) < 0.7

    def test_potential_matches_sorted_descending(self):
        internal = make_internal(amount="100.00")
        externals = [
            make_external("EXT-1", amount="95.00", description=""),
            make_external("EXT-2", amount="100.00", description=""),
            make_external("EXT-3", amount="10.00", currency="EUR", description=""),
        ]

        candidates = FuzzyMatchingStrategy().find_potential_matches(internal, externals)

        scores = [c.confidence for c in candidates]
        assert scores == sorted(scores, reverse=True)
        assert all(s >= 0.7 for s in scores)
        assert candidates[0].external_record.reference_id == "EXT-2"
        assert "EXT-3" not in [c.external_record.reference_id for c in candidates]

    def test_currency_mismatch_still_proposed(self):
        """120 EUR vs 120 USD with a matching reference scores 0.8."""
        internal = make_internal("TXN003", "120.00", currency="EUR", order_id="ORDER003")
        external = make_external("EXT003", "120.00", currency="USD", description="Payment for ORDER003")

        result = FuzzyMatchingStrategy().find_match(internal, [external])

        assert result.matched
        assert result.confidence_score == pytest.approx(0.8)

    def test_threshold_validation(self):
        with pytest.raises(ValueError):
            FuzzyMatchingStrategy(min_confidence=1.5)


class TestWeightedScoreMatching:
    """Fixed-weight feature scoring through a sigmoid."""

    def test_perfect_pair_scores_high(self):
        internal = make_internal()
        external = make_external()

        strategy = WeightedScoreMatchingStrategy()
        result = strategy.find_match(internal, [external])

        assert result.matched
        assert 0.9 < result.confidence_score < 1.0

    def test_currency_mismatch_rejected(self):
        """120 EUR vs 120 USD falls below the 0.8 threshold."""
        internal = make_internal("TXN003", "120.00", currency="EUR", order_id="ORDER003")
        external = make_external("EXT003", "120.00", currency="USD", description="Payment for ORDER003")

        strategy = WeightedScoreMatchingStrategy()

        assert strategy.score(internal, external) < 0.8
        assert not strategy.find_match(internal, [external]).matched

    def test_features_bounded(self):
        internal = make_internal(amount="12000.00")
        external = make_external(amount="3.00", description="", when=DAY1 + timedelta(days=40))

        features = WeightedScoreMatchingStrategy().features(internal, external)

        assert set(features) == {"amount", "currency", "date", "reference", "magnitude"}
        assert all(0.0 <= v <= 1.0 for v in features.values())
        assert features["magnitude"] == 0.9


class TestConfidenceBounds:
    """Every strategy keeps confidences within [0, 1]."""

    @pytest.mark.parametrize("name", sorted(MATCHING_STRATEGIES))
    def test_scores_in_unit_interval(self, name):
        strategy = MATCHING_STRATEGIES[name]()
        internal = make_internal(amount="0.00")
        externals = [
            make_external("EXT-ZERO", amount="0.00", description=""),
            make_external("EXT-BIG", amount="99999.99", currency="JPY", when=DAY1 + timedelta(days=90)),
            make_external("EXT-SAME"),
        ]

        for external in externals:
            assert 0.0 <= strategy.score(internal, external) <= 1.0
        for candidate in explain_no_match(strategy, internal, externals):
            assert 0.0 <= candidate.confidence <= 1.0


class TestExplainNoMatch:
    """Ranked explanations for unmatched records."""

    def test_includes_candidates_below_threshold(self):
        internal = make_internal(amount="100.00")
        weak = make_external("EXT-WEAK", amount="40.00", currency="EUR", description="")

        strategy = FuzzyMatchingStrategy()
        assert strategy.find_potential_matches(internal, [weak]) == []

        ranked = explain_no_match(strategy, internal, [weak])
        assert len(ranked) == 1
        assert ranked[0].external_record.reference_id == "EXT-WEAK"
        assert "amount=" in ranked[0].reason
