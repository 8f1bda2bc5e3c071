"""
Similarity Function Tests

Validates the pure scoring helpers used by the matching strategies:
string distance, amount closeness, date decay and the weighted-score
features. All results must stay within [0, 1].
"""

import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from reconciliation.similarity import (
    amount_magnitude_bucket,
    amount_ratio_feature,
    amount_similarity,
    date_proximity,
    days_between,
    exponential_date_decay,
    levenshtein_distance,
    reference_similarity,
    reference_tokens,
    same_calendar_day,
    sigmoid,
    string_similarity,
    to_decimal,
    token_overlap,
)

BASE = datetime(2024, 1, 15, 12, 0, 0)


class TestStringSimilarity:
    """Levenshtein-based similarity."""

    def test_levenshtein_known_distance(self):
        """kitten -> sitting needs three edits."""
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("abc", "abc") == 0
        assert levenshtein_distance("", "abc") == 3

    def test_empty_strings_never_similar(self):
        """Empty input contributes zero similarity."""
        assert string_similarity("", "ORDER001") == 0.0
        assert string_similarity("ORDER001", None) == 0.0
        assert string_similarity("", "") == 0.0

    def test_identical_strings(self):
        assert string_similarity("ORDER001", "ORDER001") == 1.0

    def test_reference_containment_shortcut(self):
        """A description containing the id scores 1.0, case-insensitively."""
        assert reference_similarity("Payment for order001", ["TXN9", "ORDER001"]) == 1.0

    def test_reference_ignores_empty_identifiers(self):
        assert reference_similarity("Payment for ORDER001", ["", None]) == 0.0
        assert reference_similarity("", ["ORDER001"]) == 0.0


class TestAmountSimilarity:
    """Relative amount closeness in Decimal."""

    def test_equal_amounts(self):
        assert amount_similarity(Decimal("99.99"), Decimal("99.99")) == 1.0

    def test_zero_only_matches_zero(self):
        """Zero amounts never divide by zero and only match zero."""
        assert amount_similarity(Decimal("0"), Decimal("0")) == 1.0
        assert amount_similarity(Decimal("0"), Decimal("5.00")) == 0.0
        assert amount_similarity(Decimal("5.00"), Decimal("0")) == 0.0

    def test_fee_deducted_amount(self):
        """150.00 vs 147.50 is 1 - 2.50 / 148.75."""
        expected = 1 - 2.5 / 148.75
        assert amount_similarity(Decimal("150.00"), Decimal("147.50")) == pytest.approx(expected)

    def test_far_apart_amounts_clamp_to_zero(self):
        score = amount_similarity(Decimal("1"), Decimal("1000"))
        assert 0.0 <= score < 0.01

    def test_to_decimal_goes_through_str(self):
        assert to_decimal(99.99) == Decimal("99.99")
        assert to_decimal(None) is None


class TestDateSimilarity:
    """Date proximity and decay."""

    def test_linear_window(self):
        assert date_proximity(BASE, BASE) == 1.0
        assert date_proximity(BASE, BASE + timedelta(days=3, hours=12)) == pytest.approx(0.5)
        assert date_proximity(BASE, BASE + timedelta(days=7)) == 0.0
        assert date_proximity(BASE, BASE + timedelta(days=30)) == 0.0

    def test_exponential_decay(self):
        assert exponential_date_decay(BASE, BASE + timedelta(days=3)) == pytest.approx(math.exp(-1))

    def test_naive_datetimes_are_utc(self):
        """A naive timestamp compares as UTC against an aware one."""
        naive = datetime(2024, 1, 15, 23, 0)
        aware = datetime(2024, 1, 16, 1, 0, tzinfo=timezone(timedelta(hours=2)))
        assert same_calendar_day(naive, aware)
        assert days_between(naive, aware) == 0.0

    def test_different_days(self):
        assert not same_calendar_day(BASE, BASE + timedelta(days=1))


class TestWeightedFeatures:
    """Features for the weighted-score strategy."""

    def test_amount_ratio(self):
        """exp(-|ln(100/50)|) == 0.5."""
        assert amount_ratio_feature(Decimal("100"), Decimal("50")) == pytest.approx(0.5)
        assert amount_ratio_feature(Decimal("50"), Decimal("100")) == pytest.approx(0.5)
        assert amount_ratio_feature(Decimal("0"), Decimal("0")) == 1.0
        assert amount_ratio_feature(Decimal("0"), Decimal("10")) == 0.0

    def test_token_overlap(self):
        assert token_overlap("Payment for ORDER001", ["TXN001", "ORDER001"]) == 1.0
        # {"invoice", "abc", "123", "settled"} vs {"xyz", "123"}
        assert token_overlap("invoice abc-123 settled", ["XYZ-123"]) == pytest.approx(0.25)
        assert token_overlap("", ["ORDER001"]) == 0.0

    def test_reference_tokens_skip_short_tokens(self):
        assert reference_tokens("Pay to ORDER-42 ok") == {"pay", "order"}

    def test_magnitude_buckets(self):
        assert amount_magnitude_bucket(Decimal("5")) == 0.1
        assert amount_magnitude_bucket(Decimal("10")) == 0.3
        assert amount_magnitude_bucket(Decimal("500")) == 0.5
        assert amount_magnitude_bucket(Decimal("5000")) == 0.7
        assert amount_magnitude_bucket(Decimal("50000")) == 0.9

    def test_sigmoid(self):
        assert sigmoid(0) == 0.5
        assert sigmoid(-1000) == pytest.approx(0.0)
        assert sigmoid(1000) == 1.0
