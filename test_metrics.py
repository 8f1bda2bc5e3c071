"""
Lifetime Metrics Tests

Pass criteria:
1. Rates are running averages over completed runs
2. Counters and histograms accumulate until reset()
3. Snapshots are immutable copies
"""

import pydantic
import pytest

from reconciliation.metrics import ReconciliationMetrics
from reconciliation.models import (
    DiscrepancyAnalysisResult,
    DiscrepancyType,
    MatchingResult,
    ReconciliationSummary,
    ResolutionAction,
    ResolutionResult,
)


def summary(match_rate, resolution_rate=0.0, processing_time_ms=10.0, type_counts=None, action_counts=None):
    return ReconciliationSummary(
        run_id="run-test",
        engine_id="ENG-TEST",
        total_internal=4,
        total_external=5,
        matched_records=int(4 * match_rate / 100),
        total_discrepancies=2,
        resolved_discrepancies=1,
        match_rate=match_rate,
        resolution_rate=resolution_rate,
        processing_time_ms=processing_time_ms,
        matching_strategy="exact",
        reconciliation_strategy="standard",
        resolution_strategy="automatic",
        matching_result=MatchingResult(),
        analysis_result=DiscrepancyAnalysisResult(type_counts=type_counts or {}),
        resolution_result=ResolutionResult(
            resolved_count=1, unresolved_count=1, action_counts=action_counts or {}
        ),
    )


class TestRunningAverages:
    """new_average = (old * (n - 1) + this_run) / n."""

    def test_match_rate_average(self):
        metrics = ReconciliationMetrics()

        metrics.record_run(summary(100.0))
        metrics.record_run(summary(50.0))
        assert metrics.snapshot().average_match_rate == pytest.approx(75.0)

        metrics.record_run(summary(0.0))
        assert metrics.snapshot().average_match_rate == pytest.approx(50.0)

    def test_processing_time_average(self):
        metrics = ReconciliationMetrics()
        metrics.record_run(summary(100.0, processing_time_ms=10.0))
        metrics.record_run(summary(100.0, processing_time_ms=30.0))

        snapshot = metrics.snapshot()
        assert snapshot.total_processing_time_ms == pytest.approx(40.0)
        assert snapshot.average_processing_time_ms == pytest.approx(20.0)

    def test_empty_metrics(self):
        snapshot = ReconciliationMetrics().snapshot()
        assert snapshot.total_runs == 0
        assert snapshot.average_match_rate == 0.0
        assert snapshot.average_processing_time_ms == 0.0
        assert snapshot.last_run_at is None


class TestCounters:
    """Totals and histograms."""

    def test_counters_accumulate(self):
        metrics = ReconciliationMetrics()
        metrics.record_run(summary(
            100.0,
            type_counts={DiscrepancyType.AMOUNT_MISMATCH: 2},
            action_counts={ResolutionAction.AUTO_RESOLVED: 1, ResolutionAction.MANUAL_REVIEW: 1},
        ))
        metrics.record_run(summary(
            50.0,
            type_counts={DiscrepancyType.AMOUNT_MISMATCH: 1, DiscrepancyType.MISSING_INTERNAL: 1},
        ))

        snapshot = metrics.snapshot()
        assert snapshot.total_runs == 2
        assert snapshot.total_internal_records == 8
        assert snapshot.total_external_records == 10
        assert snapshot.total_matches == 6
        assert snapshot.total_resolved == 2
        assert snapshot.total_unresolved == 2
        assert snapshot.discrepancies_by_type == {"AMOUNT_MISMATCH": 3, "MISSING_INTERNAL": 1}
        assert snapshot.resolutions_by_action == {"AUTO_RESOLVED": 1, "MANUAL_REVIEW": 1}

    def test_reset(self):
        metrics = ReconciliationMetrics()
        metrics.record_run(summary(100.0))

        metrics.reset()

        snapshot = metrics.snapshot()
        assert snapshot.total_runs == 0
        assert snapshot.discrepancies_by_type == {}


class TestSnapshot:
    """Snapshots do not change after they are taken."""

    def test_snapshot_is_frozen(self):
        metrics = ReconciliationMetrics()
        snapshot = metrics.snapshot()

        with pytest.raises(pydantic.ValidationError):
            snapshot.total_runs = 5

    def test_snapshot_is_a_copy(self):
        metrics = ReconciliationMetrics()
        before = metrics.snapshot()

        metrics.record_run(summary(100.0))

        assert before.total_runs == 0
        assert metrics.snapshot().total_runs == 1
