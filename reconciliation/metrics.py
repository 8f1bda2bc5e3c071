"""Lifetime reconciliation metrics.

Counters accumulate across runs and are only cleared by an explicit
reset(). Rates are running averages over completed runs:

    new_average = (old_average * (n - 1) + this_run) / n
"""

from datetime import datetime
from threading import Lock
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from reconciliation.models import (
    DiscrepancyType,
    ReconciliationSummary,
    ResolutionAction,
)


class MetricsSnapshot(BaseModel):
    """Immutable point-in-time copy of ReconciliationMetrics."""
    model_config = ConfigDict(frozen=True)

    total_runs: int = 0
    total_internal_records: int = 0
    total_external_records: int = 0
    total_matches: int = 0
    total_discrepancies: int = 0
    total_resolved: int = 0
    total_unresolved: int = 0
    average_match_rate: float = 0.0
    average_resolution_rate: float = 0.0
    total_processing_time_ms: float = 0.0
    average_processing_time_ms: float = 0.0
    discrepancies_by_type: Dict[str, int] = Field(default_factory=dict)
    resolutions_by_action: Dict[str, int] = Field(default_factory=dict)
    last_run_at: Optional[datetime] = None


class ReconciliationMetrics:
    """Thread-safe lifetime counters for one engine."""

    def __init__(self):
        self._lock = Lock()
        self._reset_unlocked()

    def _reset_unlocked(self) -> None:
        self.total_runs = 0
        self.total_internal_records = 0
        self.total_external_records = 0
        self.total_matches = 0
        self.total_discrepancies = 0
        self.total_resolved = 0
        self.total_unresolved = 0
        self.average_match_rate = 0.0
        self.average_resolution_rate = 0.0
        self.total_processing_time_ms = 0.0
        self.discrepancies_by_type: Dict[DiscrepancyType, int] = {}
        self.resolutions_by_action: Dict[ResolutionAction, int] = {}
        self.last_run_at: Optional[datetime] = None

    def record_run(self, summary: ReconciliationSummary) -> None:
        """Fold one completed run into the lifetime counters."""
        with self._lock:
            self.total_runs += 1
            n = self.total_runs

            self.total_internal_records += summary.total_internal
            self.total_external_records += summary.total_external
            self.total_matches += summary.matched_records
            self.total_discrepancies += summary.total_discrepancies
            self.total_resolved += summary.resolution_result.resolved_count
            self.total_unresolved += summary.resolution_result.unresolved_count

            self.average_match_rate = (self.average_match_rate * (n - 1) + summary.match_rate) / n
            self.average_resolution_rate = (
                self.average_resolution_rate * (n - 1) + summary.resolution_rate
            ) / n
            self.total_processing_time_ms += summary.processing_time_ms

            for dtype, count in summary.analysis_result.type_counts.items():
                self.discrepancies_by_type[dtype] = self.discrepancies_by_type.get(dtype, 0) + count
            for action, count in summary.resolution_result.action_counts.items():
                self.resolutions_by_action[action] = self.resolutions_by_action.get(action, 0) + count

            self.last_run_at = summary.timestamp

    def reset(self) -> None:
        with self._lock:
            self._reset_unlocked()

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            average_time = self.total_processing_time_ms / self.total_runs if self.total_runs else 0.0
            return MetricsSnapshot(
                total_runs=self.total_runs,
                total_internal_records=self.total_internal_records,
                total_external_records=self.total_external_records,
                total_matches=self.total_matches,
                total_discrepancies=self.total_discrepancies,
                total_resolved=self.total_resolved,
                total_unresolved=self.total_unresolved,
                average_match_rate=self.average_match_rate,
                average_resolution_rate=self.average_resolution_rate,
                total_processing_time_ms=self.total_processing_time_ms,
                average_processing_time_ms=average_time,
                discrepancies_by_type={t.value: n for t, n in self.discrepancies_by_type.items()},
                resolutions_by_action={a.value: n for a, n in self.resolutions_by_action.items()},
                last_run_at=self.last_run_at,
            )
