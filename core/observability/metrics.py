"""
Pipeline Timing Metrics for the Reconciliation Engine

Collects and exposes metrics for:
- Run lifecycle (started, completed, failed)
- Stage execution (matching, analysis, resolution, summary)
- Processing times (average, p95)

Metrics are held in memory for the lifetime of the collector.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class RunMetrics:
    """Metrics for reconciliation run lifecycle."""
    started: int = 0
    completed: int = 0
    failed: int = 0
    in_progress: int = 0
    last_started_at: Optional[datetime] = None
    last_error: Optional[str] = None


@dataclass
class StageMetrics:
    """Metrics for pipeline stage execution."""
    completed: int = 0
    failed: int = 0

    by_name: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"completed": 0, "failed": 0}))


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        """Get average processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """
    Thread-safe collector for reconciliation pipeline timings.

    One collector belongs to one engine, so reports only describe that
    engine's runs.

    Usage:
        collector = MetricsCollector()
        collector.record_run_started("run-123")
        collector.record_stage_completed("matching", duration_ms=15.2)
        collector.record_run_completed("run-123", duration_ms=40.0)
    """

    def __init__(self):
        self.runs = RunMetrics()
        self.stages = StageMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    # =========================================================================
    # Run Metrics
    # =========================================================================

    def record_run_started(self, run_id: str):
        """Record a run start."""
        with self._lock:
            self.runs.started += 1
            self.runs.in_progress += 1
            self.runs.last_started_at = datetime.now(timezone.utc)

    def record_run_completed(self, run_id: str, duration_ms: float = None):
        """Record a run completion."""
        with self._lock:
            self.runs.completed += 1
            self.runs.in_progress = max(0, self.runs.in_progress - 1)

            if duration_ms is not None:
                self.timings.add_sample(duration_ms, "run")

    def record_run_failed(self, run_id: str, error: str = None):
        """Record a run failure."""
        with self._lock:
            self.runs.failed += 1
            self.runs.in_progress = max(0, self.runs.in_progress - 1)
            self.runs.last_error = error

    # =========================================================================
    # Stage Metrics
    # =========================================================================

    def record_stage_completed(self, stage: str, duration_ms: float = None):
        """Record a stage completion."""
        with self._lock:
            self.stages.completed += 1
            self.stages.by_name[stage]["completed"] += 1

            if duration_ms is not None:
                self.timings.add_sample(duration_ms, f"stage.{stage}")

    def record_stage_failed(self, stage: str):
        """Record a stage failure."""
        with self._lock:
            self.stages.failed += 1
            self.stages.by_name[stage]["failed"] += 1

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "runs": {
                    "started": self.runs.started,
                    "completed": self.runs.completed,
                    "failed": self.runs.failed,
                    "in_progress": self.runs.in_progress,
                    "last_error": self.runs.last_error,
                },
                "stages": {
                    "completed": self.stages.completed,
                    "failed": self.stages.failed,
                    "by_name": {name: dict(counts) for name, counts in self.stages.by_name.items()},
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                            "sample_count": len(samples),
                        }
                        for stage, samples in self.timings.by_stage.items()
                    },
                },
            }
