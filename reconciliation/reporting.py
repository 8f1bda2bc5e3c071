"""Report generation.

Reports are structured data built from a ReportContext: the latest run
summary, run history, a lifetime metrics snapshot, stage timings, the
settings in force and the audit trail. Generating a report never starts a
reconciliation run. Rendering to text is left to callers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.models.audit import AuditEvent
from reconciliation.metrics import MetricsSnapshot
from reconciliation.models import (
    Discrepancy,
    DiscrepancyResolution,
    DiscrepancySeverity,
    RecordMatch,
    ReconciliationReport,
    ReconciliationResult,
    ReconciliationSettings,
    ReconciliationSummary,
    ReportSection,
    ReportType,
)


@dataclass
class ReportContext:
    """Everything a reporting strategy may draw on."""
    engine_id: str
    settings: ReconciliationSettings
    metrics: MetricsSnapshot
    latest_summary: Optional[ReconciliationSummary] = None
    history: List[ReconciliationResult] = field(default_factory=list)
    stage_timings: Dict[str, Any] = field(default_factory=dict)
    audit_events: List[AuditEvent] = field(default_factory=list)


# =============================================================================
# Row helpers
# =============================================================================

def _match_row(match: RecordMatch) -> Dict[str, Any]:
    return {
        "transaction_id": match.internal_record.transaction_id,
        "reference_id": match.external_record.reference_id,
        "internal_amount": str(match.internal_record.amount),
        "external_amount": str(match.external_record.amount),
        "confidence": round(match.confidence_score, 4),
        "reason": match.match_reason,
    }


def _discrepancy_row(discrepancy: Discrepancy) -> Dict[str, Any]:
    return {
        "discrepancy_id": discrepancy.discrepancy_id,
        "type": discrepancy.type.value,
        "severity": discrepancy.severity.value,
        "description": discrepancy.description,
        "transaction_id": discrepancy.internal_record.transaction_id if discrepancy.internal_record else None,
        "reference_id": discrepancy.external_record.reference_id if discrepancy.external_record else None,
    }


def _resolution_row(resolution: DiscrepancyResolution) -> Dict[str, Any]:
    return {
        "discrepancy_id": resolution.discrepancy.discrepancy_id,
        "type": resolution.discrepancy.type.value,
        "action": resolution.action.value,
        "resolved": resolution.resolved,
        "resolved_by": resolution.resolved_by,
        "resolution": resolution.resolution,
    }


def headline_statistics(context: ReportContext) -> Dict[str, Any]:
    """Key figures for the latest run plus lifetime totals."""
    stats: Dict[str, Any] = {
        "engine_id": context.engine_id,
        "runs_completed": context.metrics.total_runs,
        "average_match_rate": round(context.metrics.average_match_rate, 2),
        "average_resolution_rate": round(context.metrics.average_resolution_rate, 2),
    }
    summary = context.latest_summary
    if summary is not None:
        stats.update({
            "run_id": summary.run_id,
            "total_internal": summary.total_internal,
            "total_external": summary.total_external,
            "matched_records": summary.matched_records,
            "total_discrepancies": summary.total_discrepancies,
            "resolved_discrepancies": summary.resolved_discrepancies,
            "match_rate": round(summary.match_rate, 2),
            "resolution_rate": round(summary.resolution_rate, 2),
            "low_confidence_matches": summary.low_confidence_matches,
        })
    return stats


# =============================================================================
# Strategies
# =============================================================================

class ReportingStrategy(ABC):
    """Base class for report builders."""

    strategy_name: str = "base"

    @abstractmethod
    def generate_report(self, report_type: ReportType, context: ReportContext) -> ReconciliationReport:
        pass


class SummaryReportingStrategy(ReportingStrategy):
    """Headline statistics only, whatever the requested type."""

    strategy_name = "summary"

    def generate_report(self, report_type: ReportType, context: ReportContext) -> ReconciliationReport:
        stats = headline_statistics(context)
        return ReconciliationReport(
            report_type=report_type,
            generated_by=self.strategy_name,
            summary_statistics=stats,
            sections=[ReportSection(title="Headline", data=stats)],
        )


class DetailedReportingStrategy(ReportingStrategy):
    """Full reports for all seven report types."""

    strategy_name = "detailed"

    def generate_report(self, report_type: ReportType, context: ReportContext) -> ReconciliationReport:
        builders = {
            ReportType.SUMMARY: self._summary_sections,
            ReportType.DETAILED: self._detailed_sections,
            ReportType.DISCREPANCY: self._discrepancy_sections,
            ReportType.EXCEPTION: self._exception_sections,
            ReportType.TREND_ANALYSIS: self._trend_sections,
            ReportType.AUDIT_TRAIL: self._audit_sections,
            ReportType.PERFORMANCE: self._performance_sections,
        }
        sections = builders[report_type](context)
        return ReconciliationReport(
            report_type=report_type,
            generated_by=self.strategy_name,
            summary_statistics=headline_statistics(context),
            sections=sections,
        )

    @staticmethod
    def _no_run_section() -> ReportSection:
        return ReportSection(title="Status", data={"message": "No reconciliation run has completed"})

    def _summary_sections(self, context: ReportContext) -> List[ReportSection]:
        summary = context.latest_summary
        sections = []
        if summary is None:
            sections.append(self._no_run_section())
        else:
            sections.append(ReportSection(title="Latest Run", data={
                "run_id": summary.run_id,
                "timestamp": summary.timestamp.isoformat(),
                "strategies": {
                    "matching": summary.matching_strategy,
                    "reconciliation": summary.reconciliation_strategy,
                    "resolution": summary.resolution_strategy,
                },
                "processing_time_ms": round(summary.processing_time_ms, 2),
            }))
        sections.append(ReportSection(title="Lifetime Metrics", data=context.metrics.model_dump(mode="json")))
        return sections

    def _detailed_sections(self, context: ReportContext) -> List[ReportSection]:
        summary = context.latest_summary
        if summary is None:
            return [self._no_run_section()]
        matching = summary.matching_result
        return [
            ReportSection(title="Matches", data={
                "count": len(matching.matches),
                "items": [_match_row(m) for m in matching.matches],
            }),
            ReportSection(title="Unmatched", data={
                "internal": [r.transaction_id for r in matching.unmatched_internal],
                "external": [r.reference_id for r in matching.unmatched_external],
            }),
            ReportSection(title="Discrepancies", data={
                "count": len(summary.analysis_result.discrepancies),
                "items": [_discrepancy_row(d) for d in summary.analysis_result.discrepancies],
            }),
            ReportSection(title="Resolutions", data={
                "count": len(summary.resolution_result.resolutions),
                "items": [_resolution_row(r) for r in summary.resolution_result.resolutions],
            }),
        ]

    def _discrepancy_sections(self, context: ReportContext) -> List[ReportSection]:
        summary = context.latest_summary
        if summary is None:
            return [self._no_run_section()]
        analysis = summary.analysis_result
        return [
            ReportSection(title="By Type", data={t.value: n for t, n in analysis.type_counts.items()}),
            ReportSection(title="By Severity", data={s.value: n for s, n in analysis.severity_counts.items()}),
            ReportSection(title="Discrepancies", data={
                "items": [_discrepancy_row(d) for d in analysis.discrepancies],
            }),
        ]

    def _exception_sections(self, context: ReportContext) -> List[ReportSection]:
        summary = context.latest_summary
        if summary is None:
            return [self._no_run_section()]
        serious = [
            d for d in summary.analysis_result.discrepancies
            if d.severity >= DiscrepancySeverity.HIGH
        ]
        low_confidence = [
            m for m in summary.matching_result.matches
            if m.confidence_score < context.settings.confidence_threshold
        ]
        return [
            ReportSection(title="Unresolved", data={
                "items": [_resolution_row(r) for r in summary.resolution_result.unresolved],
            }),
            ReportSection(title="High Severity", data={
                "items": [_discrepancy_row(d) for d in serious],
            }),
            ReportSection(title="Low Confidence Matches", data={
                "threshold": context.settings.confidence_threshold,
                "items": [_match_row(m) for m in low_confidence],
            }),
        ]

    def _trend_sections(self, context: ReportContext) -> List[ReportSection]:
        runs = [
            {
                "run_id": entry.summary.run_id,
                "completed_at": entry.completed_at.isoformat(),
                "match_rate": round(entry.summary.match_rate, 2),
                "resolution_rate": round(entry.summary.resolution_rate, 2),
                "total_discrepancies": entry.summary.total_discrepancies,
            }
            for entry in context.history
        ]
        direction = "insufficient_data"
        if len(runs) >= 2:
            delta = runs[-1]["match_rate"] - runs[0]["match_rate"]
            if delta > 0:
                direction = "improving"
            elif delta < 0:
                direction = "declining"
            else:
                direction = "stable"
        return [
            ReportSection(title="Runs", data={"items": runs}),
            ReportSection(title="Trend", data={
                "runs_considered": len(runs),
                "match_rate_direction": direction,
                "average_match_rate": round(context.metrics.average_match_rate, 2),
                "average_resolution_rate": round(context.metrics.average_resolution_rate, 2),
                "discrepancies_by_type": context.metrics.discrepancies_by_type,
            }),
        ]

    def _audit_sections(self, context: ReportContext) -> List[ReportSection]:
        events = context.audit_events
        if context.latest_summary is not None:
            run_id = context.latest_summary.run_id
            events = [e for e in events if e.run_id in (None, run_id)]
        return [
            ReportSection(title="Settings", data=context.settings.model_dump(mode="json")),
            ReportSection(title="Events", data={
                "count": len(events),
                "items": [
                    {
                        "timestamp": e.timestamp.isoformat(),
                        "event_type": e.event_type,
                        "severity": e.severity.value,
                        "stage": e.stage,
                        "record_ref": e.record_ref,
                        "message": e.message,
                    }
                    for e in events
                ],
            }),
        ]

    def _performance_sections(self, context: ReportContext) -> List[ReportSection]:
        summary = context.latest_summary
        sections = []
        if summary is not None:
            records = summary.total_internal + summary.total_external
            seconds = summary.processing_time_ms / 1000.0
            sections.append(ReportSection(title="Latest Run", data={
                "processing_time_ms": round(summary.processing_time_ms, 2),
                "records_processed": records,
                "records_per_second": round(records / seconds, 2) if seconds > 0 else None,
            }))
        sections.append(ReportSection(title="Stage Timings", data=context.stage_timings))
        sections.append(ReportSection(title="Lifetime", data={
            "total_runs": context.metrics.total_runs,
            "total_processing_time_ms": round(context.metrics.total_processing_time_ms, 2),
            "average_processing_time_ms": round(context.metrics.average_processing_time_ms, 2),
        }))
        return sections


REPORTING_STRATEGIES = {
    DetailedReportingStrategy.strategy_name: DetailedReportingStrategy,
    SummaryReportingStrategy.strategy_name: SummaryReportingStrategy,
}
