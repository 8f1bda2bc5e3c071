"""Payment reconciliation engine.

Owns the ingestion buffers, the run state machine, strategy wiring, metrics
and event notification. A run executes Match -> Analyze -> Resolve ->
Summarize on a worker thread and the caller receives a Future.

State machine:
    IDLE -> PROCESSING -> COMPLETED | ERROR
    PROCESSING <-> PAUSED (a paused run waits between stages)

At most one run is in flight per engine. A second start while PROCESSING
or PAUSED is rejected with a failed ReconciliationProcessResult.
"""

import time
import uuid
from collections import OrderedDict, deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from threading import Event, Lock
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from core.audit.events import AuditEventType, AuditLogger, create_in_memory_audit_logger
from core.config import load_settings
from core.observability.logging import (
    get_logger,
    log_stage_complete,
    log_stage_error,
    log_stage_start,
    with_correlation,
)
from core.observability.metrics import MetricsCollector
from reconciliation.analysis import (
    DiscrepancyAnalyzer,
    ReconciliationStrategy,
    StandardReconciliationStrategy,
)
from reconciliation.events import EventDispatcher, ReconciliationEventListener
from reconciliation.matching import ExactMatchingStrategy, MatchingStrategy, explain_no_match
from reconciliation.metrics import MetricsSnapshot, ReconciliationMetrics
from reconciliation.models import (
    DataIngestionResult,
    Discrepancy,
    DiscrepancyAnalysisResult,
    DiscrepancySeverity,
    ExternalRecord,
    MatchCandidate,
    MatchingResult,
    PaymentRecord,
    ReconciliationError,
    ReconciliationProcessResult,
    ReconciliationReport,
    ReconciliationResult,
    ReconciliationSettings,
    ReconciliationState,
    ReconciliationSummary,
    RecordMatch,
    ReportType,
    ResolutionResult,
    RunRejection,
)
from reconciliation.reporting import DetailedReportingStrategy, ReportContext, ReportingStrategy
from reconciliation.resolution import (
    AutomaticDiscrepancyResolutionStrategy,
    DiscrepancyResolutionStrategy,
)

logger = get_logger(__name__)

HISTORY_LIMIT = 50
AUDIT_REPORT_LIMIT = 10_000

_IN_FLIGHT = (ReconciliationState.PROCESSING, ReconciliationState.PAUSED)


@dataclass(frozen=True)
class _RunSnapshot:
    """Inputs of one run, captured when the run is accepted."""
    run_id: str
    internal: List[PaymentRecord]
    external: List[ExternalRecord]
    settings: ReconciliationSettings
    matching: MatchingStrategy
    reconciliation: ReconciliationStrategy
    resolution: DiscrepancyResolutionStrategy


class PaymentReconciliationEngine:
    """Reconciles an internal ledger against an external feed.

    Example:
        engine = PaymentReconciliationEngine("ENG-001")
        engine.ingest_internal_records(ledger)
        engine.ingest_external_records(statement)

        result = engine.start_reconciliation()
        if result.success:
            summary = result.future.result(timeout=30)
            print(f"Match rate: {summary.match_rate:.1f}%")
    """

    def __init__(
        self,
        engine_id: str,
        settings: Optional[ReconciliationSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """Initialize the engine.

        Args:
            engine_id: Identifier used in logs, audit events and summaries
            settings: Reconciliation settings (defaults from the environment)
            audit_logger: Audit logger (defaults to an in-memory trail)
        """
        self.engine_id = engine_id
        self._settings = settings if settings is not None else load_settings()
        self._audit = audit_logger or create_in_memory_audit_logger()

        self._lock = Lock()
        self._state = ReconciliationState.IDLE
        self._resume = Event()
        self._resume.set()
        self._current_run_id: Optional[str] = None
        self._last_error: Optional[str] = None

        self._internal: "OrderedDict[str, PaymentRecord]" = OrderedDict()
        self._external: "OrderedDict[str, ExternalRecord]" = OrderedDict()

        self._matching: MatchingStrategy = ExactMatchingStrategy()
        self._reconciliation: ReconciliationStrategy = StandardReconciliationStrategy()
        self._resolution: DiscrepancyResolutionStrategy = AutomaticDiscrepancyResolutionStrategy()
        self._reporting: ReportingStrategy = DetailedReportingStrategy()

        self._metrics = ReconciliationMetrics()
        self._timings = MetricsCollector()
        self._events = EventDispatcher()
        self._last_summary: Optional[ReconciliationSummary] = None
        self._history: "deque[ReconciliationResult]" = deque(maxlen=HISTORY_LIMIT)

        self._executor = ThreadPoolExecutor(
            max_workers=self._settings.max_processing_threads,
            thread_name_prefix=f"recon-{engine_id}",
        )

        logger.info(
            f"Reconciliation engine {engine_id} created",
            extra_fields={"max_threads": self._settings.max_processing_threads},
        )

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> ReconciliationState:
        with self._lock:
            return self._state

    @property
    def settings(self) -> ReconciliationSettings:
        return self._settings

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    @property
    def current_run_id(self) -> Optional[str]:
        with self._lock:
            return self._current_run_id

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit

    def record_counts(self) -> Dict[str, int]:
        with self._lock:
            return {"internal": len(self._internal), "external": len(self._external)}

    # =========================================================================
    # Ingestion
    # =========================================================================

    def ingest_internal_records(self, records: Iterable[Union[PaymentRecord, Dict[str, Any]]]) -> DataIngestionResult:
        """Buffer internal ledger records for the next run.

        Invalid items are counted as rejected; nothing is raised.
        """
        return self._ingest(
            list(records), PaymentRecord, self._internal, lambda r: r.transaction_id, "internal"
        )

    def ingest_external_records(self, records: Iterable[Union[ExternalRecord, Dict[str, Any]]]) -> DataIngestionResult:
        """Buffer external feed records for the next run.

        Invalid items are counted as rejected; nothing is raised.
        """
        return self._ingest(
            list(records), ExternalRecord, self._external, lambda r: r.reference_id, "external"
        )

    def _ingest(
        self,
        items: List[Any],
        model: type,
        buffer: "OrderedDict[str, Any]",
        key_of: Callable[[Any], str],
        side: str,
    ) -> DataIngestionResult:
        with self._lock:
            if self._state in _IN_FLIGHT:
                message = f"Cannot ingest {side} records while reconciliation is {self._state.display_name.lower()}"
                logger.warning(message)
                return DataIngestionResult(
                    success=False,
                    message=message,
                    records_rejected=len(items),
                    rejection_reasons=[message],
                    blocked_by_run=True,
                )

            ingested = 0
            reasons: List[str] = []
            for position, item in enumerate(items):
                record, reason = self._validate_record(item, model)
                if reason is not None:
                    reasons.append(f"{side}[{position}]: {reason}")
                    continue
                # Re-ingesting a key replaces the buffered record
                buffer[key_of(record)] = record
                ingested += 1

        rejected = len(reasons)
        if not items:
            message = f"No {side} records supplied"
        else:
            message = f"Ingested {ingested} {side} records, rejected {rejected}"

        self._audit.log_info(
            AuditEventType.RECORDS_INGESTED,
            message,
            engine_id=self.engine_id,
            stage="ingestion",
            details={"side": side, "ingested": ingested, "rejected": rejected},
        )
        if rejected:
            self._audit.log_warning(
                AuditEventType.RECORDS_REJECTED,
                f"Rejected {rejected} {side} records",
                engine_id=self.engine_id,
                stage="ingestion",
                details={"side": side, "reasons": reasons},
            )
            logger.warning(message, extra_fields={"reasons": reasons[:10]})
        else:
            logger.info(message)

        return DataIngestionResult(
            success=ingested > 0 or not items,
            message=message,
            records_ingested=ingested,
            records_rejected=rejected,
            rejection_reasons=reasons,
        )

    @staticmethod
    def _validate_record(item: Any, model: type):
        """Return (record, None) or (None, reason)."""
        if isinstance(item, model):
            record = item
        elif isinstance(item, dict):
            try:
                record = model.model_validate(item)
            except ValidationError as e:
                fields = ", ".join(
                    ".".join(str(p) for p in err["loc"]) or "record" for err in e.errors()
                )
                return None, f"invalid fields: {fields}"
        else:
            return None, f"unsupported record type {type(item).__name__}"

        if record.amount < 0:
            return None, f"negative amount {record.amount}"
        return record, None

    def clear_records(self) -> bool:
        """Drop both ingestion buffers. Refused while a run is in flight."""
        with self._lock:
            if self._state in _IN_FLIGHT:
                return False
            self._internal.clear()
            self._external.clear()
        self._audit.log_info(AuditEventType.RECORDS_CLEARED, "Ingestion buffers cleared", engine_id=self.engine_id)
        return True

    # =========================================================================
    # Strategies and settings
    # =========================================================================

    def set_matching_strategy(self, strategy: MatchingStrategy) -> None:
        with self._lock:
            self._matching = strategy
        self._strategy_changed("matching", strategy.strategy_name)

    def set_reconciliation_strategy(self, strategy: ReconciliationStrategy) -> None:
        with self._lock:
            self._reconciliation = strategy
        self._strategy_changed("reconciliation", strategy.strategy_name)

    def set_discrepancy_resolution_strategy(self, strategy: DiscrepancyResolutionStrategy) -> None:
        with self._lock:
            self._resolution = strategy
        self._strategy_changed("resolution", strategy.strategy_name)

    def set_reporting_strategy(self, strategy: ReportingStrategy) -> None:
        with self._lock:
            self._reporting = strategy
        self._strategy_changed("reporting", strategy.strategy_name)

    def get_strategy_names(self) -> Dict[str, str]:
        with self._lock:
            return {
                "matching": self._matching.strategy_name,
                "reconciliation": self._reconciliation.strategy_name,
                "resolution": self._resolution.strategy_name,
                "reporting": self._reporting.strategy_name,
            }

    def _strategy_changed(self, kind: str, name: str) -> None:
        message = f"{kind.capitalize()} strategy updated: {name}"
        logger.info(message)
        self._audit.log_info(
            AuditEventType.CONFIGURATION_CHANGED,
            message,
            engine_id=self.engine_id,
            details={"strategy_kind": kind, "strategy": name},
        )
        self._events.dispatch(
            "on_reconciliation_event", "strategy_updated", {"kind": kind, "strategy": name}
        )

    def update_settings(self, **changes: Any) -> ReconciliationSettings:
        """Validate and apply setting changes; they affect the next run."""
        unknown = set(changes) - set(ReconciliationSettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        candidate = self._settings.model_copy(update=changes)
        validated = ReconciliationSettings.model_validate(candidate.model_dump())
        for name in changes:
            setattr(self._settings, name, getattr(validated, name))
        self._audit.log_info(
            AuditEventType.CONFIGURATION_CHANGED,
            "Settings updated",
            engine_id=self.engine_id,
            details={k: str(v) for k, v in changes.items()},
        )
        return self._settings

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_event_listener(self, listener: ReconciliationEventListener) -> None:
        self._events.add_listener(listener)

    def remove_event_listener(self, listener: ReconciliationEventListener) -> bool:
        return self._events.remove_listener(listener)

    # =========================================================================
    # Runs
    # =========================================================================

    def start_reconciliation(self) -> ReconciliationProcessResult:
        """Accept a run and execute it asynchronously.

        Returns:
            ReconciliationProcessResult with a Future[ReconciliationSummary],
            or a failed result describing why the run was not started
        """
        with self._lock:
            if self._state in _IN_FLIGHT:
                message = (
                    f"Reconciliation already in progress (run {self._current_run_id}, "
                    f"state {self._state.value})"
                )
                rejection = RunRejection.CONFLICT
                rejected_run = self._current_run_id
                snapshot = None
            elif not self._internal or not self._external:
                message = (
                    f"Insufficient data: {len(self._internal)} internal and "
                    f"{len(self._external)} external records ingested"
                )
                rejection = RunRejection.INSUFFICIENT_DATA
                rejected_run = None
                snapshot = None
            else:
                snapshot = _RunSnapshot(
                    run_id=f"run-{uuid.uuid4().hex}",
                    internal=list(self._internal.values()),
                    external=list(self._external.values()),
                    settings=self._settings.model_copy(deep=True),
                    matching=self._matching,
                    reconciliation=self._reconciliation,
                    resolution=self._resolution,
                )
                self._state = ReconciliationState.PROCESSING
                self._current_run_id = snapshot.run_id
                self._last_error = None
                self._resume.set()
                future = self._executor.submit(self._run_pipeline, snapshot)

        if snapshot is None:
            logger.warning(message)
            self._audit.log_warning(
                AuditEventType.RUN_REJECTED,
                message,
                engine_id=self.engine_id,
                run_id=rejected_run,
            )
            return ReconciliationProcessResult(success=False, message=message, rejection=rejection)

        return ReconciliationProcessResult(
            success=True,
            message=f"Reconciliation run {snapshot.run_id} started",
            run_id=snapshot.run_id,
            future=future,
        )

    def pause(self) -> bool:
        """Pause the in-flight run before its next stage."""
        with self._lock:
            if self._state != ReconciliationState.PROCESSING:
                return False
            self._state = ReconciliationState.PAUSED
            self._resume.clear()
            run_id = self._current_run_id
        self._audit.log_info(AuditEventType.RUN_PAUSED, "Run paused", engine_id=self.engine_id, run_id=run_id)
        return True

    def resume(self) -> bool:
        with self._lock:
            if self._state != ReconciliationState.PAUSED:
                return False
            self._state = ReconciliationState.PROCESSING
            self._resume.set()
            run_id = self._current_run_id
        self._audit.log_info(AuditEventType.RUN_RESUMED, "Run resumed", engine_id=self.engine_id, run_id=run_id)
        return True

    def _run_pipeline(self, snap: _RunSnapshot) -> ReconciliationSummary:
        started = time.perf_counter()
        with with_correlation(engine_id=self.engine_id, run_id=snap.run_id):
            self._timings.record_run_started(snap.run_id)
            self._audit.log_info(
                AuditEventType.RUN_STARTED,
                f"Reconciliation started with {len(snap.internal)} internal and "
                f"{len(snap.external)} external records",
                engine_id=self.engine_id,
                run_id=snap.run_id,
                details={
                    "matching_strategy": snap.matching.strategy_name,
                    "reconciliation_strategy": snap.reconciliation.strategy_name,
                    "resolution_strategy": snap.resolution.strategy_name,
                    "settings_fingerprint": snap.settings.fingerprint(),
                },
            )
            self._events.dispatch("on_reconciliation_started", self.engine_id, snap.run_id)

            try:
                matching = self._stage("matching", snap.matching.strategy_name, self._match, snap)

                analysis = DiscrepancyAnalysisResult()
                if snap.reconciliation.run_analysis:
                    analysis = self._stage(
                        "analysis", snap.reconciliation.strategy_name, self._analyze, snap, matching
                    )

                resolution = ResolutionResult()
                if snap.reconciliation.run_analysis and snap.reconciliation.run_resolution:
                    resolution = self._stage(
                        "resolution", snap.resolution.strategy_name, self._resolve, snap, analysis
                    )

                summary = self._stage(
                    "summary", None, self._summarize, snap, matching, analysis, resolution, started
                )
            except Exception as e:
                self._fail(snap, e)
                raise ReconciliationError(
                    f"Reconciliation run {snap.run_id} failed: {e}", run_id=snap.run_id
                ) from e

            self._metrics.record_run(summary)
            with self._lock:
                self._last_summary = summary
                self._history.append(ReconciliationResult(
                    summary=summary,
                    metadata={"settings_fingerprint": snap.settings.fingerprint()},
                ))
                self._state = ReconciliationState.COMPLETED
                self._current_run_id = None

            self._timings.record_run_completed(snap.run_id, duration_ms=summary.processing_time_ms)
            self._audit.log_info(
                AuditEventType.RUN_COMPLETED,
                f"Reconciliation completed: {summary.matched_records} matched, "
                f"{summary.total_discrepancies} discrepancies",
                engine_id=self.engine_id,
                run_id=snap.run_id,
                details={
                    "match_rate": summary.match_rate,
                    "resolution_rate": summary.resolution_rate,
                    "processing_time_ms": summary.processing_time_ms,
                },
            )
            logger.info(
                f"Reconciliation run completed in {summary.processing_time_ms:.1f}ms",
                extra_fields={"match_rate": summary.match_rate, "discrepancies": summary.total_discrepancies},
            )
            self._events.dispatch("on_reconciliation_completed", self.engine_id, summary)
            return summary

    def _fail(self, snap: _RunSnapshot, error: Exception) -> None:
        reason = f"{type(error).__name__}: {error}"
        with self._lock:
            self._state = ReconciliationState.ERROR
            self._last_error = reason
            self._current_run_id = None
            self._resume.set()
        self._timings.record_run_failed(snap.run_id, reason)
        self._audit.log_error(
            AuditEventType.RUN_FAILED,
            f"Reconciliation failed: {reason}",
            engine_id=self.engine_id,
            run_id=snap.run_id,
        )
        logger.exception(f"Reconciliation run {snap.run_id} failed")
        self._events.dispatch("on_reconciliation_failed", self.engine_id, snap.run_id, reason)

    def _stage(self, name: str, strategy: Optional[str], fn: Callable, *args):
        self._resume.wait()
        with with_correlation(stage=name, strategy=strategy):
            log_stage_start(name)
            t0 = time.perf_counter()
            try:
                result = fn(*args)
            except Exception as e:
                self._timings.record_stage_failed(name)
                log_stage_error(name, str(e))
                raise
            duration_ms = (time.perf_counter() - t0) * 1000
            self._timings.record_stage_completed(name, duration_ms=duration_ms)
            log_stage_complete(name, duration_ms=round(duration_ms, 3))
            return result

    # =========================================================================
    # Pipeline stages
    # =========================================================================

    def _match(self, snap: _RunSnapshot) -> MatchingResult:
        remaining: List[ExternalRecord] = list(snap.external)
        matches: List[RecordMatch] = []
        unmatched_internal: List[PaymentRecord] = []

        for internal in snap.internal:
            result = snap.matching.find_match(internal, remaining)
            if not (result.matched and result.matched_record is not None):
                unmatched_internal.append(internal)
                continue

            external = result.matched_record
            index = next(
                (i for i, e in enumerate(remaining) if e.reference_id == external.reference_id), None
            )
            if index is None:
                raise ReconciliationError(
                    f"Matching strategy returned {external.reference_id}, which is not a candidate",
                    run_id=snap.run_id,
                )
            # Bind the match to the run's own record instance
            external = remaining.pop(index)

            match = RecordMatch(
                internal_record=internal,
                external_record=external,
                confidence_score=result.confidence_score,
                match_reason=result.message,
            )
            matches.append(match)
            self._audit.log_info(
                AuditEventType.MATCH_FOUND,
                f"Matched {internal.transaction_id} to {external.reference_id}",
                engine_id=self.engine_id,
                run_id=snap.run_id,
                stage="matching",
                record_ref=internal.transaction_id,
                details={"reference_id": external.reference_id, "confidence": result.confidence_score},
            )
            self._events.dispatch("on_match_found", self.engine_id, match)

        return MatchingResult(
            matches=matches,
            unmatched_internal=unmatched_internal,
            unmatched_external=remaining,
            strategy_name=snap.matching.strategy_name,
        )

    def _analyze(self, snap: _RunSnapshot, matching: MatchingResult) -> DiscrepancyAnalysisResult:
        analyzer = DiscrepancyAnalyzer(snap.settings, snap.reconciliation)
        result = analyzer.analyze(snap.internal, snap.external, matching)
        for discrepancy in result.discrepancies:
            self._audit_discrepancy(snap, discrepancy)
            self._events.dispatch("on_discrepancy_detected", self.engine_id, discrepancy)
        return result

    def _audit_discrepancy(self, snap: _RunSnapshot, discrepancy: Discrepancy) -> None:
        log = self._audit.log_warning if discrepancy.severity >= DiscrepancySeverity.HIGH else self._audit.log_info
        log(
            AuditEventType.DISCREPANCY_DETECTED,
            discrepancy.description,
            engine_id=self.engine_id,
            run_id=snap.run_id,
            stage="analysis",
            record_ref=discrepancy.discrepancy_id,
            details={"type": discrepancy.type.value, "severity": discrepancy.severity.value},
        )

    def _resolve(self, snap: _RunSnapshot, analysis: DiscrepancyAnalysisResult) -> ResolutionResult:
        resolutions = []
        for discrepancy in analysis.discrepancies:
            resolution = snap.resolution.resolve_discrepancy(discrepancy, snap.settings)
            resolutions.append(resolution)
            self._audit.log_info(
                AuditEventType.DISCREPANCY_RESOLVED,
                f"{discrepancy.type.display_name}: {resolution.action.display_name}",
                engine_id=self.engine_id,
                run_id=snap.run_id,
                stage="resolution",
                record_ref=discrepancy.discrepancy_id,
                details={"action": resolution.action.value, "resolved": resolution.resolved},
                actor=resolution.resolved_by,
            )
            self._events.dispatch("on_discrepancy_resolved", self.engine_id, resolution)
        return ResolutionResult.from_resolutions(resolutions)

    def _summarize(
        self,
        snap: _RunSnapshot,
        matching: MatchingResult,
        analysis: DiscrepancyAnalysisResult,
        resolution: ResolutionResult,
        started: float,
    ) -> ReconciliationSummary:
        total_internal = len(snap.internal)
        matched = len(matching.matches)
        total_discrepancies = len(analysis.discrepancies)
        resolved = resolution.resolved_count

        match_rate = matched / total_internal * 100 if total_internal else 0.0
        resolution_rate = resolved / total_discrepancies * 100 if total_discrepancies else 0.0
        low_confidence = sum(
            1 for m in matching.matches if m.confidence_score < snap.settings.confidence_threshold
        )

        return ReconciliationSummary(
            run_id=snap.run_id,
            engine_id=self.engine_id,
            total_internal=total_internal,
            total_external=len(snap.external),
            matched_records=matched,
            total_discrepancies=total_discrepancies,
            resolved_discrepancies=resolved,
            match_rate=match_rate,
            resolution_rate=resolution_rate,
            low_confidence_matches=low_confidence,
            processing_time_ms=(time.perf_counter() - started) * 1000,
            matching_strategy=snap.matching.strategy_name,
            reconciliation_strategy=snap.reconciliation.strategy_name,
            resolution_strategy=snap.resolution.strategy_name,
            matching_result=matching,
            analysis_result=analysis,
            resolution_result=resolution,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_metrics(self) -> MetricsSnapshot:
        return self._metrics.snapshot()

    def reset_metrics(self) -> None:
        """Clear lifetime metrics. Operator action only."""
        self._metrics.reset()
        self._audit.log_warning(AuditEventType.METRICS_RESET, "Lifetime metrics reset", engine_id=self.engine_id)

    def get_last_summary(self) -> Optional[ReconciliationSummary]:
        with self._lock:
            return self._last_summary

    def get_history(self) -> List[ReconciliationResult]:
        with self._lock:
            return list(self._history)

    def get_unresolved_discrepancies(self) -> List[Discrepancy]:
        summary = self.get_last_summary()
        if summary is None:
            return []
        return [r.discrepancy for r in summary.resolution_result.unresolved]

    def explain_unmatched(self, transaction_id: str, limit: int = 5) -> List[MatchCandidate]:
        """Ranked candidates from the last run for an unmatched internal record."""
        with self._lock:
            summary = self._last_summary
            strategy = self._matching
        if summary is None:
            return []
        matching = summary.matching_result
        internal = next(
            (r for r in matching.unmatched_internal if r.transaction_id == transaction_id), None
        )
        if internal is None:
            return []
        externals = list(matching.unmatched_external) + [m.external_record for m in matching.matches]
        return explain_no_match(strategy, internal, externals, limit=limit)

    def generate_report(self, report_type: Union[ReportType, str]) -> ReconciliationReport:
        """Build a report from the latest run and lifetime metrics. Never starts a run."""
        if not isinstance(report_type, ReportType):
            report_type = ReportType(str(report_type).upper())
        with self._lock:
            reporting = self._reporting
            context = ReportContext(
                engine_id=self.engine_id,
                settings=self._settings.model_copy(deep=True),
                metrics=self._metrics.snapshot(),
                latest_summary=self._last_summary,
                history=list(self._history),
            )
        context.stage_timings = self._timings.get_summary()["timings"]
        if context.latest_summary is not None:
            context.audit_events = self._audit.query(
                run_id=context.latest_summary.run_id, limit=AUDIT_REPORT_LIMIT
            )
        else:
            recent = self._audit.query(limit=AUDIT_REPORT_LIMIT, newest_first=True)
            context.audit_events = list(reversed(recent))
        return reporting.generate_report(report_type, context)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and release worker threads."""
        self._resume.set()
        self._executor.shutdown(wait=wait)
        self._events.shutdown(wait=wait)
        logger.info(f"Reconciliation engine {self.engine_id} shut down")
