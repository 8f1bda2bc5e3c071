"""Reconciliation endpoints.

Thin HTTP layer over the application's PaymentReconciliationEngine:
ingestion, runs, status, summaries, reports, metrics and strategy selection.
"""

from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from reconciliation.analysis import RECONCILIATION_STRATEGIES
from reconciliation.engine import PaymentReconciliationEngine
from reconciliation.matching import MATCHING_STRATEGIES
from reconciliation.models import ReconciliationError, ReportType, RunRejection
from reconciliation.reporting import REPORTING_STRATEGIES
from reconciliation.resolution import RESOLUTION_STRATEGIES


router = APIRouter()


class IngestionResponse(BaseModel):
    """Result of an ingestion request."""
    success: bool
    message: str
    records_ingested: int
    records_rejected: int
    rejection_reasons: List[str] = []


class RunResponse(BaseModel):
    """Accepted reconciliation run."""
    run_id: str
    message: str
    state: str
    summary: Optional[Dict[str, Any]] = None


class StatusResponse(BaseModel):
    """Engine status."""
    engine_id: str
    state: str
    current_run_id: Optional[str]
    last_error: Optional[str]
    internal_records: int
    external_records: int
    strategies: Dict[str, str]


class StrategyUpdateRequest(BaseModel):
    """Strategy names to switch to; omitted kinds are unchanged."""
    matching: Optional[str] = Field(None, description="exact, fuzzy or weighted_score")
    reconciliation: Optional[str] = Field(None, description="standard, strict, flexible or match_only")
    resolution: Optional[str] = Field(None, description="automatic, manual_review or rule_based")
    reporting: Optional[str] = Field(None, description="detailed or summary")


def get_engine(request: Request) -> PaymentReconciliationEngine:
    return request.app.state.engine


def _headline(summary) -> Dict[str, Any]:
    return summary.model_dump(
        mode="json",
        exclude={"matching_result", "analysis_result", "resolution_result"},
    )


def _ingestion_response(result) -> IngestionResponse:
    if result.blocked_by_run:
        raise HTTPException(status_code=409, detail=result.message)
    return IngestionResponse(**result.model_dump())


@router.post("/internal-records", response_model=IngestionResponse)
def ingest_internal_records(request: Request, records: List[Dict[str, Any]]) -> IngestionResponse:
    """Ingest internal ledger records."""
    engine = get_engine(request)
    return _ingestion_response(engine.ingest_internal_records(records))


@router.post("/external-records", response_model=IngestionResponse)
def ingest_external_records(request: Request, records: List[Dict[str, Any]]) -> IngestionResponse:
    """Ingest external (bank/gateway) records."""
    engine = get_engine(request)
    return _ingestion_response(engine.ingest_external_records(records))


@router.delete("/records", status_code=204)
def clear_records(request: Request) -> None:
    """Drop both ingestion buffers."""
    if not get_engine(request).clear_records():
        raise HTTPException(status_code=409, detail="Cannot clear records while a run is in flight")


@router.post("/runs", response_model=RunResponse, status_code=202)
def start_run(
    request: Request,
    wait: bool = Query(False, description="Block until the run finishes"),
    timeout: float = Query(30.0, gt=0, description="Seconds to wait when wait=true"),
) -> RunResponse:
    """Start a reconciliation run.

    Returns 409 if a run is already in flight and 400 if either side has no
    records.
    """
    engine = get_engine(request)
    result = engine.start_reconciliation()
    if not result.success:
        conflict = result.rejection == RunRejection.CONFLICT
        raise HTTPException(status_code=409 if conflict else 400, detail=result.message)

    summary = None
    if wait:
        try:
            summary = _headline(result.future.result(timeout=timeout))
        except FutureTimeoutError:
            raise HTTPException(status_code=504, detail=f"Run {result.run_id} still in progress")
        except ReconciliationError as e:
            raise HTTPException(status_code=500, detail=e.message)

    return RunResponse(
        run_id=result.run_id,
        message=result.message,
        state=engine.state.value,
        summary=summary,
    )


@router.post("/runs/current/pause")
def pause_run(request: Request) -> Dict[str, str]:
    engine = get_engine(request)
    if not engine.pause():
        raise HTTPException(status_code=409, detail="No running reconciliation to pause")
    return {"state": engine.state.value}


@router.post("/runs/current/resume")
def resume_run(request: Request) -> Dict[str, str]:
    engine = get_engine(request)
    if not engine.resume():
        raise HTTPException(status_code=409, detail="No paused reconciliation to resume")
    return {"state": engine.state.value}


@router.get("/status", response_model=StatusResponse)
def get_status(request: Request) -> StatusResponse:
    """Engine state, buffered record counts and active strategies."""
    engine = get_engine(request)
    counts = engine.record_counts()
    return StatusResponse(
        engine_id=engine.engine_id,
        state=engine.state.value,
        current_run_id=engine.current_run_id,
        last_error=engine.last_error,
        internal_records=counts["internal"],
        external_records=counts["external"],
        strategies=engine.get_strategy_names(),
    )


@router.get("/summary")
def get_summary(request: Request, full: bool = Query(False)) -> Dict[str, Any]:
    """Summary of the latest completed run."""
    summary = get_engine(request).get_last_summary()
    if summary is None:
        raise HTTPException(status_code=404, detail="No reconciliation run has completed")
    return summary.model_dump(mode="json") if full else _headline(summary)


@router.get("/discrepancies/unresolved")
def get_unresolved(request: Request) -> List[Dict[str, Any]]:
    """Discrepancies left unresolved by the latest run."""
    return [d.model_dump(mode="json") for d in get_engine(request).get_unresolved_discrepancies()]


@router.get("/unmatched/{transaction_id}/candidates")
def get_candidates(
    request: Request,
    transaction_id: str,
    limit: int = Query(5, ge=1, le=50),
) -> List[Dict[str, Any]]:
    """Ranked candidates for an internal record the latest run left unmatched."""
    candidates = get_engine(request).explain_unmatched(transaction_id, limit=limit)
    return [
        {
            "reference_id": c.external_record.reference_id,
            "confidence": c.confidence,
            "reason": c.reason,
        }
        for c in candidates
    ]


@router.get("/reports/{report_type}")
def get_report(request: Request, report_type: str) -> Dict[str, Any]:
    """Generate a report (summary, detailed, discrepancy, exception,
    trend_analysis, audit_trail, performance)."""
    try:
        kind = ReportType(report_type.upper())
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown report type: {report_type}")
    return get_engine(request).generate_report(kind).model_dump(mode="json")


@router.get("/metrics")
def get_metrics(request: Request) -> Dict[str, Any]:
    """Lifetime metrics."""
    return get_engine(request).get_metrics().model_dump(mode="json")


@router.post("/metrics/reset", status_code=204)
def reset_metrics(request: Request) -> None:
    get_engine(request).reset_metrics()


@router.put("/strategies")
def update_strategies(request: Request, update: StrategyUpdateRequest) -> Dict[str, str]:
    """Switch strategies by name. Takes effect on the next run."""
    engine = get_engine(request)
    registries = {
        "matching": (MATCHING_STRATEGIES, engine.set_matching_strategy),
        "reconciliation": (RECONCILIATION_STRATEGIES, engine.set_reconciliation_strategy),
        "resolution": (RESOLUTION_STRATEGIES, engine.set_discrepancy_resolution_strategy),
        "reporting": (REPORTING_STRATEGIES, engine.set_reporting_strategy),
    }
    requested = update.model_dump(exclude_none=True)

    for kind, name in requested.items():
        registry, _ = registries[kind]
        if name not in registry:
            raise HTTPException(
                status_code=400,
                detail=f"Unknown {kind} strategy '{name}'. Options: {', '.join(sorted(registry))}",
            )

    for kind, name in requested.items():
        registry, setter = registries[kind]
        setter(registry[name]())

    return engine.get_strategy_names()
