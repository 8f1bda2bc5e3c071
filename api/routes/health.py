"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from reconciliation.models import ReconciliationState


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response.

    status is "degraded" while the engine sits in ERROR after a failed run;
    the next accepted run clears it.
    """
    status: str
    timestamp: str
    version: str
    engine_id: str
    current_run_id: Optional[str] = None
    last_error: Optional[str] = None
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint."""
    engine = request.app.state.engine
    state = engine.state
    return HealthResponse(
        status="degraded" if state == ReconciliationState.ERROR else "healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version="1.0.0",
        engine_id=engine.engine_id,
        current_run_id=engine.current_run_id,
        last_error=engine.last_error,
        services={
            "api": "up",
            "engine": state.value.lower(),
        },
    )


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """Readiness probe for Kubernetes."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness probe for Kubernetes."""
    return {"status": "alive"}
