"""FastAPI server for payment reconciliation.

Main entry point for the API server. Each application owns one
reconciliation engine.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import (
    health,
    reconciliation,
)
from core.observability.logging import get_logger
from reconciliation.engine import PaymentReconciliationEngine

logger = get_logger(__name__)


def create_app(engine: Optional[PaymentReconciliationEngine] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: Engine to serve (defaults to a new engine configured from
            the environment, id from RECON_ENGINE_ID)
    """
    if engine is None:
        engine = PaymentReconciliationEngine(os.getenv("RECON_ENGINE_ID", "RECON-API"))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        logger.info(f"Reconciliation API starting up (engine {engine.engine_id})")

        yield

        logger.info("Reconciliation API shutting down...")
        engine.shutdown(wait=False)

    app = FastAPI(
        title="Payment Reconciliation API",
        description="Matches internal payment records against external feeds and resolves discrepancies",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.engine = engine

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(reconciliation.router, prefix="/reconciliation", tags=["Reconciliation"])

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:create_app", factory=True, host="0.0.0.0", port=8000)
