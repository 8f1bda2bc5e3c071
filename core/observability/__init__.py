"""
Observability Module for the Reconciliation Engine

Provides:
- Structured logging with correlation IDs
- Pipeline timing metrics (runs, stages, processing times)
"""

from core.observability.metrics import MetricsCollector

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
