"""Payment reconciliation: matching, discrepancy analysis and resolution."""

from reconciliation.engine import PaymentReconciliationEngine
from reconciliation.events import ReconciliationEventListener
from reconciliation.models import (
    DiscrepancySeverity,
    DiscrepancyType,
    ExternalRecord,
    PaymentRecord,
    ReconciliationError,
    ReconciliationSettings,
    ReconciliationState,
    ReportType,
    ResolutionAction,
    RunRejection,
)

__all__ = [
    "PaymentReconciliationEngine",
    "ReconciliationEventListener",
    "DiscrepancySeverity",
    "DiscrepancyType",
    "ExternalRecord",
    "PaymentRecord",
    "ReconciliationError",
    "ReconciliationSettings",
    "ReconciliationState",
    "ReportType",
    "ResolutionAction",
    "RunRejection",
]
