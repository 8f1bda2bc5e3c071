"""Data models for payment reconciliation.

Records, stage results, summaries, reports and settings. Records and
results are frozen pydantic models; ReconciliationSettings is the one
mutable model and is copied at the start of every run.

All monetary amounts are Decimal. Floats are converted through str so
that 99.99 stays 99.99.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationError(Exception):
    """Base error for reconciliation failures.

    Raised from a run's future when a pipeline stage fails.
    """

    def __init__(self, message: str, run_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.run_id = run_id


# =============================================================================
# Enums
# =============================================================================

_DISPLAY_NAMES = {
    ("DiscrepancyType", "MISSING_INTERNAL"): "Missing Internal Record",
    ("DiscrepancyType", "MISSING_EXTERNAL"): "Missing External Record",
    ("ReportType", "SUMMARY"): "Summary Report",
    ("ReportType", "DETAILED"): "Detailed Report",
    ("ReportType", "DISCREPANCY"): "Discrepancy Report",
    ("ReportType", "EXCEPTION"): "Exception Report",
    ("ReportType", "PERFORMANCE"): "Performance Report",
    ("RecordSource", "API_INTEGRATION"): "API Integration",
    ("ResolutionAction", "AUTO_RESOLVED"): "Automatically Resolved",
    ("ResolutionAction", "MANUAL_REVIEW"): "Requires Manual Review",
    ("ResolutionAction", "SYSTEM_CORRECTION"): "System Correction Applied",
    ("ResolutionAction", "ESCALATED"): "Escalated to Supervisor",
    ("ResolutionAction", "IGNORED"): "Ignored - Within Tolerance",
    ("ResolutionAction", "REJECTED"): "Resolution Rejected",
}


class _DisplayEnum(str, Enum):
    @property
    def display_name(self) -> str:
        key = (type(self).__name__, self.value)
        return _DISPLAY_NAMES.get(key, self.value.replace("_", " ").title())


class ReconciliationState(_DisplayEnum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class DiscrepancyType(_DisplayEnum):
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    DATE_MISMATCH = "DATE_MISMATCH"
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
    STATUS_MISMATCH = "STATUS_MISMATCH"
    MISSING_INTERNAL = "MISSING_INTERNAL"
    MISSING_EXTERNAL = "MISSING_EXTERNAL"
    DUPLICATE_RECORD = "DUPLICATE_RECORD"
    INVALID_DATA = "INVALID_DATA"
    REFERENCE_MISMATCH = "REFERENCE_MISMATCH"


_SEVERITY_LEVELS = {"LOW": 1, "MEDIUM": 2, "HIGH": 3, "CRITICAL": 4}


class DiscrepancySeverity(_DisplayEnum):
    """Severity grade, ordered by level (LOW < MEDIUM < HIGH < CRITICAL)."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def level(self) -> int:
        return _SEVERITY_LEVELS[self.value]

    def __lt__(self, other):
        if isinstance(other, DiscrepancySeverity):
            return self.level < other.level
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, DiscrepancySeverity):
            return self.level <= other.level
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, DiscrepancySeverity):
            return self.level > other.level
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, DiscrepancySeverity):
            return self.level >= other.level
        return NotImplemented


class PaymentStatus(_DisplayEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    DISPUTED = "DISPUTED"


class PaymentMethod(_DisplayEnum):
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    DIGITAL_WALLET = "DIGITAL_WALLET"
    CRYPTOCURRENCY = "CRYPTOCURRENCY"
    CHECK = "CHECK"
    CASH = "CASH"
    OTHER = "OTHER"


class RecordSource(_DisplayEnum):
    INTERNAL_SYSTEM = "INTERNAL_SYSTEM"
    BANK_STATEMENT = "BANK_STATEMENT"
    PAYMENT_GATEWAY = "PAYMENT_GATEWAY"
    THIRD_PARTY_PROCESSOR = "THIRD_PARTY_PROCESSOR"
    MANUAL_ENTRY = "MANUAL_ENTRY"
    API_INTEGRATION = "API_INTEGRATION"
    FILE_IMPORT = "FILE_IMPORT"


class ReportType(_DisplayEnum):
    SUMMARY = "SUMMARY"
    DETAILED = "DETAILED"
    DISCREPANCY = "DISCREPANCY"
    EXCEPTION = "EXCEPTION"
    TREND_ANALYSIS = "TREND_ANALYSIS"
    AUDIT_TRAIL = "AUDIT_TRAIL"
    PERFORMANCE = "PERFORMANCE"


class ResolutionAction(_DisplayEnum):
    AUTO_RESOLVED = "AUTO_RESOLVED"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    SYSTEM_CORRECTION = "SYSTEM_CORRECTION"
    ESCALATED = "ESCALATED"
    IGNORED = "IGNORED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    REJECTED = "REJECTED"


class RunRejection(str, Enum):
    """Why start_reconciliation declined to start a run."""
    CONFLICT = "conflict"
    INSUFFICIENT_DATA = "insufficient_data"


# =============================================================================
# Records
# =============================================================================

def _amount_to_decimal(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, int) and not isinstance(value, bool):
        return Decimal(value)
    return value


class PaymentRecord(BaseModel):
    """A payment as recorded by the owning system (the book of record).

    Equality and hashing use transaction_id only.
    """
    model_config = ConfigDict(frozen=True)

    transaction_id: str = Field(..., min_length=1, description="Unique internal transaction key")
    order_id: str = Field(default="", description="Order the payment belongs to")
    amount: Decimal = Field(..., description="Payment amount")
    currency: str = Field(..., description="ISO 4217 currency code")
    payment_method: PaymentMethod = Field(default=PaymentMethod.OTHER, description="Payment method")
    status: PaymentStatus = Field(default=PaymentStatus.COMPLETED, description="Payment status")
    transaction_date: datetime = Field(..., description="When the payment was made")
    customer_id: Optional[str] = Field(None, description="Paying customer")
    merchant_id: Optional[str] = Field(None, description="Receiving merchant")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Open key/value bag")
    source: RecordSource = Field(default=RecordSource.INTERNAL_SYSTEM, description="Where the record came from")

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, value: Any) -> Any:
        return _amount_to_decimal(value)

    def __eq__(self, other):
        if isinstance(other, PaymentRecord):
            return self.transaction_id == other.transaction_id
        return NotImplemented

    def __hash__(self):
        return hash(self.transaction_id)


class ExternalRecord(BaseModel):
    """A record from a bank statement or other counterparty feed.

    Equality and hashing use reference_id only.
    """
    model_config = ConfigDict(frozen=True)

    reference_id: str = Field(..., min_length=1, description="Unique external reference")
    bank_transaction_id: Optional[str] = Field(None, description="Bank-side transaction id")
    amount: Decimal = Field(..., description="Settled amount")
    currency: str = Field(..., description="ISO 4217 currency code")
    description: str = Field(default="", description="Free text, used for reference matching")
    settlement_date: datetime = Field(..., description="When the funds settled")
    account_number: Optional[str] = Field(None, description="Our account")
    counterparty_name: Optional[str] = Field(None, description="Counterparty name")
    counterparty_account: Optional[str] = Field(None, description="Counterparty account")
    source: RecordSource = Field(default=RecordSource.BANK_STATEMENT, description="Feed the record came from")
    additional_fields: Dict[str, Any] = Field(default_factory=dict, description="Open key/value bag")

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, value: Any) -> Any:
        return _amount_to_decimal(value)

    def __eq__(self, other):
        if isinstance(other, ExternalRecord):
            return self.reference_id == other.reference_id
        return NotImplemented

    def __hash__(self):
        return hash(self.reference_id)


# =============================================================================
# Matching
# =============================================================================

class RecordMatch(BaseModel):
    """A committed pairing of one internal and one external record."""
    model_config = ConfigDict(frozen=True)

    internal_record: PaymentRecord
    external_record: ExternalRecord
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    match_reason: str = Field(..., description="Why the records were paired")
    matched_at: datetime = Field(default_factory=utc_now)


class MatchCandidate(BaseModel):
    """A non-committing association used when ranking externals."""
    model_config = ConfigDict(frozen=True)

    external_record: ExternalRecord
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str


class MatchResult(BaseModel):
    """Outcome of a single find_match call."""
    model_config = ConfigDict(frozen=True)

    matched: bool
    matched_record: Optional[ExternalRecord] = None
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    message: str = ""

    @classmethod
    def no_match(cls, message: str = "No match found") -> "MatchResult":
        return cls(matched=False, message=message)


class MatchingResult(BaseModel):
    """Output of the matching stage."""
    model_config = ConfigDict(frozen=True)

    matches: List[RecordMatch] = Field(default_factory=list)
    unmatched_internal: List[PaymentRecord] = Field(default_factory=list)
    unmatched_external: List[ExternalRecord] = Field(default_factory=list)
    strategy_name: str = ""

    @property
    def match_count(self) -> int:
        return len(self.matches)


# =============================================================================
# Discrepancies and resolutions
# =============================================================================

_DISCREPANCY_NAMESPACE = uuid.UUID("5b0c1c8e-3f3a-4a47-9d53-0c6f1f3b2d11")


def discrepancy_id_for(
    discrepancy_type: DiscrepancyType,
    internal: Optional[PaymentRecord],
    external: Optional[ExternalRecord],
) -> str:
    """Deterministic id from the type and record keys, stable across replays."""
    key = "|".join([
        discrepancy_type.value,
        internal.transaction_id if internal else "",
        external.reference_id if external else "",
    ])
    return str(uuid.uuid5(_DISCREPANCY_NAMESPACE, key))


class Discrepancy(BaseModel):
    """A detected inconsistency or a missing counterpart."""
    model_config = ConfigDict(frozen=True)

    discrepancy_id: str
    type: DiscrepancyType
    description: str
    internal_record: Optional[PaymentRecord] = None
    external_record: Optional[ExternalRecord] = None
    severity: DiscrepancySeverity
    detected_at: datetime = Field(default_factory=utc_now)
    additional_data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(
        cls,
        discrepancy_type: DiscrepancyType,
        description: str,
        severity: DiscrepancySeverity,
        internal_record: Optional[PaymentRecord] = None,
        external_record: Optional[ExternalRecord] = None,
        additional_data: Optional[Dict[str, Any]] = None,
    ) -> "Discrepancy":
        return cls(
            discrepancy_id=discrepancy_id_for(discrepancy_type, internal_record, external_record),
            type=discrepancy_type,
            description=description,
            internal_record=internal_record,
            external_record=external_record,
            severity=severity,
            additional_data=additional_data or {},
        )

    def content_fingerprint(self) -> str:
        """Digest of everything but detected_at, including full record contents.

        The id only covers the record keys; a record re-ingested under the
        same key with new values gets a new fingerprint.
        """
        payload = self.model_dump(exclude={"detected_at"})
        encoded = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class DiscrepancyResolution(BaseModel):
    """Disposition applied to one discrepancy."""
    model_config = ConfigDict(frozen=True)

    resolution_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    discrepancy: Discrepancy
    action: ResolutionAction
    resolution: str = Field(..., description="Human-readable outcome")
    resolved: bool
    resolved_by: str = Field(..., description="Strategy or operator that resolved it")
    resolved_at: datetime = Field(default_factory=utc_now)
    resolution_data: Dict[str, Any] = Field(default_factory=dict)


class DiscrepancyAnalysisResult(BaseModel):
    """Output of the analysis stage."""
    model_config = ConfigDict(frozen=True)

    discrepancies: List[Discrepancy] = Field(default_factory=list)
    type_counts: Dict[DiscrepancyType, int] = Field(default_factory=dict)
    severity_counts: Dict[DiscrepancySeverity, int] = Field(default_factory=dict)

    @classmethod
    def from_discrepancies(cls, discrepancies: List[Discrepancy]) -> "DiscrepancyAnalysisResult":
        type_counts: Dict[DiscrepancyType, int] = {}
        severity_counts: Dict[DiscrepancySeverity, int] = {}
        for d in discrepancies:
            type_counts[d.type] = type_counts.get(d.type, 0) + 1
            severity_counts[d.severity] = severity_counts.get(d.severity, 0) + 1
        return cls(
            discrepancies=discrepancies,
            type_counts=type_counts,
            severity_counts=severity_counts,
        )


class ResolutionResult(BaseModel):
    """Output of the resolution stage."""
    model_config = ConfigDict(frozen=True)

    resolutions: List[DiscrepancyResolution] = Field(default_factory=list)
    resolved_count: int = 0
    unresolved_count: int = 0
    action_counts: Dict[ResolutionAction, int] = Field(default_factory=dict)

    @classmethod
    def from_resolutions(cls, resolutions: List[DiscrepancyResolution]) -> "ResolutionResult":
        action_counts: Dict[ResolutionAction, int] = {}
        resolved = 0
        for r in resolutions:
            action_counts[r.action] = action_counts.get(r.action, 0) + 1
            if r.resolved:
                resolved += 1
        return cls(
            resolutions=resolutions,
            resolved_count=resolved,
            unresolved_count=len(resolutions) - resolved,
            action_counts=action_counts,
        )

    @property
    def unresolved(self) -> List[DiscrepancyResolution]:
        return [r for r in self.resolutions if not r.resolved]


# =============================================================================
# Run summary, history and reports
# =============================================================================

class ReconciliationSummary(BaseModel):
    """Snapshot of one completed reconciliation run."""
    model_config = ConfigDict(frozen=True)

    run_id: str
    engine_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    total_internal: int
    total_external: int
    matched_records: int
    total_discrepancies: int
    resolved_discrepancies: int
    match_rate: float = Field(..., description="Matched internal records as a percentage")
    resolution_rate: float = Field(..., description="Resolved discrepancies as a percentage")
    low_confidence_matches: int = Field(default=0, description="Matches below the confidence threshold")
    processing_time_ms: float = 0.0
    matching_strategy: str
    reconciliation_strategy: str
    resolution_strategy: str
    matching_result: MatchingResult
    analysis_result: DiscrepancyAnalysisResult
    resolution_result: ResolutionResult


class ReconciliationResult(BaseModel):
    """History entry for a completed run."""
    model_config = ConfigDict(frozen=True)

    result_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    summary: ReconciliationSummary
    metadata: Dict[str, Any] = Field(default_factory=dict)
    completed_at: datetime = Field(default_factory=utc_now)


class ReportSection(BaseModel):
    """One titled block of structured report data."""
    model_config = ConfigDict(frozen=True)

    title: str
    data: Dict[str, Any] = Field(default_factory=dict)


class ReconciliationReport(BaseModel):
    """A typed report built from run history and lifetime metrics."""
    model_config = ConfigDict(frozen=True)

    report_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    report_type: ReportType
    generated_by: str
    generated_at: datetime = Field(default_factory=utc_now)
    summary_statistics: Dict[str, Any] = Field(default_factory=dict)
    sections: List[ReportSection] = Field(default_factory=list)

    def section(self, title: str) -> Optional[ReportSection]:
        for s in self.sections:
            if s.title == title:
                return s
        return None


# =============================================================================
# Engine call results
# =============================================================================

class DataIngestionResult(BaseModel):
    """Result of an ingest call. Partial success is never an error."""
    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    records_ingested: int = 0
    records_rejected: int = 0
    rejection_reasons: List[str] = Field(default_factory=list)
    blocked_by_run: bool = False


class ReconciliationProcessResult(BaseModel):
    """Result of start_reconciliation. future is None when rejected."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool
    message: str
    run_id: Optional[str] = None
    future: Optional[Future] = None
    rejection: Optional[RunRejection] = None


# =============================================================================
# Settings
# =============================================================================

class ReconciliationSettings(BaseModel):
    """Mutable reconciliation configuration shared across runs.

    The engine copies settings when a run starts; changes made while a run
    is in flight apply to the next run.
    """
    model_config = ConfigDict(validate_assignment=True)

    amount_tolerance: Decimal = Field(default=Decimal("0.01"), ge=0, description="Absolute amount tolerance")
    date_tolerance: timedelta = Field(default=timedelta(days=1), description="Settlement date tolerance")
    confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0, description="Minimum trusted match confidence")
    auto_resolve_minor_discrepancies: bool = Field(default=True)
    require_manual_approval: bool = Field(default=False)
    max_processing_threads: int = Field(default=5, ge=1)
    material_amount_threshold: Decimal = Field(default=Decimal("10000"), ge=0, description="Missing-record materiality threshold")
    custom_settings: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("amount_tolerance", "material_amount_threshold", mode="before")
    @classmethod
    def coerce_amounts(cls, value: Any) -> Any:
        return _amount_to_decimal(value)

    @field_validator("date_tolerance")
    @classmethod
    def check_date_tolerance(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("date_tolerance must not be negative")
        return value

    def fingerprint(self) -> str:
        """Stable string identifying the values that affect resolution."""
        return "|".join([
            str(self.amount_tolerance),
            str(self.date_tolerance.total_seconds()),
            str(self.confidence_threshold),
            str(self.auto_resolve_minor_discrepancies),
            str(self.require_manual_approval),
            str(self.material_amount_threshold),
        ])
