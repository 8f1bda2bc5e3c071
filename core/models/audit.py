"""Audit models for tracking reconciliation actions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AuditEvent(BaseModel):
    """An audit event for tracking engine actions.

    Together the events of one run explain every stage outcome, from
    ingestion through resolution.
    """
    event_id: str = Field(..., description="Unique event identifier")
    timestamp: datetime = Field(default_factory=utc_now, description="Event timestamp")
    event_type: str = Field(..., description="Type of event (RUN_STARTED, MATCH_FOUND, etc.)")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO, description="Event severity")

    # Context
    engine_id: Optional[str] = Field(None, description="Engine that produced the event")
    run_id: Optional[str] = Field(None, description="Reconciliation run")
    stage: Optional[str] = Field(None, description="Pipeline stage that generated the event")
    record_ref: Optional[str] = Field(None, description="Transaction, reference or discrepancy id")

    # Details
    message: str = Field(..., description="Human-readable message")
    details: dict = Field(default_factory=dict, description="Additional event details")

    # Actor
    actor: str = Field(default="system", description="Who/what performed the action")
