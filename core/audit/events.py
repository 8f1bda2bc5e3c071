"""Audit event logging.

Provides structured audit logging for every reconciliation action, from
ingestion through resolution. Backends are pluggable; the engine ships
with an in-memory backend for the lifetime of a session.
"""

import uuid
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Dict, List, Optional

from core.models.audit import AuditEvent, AuditSeverity
from core.observability.logging import get_logger

logger = get_logger(__name__)

MAX_IN_MEMORY_EVENTS = 100_000


class AuditEventType(str, Enum):
    """Standard audit event types."""
    # Ingestion events
    RECORDS_INGESTED = "RECORDS_INGESTED"
    RECORDS_REJECTED = "RECORDS_REJECTED"
    RECORDS_CLEARED = "RECORDS_CLEARED"

    # Run lifecycle events
    RUN_STARTED = "RUN_STARTED"
    RUN_REJECTED = "RUN_REJECTED"
    RUN_COMPLETED = "RUN_COMPLETED"
    RUN_FAILED = "RUN_FAILED"
    RUN_PAUSED = "RUN_PAUSED"
    RUN_RESUMED = "RUN_RESUMED"

    # Stage events
    MATCH_FOUND = "MATCH_FOUND"
    DISCREPANCY_DETECTED = "DISCREPANCY_DETECTED"
    DISCREPANCY_RESOLVED = "DISCREPANCY_RESOLVED"

    # Operator actions
    METRICS_RESET = "METRICS_RESET"
    CONFIGURATION_CHANGED = "CONFIGURATION_CHANGED"


def create_audit_event(
    event_type: AuditEventType,
    message: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    engine_id: Optional[str] = None,
    run_id: Optional[str] = None,
    stage: Optional[str] = None,
    record_ref: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    actor: str = "system",
) -> AuditEvent:
    """Create a new audit event with auto-generated ID and timestamp.

    Args:
        event_type: Type of event
        message: Human-readable message
        severity: Event severity level
        engine_id: Engine that produced the event
        run_id: Reconciliation run
        stage: Pipeline stage
        record_ref: Related record or discrepancy id
        details: Additional structured details
        actor: Who/what performed the action

    Returns:
        Configured AuditEvent ready for logging
    """
    return AuditEvent(
        event_id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc),
        event_type=event_type.value,
        severity=severity,
        engine_id=engine_id,
        run_id=run_id,
        stage=stage,
        record_ref=record_ref,
        message=message,
        details=details or {},
        actor=actor,
    )


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def log(self, event: AuditEvent) -> None:
        """Persist an audit event."""
        pass

    @abstractmethod
    def query(
        self,
        event_type: Optional[str] = None,
        run_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
        newest_first: bool = False,
    ) -> List[AuditEvent]:
        """Query audit events with filters.

        Events come back in logging order, or newest first when asked; limit
        applies after ordering.
        """
        pass


class InMemoryAuditBackend(AuditBackend):
    """Audit backend holding the most recent max_events events in memory.

    Once full, the oldest events are dropped as new ones arrive.
    """

    def __init__(self, max_events: int = MAX_IN_MEMORY_EVENTS):
        self._events: deque = deque(maxlen=max_events)
        self._lock = Lock()

    def log(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    def query(
        self,
        event_type: Optional[str] = None,
        run_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
        newest_first: bool = False,
    ) -> List[AuditEvent]:
        with self._lock:
            events = list(self._events)
        if newest_first:
            events.reverse()
        results = []
        for event in events:
            if event_type and event.event_type != event_type:
                continue
            if run_id and event.run_id != run_id:
                continue
            if start_time and event.timestamp < start_time:
                continue
            if end_time and event.timestamp > end_time:
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    def clear(self) -> None:
        """Clear all events (for testing)."""
        with self._lock:
            self._events.clear()


class AuditLogger:
    """Main audit logger that supports multiple backends.

    Usage:
        audit = AuditLogger()
        audit.add_backend(InMemoryAuditBackend())

        audit.log_info(
            AuditEventType.RUN_STARTED,
            "Reconciliation run started",
            engine_id="ENG-001",
            run_id="run-123",
        )
    """

    def __init__(self):
        self._backends: List[AuditBackend] = []

    def add_backend(self, backend: AuditBackend) -> None:
        """Add an audit backend."""
        self._backends.append(backend)

    def log(self, event: AuditEvent) -> None:
        """Log event to all backends."""
        for backend in self._backends:
            try:
                backend.log(event)
            except Exception as e:
                # Don't let audit failures break the pipeline
                logger.error(f"Audit logging failed for backend {type(backend).__name__}: {e}")

    def log_info(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log an INFO level event."""
        self.log(create_audit_event(event_type, message, AuditSeverity.INFO, **kwargs))

    def log_warning(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log a WARN level event."""
        self.log(create_audit_event(event_type, message, AuditSeverity.WARN, **kwargs))

    def log_error(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log an ERROR level event."""
        self.log(create_audit_event(event_type, message, AuditSeverity.ERROR, **kwargs))

    def query(
        self,
        event_type: Optional[str] = None,
        run_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
        newest_first: bool = False,
    ) -> List[AuditEvent]:
        """Query events from all backends (returns first backend's results)."""
        if not self._backends:
            return []
        return self._backends[0].query(
            event_type, run_id, start_time, end_time, limit, newest_first=newest_first
        )


def create_in_memory_audit_logger() -> AuditLogger:
    """AuditLogger with a single in-memory backend."""
    audit = AuditLogger()
    audit.add_backend(InMemoryAuditBackend())
    return audit
