"""Core audit module - audit event tracking."""

from core.audit.events import (
    AuditBackend,
    AuditLogger,
    AuditEventType,
    InMemoryAuditBackend,
    create_audit_event,
    create_in_memory_audit_logger,
)

__all__ = [
    "AuditBackend",
    "AuditLogger",
    "AuditEventType",
    "InMemoryAuditBackend",
    "create_audit_event",
    "create_in_memory_audit_logger",
]
