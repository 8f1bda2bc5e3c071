"""Core data models shared by the ambient stack."""

from core.models.audit import (
    AuditEvent,
    AuditSeverity,
)

__all__ = [
    "AuditEvent",
    "AuditSeverity",
]
