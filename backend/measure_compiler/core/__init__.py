"""Core application modules."""

from measure_compiler.core.audit import (
    AuditAction,
    AuditEvent,
    audit_logger,
    log_audit,
    log_override_change,
)
from measure_compiler.core.config import Settings, settings

__all__ = [
    "AuditAction",
    "AuditEvent",
    "Settings",
    "audit_logger",
    "log_audit",
    "log_override_change",
    "settings",
]
