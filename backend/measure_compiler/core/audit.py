"""Audit logging for manual code overrides and compilation requests.

Provides logging for:
- Override saves, note additions and reverts
- Rejected override attempts
- Generation, validation and diff requests from the API

This audit log should be shipped to an append-only store in production
so reviewers can reconstruct who changed generated measure logic and why.
"""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# Separate audit logger for review-critical events
audit_logger = logging.getLogger("audit")


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Overrides
    OVERRIDE_SAVE = "override_save"
    OVERRIDE_NOTE = "override_note"
    OVERRIDE_REVERT = "override_revert"

    # Compilation
    GENERATE = "generate"
    VALIDATE = "validate"
    DIFF = "diff"


class AuditEvent(BaseModel):
    """Audit event record.

    Contains all relevant context for an auditable action.
    """

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    action: AuditAction = Field(..., description="Type of action performed")
    resource_type: str = Field(..., description="Type of resource touched")
    resource_id: str | None = Field(None, description="ID of specific resource")
    measure_id: str | None = Field(None, description="Measure the action applies to")
    component_id: str | None = Field(None, description="Logic component the action applies to")
    output_format: str | None = Field(None, description="Output format (cql, synapse-sql)")
    user_id: str | None = Field(None, description="User who performed action")
    details: dict[str, Any] | None = Field(None, description="Additional context")
    success: bool = Field(True, description="Whether action succeeded")


def log_audit(
    action: AuditAction,
    resource_type: str,
    resource_id: str | None = None,
    measure_id: str | None = None,
    component_id: str | None = None,
    output_format: str | None = None,
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> AuditEvent:
    """Log an audit event.

    Args:
        action: Type of action being audited
        resource_type: The type of resource being touched
        resource_id: Specific resource identifier
        measure_id: Measure the action applies to
        component_id: Logic component the action applies to
        output_format: Output format of the affected code
        user_id: User performing the action
        details: Additional context
        success: Whether the action succeeded

    Returns:
        The created AuditEvent
    """
    event = AuditEvent(
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        measure_id=measure_id,
        component_id=component_id,
        output_format=output_format,
        user_id=user_id,
        details=details,
        success=success,
    )

    log_level = logging.INFO if success else logging.WARNING
    audit_logger.log(
        log_level,
        f"AUDIT: {action.value} {resource_type}"
        f"{f'/{resource_id}' if resource_id else ''}"
        f"{f' measure={measure_id}' if measure_id else ''}"
        f"{f' component={component_id}' if component_id else ''}"
        f" success={success}",
        extra={"audit_event": event.model_dump()},
    )

    return event


def log_override_change(
    action: AuditAction,
    measure_id: str,
    component_id: str,
    output_format: str,
    user_id: str | None = None,
    note_count: int = 0,
    success: bool = True,
    reason: str | None = None,
) -> AuditEvent:
    """Log a change to a manual code override.

    Convenience function used by the override store for every mutation.

    Args:
        action: OVERRIDE_SAVE, OVERRIDE_NOTE or OVERRIDE_REVERT
        measure_id: Measure owning the override
        component_id: Component whose generated code was replaced
        output_format: Output format of the override
        user_id: User making the change
        note_count: Number of notes on the override after the change
        success: Whether the change was accepted
        reason: Rejection reason when success is False

    Returns:
        The created AuditEvent
    """
    details: dict[str, Any] = {"note_count": note_count}
    if reason:
        details["reason"] = reason

    return log_audit(
        action=action,
        resource_type="code_override",
        resource_id=f"{measure_id}:{component_id}:{output_format}",
        measure_id=measure_id,
        component_id=component_id,
        output_format=output_format,
        user_id=user_id,
        details=details,
        success=success,
    )
