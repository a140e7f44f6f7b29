"""
Audit Models for the Ledger

Every mutation of the ledger, and every attempt that was skipped,
declined or failed, is recorded as an audit event.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Records
    RECORD_CREATED = "record_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    DELETION_DECLINED = "deletion_declined"
    MUTATION_SKIPPED = "mutation_skipped"

    # Accounts and categories
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DELETED = "account_deleted"
    CATEGORY_CREATED = "category_created"
    CATEGORY_DELETED = "category_deleted"

    # Reconciliation
    LEDGER_REFRESHED = "ledger_refreshed"

    # Session
    USER_SIGNED_IN = "user_signed_in"
    USER_SIGNED_OUT = "user_signed_out"
    AUTH_FAILED = "auth_failed"

    # System events
    STORE_ERROR = "store_error"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What entity is this about? Ids are store-issued and opaque.
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'record', 'account', 'category')"
    )
    entity_id: Optional[str] = None

    # Correlation - one user action may emit several events
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.record_created(record_id, "expense", "12.50", cid)
        event = AuditEventBuilder.deletion_declined(record_id, cid)
    """

    @staticmethod
    def record_created(
        record_id: str,
        kind: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Record created: {kind} {amount}",
            details={"kind": kind, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def record_updated(
        record_id: str,
        kind: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Record updated: {kind} {amount}",
            details={"kind": kind, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def record_deleted(record_id: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description="Record deleted",
            is_user_action=True,
        )

    @staticmethod
    def deletion_declined(record_id: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELETION_DECLINED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description="User declined record deletion",
            is_user_action=True,
        )

    @staticmethod
    def mutation_skipped(
        operation: str,
        missing: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_SKIPPED,
            severity=AuditSeverity.DEBUG,
            correlation_id=correlation_id,
            description=f"{operation} skipped: required input missing",
            details={"operation": operation, "missing": missing},
        )

    @staticmethod
    def entity_changed(
        entity_type: str,
        entity_id: str,
        created: bool,
        name: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        event_types = {
            ("account", True): AuditEventType.ACCOUNT_CREATED,
            ("account", False): AuditEventType.ACCOUNT_DELETED,
            ("category", True): AuditEventType.CATEGORY_CREATED,
            ("category", False): AuditEventType.CATEGORY_DELETED,
        }
        verb = "created" if created else "deleted"
        return AuditEvent(
            event_type=event_types[(entity_type, created)],
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} {verb}" + (f": {name}" if name else ""),
            details={"name": name} if name else {},
            is_user_action=True,
        )

    @staticmethod
    def ledger_refreshed(
        accounts: int,
        categories: int,
        records: int,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_REFRESHED,
            severity=AuditSeverity.DEBUG,
            entity_type="ledger",
            correlation_id=correlation_id,
            description=(
                f"Ledger reloaded: {accounts} accounts, "
                f"{categories} categories, {records} records"
            ),
            details={
                "accounts": accounts,
                "categories": categories,
                "records": records,
            },
        )

    @staticmethod
    def session_changed(
        user_id: str,
        signed_in: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.USER_SIGNED_IN if signed_in
                else AuditEventType.USER_SIGNED_OUT
            ),
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="User signed in" if signed_in else "User signed out",
            is_user_action=True,
        )

    @staticmethod
    def auth_failed(
        action: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            correlation_id=correlation_id,
            description=f"Authentication failed during {action}",
            error_message=error_message,
            details={"action": action},
        )

    @staticmethod
    def store_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Store error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
