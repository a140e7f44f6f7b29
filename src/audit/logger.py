"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged, and so is every
mutation that was skipped, declined or failed.
This provides:
1. Complete traceability
2. Debugging capability
3. The "logged, not surfaced" half of the error policy: store errors
   on data operations end up here rather than in front of the user

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder
from src.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_record_saved(
        self,
        record_id: str,
        kind: str,
        amount: str,
        updated: bool,
        correlation_id: UUID,
    ) -> None:
        """Log a record insert or full-replacement update."""
        build = AuditEventBuilder.record_updated if updated else AuditEventBuilder.record_created
        await self.log(build(
            record_id=record_id,
            kind=kind,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_record_deleted(self, record_id: str, correlation_id: UUID) -> None:
        await self.log(AuditEventBuilder.record_deleted(record_id, correlation_id))

    async def log_deletion_declined(self, record_id: str, correlation_id: UUID) -> None:
        """Log that the user answered "no" to the delete confirmation."""
        await self.log(AuditEventBuilder.deletion_declined(record_id, correlation_id))

    async def log_mutation_skipped(
        self,
        operation: str,
        missing: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.mutation_skipped(
            operation=operation,
            missing=missing,
            correlation_id=correlation_id,
        ))

    async def log_entity_changed(
        self,
        entity_type: str,
        entity_id: str,
        created: bool,
        correlation_id: UUID,
        name: Optional[str] = None,
    ) -> None:
        """Log an account or category being created or deleted."""
        await self.log(AuditEventBuilder.entity_changed(
            entity_type=entity_type,
            entity_id=entity_id,
            created=created,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_ledger_refreshed(
        self,
        accounts: int,
        categories: int,
        records: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_refreshed(
            accounts=accounts,
            categories=categories,
            records=records,
            correlation_id=correlation_id,
        ))

    async def log_session_changed(
        self,
        user_id: str,
        signed_in: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.session_changed(user_id, signed_in, correlation_id))

    async def log_auth_failed(
        self,
        action: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.auth_failed(action, error_message, correlation_id))

    async def log_store_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failure reported by the store."""
        await self.log(AuditEventBuilder.store_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an unexpected error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., saving a record).
    Pass it through all subsequent operations.
    """
    return uuid4()
