"""
Data Models Package

This package contains all Pydantic models used by the ledger.
All data flowing through the system must conform to these schemas.
"""

from src.models.ledger import (
    Account,
    BudgetProgress,
    Category,
    DateRange,
    EntryKind,
    LedgerRecord,
    LedgerSnapshot,
    RangeSummary,
    RecordDraft,
    User,
    ValidationIssue,
    ValidationResult,
)
from src.models.state import (
    AppState,
    EditMode,
    RecordForm,
    ViewName,
    default_date_range,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "BudgetProgress",
    "Category",
    "DateRange",
    "EntryKind",
    "LedgerRecord",
    "LedgerSnapshot",
    "RangeSummary",
    "RecordDraft",
    "User",
    "ValidationIssue",
    "ValidationResult",
    # Application state
    "AppState",
    "EditMode",
    "RecordForm",
    "ViewName",
    "default_date_range",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
