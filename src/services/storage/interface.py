"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the external store.
This allows us to:
1. Swap Google Sheets for a hosted database later
2. Use in-memory storage for testing
3. Keep the aggregation engine and the reconciliation protocol
   decoupled from any transport

The interface mirrors the four collections the ledger needs and nothing
more. Reads are scoped to one owner, the way the hosted store's row
level security scopes them.

CRITICAL: The store owns account balances. Inserting, updating or
deleting a record must settle the difference into the referenced
account's balance on the store side.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from src.models.audit import AuditEvent
from src.models.ledger import (
    Account,
    Category,
    EntryKind,
    LedgerRecord,
    RecordDraft,
)

DEFAULT_RECORD_LIMIT = 50


class LedgerStoreInterface(ABC):
    """
    Abstract interface for the ledger's record collections.

    Any storage implementation (Google Sheets, a hosted database, memory)
    must implement these methods. Every failure is reported as a
    StorageError (or one of its subclasses).
    """

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_records(
        self,
        owner_id: str,
        limit: int = DEFAULT_RECORD_LIMIT,
    ) -> list[LedgerRecord]:
        """
        List an owner's records, newest first.

        Args:
            owner_id: Whose records to return
            limit: Maximum number of records (the fetch window)

        Returns:
            At most ``limit`` records ordered by created_at descending
        """
        pass

    @abstractmethod
    async def insert_record(self, draft: RecordDraft) -> LedgerRecord:
        """
        Insert a new record and settle it into its account.

        Returns:
            The stored record with its store-issued id and created_at
        """
        pass

    @abstractmethod
    async def update_record(self, record_id: str, draft: RecordDraft) -> LedgerRecord:
        """
        Replace every field of an existing record.

        Raises:
            NotFoundError: If the record doesn't exist (e.g. deleted elsewhere)
        """
        pass

    @abstractmethod
    async def delete_record(self, record_id: str) -> bool:
        """
        Delete a record and reverse its effect on its account.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Categories (no update: delete and recreate instead)
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_categories(self, owner_id: str) -> list[Category]:
        """List an owner's categories ordered by name ascending."""
        pass

    @abstractmethod
    async def insert_category(
        self,
        owner_id: str,
        name: str,
        kind: EntryKind,
        target: Decimal,
    ) -> Category:
        pass

    @abstractmethod
    async def delete_category(self, category_id: str) -> bool:
        """Delete a category. Records keep their category name."""
        pass

    # -------------------------------------------------------------------------
    # Accounts (no update either)
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_accounts(self, owner_id: str) -> list[Account]:
        """List an owner's accounts ordered by name ascending."""
        pass

    @abstractmethod
    async def insert_account(
        self,
        owner_id: str,
        name: str,
        balance: Decimal,
    ) -> Account:
        pass

    @abstractmethod
    async def delete_account(self, account_id: str) -> bool:
        """Delete an account. Records referencing it are left dangling."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one user action).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
        entity_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events, optionally for one entity.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


def balance_effect(kind: EntryKind, amount: Decimal) -> Decimal:
    """Signed change a record makes to its account balance."""
    return amount if kind == EntryKind.EARNING else -amount
