"""
In-Memory Storage Implementation

Used by the tests and as the default backend when no external store is
configured. It behaves like the hosted store the ledger was built
against, including the server-side trigger that settles every record
into its account balance.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from src.models.audit import AuditEvent
from src.models.ledger import (
    Account,
    Category,
    EntryKind,
    LedgerRecord,
    RecordDraft,
)
from src.services.storage.interface import (
    DEFAULT_RECORD_LIMIT,
    AuditStorageInterface,
    LedgerStoreInterface,
    NotFoundError,
    balance_effect,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryLedgerStore(LedgerStoreInterface):
    """
    Dict-backed ledger store.

    Args:
        clock: Source of created_at timestamps for new records
        id_factory: Source of new identifiers
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self._clock = clock or _utcnow
        self._new_id = id_factory or (lambda: str(uuid4()))
        self._accounts: dict[str, Account] = {}
        self._categories: dict[str, Category] = {}
        self._records: dict[str, LedgerRecord] = {}

    # -------------------------------------------------------------------------
    # Balance trigger
    # -------------------------------------------------------------------------

    def _settle(self, account_id: Optional[str], delta: Decimal) -> None:
        """Apply a balance change; dangling account ids are ignored."""
        account = self._accounts.get(account_id) if account_id else None
        if account is None:
            return
        self._accounts[account.id] = account.model_copy(
            update={"balance": account.balance + delta}
        )

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    async def list_records(
        self,
        owner_id: str,
        limit: int = DEFAULT_RECORD_LIMIT,
    ) -> list[LedgerRecord]:
        records = [r for r in self._records.values() if r.owner_id == owner_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    async def insert_record(self, draft: RecordDraft) -> LedgerRecord:
        record = LedgerRecord(
            id=self._new_id(),
            created_at=self._clock(),
            **draft.model_dump(),
        )
        self._records[record.id] = record
        self._settle(record.account_id, balance_effect(record.kind, record.amount))
        return record

    async def update_record(self, record_id: str, draft: RecordDraft) -> LedgerRecord:
        old = self._records.get(record_id)
        if old is None:
            raise NotFoundError(f"Record not found: {record_id}")

        new = LedgerRecord(
            id=old.id,
            created_at=old.created_at,
            **draft.model_dump(),
        )
        self._settle(old.account_id, -balance_effect(old.kind, old.amount))
        self._settle(new.account_id, balance_effect(new.kind, new.amount))
        self._records[record_id] = new
        return new

    async def delete_record(self, record_id: str) -> bool:
        record = self._records.pop(record_id, None)
        if record is None:
            raise NotFoundError(f"Record not found: {record_id}")
        self._settle(record.account_id, -balance_effect(record.kind, record.amount))
        return True

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def list_categories(self, owner_id: str) -> list[Category]:
        categories = [c for c in self._categories.values() if c.owner_id == owner_id]
        return sorted(categories, key=lambda c: c.name)

    async def insert_category(
        self,
        owner_id: str,
        name: str,
        kind: EntryKind,
        target: Decimal,
    ) -> Category:
        category = Category(
            id=self._new_id(),
            name=name,
            kind=kind,
            target=target,
            owner_id=owner_id,
        )
        self._categories[category.id] = category
        return category

    async def delete_category(self, category_id: str) -> bool:
        if self._categories.pop(category_id, None) is None:
            raise NotFoundError(f"Category not found: {category_id}")
        return True

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def list_accounts(self, owner_id: str) -> list[Account]:
        accounts = [a for a in self._accounts.values() if a.owner_id == owner_id]
        return sorted(accounts, key=lambda a: a.name)

    async def insert_account(
        self,
        owner_id: str,
        name: str,
        balance: Decimal,
    ) -> Account:
        account = Account(
            id=self._new_id(),
            name=name,
            balance=balance,
            owner_id=owner_id,
        )
        self._accounts[account.id] = account
        return account

    async def delete_account(self, account_id: str) -> bool:
        if self._accounts.pop(account_id, None) is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log held in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
        entity_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if entity_id is None or e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
