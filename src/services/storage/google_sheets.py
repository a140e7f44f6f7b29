"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets can back the ledger because:
1. Users can view their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (a personal ledger is fine)
- No transactions and no triggers: the balance settlement the hosted
  store does server-side is done here in Python, right after the
  record row is written
- Limited query capabilities (we filter and sort in Python)

The implementation follows the abstract interface, so the rest of the
system never knows which backend it talks to.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from src.config import get_settings
from src.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    ConnectionError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    balance_effect,
)


ACCOUNT_COLUMNS = ["id", "owner_id", "name", "balance"]

CATEGORY_COLUMNS = ["id", "owner_id", "name", "kind", "target"]

RECORD_COLUMNS = [
    "id",
    "owner_id",
    "created_at",
    "amount",
    "kind",
    "category",
    "account_id",
    "note",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def _cell(row: list, index: int, default: str = "") -> str:
    """Read a cell, tolerating short rows."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
def _append_once(get_sheet, row: list) -> None:
    """
    Append a row keyed by its first cell, at most once.

    A retry after a write that landed but reported failure finds the
    id already present and does nothing.
    """
    sheet = get_sheet()
    if any(r and r[0] == row[0] for r in sheet.get_all_values()[1:]):
        return
    sheet.append_row(row, value_input_option="RAW")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_accounts_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.accounts_sheet_name, ACCOUNT_COLUMNS, 200)

    def get_categories_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.categories_sheet_name, CATEGORY_COLUMNS, 200)

    def get_records_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.records_sheet_name, RECORD_COLUMNS, 1000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self._get_or_create(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger store.

    One worksheet per collection, one entity per row, header in row 1.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _account_to_row(account: Account) -> list:
        return [account.id, account.owner_id or "", account.name, str(account.balance)]

    @staticmethod
    def _row_to_account(row: list) -> Account:
        return Account(
            id=_cell(row, 0),
            owner_id=_cell(row, 1) or None,
            name=_cell(row, 2),
            balance=Decimal(_cell(row, 3, "0")),
        )

    @staticmethod
    def _category_to_row(category: Category) -> list:
        return [
            category.id,
            category.owner_id or "",
            category.name,
            category.kind.value,
            str(category.target),
        ]

    @staticmethod
    def _row_to_category(row: list) -> Category:
        return Category(
            id=_cell(row, 0),
            owner_id=_cell(row, 1) or None,
            name=_cell(row, 2),
            kind=EntryKind(_cell(row, 3, EntryKind.EXPENSE.value)),
            target=Decimal(_cell(row, 4, "0")),
        )

    @staticmethod
    def _record_to_row(record: LedgerRecord) -> list:
        return [
            record.id,
            record.owner_id or "",
            record.created_at.isoformat(),
            str(record.amount),
            record.kind.value,
            record.category,
            record.account_id or "",
            record.note or "",
        ]

    @staticmethod
    def _row_to_record(row: list) -> LedgerRecord:
        return LedgerRecord(
            id=_cell(row, 0),
            owner_id=_cell(row, 1) or None,
            created_at=datetime.fromisoformat(_cell(row, 2)),
            amount=Decimal(_cell(row, 3)),
            kind=EntryKind(_cell(row, 4)),
            category=_cell(row, 5),
            account_id=_cell(row, 6) or None,
            note=_cell(row, 7) or None,
        )

    @staticmethod
    def _find_row(all_rows: list[list], entity_id: str) -> Optional[int]:
        """1-based sheet row number of an entity, skipping the header."""
        for idx, row in enumerate(all_rows[1:], start=2):
            if row and row[0] == entity_id:
                return idx
        return None

    def _settle(self, account_id: Optional[str], delta: Decimal) -> None:
        """Apply a balance change to an account row; dangling ids are ignored."""
        if not account_id or not delta:
            return
        sheet = self._client.get_accounts_sheet()
        all_rows = sheet.get_all_values()
        idx = self._find_row(all_rows, account_id)
        if idx is None:
            return
        account = self._row_to_account(all_rows[idx - 1])
        balance_col = ACCOUNT_COLUMNS.index("balance") + 1
        sheet.update_cell(idx, balance_col, str(account.balance + delta))

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    async def list_records(
        self,
        owner_id: str,
        limit: int = DEFAULT_RECORD_LIMIT,
    ) -> list[LedgerRecord]:
        try:
            sheet = self._client.get_records_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header

            records = []
            for row in all_rows:
                if not row or not row[0] or _cell(row, 1) != owner_id:
                    continue
                try:
                    records.append(self._row_to_record(row))
                except Exception:
                    continue  # Skip malformed rows

            # Newest first
            records.sort(key=lambda r: r.created_at, reverse=True)
            return records[:limit]
        except Exception as e:
            raise StorageError(f"Failed to list records: {e}")

    async def insert_record(self, draft: RecordDraft) -> LedgerRecord:
        record = LedgerRecord(
            id=str(uuid4()),
            created_at=datetime.now(timezone.utc),
            **draft.model_dump(),
        )
        try:
            _append_once(self._client.get_records_sheet, self._record_to_row(record))
        except Exception as e:
            raise StorageError(f"Failed to insert record: {e}")

        # Settled once; a failure here leaves the written row in place
        try:
            self._settle(record.account_id, balance_effect(record.kind, record.amount))
        except Exception as e:
            raise StorageError(f"Record {record.id} saved but balance not settled: {e}")
        return record

    async def update_record(self, record_id: str, draft: RecordDraft) -> LedgerRecord:
        try:
            sheet = self._client.get_records_sheet()
            all_rows = sheet.get_all_values()
            idx = self._find_row(all_rows, record_id)
            if idx is None:
                raise NotFoundError(f"Record not found: {record_id}")

            old = self._row_to_record(all_rows[idx - 1])
            new = LedgerRecord(
                id=old.id,
                created_at=old.created_at,
                **draft.model_dump(),
            )
            sheet.update(range_name=f"A{idx}", values=[self._record_to_row(new)])

            self._settle(old.account_id, -balance_effect(old.kind, old.amount))
            self._settle(new.account_id, balance_effect(new.kind, new.amount))
            return new
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update record: {e}")

    async def delete_record(self, record_id: str) -> bool:
        try:
            sheet = self._client.get_records_sheet()
            all_rows = sheet.get_all_values()
            idx = self._find_row(all_rows, record_id)
            if idx is None:
                raise NotFoundError(f"Record not found: {record_id}")

            record = self._row_to_record(all_rows[idx - 1])
            sheet.delete_rows(idx)
            self._settle(record.account_id, -balance_effect(record.kind, record.amount))
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete record: {e}")

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def list_categories(self, owner_id: str) -> list[Category]:
        try:
            all_rows = self._client.get_categories_sheet().get_all_values()[1:]
            categories = [
                self._row_to_category(row)
                for row in all_rows
                if row and row[0] and _cell(row, 1) == owner_id
            ]
            return sorted(categories, key=lambda c: c.name)
        except Exception as e:
            raise StorageError(f"Failed to list categories: {e}")

    async def insert_category(
        self,
        owner_id: str,
        name: str,
        kind: EntryKind,
        target: Decimal,
    ) -> Category:
        category = Category(
            id=str(uuid4()),
            owner_id=owner_id,
            name=name,
            kind=kind,
            target=target,
        )
        try:
            _append_once(self._client.get_categories_sheet, self._category_to_row(category))
            return category
        except Exception as e:
            raise StorageError(f"Failed to insert category: {e}")

    async def delete_category(self, category_id: str) -> bool:
        return self._delete_row(self._client.get_categories_sheet, category_id, "Category")

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def list_accounts(self, owner_id: str) -> list[Account]:
        try:
            all_rows = self._client.get_accounts_sheet().get_all_values()[1:]
            accounts = [
                self._row_to_account(row)
                for row in all_rows
                if row and row[0] and _cell(row, 1) == owner_id
            ]
            return sorted(accounts, key=lambda a: a.name)
        except Exception as e:
            raise StorageError(f"Failed to list accounts: {e}")

    async def insert_account(
        self,
        owner_id: str,
        name: str,
        balance: Decimal,
    ) -> Account:
        account = Account(
            id=str(uuid4()),
            owner_id=owner_id,
            name=name,
            balance=balance,
        )
        try:
            _append_once(self._client.get_accounts_sheet, self._account_to_row(account))
            return account
        except Exception as e:
            raise StorageError(f"Failed to insert account: {e}")

    async def delete_account(self, account_id: str) -> bool:
        return self._delete_row(self._client.get_accounts_sheet, account_id, "Account")

    def _delete_row(self, get_sheet, entity_id: str, label: str) -> bool:
        try:
            sheet = get_sheet()
            idx = self._find_row(sheet.get_all_values(), entity_id)
            if idx is None:
                raise NotFoundError(f"{label} not found: {entity_id}")
            sheet.delete_rows(idx)
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete {label.lower()}: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        return AuditEvent(
            event_id=UUID(_cell(row, 0)),
            timestamp=datetime.fromisoformat(_cell(row, 1)),
            event_type=AuditEventType(_cell(row, 2)),
            severity=AuditSeverity(_cell(row, 3)),
            entity_type=_cell(row, 4) or None,
            entity_id=_cell(row, 5) or None,
            correlation_id=UUID(_cell(row, 6)) if _cell(row, 6) else None,
            description=_cell(row, 7),
            details=json.loads(_cell(row, 8)) if _cell(row, 8) else {},
            error_message=_cell(row, 9) or None,
            is_user_action=_cell(row, 10).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        all_rows = self._client.get_audit_sheet().get_all_values()[1:]
        events = []
        for row in all_rows:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        _append_once(self._client.get_audit_sheet, event.to_sheets_row())
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._read_events() if e.correlation_id == correlation_id]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
        entity_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._read_events()
                if entity_id is None or e.entity_id == entity_id
            ]
            # Sort newest first
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
