"""
Tests for the Google Sheets backend against an in-process fake
worksheet. No network calls are made.
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from tenacity import wait_none

from src.models.audit import AuditEventBuilder
from src.models.ledger import EntryKind, RecordDraft
from src.services.storage import NotFoundError, StorageError
from src.services.storage.google_sheets import (
    ACCOUNT_COLUMNS,
    AUDIT_COLUMNS,
    CATEGORY_COLUMNS,
    RECORD_COLUMNS,
    GoogleSheetsAuditStorage,
    GoogleSheetsLedgerStore,
    _append_once,
)


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the store."""

    def __init__(self, columns):
        self.rows = [list(columns)]
        self.range_writes = []

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def update_cell(self, row, col, value):
        self.rows[row - 1][col - 1] = str(value)

    def update(self, range_name=None, values=None, **kwargs):
        # Only single-row writes anchored at column A, e.g. "A3"
        self.range_writes.append(range_name)
        row = int(range_name[1:])
        for offset, values_row in enumerate(values):
            self.rows[row - 1 + offset] = [str(v) for v in values_row]

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:
    def __init__(self):
        self.accounts = FakeWorksheet(ACCOUNT_COLUMNS)
        self.categories = FakeWorksheet(CATEGORY_COLUMNS)
        self.records = FakeWorksheet(RECORD_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_accounts_sheet(self):
        return self.accounts

    def get_categories_sheet(self):
        return self.categories

    def get_records_sheet(self):
        return self.records

    def get_audit_sheet(self):
        return self.audit


def make_draft(amount, account_id, kind=EntryKind.EXPENSE, owner_id="u1"):
    return RecordDraft(
        amount=Decimal(str(amount)),
        kind=kind,
        category="Food",
        account_id=account_id,
        owner_id=owner_id,
    )


@pytest.fixture
def client():
    return FakeSheetsClient()


@pytest.fixture
def store(client):
    return GoogleSheetsLedgerStore(client)


class TestSheetsLedgerStore:
    """Ledger operations over worksheet rows."""

    @pytest.mark.asyncio
    async def test_account_round_trip(self, store, client):
        account = await store.insert_account("u1", "Cash", Decimal("100.50"))

        assert client.accounts.rows[1][0] == account.id
        accounts = await store.list_accounts("u1")
        assert accounts[0].balance == Decimal("100.50")
        assert await store.list_accounts("u2") == []

    @pytest.mark.asyncio
    async def test_record_insert_settles_balance(self, store):
        account = await store.insert_account("u1", "Cash", Decimal("100"))
        record = await store.insert_record(make_draft(30, account.id))

        accounts = await store.list_accounts("u1")
        assert accounts[0].balance == Decimal("70")

        records = await store.list_records("u1")
        assert [r.id for r in records] == [record.id]
        assert records[0].created_at == record.created_at

    @pytest.mark.asyncio
    async def test_update_record_resettles(self, store):
        account = await store.insert_account("u1", "Cash", Decimal("100"))
        record = await store.insert_record(make_draft(30, account.id))

        updated = await store.update_record(
            record.id, make_draft(10, account.id, kind=EntryKind.EARNING)
        )

        assert updated.id == record.id
        assert updated.kind == EntryKind.EARNING
        accounts = await store.list_accounts("u1")
        assert accounts[0].balance == Decimal("110")

    @pytest.mark.asyncio
    async def test_update_record_writes_row_in_one_call(self, store, client):
        record = await store.insert_record(make_draft(30, None))

        await store.update_record(record.id, make_draft(12, None))

        assert client.records.range_writes == ["A2"]
        assert client.records.rows[1][0] == record.id
        assert client.records.rows[1][3] == "12"
        assert len(client.records.rows) == 2

    @pytest.mark.asyncio
    async def test_failed_settle_does_not_duplicate_record(self, store, client):
        account = await store.insert_account("u1", "Cash", Decimal("100"))
        real_update_cell = client.accounts.update_cell
        failures = []

        def update_cell_failing_once(row, col, value):
            if not failures:
                failures.append(value)
                raise RuntimeError("quota exceeded")
            real_update_cell(row, col, value)

        client.accounts.update_cell = update_cell_failing_once

        with pytest.raises(StorageError):
            await store.insert_record(make_draft(40, account.id))

        assert len(await store.list_records("u1")) == 1
        assert failures == ["60"]
        accounts = await store.list_accounts("u1")
        assert accounts[0].balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_delete_record_reverses(self, store, client):
        account = await store.insert_account("u1", "Cash", Decimal("100"))
        record = await store.insert_record(make_draft(30, account.id))

        await store.delete_record(record.id)

        assert len(client.records.rows) == 1  # header only
        accounts = await store.list_accounts("u1")
        assert accounts[0].balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_missing_record_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            await store.update_record("nope", make_draft(1, "a1"))
        with pytest.raises(NotFoundError):
            await store.delete_record("nope")

    @pytest.mark.asyncio
    async def test_list_records_skips_malformed_rows(self, store, client):
        await store.insert_record(make_draft(5, "a1"))
        client.records.rows.append(["bad", "u1", "not-a-date", "x", "expense"])

        records = await store.list_records("u1")
        assert len(records) == 1

    @pytest.mark.asyncio
    async def test_categories(self, store):
        await store.insert_category("u1", "Rent", EntryKind.EXPENSE, Decimal("900"))
        food = await store.insert_category("u1", "Food", EntryKind.EXPENSE, Decimal("200"))

        categories = await store.list_categories("u1")
        assert [c.name for c in categories] == ["Food", "Rent"]
        assert categories[1].target == Decimal("900")

        await store.delete_category(food.id)
        assert [c.name for c in await store.list_categories("u1")] == ["Rent"]

    @pytest.mark.asyncio
    async def test_delete_missing_account(self, store):
        with pytest.raises(NotFoundError):
            await store.delete_account("nope")


class TestAppendOnce:
    """Row appends keyed by id."""

    def test_retry_after_landed_write_appends_once(self, client):
        sheet = client.records
        real_append = sheet.append_row
        calls = []

        def append_then_fail(values, value_input_option=None):
            calls.append(values[0])
            real_append(values, value_input_option)
            if len(calls) == 1:
                raise RuntimeError("connection reset")

        sheet.append_row = append_then_fail
        append = _append_once.retry_with(wait=wait_none())

        append(client.get_records_sheet, ["r1", "u1"])

        assert calls == ["r1"]
        assert [row[0] for row in sheet.rows[1:]] == ["r1"]

    def test_existing_id_is_not_appended(self, client):
        client.accounts.rows.append(["a1", "u1", "Cash", "5"])

        _append_once(client.get_accounts_sheet, ["a1", "u1", "Cash", "5"])

        assert len(client.accounts.rows) == 2


class TestSheetsAuditStorage:
    """Audit rows written and read back."""

    @pytest.mark.asyncio
    async def test_append_and_query(self, client):
        storage = GoogleSheetsAuditStorage(client)
        cid = uuid4()

        await storage.append_event(AuditEventBuilder.record_deleted("r1", cid))
        await storage.append_event(
            AuditEventBuilder.entity_changed("account", "a1", True, "Cash", uuid4())
        )

        events = await storage.get_events_by_correlation_id(cid)
        assert [e.entity_id for e in events] == ["r1"]

        recent = await storage.get_recent_events(entity_id="a1")
        assert recent[0].details == {"name": "Cash"}
        assert recent[0].is_user_action is True
