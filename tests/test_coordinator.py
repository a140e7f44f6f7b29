"""
Tests for the ReconciliationCoordinator.

Every test drives the coordinator against the in-memory store, so the
balance settlement and the full reload after each mutation are real.
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from itertools import count

from src.audit import AuditLogger
from src.models.audit import AuditEventType
from src.models.ledger import EntryKind, User
from src.models.state import AppState, EditMode, ViewName
from src.reconciliation import (
    CURRENT_VIEW_KEY,
    DELETE_CONFIRMATION_MESSAGE,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    ReconciliationCoordinator,
)
from src.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    StorageError,
)

USER = User(id="u1", email="ana@example.com")
OTHER = User(id="u2", email="bo@example.com")
START = datetime(2024, 5, 1, 9, tzinfo=timezone.utc)


def ticking_clock():
    ticks = count()
    return lambda: START + timedelta(minutes=next(ticks))


class FlakyStore(InMemoryLedgerStore):
    """In-memory store whose reads can be switched off."""

    def __init__(self):
        super().__init__(clock=ticking_clock())
        self.fail_reads = False

    async def list_accounts(self, owner_id):
        if self.fail_reads:
            raise StorageError("store unavailable")
        return await super().list_accounts(owner_id)


class Prompt:
    """Records confirmation questions and answers with a fixed reply."""

    def __init__(self, answer: bool):
        self.answer = answer
        self.asked = []

    def __call__(self, message: str) -> bool:
        self.asked.append(message)
        return self.answer


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def prompt():
    return Prompt(answer=True)


@pytest.fixture
def coordinator(store, audit_storage, prompt):
    return ReconciliationCoordinator(
        store=store,
        audit_logger=AuditLogger(audit_storage),
        confirm=prompt,
    )


async def signed_in(coordinator, store, balance="100"):
    """A state for USER with one account and one expense category."""
    await store.insert_account(USER.id, "Cash", Decimal(balance))
    await store.insert_category(USER.id, "Food", EntryKind.EXPENSE, Decimal("200"))
    return await coordinator.handle_auth_change(coordinator.initial_state(), USER)


async def with_record(coordinator, state, amount="40"):
    state = coordinator.update_form(state, amount=amount)
    return await coordinator.save_record(state)


class TestRefresh:
    """Tests for the full reload."""

    @pytest.mark.asyncio
    async def test_sign_in_loads_everything(self, coordinator, store):
        state = await signed_in(coordinator, store)
        assert state.user == USER
        assert [a.name for a in state.snapshot.accounts] == ["Cash"]
        assert [c.name for c in state.snapshot.categories] == ["Food"]
        assert state.snapshot.fetched_at is not None

    @pytest.mark.asyncio
    async def test_refresh_preselects_first_account_and_category(self, coordinator, store):
        state = await signed_in(coordinator, store)
        assert state.form.account_id == state.snapshot.accounts[0].id
        assert state.form.category == "Food"

    @pytest.mark.asyncio
    async def test_refresh_keeps_existing_selection(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = coordinator.update_form(state, category="Rent")
        state = await coordinator.refresh(state)
        assert state.form.category == "Rent"

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_snapshot(self, coordinator, store, audit_storage):
        """A failed reload records the error and leaves the old data in place."""
        state = await signed_in(coordinator, store)
        store.fail_reads = True

        refreshed = await coordinator.refresh(state)

        assert refreshed.snapshot == state.snapshot
        assert refreshed.last_error == "store unavailable"
        types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert AuditEventType.STORE_ERROR in types

    @pytest.mark.asyncio
    async def test_refresh_without_user_is_noop(self, coordinator):
        state = coordinator.initial_state()
        assert await coordinator.refresh(state) is state

    @pytest.mark.asyncio
    async def test_refresh_without_user_clears_loading(self, coordinator):
        state = coordinator.initial_state().model_copy(update={"loading": True})
        result = await coordinator.refresh(state)
        assert result.loading is False
        assert result.user is None

    @pytest.mark.asyncio
    async def test_fetch_window_limits_records(self, store):
        coordinator = ReconciliationCoordinator(store=store, fetch_limit=2)
        state = await signed_in(coordinator, store)
        for amount in ("1", "2", "3"):
            state = await with_record(coordinator, state, amount)
        assert [r.amount for r in state.snapshot.records] == [Decimal("3"), Decimal("2")]


class TestSaveRecord:
    """Create and full-replacement update."""

    @pytest.mark.asyncio
    async def test_create_then_reload(self, coordinator, store):
        """A saved record shows up in the reloaded snapshot with the settled balance."""
        state = await signed_in(coordinator, store)
        state = await with_record(coordinator, state, "40")

        assert len(state.snapshot.records) == 1
        assert state.snapshot.records[0].amount == Decimal("40")
        assert state.snapshot.accounts[0].balance == Decimal("60")

    @pytest.mark.asyncio
    async def test_create_clears_amount_and_note(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = coordinator.update_form(state, amount="12", note="lunch")
        state = await coordinator.save_record(state)

        assert state.form.amount == ""
        assert state.form.note == ""
        assert state.form.category == "Food"
        assert state.mode == EditMode.IDLE
        assert state.loading is False

    @pytest.mark.asyncio
    async def test_earning_raises_balance(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = coordinator.update_form(state, amount="25", kind=EntryKind.EARNING)
        state = await coordinator.save_record(state)
        assert state.snapshot.accounts[0].balance == Decimal("125")

    @pytest.mark.asyncio
    async def test_missing_amount_does_nothing(self, coordinator, store, audit_storage):
        """The guard skips silently: no store call, no error, same state."""
        state = await signed_in(coordinator, store)
        result = await coordinator.save_record(state)

        assert result is state
        assert await store.list_records(USER.id) == []
        types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert AuditEventType.MUTATION_SKIPPED in types

    @pytest.mark.asyncio
    async def test_missing_user_does_nothing(self, coordinator, store):
        state = coordinator.update_form(coordinator.initial_state(), amount="10", account_id="a1")
        assert await coordinator.save_record(state) is state
        assert await store.list_records(USER.id) == []

    @pytest.mark.asyncio
    async def test_missing_account_does_nothing(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = coordinator.update_form(state, amount="10", account_id=None)
        assert await coordinator.save_record(state) is state

    @pytest.mark.asyncio
    async def test_update_replaces_record(self, coordinator, store):
        """Editing replaces every field and resettles the balance."""
        state = await signed_in(coordinator, store)
        state = await with_record(coordinator, state, "40")
        record_id = state.snapshot.records[0].id

        state = coordinator.start_edit(state, record_id)
        state = coordinator.update_form(state, amount="10", note="fixed")
        state = await coordinator.save_record(state)

        record = state.snapshot.records[0]
        assert record.id == record_id
        assert record.amount == Decimal("10")
        assert record.note == "fixed"
        assert state.snapshot.accounts[0].balance == Decimal("90")
        assert state.mode == EditMode.IDLE

    @pytest.mark.asyncio
    async def test_update_of_deleted_record_stays_editing(self, coordinator, store):
        """The store error is surfaced in state and the form is kept."""
        state = await signed_in(coordinator, store)
        state = await with_record(coordinator, state, "40")
        record_id = state.snapshot.records[0].id

        state = coordinator.start_edit(state, record_id)
        state = coordinator.update_form(state, amount="15")
        await store.delete_record(record_id)

        result = await coordinator.save_record(state)

        assert result.mode == EditMode.EDITING
        assert result.editing_id == record_id
        assert result.form.amount == "15"
        assert "not found" in result.last_error
        # No reload happened; the stale record is still shown
        assert result.snapshot == state.snapshot


class TestDeleteRecord:
    """Deletion needs an explicit yes."""

    @pytest.mark.asyncio
    async def test_confirmed_delete(self, coordinator, store, prompt):
        state = await signed_in(coordinator, store)
        state = await with_record(coordinator, state, "40")
        record_id = state.snapshot.records[0].id

        state = await coordinator.delete_record(state, record_id)

        assert prompt.asked == [DELETE_CONFIRMATION_MESSAGE]
        assert state.snapshot.records == ()
        assert state.snapshot.accounts[0].balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_declined_delete(self, coordinator, store, prompt, audit_storage):
        """Answering no leaves the store and state untouched."""
        state = await signed_in(coordinator, store)
        state = await with_record(coordinator, state, "40")
        record_id = state.snapshot.records[0].id
        prompt.answer = False

        result = await coordinator.delete_record(state, record_id)

        assert result is state
        assert len(await store.list_records(USER.id)) == 1
        assert result.last_error is None
        types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert AuditEventType.DELETION_DECLINED in types

    @pytest.mark.asyncio
    async def test_no_prompt_means_declined(self, store):
        coordinator = ReconciliationCoordinator(store=store)
        state = await signed_in(coordinator, store)
        state = await with_record(coordinator, state, "40")

        await coordinator.delete_record(state, state.snapshot.records[0].id)

        assert len(await store.list_records(USER.id)) == 1

    @pytest.mark.asyncio
    async def test_delete_missing_record_sets_error(self, coordinator, store):
        state = await signed_in(coordinator, store)
        result = await coordinator.delete_record(state, "missing")
        assert "not found" in result.last_error

    @pytest.mark.asyncio
    async def test_signed_out_delete_is_skipped(self, coordinator, store, prompt, audit_storage):
        """Without a user nothing is asked, deleted or reloaded."""
        state = await signed_in(coordinator, store)
        state = await with_record(coordinator, state, "40")
        record_id = state.snapshot.records[0].id
        signed_out = await coordinator.handle_auth_change(state, None)

        result = await coordinator.delete_record(signed_out, record_id)

        assert result is signed_out
        assert result.loading is False
        assert prompt.asked == []
        assert len(await store.list_records(USER.id)) == 1
        types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert AuditEventType.MUTATION_SKIPPED in types


class TestEditStateMachine:
    """Idle <-> Editing transitions."""

    @pytest.mark.asyncio
    async def test_start_edit_loads_form(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = coordinator.update_form(state, amount="40", note="groceries")
        state = await coordinator.save_record(state)
        record = state.snapshot.records[0]

        state = coordinator.start_edit(state, record.id)

        assert state.mode == EditMode.EDITING
        assert state.form.amount == "40"
        assert state.form.note == "groceries"
        assert state.form.account_id == record.account_id

    @pytest.mark.asyncio
    async def test_cancel_edit(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = await with_record(coordinator, state, "40")
        state = coordinator.start_edit(state, state.snapshot.records[0].id)

        state = coordinator.cancel_edit(state)

        assert state.mode == EditMode.IDLE
        assert state.form.amount == ""

    def test_start_edit_unknown_record(self, coordinator):
        state = coordinator.initial_state()
        assert coordinator.start_edit(state, "missing") is state


class TestAuthTransitions:
    """Session changes reset or reload the state."""

    @pytest.mark.asyncio
    async def test_sign_out_clears_user_data(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = coordinator.set_view(state, ViewName.ACCOUNTS)
        state = coordinator.set_date_range(state, date(2024, 1, 1), date(2024, 1, 31))

        state = await coordinator.handle_auth_change(state, None)

        assert state.user is None
        assert state.snapshot.accounts == ()
        assert state.form.account_id is None
        assert state.view == ViewName.ACCOUNTS
        assert state.date_range.start == date(2024, 1, 1)

    @pytest.mark.asyncio
    async def test_switching_user_loads_their_data(self, coordinator, store):
        state = await signed_in(coordinator, store)
        await store.insert_account(OTHER.id, "Savings", Decimal("5"))

        state = await coordinator.handle_auth_change(state, OTHER)

        assert state.user == OTHER
        assert [a.name for a in state.snapshot.accounts] == ["Savings"]
        assert state.form.category == ""

    @pytest.mark.asyncio
    async def test_same_user_does_not_reload(self, coordinator, store):
        state = await signed_in(coordinator, store)
        await store.insert_account(USER.id, "Bank", Decimal("0"))

        state = await coordinator.handle_auth_change(state, USER)

        assert len(state.snapshot.accounts) == 1


class TestAccountsAndCategories:
    """Account and category mutations reload like records do."""

    @pytest.mark.asyncio
    async def test_add_account_with_balance(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = await coordinator.add_account(state, "Bank", "250.75")
        bank = next(a for a in state.snapshot.accounts if a.name == "Bank")
        assert bank.balance == Decimal("250.75")

    @pytest.mark.asyncio
    async def test_add_account_unparsable_balance_is_zero(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = await coordinator.add_account(state, "Bank", "lots")
        bank = next(a for a in state.snapshot.accounts if a.name == "Bank")
        assert bank.balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_add_account_without_name_does_nothing(self, coordinator, store):
        state = await signed_in(coordinator, store)
        assert await coordinator.add_account(state, "   ", "10") is state

    @pytest.mark.asyncio
    async def test_delete_account_leaves_records_dangling(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = await with_record(coordinator, state, "40")
        account_id = state.snapshot.accounts[0].id

        state = await coordinator.delete_account(state, account_id)

        assert state.snapshot.accounts == ()
        assert state.snapshot.records[0].account_id == account_id

    @pytest.mark.asyncio
    async def test_add_category_target_rules(self, coordinator, store):
        """Empty, unparsable and negative targets all mean no goal."""
        state = await signed_in(coordinator, store)
        state = await coordinator.add_category(state, "Rent", "900")
        state = await coordinator.add_category(state, "Gifts", "-5")
        state = await coordinator.add_category(state, "Salary", None, EntryKind.EARNING)

        by_name = {c.name: c for c in state.snapshot.categories}
        assert by_name["Rent"].target == Decimal("900")
        assert by_name["Gifts"].target == Decimal("0")
        assert by_name["Salary"].kind == EntryKind.EARNING

    @pytest.mark.asyncio
    async def test_delete_category_keeps_record_names(self, coordinator, store):
        state = await signed_in(coordinator, store)
        state = await with_record(coordinator, state, "40")
        category_id = state.snapshot.categories[0].id

        state = await coordinator.delete_category(state, category_id)

        assert state.snapshot.categories == ()
        assert state.snapshot.records[0].category == "Food"

    @pytest.mark.asyncio
    async def test_delete_missing_account_sets_error(self, coordinator, store):
        state = await signed_in(coordinator, store)
        result = await coordinator.delete_account(state, "missing")
        assert "not found" in result.last_error

    @pytest.mark.asyncio
    async def test_signed_out_entity_deletes_are_skipped(self, coordinator, store, audit_storage):
        state = await signed_in(coordinator, store)
        account_id = state.snapshot.accounts[0].id
        category_id = state.snapshot.categories[0].id
        signed_out = await coordinator.handle_auth_change(state, None)

        assert await coordinator.delete_account(signed_out, account_id) is signed_out
        assert await coordinator.delete_category(signed_out, category_id) is signed_out

        assert len(await store.list_accounts(USER.id)) == 1
        assert len(await store.list_categories(USER.id)) == 1
        skipped = [
            e for e in await audit_storage.get_recent_events()
            if e.event_type == AuditEventType.MUTATION_SKIPPED
        ]
        assert len(skipped) == 2

    @pytest.mark.asyncio
    async def test_add_category_unknown_kind_does_nothing(self, coordinator, store):
        state = await signed_in(coordinator, store)

        result = await coordinator.add_category(state, "Gifts", "10", "bogus")

        assert result is state
        assert [c.name for c in await store.list_categories(USER.id)] == ["Food"]


class TestViewState:
    """The last viewed screen survives a restart through the key-value store."""

    def test_set_view_persists(self, store):
        view_store = InMemoryKeyValueStore()
        coordinator = ReconciliationCoordinator(store=store, view_store=view_store)

        state = coordinator.set_view(coordinator.initial_state(), "categories")

        assert state.view == ViewName.CATEGORIES
        assert view_store.get(CURRENT_VIEW_KEY) == "categories"

    def test_initial_state_reads_view(self, store):
        view_store = InMemoryKeyValueStore({CURRENT_VIEW_KEY: "accounts"})
        coordinator = ReconciliationCoordinator(store=store, view_store=view_store)
        assert coordinator.initial_state().view == ViewName.ACCOUNTS

    def test_unknown_stored_view_falls_back(self, store):
        view_store = InMemoryKeyValueStore({CURRENT_VIEW_KEY: "settings"})
        coordinator = ReconciliationCoordinator(store=store, view_store=view_store)
        assert coordinator.initial_state().view == ViewName.DASHBOARD

    def test_initial_date_range(self, store):
        coordinator = ReconciliationCoordinator(store=store, default_range_days=7)
        state = coordinator.initial_state(today=date(2024, 5, 8))
        assert state.date_range.start == date(2024, 5, 1)
        assert state.date_range.end == date(2024, 5, 8)

    def test_inverted_date_range_is_kept(self, store):
        coordinator = ReconciliationCoordinator(store=store)
        state = coordinator.set_date_range(
            coordinator.initial_state(), date(2024, 2, 1), date(2024, 1, 1)
        )
        assert state.date_range.start > state.date_range.end


class TestInitialState:

    def test_signed_out(self, coordinator):
        state = coordinator.initial_state()
        assert isinstance(state, AppState)
        assert not state.is_signed_in


class TestJsonFileKeyValueStore:
    """The file-backed view store used when a path is configured."""

    def test_round_trip(self, tmp_path):
        path = tmp_path / "state" / "view.json"
        JsonFileKeyValueStore(path).set(CURRENT_VIEW_KEY, "accounts")
        assert JsonFileKeyValueStore(path).get(CURRENT_VIEW_KEY) == "accounts"

    def test_missing_or_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "view.json"
        assert JsonFileKeyValueStore(path).get(CURRENT_VIEW_KEY) is None
        path.write_text("{not json", encoding="utf-8")
        assert JsonFileKeyValueStore(path).get(CURRENT_VIEW_KEY) is None
        path.write_bytes(b"\xff\xfe\x00garbage")
        assert JsonFileKeyValueStore(path).get(CURRENT_VIEW_KEY) is None

    def test_directory_path_reads_empty(self, tmp_path):
        assert JsonFileKeyValueStore(tmp_path).get(CURRENT_VIEW_KEY) is None
