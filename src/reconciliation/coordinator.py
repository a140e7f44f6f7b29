"""
Reconciliation Coordinator

Defines what happens around every ledger mutation so derived figures
never mix stale and fresh data.

PROTOCOL:
1. Guard    - missing amount/user/account means do nothing at all
2. Confirm  - deletes require an explicit "yes"; "no" aborts silently
3. Mutate   - one store call (insert, full-replacement update, delete)
4. Reload   - on success, re-fetch ALL three collections

DESIGN DECISION: Step 4 is a full invalidate-and-reload, never an
optimistic local patch. Account balances are settled by the store, so
only the store knows the post-mutation balance.

A store error at step 3 skips step 4. The error is logged and left in
``last_error``; the rest of the state stays as it was before the call
(including edit mode). Nothing is retried.

Every handler takes an AppState and returns a new one. The coordinator
holds no per-session state of its own.
"""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from src.audit import AuditLogger, create_correlation_id
from src.models.ledger import DateRange, EntryKind, LedgerSnapshot, User
from src.models.state import AppState, RecordForm, ViewName, default_date_range
from src.reconciliation.view_store import (
    CURRENT_VIEW_KEY,
    InMemoryKeyValueStore,
    KeyValueStoreInterface,
)
from src.services.storage import (
    DEFAULT_RECORD_LIMIT,
    LedgerStoreInterface,
    StorageError,
)
from src.validation import RecordValidator, parse_amount

logger = structlog.get_logger(__name__)

DELETE_CONFIRMATION_MESSAGE = (
    "Are you sure? This will permanently settle the balance back to your account."
)

ConfirmCallback = Callable[[str], bool]


class ReconciliationCoordinator:
    """
    Sequences mutations against the store and reloads afterwards.

    Args:
        store: The external ledger store
        audit_logger: Where mutations, skips and failures are recorded
        confirm: Synchronous yes/no prompt used before deletes. Without
            one, every delete is treated as declined.
        view_store: Remembers the last viewed screen
        validator: Record guard (defaults to RecordValidator)
        fetch_limit: How many of the newest records each reload fetches
        default_range_days: Length of the initial analytics range
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        confirm: Optional[ConfirmCallback] = None,
        view_store: Optional[KeyValueStoreInterface] = None,
        validator: Optional[RecordValidator] = None,
        fetch_limit: int = DEFAULT_RECORD_LIMIT,
        default_range_days: int = 30,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._confirm = confirm
        self._view_store = view_store or InMemoryKeyValueStore()
        self._validator = validator or RecordValidator()
        self._fetch_limit = fetch_limit
        self._default_range_days = default_range_days

    # -------------------------------------------------------------------------
    # State construction and pure transitions
    # -------------------------------------------------------------------------

    def initial_state(self, today: Optional[date] = None) -> AppState:
        """Signed-out state on the last viewed screen."""
        stored = self._view_store.get(CURRENT_VIEW_KEY)
        try:
            view = ViewName(stored) if stored else ViewName.DASHBOARD
        except ValueError:
            view = ViewName.DASHBOARD

        return AppState(
            view=view,
            date_range=default_date_range(today, self._default_range_days),
        )

    def set_view(self, state: AppState, view: Union[ViewName, str]) -> AppState:
        view = ViewName(view)
        self._view_store.set(CURRENT_VIEW_KEY, view.value)
        return state.model_copy(update={"view": view})

    def set_date_range(self, state: AppState, start: date, end: date) -> AppState:
        # start > end is kept as given; it just selects nothing
        return state.model_copy(update={"date_range": DateRange(start=start, end=end)})

    def update_form(self, state: AppState, **fields: Any) -> AppState:
        form = RecordForm.model_validate({**state.form.model_dump(), **fields})
        return state.model_copy(update={"form": form})

    def start_edit(self, state: AppState, record_id: str) -> AppState:
        """
        Idle -> Editing: load a record into the form.

        The record is not locked; it may still be changed or deleted by
        someone else while the edit is open.
        """
        record = state.snapshot.find_record(record_id)
        if record is None:
            return state

        form = RecordForm(
            amount=str(record.amount),
            kind=record.kind,
            category=record.category,
            account_id=record.account_id,
            note=record.note or "",
        )
        return state.model_copy(update={"editing_id": record.id, "form": form})

    def cancel_edit(self, state: AppState) -> AppState:
        """Editing -> Idle, discarding the typed amount and note."""
        return state.model_copy(update={"editing_id": None, "form": state.form.cleared()})

    # -------------------------------------------------------------------------
    # Reload
    # -------------------------------------------------------------------------

    async def refresh(
        self,
        state: AppState,
        correlation_id: Optional[UUID] = None,
    ) -> AppState:
        """
        Re-fetch accounts, categories and records and rebuild the snapshot.

        On failure the previous snapshot is kept and the error recorded.
        """
        if state.user is None:
            return state.model_copy(update={"loading": False}) if state.loading else state

        owner_id = state.user.id
        try:
            accounts, categories, records = await asyncio.gather(
                self._store.list_accounts(owner_id),
                self._store.list_categories(owner_id),
                self._store.list_records(owner_id, limit=self._fetch_limit),
            )
        except StorageError as e:
            await self._store_failed("refresh", e, correlation_id)
            return state.model_copy(update={"loading": False, "last_error": str(e)})

        snapshot = LedgerSnapshot(
            accounts=tuple(accounts),
            categories=tuple(categories),
            records=tuple(records),
            fetched_at=datetime.now(timezone.utc),
        )

        # Preselect the first account/category when nothing is chosen yet
        defaults = {}
        if not state.form.account_id and accounts:
            defaults["account_id"] = accounts[0].id
        if not state.form.category and categories:
            defaults["category"] = categories[0].name

        if self._audit_logger:
            await self._audit_logger.log_ledger_refreshed(
                accounts=len(accounts),
                categories=len(categories),
                records=len(records),
                correlation_id=correlation_id,
            )

        return state.model_copy(update={
            "snapshot": snapshot,
            "form": state.form.model_copy(update=defaults),
            "loading": False,
            "last_error": None,
        })

    async def handle_auth_change(self, state: AppState, user: Optional[User]) -> AppState:
        """
        Apply a session transition reported by the session provider.

        Signing in (or switching user) loads everything; signing out
        drops all user data but keeps the screen and date range.
        """
        previous = state.user

        if user is None:
            if previous is None:
                return state
            return AppState(view=state.view, date_range=state.date_range)

        if previous is None:
            return await self.refresh(state.model_copy(update={"user": user}))

        if previous.id != user.id:
            fresh = AppState(user=user, view=state.view, date_range=state.date_range)
            return await self.refresh(fresh)

        return state.model_copy(update={"user": user})

    # -------------------------------------------------------------------------
    # Record mutations
    # -------------------------------------------------------------------------

    async def save_record(self, state: AppState) -> AppState:
        """
        Create (Idle) or fully replace (Editing) a record, then reload.

        Missing amount, user or account makes this a silent no-op.
        """
        correlation_id = create_correlation_id()
        editing_id = state.editing_id
        operation = "update_record" if editing_id else "create_record"

        result = self._validator.validate(state.form, state.user, state.snapshot)
        if not result.is_valid:
            await self._skipped(operation, [i.field for i in result.issues], correlation_id)
            return state

        for warning in result.warnings:
            logger.info("record_warning", operation=operation, warning=warning)

        draft = result.draft
        try:
            if editing_id:
                record = await self._store.update_record(editing_id, draft)
            else:
                record = await self._store.insert_record(draft)
        except StorageError as e:
            await self._store_failed(operation, e, correlation_id)
            return state.model_copy(update={"loading": False, "last_error": str(e)})

        if self._audit_logger:
            await self._audit_logger.log_record_saved(
                record_id=record.id,
                kind=record.kind.value,
                amount=str(record.amount),
                updated=editing_id is not None,
                correlation_id=correlation_id,
            )

        saved = state.model_copy(update={
            "editing_id": None,
            "form": state.form.cleared(),
            "loading": True,
        })
        return await self.refresh(saved, correlation_id)

    async def delete_record(self, state: AppState, record_id: str) -> AppState:
        """
        Delete a record after an explicit confirmation, then reload.

        A declined (or unavailable) confirmation aborts without an error.
        """
        correlation_id = create_correlation_id()
        if state.user is None:
            await self._skipped("delete_record", ["owner"], correlation_id)
            return state

        if not self._confirmed(DELETE_CONFIRMATION_MESSAGE):
            if self._audit_logger:
                await self._audit_logger.log_deletion_declined(record_id, correlation_id)
            return state

        try:
            await self._store.delete_record(record_id)
        except StorageError as e:
            await self._store_failed("delete_record", e, correlation_id)
            return state.model_copy(update={"loading": False, "last_error": str(e)})

        if self._audit_logger:
            await self._audit_logger.log_record_deleted(record_id, correlation_id)

        return await self.refresh(state.model_copy(update={"loading": True}), correlation_id)

    # -------------------------------------------------------------------------
    # Accounts and categories
    # -------------------------------------------------------------------------

    async def add_account(
        self,
        state: AppState,
        name: str,
        balance: Union[str, Decimal, int, float, None] = None,
    ) -> AppState:
        """Create an account with an opening balance (unparsable -> 0)."""
        name = (name or "").strip()
        missing = [f for f, ok in (("name", name), ("owner", state.user)) if not ok]
        correlation_id = create_correlation_id()
        if missing:
            await self._skipped("add_account", missing, correlation_id)
            return state

        opening = parse_amount(str(balance)) if balance is not None else None

        async def insert():
            return await self._store.insert_account(
                state.user.id, name, opening if opening is not None else Decimal("0")
            )

        return await self._entity_mutation(state, "account", True, insert, correlation_id, name)

    async def delete_account(self, state: AppState, account_id: str) -> AppState:
        """Delete an account. Its records stay and show as "Unknown"."""
        correlation_id = create_correlation_id()
        if state.user is None:
            await self._skipped("delete_account", ["owner"], correlation_id)
            return state

        async def delete():
            await self._store.delete_account(account_id)
            return account_id

        return await self._entity_mutation(state, "account", False, delete, correlation_id)

    async def add_category(
        self,
        state: AppState,
        name: str,
        target: Union[str, Decimal, int, float, None] = None,
        kind: Union[EntryKind, str] = EntryKind.EXPENSE,
    ) -> AppState:
        """
        Create a category; an empty, unparsable or negative target means no goal.

        A missing name or user, or an unknown kind, skips the mutation.
        """
        name = (name or "").strip()
        missing = [f for f, ok in (("name", name), ("owner", state.user)) if not ok]
        try:
            kind = EntryKind(kind)
        except ValueError:
            missing.append("kind")
        correlation_id = create_correlation_id()
        if missing:
            await self._skipped("add_category", missing, correlation_id)
            return state

        goal = parse_amount(str(target)) if target is not None else None
        if goal is None or goal < 0:
            goal = Decimal("0")

        async def insert():
            return await self._store.insert_category(
                state.user.id, name, kind, goal
            )

        return await self._entity_mutation(state, "category", True, insert, correlation_id, name)

    async def delete_category(self, state: AppState, category_id: str) -> AppState:
        """Delete a category. Records keep their category name."""
        correlation_id = create_correlation_id()
        if state.user is None:
            await self._skipped("delete_category", ["owner"], correlation_id)
            return state

        async def delete():
            await self._store.delete_category(category_id)
            return category_id

        return await self._entity_mutation(state, "category", False, delete, correlation_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _confirmed(self, message: str) -> bool:
        if self._confirm is None:
            return False
        return bool(self._confirm(message))

    async def _entity_mutation(
        self,
        state: AppState,
        entity_type: str,
        created: bool,
        action,
        correlation_id: UUID,
        name: Optional[str] = None,
    ) -> AppState:
        operation = f"{'add' if created else 'delete'}_{entity_type}"
        try:
            result = await action()
        except StorageError as e:
            await self._store_failed(operation, e, correlation_id)
            return state.model_copy(update={"loading": False, "last_error": str(e)})

        if self._audit_logger:
            await self._audit_logger.log_entity_changed(
                entity_type=entity_type,
                entity_id=result if isinstance(result, str) else result.id,
                created=created,
                correlation_id=correlation_id,
                name=name,
            )

        return await self.refresh(state.model_copy(update={"loading": True}), correlation_id)

    async def _skipped(self, operation: str, missing: list[str], correlation_id: UUID) -> None:
        logger.debug("mutation_skipped", operation=operation, missing=missing)
        if self._audit_logger:
            await self._audit_logger.log_mutation_skipped(operation, missing, correlation_id)

    async def _store_failed(
        self,
        operation: str,
        error: StorageError,
        correlation_id: Optional[UUID],
    ) -> None:
        logger.error("store_operation_failed", operation=operation, error=str(error))
        if self._audit_logger:
            await self._audit_logger.log_store_error(operation, str(error), correlation_id)
