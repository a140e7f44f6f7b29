"""
Main Orchestrator for the Ledger

This module ties the components together into one session:
1. Session (auth provider -> AppState.user -> reload)
2. Mutations (guard -> confirm -> store -> reload)
3. Dashboard (snapshot -> aggregation engine)

DESIGN DECISION: One LedgerApp owns one AppState and runs every
handler behind a single asyncio.Lock. A slow reload can therefore
never land on top of a newer state; the next handler simply waits.

Auth callbacks arrive outside any handler, so they are scheduled as
tasks. Call ``settle()`` to wait for them.
"""

import asyncio
import inspect
from datetime import date, tzinfo
from typing import Any, Optional, Union

import structlog

from src.analytics import DashboardSummary, build_dashboard
from src.audit import AuditLogger, create_correlation_id
from src.config import get_settings
from src.models.ledger import EntryKind, User
from src.models.state import AppState, ViewName
from src.reconciliation import (
    ConfirmCallback,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    ReconciliationCoordinator,
)
from src.services.auth import (
    AuthOutcome,
    AuthService,
    InMemorySessionProvider,
    SessionProviderInterface,
    Subscription,
)
from src.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
)

logger = structlog.get_logger(__name__)


class LedgerApp:
    """
    A single user session over the ledger.

    Every public method runs one coordinator handler under the session
    lock and returns the resulting state.
    """

    def __init__(
        self,
        coordinator: ReconciliationCoordinator,
        auth_service: AuthService,
        audit_logger: Optional[AuditLogger] = None,
        tz: Optional[tzinfo] = None,
        unknown_account_label: str = "Unknown",
        today: Optional[date] = None,
    ):
        self._coordinator = coordinator
        self._auth = auth_service
        self._audit_logger = audit_logger
        self._tz = tz
        self._unknown_account_label = unknown_account_label

        self.state: AppState = coordinator.initial_state(today)
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()
        self._subscription: Optional[Subscription] = None

    @property
    def coordinator(self) -> ReconciliationCoordinator:
        return self._coordinator

    async def _apply(self, handler, *args: Any, **kwargs: Any) -> AppState:
        async with self._lock:
            result = handler(self.state, *args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            self.state = result
            return result

    async def _mutate(self, handler, *args: Any, **kwargs: Any) -> AppState:
        """
        Run a store-touching handler, showing ``loading`` while it runs.

        The handler still receives the state from before the flag was
        raised, so a skipped or declined mutation returns it unchanged.
        """
        async with self._lock:
            before = self.state
            self.state = before.model_copy(update={"loading": True})
            try:
                result = await handler(before, *args, **kwargs)
            except BaseException:
                self.state = before
                raise
            self.state = result
            return result

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def _on_auth_change(self, user: Optional[User]) -> None:
        task = asyncio.get_running_loop().create_task(
            self._apply(self._coordinator.handle_auth_change, user)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def start(self) -> AppState:
        """Pick up any existing session and start listening for changes."""
        user = await self._auth.provider.get_session()
        await self._apply(self._coordinator.handle_auth_change, user)
        if self._subscription is None:
            self._subscription = self._auth.provider.on_auth_state_change(self._on_auth_change)
        return self.state

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        await self.settle()

    async def settle(self) -> AppState:
        """Wait until every scheduled auth transition has been applied."""
        # Yield once so callbacks queued with call_soon get scheduled
        await asyncio.sleep(0)
        while self._pending:
            results = await asyncio.gather(*list(self._pending), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("auth_transition_failed", error=str(result))
                    if self._audit_logger:
                        await self._audit_logger.log_error(
                            error_type=type(result).__name__,
                            error_message=str(result),
                            correlation_id=create_correlation_id(),
                        )
        return self.state

    async def login(self, email: str, password: str) -> AuthOutcome:
        outcome = await self._auth.login(email, password)
        await self.settle()
        return outcome

    async def register(self, email: str, password: str) -> AuthOutcome:
        outcome = await self._auth.register(email, password)
        await self.settle()
        return outcome

    async def logout(self) -> AuthOutcome:
        outcome = await self._auth.logout()
        await self.settle()
        return outcome

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def refresh(self) -> AppState:
        return await self._mutate(self._coordinator.refresh)

    async def set_view(self, view: Union[ViewName, str]) -> AppState:
        return await self._apply(self._coordinator.set_view, view)

    async def set_date_range(self, start: date, end: date) -> AppState:
        return await self._apply(self._coordinator.set_date_range, start, end)

    async def update_form(self, **fields: Any) -> AppState:
        return await self._apply(self._coordinator.update_form, **fields)

    async def start_edit(self, record_id: str) -> AppState:
        return await self._apply(self._coordinator.start_edit, record_id)

    async def cancel_edit(self) -> AppState:
        return await self._apply(self._coordinator.cancel_edit)

    async def save_record(self) -> AppState:
        return await self._mutate(self._coordinator.save_record)

    async def delete_record(self, record_id: str) -> AppState:
        return await self._mutate(self._coordinator.delete_record, record_id)

    async def add_account(self, name: str, balance=None) -> AppState:
        return await self._mutate(self._coordinator.add_account, name, balance)

    async def delete_account(self, account_id: str) -> AppState:
        return await self._mutate(self._coordinator.delete_account, account_id)

    async def add_category(
        self,
        name: str,
        target=None,
        kind: Union[EntryKind, str] = EntryKind.EXPENSE,
    ) -> AppState:
        return await self._mutate(self._coordinator.add_category, name, target, kind)

    async def delete_category(self, category_id: str) -> AppState:
        return await self._mutate(self._coordinator.delete_category, category_id)

    # -------------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------------

    def dashboard(self) -> DashboardSummary:
        """Dashboard figures for the current snapshot and date range."""
        return build_dashboard(
            self.state.snapshot,
            self.state.date_range,
            tz=self._tz,
            unknown_account_label=self._unknown_account_label,
        )


def create_app_components(
    use_storage: bool = True,
    confirm: Optional[ConfirmCallback] = None,
    session_provider: Optional[SessionProviderInterface] = None,
    tz: Optional[tzinfo] = None,
) -> LedgerApp:
    """
    Factory function to create a fully wired LedgerApp.

    Args:
        use_storage: Whether to use the configured storage backend.
                    Set to False for an in-memory ledger.
        confirm: Yes/no prompt used before deleting a record
        session_provider: Defaults to the in-memory provider
        tz: Time zone for calendar-day bucketing (process-local if None)

    Returns:
        LedgerApp, not yet started
    """
    settings = get_settings()
    ledger_settings = settings.ledger

    store: LedgerStoreInterface = InMemoryLedgerStore()
    audit_storage: AuditStorageInterface = InMemoryAuditStorage()

    if use_storage and ledger_settings.storage_backend == "google_sheets":
        try:
            from src.services.storage.google_sheets import (
                GoogleSheetsAuditStorage,
                GoogleSheetsClient,
                GoogleSheetsLedgerStore,
            )

            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsLedgerStore(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))

    audit_logger = AuditLogger(audit_storage)

    if ledger_settings.view_state_path:
        view_store = JsonFileKeyValueStore(ledger_settings.view_state_path)
    else:
        view_store = InMemoryKeyValueStore()

    coordinator = ReconciliationCoordinator(
        store=store,
        audit_logger=audit_logger,
        confirm=confirm,
        view_store=view_store,
        fetch_limit=ledger_settings.record_fetch_limit,
        default_range_days=ledger_settings.default_range_days,
    )

    provider = session_provider or InMemorySessionProvider(
        min_password_length=settings.auth.min_password_length,
    )

    return LedgerApp(
        coordinator=coordinator,
        auth_service=AuthService(provider, audit_logger),
        audit_logger=audit_logger,
        tz=tz,
        unknown_account_label=ledger_settings.unknown_account_label,
    )
