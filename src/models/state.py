"""
Application State

DESIGN DECISION: View state is an explicit value, not ambient globals.
Every coordinator handler receives an AppState and returns a new one.
The models are frozen; changes go through model_copy(update=...).
"""

from datetime import date, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.models.ledger import DateRange, EntryKind, LedgerSnapshot, User


class ViewName(str, Enum):
    """Screens the user can be on."""
    DASHBOARD = "dashboard"
    ACCOUNTS = "accounts"
    CATEGORIES = "categories"


class EditMode(str, Enum):
    IDLE = "idle"
    EDITING = "editing"


class RecordForm(BaseModel):
    """
    Raw contents of the record input form.

    The amount is kept as typed; it is parsed only when saving.
    """
    model_config = ConfigDict(frozen=True)

    amount: str = ""
    kind: EntryKind = EntryKind.EXPENSE
    category: str = ""
    account_id: Optional[str] = None
    note: str = ""

    def cleared(self) -> "RecordForm":
        """Form after a save or cancel: amount and note reset, selections kept."""
        return self.model_copy(update={"amount": "", "note": ""})


def default_date_range(today: Optional[date] = None, days: int = 30) -> DateRange:
    """Last ``days`` days ending today."""
    today = today or date.today()
    return DateRange(start=today - timedelta(days=days), end=today)


class AppState(BaseModel):
    """Everything a screen needs, passed to and returned from each handler."""
    model_config = ConfigDict(frozen=True)

    user: Optional[User] = None
    view: ViewName = ViewName.DASHBOARD
    snapshot: LedgerSnapshot = Field(default_factory=LedgerSnapshot)
    form: RecordForm = Field(default_factory=RecordForm)
    editing_id: Optional[str] = None
    date_range: DateRange = Field(default_factory=default_date_range)

    # Advisory only: nothing checks it before starting a mutation
    loading: bool = False
    last_error: Optional[str] = None

    @property
    def mode(self) -> EditMode:
        return EditMode.EDITING if self.editing_id else EditMode.IDLE

    @property
    def is_signed_in(self) -> bool:
        return self.user is not None
