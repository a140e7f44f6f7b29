"""
Ledger Data Models

These models describe the raw ledger (accounts, categories, records)
and the figures derived from it.

DESIGN DECISION: Amounts are Decimal end to end. No rounding is applied
until presentation, so totals never drift from what the store holds.

Identifiers are opaque strings owned by the store. The engine never
mints an id itself; it only passes them back.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================

class EntryKind(str, Enum):
    """
    Direction of a ledger entry.

    The amount is a magnitude; the kind decides whether it counts as
    income or expense.
    """
    EXPENSE = "expense"
    EARNING = "earning"


# =============================================================================
# STORE-OWNED ENTITIES
# =============================================================================

class User(BaseModel):
    """An authenticated user as reported by the session provider."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None


class Account(BaseModel):
    """
    A named account with a cached balance.

    CRITICAL: The balance is maintained by the store (a trigger that
    settles every record into its account). Nothing in the engine
    recomputes it from the ledger.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(..., description="Store-issued identifier")
    name: str = Field(..., min_length=1, max_length=200)
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Cached balance; overdraft allowed",
    )
    owner_id: Optional[str] = None


class Category(BaseModel):
    """
    A spending or earning category with an optional monthly target.

    A target of 0 means "no goal".
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str
    name: str = Field(..., min_length=1, max_length=200)
    kind: EntryKind = EntryKind.EXPENSE
    target: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Monthly budget ceiling (0 = no goal)",
    )
    owner_id: Optional[str] = None

    @property
    def has_goal(self) -> bool:
        return self.target > 0


class RecordDraft(BaseModel):
    """
    The full payload of a record as sent to the store.

    Used for both insert and update: an update replaces every field
    under the target id, it never patches.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    amount: Decimal
    kind: EntryKind
    category: str = Field(
        default="",
        description="Denormalized category name (not a foreign key)",
    )
    account_id: str
    note: str = ""
    owner_id: str


class LedgerRecord(BaseModel):
    """
    A single income or expense transaction.

    The category is stored by NAME. Renaming or deleting a category
    does not relabel existing records, and the account reference may
    dangle once the account is deleted.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str
    amount: Decimal = Field(..., description="Magnitude; sign is not enforced")
    kind: EntryKind
    category: str = ""
    account_id: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    owner_id: Optional[str] = None

    def calendar_date(self, tz=None) -> date:
        """
        Day this record falls on in the caller's time zone.

        Aware timestamps are converted to ``tz`` (process-local when
        None). Naive timestamps are taken as already local.
        """
        if self.created_at.tzinfo is None:
            return self.created_at.date()
        return self.created_at.astimezone(tz).date()


# =============================================================================
# SNAPSHOT AND DERIVED FIGURES
# =============================================================================

class DateRange(BaseModel):
    """
    Inclusive calendar-date range.

    start > end is allowed and simply admits nothing.
    """
    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class LedgerSnapshot(BaseModel):
    """
    Read-only view of the three collections, rebuilt after every mutation.

    Never persisted. Both aggregators consume it.
    """
    model_config = ConfigDict(frozen=True)

    accounts: tuple[Account, ...] = ()
    categories: tuple[Category, ...] = ()
    records: tuple[LedgerRecord, ...] = ()
    fetched_at: Optional[datetime] = None

    def find_record(self, record_id: str) -> Optional[LedgerRecord]:
        return next((r for r in self.records if r.id == record_id), None)

    def find_account(self, account_id: Optional[str]) -> Optional[Account]:
        if account_id is None:
            return None
        return next((a for a in self.accounts if a.id == account_id), None)


class RangeSummary(BaseModel):
    """Income, expense and savings rate for a date range."""
    model_config = ConfigDict(frozen=True)

    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    savings_rate: int = Field(
        default=0,
        description="Whole percent; 0 when there is no income (not 'no data')",
    )

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


class BudgetProgress(BaseModel):
    """Spend against a category's target."""
    model_config = ConfigDict(frozen=True)

    category: Category
    spent: Decimal
    percent: Decimal = Field(..., ge=0, le=100)
    over_budget: bool


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(..., description="Field with the issue")
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'dangling_reference')",
    )
    message: str
    severity: str = Field(..., pattern="^(error|warning|info)$")


class ValidationResult(BaseModel):
    """
    Outcome of checking a record before it goes to the store.

    Errors block the mutation (silently, by policy). Warnings never do.
    """

    is_valid: bool
    draft: Optional[RecordDraft] = None
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "warning"]
