"""
Dashboard Summary

Assembles the figures shown on the main screen from one snapshot:
net worth, range totals, budget goals and the record history.
"""

from datetime import tzinfo
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from src.analytics.budgets import budget_goals, index_category_spend
from src.analytics.ranges import aggregate_range
from src.models.ledger import (
    Account,
    BudgetProgress,
    Category,
    DateRange,
    EntryKind,
    LedgerRecord,
    LedgerSnapshot,
    RangeSummary,
)

UNKNOWN_ACCOUNT = "Unknown"


class HistoryEntry(BaseModel):
    """A record together with the name of the account it points at."""
    model_config = ConfigDict(frozen=True)

    record: LedgerRecord
    account_name: str

    @property
    def signed_amount(self) -> Decimal:
        if self.record.kind == EntryKind.EARNING:
            return self.record.amount
        return -self.record.amount


class DashboardSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    net_worth: Decimal
    range_summary: RangeSummary
    goals: list[BudgetProgress]
    history: list[HistoryEntry]


def net_worth(accounts: Iterable[Account]) -> Decimal:
    """Sum of cached account balances."""
    return sum((a.balance for a in accounts), Decimal("0"))


def account_label(
    accounts: Iterable[Account],
    account_id: Optional[str],
    fallback: str = UNKNOWN_ACCOUNT,
) -> str:
    """
    Name of the referenced account, or ``fallback`` when it is gone.

    A dangling reference is expected after an account is deleted and is
    never an error.
    """
    if account_id is None:
        return fallback
    for account in accounts:
        if account.id == account_id:
            return account.name
    return fallback


def split_categories(
    categories: Sequence[Category],
) -> tuple[list[Category], list[Category]]:
    """(expense categories, earning categories), each keeping input order."""
    expense = [c for c in categories if c.kind == EntryKind.EXPENSE]
    earning = [c for c in categories if c.kind == EntryKind.EARNING]
    return expense, earning


def build_dashboard(
    snapshot: LedgerSnapshot,
    date_range: DateRange,
    tz: Optional[tzinfo] = None,
    unknown_account_label: str = UNKNOWN_ACCOUNT,
) -> DashboardSummary:
    """
    Derive everything the dashboard displays from a single snapshot.

    Range totals honour ``date_range``; budget goals use every record in
    the snapshot.
    """
    spend_index = index_category_spend(snapshot.records)
    expense_categories, _ = split_categories(snapshot.categories)

    history = [
        HistoryEntry(
            record=record,
            account_name=account_label(
                snapshot.accounts, record.account_id, unknown_account_label
            ),
        )
        for record in snapshot.records
    ]

    return DashboardSummary(
        net_worth=net_worth(snapshot.accounts),
        range_summary=aggregate_range(snapshot.records, date_range, tz),
        goals=budget_goals(expense_categories, spend_index),
        history=history,
    )
