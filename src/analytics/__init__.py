"""Ledger aggregation package."""

from src.analytics.budgets import budget_goals, budget_progress, index_category_spend
from src.analytics.ranges import aggregate_range, records_in_range, savings_rate
from src.analytics.summary import (
    DashboardSummary,
    HistoryEntry,
    account_label,
    build_dashboard,
    net_worth,
    split_categories,
)

__all__ = [
    "DashboardSummary",
    "HistoryEntry",
    "account_label",
    "aggregate_range",
    "budget_goals",
    "budget_progress",
    "build_dashboard",
    "index_category_spend",
    "net_worth",
    "records_in_range",
    "savings_rate",
    "split_categories",
]
