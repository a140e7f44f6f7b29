"""
Category Spend Index and Budget Goals

KNOWN IMPRECISION: Spend is summed over every record we were given,
not per month, even though a category target is a monthly ceiling.
Callers pass the whole fetch window, so in practice this is "spend
within the latest N records". We keep that behaviour; changing it is
a product decision, not a bug fix.
"""

from decimal import Decimal
from typing import Iterable, Mapping

from src.models.ledger import BudgetProgress, Category, EntryKind, LedgerRecord

HUNDRED = Decimal("100")


def index_category_spend(records: Iterable[LedgerRecord]) -> dict[str, Decimal]:
    """
    Total expense per category name.

    Earnings are ignored. Grouping is by the record's denormalized
    category string, so two categories sharing a name share a total.
    """
    spend: dict[str, Decimal] = {}
    for record in records:
        if record.kind != EntryKind.EXPENSE:
            continue
        spend[record.category] = spend.get(record.category, Decimal("0")) + record.amount
    return spend


def budget_progress(
    category: Category,
    spend_index: Mapping[str, Decimal],
) -> BudgetProgress:
    """
    Progress of one category against its target.

    The percent is clamped to [0, 100]; over_budget tells the caller
    the target was actually exceeded.
    """
    spent = spend_index.get(category.name, Decimal("0"))

    if category.target > 0:
        percent = min(spent / category.target * HUNDRED, HUNDRED)
        percent = max(percent, Decimal("0"))
    else:
        percent = Decimal("0")

    return BudgetProgress(
        category=category,
        spent=spent,
        percent=percent,
        over_budget=spent > category.target,
    )


def budget_goals(
    categories: Iterable[Category],
    spend_index: Mapping[str, Decimal],
) -> list[BudgetProgress]:
    """Progress for every expense category that has a goal, in the given order."""
    return [
        budget_progress(category, spend_index)
        for category in categories
        if category.kind == EntryKind.EXPENSE and category.has_goal
    ]
