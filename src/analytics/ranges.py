"""
Range Aggregation

Income, expense and savings rate over an inclusive calendar-date range.

DESIGN DECISION: Pure functions over an explicit record sequence.
Nothing is cached; the summary is recomputed on every call. Ledgers
are small (the store hands us at most one fetch window of records),
so there is nothing worth memoizing.
"""

from datetime import tzinfo
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, Optional, Sequence

from src.models.ledger import DateRange, EntryKind, LedgerRecord, RangeSummary


def records_in_range(
    records: Iterable[LedgerRecord],
    date_range: DateRange,
    tz: Optional[tzinfo] = None,
) -> list[LedgerRecord]:
    """
    Records whose calendar date lies within the range, both ends inclusive.

    Time of day is discarded before comparison. A range with start > end
    admits nothing; the bounds are never swapped.
    """
    return [r for r in records if date_range.contains(r.calendar_date(tz))]


def savings_rate(income: Decimal, expense: Decimal) -> int:
    """
    Whole-percent share of income that was not spent.

    Returns 0 when there is no income. That is a policy value, not a
    measurement: it does not mean "saved nothing".

    Halves round toward positive infinity (12.5 -> 13, -12.5 -> -12).
    """
    if income <= 0:
        return 0
    ratio = (income - expense) / income * 100
    return int((ratio + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def aggregate_range(
    records: Sequence[LedgerRecord],
    date_range: DateRange,
    tz: Optional[tzinfo] = None,
) -> RangeSummary:
    """
    Summarise the records that fall inside ``date_range``.

    Args:
        records: The ledger (typically the latest fetch window)
        date_range: Inclusive start/end calendar dates
        tz: Time zone used to turn timestamps into calendar dates;
            process-local when None

    Returns:
        RangeSummary with income, expense and savings rate
    """
    income = Decimal("0")
    expense = Decimal("0")

    for record in records_in_range(records, date_range, tz):
        if record.kind == EntryKind.EARNING:
            income += record.amount
        elif record.kind == EntryKind.EXPENSE:
            expense += record.amount

    return RangeSummary(
        income=income,
        expense=expense,
        savings_rate=savings_rate(income, expense),
    )
