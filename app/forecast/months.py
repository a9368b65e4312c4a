"""Calendar month helpers shared by the lookup, engine and schemas."""
from datetime import date, datetime
from typing import List, Union

from dateutil.relativedelta import relativedelta

DateLike = Union[date, datetime]


def normalize_to_month_start(value: DateLike) -> date:
    """Return the first day of the month containing ``value``."""
    if isinstance(value, datetime):
        value = value.date()
    return value.replace(day=1)


def add_months(value: DateLike, months: int) -> date:
    """Shift a month by a signed number of calendar months."""
    return normalize_to_month_start(value) + relativedelta(months=months)


def months_between(start: DateLike, end: DateLike) -> int:
    """
    Count months in the inclusive range [start, end].

    Returns 0 when ``end`` falls in an earlier month than ``start``.
    """
    start_month = normalize_to_month_start(start)
    end_month = normalize_to_month_start(end)
    count = (end_month.year - start_month.year) * 12 + (end_month.month - start_month.month) + 1
    return max(count, 0)


def month_range(start: DateLike, end: DateLike) -> List[date]:
    """All month starts from ``start`` to ``end`` inclusive."""
    first = normalize_to_month_start(start)
    return [add_months(first, offset) for offset in range(months_between(start, end))]
