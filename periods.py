from dataclasses import dataclass
from datetime import date
from typing import Optional

from dates import local_today, month_bounds, month_key


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_period(month: str) -> Period:
    start, end = month_bounds(month)
    return Period(month, start, end)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    month: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "custom" or (not period and start and end):
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period == "month" or (not period and month):
        if not month:
            raise ValueError("Month period requires a month (YYYY-MM)")
        return month_period(month)

    this_month = month_period(month_key(today))
    return Period("this_month", this_month.start, this_month.end)
