"""Date-only arithmetic shared by the ledger, the materializer and invoices.

Every value here is a plain ``datetime.date``; the ledger has no time-of-day,
so there is nothing to drift across timezones or DST changes.
"""

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from config import get_settings


MONTH_NAMES = (
    "Janeiro",
    "Fevereiro",
    "Março",
    "Abril",
    "Maio",
    "Junho",
    "Julho",
    "Agosto",
    "Setembro",
    "Outubro",
    "Novembro",
    "Dezembro",
)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months_preserve_day(base: date, months: int) -> date:
    """Add calendar months, clamping to the last day of short months.

    ``add_months_preserve_day(date(2024, 1, 31), 1) == date(2024, 2, 29)``.
    Negative ``months`` walk backwards with the same clamping.
    """
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def add_days(base: date, days: int) -> date:
    return base + timedelta(days=days)


def difference_in_days(later: date, earlier: date) -> int:
    return (later - earlier).days


def months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def parse_month(value: str) -> tuple[int, int]:
    try:
        year_raw, month_raw = value.split("-")
        year, month = int(year_raw), int(month_raw)
    except ValueError as exc:
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM") from exc
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
    return year, month


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def month_bounds(value: str) -> tuple[date, date]:
    year, month = parse_month(value)
    return date(year, month, 1), date(year, month, days_in_month(year, month))


def shift_month(value: str, months: int) -> str:
    year, month = parse_month(value)
    return month_key(add_months_preserve_day(date(year, month, 1), months))


def format_month_label(value: str) -> str:
    year, month = parse_month(value)
    return f"{MONTH_NAMES[month - 1]} {year}"


def compute_invoice_due_date(invoice_month: str, due_day: int) -> date:
    year, month = parse_month(invoice_month)
    return date(year, month, min(due_day, days_in_month(year, month)))


def invoice_month_for_purchase(purchase_date: date, closing_day: int) -> str:
    # Cards closing late in the month bill the following month's invoice even
    # for purchases made before closing.
    if closing_day >= 25:
        offset = 1 if purchase_date.day <= closing_day else 2
    else:
        offset = 0 if purchase_date.day <= closing_day else 1
    first = purchase_date.replace(day=1)
    return month_key(add_months_preserve_day(first, offset))
