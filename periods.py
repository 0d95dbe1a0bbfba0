from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return day.replace(day=days_in_month(day.year, day.month))


def shift_months(day: date, count: int) -> date:
    """First day of the month ``count`` months away from ``day``'s month."""
    month_index = (day.year * 12) + (day.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    return Period(f"{year:04d}-{month:02d}", first, month_end(first))


def current_month(today: date) -> Period:
    return month_period(today.year, today.month)


def trailing_months(today: date, months: int) -> list[date]:
    """First days of the ``months`` whole months ending with today's month."""
    if months < 1:
        raise ValueError("Window must cover at least one month")
    first = month_start(today)
    return [shift_months(first, -offset) for offset in range(months - 1, -1, -1)]


def trailing_window(today: date, months: int) -> Period:
    starts = trailing_months(today, months)
    return Period(f"last_{months}_months", starts[0], month_end(today))
