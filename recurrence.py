"""Calendar arithmetic for recurring templates.

Materializing due templates into transactions lives with the services
(``services.RecurrenceExpander``) since it goes through the ledger path.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from config import get_settings
from models import RecurrenceFrequency, Transaction
from periods import days_in_month


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def local_now() -> datetime:
    return datetime.now(ZoneInfo(get_settings().timezone))


def _add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def calculate_next_date(frequency: RecurrenceFrequency, from_date: date) -> date:
    """One period after ``from_date``; month ends snap (Jan 31 -> Feb 29)."""
    if frequency == RecurrenceFrequency.daily:
        return from_date + timedelta(days=1)
    if frequency == RecurrenceFrequency.weekly:
        return from_date + timedelta(weeks=1)
    if frequency == RecurrenceFrequency.monthly:
        return _add_months(from_date, 1)
    return _add_months(from_date, 12)


@dataclass
class ExpansionResult:
    generated: list[Transaction] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: int = 0
