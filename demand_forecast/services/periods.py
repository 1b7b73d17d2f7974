"""Calendar month helpers for the forecast period axis."""

from __future__ import annotations

import re
from datetime import date, datetime

from demand_forecast.services.demand_types import CalendarPeriod
from demand_forecast.services.errors import InvalidPeriodError

PERIOD_KEY_PATTERN = re.compile(r"^(\d{4})-(\d{2})(?:-(\d{2}))?")


def month_start(value: date) -> date:
    return date(value.year, value.month, 1)


def add_months(value: date, months: int) -> date:
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def months_between(start: date, end: date) -> int:
    """Whole-month offset from ``start`` to ``end`` ignoring the day component."""

    return (end.year - start.year) * 12 + (end.month - start.month)


def month_sequence(start_month: date, end_month: date) -> list[date]:
    current = month_start(start_month)
    end = month_start(end_month)
    months: list[date] = []
    while current <= end:
        months.append(current)
        current = add_months(current, 1)
    return months


def parse_period_key(value: object) -> date | None:
    """Parse ``YYYY-MM`` (or an ISO date/datetime) into the first day of that month."""

    if isinstance(value, datetime):
        return month_start(value.date())
    if isinstance(value, date):
        return month_start(value)
    if not isinstance(value, str):
        return None
    match = PERIOD_KEY_PATTERN.match(value.strip())
    if match is None:
        return None
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        return None
    return date(year, month, 1)


def require_period_key(value: object) -> date:
    parsed = parse_period_key(value)
    if parsed is None:
        raise InvalidPeriodError(value)
    return parsed


def make_period(value: date) -> CalendarPeriod:
    start = month_start(value)
    return CalendarPeriod(
        key=start.strftime("%Y-%m"),
        label=start.strftime("%b %Y"),
        start=start,
        end=add_months(start, 1),
    )


def build_forecast_periods(start: date, months: int = 12) -> list[CalendarPeriod]:
    """Consecutive month periods starting at the month containing ``start``."""

    if months <= 0:
        return []
    first = month_start(start)
    return [make_period(month) for month in month_sequence(first, add_months(first, months - 1))]
