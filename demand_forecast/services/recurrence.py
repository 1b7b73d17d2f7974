"""Monthly occurrence and hour math for recurring tasks.

Occurrence counts are computed per task per calendar month. Weekly schedules go
through a pluggable weekday strategy; every other recurrence type is placed on
the calendar directly (monthly, quarterly and annual tasks either fall in a
month or they do not).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from demand_forecast.services.demand_types import (
    ZERO_DEMAND,
    CalendarPeriod,
    Diagnostic,
    MonthlyDemand,
    Recurrence,
    RecurrenceType,
    RecurringTask,
    StageResult,
)
from demand_forecast.services.periods import months_between

logger = logging.getLogger(__name__)

DEFAULT_DAYS_PER_MONTH = 30.44
LEGACY_WEEKS_PER_MONTH = 4.33
DAILY_OCCURRENCES_PER_MONTH = 30.0

# 0 = Sunday, matching the weekday numbering stored on tasks.
WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def normalize_weekdays(values: object) -> tuple[int, ...]:
    """Distinct integer weekdays in 0..6, sorted. Anything else is dropped."""

    if values is None or isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        return ()
    valid = {
        value
        for value in values
        if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 6
    }
    return tuple(sorted(valid))


def _python_to_task_weekday(python_weekday: int) -> int:
    return (python_weekday + 1) % 7


class WeekdayOccurrenceStrategy(Protocol):
    def occurrences(self, weekdays: tuple[int, ...], interval: int, period: CalendarPeriod) -> float:
        ...


@dataclass(frozen=True, slots=True)
class AverageWeekdayStrategy:
    """Period-independent weekly estimate.

    ``|weekdays| * (days_per_month / 7) / interval`` with a fixed average month
    length, so February and August carry the same weekly demand. Without valid
    weekdays the legacy ``weeks_per_month / interval`` figure is used.
    """

    days_per_month: float = DEFAULT_DAYS_PER_MONTH
    legacy_weeks_per_month: float = LEGACY_WEEKS_PER_MONTH

    def occurrences(self, weekdays: tuple[int, ...], interval: int, period: CalendarPeriod) -> float:
        if interval <= 0:
            raise ValueError(f"Invalid interval: {interval}. Must be greater than 0.")
        valid = normalize_weekdays(weekdays)
        if not valid:
            return self.legacy_weeks_per_month / interval
        return len(valid) * (self.days_per_month / 7) / interval


@dataclass(frozen=True, slots=True)
class CalendarWeekdayStrategy:
    """Counts the actual weekday dates that fall inside the period."""

    def occurrences(self, weekdays: tuple[int, ...], interval: int, period: CalendarPeriod) -> float:
        if interval <= 0:
            raise ValueError(f"Invalid interval: {interval}. Must be greater than 0.")
        valid = normalize_weekdays(weekdays)
        if not valid:
            return (period.days / 7) / interval
        count = 0
        current = period.start
        while current < period.end:
            if _python_to_task_weekday(current.weekday()) in valid:
                count += 1
            current += timedelta(days=1)
        return count / interval


class RecurrenceCalculator:
    """Computes occurrences and hours of one task inside one calendar month."""

    def __init__(
        self,
        *,
        weekday_strategy: WeekdayOccurrenceStrategy | None = None,
        daily_occurrences_per_month: float = DAILY_OCCURRENCES_PER_MONTH,
    ) -> None:
        self.weekday_strategy = weekday_strategy or AverageWeekdayStrategy()
        self.daily_occurrences_per_month = daily_occurrences_per_month

    def calculate(self, task: RecurringTask, period: CalendarPeriod) -> StageResult[MonthlyDemand]:
        """Monthly demand for ``task``. Faults yield zero demand plus a diagnostic."""

        try:
            occurrences = self.monthly_occurrences(task.recurrence, period)
            hours = max(0.0, float(task.estimated_hours) * occurrences)
            return StageResult(MonthlyDemand(monthly_occurrences=occurrences, monthly_hours=hours))
        except Exception as exc:
            logger.warning(
                "Recurrence evaluation failed for task %s in %s; counting zero demand: %s",
                task.id,
                period.key,
                exc,
            )
            return StageResult(
                ZERO_DEMAND,
                (Diagnostic(stage="recurrence", subject=task.id, message=str(exc)),),
            )

    def monthly_occurrences(self, recurrence: Recurrence, period: CalendarPeriod) -> float:
        interval = recurrence.interval
        if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
            raise ValueError(f"Recurrence interval must be a positive integer, got {interval!r}.")

        kind = RecurrenceType.parse(recurrence.type)
        if kind is RecurrenceType.DAILY:
            return self.daily_occurrences_per_month / interval
        if kind is RecurrenceType.WEEKLY:
            return self.weekday_strategy.occurrences(recurrence.weekdays, interval, period)
        if kind is RecurrenceType.BIWEEKLY:
            return self.weekday_strategy.occurrences(recurrence.weekdays, interval * 2, period)
        if kind is RecurrenceType.MONTHLY:
            return self._monthly_occurrences(recurrence, interval, period)
        if kind is RecurrenceType.QUARTERLY:
            return self._quarterly_occurrences(recurrence, interval, period)
        return self._annual_occurrences(recurrence, interval, period)

    @staticmethod
    def _monthly_occurrences(recurrence: Recurrence, interval: int, period: CalendarPeriod) -> float:
        day = recurrence.day_of_month
        if day is not None:
            if not 1 <= day <= 31:
                raise ValueError(f"day_of_month must be within 1..31, got {day}.")
            if day > period.days:
                return 0.0
        if interval == 1:
            return 1.0
        if recurrence.due_date is None:
            # No anchor month to align the cycle on; spread evenly.
            return 1.0 / interval
        return 1.0 if months_between(recurrence.due_date, period.start) % interval == 0 else 0.0

    @staticmethod
    def _quarterly_occurrences(recurrence: Recurrence, interval: int, period: CalendarPeriod) -> float:
        if recurrence.due_date is not None:
            offset = months_between(recurrence.due_date, period.start)
        elif recurrence.month_of_year is not None:
            if not 1 <= recurrence.month_of_year <= 12:
                raise ValueError(f"month_of_year must be within 1..12, got {recurrence.month_of_year}.")
            offset = period.month - recurrence.month_of_year
        else:
            return 1.0 / (3 * interval)
        return 1.0 if offset % (3 * interval) == 0 else 0.0

    @staticmethod
    def _annual_occurrences(recurrence: Recurrence, interval: int, period: CalendarPeriod) -> float:
        if recurrence.month_of_year is not None:
            if not 1 <= recurrence.month_of_year <= 12:
                raise ValueError(f"month_of_year must be within 1..12, got {recurrence.month_of_year}.")
            target_month = recurrence.month_of_year
        elif recurrence.due_date is not None:
            target_month = recurrence.due_date.month
        else:
            return 0.0

        if period.month != target_month:
            return 0.0
        if interval == 1:
            return 1.0
        if recurrence.due_date is None:
            return 1.0 / interval
        return 1.0 if (period.year - recurrence.due_date.year) % interval == 0 else 0.0


def _every(interval: int, singular: str, plural: str) -> str:
    return f"every {singular}" if interval == 1 else f"every {interval} {plural}"


def describe_recurrence(recurrence: Recurrence) -> str:
    """Human-readable summary used in task breakdowns and drill-down pattern groups."""

    kind = RecurrenceType.parse(recurrence.type)
    interval = recurrence.interval if isinstance(recurrence.interval, int) and recurrence.interval > 0 else 1

    if kind is RecurrenceType.DAILY:
        return _every(interval, "day", "days").capitalize()

    if kind in (RecurrenceType.WEEKLY, RecurrenceType.BIWEEKLY):
        weeks = interval * 2 if kind is RecurrenceType.BIWEEKLY else interval
        cadence = _every(weeks, "week", "weeks")
        weekdays = normalize_weekdays(recurrence.weekdays)
        if not weekdays:
            return cadence.capitalize()
        return f"{', '.join(WEEKDAY_NAMES[day] for day in weekdays)} {cadence}"

    if kind is RecurrenceType.MONTHLY:
        summary = "Monthly" if interval == 1 else f"Every {interval} months"
        if recurrence.day_of_month:
            summary += f" on day {recurrence.day_of_month}"
        return summary

    if kind is RecurrenceType.QUARTERLY:
        summary = {1: "Quarterly", 2: "Semi-annually", 4: "Annually"}.get(interval, f"Every {3 * interval} months")
        anchor = recurrence.due_date.month if recurrence.due_date else recurrence.month_of_year
        if anchor and 1 <= anchor <= 12:
            summary += f" in {MONTH_NAMES[anchor - 1]}"
        return summary

    summary = "Annually" if interval == 1 else f"Every {interval} years"
    month = recurrence.month_of_year or (recurrence.due_date.month if recurrence.due_date else None)
    if month and 1 <= month <= 12:
        summary += f" in {MONTH_NAMES[month - 1]}"
    return summary
