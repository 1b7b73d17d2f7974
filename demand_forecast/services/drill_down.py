"""Read-only breakdown of one (skill, period) matrix cell."""

from __future__ import annotations

from dataclasses import dataclass

from demand_forecast.services.demand_types import (
    DemandDataPoint,
    DemandMatrix,
    TaskDemand,
    normalize_staff_id,
)
from demand_forecast.services.errors import CellNotFoundError
from demand_forecast.services.periods import require_period_key


@dataclass(frozen=True, slots=True)
class ClientBreakdown:
    client_id: str
    client_name: str
    demand_hours: float
    task_count: int
    recurring_tasks: int
    adhoc_tasks: int

    @property
    def average_task_size(self) -> float:
        return self.demand_hours / self.task_count if self.task_count else 0.0


@dataclass(frozen=True, slots=True)
class RecurrencePattern:
    recurrence_type: str
    task_count: int
    total_hours: float
    percentage: float


@dataclass(frozen=True, slots=True)
class StaffHours:
    staff_id: str
    staff_name: str
    total_hours: float
    task_count: int


@dataclass(frozen=True, slots=True)
class StaffCoverage:
    tasks_with_preferred_staff: int
    tasks_without_preferred_staff: int
    hours_with_preferred_staff: float
    hours_without_preferred_staff: float
    staff: tuple[StaffHours, ...] = ()

    @property
    def coverage_percentage(self) -> float:
        total = self.tasks_with_preferred_staff + self.tasks_without_preferred_staff
        return self.tasks_with_preferred_staff / total * 100 if total else 0.0


@dataclass(frozen=True, slots=True)
class DrillDownTrends:
    previous_period_key: str | None
    demand_trend: float
    task_growth: float
    client_growth: float


@dataclass(frozen=True, slots=True)
class DrillDownResult:
    skill: str
    period_key: str
    period_label: str
    total_hours: float
    task_count: int
    client_count: int
    client_breakdown: tuple[ClientBreakdown, ...]
    task_breakdown: tuple[TaskDemand, ...]
    recurrence_patterns: tuple[RecurrencePattern, ...]
    staff_coverage: StaffCoverage
    trends: DrillDownTrends


def drill_down(matrix: DemandMatrix, skill: str, period_key: object) -> DrillDownResult:
    """Break one cell down by client, task, recurrence pattern and preferred staff.

    Raises ``CellNotFoundError`` when the matrix has no such cell and
    ``InvalidPeriodError`` when ``period_key`` is not a month.
    """

    key = require_period_key(period_key).strftime("%Y-%m")
    point = matrix.cell(skill, key)
    if point is None:
        raise CellNotFoundError(skill, key)

    entries = point.task_breakdown
    total_hours = point.demand_hours
    return DrillDownResult(
        skill=point.skill,
        period_key=point.period_key,
        period_label=point.period_label,
        total_hours=total_hours,
        task_count=point.task_count,
        client_count=point.client_count,
        client_breakdown=_client_breakdown(entries),
        task_breakdown=tuple(
            sorted(entries, key=lambda entry: (entry.is_unassigned, -entry.monthly_hours, entry.task_name))
        ),
        recurrence_patterns=_recurrence_patterns(entries, total_hours),
        staff_coverage=_staff_coverage(entries),
        trends=_trends(matrix, point),
    )


def _client_breakdown(entries: tuple[TaskDemand, ...]) -> tuple[ClientBreakdown, ...]:
    grouped: dict[str, list[TaskDemand]] = {}
    for entry in entries:
        grouped.setdefault(entry.client_id, []).append(entry)
    rows = [
        ClientBreakdown(
            client_id=client_id,
            client_name=items[0].client_name,
            demand_hours=sum(item.monthly_hours for item in items),
            task_count=len(items),
            recurring_tasks=sum(1 for item in items if item.is_recurring),
            adhoc_tasks=sum(1 for item in items if not item.is_recurring),
        )
        for client_id, items in grouped.items()
    ]
    return tuple(sorted(rows, key=lambda row: (-row.demand_hours, row.client_name)))


def _recurrence_patterns(entries: tuple[TaskDemand, ...], total_hours: float) -> tuple[RecurrencePattern, ...]:
    grouped: dict[str, list[TaskDemand]] = {}
    for entry in entries:
        grouped.setdefault(entry.recurrence_type.value, []).append(entry)
    rows = []
    for recurrence_type, items in grouped.items():
        hours = sum(item.monthly_hours for item in items)
        rows.append(
            RecurrencePattern(
                recurrence_type=recurrence_type,
                task_count=len(items),
                total_hours=hours,
                percentage=hours / total_hours * 100 if total_hours > 0 else 0.0,
            )
        )
    return tuple(sorted(rows, key=lambda row: (-row.total_hours, row.recurrence_type)))


def _staff_coverage(entries: tuple[TaskDemand, ...]) -> StaffCoverage:
    assigned = [entry for entry in entries if not entry.is_unassigned]
    unassigned = [entry for entry in entries if entry.is_unassigned]

    per_staff: dict[str, list[TaskDemand]] = {}
    for entry in assigned:
        per_staff.setdefault(normalize_staff_id(entry.preferred_staff_id), []).append(entry)
    staff = sorted(
        (
            StaffHours(
                staff_id=staff_id,
                staff_name=next((item.preferred_staff_name for item in items if item.preferred_staff_name), staff_id),
                total_hours=sum(item.monthly_hours for item in items),
                task_count=len(items),
            )
            for staff_id, items in per_staff.items()
        ),
        key=lambda row: (-row.total_hours, row.staff_name),
    )
    return StaffCoverage(
        tasks_with_preferred_staff=len(assigned),
        tasks_without_preferred_staff=len(unassigned),
        hours_with_preferred_staff=sum(entry.monthly_hours for entry in assigned),
        hours_without_preferred_staff=sum(entry.monthly_hours for entry in unassigned),
        staff=tuple(staff),
    )


def _growth(current: float, previous: float) -> float:
    return (current - previous) / previous * 100 if previous > 0 else 0.0


def _trends(matrix: DemandMatrix, point: DemandDataPoint) -> DrillDownTrends:
    keys = [period.key for period in matrix.periods]
    index = keys.index(point.period_key) if point.period_key in keys else -1
    previous_key = keys[index - 1] if index > 0 else None
    previous = matrix.cell(point.skill, previous_key) if previous_key else None
    if previous is None:
        return DrillDownTrends(previous_period_key=previous_key, demand_trend=0.0, task_growth=0.0, client_growth=0.0)
    return DrillDownTrends(
        previous_period_key=previous_key,
        demand_trend=_growth(point.demand_hours, previous.demand_hours),
        task_growth=_growth(point.task_count, previous.task_count),
        client_growth=_growth(point.client_count, previous.client_count),
    )
