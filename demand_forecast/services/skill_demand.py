"""Per-skill accumulation of monthly task demand."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date

from demand_forecast.services.demand_types import (
    CalendarPeriod,
    Diagnostic,
    Identifier,
    MonthlyDemand,
    RecurrenceType,
    RecurringTask,
    SkillHours,
    StageResult,
    TaskDemand,
    normalize_name,
)
from demand_forecast.services.errors import InvalidPeriodError
from demand_forecast.services.recurrence import RecurrenceCalculator, describe_recurrence

logger = logging.getLogger(__name__)

SkillKey = Callable[[Identifier], str]


def raw_skill_key(identifier: Identifier) -> str:
    return identifier.value


@dataclass(frozen=True, slots=True)
class SkillDemand:
    skill: str
    hours: float
    entries: tuple[TaskDemand, ...] = ()


def build_task_demand(task: RecurringTask, skill: str, demand: MonthlyDemand) -> TaskDemand:
    return TaskDemand(
        client_id=task.client_id,
        client_name=task.client_name or task.client_id,
        task_id=task.id,
        task_name=task.name,
        skill=skill,
        estimated_hours=float(task.estimated_hours),
        monthly_hours=demand.monthly_hours,
        monthly_occurrences=demand.monthly_occurrences,
        recurrence_type=RecurrenceType.parse(task.recurrence.type),
        recurrence_interval=task.recurrence.interval,
        recurrence_summary=describe_recurrence(task.recurrence),
        preferred_staff_id=task.preferred_staff_id,
        preferred_staff_name=task.preferred_staff_name,
        preferred_staff_role=task.preferred_staff_role,
        is_recurring=task.is_recurring,
    )


class SkillDemandCalculator:
    """Adds each task's full monthly hours to every skill it requires.

    A task needing skills A and B contributes its complete workload to both
    skills; hours are never split between them. Skills are keyed by
    ``skill_key`` (a resolved display name when resolution is enabled) and a
    task never counts twice for two references that resolve to the same name.
    """

    def __init__(self, recurrence: RecurrenceCalculator | None = None) -> None:
        self.recurrence = recurrence or RecurrenceCalculator()

    def calculate(
        self,
        tasks: Iterable[RecurringTask],
        period: CalendarPeriod,
        skill_key: SkillKey | None = None,
    ) -> StageResult[dict[str, SkillDemand]]:
        key_for = skill_key or raw_skill_key
        labels: dict[str, str] = {}
        entries: dict[str, list[TaskDemand]] = {}
        diagnostics: list[Diagnostic] = []

        for task in tasks:
            try:
                result = self.recurrence.calculate(task, period)
                diagnostics.extend(result.diagnostics)
                if result.value.monthly_hours <= 0:
                    continue

                seen: set[str] = set()
                for identifier in task.required_skills:
                    skill = key_for(identifier)
                    normalized = normalize_name(skill)
                    if not normalized or normalized in seen:
                        continue
                    seen.add(normalized)
                    label = labels.setdefault(normalized, skill.strip())
                    entries.setdefault(normalized, []).append(build_task_demand(task, label, result.value))
            except Exception as exc:
                logger.warning("Skipping task %s in %s: %s", task.id, period.key, exc)
                diagnostics.append(Diagnostic(stage="skill-demand", subject=task.id, message=str(exc)))

        demand = {
            labels[normalized]: SkillDemand(
                skill=labels[normalized],
                hours=sum(entry.monthly_hours for entry in items),
                entries=tuple(items),
            )
            for normalized, items in entries.items()
        }
        return StageResult(demand, tuple(diagnostics))

    def monthly_demand_by_skill(
        self,
        tasks: Iterable[RecurringTask],
        period_start: date,
        period_end: date,
        skill_key: SkillKey | None = None,
    ) -> list[SkillHours]:
        if period_end <= period_start:
            raise InvalidPeriodError(f"{period_start.isoformat()}..{period_end.isoformat()}")
        period = CalendarPeriod(
            key=period_start.strftime("%Y-%m"),
            label=period_start.strftime("%b %Y"),
            start=period_start,
            end=period_end,
        )
        result = self.calculate(tasks, period, skill_key)
        return [
            SkillHours(skill=item.skill, hours=item.hours)
            for item in sorted(result.value.values(), key=lambda item: normalize_name(item.skill))
        ]


def calculate_monthly_demand_by_skill(
    tasks: Iterable[RecurringTask],
    period_start: date,
    period_end: date,
) -> list[SkillHours]:
    """Skill hours for one ``[period_start, period_end)`` window, keyed by raw skill reference."""

    return SkillDemandCalculator().monthly_demand_by_skill(tasks, period_start, period_end)
