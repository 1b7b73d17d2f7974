"""Builds the skill x month demand matrix from recurring tasks."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import date

from demand_forecast.services.demand_types import (
    CalendarPeriod,
    DemandDataPoint,
    DemandMatrix,
    Diagnostic,
    ForecastPeriod,
    Identifier,
    Named,
    Opaque,
    RecurringTask,
    normalize_name,
    normalize_staff_id,
    parse_identifier,
)
from demand_forecast.services.identifier_resolution import IdentifierResolutionService
from demand_forecast.services.periods import build_forecast_periods, make_period, parse_period_key
from demand_forecast.services.skill_demand import SkillDemandCalculator

logger = logging.getLogger(__name__)

UNASSIGNED = "UNASSIGNED"

PeriodInput = ForecastPeriod | CalendarPeriod | str | date


# ---------- Summaries ----------
@dataclass(frozen=True, slots=True)
class SkillSummary:
    skill: str
    total_hours: float
    task_count: int
    client_count: int


@dataclass(frozen=True, slots=True)
class ClientTotal:
    client_id: str
    client_name: str
    total_hours: float


@dataclass(frozen=True, slots=True)
class StaffSummary:
    staff_id: str
    staff_name: str
    total_hours: float
    task_count: int
    client_count: int


@dataclass(frozen=True, slots=True)
class StaffMember:
    staff_id: str
    staff_name: str
    role: str | None = None


def skill_summary(matrix: DemandMatrix) -> list[SkillSummary]:
    """Per-skill totals in skill-axis order. Counts are distinct tasks and clients."""

    hours: dict[str, float] = {}
    tasks: dict[str, set[str]] = {}
    clients: dict[str, set[str]] = {}
    for point in matrix.data_points:
        hours[point.skill] = hours.get(point.skill, 0.0) + point.demand_hours
        tasks.setdefault(point.skill, set()).update(entry.task_id for entry in point.task_breakdown)
        clients.setdefault(point.skill, set()).update(entry.client_id for entry in point.task_breakdown)
    return [
        SkillSummary(
            skill=skill,
            total_hours=hours.get(skill, 0.0),
            task_count=len(tasks.get(skill, ())),
            client_count=len(clients.get(skill, ())),
        )
        for skill in matrix.skills
    ]


def client_totals(matrix: DemandMatrix) -> list[ClientTotal]:
    totals: dict[str, float] = {}
    names: dict[str, str] = {}
    for point in matrix.data_points:
        for entry in point.task_breakdown:
            totals[entry.client_id] = totals.get(entry.client_id, 0.0) + entry.monthly_hours
            names.setdefault(entry.client_id, entry.client_name)
    return sorted(
        (ClientTotal(client_id=key, client_name=names[key], total_hours=value) for key, value in totals.items()),
        key=lambda item: (-item.total_hours, item.client_name),
    )


def staff_summary(matrix: DemandMatrix) -> list[StaffSummary]:
    """Hours per preferred staff member. Tasks without one land in the ``UNASSIGNED`` bucket."""

    hours: dict[str, float] = {}
    names: dict[str, str] = {}
    tasks: dict[str, set[str]] = {}
    clients: dict[str, set[str]] = {}
    for point in matrix.data_points:
        for entry in point.task_breakdown:
            key = normalize_staff_id(entry.preferred_staff_id) or UNASSIGNED
            hours[key] = hours.get(key, 0.0) + entry.monthly_hours
            if key == UNASSIGNED:
                names.setdefault(key, "Unassigned")
            elif entry.preferred_staff_name:
                names.setdefault(key, entry.preferred_staff_name)
            tasks.setdefault(key, set()).add(entry.task_id)
            clients.setdefault(key, set()).add(entry.client_id)
    return sorted(
        (
            StaffSummary(
                staff_id=key,
                staff_name=names.get(key, key),
                total_hours=value,
                task_count=len(tasks[key]),
                client_count=len(clients[key]),
            )
            for key, value in hours.items()
        ),
        key=lambda item: (item.staff_id == UNASSIGNED, -item.total_hours, item.staff_name),
    )


def available_staff(matrix: DemandMatrix) -> list[StaffMember]:
    members: dict[str, StaffMember] = {}
    for point in matrix.data_points:
        for entry in point.task_breakdown:
            staff_id = normalize_staff_id(entry.preferred_staff_id)
            if staff_id is None or staff_id in members:
                continue
            members[staff_id] = StaffMember(
                staff_id=staff_id,
                staff_name=entry.preferred_staff_name or staff_id,
                role=entry.preferred_staff_role,
            )
    return sorted(members.values(), key=lambda member: normalize_name(member.staff_name))


@dataclass(frozen=True, slots=True)
class ClientRevenue:
    client_id: str
    client_name: str
    total_hours: float
    expected_revenue: float
    suggested_revenue: float

    @property
    def expected_less_suggested(self) -> float:
        return self.expected_revenue - self.suggested_revenue

    @property
    def expected_hourly_rate(self) -> float:
        return self.expected_revenue / self.total_hours if self.total_hours > 0 else 0.0


@dataclass(frozen=True, slots=True)
class RevenueSummary:
    clients: tuple[ClientRevenue, ...] = ()

    @property
    def total_expected_revenue(self) -> float:
        return sum(item.expected_revenue for item in self.clients)

    @property
    def total_suggested_revenue(self) -> float:
        return sum(item.suggested_revenue for item in self.clients)

    @property
    def total_expected_less_suggested(self) -> float:
        return self.total_expected_revenue - self.total_suggested_revenue


def revenue_summary(
    matrix: DemandMatrix,
    fee_rates: Mapping[str, float],
    expected_monthly_revenue: Mapping[str, float],
    *,
    fallback_fee_rate: float = 75.0,
) -> RevenueSummary:
    """Suggested and expected revenue per client, in ``client_totals`` order.

    Suggested revenue prices every hour at its skill's fee rate (``fee_rates``
    is keyed by skill name, compared case-insensitively); skills without a rate use
    ``fallback_fee_rate``. Expected revenue is the client's monthly figure
    times the number of periods on the axis.
    """

    rates = {normalize_name(skill): rate for skill, rate in fee_rates.items()}
    suggested: dict[str, float] = {}
    for point in matrix.data_points:
        rate = rates.get(normalize_name(point.skill), fallback_fee_rate)
        for entry in point.task_breakdown:
            suggested[entry.client_id] = suggested.get(entry.client_id, 0.0) + entry.monthly_hours * rate

    months = len(matrix.periods)
    return RevenueSummary(
        tuple(
            ClientRevenue(
                client_id=total.client_id,
                client_name=total.client_name,
                total_hours=total.total_hours,
                expected_revenue=expected_monthly_revenue.get(total.client_id, 0.0) * months,
                suggested_revenue=suggested.get(total.client_id, 0.0),
            )
            for total in client_totals(matrix)
        )
    )


# ---------- Transformer ----------
def validate_task(task: RecurringTask) -> str | None:
    """Reason the task is structurally unusable, or None."""

    if not str(task.id or "").strip():
        return "missing task id"
    if not str(task.name or "").strip():
        return "missing task name"
    if not task.required_skills:
        return "no required skills"
    for skill in task.required_skills:
        if not isinstance(skill, (Named, Opaque)) or not str(skill.value or "").strip():
            return f"invalid skill reference: {skill!r}"
    try:
        hours = float(task.estimated_hours)
    except (TypeError, ValueError):
        return f"estimated hours is not a number: {task.estimated_hours!r}"
    if math.isnan(hours) or math.isinf(hours):
        return f"estimated hours is not finite: {task.estimated_hours!r}"
    if hours < 0:
        return f"negative estimated hours: {hours}"
    return None


class MatrixTransformer:
    """Orchestrates period axis, skill axis and per-cell demand into a ``DemandMatrix``."""

    def __init__(
        self,
        skill_demand: SkillDemandCalculator | None = None,
        *,
        skill_resolver: IdentifierResolutionService | None = None,
        staff_resolver: IdentifierResolutionService | None = None,
        max_periods: int = 24,
        max_skills: int = 100,
        default_months: int = 12,
    ) -> None:
        self.skill_demand = skill_demand or SkillDemandCalculator()
        self.skill_resolver = skill_resolver
        self.staff_resolver = staff_resolver
        self.max_periods = max_periods
        self.max_skills = max_skills
        self.default_months = default_months

    async def build_matrix(
        self,
        tasks: Iterable[RecurringTask],
        periods: Iterable[PeriodInput],
        *,
        fallback_start: date | None = None,
    ) -> DemandMatrix:
        """Build the matrix. Never raises: an unexpected failure yields an empty, invalid matrix."""

        try:
            return await self._build(list(tasks), list(periods), fallback_start)
        except Exception as exc:
            logger.exception("Demand matrix build failed; returning an empty matrix")
            return DemandMatrix.empty(
                (Diagnostic(stage="matrix", subject="build", message=str(exc)),),
                is_valid=False,
            )

    async def _build(
        self,
        tasks: list[RecurringTask],
        periods: list[PeriodInput],
        fallback_start: date | None,
    ) -> DemandMatrix:
        warnings: list[Diagnostic] = []

        valid_tasks = self._validate_tasks(tasks, warnings)
        valid_tasks = await self._fill_staff_names(valid_tasks, warnings)

        period_axis = self._build_period_axis(periods, fallback_start, warnings)
        if not period_axis:
            logger.info("No forecast periods available; returning an empty matrix")
            return DemandMatrix.empty(tuple(warnings))

        names = await self._resolve_skill_names(periods, valid_tasks, warnings)
        skill_axis = self._build_skill_axis(names.values(), warnings)
        axis_by_key = {normalize_name(skill): skill for skill in skill_axis}

        def skill_key(identifier: Identifier) -> str:
            return names[identifier]

        data_points: list[DemandDataPoint] = []
        for period in period_axis:
            result = self.skill_demand.calculate(valid_tasks, period, skill_key)
            warnings.extend(result.diagnostics)
            for demand in result.value.values():
                label = axis_by_key.get(normalize_name(demand.skill))
                if label is None or demand.hours <= 0:
                    continue
                breakdown = tuple(replace(entry, skill=label) for entry in demand.entries)
                data_points.append(
                    DemandDataPoint(
                        skill=label,
                        period_key=period.key,
                        period_label=period.label,
                        task_breakdown=breakdown,
                    )
                )

        skill_order = {skill: index for index, skill in enumerate(skill_axis)}
        period_order = {period.key: index for index, period in enumerate(period_axis)}
        data_points.sort(key=lambda point: (skill_order[point.skill], period_order[point.period_key]))

        matrix = DemandMatrix(
            periods=tuple(period_axis),
            skills=tuple(skill_axis),
            data_points=tuple(data_points),
            warnings=tuple(warnings),
        )
        logger.info(
            "Built demand matrix: %d periods, %d skills, %d data points, %.2f hours, %d warnings",
            len(matrix.periods),
            len(matrix.skills),
            len(matrix.data_points),
            matrix.total_demand,
            len(matrix.warnings),
        )
        return matrix

    # ---------- Pipeline steps ----------
    @staticmethod
    def _validate_tasks(tasks: Sequence[RecurringTask], warnings: list[Diagnostic]) -> list[RecurringTask]:
        valid: list[RecurringTask] = []
        for task in tasks:
            reason = validate_task(task)
            if reason is None:
                valid.append(task)
                continue
            logger.warning("Excluding task %r: %s", task.id, reason)
            warnings.append(Diagnostic(stage="validation", subject=str(task.id or "<unknown>"), message=reason))
        return valid

    async def _fill_staff_names(
        self, tasks: list[RecurringTask], warnings: list[Diagnostic]
    ) -> list[RecurringTask]:
        if self.staff_resolver is None:
            return tasks
        pending: set[Identifier] = set()
        for task in tasks:
            identifier = parse_identifier(task.preferred_staff_id)
            if not task.preferred_staff_name and isinstance(identifier, Opaque):
                pending.add(identifier)
        if not pending:
            return tasks
        resolution = await self.staff_resolver.resolve_map(pending)
        warnings.extend(resolution.diagnostics)
        names = resolution.value
        filled: list[RecurringTask] = []
        for task in tasks:
            identifier = parse_identifier(task.preferred_staff_id)
            if task.preferred_staff_name or identifier not in names:
                filled.append(task)
            else:
                filled.append(replace(task, preferred_staff_name=names[identifier]))
        return filled

    def _build_period_axis(
        self,
        periods: Sequence[PeriodInput],
        fallback_start: date | None,
        warnings: list[Diagnostic],
    ) -> list[CalendarPeriod]:
        months: dict[date, CalendarPeriod] = {}
        for entry in periods:
            raw = entry.period if isinstance(entry, ForecastPeriod) else entry
            raw = raw.start if isinstance(raw, CalendarPeriod) else raw
            parsed = parse_period_key(raw)
            if parsed is None:
                logger.warning("Dropping forecast period with unparsable key %r", raw)
                warnings.append(Diagnostic(stage="periods", subject=str(raw), message="unparsable period key"))
                continue
            months.setdefault(parsed, make_period(parsed))

        axis = [months[key] for key in sorted(months)]
        if not axis and fallback_start is not None:
            logger.info(
                "No valid forecast periods supplied; synthesizing %d months from %s",
                self.default_months,
                fallback_start.isoformat(),
            )
            warnings.append(
                Diagnostic(
                    stage="periods",
                    subject=fallback_start.strftime("%Y-%m"),
                    message=f"synthesized {self.default_months} monthly periods",
                )
            )
            axis = build_forecast_periods(fallback_start, self.default_months)

        if len(axis) > self.max_periods:
            logger.warning("Period axis capped at %d of %d periods", self.max_periods, len(axis))
            warnings.append(
                Diagnostic(stage="periods", subject="axis", message=f"capped at {self.max_periods} periods")
            )
            axis = axis[: self.max_periods]
        return axis

    async def _resolve_skill_names(
        self,
        periods: Sequence[PeriodInput],
        tasks: Sequence[RecurringTask],
        warnings: list[Diagnostic],
    ) -> dict[Identifier, str]:
        references: list[Identifier] = []
        for entry in periods:
            if isinstance(entry, ForecastPeriod):
                references.extend(
                    identifier
                    for identifier in (parse_identifier(item.skill) for item in entry.demand)
                    if identifier is not None
                )
        for task in tasks:
            references.extend(task.required_skills)

        if self.skill_resolver is None:
            return {identifier: identifier.value for identifier in dict.fromkeys(references)}

        resolution = await self.skill_resolver.resolve_map(references)
        warnings.extend(resolution.diagnostics)
        return resolution.value

    def _build_skill_axis(self, names: Iterable[str], warnings: list[Diagnostic]) -> list[str]:
        unique: dict[str, str] = {}
        for name in names:
            label = name.strip()
            if label:
                unique.setdefault(normalize_name(label), label)
        axis = [unique[key] for key in sorted(unique)]
        if len(axis) > self.max_skills:
            logger.warning("Skill axis capped at %d of %d skills", self.max_skills, len(axis))
            warnings.append(
                Diagnostic(stage="skills", subject="axis", message=f"capped at {self.max_skills} skills")
            )
            axis = axis[: self.max_skills]
        return axis
