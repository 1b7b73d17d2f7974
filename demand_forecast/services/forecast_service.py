"""Application service for demand matrix generation, filtering and drill-down."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection
from dataclasses import replace
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from demand_forecast.core.config import Settings, get_settings
from demand_forecast.repositories.forecast_repository import ForecastRepository, to_recurring_task
from demand_forecast.services.demand_types import (
    DemandMatrix,
    Diagnostic,
    FilterSpec,
    Identifier,
    RecurringTask,
    SkillHours,
    TaskDemand,
)
from demand_forecast.services.drill_down import DrillDownResult
from demand_forecast.services.drill_down import drill_down as drill_down_cell
from demand_forecast.services.errors import ForecastTimeoutError
from demand_forecast.services.identifier_resolution import IdentifierResolutionService
from demand_forecast.services.matrix_filter import filter_matrix, resolve_filter_skills
from demand_forecast.services.matrix_transformer import (
    MatrixTransformer,
    RevenueSummary,
    available_staff,
    client_totals,
    revenue_summary,
    skill_summary,
    staff_summary,
)
from demand_forecast.services.periods import add_months, build_forecast_periods, month_start
from demand_forecast.services.recurrence import AverageWeekdayStrategy, RecurrenceCalculator
from demand_forecast.services.skill_demand import SkillDemandCalculator

logger = logging.getLogger(__name__)


def _hours(value: float) -> float:
    return round(value, 2)


class ForecastService:
    """Request-level orchestration over the task source and the matrix engine."""

    def __init__(
        self,
        db: Session,
        *,
        skill_resolver: IdentifierResolutionService | None = None,
        staff_resolver: IdentifierResolutionService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.repo = ForecastRepository(db)
        self.settings = settings or get_settings()
        self.skill_resolver = skill_resolver
        self.staff_resolver = staff_resolver

        recurrence = RecurrenceCalculator(
            weekday_strategy=AverageWeekdayStrategy(
                days_per_month=self.settings.average_days_per_month,
                legacy_weeks_per_month=self.settings.legacy_weeks_per_month,
            ),
            daily_occurrences_per_month=self.settings.daily_occurrences_per_month,
        )
        self.skill_demand = SkillDemandCalculator(recurrence)
        self.transformer = MatrixTransformer(
            self.skill_demand,
            skill_resolver=skill_resolver,
            staff_resolver=staff_resolver,
            max_periods=self.settings.max_forecast_periods,
            max_skills=self.settings.max_skill_axis,
            default_months=self.settings.default_forecast_months,
        )

    # ---------- Task source ----------
    def load_tasks(
        self, client_ids: Collection[UUID] | None = None
    ) -> tuple[list[RecurringTask], list[Diagnostic]]:
        tasks: list[RecurringTask] = []
        warnings: list[Diagnostic] = []
        for row in self.repo.list_recurring_tasks(client_ids):
            try:
                tasks.append(to_recurring_task(row))
            except ValueError as exc:
                logger.warning("Excluding task %s: %s", row.task.id, exc)
                warnings.append(Diagnostic(stage="validation", subject=str(row.task.id), message=str(exc)))
        return tasks, warnings

    # ---------- Matrix ----------
    async def generate_matrix(
        self,
        start_month: date,
        months: int | None = None,
        client_ids: Collection[UUID] | None = None,
    ) -> DemandMatrix:
        """Build the matrix for ``months`` months from ``start_month`` under the configured timeout."""

        timeout = self.settings.forecast_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._generate(start_month, months or self.settings.default_forecast_months, client_ids),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Demand matrix generation exceeded %.1fs; discarding partial results", timeout)
            raise ForecastTimeoutError(timeout) from exc

    async def _generate(
        self,
        start_month: date,
        months: int,
        client_ids: Collection[UUID] | None,
    ) -> DemandMatrix:
        tasks, load_warnings = await asyncio.to_thread(self.load_tasks, client_ids)
        periods = build_forecast_periods(start_month, months)
        matrix = await self.transformer.build_matrix(tasks, periods, fallback_start=start_month)
        if load_warnings:
            matrix = replace(matrix, warnings=tuple(load_warnings) + matrix.warnings)
        return matrix

    async def apply_filters(self, matrix: DemandMatrix, spec: FilterSpec) -> DemandMatrix:
        if self.skill_resolver is not None:
            spec = await resolve_filter_skills(spec, self.skill_resolver)
        return filter_matrix(matrix, spec)

    @staticmethod
    def drill_down(matrix: DemandMatrix, skill: str, period_key: object) -> DrillDownResult:
        return drill_down_cell(matrix, skill, period_key)

    async def monthly_demand_by_skill(self, month: date) -> list[SkillHours]:
        """Skill hours for the single month containing ``month``, keyed by display name."""

        tasks, _ = await asyncio.to_thread(self.load_tasks)
        names: dict[Identifier, str] = {}
        if self.skill_resolver is not None:
            resolution = await self.skill_resolver.resolve_map(
                identifier for task in tasks for identifier in task.required_skills
            )
            names = resolution.value

        def skill_key(identifier: Identifier) -> str:
            return names.get(identifier, identifier.value)

        start = month_start(month)
        return self.skill_demand.monthly_demand_by_skill(tasks, start, add_months(start, 1), skill_key)

    async def revenue_summary(self, matrix: DemandMatrix) -> RevenueSummary:
        """Suggested revenue from skill fee rates against each client's expected revenue."""

        client_ids = {entry.client_id for point in matrix.data_points for entry in point.task_breakdown}

        def load() -> tuple[dict[str, float], dict[str, float]]:
            return self.repo.skill_fee_rates(), self.repo.client_expected_revenue(client_ids)

        fee_rates, expected = await asyncio.to_thread(load)
        return revenue_summary(
            matrix,
            fee_rates,
            expected,
            fallback_fee_rate=self.settings.fallback_fee_rate,
        )

    # ---------- Serialization ----------
    @staticmethod
    def serialize_task_demand(entry: TaskDemand) -> dict[str, object]:
        return {
            "client_id": entry.client_id,
            "client_name": entry.client_name,
            "task_id": entry.task_id,
            "task_name": entry.task_name,
            "skill": entry.skill,
            "estimated_hours": _hours(entry.estimated_hours),
            "monthly_hours": _hours(entry.monthly_hours),
            "monthly_occurrences": round(entry.monthly_occurrences, 4),
            "recurrence_type": entry.recurrence_type.value,
            "recurrence_interval": entry.recurrence_interval,
            "recurrence_summary": entry.recurrence_summary,
            "preferred_staff_id": entry.preferred_staff_id,
            "preferred_staff_name": entry.preferred_staff_name,
            "preferred_staff_role": entry.preferred_staff_role,
            "is_recurring": entry.is_recurring,
        }

    @staticmethod
    def serialize_revenue(revenue: RevenueSummary) -> dict[str, object]:
        return {
            "clients": [
                {
                    "client_id": item.client_id,
                    "client_name": item.client_name,
                    "total_hours": _hours(item.total_hours),
                    "expected_revenue": _hours(item.expected_revenue),
                    "suggested_revenue": _hours(item.suggested_revenue),
                    "expected_less_suggested": _hours(item.expected_less_suggested),
                    "expected_hourly_rate": _hours(item.expected_hourly_rate),
                }
                for item in revenue.clients
            ],
            "total_expected_revenue": _hours(revenue.total_expected_revenue),
            "total_suggested_revenue": _hours(revenue.total_suggested_revenue),
            "total_expected_less_suggested": _hours(revenue.total_expected_less_suggested),
        }

    @staticmethod
    def serialize_matrix(matrix: DemandMatrix, revenue: RevenueSummary | None = None) -> dict[str, object]:
        payload: dict[str, object] = {
            "periods": [
                {
                    "period": period.key,
                    "label": period.label,
                    "start": period.start.isoformat(),
                    "end": period.end.isoformat(),
                }
                for period in matrix.periods
            ],
            "skills": list(matrix.skills),
            "data_points": [
                {
                    "skill": point.skill,
                    "period": point.period_key,
                    "period_label": point.period_label,
                    "demand_hours": _hours(point.demand_hours),
                    "task_count": point.task_count,
                    "client_count": point.client_count,
                    "task_breakdown": [ForecastService.serialize_task_demand(entry) for entry in point.task_breakdown],
                }
                for point in matrix.data_points
            ],
            "total_demand": _hours(matrix.total_demand),
            "total_tasks": matrix.total_tasks,
            "total_clients": matrix.total_clients,
            "skill_summary": [
                {
                    "skill": item.skill,
                    "total_hours": _hours(item.total_hours),
                    "task_count": item.task_count,
                    "client_count": item.client_count,
                }
                for item in skill_summary(matrix)
            ],
            "client_totals": [
                {"client_id": item.client_id, "client_name": item.client_name, "total_hours": _hours(item.total_hours)}
                for item in client_totals(matrix)
            ],
            "staff_summary": [
                {
                    "staff_id": item.staff_id,
                    "staff_name": item.staff_name,
                    "total_hours": _hours(item.total_hours),
                    "task_count": item.task_count,
                    "client_count": item.client_count,
                }
                for item in staff_summary(matrix)
            ],
            "available_staff": [
                {"staff_id": member.staff_id, "staff_name": member.staff_name, "role": member.role}
                for member in available_staff(matrix)
            ],
            "warnings": [str(warning) for warning in matrix.warnings],
            "is_valid": matrix.is_valid,
        }
        if revenue is not None:
            payload["revenue"] = ForecastService.serialize_revenue(revenue)
        return payload

    @staticmethod
    def serialize_drill_down(result: DrillDownResult) -> dict[str, object]:
        coverage = result.staff_coverage
        return {
            "skill": result.skill,
            "period": result.period_key,
            "period_label": result.period_label,
            "total_hours": _hours(result.total_hours),
            "task_count": result.task_count,
            "client_count": result.client_count,
            "client_breakdown": [
                {
                    "client_id": row.client_id,
                    "client_name": row.client_name,
                    "demand_hours": _hours(row.demand_hours),
                    "task_count": row.task_count,
                    "recurring_tasks": row.recurring_tasks,
                    "adhoc_tasks": row.adhoc_tasks,
                    "average_task_size": _hours(row.average_task_size),
                }
                for row in result.client_breakdown
            ],
            "task_breakdown": [ForecastService.serialize_task_demand(entry) for entry in result.task_breakdown],
            "recurrence_patterns": [
                {
                    "recurrence_type": row.recurrence_type,
                    "task_count": row.task_count,
                    "total_hours": _hours(row.total_hours),
                    "percentage": round(row.percentage, 1),
                }
                for row in result.recurrence_patterns
            ],
            "staff_coverage": {
                "tasks_with_preferred_staff": coverage.tasks_with_preferred_staff,
                "tasks_without_preferred_staff": coverage.tasks_without_preferred_staff,
                "hours_with_preferred_staff": _hours(coverage.hours_with_preferred_staff),
                "hours_without_preferred_staff": _hours(coverage.hours_without_preferred_staff),
                "coverage_percentage": round(coverage.coverage_percentage, 1),
                "staff": [
                    {
                        "staff_id": row.staff_id,
                        "staff_name": row.staff_name,
                        "total_hours": _hours(row.total_hours),
                        "task_count": row.task_count,
                    }
                    for row in coverage.staff
                ],
            },
            "trends": {
                "previous_period": result.trends.previous_period_key,
                "demand_trend": round(result.trends.demand_trend, 1),
                "task_growth": round(result.trends.task_growth, 1),
                "client_growth": round(result.trends.client_growth, 1),
            },
        }
