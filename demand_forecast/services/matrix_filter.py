"""Filtering of a built demand matrix.

Every step returns new values; the input matrix is never modified. Totals are
properties derived from the remaining data points, so they are recomputed
implicitly after the last step.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace

from demand_forecast.services.demand_types import (
    CalendarPeriod,
    DemandDataPoint,
    DemandMatrix,
    FilterSpec,
    PreferredStaffFilter,
    PreferredStaffMode,
    TaskDemand,
    TimeWindow,
    normalize_name,
    normalize_staff_id,
)
from demand_forecast.services.identifier_resolution import IdentifierResolutionService
from demand_forecast.services.periods import month_start

logger = logging.getLogger(__name__)

EntryPredicate = Callable[[TaskDemand], bool]


def filter_matrix(matrix: DemandMatrix, spec: FilterSpec) -> DemandMatrix:
    """Apply ``spec`` to ``matrix``. On an unexpected failure the input is returned untouched."""

    try:
        return _apply_filters(matrix, spec)
    except Exception:
        logger.exception("Demand matrix filtering failed; returning the unfiltered matrix")
        return matrix


def _apply_filters(matrix: DemandMatrix, spec: FilterSpec) -> DemandMatrix:
    periods = matrix.periods
    skills = matrix.skills
    points = matrix.data_points

    if spec.time_window is not None:
        periods, points = _filter_time_window(periods, points, spec.time_window)

    if spec.skills:
        wanted = {normalize_name(skill) for skill in spec.skills}
        skills = tuple(skill for skill in skills if normalize_name(skill) in wanted)
        points = tuple(point for point in points if normalize_name(point.skill) in wanted)

    if spec.client_ids:
        clients = {client_id for client_id in map(normalize_staff_id, spec.client_ids) if client_id}
        points = _filter_breakdown(points, lambda entry: normalize_staff_id(entry.client_id) in clients)

    staff_predicate = _staff_predicate(spec.preferred_staff)
    if staff_predicate is not None:
        points = _filter_breakdown(points, staff_predicate)

    filtered = DemandMatrix(
        periods=periods,
        skills=skills,
        data_points=points,
        warnings=matrix.warnings,
        is_valid=matrix.is_valid,
    )
    logger.debug(
        "Filtered matrix from %d to %d data points (%.2f -> %.2f hours)",
        len(matrix.data_points),
        len(filtered.data_points),
        matrix.total_demand,
        filtered.total_demand,
    )
    return filtered


def _filter_time_window(
    periods: tuple[CalendarPeriod, ...],
    points: tuple[DemandDataPoint, ...],
    window: TimeWindow,
) -> tuple[tuple[CalendarPeriod, ...], tuple[DemandDataPoint, ...]]:
    start, end = month_start(window.start), month_start(window.end)
    kept = tuple(period for period in periods if start <= period.start <= end)
    kept_keys = {period.key for period in kept}
    return kept, tuple(point for point in points if point.period_key in kept_keys)


def _filter_breakdown(points: tuple[DemandDataPoint, ...], keep: EntryPredicate) -> tuple[DemandDataPoint, ...]:
    """Narrow each cell's task breakdown; cells left empty are dropped."""

    filtered: list[DemandDataPoint] = []
    for point in points:
        breakdown = tuple(entry for entry in point.task_breakdown if keep(entry))
        if not breakdown:
            continue
        filtered.append(point if len(breakdown) == len(point.task_breakdown) else point.with_breakdown(breakdown))
    return tuple(filtered)


def _staff_predicate(staff: PreferredStaffFilter) -> EntryPredicate | None:
    if staff.mode is PreferredStaffMode.ALL:
        return None
    if staff.mode is PreferredStaffMode.NONE:
        return lambda entry: entry.is_unassigned

    staff_ids = {staff_id for staff_id in map(normalize_staff_id, staff.staff_ids) if staff_id}

    def keep(entry: TaskDemand) -> bool:
        if entry.is_unassigned:
            return staff.include_unassigned
        return normalize_staff_id(entry.preferred_staff_id) in staff_ids

    return keep


async def resolve_filter_skills(spec: FilterSpec, resolver: IdentifierResolutionService) -> FilterSpec:
    """Replace opaque skill references in ``spec`` with display names."""

    if not spec.skills:
        return spec
    names = await resolver.resolve_names(sorted(spec.skills))
    return replace(spec, skills=frozenset(names))
