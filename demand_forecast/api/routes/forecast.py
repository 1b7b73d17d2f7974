"""Demand forecast matrix endpoints."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from demand_forecast.db.dependencies import get_db_session
from demand_forecast.services.demand_types import DemandMatrix, FilterSpec, PreferredStaffFilter, TimeWindow
from demand_forecast.services.errors import CellNotFoundError, ForecastTimeoutError, InvalidPeriodError
from demand_forecast.services.forecast_service import ForecastService

router = APIRouter(prefix="/forecast", tags=["forecast"])


class MatrixFilterPayload(BaseModel):
    from_month: date | None = None
    to_month: date | None = None
    skills: list[str] | None = None
    client_ids: list[str] | None = None
    preferred_staff_ids: list[str] | None = None
    include_unassigned: bool = False
    show_only_preferred: bool = False

    def to_filter_spec(self) -> FilterSpec:
        window = None
        if self.from_month is not None or self.to_month is not None:
            window = TimeWindow(start=self.from_month or date.min, end=self.to_month or date.max)
        return FilterSpec(
            time_window=window,
            skills=frozenset(self.skills) if self.skills else None,
            client_ids=frozenset(self.client_ids) if self.client_ids else None,
            preferred_staff=PreferredStaffFilter.from_inputs(
                self.preferred_staff_ids,
                include_unassigned=self.include_unassigned,
                show_only_preferred=self.show_only_preferred,
            ),
        )


class DemandMatrixPayload(BaseModel):
    start_month: date
    months: int | None = Field(default=None, ge=1)
    client_ids: list[UUID] | None = None
    filters: MatrixFilterPayload | None = None


class DrillDownPayload(DemandMatrixPayload):
    skill: str = Field(min_length=1)
    period: str = Field(min_length=1)


def _forecast_service(request: Request, db: Session = Depends(get_db_session)) -> ForecastService:
    return ForecastService(
        db,
        skill_resolver=request.app.state.skill_resolver,
        staff_resolver=request.app.state.staff_resolver,
    )


async def _build_matrix(service: ForecastService, payload: DemandMatrixPayload) -> DemandMatrix:
    try:
        matrix = await service.generate_matrix(payload.start_month, payload.months, payload.client_ids)
    except ForecastTimeoutError as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc)) from exc
    if payload.filters is not None:
        matrix = await service.apply_filters(matrix, payload.filters.to_filter_spec())
    return matrix


@router.post("/demand-matrix")
async def post_demand_matrix(
    payload: DemandMatrixPayload,
    service: ForecastService = Depends(_forecast_service),
) -> dict[str, object]:
    matrix = await _build_matrix(service, payload)
    revenue = await service.revenue_summary(matrix)
    return service.serialize_matrix(matrix, revenue)


@router.post("/demand-matrix/drill-down")
async def post_demand_drill_down(
    payload: DrillDownPayload,
    service: ForecastService = Depends(_forecast_service),
) -> dict[str, object]:
    matrix = await _build_matrix(service, payload)
    try:
        result = service.drill_down(matrix, payload.skill, payload.period)
    except InvalidPeriodError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except CellNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return service.serialize_drill_down(result)


@router.get("/demand-by-skill")
async def get_demand_by_skill(
    month_start: date,
    service: ForecastService = Depends(_forecast_service),
) -> dict[str, object]:
    demand = await service.monthly_demand_by_skill(month_start)
    return {
        "month_start": date(month_start.year, month_start.month, 1).isoformat(),
        "skills": [{"skill": item.skill, "hours": round(item.hours, 2)} for item in demand],
        "total_hours": round(sum(item.hours for item in demand), 2),
    }
