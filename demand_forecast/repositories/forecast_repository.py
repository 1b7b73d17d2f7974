"""Read-only repository over the recurring task source."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Collection
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from demand_forecast.models.entities import Client, RecurringTaskRecord, Skill, Staff
from demand_forecast.services.demand_types import (
    Recurrence,
    RecurrenceType,
    RecurringTask,
    parse_identifier,
)
from demand_forecast.services.recurrence import normalize_weekdays

T = TypeVar("T")

_NAMED_COLUMNS = {
    "skill": (Skill.id, Skill.name),
    "staff": (Staff.id, Staff.full_name),
}


@dataclass(slots=True)
class TaskRow:
    task: RecurringTaskRecord
    client_name: str
    staff_name: str | None
    staff_role: str | None


class ForecastRepository:
    """Queries used by demand forecasting services."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------- Tasks ----------
    def list_recurring_tasks(self, client_ids: Collection[uuid.UUID] | None = None) -> list[TaskRow]:
        stmt = (
            select(RecurringTaskRecord, Client.name, Staff.full_name, Staff.role_title)
            .join(Client, Client.id == RecurringTaskRecord.client_id)
            .outerjoin(Staff, Staff.id == RecurringTaskRecord.preferred_staff_id)
            .where(RecurringTaskRecord.is_active.is_(True))
            .order_by(Client.name.asc(), RecurringTaskRecord.name.asc())
        )
        if client_ids:
            stmt = stmt.where(RecurringTaskRecord.client_id.in_(list(client_ids)))
        return [
            TaskRow(task=task, client_name=client_name, staff_name=staff_name, staff_role=staff_role)
            for task, client_name, staff_name, staff_role in self.db.execute(stmt).all()
        ]

    # ---------- Revenue inputs ----------
    def skill_fee_rates(self) -> dict[str, float]:
        stmt = select(Skill.name, Skill.fee_rate).where(Skill.fee_rate.is_not(None))
        return {name: float(rate) for name, rate in self.db.execute(stmt).all()}

    def client_expected_revenue(self, client_ids: Collection[str]) -> dict[str, float]:
        if not client_ids:
            return {}
        stmt = select(Client.id, Client.expected_monthly_revenue).where(
            Client.id.in_([uuid.UUID(client_id) for client_id in client_ids])
        )
        return {str(client_id): float(revenue or 0) for client_id, revenue in self.db.execute(stmt).all()}

    # ---------- Skills and staff ----------
    def list_identifier_names(self, kind: str) -> dict[str, str]:
        id_column, name_column = _NAMED_COLUMNS[kind]
        return {str(row_id): name for row_id, name in self.db.execute(select(id_column, name_column)).all()}

    def name_for_identifier(self, kind: str, identifier: str) -> str | None:
        id_column, name_column = _NAMED_COLUMNS[kind]
        return self.db.scalar(select(name_column).where(id_column == uuid.UUID(identifier)))

    def identifier_for_name(self, kind: str, name: str) -> str | None:
        id_column, name_column = _NAMED_COLUMNS[kind]
        row_id = self.db.scalar(
            select(id_column).where(func.lower(name_column) == name.strip().lower()).limit(1)
        )
        return str(row_id) if row_id is not None else None


def to_recurring_task(row: TaskRow) -> RecurringTask:
    """Convert a task row into the engine's immutable task. Raises ValueError on an unknown recurrence type."""

    task = row.task
    skills = tuple(
        identifier
        for identifier in (parse_identifier(value) for value in task.required_skills or [])
        if identifier is not None
    )
    return RecurringTask(
        id=str(task.id),
        name=task.name,
        client_id=str(task.client_id),
        client_name=row.client_name,
        required_skills=skills,
        estimated_hours=float(task.estimated_hours),
        recurrence=Recurrence(
            type=RecurrenceType.parse(task.recurrence_type),
            interval=task.recurrence_interval,
            weekdays=normalize_weekdays(task.weekdays),
            day_of_month=task.day_of_month,
            month_of_year=task.month_of_year,
            due_date=task.due_date,
        ),
        preferred_staff_id=str(task.preferred_staff_id) if task.preferred_staff_id else None,
        preferred_staff_name=row.staff_name,
        preferred_staff_role=row.staff_role,
        is_recurring=task.is_recurring,
    )


class SqlIdentifierLookup:
    """Identifier lookup for skills or staff backed by short-lived sessions."""

    def __init__(self, session_factory: Callable[[], Session], *, kind: str = "skill") -> None:
        if kind not in _NAMED_COLUMNS:
            raise ValueError(f"Unsupported identifier kind: {kind}")
        self.session_factory = session_factory
        self.kind = kind

    async def load_all(self) -> dict[str, str]:
        return await asyncio.to_thread(self._query, ForecastRepository.list_identifier_names)

    async def name_for(self, identifier: str) -> str | None:
        return await asyncio.to_thread(self._query, ForecastRepository.name_for_identifier, identifier)

    async def id_for(self, name: str) -> str | None:
        return await asyncio.to_thread(self._query, ForecastRepository.identifier_for_name, name)

    def _query(self, method: Callable[..., T], *args: str) -> T:
        # Runs in a worker thread with its own session.
        with self.session_factory() as session:
            return method(ForecastRepository(session), self.kind, *args)
