"""Immutable value types shared by the demand forecast pipeline."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Generic, TypeVar

T = TypeVar("T")

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


# ---------- Identifiers ----------
@dataclass(frozen=True, slots=True)
class Named:
    """Reference that already carries a human-readable display name."""

    value: str


@dataclass(frozen=True, slots=True)
class Opaque:
    """Reference that must be resolved to a display name through a lookup."""

    value: str


Identifier = Named | Opaque


def parse_identifier(raw: object) -> Identifier | None:
    """Classify a raw reference once, at ingestion time."""

    if isinstance(raw, (Named, Opaque)):
        return raw
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    if UUID_PATTERN.match(text):
        return Opaque(text.lower())
    return Named(text)


def normalize_name(value: str) -> str:
    """Comparison key for display names: trimmed and case-insensitive."""

    return value.strip().casefold()


def normalize_staff_id(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text or None


# ---------- Recurrence ----------
class RecurrenceType(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"

    @classmethod
    def parse(cls, value: object) -> RecurrenceType:
        if isinstance(value, RecurrenceType):
            return value
        text = str(value or "").strip().lower().replace("_", "-")
        aliases = {
            "annually": cls.ANNUAL,
            "yearly": cls.ANNUAL,
            "bi-weekly": cls.BIWEEKLY,
            "fortnightly": cls.BIWEEKLY,
        }
        if text in aliases:
            return aliases[text]
        try:
            return cls(text)
        except ValueError as exc:
            raise ValueError(f"Unsupported recurrence type: {value!r}") from exc


@dataclass(frozen=True, slots=True)
class Recurrence:
    type: RecurrenceType
    interval: int = 1
    weekdays: tuple[int, ...] = ()
    day_of_month: int | None = None
    month_of_year: int | None = None
    due_date: date | None = None


@dataclass(frozen=True, slots=True)
class RecurringTask:
    """Recurring task snapshot as delivered by the task source."""

    id: str
    name: str
    client_id: str
    required_skills: tuple[Identifier, ...]
    estimated_hours: float
    recurrence: Recurrence
    client_name: str | None = None
    preferred_staff_id: str | None = None
    preferred_staff_name: str | None = None
    preferred_staff_role: str | None = None
    is_recurring: bool = True


# ---------- Periods ----------
@dataclass(frozen=True, slots=True)
class CalendarPeriod:
    """One calendar month as a half-open ``[start, end)`` range."""

    key: str
    label: str
    start: date
    end: date

    @property
    def year(self) -> int:
        return self.start.year

    @property
    def month(self) -> int:
        return self.start.month

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def contains(self, value: date) -> bool:
        return self.start <= value < self.end


@dataclass(frozen=True, slots=True)
class SkillHours:
    skill: str
    hours: float


@dataclass(frozen=True, slots=True)
class ForecastPeriod:
    """Caller-supplied forecast period, optionally with pre-computed skill demand."""

    period: str
    demand: tuple[SkillHours, ...] = ()


# ---------- Stage results ----------
@dataclass(frozen=True, slots=True)
class Diagnostic:
    stage: str
    subject: str
    message: str

    def __str__(self) -> str:
        return f"[{self.stage}] {self.subject}: {self.message}"


@dataclass(frozen=True, slots=True)
class StageResult(Generic[T]):
    value: T
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.diagnostics


@dataclass(frozen=True, slots=True)
class MonthlyDemand:
    monthly_occurrences: float
    monthly_hours: float


ZERO_DEMAND = MonthlyDemand(monthly_occurrences=0.0, monthly_hours=0.0)


# ---------- Matrix ----------
@dataclass(frozen=True, slots=True)
class TaskDemand:
    """Contribution of one task to one (skill, period) cell."""

    client_id: str
    client_name: str
    task_id: str
    task_name: str
    skill: str
    estimated_hours: float
    monthly_hours: float
    monthly_occurrences: float
    recurrence_type: RecurrenceType
    recurrence_interval: int
    recurrence_summary: str
    preferred_staff_id: str | None = None
    preferred_staff_name: str | None = None
    preferred_staff_role: str | None = None
    is_recurring: bool = True

    @property
    def is_unassigned(self) -> bool:
        return normalize_staff_id(self.preferred_staff_id) is None


@dataclass(frozen=True, slots=True)
class DemandDataPoint:
    """One (skill, period) cell. Aggregates derive from the task breakdown only."""

    skill: str
    period_key: str
    period_label: str
    task_breakdown: tuple[TaskDemand, ...] = ()

    @property
    def demand_hours(self) -> float:
        return sum(entry.monthly_hours for entry in self.task_breakdown)

    @property
    def task_count(self) -> int:
        return len(self.task_breakdown)

    @property
    def client_count(self) -> int:
        return len({entry.client_id for entry in self.task_breakdown})

    def with_breakdown(self, breakdown: tuple[TaskDemand, ...]) -> DemandDataPoint:
        return replace(self, task_breakdown=breakdown)


@dataclass(frozen=True, slots=True)
class DemandMatrix:
    periods: tuple[CalendarPeriod, ...] = ()
    skills: tuple[str, ...] = ()
    data_points: tuple[DemandDataPoint, ...] = ()
    warnings: tuple[Diagnostic, ...] = ()
    is_valid: bool = True

    @property
    def total_demand(self) -> float:
        return sum(point.demand_hours for point in self.data_points)

    @property
    def total_tasks(self) -> int:
        return sum(point.task_count for point in self.data_points)

    @property
    def total_clients(self) -> int:
        return len(
            {entry.client_id for point in self.data_points for entry in point.task_breakdown}
        )

    def cell(self, skill: str, period_key: str) -> DemandDataPoint | None:
        skill_key = normalize_name(skill)
        for point in self.data_points:
            if point.period_key == period_key and normalize_name(point.skill) == skill_key:
                return point
        return None

    @classmethod
    def empty(cls, warnings: tuple[Diagnostic, ...] = (), *, is_valid: bool = True) -> DemandMatrix:
        return cls(warnings=warnings, is_valid=is_valid)


# ---------- Filters ----------
class PreferredStaffMode(str, enum.Enum):
    ALL = "all"
    SPECIFIC = "specific"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class PreferredStaffFilter:
    mode: PreferredStaffMode = PreferredStaffMode.ALL
    staff_ids: frozenset[str] = frozenset()
    include_unassigned: bool = False

    @classmethod
    def from_inputs(
        cls,
        staff_ids: list[str] | tuple[str, ...] | frozenset[str] | None = None,
        *,
        include_unassigned: bool = False,
        show_only_preferred: bool = False,
    ) -> PreferredStaffFilter:
        """Derive the filter mode: explicit staff ids win, then the unassigned-only flag."""

        normalized = frozenset(
            staff_id for staff_id in (normalize_staff_id(value) for value in staff_ids or ()) if staff_id
        )
        if normalized:
            return cls(
                mode=PreferredStaffMode.SPECIFIC,
                staff_ids=normalized,
                include_unassigned=include_unassigned,
            )
        if show_only_preferred:
            return cls(mode=PreferredStaffMode.NONE)
        return cls()


@dataclass(frozen=True, slots=True)
class TimeWindow:
    start: date
    end: date


@dataclass(frozen=True, slots=True)
class FilterSpec:
    time_window: TimeWindow | None = None
    skills: frozenset[str] | None = None
    client_ids: frozenset[str] | None = None
    preferred_staff: PreferredStaffFilter = field(default_factory=PreferredStaffFilter)
