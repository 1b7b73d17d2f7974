from __future__ import annotations

import asyncio
from datetime import date

import pytest

from demand_forecast.services.demand_types import (
    DemandMatrix,
    ForecastPeriod,
    Identifier,
    Named,
    Opaque,
    Recurrence,
    RecurrenceType,
    RecurringTask,
    SkillHours,
)
from demand_forecast.services.identifier_resolution import IdentifierResolutionService
from demand_forecast.services.matrix_transformer import (
    UNASSIGNED,
    MatrixTransformer,
    available_staff,
    client_totals,
    revenue_summary,
    skill_summary,
    staff_summary,
)

AUDIT_ID = "6f1c2d3e-4a5b-4c6d-8e7f-901234567890"
STAFF_ID = "1a2b3c4d-5e6f-4a7b-8c9d-0e1f2a3b4c5d"

YEAR_2025 = [f"2025-{month:02d}" for month in range(1, 13)]


def _task(
    task_id: str,
    skills: tuple[Identifier, ...] = (Named("Audit"),),
    hours: float = 4.0,
    recurrence: Recurrence | None = None,
    *,
    name: str | None = None,
    client_id: str = "client-acme",
    client_name: str = "Acme",
    staff_id: str | None = None,
    staff_name: str | None = None,
) -> RecurringTask:
    return RecurringTask(
        id=task_id,
        name=f"Task {task_id}" if name is None else name,
        client_id=client_id,
        client_name=client_name,
        required_skills=skills,
        estimated_hours=hours,
        recurrence=recurrence or Recurrence(RecurrenceType.WEEKLY, weekdays=(2,)),
        preferred_staff_id=staff_id,
        preferred_staff_name=staff_name,
    )


def _build(transformer: MatrixTransformer, tasks, periods, **kwargs) -> DemandMatrix:
    return asyncio.run(transformer.build_matrix(tasks, periods, **kwargs))


def _assert_totals_consistent(matrix: DemandMatrix) -> None:
    assert matrix.total_demand == pytest.approx(sum(point.demand_hours for point in matrix.data_points))
    assert matrix.total_tasks == sum(point.task_count for point in matrix.data_points)
    assert matrix.total_clients == len(
        {entry.client_id for point in matrix.data_points for entry in point.task_breakdown}
    )
    for point in matrix.data_points:
        assert point.demand_hours == pytest.approx(sum(entry.monthly_hours for entry in point.task_breakdown))
        assert point.task_count == len(point.task_breakdown)


def test_acme_audit_scenario() -> None:
    matrix = _build(MatrixTransformer(), [_task("t-1")], ["2025-01"])

    assert [period.label for period in matrix.periods] == ["Jan 2025"]
    assert matrix.skills == ("Audit",)
    [point] = matrix.data_points
    assert point.demand_hours == pytest.approx(17.4, abs=0.01)
    assert point.task_count == 1
    assert point.client_count == 1
    assert matrix.is_valid


def test_uuid_and_name_references_collapse_into_one_axis_entry(make_lookup, clock) -> None:
    resolver = IdentifierResolutionService(make_lookup({AUDIT_ID: "Audit"}), clock=clock)
    tasks = [
        _task("t-1", (Opaque(AUDIT_ID),)),
        _task("t-2", (Named("audit"),), client_id="client-beta", client_name="Beta"),
    ]

    matrix = _build(MatrixTransformer(skill_resolver=resolver), tasks, ["2025-01", "2025-02"])

    assert matrix.skills == ("Audit",)
    assert len(matrix.data_points) == 2
    assert all(point.task_count == 2 and point.client_count == 2 for point in matrix.data_points)
    assert {entry.skill for point in matrix.data_points for entry in point.task_breakdown} == {"Audit"}


def test_unresolvable_skill_gets_placeholder_and_warning(make_lookup, clock) -> None:
    resolver = IdentifierResolutionService(make_lookup({}), clock=clock)

    matrix = _build(MatrixTransformer(skill_resolver=resolver), [_task("t-1", (Opaque(AUDIT_ID),))], ["2025-01"])

    assert matrix.skills == ("Unknown Skill (6f1c2d3e)",)
    assert any(warning.stage == "identifier-resolution" for warning in matrix.warnings)


def test_invalid_tasks_are_excluded_and_reported() -> None:
    tasks = [
        _task("good"),
        _task("negative", hours=-1.0),
        _task("no-skills", skills=()),
        _task("no-name", name=" "),
        _task("", hours=1.0),
    ]

    matrix = _build(MatrixTransformer(), tasks, ["2025-01"])

    assert matrix.total_tasks == 1
    assert sorted(warning.subject for warning in matrix.warnings if warning.stage == "validation") == [
        "<unknown>",
        "negative",
        "no-name",
        "no-skills",
    ]


def test_annual_task_only_populates_its_month() -> None:
    task = _task("t-1", hours=10.0, recurrence=Recurrence(RecurrenceType.ANNUAL, month_of_year=6))

    matrix = _build(MatrixTransformer(), [task], YEAR_2025)

    assert len(matrix.periods) == 12
    assert [point.period_key for point in matrix.data_points] == ["2025-06"]
    assert matrix.total_demand == 10.0


def test_multi_skill_task_contributes_full_hours_to_each_skill() -> None:
    task = _task(
        "t-1",
        skills=(Named("A"), Named("B")),
        hours=10.0,
        recurrence=Recurrence(RecurrenceType.ANNUAL, month_of_year=1),
    )

    matrix = _build(MatrixTransformer(), [task], ["2025-01"])

    assert {point.skill: point.demand_hours for point in matrix.data_points} == {"A": 10.0, "B": 10.0}
    assert matrix.total_demand == 20.0
    assert matrix.total_clients == 1


def test_period_axis_drops_bad_keys_sorts_and_caps() -> None:
    periods = ["2025-03", "not-a-month", "2025-13", "2025-01", "2025-02", "2025-01", "2025-05"]

    matrix = _build(MatrixTransformer(max_periods=3), [_task("t-1")], periods)

    assert [period.key for period in matrix.periods] == ["2025-01", "2025-02", "2025-03"]
    messages = [str(warning) for warning in matrix.warnings]
    assert "[periods] not-a-month: unparsable period key" in messages
    assert "[periods] 2025-13: unparsable period key" in messages
    assert "[periods] axis: capped at 3 periods" in messages


def test_forecast_period_entries_are_accepted() -> None:
    periods = [
        ForecastPeriod(period="2025-01", demand=(SkillHours(skill="Payroll", hours=3.0),)),
        ForecastPeriod(period="2025-02"),
    ]

    matrix = _build(MatrixTransformer(), [_task("t-1")], periods)

    assert matrix.skills == ("Audit", "Payroll")
    assert {point.skill for point in matrix.data_points} == {"Audit"}


def test_twelve_months_are_synthesized_when_no_period_is_usable() -> None:
    matrix = _build(MatrixTransformer(), [_task("t-1")], ["garbage"], fallback_start=date(2025, 3, 17))

    assert len(matrix.periods) == 12
    assert matrix.periods[0].key == "2025-03"
    assert matrix.periods[-1].key == "2026-02"
    assert any("synthesized 12 monthly periods" in str(warning) for warning in matrix.warnings)


def test_no_periods_and_no_fallback_gives_empty_valid_matrix() -> None:
    matrix = _build(MatrixTransformer(), [_task("t-1")], [])

    assert matrix.data_points == ()
    assert matrix.total_demand == 0
    assert matrix.is_valid


def test_skill_axis_is_capped() -> None:
    tasks = [_task(f"t-{index}", skills=(Named(f"Skill {index:02d}"),)) for index in range(5)]

    matrix = _build(MatrixTransformer(max_skills=2), tasks, ["2025-01"])

    assert matrix.skills == ("Skill 00", "Skill 01")
    assert {point.skill for point in matrix.data_points} == {"Skill 00", "Skill 01"}
    _assert_totals_consistent(matrix)


def test_unexpected_failure_returns_empty_invalid_matrix() -> None:
    class BrokenCalculator:
        def calculate(self, tasks, period, skill_key=None):
            raise RuntimeError("boom")

    matrix = _build(MatrixTransformer(BrokenCalculator()), [_task("t-1")], ["2025-01"])

    assert matrix.periods == ()
    assert matrix.skills == ()
    assert matrix.data_points == ()
    assert matrix.total_demand == 0
    assert not matrix.is_valid
    assert [str(warning) for warning in matrix.warnings] == ["[matrix] build: boom"]


def test_staff_resolver_fills_missing_staff_names(make_lookup, clock) -> None:
    staff_resolver = IdentifierResolutionService(make_lookup({STAFF_ID: "Jane Doe"}), clock=clock, kind="staff")
    tasks = [_task("t-1", staff_id=STAFF_ID), _task("t-2", staff_id="legacy-7", staff_name="Kim")]

    matrix = _build(MatrixTransformer(staff_resolver=staff_resolver), tasks, ["2025-01"])

    names = {entry.task_id: entry.preferred_staff_name for entry in matrix.data_points[0].task_breakdown}
    assert names == {"t-1": "Jane Doe", "t-2": "Kim"}


def test_totals_and_summaries_are_derived_from_data_points() -> None:
    tasks = [
        _task("t-1", hours=4.0, staff_id=STAFF_ID, staff_name="Jane Doe"),
        _task(
            "t-2",
            skills=(Named("Tax"), Named("Audit")),
            hours=6.0,
            recurrence=Recurrence(RecurrenceType.MONTHLY),
            client_id="client-beta",
            client_name="Beta",
        ),
    ]

    matrix = _build(MatrixTransformer(), tasks, ["2025-01", "2025-02"])

    _assert_totals_consistent(matrix)
    assert matrix.total_clients == 2

    summary = {item.skill: item for item in skill_summary(matrix)}
    assert summary["Tax"].total_hours == 12.0
    assert summary["Audit"].task_count == 2
    assert summary["Audit"].client_count == 2

    totals = client_totals(matrix)
    assert [item.client_name for item in totals] == ["Acme", "Beta"]
    assert totals[0].total_hours == pytest.approx(2 * 4 * 30.44 / 7)
    assert totals[1].total_hours == 24.0

    staff = staff_summary(matrix)
    assert [item.staff_id for item in staff] == [STAFF_ID, UNASSIGNED]
    assert staff[1].staff_name == "Unassigned"
    assert staff[1].total_hours == 24.0

    assert [(member.staff_id, member.staff_name) for member in available_staff(matrix)] == [(STAFF_ID, "Jane Doe")]


def test_malformed_skill_reference_only_excludes_that_task() -> None:
    tasks = [_task("good"), _task("bad", skills=("Tax",), client_id="client-beta", client_name="Beta")]

    matrix = _build(MatrixTransformer(), tasks, ["2025-01"])

    assert matrix.is_valid
    assert matrix.skills == ("Audit",)
    assert matrix.total_tasks == 1
    [warning] = [warning for warning in matrix.warnings if warning.stage == "validation"]
    assert warning.subject == "bad"
    assert "invalid skill reference" in warning.message


def test_revenue_summary_prices_hours_by_skill_fee_rate() -> None:
    tasks = [
        _task("t-1", hours=4.0),
        _task(
            "t-2",
            skills=(Named("Tax"), Named("Audit")),
            hours=6.0,
            recurrence=Recurrence(RecurrenceType.MONTHLY),
            client_id="client-beta",
            client_name="Beta",
        ),
    ]
    matrix = _build(MatrixTransformer(), tasks, ["2025-01", "2025-02"])

    revenue = revenue_summary(matrix, {"audit": 100.0}, {"client-acme": 1000.0}, fallback_fee_rate=75.0)

    acme, beta = revenue.clients
    acme_hours = 2 * 4 * 30.44 / 7
    assert acme.client_name == "Acme"
    assert acme.expected_revenue == 2000.0
    assert acme.suggested_revenue == pytest.approx(acme_hours * 100)
    assert acme.expected_hourly_rate == pytest.approx(2000.0 / acme_hours)
    assert beta.suggested_revenue == pytest.approx(12 * 100 + 12 * 75)
    assert beta.expected_revenue == 0.0
    assert beta.expected_less_suggested == pytest.approx(-2100.0)
    assert revenue.total_expected_revenue == 2000.0
    assert revenue.total_suggested_revenue == pytest.approx(acme_hours * 100 + 2100.0)
    assert revenue.total_expected_less_suggested == pytest.approx(2000.0 - acme_hours * 100 - 2100.0)


def test_revenue_summary_of_empty_matrix_is_zero() -> None:
    revenue = revenue_summary(DemandMatrix(), {}, {})

    assert revenue.clients == ()
    assert revenue.total_suggested_revenue == 0
    assert revenue.total_expected_less_suggested == 0
