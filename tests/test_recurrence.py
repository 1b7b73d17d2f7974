from __future__ import annotations

from datetime import date

import pytest

from demand_forecast.services.demand_types import (
    ZERO_DEMAND,
    CalendarPeriod,
    Named,
    Recurrence,
    RecurrenceType,
    RecurringTask,
)
from demand_forecast.services.periods import make_period
from demand_forecast.services.recurrence import (
    AverageWeekdayStrategy,
    CalendarWeekdayStrategy,
    RecurrenceCalculator,
    describe_recurrence,
    normalize_weekdays,
)


def _period(year: int, month: int) -> CalendarPeriod:
    return make_period(date(year, month, 1))


def _task(recurrence: Recurrence, hours: float = 5.0) -> RecurringTask:
    return RecurringTask(
        id="task-1",
        name="Bookkeeping",
        client_id="client-1",
        client_name="Acme",
        required_skills=(Named("Audit"),),
        estimated_hours=hours,
        recurrence=recurrence,
    )


def _hours(recurrence: Recurrence, period: CalendarPeriod, hours: float = 5.0) -> float:
    return RecurrenceCalculator().calculate(_task(recurrence, hours), period).value.monthly_hours


def test_weekly_weekdays_use_average_month_length() -> None:
    result = RecurrenceCalculator().calculate(
        _task(Recurrence(RecurrenceType.WEEKLY, weekdays=(1, 3, 5))),
        _period(2025, 2),
    )

    assert result.ok
    assert result.value.monthly_occurrences == pytest.approx(3 * 30.44 / 7)
    assert result.value.monthly_hours == pytest.approx(65.23, abs=0.01)


def test_weekly_interval_two_yields_half() -> None:
    every_week = _hours(Recurrence(RecurrenceType.WEEKLY, weekdays=(1, 3, 5)), _period(2025, 2))
    every_other_week = _hours(Recurrence(RecurrenceType.WEEKLY, interval=2, weekdays=(1, 3, 5)), _period(2025, 2))

    assert every_other_week == pytest.approx(every_week / 2)


def test_weekly_estimate_is_period_independent() -> None:
    recurrence = Recurrence(RecurrenceType.WEEKLY, weekdays=(2,))

    assert _hours(recurrence, _period(2025, 2)) == pytest.approx(_hours(recurrence, _period(2025, 8)))


def test_biweekly_matches_weekly_with_doubled_interval() -> None:
    biweekly = _hours(Recurrence(RecurrenceType.BIWEEKLY, weekdays=(1,)), _period(2025, 3))
    weekly = _hours(Recurrence(RecurrenceType.WEEKLY, interval=2, weekdays=(1,)), _period(2025, 3))

    assert biweekly == pytest.approx(weekly)


def test_weekly_without_valid_weekdays_uses_legacy_weeks() -> None:
    result = RecurrenceCalculator().calculate(
        _task(Recurrence(RecurrenceType.WEEKLY, interval=2, weekdays=(9, -1))),
        _period(2025, 1),
    )

    assert result.value.monthly_occurrences == pytest.approx(4.33 / 2)


def test_duplicate_weekdays_count_once() -> None:
    duplicated = _hours(Recurrence(RecurrenceType.WEEKLY, weekdays=(1, 1, 3)), _period(2025, 1))
    distinct = _hours(Recurrence(RecurrenceType.WEEKLY, weekdays=(1, 3)), _period(2025, 1))

    assert duplicated == pytest.approx(distinct)


def test_normalize_weekdays_drops_invalid_values() -> None:
    assert normalize_weekdays([3, 1, 1, True, "2", 7, -1, 0]) == (0, 1, 3)
    assert normalize_weekdays(None) == ()
    assert normalize_weekdays("135") == ()


def test_daily_recurrence() -> None:
    result = RecurrenceCalculator().calculate(_task(Recurrence(RecurrenceType.DAILY, interval=2), 1.0), _period(2025, 1))

    assert result.value.monthly_occurrences == pytest.approx(15.0)


def test_monthly_day_of_month_must_exist_in_period() -> None:
    recurrence = Recurrence(RecurrenceType.MONTHLY, day_of_month=31)

    assert _hours(recurrence, _period(2025, 4)) == 0.0
    assert _hours(recurrence, _period(2025, 5)) == 5.0


def test_monthly_interval_is_anchored_on_due_date() -> None:
    recurrence = Recurrence(RecurrenceType.MONTHLY, interval=3, due_date=date(2025, 1, 15))

    assert _hours(recurrence, _period(2025, 1)) == 5.0
    assert _hours(recurrence, _period(2025, 2)) == 0.0
    assert _hours(recurrence, _period(2025, 4)) == 5.0
    assert _hours(recurrence, _period(2024, 10)) == 5.0


def test_monthly_interval_without_anchor_is_spread_evenly() -> None:
    result = RecurrenceCalculator().calculate(
        _task(Recurrence(RecurrenceType.MONTHLY, interval=3)),
        _period(2025, 2),
    )

    assert result.value.monthly_occurrences == pytest.approx(1 / 3)


def test_quarterly_anchor_follows_due_date_month() -> None:
    recurrence = Recurrence(RecurrenceType.QUARTERLY, interval=4, due_date=date(2024, 2, 28))

    assert _hours(recurrence, _period(2024, 2)) == 5.0
    assert _hours(recurrence, _period(2024, 5)) == 0.0
    assert _hours(recurrence, _period(2025, 2)) == 5.0


def test_quarterly_without_anchor_is_spread_over_the_cycle() -> None:
    recurrence = Recurrence(RecurrenceType.QUARTERLY)

    yearly = sum(_hours(recurrence, _period(2025, month), hours=4.0) for month in range(1, 13))

    assert yearly == pytest.approx(16.0)
    assert RecurrenceCalculator().calculate(_task(recurrence), _period(2025, 3)).ok
    assert _hours(Recurrence(RecurrenceType.QUARTERLY, interval=2), _period(2025, 5), hours=6.0) == pytest.approx(1.0)


def test_annual_month_of_year_places_task_in_june_only() -> None:
    recurrence = Recurrence(RecurrenceType.ANNUAL, month_of_year=6)

    for month in range(1, 13):
        expected = 8.0 if month == 6 else 0.0
        assert _hours(recurrence, _period(2025, month), hours=8.0) == expected


def test_annual_falls_back_to_due_date_month() -> None:
    recurrence = Recurrence(RecurrenceType.ANNUAL, due_date=date(2025, 3, 31))

    assert _hours(recurrence, _period(2025, 3)) == 5.0
    assert _hours(recurrence, _period(2025, 4)) == 0.0


def test_annual_month_of_year_wins_over_due_date() -> None:
    recurrence = Recurrence(RecurrenceType.ANNUAL, month_of_year=6, due_date=date(2025, 3, 31))

    assert _hours(recurrence, _period(2025, 6)) == 5.0
    assert _hours(recurrence, _period(2025, 3)) == 0.0


def test_annual_without_placement_is_zero() -> None:
    assert _hours(Recurrence(RecurrenceType.ANNUAL), _period(2025, 6)) == 0.0


def test_annual_interval_uses_due_date_year() -> None:
    recurrence = Recurrence(RecurrenceType.ANNUAL, interval=2, due_date=date(2024, 6, 1))

    assert _hours(recurrence, _period(2026, 6)) == 5.0
    assert _hours(recurrence, _period(2025, 6)) == 0.0


def test_annual_interval_without_due_date_is_spread_across_years() -> None:
    recurrence = Recurrence(RecurrenceType.ANNUAL, interval=2, month_of_year=6)

    assert _hours(recurrence, _period(2025, 6), hours=10.0) == pytest.approx(5.0)
    assert _hours(recurrence, _period(2026, 6), hours=10.0) == pytest.approx(5.0)
    assert _hours(recurrence, _period(2025, 7), hours=10.0) == 0.0


def test_negative_hours_are_clamped() -> None:
    assert _hours(Recurrence(RecurrenceType.MONTHLY), _period(2025, 1), hours=-3.0) == 0.0


@pytest.mark.parametrize(
    "recurrence",
    [
        Recurrence(RecurrenceType.WEEKLY, interval=0),
        Recurrence(RecurrenceType.MONTHLY, day_of_month=40),
        Recurrence(RecurrenceType.ANNUAL, month_of_year=13),
        Recurrence("sometimes"),
    ],
)
def test_faults_yield_zero_demand_with_diagnostic(recurrence: Recurrence) -> None:
    result = RecurrenceCalculator().calculate(_task(recurrence), _period(2025, 1))

    assert result.value == ZERO_DEMAND
    assert len(result.diagnostics) == 1
    assert result.diagnostics[0].stage == "recurrence"
    assert result.diagnostics[0].subject == "task-1"


def test_calendar_strategy_counts_actual_weekdays() -> None:
    strategy = CalendarWeekdayStrategy()
    january = _period(2025, 1)

    # January 2025 starts on a Wednesday.
    assert strategy.occurrences((2,), 1, january) == 4
    assert strategy.occurrences((3,), 1, january) == 5
    assert strategy.occurrences((2, 3), 2, january) == pytest.approx(4.5)


def test_strategy_can_be_swapped_without_touching_callers() -> None:
    calculator = RecurrenceCalculator(weekday_strategy=CalendarWeekdayStrategy())
    result = calculator.calculate(_task(Recurrence(RecurrenceType.WEEKLY, weekdays=(3,)), 2.0), _period(2025, 1))

    assert result.value.monthly_hours == pytest.approx(10.0)


def test_average_strategy_constants_are_configurable() -> None:
    strategy = AverageWeekdayStrategy(days_per_month=28.0, legacy_weeks_per_month=4.0)

    assert strategy.occurrences((1,), 1, _period(2025, 1)) == pytest.approx(4.0)
    assert strategy.occurrences((), 2, _period(2025, 1)) == pytest.approx(2.0)


@pytest.mark.parametrize(
    ("recurrence", "expected"),
    [
        (Recurrence(RecurrenceType.WEEKLY, interval=2, weekdays=(5, 1, 3)), "Monday, Wednesday, Friday every 2 weeks"),
        (Recurrence(RecurrenceType.WEEKLY), "Every week"),
        (Recurrence(RecurrenceType.BIWEEKLY), "Every 2 weeks"),
        (Recurrence(RecurrenceType.DAILY, interval=2), "Every 2 days"),
        (Recurrence(RecurrenceType.MONTHLY, day_of_month=15), "Monthly on day 15"),
        (Recurrence(RecurrenceType.QUARTERLY, due_date=date(2025, 3, 31)), "Quarterly in March"),
        (Recurrence(RecurrenceType.QUARTERLY, interval=2, month_of_year=1), "Semi-annually in January"),
        (Recurrence(RecurrenceType.ANNUAL, month_of_year=6), "Annually in June"),
        (Recurrence(RecurrenceType.ANNUAL, interval=2, due_date=date(2025, 2, 1)), "Every 2 years in February"),
    ],
)
def test_describe_recurrence(recurrence: Recurrence, expected: str) -> None:
    assert describe_recurrence(recurrence) == expected


def test_recurrence_type_aliases() -> None:
    assert RecurrenceType.parse("Annually") is RecurrenceType.ANNUAL
    assert RecurrenceType.parse("bi_weekly") is RecurrenceType.BIWEEKLY
    with pytest.raises(ValueError):
        RecurrenceType.parse("sometimes")
