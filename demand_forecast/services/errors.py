"""Domain errors raised by the demand forecast engine."""

from __future__ import annotations


class ForecastEngineError(Exception):
    """Base class for reportable engine errors."""


class CellNotFoundError(ForecastEngineError, LookupError):
    """Requested (skill, period) cell does not exist in the matrix."""

    def __init__(self, skill: str, period_key: str) -> None:
        super().__init__(f"No demand cell for skill '{skill}' in period '{period_key}'.")
        self.skill = skill
        self.period_key = period_key


class InvalidPeriodError(ForecastEngineError, ValueError):
    """Period key cannot be parsed as a calendar month."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid period key: {value!r}. Expected YYYY-MM.")
        self.value = value


class ForecastTimeoutError(ForecastEngineError, TimeoutError):
    """Forecast computation exceeded the caller-imposed timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Forecast computation exceeded {timeout_seconds:g}s and was aborted.")
        self.timeout_seconds = timeout_seconds
