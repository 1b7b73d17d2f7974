"""ORM model package."""

from demand_forecast.models.entities import Client, RecurringTaskRecord, Skill, Staff

__all__ = [
    "Client",
    "RecurringTaskRecord",
    "Skill",
    "Staff",
]
