"""Top-level API router."""

from fastapi import APIRouter

from demand_forecast.api.routes.forecast import router as forecast_router
from demand_forecast.api.routes.health import router as health_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(forecast_router)
