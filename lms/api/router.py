"""
Main API router
"""
from fastapi import APIRouter

from lms.api.v1 import (
    health,
    leaves,
    balances,
    encashments,
    holidays,
    reports,
)

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(leaves.router, prefix="/leaves", tags=["leaves"])
api_router.include_router(balances.router, prefix="/balances", tags=["balances"])
api_router.include_router(encashments.router, prefix="/encashments", tags=["encashments"])
api_router.include_router(holidays.router, prefix="/holidays", tags=["holidays"])
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])
