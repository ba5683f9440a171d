"""
FastAPI router exposing production monitor snapshots.

Key Endpoints:
- GET /monitoring/health - Health status, error rate and counters
- GET /monitoring/readiness - Production readiness checks
- GET /monitoring/activity - Summary of the most recent quotes
"""

from typing import Optional

from fastapi import APIRouter

from radioquote.core.dependencies import MonitorDep
from radioquote.models.schemas import HealthSnapshot, ReadinessReport, RecentActivity

router = APIRouter()


@router.get("/health", response_model=HealthSnapshot)
async def get_health(monitor: MonitorDep) -> HealthSnapshot:
    return monitor.get_health_status()


@router.get("/readiness", response_model=ReadinessReport)
async def get_readiness(monitor: MonitorDep) -> ReadinessReport:
    return monitor.get_production_readiness()


@router.get("/activity", response_model=Optional[RecentActivity])
async def get_recent_activity(monitor: MonitorDep) -> Optional[RecentActivity]:
    """Null until at least one quote has been generated."""
    return monitor.analyze_recent_activity()
