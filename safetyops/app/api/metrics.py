"""Safety KPI API Router."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from safetyops.app.api.deps import get_metrics_service
from safetyops.app.core.clock import as_utc
from safetyops.app.core.exceptions import ValidationFailure
from safetyops.app.schemas.metrics import (
    CapaStats,
    DaysSinceLastIncident,
    DueSoonCapa,
    IncidentStats,
    LTIFRResult,
    NearMissRatioResult,
    OverdueCapa,
    SafetyDashboard,
    SafetyScoreInputs,
    SafetyScoreResult,
    TimeWindow,
    TRIRResult,
    TrendPoint,
)
from safetyops.app.services.metrics_engine import SafetyMetricsService

router = APIRouter()


def _window(start: Optional[datetime], end: Optional[datetime]) -> Optional[TimeWindow]:
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise ValidationFailure("Both start and end are required for a time window", field="start")
    # Naive bounds are read as UTC
    start, end = as_utc(start), as_utc(end)
    if start > end:
        raise ValidationFailure("start must not be after end", field="start")
    return TimeWindow(start=start, end=end)


@router.get("/dashboard", response_model=SafetyDashboard)
async def get_dashboard(metrics: SafetyMetricsService = Depends(get_metrics_service)):
    return await metrics.dashboard()


@router.get("/incidents", response_model=IncidentStats)
async def get_incident_stats(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    metrics: SafetyMetricsService = Depends(get_metrics_service),
):
    return await metrics.incident_stats(_window(start, end))


@router.get("/trir", response_model=TRIRResult)
async def get_trir(
    hours_worked: Optional[float] = Query(None, ge=0),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    metrics: SafetyMetricsService = Depends(get_metrics_service),
):
    return await metrics.trir(_window(start, end), hours_worked)


@router.get("/ltifr", response_model=LTIFRResult)
async def get_ltifr(
    hours_worked: Optional[float] = Query(None, ge=0),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    metrics: SafetyMetricsService = Depends(get_metrics_service),
):
    return await metrics.ltifr(_window(start, end), hours_worked)


@router.get("/near-miss-ratio", response_model=NearMissRatioResult)
async def get_near_miss_ratio(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    metrics: SafetyMetricsService = Depends(get_metrics_service),
):
    return await metrics.near_miss_ratio(_window(start, end))


@router.get("/capas", response_model=CapaStats)
async def get_capa_stats(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    metrics: SafetyMetricsService = Depends(get_metrics_service),
):
    return await metrics.capa_stats(_window(start, end))


@router.get("/capas/overdue", response_model=List[OverdueCapa])
async def get_overdue_capas(metrics: SafetyMetricsService = Depends(get_metrics_service)):
    return await metrics.overdue_capas()


@router.get("/capas/due-soon", response_model=List[DueSoonCapa])
async def get_capas_due_soon(
    days: Optional[int] = Query(None, ge=1),
    metrics: SafetyMetricsService = Depends(get_metrics_service),
):
    return await metrics.capas_due_soon(days)


@router.get("/days-since-last-incident", response_model=DaysSinceLastIncident)
async def get_days_since_last_incident(
    exclude_near_miss: Optional[bool] = Query(None),
    metrics: SafetyMetricsService = Depends(get_metrics_service),
):
    return await metrics.days_since_last_incident(exclude_near_miss)


@router.get("/trend", response_model=List[TrendPoint])
async def get_incident_trend(
    months: Optional[int] = Query(None, ge=1, le=60),
    metrics: SafetyMetricsService = Depends(get_metrics_service),
):
    return await metrics.incident_trend(months)


@router.post("/safety-score", response_model=SafetyScoreResult)
async def get_safety_score(
    payload: SafetyScoreInputs,
    metrics: SafetyMetricsService = Depends(get_metrics_service),
):
    """Composite leading-indicator score over whichever inputs are supplied."""
    return SafetyScoreResult(score=metrics.safety_score(payload))
