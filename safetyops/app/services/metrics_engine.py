"""
Safety Metrics / KPI Engine.

Read-only aggregations over incidents and CAPAs. The module-level functions
are pure: they take already-loaded entities, an optional time window and the
current instant, so they can be exercised without a store. SafetyMetricsService
loads the collections and feeds them through.

Rounding is half-up: rates to 2 decimals, the near-miss ratio to 1 decimal,
percentages, average days and the safety score to whole numbers.
"""
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Mapping, Optional, Union

from safetyops.app.core.clock import Clock, as_utc, elapsed_days_ceil, elapsed_days_floor, utc_now
from safetyops.app.core.config import Settings, get_settings
from safetyops.app.core.logging import get_logger
from safetyops.app.schemas.capas import Capa, CapaPriority, CapaStatus, CapaType
from safetyops.app.schemas.incidents import (
    Incident,
    IncidentStatus,
    IncidentType,
    RpasIncidentType,
    Severity,
)
from safetyops.app.schemas.metrics import (
    ActionItems,
    CapaDashboard,
    CapaStats,
    DashboardPeriod,
    DaysSinceLastIncident,
    DueSoonCapa,
    IncidentDashboard,
    IncidentStats,
    IncidentSummary,
    LTIFRResult,
    NearMissRatioResult,
    OverdueCapa,
    SafetyDashboard,
    SafetyScoreInputs,
    TimeWindow,
    TRIRResult,
    TrendPoint,
)
from safetyops.app.services.capa_service import ACTIVE_STATUSES, CAPAS, live_metrics
from safetyops.app.services.document_store import DocumentStore
from safetyops.app.services.incident_service import INCIDENTS
from safetyops.app.services.regulatory import incidents_requiring_notification

logger = get_logger(__name__)

TRIR_BASE_HOURS = 200_000
LTIFR_BASE_HOURS = 1_000_000
NO_HOURS_MESSAGE = "No hours worked provided"
NO_INCIDENTS_MESSAGE = "No incidents on record"

SAFETY_SCORE_WEIGHTS: Dict[str, float] = {
    "flha_completion": 0.15,
    "training_compliance": 0.15,
    "inspection_compliance": 0.10,
    "capa_on_time": 0.15,
    "action_closure": 0.10,
    "near_miss_reporting": 0.10,
    "meeting_attendance": 0.10,
    "equipment_airworthy": 0.15,
}

# Severities that break the days-without-incident streak when near misses are excluded
STREAK_SEVERITIES = frozenset(s for s in Severity if s.rank >= Severity.MINOR.rank)


def round_half_up(value: float, places: int = 0) -> Union[int, float]:
    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if places == 0 else float(rounded)


def in_window(moment: Optional[datetime], window: Optional[TimeWindow]) -> bool:
    if window is None:
        return True
    if moment is None:
        return False
    return as_utc(window.start) <= as_utc(moment) <= as_utc(window.end)


def _is_near_miss(incident: Incident) -> bool:
    return incident.type == IncidentType.NEAR_MISS or incident.severity == Severity.NEAR_MISS


def incident_stats(incidents: Iterable[Incident], window: Optional[TimeWindow] = None) -> IncidentStats:
    """Counts by classification plus recordable, near-miss and lost-day totals for incidents occurring in window."""
    selected = [i for i in incidents if in_window(i.date_occurred, window)]

    stats = IncidentStats(
        total=len(selected),
        by_type={t.value: 0 for t in IncidentType},
        by_severity={s.value: 0 for s in Severity},
        by_status={s.value: 0 for s in IncidentStatus},
        by_rpas_type={r.value: 0 for r in RpasIncidentType},
    )
    for incident in selected:
        stats.by_type[incident.type.value] += 1
        stats.by_severity[incident.severity.value] += 1
        stats.by_status[incident.status.value] += 1
        if incident.rpas_type:
            stats.by_rpas_type[incident.rpas_type.value] += 1

        if incident.severity.recordable:
            stats.total_recordable += 1
        if _is_near_miss(incident):
            stats.total_near_miss += 1
        if incident.type == IncidentType.LOST_TIME:
            stats.lost_time_count += 1
        stats.total_lost_days += sum(p.days_lost for p in incident.involved_persons)

    return stats


def calculate_trir(
    incidents: Iterable[Incident],
    window: Optional[TimeWindow],
    hours_worked: Optional[float],
) -> TRIRResult:
    """Total Recordable Incident Rate per 200,000 hours."""
    if not hours_worked:
        return TRIRResult(trir=0, recordable_count=0, message=NO_HOURS_MESSAGE)
    stats = incident_stats(incidents, window)
    trir = stats.total_recordable * TRIR_BASE_HOURS / hours_worked
    return TRIRResult(
        trir=round_half_up(trir, 2),
        recordable_count=stats.total_recordable,
        hours_worked=hours_worked,
    )


def calculate_ltifr(
    incidents: Iterable[Incident],
    window: Optional[TimeWindow],
    hours_worked: Optional[float],
) -> LTIFRResult:
    """Lost Time Injury Frequency Rate per 1,000,000 hours. Counts incidents of type lost_time."""
    if not hours_worked:
        return LTIFRResult(ltifr=0, lti_count=0, message=NO_HOURS_MESSAGE)
    stats = incident_stats(incidents, window)
    ltifr = stats.lost_time_count * LTIFR_BASE_HOURS / hours_worked
    return LTIFRResult(
        ltifr=round_half_up(ltifr, 2),
        lti_count=stats.lost_time_count,
        hours_worked=hours_worked,
    )


def near_miss_ratio(incidents: Iterable[Incident], window: Optional[TimeWindow] = None) -> NearMissRatioResult:
    """
    Near misses per actual incident. A healthy reporting culture sits at 10:1
    or better.
    """
    stats = incident_stats(incidents, window)
    near_misses = stats.total_near_miss
    actual = stats.total - near_misses

    if actual == 0:
        return NearMissRatioResult(
            ratio="Excellent" if near_misses > 0 else "N/A",
            near_miss_count=near_misses,
            incident_count=0,
            assessment="Good reporting culture" if near_misses > 0 else "No data",
        )

    ratio = near_misses / actual
    if ratio >= 10:
        assessment = "Excellent"
    elif ratio >= 5:
        assessment = "Good"
    elif ratio >= 2:
        assessment = "Fair"
    else:
        assessment = "Needs improvement"

    return NearMissRatioResult(
        ratio=round_half_up(ratio, 1),
        near_miss_count=near_misses,
        incident_count=actual,
        assessment=assessment,
    )


def _is_overdue(capa: Capa, now: datetime) -> bool:
    target = capa.effective_target_date
    return capa.status in ACTIVE_STATUSES and target is not None and now > target


def _percentage(part: int, whole: int) -> Optional[int]:
    return round_half_up(part / whole * 100) if whole else None


def capa_stats(capas: Iterable[Capa], now: datetime, window: Optional[TimeWindow] = None) -> CapaStats:
    """
    CAPA counts and rates, optionally restricted to CAPAs created in window.

    A CAPA counts as ineffective when verification said so or the issue
    recurred afterwards; as effective when verification said so and it has
    not since dropped to verified_ineffective.
    """
    selected = [c for c in capas if in_window(c.created_at, window)]
    stats = CapaStats(
        total=len(selected),
        by_status={s.value: 0 for s in CapaStatus},
        by_type={t.value: 0 for t in CapaType},
        by_priority={p.value: 0 for p in CapaPriority},
    )

    on_time = late = effective = ineffective = 0
    days_to_close: List[int] = []
    for capa in selected:
        stats.by_status[capa.status.value] += 1
        stats.by_type[capa.type.value] += 1
        stats.by_priority[capa.priority.value] += 1

        if _is_overdue(capa, now):
            stats.total_overdue += 1

        if capa.metrics.on_time is True:
            on_time += 1
        elif capa.metrics.on_time is False:
            late += 1

        if capa.status == CapaStatus.VERIFIED_EFFECTIVE:
            effective += 1
        elif capa.status == CapaStatus.VERIFIED_INEFFECTIVE:
            ineffective += 1

        if capa.closed_at and capa.created_at:
            days_to_close.append(elapsed_days_ceil(capa.created_at, capa.closed_at))

    stats.open_count = stats.by_status[CapaStatus.OPEN.value] + stats.by_status[CapaStatus.IN_PROGRESS.value]
    stats.closed_count = stats.by_status[CapaStatus.CLOSED.value] + stats.by_status[CapaStatus.VERIFIED_EFFECTIVE.value]
    stats.on_time_rate = _percentage(on_time, on_time + late)
    stats.effectiveness_rate = _percentage(effective, effective + ineffective)
    if days_to_close:
        stats.average_days_to_close = round_half_up(sum(days_to_close) / len(days_to_close))
    return stats


def overdue_capas(capas: Iterable[Capa], now: datetime) -> List[OverdueCapa]:
    """Open or in-progress CAPAs past their (revised) target date, most overdue first."""
    overdue = [c for c in capas if _is_overdue(c, now)]
    overdue.sort(key=lambda c: c.effective_target_date)
    return [
        OverdueCapa(capa=c, days_overdue=elapsed_days_ceil(c.effective_target_date, now))
        for c in overdue
    ]


def capas_due_soon(capas: Iterable[Capa], now: datetime, days: int = 7) -> List[DueSoonCapa]:
    """Open or in-progress CAPAs whose target falls within the next `days` days."""
    horizon = now + timedelta(days=days)
    due = [
        c for c in capas
        if c.status in ACTIVE_STATUSES
        and c.effective_target_date is not None
        and now <= c.effective_target_date <= horizon
    ]
    due.sort(key=lambda c: c.effective_target_date)
    return [
        DueSoonCapa(capa=c, days_remaining=elapsed_days_ceil(now, c.effective_target_date))
        for c in due
    ]


def days_since_last_incident(
    incidents: Iterable[Incident],
    now: datetime,
    exclude_near_miss: bool = True,
) -> DaysSinceLastIncident:
    candidates = [
        i for i in incidents
        if not exclude_near_miss or i.severity in STREAK_SEVERITIES
    ]
    if not candidates:
        return DaysSinceLastIncident(days=None, last_incident=None, message=NO_INCIDENTS_MESSAGE)

    last = max(candidates, key=lambda i: i.date_occurred)
    return DaysSinceLastIncident(days=elapsed_days_floor(last.date_occurred, now), last_incident=last)


def safety_score(metrics: Union[SafetyScoreInputs, Mapping[str, Optional[float]]]) -> Optional[int]:
    """
    Weighted composite of leading indicators, re-normalised over the inputs
    actually supplied. Values above 1 are read as percentages.
    """
    if isinstance(metrics, SafetyScoreInputs):
        metrics = metrics.model_dump()

    score = 0.0
    max_score = 0.0
    for key, weight in SAFETY_SCORE_WEIGHTS.items():
        value = metrics.get(key)
        if value is None:
            continue
        normalized = value / 100 if value > 1 else value
        score += normalized * weight * 100
        max_score += weight * 100

    if max_score == 0:
        return None
    return round_half_up(score / max_score * 100)


def _shift_month(year: int, month: int, offset: int):
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def incident_trend(incidents: Iterable[Incident], now: datetime, months: int = 12) -> List[TrendPoint]:
    """Per-calendar-month totals for the last `months` months, oldest first, current month included."""
    incidents = list(incidents)
    now = as_utc(now)
    trend = []
    for offset in range(months - 1, -1, -1):
        year, month = _shift_month(now.year, now.month, -offset)
        next_year, next_month = _shift_month(year, month, 1)
        start = now.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)
        end = start.replace(year=next_year, month=next_month) - timedelta(microseconds=1)

        stats = incident_stats(incidents, TimeWindow(start=start, end=end))
        trend.append(TrendPoint(
            month=start.strftime("%b %y"),
            date=start,
            total=stats.total,
            recordable=stats.total_recordable,
            near_miss=stats.total_near_miss,
            lost_days=stats.total_lost_days,
        ))
    return trend


class SafetyMetricsService:
    """Loads incidents and CAPAs from the store and runs the KPI calculations."""

    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or utc_now

    async def _incidents(self) -> List[Incident]:
        documents = await self.store.query(INCIDENTS, order_by="-date_occurred")
        return [Incident.model_validate(d) for d in documents]

    async def _capas(self, now: datetime) -> List[Capa]:
        documents = await self.store.query(CAPAS, order_by="-created_at")
        capas = [Capa.model_validate(d) for d in documents]
        for capa in capas:
            capa.metrics = live_metrics(capa, now)
        return capas

    async def incident_stats(self, window: Optional[TimeWindow] = None) -> IncidentStats:
        return incident_stats(await self._incidents(), window)

    async def trir(self, window: Optional[TimeWindow], hours_worked: Optional[float]) -> TRIRResult:
        return calculate_trir(await self._incidents(), window, hours_worked)

    async def ltifr(self, window: Optional[TimeWindow], hours_worked: Optional[float]) -> LTIFRResult:
        return calculate_ltifr(await self._incidents(), window, hours_worked)

    async def near_miss_ratio(self, window: Optional[TimeWindow] = None) -> NearMissRatioResult:
        return near_miss_ratio(await self._incidents(), window)

    async def capa_stats(self, window: Optional[TimeWindow] = None) -> CapaStats:
        now = self.clock()
        return capa_stats(await self._capas(now), now, window)

    async def overdue_capas(self) -> List[OverdueCapa]:
        now = self.clock()
        return overdue_capas(await self._capas(now), now)

    async def capas_due_soon(self, days: Optional[int] = None) -> List[DueSoonCapa]:
        now = self.clock()
        return capas_due_soon(await self._capas(now), now, days or self.settings.capa_due_soon_days)

    async def days_since_last_incident(self, exclude_near_miss: Optional[bool] = None) -> DaysSinceLastIncident:
        if exclude_near_miss is None:
            exclude_near_miss = self.settings.exclude_near_miss_from_streak
        return days_since_last_incident(await self._incidents(), self.clock(), exclude_near_miss)

    async def incident_trend(self, months: Optional[int] = None) -> List[TrendPoint]:
        return incident_trend(await self._incidents(), self.clock(), months or self.settings.trend_months)

    def safety_score(self, metrics: Union[SafetyScoreInputs, Mapping[str, Optional[float]]]) -> Optional[int]:
        return safety_score(metrics)

    async def dashboard(self) -> SafetyDashboard:
        """Roll-up for the safety dashboard: streak, YTD/MTD incidents, CAPA summary and action items."""
        now = as_utc(self.clock())
        ytd_start = now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
        mtd_start = ytd_start.replace(month=now.month)
        ytd = TimeWindow(start=ytd_start, end=now)
        mtd = TimeWindow(start=mtd_start, end=now)

        incidents = await self._incidents()
        capas = await self._capas(now)

        streak = days_since_last_incident(incidents, now, self.settings.exclude_near_miss_from_streak)
        ytd_stats = incident_stats(incidents, ytd)
        mtd_stats = incident_stats(incidents, mtd)
        c_stats = capa_stats(capas, now)
        overdue = overdue_capas(capas, now)
        due_soon = capas_due_soon(capas, now, self.settings.capa_due_soon_days)
        open_investigations = [i for i in incidents if i.status == IncidentStatus.UNDER_INVESTIGATION]

        logger.info(
            "Safety dashboard generated",
            extra={"extra_data": {
                "incidents_ytd": ytd_stats.total,
                "capas_overdue": len(overdue),
            }},
        )
        return SafetyDashboard(
            days_since_last_incident=streak.days,
            last_incident_info=streak.last_incident,
            incidents=IncidentDashboard(
                ytd=IncidentSummary(
                    total=ytd_stats.total,
                    recordable=ytd_stats.total_recordable,
                    near_miss=ytd_stats.total_near_miss,
                    lost_days=ytd_stats.total_lost_days,
                    by_type=ytd_stats.by_type,
                    by_severity=ytd_stats.by_severity,
                ),
                mtd=IncidentSummary(
                    total=mtd_stats.total,
                    recordable=mtd_stats.total_recordable,
                    near_miss=mtd_stats.total_near_miss,
                ),
                open_count=len(open_investigations),
                near_miss_ratio=near_miss_ratio(incidents, ytd),
            ),
            capas=CapaDashboard(
                total=c_stats.total,
                open=c_stats.open_count,
                overdue=c_stats.total_overdue,
                due_soon=len(due_soon),
                on_time_rate=c_stats.on_time_rate,
                effectiveness_rate=c_stats.effectiveness_rate,
                avg_days_to_close=c_stats.average_days_to_close,
                by_status=c_stats.by_status,
                by_priority=c_stats.by_priority,
            ),
            action_items=ActionItems(
                overdue_capas=overdue,
                capas_due_soon=due_soon,
                pending_notifications=incidents_requiring_notification(incidents),
                open_investigations=open_investigations,
            ),
            generated_at=now,
            period=DashboardPeriod(ytd_start=ytd_start, mtd_start=mtd_start),
        )
