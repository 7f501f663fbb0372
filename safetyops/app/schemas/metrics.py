"""Result shapes produced by the metrics/KPI engine."""
from datetime import datetime
from typing import Optional, List, Dict, Union

from pydantic import BaseModel, Field

from safetyops.app.schemas.capas import Capa
from safetyops.app.schemas.incidents import Incident


class TimeWindow(BaseModel):
    start: datetime
    end: datetime


class IncidentStats(BaseModel):
    total: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_rpas_type: Dict[str, int] = Field(default_factory=dict)
    total_recordable: int = 0
    total_near_miss: int = 0
    total_lost_days: int = 0
    lost_time_count: int = 0


class TRIRResult(BaseModel):
    trir: float = 0
    recordable_count: int = 0
    hours_worked: Optional[float] = None
    message: Optional[str] = None


class LTIFRResult(BaseModel):
    ltifr: float = 0
    lti_count: int = 0
    hours_worked: Optional[float] = None
    message: Optional[str] = None


class NearMissRatioResult(BaseModel):
    # "Excellent" / "N/A" when there are no actual incidents to divide by
    ratio: Union[float, str]
    near_miss_count: int
    incident_count: int
    assessment: str


class CapaStats(BaseModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)
    total_overdue: int = 0
    open_count: int = 0
    closed_count: int = 0
    on_time_rate: Optional[int] = None
    effectiveness_rate: Optional[int] = None
    average_days_to_close: Optional[int] = None


class OverdueCapa(BaseModel):
    capa: Capa
    days_overdue: int


class DueSoonCapa(BaseModel):
    capa: Capa
    days_remaining: int


class DaysSinceLastIncident(BaseModel):
    days: Optional[int] = None
    last_incident: Optional[Incident] = None
    message: Optional[str] = None


class TrendPoint(BaseModel):
    month: str
    date: datetime
    total: int
    recordable: int
    near_miss: int
    lost_days: int


class SafetyScoreInputs(BaseModel):
    """Leading indicators, each a fraction (0-1) or a percentage (0-100)."""
    flha_completion: Optional[float] = None
    training_compliance: Optional[float] = None
    inspection_compliance: Optional[float] = None
    capa_on_time: Optional[float] = None
    action_closure: Optional[float] = None
    near_miss_reporting: Optional[float] = None
    meeting_attendance: Optional[float] = None
    equipment_airworthy: Optional[float] = None


class SafetyScoreResult(BaseModel):
    score: Optional[int] = None


class IncidentSummary(BaseModel):
    total: int
    recordable: int
    near_miss: int
    lost_days: Optional[int] = None
    by_type: Optional[Dict[str, int]] = None
    by_severity: Optional[Dict[str, int]] = None


class IncidentDashboard(BaseModel):
    ytd: IncidentSummary
    mtd: IncidentSummary
    open_count: int
    near_miss_ratio: NearMissRatioResult


class CapaDashboard(BaseModel):
    total: int
    open: int
    overdue: int
    due_soon: int
    on_time_rate: Optional[int] = None
    effectiveness_rate: Optional[int] = None
    avg_days_to_close: Optional[int] = None
    by_status: Dict[str, int]
    by_priority: Dict[str, int]


class ActionItems(BaseModel):
    overdue_capas: List[OverdueCapa]
    capas_due_soon: List[DueSoonCapa]
    pending_notifications: List[Incident]
    open_investigations: List[Incident]


class DashboardPeriod(BaseModel):
    ytd_start: datetime
    mtd_start: datetime


class SafetyDashboard(BaseModel):
    days_since_last_incident: Optional[int] = None
    last_incident_info: Optional[Incident] = None
    incidents: IncidentDashboard
    capas: CapaDashboard
    action_items: ActionItems
    generated_at: datetime
    period: DashboardPeriod
