"""
Incident Schemas and Enums.

Classification tables (type, RPAS occurrence type, severity, status) carry the
reference data the lifecycle and metrics code depend on: severity rank and
recordability, status display order.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict

from pydantic import BaseModel, Field

from safetyops.app.schemas.common import DocumentModel


class IncidentType(str, Enum):
    NEAR_MISS = "near_miss"
    FIRST_AID = "first_aid"
    MEDICAL_AID = "medical_aid"
    LOST_TIME = "lost_time"
    PROPERTY_DAMAGE = "property_damage"
    ENVIRONMENTAL = "environmental"
    REGULATORY = "regulatory"
    AIRCRAFT = "aircraft"

    @property
    def label(self) -> str:
        return INCIDENT_TYPES[self]["label"]


class RpasIncidentType(str, Enum):
    FLY_AWAY = "fly_away"
    LOSS_OF_CONTROL = "loss_of_control"
    COLLISION = "collision"
    BOUNDARY_VIOLATION = "boundary_violation"
    AIRSPACE_INCURSION = "airspace_incursion"
    EQUIPMENT_FAILURE = "equipment_failure"
    BATTERY_ISSUE = "battery_issue"
    C2_LINK_LOSS = "c2_link_loss"
    GPS_FAILURE = "gps_failure"
    NEAR_MISS_AIRCRAFT = "near_miss_aircraft"

    @property
    def label(self) -> str:
        return RPAS_INCIDENT_TYPES[self]["label"]


class Severity(str, Enum):
    """Ordered near_miss < minor < moderate < serious < critical < fatal."""
    NEAR_MISS = "near_miss"
    MINOR = "minor"
    MODERATE = "moderate"
    SERIOUS = "serious"
    CRITICAL = "critical"
    FATAL = "fatal"

    @property
    def rank(self) -> int:
        return SEVERITY_LEVELS[self]["value"]

    @property
    def recordable(self) -> bool:
        return SEVERITY_LEVELS[self]["recordable"]

    @property
    def label(self) -> str:
        return SEVERITY_LEVELS[self]["label"]


class IncidentStatus(str, Enum):
    REPORTED = "reported"
    UNDER_INVESTIGATION = "under_investigation"
    ROOT_CAUSE_IDENTIFIED = "root_cause_identified"
    CAPA_IN_PROGRESS = "capa_in_progress"
    PENDING_VERIFICATION = "pending_verification"
    CLOSED = "closed"

    @property
    def order(self) -> int:
        return INCIDENT_STATUS[self]["order"]

    @property
    def label(self) -> str:
        return INCIDENT_STATUS[self]["label"]


INCIDENT_TYPES: Dict[IncidentType, Dict] = {
    IncidentType.NEAR_MISS: {"label": "Near Miss", "severity": "near_miss"},
    IncidentType.FIRST_AID: {"label": "First Aid", "severity": "minor"},
    IncidentType.MEDICAL_AID: {"label": "Medical Aid", "severity": "moderate"},
    IncidentType.LOST_TIME: {"label": "Lost Time Injury", "severity": "serious"},
    IncidentType.PROPERTY_DAMAGE: {"label": "Property Damage", "severity": "varies"},
    IncidentType.ENVIRONMENTAL: {"label": "Environmental", "severity": "varies"},
    IncidentType.REGULATORY: {"label": "Regulatory Violation", "severity": "varies"},
    IncidentType.AIRCRAFT: {"label": "Aircraft Incident", "severity": "varies"},
}

RPAS_INCIDENT_TYPES: Dict[RpasIncidentType, Dict] = {
    RpasIncidentType.FLY_AWAY: {"label": "Fly-Away"},
    RpasIncidentType.LOSS_OF_CONTROL: {"label": "Loss of Control"},
    RpasIncidentType.COLLISION: {"label": "Collision"},
    RpasIncidentType.BOUNDARY_VIOLATION: {"label": "Boundary/Airspace Violation"},
    RpasIncidentType.AIRSPACE_INCURSION: {"label": "Airspace Incursion"},
    RpasIncidentType.EQUIPMENT_FAILURE: {"label": "Equipment Failure"},
    RpasIncidentType.BATTERY_ISSUE: {"label": "Battery Issue"},
    RpasIncidentType.C2_LINK_LOSS: {"label": "C2 Link Loss"},
    RpasIncidentType.GPS_FAILURE: {"label": "GPS Failure"},
    RpasIncidentType.NEAR_MISS_AIRCRAFT: {"label": "Near Miss with Aircraft"},
}

SEVERITY_LEVELS: Dict[Severity, Dict] = {
    Severity.NEAR_MISS: {"label": "Near Miss", "value": 0, "recordable": False},
    Severity.MINOR: {"label": "Minor (First Aid)", "value": 1, "recordable": False},
    Severity.MODERATE: {"label": "Moderate (Medical Aid)", "value": 2, "recordable": True},
    Severity.SERIOUS: {"label": "Serious (Lost Time)", "value": 3, "recordable": True},
    Severity.CRITICAL: {"label": "Critical", "value": 4, "recordable": True},
    Severity.FATAL: {"label": "Fatal", "value": 5, "recordable": True},
}

INCIDENT_STATUS: Dict[IncidentStatus, Dict] = {
    IncidentStatus.REPORTED: {"label": "Reported", "order": 1},
    IncidentStatus.UNDER_INVESTIGATION: {"label": "Under Investigation", "order": 2},
    IncidentStatus.ROOT_CAUSE_IDENTIFIED: {"label": "Root Cause Identified", "order": 3},
    IncidentStatus.CAPA_IN_PROGRESS: {"label": "CAPA In Progress", "order": 4},
    IncidentStatus.PENDING_VERIFICATION: {"label": "Pending Verification", "order": 5},
    IncidentStatus.CLOSED: {"label": "Closed", "order": 6},
}


class GpsCoordinates(DocumentModel):
    lat: float
    lng: float


class Witness(DocumentModel):
    name: str = ""
    contact: str = ""
    statement: str = ""


class InvolvedPerson(DocumentModel):
    name: str = ""
    role: str = ""
    injury_type: str = ""
    injury_description: str = ""
    treatment_received: str = ""
    days_lost: int = Field(0, ge=0)
    hospitalized: bool = False


class EquipmentDamage(DocumentModel):
    item: str = ""
    damage_description: str = ""
    estimated_cost: float = 0
    repairable: bool = True


class RegulatoryNotifications(DocumentModel):
    """TSB, Transport Canada and WorkSafeBC are requirement-driven; the internal one applies to every incident."""
    tsb_required: bool = False
    tsb_notified: bool = False
    tsb_notified_date: Optional[datetime] = None
    tsb_reference: str = ""

    tc_required: bool = False
    tc_notified: bool = False
    tc_notified_date: Optional[datetime] = None
    tc_reference: str = ""

    worksafebc_required: bool = False
    worksafebc_notified: bool = False
    worksafebc_notified_date: Optional[datetime] = None
    worksafebc_reference: str = ""

    aeria_notified: bool = False
    aeria_notified_date: Optional[datetime] = None


class ImmediateCauses(DocumentModel):
    substandard_acts: List[str] = Field(default_factory=list)
    substandard_conditions: List[str] = Field(default_factory=list)


class RootCauses(DocumentModel):
    personal_factors: List[str] = Field(default_factory=list)
    job_system_factors: List[str] = Field(default_factory=list)


class FiveWhy(DocumentModel):
    why: str = ""
    answer: str = ""


class Fishbone(DocumentModel):
    people: List[str] = Field(default_factory=list)
    process: List[str] = Field(default_factory=list)
    equipment: List[str] = Field(default_factory=list)
    environment: List[str] = Field(default_factory=list)
    management: List[str] = Field(default_factory=list)
    measurement: List[str] = Field(default_factory=list)


class Investigation(DocumentModel):
    assigned: bool = False
    assigned_to: str = ""
    assigned_date: Optional[datetime] = None
    started_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None

    immediate_causes: ImmediateCauses = Field(default_factory=ImmediateCauses)
    root_causes: RootCauses = Field(default_factory=RootCauses)
    five_whys: List[FiveWhy] = Field(default_factory=list)
    fishbone: Fishbone = Field(default_factory=Fishbone)

    findings: str = ""
    recommendations: List[str] = Field(default_factory=list)


class TimelineEntry(DocumentModel):
    date: datetime
    action: str
    by: str
    notes: str = ""


class IncidentMetrics(DocumentModel):
    reporting_delay: int = 0
    investigation_duration: int = 0
    total_resolution_time: int = 0


class IncidentCreate(DocumentModel):
    """Facts supplied when an incident is reported. Title and date occurred are required."""
    type: IncidentType = IncidentType.NEAR_MISS
    rpas_type: Optional[RpasIncidentType] = None
    severity: Severity = Severity.NEAR_MISS

    date_occurred: datetime
    time_occurred: str = ""
    reported_by: str = ""
    reported_by_email: str = ""
    location: str = ""
    gps_coordinates: Optional[GpsCoordinates] = None
    project_id: Optional[str] = None
    project_name: str = ""
    aircraft_id: Optional[str] = None
    aircraft_name: str = ""

    title: str = Field(..., min_length=1)
    description: str = ""
    immediate_actions: str = ""
    witnesses: List[Witness] = Field(default_factory=list)

    involved_persons: List[InvolvedPerson] = Field(default_factory=list)
    equipment_damage: List[EquipmentDamage] = Field(default_factory=list)


class IncidentUpdate(DocumentModel):
    """Editable incident facts. Status, timeline and notifications have their own operations."""
    type: Optional[IncidentType] = None
    rpas_type: Optional[RpasIncidentType] = None
    severity: Optional[Severity] = None
    date_occurred: Optional[datetime] = None
    time_occurred: Optional[str] = None
    location: Optional[str] = None
    gps_coordinates: Optional[GpsCoordinates] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    aircraft_id: Optional[str] = None
    aircraft_name: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    immediate_actions: Optional[str] = None
    witnesses: Optional[List[Witness]] = None
    involved_persons: Optional[List[InvolvedPerson]] = None
    equipment_damage: Optional[List[EquipmentDamage]] = None


class Incident(IncidentCreate):
    id: Optional[str] = None
    incident_number: str = ""
    date_reported: Optional[datetime] = None

    regulatory_notifications: RegulatoryNotifications = Field(default_factory=RegulatoryNotifications)
    investigation: Investigation = Field(default_factory=Investigation)
    timeline: List[TimelineEntry] = Field(default_factory=list)
    linked_capas: List[str] = Field(default_factory=list)
    status: IncidentStatus = IncidentStatus.REPORTED
    metrics: IncidentMetrics = Field(default_factory=IncidentMetrics)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by: str = ""


class IncidentFilters(BaseModel):
    status: Optional[IncidentStatus] = None
    type: Optional[IncidentType] = None
    severity: Optional[Severity] = None
    project_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: Optional[int] = Field(None, ge=1)


class StatusChangeRequest(BaseModel):
    status: IncidentStatus
    changed_by: Optional[str] = None
    notes: str = ""


class CloseRequest(BaseModel):
    closed_by: str
    notes: str = ""


class NotificationCompleteRequest(BaseModel):
    reference: str = ""


class InvestigationRequest(BaseModel):
    investigation: Investigation
    recorded_by: Optional[str] = None
