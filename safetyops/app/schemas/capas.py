"""
CAPA (Corrective and Preventive Action) Schemas and Enums.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict

from pydantic import BaseModel, Field

from safetyops.app.schemas.common import DocumentModel


class CapaStatus(str, Enum):
    """verified_ineffective and closed are terminal."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED_EFFECTIVE = "verified_effective"
    VERIFIED_INEFFECTIVE = "verified_ineffective"
    CLOSED = "closed"

    @property
    def order(self) -> int:
        return CAPA_STATUS[self]["order"]

    @property
    def label(self) -> str:
        return CAPA_STATUS[self]["label"]


class CapaType(str, Enum):
    CORRECTIVE = "corrective"
    PREVENTIVE = "preventive"
    IMPROVEMENT = "improvement"


class CapaPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def days_to_resolve(self) -> int:
        return PRIORITY_LEVELS[self]["days_to_resolve"]


class CapaSourceType(str, Enum):
    INCIDENT = "incident"
    AUDIT = "audit"
    OBSERVATION = "observation"
    INSPECTION = "inspection"
    MEETING = "meeting"
    DRILL = "drill"


class ImplementationStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


CAPA_STATUS: Dict[CapaStatus, Dict] = {
    CapaStatus.OPEN: {"label": "Open", "order": 1},
    CapaStatus.IN_PROGRESS: {"label": "In Progress", "order": 2},
    CapaStatus.PENDING_VERIFICATION: {"label": "Pending Verification", "order": 3},
    CapaStatus.VERIFIED_EFFECTIVE: {"label": "Verified Effective", "order": 4},
    CapaStatus.VERIFIED_INEFFECTIVE: {"label": "Verified Ineffective", "order": 5},
    CapaStatus.CLOSED: {"label": "Closed", "order": 6},
}

CAPA_TYPES: Dict[CapaType, Dict] = {
    CapaType.CORRECTIVE: {"label": "Corrective Action", "description": "Fix the immediate problem"},
    CapaType.PREVENTIVE: {"label": "Preventive Action", "description": "Prevent recurrence"},
    CapaType.IMPROVEMENT: {"label": "Continuous Improvement", "description": "Enhance existing controls"},
}

PRIORITY_LEVELS: Dict[CapaPriority, Dict] = {
    CapaPriority.CRITICAL: {"label": "Critical", "days_to_resolve": 1},
    CapaPriority.HIGH: {"label": "High", "days_to_resolve": 7},
    CapaPriority.MEDIUM: {"label": "Medium", "days_to_resolve": 14},
    CapaPriority.LOW: {"label": "Low", "days_to_resolve": 30},
}


class ActionDetails(DocumentModel):
    description: str = ""
    methodology: str = ""
    resources: List[str] = Field(default_factory=list)
    estimated_cost: float = 0
    actual_cost: float = 0


class Evidence(DocumentModel):
    type: str = ""
    description: str = ""
    url: str = ""
    uploaded_at: Optional[datetime] = None


class Implementation(DocumentModel):
    status: ImplementationStatus = ImplementationStatus.NOT_STARTED
    actions_taken: str = ""
    evidence_provided: List[Evidence] = Field(default_factory=list)
    resources_used: List[str] = Field(default_factory=list)
    completion_notes: str = ""


class RecurrenceCheck(DocumentModel):
    required: bool = True
    check_date: Optional[datetime] = None
    checked_by: str = ""
    recurred: Optional[bool] = None
    notes: str = ""


class Verification(DocumentModel):
    required: bool = True
    method: str = ""  # inspection | audit | review | testing | observation
    criteria: str = ""
    verified_by: str = ""
    verified_date: Optional[datetime] = None
    effective: Optional[bool] = None
    evidence: str = ""
    findings: str = ""
    recurrence_check: RecurrenceCheck = Field(default_factory=RecurrenceCheck)


class StatusHistoryEntry(DocumentModel):
    date: datetime
    from_status: Optional[CapaStatus] = Field(None, alias="from")
    to_status: CapaStatus = Field(..., alias="to")
    by: str
    reason: str = ""

    def to_document(self, **kwargs) -> dict:
        return self.model_dump(mode="json", by_alias=True, **kwargs)


class Comment(DocumentModel):
    date: datetime
    by: str
    text: str


class CapaMetrics(DocumentModel):
    days_open: int = 0
    days_overdue: int = 0
    on_time: Optional[bool] = None
    effectiveness_score: Optional[int] = None


class CapaCreate(DocumentModel):
    source_type: CapaSourceType = CapaSourceType.INCIDENT
    source_id: Optional[str] = None
    source_reference: str = ""

    type: CapaType = CapaType.CORRECTIVE
    priority: CapaPriority = CapaPriority.MEDIUM
    category: str = ""

    title: str = Field(..., min_length=1)
    problem_statement: str = ""
    root_cause: str = ""

    assigned_to: str = ""
    assigned_to_email: str = ""
    assigned_by: str = ""
    target_date: Optional[datetime] = None

    action: ActionDetails = Field(default_factory=ActionDetails)
    verification: Verification = Field(default_factory=Verification)

    related_incident_id: Optional[str] = None
    related_capas: List[str] = Field(default_factory=list)


class CapaUpdate(DocumentModel):
    """Editable CAPA fields. Status moves through the lifecycle operations."""
    category: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1)
    problem_statement: Optional[str] = None
    root_cause: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_to_email: Optional[str] = None
    target_date: Optional[datetime] = None
    action: Optional[ActionDetails] = None


class Capa(CapaCreate):
    id: Optional[str] = None
    capa_number: str = ""

    assigned_date: Optional[datetime] = None
    revised_target_date: Optional[datetime] = None
    extension_reason: str = ""
    completed_date: Optional[datetime] = None

    implementation: Implementation = Field(default_factory=Implementation)

    status: CapaStatus = CapaStatus.OPEN
    comments: List[Comment] = Field(default_factory=list)
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    metrics: CapaMetrics = Field(default_factory=CapaMetrics)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def effective_target_date(self) -> Optional[datetime]:
        return self.revised_target_date or self.target_date


class CapaFilters(BaseModel):
    status: Optional[CapaStatus] = None
    assigned_to: Optional[str] = None
    priority: Optional[CapaPriority] = None
    type: Optional[CapaType] = None
    source_type: Optional[CapaSourceType] = None
    incident_id: Optional[str] = None
    overdue: bool = False
    limit: Optional[int] = Field(None, ge=1)


class CompletionRequest(BaseModel):
    actions_taken: str = ""
    evidence: List[Evidence] = Field(default_factory=list)
    notes: str = ""
    completed_by: Optional[str] = None


class VerificationRequest(BaseModel):
    verified_by: str
    effective: bool
    evidence: str = ""
    findings: str = ""


class VerificationResult(BaseModel):
    effective: bool
    status: CapaStatus


class RecurrenceCheckRequest(BaseModel):
    checked_by: str
    recurred: bool
    notes: str = ""


class CapaStatusChangeRequest(BaseModel):
    status: CapaStatus
    changed_by: Optional[str] = None
    reason: str = ""


class CapaCloseRequest(BaseModel):
    closed_by: str
    notes: str = ""


class TargetDateRevision(BaseModel):
    revised_target_date: datetime
    reason: str = Field(..., min_length=1)
    revised_by: Optional[str] = None


class CommentRequest(BaseModel):
    by: str
    text: str = Field(..., min_length=1)


class FollowUpRequest(BaseModel):
    """Overrides for a follow-up CAPA raised against an ineffective one."""
    title: Optional[str] = None
    assigned_to: str = ""
    assigned_by: str = ""
    priority: Optional[CapaPriority] = None
    target_date: Optional[datetime] = None
    problem_statement: str = ""


class TargetDateRecommendation(BaseModel):
    priority: CapaPriority
    days_to_resolve: int
    target_date: datetime
