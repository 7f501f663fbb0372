"""
CAPA API Router.

open -> in_progress -> pending_verification -> verified_effective | verified_ineffective -> closed
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from safetyops.app.api.deps import get_capa_lifecycle, get_incident_lifecycle
from safetyops.app.schemas.capas import (
    Capa,
    CapaCloseRequest,
    CapaCreate,
    CapaFilters,
    CapaPriority,
    CapaSourceType,
    CapaStatus,
    CapaStatusChangeRequest,
    CapaType,
    CapaUpdate,
    Comment,
    CommentRequest,
    CompletionRequest,
    FollowUpRequest,
    RecurrenceCheckRequest,
    TargetDateRecommendation,
    TargetDateRevision,
    VerificationRequest,
    VerificationResult,
)
from safetyops.app.services.capa_service import CapaLifecycle
from safetyops.app.services.incident_service import IncidentLifecycle
from safetyops.app.services.workflows import create_follow_up_capa

router = APIRouter()


@router.post("/", response_model=Capa, status_code=status.HTTP_201_CREATED)
async def create_capa(
    payload: CapaCreate,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    """
    Open a standalone CAPA (audit finding, observation, ...).
    CAPAs raised from an incident go through POST /incidents/{id}/capas.
    """
    return await capas.create_capa(payload)


@router.get("/", response_model=List[Capa])
async def list_capas(
    status_filter: Optional[CapaStatus] = Query(None, alias="status"),
    assigned_to: Optional[str] = Query(None),
    priority: Optional[CapaPriority] = Query(None),
    type: Optional[CapaType] = Query(None),
    source_type: Optional[CapaSourceType] = Query(None),
    incident_id: Optional[str] = Query(None),
    overdue: bool = Query(False),
    limit: Optional[int] = Query(None, ge=1),
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    filters = CapaFilters(
        status=status_filter,
        assigned_to=assigned_to,
        priority=priority,
        type=type,
        source_type=source_type,
        incident_id=incident_id,
        overdue=overdue,
        limit=limit,
    )
    return await capas.list_capas(filters)


@router.get("/recommended-target-date", response_model=TargetDateRecommendation)
async def get_recommended_target_date(
    priority: CapaPriority = Query(CapaPriority.MEDIUM),
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    """Target date implied by the priority's resolution window, counted from now."""
    return capas.recommended_target_date(priority)


@router.get("/{capa_id}", response_model=Capa)
async def get_capa(
    capa_id: str,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    return await capas.get_capa(capa_id)


@router.patch("/{capa_id}", response_model=Capa)
async def update_capa(
    capa_id: str,
    payload: CapaUpdate,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    return await capas.update_capa(capa_id, payload)


@router.post("/{capa_id}/status", response_model=Capa)
async def change_capa_status(
    capa_id: str,
    payload: CapaStatusChangeRequest,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    return await capas.change_status(capa_id, payload.status, payload.changed_by, payload.reason)


@router.post("/{capa_id}/start", response_model=Capa)
async def start_capa(
    capa_id: str,
    started_by: Optional[str] = Query(None),
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    return await capas.start_capa(capa_id, started_by)


@router.post("/{capa_id}/complete", response_model=Capa)
async def complete_capa(
    capa_id: str,
    payload: CompletionRequest,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    """Record implementation complete; on-time is judged against the (revised) target date."""
    return await capas.complete_capa(capa_id, payload)


@router.post("/{capa_id}/verify", response_model=VerificationResult)
async def verify_capa(
    capa_id: str,
    payload: VerificationRequest,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    return await capas.verify_capa(capa_id, payload)


@router.post("/{capa_id}/recurrence-check", response_model=Capa)
async def record_recurrence_check(
    capa_id: str,
    payload: RecurrenceCheckRequest,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    return await capas.record_recurrence_check(capa_id, payload)


@router.post("/{capa_id}/close", response_model=Capa)
async def close_capa(
    capa_id: str,
    payload: CapaCloseRequest,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    return await capas.close_capa(capa_id, payload.closed_by, payload.notes)


@router.post("/{capa_id}/target-date", response_model=Capa)
async def revise_target_date(
    capa_id: str,
    payload: TargetDateRevision,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    return await capas.revise_target_date(capa_id, payload)


@router.post("/{capa_id}/comments", response_model=Comment, status_code=status.HTTP_201_CREATED)
async def add_comment(
    capa_id: str,
    payload: CommentRequest,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    return await capas.add_comment(capa_id, payload)


@router.post("/{capa_id}/follow-up", response_model=Capa, status_code=status.HTTP_201_CREATED)
async def create_follow_up(
    capa_id: str,
    payload: Optional[FollowUpRequest] = None,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    """Raise a follow-up for a CAPA verified as ineffective."""
    return await create_follow_up_capa(incidents, capas, capa_id, payload)


@router.delete("/{capa_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_capa(
    capa_id: str,
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    await capas.delete_capa(capa_id)
