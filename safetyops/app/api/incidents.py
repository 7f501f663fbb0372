"""
Incident API Router.

Reporting, investigation, regulatory notification tracking and closure.
Status may only move forward while transitions are enforced.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from safetyops.app.api.deps import get_capa_lifecycle, get_incident_lifecycle
from safetyops.app.schemas.capas import Capa, CapaCreate
from safetyops.app.schemas.incidents import (
    CloseRequest,
    Incident,
    IncidentCreate,
    IncidentFilters,
    IncidentStatus,
    IncidentType,
    IncidentUpdate,
    InvestigationRequest,
    NotificationCompleteRequest,
    Severity,
    StatusChangeRequest,
)
from safetyops.app.services.capa_service import CapaLifecycle
from safetyops.app.services.incident_service import IncidentLifecycle
from safetyops.app.services.workflows import raise_capa_for_incident

router = APIRouter()


@router.post("/", response_model=Incident, status_code=status.HTTP_201_CREATED)
async def create_incident(
    payload: IncidentCreate,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    """Report an incident. Regulatory notifications owed are resolved on creation."""
    return await incidents.create_incident(payload)


@router.get("/", response_model=List[Incident])
async def list_incidents(
    status_filter: Optional[IncidentStatus] = Query(None, alias="status"),
    type: Optional[IncidentType] = Query(None),
    severity: Optional[Severity] = Query(None),
    project_id: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    filters = IncidentFilters(
        status=status_filter,
        type=type,
        severity=severity,
        project_id=project_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )
    return await incidents.list_incidents(filters)


@router.get("/requiring-notification", response_model=List[Incident])
async def list_incidents_requiring_notification(
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    """Reported incidents that still owe a regulator or internal notification."""
    return await incidents.incidents_requiring_notification()


@router.get("/{incident_id}", response_model=Incident)
async def get_incident(
    incident_id: str,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    return await incidents.get_incident(incident_id)


@router.patch("/{incident_id}", response_model=Incident)
async def update_incident(
    incident_id: str,
    payload: IncidentUpdate,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    return await incidents.update_incident(incident_id, payload)


@router.post("/{incident_id}/status", response_model=Incident)
async def change_incident_status(
    incident_id: str,
    payload: StatusChangeRequest,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    return await incidents.change_status(incident_id, payload.status, payload.changed_by, payload.notes)


@router.post("/{incident_id}/investigation", response_model=Incident)
async def record_investigation(
    incident_id: str,
    payload: InvestigationRequest,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    return await incidents.record_investigation(incident_id, payload.investigation, payload.recorded_by)


@router.post("/{incident_id}/close", response_model=Incident)
async def close_incident(
    incident_id: str,
    payload: CloseRequest,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    return await incidents.close_incident(incident_id, payload.closed_by, payload.notes)


@router.post("/{incident_id}/notifications/reassess", response_model=Incident)
async def reassess_notifications(
    incident_id: str,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    return await incidents.reassess_notifications(incident_id)


@router.post("/{incident_id}/notifications/{notification_type}/complete", response_model=Incident)
async def mark_notification_complete(
    incident_id: str,
    notification_type: str,
    payload: NotificationCompleteRequest,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    return await incidents.mark_notification_complete(incident_id, notification_type, payload.reference)


@router.post("/{incident_id}/capas", response_model=Capa, status_code=status.HTTP_201_CREATED)
async def raise_capa(
    incident_id: str,
    payload: CapaCreate,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
    capas: CapaLifecycle = Depends(get_capa_lifecycle),
):
    """Open a CAPA against this incident and link it."""
    capa, _ = await raise_capa_for_incident(incidents, capas, incident_id, payload)
    return capa


@router.delete("/{incident_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_incident(
    incident_id: str,
    incidents: IncidentLifecycle = Depends(get_incident_lifecycle),
):
    await incidents.delete_incident(incident_id)
