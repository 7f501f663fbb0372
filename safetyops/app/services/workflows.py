"""
Cross-entity workflows.

Each lifecycle service only writes its own entity. The steps that touch both an
incident and a CAPA are composed here so either half can still be called (and
tested) on its own.
"""
from typing import Optional, Tuple

from safetyops.app.core.exceptions import ValidationFailure
from safetyops.app.core.logging import get_logger
from safetyops.app.schemas.capas import Capa, CapaCreate, CapaSourceType, CapaStatus, FollowUpRequest
from safetyops.app.schemas.incidents import Incident
from safetyops.app.services.capa_service import CapaLifecycle
from safetyops.app.services.incident_service import IncidentLifecycle

logger = get_logger(__name__)


async def raise_capa_for_incident(
    incidents: IncidentLifecycle,
    capas: CapaLifecycle,
    incident_id: str,
    data: CapaCreate,
) -> Tuple[Capa, Incident]:
    """Create a CAPA sourced from an incident and add it to the incident's linked CAPAs."""
    incident = await incidents.get_incident(incident_id)

    data = data.model_copy(update={
        "source_type": CapaSourceType.INCIDENT,
        "source_id": incident.id,
        "source_reference": data.source_reference or incident.incident_number,
        "related_incident_id": incident.id,
    })
    capa = await capas.create_capa(data)
    incident = await incidents.link_capa(incident.id, capa.id)

    logger.info(f"CAPA {capa.capa_number} raised for incident {incident.incident_number}")
    return capa, incident


async def create_follow_up_capa(
    incidents: IncidentLifecycle,
    capas: CapaLifecycle,
    ineffective_capa_id: str,
    request: Optional[FollowUpRequest] = None,
) -> Capa:
    """
    Raise a new CAPA for a problem an earlier CAPA failed to fix.

    The two CAPAs reference each other through related_capas, and the new one
    is linked to the same incident when there is one.
    """
    request = request or FollowUpRequest()
    original = await capas.get_capa(ineffective_capa_id)
    if capas.policy.enforce and original.status != CapaStatus.VERIFIED_INEFFECTIVE:
        raise ValidationFailure(
            f"CAPA {original.capa_number} is {original.status.value}; follow-ups are raised for verified_ineffective CAPAs",
            field="status",
        )

    data = CapaCreate(
        source_type=original.source_type,
        source_id=original.source_id,
        source_reference=original.source_reference,
        type=original.type,
        priority=request.priority or original.priority,
        category=original.category,
        title=request.title or f"Follow-up: {original.title}",
        problem_statement=request.problem_statement or original.problem_statement,
        root_cause=original.root_cause,
        assigned_to=request.assigned_to or original.assigned_to,
        assigned_to_email="" if request.assigned_to else original.assigned_to_email,
        assigned_by=request.assigned_by or original.assigned_by,
        target_date=request.target_date,
        related_incident_id=original.related_incident_id,
        related_capas=[original.id],
    )
    follow_up = await capas.create_capa(data)
    await capas.link_related(original.id, follow_up.id)
    if original.related_incident_id:
        await incidents.link_capa(original.related_incident_id, follow_up.id)

    logger.info(f"Follow-up CAPA {follow_up.capa_number} raised for {original.capa_number}")
    return follow_up
