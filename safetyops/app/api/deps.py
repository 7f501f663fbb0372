"""FastAPI dependencies wiring the lifecycle services to the configured store."""

from fastapi import Depends, Request

from safetyops.app.core.clock import Clock, utc_now
from safetyops.app.core.config import Settings, get_settings
from safetyops.app.core.database import async_session_maker
from safetyops.app.core.logging import entity_id_ctx
from safetyops.app.services.capa_service import CapaLifecycle
from safetyops.app.services.document_store import DocumentStore, SqlDocumentStore
from safetyops.app.services.incident_service import IncidentLifecycle
from safetyops.app.services.metrics_engine import SafetyMetricsService


def get_clock() -> Clock:
    return utc_now


def get_store(clock: Clock = Depends(get_clock)) -> DocumentStore:
    return SqlDocumentStore(async_session_maker, clock=clock)


def get_incident_lifecycle(
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> IncidentLifecycle:
    return IncidentLifecycle(store, settings=settings, clock=clock)


def get_capa_lifecycle(
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> CapaLifecycle:
    return CapaLifecycle(store, settings=settings, clock=clock)


def get_metrics_service(
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> SafetyMetricsService:
    return SafetyMetricsService(store, settings=settings, clock=clock)


async def bind_entity_id(request: Request) -> None:
    """Tag log lines for this request with the incident/CAPA id in the path."""
    entity_id = request.path_params.get("incident_id") or request.path_params.get("capa_id")
    if entity_id:
        entity_id_ctx.set(entity_id)
