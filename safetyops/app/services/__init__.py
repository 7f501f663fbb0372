"""Services package."""

from safetyops.app.services.capa_service import CapaLifecycle
from safetyops.app.services.document_store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    InMemoryDocumentStore,
    SqlDocumentStore,
)
from safetyops.app.services.incident_service import IncidentLifecycle
from safetyops.app.services.metrics_engine import SafetyMetricsService
from safetyops.app.services.regulatory import determine_notifications
from safetyops.app.services.workflows import create_follow_up_capa, raise_capa_for_incident

__all__ = [
    "CapaLifecycle",
    "DocumentStore",
    "IncidentLifecycle",
    "InMemoryDocumentStore",
    "SERVER_TIMESTAMP",
    "SafetyMetricsService",
    "SqlDocumentStore",
    "create_follow_up_capa",
    "determine_notifications",
    "raise_capa_for_incident",
]
