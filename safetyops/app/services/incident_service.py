"""
Incident Lifecycle.

reported -> under_investigation -> root_cause_identified -> capa_in_progress
-> pending_verification -> closed

Every status change and the closure append an entry to the incident's
timeline; the timeline is never rewritten. Each operation re-reads the
incident immediately before writing so appends build on the stored list.
"""
from typing import List, Optional

from safetyops.app.core.clock import Clock, as_utc, elapsed_days_ceil, elapsed_days_floor, utc_now
from safetyops.app.core.config import Settings, get_settings
from safetyops.app.core.exceptions import ValidationFailure
from safetyops.app.core.logging import get_logger
from safetyops.app.schemas.incidents import (
    Incident,
    IncidentCreate,
    IncidentFilters,
    IncidentMetrics,
    IncidentStatus,
    IncidentUpdate,
    Investigation,
    RegulatoryNotifications,
    TimelineEntry,
)
from safetyops.app.services.document_store import DocumentStore
from safetyops.app.services.identifiers import generate_number
from safetyops.app.services.lifecycle_rules import LifecyclePolicy
from safetyops.app.services.regulatory import (
    NOTIFICATION_FIELDS,
    NotificationType,
    determine_notifications,
    incidents_requiring_notification,
)

logger = get_logger(__name__)

INCIDENTS = "incidents"


class IncidentLifecycle:
    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.policy = LifecyclePolicy(enforce=self.settings.enforce_transitions)

    def _timeline_append(self, incident: Incident, action: str, by: Optional[str], notes: str = "") -> list:
        entry = TimelineEntry(
            date=self.clock(),
            action=action,
            by=by or self.settings.default_actor,
            notes=notes,
        )
        return [e.to_document() for e in incident.timeline] + [entry.to_document()]

    async def create_incident(self, data: IncidentCreate) -> Incident:
        """
        Report a new incident.

        Assigns the next INC number for the current year, resolves the
        regulatory notifications owed and seeds the timeline.
        """
        now = self.clock()
        ts = self.store.server_timestamp()
        incident_number = await generate_number(
            self.store, INCIDENTS, "incident_number",
            self.settings.incident_number_prefix, now.year,
        )

        requirements = determine_notifications(data)
        notifications = RegulatoryNotifications(**requirements.model_dump())
        seed = TimelineEntry(
            date=now,
            action="Incident Reported",
            by=data.reported_by or self.settings.default_actor,
            notes=f"Incident {incident_number} created",
        )

        document = data.to_document()
        document.update(
            incident_number=incident_number,
            date_reported=ts,
            regulatory_notifications=notifications.to_document(),
            investigation=Investigation().to_document(),
            timeline=[seed.to_document()],
            linked_capas=[],
            status=IncidentStatus.REPORTED.value,
            metrics=IncidentMetrics().to_document(),
            created_at=ts,
            updated_at=ts,
            closed_at=None,
            closed_by="",
        )

        incident_id = await self.store.create(INCIDENTS, document)
        logger.info(
            f"Incident created: {incident_number} ({incident_id})",
            extra={"extra_data": {
                "incident_id": incident_id,
                "severity": data.severity.value,
                "tsb_required": requirements.tsb_required,
                "tc_required": requirements.tc_required,
                "worksafebc_required": requirements.worksafebc_required,
            }},
        )
        return await self.get_incident(incident_id)

    async def get_incident(self, incident_id: str) -> Incident:
        document = await self.store.get_by_id(INCIDENTS, incident_id)
        return Incident.model_validate(document)

    async def list_incidents(self, filters: Optional[IncidentFilters] = None) -> List[Incident]:
        """Incidents matching every supplied filter, newest first."""
        filters = filters or IncidentFilters()
        equals = {
            "status": filters.status,
            "type": filters.type,
            "severity": filters.severity,
            "project_id": filters.project_id,
        }
        equals = {k: (v.value if hasattr(v, "value") else v) for k, v in equals.items() if v is not None}

        documents = await self.store.query(
            INCIDENTS,
            predicate=lambda d: all(d.get(k) == v for k, v in equals.items()),
            order_by="-created_at",
        )
        incidents = [Incident.model_validate(d) for d in documents]

        if filters.date_from and filters.date_to:
            start, end = as_utc(filters.date_from), as_utc(filters.date_to)
            incidents = [i for i in incidents if start <= i.date_occurred <= end]
            incidents.sort(key=lambda i: i.date_occurred, reverse=True)

        if filters.limit:
            incidents = incidents[:filters.limit]
        return incidents

    async def update_incident(self, incident_id: str, changes: IncidentUpdate) -> Incident:
        """Edit incident facts. Does not touch status, timeline or notifications."""
        await self.get_incident(incident_id)
        partial = changes.to_document(exclude_unset=True)
        if not partial:
            return await self.get_incident(incident_id)
        partial["updated_at"] = self.store.server_timestamp()
        await self.store.update(INCIDENTS, incident_id, partial)
        return await self.get_incident(incident_id)

    async def change_status(
        self,
        incident_id: str,
        new_status: IncidentStatus,
        actor: Optional[str] = None,
        notes: str = "",
    ) -> Incident:
        new_status = IncidentStatus(new_status)
        incident = await self.get_incident(incident_id)
        if new_status == incident.status:
            return incident
        if new_status == IncidentStatus.CLOSED:
            return await self.close_incident(incident_id, actor or self.settings.default_actor, notes)

        self.policy.check_incident(incident.status, new_status)

        ts = self.store.server_timestamp()
        partial = {
            "status": new_status.value,
            "timeline": self._timeline_append(incident, f"Status changed to {new_status.label}", actor, notes),
            "updated_at": ts,
        }
        if new_status == IncidentStatus.UNDER_INVESTIGATION and incident.investigation.started_date is None:
            partial["investigation.started_date"] = ts
        if new_status == IncidentStatus.ROOT_CAUSE_IDENTIFIED and incident.investigation.completed_date is None:
            partial["investigation.completed_date"] = ts

        await self.store.update(INCIDENTS, incident_id, partial)
        logger.info(f"Incident {incident.incident_number}: {incident.status.value} -> {new_status.value}")
        return await self.get_incident(incident_id)

    async def close_incident(self, incident_id: str, closed_by: str, notes: str = "") -> Incident:
        """Close from any open state and compute the closure metrics."""
        incident = await self.get_incident(incident_id)
        self.policy.check_incident_close(incident.status)

        now = self.clock()
        metrics = IncidentMetrics(
            reporting_delay=incident.metrics.reporting_delay,
            investigation_duration=incident.metrics.investigation_duration,
            total_resolution_time=incident.metrics.total_resolution_time,
        )
        if incident.created_at:
            metrics.total_resolution_time = elapsed_days_ceil(incident.created_at, now)
        reported = incident.date_reported or incident.created_at
        if reported:
            metrics.reporting_delay = max(0, elapsed_days_floor(incident.date_occurred, reported))
        started = incident.investigation.started_date
        if started:
            finished = incident.investigation.completed_date or now
            metrics.investigation_duration = max(0, elapsed_days_ceil(started, finished))

        ts = self.store.server_timestamp()
        await self.store.update(INCIDENTS, incident_id, {
            "status": IncidentStatus.CLOSED.value,
            "closed_at": ts,
            "closed_by": closed_by,
            "timeline": self._timeline_append(incident, "Incident Closed", closed_by, notes),
            "metrics": metrics.to_document(),
            "updated_at": ts,
        })
        logger.info(
            f"Incident {incident.incident_number} closed by {closed_by}",
            extra={"extra_data": {"total_resolution_time": metrics.total_resolution_time}},
        )
        return await self.get_incident(incident_id)

    async def record_investigation(
        self,
        incident_id: str,
        investigation: Investigation,
        recorded_by: Optional[str] = None,
    ) -> Incident:
        """Store investigation findings; a reported incident moves to under_investigation."""
        incident = await self.get_incident(incident_id)
        ts = self.store.server_timestamp()

        block = investigation.to_document()
        existing = incident.investigation
        if investigation.assigned_to:
            block["assigned"] = True
            if investigation.assigned_date is None:
                block["assigned_date"] = existing.assigned_date.isoformat() if existing.assigned_date else ts
        for field in ("started_date", "completed_date"):
            if block.get(field) is None and getattr(existing, field) is not None:
                block[field] = getattr(existing, field).isoformat()

        await self.store.update(INCIDENTS, incident_id, {"investigation": block, "updated_at": ts})

        if incident.status == IncidentStatus.REPORTED:
            return await self.change_status(
                incident_id, IncidentStatus.UNDER_INVESTIGATION, recorded_by, "Investigation started",
            )
        return await self.get_incident(incident_id)

    async def link_capa(self, incident_id: str, capa_id: str) -> Incident:
        """Append a CAPA id to the incident's linked CAPAs (no-op when already linked)."""
        incident = await self.get_incident(incident_id)
        if capa_id in incident.linked_capas:
            return incident
        await self.store.update(INCIDENTS, incident_id, {
            "linked_capas": [*incident.linked_capas, capa_id],
            "updated_at": self.store.server_timestamp(),
        })
        return await self.get_incident(incident_id)

    async def mark_notification_complete(
        self,
        incident_id: str,
        notification_type: str,
        reference: str = "",
    ) -> Incident:
        """Record that a regulator (or the internal contact) was told. Re-marking overwrites date and reference."""
        try:
            kind = NotificationType(notification_type)
        except ValueError:
            raise ValidationFailure(
                f"Invalid notification type: {notification_type}", field="notification_type",
            )

        await self.get_incident(incident_id)
        fields = NOTIFICATION_FIELDS[kind]
        ts = self.store.server_timestamp()
        partial = {fields["notified"]: True, fields["date"]: ts, "updated_at": ts}
        if fields["reference"] and reference:
            partial[fields["reference"]] = reference

        await self.store.update(INCIDENTS, incident_id, partial)
        logger.info(f"Notification {kind.value} marked complete for incident {incident_id}")
        return await self.get_incident(incident_id)

    async def reassess_notifications(self, incident_id: str) -> Incident:
        """
        Re-run the resolver against the incident's current facts.

        Only raises requirements; a requirement that no longer applies is kept,
        as is every notified flag and reference.
        """
        incident = await self.get_incident(incident_id)
        requirements = determine_notifications(incident)
        current = incident.regulatory_notifications

        partial = {}
        for flag in ("tsb_required", "tc_required", "worksafebc_required"):
            if getattr(requirements, flag) and not getattr(current, flag):
                partial[f"regulatory_notifications.{flag}"] = True

        if not partial:
            return incident
        partial["updated_at"] = self.store.server_timestamp()
        await self.store.update(INCIDENTS, incident_id, partial)
        logger.info(f"Notification requirements raised for incident {incident.incident_number}: {sorted(partial)}")
        return await self.get_incident(incident_id)

    async def incidents_requiring_notification(self) -> List[Incident]:
        reported = await self.list_incidents(IncidentFilters(status=IncidentStatus.REPORTED))
        return incidents_requiring_notification(reported)

    async def delete_incident(self, incident_id: str) -> None:
        """Remove the incident. Linked CAPAs are left in place."""
        incident = await self.get_incident(incident_id)
        await self.store.delete(INCIDENTS, incident_id)
        logger.info(f"Incident deleted: {incident.incident_number} ({incident_id})")
