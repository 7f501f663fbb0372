"""
Incident lifecycle against both store adapters.
"""
from datetime import datetime, timezone

import pytest

from safetyops.app.core.exceptions import InvalidTransitionError, NotFoundError, ValidationFailure
from safetyops.app.schemas.incidents import (
    IncidentCreate,
    IncidentFilters,
    IncidentStatus,
    IncidentType,
    IncidentUpdate,
    Investigation,
    InvolvedPerson,
    RpasIncidentType,
    Severity,
)
from safetyops.app.services.incident_service import IncidentLifecycle

OCCURRED = datetime(2026, 3, 8, 9, 30, tzinfo=timezone.utc)


def report(**fields) -> IncidentCreate:
    fields.setdefault("title", "Loss of C2 link over quarry")
    fields.setdefault("date_occurred", OCCURRED)
    fields.setdefault("reported_by", "A. Pilot")
    return IncidentCreate(**fields)


@pytest.mark.asyncio
async def test_create_incident_assigns_number_and_seeds_timeline(incidents, clock):
    incident = await incidents.create_incident(report(rpas_type=RpasIncidentType.FLY_AWAY))

    assert incident.id
    assert incident.incident_number == "INC-2026-0001"
    assert incident.status == IncidentStatus.REPORTED
    assert incident.date_reported == clock()
    assert incident.created_at == clock()
    assert incident.regulatory_notifications.tc_required is True
    assert incident.regulatory_notifications.tsb_required is False
    assert incident.linked_capas == []

    assert len(incident.timeline) == 1
    seed = incident.timeline[0]
    assert seed.action == "Incident Reported"
    assert seed.by == "A. Pilot"
    assert seed.notes == "Incident INC-2026-0001 created"


@pytest.mark.asyncio
async def test_incident_numbers_increase_and_reset_by_year(incidents, clock):
    first = await incidents.create_incident(report())
    second = await incidents.create_incident(report())
    clock.set(datetime(2027, 1, 2, 8, 0, tzinfo=timezone.utc))
    third = await incidents.create_incident(report())

    assert [first.incident_number, second.incident_number, third.incident_number] == [
        "INC-2026-0001", "INC-2026-0002", "INC-2027-0001",
    ]


@pytest.mark.asyncio
async def test_unknown_incident_raises_not_found(incidents):
    with pytest.raises(NotFoundError):
        await incidents.get_incident("missing")
    with pytest.raises(NotFoundError):
        await incidents.change_status("missing", IncidentStatus.UNDER_INVESTIGATION)
    with pytest.raises(NotFoundError):
        await incidents.close_incident("missing", "QA")


@pytest.mark.asyncio
async def test_status_change_appends_timeline(incidents, clock):
    incident = await incidents.create_incident(report())
    clock.advance(hours=2)

    updated = await incidents.change_status(
        incident.id, IncidentStatus.UNDER_INVESTIGATION, "Safety Manager", "Assigned to SM",
    )

    assert updated.status == IncidentStatus.UNDER_INVESTIGATION
    assert updated.investigation.started_date == clock()
    assert [e.action for e in updated.timeline] == ["Incident Reported", "Status changed to Under Investigation"]
    assert updated.timeline[-1].by == "Safety Manager"
    assert updated.timeline[-1].notes == "Assigned to SM"


@pytest.mark.asyncio
async def test_status_change_defaults_actor(incidents):
    incident = await incidents.create_incident(report())
    updated = await incidents.change_status(incident.id, IncidentStatus.ROOT_CAUSE_IDENTIFIED)
    assert updated.timeline[-1].by == "System"
    assert updated.investigation.completed_date is not None


@pytest.mark.asyncio
async def test_backwards_status_change_rejected(incidents):
    incident = await incidents.create_incident(report())
    await incidents.change_status(incident.id, IncidentStatus.CAPA_IN_PROGRESS)

    with pytest.raises(InvalidTransitionError):
        await incidents.change_status(incident.id, IncidentStatus.UNDER_INVESTIGATION)

    stored = await incidents.get_incident(incident.id)
    assert stored.status == IncidentStatus.CAPA_IN_PROGRESS
    assert len(stored.timeline) == 2


@pytest.mark.asyncio
async def test_permissive_mode_allows_any_status(store, permissive_settings, clock):
    lifecycle = IncidentLifecycle(store, settings=permissive_settings, clock=clock)
    incident = await lifecycle.create_incident(report())
    await lifecycle.change_status(incident.id, IncidentStatus.PENDING_VERIFICATION)

    reverted = await lifecycle.change_status(incident.id, IncidentStatus.REPORTED)
    assert reverted.status == IncidentStatus.REPORTED


@pytest.mark.asyncio
async def test_close_incident_computes_metrics(incidents, clock):
    incident = await incidents.create_incident(report())
    clock.advance(hours=6)
    await incidents.change_status(incident.id, IncidentStatus.UNDER_INVESTIGATION)
    clock.advance(days=2)
    await incidents.change_status(incident.id, IncidentStatus.ROOT_CAUSE_IDENTIFIED)
    clock.advance(days=1, hours=1)

    closed = await incidents.close_incident(incident.id, "Accountable Exec", "All actions verified")

    assert closed.status == IncidentStatus.CLOSED
    assert closed.closed_by == "Accountable Exec"
    assert closed.closed_at == clock()
    # created 3d 7h ago -> ceil 4
    assert closed.metrics.total_resolution_time == 4
    # occurred 2026-03-08 09:30, reported 2026-03-10 12:00 -> floor 2
    assert closed.metrics.reporting_delay == 2
    assert closed.metrics.investigation_duration == 2
    assert closed.timeline[-1].action == "Incident Closed"
    assert closed.timeline[-1].notes == "All actions verified"


@pytest.mark.asyncio
async def test_closed_incident_cannot_be_closed_again(incidents):
    incident = await incidents.create_incident(report())
    await incidents.change_status(incident.id, IncidentStatus.CLOSED, "QA")

    with pytest.raises(InvalidTransitionError):
        await incidents.close_incident(incident.id, "QA")


@pytest.mark.asyncio
async def test_record_investigation_starts_investigation(incidents):
    incident = await incidents.create_incident(report())
    findings = Investigation(assigned_to="Safety Manager", findings="Antenna connector loose")

    updated = await incidents.record_investigation(incident.id, findings, recorded_by="Safety Manager")

    assert updated.status == IncidentStatus.UNDER_INVESTIGATION
    assert updated.investigation.assigned is True
    assert updated.investigation.assigned_date is not None
    assert updated.investigation.findings == "Antenna connector loose"
    assert updated.investigation.started_date is not None


@pytest.mark.asyncio
async def test_update_incident_leaves_lifecycle_fields(incidents):
    incident = await incidents.create_incident(report())
    updated = await incidents.update_incident(incident.id, IncidentUpdate(location="Pit 2", description="Detail"))

    assert updated.location == "Pit 2"
    assert updated.description == "Detail"
    assert updated.status == IncidentStatus.REPORTED
    assert len(updated.timeline) == 1


@pytest.mark.asyncio
async def test_mark_notification_complete(incidents, clock):
    incident = await incidents.create_incident(report(severity=Severity.FATAL))
    clock.advance(minutes=30)

    updated = await incidents.mark_notification_complete(incident.id, "tsb", "A26P0001")
    notes = updated.regulatory_notifications
    assert notes.tsb_notified is True
    assert notes.tsb_notified_date == clock()
    assert notes.tsb_reference == "A26P0001"

    updated = await incidents.mark_notification_complete(incident.id, "aeria")
    assert updated.regulatory_notifications.aeria_notified is True


@pytest.mark.asyncio
async def test_mark_notification_invalid_type(incidents):
    incident = await incidents.create_incident(report())
    with pytest.raises(ValidationFailure):
        await incidents.mark_notification_complete(incident.id, "faa")


@pytest.mark.asyncio
async def test_incidents_requiring_notification(incidents):
    fatal = await incidents.create_incident(report(severity=Severity.FATAL))
    minor = await incidents.create_incident(report(type=IncidentType.FIRST_AID, severity=Severity.MINOR))
    await incidents.mark_notification_complete(minor.id, "aeria")

    pending = await incidents.incidents_requiring_notification()
    assert [i.id for i in pending] == [fatal.id]


@pytest.mark.asyncio
async def test_reassess_notifications_only_adds(incidents):
    incident = await incidents.create_incident(report(rpas_type=RpasIncidentType.FLY_AWAY))
    await incidents.update_incident(incident.id, IncidentUpdate(
        rpas_type=RpasIncidentType.EQUIPMENT_FAILURE,
        involved_persons=[InvolvedPerson(name="Observer", hospitalized=True)],
    ))

    reassessed = await incidents.reassess_notifications(incident.id)
    assert reassessed.regulatory_notifications.worksafebc_required is True
    # No longer triggered by the facts, but never withdrawn
    assert reassessed.regulatory_notifications.tc_required is True


@pytest.mark.asyncio
async def test_link_capa_is_idempotent(incidents):
    incident = await incidents.create_incident(report())
    await incidents.link_capa(incident.id, "capa-1")
    linked = await incidents.link_capa(incident.id, "capa-1")
    assert linked.linked_capas == ["capa-1"]


@pytest.mark.asyncio
async def test_list_incidents_filters(incidents, clock):
    fatal = await incidents.create_incident(report(severity=Severity.FATAL, project_id="p1"))
    clock.advance(minutes=1)
    near = await incidents.create_incident(report(project_id="p1"))
    clock.advance(minutes=1)
    old = await incidents.create_incident(report(date_occurred=datetime(2025, 6, 1, tzinfo=timezone.utc)))

    newest_first = await incidents.list_incidents()
    assert [i.id for i in newest_first] == [old.id, near.id, fatal.id]

    by_project = await incidents.list_incidents(IncidentFilters(project_id="p1", severity=Severity.FATAL))
    assert [i.id for i in by_project] == [fatal.id]

    in_2026 = await incidents.list_incidents(IncidentFilters(
        date_from=datetime(2026, 1, 1, tzinfo=timezone.utc),
        date_to=datetime(2026, 12, 31, tzinfo=timezone.utc),
    ))
    assert {i.id for i in in_2026} == {fatal.id, near.id}

    assert len(await incidents.list_incidents(IncidentFilters(limit=2))) == 2


@pytest.mark.asyncio
async def test_delete_incident(incidents):
    incident = await incidents.create_incident(report())
    await incidents.delete_incident(incident.id)
    with pytest.raises(NotFoundError):
        await incidents.get_incident(incident.id)
