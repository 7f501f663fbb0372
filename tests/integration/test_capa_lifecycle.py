"""
CAPA lifecycle against both store adapters.
"""
from datetime import datetime, timedelta, timezone

import pytest

from safetyops.app.core.exceptions import InvalidTransitionError, NotFoundError, ValidationFailure
from safetyops.app.schemas.capas import (
    CapaCreate,
    CapaFilters,
    CapaPriority,
    CapaStatus,
    CapaUpdate,
    CommentRequest,
    CompletionRequest,
    Evidence,
    FollowUpRequest,
    ImplementationStatus,
    RecurrenceCheckRequest,
    TargetDateRevision,
    VerificationRequest,
)
from safetyops.app.schemas.incidents import IncidentCreate
from safetyops.app.services.capa_service import CapaLifecycle, default_target_date
from safetyops.app.services.workflows import create_follow_up_capa, raise_capa_for_incident


def action(**fields) -> CapaCreate:
    fields.setdefault("title", "Replace C2 antenna connectors")
    fields.setdefault("assigned_to", "Maintenance Lead")
    fields.setdefault("assigned_by", "Safety Manager")
    return CapaCreate(**fields)


async def verified_effective(capas, capa_id):
    await capas.complete_capa(capa_id, CompletionRequest(actions_taken="done", completed_by="ML"))
    await capas.verify_capa(capa_id, VerificationRequest(verified_by="SM", effective=True))


@pytest.mark.asyncio
async def test_create_capa_seeds_status_history(capas, clock):
    capa = await capas.create_capa(action())

    assert capa.capa_number == "CAPA-2026-0001"
    assert capa.status == CapaStatus.OPEN
    assert capa.assigned_date == clock()
    assert capa.implementation.status == ImplementationStatus.NOT_STARTED
    assert len(capa.status_history) == 1
    entry = capa.status_history[0]
    assert entry.from_status is None
    assert entry.to_status == CapaStatus.OPEN
    assert entry.by == "Safety Manager"
    assert entry.reason == "CAPA created"


@pytest.mark.asyncio
async def test_unassigned_capa_has_no_assigned_date(capas):
    capa = await capas.create_capa(action(assigned_to="", assigned_by=""))
    assert capa.assigned_date is None
    assert capa.status_history[0].by == "System"


@pytest.mark.asyncio
async def test_unknown_capa_raises_not_found(capas):
    with pytest.raises(NotFoundError):
        await capas.get_capa("missing")
    with pytest.raises(NotFoundError):
        await capas.complete_capa("missing", CompletionRequest())


@pytest.mark.asyncio
async def test_complete_after_target_is_late(capas, clock):
    capa = await capas.create_capa(action(target_date=clock() + timedelta(days=1)))
    await capas.start_capa(capa.id, "Maintenance Lead")
    clock.advance(days=3)

    completed = await capas.complete_capa(capa.id, CompletionRequest(
        actions_taken="Connectors replaced fleet-wide",
        evidence=[Evidence(type="photo", description="Connector", url="https://example.test/1.jpg")],
        notes="All four airframes",
        completed_by="Maintenance Lead",
    ))

    assert completed.status == CapaStatus.PENDING_VERIFICATION
    assert completed.completed_date == clock()
    assert completed.metrics.on_time is False
    assert completed.implementation.status == ImplementationStatus.COMPLETE
    assert completed.implementation.actions_taken == "Connectors replaced fleet-wide"
    assert completed.implementation.evidence_provided[0].type == "photo"
    assert [h.to_status for h in completed.status_history] == [
        CapaStatus.OPEN, CapaStatus.IN_PROGRESS, CapaStatus.PENDING_VERIFICATION,
    ]


@pytest.mark.asyncio
async def test_complete_without_target_is_on_time(capas, clock):
    capa = await capas.create_capa(action())
    clock.advance(days=90)
    completed = await capas.complete_capa(capa.id, CompletionRequest())
    assert completed.metrics.on_time is True


@pytest.mark.asyncio
async def test_revised_target_date_governs_on_time(capas, clock):
    capa = await capas.create_capa(action(target_date=clock() + timedelta(days=1)))
    revised = await capas.revise_target_date(capa.id, TargetDateRevision(
        revised_target_date=clock() + timedelta(days=10), reason="Parts backordered", revised_by="SM",
    ))
    assert revised.revised_target_date == clock() + timedelta(days=10)
    assert revised.target_date == clock() + timedelta(days=1)
    assert revised.extension_reason == "Parts backordered"
    assert "Parts backordered" in revised.comments[-1].text

    clock.advance(days=5)
    completed = await capas.complete_capa(capa.id, CompletionRequest())
    assert completed.metrics.on_time is True


@pytest.mark.asyncio
async def test_verify_ineffective(capas):
    capa = await capas.create_capa(action())
    await capas.complete_capa(capa.id, CompletionRequest())

    result = await capas.verify_capa(capa.id, VerificationRequest(
        verified_by="SM", effective=False, findings="Link loss recurred in testing",
    ))
    assert result.effective is False
    assert result.status == CapaStatus.VERIFIED_INEFFECTIVE

    stored = await capas.get_capa(capa.id)
    assert stored.status == CapaStatus.VERIFIED_INEFFECTIVE
    assert stored.metrics.effectiveness_score == 0
    assert stored.verification.effective is False
    assert stored.verification.findings == "Link loss recurred in testing"
    assert stored.status_history[-1].reason == "Verified ineffective"


@pytest.mark.asyncio
async def test_verify_requires_completed_implementation(capas):
    capa = await capas.create_capa(action())
    with pytest.raises(InvalidTransitionError):
        await capas.verify_capa(capa.id, VerificationRequest(verified_by="SM", effective=True))
    assert (await capas.get_capa(capa.id)).status == CapaStatus.OPEN


@pytest.mark.asyncio
async def test_recurrence_check_recurred(capas):
    capa = await capas.create_capa(action())
    await verified_effective(capas, capa.id)

    checked = await capas.record_recurrence_check(capa.id, RecurrenceCheckRequest(
        checked_by="SM", recurred=True, notes="Seen again on 2026-04-02",
    ))
    assert checked.status == CapaStatus.VERIFIED_INEFFECTIVE
    assert checked.closed_at is None
    assert checked.verification.recurrence_check.recurred is True
    assert checked.status_history[-1].reason == "Issue recurred - CAPA ineffective"


@pytest.mark.asyncio
async def test_recurrence_check_clear_closes(capas, clock):
    capa = await capas.create_capa(action())
    await verified_effective(capas, capa.id)
    clock.advance(days=30)

    checked = await capas.record_recurrence_check(capa.id, RecurrenceCheckRequest(checked_by="SM", recurred=False))
    assert checked.status == CapaStatus.CLOSED
    assert checked.closed_at == clock()
    assert checked.verification.recurrence_check.check_date == clock()
    assert checked.status_history[-1].reason == "No recurrence - CAPA closed"
    # CAPA metrics written once
    assert checked.metrics.on_time is True
    assert checked.metrics.effectiveness_score == 100


@pytest.mark.asyncio
async def test_close_capa_directly(capas, clock):
    capa = await capas.create_capa(action())
    closed = await capas.close_capa(capa.id, "SM", "Duplicate of CAPA-2025-0012")

    assert closed.status == CapaStatus.CLOSED
    assert closed.closed_at == clock()
    assert closed.status_history[-1].by == "SM"
    assert closed.status_history[-1].reason == "Duplicate of CAPA-2025-0012"

    with pytest.raises(InvalidTransitionError):
        await capas.close_capa(capa.id, "SM")


@pytest.mark.asyncio
async def test_generic_status_change(capas):
    capa = await capas.create_capa(action())
    started = await capas.change_status(capa.id, CapaStatus.IN_PROGRESS, "ML", "Parts ordered")
    assert started.status == CapaStatus.IN_PROGRESS
    assert started.implementation.status == ImplementationStatus.IN_PROGRESS

    # Statuses carrying metrics go through their own operations
    with pytest.raises(InvalidTransitionError):
        await capas.change_status(capa.id, CapaStatus.VERIFIED_EFFECTIVE, "ML")


@pytest.mark.asyncio
async def test_permissive_mode_keeps_metrics_set_once(store, permissive_settings, clock):
    lifecycle = CapaLifecycle(store, settings=permissive_settings, clock=clock)
    capa = await lifecycle.create_capa(action())

    await lifecycle.verify_capa(capa.id, VerificationRequest(verified_by="SM", effective=True))
    await lifecycle.verify_capa(capa.id, VerificationRequest(verified_by="SM", effective=False))

    stored = await lifecycle.get_capa(capa.id)
    assert stored.status == CapaStatus.VERIFIED_INEFFECTIVE
    assert stored.metrics.effectiveness_score == 100


@pytest.mark.asyncio
async def test_comments_are_appended(capas, clock):
    capa = await capas.create_capa(action())
    first = await capas.add_comment(capa.id, CommentRequest(by="ML", text="Parts ordered"))
    clock.advance(hours=1)
    await capas.add_comment(capa.id, CommentRequest(by="SM", text="Chase supplier"))

    stored = await capas.get_capa(capa.id)
    assert first.date == stored.comments[0].date
    assert [c.text for c in stored.comments] == ["Parts ordered", "Chase supplier"]


@pytest.mark.asyncio
async def test_update_capa_reassignment_stamps_date(capas, clock):
    capa = await capas.create_capa(action())
    clock.advance(days=1)
    updated = await capas.update_capa(capa.id, CapaUpdate(assigned_to="Chief Pilot", root_cause="Worn connector"))

    assert updated.assigned_to == "Chief Pilot"
    assert updated.assigned_date == clock()
    assert updated.root_cause == "Worn connector"
    assert updated.status == CapaStatus.OPEN


@pytest.mark.asyncio
async def test_live_metrics(capas, clock):
    capa = await capas.create_capa(action(target_date=clock() + timedelta(days=1)))
    clock.advance(days=3, hours=2)

    stored = await capas.get_capa(capa.id)
    assert stored.metrics.days_open == 3
    assert stored.metrics.days_overdue == 3


@pytest.mark.asyncio
async def test_list_capas_filters(capas, clock):
    overdue = await capas.create_capa(action(priority=CapaPriority.HIGH, target_date=clock() + timedelta(days=1)))
    clock.advance(minutes=1)
    other = await capas.create_capa(action(related_incident_id="inc-1", assigned_to="Chief Pilot"))
    clock.advance(days=2)

    assert [c.id for c in await capas.list_capas()] == [other.id, overdue.id]
    assert [c.id for c in await capas.list_capas(CapaFilters(overdue=True))] == [overdue.id]
    assert [c.id for c in await capas.list_capas(CapaFilters(incident_id="inc-1"))] == [other.id]
    assert [c.id for c in await capas.list_capas(CapaFilters(priority=CapaPriority.HIGH))] == [overdue.id]
    assert [c.id for c in await capas.list_capas(CapaFilters(assigned_to="Chief Pilot"))] == [other.id]


@pytest.mark.asyncio
async def test_delete_capa(capas):
    capa = await capas.create_capa(action())
    await capas.delete_capa(capa.id)
    with pytest.raises(NotFoundError):
        await capas.get_capa(capa.id)


def test_default_target_date_by_priority():
    start = datetime(2026, 3, 10, tzinfo=timezone.utc)
    assert default_target_date(CapaPriority.CRITICAL, start) == start + timedelta(days=1)
    assert default_target_date(CapaPriority.LOW, start) == start + timedelta(days=30)


@pytest.mark.asyncio
async def test_raise_capa_for_incident_links_both_ways(incidents, capas, clock):
    incident = await incidents.create_incident(IncidentCreate(title="Fly-away", date_occurred=clock()))
    capa, linked = await raise_capa_for_incident(incidents, capas, incident.id, action())

    assert capa.related_incident_id == incident.id
    assert capa.source_id == incident.id
    assert capa.source_reference == incident.incident_number
    assert linked.linked_capas == [capa.id]


@pytest.mark.asyncio
async def test_raise_capa_for_missing_incident_creates_nothing(incidents, capas):
    with pytest.raises(NotFoundError):
        await raise_capa_for_incident(incidents, capas, "missing", action())
    assert await capas.list_capas() == []


@pytest.mark.asyncio
async def test_follow_up_capa_for_ineffective(incidents, capas, clock):
    incident = await incidents.create_incident(IncidentCreate(title="Fly-away", date_occurred=clock()))
    original, _ = await raise_capa_for_incident(incidents, capas, incident.id, action())
    await capas.complete_capa(original.id, CompletionRequest())
    await capas.verify_capa(original.id, VerificationRequest(verified_by="SM", effective=False))

    follow_up = await create_follow_up_capa(
        incidents, capas, original.id, FollowUpRequest(priority=CapaPriority.HIGH),
    )

    assert follow_up.title == "Follow-up: Replace C2 antenna connectors"
    assert follow_up.priority == CapaPriority.HIGH
    assert follow_up.related_capas == [original.id]
    assert follow_up.related_incident_id == incident.id
    assert (await capas.get_capa(original.id)).related_capas == [follow_up.id]
    assert (await incidents.get_incident(incident.id)).linked_capas == [original.id, follow_up.id]


@pytest.mark.asyncio
async def test_follow_up_requires_ineffective_capa(incidents, capas):
    capa = await capas.create_capa(action())
    with pytest.raises(ValidationFailure):
        await create_follow_up_capa(incidents, capas, capa.id)
