"""
Unit tests for the status transition tables.
"""
import pytest

from safetyops.app.core.exceptions import InvalidTransitionError
from safetyops.app.schemas.capas import CapaStatus
from safetyops.app.schemas.incidents import IncidentStatus
from safetyops.app.services.lifecycle_rules import (
    CAPA_TERMINAL,
    CAPA_TRANSITIONS,
    INCIDENT_TRANSITIONS,
    LifecyclePolicy,
)


@pytest.fixture
def policy():
    return LifecyclePolicy(enforce=True)


def test_incident_moves_forward_and_may_skip(policy):
    policy.check_incident(IncidentStatus.REPORTED, IncidentStatus.UNDER_INVESTIGATION)
    policy.check_incident(IncidentStatus.REPORTED, IncidentStatus.CAPA_IN_PROGRESS)


def test_incident_cannot_move_backwards(policy):
    with pytest.raises(InvalidTransitionError) as exc:
        policy.check_incident(IncidentStatus.CAPA_IN_PROGRESS, IncidentStatus.UNDER_INVESTIGATION)
    assert exc.value.details == {
        "entity": "incident",
        "current_status": "capa_in_progress",
        "new_status": "under_investigation",
    }


def test_closed_incident_is_terminal(policy):
    assert INCIDENT_TRANSITIONS[IncidentStatus.CLOSED] == frozenset()
    with pytest.raises(InvalidTransitionError):
        policy.check_incident_close(IncidentStatus.CLOSED)
    for status in IncidentStatus:
        if status != IncidentStatus.CLOSED:
            policy.check_incident_close(status)


def test_terminal_capa_statuses_have_no_exits():
    for status in CAPA_TERMINAL:
        assert CAPA_TRANSITIONS[status] == frozenset()


def test_verify_requires_pending_verification(policy):
    with pytest.raises(InvalidTransitionError):
        policy.check_capa(CapaStatus.OPEN, CapaStatus.VERIFIED_EFFECTIVE, "verify")
    policy.check_capa(CapaStatus.PENDING_VERIFICATION, CapaStatus.VERIFIED_EFFECTIVE, "verify")


def test_recurrence_check_requires_verified_effective(policy):
    with pytest.raises(InvalidTransitionError):
        policy.check_capa(CapaStatus.PENDING_VERIFICATION, CapaStatus.CLOSED, "recurrence_check")
    policy.check_capa(CapaStatus.VERIFIED_EFFECTIVE, CapaStatus.VERIFIED_INEFFECTIVE, "recurrence_check")
    policy.check_capa(CapaStatus.VERIFIED_EFFECTIVE, CapaStatus.CLOSED, "recurrence_check")


def test_permissive_policy_allows_anything():
    policy = LifecyclePolicy(enforce=False)
    policy.check_incident(IncidentStatus.CLOSED, IncidentStatus.REPORTED)
    policy.check_incident_close(IncidentStatus.CLOSED)
    policy.check_capa(CapaStatus.CLOSED, CapaStatus.OPEN)
    policy.check_capa(CapaStatus.OPEN, CapaStatus.VERIFIED_EFFECTIVE, "verify")
