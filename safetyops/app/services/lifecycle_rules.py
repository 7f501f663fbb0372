"""
Allowed status transitions for incidents and CAPAs.

Incidents move forward through the investigation stages and may skip ahead;
they never move backwards, and `closed` is terminal. CAPA lifecycle
operations additionally require a specific starting status (a CAPA can only
be verified once implementation is complete, and only a verified-effective
CAPA gets a recurrence check).

When enforcement is disabled every check passes, so any status may be
assigned from any status.
"""
from typing import Dict, FrozenSet, Optional

from safetyops.app.core.exceptions import InvalidTransitionError
from safetyops.app.schemas.capas import CapaStatus
from safetyops.app.schemas.incidents import IncidentStatus

INCIDENT_TRANSITIONS: Dict[IncidentStatus, FrozenSet[IncidentStatus]] = {
    status: frozenset(s for s in IncidentStatus if s.order > status.order)
    for status in IncidentStatus
}

CAPA_TRANSITIONS: Dict[CapaStatus, FrozenSet[CapaStatus]] = {
    CapaStatus.OPEN: frozenset({
        CapaStatus.IN_PROGRESS,
        CapaStatus.PENDING_VERIFICATION,
        CapaStatus.CLOSED,
    }),
    CapaStatus.IN_PROGRESS: frozenset({
        CapaStatus.PENDING_VERIFICATION,
        CapaStatus.CLOSED,
    }),
    CapaStatus.PENDING_VERIFICATION: frozenset({
        CapaStatus.VERIFIED_EFFECTIVE,
        CapaStatus.VERIFIED_INEFFECTIVE,
        CapaStatus.CLOSED,
    }),
    CapaStatus.VERIFIED_EFFECTIVE: frozenset({
        CapaStatus.VERIFIED_INEFFECTIVE,  # issue recurred
        CapaStatus.CLOSED,
    }),
    CapaStatus.VERIFIED_INEFFECTIVE: frozenset(),
    CapaStatus.CLOSED: frozenset(),
}

# Starting statuses each CAPA operation accepts
CAPA_OPERATION_SOURCES: Dict[str, FrozenSet[CapaStatus]] = {
    "start": frozenset({CapaStatus.OPEN}),
    "complete": frozenset({CapaStatus.OPEN, CapaStatus.IN_PROGRESS}),
    "verify": frozenset({CapaStatus.PENDING_VERIFICATION}),
    "recurrence_check": frozenset({CapaStatus.VERIFIED_EFFECTIVE}),
}

CAPA_TERMINAL = frozenset({CapaStatus.VERIFIED_INEFFECTIVE, CapaStatus.CLOSED})


class LifecyclePolicy:
    """Checks status changes against the transition tables."""

    def __init__(self, enforce: bool = True):
        self.enforce = enforce

    def check_incident(self, current: IncidentStatus, new: IncidentStatus) -> None:
        if not self.enforce:
            return
        if new not in INCIDENT_TRANSITIONS[current]:
            raise InvalidTransitionError("incident", current.value, new.value)

    def check_incident_close(self, current: IncidentStatus) -> None:
        """Close is reachable from every open state."""
        if self.enforce and current == IncidentStatus.CLOSED:
            raise InvalidTransitionError("incident", current.value, IncidentStatus.CLOSED.value)

    def check_capa(self, current: CapaStatus, new: CapaStatus, operation: Optional[str] = None) -> None:
        if not self.enforce:
            return
        sources = CAPA_OPERATION_SOURCES.get(operation) if operation else None
        if sources is not None and current not in sources:
            raise InvalidTransitionError("capa", current.value, new.value)
        if new not in CAPA_TRANSITIONS[current]:
            raise InvalidTransitionError("capa", current.value, new.value)
