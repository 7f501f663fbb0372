"""
Regulatory Notification Resolver.

Decides which external bodies must be told about an incident:
- TSB (Transportation Safety Board): fatalities, serious injuries with
  hospitalisation, collisions and near misses with manned aircraft.
- Transport Canada (CADORS): loss of RPAS control or containment, and any
  aircraft incident.
- WorkSafeBC: fatal or serious injuries and any hospitalisation.
- Internal (Aeria accountable executive): every incident.

The resolver is a pure function evaluated once at incident creation.
"""
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel

from safetyops.app.schemas.incidents import (
    Incident,
    IncidentCreate,
    IncidentStatus,
    IncidentType,
    RegulatoryNotifications,
    RpasIncidentType,
    Severity,
)


class NotificationType(str, Enum):
    TSB = "tsb"
    TC = "tc"
    WORKSAFEBC = "worksafebc"
    AERIA = "aeria"


class NotificationRequirements(BaseModel):
    tsb_required: bool = False
    tc_required: bool = False
    worksafebc_required: bool = False
    # Completion flag for the internal notification, not a requirement flag
    aeria_notified: bool = False


REGULATORY_TRIGGERS: Dict[NotificationType, Dict] = {
    NotificationType.TSB: {
        "label": "TSB IMMEDIATE NOTIFICATION",
        "phone": "1-800-387-3557",
        "alt_phone": "1-819-994-3741",
        "conditions": ["fatal", "serious_injury", "rpas_over_25kg", "collision_manned_aircraft"],
        "timeframe": "Immediately",
    },
    NotificationType.TC: {
        "label": "Transport Canada (CADORS)",
        "conditions": ["fly_away", "loss_of_control", "boundary_violation", "airspace_incursion", "near_miss_aircraft"],
        "timeframe": "72 hours",
    },
    NotificationType.WORKSAFEBC: {
        "label": "WorkSafeBC",
        "conditions": ["fatal", "serious_injury", "hospitalization"],
        "timeframe": "Immediately",
    },
    NotificationType.AERIA: {
        "label": "Aeria Internal (Accountable Executive)",
        "conditions": ["all"],
        "timeframe": "Same day",
    },
}

TSB_RPAS_TRIGGERS = {
    RpasIncidentType.COLLISION,
    RpasIncidentType.NEAR_MISS_AIRCRAFT,
}

TC_RPAS_TRIGGERS = {
    RpasIncidentType.FLY_AWAY,
    RpasIncidentType.LOSS_OF_CONTROL,
    RpasIncidentType.BOUNDARY_VIOLATION,
    RpasIncidentType.AIRSPACE_INCURSION,
    RpasIncidentType.NEAR_MISS_AIRCRAFT,
}

# Fields written by mark-complete, keyed by notification type
NOTIFICATION_FIELDS: Dict[NotificationType, Dict[str, Optional[str]]] = {
    NotificationType.TSB: {
        "notified": "regulatory_notifications.tsb_notified",
        "date": "regulatory_notifications.tsb_notified_date",
        "reference": "regulatory_notifications.tsb_reference",
    },
    NotificationType.TC: {
        "notified": "regulatory_notifications.tc_notified",
        "date": "regulatory_notifications.tc_notified_date",
        "reference": "regulatory_notifications.tc_reference",
    },
    NotificationType.WORKSAFEBC: {
        "notified": "regulatory_notifications.worksafebc_notified",
        "date": "regulatory_notifications.worksafebc_notified_date",
        "reference": "regulatory_notifications.worksafebc_reference",
    },
    NotificationType.AERIA: {
        "notified": "regulatory_notifications.aeria_notified",
        "date": "regulatory_notifications.aeria_notified_date",
        "reference": None,
    },
}


def determine_notifications(incident: Union[IncidentCreate, Incident]) -> NotificationRequirements:
    """Map incident facts onto required-notification flags. Rules are independent."""
    anyone_hospitalized = any(p.hospitalized for p in incident.involved_persons)
    severity = incident.severity
    rpas_type = incident.rpas_type

    tsb_required = (
        severity == Severity.FATAL
        or (severity == Severity.SERIOUS and anyone_hospitalized)
        or rpas_type in TSB_RPAS_TRIGGERS
    )
    tc_required = rpas_type in TC_RPAS_TRIGGERS or incident.type == IncidentType.AIRCRAFT
    worksafebc_required = (
        severity in (Severity.FATAL, Severity.SERIOUS)
        or anyone_hospitalized
    )

    return NotificationRequirements(
        tsb_required=tsb_required,
        tc_required=tc_required,
        worksafebc_required=worksafebc_required,
        aeria_notified=False,
    )


def outstanding_notifications(notifications: RegulatoryNotifications) -> List[NotificationType]:
    """Required notifications not yet marked complete. The internal one is always required."""
    outstanding = []
    if notifications.tsb_required and not notifications.tsb_notified:
        outstanding.append(NotificationType.TSB)
    if notifications.tc_required and not notifications.tc_notified:
        outstanding.append(NotificationType.TC)
    if notifications.worksafebc_required and not notifications.worksafebc_notified:
        outstanding.append(NotificationType.WORKSAFEBC)
    if not notifications.aeria_notified:
        outstanding.append(NotificationType.AERIA)
    return outstanding


def incidents_requiring_notification(incidents: Iterable[Incident]) -> List[Incident]:
    """Reported incidents that still owe at least one notification."""
    return [
        incident for incident in incidents
        if incident.status == IncidentStatus.REPORTED
        and outstanding_notifications(incident.regulatory_notifications)
    ]
