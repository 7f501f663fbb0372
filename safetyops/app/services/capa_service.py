"""
CAPA Lifecycle.

open -> in_progress -> pending_verification -> verified_effective -> closed
                                         or verified_ineffective

verified_ineffective is a dead end: the remedy is a new follow-up CAPA (see
workflows.create_follow_up_capa), never a re-opened record. A verified
effective CAPA still goes through a recurrence check; if the problem came
back it drops to verified_ineffective, otherwise it closes.

Every status change appends to status_history. The on-time flag is written
once at completion and the effectiveness score once at verification.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from safetyops.app.core.clock import Clock, as_utc, elapsed_days_ceil, elapsed_days_floor, utc_now
from safetyops.app.core.config import Settings, get_settings
from safetyops.app.core.exceptions import InvalidTransitionError
from safetyops.app.core.logging import get_logger
from safetyops.app.schemas.capas import (
    Capa,
    CapaCreate,
    CapaFilters,
    CapaMetrics,
    CapaPriority,
    CapaStatus,
    CapaUpdate,
    Comment,
    CommentRequest,
    CompletionRequest,
    Implementation,
    ImplementationStatus,
    RecurrenceCheckRequest,
    StatusHistoryEntry,
    TargetDateRevision,
    TargetDateRecommendation,
    VerificationRequest,
    VerificationResult,
)
from safetyops.app.services.document_store import DocumentStore
from safetyops.app.services.identifiers import generate_number
from safetyops.app.services.lifecycle_rules import CAPA_TERMINAL, LifecyclePolicy

logger = get_logger(__name__)

CAPAS = "capas"

ACTIVE_STATUSES = (CapaStatus.OPEN, CapaStatus.IN_PROGRESS)

# Statuses reached only through their dedicated operation while transitions are enforced
_OPERATION_OWNED = {
    CapaStatus.PENDING_VERIFICATION: "complete_capa",
    CapaStatus.VERIFIED_EFFECTIVE: "verify_capa",
    CapaStatus.VERIFIED_INEFFECTIVE: "verify_capa / record_recurrence_check",
}


def default_target_date(priority: CapaPriority, start: datetime) -> datetime:
    """Target date implied by the priority's resolution window."""
    return as_utc(start) + timedelta(days=CapaPriority(priority).days_to_resolve)


def live_metrics(capa: Capa, now: datetime) -> CapaMetrics:
    """Days open/overdue as of now, carrying the stored on-time and effectiveness values."""
    days_open = 0
    if capa.created_at:
        days_open = max(0, elapsed_days_floor(capa.created_at, capa.closed_at or now))

    days_overdue = 0
    target = capa.effective_target_date
    if capa.status in ACTIVE_STATUSES and target and now > target:
        days_overdue = elapsed_days_ceil(target, now)

    return CapaMetrics(
        days_open=days_open,
        days_overdue=days_overdue,
        on_time=capa.metrics.on_time,
        effectiveness_score=capa.metrics.effectiveness_score,
    )


class CapaLifecycle:
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

    async def create_capa(self, data: CapaCreate) -> Capa:
        """
        Open a new CAPA with the next CAPA number for the current year.

        The source incident is not touched here; callers link the two with
        IncidentLifecycle.link_capa (workflows.raise_capa_for_incident does both).
        """
        now = self.clock()
        ts = self.store.server_timestamp()
        capa_number = await generate_number(
            self.store, CAPAS, "capa_number",
            self.settings.capa_number_prefix, now.year,
        )
        created = StatusHistoryEntry(
            date=now,
            from_status=None,
            to_status=CapaStatus.OPEN,
            by=data.assigned_by or self.settings.default_actor,
            reason="CAPA created",
        )

        document = data.to_document()
        document.update(
            capa_number=capa_number,
            assigned_date=ts if data.assigned_to else None,
            revised_target_date=None,
            extension_reason="",
            completed_date=None,
            implementation=Implementation().to_document(),
            status=CapaStatus.OPEN.value,
            comments=[],
            status_history=[created.to_document()],
            metrics=CapaMetrics().to_document(),
            created_at=ts,
            updated_at=ts,
            closed_at=None,
        )

        capa_id = await self.store.create(CAPAS, document)
        logger.info(
            f"CAPA created: {capa_number} ({capa_id})",
            extra={"extra_data": {
                "capa_id": capa_id,
                "priority": data.priority.value,
                "related_incident_id": data.related_incident_id,
            }},
        )
        return await self.get_capa(capa_id)

    def recommended_target_date(self, priority: CapaPriority) -> TargetDateRecommendation:
        """Target date a new CAPA of this priority should carry if raised now."""
        priority = CapaPriority(priority)
        return TargetDateRecommendation(
            priority=priority,
            days_to_resolve=priority.days_to_resolve,
            target_date=default_target_date(priority, self.clock()),
        )

    async def get_capa(self, capa_id: str) -> Capa:
        document = await self.store.get_by_id(CAPAS, capa_id)
        capa = Capa.model_validate(document)
        capa.metrics = live_metrics(capa, self.clock())
        return capa

    async def list_capas(self, filters: Optional[CapaFilters] = None) -> List[Capa]:
        """CAPAs matching every supplied filter, newest first (overdue: oldest target first)."""
        filters = filters or CapaFilters()
        equals = {
            "status": filters.status,
            "assigned_to": filters.assigned_to,
            "priority": filters.priority,
            "type": filters.type,
            "source_type": filters.source_type,
            "related_incident_id": filters.incident_id,
        }
        equals = {k: (v.value if hasattr(v, "value") else v) for k, v in equals.items() if v is not None}

        documents = await self.store.query(
            CAPAS,
            predicate=lambda d: all(d.get(k) == v for k, v in equals.items()),
            order_by="-created_at",
        )
        now = self.clock()
        capas = [Capa.model_validate(d) for d in documents]
        for capa in capas:
            capa.metrics = live_metrics(capa, now)

        if filters.overdue:
            capas = [c for c in capas if c.metrics.days_overdue > 0]
            capas.sort(key=lambda c: c.effective_target_date)

        if filters.limit:
            capas = capas[:filters.limit]
        return capas

    async def update_capa(self, capa_id: str, changes: CapaUpdate) -> Capa:
        """Edit descriptive and assignment fields. Status has its own operations."""
        capa = await self.get_capa(capa_id)
        partial = changes.to_document(exclude_unset=True)
        if not partial:
            return capa
        ts = self.store.server_timestamp()
        if partial.get("assigned_to") and partial["assigned_to"] != capa.assigned_to:
            partial["assigned_date"] = ts
        partial["updated_at"] = ts
        await self.store.update(CAPAS, capa_id, partial)
        return await self.get_capa(capa_id)

    async def _transition(
        self,
        capa: Capa,
        new_status: CapaStatus,
        by: Optional[str],
        reason: str,
        extra: Optional[dict] = None,
        operation: Optional[str] = None,
    ) -> Capa:
        self.policy.check_capa(capa.status, new_status, operation)

        entry = StatusHistoryEntry(
            date=self.clock(),
            from_status=capa.status,
            to_status=new_status,
            by=by or self.settings.default_actor,
            reason=reason,
        )
        partial = {
            "status": new_status.value,
            "status_history": [e.to_document() for e in capa.status_history] + [entry.to_document()],
            "updated_at": self.store.server_timestamp(),
        }
        partial.update(extra or {})

        await self.store.update(CAPAS, capa.id, partial)
        logger.info(f"CAPA {capa.capa_number}: {capa.status.value} -> {new_status.value} ({reason})")
        return await self.get_capa(capa.id)

    async def change_status(
        self,
        capa_id: str,
        new_status: CapaStatus,
        changed_by: Optional[str] = None,
        reason: str = "",
    ) -> Capa:
        """
        Generic status change with a history entry.

        While transitions are enforced, statuses that carry metrics
        (pending_verification, verified_*) must be reached through their
        own operations.
        """
        new_status = CapaStatus(new_status)
        capa = await self.get_capa(capa_id)
        if new_status == capa.status:
            return capa
        if new_status == CapaStatus.CLOSED:
            return await self.close_capa(capa_id, changed_by or self.settings.default_actor, reason)
        if self.policy.enforce and new_status in _OPERATION_OWNED:
            raise InvalidTransitionError("capa", capa.status.value, new_status.value)

        extra = {}
        if new_status == CapaStatus.IN_PROGRESS and capa.implementation.status == ImplementationStatus.NOT_STARTED:
            extra["implementation.status"] = ImplementationStatus.IN_PROGRESS.value
        return await self._transition(capa, new_status, changed_by, reason, extra)

    async def start_capa(self, capa_id: str, started_by: Optional[str] = None) -> Capa:
        capa = await self.get_capa(capa_id)
        return await self._transition(
            capa, CapaStatus.IN_PROGRESS, started_by, "Work started",
            extra={"implementation.status": ImplementationStatus.IN_PROGRESS.value},
            operation="start",
        )

    async def complete_capa(self, capa_id: str, completion: CompletionRequest) -> Capa:
        """Record implementation as complete and hand over to verification."""
        capa = await self.get_capa(capa_id)
        now = self.clock()
        target = capa.effective_target_date
        on_time = now <= target if target else True

        extra = {
            "completed_date": self.store.server_timestamp(),
            "implementation.status": ImplementationStatus.COMPLETE.value,
            "implementation.actions_taken": completion.actions_taken,
            "implementation.evidence_provided": [e.to_document() for e in completion.evidence],
            "implementation.completion_notes": completion.notes,
        }
        if capa.metrics.on_time is None:
            extra["metrics.on_time"] = on_time

        return await self._transition(
            capa, CapaStatus.PENDING_VERIFICATION, completion.completed_by,
            "Implementation completed", extra, operation="complete",
        )

    async def verify_capa(self, capa_id: str, verification: VerificationRequest) -> VerificationResult:
        """
        Verification of effectiveness.

        Returns the outcome so the caller can decide whether to raise a
        follow-up CAPA; nothing is spawned here.
        """
        capa = await self.get_capa(capa_id)
        effective = verification.effective
        new_status = CapaStatus.VERIFIED_EFFECTIVE if effective else CapaStatus.VERIFIED_INEFFECTIVE

        extra = {
            "verification.verified_by": verification.verified_by,
            "verification.verified_date": self.store.server_timestamp(),
            "verification.effective": effective,
            "verification.evidence": verification.evidence,
            "verification.findings": verification.findings,
        }
        if capa.metrics.effectiveness_score is None:
            extra["metrics.effectiveness_score"] = 100 if effective else 0

        await self._transition(
            capa, new_status, verification.verified_by,
            "Verified effective" if effective else "Verified ineffective",
            extra, operation="verify",
        )
        return VerificationResult(effective=effective, status=new_status)

    async def record_recurrence_check(self, capa_id: str, check: RecurrenceCheckRequest) -> Capa:
        """Close an effective CAPA, or mark it ineffective if the issue came back."""
        capa = await self.get_capa(capa_id)
        ts = self.store.server_timestamp()
        new_status = CapaStatus.VERIFIED_INEFFECTIVE if check.recurred else CapaStatus.CLOSED

        extra = {
            "verification.recurrence_check.check_date": ts,
            "verification.recurrence_check.checked_by": check.checked_by,
            "verification.recurrence_check.recurred": check.recurred,
            "verification.recurrence_check.notes": check.notes,
            "closed_at": None if check.recurred else ts,
        }
        reason = "Issue recurred - CAPA ineffective" if check.recurred else "No recurrence - CAPA closed"
        return await self._transition(
            capa, new_status, check.checked_by, reason, extra, operation="recurrence_check",
        )

    async def close_capa(self, capa_id: str, closed_by: str, notes: str = "") -> Capa:
        """Close directly, for CAPAs that do not need a verification of effectiveness."""
        capa = await self.get_capa(capa_id)
        return await self._transition(
            capa, CapaStatus.CLOSED, closed_by, notes or "CAPA closed",
            extra={"closed_at": self.store.server_timestamp()},
        )

    async def add_comment(self, capa_id: str, request: CommentRequest) -> Comment:
        capa = await self.get_capa(capa_id)
        comment = Comment(date=self.clock(), by=request.by, text=request.text)
        await self.store.update(CAPAS, capa_id, {
            "comments": [c.to_document() for c in capa.comments] + [comment.to_document()],
            "updated_at": self.store.server_timestamp(),
        })
        return comment

    async def revise_target_date(self, capa_id: str, revision: TargetDateRevision) -> Capa:
        """Grant an extension. The original target date is kept; the revision is noted as a comment."""
        capa = await self.get_capa(capa_id)
        if self.policy.enforce and capa.status in CAPA_TERMINAL:
            raise InvalidTransitionError("capa", capa.status.value, capa.status.value)

        revised = as_utc(revision.revised_target_date)
        by = revision.revised_by or self.settings.default_actor
        note = Comment(
            date=self.clock(),
            by=by,
            text=f"Target date revised to {revised.date().isoformat()}: {revision.reason}",
        )
        await self.store.update(CAPAS, capa_id, {
            "revised_target_date": revised,
            "extension_reason": revision.reason,
            "comments": [c.to_document() for c in capa.comments] + [note.to_document()],
            "updated_at": self.store.server_timestamp(),
        })
        logger.info(f"CAPA {capa.capa_number} target revised to {revised.isoformat()} by {by}")
        return await self.get_capa(capa_id)

    async def link_related(self, capa_id: str, related_id: str) -> Capa:
        """Append a related/follow-up CAPA id (no-op when already present)."""
        capa = await self.get_capa(capa_id)
        if related_id in capa.related_capas:
            return capa
        await self.store.update(CAPAS, capa_id, {
            "related_capas": [*capa.related_capas, related_id],
            "updated_at": self.store.server_timestamp(),
        })
        return await self.get_capa(capa_id)

    async def delete_capa(self, capa_id: str) -> None:
        """Remove the CAPA. The incident's linked-CAPA list is left as is."""
        capa = await self.get_capa(capa_id)
        await self.store.delete(CAPAS, capa_id)
        logger.info(f"CAPA deleted: {capa.capa_number} ({capa_id})")
