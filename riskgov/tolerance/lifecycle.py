"""
Breach Lifecycle Manager.

State machine:
    open ──► in_progress ──► resolved ──► closed
      │           │
      └───────────┴──► board_accepted

closed and board_accepted are terminal. Entering board_accepted requires a
governance-tier actor and an approver, timestamp and rationale, written in
the same flush as the status. Every transition lands in the governance
audit log.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.auth.rbac import (
    ActorContext,
    Permission,
    require_governance,
    require_permission,
    require_same_tenant,
)
from riskgov.db.compat import utcnow
from riskgov.db.models import BreachEvent
from riskgov.db.repositories.tolerance import breach_repo
from riskgov.errors import ErrorCode, InvariantViolation, PermissionDenied, ValidationError
from riskgov.services.audit import governance_audit
from riskgov.tolerance.schemas import (
    ACTIVE_BREACH_STATUSES,
    TERMINAL_BREACH_STATUSES,
    BoardExceptionAmendment,
    BreachStatus,
    RemediationUpdate,
    TransitionMetadata,
)

logger = structlog.get_logger(__name__)

TRANSITIONS: dict[BreachStatus, frozenset[BreachStatus]] = {
    BreachStatus.OPEN: frozenset({BreachStatus.IN_PROGRESS, BreachStatus.BOARD_ACCEPTED}),
    BreachStatus.IN_PROGRESS: frozenset({BreachStatus.RESOLVED, BreachStatus.BOARD_ACCEPTED}),
    BreachStatus.RESOLVED: frozenset({BreachStatus.CLOSED}),
    BreachStatus.CLOSED: frozenset(),
    BreachStatus.BOARD_ACCEPTED: frozenset(),
}

# Moves that only the governance tier may make.
GOVERNANCE_ONLY = frozenset({BreachStatus.CLOSED, BreachStatus.BOARD_ACCEPTED})


def _snapshot(breach: BreachEvent) -> dict[str, Any]:
    def _s(value):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return float(value)
        return value.isoformat() if hasattr(value, "isoformat") else str(value)

    return {
        "status": breach.status,
        "tier": breach.tier,
        "remediation_plan": breach.remediation_plan,
        "remediation_owner_id": _s(breach.remediation_owner_id),
        "remediation_due_date": _s(breach.remediation_due_date),
        "board_accepted_by": _s(breach.board_accepted_by),
        "board_accepted_at": _s(breach.board_accepted_at),
        "board_acceptance_rationale": breach.board_acceptance_rationale,
        "temporary_threshold": _s(breach.temporary_threshold),
        "exception_valid_until": _s(breach.exception_valid_until),
    }


def _is_owner_or_governance(actor: ActorContext, breach: BreachEvent) -> bool:
    return actor.is_governance or (
        breach.remediation_owner_id is not None and breach.remediation_owner_id == actor.user_id
    )


class BreachLifecycleManager:
    """Applies governed changes to breach events."""

    async def transition(
        self,
        session: AsyncSession,
        breach_id: uuid.UUID,
        new_status: BreachStatus,
        actor: ActorContext,
        metadata: Optional[TransitionMetadata] = None,
    ) -> BreachEvent:
        metadata = metadata or TransitionMetadata()
        breach = await breach_repo.get_or_raise(session, breach_id)
        require_same_tenant(actor, breach.organization_id)

        current = BreachStatus(breach.status)
        if current in TERMINAL_BREACH_STATUSES:
            raise InvariantViolation(
                f"Breach is {current.value}; terminal breaches cannot change status",
                code=ErrorCode.ILLEGAL_TRANSITION,
                details={"breach_id": str(breach.id), "from": current.value, "to": new_status.value},
            )
        if new_status not in TRANSITIONS[current]:
            raise InvariantViolation(
                f"Illegal breach transition {current.value} -> {new_status.value}",
                code=ErrorCode.ILLEGAL_TRANSITION,
                details={
                    "breach_id": str(breach.id),
                    "from": current.value,
                    "to": new_status.value,
                    "allowed": sorted(s.value for s in TRANSITIONS[current]),
                },
            )

        if new_status in GOVERNANCE_ONLY:
            require_governance(actor, f"Moving a breach to {new_status.value}")
        elif not _is_owner_or_governance(actor, breach):
            require_permission(actor, Permission.BREACHES_GOVERN)

        if new_status == BreachStatus.BOARD_ACCEPTED:
            missing = [
                name for name in ("approver_id", "accepted_at", "rationale")
                if getattr(metadata, name) is None
                or (name == "rationale" and not metadata.rationale.strip())
            ]
            if missing:
                raise InvariantViolation(
                    "Board acceptance requires approver, acceptance time and rationale",
                    details={"breach_id": str(breach.id), "missing": missing},
                )

        before = _snapshot(breach)
        now = utcnow()

        if new_status == BreachStatus.BOARD_ACCEPTED:
            breach.board_accepted_by = metadata.approver_id
            breach.board_accepted_at = metadata.accepted_at
            breach.board_acceptance_rationale = metadata.rationale.strip()
            if metadata.temporary_threshold is not None:
                breach.temporary_threshold = Decimal(str(metadata.temporary_threshold))
            breach.exception_valid_until = metadata.exception_valid_until
        elif new_status == BreachStatus.RESOLVED:
            breach.resolved_at = now
            breach.resolved_by = actor.user_id
            breach.resolution_notes = metadata.resolution_notes
        elif new_status == BreachStatus.CLOSED:
            breach.closed_at = now
            breach.closed_by = actor.user_id
        breach.status = new_status.value
        await session.flush()

        await governance_audit.record(
            session,
            actor,
            action=f"breach.{new_status.value}",
            entity_type="breach_event",
            entity_id=breach.id,
            before=before,
            after=_snapshot(breach),
            reason=metadata.reason or metadata.rationale,
        )

        logger.info(
            "breach_transitioned",
            breach_id=str(breach.id),
            from_status=current.value,
            to_status=new_status.value,
            actor_id=str(actor.user_id),
        )
        return breach

    async def update_remediation(
        self,
        session: AsyncSession,
        breach_id: uuid.UUID,
        actor: ActorContext,
        update: RemediationUpdate,
    ) -> BreachEvent:
        """Set plan, owner or due date while the breach is open or in progress."""
        breach = await breach_repo.get_or_raise(session, breach_id)
        require_same_tenant(actor, breach.organization_id)

        current = BreachStatus(breach.status)
        if current not in ACTIVE_BREACH_STATUSES:
            raise InvariantViolation(
                f"Remediation can only change while a breach is open or in progress (is {current.value})",
                details={"breach_id": str(breach.id)},
            )
        if not _is_owner_or_governance(actor, breach):
            raise PermissionDenied(
                "Only the remediation owner or a governance-tier role may edit remediation",
                details={"breach_id": str(breach.id)},
            )

        fields = update.model_fields_set
        if not fields:
            raise ValidationError("Nothing to update", field="remediation")

        before = _snapshot(breach)
        if "plan" in fields:
            breach.remediation_plan = update.plan
        if "owner_id" in fields:
            breach.remediation_owner_id = update.owner_id
        if "due_date" in fields:
            breach.remediation_due_date = update.due_date
        await session.flush()

        await governance_audit.record(
            session,
            actor,
            action="breach.remediation_updated",
            entity_type="breach_event",
            entity_id=breach.id,
            before=before,
            after=_snapshot(breach),
        )
        logger.info(
            "breach_remediation_updated",
            breach_id=str(breach.id),
            fields=sorted(fields),
        )
        return breach

    async def amend_board_exception(
        self,
        session: AsyncSession,
        breach_id: uuid.UUID,
        actor: ActorContext,
        amendment: BoardExceptionAmendment,
    ) -> BreachEvent:
        """Governance-tier edit of the exception window on a board-accepted breach."""
        breach = await breach_repo.get_or_raise(session, breach_id)
        require_same_tenant(actor, breach.organization_id)
        require_governance(actor, "Amending a board exception")

        if breach.status != BreachStatus.BOARD_ACCEPTED.value:
            raise InvariantViolation(
                "Only board-accepted breaches carry an exception to amend",
                details={"breach_id": str(breach.id), "status": breach.status},
            )

        fields = amendment.model_fields_set - {"reason"}
        if not fields:
            raise ValidationError("Nothing to amend", field="amendment")

        before = _snapshot(breach)
        if "temporary_threshold" in fields:
            breach.temporary_threshold = (
                Decimal(str(amendment.temporary_threshold))
                if amendment.temporary_threshold is not None else None
            )
        if "exception_valid_until" in fields:
            breach.exception_valid_until = amendment.exception_valid_until
        await session.flush()

        await governance_audit.record(
            session,
            actor,
            action="breach.exception_amended",
            entity_type="breach_event",
            entity_id=breach.id,
            before=before,
            after=_snapshot(breach),
            reason=amendment.reason,
        )
        logger.info("board_exception_amended", breach_id=str(breach.id), fields=sorted(fields))
        return breach


breach_lifecycle = BreachLifecycleManager()
