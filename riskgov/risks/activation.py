"""
Risk Activation Gate.

A risk may become active only when:
  1. A treatment response has been chosen, and
  2. the response is "accept", or at least one non-retired control
     instance is attached.

``change_risk_status`` is the only path that writes ``Risk.status``; moving
to active always goes through the gate.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.auth.rbac import ActorContext, Permission, require_permission, require_same_tenant
from riskgov.db.compat import utcnow
from riskgov.db.models import Risk, RiskResponse
from riskgov.db.repositories.controls import control_instance_repo
from riskgov.db.repositories.risks import risk_repo, risk_response_repo
from riskgov.errors import ErrorCode, InvariantViolation
from riskgov.risks.schemas import (
    ActivationDecision,
    ResponseType,
    RiskCreate,
    RiskResponseSet,
    RiskStatus,
)
from riskgov.services.audit import governance_audit

logger = structlog.get_logger(__name__)

_RESPONSE_LABELS = {
    ResponseType.AVOID: "Avoid",
    ResponseType.REDUCE_LIKELIHOOD: "Reduce Likelihood",
    ResponseType.REDUCE_IMPACT: "Reduce Impact",
    ResponseType.TRANSFER_SHARE: "Transfer/Share",
    ResponseType.ACCEPT: "Accept",
}

NO_RESPONSE_MESSAGE = (
    "Risk response must be set before activation. Please select a response "
    "(Avoid, Reduce Likelihood, Reduce Impact, Transfer/Share, or Accept)."
)


class ActivationGate:
    """Read-only activation check plus the governed risk writes around it."""

    async def can_activate(self, session: AsyncSession, risk_id: uuid.UUID) -> ActivationDecision:
        await risk_repo.get_or_raise(session, risk_id)

        response = await risk_response_repo.for_risk(session, risk_id)
        if response is None:
            return ActivationDecision(
                can_activate=False,
                message=NO_RESPONSE_MESSAGE,
                has_response=False,
            )

        response_type = ResponseType(response.response_type)
        label = _RESPONSE_LABELS[response_type]
        count = await control_instance_repo.count_non_retired(session, risk_id)

        if response_type == ResponseType.ACCEPT:
            allowed = True
            message = f'Risk can be activated. Response is "{label}" - no controls required.'
        elif count > 0:
            allowed = True
            message = f'Risk can be activated. Response is "{label}" with {count} control(s) defined.'
        else:
            allowed = False
            message = (
                f'Cannot activate risk. Response is "{label}" which requires at least one '
                "control. Please add a control from the library."
            )

        return ActivationDecision(
            can_activate=allowed,
            message=message,
            has_response=True,
            response_type=response_type,
            control_instance_count=count,
        )

    async def create_risk(self, session: AsyncSession, actor: ActorContext, data: RiskCreate) -> Risk:
        require_permission(actor, Permission.RISKS_RESPOND)
        risk = await risk_repo.create(
            session,
            organization_id=actor.organization_id,
            code=data.code,
            title=data.title,
            status=RiskStatus.DRAFT.value,
        )
        logger.info("risk_created", risk_id=str(risk.id), code=risk.code)
        return risk

    async def set_response(
        self,
        session: AsyncSession,
        actor: ActorContext,
        risk_id: uuid.UUID,
        data: RiskResponseSet,
    ) -> RiskResponse:
        """Create or replace the single treatment response of a risk."""
        require_permission(actor, Permission.RISKS_RESPOND)
        risk = await risk_repo.get_or_raise(session, risk_id)
        require_same_tenant(actor, risk.organization_id)

        response = await risk_response_repo.for_risk(session, risk_id)
        before = {"response_type": response.response_type} if response is not None else None
        if response is None:
            response = await risk_response_repo.create(
                session,
                risk_id=risk.id,
                response_type=data.response_type.value,
                rationale=data.rationale,
                decided_by=actor.user_id,
                decided_at=utcnow(),
            )
        else:
            response.response_type = data.response_type.value
            response.rationale = data.rationale
            response.decided_by = actor.user_id
            response.decided_at = utcnow()
            await session.flush()

        await governance_audit.record(
            session,
            actor,
            action="risk.response_set",
            entity_type="risk",
            entity_id=risk.id,
            before=before,
            after={"response_type": response.response_type},
            reason=data.rationale,
        )
        logger.info("risk_response_set", risk_id=str(risk.id), response_type=response.response_type)
        return response

    async def change_risk_status(
        self,
        session: AsyncSession,
        actor: ActorContext,
        risk_id: uuid.UUID,
        new_status: RiskStatus,
        reason: Optional[str] = None,
    ) -> Risk:
        require_permission(actor, Permission.RISKS_STATUS_CHANGE)
        risk = await risk_repo.get_or_raise(session, risk_id)
        require_same_tenant(actor, risk.organization_id)

        current = RiskStatus(risk.status)
        if current == new_status:
            return risk
        if current == RiskStatus.RETIRED:
            raise InvariantViolation(
                "A retired risk cannot change status",
                code=ErrorCode.ILLEGAL_TRANSITION,
                details={"risk_id": str(risk.id), "to": new_status.value},
            )

        if new_status == RiskStatus.ACTIVE:
            decision = await self.can_activate(session, risk.id)
            if not decision.can_activate:
                logger.info("risk_activation_blocked", risk_id=str(risk.id), reason=decision.message)
                raise InvariantViolation(
                    decision.message,
                    code=ErrorCode.ACTIVATION_BLOCKED,
                    details=decision.model_dump(mode="json"),
                )

        risk.status = new_status.value
        await session.flush()

        await governance_audit.record(
            session,
            actor,
            action="risk.status_changed",
            entity_type="risk",
            entity_id=risk.id,
            before={"status": current.value},
            after={"status": new_status.value},
            reason=reason,
        )
        logger.info(
            "risk_status_changed",
            risk_id=str(risk.id),
            from_status=current.value,
            to_status=new_status.value,
        )
        return risk


activation_gate = ActivationGate()
