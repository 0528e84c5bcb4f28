"""
Control Instance Store.

A control instance attaches a published template to one risk, freezes the
template version, and owns one attestation per sub-control. Every write
that can move a derived score recomputes it before returning.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.auth.rbac import ActorContext, Permission, require_permission, require_same_tenant
from riskgov.controls.library import control_library
from riskgov.controls.recompute import recompute_confidence, recompute_control_scores
from riskgov.controls.schemas import (
    ANSWERED_STATUSES,
    AttestationStatus,
    AttestationUpdate,
    ControlInstanceCreate,
    ControlObjective,
    ControlStatus,
    EvidenceRequestCreate,
    EvidenceRequestStatus,
    EvidenceRequestUpdate,
)
from riskgov.db.compat import utcnow
from riskgov.db.models import ControlInstance, EvidenceRequest, SubControlAttestation
from riskgov.db.repositories.controls import (
    attestation_repo,
    control_instance_repo,
    evidence_request_repo,
)
from riskgov.db.repositories.risks import risk_repo
from riskgov.errors import InvariantViolation, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

# Allowed control status moves; retired is final.
CONTROL_TRANSITIONS: dict[ControlStatus, frozenset[ControlStatus]] = {
    ControlStatus.DRAFT: frozenset({ControlStatus.ACTIVE, ControlStatus.RETIRED}),
    ControlStatus.ACTIVE: frozenset({ControlStatus.RETIRED}),
    ControlStatus.RETIRED: frozenset(),
}

TERMINAL_REQUEST_STATUSES = frozenset({
    EvidenceRequestStatus.CANCELLED,
    EvidenceRequestStatus.CLOSED,
})


@dataclass(frozen=True)
class AttestationWrite:
    """Outcome of an attestation write."""
    attestation: SubControlAttestation
    recomputed: bool


class ControlInstanceStore:
    """Creates control instances and applies attestation / evidence writes."""

    # ── Instances ─────────────────────────────────────────────────────────

    async def create(
        self,
        session: AsyncSession,
        actor: ActorContext,
        data: ControlInstanceCreate,
    ) -> ControlInstance:
        require_permission(actor, Permission.CONTROLS_WRITE)
        risk = await risk_repo.get_or_raise(session, data.risk_id)
        require_same_tenant(actor, risk.organization_id)

        template = await control_library.get_template(session, data.template_code, data.template_version)
        if data.template_version is not None and not template.is_active:
            raise InvariantViolation(
                f"Template {template.code} version {template.version} is withdrawn",
                details={"code": template.code, "version": template.version},
            )

        objective = data.objective or ControlObjective(template.objective_default)
        instance = ControlInstance(
            organization_id=risk.organization_id,
            risk_id=risk.id,
            template_id=template.id,
            template_code=template.code,
            template_version=template.version,
            objective=objective.value,
            scope_boundary=data.scope_boundary,
            method=data.method,
            trigger_frequency=data.trigger_frequency,
            owner_role=data.owner_role,
            owner_user_id=data.owner_user_id,
            target_threshold=data.target_threshold,
            statement=data.statement,
            status=ControlStatus.DRAFT.value,
            created_by=actor.user_id,
        )
        session.add(instance)
        await session.flush()

        seeded = 0
        for sc in template.sub_controls:
            if not sc.is_active:
                continue
            session.add(SubControlAttestation(
                control_instance_id=instance.id,
                sub_control_template_id=sc.id,
                sub_control_version=sc.version,
                status=AttestationStatus.UNANSWERED.value,
            ))
            seeded += 1
        await session.flush()

        await recompute_control_scores(session, instance.id)

        logger.info(
            "control_instance_created",
            control_instance_id=str(instance.id),
            risk_id=str(risk.id),
            template=f"{template.code}@{template.version}",
            attestations_seeded=seeded,
        )
        return instance

    async def get(self, session: AsyncSession, control_instance_id: uuid.UUID) -> ControlInstance:
        return await control_instance_repo.get_or_raise(session, control_instance_id)

    async def list_attestations(
        self, session: AsyncSession, control_instance_id: uuid.UUID,
    ) -> Sequence[SubControlAttestation]:
        await control_instance_repo.get_or_raise(session, control_instance_id)
        return await attestation_repo.for_instance(session, control_instance_id)

    async def set_status(
        self,
        session: AsyncSession,
        actor: ActorContext,
        control_instance_id: uuid.UUID,
        new_status: ControlStatus,
    ) -> ControlInstance:
        require_permission(actor, Permission.CONTROLS_WRITE)
        instance = await control_instance_repo.get_or_raise(session, control_instance_id)
        require_same_tenant(actor, instance.organization_id)

        current = ControlStatus(instance.status)
        if new_status == current:
            return instance
        if new_status not in CONTROL_TRANSITIONS[current]:
            raise InvariantViolation(
                f"Control instance cannot move from {current} to {new_status}",
                details={"from": current.value, "to": new_status.value},
            )
        instance.status = new_status.value
        await session.flush()

        logger.info(
            "control_instance_status_changed",
            control_instance_id=str(instance.id),
            from_status=current.value,
            to_status=new_status.value,
        )
        return instance

    # ── Attestations ──────────────────────────────────────────────────────

    async def attest(
        self,
        session: AsyncSession,
        actor: ActorContext,
        attestation_id: uuid.UUID,
        update: AttestationUpdate,
    ) -> AttestationWrite:
        """Apply an attestation edit; recompute scores unless only notes changed."""
        require_permission(actor, Permission.ATTESTATIONS_WRITE)
        row = await attestation_repo.get_with_sub_control(session, attestation_id)
        if row is None:
            raise NotFoundError("SubControlAttestation", attestation_id)
        instance = await control_instance_repo.get_or_raise(session, row.control_instance_id)
        require_same_tenant(actor, instance.organization_id)
        if instance.status == ControlStatus.RETIRED.value:
            raise InvariantViolation(
                "Attestations of a retired control cannot change",
                details={"control_instance_id": str(instance.id)},
            )

        fields = update.model_fields_set
        if "status" in fields and update.status is None:
            raise ValidationError("status cannot be null", field="status")

        status = update.status if "status" in fields else AttestationStatus(row.status)
        evidence = update.evidence_exists if "evidence_exists" in fields else row.evidence_exists
        rationale = update.na_rationale if "na_rationale" in fields else row.na_rationale

        if status == AttestationStatus.NOT_APPLICABLE:
            if not (rationale or "").strip():
                raise ValidationError(
                    "A rationale is required when marking a sub-control not applicable",
                    field="na_rationale",
                )
            evidence = None
        else:
            rationale = None
            if status in ANSWERED_STATUSES and evidence is None:
                raise ValidationError(
                    f"evidence_exists must be set when status is {status.value}",
                    field="evidence_exists",
                )
            if status == AttestationStatus.UNANSWERED:
                evidence = None

        scoring_change = (
            status.value != row.status
            or evidence != row.evidence_exists
            or "attested_at" in fields
        )

        row.status = status.value
        row.evidence_exists = evidence
        row.na_rationale = rationale
        if "notes" in fields:
            row.notes = update.notes
        if scoring_change:
            row.attested_by = actor.user_id
            row.attested_at = update.attested_at or utcnow()
        await session.flush()

        if scoring_change:
            await recompute_control_scores(session, row.control_instance_id)

        logger.info(
            "attestation_recorded",
            attestation_id=str(row.id),
            control_instance_id=str(row.control_instance_id),
            code=row.sub_control.code,
            status=row.status,
            recomputed=scoring_change,
        )
        return AttestationWrite(attestation=row, recomputed=scoring_change)

    # ── Evidence requests ─────────────────────────────────────────────────

    async def owning_instance_id(self, session: AsyncSession, request: EvidenceRequest) -> uuid.UUID:
        """The control instance a request counts against, whatever its scope."""
        if request.control_instance_id is not None:
            return request.control_instance_id
        attestation = await attestation_repo.get_or_raise(session, request.attestation_id)
        return attestation.control_instance_id

    async def create_evidence_request(
        self,
        session: AsyncSession,
        actor: ActorContext,
        data: EvidenceRequestCreate,
    ) -> EvidenceRequest:
        require_permission(actor, Permission.EVIDENCE_MANAGE)
        if (data.control_instance_id is None) == (data.attestation_id is None):
            raise ValidationError(
                "An evidence request is scoped to exactly one of a control instance or a sub-control",
                field="scope",
            )

        if data.control_instance_id is not None:
            instance = await control_instance_repo.get_or_raise(session, data.control_instance_id)
        else:
            attestation = await attestation_repo.get_or_raise(session, data.attestation_id)
            instance = await control_instance_repo.get_or_raise(session, attestation.control_instance_id)
        require_same_tenant(actor, instance.organization_id)

        request = await evidence_request_repo.create(
            session,
            organization_id=instance.organization_id,
            control_instance_id=data.control_instance_id,
            attestation_id=data.attestation_id,
            due_date=data.due_date,
            notes=data.notes,
            status=EvidenceRequestStatus.OPEN.value,
            requested_by=actor.user_id,
        )
        await recompute_confidence(session, instance.id)

        logger.info(
            "evidence_request_created",
            evidence_request_id=str(request.id),
            control_instance_id=str(instance.id),
            sub_control_scoped=data.attestation_id is not None,
            due_date=data.due_date.isoformat(),
        )
        return request

    async def update_evidence_request(
        self,
        session: AsyncSession,
        actor: ActorContext,
        request_id: uuid.UUID,
        update: EvidenceRequestUpdate,
    ) -> EvidenceRequest:
        """Status or due-date changes recompute confidence of the owning control."""
        require_permission(actor, Permission.EVIDENCE_MANAGE)
        request = await evidence_request_repo.get_or_raise(session, request_id)
        require_same_tenant(actor, request.organization_id)

        fields = update.model_fields_set
        current = EvidenceRequestStatus(request.status)
        if current in TERMINAL_REQUEST_STATUSES and ("status" in fields or "due_date" in fields):
            raise InvariantViolation(
                f"Evidence request is {current.value} and can no longer change",
                details={"evidence_request_id": str(request.id)},
            )
        if "status" in fields and update.status is None:
            raise ValidationError("status cannot be null", field="status")
        if "due_date" in fields and update.due_date is None:
            raise ValidationError("due_date cannot be null", field="due_date")

        changed = False
        if "status" in fields and update.status.value != request.status:
            request.status = update.status.value
            changed = True
        if "due_date" in fields and update.due_date != request.due_date:
            request.due_date = update.due_date
            request.overdue_flagged_at = None
            changed = True
        if "notes" in fields:
            request.notes = update.notes
        await session.flush()

        if changed:
            instance_id = await self.owning_instance_id(session, request)
            await recompute_confidence(session, instance_id)

        logger.info(
            "evidence_request_updated",
            evidence_request_id=str(request.id),
            status=request.status,
            recomputed=changed,
        )
        return request


control_instance_store = ControlInstanceStore()
