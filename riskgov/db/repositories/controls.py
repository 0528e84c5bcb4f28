"""Control instance, attestation, evidence request and derived score repositories."""

import uuid
from datetime import date
from typing import Any, Optional, Sequence, Type

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from riskgov.db.models import (
    ConfidenceScore,
    ControlInstance,
    DerivedDimeScore,
    EvidenceRequest,
    SubControlAttestation,
    SubControlTemplate,
)
from riskgov.db.repositories.base import BaseRepository


class ControlInstanceRepository(BaseRepository[ControlInstance, Any]):
    def __init__(self):
        super().__init__(ControlInstance)

    async def count_non_retired(self, db: AsyncSession, risk_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(ControlInstance)
            .where(ControlInstance.risk_id == risk_id, ControlInstance.status != "retired")
        )
        return result.scalar_one()


class AttestationRepository(BaseRepository[SubControlAttestation, Any]):
    def __init__(self):
        super().__init__(SubControlAttestation)

    async def for_instance(
        self, db: AsyncSession, control_instance_id: uuid.UUID,
    ) -> Sequence[SubControlAttestation]:
        """All attestations of an instance with their sub-control template, in checklist order."""
        result = await db.execute(
            select(SubControlAttestation)
            .join(SubControlTemplate, SubControlTemplate.id == SubControlAttestation.sub_control_template_id)
            .options(selectinload(SubControlAttestation.sub_control))
            .where(SubControlAttestation.control_instance_id == control_instance_id)
            .order_by(SubControlTemplate.sort_order)
        )
        return result.scalars().all()

    async def get_with_sub_control(
        self, db: AsyncSession, attestation_id: uuid.UUID,
    ) -> Optional[SubControlAttestation]:
        result = await db.execute(
            select(SubControlAttestation)
            .options(selectinload(SubControlAttestation.sub_control))
            .where(SubControlAttestation.id == attestation_id)
        )
        return result.scalar_one_or_none()


class EvidenceRequestRepository(BaseRepository[EvidenceRequest, Any]):
    def __init__(self):
        super().__init__(EvidenceRequest)

    async def for_instance(
        self, db: AsyncSession, control_instance_id: uuid.UUID,
    ) -> Sequence[EvidenceRequest]:
        """Requests scoped to the instance directly or to any of its attestations."""
        attestation_ids = select(SubControlAttestation.id).where(
            SubControlAttestation.control_instance_id == control_instance_id
        )
        result = await db.execute(
            select(EvidenceRequest)
            .options(
                selectinload(EvidenceRequest.attestation).selectinload(SubControlAttestation.sub_control)
            )
            .where(
                or_(
                    EvidenceRequest.control_instance_id == control_instance_id,
                    EvidenceRequest.attestation_id.in_(attestation_ids),
                )
            )
        )
        return result.scalars().all()

    async def open_overdue(self, db: AsyncSession, today: date) -> Sequence[EvidenceRequest]:
        result = await db.execute(
            select(EvidenceRequest)
            .options(
                selectinload(EvidenceRequest.attestation).selectinload(SubControlAttestation.sub_control)
            )
            .where(EvidenceRequest.status == "open", EvidenceRequest.due_date < today)
        )
        return result.scalars().all()


class DerivedScoreRepository:
    """Upserts one row per control instance for a derived score table."""

    def __init__(self, model: Type[DerivedDimeScore] | Type[ConfidenceScore]):
        self.model = model

    async def get(self, db: AsyncSession, control_instance_id: uuid.UUID):
        result = await db.execute(
            select(self.model).where(self.model.control_instance_id == control_instance_id)
        )
        return result.scalar_one_or_none()

    async def upsert(self, db: AsyncSession, control_instance_id: uuid.UUID, **values: Any):
        """Overwrite the row for ``control_instance_id``, inserting it if absent.

        A concurrent insert of the same row is absorbed by retrying as an update.
        """
        row = await self.get(db, control_instance_id)
        if row is None:
            try:
                async with db.begin_nested():
                    row = self.model(control_instance_id=control_instance_id, **values)
                    db.add(row)
            except IntegrityError:
                row = await self.get(db, control_instance_id)
                if row is None:
                    raise
            else:
                return row
        for key, value in values.items():
            setattr(row, key, value)
        await db.flush()
        return row


control_instance_repo = ControlInstanceRepository()
attestation_repo = AttestationRepository()
evidence_request_repo = EvidenceRequestRepository()
dime_score_repo = DerivedScoreRepository(DerivedDimeScore)
confidence_score_repo = DerivedScoreRepository(ConfidenceScore)
