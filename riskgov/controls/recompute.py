"""
Synchronous recompute of a control's derived scores.

Called by every write path that can change a score, inside the same
transaction as the write, so derived scores are never stale relative to
the attestation or evidence request that last committed.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.controls.confidence import confidence_service
from riskgov.controls.dime import dime_service
from riskgov.controls.schemas import ConfidenceResult, DimeResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RecomputeResult:
    dime: DimeResult
    confidence: ConfidenceResult


async def recompute_control_scores(
    session: AsyncSession,
    control_instance_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> RecomputeResult:
    """Recompute DIME and confidence for one control instance."""
    dime = await dime_service.compute(session, control_instance_id)
    confidence = await confidence_service.compute(session, control_instance_id, now=now)
    logger.debug("control_scores_recomputed", control_instance_id=str(control_instance_id))
    return RecomputeResult(dime=dime, confidence=confidence)


async def recompute_confidence(
    session: AsyncSession,
    control_instance_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> ConfidenceResult:
    """Evidence request changes only move confidence, never DIME."""
    return await confidence_service.compute(session, control_instance_id, now=now)
