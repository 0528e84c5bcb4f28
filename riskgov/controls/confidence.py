"""
Confidence Calculator — how much the evidence behind a control can be trusted.

Score (0-100) = critical status (0-40)
              + critical evidence coverage (0-20)
              + overall evidence coverage (0-10)
              + attestation recency (0-20)
              + overdue evidence request penalty (-30-0)

A control whose critical checks are mostly unanswered or failed is held
at "low" no matter what the other components add up to.
"""

import uuid
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.controls.dime import STATUS_VALUES, to_attestation_input
from riskgov.controls.schemas import (
    ANSWERED_STATUSES,
    AttestationInput,
    AttestationStatus,
    ConfidenceComponents,
    ConfidenceDriver,
    ConfidenceLabel,
    ConfidenceResult,
    Criticality,
    DriverKind,
    EvidenceRequestInput,
    EvidenceRequestStatus,
)
from riskgov.db.compat import utcnow
from riskgov.db.models import EvidenceRequest
from riskgov.db.repositories.controls import (
    attestation_repo,
    confidence_score_repo,
    control_instance_repo,
    evidence_request_repo,
)

logger = structlog.get_logger(__name__)

# ── Configuration ─────────────────────────────────────────────────────────

CRITICAL_STATUS_MAX: int = 40
CRITICAL_EVIDENCE_MAX: int = 20
OVERALL_EVIDENCE_MAX: int = 10

# (max days since last attestation, points)
RECENCY_TIERS: tuple[tuple[int, int], ...] = ((30, 20), (60, 15), (90, 10), (180, 5))

# (max days overdue, penalty); anything older takes OVERDUE_MAX_PENALTY
OVERDUE_TIERS: tuple[tuple[int, float], ...] = ((7, 5.0), (30, 10.0))
OVERDUE_MAX_PENALTY: float = 15.0
CRITICAL_SCOPE_MULTIPLIER: float = 1.5
PENALTY_FLOOR: float = -30.0

CRITICAL_STATUS_FLOOR: int = 10     # below this the score is capped
LOW_CONFIDENCE_CAP: int = 39
HIGH_THRESHOLD: int = 75
MEDIUM_THRESHOLD: int = 40


def _half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def recency_points(days: int) -> int:
    for max_days, points in RECENCY_TIERS:
        if days <= max_days:
            return points
    return 0


def overdue_penalty(request: EvidenceRequestInput, today: date) -> float:
    """Penalty (positive number) for one request; 0 when not open or not overdue."""
    if request.status != EvidenceRequestStatus.OPEN or request.due_date >= today:
        return 0.0
    days_overdue = (today - request.due_date).days
    penalty = OVERDUE_MAX_PENALTY
    for max_days, tier_penalty in OVERDUE_TIERS:
        if days_overdue <= max_days:
            penalty = tier_penalty
            break
    if request.is_critical_scope:
        penalty *= CRITICAL_SCOPE_MULTIPLIER
    return penalty


def label_for(score: int) -> ConfidenceLabel:
    if score >= HIGH_THRESHOLD:
        return ConfidenceLabel.HIGH
    if score >= MEDIUM_THRESHOLD:
        return ConfidenceLabel.MEDIUM
    return ConfidenceLabel.LOW


class ConfidenceCalculator:
    """Pure confidence scoring over attestations and evidence requests."""

    def compute(
        self,
        attestations: Sequence[AttestationInput],
        evidence_requests: Sequence[EvidenceRequestInput],
        now: datetime,
    ) -> ConfidenceResult:
        today = now.date()
        answered = [a for a in attestations if a.status in ANSWERED_STATUSES]
        critical = [a for a in answered if a.criticality == Criticality.CRITICAL]
        critical_applicable = [
            a for a in attestations
            if a.criticality == Criticality.CRITICAL and a.status != AttestationStatus.NOT_APPLICABLE
        ]

        critical_sum = sum(STATUS_VALUES[a.status] for a in critical)
        critical_with_evidence = sum(1 for a in critical if a.evidence_exists)
        answered_with_evidence = sum(1 for a in answered if a.evidence_exists)

        components = ConfidenceComponents()
        if critical:
            components.critical_status = _half_up(CRITICAL_STATUS_MAX * critical_sum / len(critical))
            components.critical_evidence = _half_up(
                CRITICAL_EVIDENCE_MAX * critical_with_evidence / len(critical)
            )
        if answered:
            components.overall_evidence = _half_up(
                OVERALL_EVIDENCE_MAX * answered_with_evidence / len(answered)
            )

        attested = [a.attested_at for a in attestations if a.attested_at is not None]
        latest = max(attested) if attested else None
        days_since: Optional[int] = None
        if latest is not None:
            days_since = max((now - latest).days, 0)
            components.recency = recency_points(days_since)

        overdue = [p for p in (overdue_penalty(r, today) for r in evidence_requests) if p > 0]
        components.overdue_penalty = max(-sum(overdue), PENALTY_FLOOR)

        total = (
            components.critical_status
            + components.critical_evidence
            + components.overall_evidence
            + components.recency
            + components.overdue_penalty
        )
        uncapped = _half_up(min(max(total, 0.0), 100.0))
        score = uncapped
        floor_applied = components.critical_status < CRITICAL_STATUS_FLOOR
        if floor_applied:
            score = min(score, LOW_CONFIDENCE_CAP)

        drivers: list[ConfidenceDriver] = []
        if critical:
            yes = sum(1 for a in critical if a.status == AttestationStatus.YES)
            partial = sum(1 for a in critical if a.status == AttestationStatus.PARTIAL)
            drivers.append(ConfidenceDriver(
                kind=DriverKind.POSITIVE if components.critical_status >= 30 else DriverKind.NEGATIVE,
                code="critical_status",
                text=(
                    f"{len(critical)}/{len(critical_applicable)} critical controls answered "
                    f"({yes} Yes, {partial} Partial)"
                ),
                points=components.critical_status,
            ))
            drivers.append(ConfidenceDriver(
                kind=DriverKind.POSITIVE if components.critical_evidence >= 15 else DriverKind.NEGATIVE,
                code="critical_evidence",
                text=f"Evidence documented for {critical_with_evidence}/{len(critical)} critical controls",
                points=components.critical_evidence,
            ))
        else:
            drivers.append(ConfidenceDriver(
                kind=DriverKind.NEGATIVE,
                code="critical_status",
                text="No critical controls attested yet",
                points=0,
            ))

        if answered:
            drivers.append(ConfidenceDriver(
                kind=DriverKind.POSITIVE if components.overall_evidence >= 7 else DriverKind.NEUTRAL,
                code="overall_evidence",
                text=f"Overall evidence coverage: {answered_with_evidence}/{len(answered)} controls",
                points=components.overall_evidence,
            ))

        if days_since is not None:
            drivers.append(ConfidenceDriver(
                kind=DriverKind.POSITIVE if components.recency >= 15 else DriverKind.NEGATIVE,
                code="recency",
                text=f"Last attestation {days_since} days ago",
                points=components.recency,
            ))
        else:
            drivers.append(ConfidenceDriver(
                kind=DriverKind.NEGATIVE,
                code="recency",
                text="No attestations recorded",
                points=0,
            ))

        if components.overdue_penalty < 0:
            drivers.append(ConfidenceDriver(
                kind=DriverKind.NEGATIVE,
                code="overdue_penalty",
                text=f"Overdue evidence requests penalty ({len(overdue)} overdue)",
                points=components.overdue_penalty,
            ))

        if floor_applied and uncapped > LOW_CONFIDENCE_CAP:
            drivers.append(ConfidenceDriver(
                kind=DriverKind.NEGATIVE,
                code="critical_floor",
                text="Score capped to Low: critical control status below 25%",
                points=score - uncapped,
            ))

        return ConfidenceResult(
            score=score,
            label=label_for(score),
            components=components,
            drivers=drivers,
        )


def to_evidence_request_input(row: EvidenceRequest) -> EvidenceRequestInput:
    """Sub-control scoped requests are critical when that sub-control is critical."""
    critical = (
        row.attestation is not None
        and row.attestation.sub_control is not None
        and row.attestation.sub_control.criticality == Criticality.CRITICAL.value
    )
    return EvidenceRequestInput(
        due_date=row.due_date,
        status=EvidenceRequestStatus(row.status),
        is_critical_scope=critical,
    )


class ConfidenceService:
    """Loads attestations and evidence requests, scores, and overwrites ConfidenceScore."""

    def __init__(self, calculator: Optional[ConfidenceCalculator] = None):
        self.calculator = calculator or ConfidenceCalculator()

    async def compute(
        self,
        session: AsyncSession,
        control_instance_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> ConfidenceResult:
        await control_instance_repo.get_or_raise(session, control_instance_id)
        now = now or utcnow()

        attestations = await attestation_repo.for_instance(session, control_instance_id)
        requests = await evidence_request_repo.for_instance(session, control_instance_id)

        result = self.calculator.compute(
            [to_attestation_input(a) for a in attestations],
            [to_evidence_request_input(r) for r in requests],
            now=now,
        )
        result = result.model_copy(update={
            "control_instance_id": control_instance_id,
            "computed_at": now,
        })

        await confidence_score_repo.upsert(
            session,
            control_instance_id,
            score=result.score,
            label=result.label.value,
            drivers=[d.model_dump(mode="json") for d in result.drivers],
            computed_at=now,
        )

        logger.info(
            "confidence_computed",
            control_instance_id=str(control_instance_id),
            score=result.score,
            label=result.label.value,
        )
        return result


confidence_service = ConfidenceService()
