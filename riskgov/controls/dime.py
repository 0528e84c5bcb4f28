"""
DIME Calculator — Design / Implementation / Monitoring / Evaluation.

Converts a control's sub-control attestations into four 0-3 dimension
scores:
- Each answered sub-control contributes status value × criticality weight
- A critical "no" caps its dimension at 1.0
- Evaluation is constrained by the weakest of D, I and M

Unanswered and not-applicable sub-controls are excluded from weighting,
never treated as zero.
"""

import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.controls.schemas import (
    ANSWERED_STATUSES,
    AttestationInput,
    AttestationStatus,
    CapDetails,
    CapTrigger,
    ConstrainedEffectiveness,
    Criticality,
    DimeResult,
    DimeTrace,
    Dimension,
    DimensionTrace,
    TraceEntry,
)
from riskgov.db.compat import utcnow
from riskgov.db.models import SubControlAttestation
from riskgov.db.repositories.controls import attestation_repo, control_instance_repo, dime_score_repo

logger = structlog.get_logger(__name__)

# ── Configuration ─────────────────────────────────────────────────────────

STATUS_VALUES: dict[AttestationStatus, float] = {
    AttestationStatus.YES: 1.0,
    AttestationStatus.PARTIAL: 0.5,
    AttestationStatus.NO: 0.0,
}

CRITICALITY_WEIGHTS: dict[Criticality, int] = {
    Criticality.CRITICAL: 3,
    Criticality.IMPORTANT: 2,
    Criticality.OPTIONAL: 1,
}

MAX_DIMENSION_SCORE: float = 3.0
CRITICAL_NO_CAP: float = 1.0

EXCLUSION_REASONS: dict[AttestationStatus, str] = {
    AttestationStatus.NOT_APPLICABLE: "not applicable - excluded",
    AttestationStatus.UNANSWERED: "not yet attested",
}


def round_half_up(value: float, places: int = 2) -> float:
    """Round like SQL ROUND on numerics (0.125 -> 0.13), not banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


class DimeCalculator:
    """Pure DIME scoring over a list of attestations."""

    def __init__(
        self,
        status_values: Optional[dict[AttestationStatus, float]] = None,
        weights: Optional[dict[Criticality, int]] = None,
        max_score: float = MAX_DIMENSION_SCORE,
        cap: float = CRITICAL_NO_CAP,
    ):
        self.status_values = status_values or STATUS_VALUES
        self.weights = weights or CRITICALITY_WEIGHTS
        self.max_score = max_score
        self.cap = cap

    def compute(self, attestations: Sequence[AttestationInput]) -> DimeResult:
        sums: dict[Dimension, float] = {d: 0.0 for d in Dimension}
        totals: dict[Dimension, int] = {d: 0 for d in Dimension}
        entries: list[TraceEntry] = []
        triggers: list[CapTrigger] = []

        for att in attestations:
            if att.status not in ANSWERED_STATUSES:
                entries.append(TraceEntry(
                    code=att.code,
                    dimension=att.dimension,
                    criticality=att.criticality,
                    status=att.status,
                    included=False,
                    reason=EXCLUSION_REASONS[att.status],
                ))
                continue

            value = self.status_values[att.status]
            weight = self.weights[att.criticality]
            sums[att.dimension] += value * weight
            totals[att.dimension] += weight
            entries.append(TraceEntry(
                code=att.code,
                dimension=att.dimension,
                criticality=att.criticality,
                status=att.status,
                included=True,
                status_value=value,
                weight=weight,
                contribution=value * weight,
            ))

            if att.criticality == Criticality.CRITICAL and att.status == AttestationStatus.NO:
                triggers.append(CapTrigger(dimension=att.dimension, code=att.code))

        capped_dims = {t.dimension for t in triggers}
        dimensions: dict[str, DimensionTrace] = {}
        scores: dict[Dimension, float] = {}
        for dim in Dimension:
            raw = (
                round_half_up(self.max_score * sums[dim] / totals[dim])
                if totals[dim] > 0 else 0.0
            )
            score = min(raw, self.cap) if dim in capped_dims else raw
            scores[dim] = score
            dimensions[dim.value] = DimensionTrace(
                weighted_sum=round(sums[dim], 4),
                weight_total=totals[dim],
                raw=raw,
                score=score,
                capped=dim in capped_dims,
            )

        d = scores[Dimension.DESIGN]
        i = scores[Dimension.IMPLEMENTATION]
        m = scores[Dimension.MONITORING]
        e_raw = scores[Dimension.EVALUATION]
        e_final = min(e_raw, d, i, m)

        constrained_by = "none"
        if e_final < e_raw:
            for dim, val in ((Dimension.DESIGN, d), (Dimension.IMPLEMENTATION, i), (Dimension.MONITORING, m)):
                if val == e_final:
                    constrained_by = dim.value
                    break

        cap_details = CapDetails(
            triggers=triggers,
            d_capped=Dimension.DESIGN in capped_dims,
            i_capped=Dimension.IMPLEMENTATION in capped_dims,
            m_capped=Dimension.MONITORING in capped_dims,
            e_capped=Dimension.EVALUATION in capped_dims,
        )

        return DimeResult(
            d_score=d,
            i_score=i,
            m_score=m,
            e_raw=e_raw,
            e_final=e_final,
            cap_applied=bool(triggers),
            cap_details=cap_details,
            trace=DimeTrace(
                entries=entries,
                dimensions=dimensions,
                constrained_effectiveness=ConstrainedEffectiveness(
                    e_raw=e_raw, e_final=e_final, constrained_by=constrained_by,
                ),
            ),
        )


def to_attestation_input(row: SubControlAttestation) -> AttestationInput:
    """Project a stored attestation (with its sub-control loaded) for the calculators."""
    sc = row.sub_control
    return AttestationInput(
        code=sc.code,
        dimension=Dimension(sc.dimension),
        criticality=Criticality(sc.criticality),
        status=AttestationStatus(row.status),
        evidence_exists=row.evidence_exists,
        attested_at=row.attested_at,
    )


class DimeService:
    """Loads a control's attestations, scores them, and overwrites DerivedDimeScore."""

    def __init__(self, calculator: Optional[DimeCalculator] = None):
        self.calculator = calculator or DimeCalculator()

    async def compute(self, session: AsyncSession, control_instance_id: uuid.UUID) -> DimeResult:
        await control_instance_repo.get_or_raise(session, control_instance_id)
        rows = await attestation_repo.for_instance(session, control_instance_id)

        result = self.calculator.compute([to_attestation_input(r) for r in rows])
        computed_at = utcnow()
        result = result.model_copy(update={
            "control_instance_id": control_instance_id,
            "computed_at": computed_at,
        })

        await dime_score_repo.upsert(
            session,
            control_instance_id,
            d_score=Decimal(str(result.d_score)),
            i_score=Decimal(str(result.i_score)),
            m_score=Decimal(str(result.m_score)),
            e_raw=Decimal(str(result.e_raw)),
            e_final=Decimal(str(result.e_final)),
            cap_applied=result.cap_applied,
            cap_details=result.cap_details.model_dump(mode="json"),
            calc_trace=result.trace.model_dump(mode="json"),
            computed_at=computed_at,
        )

        logger.info(
            "dime_computed",
            control_instance_id=str(control_instance_id),
            d=result.d_score,
            i=result.i_score,
            m=result.m_score,
            e_final=result.e_final,
            cap_applied=result.cap_applied,
        )
        return result


dime_service = DimeService()
