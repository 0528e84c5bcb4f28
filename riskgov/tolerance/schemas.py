"""
Tolerance schemas — metric types, bands, typed escalation rules, breach models.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field

from riskgov.config import settings


class MetricType(StrEnum):
    MAXIMUM = "maximum"
    MINIMUM = "minimum"
    RANGE = "range"
    DIRECTIONAL = "directional"


class Materiality(StrEnum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    DUAL = "dual"


class TrendDirection(StrEnum):
    INCREASING_IS_BAD = "increasing_is_bad"
    DECREASING_IS_BAD = "decreasing_is_bad"


class BandStatus(StrEnum):
    GREEN = "green"
    AMBER = "amber"
    RED = "red"
    UNKNOWN = "unknown"


class BreachTier(StrEnum):
    AMBER = "amber"
    RED = "red"


class BreachStatus(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    BOARD_ACCEPTED = "board_accepted"


ACTIVE_BREACH_STATUSES = frozenset({BreachStatus.OPEN, BreachStatus.IN_PROGRESS})
TERMINAL_BREACH_STATUSES = frozenset({BreachStatus.CLOSED, BreachStatus.BOARD_ACCEPTED})


# ── Metric configuration ─────────────────────────────────────────────────


class Bands(BaseModel):
    """Green/amber/red limits. Which ones matter depends on the metric type."""
    green_min: Optional[float] = None
    green_max: Optional[float] = None
    amber_min: Optional[float] = None
    amber_max: Optional[float] = None
    red_min: Optional[float] = None
    red_max: Optional[float] = None


class TrendConfig(BaseModel):
    """Directional metrics compare against a trailing-window baseline."""
    lookback_days: int = Field(ge=1)
    allowed_change_pct: float = Field(gt=0)
    trend: TrendDirection


class EscalationRule(BaseModel):
    sla_days: int = Field(ge=1)
    notify: list[str] = Field(default_factory=list)
    action_required: str = ""


def _default_amber_rule() -> EscalationRule:
    return EscalationRule(
        sla_days=settings.amber_sla_days,
        notify=["CRO", "Risk Committee"],
        action_required="Remediation plan required",
    )


def _default_red_rule() -> EscalationRule:
    return EscalationRule(
        sla_days=settings.red_sla_days,
        notify=["CEO", "Board Risk Committee", "Board"],
        action_required="Immediate escalation and remediation",
    )


class EscalationRules(BaseModel):
    """One rule per breach tier."""
    amber: EscalationRule = Field(default_factory=_default_amber_rule)
    red: EscalationRule = Field(default_factory=_default_red_rule)

    def for_tier(self, tier: BreachTier) -> EscalationRule:
        return self.red if tier == BreachTier.RED else self.amber


class EscalationTarget(BaseModel):
    """Who a breach was escalated to, recorded on the breach."""
    recipient: str
    tier: BreachTier
    sla_days: int
    action_required: str = ""


# ── Classification ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Classification:
    """Result of comparing one value against a metric's bands."""
    status: BandStatus
    value: float                        # observed value, or change % for directional
    threshold: Optional[float]          # limit crossed (None when green/unknown)
    explanation: str
    baseline: Optional[float] = None
    change_pct: Optional[float] = None

    @property
    def is_breach(self) -> bool:
        return self.status in (BandStatus.AMBER, BandStatus.RED)


# ── Write payloads ───────────────────────────────────────────────────────


class SeriesCreate(BaseModel):
    name: str = Field(min_length=1)
    unit: Optional[str] = None


class MeasurementCreate(BaseModel):
    series_id: uuid.UUID
    as_of_date: date
    value: float


class ToleranceMetricCreate(BaseModel):
    appetite_category: str = Field(min_length=1)
    metric_name: str = Field(min_length=1)
    description: Optional[str] = None
    metric_type: MetricType
    unit: Optional[str] = None
    materiality: Materiality = Materiality.INTERNAL
    bands: Bands = Field(default_factory=Bands)
    series_id: Optional[uuid.UUID] = None
    trend_config: Optional[TrendConfig] = None
    escalation_rules: EscalationRules = Field(default_factory=EscalationRules)
    effective_from: date
    effective_to: Optional[date] = None


class ToleranceMetricRevision(BaseModel):
    """Changes carried into a new metric version; unset fields are copied."""
    effective_from: date
    bands: Optional[Bands] = None
    trend_config: Optional[TrendConfig] = None
    escalation_rules: Optional[EscalationRules] = None
    description: Optional[str] = None
    series_id: Optional[uuid.UUID] = None


class RemediationUpdate(BaseModel):
    plan: Optional[str] = None
    owner_id: Optional[uuid.UUID] = None
    due_date: Optional[date] = None


class TransitionMetadata(BaseModel):
    """Extra facts a transition may need. Board acceptance needs the first three."""
    approver_id: Optional[uuid.UUID] = None
    accepted_at: Optional[datetime] = None
    rationale: Optional[str] = None
    resolution_notes: Optional[str] = None
    temporary_threshold: Optional[float] = None
    exception_valid_until: Optional[date] = None
    reason: Optional[str] = None


class BoardExceptionAmendment(BaseModel):
    temporary_threshold: Optional[float] = None
    exception_valid_until: Optional[date] = None
    reason: str = Field(min_length=1)


# ── Responses ────────────────────────────────────────────────────────────


class SeriesResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    unit: Optional[str] = None

    model_config = {"from_attributes": True}


class MeasurementResponse(BaseModel):
    id: uuid.UUID
    series_id: uuid.UUID
    as_of_date: date
    value: float

    model_config = {"from_attributes": True}


class ToleranceMetricResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    appetite_category: str
    metric_name: str
    metric_type: str
    unit: Optional[str] = None
    materiality: str
    green_min: Optional[float] = None
    green_max: Optional[float] = None
    amber_min: Optional[float] = None
    amber_max: Optional[float] = None
    red_min: Optional[float] = None
    red_max: Optional[float] = None
    series_id: Optional[uuid.UUID] = None
    trend_config: Optional[TrendConfig] = None
    escalation_rules: EscalationRules
    version_number: int
    effective_from: date
    effective_to: Optional[date] = None
    is_active: bool
    superseded_by_id: Optional[uuid.UUID] = None

    model_config = {"from_attributes": True}


class BreachResponse(BaseModel):
    id: uuid.UUID
    metric_id: uuid.UUID
    measurement_id: uuid.UUID
    tier: BreachTier
    status: BreachStatus
    breach_value: float
    threshold_value: float
    explanation: Optional[str] = None
    detected_at: datetime
    prior_breach_id: Optional[uuid.UUID] = None
    escalated_to: list[EscalationTarget] = Field(default_factory=list)
    remediation_plan: Optional[str] = None
    remediation_owner_id: Optional[uuid.UUID] = None
    remediation_due_date: Optional[date] = None
    last_seen_measurement_id: Optional[uuid.UUID] = None
    last_seen_value: Optional[float] = None
    last_seen_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    closed_at: Optional[datetime] = None
    board_accepted_by: Optional[uuid.UUID] = None
    board_accepted_at: Optional[datetime] = None
    board_acceptance_rationale: Optional[str] = None
    temporary_threshold: Optional[float] = None
    exception_valid_until: Optional[date] = None

    model_config = {"from_attributes": True}
