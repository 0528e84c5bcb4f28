"""
Control assurance schemas — enums, calculator inputs/outputs, write payloads.

DIME and confidence results are fully typed so that the explanation trace
and driver list keep a stable shape for reporting consumers.
"""

import uuid
from datetime import date, datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field


class Dimension(StrEnum):
    DESIGN = "D"
    IMPLEMENTATION = "I"
    MONITORING = "M"
    EVALUATION = "E"


class Criticality(StrEnum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    OPTIONAL = "optional"


class AttestationStatus(StrEnum):
    YES = "yes"
    PARTIAL = "partial"
    NO = "no"
    NOT_APPLICABLE = "not_applicable"
    UNANSWERED = "unanswered"


ANSWERED_STATUSES = frozenset({
    AttestationStatus.YES,
    AttestationStatus.PARTIAL,
    AttestationStatus.NO,
})


class ControlObjective(StrEnum):
    LIKELIHOOD = "likelihood"
    IMPACT = "impact"
    BOTH = "both"


class ControlStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    RETIRED = "retired"


class EvidenceRequestStatus(StrEnum):
    OPEN = "open"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    CLOSED = "closed"


class ConfidenceLabel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DriverKind(StrEnum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


# ── Calculator inputs ────────────────────────────────────────────────────


class AttestationInput(BaseModel):
    """One sub-control answer as seen by the calculators."""
    code: str
    dimension: Dimension
    criticality: Criticality
    status: AttestationStatus = AttestationStatus.UNANSWERED
    evidence_exists: Optional[bool] = None
    attested_at: Optional[datetime] = None


class EvidenceRequestInput(BaseModel):
    """An evidence request as seen by the confidence calculator."""
    due_date: date
    status: EvidenceRequestStatus
    is_critical_scope: bool = False


# ── DIME result ──────────────────────────────────────────────────────────


class TraceEntry(BaseModel):
    """Contribution of one sub-control to its dimension."""
    code: str
    dimension: Dimension
    criticality: Criticality
    status: AttestationStatus
    included: bool
    status_value: Optional[float] = None
    weight: int = 0
    contribution: Optional[float] = None   # status_value * weight
    reason: Optional[str] = None           # why it was excluded


class DimensionTrace(BaseModel):
    weighted_sum: float = 0.0
    weight_total: int = 0
    raw: float = 0.0          # before cap
    score: float = 0.0        # after cap
    capped: bool = False


class CapTrigger(BaseModel):
    dimension: Dimension
    code: str


class CapDetails(BaseModel):
    triggers: list[CapTrigger] = Field(default_factory=list)
    d_capped: bool = False
    i_capped: bool = False
    m_capped: bool = False
    e_capped: bool = False


class ConstrainedEffectiveness(BaseModel):
    e_raw: float
    e_final: float
    constrained_by: str   # "D" | "I" | "M" | "none"


class DimeTrace(BaseModel):
    entries: list[TraceEntry] = Field(default_factory=list)
    dimensions: dict[str, DimensionTrace] = Field(default_factory=dict)
    constrained_effectiveness: Optional[ConstrainedEffectiveness] = None


class DimeResult(BaseModel):
    """Four dimension scores (0-3) plus raw and constrained effectiveness."""
    control_instance_id: Optional[uuid.UUID] = None
    d_score: float
    i_score: float
    m_score: float
    e_raw: float
    e_final: float
    cap_applied: bool
    cap_details: CapDetails
    trace: DimeTrace
    computed_at: Optional[datetime] = None


# ── Confidence result ────────────────────────────────────────────────────


class ConfidenceDriver(BaseModel):
    """One human-readable explanation line with its point contribution."""
    kind: DriverKind
    code: str
    text: str
    points: float = 0


class ConfidenceComponents(BaseModel):
    critical_status: int = 0        # 0-40
    critical_evidence: int = 0      # 0-20
    overall_evidence: int = 0       # 0-10
    recency: int = 0                # 0-20
    overdue_penalty: float = 0.0    # -30-0


class ConfidenceResult(BaseModel):
    control_instance_id: Optional[uuid.UUID] = None
    score: int = Field(ge=0, le=100)
    label: ConfidenceLabel
    components: ConfidenceComponents
    drivers: list[ConfidenceDriver] = Field(default_factory=list)
    computed_at: Optional[datetime] = None


# ── Write payloads ───────────────────────────────────────────────────────


class ControlInstanceCreate(BaseModel):
    risk_id: uuid.UUID
    template_code: str
    template_version: Optional[str] = None   # latest active when omitted
    objective: Optional[ControlObjective] = None
    scope_boundary: Optional[str] = None
    method: Optional[str] = None
    trigger_frequency: Optional[str] = None
    owner_role: Optional[str] = None
    owner_user_id: Optional[uuid.UUID] = None
    target_threshold: Optional[str] = None
    statement: Optional[str] = None


class AttestationUpdate(BaseModel):
    """Partial update; only fields explicitly set are applied."""
    status: Optional[AttestationStatus] = None
    evidence_exists: Optional[bool] = None
    na_rationale: Optional[str] = None
    notes: Optional[str] = None
    attested_at: Optional[datetime] = None


class EvidenceRequestCreate(BaseModel):
    control_instance_id: Optional[uuid.UUID] = None
    attestation_id: Optional[uuid.UUID] = None
    due_date: date
    notes: Optional[str] = None


class EvidenceRequestUpdate(BaseModel):
    status: Optional[EvidenceRequestStatus] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


# ── Responses ────────────────────────────────────────────────────────────


class AttestationResponse(BaseModel):
    id: uuid.UUID
    control_instance_id: uuid.UUID
    sub_control_template_id: uuid.UUID
    sub_control_version: str
    status: str
    evidence_exists: Optional[bool] = None
    na_rationale: Optional[str] = None
    notes: Optional[str] = None
    attested_by: Optional[uuid.UUID] = None
    attested_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ControlInstanceResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    risk_id: uuid.UUID
    template_id: uuid.UUID
    template_code: str
    template_version: str
    objective: str
    status: str
    scope_boundary: Optional[str] = None
    method: Optional[str] = None
    trigger_frequency: Optional[str] = None
    owner_role: Optional[str] = None
    owner_user_id: Optional[uuid.UUID] = None
    target_threshold: Optional[str] = None
    statement: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EvidenceRequestResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    control_instance_id: Optional[uuid.UUID] = None
    attestation_id: Optional[uuid.UUID] = None
    due_date: date
    status: str
    notes: Optional[str] = None
    overdue_flagged_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ControlStatusChange(BaseModel):
    status: ControlStatus


class AttestationWriteResponse(BaseModel):
    attestation: AttestationResponse
    recomputed: bool


class SubControlTemplateResponse(BaseModel):
    id: uuid.UUID
    code: str
    dimension: Dimension
    criticality: Criticality
    prompt_text: str
    sort_order: int

    model_config = {"from_attributes": True}


class ControlTemplateResponse(BaseModel):
    id: uuid.UUID
    code: str
    name: str
    category: Optional[str] = None
    objective_default: str
    version: str
    is_active: bool
    sub_controls: list[SubControlTemplateResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}
