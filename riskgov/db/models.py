"""
riskgov SQLAlchemy models.

Uses compatibility types for SQLite (dev) + PostgreSQL (prod).
Status and enum columns store the ``StrEnum`` values defined in the
``controls`` / ``tolerance`` / ``risks`` schema modules.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from riskgov.db.compat import GUID, JSONType, utcnow
from riskgov.db.engine import Base


def _genuuid():
    return uuid.uuid4()


# ──────────────────────────────────────────────────────────────────────────────
# 1.1 Control Template Library
# ──────────────────────────────────────────────────────────────────────────────


class ControlTemplate(Base):
    """Published control archetype. Never updated in place after publication."""

    __tablename__ = "rg_control_templates"
    __table_args__ = (
        UniqueConstraint("code", "version", name="uq_rg_control_template_code_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    objective_default: Mapped[str] = mapped_column(String(20), nullable=False)
    purpose: Mapped[Optional[str]] = mapped_column(Text)
    version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    published_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    sub_controls: Mapped[list["SubControlTemplate"]] = relationship(
        back_populates="template",
        order_by="SubControlTemplate.sort_order",
        cascade="all, delete-orphan",
    )


class SubControlTemplate(Base):
    __tablename__ = "rg_sub_control_templates"
    __table_args__ = (
        UniqueConstraint("template_id", "code", name="uq_rg_sub_control_template_code"),
        CheckConstraint("dimension IN ('D', 'I', 'M', 'E')", name="ck_rg_sub_control_dimension"),
        CheckConstraint(
            "criticality IN ('critical', 'important', 'optional')",
            name="ck_rg_sub_control_criticality",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    template_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("rg_control_templates.id"), nullable=False)
    code: Mapped[str] = mapped_column(String(10), nullable=False)
    dimension: Mapped[str] = mapped_column(String(1), nullable=False)
    criticality: Mapped[str] = mapped_column(String(20), nullable=False)
    prompt_text: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    template: Mapped["ControlTemplate"] = relationship(back_populates="sub_controls")


# ──────────────────────────────────────────────────────────────────────────────
# 1.2 Risks & Responses
# ──────────────────────────────────────────────────────────────────────────────


class Risk(Base):
    __tablename__ = "rg_risks"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    response: Mapped[Optional["RiskResponse"]] = relationship(back_populates="risk", uselist=False)
    controls: Mapped[list["ControlInstance"]] = relationship(back_populates="risk")


class RiskResponse(Base):
    """Treatment decision for a risk. At most one per risk."""

    __tablename__ = "rg_risk_responses"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    risk_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("rg_risks.id"), unique=True, nullable=False)
    response_type: Mapped[str] = mapped_column(String(30), nullable=False)
    rationale: Mapped[Optional[str]] = mapped_column(Text)
    decided_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    decided_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    risk: Mapped["Risk"] = relationship(back_populates="response")


# ──────────────────────────────────────────────────────────────────────────────
# 1.3 Control Instances & Attestations
# ──────────────────────────────────────────────────────────────────────────────


class ControlInstance(Base):
    __tablename__ = "rg_control_instances"
    __table_args__ = (
        Index("ix_rg_control_instances_risk", "risk_id"),
        CheckConstraint("status IN ('draft', 'active', 'retired')", name="ck_rg_control_instance_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    risk_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("rg_risks.id"), nullable=False)
    template_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("rg_control_templates.id"), nullable=False)
    template_code: Mapped[str] = mapped_column(String(50), nullable=False)
    template_version: Mapped[str] = mapped_column(String(20), nullable=False)
    objective: Mapped[str] = mapped_column(String(20), nullable=False)
    scope_boundary: Mapped[Optional[str]] = mapped_column(Text)
    method: Mapped[Optional[str]] = mapped_column(Text)
    trigger_frequency: Mapped[Optional[str]] = mapped_column(String(100))
    owner_role: Mapped[Optional[str]] = mapped_column(String(100))
    owner_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    target_threshold: Mapped[Optional[str]] = mapped_column(Text)
    statement: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    risk: Mapped["Risk"] = relationship(back_populates="controls")
    attestations: Mapped[list["SubControlAttestation"]] = relationship(
        back_populates="control_instance", cascade="all, delete-orphan",
    )


class SubControlAttestation(Base):
    __tablename__ = "rg_sub_control_attestations"
    __table_args__ = (
        UniqueConstraint(
            "control_instance_id", "sub_control_template_id",
            name="uq_rg_attestation_instance_sub_control",
        ),
        CheckConstraint(
            "status IN ('yes', 'partial', 'no', 'not_applicable', 'unanswered')",
            name="ck_rg_attestation_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    control_instance_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("rg_control_instances.id"), nullable=False, index=True,
    )
    sub_control_template_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("rg_sub_control_templates.id"), nullable=False,
    )
    sub_control_version: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="unanswered")
    evidence_exists: Mapped[Optional[bool]] = mapped_column(Boolean)
    na_rationale: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    attested_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    attested_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    control_instance: Mapped["ControlInstance"] = relationship(back_populates="attestations")
    sub_control: Mapped["SubControlTemplate"] = relationship()


# ──────────────────────────────────────────────────────────────────────────────
# 1.4 Derived Scores (overwritten on every recompute)
# ──────────────────────────────────────────────────────────────────────────────


class DerivedDimeScore(Base):
    __tablename__ = "rg_derived_dime_scores"
    __table_args__ = (
        CheckConstraint(
            "d_score BETWEEN 0 AND 3 AND i_score BETWEEN 0 AND 3 AND m_score BETWEEN 0 AND 3 "
            "AND e_raw BETWEEN 0 AND 3 AND e_final BETWEEN 0 AND 3",
            name="ck_rg_dime_range",
        ),
        CheckConstraint("e_final <= e_raw", name="ck_rg_dime_e_final_le_raw"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    control_instance_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("rg_control_instances.id"), unique=True, nullable=False,
    )
    d_score: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)
    i_score: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)
    m_score: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)
    e_raw: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)
    e_final: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)
    cap_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cap_details: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    calc_trace: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class ConfidenceScore(Base):
    __tablename__ = "rg_confidence_scores"
    __table_args__ = (
        CheckConstraint("score BETWEEN 0 AND 100", name="ck_rg_confidence_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    control_instance_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("rg_control_instances.id"), unique=True, nullable=False,
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(10), nullable=False)
    drivers: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# ──────────────────────────────────────────────────────────────────────────────
# 1.5 Evidence Requests
# ──────────────────────────────────────────────────────────────────────────────


class EvidenceRequest(Base):
    """Evidence ask scoped to exactly one control instance or one attestation."""

    __tablename__ = "rg_evidence_requests"
    __table_args__ = (
        CheckConstraint(
            "(control_instance_id IS NULL) <> (attestation_id IS NULL)",
            name="ck_rg_evidence_request_single_scope",
        ),
        Index("ix_rg_evidence_requests_status_due", "status", "due_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    control_instance_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("rg_control_instances.id"),
    )
    attestation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("rg_sub_control_attestations.id"),
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    notes: Mapped[Optional[str]] = mapped_column(Text)
    overdue_flagged_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    attestation: Mapped[Optional["SubControlAttestation"]] = relationship()


# ──────────────────────────────────────────────────────────────────────────────
# 1.6 Measurements
# ──────────────────────────────────────────────────────────────────────────────


class MeasurementSeries(Base):
    __tablename__ = "rg_measurement_series"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Measurement(Base):
    __tablename__ = "rg_measurements"
    __table_args__ = (
        UniqueConstraint("series_id", "as_of_date", name="uq_rg_measurement_series_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    series_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("rg_measurement_series.id"), nullable=False)
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# 1.7 Tolerance Metrics & Breaches
# ──────────────────────────────────────────────────────────────────────────────


class ToleranceMetric(Base):
    __tablename__ = "rg_tolerance_metrics"
    __table_args__ = (
        CheckConstraint(
            "metric_type IN ('maximum', 'minimum', 'range', 'directional')",
            name="ck_rg_tolerance_metric_type",
        ),
        CheckConstraint(
            "NOT is_active OR series_id IS NOT NULL",
            name="ck_rg_tolerance_active_has_series",
        ),
        Index("ix_rg_tolerance_metrics_series", "series_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    appetite_category: Mapped[str] = mapped_column(String(100), nullable=False)
    metric_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    metric_type: Mapped[str] = mapped_column(String(20), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(50))
    materiality: Mapped[str] = mapped_column(String(20), nullable=False, default="internal")
    green_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    green_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    amber_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    amber_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    red_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    red_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    series_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("rg_measurement_series.id"))
    trend_config: Mapped[Optional[dict]] = mapped_column(JSONType())
    escalation_rules: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    activated_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    superseded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class BreachEvent(Base):
    """
    A tolerance breach. One row per (metric, triggering measurement).

    Board-accepted rows must carry approver, timestamp and rationale.
    """

    __tablename__ = "rg_breach_events"
    __table_args__ = (
        UniqueConstraint("metric_id", "measurement_id", name="uq_rg_breach_metric_measurement"),
        CheckConstraint("tier IN ('amber', 'red')", name="ck_rg_breach_tier"),
        CheckConstraint(
            "status IN ('open', 'in_progress', 'resolved', 'closed', 'board_accepted')",
            name="ck_rg_breach_status",
        ),
        CheckConstraint(
            "status <> 'board_accepted' OR ("
            "board_accepted_by IS NOT NULL AND board_accepted_at IS NOT NULL "
            "AND board_acceptance_rationale IS NOT NULL)",
            name="ck_rg_breach_board_acceptance_complete",
        ),
        Index("ix_rg_breach_events_metric_status", "metric_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    metric_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("rg_tolerance_metrics.id"), nullable=False)
    measurement_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("rg_measurements.id"), nullable=False)
    tier: Mapped[str] = mapped_column(String(10), nullable=False)
    breach_value: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    threshold_value: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    explanation: Mapped[Optional[str]] = mapped_column(Text)
    detected_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    prior_breach_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("rg_breach_events.id"))
    escalated_to: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")

    # Remediation
    remediation_plan: Mapped[Optional[str]] = mapped_column(Text)
    remediation_owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    remediation_due_date: Mapped[Optional[date]] = mapped_column(Date)

    # Repeat readings while open
    last_seen_measurement_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    last_seen_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Resolution / closure
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    resolved_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    closed_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())

    # Board acceptance
    board_accepted_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    board_accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    board_acceptance_rationale: Mapped[Optional[str]] = mapped_column(Text)
    temporary_threshold: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    exception_valid_until: Mapped[Optional[date]] = mapped_column(Date)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}


class BreachObservation(Base):
    """
    A breaching reading absorbed into an already-open breach.

    Keyed like BreachEvent so a redelivered measurement resolves to the
    breach it was first counted against.
    """

    __tablename__ = "rg_breach_observations"
    __table_args__ = (
        UniqueConstraint("metric_id", "measurement_id", name="uq_rg_breach_observation_metric_measurement"),
        CheckConstraint("reading_tier IN ('amber', 'red')", name="ck_rg_breach_observation_tier"),
        Index("ix_rg_breach_observations_breach", "breach_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    metric_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("rg_tolerance_metrics.id"), nullable=False)
    measurement_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("rg_measurements.id"), nullable=False)
    breach_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("rg_breach_events.id"), nullable=False)
    reading_tier: Mapped[str] = mapped_column(String(10), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    observed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# ──────────────────────────────────────────────────────────────────────────────
# 1.8 Governance Audit
# ──────────────────────────────────────────────────────────────────────────────


class GovernanceAuditLog(Base):
    """
    Append-only record of governed writes.

    NO UPDATE, NO DELETE on this table.
    """

    __tablename__ = "rg_governance_audit_log"
    __table_args__ = (
        Index("ix_rg_audit_entity", "entity_type", "entity_id"),
        Index("ix_rg_audit_timestamp", "timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    actor_role: Mapped[Optional[str]] = mapped_column(String(20))
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    before_state: Mapped[Optional[dict]] = mapped_column(JSONType())
    after_state: Mapped[Optional[dict]] = mapped_column(JSONType())
    reason: Mapped[Optional[str]] = mapped_column(Text)
