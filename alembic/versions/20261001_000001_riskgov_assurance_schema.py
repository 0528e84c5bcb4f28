"""riskgov assurance schema — controls, tolerances, breaches, audit.

Creates all rg_* tables with the same constraints the ORM models declare,
including the storage-level guarantees the engine relies on:
  - one breach per (metric, measurement)
  - board-accepted breaches always carry approver, timestamp and rationale
  - evidence requests scoped to exactly one of control / attestation
  - an active tolerance metric always references a series

Revision ID: riskgov_assurance_001
Revises:
Create Date: 2026-10-01
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "riskgov_assurance_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ──────────────────────────────────────────────────────────────────────
    # 1.1 Control Template Library
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_control_templates (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        code                VARCHAR(50) NOT NULL,
        name                VARCHAR(255) NOT NULL,
        category            VARCHAR(100) NOT NULL,
        objective_default   VARCHAR(20) NOT NULL,
        purpose             TEXT,
        version             VARCHAR(20) NOT NULL DEFAULT '1.0',
        is_active           BOOLEAN NOT NULL DEFAULT TRUE,
        published_at        TIMESTAMP DEFAULT NOW(),
        CONSTRAINT uq_rg_control_template_code_version UNIQUE (code, version)
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_sub_control_templates (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        template_id     UUID NOT NULL REFERENCES rg_control_templates(id),
        code            VARCHAR(10) NOT NULL,
        dimension       VARCHAR(1) NOT NULL,
        criticality     VARCHAR(20) NOT NULL,
        prompt_text     TEXT NOT NULL,
        version         VARCHAR(20) NOT NULL DEFAULT '1.0',
        sort_order      INTEGER NOT NULL DEFAULT 0,
        is_active       BOOLEAN NOT NULL DEFAULT TRUE,
        CONSTRAINT uq_rg_sub_control_template_code UNIQUE (template_id, code),
        CONSTRAINT ck_rg_sub_control_dimension CHECK (dimension IN ('D', 'I', 'M', 'E')),
        CONSTRAINT ck_rg_sub_control_criticality
            CHECK (criticality IN ('critical', 'important', 'optional'))
    )
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 1.2 Risks & Responses
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_risks (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id     UUID NOT NULL,
        code                VARCHAR(50) NOT NULL,
        title               VARCHAR(255) NOT NULL,
        status              VARCHAR(20) NOT NULL DEFAULT 'draft',
        created_at          TIMESTAMP DEFAULT NOW(),
        updated_at          TIMESTAMP DEFAULT NOW()
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_rg_risks_organization_id ON rg_risks(organization_id)")

    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_risk_responses (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        risk_id         UUID NOT NULL UNIQUE REFERENCES rg_risks(id),
        response_type   VARCHAR(30) NOT NULL,
        rationale       TEXT,
        decided_by      UUID,
        decided_at      TIMESTAMP DEFAULT NOW()
    )
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 1.3 Control Instances & Attestations
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_control_instances (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id     UUID NOT NULL,
        risk_id             UUID NOT NULL REFERENCES rg_risks(id),
        template_id         UUID NOT NULL REFERENCES rg_control_templates(id),
        template_code       VARCHAR(50) NOT NULL,
        template_version    VARCHAR(20) NOT NULL,
        objective           VARCHAR(20) NOT NULL,
        scope_boundary      TEXT,
        method              TEXT,
        trigger_frequency   VARCHAR(100),
        owner_role          VARCHAR(100),
        owner_user_id       UUID,
        target_threshold    TEXT,
        statement           TEXT,
        status              VARCHAR(20) NOT NULL DEFAULT 'draft',
        created_by          UUID,
        created_at          TIMESTAMP DEFAULT NOW(),
        updated_at          TIMESTAMP DEFAULT NOW(),
        CONSTRAINT ck_rg_control_instance_status CHECK (status IN ('draft', 'active', 'retired'))
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_rg_control_instances_risk ON rg_control_instances(risk_id)")
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_rg_control_instances_organization_id "
        "ON rg_control_instances(organization_id)"
    )

    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_sub_control_attestations (
        id                          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        control_instance_id         UUID NOT NULL REFERENCES rg_control_instances(id),
        sub_control_template_id     UUID NOT NULL REFERENCES rg_sub_control_templates(id),
        sub_control_version         VARCHAR(20) NOT NULL,
        status                      VARCHAR(20) NOT NULL DEFAULT 'unanswered',
        evidence_exists             BOOLEAN,
        na_rationale                TEXT,
        notes                       TEXT,
        attested_by                 UUID,
        attested_at                 TIMESTAMP,
        CONSTRAINT uq_rg_attestation_instance_sub_control
            UNIQUE (control_instance_id, sub_control_template_id),
        CONSTRAINT ck_rg_attestation_status
            CHECK (status IN ('yes', 'partial', 'no', 'not_applicable', 'unanswered'))
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_rg_sub_control_attestations_control_instance_id "
        "ON rg_sub_control_attestations(control_instance_id)"
    )

    # ──────────────────────────────────────────────────────────────────────
    # 1.4 Derived Scores
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_derived_dime_scores (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        control_instance_id UUID NOT NULL UNIQUE REFERENCES rg_control_instances(id),
        d_score             NUMERIC(4,2) NOT NULL,
        i_score             NUMERIC(4,2) NOT NULL,
        m_score             NUMERIC(4,2) NOT NULL,
        e_raw               NUMERIC(4,2) NOT NULL,
        e_final             NUMERIC(4,2) NOT NULL,
        cap_applied         BOOLEAN NOT NULL DEFAULT FALSE,
        cap_details         JSONB NOT NULL DEFAULT '{}',
        calc_trace          JSONB NOT NULL DEFAULT '{}',
        computed_at         TIMESTAMP NOT NULL DEFAULT NOW(),
        CONSTRAINT ck_rg_dime_range CHECK (
            d_score BETWEEN 0 AND 3 AND i_score BETWEEN 0 AND 3 AND m_score BETWEEN 0 AND 3
            AND e_raw BETWEEN 0 AND 3 AND e_final BETWEEN 0 AND 3
        ),
        CONSTRAINT ck_rg_dime_e_final_le_raw CHECK (e_final <= e_raw)
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_confidence_scores (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        control_instance_id UUID NOT NULL UNIQUE REFERENCES rg_control_instances(id),
        score               INTEGER NOT NULL,
        label               VARCHAR(10) NOT NULL,
        drivers             JSONB NOT NULL DEFAULT '[]',
        computed_at         TIMESTAMP NOT NULL DEFAULT NOW(),
        CONSTRAINT ck_rg_confidence_range CHECK (score BETWEEN 0 AND 100)
    )
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 1.5 Evidence Requests
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_evidence_requests (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id     UUID NOT NULL,
        control_instance_id UUID REFERENCES rg_control_instances(id),
        attestation_id      UUID REFERENCES rg_sub_control_attestations(id),
        due_date            DATE NOT NULL,
        status              VARCHAR(20) NOT NULL DEFAULT 'open',
        requested_by        UUID,
        notes               TEXT,
        overdue_flagged_at  TIMESTAMP,
        created_at          TIMESTAMP DEFAULT NOW(),
        updated_at          TIMESTAMP DEFAULT NOW(),
        CONSTRAINT ck_rg_evidence_request_single_scope
            CHECK ((control_instance_id IS NULL) <> (attestation_id IS NULL))
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_rg_evidence_requests_status_due "
        "ON rg_evidence_requests(status, due_date)"
    )

    # ──────────────────────────────────────────────────────────────────────
    # 1.6 Measurements
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_measurement_series (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id     UUID NOT NULL,
        name                VARCHAR(255) NOT NULL,
        unit                VARCHAR(50),
        created_at          TIMESTAMP DEFAULT NOW()
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_measurements (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        series_id       UUID NOT NULL REFERENCES rg_measurement_series(id),
        as_of_date      DATE NOT NULL,
        value           NUMERIC(20,6) NOT NULL,
        recorded_at     TIMESTAMP DEFAULT NOW(),
        CONSTRAINT uq_rg_measurement_series_date UNIQUE (series_id, as_of_date)
    )
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 1.7 Tolerance Metrics & Breaches
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_tolerance_metrics (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id     UUID NOT NULL,
        appetite_category   VARCHAR(100) NOT NULL,
        metric_name         VARCHAR(255) NOT NULL,
        description         TEXT,
        metric_type         VARCHAR(20) NOT NULL,
        unit                VARCHAR(50),
        materiality         VARCHAR(20) NOT NULL DEFAULT 'internal',
        green_min           NUMERIC(20,6),
        green_max           NUMERIC(20,6),
        amber_min           NUMERIC(20,6),
        amber_max           NUMERIC(20,6),
        red_min             NUMERIC(20,6),
        red_max             NUMERIC(20,6),
        series_id           UUID REFERENCES rg_measurement_series(id),
        trend_config        JSONB,
        escalation_rules    JSONB NOT NULL DEFAULT '{}',
        version_number      INTEGER NOT NULL DEFAULT 1,
        effective_from      DATE NOT NULL,
        effective_to        DATE,
        is_active           BOOLEAN NOT NULL DEFAULT FALSE,
        activated_by        UUID,
        activated_at        TIMESTAMP,
        superseded_by_id    UUID,
        created_by          UUID,
        created_at          TIMESTAMP DEFAULT NOW(),
        updated_at          TIMESTAMP DEFAULT NOW(),
        CONSTRAINT ck_rg_tolerance_metric_type
            CHECK (metric_type IN ('maximum', 'minimum', 'range', 'directional')),
        CONSTRAINT ck_rg_tolerance_active_has_series CHECK (NOT is_active OR series_id IS NOT NULL)
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_rg_tolerance_metrics_series ON rg_tolerance_metrics(series_id)")

    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_breach_events (
        id                          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id             UUID NOT NULL,
        metric_id                   UUID NOT NULL REFERENCES rg_tolerance_metrics(id),
        measurement_id              UUID NOT NULL REFERENCES rg_measurements(id),
        tier                        VARCHAR(10) NOT NULL,
        breach_value                NUMERIC(20,6) NOT NULL,
        threshold_value             NUMERIC(20,6) NOT NULL,
        explanation                 TEXT,
        detected_at                 TIMESTAMP NOT NULL DEFAULT NOW(),
        prior_breach_id             UUID REFERENCES rg_breach_events(id),
        escalated_to                JSONB NOT NULL DEFAULT '[]',
        status                      VARCHAR(20) NOT NULL DEFAULT 'open',
        remediation_plan            TEXT,
        remediation_owner_id        UUID,
        remediation_due_date        DATE,
        last_seen_measurement_id    UUID,
        last_seen_value             NUMERIC(20,6),
        last_seen_at                TIMESTAMP,
        resolved_at                 TIMESTAMP,
        resolved_by                 UUID,
        resolution_notes            TEXT,
        closed_at                   TIMESTAMP,
        closed_by                   UUID,
        board_accepted_by           UUID,
        board_accepted_at           TIMESTAMP,
        board_acceptance_rationale  TEXT,
        temporary_threshold         NUMERIC(20,6),
        exception_valid_until       DATE,
        version_id                  INTEGER NOT NULL DEFAULT 1,
        created_at                  TIMESTAMP DEFAULT NOW(),
        updated_at                  TIMESTAMP DEFAULT NOW(),
        CONSTRAINT uq_rg_breach_metric_measurement UNIQUE (metric_id, measurement_id),
        CONSTRAINT ck_rg_breach_tier CHECK (tier IN ('amber', 'red')),
        CONSTRAINT ck_rg_breach_status
            CHECK (status IN ('open', 'in_progress', 'resolved', 'closed', 'board_accepted')),
        CONSTRAINT ck_rg_breach_board_acceptance_complete CHECK (
            status <> 'board_accepted' OR (
                board_accepted_by IS NOT NULL AND board_accepted_at IS NOT NULL
                AND board_acceptance_rationale IS NOT NULL
            )
        )
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_rg_breach_events_metric_status "
        "ON rg_breach_events(metric_id, status)"
    )

    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_breach_observations (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id     UUID NOT NULL,
        metric_id           UUID NOT NULL REFERENCES rg_tolerance_metrics(id),
        measurement_id      UUID NOT NULL REFERENCES rg_measurements(id),
        breach_id           UUID NOT NULL REFERENCES rg_breach_events(id),
        reading_tier        VARCHAR(10) NOT NULL,
        value               NUMERIC(20,6) NOT NULL,
        observed_at         TIMESTAMP NOT NULL DEFAULT NOW(),
        CONSTRAINT uq_rg_breach_observation_metric_measurement UNIQUE (metric_id, measurement_id),
        CONSTRAINT ck_rg_breach_observation_tier CHECK (reading_tier IN ('amber', 'red'))
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_rg_breach_observations_breach "
        "ON rg_breach_observations(breach_id)"
    )

    # ──────────────────────────────────────────────────────────────────────
    # 1.8 Governance Audit (append-only)
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS rg_governance_audit_log (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        timestamp           TIMESTAMP NOT NULL DEFAULT NOW(),
        organization_id     UUID,
        actor_id            UUID,
        actor_role          VARCHAR(20),
        action              VARCHAR(100) NOT NULL,
        entity_type         VARCHAR(50) NOT NULL,
        entity_id           VARCHAR(100) NOT NULL,
        before_state        JSONB,
        after_state         JSONB,
        reason              TEXT
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_rg_audit_entity ON rg_governance_audit_log(entity_type, entity_id)"
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_rg_audit_timestamp ON rg_governance_audit_log(timestamp)")

    op.execute("""
    CREATE OR REPLACE FUNCTION rg_audit_log_immutable() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'rg_governance_audit_log is append-only';
    END;
    $$ LANGUAGE plpgsql
    """)
    op.execute("""
    CREATE TRIGGER rg_audit_log_no_update_delete
        BEFORE UPDATE OR DELETE ON rg_governance_audit_log
        FOR EACH ROW EXECUTE FUNCTION rg_audit_log_immutable()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS rg_audit_log_no_update_delete ON rg_governance_audit_log")
    op.execute("DROP FUNCTION IF EXISTS rg_audit_log_immutable()")

    drop_order = [
        "rg_governance_audit_log",
        "rg_breach_observations",
        "rg_breach_events",
        "rg_tolerance_metrics",
        "rg_measurements",
        "rg_measurement_series",
        "rg_evidence_requests",
        "rg_confidence_scores",
        "rg_derived_dime_scores",
        "rg_sub_control_attestations",
        "rg_control_instances",
        "rg_risk_responses",
        "rg_risks",
        "rg_sub_control_templates",
        "rg_control_templates",
    ]
    for tbl in drop_order:
        op.execute(f"DROP TABLE IF EXISTS {tbl} CASCADE")
