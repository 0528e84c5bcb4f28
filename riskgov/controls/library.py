"""
Control Template Library.

An immutable catalogue of control archetypes, each with its weighted
sub-control checklist. Templates are never edited after publication;
publishing the same code again requires a new version string, and the
previous version is withdrawn from new instantiation.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from riskgov.controls.schemas import ControlObjective, Criticality, Dimension
from riskgov.db.models import ControlTemplate, SubControlTemplate
from riskgov.errors import InvariantViolation, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubControlSpec:
    code: str
    dimension: Dimension
    criticality: Criticality
    prompt_text: str


@dataclass(frozen=True)
class TemplateSpec:
    code: str
    name: str
    category: str
    objective_default: ControlObjective
    purpose: str
    sub_controls: tuple[SubControlSpec, ...]


# Every published archetype uses this checklist shape.
STANDARD_LAYOUT: tuple[tuple[str, Dimension, Criticality], ...] = (
    ("D1", Dimension.DESIGN, Criticality.CRITICAL),
    ("D2", Dimension.DESIGN, Criticality.IMPORTANT),
    ("I1", Dimension.IMPLEMENTATION, Criticality.CRITICAL),
    ("I2", Dimension.IMPLEMENTATION, Criticality.IMPORTANT),
    ("I3", Dimension.IMPLEMENTATION, Criticality.IMPORTANT),
    ("M1", Dimension.MONITORING, Criticality.CRITICAL),
    ("M2", Dimension.MONITORING, Criticality.IMPORTANT),
    ("M3", Dimension.MONITORING, Criticality.OPTIONAL),
    ("E1", Dimension.EVALUATION, Criticality.CRITICAL),
    ("E2", Dimension.EVALUATION, Criticality.IMPORTANT),
)


def _standard(prompts: Sequence[str]) -> tuple[SubControlSpec, ...]:
    return tuple(
        SubControlSpec(code=code, dimension=dim, criticality=crit, prompt_text=prompt)
        for (code, dim, crit), prompt in zip(STANDARD_LAYOUT, prompts, strict=True)
    )


SEED_CATALOGUE: tuple[TemplateSpec, ...] = (
    TemplateSpec(
        code="PCI-01",
        name="Activity Prohibition / Exclusion Rule",
        category="Exposure & Activity Constraints",
        objective_default=ControlObjective.LIKELIHOOD,
        purpose="Prevent risk by disallowing a defined activity or exposure.",
        sub_controls=_standard((
            "Prohibition aligns to the risk driver(s) and response intent",
            "Scope, boundaries, and permitted exceptions are explicitly defined",
            "Prohibition is enforced (system/process prevents execution)",
            "Exception approval workflow is configured and restricted",
            "Training/communication completed for impacted users",
            "Violations are detected and logged (alerts/reports)",
            "Exceptions are periodically reviewed and validated",
            "Periodic relevance review occurs (context/risk changes)",
            "Violation trend is tracked and drives corrective action",
            "Evidence-on-demand readiness confirmed",
        )),
    ),
    TemplateSpec(
        code="PCI-02",
        name="Exposure / Concentration Constraint",
        category="Exposure & Activity Constraints",
        objective_default=ControlObjective.BOTH,
        purpose="Cap exposure to reduce likelihood and/or impact of adverse outcomes.",
        sub_controls=_standard((
            "Limit metric and method are fit-for-purpose and measurable",
            "Boundaries and aggregation rules are explicitly defined",
            "Limits are enforced in workflow/system (not advisory)",
            "Breach actions are defined (block/escalate/remediate)",
            "Data inputs for measurement are available and reliable",
            "Exposure and headroom are monitored at required frequency",
            "Breaches are tracked to closure with escalation where needed",
            "Limit changes are governed (approval and audit trail)",
            "Breach frequency/trend is tracked and drives action",
            "Evidence-on-demand readiness confirmed",
        )),
    ),
    TemplateSpec(
        code="PCI-03",
        name="Role-Based Access Control",
        category="Authority & Access Management",
        objective_default=ControlObjective.LIKELIHOOD,
        purpose="Restrict actions to authorized roles to prevent unauthorized or erroneous activity.",
        sub_controls=_standard((
            "Least-privilege role design exists for in-scope actions",
            "Access request/approval criteria and responsibilities are defined",
            "Access controls are technically enforced",
            "Joiner-Mover-Leaver process exists and is applied",
            "Elevated permissions require stronger constraints",
            "Periodic access reviews are performed and documented",
            "Access changes are logged and reviewed",
            "Role conflict (segregation) checks are performed",
            "Unauthorized access events are tracked and acted upon",
            "Evidence-on-demand readiness confirmed",
        )),
    ),
    TemplateSpec(
        code="PCI-04",
        name="Privileged Access Control",
        category="Authority & Access Management",
        objective_default=ControlObjective.LIKELIHOOD,
        purpose="Extra controls for admin/superuser capabilities that can cause outsized harm.",
        sub_controls=_standard((
            "Privileged activities are defined and minimized to necessity",
            "Approval criteria for privileged access are defined",
            "Privileged access is controlled and enforced",
            "Time-bound access / session controls are implemented",
            "Emergency (break-glass) access is governed and traceable",
            "Privileged activity is logged and monitored",
            "Periodic review of privileged accounts is performed",
            "Independent review of privileged activity logs occurs",
            "Privileged misuse incidents are tracked and reduced",
            "Evidence-on-demand readiness confirmed",
        )),
    ),
    TemplateSpec(
        code="PCI-05",
        name="Maker-Checker Approval",
        category="Segregation & Dual Control",
        objective_default=ControlObjective.LIKELIHOOD,
        purpose="Independent review before execution to reduce error and fraud.",
        sub_controls=_standard((
            "Maker/checker independence rules prevent self-approval",
            "Approval criteria and required checks are explicitly defined",
            "Workflow enforces separation of initiation and approval",
            "Approver eligibility and delegation rules are controlled",
            "Overrides are restricted, justified and logged",
            "Approval activity is monitored for anomalies",
            "Override frequency is reviewed and escalated when needed",
            "Sampling review of approvals is performed",
            "Post-approval leakage is tracked and reduced",
            "Evidence-on-demand readiness confirmed",
        )),
    ),
)


def validate_template_spec(spec: TemplateSpec) -> None:
    """Reject malformed checklists before anything is written."""
    if not spec.sub_controls:
        raise ValidationError("Template must define at least one sub-control", field="sub_controls")
    codes = [sc.code for sc in spec.sub_controls]
    if len(codes) != len(set(codes)):
        raise ValidationError(
            "Sub-control codes must be unique within a template",
            field="sub_controls",
            details={"codes": codes},
        )
    for sc in spec.sub_controls:
        if not sc.prompt_text.strip():
            raise ValidationError(f"Sub-control {sc.code} has no prompt text", field="prompt_text")


class ControlLibrary:
    """Publishes and serves control templates."""

    async def publish(
        self,
        session: AsyncSession,
        spec: TemplateSpec,
        version: str = "1.0",
    ) -> ControlTemplate:
        """Publish a new template version. Existing versions are never modified."""
        validate_template_spec(spec)

        existing = await session.execute(
            select(ControlTemplate).where(
                ControlTemplate.code == spec.code,
                ControlTemplate.version == version,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise InvariantViolation(
                f"Template {spec.code} version {version} is already published",
                details={"code": spec.code, "version": version},
            )

        # Earlier versions stay readable for frozen instances but are withdrawn.
        previous = await session.execute(
            select(ControlTemplate).where(
                ControlTemplate.code == spec.code,
                ControlTemplate.is_active.is_(True),
            )
        )
        for old in previous.scalars().all():
            old.is_active = False

        template = ControlTemplate(
            code=spec.code,
            name=spec.name,
            category=spec.category,
            objective_default=spec.objective_default.value,
            purpose=spec.purpose,
            version=version,
            is_active=True,
        )
        template.sub_controls = [
            SubControlTemplate(
                code=sc.code,
                dimension=sc.dimension.value,
                criticality=sc.criticality.value,
                prompt_text=sc.prompt_text,
                version=version,
                sort_order=idx,
            )
            for idx, sc in enumerate(spec.sub_controls)
        ]
        session.add(template)
        await session.flush()

        logger.info(
            "control_template_published",
            code=spec.code,
            version=version,
            sub_controls=len(spec.sub_controls),
        )
        return template

    async def seed(self, session: AsyncSession) -> int:
        """Publish any catalogue template not yet present. Returns count published."""
        published = 0
        for spec in SEED_CATALOGUE:
            result = await session.execute(
                select(ControlTemplate.id).where(ControlTemplate.code == spec.code).limit(1)
            )
            if result.scalar_one_or_none() is None:
                await self.publish(session, spec)
                published += 1
        if published:
            logger.info("control_library_seeded", published=published)
        return published

    async def get_template(
        self,
        session: AsyncSession,
        code: str,
        version: Optional[str] = None,
    ) -> ControlTemplate:
        """Fetch a template with its sub-controls; latest active when no version given."""
        stmt = (
            select(ControlTemplate)
            .options(selectinload(ControlTemplate.sub_controls))
            .where(ControlTemplate.code == code)
        )
        if version is None:
            stmt = stmt.where(ControlTemplate.is_active.is_(True))
        else:
            stmt = stmt.where(ControlTemplate.version == version)
        result = await session.execute(stmt)
        template = result.scalar_one_or_none()
        if template is None:
            raise NotFoundError("ControlTemplate", f"{code}@{version or 'latest'}")
        return template

    async def get_by_id(self, session: AsyncSession, template_id: uuid.UUID) -> ControlTemplate:
        result = await session.execute(
            select(ControlTemplate)
            .options(selectinload(ControlTemplate.sub_controls))
            .where(ControlTemplate.id == template_id)
        )
        template = result.scalar_one_or_none()
        if template is None:
            raise NotFoundError("ControlTemplate", template_id)
        return template

    async def list_templates(
        self,
        session: AsyncSession,
        active_only: bool = True,
    ) -> Sequence[ControlTemplate]:
        stmt = select(ControlTemplate).options(selectinload(ControlTemplate.sub_controls))
        if active_only:
            stmt = stmt.where(ControlTemplate.is_active.is_(True))
        result = await session.execute(stmt.order_by(ControlTemplate.code, ControlTemplate.version))
        return result.scalars().all()


control_library = ControlLibrary()
