"""
Assurance Service — the engine's external interface.

One instance per session. Every public method runs as a unit of work
inside a SAVEPOINT and returns an ``OperationResult``:
- success: the savepoint is released, the caller owns the commit
- GovernanceError: the savepoint is rolled back, the error is returned
- optimistic-lock or storage failure: rolled back, returned as a typed error

Nothing raised by the components escapes this boundary.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from riskgov.auth.rbac import ActorContext, Permission, require_permission
from riskgov.controls.dime import dime_service
from riskgov.controls.confidence import confidence_service
from riskgov.controls.instances import AttestationWrite, control_instance_store
from riskgov.controls.library import TemplateSpec, control_library
from riskgov.controls.schemas import (
    AttestationUpdate,
    ConfidenceResult,
    ControlInstanceCreate,
    ControlStatus,
    DimeResult,
    EvidenceRequestCreate,
    EvidenceRequestUpdate,
)
from riskgov.db.models import (
    BreachEvent,
    ControlInstance,
    ControlTemplate,
    EvidenceRequest,
    GovernanceAuditLog,
    Measurement,
    MeasurementSeries,
    Risk,
    RiskResponse,
    SubControlAttestation,
    ToleranceMetric,
)
from riskgov.db.repositories.tolerance import breach_repo
from riskgov.errors import ConcurrencyConflict, ErrorCode, GovernanceError, OperationResult
from riskgov.risks.activation import activation_gate
from riskgov.risks.schemas import ActivationDecision, RiskCreate, RiskResponseSet, RiskStatus
from riskgov.services.audit import governance_audit
from riskgov.tolerance.breaches import breach_detector
from riskgov.tolerance.lifecycle import breach_lifecycle
from riskgov.tolerance.metrics import tolerance_metric_store
from riskgov.tolerance.schemas import (
    BoardExceptionAmendment,
    BreachStatus,
    MeasurementCreate,
    RemediationUpdate,
    SeriesCreate,
    ToleranceMetricCreate,
    ToleranceMetricRevision,
    TransitionMetadata,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IngestionOutcome:
    """A stored measurement and the breaches it produced across governing metrics."""
    measurement: Measurement
    breaches: list[BreachEvent] = field(default_factory=list)
    metrics_evaluated: int = 0


class AssuranceService:
    """Typed-result façade over controls, tolerances, breaches and risks."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _run(
        self,
        operation: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> OperationResult:
        try:
            async with self.session.begin_nested():
                data = await fn(self.session, *args, **kwargs)
        except GovernanceError as exc:
            logger.info(
                "assurance_operation_rejected",
                operation=operation,
                code=exc.code.value,
                error=exc.message,
            )
            return OperationResult.failure(exc)
        except StaleDataError as exc:
            logger.warning("assurance_operation_stale", operation=operation, error=str(exc))
            return OperationResult.failure(ConcurrencyConflict(
                "Record was modified concurrently; reload and retry",
                details={"operation": operation},
            ))
        except SQLAlchemyError as exc:
            logger.error("assurance_operation_failed", operation=operation, error=str(exc))
            return OperationResult.failure(GovernanceError(
                "Storage failure",
                code=ErrorCode.INTERNAL_ERROR,
                details={"operation": operation},
            ))
        return OperationResult.success(data)

    # ── Control library ───────────────────────────────────────────────────

    async def publish_template(
        self, actor: ActorContext, spec: TemplateSpec, version: str = "1.0",
    ) -> OperationResult[ControlTemplate]:
        async def _publish(session: AsyncSession) -> ControlTemplate:
            require_permission(actor, Permission.TEMPLATES_PUBLISH)
            return await control_library.publish(session, spec, version)

        return await self._run("publish_template", _publish)

    async def seed_library(self) -> OperationResult[int]:
        return await self._run("seed_library", control_library.seed)

    async def list_templates(self, active_only: bool = True) -> OperationResult[Sequence[ControlTemplate]]:
        return await self._run("list_templates", control_library.list_templates, active_only)

    # ── Control instances ─────────────────────────────────────────────────

    async def create_control_instance(
        self, actor: ActorContext, data: ControlInstanceCreate,
    ) -> OperationResult[ControlInstance]:
        return await self._run("create_control_instance", control_instance_store.create, actor, data)

    async def get_control_instance(self, control_instance_id: uuid.UUID) -> OperationResult[ControlInstance]:
        return await self._run("get_control_instance", control_instance_store.get, control_instance_id)

    async def list_attestations(
        self, control_instance_id: uuid.UUID,
    ) -> OperationResult[Sequence[SubControlAttestation]]:
        return await self._run("list_attestations", control_instance_store.list_attestations, control_instance_id)

    async def set_control_status(
        self, actor: ActorContext, control_instance_id: uuid.UUID, status: ControlStatus,
    ) -> OperationResult[ControlInstance]:
        return await self._run(
            "set_control_status", control_instance_store.set_status, actor, control_instance_id, status,
        )

    async def attest(
        self, actor: ActorContext, attestation_id: uuid.UUID, update: AttestationUpdate,
    ) -> OperationResult[AttestationWrite]:
        return await self._run("attest", control_instance_store.attest, actor, attestation_id, update)

    async def create_evidence_request(
        self, actor: ActorContext, data: EvidenceRequestCreate,
    ) -> OperationResult[EvidenceRequest]:
        return await self._run(
            "create_evidence_request", control_instance_store.create_evidence_request, actor, data,
        )

    async def update_evidence_request(
        self, actor: ActorContext, request_id: uuid.UUID, update: EvidenceRequestUpdate,
    ) -> OperationResult[EvidenceRequest]:
        return await self._run(
            "update_evidence_request",
            control_instance_store.update_evidence_request,
            actor, request_id, update,
        )

    async def compute_dime(self, control_instance_id: uuid.UUID) -> OperationResult[DimeResult]:
        return await self._run("compute_dime", dime_service.compute, control_instance_id)

    async def compute_confidence(
        self, control_instance_id: uuid.UUID, now: Optional[datetime] = None,
    ) -> OperationResult[ConfidenceResult]:
        return await self._run("compute_confidence", confidence_service.compute, control_instance_id, now=now)

    # ── Tolerances ────────────────────────────────────────────────────────

    async def create_series(
        self, actor: ActorContext, data: SeriesCreate,
    ) -> OperationResult[MeasurementSeries]:
        return await self._run("create_series", tolerance_metric_store.create_series, actor, data)

    async def create_metric(
        self, actor: ActorContext, data: ToleranceMetricCreate,
    ) -> OperationResult[ToleranceMetric]:
        return await self._run("create_metric", tolerance_metric_store.create_metric, actor, data)

    async def activate_metric(
        self, actor: ActorContext, metric_id: uuid.UUID,
    ) -> OperationResult[ToleranceMetric]:
        return await self._run("activate_metric", tolerance_metric_store.activate_metric, actor, metric_id)

    async def deactivate_metric(
        self, actor: ActorContext, metric_id: uuid.UUID,
    ) -> OperationResult[ToleranceMetric]:
        return await self._run("deactivate_metric", tolerance_metric_store.deactivate_metric, actor, metric_id)

    async def supersede_metric(
        self, actor: ActorContext, metric_id: uuid.UUID, revision: ToleranceMetricRevision,
    ) -> OperationResult[ToleranceMetric]:
        return await self._run(
            "supersede_metric", tolerance_metric_store.supersede_metric, actor, metric_id, revision,
        )

    async def get_metric(self, metric_id: uuid.UUID) -> OperationResult[ToleranceMetric]:
        return await self._run("get_metric", tolerance_metric_store.get_metric, metric_id)

    async def has_recent_data(
        self, metric_id: uuid.UUID, window_days: Optional[int] = None, today: Optional[date] = None,
    ) -> OperationResult[bool]:
        return await self._run(
            "has_recent_data", tolerance_metric_store.has_recent_data, metric_id, window_days, today,
        )

    async def ingest_measurement(
        self, actor: ActorContext, data: MeasurementCreate, now: Optional[datetime] = None,
    ) -> OperationResult[IngestionOutcome]:
        """Record a measurement, then run detection for every metric governing its series."""

        async def _ingest(session: AsyncSession) -> IngestionOutcome:
            measurement = await tolerance_metric_store.record_measurement(session, actor, data)
            metrics = await tolerance_metric_store.active_for_series(
                session, measurement.series_id, measurement.as_of_date,
            )
            breaches = []
            for metric in metrics:
                breach = await breach_detector.detect(session, metric.id, measurement.id, now=now)
                if breach is not None:
                    breaches.append(breach)
            logger.info(
                "measurement_ingested",
                measurement_id=str(measurement.id),
                metrics_evaluated=len(metrics),
                breaches=len(breaches),
            )
            return IngestionOutcome(measurement=measurement, breaches=breaches, metrics_evaluated=len(metrics))

        return await self._run("ingest_measurement", _ingest)

    # ── Breaches ──────────────────────────────────────────────────────────

    async def detect_breach(
        self, metric_id: uuid.UUID, measurement_id: uuid.UUID, now: Optional[datetime] = None,
    ) -> OperationResult[Optional[BreachEvent]]:
        return await self._run("detect_breach", breach_detector.detect, metric_id, measurement_id, now=now)

    async def get_breach(self, breach_id: uuid.UUID) -> OperationResult[BreachEvent]:
        return await self._run("get_breach", breach_repo.get_or_raise, breach_id)

    async def list_breaches(self, metric_id: uuid.UUID) -> OperationResult[Sequence[BreachEvent]]:
        return await self._run(
            "list_breaches", breach_repo.list, limit=500, order_by="detected_at", metric_id=metric_id,
        )

    async def transition_breach(
        self,
        breach_id: uuid.UUID,
        new_status: BreachStatus,
        actor: ActorContext,
        metadata: Optional[TransitionMetadata] = None,
    ) -> OperationResult[BreachEvent]:
        return await self._run(
            "transition_breach", breach_lifecycle.transition, breach_id, new_status, actor, metadata,
        )

    async def update_remediation(
        self, breach_id: uuid.UUID, actor: ActorContext, update: RemediationUpdate,
    ) -> OperationResult[BreachEvent]:
        return await self._run(
            "update_remediation", breach_lifecycle.update_remediation, breach_id, actor, update,
        )

    async def amend_board_exception(
        self, breach_id: uuid.UUID, actor: ActorContext, amendment: BoardExceptionAmendment,
    ) -> OperationResult[BreachEvent]:
        return await self._run(
            "amend_board_exception", breach_lifecycle.amend_board_exception, breach_id, actor, amendment,
        )

    # ── Risks ─────────────────────────────────────────────────────────────

    async def create_risk(self, actor: ActorContext, data: RiskCreate) -> OperationResult[Risk]:
        return await self._run("create_risk", activation_gate.create_risk, actor, data)

    async def set_risk_response(
        self, actor: ActorContext, risk_id: uuid.UUID, data: RiskResponseSet,
    ) -> OperationResult[RiskResponse]:
        return await self._run("set_risk_response", activation_gate.set_response, actor, risk_id, data)

    async def can_activate(self, risk_id: uuid.UUID) -> OperationResult[ActivationDecision]:
        return await self._run("can_activate", activation_gate.can_activate, risk_id)

    async def change_risk_status(
        self,
        actor: ActorContext,
        risk_id: uuid.UUID,
        new_status: RiskStatus,
        reason: Optional[str] = None,
    ) -> OperationResult[Risk]:
        return await self._run(
            "change_risk_status", activation_gate.change_risk_status, actor, risk_id, new_status, reason,
        )

    # ── Audit ─────────────────────────────────────────────────────────────

    async def audit_history(
        self, actor: ActorContext, entity_type: str, entity_id: uuid.UUID,
    ) -> OperationResult[Sequence[GovernanceAuditLog]]:
        async def _history(session: AsyncSession) -> Sequence[GovernanceAuditLog]:
            require_permission(actor, Permission.AUDIT_READ)
            entries = await governance_audit.history(session, entity_type, entity_id)
            return [e for e in entries if e.organization_id == actor.organization_id]

        return await self._run("audit_history", _history)
