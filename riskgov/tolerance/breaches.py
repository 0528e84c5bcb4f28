"""
Breach Detector.

Turns a measurement on a governed series into zero or one breach event:
- one event per (metric, measurement), enforced by a storage constraint
- a repeat reading while a breach is open is recorded against that breach
  as an observation and refreshes it when it is the newest reading
- a red reading dated after an open amber breach's trigger opens a new
  red event linked to the amber one through prior_breach_id
- redelivering any reading returns the breach it was first tied to
- green and unknown readings never create or close anything
"""

import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.db.compat import utcnow
from riskgov.db.models import BreachEvent, BreachObservation, Measurement, ToleranceMetric
from riskgov.db.repositories.tolerance import breach_repo, measurement_repo, metric_repo
from riskgov.errors import ConcurrencyConflict, ValidationError
from riskgov.tolerance.classifier import ToleranceClassifier, tolerance_classifier
from riskgov.tolerance.metrics import bands_of, escalation_rules_of, trend_of
from riskgov.tolerance.schemas import (
    BandStatus,
    BreachStatus,
    BreachTier,
    Classification,
    EscalationTarget,
    MetricType,
)

logger = structlog.get_logger(__name__)


def _in_effect(metric: ToleranceMetric, as_of: date) -> bool:
    if not metric.is_active or metric.effective_from > as_of:
        return False
    return metric.effective_to is None or metric.effective_to >= as_of


class BreachDetector:
    """Idempotent breach creation for one (metric, measurement) pair."""

    def __init__(self, classifier: Optional[ToleranceClassifier] = None):
        self.classifier = classifier or tolerance_classifier

    async def classify(
        self,
        session: AsyncSession,
        metric: ToleranceMetric,
        measurement: Measurement,
    ) -> Classification:
        metric_type = MetricType(metric.metric_type)
        value = float(measurement.value)
        baseline: Optional[float] = None
        trend = trend_of(metric)

        if metric_type == MetricType.DIRECTIONAL and trend is not None:
            lookback = measurement.as_of_date - timedelta(days=trend.lookback_days)
            point = await measurement_repo.latest_on_or_before(session, measurement.series_id, lookback)
            baseline = float(point.value) if point is not None else None

        return self.classifier.classify(metric_type, bands_of(metric), value, trend, baseline)

    async def detect(
        self,
        session: AsyncSession,
        metric_id: uuid.UUID,
        measurement_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> Optional[BreachEvent]:
        """Return the breach this measurement produced (new or existing), or None."""
        metric = await metric_repo.get_or_raise(session, metric_id)
        measurement = await measurement_repo.get_or_raise(session, measurement_id)
        if metric.series_id != measurement.series_id:
            raise ValidationError(
                "Measurement does not belong to the metric's series",
                field="measurement_id",
                details={"metric_series": str(metric.series_id), "measurement_series": str(measurement.series_id)},
            )

        replay = await breach_repo.replay(session, metric.id, measurement.id)
        if replay is not None:
            logger.debug("breach_detection_replayed", breach_id=str(replay.id))
            return replay

        if not _in_effect(metric, measurement.as_of_date):
            logger.debug(
                "metric_not_in_effect",
                metric_id=str(metric.id),
                as_of=measurement.as_of_date.isoformat(),
            )
            return None

        result = await self.classify(session, metric, measurement)
        if result.status == BandStatus.UNKNOWN:
            logger.info(
                "breach_check_inconclusive",
                metric_id=str(metric.id),
                measurement_id=str(measurement.id),
                reason=result.explanation,
            )
            return None
        if not result.is_breach:
            return None

        tier = BreachTier(result.status.value)
        now = now or utcnow()
        active = await breach_repo.newest_active(session, metric.id)

        try:
            if active is not None and not await self._escalates(session, active, measurement, tier):
                return await self._absorb(session, metric, active, measurement, result, tier, now)
            return await self._insert(session, metric, measurement, result, tier, active, now)
        except ConcurrencyConflict:
            winner = await breach_repo.replay(session, metric.id, measurement.id)
            if winner is None:
                raise
            logger.info("breach_insert_race_resolved", breach_id=str(winner.id))
            return winner

    async def _escalates(
        self,
        session: AsyncSession,
        active: BreachEvent,
        measurement: Measurement,
        tier: BreachTier,
    ) -> bool:
        """Only a red reading dated after the amber trigger opens a new red event."""
        if active.tier != BreachTier.AMBER.value or tier != BreachTier.RED:
            return False
        trigger = await measurement_repo.get_or_raise(session, active.measurement_id)
        return measurement.as_of_date > trigger.as_of_date

    async def _absorb(
        self,
        session: AsyncSession,
        metric: ToleranceMetric,
        active: BreachEvent,
        measurement: Measurement,
        result: Classification,
        tier: BreachTier,
        now: datetime,
    ) -> BreachEvent:
        observation = BreachObservation(
            organization_id=metric.organization_id,
            metric_id=metric.id,
            measurement_id=measurement.id,
            breach_id=active.id,
            reading_tier=tier.value,
            value=Decimal(str(result.value)),
            observed_at=now,
        )
        try:
            async with session.begin_nested():
                session.add(observation)
        except IntegrityError as exc:
            raise ConcurrencyConflict(
                "Reading already recorded for this metric and measurement",
                details={"metric_id": str(metric.id), "measurement_id": str(measurement.id)},
            ) from exc

        last_seen = None
        if active.last_seen_measurement_id is not None:
            last_seen = await measurement_repo.get_by_id(session, active.last_seen_measurement_id)

        # last_seen_* tracks the latest-dated reading, not the latest delivered
        if last_seen is None or measurement.as_of_date > last_seen.as_of_date:
            active.last_seen_measurement_id = measurement.id
            active.last_seen_value = Decimal(str(result.value))
            active.last_seen_at = now
            await session.flush()
            logger.info(
                "breach_still_open",
                breach_id=str(active.id),
                tier=active.tier,
                reading_tier=tier.value,
                measurement_id=str(measurement.id),
            )
        else:
            logger.info(
                "breach_late_reading_recorded",
                breach_id=str(active.id),
                reading_tier=tier.value,
                measurement_id=str(measurement.id),
                as_of=measurement.as_of_date.isoformat(),
            )
        return active

    async def _insert(
        self,
        session: AsyncSession,
        metric: ToleranceMetric,
        measurement: Measurement,
        result: Classification,
        tier: BreachTier,
        prior: Optional[BreachEvent],
        now: datetime,
    ) -> BreachEvent:
        rule = escalation_rules_of(metric).for_tier(tier)
        targets = [
            EscalationTarget(
                recipient=recipient,
                tier=tier,
                sla_days=rule.sla_days,
                action_required=rule.action_required,
            ).model_dump(mode="json")
            for recipient in rule.notify
        ]

        breach = BreachEvent(
            organization_id=metric.organization_id,
            metric_id=metric.id,
            measurement_id=measurement.id,
            tier=tier.value,
            breach_value=Decimal(str(result.value)),
            threshold_value=Decimal(str(result.threshold)),
            explanation=result.explanation,
            detected_at=now,
            prior_breach_id=prior.id if prior is not None else None,
            escalated_to=targets,
            status=BreachStatus.OPEN.value,
            remediation_due_date=now.date() + timedelta(days=rule.sla_days),
            last_seen_measurement_id=measurement.id,
            last_seen_value=Decimal(str(result.value)),
            last_seen_at=now,
        )
        try:
            async with session.begin_nested():
                session.add(breach)
        except IntegrityError as exc:
            raise ConcurrencyConflict(
                "Breach already recorded for this metric and measurement",
                details={"metric_id": str(metric.id), "measurement_id": str(measurement.id)},
            ) from exc

        if prior is not None:
            logger.warning(
                "breach_escalated",
                breach_id=str(breach.id),
                prior_breach_id=str(prior.id),
                metric_id=str(metric.id),
                value=result.value,
                threshold=result.threshold,
            )
        else:
            logger.warning(
                "breach_created",
                breach_id=str(breach.id),
                metric_id=str(metric.id),
                tier=tier.value,
                value=result.value,
                threshold=result.threshold,
                escalated_to=rule.notify,
            )
        return breach


breach_detector = BreachDetector()
