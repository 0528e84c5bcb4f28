"""
Tolerance Metric Store.

Board-approved limits per measurable outcome, linked to the measurement
series they govern. Metrics are versioned: a revision creates a new row
and closes the old one's effective window rather than editing limits in
place. Measurements are unique per (series, date).
"""

import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Sequence

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.auth.rbac import ActorContext, Permission, require_permission, require_same_tenant
from riskgov.config import settings
from riskgov.db.compat import utcnow
from riskgov.db.models import Measurement, MeasurementSeries, ToleranceMetric
from riskgov.db.repositories.tolerance import measurement_repo, metric_repo, series_repo
from riskgov.errors import InvariantViolation, ValidationError
from riskgov.tolerance.schemas import (
    Bands,
    EscalationRules,
    MeasurementCreate,
    MetricType,
    SeriesCreate,
    ToleranceMetricCreate,
    ToleranceMetricRevision,
    TrendConfig,
)

logger = structlog.get_logger(__name__)

BAND_FIELDS = ("green_min", "green_max", "amber_min", "amber_max", "red_min", "red_max")


# ── Row ↔ schema helpers ──────────────────────────────────────────────────


def _num(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _dec(value: Optional[float]) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def bands_of(metric: ToleranceMetric) -> Bands:
    return Bands(**{name: _num(getattr(metric, name)) for name in BAND_FIELDS})


def trend_of(metric: ToleranceMetric) -> Optional[TrendConfig]:
    return TrendConfig.model_validate(metric.trend_config) if metric.trend_config else None


def escalation_rules_of(metric: ToleranceMetric) -> EscalationRules:
    return EscalationRules.model_validate(metric.escalation_rules or {})


# ── Validation ────────────────────────────────────────────────────────────


def _ordered(name_low: str, low: Optional[float], name_high: str, high: Optional[float]) -> None:
    if low is not None and high is not None and low > high:
        raise ValidationError(
            f"{name_low} ({low:g}) must not exceed {name_high} ({high:g})",
            field=name_low,
        )


def validate_metric_definition(
    metric_type: MetricType,
    bands: Bands,
    trend_config: Optional[TrendConfig],
) -> None:
    """Check that the limits a metric type relies on exist and are ordered."""
    if metric_type == MetricType.DIRECTIONAL:
        if trend_config is None:
            raise InvariantViolation(
                "A directional metric must carry trend configuration",
                details={"metric_type": metric_type.value},
            )
        return

    if metric_type == MetricType.MAXIMUM:
        if bands.amber_max is None and bands.red_max is None:
            raise ValidationError("A maximum metric needs amber_max or red_max", field="bands")
        _ordered("green_max", bands.green_max, "amber_max", bands.amber_max)
        _ordered("amber_max", bands.amber_max, "red_max", bands.red_max)
    elif metric_type == MetricType.MINIMUM:
        if bands.amber_min is None and bands.red_min is None:
            raise ValidationError("A minimum metric needs amber_min or red_min", field="bands")
        _ordered("red_min", bands.red_min, "amber_min", bands.amber_min)
        _ordered("amber_min", bands.amber_min, "green_min", bands.green_min)
    else:
        if all(getattr(bands, name) is None for name in ("amber_min", "amber_max", "red_min", "red_max")):
            raise ValidationError("A range metric needs at least one amber or red limit", field="bands")
        _ordered("red_min", bands.red_min, "amber_min", bands.amber_min)
        _ordered("amber_min", bands.amber_min, "amber_max", bands.amber_max)
        _ordered("amber_max", bands.amber_max, "red_max", bands.red_max)
        _ordered("red_min", bands.red_min, "red_max", bands.red_max)


def _validate_window(effective_from: date, effective_to: Optional[date]) -> None:
    if effective_to is not None and effective_to < effective_from:
        raise ValidationError("effective_to precedes effective_from", field="effective_to")


class ToleranceMetricStore:
    """Series, measurements and versioned tolerance metrics."""

    # ── Series & measurements ─────────────────────────────────────────────

    async def create_series(
        self, session: AsyncSession, actor: ActorContext, data: SeriesCreate,
    ) -> MeasurementSeries:
        require_permission(actor, Permission.MEASUREMENTS_INGEST)
        series = await series_repo.create(session, data, organization_id=actor.organization_id)
        logger.info("measurement_series_created", series_id=str(series.id), name=series.name)
        return series

    async def record_measurement(
        self, session: AsyncSession, actor: ActorContext, data: MeasurementCreate,
    ) -> Measurement:
        """Store a (series, date, value) point. Re-delivery of the same point is a no-op."""
        require_permission(actor, Permission.MEASUREMENTS_INGEST)
        series = await series_repo.get_or_raise(session, data.series_id)
        require_same_tenant(actor, series.organization_id)

        existing = await measurement_repo.for_date(session, data.series_id, data.as_of_date)
        if existing is None:
            try:
                async with session.begin_nested():
                    existing = Measurement(
                        series_id=data.series_id,
                        as_of_date=data.as_of_date,
                        value=_dec(data.value),
                    )
                    session.add(existing)
            except IntegrityError:
                existing = await measurement_repo.for_date(session, data.series_id, data.as_of_date)
                if existing is None:
                    raise
            else:
                logger.info(
                    "measurement_recorded",
                    series_id=str(data.series_id),
                    as_of=data.as_of_date.isoformat(),
                    value=data.value,
                )
                return existing

        if float(existing.value) != data.value:
            raise ValidationError(
                "A different value is already recorded for this series and date",
                field="value",
                details={
                    "series_id": str(data.series_id),
                    "as_of_date": data.as_of_date.isoformat(),
                    "recorded": float(existing.value),
                },
            )
        logger.debug("measurement_duplicate_ignored", measurement_id=str(existing.id))
        return existing

    async def has_recent_data(
        self,
        session: AsyncSession,
        metric_id: uuid.UUID,
        window_days: Optional[int] = None,
        today: Optional[date] = None,
    ) -> bool:
        """True when the metric's series has a point within the last ``window_days``."""
        metric = await metric_repo.get_or_raise(session, metric_id)
        if metric.series_id is None:
            return False
        today = today or utcnow().date()
        window = window_days if window_days is not None else settings.recent_data_window_days
        latest = await measurement_repo.latest_on_or_before(session, metric.series_id, today)
        return latest is not None and (today - latest.as_of_date).days <= window

    # ── Metrics ───────────────────────────────────────────────────────────

    async def create_metric(
        self, session: AsyncSession, actor: ActorContext, data: ToleranceMetricCreate,
    ) -> ToleranceMetric:
        require_permission(actor, Permission.TOLERANCES_MANAGE)
        validate_metric_definition(data.metric_type, data.bands, data.trend_config)
        _validate_window(data.effective_from, data.effective_to)
        if data.series_id is not None:
            series = await series_repo.get_or_raise(session, data.series_id)
            require_same_tenant(actor, series.organization_id)

        metric = ToleranceMetric(
            organization_id=actor.organization_id,
            appetite_category=data.appetite_category,
            metric_name=data.metric_name,
            description=data.description,
            metric_type=data.metric_type.value,
            unit=data.unit,
            materiality=data.materiality.value,
            series_id=data.series_id,
            trend_config=data.trend_config.model_dump(mode="json") if data.trend_config else None,
            escalation_rules=data.escalation_rules.model_dump(mode="json"),
            version_number=1,
            effective_from=data.effective_from,
            effective_to=data.effective_to,
            is_active=False,
            created_by=actor.user_id,
            **{name: _dec(getattr(data.bands, name)) for name in BAND_FIELDS},
        )
        session.add(metric)
        await session.flush()

        logger.info(
            "tolerance_metric_created",
            metric_id=str(metric.id),
            metric_type=metric.metric_type,
            category=metric.appetite_category,
        )
        return metric

    async def activate_metric(
        self, session: AsyncSession, actor: ActorContext, metric_id: uuid.UUID,
    ) -> ToleranceMetric:
        require_permission(actor, Permission.TOLERANCES_MANAGE)
        metric = await metric_repo.get_or_raise(session, metric_id)
        require_same_tenant(actor, metric.organization_id)

        if metric.superseded_by_id is not None:
            raise InvariantViolation(
                "A superseded metric version cannot be reactivated",
                details={"metric_id": str(metric.id), "superseded_by": str(metric.superseded_by_id)},
            )
        if metric.series_id is None:
            raise InvariantViolation(
                "An active metric must reference a measurement series",
                details={"metric_id": str(metric.id)},
            )
        validate_metric_definition(MetricType(metric.metric_type), bands_of(metric), trend_of(metric))

        if not metric.is_active:
            metric.is_active = True
            metric.activated_by = actor.user_id
            metric.activated_at = utcnow()
            await session.flush()
            logger.info("tolerance_metric_activated", metric_id=str(metric.id))
        return metric

    async def deactivate_metric(
        self, session: AsyncSession, actor: ActorContext, metric_id: uuid.UUID,
    ) -> ToleranceMetric:
        require_permission(actor, Permission.TOLERANCES_MANAGE)
        metric = await metric_repo.get_or_raise(session, metric_id)
        require_same_tenant(actor, metric.organization_id)
        if metric.is_active:
            metric.is_active = False
            await session.flush()
            logger.info("tolerance_metric_deactivated", metric_id=str(metric.id))
        return metric

    async def supersede_metric(
        self,
        session: AsyncSession,
        actor: ActorContext,
        metric_id: uuid.UUID,
        revision: ToleranceMetricRevision,
    ) -> ToleranceMetric:
        """Publish a new version of a metric; the old one stops at the day before."""
        require_permission(actor, Permission.TOLERANCES_MANAGE)
        old = await metric_repo.get_or_raise(session, metric_id)
        require_same_tenant(actor, old.organization_id)

        if old.superseded_by_id is not None:
            raise InvariantViolation(
                "Only the latest metric version can be revised",
                details={"metric_id": str(old.id), "superseded_by": str(old.superseded_by_id)},
            )
        if revision.effective_from <= old.effective_from:
            raise ValidationError(
                "A revision must take effect after the current version",
                field="effective_from",
            )
        _validate_window(revision.effective_from, old.effective_to)

        metric_type = MetricType(old.metric_type)
        bands = revision.bands or bands_of(old)
        trend = revision.trend_config or trend_of(old)
        rules = revision.escalation_rules or escalation_rules_of(old)
        validate_metric_definition(metric_type, bands, trend)

        new = ToleranceMetric(
            organization_id=old.organization_id,
            appetite_category=old.appetite_category,
            metric_name=old.metric_name,
            description=revision.description if revision.description is not None else old.description,
            metric_type=old.metric_type,
            unit=old.unit,
            materiality=old.materiality,
            series_id=revision.series_id or old.series_id,
            trend_config=trend.model_dump(mode="json") if trend else None,
            escalation_rules=rules.model_dump(mode="json"),
            version_number=old.version_number + 1,
            effective_from=revision.effective_from,
            effective_to=old.effective_to,
            is_active=old.is_active,
            activated_by=actor.user_id if old.is_active else None,
            activated_at=utcnow() if old.is_active else None,
            created_by=actor.user_id,
            **{name: _dec(getattr(bands, name)) for name in BAND_FIELDS},
        )
        session.add(new)
        await session.flush()

        old.effective_to = revision.effective_from - timedelta(days=1)
        old.is_active = False
        old.superseded_by_id = new.id
        await session.flush()

        logger.info(
            "tolerance_metric_superseded",
            old_metric_id=str(old.id),
            new_metric_id=str(new.id),
            version=new.version_number,
        )
        return new

    async def get_metric(self, session: AsyncSession, metric_id: uuid.UUID) -> ToleranceMetric:
        return await metric_repo.get_or_raise(session, metric_id)

    async def active_for_series(
        self, session: AsyncSession, series_id: uuid.UUID, as_of: date,
    ) -> Sequence[ToleranceMetric]:
        return await metric_repo.active_for_series(session, series_id, as_of)


tolerance_metric_store = ToleranceMetricStore()
