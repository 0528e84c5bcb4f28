"""
Tolerance Metric Store Tests.

Covers:
- Metric definition validation per metric type
- Activation rules (governance tier, series required, superseded versions)
- Versioned revisions
- Measurement idempotency per (series, date)
- Recent-data check
"""

import uuid
from datetime import date

import pytest

from riskgov.errors import InvariantViolation, NotFoundError, PermissionDenied, ValidationError
from riskgov.tolerance.metrics import tolerance_metric_store, validate_metric_definition
from riskgov.tolerance.schemas import (
    Bands,
    MeasurementCreate,
    MetricType,
    SeriesCreate,
    ToleranceMetricCreate,
    ToleranceMetricRevision,
    TrendConfig,
    TrendDirection,
)


class TestMetricValidation:
    def test_maximum_needs_upper_limit(self):
        with pytest.raises(ValidationError):
            validate_metric_definition(MetricType.MAXIMUM, Bands(amber_min=5), None)

    def test_maximum_limits_must_ascend(self):
        with pytest.raises(ValidationError) as exc:
            validate_metric_definition(MetricType.MAXIMUM, Bands(amber_max=30, red_max=20), None)
        assert exc.value.field == "amber_max"

    def test_minimum_limits_must_descend(self):
        with pytest.raises(ValidationError):
            validate_metric_definition(MetricType.MINIMUM, Bands(amber_min=20, red_min=40), None)

    def test_range_limits_must_nest(self):
        with pytest.raises(ValidationError):
            validate_metric_definition(MetricType.RANGE, Bands(amber_min=60, amber_max=40), None)
        validate_metric_definition(MetricType.RANGE, Bands(red_min=0, amber_min=10, amber_max=90, red_max=100), None)

    def test_directional_needs_trend(self):
        with pytest.raises(InvariantViolation):
            validate_metric_definition(MetricType.DIRECTIONAL, Bands(), None)
        validate_metric_definition(
            MetricType.DIRECTIONAL,
            Bands(),
            TrendConfig(lookback_days=7, allowed_change_pct=5, trend=TrendDirection.DECREASING_IS_BAD),
        )


# ── Definition & activation ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_metric_created_inactive(make_metric, cro, org_id):
    metric = await make_metric(activate=False)
    assert metric.is_active is False
    assert metric.version_number == 1
    assert metric.organization_id == org_id
    assert metric.created_by == cro.user_id
    assert metric.escalation_rules["amber"]["sla_days"] == 30
    assert metric.escalation_rules["red"]["sla_days"] == 7


@pytest.mark.asyncio
async def test_only_governance_defines_metrics(db, manager, series):
    with pytest.raises(PermissionDenied):
        await tolerance_metric_store.create_metric(
            db, manager,
            ToleranceMetricCreate(
                appetite_category="Liquidity",
                metric_name="Cash buffer days",
                metric_type=MetricType.MINIMUM,
                bands=Bands(amber_min=30, red_min=15),
                series_id=series.id,
                effective_from=date(2026, 1, 1),
            ),
        )


@pytest.mark.asyncio
async def test_effective_window_must_be_ordered(db, cro, series):
    with pytest.raises(ValidationError):
        await tolerance_metric_store.create_metric(
            db, cro,
            ToleranceMetricCreate(
                appetite_category="Liquidity",
                metric_name="Cash buffer days",
                metric_type=MetricType.MINIMUM,
                bands=Bands(amber_min=30, red_min=15),
                series_id=series.id,
                effective_from=date(2026, 6, 1),
                effective_to=date(2026, 1, 1),
            ),
        )


@pytest.mark.asyncio
async def test_activation_records_actor(db, make_metric, cro):
    metric = await make_metric()
    assert metric.is_active is True
    assert metric.activated_by == cro.user_id
    assert metric.activated_at is not None


@pytest.mark.asyncio
async def test_activation_requires_series(db, cro):
    metric = await tolerance_metric_store.create_metric(
        db, cro,
        ToleranceMetricCreate(
            appetite_category="Conduct",
            metric_name="Complaints per 10k customers",
            metric_type=MetricType.MAXIMUM,
            bands=Bands(amber_max=5, red_max=8),
            effective_from=date(2026, 1, 1),
        ),
    )
    with pytest.raises(InvariantViolation):
        await tolerance_metric_store.activate_metric(db, cro, metric.id)


@pytest.mark.asyncio
async def test_deactivate_and_other_tenant(db, make_metric, cro, outsider):
    metric = await make_metric()
    with pytest.raises(PermissionDenied):
        await tolerance_metric_store.deactivate_metric(db, outsider, metric.id)
    metric = await tolerance_metric_store.deactivate_metric(db, cro, metric.id)
    assert metric.is_active is False


@pytest.mark.asyncio
async def test_unknown_metric_not_found(db):
    with pytest.raises(NotFoundError):
        await tolerance_metric_store.get_metric(db, uuid.uuid4())


# ── Revisions ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_revision_supersedes_previous_version(db, make_metric, cro):
    old = await make_metric()
    new = await tolerance_metric_store.supersede_metric(
        db, cro, old.id,
        ToleranceMetricRevision(effective_from=date(2026, 7, 1), bands=Bands(amber_max=12, red_max=25)),
    )

    assert new.version_number == 2
    assert new.is_active is True
    assert float(new.amber_max) == 12.0
    assert new.series_id == old.series_id
    assert old.is_active is False
    assert old.effective_to == date(2026, 6, 30)
    assert old.superseded_by_id == new.id

    with pytest.raises(InvariantViolation):
        await tolerance_metric_store.supersede_metric(
            db, cro, old.id, ToleranceMetricRevision(effective_from=date(2026, 9, 1)),
        )
    with pytest.raises(InvariantViolation):
        await tolerance_metric_store.activate_metric(db, cro, old.id)


@pytest.mark.asyncio
async def test_revision_must_start_later(db, make_metric, cro):
    old = await make_metric()
    with pytest.raises(ValidationError):
        await tolerance_metric_store.supersede_metric(
            db, cro, old.id, ToleranceMetricRevision(effective_from=old.effective_from),
        )


@pytest.mark.asyncio
async def test_active_for_series_respects_effective_window(db, make_metric, cro, series):
    old = await make_metric()
    new = await tolerance_metric_store.supersede_metric(
        db, cro, old.id, ToleranceMetricRevision(effective_from=date(2026, 7, 1)),
    )
    march = await tolerance_metric_store.active_for_series(db, series.id, date(2026, 3, 1))
    august = await tolerance_metric_store.active_for_series(db, series.id, date(2026, 8, 1))
    assert march == []
    assert [m.id for m in august] == [new.id]


# ── Measurements ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_redelivered_measurement_is_noop(record):
    first = await record(date(2026, 3, 1), 9.5)
    again = await record(date(2026, 3, 1), 9.5)
    assert again.id == first.id


@pytest.mark.asyncio
async def test_conflicting_measurement_rejected(record):
    await record(date(2026, 3, 1), 9.5)
    with pytest.raises(ValidationError) as exc:
        await record(date(2026, 3, 1), 11.0)
    assert exc.value.details["recorded"] == 9.5


@pytest.mark.asyncio
async def test_measurement_on_other_tenant_series(db, series, outsider):
    with pytest.raises(PermissionDenied):
        await tolerance_metric_store.record_measurement(
            db, outsider, MeasurementCreate(series_id=series.id, as_of_date=date(2026, 3, 1), value=1),
        )


@pytest.mark.asyncio
async def test_viewer_cannot_create_series(db, viewer):
    with pytest.raises(PermissionDenied):
        await tolerance_metric_store.create_series(db, viewer, SeriesCreate(name="Headcount"))


@pytest.mark.asyncio
async def test_has_recent_data(db, make_metric, record):
    metric = await make_metric()
    await record(date(2026, 3, 1), 7)

    today = date(2026, 3, 11)
    assert await tolerance_metric_store.has_recent_data(db, metric.id, 90, today) is True
    assert await tolerance_metric_store.has_recent_data(db, metric.id, 5, today) is False
    assert await tolerance_metric_store.has_recent_data(db, metric.id, 90, date(2026, 2, 1)) is False


@pytest.mark.asyncio
async def test_has_recent_data_without_series(db, cro):
    metric = await tolerance_metric_store.create_metric(
        db, cro,
        ToleranceMetricCreate(
            appetite_category="Conduct",
            metric_name="Complaints per 10k customers",
            metric_type=MetricType.MAXIMUM,
            bands=Bands(amber_max=5),
            effective_from=date(2026, 1, 1),
        ),
    )
    assert await tolerance_metric_store.has_recent_data(db, metric.id) is False
