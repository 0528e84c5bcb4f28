"""
Breach Detector Tests.

Covers:
- One breach per (metric, measurement); detection replays are idempotent
- Green, unknown, inactive and out-of-effect readings create nothing
- Repeat readings refresh the open breach (last_seen_*) only when newer
- Redelivered readings resolve to the breach they were first tied to
- Amber → red escalation opens a linked red breach for later readings only; no downgrades
- Escalation targets and remediation SLA from the metric's rules
- Directional metrics against a trailing baseline
"""

from datetime import date, datetime, timedelta

import pytest

from riskgov.db.repositories.tolerance import breach_repo
from riskgov.errors import ValidationError
from riskgov.tolerance.breaches import breach_detector
from riskgov.tolerance.lifecycle import breach_lifecycle
from riskgov.tolerance.metrics import tolerance_metric_store
from riskgov.tolerance.schemas import (
    Bands,
    BreachStatus,
    EscalationRule,
    EscalationRules,
    MeasurementCreate,
    MetricType,
    SeriesCreate,
    TrendConfig,
    TrendDirection,
)

# Matches the detection time of the ``amber_breach`` fixture.
DETECTED_AT = datetime(2026, 3, 2, 9, 0)


async def _detect(db, metric, measurement, now=DETECTED_AT):
    return await breach_detector.detect(db, metric.id, measurement.id, now=now)


# ── Creation ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_amber_reading_opens_breach(db, metric, amber_breach):
    assert amber_breach.tier == "amber"
    assert amber_breach.status == "open"
    assert float(amber_breach.breach_value) == 15.0
    assert float(amber_breach.threshold_value) == 10.0
    assert amber_breach.prior_breach_id is None
    assert amber_breach.organization_id == metric.organization_id
    assert amber_breach.remediation_due_date == DETECTED_AT.date() + timedelta(days=30)
    assert [t["recipient"] for t in amber_breach.escalated_to] == ["CRO", "Risk Committee"]
    assert all(t["tier"] == "amber" and t["sla_days"] == 30 for t in amber_breach.escalated_to)


@pytest.mark.asyncio
async def test_detection_is_idempotent(db, metric, amber_breach):
    again = await breach_detector.detect(db, metric.id, amber_breach.measurement_id)
    assert again.id == amber_breach.id
    assert await breach_repo.count(db, metric_id=metric.id) == 1


@pytest.mark.asyncio
async def test_green_reading_creates_nothing(db, metric, record):
    measurement = await record(date(2026, 3, 1), 6)
    assert await _detect(db, metric, measurement) is None
    assert await breach_repo.count(db, metric_id=metric.id) == 0


@pytest.mark.asyncio
async def test_green_reading_does_not_resolve_open_breach(db, metric, amber_breach, record):
    measurement = await record(date(2026, 3, 2), 4)
    assert await _detect(db, metric, measurement) is None
    assert amber_breach.status == "open"


@pytest.mark.asyncio
async def test_custom_escalation_rules(db, make_metric, record):
    metric = await make_metric(escalation_rules=EscalationRules(
        red=EscalationRule(sla_days=3, notify=["Board"], action_required="Convene board call"),
    ))
    measurement = await record(date(2026, 3, 1), 40)
    breach = await _detect(db, metric, measurement)
    assert breach.tier == "red"
    assert breach.remediation_due_date == DETECTED_AT.date() + timedelta(days=3)
    assert breach.escalated_to == [{
        "recipient": "Board",
        "tier": "red",
        "sla_days": 3,
        "action_required": "Convene board call",
    }]


# ── Open breach refresh and escalation ───────────────────────────────────


@pytest.mark.asyncio
async def test_repeat_amber_refreshes_open_breach(db, metric, amber_breach, record):
    measurement = await record(date(2026, 3, 8), 12)
    later = DETECTED_AT + timedelta(days=7)
    same = await _detect(db, metric, measurement, now=later)

    assert same.id == amber_breach.id
    assert same.last_seen_measurement_id == measurement.id
    assert float(same.last_seen_value) == 12.0
    assert same.last_seen_at == later
    assert await breach_repo.count(db, metric_id=metric.id) == 1


@pytest.mark.asyncio
async def test_red_over_amber_escalates(db, metric, amber_breach, record):
    measurement = await record(date(2026, 3, 8), 25)
    red = await _detect(db, metric, measurement)

    assert red.id != amber_breach.id
    assert red.tier == "red"
    assert red.prior_breach_id == amber_breach.id
    assert red.remediation_due_date == DETECTED_AT.date() + timedelta(days=7)
    assert amber_breach.status == "open"
    assert await breach_repo.count(db, metric_id=metric.id) == 2


@pytest.mark.asyncio
async def test_no_downgrade_while_red_open(db, metric, amber_breach, record):
    red = await _detect(db, metric, await record(date(2026, 3, 8), 25))

    after_amber = await _detect(db, metric, await record(date(2026, 3, 15), 14))
    after_red = await _detect(db, metric, await record(date(2026, 3, 22), 30))

    assert after_amber.id == red.id
    assert after_red.id == red.id
    assert float(red.last_seen_value) == 30.0
    assert await breach_repo.count(db, metric_id=metric.id) == 2


@pytest.mark.asyncio
async def test_new_breach_after_previous_one_is_resolved(db, metric, amber_breach, record):
    amber_breach.status = "resolved"
    await db.flush()

    again = await _detect(db, metric, await record(date(2026, 4, 1), 15))
    assert again.id != amber_breach.id
    assert again.prior_breach_id is None


# ── Redelivered and out-of-order readings ────────────────────────────────


@pytest.mark.asyncio
async def test_absorbed_reading_replays_after_resolution(db, metric, amber_breach, record, cro):
    repeat = await record(date(2026, 3, 8), 16)
    assert (await _detect(db, metric, repeat)).id == amber_breach.id

    await breach_lifecycle.transition(db, amber_breach.id, BreachStatus.IN_PROGRESS, cro)
    await breach_lifecycle.transition(db, amber_breach.id, BreachStatus.RESOLVED, cro)

    replay = await _detect(db, metric, repeat)
    assert replay.id == amber_breach.id
    assert replay.status == "resolved"
    assert await breach_repo.count(db, metric_id=metric.id) == 1


@pytest.mark.asyncio
async def test_redelivered_reading_keeps_latest_last_seen(db, metric, amber_breach, record):
    earlier = await record(date(2026, 3, 8), 16)
    latest = await record(date(2026, 3, 15), 18)
    await _detect(db, metric, earlier)
    await _detect(db, metric, latest)

    replay = await _detect(db, metric, earlier)
    assert replay.id == amber_breach.id
    assert replay.last_seen_measurement_id == latest.id
    assert float(replay.last_seen_value) == 18.0


@pytest.mark.asyncio
async def test_out_of_order_reading_recorded_without_refresh(db, metric, amber_breach, record):
    latest = await _detect(db, metric, await record(date(2026, 3, 15), 18))
    assert latest.last_seen_value is not None

    late = await record(date(2026, 3, 8), 16)
    same = await _detect(db, metric, late)
    assert same.id == amber_breach.id
    assert float(same.last_seen_value) == 18.0
    assert (await breach_repo.for_observation(db, metric.id, late.id)).id == amber_breach.id


@pytest.mark.asyncio
async def test_red_dated_before_amber_trigger_does_not_escalate(db, metric, amber_breach, record):
    backfilled = await record(date(2026, 2, 20), 25)
    same = await _detect(db, metric, backfilled)

    assert same.id == amber_breach.id
    assert same.tier == "amber"
    assert same.last_seen_measurement_id == amber_breach.measurement_id
    assert await breach_repo.count(db, metric_id=metric.id) == 1

    replay = await _detect(db, metric, backfilled)
    assert replay.id == amber_breach.id


# ── Readings that are not judged ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_inactive_metric_creates_nothing(db, make_metric, record):
    metric = await make_metric(activate=False)
    measurement = await record(date(2026, 3, 1), 50)
    assert await _detect(db, metric, measurement) is None


@pytest.mark.asyncio
async def test_replay_survives_deactivation(db, metric, amber_breach, cro):
    await tolerance_metric_store.deactivate_metric(db, cro, metric.id)
    replay = await breach_detector.detect(db, metric.id, amber_breach.measurement_id)
    assert replay.id == amber_breach.id


@pytest.mark.asyncio
async def test_measurement_before_effective_from(db, make_metric, record):
    metric = await make_metric(effective_from=date(2026, 6, 1))
    measurement = await record(date(2026, 5, 31), 50)
    assert await _detect(db, metric, measurement) is None


@pytest.mark.asyncio
async def test_measurement_from_another_series_rejected(db, metric, manager):
    other = await tolerance_metric_store.create_series(db, manager, SeriesCreate(name="Other"))
    measurement = await tolerance_metric_store.record_measurement(
        db, manager, MeasurementCreate(series_id=other.id, as_of_date=date(2026, 3, 1), value=99),
    )
    with pytest.raises(ValidationError):
        await _detect(db, metric, measurement)


# ── Directional metrics ──────────────────────────────────────────────────


@pytest.fixture
def trend():
    return TrendConfig(lookback_days=30, allowed_change_pct=10, trend=TrendDirection.INCREASING_IS_BAD)


@pytest.mark.asyncio
async def test_directional_without_baseline_is_inconclusive(db, make_metric, record, trend):
    metric = await make_metric(metric_type=MetricType.DIRECTIONAL, bands=Bands(), trend_config=trend)
    measurement = await record(date(2026, 3, 1), 500)
    assert await _detect(db, metric, measurement) is None


@pytest.mark.asyncio
async def test_directional_breach_against_baseline(db, make_metric, record, trend):
    metric = await make_metric(metric_type=MetricType.DIRECTIONAL, bands=Bands(), trend_config=trend)
    await record(date(2026, 1, 25), 100)
    await record(date(2026, 2, 20), 300)   # inside the lookback window, not the baseline
    measurement = await record(date(2026, 3, 1), 130)

    breach = await _detect(db, metric, measurement)
    assert breach.tier == "red"
    assert float(breach.breach_value) == 30.0
    assert float(breach.threshold_value) == 20.0
