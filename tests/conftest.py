"""
Test fixtures for riskgov.

Provides:
- Async DB engine/session (SQLite in-memory, SAVEPOINT-capable)
- Actor fixtures, one per role, plus an actor from another organization
- Seeded control library, a draft risk and a control instance
- Series / metric / measurement helpers for tolerance tests
- An open amber breach for lifecycle tests
"""

import os
import uuid
from datetime import date, datetime
from typing import AsyncGenerator

# Settings are read at import time; keep the app off Postgres and out of dev seeding.
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from riskgov.auth.rbac import ActorContext, Role
from riskgov.controls.instances import control_instance_store
from riskgov.controls.library import control_library
from riskgov.controls.schemas import ControlInstanceCreate
from riskgov.db.compat import enable_sqlite_savepoints
from riskgov.db.engine import Base
from riskgov.db.models import BreachEvent, ControlInstance, Measurement, MeasurementSeries, Risk  # noqa: F401
from riskgov.db.repositories.risks import risk_repo
from riskgov.tolerance.breaches import breach_detector
from riskgov.tolerance.metrics import tolerance_metric_store
from riskgov.tolerance.schemas import (
    Bands,
    EscalationRules,
    MeasurementCreate,
    MetricType,
    SeriesCreate,
    ToleranceMetricCreate,
    TrendConfig,
)

# In-memory SQLite for fast, isolated tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

METRIC_START = date(2026, 1, 1)
DETECTED_AT = datetime(2026, 3, 2, 9, 0)


@pytest_asyncio.fixture
async def engine():
    """One in-memory database per test, shared by every session of that test."""
    eng = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(eng)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    """Create a session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a clean DB session per test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ── Actor Fixtures ───────────────────────────────────────────────────────


@pytest.fixture
def org_id() -> uuid.UUID:
    return uuid.uuid4()


def make_actor(org_id: uuid.UUID, role: Role) -> ActorContext:
    return ActorContext(user_id=uuid.uuid4(), organization_id=org_id, role=role)


@pytest.fixture
def viewer(org_id) -> ActorContext:
    return make_actor(org_id, Role.VIEWER)


@pytest.fixture
def analyst(org_id) -> ActorContext:
    return make_actor(org_id, Role.ANALYST)


@pytest.fixture
def manager(org_id) -> ActorContext:
    return make_actor(org_id, Role.MANAGER)


@pytest.fixture
def cro(org_id) -> ActorContext:
    return make_actor(org_id, Role.CRO)


@pytest.fixture
def board(org_id) -> ActorContext:
    return make_actor(org_id, Role.BOARD)


@pytest.fixture
def outsider() -> ActorContext:
    """A governance-tier actor of a different organization."""
    return make_actor(uuid.uuid4(), Role.CRO)


# ── Controls ─────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def library(db) -> int:
    """Seed the control template catalogue."""
    return await control_library.seed(db)


@pytest_asyncio.fixture
async def risk(db, org_id) -> Risk:
    return await risk_repo.create(
        db,
        organization_id=org_id,
        code="R-001",
        title="Single-vendor concentration in payment processing",
        status="draft",
    )


@pytest_asyncio.fixture
async def control_instance(db, library, risk, manager) -> ControlInstance:
    """A PCI-01 control attached to ``risk``, all sub-controls unanswered."""
    return await control_instance_store.create(
        db, manager, ControlInstanceCreate(risk_id=risk.id, template_code="PCI-01"),
    )


# ── Tolerance ────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def series(db, manager) -> MeasurementSeries:
    return await tolerance_metric_store.create_series(
        db, manager, SeriesCreate(name="Top vendor share of payment volume", unit="%"),
    )


@pytest.fixture
def make_metric(db, cro, series):
    """Factory: create (and by default activate) a metric on ``series``."""

    async def _make(
        metric_type: MetricType = MetricType.MAXIMUM,
        bands: Bands | None = None,
        trend_config: TrendConfig | None = None,
        escalation_rules: EscalationRules | None = None,
        effective_from: date = METRIC_START,
        activate: bool = True,
        series_id: uuid.UUID | None = None,
    ):
        data = ToleranceMetricCreate(
            appetite_category="Operational resilience",
            metric_name="Vendor concentration",
            metric_type=metric_type,
            unit="%",
            bands=bands if bands is not None else Bands(green_max=8, amber_max=10, red_max=20),
            series_id=series_id or series.id,
            trend_config=trend_config,
            escalation_rules=escalation_rules or EscalationRules(),
            effective_from=effective_from,
        )
        metric = await tolerance_metric_store.create_metric(db, cro, data)
        if activate:
            await tolerance_metric_store.activate_metric(db, cro, metric.id)
        return metric

    return _make


@pytest.fixture
def record(db, manager, series):
    """Factory: store a measurement on ``series``."""

    async def _record(as_of: date, value: float, series_id: uuid.UUID | None = None) -> Measurement:
        return await tolerance_metric_store.record_measurement(
            db, manager, MeasurementCreate(series_id=series_id or series.id, as_of_date=as_of, value=value),
        )

    return _record


@pytest_asyncio.fixture
async def metric(make_metric):
    """Active maximum metric: amber above 10, red above 20."""
    return await make_metric()


@pytest_asyncio.fixture
async def amber_breach(db, metric, record) -> BreachEvent:
    measurement = await record(date(2026, 3, 1), 15)
    breach = await breach_detector.detect(db, metric.id, measurement.id, now=DETECTED_AT)
    assert breach is not None
    return breach
