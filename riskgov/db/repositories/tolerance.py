"""Tolerance metric, measurement and breach repositories."""

import uuid
from datetime import date
from typing import Any, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.db.models import (
    BreachEvent,
    BreachObservation,
    Measurement,
    MeasurementSeries,
    ToleranceMetric,
)
from riskgov.db.repositories.base import BaseRepository


class SeriesRepository(BaseRepository[MeasurementSeries, Any]):
    def __init__(self):
        super().__init__(MeasurementSeries)


class MeasurementRepository(BaseRepository[Measurement, Any]):
    def __init__(self):
        super().__init__(Measurement)

    async def for_date(self, db: AsyncSession, series_id: uuid.UUID, as_of: date) -> Optional[Measurement]:
        result = await db.execute(
            select(Measurement).where(Measurement.series_id == series_id, Measurement.as_of_date == as_of)
        )
        return result.scalar_one_or_none()

    async def latest_on_or_before(
        self, db: AsyncSession, series_id: uuid.UUID, as_of: date,
    ) -> Optional[Measurement]:
        result = await db.execute(
            select(Measurement)
            .where(Measurement.series_id == series_id, Measurement.as_of_date <= as_of)
            .order_by(Measurement.as_of_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


class ToleranceMetricRepository(BaseRepository[ToleranceMetric, Any]):
    def __init__(self):
        super().__init__(ToleranceMetric)

    async def active_for_series(
        self, db: AsyncSession, series_id: uuid.UUID, as_of: date,
    ) -> Sequence[ToleranceMetric]:
        """Active metrics governing ``series_id`` that are in effect on ``as_of``."""
        result = await db.execute(
            select(ToleranceMetric).where(
                ToleranceMetric.series_id == series_id,
                ToleranceMetric.is_active.is_(True),
                ToleranceMetric.effective_from <= as_of,
                or_(ToleranceMetric.effective_to.is_(None), ToleranceMetric.effective_to >= as_of),
            )
        )
        return result.scalars().all()


class BreachRepository(BaseRepository[BreachEvent, Any]):
    def __init__(self):
        super().__init__(BreachEvent)

    async def for_key(
        self, db: AsyncSession, metric_id: uuid.UUID, measurement_id: uuid.UUID,
    ) -> Optional[BreachEvent]:
        result = await db.execute(
            select(BreachEvent).where(
                BreachEvent.metric_id == metric_id,
                BreachEvent.measurement_id == measurement_id,
            )
        )
        return result.scalar_one_or_none()

    async def for_observation(
        self, db: AsyncSession, metric_id: uuid.UUID, measurement_id: uuid.UUID,
    ) -> Optional[BreachEvent]:
        """The breach a previously absorbed reading was counted against."""
        result = await db.execute(
            select(BreachEvent)
            .join(BreachObservation, BreachObservation.breach_id == BreachEvent.id)
            .where(
                BreachObservation.metric_id == metric_id,
                BreachObservation.measurement_id == measurement_id,
            )
        )
        return result.scalar_one_or_none()

    async def replay(
        self, db: AsyncSession, metric_id: uuid.UUID, measurement_id: uuid.UUID,
    ) -> Optional[BreachEvent]:
        """Breach already tied to this reading, whether it opened it or was absorbed."""
        return (
            await self.for_key(db, metric_id, measurement_id)
            or await self.for_observation(db, metric_id, measurement_id)
        )

    async def newest_active(self, db: AsyncSession, metric_id: uuid.UUID) -> Optional[BreachEvent]:
        """Most severe, then most recent, open or in-progress breach of a metric."""
        result = await db.execute(
            select(BreachEvent)
            .where(
                BreachEvent.metric_id == metric_id,
                BreachEvent.status.in_(("open", "in_progress")),
            )
            .order_by(BreachEvent.detected_at.desc())
        )
        rows = result.scalars().all()
        if not rows:
            return None
        red = [r for r in rows if r.tier == "red"]
        return red[0] if red else rows[0]


series_repo = SeriesRepository()
measurement_repo = MeasurementRepository()
metric_repo = ToleranceMetricRepository()
breach_repo = BreachRepository()
