"""
Tolerance API Endpoints.

POST /api/v1/tolerance/series                        — create a measurement series
POST /api/v1/tolerance/measurements                  — ingest a point; runs breach detection
POST /api/v1/tolerance/metrics                       — define a metric (inactive)
GET  /api/v1/tolerance/metrics/{id}                  — one metric version
POST /api/v1/tolerance/metrics/{id}/activate         — governance activation
POST /api/v1/tolerance/metrics/{id}/deactivate
POST /api/v1/tolerance/metrics/{id}/revisions        — publish the next version
GET  /api/v1/tolerance/metrics/{id}/recent-data      — fresh data check
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from riskgov.api.deps import get_actor, get_service, unwrap
from riskgov.auth.rbac import ActorContext
from riskgov.services.assurance import AssuranceService
from riskgov.tolerance.schemas import (
    BreachResponse,
    MeasurementCreate,
    MeasurementResponse,
    SeriesCreate,
    SeriesResponse,
    ToleranceMetricCreate,
    ToleranceMetricResponse,
    ToleranceMetricRevision,
)

router = APIRouter(prefix="/api/v1/tolerance", tags=["tolerance"])


class IngestionResponse(BaseModel):
    measurement: MeasurementResponse
    breaches: list[BreachResponse]
    metrics_evaluated: int


class RecentDataResponse(BaseModel):
    metric_id: uuid.UUID
    has_recent_data: bool


@router.post("/series", response_model=SeriesResponse, status_code=201)
async def create_series(
    body: SeriesCreate,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.create_series(actor, body))


@router.post("/measurements", response_model=IngestionResponse, status_code=201)
async def ingest_measurement(
    body: MeasurementCreate,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    """Store a measurement and evaluate every active metric governing its series."""
    outcome = unwrap(await service.ingest_measurement(actor, body))
    return IngestionResponse(
        measurement=MeasurementResponse.model_validate(outcome.measurement),
        breaches=[BreachResponse.model_validate(b) for b in outcome.breaches],
        metrics_evaluated=outcome.metrics_evaluated,
    )


@router.post("/metrics", response_model=ToleranceMetricResponse, status_code=201)
async def create_metric(
    body: ToleranceMetricCreate,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.create_metric(actor, body))


@router.get("/metrics/{metric_id}", response_model=ToleranceMetricResponse)
async def get_metric(
    metric_id: uuid.UUID,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.get_metric(metric_id))


@router.post("/metrics/{metric_id}/activate", response_model=ToleranceMetricResponse)
async def activate_metric(
    metric_id: uuid.UUID,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.activate_metric(actor, metric_id))


@router.post("/metrics/{metric_id}/deactivate", response_model=ToleranceMetricResponse)
async def deactivate_metric(
    metric_id: uuid.UUID,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.deactivate_metric(actor, metric_id))


@router.post("/metrics/{metric_id}/revisions", response_model=ToleranceMetricResponse, status_code=201)
async def supersede_metric(
    metric_id: uuid.UUID,
    body: ToleranceMetricRevision,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.supersede_metric(actor, metric_id, body))


@router.get("/metrics/{metric_id}/recent-data", response_model=RecentDataResponse)
async def recent_data(
    metric_id: uuid.UUID,
    window_days: Optional[int] = Query(default=None, ge=1),
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    fresh = unwrap(await service.has_recent_data(metric_id, window_days))
    return RecentDataResponse(metric_id=metric_id, has_recent_data=fresh)
