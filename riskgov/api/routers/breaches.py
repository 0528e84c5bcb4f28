"""
Breach API Endpoints.

GET   /api/v1/breaches?metric_id=...                 — breaches of one metric
GET   /api/v1/breaches/{id}                          — one breach
POST  /api/v1/breaches/detect                        — (re)run detection for a measurement
POST  /api/v1/breaches/{id}/transition               — lifecycle move
PATCH /api/v1/breaches/{id}/remediation              — plan / owner / due date
PATCH /api/v1/breaches/{id}/exception                — amend a board-accepted exception
GET   /api/v1/breaches/{id}/audit                    — governance audit history
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from riskgov.api.deps import get_actor, get_service, unwrap
from riskgov.auth.rbac import ActorContext
from riskgov.services.assurance import AssuranceService
from riskgov.tolerance.schemas import (
    BoardExceptionAmendment,
    BreachResponse,
    BreachStatus,
    RemediationUpdate,
    TransitionMetadata,
)

router = APIRouter(prefix="/api/v1/breaches", tags=["breaches"])


class DetectRequest(BaseModel):
    metric_id: uuid.UUID
    measurement_id: uuid.UUID


class DetectResponse(BaseModel):
    breach: Optional[BreachResponse] = None


class TransitionRequest(BaseModel):
    status: BreachStatus
    metadata: TransitionMetadata = TransitionMetadata()


class AuditEntryResponse(BaseModel):
    timestamp: datetime
    actor_id: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    action: str
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    reason: Optional[str] = None

    model_config = {"from_attributes": True}


@router.get("", response_model=list[BreachResponse])
async def list_breaches(
    metric_id: uuid.UUID = Query(...),
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.list_breaches(metric_id))


@router.post("/detect", response_model=DetectResponse)
async def detect_breach(
    body: DetectRequest,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    """Idempotent: repeating the call returns the same breach."""
    breach = unwrap(await service.detect_breach(body.metric_id, body.measurement_id))
    return DetectResponse(breach=BreachResponse.model_validate(breach) if breach is not None else None)


@router.get("/{breach_id}", response_model=BreachResponse)
async def get_breach(
    breach_id: uuid.UUID,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.get_breach(breach_id))


@router.post("/{breach_id}/transition", response_model=BreachResponse)
async def transition_breach(
    breach_id: uuid.UUID,
    body: TransitionRequest,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.transition_breach(breach_id, body.status, actor, body.metadata))


@router.patch("/{breach_id}/remediation", response_model=BreachResponse)
async def update_remediation(
    breach_id: uuid.UUID,
    body: RemediationUpdate,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.update_remediation(breach_id, actor, body))


@router.patch("/{breach_id}/exception", response_model=BreachResponse)
async def amend_board_exception(
    breach_id: uuid.UUID,
    body: BoardExceptionAmendment,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.amend_board_exception(breach_id, actor, body))


@router.get("/{breach_id}/audit", response_model=list[AuditEntryResponse])
async def breach_audit(
    breach_id: uuid.UUID,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.audit_history(actor, "breach_event", breach_id))
