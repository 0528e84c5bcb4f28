"""
Risk Governance API Endpoints.

POST /api/v1/risks                              — register a risk (draft)
PUT  /api/v1/risks/{id}/response                — set the treatment response
GET  /api/v1/risks/{id}/activation-check        — activation gate, read-only
POST /api/v1/risks/{id}/status                  — governed status change
"""

import uuid

from fastapi import APIRouter, Depends

from riskgov.api.deps import get_actor, get_service, unwrap
from riskgov.auth.rbac import ActorContext
from riskgov.risks.schemas import (
    ActivationDecision,
    RiskCreate,
    RiskOut,
    RiskResponseOut,
    RiskResponseSet,
    RiskStatusChange,
)
from riskgov.services.assurance import AssuranceService

router = APIRouter(prefix="/api/v1/risks", tags=["risks"])


@router.post("", response_model=RiskOut, status_code=201)
async def create_risk(
    body: RiskCreate,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.create_risk(actor, body))


@router.put("/{risk_id}/response", response_model=RiskResponseOut)
async def set_risk_response(
    risk_id: uuid.UUID,
    body: RiskResponseSet,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.set_risk_response(actor, risk_id, body))


@router.get("/{risk_id}/activation-check", response_model=ActivationDecision)
async def activation_check(
    risk_id: uuid.UUID,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.can_activate(risk_id))


@router.post("/{risk_id}/status", response_model=RiskOut)
async def change_risk_status(
    risk_id: uuid.UUID,
    body: RiskStatusChange,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    """Moving to active runs the activation gate; a denial is returned as 409."""
    return unwrap(await service.change_risk_status(actor, risk_id, body.status, body.reason))
