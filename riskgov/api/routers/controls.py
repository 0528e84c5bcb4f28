"""
Control Assurance API Endpoints.

GET   /api/v1/controls/templates                         — published templates
POST  /api/v1/controls/instances                         — attach a template to a risk
GET   /api/v1/controls/instances/{id}                    — one control instance
POST  /api/v1/controls/instances/{id}/status             — draft → active → retired
GET   /api/v1/controls/instances/{id}/attestations       — checklist in template order
PATCH /api/v1/controls/attestations/{id}                 — attest one sub-control
GET   /api/v1/controls/instances/{id}/dime               — DIME scores with trace
GET   /api/v1/controls/instances/{id}/confidence         — confidence score with drivers
POST  /api/v1/controls/evidence-requests                 — request evidence
PATCH /api/v1/controls/evidence-requests/{id}            — update status / due date
"""

import uuid

from fastapi import APIRouter, Depends, Query

from riskgov.api.deps import get_actor, get_service, unwrap
from riskgov.auth.rbac import ActorContext
from riskgov.controls.schemas import (
    AttestationResponse,
    AttestationUpdate,
    AttestationWriteResponse,
    ConfidenceResult,
    ControlInstanceCreate,
    ControlInstanceResponse,
    ControlStatusChange,
    ControlTemplateResponse,
    DimeResult,
    EvidenceRequestCreate,
    EvidenceRequestResponse,
    EvidenceRequestUpdate,
)
from riskgov.services.assurance import AssuranceService

router = APIRouter(prefix="/api/v1/controls", tags=["controls"])


@router.get("/templates", response_model=list[ControlTemplateResponse])
async def list_templates(
    active_only: bool = Query(default=True),
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.list_templates(active_only))


@router.post("/instances", response_model=ControlInstanceResponse, status_code=201)
async def create_control_instance(
    body: ControlInstanceCreate,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    """Attach a published template to a risk; seeds one unanswered attestation per sub-control."""
    return unwrap(await service.create_control_instance(actor, body))


@router.get("/instances/{control_instance_id}", response_model=ControlInstanceResponse)
async def get_control_instance(
    control_instance_id: uuid.UUID,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.get_control_instance(control_instance_id))


@router.post("/instances/{control_instance_id}/status", response_model=ControlInstanceResponse)
async def set_control_status(
    control_instance_id: uuid.UUID,
    body: ControlStatusChange,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.set_control_status(actor, control_instance_id, body.status))


@router.get("/instances/{control_instance_id}/attestations", response_model=list[AttestationResponse])
async def list_attestations(
    control_instance_id: uuid.UUID,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.list_attestations(control_instance_id))


@router.patch("/attestations/{attestation_id}", response_model=AttestationWriteResponse)
async def attest(
    attestation_id: uuid.UUID,
    body: AttestationUpdate,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    """Record an attestation. Scores recompute in the same transaction."""
    write = unwrap(await service.attest(actor, attestation_id, body))
    return AttestationWriteResponse(
        attestation=AttestationResponse.model_validate(write.attestation),
        recomputed=write.recomputed,
    )


@router.get("/instances/{control_instance_id}/dime", response_model=DimeResult)
async def get_dime(
    control_instance_id: uuid.UUID,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.compute_dime(control_instance_id))


@router.get("/instances/{control_instance_id}/confidence", response_model=ConfidenceResult)
async def get_confidence(
    control_instance_id: uuid.UUID,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.compute_confidence(control_instance_id))


@router.post("/evidence-requests", response_model=EvidenceRequestResponse, status_code=201)
async def create_evidence_request(
    body: EvidenceRequestCreate,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.create_evidence_request(actor, body))


@router.patch("/evidence-requests/{request_id}", response_model=EvidenceRequestResponse)
async def update_evidence_request(
    request_id: uuid.UUID,
    body: EvidenceRequestUpdate,
    service: AssuranceService = Depends(get_service),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(await service.update_evidence_request(actor, request_id, body))
