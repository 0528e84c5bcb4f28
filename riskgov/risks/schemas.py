"""Risk status, treatment response and activation gate models."""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field


class RiskStatus(StrEnum):
    DRAFT = "draft"
    OPEN = "open"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"
    RETIRED = "retired"


class ResponseType(StrEnum):
    AVOID = "avoid"
    REDUCE_LIKELIHOOD = "reduce_likelihood"
    REDUCE_IMPACT = "reduce_impact"
    TRANSFER_SHARE = "transfer_share"
    ACCEPT = "accept"


class RiskCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    title: str = Field(min_length=1, max_length=255)


class RiskResponseSet(BaseModel):
    response_type: ResponseType
    rationale: Optional[str] = None


class RiskStatusChange(BaseModel):
    status: RiskStatus
    reason: Optional[str] = None


class ActivationDecision(BaseModel):
    """Outcome of the activation gate for one risk."""
    can_activate: bool
    message: str
    has_response: bool
    response_type: Optional[ResponseType] = None
    control_instance_count: int = 0


class RiskOut(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    code: str
    title: str
    status: RiskStatus
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RiskResponseOut(BaseModel):
    risk_id: uuid.UUID
    response_type: ResponseType
    rationale: Optional[str] = None
    decided_by: Optional[uuid.UUID] = None
    decided_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
