"""
FastAPI dependencies for API routes.

Re-exports auth dependencies and turns façade results into responses.
"""

from typing import TypeVar

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.auth.dependencies import get_actor, get_db
from riskgov.errors import ErrorCode, OperationResult
from riskgov.services.assurance import AssuranceService

T = TypeVar("T")

_STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR.value: 422,
    ErrorCode.NOT_FOUND.value: 404,
    ErrorCode.CONFLICT.value: 409,
    ErrorCode.PERMISSION_DENIED.value: 403,
    ErrorCode.INVARIANT_VIOLATION.value: 409,
    ErrorCode.ILLEGAL_TRANSITION.value: 409,
    ErrorCode.ACTIVATION_BLOCKED.value: 409,
}


def get_service(db: AsyncSession = Depends(get_db)) -> AssuranceService:
    return AssuranceService(db)


def unwrap(result: OperationResult[T]) -> T:
    """Return the result's data or raise an HTTPException carrying the typed error."""
    if result.ok:
        return result.data
    error = result.error
    status_code = _STATUS_BY_CODE.get(error.code, 500) if error else 500
    raise HTTPException(
        status_code=status_code,
        detail=error.model_dump(exclude_none=True) if error else "operation failed",
    )


__all__ = ["get_db", "get_actor", "get_service", "unwrap"]
