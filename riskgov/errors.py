"""
Error taxonomy for the assurance engine.

Components raise these exceptions; the service facade converts them into
``OperationResult`` failures and the HTTP layer maps them to status codes.
"""

from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


# ============================================================================
# ERROR CODES
# ============================================================================


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    # General (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    NOT_FOUND = "E1002"
    CONFLICT = "E1003"

    # Authorization (2xxx)
    PERMISSION_DENIED = "E2003"

    # Governance invariants (7xxx)
    INVARIANT_VIOLATION = "E7000"
    ILLEGAL_TRANSITION = "E7001"
    ACTIVATION_BLOCKED = "E7002"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str
    message: str
    field: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


# ============================================================================
# BASE EXCEPTION
# ============================================================================


class GovernanceError(Exception):
    """Base exception for riskgov."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        super().__init__(message)

    def to_detail(self) -> ErrorDetail:
        return ErrorDetail(
            code=self.code.value,
            message=self.message,
            field=self.field,
            details=self.details or None,
        )


# ============================================================================
# SPECIFIC EXCEPTIONS
# ============================================================================


class ValidationError(GovernanceError):
    """Malformed input: bad enum value, missing evidence flag, blank rationale."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            status_code=422,
            field=field,
            details=details,
        )


class InvariantViolation(GovernanceError):
    """A write would break a governance rule."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVARIANT_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=409,
            details=details,
        )


class NotFoundError(GovernanceError):
    """Referenced record does not exist."""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            code=ErrorCode.NOT_FOUND,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier), **(details or {})},
        )


class ConcurrencyConflict(GovernanceError):
    """A concurrent writer won a uniqueness race."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code=ErrorCode.CONFLICT,
            status_code=409,
            details=details,
        )


class PermissionDenied(GovernanceError):
    """Actor lacks the role or ownership the operation requires."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code=ErrorCode.PERMISSION_DENIED,
            status_code=403,
            details=details,
        )


# ============================================================================
# TYPED RESULT
# ============================================================================


class OperationResult(BaseModel, Generic[T]):
    """Outcome of a service operation: either ``data`` or ``error``."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    ok: bool
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None

    @classmethod
    def success(cls, data: Optional[T] = None) -> "OperationResult[T]":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, exc: GovernanceError) -> "OperationResult[T]":
        return cls(ok=False, error=exc.to_detail())

    def unwrap(self) -> T:
        """Return ``data`` or raise a ``GovernanceError`` built from ``error``."""
        if not self.ok:
            err = self.error
            raise GovernanceError(
                err.message if err else "operation failed",
                code=ErrorCode(err.code) if err else ErrorCode.INTERNAL_ERROR,
                details=err.details if err else None,
            )
        return self.data
