"""
Role-Based Access Control for governed writes.

Defines:
- Role hierarchy (VIEWER < ANALYST < MANAGER < CRO < BOARD)
- Fine-grained permissions per role
- ActorContext, the caller identity supplied by the host platform
- require_* helpers raising PermissionDenied

CRO and BOARD form the governance tier: only they may close breaches,
board-accept them, activate tolerance metrics or publish templates.
"""

import uuid
from dataclasses import dataclass
from enum import Enum, IntEnum

import structlog

from riskgov.errors import PermissionDenied

logger = structlog.get_logger(__name__)


class Role(IntEnum):
    """Ordered role hierarchy — higher value = more permissions."""

    VIEWER = 10
    ANALYST = 20
    MANAGER = 30
    CRO = 40
    BOARD = 50

    @classmethod
    def from_str(cls, value: str) -> "Role":
        """Convert string role name to Role enum, case-insensitive."""
        mapping = {
            "viewer": cls.VIEWER,
            "analyst": cls.ANALYST,
            "attestor": cls.ANALYST,
            "manager": cls.MANAGER,
            "risk_manager": cls.MANAGER,
            "cro": cls.CRO,
            "admin": cls.CRO,
            "board": cls.BOARD,
            "owner": cls.BOARD,
            # Legacy mapping
            "member": cls.VIEWER,
        }
        return mapping.get((value or "").lower(), cls.VIEWER)


GOVERNANCE_MIN_ROLE = Role.CRO


class Permission(str, Enum):
    """Fine-grained permissions beyond role hierarchy."""

    CONTROLS_READ = "controls:read"
    CONTROLS_WRITE = "controls:write"
    ATTESTATIONS_WRITE = "attestations:write"
    EVIDENCE_MANAGE = "evidence:manage"
    TEMPLATES_PUBLISH = "templates:publish"
    TOLERANCES_READ = "tolerances:read"
    TOLERANCES_MANAGE = "tolerances:manage"
    MEASUREMENTS_INGEST = "measurements:ingest"
    BREACHES_READ = "breaches:read"
    BREACHES_GOVERN = "breaches:govern"
    RISKS_READ = "risks:read"
    RISKS_RESPOND = "risks:respond"
    RISKS_STATUS_CHANGE = "risks:status_change"
    AUDIT_READ = "audit:read"


# ── Role → Permission Mapping ─────────────────────────────────────────────

_VIEWER_PERMS = frozenset({
    Permission.CONTROLS_READ,
    Permission.TOLERANCES_READ,
    Permission.BREACHES_READ,
    Permission.RISKS_READ,
})

_ANALYST_PERMS = _VIEWER_PERMS | frozenset({
    Permission.ATTESTATIONS_WRITE,
    Permission.AUDIT_READ,
})

_MANAGER_PERMS = _ANALYST_PERMS | frozenset({
    Permission.CONTROLS_WRITE,
    Permission.EVIDENCE_MANAGE,
    Permission.MEASUREMENTS_INGEST,
    Permission.RISKS_RESPOND,
    Permission.RISKS_STATUS_CHANGE,
})

_CRO_PERMS = _MANAGER_PERMS | frozenset({
    Permission.TEMPLATES_PUBLISH,
    Permission.TOLERANCES_MANAGE,
    Permission.BREACHES_GOVERN,
})

_BOARD_PERMS = frozenset(Permission)  # All permissions

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.VIEWER: _VIEWER_PERMS,
    Role.ANALYST: _ANALYST_PERMS,
    Role.MANAGER: _MANAGER_PERMS,
    Role.CRO: _CRO_PERMS,
    Role.BOARD: _BOARD_PERMS,
}


@dataclass(frozen=True)
class ActorContext:
    """Who is calling. Resolved by the host platform, opaque to this engine."""

    user_id: uuid.UUID
    organization_id: uuid.UUID
    role: Role

    @property
    def is_governance(self) -> bool:
        return self.role >= GOVERNANCE_MIN_ROLE


def has_permission(role: Role, permission: Permission) -> bool:
    """Check if a role has a specific permission."""
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def has_role(current_role: Role, minimum_role: Role) -> bool:
    """Check if current role meets or exceeds minimum role level."""
    return current_role >= minimum_role


def require_permission(actor: ActorContext, permission: Permission) -> None:
    """Raise PermissionDenied unless the actor's role grants ``permission``."""
    if not has_permission(actor.role, permission):
        logger.warning(
            "permission_denied",
            user_id=str(actor.user_id),
            role=actor.role.name,
            required_permission=permission.value,
        )
        raise PermissionDenied(
            f"Role {actor.role.name.lower()} lacks {permission.value}",
            details={"required": permission.value, "your_role": actor.role.name.lower()},
        )


def require_governance(actor: ActorContext, action: str) -> None:
    if not actor.is_governance:
        logger.warning(
            "governance_required",
            user_id=str(actor.user_id),
            role=actor.role.name,
            action=action,
        )
        raise PermissionDenied(
            f"{action} requires a governance-tier role",
            details={"required_role": GOVERNANCE_MIN_ROLE.name.lower(), "your_role": actor.role.name.lower()},
        )


def require_same_tenant(actor: ActorContext, organization_id: uuid.UUID) -> None:
    """Writes never cross organizations."""
    if actor.organization_id != organization_id:
        logger.warning(
            "cross_tenant_write_denied",
            user_id=str(actor.user_id),
            actor_org=str(actor.organization_id),
            target_org=str(organization_id),
        )
        raise PermissionDenied("Record belongs to another organization")
