"""
Governance Audit Trail — append-only record of governed writes.

Entries are only ever added; nothing in this package updates or deletes
them. The caller's transaction owns the commit, so an audit row lands
together with the change it describes or not at all.
"""

import uuid
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.auth.rbac import ActorContext
from riskgov.db.compat import utcnow
from riskgov.db.models import GovernanceAuditLog

logger = structlog.get_logger(__name__)


class GovernanceAuditTrail:
    """Writes and reads governance audit entries."""

    async def record(
        self,
        session: AsyncSession,
        actor: ActorContext,
        action: str,
        entity_type: str,
        entity_id: uuid.UUID | str,
        before: Optional[dict[str, Any]] = None,
        after: Optional[dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> GovernanceAuditLog:
        entry = GovernanceAuditLog(
            timestamp=utcnow(),
            organization_id=actor.organization_id,
            actor_id=actor.user_id,
            actor_role=actor.role.name.lower(),
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            before_state=before,
            after_state=after,
            reason=reason,
        )
        session.add(entry)
        await session.flush()

        logger.info(
            "governance_audit_recorded",
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            actor_id=str(actor.user_id),
        )
        return entry

    async def history(
        self,
        session: AsyncSession,
        entity_type: str,
        entity_id: uuid.UUID | str,
    ) -> Sequence[GovernanceAuditLog]:
        """All entries for one entity, oldest first."""
        result = await session.execute(
            select(GovernanceAuditLog)
            .where(
                GovernanceAuditLog.entity_type == entity_type,
                GovernanceAuditLog.entity_id == str(entity_id),
            )
            .order_by(GovernanceAuditLog.timestamp.asc(), GovernanceAuditLog.id.asc())
        )
        return list(result.scalars().all())


governance_audit = GovernanceAuditTrail()
