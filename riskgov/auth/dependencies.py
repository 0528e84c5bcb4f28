"""
FastAPI dependencies for the database session and the calling actor.

Identity is resolved by the host platform; it forwards the caller as
headers:
    X-Actor-Id          user UUID
    X-Organization-Id   tenant UUID
    X-Actor-Role        viewer | analyst | manager | cro | board (aliases accepted)
"""

import uuid
from typing import AsyncGenerator

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.auth.rbac import ActorContext, Role
from riskgov.db.engine import get_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async DB session; commit on success, roll back on error."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def _parse_uuid(value: str, header: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail=f"Invalid {header} header")


def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_organization_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> ActorContext:
    """Build the ActorContext from host-supplied headers."""
    if not x_actor_id or not x_organization_id:
        raise HTTPException(status_code=401, detail="Missing actor context")
    return ActorContext(
        user_id=_parse_uuid(x_actor_id, "X-Actor-Id"),
        organization_id=_parse_uuid(x_organization_id, "X-Organization-Id"),
        role=Role.from_str(x_actor_role or "viewer"),
    )
