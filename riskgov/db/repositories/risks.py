"""Risk and risk response repositories."""

import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.db.models import Risk, RiskResponse
from riskgov.db.repositories.base import BaseRepository


class RiskRepository(BaseRepository[Risk, Any]):
    def __init__(self):
        super().__init__(Risk)


class RiskResponseRepository(BaseRepository[RiskResponse, Any]):
    def __init__(self):
        super().__init__(RiskResponse)

    async def for_risk(self, db: AsyncSession, risk_id: uuid.UUID) -> Optional[RiskResponse]:
        result = await db.execute(select(RiskResponse).where(RiskResponse.risk_id == risk_id))
        return result.scalar_one_or_none()


risk_repo = RiskRepository()
risk_response_repo = RiskResponseRepository()
