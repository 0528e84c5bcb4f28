"""
Evidence Sweep Scheduler — runs in a separate process (riskgov-scheduler).

NOT inside the API process.

Jobs:
1. Overdue evidence sweep (every EVIDENCE_SWEEP_INTERVAL_MINUTES) — flags
   open evidence requests past their due date and recomputes the
   confidence of every control they count against.

Flags are advisory and set once; re-running the sweep on the same day
changes nothing.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgov.config import settings
from riskgov.controls.recompute import recompute_confidence
from riskgov.db.compat import utcnow
from riskgov.db.repositories.controls import evidence_request_repo

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SweepReport:
    overdue: int
    newly_flagged: int
    controls_recomputed: int


async def sweep_overdue_evidence(session: AsyncSession, now: Optional[datetime] = None) -> SweepReport:
    """Flag overdue open requests and refresh the affected confidence scores."""
    now = now or utcnow()
    overdue = await evidence_request_repo.open_overdue(session, now.date())

    newly_flagged = 0
    instance_ids: set[uuid.UUID] = set()
    for request in overdue:
        if request.overdue_flagged_at is None:
            request.overdue_flagged_at = now
            newly_flagged += 1
        if request.control_instance_id is not None:
            instance_ids.add(request.control_instance_id)
        else:
            instance_ids.add(request.attestation.control_instance_id)
    await session.flush()

    for instance_id in sorted(instance_ids, key=str):
        await recompute_confidence(session, instance_id, now=now)

    report = SweepReport(
        overdue=len(overdue),
        newly_flagged=newly_flagged,
        controls_recomputed=len(instance_ids),
    )
    logger.info(
        "evidence_sweep_completed",
        overdue=report.overdue,
        newly_flagged=report.newly_flagged,
        controls_recomputed=report.controls_recomputed,
    )
    return report


class EvidenceSweepScheduler:
    """
    Background scheduler for the overdue evidence sweep.

    Runs in container riskgov-scheduler, NOT in the API process.
    """

    def __init__(self, session_factory: async_sessionmaker, interval_minutes: Optional[int] = None):
        self.session_factory = session_factory
        self.interval_minutes = interval_minutes or settings.evidence_sweep_interval_minutes
        self.scheduler = AsyncIOScheduler()

    def start(self):
        """Register and start the sweep job."""
        self.scheduler.add_job(
            self.run_sweep,
            IntervalTrigger(minutes=self.interval_minutes),
            id="evidence_sweep",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("evidence_scheduler_started", interval_minutes=self.interval_minutes)

    def stop(self):
        """Gracefully stop the scheduler."""
        self.scheduler.shutdown(wait=True)
        logger.info("evidence_scheduler_stopped")

    async def run_sweep(self) -> Optional[SweepReport]:
        """One sweep in its own transaction. Failures are logged, never raised."""
        try:
            async with self.session_factory() as session:
                report = await sweep_overdue_evidence(session)
                await session.commit()
                return report
        except Exception as e:
            logger.error("evidence_sweep_failed", error=str(e))
            return None
