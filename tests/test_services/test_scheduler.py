"""
Evidence Sweep Tests.

Covers:
- Overdue open requests are flagged once
- Affected controls get their confidence recomputed with the penalty
- run_sweep commits in its own session and never raises
- Scheduler job registration
"""

from datetime import date, datetime

import pytest

from riskgov.config import settings
from riskgov.controls.instances import control_instance_store
from riskgov.controls.library import control_library
from riskgov.controls.schemas import (
    ControlInstanceCreate,
    EvidenceRequestCreate,
    EvidenceRequestStatus,
    EvidenceRequestUpdate,
)
from riskgov.db.repositories.controls import (
    attestation_repo,
    confidence_score_repo,
    evidence_request_repo,
)
from riskgov.db.repositories.risks import risk_repo
from riskgov.services.scheduler import EvidenceSweepScheduler, sweep_overdue_evidence

NOW = datetime(2026, 3, 10, 6, 0)


async def _overdue_requests(db, control_instance, manager):
    """Instance-scoped request 9 days late, critical D1 request 2 days late, one not yet due."""
    d1 = (await attestation_repo.for_instance(db, control_instance.id))[0]
    late = await control_instance_store.create_evidence_request(
        db, manager,
        EvidenceRequestCreate(control_instance_id=control_instance.id, due_date=date(2026, 3, 1)),
    )
    critical = await control_instance_store.create_evidence_request(
        db, manager, EvidenceRequestCreate(attestation_id=d1.id, due_date=date(2026, 3, 8)),
    )
    pending = await control_instance_store.create_evidence_request(
        db, manager,
        EvidenceRequestCreate(control_instance_id=control_instance.id, due_date=date(2026, 4, 1)),
    )
    return late, critical, pending


# ── Sweep ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_sweep_flags_and_recomputes(db, control_instance, manager):
    late, critical, pending = await _overdue_requests(db, control_instance, manager)

    report = await sweep_overdue_evidence(db, now=NOW)
    assert report.overdue == 2
    assert report.newly_flagged == 2
    assert report.controls_recomputed == 1

    assert late.overdue_flagged_at == NOW
    assert critical.overdue_flagged_at == NOW
    assert pending.overdue_flagged_at is None

    confidence = await confidence_score_repo.get(db, control_instance.id)
    penalty = [d for d in confidence.drivers if d["code"] == "overdue_penalty"]
    assert penalty[0]["points"] == -17.5
    assert penalty[0]["text"] == "Overdue evidence requests penalty (2 overdue)"


@pytest.mark.asyncio
async def test_sweep_is_idempotent(db, control_instance, manager):
    late, _, _ = await _overdue_requests(db, control_instance, manager)
    await sweep_overdue_evidence(db, now=NOW)

    again = await sweep_overdue_evidence(db, now=datetime(2026, 3, 10, 18, 0))
    assert again.overdue == 2
    assert again.newly_flagged == 0
    assert late.overdue_flagged_at == NOW


@pytest.mark.asyncio
async def test_sweep_ignores_closed_requests(db, control_instance, manager):
    late, critical, _ = await _overdue_requests(db, control_instance, manager)
    for request in (late, critical):
        await control_instance_store.update_evidence_request(
            db, manager, request.id,
            EvidenceRequestUpdate(status=EvidenceRequestStatus.SUBMITTED),
        )

    report = await sweep_overdue_evidence(db, now=NOW)
    assert report.overdue == 0
    assert report.controls_recomputed == 0


# ── Scheduler ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_run_sweep_commits(session_factory, org_id, manager):
    async with session_factory() as session:
        await control_library.seed(session)
        risk = await risk_repo.create(session, organization_id=org_id, code="R-100", title="Outsourcing", status="draft")
        instance = await control_instance_store.create(
            session, manager, ControlInstanceCreate(risk_id=risk.id, template_code="PCI-04"),
        )
        request = await control_instance_store.create_evidence_request(
            session, manager, EvidenceRequestCreate(control_instance_id=instance.id, due_date=date(2020, 1, 1)),
        )
        await session.commit()
        request_id = request.id

    report = await EvidenceSweepScheduler(session_factory).run_sweep()
    assert report is not None
    assert report.newly_flagged == 1

    async with session_factory() as session:
        stored = await evidence_request_repo.get_or_raise(session, request_id)
        assert stored.overdue_flagged_at is not None


@pytest.mark.asyncio
async def test_run_sweep_swallows_failures():
    def broken_factory():
        raise RuntimeError("database unavailable")

    assert await EvidenceSweepScheduler(broken_factory).run_sweep() is None


@pytest.mark.asyncio
async def test_scheduler_registers_job(session_factory):
    scheduler = EvidenceSweepScheduler(session_factory)
    assert scheduler.interval_minutes == settings.evidence_sweep_interval_minutes

    scheduler.start()
    try:
        job = scheduler.scheduler.get_job("evidence_sweep")
        assert job is not None
        assert job.trigger.interval.total_seconds() == settings.evidence_sweep_interval_minutes * 60
    finally:
        scheduler.stop()


def test_interval_override():
    assert EvidenceSweepScheduler(session_factory=None, interval_minutes=5).interval_minutes == 5
