"""
Scheduler Entry Point — runs in a separate container.

Usage:
    python -m riskgov.scheduler_main

This does NOT run a web server. It runs the APScheduler
background loop for the overdue evidence sweep.
"""

import asyncio
import signal

import structlog

from riskgov.config import settings
from riskgov.db.engine import close_db, get_session_factory, init_db
from riskgov.main import configure_logging
from riskgov.services.scheduler import EvidenceSweepScheduler

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the scheduler."""
    configure_logging()
    logger.info("scheduler_starting", version=settings.app_version)

    await init_db()
    scheduler = EvidenceSweepScheduler(session_factory=get_session_factory())

    # Run one sweep on startup
    logger.info("running_initial_sweep")
    await scheduler.run_sweep()

    scheduler.start()

    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running", msg="Waiting for jobs... Ctrl+C to stop.")
    await stop_event.wait()

    scheduler.stop()
    await close_db()
    logger.info("scheduler_shutdown_complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
