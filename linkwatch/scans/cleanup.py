from __future__ import annotations

import asyncio
import logging

from sqlalchemy.orm import Session, sessionmaker

from linkwatch.notifications.webhook import notify_safely
from linkwatch.scans import jobs, runs
from linkwatch.scans.enums import JobStatus

logger = logging.getLogger(__name__)


def reap_expired_jobs(db: Session, notifier=None) -> dict:
    """
    Recover jobs whose worker vanished (lease passed) and move their runs
    along: back to queued while attempts remain, failed once exhausted.
    """
    recovered = jobs.requeue_expired(db)

    requeued = 0
    failed = 0
    for job in recovered:
        if job.status == JobStatus.QUEUED:
            requeued += 1
            if job.scan_run_id:
                runs.requeue_run(db, job.scan_run_id, error=jobs.LEASE_EXPIRED)
            logger.info(
                "abandoned-recovered job=%s site=%s run=%s attempts=%s/%s",
                job.id, job.site_id, job.scan_run_id, job.attempts, job.max_attempts,
            )
        elif job.status == JobStatus.FAILED:
            failed += 1
            if job.scan_run_id and runs.mark_failed(db, job.scan_run_id, jobs.LEASE_EXPIRED):
                notify_safely(notifier, runs.run_snapshot(runs.get_run(db, job.scan_run_id)))
            logger.warning(
                "failed job=%s site=%s run=%s reason=lease_expired attempts=%s/%s",
                job.id, job.site_id, job.scan_run_id, job.attempts, job.max_attempts,
            )

    return {"requeued": requeued, "failed": failed}


async def reaper_loop(session_factory: sessionmaker, settings, notifier=None):
    while True:
        db = session_factory()
        try:
            result = await asyncio.to_thread(reap_expired_jobs, db, notifier)
            if result["requeued"] or result["failed"]:
                logger.info("reaper: %s", result)
        except Exception:
            db.rollback()
            logger.exception("reaper pass failed")
        finally:
            db.close()
        await asyncio.sleep(settings.reaper_interval_seconds)
