from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session, sessionmaker

from linkwatch.core.timeutil import as_utc, utcnow
from linkwatch.scans import jobs, runs
from linkwatch.scans.enums import RUN_ACTIVE
from linkwatch.sites.models import Site
from linkwatch.sites.schedule import get_due_sites, mark_site_scheduled

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    due: int = 0
    enqueued: int = 0
    skipped: int = 0


def _skip_reason(db: Session, site: Site, now: datetime, cooldown: timedelta) -> str | None:
    last = as_utc(site.last_scheduled_at)
    if last is not None and now - last < cooldown:
        return "cooldown"

    latest = runs.latest_run_for_site(db, site.id)
    if latest is not None and latest.status in RUN_ACTIVE:
        return "run_active"

    if jobs.has_active_job_for_site(db, site.id):
        return "job_active"
    return None


def scheduler_tick(db: Session, settings, now: datetime | None = None) -> TickResult:
    """
    Enqueue one run + job for every due site that is not already busy, up to
    `scheduler_batch_size` per tick. Busy sites stay due and sort first, so
    they are paged past instead of filling the batch.
    """
    now = as_utc(now) or utcnow()
    cooldown = timedelta(seconds=settings.schedule_cooldown_seconds)
    batch = max(1, settings.scheduler_batch_size)
    result = TickResult()

    while result.enqueued < batch:
        # enqueued sites move past `now` and drop out; skipped ones keep their place
        due = get_due_sites(db, batch, now, offset=result.skipped)
        if not due:
            break

        for site in due:
            if result.enqueued >= batch:
                break
            result.due += 1

            reason = _skip_reason(db, site, now, cooldown)
            if reason:
                result.skipped += 1
                logger.debug("schedule skipped site=%s reason=%s", site.id, reason)
                continue

            run = runs.create_run(db, site.id, site.url, commit=False)
            job = jobs.enqueue(
                db,
                site_id=site.id,
                scan_run_id=run.id,
                run_at=now,
                max_attempts=settings.job_max_attempts,
                commit=False,
            )
            mark_site_scheduled(db, site, now)
            db.commit()

            result.enqueued += 1
            logger.info("scheduled site=%s run=%s job=%s next=%s", site.id, run.id, job.id, site.next_scheduled_at)

        if len(due) < batch:
            break

    if result.due:
        logger.info("scheduler tick due=%s enqueued=%s skipped=%s", result.due, result.enqueued, result.skipped)
    return result


async def scheduler_loop(session_factory: sessionmaker, settings):
    while True:
        db = session_factory()
        try:
            await asyncio.to_thread(scheduler_tick, db, settings)
        except Exception:
            db.rollback()
            logger.exception("scheduler tick failed")
        finally:
            db.close()
        await asyncio.sleep(settings.scheduler_interval_seconds)
