# linkwatch/scans/worker.py

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.orm import Session, sessionmaker

from linkwatch.core.errors import NotFoundError
from linkwatch.notifications.webhook import build_notifier, notify_safely
from linkwatch.scans import jobs, runs
from linkwatch.scans.crawler import crawl_site
from linkwatch.scans.enums import JobStatus, ScanRunStatus
from linkwatch.scans.models import ScanJob, ScanRun
from linkwatch.sites.models import Site

logger = logging.getLogger(__name__)


def _resolve(db: Session, job: ScanJob) -> tuple[Site, ScanRun]:
    site = db.get(Site, job.site_id)
    if not site:
        raise NotFoundError(f"site {job.site_id} not found")

    if job.scan_run_id is None:
        run = runs.create_run(db, site.id, site.url)
        jobs.attach_run(db, job.id, run.id)
        return site, run

    run = runs.get_run(db, job.scan_run_id)
    if not run:
        raise NotFoundError(f"scan run {job.scan_run_id} not found")
    return site, run


def _log_job(event: str, job: ScanJob, **extra) -> None:
    tail = "".join(f" {k}={v}" for k, v in extra.items())
    logger.info(
        "%s job=%s site=%s run=%s attempts=%s/%s%s",
        event, job.id, job.site_id, job.scan_run_id, job.attempts, job.max_attempts, tail,
    )


def _run_job(db: Session, job: ScanJob, settings, client, notifier) -> None:
    worker_id = settings.worker_id

    try:
        site, run = _resolve(db, job)
    except NotFoundError as e:
        db.rollback()
        job = jobs.fail(db, job.id, str(e), retryable=False, worker_id=worker_id)
        _log_job("failed", job, error=e)
        return

    job = jobs.get_job(db, job.id)

    if not runs.mark_in_progress(db, run.id):
        status = runs.get_status(db, run.id)
        if status == ScanRunStatus.CANCELLED:
            jobs.cancel(db, job.id)
            _log_job("cancelled", job)
        else:
            job = jobs.fail(db, job.id, f"run already {getattr(status, 'value', 'gone')}", retryable=False, worker_id=worker_id)
            _log_job("failed", job, error=job.last_error)
        return

    _log_job("started", job, url=run.start_url)

    try:
        summary = crawl_site(db, site.id, run.start_url, run.id, settings, client=client)
    except Exception as e:
        db.rollback()
        logger.exception("crawl failed job=%s run=%s", job.id, run.id)
        job = jobs.fail(
            db, job.id, str(e) or e.__class__.__name__,
            backoff=settings.retry_backoff_seconds, worker_id=worker_id,
        )
        if job.status == JobStatus.FAILED:
            if runs.mark_failed(db, run.id, str(e) or e.__class__.__name__):
                notify_safely(notifier, runs.run_snapshot(runs.get_run(db, run.id)))
            _log_job("failed", job, error=job.last_error)
        elif job.status == JobStatus.QUEUED:
            runs.requeue_run(db, run.id, error=job.last_error)
            _log_job("requeued", job, run_at=job.run_at)
        return

    if summary.cancelled or runs.get_status(db, run.id) == ScanRunStatus.CANCELLED:
        jobs.cancel(db, job.id)
        _log_job("cancelled", job, pages=summary.pages_visited)
        return

    if not runs.mark_completed(db, run.id):
        status = runs.get_status(db, run.id)
        if status == ScanRunStatus.CANCELLED:
            jobs.cancel(db, job.id)
            _log_job("cancelled", job)
        else:
            # the reaper took the job back mid-crawl; the next claim re-crawls
            logger.warning(
                "lease lost job=%s site=%s run=%s worker=%s run_status=%s pages=%s",
                job.id, job.site_id, run.id, worker_id, getattr(status, "value", status), summary.pages_visited,
            )
        return

    job = jobs.complete(db, job.id, worker_id=worker_id)
    notify_safely(notifier, runs.run_snapshot(runs.get_run(db, run.id)))
    _log_job(
        "completed", job,
        pages=summary.pages_visited, links=summary.total_links,
        broken=summary.broken_links, ignored=summary.ignored_links,
    )


def process_next_job(session_factory: sessionmaker, settings, *, client=None, notifier=None) -> bool:
    """
    Claim one job and drive its run to a resting state.
    Returns False when there was nothing to claim.
    """
    db = session_factory()
    try:
        job = jobs.claim(db, settings.worker_id, settings.claim_lease_seconds)
        if not job:
            return False

        _log_job("claimed", job, worker=settings.worker_id)
        try:
            _run_job(db, job, settings, client, notifier)
        finally:
            db.rollback()
            latest = jobs.get_job(db, job.id)
            if latest and latest.status == JobStatus.CANCELLED and latest.scan_run_id:
                runs.force_cancelled(db, latest.scan_run_id)
        return True
    finally:
        db.close()


async def scans_worker_loop(session_factory: sessionmaker, settings, notifier=None):
    """
    Async loop + thread offloading
    """
    while True:
        try:
            worked = await asyncio.to_thread(process_next_job, session_factory, settings, notifier=notifier)
        except Exception:
            logger.exception("worker iteration failed worker=%s", settings.worker_id)
            worked = False

        if not worked:
            await asyncio.sleep(settings.idle_wait_seconds)


async def run_forever(settings, session_factory: sessionmaker) -> None:
    from linkwatch.scans.cleanup import reaper_loop
    from linkwatch.scans.scheduler import scheduler_loop

    notifier = build_notifier(settings)
    await asyncio.gather(
        scans_worker_loop(session_factory, settings, notifier),
        reaper_loop(session_factory, settings, notifier),
        scheduler_loop(session_factory, settings),
    )


def main() -> None:
    from linkwatch.core.config import load_settings
    from linkwatch.core.logging import configure_logging
    from linkwatch.db.init_db import init_db
    from linkwatch.db.session import create_session_factory

    configure_logging()
    settings = load_settings()
    session_factory = create_session_factory(settings.database_url)
    init_db(session_factory.kw["bind"])

    logger.info("worker starting worker=%s", settings.worker_id)
    try:
        asyncio.run(run_forever(settings, session_factory))
    except KeyboardInterrupt:
        logger.info("worker stopped worker=%s", settings.worker_id)


if __name__ == "__main__":
    main()
