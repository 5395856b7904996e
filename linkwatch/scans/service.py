from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from linkwatch.core.errors import ConflictError, NotFoundError
from linkwatch.core.pagination import Page, paginate
from linkwatch.scans import jobs, runs
from linkwatch.scans.enums import RUN_ACTIVE
from linkwatch.scans.models import ScanJob, ScanRun
from linkwatch.sites.models import Site

logger = logging.getLogger(__name__)


def get_site(db: Session, site_id: int) -> Site:
    site = db.get(Site, site_id)
    if not site:
        raise NotFoundError("site_not_found")
    return site


def _ensure_idle(db: Session, site_id: int) -> None:
    latest = runs.latest_run_for_site(db, site_id)
    if latest is not None and latest.status in RUN_ACTIVE:
        raise ConflictError(f"scan already {latest.status.value} (run {latest.id})")
    if jobs.has_active_job_for_site(db, site_id):
        raise ConflictError("a scan job is already pending for this site")


def _start(db: Session, site: Site, start_url: str, settings) -> tuple[ScanRun, ScanJob]:
    run = runs.create_run(db, site.id, start_url, commit=False)
    job = jobs.enqueue(
        db, site_id=site.id, scan_run_id=run.id, max_attempts=settings.job_max_attempts, commit=False
    )
    db.commit()
    db.refresh(run)
    db.refresh(job)
    return run, job


def trigger_scan(db: Session, site_id: int, settings) -> tuple[ScanRun, ScanJob]:
    site = get_site(db, site_id)
    _ensure_idle(db, site.id)
    run, job = _start(db, site, site.url, settings)
    logger.info("scan triggered site=%s run=%s job=%s", site.id, run.id, job.id)
    return run, job


def cancel_scan_run(db: Session, run_id: int) -> ScanRun:
    run = runs.require_run(db, run_id)
    if run.status.is_terminal:
        raise ConflictError(f"scan run already {run.status.value}")
    if not runs.cancel_run(db, run_id):
        raise ConflictError("scan run finished before it could be cancelled")
    return runs.get_run(db, run_id)


def retry_scan_run(db: Session, run_id: int, settings) -> tuple[ScanRun, ScanJob]:
    """A terminal run is retried as a fresh run (and job) for the same site and start URL."""
    old = runs.require_run(db, run_id)
    if not old.status.is_terminal:
        raise ConflictError(f"scan run is still {old.status.value}")

    site = get_site(db, old.site_id)
    _ensure_idle(db, site.id)
    run, job = _start(db, site, old.start_url, settings)
    logger.info("scan retried site=%s from_run=%s run=%s job=%s", site.id, old.id, run.id, job.id)
    return run, job


def list_runs(db: Session, site_id: int, *, limit: int | None = None, offset: int = 0) -> Page:
    get_site(db, site_id)
    q = (
        db.query(ScanRun)
        .filter(ScanRun.site_id == site_id)
        .order_by(ScanRun.created_at.desc(), ScanRun.id.desc())
    )
    return paginate(q, limit=limit, offset=offset, default_limit=20)
