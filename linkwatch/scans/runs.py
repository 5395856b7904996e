"""
Scan run lifecycle.

    queued -> in_progress -> completed | failed | cancelled
    in_progress -> queued   (retryable failure, same run id)
    queued -> cancelled | failed

All moves go through `transition`, a conditional UPDATE on the current
status, so a run that somebody else already finished is never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from linkwatch.core.errors import NotFoundError
from linkwatch.core.timeutil import utcnow, iso
from linkwatch.scans import jobs
from linkwatch.scans.enums import ScanRunStatus, RUN_ACTIVE
from linkwatch.scans.models import ScanRun

logger = logging.getLogger(__name__)

_KEEP = object()


def create_run(db: Session, site_id: int, start_url: str, *, commit: bool = True) -> ScanRun:
    run = ScanRun(site_id=site_id, start_url=start_url, status=ScanRunStatus.QUEUED)
    db.add(run)
    if commit:
        db.commit()
        db.refresh(run)
    else:
        db.flush()
    return run


def get_run(db: Session, run_id: int) -> ScanRun | None:
    return db.get(ScanRun, run_id, populate_existing=True)


def require_run(db: Session, run_id: int) -> ScanRun:
    run = get_run(db, run_id)
    if not run:
        raise NotFoundError("scan_run_not_found")
    return run


def get_status(db: Session, run_id: int) -> ScanRunStatus | None:
    return db.query(ScanRun.status).filter(ScanRun.id == run_id).scalar()


def latest_run_for_site(db: Session, site_id: int) -> ScanRun | None:
    return (
        db.query(ScanRun)
        .filter(ScanRun.site_id == site_id)
        .order_by(ScanRun.created_at.desc(), ScanRun.id.desc())
        .populate_existing()
        .first()
    )


def transition(
    db: Session,
    run_id: int,
    to: ScanRunStatus,
    from_states,
    *,
    error_message=_KEEP,
    started_at=None,
    commit: bool = True,
) -> bool:
    """Move the run to `to` if its status is in `from_states`. Returns whether it moved."""
    to = ScanRunStatus(to)
    now = utcnow()
    values = {
        "status": to,
        "updated_at": now,
        "finished_at": now if to.is_terminal else None,
    }
    if error_message is not _KEEP:
        values["error_message"] = error_message[:2000] if error_message else error_message
    if started_at is not None:
        values["started_at"] = started_at

    result = db.execute(
        update(ScanRun)
        .where(ScanRun.id == run_id, ScanRun.status.in_([ScanRunStatus(s) for s in from_states]))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if commit:
        db.commit()
    return result.rowcount == 1


def mark_in_progress(db: Session, run_id: int) -> bool:
    return transition(
        db,
        run_id,
        ScanRunStatus.IN_PROGRESS,
        (ScanRunStatus.QUEUED, ScanRunStatus.IN_PROGRESS),
        error_message=None,
        started_at=utcnow(),
    )


def mark_completed(db: Session, run_id: int) -> bool:
    # only from in_progress: a cancel that landed first wins
    return transition(db, run_id, ScanRunStatus.COMPLETED, (ScanRunStatus.IN_PROGRESS,))


def mark_failed(db: Session, run_id: int, error: str) -> bool:
    return transition(db, run_id, ScanRunStatus.FAILED, RUN_ACTIVE, error_message=error or "unknown error")


def requeue_run(db: Session, run_id: int, error: str | None = None) -> bool:
    return transition(db, run_id, ScanRunStatus.QUEUED, (ScanRunStatus.IN_PROGRESS,), error_message=error)


def cancel_run(db: Session, run_id: int) -> bool:
    """External cancel: stops a queued/in-progress run and its live job."""
    moved = transition(db, run_id, ScanRunStatus.CANCELLED, RUN_ACTIVE)
    if moved:
        job = jobs.get_job_for_run(db, run_id)
        if job and not job.status.is_terminal:
            jobs.cancel(db, job.id)
        logger.info("cancelled run=%s", run_id)
    return moved


def force_cancelled(db: Session, run_id: int) -> bool:
    return transition(db, run_id, ScanRunStatus.CANCELLED, RUN_ACTIVE)


def update_progress(db: Session, run_id: int, total: int, checked: int, broken: int, *, commit: bool = True) -> None:
    """Counters only ever move up."""
    db.execute(
        update(ScanRun)
        .where(ScanRun.id == run_id)
        .values(
            total_links=case((ScanRun.total_links < total, total), else_=ScanRun.total_links),
            checked_links=case((ScanRun.checked_links < checked, checked), else_=ScanRun.checked_links),
            broken_links=case((ScanRun.broken_links < broken, broken), else_=ScanRun.broken_links),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if commit:
        db.commit()


def run_snapshot(run: ScanRun) -> dict:
    return {
        "id": run.id,
        "site_id": run.site_id,
        "status": ScanRunStatus(run.status).value,
        "start_url": run.start_url,
        "created_at": iso(run.created_at),
        "started_at": iso(run.started_at),
        "finished_at": iso(run.finished_at),
        "updated_at": iso(run.updated_at),
        "total_links": run.total_links,
        "checked_links": run.checked_links,
        "broken_links": run.broken_links,
        "error_message": run.error_message,
    }
