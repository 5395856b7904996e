"""
Durable scan job queue.

Every state change is a conditional UPDATE (compare-and-set) against the row,
so concurrent workers and reapers coordinate through the database only:

    queued  -> claimed -> completed | cancelled
    claimed -> queued             (fail with attempts left, or lease expiry)
    queued/claimed -> failed      (attempts exhausted, or non-retryable error)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import and_, case, or_, update
from sqlalchemy.orm import Session

from linkwatch.core.errors import ConflictError
from linkwatch.core.timeutil import utcnow
from linkwatch.scans.enums import JobStatus, JOB_ACTIVE, JOB_TERMINAL
from linkwatch.scans.models import ScanJob

logger = logging.getLogger(__name__)

LEASE_EXPIRED = "lease_expired"
DEFAULT_BACKOFF_SECONDS = (30, 120, 600)

# how many candidates one claim call will race for before giving up
CLAIM_CANDIDATES = 5
MAX_ERROR_LEN = 2000


def enqueue(
    db: Session,
    *,
    site_id: int,
    scan_run_id: int | None = None,
    run_at: datetime | None = None,
    max_attempts: int = 3,
    commit: bool = True,
) -> ScanJob:
    job = ScanJob(
        site_id=site_id,
        scan_run_id=scan_run_id,
        status=JobStatus.QUEUED,
        attempts=0,
        max_attempts=max(1, int(max_attempts)),
        run_at=run_at or utcnow(),
    )
    db.add(job)
    if commit:
        db.commit()
        db.refresh(job)
    else:
        db.flush()
    return job


def get_job(db: Session, job_id: int) -> ScanJob | None:
    return db.get(ScanJob, job_id, populate_existing=True)


def get_job_for_run(db: Session, scan_run_id: int) -> ScanJob | None:
    return (
        db.query(ScanJob)
        .filter(ScanJob.scan_run_id == scan_run_id)
        .order_by(ScanJob.id.desc())
        .populate_existing()
        .first()
    )


def has_active_job_for_site(db: Session, site_id: int) -> bool:
    return (
        db.query(ScanJob.id)
        .filter(ScanJob.site_id == site_id, ScanJob.status.in_(list(JOB_ACTIVE)))
        .first()
        is not None
    )


def attach_run(db: Session, job_id: int, scan_run_id: int) -> None:
    db.execute(
        update(ScanJob)
        .where(ScanJob.id == job_id)
        .values(scan_run_id=scan_run_id, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _claimable(now: datetime):
    # an expired lease may only be taken over while an attempt is left for it;
    # otherwise the reaper fails the job
    return or_(
        and_(ScanJob.status == JobStatus.QUEUED, ScanJob.run_at <= now),
        and_(
            ScanJob.status == JobStatus.CLAIMED,
            ScanJob.lease_expires_at.isnot(None),
            ScanJob.lease_expires_at < now,
            ScanJob.attempts + 1 < ScanJob.max_attempts,
        ),
    )


def claim(db: Session, worker_id: str, lease_seconds: int, now: datetime | None = None) -> ScanJob | None:
    """
    Claim the oldest runnable job for `worker_id`.

    Each candidate is taken with a single conditional UPDATE that re-checks
    claimability, so of N concurrent callers racing for one job exactly one
    sees rowcount == 1.
    """
    now = now or utcnow()
    lease_until = now + timedelta(seconds=lease_seconds)

    candidate_ids = [
        row.id
        for row in db.query(ScanJob.id)
        .filter(_claimable(now))
        .order_by(ScanJob.run_at.asc(), ScanJob.id.asc())
        .limit(CLAIM_CANDIDATES)
        .all()
    ]

    taking_over = ScanJob.status == JobStatus.CLAIMED
    for job_id in candidate_ids:
        result = db.execute(
            update(ScanJob)
            .where(ScanJob.id == job_id, _claimable(now))
            .values(
                status=JobStatus.CLAIMED,
                worker_id=worker_id,
                lease_expires_at=lease_until,
                attempts=case((taking_over, ScanJob.attempts + 1), else_=ScanJob.attempts),
                last_error=case((taking_over, LEASE_EXPIRED), else_=ScanJob.last_error),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount == 1:
            return get_job(db, job_id)

    return None


def complete(db: Session, job_id: int, *, worker_id: str | None = None) -> ScanJob | None:
    """Mark completed. No-op for terminal jobs (or jobs no longer held by `worker_id`)."""
    conds = [ScanJob.id == job_id, ScanJob.status.notin_(list(JOB_TERMINAL))]
    if worker_id is not None:
        conds += [ScanJob.status == JobStatus.CLAIMED, ScanJob.worker_id == worker_id]

    db.execute(
        update(ScanJob)
        .where(*conds)
        .values(status=JobStatus.COMPLETED, lease_expires_at=None, last_error=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return get_job(db, job_id)


def _backoff_for(attempts: int, schedule) -> float:
    if not schedule:
        return 0
    return float(schedule[min(attempts, len(schedule)) - 1])


def _record_failure(
    db: Session,
    job: ScanJob,
    error: str,
    *,
    retryable: bool,
    backoff,
    now: datetime,
    expired_only: bool = False,
    worker_id: str | None = None,
) -> bool:
    attempts = min(job.attempts + 1, job.max_attempts)

    if retryable and attempts < job.max_attempts:
        values = {"status": JobStatus.QUEUED, "run_at": now + timedelta(seconds=_backoff_for(attempts, backoff))}
    else:
        values = {"status": JobStatus.FAILED}

    conds = [ScanJob.id == job.id, ScanJob.status == job.status, ScanJob.attempts == job.attempts]
    if expired_only:
        conds += [ScanJob.status == JobStatus.CLAIMED, ScanJob.lease_expires_at < now]
    if worker_id is not None:
        conds += [ScanJob.status == JobStatus.CLAIMED, ScanJob.worker_id == worker_id]

    result = db.execute(
        update(ScanJob)
        .where(*conds)
        .values(
            attempts=attempts,
            last_error=(error or "unknown error")[:MAX_ERROR_LEN],
            worker_id=None,
            lease_expires_at=None,
            updated_at=now,
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def fail(
    db: Session,
    job_id: int,
    error: str,
    *,
    retryable: bool = True,
    backoff=DEFAULT_BACKOFF_SECONDS,
    worker_id: str | None = None,
    now: datetime | None = None,
) -> ScanJob | None:
    """
    Record one failed attempt. Back to `queued` (after backoff) while attempts
    remain and the error is retryable, `failed` otherwise. Terminal jobs are
    returned untouched.
    """
    for _ in range(5):
        job = get_job(db, job_id)
        if job is None:
            return None
        if job.status.is_terminal:
            return job
        if worker_id is not None and (job.status != JobStatus.CLAIMED or job.worker_id != worker_id):
            # lease lapsed and someone else owns it now
            return job
        if _record_failure(
            db, job, error, retryable=retryable, backoff=backoff, now=now or utcnow(), worker_id=worker_id
        ):
            return get_job(db, job_id)

    raise ConflictError(f"job {job_id} kept changing while recording a failure")


def cancel(db: Session, job_id: int) -> ScanJob | None:
    db.execute(
        update(ScanJob)
        .where(ScanJob.id == job_id)
        .values(status=JobStatus.CANCELLED, lease_expires_at=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return get_job(db, job_id)


def requeue_expired(db: Session, now: datetime | None = None) -> list[ScanJob]:
    """
    Reaper pass: every claimed job whose lease has passed counts as one failed
    attempt (requeued immediately, or failed once exhausted). A recovery is a
    compare-and-set on the expired lease, so a lapse is only ever counted once.
    """
    now = now or utcnow()
    expired = (
        db.query(ScanJob)
        .filter(ScanJob.status == JobStatus.CLAIMED)
        .filter(ScanJob.lease_expires_at.isnot(None))
        .filter(ScanJob.lease_expires_at < now)
        .order_by(ScanJob.id.asc())
        .populate_existing()
        .all()
    )

    recovered: list[ScanJob] = []
    for job in expired:
        if _record_failure(db, job, LEASE_EXPIRED, retryable=True, backoff=(), now=now, expired_only=True):
            recovered.append(get_job(db, job.id))
    return recovered
