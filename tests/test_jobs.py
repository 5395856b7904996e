import threading
from datetime import timedelta

from linkwatch.core.timeutil import as_utc, utcnow
from linkwatch.scans import jobs
from linkwatch.scans.enums import JobStatus


def _job(db, site, **kw):
    return jobs.enqueue(db, site_id=site.id, **kw)


class TestClaim:
    def test_claims_oldest_runnable_job(self, db, make_site):
        site = make_site()
        first = _job(db, site, run_at=utcnow() - timedelta(minutes=5))
        _job(db, site)

        claimed = jobs.claim(db, "w1", lease_seconds=60)

        assert claimed.id == first.id
        assert claimed.status == JobStatus.CLAIMED
        assert claimed.worker_id == "w1"
        assert claimed.attempts == 0
        assert as_utc(claimed.lease_expires_at) > utcnow()

    def test_future_jobs_are_not_claimable(self, db, make_site):
        site = make_site()
        _job(db, site, run_at=utcnow() + timedelta(minutes=5))

        assert jobs.claim(db, "w1", lease_seconds=60) is None

    def test_live_lease_is_not_claimable(self, db, make_site):
        site = make_site()
        _job(db, site)
        assert jobs.claim(db, "w1", lease_seconds=60) is not None
        assert jobs.claim(db, "w2", lease_seconds=60) is None

    def test_expired_lease_takeover_costs_an_attempt(self, db, make_site):
        site = make_site()
        job = _job(db, site)
        jobs.claim(db, "w1", lease_seconds=60)

        later = utcnow() + timedelta(seconds=120)
        taken = jobs.claim(db, "w2", lease_seconds=60, now=later)

        assert taken.id == job.id
        assert taken.worker_id == "w2"
        assert taken.attempts == 1
        assert taken.last_error == jobs.LEASE_EXPIRED

    def test_expired_lease_without_attempts_left_is_left_for_reaper(self, db, make_site):
        site = make_site()
        _job(db, site, max_attempts=1)
        jobs.claim(db, "w1", lease_seconds=60)

        assert jobs.claim(db, "w2", lease_seconds=60, now=utcnow() + timedelta(seconds=120)) is None

    def test_concurrent_claims_have_exactly_one_winner(self, session_factory, db, make_site):
        site = make_site()
        job = _job(db, site)

        workers = 8
        barrier = threading.Barrier(workers)
        results = []
        lock = threading.Lock()

        def worker(n):
            session = session_factory()
            try:
                barrier.wait()
                claimed = jobs.claim(session, f"w{n}", lease_seconds=60)
                with lock:
                    results.append(claimed.id if claimed else None)
            finally:
                session.close()

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if r is not None]
        assert len(results) == workers
        assert winners == [job.id]


class TestFail:
    def test_retry_exhaustion_goes_queued_queued_failed(self, db, make_site):
        site = make_site()
        job = _job(db, site, max_attempts=3)

        seen = []
        for _ in range(3):
            claimed = jobs.claim(db, "w1", lease_seconds=60)
            assert claimed is not None
            failed = jobs.fail(db, claimed.id, "boom", backoff=(0,))
            seen.append((failed.status, failed.attempts))

        assert seen == [
            (JobStatus.QUEUED, 1),
            (JobStatus.QUEUED, 2),
            (JobStatus.FAILED, 3),
        ]
        final = jobs.get_job(db, job.id)
        assert final.last_error == "boom"
        assert final.lease_expires_at is None
        assert jobs.claim(db, "w1", lease_seconds=60) is None

    def test_backoff_delays_the_retry(self, db, make_site):
        site = make_site()
        job = _job(db, site)
        jobs.claim(db, "w1", lease_seconds=60)

        failed = jobs.fail(db, job.id, "flaky", backoff=(30, 120))

        assert failed.status == JobStatus.QUEUED
        assert as_utc(failed.run_at) > utcnow() + timedelta(seconds=20)
        assert jobs.claim(db, "w1", lease_seconds=60) is None

    def test_non_retryable_fails_immediately(self, db, make_site):
        site = make_site()
        job = _job(db, site, max_attempts=5)
        jobs.claim(db, "w1", lease_seconds=60)

        failed = jobs.fail(db, job.id, "site gone", retryable=False)

        assert failed.status == JobStatus.FAILED
        assert failed.attempts == 1

    def test_fail_is_noop_on_terminal_job(self, db, make_site):
        site = make_site()
        job = _job(db, site)
        jobs.cancel(db, job.id)

        after = jobs.fail(db, job.id, "late error")

        assert after.status == JobStatus.CANCELLED
        assert after.attempts == 0

    def test_fail_by_previous_owner_is_ignored(self, db, make_site):
        site = make_site()
        job = _job(db, site)
        jobs.claim(db, "w1", lease_seconds=60)
        jobs.claim(db, "w2", lease_seconds=60, now=utcnow() + timedelta(seconds=120))

        after = jobs.fail(db, job.id, "stale worker", worker_id="w1")

        assert after.status == JobStatus.CLAIMED
        assert after.worker_id == "w2"
        assert after.attempts == 1


class TestCompleteAndCancel:
    def test_complete_clears_lease(self, db, make_site):
        site = make_site()
        job = _job(db, site)
        jobs.claim(db, "w1", lease_seconds=60)

        done = jobs.complete(db, job.id, worker_id="w1")

        assert done.status == JobStatus.COMPLETED
        assert done.lease_expires_at is None

    def test_complete_does_not_resurrect_cancelled_job(self, db, make_site):
        site = make_site()
        job = _job(db, site)
        jobs.claim(db, "w1", lease_seconds=60)
        jobs.cancel(db, job.id)

        assert jobs.complete(db, job.id).status == JobStatus.CANCELLED

    def test_cancel_works_from_any_state(self, db, make_site):
        site = make_site()
        queued = _job(db, site)
        assert jobs.cancel(db, queued.id).status == JobStatus.CANCELLED

    def test_active_job_lookup(self, db, make_site):
        site = make_site()
        assert not jobs.has_active_job_for_site(db, site.id)
        job = _job(db, site)
        assert jobs.has_active_job_for_site(db, site.id)
        jobs.complete(db, job.id)
        assert not jobs.has_active_job_for_site(db, site.id)


class TestRequeueExpired:
    def test_expired_lease_is_recovered_once(self, db, make_site):
        site = make_site()
        job = _job(db, site, max_attempts=3)
        jobs.claim(db, "w1", lease_seconds=60)
        later = utcnow() + timedelta(seconds=120)

        first = jobs.requeue_expired(db, now=later)
        second = jobs.requeue_expired(db, now=later)

        assert [j.id for j in first] == [job.id]
        assert second == []
        recovered = jobs.get_job(db, job.id)
        assert recovered.status == JobStatus.QUEUED
        assert recovered.attempts == 1
        assert recovered.last_error == jobs.LEASE_EXPIRED
        assert recovered.worker_id is None

    def test_exhausted_job_fails_on_expiry(self, db, make_site):
        site = make_site()
        job = _job(db, site, max_attempts=1)
        jobs.claim(db, "w1", lease_seconds=60)

        recovered = jobs.requeue_expired(db, now=utcnow() + timedelta(seconds=120))

        assert [j.status for j in recovered] == [JobStatus.FAILED]
        assert jobs.get_job(db, job.id).attempts == 1

    def test_live_leases_are_left_alone(self, db, make_site):
        site = make_site()
        _job(db, site)
        jobs.claim(db, "w1", lease_seconds=60)

        assert jobs.requeue_expired(db) == []
