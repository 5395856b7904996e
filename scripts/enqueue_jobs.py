#!/usr/bin/env python3
"""
Enqueue N scan jobs for a site (no run attached; the worker creates one).

    python scripts/enqueue_jobs.py --site-id 1 --count 5
"""
from __future__ import annotations

import argparse
import sys
from datetime import timedelta

from linkwatch.core.config import load_settings
from linkwatch.core.logging import configure_logging
from linkwatch.core.timeutil import utcnow
from linkwatch.db.init_db import init_db
from linkwatch.db.session import create_session_factory
from linkwatch.scans import jobs
from linkwatch.sites.models import Site


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Enqueue test scan jobs for a site.")
    parser.add_argument("--site-id", type=int, required=True, help="Site to enqueue jobs for")
    parser.add_argument("--count", type=int, default=5, help="Number of jobs (default: 5)")
    parser.add_argument("--spacing", type=float, default=1.0, help="Seconds between run_at values (default: 1)")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    args = parser.parse_args(argv)
    if args.count <= 0:
        parser.error(f"--count must be a positive number (got {args.count})")
    return args


def main(argv=None, session_factory=None) -> int:
    args = parse_args(argv)
    settings = load_settings()

    if session_factory is None:
        session_factory = create_session_factory(args.database_url or settings.database_url)
        init_db(session_factory.kw["bind"])

    db = session_factory()
    try:
        if not db.get(Site, args.site_id):
            print(f"Site not found: {args.site_id}", file=sys.stderr)
            return 1

        now = utcnow()
        job_ids = []
        for i in range(args.count):
            job = jobs.enqueue(
                db,
                site_id=args.site_id,
                run_at=now + timedelta(seconds=i * args.spacing),
                max_attempts=settings.job_max_attempts,
            )
            job_ids.append(job.id)
    finally:
        db.close()

    print(f"Enqueued {len(job_ids)} jobs for site={args.site_id}")
    for job_id in job_ids:
        print(f"- {job_id}")
    return 0


if __name__ == "__main__":
    configure_logging()
    sys.exit(main())
