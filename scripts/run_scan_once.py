#!/usr/bin/env python3
"""
Run one scan synchronously, outside the queue.

    python scripts/run_scan_once.py --site-id 1 [--start-url https://example.com/]
"""
from __future__ import annotations

import argparse
import sys

from linkwatch.core.config import load_settings
from linkwatch.core.logging import configure_logging
from linkwatch.db.init_db import init_db
from linkwatch.db.session import create_session_factory
from linkwatch.scans import runs
from linkwatch.scans.crawler import crawl_site
from linkwatch.sites.models import Site


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crawl one site now and print the summary.")
    parser.add_argument("--site-id", type=int, required=True)
    parser.add_argument("--start-url", default=None, help="Defaults to the site's URL")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    return parser.parse_args(argv)


def main(argv=None, session_factory=None, settings=None, client=None) -> int:
    args = parse_args(argv)
    settings = settings or load_settings()

    if session_factory is None:
        session_factory = create_session_factory(args.database_url or settings.database_url)
        init_db(session_factory.kw["bind"])

    db = session_factory()
    try:
        site = db.get(Site, args.site_id)
        if not site:
            print(f"Site not found: {args.site_id}", file=sys.stderr)
            return 1

        start_url = args.start_url or site.url
        print(f"Starting scan for site {site.id}")
        print(f"Start URL: {start_url}")

        run = runs.create_run(db, site.id, start_url)
        runs.mark_in_progress(db, run.id)
        try:
            summary = crawl_site(db, site.id, start_url, run.id, settings, client=client)
        except Exception as e:
            db.rollback()
            runs.mark_failed(db, run.id, str(e) or e.__class__.__name__)
            print(f"Scan failed: {e}", file=sys.stderr)
            return 1

        if summary.cancelled:
            print(f"Scan cancelled. Run: {run.id}")
            return 0

        runs.mark_completed(db, run.id)
        print("Scan completed.")
        print(
            f"Run: {run.id}, pages={summary.pages_visited}, total={summary.total_links}, "
            f"checked={summary.checked_links}, broken={summary.broken_links}, ignored={summary.ignored_links}"
        )
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    sys.exit(main())
