"""
Crawl one site for one scan run.

Pages are fetched one at a time (BFS, bounded by page count and depth); the
links found on a page are checked on a small thread pool, then recorded on
the crawling thread so every DB write stays on one session.
"""

from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial

import httpx
from sqlalchemy.orm import Session

from linkwatch.core.errors import CrawlError
from linkwatch.ignores.rules import list_rules_for_site
from linkwatch.scans import runs
from linkwatch.scans.classify import classify_status
from linkwatch.scans.enums import ScanRunStatus
from linkwatch.scans.extract import (
    canonical_url,
    extract_links,
    looks_like_asset,
    normalize_link,
    origin_of,
    same_origin,
)
from linkwatch.scans.links import IGNORED, count_run_links, record_sighting, stored_urls
from linkwatch.scans.models import ScanIgnoredLink
from linkwatch.sites.utils import normalize_url
from linkwatch.ssrf.http import check_link, fetch_page, make_client

logger = logging.getLogger(__name__)


@dataclass
class CrawlSummary:
    scan_run_id: int
    pages_visited: int = 0
    total_links: int = 0
    checked_links: int = 0
    broken_links: int = 0
    ignored_links: int = 0
    cancelled: bool = False


def _start_url(raw: str) -> str:
    try:
        return canonical_url(normalize_url(raw))
    except ValueError as e:
        raise CrawlError(f"invalid start url: {raw!r}") from e


def crawl_site(
    db: Session,
    site_id: int,
    start_url: str,
    scan_run_id: int,
    settings,
    client: httpx.Client | None = None,
) -> CrawlSummary:
    start = _start_url(start_url)

    own_client = client is None
    if own_client:
        client = make_client(settings)
    try:
        return _crawl(db, site_id, start, scan_run_id, settings, client)
    finally:
        if own_client:
            client.close()


def _crawl(db: Session, site_id: int, start: str, scan_run_id: int, settings, client: httpx.Client) -> CrawlSummary:
    rules = list_rules_for_site(db, site_id, enabled_only=True)
    origin = origin_of(start)
    max_pages = max(1, settings.crawl_max_pages)
    max_depth = max(0, settings.crawl_max_depth)

    # verdicts survive a retried attempt: first sighting wins
    verdicts: dict[str, tuple] = {}
    ignored_urls: set[str] = set()
    for url, row in stored_urls(db, scan_run_id).items():
        verdicts[url] = (row.classification, row.status_code, row.error_message)
        if isinstance(row, ScanIgnoredLink):
            ignored_urls.add(url)

    summary = CrawlSummary(scan_run_id=scan_run_id)
    frontier: deque[tuple[str, int]] = deque([(start, 0)])
    queued = {start}
    # requested and post-redirect URLs of every fetched page
    visited: set[str] = set()
    pages = 0
    check = partial(check_link, client, retry_delays=settings.link_retry_delays)

    with ThreadPoolExecutor(max_workers=max(1, settings.link_concurrency)) as pool:
        while frontier and pages < max_pages:
            if runs.get_status(db, scan_run_id) == ScanRunStatus.CANCELLED:
                summary.cancelled = True
                logger.info("crawl stopped run=%s reason=cancelled pages=%s", scan_run_id, pages)
                break

            page_url, depth = frontier.popleft()
            if page_url in visited:
                continue
            visited.add(page_url)
            pages += 1

            page = fetch_page(client, page_url, timeout=settings.page_timeout_seconds)
            if page.html is None:
                logger.info(
                    "page skipped run=%s url=%s status=%s error=%s",
                    scan_run_id, page_url, page.status_code, page.error,
                )
                continue

            base = canonical_url(page.final_url or page_url)
            if base != page_url:
                if pages == 1:
                    # the start page decides the crawl origin, e.g. after http -> https
                    origin = origin_of(base)
                elif base in visited or not same_origin(base, origin):
                    logger.info("page skipped run=%s url=%s redirected_to=%s", scan_run_id, page_url, base)
                    continue
                visited.add(base)

            page_links: list[str] = []
            for href in extract_links(page.html):
                url = normalize_link(href, base)
                if url and url not in page_links:
                    page_links.append(url)

            to_check = [u for u in page_links if u not in verdicts]
            for url, result in zip(to_check, pool.map(check, to_check)):
                verdicts[url] = (classify_status(url, result.status_code), result.status_code, result.error)

            for url in page_links:
                classification, status_code, error = verdicts[url]
                sighting = record_sighting(
                    db,
                    scan_run_id=scan_run_id,
                    link_url=url,
                    source_page=base,
                    classification=classification,
                    status_code=status_code,
                    error_message=error,
                    rules=rules,
                    site_id=site_id,
                )
                if sighting.bucket == IGNORED:
                    ignored_urls.add(url)

                if (
                    url not in ignored_urls
                    and depth < max_depth
                    and url not in visited
                    and url not in queued
                    and same_origin(url, origin)
                    and not looks_like_asset(url)
                    and pages + len(frontier) < max_pages
                ):
                    frontier.append((url, depth + 1))
                    queued.add(url)

            counts = count_run_links(db, scan_run_id)
            runs.update_progress(
                db, scan_run_id, counts["total"], counts["checked"], counts["broken"], commit=False
            )
            db.commit()
            logger.debug(
                "page done run=%s url=%s depth=%s links=%s checked_now=%s",
                scan_run_id, base, depth, len(page_links), len(to_check),
            )

    counts = count_run_links(db, scan_run_id)
    runs.update_progress(db, scan_run_id, counts["total"], counts["checked"], counts["broken"])

    summary.pages_visited = pages
    summary.total_links = counts["total"]
    summary.checked_links = counts["checked"]
    summary.broken_links = counts["broken"]
    summary.ignored_links = counts["ignored"]
    return summary
