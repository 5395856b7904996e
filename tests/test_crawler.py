from dataclasses import replace

import pytest

from linkwatch.core.errors import CrawlError
from linkwatch.ignores.rules import create_rule
from linkwatch.scans import runs
from linkwatch.scans.crawler import crawl_site
from linkwatch.scans.enums import LinkClassification
from linkwatch.scans.links import count_run_links, find_active, find_ignored
from linkwatch.scans.models import ScanLink

ROOT = "https://site.test/"
EXT = "https://ext.test/x"


@pytest.fixture
def crawl(db, settings, make_site, web):
    """Run a crawl of site.test against the fake web and return (site, run, summary)."""

    def _crawl(cfg=None, site=None, run=None):
        cfg = cfg or settings
        site = site or make_site(ROOT)
        run = run or runs.create_run(db, site.id, site.url)
        client = web.client(cfg)
        try:
            summary = crawl_site(db, site.id, site.url, run.id, cfg, client=client)
        finally:
            client.close()
        return site, run, summary

    return _crawl


def _active_urls(db, run_id):
    return sorted(u for (u,) in db.query(ScanLink.link_url).filter(ScanLink.scan_run_id == run_id).all())


class TestCrawlSmallSite:
    def test_links_are_deduplicated_with_occurrences(self, db, crawl, small_site):
        _, run, summary = crawl()

        assert summary.pages_visited == 4
        assert summary.total_links == 5
        assert summary.broken_links == 1
        assert summary.ignored_links == 0
        assert not summary.cancelled

        assert _active_urls(db, run.id) == sorted([
            ROOT, ROOT + "a", ROOT + "b", ROOT + "missing", EXT,
        ])
        ext = find_active(db, run.id, EXT)
        assert ext.classification == LinkClassification.OK
        assert ext.occurrence_count == 3
        assert sorted(o.source_page for o in ext.occurrences) == [ROOT, ROOT + "a", ROOT + "b"]

        missing = find_active(db, run.id, ROOT + "missing")
        assert missing.classification == LinkClassification.BROKEN
        assert missing.status_code == 404
        assert missing.error_message == "HTTP 404"

    def test_run_counters_match_stored_links(self, db, crawl, small_site):
        _, run, _ = crawl()

        fresh = runs.get_run(db, run.id)
        assert (fresh.total_links, fresh.checked_links, fresh.broken_links) == (5, 5, 1)

    def test_each_link_is_checked_once(self, crawl, small_site):
        crawl()

        assert small_site.count("HEAD", EXT) == 1
        assert small_site.count("HEAD", ROOT + "b") == 1
        assert small_site.count("GET", ROOT + "b") == 1

    def test_noise_hrefs_are_skipped(self, db, crawl, small_site):
        _, run, _ = crawl()

        urls = _active_urls(db, run.id)
        assert not any(u.startswith("mailto:") for u in urls)
        assert not any("#" in u for u in urls)


class TestCrawlVerdicts:
    def test_unreachable_and_forbidden_links(self, db, crawl, web):
        web.page(ROOT, "https://down.test/", "/private")
        web.unreachable("https://down.test/")
        web.status(ROOT + "private", 403)

        _, run, summary = crawl()

        down = find_active(db, run.id, "https://down.test/")
        assert down.classification == LinkClassification.NO_RESPONSE
        assert down.status_code is None
        assert down.error_message

        private = find_active(db, run.id, ROOT + "private")
        assert private.classification == LinkClassification.BLOCKED
        assert private.status_code == 403
        assert web.count("GET", ROOT + "private") >= 1
        assert summary.broken_links == 0

    def test_invalid_start_url(self, db, settings, make_site, web):
        site = make_site(ROOT)
        run = runs.create_run(db, site.id, site.url)

        with pytest.raises(CrawlError):
            crawl_site(db, site.id, "   ", run.id, settings, client=web.client(settings))


class TestCrawlUrlForms:
    def test_case_port_and_slash_variants_are_one_link(self, db, crawl, make_site, web):
        web.page(ROOT, "https://SITE.test/a", "/a", "https://site.test", "HTTPS://site.test:443/#top")
        web.page(ROOT + "a")

        _, run, summary = crawl(site=make_site("https://SITE.test"))

        assert _active_urls(db, run.id) == [ROOT, ROOT + "a"]
        assert summary.total_links == 2
        assert summary.pages_visited == 2
        assert web.count("GET", ROOT) == 1
        assert web.count("GET", ROOT + "a") == 1
        assert web.count("HEAD", ROOT) == 1

    def test_relative_links_resolve_against_redirect_target(self, db, crawl, make_site, web):
        web.redirect(ROOT + "docs", "/docs/")
        web.page(ROOT + "docs/", "intro")
        web.status(ROOT + "docs/intro", 200)

        _, run, summary = crawl(site=make_site(ROOT + "docs"))

        rows = [
            (l.link_url, l.classification, l.status_code)
            for l in db.query(ScanLink).filter(ScanLink.scan_run_id == run.id).all()
        ]
        assert rows == [(ROOT + "docs/intro", LinkClassification.OK, 200)]
        assert [o.source_page for o in find_active(db, run.id, ROOT + "docs/intro").occurrences] == [ROOT + "docs/"]
        assert web.count("GET", ROOT + "docs/") == 1
        assert summary.pages_visited == 2

    def test_start_redirect_to_https_sets_origin(self, crawl, make_site, web):
        web.redirect("http://site.test/", ROOT)
        web.page(ROOT, ROOT + "a")
        web.page(ROOT + "a")

        _, _, summary = crawl(site=make_site("http://site.test/"))

        assert summary.pages_visited == 2
        assert web.count("GET", ROOT + "a") == 1

    def test_page_redirecting_off_site_is_not_crawled(self, db, crawl, make_site, web):
        web.page(ROOT, "/out")
        web.redirect(ROOT + "out", "https://other.test/")
        web.page("https://other.test/", "/deep")

        _, run, summary = crawl(site=make_site(ROOT))

        assert _active_urls(db, run.id) == [ROOT + "out"]
        assert summary.pages_visited == 2
        assert web.count("HEAD", "https://other.test/deep") == 0
        assert web.count("GET", "https://other.test/deep") == 0


class TestCrawlWithRules:
    def test_matching_links_go_to_ignored_bucket(self, db, crawl, make_site, small_site):
        site = make_site(ROOT)
        rule = create_rule(db, site.id, "contains", "ext.test")

        _, run, summary = crawl(site=site)

        assert find_active(db, run.id, EXT) is None
        ignored = find_ignored(db, run.id, EXT)
        assert ignored.ignored_by_rule_id == rule.id
        assert ignored.ignore_reason == "Ignored by rule: contains ext.test"
        assert ignored.occurrence_count == 3

        counts = count_run_links(db, run.id)
        assert counts == {"total": 5, "checked": 5, "broken": 1, "ignored": 1}
        assert summary.ignored_links == 1

    def test_ignored_pages_are_not_crawled(self, db, crawl, make_site, small_site):
        site = make_site(ROOT)
        create_rule(db, site.id, "path_prefix", "/b")

        crawl(site=site)

        assert small_site.count("GET", ROOT + "b") == 0

    def test_disabled_rules_do_nothing(self, db, crawl, make_site, small_site):
        site = make_site(ROOT)
        create_rule(db, site.id, "contains", "ext.test", enabled=False)

        _, run, _ = crawl(site=site)

        assert find_active(db, run.id, EXT) is not None


class TestCrawlLimits:
    def test_page_cap(self, crawl, settings, small_site):
        _, _, summary = crawl(cfg=replace(settings, crawl_max_pages=2))
        assert summary.pages_visited == 2

    def test_depth_zero_only_checks_start_page(self, crawl, settings, small_site):
        _, _, summary = crawl(cfg=replace(settings, crawl_max_depth=0))

        assert summary.pages_visited == 1
        assert summary.total_links == 4
        assert small_site.count("GET", ROOT + "a") == 0


class TestCrawlCancellation:
    def test_cancelled_before_start(self, db, crawl, make_site, small_site):
        site = make_site(ROOT)
        run = runs.create_run(db, site.id, site.url)
        runs.cancel_run(db, run.id)

        _, _, summary = crawl(site=site, run=run)

        assert summary.cancelled
        assert summary.pages_visited == 0
        assert small_site.requests == []

    def test_cancel_during_crawl_stops_at_next_page(self, db, session_factory, crawl, make_site, small_site):
        site = make_site(ROOT)
        run = runs.create_run(db, site.id, site.url)
        fired = []

        def cancel_on_page_a(request):
            if request.method == "GET" and str(request.url) == ROOT + "a" and not fired:
                fired.append(True)
                other = session_factory()
                try:
                    runs.cancel_run(other, run.id)
                finally:
                    other.close()

        small_site.on_request.append(cancel_on_page_a)

        _, _, summary = crawl(site=site, run=run)

        assert summary.cancelled
        assert summary.pages_visited == 2
        assert small_site.count("GET", ROOT + "b") == 0
        assert runs.get_status(db, run.id).value == "cancelled"


class TestCrawlRetry:
    def test_second_attempt_converges_without_rechecking(self, db, crawl, make_site, small_site):
        site = make_site(ROOT)
        run = runs.create_run(db, site.id, site.url)

        crawl(site=site, run=run)
        _, _, summary = crawl(site=site, run=run)

        assert summary.total_links == 5
        assert small_site.count("HEAD", EXT) == 1
        assert find_active(db, run.id, EXT).occurrence_count == 3
        assert find_active(db, run.id, ROOT + "missing").classification == LinkClassification.BROKEN
