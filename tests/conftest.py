"""
Shared fixtures: a throwaway SQLite file per test, explicit settings with
instant retries, and a fake website served through httpx.MockTransport.
"""

import pytest
import httpx

from linkwatch.core.config import Settings
from linkwatch.db.init_db import init_db
from linkwatch.db.session import create_db_engine, create_session_factory
from linkwatch.sites.schedule import create_site
from linkwatch.ssrf.http import make_client


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'linkwatch-test.db'}",
        worker_id="test-worker",
        idle_wait_seconds=0.01,
        claim_lease_seconds=60,
        job_max_attempts=3,
        retry_backoff_seconds=(0, 0, 0),
        schedule_cooldown_seconds=60,
        crawl_max_pages=25,
        crawl_max_depth=2,
        link_concurrency=4,
        link_retry_delays=(),
        ssrf_guard=False,
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_site(db):
    def _make(url="https://site.test/"):
        return create_site(db, url)
    return _make


class FakeWeb:
    """
    url -> canned response. Unknown URLs answer 404.
    `on_request` hooks run before the response is built (used to race cancels).
    """

    def __init__(self):
        self.routes = {}
        self.requests = []
        self.on_request = []

    def page(self, url, *links, status=200):
        body = "<html><body>" + "".join(f'<a href="{href}">{href}</a>' for href in links) + "</body></html>"
        self.routes[url] = ("html", status, body)

    def status(self, url, status):
        self.routes[url] = ("text", status, "")

    def unreachable(self, url):
        self.routes[url] = ("down", None, "")

    def redirect(self, url, location, status=301):
        self.routes[url] = ("redirect", status, location)

    def count(self, method, url):
        return sum(1 for m, u in self.requests if m == method and u == url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append((request.method, url))
        for hook in self.on_request:
            hook(request)

        kind, status, body = self.routes.get(url, ("text", 404, "not found"))
        if kind == "down":
            raise httpx.ConnectError("connection refused", request=request)
        if kind == "redirect":
            return httpx.Response(status, headers={"location": body})
        if kind == "html":
            return httpx.Response(status, text=body, headers={"content-type": "text/html; charset=utf-8"})
        return httpx.Response(status, text=body, headers={"content-type": "text/plain"})

    def client(self, settings):
        return make_client(settings, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def web():
    return FakeWeb()


@pytest.fixture
def small_site(web):
    """
    /        -> /a, /b, ext, /missing (+ noise that must be skipped)
    /a       -> /b, ext, /
    /b       -> ext, /missing
    """
    web.page(
        "https://site.test/",
        "/a", "/b", "https://ext.test/x", "mailto:hi@site.test", "#top", "/a#section", "/missing",
    )
    web.page("https://site.test/a", "/b", "https://ext.test/x", "/")
    web.page("https://site.test/b", "https://ext.test/x", "/missing")
    web.status("https://ext.test/x", 200)
    return web
