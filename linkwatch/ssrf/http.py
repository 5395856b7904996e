from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx

from linkwatch.ssrf.guard import BlockedTargetError, validate_url_target

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = "LinkWatchBot/1.0 (+https://linkwatch.dev/bot)"

# servers that reject HEAD (or HEAD only) get a second chance with GET
FALLBACK_TO_GET = {403, 405, 501}


def _guard_request(request: httpx.Request) -> None:
    # runs for every hop, redirects included
    validate_url_target(str(request.url))


def make_client(settings=None, *, timeout: float | None = None, transport=None) -> httpx.Client:
    ssrf_guard = True if settings is None else settings.ssrf_guard
    user_agent = DEFAULT_USER_AGENT if settings is None else settings.user_agent
    if timeout is None:
        timeout = DEFAULT_TIMEOUT if settings is None else settings.link_timeout_seconds

    return httpx.Client(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": user_agent},
        event_hooks={"request": [_guard_request] if ssrf_guard else []},
        transport=transport,
    )


@dataclass
class PageFetch:
    url: str
    status_code: int | None
    content_type: str = ""
    html: str | None = None
    error: str | None = None
    # where the redirect chain ended; None when no response came back
    final_url: str | None = None


def fetch_page(client: httpx.Client, url: str, *, timeout: float | None = None) -> PageFetch:
    """GET a page. The body is kept only for successful text/html responses."""
    kwargs = {"timeout": timeout} if timeout is not None else {}
    try:
        r = client.get(url, headers={"Accept": "text/html,application/xhtml+xml,*/*;q=0.8"}, **kwargs)
    except httpx.TimeoutException:
        return PageFetch(url=url, status_code=None, error="timeout")
    except (httpx.HTTPError, httpx.InvalidURL, BlockedTargetError) as e:
        return PageFetch(url=url, status_code=None, error=str(e) or e.__class__.__name__)

    ctype = (r.headers.get("content-type") or "").lower()
    html = r.text if (r.is_success and "text/html" in ctype) else None
    return PageFetch(url=url, status_code=r.status_code, content_type=ctype, html=html, final_url=str(r.url))


@dataclass
class LinkCheck:
    url: str
    status_code: int | None
    error: str | None = None


def _probe(client: httpx.Client, url: str) -> LinkCheck:
    try:
        r = client.head(url)
        status = r.status_code
        if status in FALLBACK_TO_GET:
            with client.stream("GET", url) as r:
                status = r.status_code
    except httpx.TimeoutException:
        return LinkCheck(url=url, status_code=None, error="timeout")
    except BlockedTargetError as e:
        return LinkCheck(url=url, status_code=None, error=f"blocked target: {e}")
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        return LinkCheck(url=url, status_code=None, error=str(e) or e.__class__.__name__)

    if status >= 400:
        return LinkCheck(url=url, status_code=status, error=f"HTTP {status}")
    return LinkCheck(url=url, status_code=status)


def check_link(client: httpx.Client, url: str, *, retry_delays=(0.4, 0.9), sleep=time.sleep) -> LinkCheck:
    """
    HEAD (GET fallback) with redirects followed. Only attempts that got no HTTP
    response at all are retried, after each delay in `retry_delays`.
    """
    result = _probe(client, url)
    for delay in retry_delays:
        if result.status_code is not None or (result.error or "").startswith("blocked target"):
            break
        if delay:
            sleep(delay)
        result = _probe(client, url)

    if result.status_code is None:
        logger.debug("no response url=%s error=%s", url, result.error)
    return result
