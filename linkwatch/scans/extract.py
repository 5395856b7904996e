from __future__ import annotations

from urllib.parse import urldefrag, urljoin, urlparse, urlsplit, urlunsplit

from bs4 import BeautifulSoup, SoupStrainer

# parse only <a href> tags
LINK_STRAINER = SoupStrainer("a", href=True)

SKIP_PREFIXES = ("mailto:", "tel:", "javascript:", "data:", "vbscript:")

DEFAULT_PORTS = {"http": 80, "https": 443}

ASSET_EXTENSIONS: frozenset[str] = frozenset((
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico",
    ".css", ".js", ".mjs", ".map",
    ".pdf", ".zip", ".rar", ".7z", ".gz", ".tar",
    ".mp3", ".mp4", ".mov", ".avi", ".mkv",
    ".woff", ".woff2", ".ttf", ".eot",
    ".xml", ".json",
))


def extract_links(html: str) -> list[str]:
    """Raw href values of every anchor, in document order, duplicates removed."""
    soup = BeautifulSoup(html or "", "html.parser", parse_only=LINK_STRAINER)
    out: list[str] = []
    seen: set[str] = set()
    for a in soup.find_all("a", href=True):
        href = a["href"]
        if href not in seen:
            seen.add(href)
            out.append(href)
    return out


def canonical_url(url: str) -> str:
    """
    Lowercase scheme and host, drop the default port and any fragment, and
    give an empty path "/". Path and query are kept as written.
    Raises ValueError for an unparseable port.
    """
    parsed = urlsplit(url)
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"

    port = parsed.port
    if port is None or DEFAULT_PORTS.get(scheme) == port:
        netloc = host
    else:
        netloc = f"{host}:{port}"

    return urlunsplit((scheme, netloc, parsed.path or "/", parsed.query, ""))


def normalize_link(raw_href: str, base_url: str) -> str | None:
    """
    Absolute http(s) URL without fragment, or None for hrefs that are not
    checkable links (empty, fragment-only, mailto/tel/script schemes).
    """
    href = (raw_href or "").strip()
    if not href or href.startswith("#"):
        return None
    if href.lower().startswith(SKIP_PREFIXES):
        return None

    try:
        joined, _ = urldefrag(urljoin(base_url, href))
        parsed = urlparse(joined)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            return None
        return canonical_url(joined)
    except ValueError:
        return None


def origin_of(url: str) -> tuple[str, str]:
    p = urlparse(url)
    return p.scheme.lower(), p.netloc.lower()


def same_origin(url: str, origin: tuple[str, str]) -> bool:
    return origin_of(url) == origin


def looks_like_asset(url: str) -> bool:
    path = (urlparse(url).path or "").lower()
    return any(path.endswith(ext) for ext in ASSET_EXTENSIONS)
