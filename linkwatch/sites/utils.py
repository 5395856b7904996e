from urllib.parse import urlparse


def normalize_url(raw: str) -> str:
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("Empty URL")
    if not raw.startswith(("http://", "https://")):
        raw = "https://" + raw
    p = urlparse(raw)
    if not p.hostname:
        raise ValueError("Invalid URL")
    path = p.path or "/"
    query = f"?{p.query}" if p.query else ""
    return f"{p.scheme}://{p.netloc}{path}{query}"


def extract_domain(url: str) -> str:
    p = urlparse(url)
    if not p.hostname:
        raise ValueError("Invalid domain")
    return p.hostname.lower().strip(".")
