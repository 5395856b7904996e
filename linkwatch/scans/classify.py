from urllib.parse import urlparse

from linkwatch.scans.enums import LinkClassification

BLOCKED_STATUS = {401, 403, 429}

# hosts that answer anonymous checks with odd 4xx instead of a login wall
LOGIN_WALLED_HOSTS = {
    "googleusercontent.com",
    "drive.google.com",
    "docs.google.com",
    "accounts.google.com",
}
LOGIN_WALLED_STATUS = {400, 405, 406}


def _is_login_walled(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower().strip(".")
    return any(host == h or host.endswith("." + h) for h in LOGIN_WALLED_HOSTS)


def classify_status(url: str, status_code: int | None) -> LinkClassification:
    if status_code is None:
        return LinkClassification.NO_RESPONSE
    if 200 <= status_code < 400:
        return LinkClassification.OK
    if status_code in BLOCKED_STATUS:
        return LinkClassification.BLOCKED
    if status_code in LOGIN_WALLED_STATUS and _is_login_walled(url):
        return LinkClassification.BLOCKED
    return LinkClassification.BROKEN
