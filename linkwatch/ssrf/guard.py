"""
Outbound target checks for the crawler.

A crawl follows links chosen by whoever owns the site, so every request hop
is checked: scheme, hostname, and every address the host resolves to.
"""

import ipaddress
import socket
from urllib.parse import urlparse

ALLOWED_SCHEMES = ("http", "https")

BLOCKED_HOSTNAMES = frozenset({"localhost", "metadata.google.internal"})

_V4_BLOCKED = tuple(
    ipaddress.ip_network(n)
    for n in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",  # CGNAT
        "127.0.0.0/8",
        "169.254.0.0/16",  # link-local, cloud metadata
        "172.16.0.0/12",
        "192.168.0.0/16",
        "224.0.0.0/4",  # multicast
    )
)


class BlockedTargetError(ValueError):
    """The URL points at a host the crawler must not reach."""


def is_ip_blocked(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return True

    if addr.version == 4:
        return any(addr in net for net in _V4_BLOCKED)

    mapped = addr.ipv4_mapped
    if mapped is not None:
        return is_ip_blocked(str(mapped))
    return addr.is_loopback or addr.is_link_local or addr.is_multicast or addr.is_private or addr.is_unspecified


def resolve_all_ips(host: str) -> list[str]:
    """Distinct addresses for `host`, in resolver order."""
    seen: dict[str, None] = {}
    for *_, sockaddr in socket.getaddrinfo(host, None):
        seen.setdefault(sockaddr[0], None)
    return list(seen)


def validate_url_target(url: str) -> tuple[str, str]:
    """Return (scheme, host) or raise BlockedTargetError."""
    parsed = urlparse(url)
    if parsed.scheme not in ALLOWED_SCHEMES:
        raise BlockedTargetError(f"scheme not allowed: {parsed.scheme or '(none)'}")

    host = (parsed.hostname or "").lower().strip(".")
    if not host:
        raise BlockedTargetError("missing host")
    if host in BLOCKED_HOSTNAMES:
        raise BlockedTargetError(f"blocked hostname: {host}")

    try:
        ips = resolve_all_ips(host)
    except socket.gaierror:
        raise BlockedTargetError(f"cannot resolve host: {host}")

    blocked = [ip for ip in ips if is_ip_blocked(ip)]
    if not ips or blocked:
        raise BlockedTargetError(f"blocked address for {host}: {blocked[0] if blocked else 'none'}")

    return parsed.scheme, host
