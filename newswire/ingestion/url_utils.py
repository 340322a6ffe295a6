"""URL helpers shared by the fetchers and the extraction engine."""

from __future__ import annotations

import ipaddress
from typing import Optional
from urllib.parse import urljoin, urlsplit


FETCH_SCHEMES = frozenset({"http", "https"})
LOCAL_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost"})


def _internal_address(host: str) -> bool:
    """True when `host` is an IP literal outside the public internet."""
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_unspecified
        or addr.is_multicast
    )


def validate_fetch_url(url: str) -> Optional[str]:
    """Return a reason code if `url` must not be fetched, None if it is fine.

    Codes: empty_url, invalid_url, bad_scheme, missing_host, blocked_host,
    blocked_private_ip.
    """
    if not url:
        return "empty_url"
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError:
        return "invalid_url"
    if parts.scheme.lower() not in FETCH_SCHEMES:
        return "bad_scheme"
    hostname = (hostname or "").rstrip(".").lower()
    if not hostname:
        return "missing_host"
    if hostname in LOCAL_HOSTNAMES or hostname.endswith(".localhost"):
        return "blocked_host"
    if _internal_address(hostname):
        return "blocked_private_ip"
    return None


def resolve_link(href: str, base_url: str) -> str:
    """Resolve a scraped href against the listing page URL.

    Absolute http(s) links are returned unchanged.
    """
    href = (href or "").strip()
    if not href:
        return href
    if href.lower().startswith(("http://", "https://")):
        return href
    return urljoin(base_url, href)
