"""Source URL validation and the hostname labels used for persona naming."""

from __future__ import annotations

import ipaddress
import re
from urllib.parse import urlparse, urlunparse

_VALID_SCHEMES = {"http", "https"}
_LABEL_RE = re.compile(r"^(?!-)[a-z0-9_-]{1,63}(?<!-)$")


def _is_valid_hostname(hostname: str) -> bool:
    if hostname == "localhost":
        return True
    try:
        ipaddress.ip_address(hostname)
        return True
    except ValueError:
        pass
    try:
        # Internationalized names are checked in their punycode form.
        ascii_name = hostname.rstrip(".").encode("idna").decode("ascii")
    except UnicodeError:
        return False
    if len(ascii_name) > 253:
        return False
    labels = ascii_name.lower().split(".")
    if len(labels) < 2:
        return False
    return all(_LABEL_RE.match(label) for label in labels)


def validate_url(url: str) -> str | None:
    """Return why *url* is not an acceptable absolute source URL, or ``None`` if it is.

    Enforces:
    - http or https scheme
    - No embedded credentials (username/password)
    - A hostname made of valid DNS labels, an IP literal, or ``localhost``
    """
    if not url or not url.strip():
        return "URL is empty"
    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname
        parsed.port  # raises ValueError for an out-of-range port
    except ValueError as exc:
        return f"URL could not be parsed: {exc}"
    if parsed.scheme not in _VALID_SCHEMES:
        return "URL must use http or https"
    if parsed.username or parsed.password:
        return "URL must not contain credentials"
    if not hostname or not _is_valid_hostname(hostname):
        return "URL host is not a valid hostname"
    return None


def normalize_url(url: str) -> str:
    """Strip whitespace, fragment and trailing slash; lower-case scheme and host."""
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip("/")
    return urlunparse(
        parsed._replace(
            scheme=parsed.scheme.lower(),
            netloc=parsed.netloc.lower(),
            path=path,
            fragment="",
        )
    )


def partition_urls(urls: list[str]) -> tuple[list[str], dict[str, str]]:
    """Split *urls* into normalised unique valid URLs and a ``{url: reason}`` map."""
    valid: list[str] = []
    rejected: dict[str, str] = {}
    seen: set[str] = set()
    for url in urls:
        reason = validate_url(url)
        if reason is not None:
            rejected[url] = reason
            continue
        normalized = normalize_url(url)
        if normalized not in seen:
            seen.add(normalized)
            valid.append(normalized)
    return valid, rejected


def display_host(url: str) -> str:
    """``https://www.example.com/about`` -> ``example.com``."""
    hostname = urlparse(url).hostname or url
    return hostname[4:] if hostname.startswith("www.") else hostname


def sources_label(urls: list[str]) -> str:
    """Human-readable label naming every distinct host, in first-seen order."""
    hosts: list[str] = []
    for url in urls:
        host = display_host(url)
        if host not in hosts:
            hosts.append(host)
    if not hosts:
        return "this website"
    if len(hosts) == 1:
        return hosts[0]
    return ", ".join(hosts[:-1]) + " & " + hosts[-1]

