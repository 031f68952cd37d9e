# File: knowledge_compiler/utils.py
"""knowledge_compiler.utils: URL canonicalisation, scope checks and small helpers."""

from __future__ import annotations

import re
from typing import Collection, List, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

import tldextract

from knowledge_compiler.logger import logger

__all__: Sequence[str] = (
    "normalize_url",
    "extract_host",
    "registrable_domain",
    "is_in_scope",
    "remove_duplicates",
)

_ALLOWED_SCHEMES = ("http", "https")
_DEFAULT_PORTS = {"http": 80, "https": 443}
# a scheme followed by something other than a port number ("host:8080" is scheme-less)
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:(?!\d)")
_HOST_RE = re.compile(r"^[a-z0-9_](?:[a-z0-9_.-]*[a-z0-9_])?$")

# bundled public-suffix snapshot only, never fetched over the network
_TLD_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())


def _canonical(candidate: str) -> Optional[str]:
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in _ALLOWED_SCHEMES:
        return None

    host = parts.hostname
    if not host:
        return None
    if ":" in host:
        netloc = f"[{host}]"
    else:
        try:
            host = host.encode("idna").decode("ascii").lower()
        except UnicodeError:
            return None
        if not _HOST_RE.match(host):
            return None
        netloc = host

    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def normalize_url(raw: object) -> Optional[str]:
    """Canonicalise *raw* into an absolute http(s) URL, or ``None`` if invalid.

    Lower-cases scheme and host, strips the fragment, userinfo and default
    ports, and maps an empty path to ``/``. A string without a scheme is
    retried once with ``https://`` in front, so ``"example.com"`` and
    ``"https://example.com/"`` normalise to the same URL.
    """
    if not isinstance(raw, str):
        return None
    candidate = raw.strip()
    if not candidate:
        return None

    normalized = _canonical(candidate)
    if normalized is None and not _SCHEME_RE.match(candidate):
        prefix = "https:" if candidate.startswith("//") else "https://"
        normalized = _canonical(prefix + candidate)

    if normalized is None:
        logger.debug("Rejected URL: %r", raw)
    return normalized


def extract_host(url: str) -> str:
    """Return the lower-cased host of *url* (no port), or ``""``."""
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""


def registrable_domain(host: str) -> str:
    """Return the registrable domain of *host* (``shop.example.co.uk`` -> ``example.co.uk``).

    Hosts without a known public suffix (IP literals, ``localhost``, reserved
    test TLDs) are their own registrable domain.
    """
    host = host.lower().rstrip(".")
    ext = _TLD_EXTRACT(host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return host


def is_in_scope(url: str, seed_host: str, allow_subdomains: bool = False) -> bool:
    """Check that *url* belongs to the crawled site.

    Without *allow_subdomains* the host must equal *seed_host*; with it, any
    host under the seed's registrable domain is accepted.
    """
    host = extract_host(url)
    if not host:
        return False
    if host == seed_host:
        return True
    if not allow_subdomains:
        return False
    root = registrable_domain(seed_host)
    return host == root or host.endswith("." + root)


def remove_duplicates(urls: Collection[str]) -> List[str]:
    """Remove duplicate URLs, preserving first-seen order."""
    unique = list(dict.fromkeys(urls))
    removed = len(urls) - len(unique)
    if removed:
        logger.debug("Removed %d duplicate URLs", removed)
    return unique
