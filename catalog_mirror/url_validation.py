"""URL validation, normalization and identity helpers."""

import re
from pathlib import PurePosixPath
from typing import Optional, Set
from urllib.parse import ParseResult, unquote, urljoin, urlparse, urlunparse

from catalog_mirror.config import ALLOWED_DOMAINS, BASE_URL, PRODUCT_PAGE_EXTENSION

__all__ = [
    "URLValidationError",
    "sanitize_url",
    "validate_url",
    "absolute_url",
    "normalize_source_url",
    "slug_from_url",
    "product_url_for_slug",
    "is_same_origin",
    "is_redirect_safe",
    "parse_url",
]


class URLValidationError(ValueError):
    """Raised when a URL is malformed or points somewhere we refuse to go."""


DANGEROUS_SCHEMES = {"javascript", "data", "vbscript", "file"}

SUSPICIOUS_PATTERNS = [
    re.compile(r"\.\./"),
    re.compile(r"%2e%2e", re.IGNORECASE),
    re.compile(r"<script", re.IGNORECASE),
]


def parse_url(url: Optional[str]) -> Optional[ParseResult]:
    """``urlparse`` that returns None for unparseable input such as ``http://[broken``."""
    try:
        parsed = urlparse(url or "")
    except ValueError:
        return None
    return parsed


def sanitize_url(url: Optional[str]) -> str:
    """Strip whitespace, control characters and null bytes."""
    if not url:
        return ""
    url = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", url.strip())
    return url.replace("%00", "")


def validate_url(
    url: str,
    allowed_domains: Optional[Set[str]] = None,
    require_https: bool = False,
) -> str:
    """Validate an outbound URL before fetching it.

    Args:
        url: URL to validate
        allowed_domains: Hosts we may contact (default: ALLOWED_DOMAINS);
            pass an empty set to allow any host
        require_https: Whether to require the https scheme

    Returns:
        The sanitized URL

    Raises:
        URLValidationError: If the URL is unsafe or off the allowed hosts
    """
    url = sanitize_url(url)
    if not url:
        raise URLValidationError("URL is empty")

    parsed = parse_url(url)
    if parsed is None:
        raise URLValidationError(f"Malformed URL: {url}")
    scheme = parsed.scheme.lower()
    if scheme in DANGEROUS_SCHEMES:
        raise URLValidationError(f"Dangerous URL scheme: {scheme}")
    if scheme not in ("http", "https"):
        raise URLValidationError(f"Invalid URL scheme: {scheme or '(none)'}")
    if require_https and scheme != "https":
        raise URLValidationError(f"URL must use HTTPS, got: {scheme}")

    host = (parsed.hostname or "").lower()
    if not host:
        raise URLValidationError("URL has no host")

    domains = ALLOWED_DOMAINS if allowed_domains is None else allowed_domains
    if domains and host not in domains:
        raise URLValidationError(f"Host '{host}' not in allowed domains: {sorted(domains)}")

    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(url):
            raise URLValidationError(f"URL contains suspicious pattern: {pattern.pattern}")

    return url


def absolute_url(href: Optional[str], base_url: str = BASE_URL) -> str:
    """Resolve ``href`` against ``base_url``; protocol-relative URLs become https.

    Returns "" for hrefs that do not parse as URLs.
    """
    value = sanitize_url(href)
    if not value:
        return ""
    if value.startswith("//"):
        value = "https:" + value
    elif not value.lower().startswith(("http://", "https://")):
        base = parse_url(base_url)
        if base is None:
            return ""
        if not base_url.endswith("/") and not base.path:
            base_url += "/"
        try:
            value = urljoin(base_url, value)
        except ValueError:
            return ""
    return value if parse_url(value) is not None else ""


def normalize_source_url(url: str, base_url: str = BASE_URL) -> str:
    """Absolute URL without query string or fragment (the stored identity form)."""
    parsed = parse_url(absolute_url(url, base_url))
    if parsed is None or not parsed.scheme:
        return ""
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path, "", "", ""))


def slug_from_url(url: str) -> str:
    """Last path segment with its extension stripped.

    >>> slug_from_url("https://www.abmgood.com/blastaq-2x-qpcr-mastermix.html?x=1")
    'blastaq-2x-qpcr-mastermix'
    """
    parsed = parse_url(sanitize_url(url))
    path = parsed.path if parsed else ""
    name = unquote(PurePosixPath(path).name) if path else ""
    if "." in name:
        name = name.rsplit(".", 1)[0]
    return name.strip()


def product_url_for_slug(slug: str, base_url: str = BASE_URL) -> str:
    """Deep link to the supplier's page for a slug we have no record of."""
    return f"{base_url.rstrip('/')}/{slug}{PRODUCT_PAGE_EXTENSION}"


def is_same_origin(url: str, base_url: str = BASE_URL) -> bool:
    """True if ``url`` lives on the same host as ``base_url`` (scheme may differ)."""
    parsed, base = parse_url(url), parse_url(base_url)
    if parsed is None or base is None:
        return False
    host = (parsed.hostname or "").lower()
    return bool(host) and host == (base.hostname or "").lower()


def is_redirect_safe(url: Optional[str]) -> bool:
    """Only absolute http(s) URLs may be used as redirect targets."""
    parsed = parse_url(sanitize_url(url))
    return parsed is not None and parsed.scheme.lower() in ("http", "https") and bool(parsed.netloc)
