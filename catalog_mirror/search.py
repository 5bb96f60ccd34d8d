"""Turn a supplier search-results page into a resolution decision."""

from typing import List
from urllib.parse import quote_plus

from catalog_mirror.config import (
    BASE_URL,
    MAX_SEARCH_CANDIDATES,
    PRODUCT_PAGE_EXTENSION,
    SEARCH_PATH,
)
from catalog_mirror.html_utils import clean_text, parse_html
from catalog_mirror.models import SearchCandidate, SearchResolution
from catalog_mirror.url_validation import absolute_url, is_same_origin, parse_url

__all__ = ["search_url", "collect_candidates", "resolve_search"]


def search_url(query: str, base_url: str = BASE_URL) -> str:
    """``BASE_URL/search?query=<encoded query>``."""
    return f"{base_url.rstrip('/')}{SEARCH_PATH}?query={quote_plus((query or '').strip())}"


def _is_product_link(url: str, base_url: str) -> bool:
    if not is_same_origin(url, base_url):
        return False
    parsed = parse_url(url)
    return parsed is not None and parsed.path.lower().endswith(PRODUCT_PAGE_EXTENSION)


def collect_candidates(html: str, base_url: str = BASE_URL) -> List[SearchCandidate]:
    """Same-origin ``.html`` links with visible text, deduped by URL in page order."""
    soup = parse_html(html)
    seen = set()
    candidates: List[SearchCandidate] = []

    for a in soup.find_all("a", href=True):
        url = absolute_url(a["href"], base_url)
        if not url or url in seen or not _is_product_link(url, base_url):
            continue
        title = clean_text(a.get_text(" "))
        if not title:
            continue
        seen.add(url)
        candidates.append(SearchCandidate(url=url, title=title))

    return candidates


def resolve_search(html: str, query: str, base_url: str = BASE_URL) -> SearchResolution:
    """Classify a search-results page as ``single``, ``multiple`` or ``none``.

    Only an unambiguous single hit ever yields a ``product_url``. There is
    no fuzzy matching against ``query``; it only builds the search URL the
    user falls back to.
    """
    fallback = search_url(query, base_url)
    candidates = collect_candidates(html, base_url)

    if not candidates:
        return SearchResolution(kind="none", search_url=fallback)
    if len(candidates) == 1:
        return SearchResolution(
            kind="single",
            search_url=fallback,
            candidates=candidates,
            product_url=candidates[0].url,
        )
    return SearchResolution(
        kind="multiple",
        search_url=fallback,
        candidates=candidates[:MAX_SEARCH_CANDIDATES],
    )
