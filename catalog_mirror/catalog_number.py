"""Tell supplier catalog numbers apart from free-text keyword searches.

Only catalog numbers ("T3189", "G950-1") are resolved automatically; a
keyword phrase always goes to the supplier's own search page so a vague
query can never navigate the user somewhere unintended.
"""

import re

from catalog_mirror.config import MAX_QUERY_LENGTH

__all__ = ["CATALOG_NUMBER_RE", "is_identifier_like", "normalize_query"]

# 0-3 letters, 3-7 digits, up to 10 trailing alphanumerics/hyphens
CATALOG_NUMBER_RE = re.compile(r"^[A-Za-z]{0,3}\d{3,7}[A-Za-z0-9-]{0,10}$")

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_query(text: str) -> str:
    """Collapse whitespace runs and trim."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def is_identifier_like(text: str) -> bool:
    """True if ``text`` looks like a catalog number rather than a keyword search."""
    query = (text or "").strip()
    if not query or len(query) > MAX_QUERY_LENGTH:
        return False
    if _WHITESPACE_RE.search(query):
        return False
    return CATALOG_NUMBER_RE.match(query) is not None
