"""HTML parsing helpers shared by the extractors.

Every function here takes markup (or a tree the caller owns) and returns a
new value; nothing keeps parser state between calls, so the helpers are
safe to use from concurrent requests and batch workers alike.
"""

import re
from typing import FrozenSet, Iterable, List, Optional

from bs4 import BeautifulSoup, Comment, Tag

from catalog_mirror.config import (
    BASE_URL,
    IMAGE_NOISE_PATTERNS,
    IMAGE_NOISE_TOKENS,
    IMAGE_SOURCE_ATTRS,
)
from catalog_mirror.url_validation import absolute_url, parse_url

__all__ = [
    "parse_html",
    "clean_text",
    "slugify_category",
    "humanize_slug",
    "strip_brand_suffix",
    "heading_level",
    "absolutize_tree",
    "rewrite_relative_urls",
    "sanitize_fragment",
    "fragment_has_content",
    "strip_price_rows",
    "looks_like_image_url",
    "is_noise_image",
    "pick_image_url",
    "dedupe",
]

HEADING_TAGS = ("h1", "h2", "h3", "h4")

# Tags kept by the sanitizer; anything else is unwrapped (text survives)
ALLOWED_TAGS: FrozenSet[str] = frozenset({
    "h1", "h2", "h3", "h4", "h5", "h6",
    "p", "div", "section", "article", "aside", "blockquote", "pre", "hr", "br",
    "ul", "ol", "li", "dl", "dt", "dd",
    "a", "abbr", "b", "i", "u", "s", "em", "strong", "small", "sub", "sup",
    "span", "code", "cite", "mark", "q", "kbd", "samp", "var", "time",
    "img", "figure", "figcaption",
    "table", "caption", "colgroup", "col", "thead", "tbody", "tfoot", "tr", "th", "td",
})

# Tags removed together with everything inside them
DROP_WITH_CONTENT: FrozenSet[str] = frozenset({
    "script", "style", "noscript", "iframe", "object", "embed", "form",
    "input", "button", "select", "textarea", "svg", "template",
    "link", "meta", "head", "title",
})

GLOBAL_ATTRS: FrozenSet[str] = frozenset({"class", "id", "style"})
ALLOWED_ATTRS = {
    "a": frozenset({"href", "name", "target", "rel"}),
    "img": frozenset({"src", "alt", "title"}),
    "td": frozenset({"colspan", "rowspan"}),
    "th": frozenset({"colspan", "rowspan"}),
}

UNSAFE_URL_SCHEMES = ("javascript:", "data:", "vbscript:")
UNSAFE_STYLE_RE = re.compile(r"expression\s*\(|javascript:|url\s*\(", re.IGNORECASE)

# "$12", "€ 30", "120.00 USD", "KRW 150,000"
CURRENCY_AMOUNT_RE = re.compile(
    r"[$€£₩¥]\s?\d"
    r"|\b\d[\d,]*(?:\.\d+)?\s?(?:USD|EUR|GBP|KRW|CAD|JPY)\b"
    r"|\b(?:USD|EUR|GBP|KRW|CAD|JPY)\s?[$]?\d",
    re.IGNORECASE,
)

IMAGE_URL_RE = re.compile(r"\.(png|jpe?g|webp|gif|avif)(\?.*)?$", re.IGNORECASE)

_WHITESPACE_RE = re.compile(r"\s+")


def parse_html(html: Optional[str]) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def clean_text(text: Optional[str]) -> str:
    """Collapse whitespace (including non-breaking spaces) and trim."""
    return _WHITESPACE_RE.sub(" ", (text or "").replace(" ", " ")).strip()


def slugify_category(title: str) -> str:
    """``"Cloning & Expression Vectors"`` -> ``"cloning-and-expression-vectors"``."""
    text = (title or "").lower().strip().replace("&", " and ")
    return re.sub(r"[^a-z0-9]+", "-", text).strip("-")


def humanize_slug(slug: str) -> str:
    return clean_text((slug or "").replace("-", " ").replace("_", " ")).title()


def strip_brand_suffix(title: str) -> str:
    """Drop a trailing ``| Brand`` from a page title."""
    text = clean_text(title)
    return clean_text(text.split("|", 1)[0]) if "|" in text else text


def heading_level(tag: Tag) -> Optional[int]:
    name = getattr(tag, "name", None) or ""
    if len(name) == 2 and name[0] == "h" and name[1].isdigit():
        return int(name[1])
    return None


def absolutize_tree(root: Tag, base_url: str = BASE_URL) -> None:
    """Rewrite relative href/src/srcset values under ``root`` in place.

    Only call this on a tree the caller created for itself.
    """
    for tag in root.find_all(href=True):
        href = tag.get("href") or ""
        if href.startswith("#") or href.lower().startswith(("mailto:", "tel:", "javascript:")):
            continue
        tag["href"] = absolute_url(href, base_url)

    for tag in root.find_all(src=True):
        src = tag.get("src") or ""
        if src.lower().startswith("data:"):
            continue
        tag["src"] = absolute_url(src, base_url)

    for tag in root.find_all(srcset=True):
        parts = []
        for candidate in (tag.get("srcset") or "").split(","):
            pieces = candidate.strip().split()
            if not pieces:
                continue
            pieces[0] = absolute_url(pieces[0], base_url)
            parts.append(" ".join(pieces))
        tag["srcset"] = ", ".join(parts)


def rewrite_relative_urls(html: str, base_url: str = BASE_URL) -> str:
    if not html:
        return ""
    soup = parse_html(html)
    absolutize_tree(soup, base_url)
    return str(soup)


def _is_unsafe_url(value: str) -> bool:
    return clean_text(value).lower().startswith(UNSAFE_URL_SCHEMES)


def sanitize_fragment(html: Optional[str]) -> str:
    """Return a cleaned copy of an HTML fragment safe to store and render.

    Dangerous tags are removed with their content, unknown tags are
    unwrapped, attributes are reduced to an allowlist and absolute links
    open in a new tab with ``rel="noopener noreferrer"``.
    """
    raw = (html or "").strip()
    if not raw:
        return ""

    soup = parse_html(raw)

    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    for tag in soup.find_all(list(DROP_WITH_CONTENT)):
        if not tag.decomposed:
            tag.decompose()

    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue

        allowed = ALLOWED_ATTRS.get(tag.name, frozenset()) | GLOBAL_ATTRS
        for attr in list(tag.attrs):
            if attr not in allowed:
                del tag.attrs[attr]

        for attr in ("href", "src"):
            if attr in tag.attrs and _is_unsafe_url(tag[attr]):
                del tag.attrs[attr]
        if "style" in tag.attrs and UNSAFE_STYLE_RE.search(str(tag["style"])):
            del tag.attrs["style"]

        if tag.name == "a" and str(tag.get("href", "")).lower().startswith(("http://", "https://")):
            tag["target"] = "_blank"
            tag["rel"] = "noopener noreferrer"

    return str(soup).strip()


def fragment_has_content(html: Optional[str]) -> bool:
    """True if a fragment carries visible text, an image or a table."""
    if not html or not html.strip():
        return False
    soup = parse_html(html)
    return bool(clean_text(soup.get_text(" "))) or soup.find(["img", "table"]) is not None


def strip_price_rows(html: str) -> str:
    """Remove table rows that show pricing.

    A row goes if its first cell reads "Price" or its text holds a currency
    amount; every other row keeps its position.
    """
    if not html:
        return ""
    soup = parse_html(html)
    for row in soup.find_all("tr"):
        if row.decomposed:
            continue
        cells = row.find_all(["th", "td"])
        first = clean_text(cells[0].get_text(" ")).rstrip(":").strip().lower() if cells else ""
        if first == "price" or CURRENCY_AMOUNT_RE.search(clean_text(row.get_text(" "))):
            row.decompose()
    return str(soup)


def looks_like_image_url(url: Optional[str]) -> bool:
    value = (url or "").lower()
    if not value or value.startswith("data:"):
        return False
    parsed = parse_url(value)
    if parsed is None:
        return False
    path = parsed.path or value
    return bool(IMAGE_URL_RE.search(path)) or "/image/cache/" in value or "/assets/images/" in value


def is_noise_image(url: Optional[str]) -> bool:
    """Logos, flags, icons and similar page chrome, never product photos."""
    value = (url or "").lower()
    if not value:
        return True
    if any(token in value for token in IMAGE_NOISE_TOKENS):
        return True
    return any(pattern.search(value) for pattern in IMAGE_NOISE_PATTERNS)


def _largest_srcset_candidate(srcset: str) -> str:
    candidates = [part.strip() for part in (srcset or "").split(",") if part.strip()]
    return candidates[-1].split()[0] if candidates else ""


def pick_image_url(img: Tag, base_url: str = BASE_URL) -> str:
    """Best absolute image URL for an ``<img>``: lazy-load attrs, srcset, then src."""
    for attr in IMAGE_SOURCE_ATTRS:
        value = img.get(attr)
        if value and looks_like_image_url(value):
            return absolute_url(value, base_url)

    srcset = _largest_srcset_candidate(img.get("srcset") or img.get("data-srcset") or "")
    if srcset and looks_like_image_url(srcset):
        return absolute_url(srcset, base_url)

    src = img.get("src") or ""
    if src and looks_like_image_url(src):
        return absolute_url(src, base_url)
    return ""


def dedupe(values: Iterable[str]) -> List[str]:
    """Drop empties and repeats, keeping first-seen order."""
    seen = set()
    out: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out
