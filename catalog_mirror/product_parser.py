"""Product detail page extraction.

Every field is read independently through its own strategy chain, so a
template change that breaks one field (say the tab navigation) leaves the
others intact. A field nothing matches is left empty; the merge step then
keeps whatever the store already had.
"""

import re
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup, Tag

from catalog_mirror.config import (
    BASE_URL,
    BREADCRUMB_KEEP_TAIL,
    BREADCRUMB_SELECTORS,
    DOC_EXTENSIONS,
    GALLERY_SCORED_SELECTORS,
    GALLERY_SELECTORS,
    MAX_BREADCRUMB_SEGMENTS,
    PRODUCT_SCOPE_SELECTORS,
    SPECIFICATIONS_LABEL,
    TAB_FIELDS,
    TAB_LABELS,
)
from catalog_mirror.html_utils import (
    HEADING_TAGS,
    clean_text,
    dedupe,
    fragment_has_content,
    heading_level,
    looks_like_image_url,
    is_noise_image,
    parse_html,
    pick_image_url,
    rewrite_relative_urls,
    sanitize_fragment,
    slugify_category,
    strip_price_rows,
)
from catalog_mirror.logging_config import get_logger
from catalog_mirror.models import DocLink, ProductExtraction
from catalog_mirror.strategies import Strategy, run_chain
from catalog_mirror.url_validation import absolute_url

__all__ = [
    "extract_product",
    "extract_specifications",
    "extract_breadcrumb",
    "extract_sku",
    "extract_title",
    "extract_docs",
    "extract_images",
    "extraction_summary",
]

logger = get_logger("product_parser")

SKU_RE = re.compile(
    r"\b(?:Cat(?:alog)?\.?\s*No\.?|SKU)\s*[:#]?\s*([A-Za-z0-9][A-Za-z0-9-]{2,19})",
    re.IGNORECASE,
)

BREADCRUMB_SEPARATOR_RE = re.compile(r"^[\s›»>/|·]+|[\s›»>/|·]+$")

DOC_HREF_RE = re.compile(
    r"(?:" + "|".join(re.escape(ext) for ext in DOC_EXTENSIONS) + r")(?:[?#]|$)", re.IGNORECASE
)

SPEC_NAME_RE = re.compile(r"specs|specification", re.IGNORECASE)

# "Reviews (3)" -> "Reviews"
_TAB_COUNT_SUFFIX_RE = re.compile(r"\s*\(\d+\)\s*$")

# Following siblings collected after a matching heading
HEADING_SIBLING_GUARD = 60

TAB_TARGET_ATTRS = ("href", "data-target", "data-bs-target")

# Stripped from the image scope so site chrome never reaches the gallery
SCOPE_NOISE_TAGS = ["script", "noscript", "style", "header", "footer", "nav"]

MIN_GALLERY_IMAGES = 2
MIN_GALLERY_SCORE = 6

SUMMARY_LIST_LIMIT = 20


# =============================================================================
# Breadcrumb
# =============================================================================


def _breadcrumb_container(soup: BeautifulSoup) -> Optional[Tag]:
    for selector in BREADCRUMB_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            return container
    return None


def _crumbs_from_list_items(container: Tag) -> List[str]:
    titles: List[str] = []
    for li in container.find_all("li"):
        anchors = li.find_all("a")
        if anchors:
            titles.extend(clean_text(a.get_text(" ")) for a in anchors)
        else:
            titles.append(clean_text(li.get_text(" ")))
    return titles


def _crumbs_from_inline(container: Tag) -> List[str]:
    return [clean_text(el.get_text(" ")) for el in container.find_all(["a", "span"])]


BREADCRUMB_CHAIN: Sequence[Strategy] = (
    Strategy("list-items", _crumbs_from_list_items),
    Strategy("anchors-and-spans", _crumbs_from_inline),
)


def _normalize_crumbs(raw: List[str]) -> List[str]:
    titles = [BREADCRUMB_SEPARATOR_RE.sub("", t) for t in raw]
    titles = [t for t in titles if t]

    while titles and titles[0].lower() == "home":
        titles.pop(0)

    collapsed: List[str] = []
    for title in titles:
        if not collapsed or collapsed[-1] != title:
            collapsed.append(title)

    # The product's own title leaks into long trails on some templates
    if len(collapsed) > MAX_BREADCRUMB_SEGMENTS:
        collapsed = collapsed[-BREADCRUMB_KEEP_TAIL:]
    return collapsed


def extract_breadcrumb(soup: BeautifulSoup) -> Tuple[List[str], List[str]]:
    """Return ``(titles, slugs)`` of the category trail, root first.

    Titles whose slug would be empty are dropped so the two lists stay
    parallel.
    """
    container = _breadcrumb_container(soup)
    if container is None:
        return [], []

    raw, _ = run_chain("breadcrumb", BREADCRUMB_CHAIN, container)
    titles: List[str] = []
    slugs: List[str] = []
    for title in _normalize_crumbs(raw or []):
        slug = slugify_category(title)
        if slug:
            titles.append(title)
            slugs.append(slug)
    return titles, slugs


# =============================================================================
# SKU and title
# =============================================================================


def _sku_from_label(soup: BeautifulSoup) -> Optional[str]:
    match = SKU_RE.search(clean_text(soup.get_text(" ")))
    return match.group(1).strip() if match else None


def _sku_from_itemprop(soup: BeautifulSoup) -> Optional[str]:
    el = soup.find(attrs={"itemprop": "sku"})
    if el is None:
        return None
    return clean_text(el.get("content") or el.get_text(" ")) or None


SKU_CHAIN: Sequence[Strategy] = (
    Strategy("cat-no-label", _sku_from_label),
    Strategy("itemprop-sku", _sku_from_itemprop),
)


def extract_sku(soup: BeautifulSoup) -> Optional[str]:
    value, _ = run_chain("sku", SKU_CHAIN, soup)
    return value


def extract_title(soup: BeautifulSoup) -> Optional[str]:
    h1 = soup.find("h1")
    if h1 is None:
        return None
    return clean_text(h1.get_text(" ")) or None


# =============================================================================
# Tabs
# =============================================================================


def _match_tab_label(text: str, labels: Sequence[str]) -> Optional[str]:
    normalized = _TAB_COUNT_SUFFIX_RE.sub("", clean_text(text)).lower()
    for label in labels:
        if normalized == label.lower():
            return label
    return None


def _target_id(el: Tag) -> str:
    for attr in TAB_TARGET_ATTRS:
        value = (el.get(attr) or "").strip()
        if value.startswith("#") and len(value) > 1:
            return value[1:]
    return (el.get("aria-controls") or "").strip()


def _find_tab_nav(soup: BeautifulSoup) -> Optional[Tag]:
    """The element whose anchors name the most tabs (at least three)."""
    best: Optional[Tag] = None
    best_hits = 0
    for el in soup.find_all(["ul", "ol", "div", "nav"]):
        anchors = el.find_all("a")
        if len(anchors) < 3:
            continue
        hits = {_match_tab_label(a.get_text(" "), TAB_LABELS) for a in anchors}
        hits.discard(None)
        if len(hits) >= 3 and len(hits) > best_hits:
            best, best_hits = el, len(hits)
    return best


def _targets_from_nav(soup: BeautifulSoup) -> Dict[str, str]:
    nav = _find_tab_nav(soup)
    targets: Dict[str, str] = {}
    if nav is None:
        return targets
    for a in nav.find_all("a"):
        label = _match_tab_label(a.get_text(" "), TAB_LABELS)
        target = _target_id(a) if label else ""
        if label and target and label not in targets:
            targets[label] = target
    return targets


def _targets_from_anchors(soup: BeautifulSoup) -> Dict[str, str]:
    targets: Dict[str, str] = {}
    for el in soup.select("a[href^='#'], [aria-controls], [data-target], [data-bs-target]"):
        label = _match_tab_label(el.get_text(" "), TAB_LABELS)
        target = _target_id(el) if label else ""
        if label and target and label not in targets:
            targets[label] = target
    return targets


class _TabIndex:
    """Tab label -> panel id lookups, built once per parsed page."""

    def __init__(self, soup: BeautifulSoup):
        self.soup = soup
        self.nav_targets = _targets_from_nav(soup)
        self.anchor_targets = _targets_from_anchors(soup)

    def panel(self, target_id: Optional[str]) -> Optional[Tag]:
        if not target_id:
            return None
        return self.soup.find(id=target_id)


def _panel_from_nav(index: _TabIndex, label: str) -> Optional[Tag]:
    return index.panel(index.nav_targets.get(label))


def _panel_from_anchors(index: _TabIndex, label: str) -> Optional[Tag]:
    return index.panel(index.anchor_targets.get(label))


def _inner_html(panel: Optional[Tag]) -> str:
    return panel.decode_contents() if panel is not None else ""


def _heading_section(soup: BeautifulSoup, label: str) -> str:
    """Siblings after a heading named ``label``, up to the next heading of equal or higher rank."""
    for heading in soup.find_all(HEADING_TAGS):
        if clean_text(heading.get_text(" ")).lower() != label.lower():
            continue
        level = heading_level(heading) or 4
        parts: List[str] = []
        for count, sibling in enumerate(heading.find_next_siblings()):
            if count >= HEADING_SIBLING_GUARD:
                break
            sibling_level = heading_level(sibling)
            if sibling_level is not None and sibling_level <= level:
                break
            parts.append(str(sibling))
        return "\n".join(parts)
    return ""


TAB_CHAIN: Sequence[Strategy] = (
    Strategy("tab-nav", lambda index, label: _inner_html(_panel_from_nav(index, label))),
    Strategy("in-page-anchor", lambda index, label: _inner_html(_panel_from_anchors(index, label))),
    Strategy("heading-section", lambda index, label: _heading_section(index.soup, label)),
)


def _finish_fragment(raw: str, base_url: str) -> str:
    if not raw or not raw.strip():
        return ""
    cleaned = sanitize_fragment(rewrite_relative_urls(raw, base_url))
    return cleaned if fragment_has_content(cleaned) else ""


def _extract_tab(index: _TabIndex, label: str, base_url: str) -> str:
    raw, _ = run_chain(f"tab:{label}", TAB_CHAIN, index, label)
    return _finish_fragment(raw or "", base_url)


# =============================================================================
# Specifications
# =============================================================================


def _outer_tables(root: Tag) -> List[Tag]:
    tables = root.find_all("table")
    ids = {id(t) for t in tables}
    return [t for t in tables if not any(id(parent) in ids for parent in t.parents)]


def _tables_or_contents(el: Optional[Tag]) -> str:
    if el is None:
        return ""
    tables = _outer_tables(el)
    if tables:
        return "\n".join(str(t) for t in tables)
    return el.decode_contents()


def _specs_from_tab_target(index: _TabIndex) -> str:
    target = index.nav_targets.get(SPECIFICATIONS_LABEL) or index.anchor_targets.get(SPECIFICATIONS_LABEL)
    return _tables_or_contents(index.panel(target))


def _is_specs_container(tag: Tag) -> bool:
    if tag.name in ("a", "li", "ul", "ol", "nav", "html", "body"):
        return False
    names = [tag.get("id") or ""] + list(tag.get("class") or [])
    return any(SPEC_NAME_RE.search(name) for name in names if name)


def _specs_from_named_element(index: _TabIndex) -> str:
    return _tables_or_contents(index.soup.find(_is_specs_container))


SPECIFICATIONS_CHAIN: Sequence[Strategy] = (
    Strategy("tab-link-target", _specs_from_tab_target),
    Strategy("named-element", _specs_from_named_element),
    Strategy("heading-section", lambda index: _heading_section(index.soup, SPECIFICATIONS_LABEL)),
)


def _extract_specifications(index: _TabIndex, base_url: str) -> str:
    raw, _ = run_chain("specifications", SPECIFICATIONS_CHAIN, index)
    if not raw:
        return ""
    # Pricing is never shown on the mirror
    return _finish_fragment(strip_price_rows(raw), base_url)


def extract_specifications(html: str, source_url: str) -> str:
    """Sanitized Specifications panel with price rows removed, or ``""``."""
    index = _TabIndex(parse_html(html))
    return _extract_specifications(index, source_url or BASE_URL)


# =============================================================================
# Documents and images
# =============================================================================


def extract_docs(root: Tag, base_url: str = BASE_URL) -> List[DocLink]:
    """Links to pdf/doc/docx files under ``root``, deduped by URL."""
    docs: List[DocLink] = []
    seen = set()
    for a in root.find_all("a", href=True):
        url = absolute_url(a["href"], base_url)
        if not url or url in seen or not DOC_HREF_RE.search(url):
            continue
        seen.add(url)
        label = clean_text(a.get_text(" ")) or unquote(PurePosixPath(urlparse(url).path).name)
        docs.append(DocLink(url=url, label=label))
    return docs


def _product_scope(soup: BeautifulSoup) -> Tag:
    for selector in PRODUCT_SCOPE_SELECTORS:
        scope = soup.select_one(selector)
        if scope is not None:
            for junk in scope.find_all(SCOPE_NOISE_TAGS):
                if not junk.decomposed:
                    junk.decompose()
            return scope
    return soup


def _primary_gallery(scope: Tag) -> Optional[Tag]:
    for selector in GALLERY_SELECTORS:
        for el in scope.select(selector):
            if len(el.find_all("img")) >= MIN_GALLERY_IMAGES:
                return el
    return None


def _scored_gallery(scope: Tag) -> Optional[Tag]:
    """Carousel-like container with the most image links and images."""
    best: Optional[Tag] = None
    best_score = 0
    for selector in GALLERY_SCORED_SELECTORS:
        for el in scope.select(selector):
            image_links = [a for a in el.find_all("a", href=True) if looks_like_image_url(a["href"])]
            score = len(image_links) * 3 + len(el.find_all("img"))
            if score >= MIN_GALLERY_SCORE and score > best_score:
                best, best_score = el, score
    return best


def _collect_images(container: Optional[Tag], base_url: str) -> List[str]:
    if container is None:
        return []
    urls: List[str] = []
    # Gallery anchors usually point at the full-size image
    for a in container.find_all("a", href=True):
        if looks_like_image_url(a["href"]):
            urls.append(absolute_url(a["href"], base_url))
    for img in container.find_all("img"):
        urls.append(pick_image_url(img, base_url))
    return dedupe(url for url in urls if url and not is_noise_image(url))


IMAGE_CHAIN: Sequence[Strategy] = (
    Strategy("gallery", lambda scope, base: _collect_images(_primary_gallery(scope), base)),
    Strategy("scored-carousel", lambda scope, base: _collect_images(_scored_gallery(scope), base)),
    Strategy("product-scope", _collect_images),
)


def extract_images(html: str, base_url: str = BASE_URL) -> List[str]:
    """Product image URLs in page order, without logos and other chrome.

    Parses ``html`` on its own because the scope is pruned in place.
    """
    scope = _product_scope(parse_html(html))
    images, _ = run_chain("images", IMAGE_CHAIN, scope, base_url)
    return images or []


# =============================================================================
# Entry point
# =============================================================================


def extract_product(
    html: str,
    source_url: str,
    include_specifications: bool = False,
) -> ProductExtraction:
    """Parse one product detail page.

    Args:
        html: Page HTML
        source_url: URL the page was fetched from (base for relative links)
        include_specifications: Also track the Specifications tab

    Returns:
        ProductExtraction with empty values for anything not found
    """
    base_url = source_url or BASE_URL
    soup = parse_html(html)

    titles, slugs = extract_breadcrumb(soup)
    extraction = ProductExtraction(
        source_url=source_url,
        sku=extract_sku(soup),
        title=extract_title(soup),
        category_path=slugs,
        category_path_titles=titles,
    )

    index = _TabIndex(soup)
    for label in TAB_LABELS:
        if label == SPECIFICATIONS_LABEL:
            if include_specifications:
                extraction.specs_html = _extract_specifications(index, base_url)
            continue
        setattr(extraction, TAB_FIELDS[label], _extract_tab(index, label, base_url))

    if extraction.documents_html:
        extraction.docs = extract_docs(parse_html(extraction.documents_html), base_url)
    else:
        extraction.docs = extract_docs(soup, base_url)

    extraction.image_urls = extract_images(html, base_url)

    logger.debug(
        f"Parsed {source_url}: sku={extraction.sku!r} path={extraction.category_path} "
        f"docs={len(extraction.docs)} images={len(extraction.image_urls)} "
        f"tabs={extraction.tab_sizes()}"
    )
    return extraction


def extraction_summary(extraction: ProductExtraction) -> Dict[str, Any]:
    """Compact JSON-ready view of an extraction for previews."""
    return {
        "ok": True,
        "url": extraction.source_url,
        "sku": extraction.sku,
        "title": extraction.title,
        "categoryPathTitles": extraction.category_path_titles,
        "categoryPath": extraction.category_path,
        "tabSizes": extraction.tab_sizes(),
        "docsCount": len(extraction.docs),
        "imagesCount": len(extraction.image_urls),
        "docs": [{"label": d.label, "url": d.url} for d in extraction.docs[:SUMMARY_LIST_LIMIT]],
        "imageUrls": extraction.image_urls[:SUMMARY_LIST_LIMIT],
    }
