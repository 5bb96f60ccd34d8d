"""Category page extraction.

A category page mixes free HTML with two structured widgets: resource
cards (image + title + link) and a "Top Publications" table. Each widget
is pulled out into a typed block and the surrounding HTML is kept as
``html`` blocks, all in the order they appear on the page.
"""

import re
from dataclasses import asdict
from typing import AbstractSet, Any, Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Comment, Tag

from catalog_mirror.config import (
    BASE_URL,
    CATEGORY_ROOT_SELECTORS,
    DEFAULT_RESOURCE_SUBTITLE,
    MIN_PRODUCT_SLUG_LENGTH,
    PRODUCT_PAGE_EXTENSION,
)
from catalog_mirror.html_utils import (
    clean_text,
    parse_html,
    rewrite_relative_urls,
    sanitize_fragment,
    strip_brand_suffix,
)
from catalog_mirror.logging_config import get_logger
from catalog_mirror.models import (
    Breadcrumb,
    CategoryExtraction,
    ContentBlock,
    ProductLink,
    PublicationItem,
    ResourceItem,
)
from catalog_mirror.strategies import Strategy, run_chain
from catalog_mirror.url_validation import (
    absolute_url,
    is_same_origin,
    normalize_source_url,
    parse_url,
    slug_from_url,
)

__all__ = [
    "extract_category",
    "extract_category_breadcrumbs",
    "category_summary",
    "extraction_to_dict",
    "extract_product_links",
    "extract_next_page_url",
]

logger = get_logger("category_parser")

TITLE_SELECTOR = "h2.abm-categories-title-h2"
INTRO_SELECTOR = ".abm-categories-text"
CATEGORY_NAV_SELECTOR = "ul.abm-page-category-nav-list"
RESOURCE_LIST_SELECTOR = "ul.htmlcontent-home"
CITATION_NUM_SELECTOR = ".citations-num"

CATEGORY_BREADCRUMB_SELECTORS = [
    "ul.breadcrumb",
    "ol.breadcrumb",
    "nav[aria-label='breadcrumb']",
    ".breadcrumbs",
]

FREE_SAMPLE_SELECTORS = [
    "a[href*='/free-sample']",
    "img[src*='Request-Free-Sample-Button']",
    "img[alt*='Request Free Sample']",
]
FREE_SAMPLE_TEXT = "request free sample"

# Widget headings the storefront renders itself
SECTION_HEADINGS = {"resource", "resources", "top publications"}

BLOCK_MARKER = "catalog-block"
BLOCK_MARKER_RE = re.compile(rf"<!--{BLOCK_MARKER}:(resources|publications):(\d+)-->")

BLOCK_TITLES = {
    "html": "Content",
    "resources": "Resources",
    "publications": "Top Publications",
}

MIN_INTRO_TEXT = 20
MIN_SEGMENT_TEXT = 5

# "1", "[2]", "3.", "4)"
CITATION_NUMBER_RE = re.compile(r"^\[?\d{1,3}[\].)]?$")
CITATION_ROW_RATIO = 0.6

PRODUCT_SUFFIX_RE = re.compile(r"Product:\s*(.+)$", re.IGNORECASE)


# =============================================================================
# Root, title, intro
# =============================================================================


def _root_by_id(soup: BeautifulSoup) -> Optional[Tag]:
    return soup.select_one("#abm-category-right-outer")


def _root_by_column(soup: BeautifulSoup) -> Optional[Tag]:
    for el in soup.select(", ".join(CATEGORY_ROOT_SELECTORS)):
        if el.select_one(TITLE_SELECTOR) is not None:
            return el
    return None


def _root_by_intro_parent(soup: BeautifulSoup) -> Optional[Tag]:
    intro = soup.select_one(INTRO_SELECTOR)
    if intro is None or not isinstance(intro.parent, Tag) or intro.parent is soup:
        return None
    return intro.parent


def _root_by_content(soup: BeautifulSoup) -> Optional[Tag]:
    return soup.select_one("#content")


ROOT_CHAIN: Sequence[Strategy] = (
    Strategy("right-outer", _root_by_id),
    Strategy("title-column", _root_by_column),
    Strategy("intro-parent", _root_by_intro_parent),
    Strategy("content", _root_by_content),
)


def _title(soup: BeautifulSoup, root: Tag) -> str:
    for candidate in (root.select_one(TITLE_SELECTOR), soup.select_one(TITLE_SELECTOR), soup.find("h1"), soup.find("title")):
        if candidate is None:
            continue
        text = clean_text(candidate.get_text(" "))
        if text:
            return strip_brand_suffix(text)
    return ""


def _intro_html(root: Tag, base_url: str) -> str:
    box = root.select_one(INTRO_SELECTOR)
    if box is None:
        return ""
    box_soup = parse_html(str(box))
    for nav in box_soup.select(CATEGORY_NAV_SELECTOR):
        nav.decompose()
    html = sanitize_fragment(rewrite_relative_urls(str(box_soup), base_url))
    if len(clean_text(parse_html(html).get_text(" "))) < MIN_INTRO_TEXT:
        return ""
    return html


# =============================================================================
# Resource cards
# =============================================================================


def _without_nested(tags: List[Tag]) -> List[Tag]:
    ids = {id(t) for t in tags}
    return [t for t in tags if not any(id(parent) in ids for parent in t.parents)]


def _resource_lists(root: Tag) -> List[Tag]:
    lists = root.select(RESOURCE_LIST_SELECTOR)
    if lists:
        return _without_nested(lists)

    found = []
    for lst in root.find_all(["ul", "ol"]):
        items = lst.find_all("li", recursive=False)
        if len(items) >= 2 and all(li.find("a", href=True) and li.find("img") for li in items):
            found.append(lst)
    return _without_nested(found)


def _first_text(li: Tag, selectors: Sequence[str]) -> str:
    for selector in selectors:
        el = li.select_one(selector)
        text = clean_text(el.get_text(" ")) if el is not None else ""
        if text:
            return text
    return ""


def _resource_items(lst: Tag, base_url: str) -> List[ResourceItem]:
    items: List[ResourceItem] = []
    for li in lst.find_all("li"):
        anchor = li.find("a", href=True)
        href = absolute_url(anchor["href"], base_url) if anchor is not None else ""
        img = li.find("img")
        image_url = absolute_url(img.get("src") or img.get("data-src") or "", base_url) if img is not None else ""

        title = _first_text(li, [".abm-category-image-title strong", "strong"])
        if not title and img is not None:
            title = clean_text(img.get("alt"))
        subtitle = _first_text(li, [".abm-category-image-title i", "i"]) or DEFAULT_RESOURCE_SUBTITLE

        if not href or not title:
            continue
        items.append(ResourceItem(title=title, href=href, subtitle=subtitle, image_url=image_url))
    return items


# =============================================================================
# Publications
# =============================================================================


def _looks_like_citation_table(table: Tag) -> bool:
    rows = table.find_all("tr")
    if len(rows) < 2:
        return False
    numbered = 0
    for row in rows:
        first = row.find(["td", "th"])
        if first is not None and CITATION_NUMBER_RE.match(clean_text(first.get_text(" "))):
            numbered += 1
    return numbered / len(rows) >= CITATION_ROW_RATIO


def _publication_tables(root: Tag) -> List[Tag]:
    tables = [t for t in root.find_all("table") if t.select_one(CITATION_NUM_SELECTOR) is not None]
    if not tables:
        tables = [t for t in root.find_all("table") if _looks_like_citation_table(t)]
    return _without_nested(tables)


def _publication_items(table: Tag, base_url: str) -> List[PublicationItem]:
    items: List[PublicationItem] = []
    for row in table.find_all("tr"):
        cells = row.find_all("td")
        if len(cells) < 2:
            continue
        number = row.select_one(CITATION_NUM_SELECTOR)
        number_text = clean_text((number or cells[0]).get_text(" "))
        digits = re.sub(r"\D", "", number_text)

        cell = cells[1]
        citation = clean_text(cell.get_text(" "))
        if not citation:
            continue

        doi = ""
        for a in cell.find_all("a", href=True):
            if "doi.org" in a["href"].lower():
                doi = absolute_url(a["href"], base_url)
                break

        match = PRODUCT_SUFFIX_RE.search(citation)
        items.append(PublicationItem(
            citation=citation,
            order=int(digits) if digits else None,
            doi=doi,
            product=clean_text(match.group(1)) if match else "",
        ))

    # Unnumbered rows go last
    items.sort(key=lambda item: (item.order is None, item.order or 0))
    return items


# =============================================================================
# Ordered content blocks
# =============================================================================


def _strip_boilerplate(work: Tag) -> None:
    for el in work.select(CATEGORY_NAV_SELECTOR):
        el.decompose()
    for el in work.find_all(["script", "noscript", "style"]):
        if not el.decomposed:
            el.decompose()

    title = work.select_one(TITLE_SELECTOR)
    if title is not None:
        title.decompose()

    for selector in FREE_SAMPLE_SELECTORS:
        for el in work.select(selector):
            if not el.decomposed:
                el.decompose()
    for a in work.find_all("a"):
        if not a.decomposed and FREE_SAMPLE_TEXT in clean_text(a.get_text(" ")).lower():
            a.decompose()

    for heading in work.find_all(["h2", "h3", "h4"]):
        if clean_text(heading.get_text(" ")).lower() in SECTION_HEADINGS:
            heading.decompose()


def _html_block(segment: str) -> Optional[ContentBlock]:
    html = sanitize_fragment(segment)
    if not html:
        return None
    soup = parse_html(html)
    if len(clean_text(soup.get_text(" "))) < MIN_SEGMENT_TEXT and soup.find("table") is None:
        return None
    return ContentBlock(kind="html", title=BLOCK_TITLES["html"], html=html)


def _content_blocks(root: Tag, base_url: str) -> List[ContentBlock]:
    """Split the category body into blocks, keeping source order.

    Widgets are swapped for comment markers on a private copy of the
    root, the copy is serialized, and the markup is split back apart on
    those markers.
    """
    work_soup = parse_html(str(root))
    work = work_soup.find(True) or work_soup
    _strip_boilerplate(work)

    widgets: Dict[Tuple[str, int], ContentBlock] = {}

    for n, lst in enumerate(_resource_lists(work)):
        items = _resource_items(lst, base_url)
        if items:
            widgets[("resources", n)] = ContentBlock(kind="resources", title=BLOCK_TITLES["resources"], items=items)
        lst.replace_with(Comment(f"{BLOCK_MARKER}:resources:{n}"))

    for n, table in enumerate(_publication_tables(work)):
        items = _publication_items(table, base_url)
        if items:
            widgets[("publications", n)] = ContentBlock(
                kind="publications", title=BLOCK_TITLES["publications"], items=items
            )
        table.replace_with(Comment(f"{BLOCK_MARKER}:publications:{n}"))

    html = rewrite_relative_urls(work.decode_contents(), base_url)

    blocks: List[ContentBlock] = []
    pos = 0
    for match in BLOCK_MARKER_RE.finditer(html):
        block = _html_block(html[pos:match.start()])
        if block is not None:
            blocks.append(block)
        widget = widgets.get((match.group(1), int(match.group(2))))
        if widget is not None:
            blocks.append(widget)
        pos = match.end()

    tail = _html_block(html[pos:])
    if tail is not None:
        blocks.append(tail)
    return blocks


# =============================================================================
# Breadcrumbs
# =============================================================================


def extract_category_breadcrumbs(soup: BeautifulSoup, page_url: str = BASE_URL) -> List[Breadcrumb]:
    """Category crumbs (``.html`` links or link-less items), Home dropped."""
    container = None
    for selector in CATEGORY_BREADCRUMB_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            break
    if container is None:
        return []

    raw: List[Tuple[str, str]] = []
    items = container.find_all("li")
    if items:
        for li in items:
            anchor = li.find("a", href=True)
            text = clean_text((anchor or li).get_text(" "))
            raw.append((text, absolute_url(anchor["href"], page_url) if anchor is not None else ""))
    else:
        for anchor in container.find_all("a", href=True):
            raw.append((clean_text(anchor.get_text(" ")), absolute_url(anchor["href"], page_url)))

    crumbs: List[Breadcrumb] = []
    seen = set()
    for title, url in raw:
        if not title or title.lower() == "home":
            continue
        url = normalize_source_url(url) if url else ""
        if url and not url.lower().endswith(".html"):
            continue
        if (title, url) in seen:
            continue
        seen.add((title, url))
        crumbs.append(Breadcrumb(title=title, url=url, slug=slug_from_url(url) if url else ""))
    return crumbs


# =============================================================================
# Entry point
# =============================================================================


def extract_category(html: str, source_url: str, base_url: str = BASE_URL) -> CategoryExtraction:
    """Parse a category page into title, intro, breadcrumbs and ordered blocks.

    A page without a recognizable content root yields an empty extraction
    with ``root_found=False``.
    """
    soup = parse_html(html)
    extraction = CategoryExtraction(
        source_url=source_url,
        breadcrumbs=extract_category_breadcrumbs(soup, source_url or base_url),
    )

    root, strategy = run_chain("category-root", ROOT_CHAIN, soup)
    if root is None:
        logger.debug(f"No category root found in {source_url}")
        return extraction

    extraction.root_found = True
    extraction.title = _title(soup, root)
    extraction.intro_html = _intro_html(root, base_url)
    extraction.content_blocks = _content_blocks(root, base_url)

    logger.debug(
        f"Parsed category {source_url} (root: {strategy}): "
        f"blocks={extraction.block_kinds()} crumbs={len(extraction.breadcrumbs)}"
    )
    return extraction


def category_summary(extraction: CategoryExtraction) -> Dict[str, Any]:
    resources = [b for b in extraction.content_blocks if b.kind == "resources"]
    publications = [b for b in extraction.content_blocks if b.kind == "publications"]
    return {
        "title": extraction.title,
        "rootFound": extraction.root_found,
        "introHtmlLen": len(extraction.intro_html),
        "resourcesCount": sum(len(b.items) for b in resources),
        "pubsCount": sum(len(b.items) for b in publications),
        "breadcrumbs": [c.title for c in extraction.breadcrumbs],
        "contentBlockTypes": extraction.block_kinds(),
    }


def extraction_to_dict(extraction: CategoryExtraction) -> Dict[str, Any]:
    return asdict(extraction)


# =============================================================================
# Product listings
# =============================================================================

NEXT_PAGE_TEXTS = {"next", ">", "›", "»", "next page"}


def extract_product_links(
    html: str,
    base_url: str = BASE_URL,
    exclude_slugs: AbstractSet[str] = frozenset(),
) -> List[ProductLink]:
    """Same-origin ``.html`` links on a category page that look like products.

    Slugs shorter than MIN_PRODUCT_SLUG_LENGTH (about, faq, ...) and slugs in
    ``exclude_slugs`` (known categories) are skipped. Deduped by URL; an
    image-only link picks up the text of a later link to the same page.
    """
    soup = parse_html(html)
    seen: Dict[str, ProductLink] = {}
    links: List[ProductLink] = []
    for a in soup.find_all("a", href=True):
        url = normalize_source_url(a["href"], base_url)
        if not url or not is_same_origin(url, base_url):
            continue
        text = clean_text(a.get_text(" "))
        if url in seen:
            if text and not seen[url].text:
                seen[url].text = text
            continue
        parsed = parse_url(url)
        if parsed is None or not parsed.path.lower().endswith(PRODUCT_PAGE_EXTENSION):
            continue
        slug = slug_from_url(url)
        if len(slug) < MIN_PRODUCT_SLUG_LENGTH or slug in exclude_slugs:
            continue
        seen[url] = ProductLink(url=url, slug=slug, text=text)
        links.append(seen[url])
    return links


def extract_next_page_url(html: str, current_url: str) -> str:
    """Next listing page: ``<link rel="next">``, then a next link in the pagination."""
    soup = parse_html(html)
    candidates: List[str] = []

    link = soup.find("link", rel="next")
    if link and link.get("href"):
        candidates.append(link["href"])

    pagination = soup.select_one("ul.pagination, nav.pagination, div.pagination, .pagination")
    if pagination:
        for a in pagination.find_all("a", href=True):
            rel = a.get("rel") or []
            if "next" in rel or "next" in (a.get("class") or []):
                candidates.append(a["href"])
            elif clean_text(a.get_text(" ")).lower() in NEXT_PAGE_TEXTS:
                candidates.append(a["href"])

    for href in candidates:
        url = absolute_url(href, current_url)
        if url and url != current_url and is_same_origin(url, current_url):
            return url
    return ""
