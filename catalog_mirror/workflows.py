"""High-level mirroring workflows.

The user-facing resolution flow (catalog number -> product location) and
the operator batch jobs the CLI drives: product enrichment,
Specifications refresh, and category import/refresh.
"""

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set
from urllib.parse import quote

from catalog_mirror.catalog_number import is_identifier_like, normalize_query
from catalog_mirror.category_parser import (
    category_summary,
    extract_category,
    extract_next_page_url,
    extract_product_links,
    extraction_to_dict,
)
from catalog_mirror.config import BASE_URL, BATCH_DELAY, BRAND_KEY, MAX_LISTING_PAGES
from catalog_mirror.db import (
    StoreWriteError,
    create_or_patch_category,
    create_product,
    find_category,
    find_product,
    find_product_by_title,
    get_category_count,
    get_product_count,
    init_db,
    list_categories,
    list_products,
    move_category,
    patch_product,
)
from catalog_mirror.enrichment import EnrichmentOrchestrator, EnrichmentResult, NoDataError, needs_enrichment
from catalog_mirror.fetcher import Fetcher, FetchError
from catalog_mirror.html_utils import humanize_slug, strip_brand_suffix
from catalog_mirror.logging_config import get_logger, log_event
from catalog_mirror.models import Breadcrumb, CategoryRecord, ProductLink, ProductRecord
from catalog_mirror.product_parser import extract_product, extraction_summary
from catalog_mirror.search import resolve_search, search_url
from catalog_mirror.shutdown import mark_item, shutdown_requested
from catalog_mirror.url_validation import (
    URLValidationError,
    normalize_source_url,
    product_url_for_slug,
    slug_from_url,
)

__all__ = [
    "ResolveOutcome",
    "CategorySyncResult",
    "brand_root",
    "product_location",
    "resolve_query",
    "preview_product",
    "enrich_products",
    "refresh_specs",
    "sync_category",
    "import_category",
    "refresh_categories",
    "discover_products",
    "extract_category_file",
    "store_stats",
]

logger = get_logger("workflows")


@dataclass
class ResolveOutcome:
    """Where a search should send the user.

    ``internal`` targets are storefront paths; the others are supplier URLs.
    """

    target: str
    internal: bool
    reason: str
    product: Optional[ProductRecord] = None


@dataclass
class CategorySyncResult:
    path: List[str]
    status: str
    title: str = ""
    block_kinds: List[str] = field(default_factory=list)
    created_parents: List[str] = field(default_factory=list)
    error: Optional[str] = None


def brand_root(brand: str = BRAND_KEY) -> str:
    return f"/products/{brand}"


def product_location(record: ProductRecord, brand: str = BRAND_KEY) -> str:
    """Storefront location of a product: its category page with the product opened."""
    href = brand_root(brand)
    if record.category_path:
        href += "/" + "/".join(record.category_path)
    return f"{href}?open={quote(record.slug)}"


# =============================================================================
# Resolution flow
# =============================================================================


def _store_resolved_product(
    db_path: str,
    query: str,
    product_url: str,
    title: str,
    category_path: List[str],
    category_path_titles: List[str],
) -> ProductRecord:
    """Create (or patch) the minimal index record for a resolved catalog number."""
    slug = slug_from_url(product_url)
    fields: Dict[str, Any] = {
        "title": title,
        "sku": query,
        "source_url": normalize_source_url(product_url),
    }
    if category_path:
        fields["category_path"] = category_path
        fields["category_path_titles"] = category_path_titles

    existing = find_product(db_path, slug=slug)
    if existing is not None:
        patched = patch_product(db_path, slug, fields)
        return patched or existing
    return create_product(db_path, ProductRecord(slug=slug, **fields))


def resolve_query(
    query: str,
    db_path: str,
    fetcher: Fetcher,
    allow_writes: bool = True,
    brand: str = BRAND_KEY,
) -> ResolveOutcome:
    """Decide where a storefront search goes.

    1. A stored product matching the catalog number or title: its page.
    2. A keyword query: the supplier's search page (never migrated).
    3. A catalog number with exactly one supplier hit: a minimal record is
       created and the user lands on it.
    4. Anything else: the supplier's search page.
    """
    q = normalize_query(query)
    if not q:
        return ResolveOutcome(target=brand_root(brand), internal=True, reason="empty")

    identifier = is_identifier_like(q)
    record = find_product(db_path, sku=q, brand=brand) if identifier else None
    if record is None:
        record = find_product_by_title(db_path, q, brand=brand)
    if record is not None:
        return ResolveOutcome(target=product_location(record, brand), internal=True, reason="store_hit", product=record)

    fallback = search_url(q)
    if not identifier:
        return ResolveOutcome(target=fallback, internal=False, reason="keyword")

    try:
        html = fetcher.fetch(fallback)
    except (FetchError, URLValidationError) as e:
        logger.warning(f"Search for '{q}' failed: {e}")
        return ResolveOutcome(target=fallback, internal=False, reason="search_failed")
    try:
        resolution = resolve_search(html, q)
    except Exception as e:
        logger.warning(f"Could not parse search results for '{q}': {e}")
        return ResolveOutcome(target=fallback, internal=False, reason="search_failed")

    log_event(
        "search_resolved",
        {
            "message": f"Search '{q}' resolved as {resolution.kind} ({len(resolution.candidates)} candidates)",
            "query": q,
            "kind": resolution.kind,
            "candidates": len(resolution.candidates),
        },
        logger_name="workflows",
    )
    if resolution.kind != "single" or not resolution.product_url:
        return ResolveOutcome(target=fallback, internal=False, reason=resolution.kind)

    product_url = resolution.product_url
    if not allow_writes:
        return ResolveOutcome(target=product_url, internal=False, reason="writes_disabled")

    # The detail page supplies the category path; without it the product
    # still gets a record and lands on the brand root.
    title, path, path_titles = "", [], []
    try:
        detail = extract_product(fetcher.fetch(product_url), product_url)
        title = detail.title or ""
        path, path_titles = detail.category_path, detail.category_path_titles
    except Exception as e:
        logger.warning(f"Could not read detail page {product_url}: {e}")

    title = title or resolution.candidates[0].title or q
    try:
        record = _store_resolved_product(db_path, q, product_url, title, path, path_titles)
    except StoreWriteError as e:
        logger.error(f"Could not store resolved product for '{q}': {e}")
        return ResolveOutcome(target=product_url, internal=False, reason="store_failed")

    return ResolveOutcome(target=product_location(record, brand), internal=True, reason="resolved", product=record)


def preview_product(url: str, fetcher: Fetcher, include_specifications: bool = False) -> Dict[str, Any]:
    """Fetch and parse one product page without writing anything.

    Raises:
        URLValidationError: If ``url`` is not a supplier URL
        FetchError: If the page cannot be fetched
    """
    html = fetcher.fetch(url)
    return extraction_summary(extract_product(html, url, include_specifications=include_specifications))


# =============================================================================
# Product batch jobs
# =============================================================================


def _select_products(
    db_path: str,
    slug: Optional[str],
    source_url: Optional[str],
    limit: int,
    missing_field: Optional[str] = None,
    pending: Optional[Callable[[ProductRecord], bool]] = None,
) -> List[ProductRecord]:
    """Products a batch job should visit.

    ``pending`` filters the whole catalog before ``limit`` is applied, so
    repeated capped runs keep moving through records that still need work.
    """
    if slug:
        record = find_product(db_path, slug=slug)
        if record is None:
            raise NoDataError(slug, product_url_for_slug(slug))
        return [record]
    if source_url:
        record = find_product(db_path, source_url=source_url)
        if record is None:
            raise NoDataError(slug_from_url(source_url), source_url)
        return [record]
    if pending is None:
        return list_products(db_path, limit=limit, missing_field=missing_field)
    targets = [r for r in list_products(db_path, missing_field=missing_field) if pending(r)]
    return targets[:limit] if limit > 0 else targets


def _run_batch(
    job: str,
    targets: Sequence[ProductRecord],
    step: Callable[[ProductRecord], EnrichmentResult],
    delay: float,
    sleep: Callable[[float], None],
) -> Dict[str, int]:
    summary = {"total": len(targets), "processed": 0, "enriched": 0, "skipped": 0, "empty": 0, "failed": 0}

    for i, record in enumerate(targets, 1):
        if shutdown_requested():
            logger.warning(f"Shutdown requested, stopping {job} after {summary['processed']} items")
            break

        mark_item(record.slug)
        result = step(record)
        summary["processed"] += 1
        if result.status in ("enriched", "dry_run"):
            summary["enriched"] += 1
        elif result.status == "fresh":
            summary["skipped"] += 1
        elif result.status == "empty":
            summary["empty"] += 1
        else:
            summary["failed"] += 1

        detail = f" ({', '.join(result.patched_fields)})" if result.patched_fields else ""
        if result.error:
            detail = f" ({result.error})"
        print(f"[{i}/{len(targets)}] {record.slug}: {result.status}{detail}")

        if result.status != "fresh" and i < len(targets):
            sleep(delay)

    log_event(
        "batch_complete",
        {"message": f"{job} complete: {summary}", "job": job, **summary},
        logger_name="workflows",
    )
    return summary


def enrich_products(
    db_path: str,
    fetcher: Fetcher,
    slug: Optional[str] = None,
    source_url: Optional[str] = None,
    limit: int = 0,
    only_if_empty: bool = False,
    include_specifications: bool = False,
    dry_run: bool = False,
    delay: float = BATCH_DELAY,
    dump_dir: Optional[Path] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, int]:
    """Re-enrich stored products.

    Without ``only_if_empty`` every target is re-fetched; with it, only
    records that still need enrichment are.

    Raises:
        NoDataError: If ``slug``/``source_url`` names a product that is not stored
    """
    orchestrator = EnrichmentOrchestrator(
        db_path,
        fetcher,
        include_specifications=include_specifications,
        dry_run=dry_run,
        dump_dir=dump_dir,
    )
    targets = _select_products(
        db_path, slug, source_url, limit,
        pending=(lambda r: needs_enrichment(r, orchestrator.max_age)) if only_if_empty else None,
    )
    print(f"Enriching {len(targets)} products (dry_run={dry_run}, with_specs={include_specifications})")
    return _run_batch(
        "enrich",
        targets,
        lambda record: orchestrator.ensure_enriched(record, force=not only_if_empty),
        delay,
        sleep,
    )


def refresh_specs(
    db_path: str,
    fetcher: Fetcher,
    slug: Optional[str] = None,
    source_url: Optional[str] = None,
    limit: int = 0,
    only_if_empty: bool = False,
    dry_run: bool = False,
    delay: float = BATCH_DELAY,
    dump_dir: Optional[Path] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, int]:
    """Re-extract only the Specifications panel of stored products."""
    targets = _select_products(
        db_path, slug, source_url, limit, missing_field="specs_html" if only_if_empty else None
    )
    orchestrator = EnrichmentOrchestrator(db_path, fetcher, dry_run=dry_run, dump_dir=dump_dir)
    print(f"Refreshing Specifications for {len(targets)} products (dry_run={dry_run})")
    return _run_batch(
        "specs",
        targets,
        lambda record: orchestrator.ensure_specifications(record, force=not only_if_empty),
        delay,
        sleep,
    )


# =============================================================================
# Category jobs
# =============================================================================


def _ensure_parents(
    db_path: str,
    path: List[str],
    crumbs: List[Breadcrumb],
    dry_run: bool,
) -> List[str]:
    """Create any missing ancestor categories of ``path``. Returns the created path keys."""
    created: List[str] = []
    for depth in range(1, len(path)):
        sub_path = path[:depth]
        if find_category(db_path, sub_path) is not None:
            continue
        crumb = crumbs[depth - 1] if depth - 1 < len(crumbs) else None
        title = strip_brand_suffix(crumb.title) if crumb else humanize_slug(sub_path[-1])
        source = crumb.url if crumb and crumb.url else product_url_for_slug(sub_path[-1])
        if not dry_run:
            create_or_patch_category(db_path, sub_path, {"title": title, "source_url": source})
        created.append("/".join(sub_path))
    return created


def sync_category(
    db_path: str,
    fetcher: Fetcher,
    source_url: str,
    current_path: Optional[List[str]] = None,
    dry_run: bool = False,
) -> CategorySyncResult:
    """Fetch one category page and write it (plus missing ancestors) to the store.

    The breadcrumb decides the path. When a refreshed category's path
    changes but another category already owns the new path, the current
    path is kept and only the content is refreshed.
    """
    fallback_path = list(current_path) if current_path else [slug_from_url(source_url)]
    try:
        html = fetcher.fetch(source_url)
    except (FetchError, URLValidationError) as e:
        logger.warning(f"Could not fetch category {source_url}: {e}")
        return CategorySyncResult(path=fallback_path, status="fetch_failed", error=str(e))

    try:
        extraction = extract_category(html, source_url)
    except Exception as e:
        logger.warning(f"Could not parse category {source_url}: {e}")
        return CategorySyncResult(path=fallback_path, status="parse_failed", error=str(e))
    crumbs = [c for c in extraction.breadcrumbs if c.slug]
    path = [c.slug for c in crumbs] or fallback_path
    title = extraction.title or (strip_brand_suffix(crumbs[-1].title) if crumbs else "")
    result = CategorySyncResult(path=path, status="dry_run" if dry_run else "synced", title=title,
                                block_kinds=extraction.block_kinds())

    try:
        result.created_parents = _ensure_parents(db_path, path, crumbs, dry_run)
        if dry_run:
            return result

        if current_path and list(current_path) != path:
            if find_category(db_path, path) is not None:
                logger.warning(f"Path conflict: {'/'.join(path)} already exists, keeping {'/'.join(current_path)}")
                result.path = path = list(current_path)
            else:
                move_category(db_path, current_path, path)

        fields: Dict[str, Any] = {"source_url": normalize_source_url(source_url), "parent_path": path[:-1]}
        if title:
            fields["title"] = title
        if extraction.intro_html:
            fields["intro_html"] = extraction.intro_html
        if extraction.content_blocks:
            fields["content_blocks"] = extraction.content_blocks

        _, created = create_or_patch_category(db_path, path, fields)
        result.status = "created" if created else "synced"
    except StoreWriteError as e:
        logger.error(f"Could not store category {source_url}: {e}")
        result.status, result.error = "store_failed", str(e)
        return result

    log_event(
        "category_refreshed",
        {
            "message": f"Category {'/'.join(path)} {result.status}: {result.block_kinds}",
            "path": path,
            "url": source_url,
            "status": result.status,
            "blocks": result.block_kinds,
            "created_parents": result.created_parents,
        },
        logger_name="workflows",
    )
    return result


def import_category(db_path: str, fetcher: Fetcher, url: str, dry_run: bool = False) -> CategorySyncResult:
    """Seed one category (and its ancestors) from a supplier category URL."""
    init_db(db_path)
    return sync_category(db_path, fetcher, url, dry_run=dry_run)


def refresh_categories(
    db_path: str,
    fetcher: Fetcher,
    limit: int = 0,
    dry_run: bool = False,
    delay: float = BATCH_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, int]:
    """Re-extract every stored category that has a source URL."""
    targets = list_categories(db_path, limit=limit, with_source_url=True)
    summary = {"total": len(targets), "processed": 0, "synced": 0, "failed": 0}
    print(f"Refreshing {len(targets)} categories (dry_run={dry_run})")

    for i, category in enumerate(targets, 1):
        if shutdown_requested():
            logger.warning(f"Shutdown requested, stopping after {summary['processed']} categories")
            break

        mark_item(category.path_key)
        result = sync_category(db_path, fetcher, category.source_url, current_path=category.path, dry_run=dry_run)
        summary["processed"] += 1
        if result.error:
            summary["failed"] += 1
        else:
            summary["synced"] += 1
        print(f"[{i}/{len(targets)}] {category.path_key} -> {'/'.join(result.path)}: "
              f"{result.status} {result.block_kinds or ''}")

        if i < len(targets):
            sleep(delay)

    log_event(
        "batch_complete",
        {"message": f"categories complete: {summary}", "job": "categories", **summary},
        logger_name="workflows",
    )
    return summary


DISCOVER_TITLE_MIN_LENGTH = 3


def _listing_links(
    fetcher: Fetcher,
    category: CategoryRecord,
    exclude_slugs: Set[str],
    max_pages: int,
) -> List[ProductLink]:
    """Product links across a category listing and its following pages.

    Raises:
        FetchError: If the first page cannot be fetched
    """
    links: List[ProductLink] = []
    visited: Set[str] = set()
    url = category.source_url
    while url and url not in visited and len(visited) < max_pages:
        visited.add(url)
        try:
            html = fetcher.fetch(url)
        except (FetchError, URLValidationError) as e:
            if len(visited) == 1:
                raise
            logger.warning(f"Stopping pagination of {category.path_key} at {url}: {e}")
            break
        links.extend(extract_product_links(html, exclude_slugs=exclude_slugs))
        url = extract_next_page_url(html, url)
    return links


def _path_titles(db_path: str, path: List[str]) -> List[str]:
    titles = []
    for depth in range(1, len(path) + 1):
        node = find_category(db_path, path[:depth])
        titles.append(node.title if node and node.title else humanize_slug(path[depth - 1]))
    return titles


def discover_products(
    db_path: str,
    fetcher: Fetcher,
    limit: int = 0,
    max_pages: int = MAX_LISTING_PAGES,
    dry_run: bool = False,
    delay: float = BATCH_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, int]:
    """Crawl stored category listings and create minimal records for new products.

    Existing products are left alone; ``--enrich --only-if-empty`` fills the
    new records in afterwards. ``limit`` caps the number of categories.
    """
    categories = list_categories(db_path, limit=limit, with_source_url=True)
    category_slugs = {segment for c in list_categories(db_path) for segment in c.path}
    summary = {"total": len(categories), "processed": 0, "created": 0, "existing": 0, "failed": 0}
    seen: Set[str] = set()
    print(f"Discovering products in {len(categories)} categories (dry_run={dry_run})")

    for i, category in enumerate(categories, 1):
        if shutdown_requested():
            logger.warning(f"Shutdown requested, stopping after {summary['processed']} categories")
            break

        mark_item(category.path_key)
        summary["processed"] += 1
        try:
            links = _listing_links(fetcher, category, category_slugs, max_pages)
        except (FetchError, URLValidationError) as e:
            logger.warning(f"Could not fetch category {category.source_url}: {e}")
            summary["failed"] += 1
            print(f"[{i}/{len(categories)}] {category.path_key}: fetch_failed")
            continue
        except Exception as e:
            logger.warning(f"Could not parse category listing {category.source_url}: {e}")
            summary["failed"] += 1
            print(f"[{i}/{len(categories)}] {category.path_key}: parse_failed")
            continue

        titles = _path_titles(db_path, category.path)
        created = 0
        for link in links:
            if link.slug in seen:
                continue
            seen.add(link.slug)
            if find_product(db_path, slug=link.slug) is not None:
                summary["existing"] += 1
                continue
            record = ProductRecord(
                slug=link.slug,
                source_url=link.url,
                title=link.text if len(link.text) >= DISCOVER_TITLE_MIN_LENGTH else humanize_slug(link.slug),
                category_path=list(category.path),
                category_path_titles=titles,
            )
            if not dry_run:
                try:
                    create_product(db_path, record)
                except StoreWriteError as e:
                    logger.error(f"Could not store discovered product {link.slug}: {e}")
                    summary["failed"] += 1
                    continue
            created += 1
        summary["created"] += created
        print(f"[{i}/{len(categories)}] {category.path_key}: {len(links)} links, {created} new")

        if i < len(categories):
            sleep(delay)

    log_event(
        "batch_complete",
        {"message": f"discover complete: {summary}", "job": "discover", **summary},
        logger_name="workflows",
    )
    return summary


def extract_category_file(
    html_path: Path,
    base_url: str = BASE_URL,
    out_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """Offline extraction of a saved category page; optionally writes the full JSON."""
    html = Path(html_path).read_text(encoding="utf-8")
    extraction = extract_category(html, base_url, base_url=base_url)
    summary = category_summary(extraction)

    if out_path:
        out_path = Path(out_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        payload = extraction_to_dict(extraction)
        payload["meta"] = {"base_url": base_url, "source_file": str(html_path)}
        out_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info(f"Wrote {out_path}")
    return summary


def store_stats(db_path: str, brand: str = BRAND_KEY) -> Dict[str, int]:
    init_db(db_path)
    return {
        "products": get_product_count(db_path, brand=brand),
        "enriched": get_product_count(db_path, brand=brand, enriched_only=True),
        "missing_images": len(list_products(db_path, brand=brand, missing_field="image_urls")),
        "missing_specs": len(list_products(db_path, brand=brand, missing_field="specs_html")),
        "categories": get_category_count(db_path, brand=brand),
    }
