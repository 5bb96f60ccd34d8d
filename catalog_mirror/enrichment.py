"""On-demand enrichment of stored products.

The merge rule that keeps this safe to run over and over: a stored field
is only ever replaced by a non-empty extracted value. A re-scrape that
comes back empty (template change, partial page, blocked request) leaves
the previous good data where it was.
"""

import json
import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from catalog_mirror.config import BRAND_KEY, DB_PATH
from catalog_mirror.db import StoreWriteError, find_product, patch_product, utc_now
from catalog_mirror.fetcher import INTERACTIVE_FETCHER_CONFIG, Fetcher, FetchError
from catalog_mirror.logging_config import get_logger, log_event
from catalog_mirror.models import TAB_HTML_FIELDS, ProductExtraction, ProductRecord
from catalog_mirror.product_parser import extract_product, extract_specifications
from catalog_mirror.url_validation import URLValidationError, product_url_for_slug

__all__ = [
    "NoDataError",
    "EnrichmentResult",
    "CONTENT_FIELDS",
    "needs_enrichment",
    "build_patch",
    "merge_extraction",
    "EnrichmentOrchestrator",
]

logger = get_logger("enrichment")

# Fields whose extraction counts as "the page was scraped successfully"
CONTENT_FIELDS = TAB_HTML_FIELDS + ("docs", "image_urls", "category_path")

STATUS_FRESH = "fresh"
STATUS_ENRICHED = "enriched"
STATUS_EMPTY = "empty"
STATUS_FETCH_FAILED = "fetch_failed"
STATUS_PARSE_FAILED = "parse_failed"
STATUS_STORE_FAILED = "store_failed"
STATUS_DRY_RUN = "dry_run"


class NoDataError(Exception):
    """No stored record for a slug; the caller should send the user to ``fallback_url``."""

    def __init__(self, slug: str, fallback_url: str):
        super().__init__(f"No stored product for '{slug}'")
        self.slug = slug
        self.fallback_url = fallback_url


@dataclass
class EnrichmentResult:
    record: ProductRecord
    status: str
    patched_fields: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status in (STATUS_FETCH_FAILED, STATUS_PARSE_FAILED, STATUS_STORE_FAILED)


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def needs_enrichment(
    record: ProductRecord,
    max_age: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> bool:
    """True if the record was never scraped, is missing key content, or is stale."""
    if not record.enriched_at:
        return True
    if not record.image_urls:
        return True
    if not any(getattr(record, name) for name in TAB_HTML_FIELDS):
        return True
    if not record.category_path:
        return True

    if max_age is not None:
        enriched = _parse_timestamp(record.enriched_at)
        if enriched is None:
            return True
        current = now or datetime.now(timezone.utc)
        if current - enriched > max_age:
            return True
    return False


def _meaningful(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return True


def build_patch(extraction: ProductExtraction) -> Dict[str, Any]:
    """Fields of ``extraction`` worth writing. Empty values never make it in."""
    patch: Dict[str, Any] = {}

    if _meaningful(extraction.title):
        patch["title"] = extraction.title.strip()
    if _meaningful(extraction.sku):
        patch["sku"] = extraction.sku.strip()

    # Slugs and titles are parallel lists and only ever move together
    if _meaningful(extraction.category_path) and len(extraction.category_path) == len(extraction.category_path_titles):
        patch["category_path"] = list(extraction.category_path)
        patch["category_path_titles"] = list(extraction.category_path_titles)

    for name in TAB_HTML_FIELDS:
        value = getattr(extraction, name)
        if _meaningful(value):
            patch[name] = value

    if _meaningful(extraction.docs):
        patch["docs"] = list(extraction.docs)
    if _meaningful(extraction.image_urls):
        patch["image_urls"] = list(extraction.image_urls)

    return patch


def merge_extraction(
    record: ProductRecord,
    extraction: ProductExtraction,
    now: str,
) -> Tuple[ProductRecord, Dict[str, Any]]:
    """Apply the non-empty patch of ``extraction`` to a copy of ``record``.

    ``enriched_at`` is stamped with ``now`` only when some content field
    was extracted. ``record`` itself is never modified.

    Returns:
        ``(merged_record, patch)``
    """
    patch = build_patch(extraction)
    if any(name in patch for name in CONTENT_FIELDS):
        patch["enriched_at"] = now
    return replace(record, **patch), patch


class EnrichmentOrchestrator:
    """Fetch, extract and merge one product at a time.

    Usage:
        orchestrator = EnrichmentOrchestrator(db_path, Fetcher(BATCH_FETCHER_CONFIG))
        result = orchestrator.ensure_enriched_by_slug("blastaq-2x-qpcr-mastermix")

    Failures never raise out of ``ensure_enriched``; they come back as a
    status with the untouched record.
    """

    def __init__(
        self,
        db_path: str = DB_PATH,
        fetcher: Optional[Fetcher] = None,
        include_specifications: bool = False,
        dry_run: bool = False,
        max_age: Optional[timedelta] = None,
        dump_dir: Optional[Path] = None,
        brand: str = BRAND_KEY,
    ) -> None:
        self.db_path = db_path
        self.fetcher = fetcher or Fetcher(INTERACTIVE_FETCHER_CONFIG)
        self.include_specifications = include_specifications
        self.dry_run = dry_run
        self.max_age = max_age
        self.dump_dir = Path(dump_dir) if dump_dir else None
        self.brand = brand

    def _source_url(self, record: ProductRecord) -> str:
        return record.source_url or product_url_for_slug(record.slug)

    def _dump(self, slug: str, html: str, payload: Dict[str, Any]) -> None:
        if self.dump_dir is None:
            return
        self.dump_dir.mkdir(parents=True, exist_ok=True)
        (self.dump_dir / f"{slug}.html").write_text(html, encoding="utf-8")
        (self.dump_dir / f"{slug}.json").write_text(
            json.dumps(payload, ensure_ascii=False, indent=2, default=str),
            encoding="utf-8",
        )

    def _failed(self, record: ProductRecord, status: str, error: Exception, url: str) -> EnrichmentResult:
        log_event(
            "enrich_failed",
            {
                "message": f"Enrichment of {record.slug} failed ({status}): {error}",
                "slug": record.slug,
                "url": url,
                "status": status,
                "error": str(error),
            },
            level=logging.WARNING,
            logger_name="enrichment",
        )
        return EnrichmentResult(record=record, status=status, error=str(error))

    def _write(self, record: ProductRecord, patch: Dict[str, Any], url: str) -> EnrichmentResult:
        fields = sorted(patch)
        if self.dry_run:
            merged = replace(record, **patch)
            logger.info(f"[dry-run] {record.slug}: would patch {fields}")
            return EnrichmentResult(record=merged, status=STATUS_DRY_RUN, patched_fields=fields)

        try:
            stored = patch_product(self.db_path, record.slug, patch, brand=record.brand)
        except StoreWriteError as e:
            return self._failed(record, STATUS_STORE_FAILED, e, url)
        if stored is None:
            return self._failed(record, STATUS_STORE_FAILED, StoreWriteError("record no longer stored"), url)

        log_event(
            "product_enriched",
            {
                "message": f"Enriched {record.slug}: {', '.join(fields)}",
                "slug": record.slug,
                "url": url,
                "fields": fields,
            },
            logger_name="enrichment",
        )
        return EnrichmentResult(record=stored, status=STATUS_ENRICHED, patched_fields=fields)

    def ensure_enriched(self, record: ProductRecord, force: bool = False) -> EnrichmentResult:
        """Enrich ``record`` if it needs it (or always, with ``force``)."""
        if not force and not needs_enrichment(record, self.max_age):
            return EnrichmentResult(record=record, status=STATUS_FRESH)

        url = self._source_url(record)
        try:
            html = self.fetcher.fetch(url)
        except (FetchError, URLValidationError) as e:
            return self._failed(record, STATUS_FETCH_FAILED, e, url)

        try:
            extraction = extract_product(html, url, include_specifications=self.include_specifications)
        except Exception as e:
            return self._failed(record, STATUS_PARSE_FAILED, e, url)
        self._dump(record.slug, html, asdict(extraction))

        merged, patch = merge_extraction(record, extraction, utc_now())
        if "enriched_at" not in patch:
            logger.warning(f"Nothing extracted for {record.slug} from {url}")
            return EnrichmentResult(record=record, status=STATUS_EMPTY)

        return self._write(record, patch, url)

    def ensure_specifications(self, record: ProductRecord, force: bool = False) -> EnrichmentResult:
        """Refresh only ``specs_html`` (price rows stripped)."""
        if not force and record.specs_html:
            return EnrichmentResult(record=record, status=STATUS_FRESH)

        url = self._source_url(record)
        try:
            html = self.fetcher.fetch(url)
        except (FetchError, URLValidationError) as e:
            return self._failed(record, STATUS_FETCH_FAILED, e, url)

        try:
            specs_html = extract_specifications(html, url)
        except Exception as e:
            return self._failed(record, STATUS_PARSE_FAILED, e, url)
        self._dump(record.slug, html, {"url": url, "specs_html": specs_html})
        if not specs_html:
            logger.warning(f"No Specifications panel for {record.slug} at {url}")
            return EnrichmentResult(record=record, status=STATUS_EMPTY)

        return self._write(record, {"specs_html": specs_html}, url)

    def ensure_enriched_by_slug(self, slug: str, force: bool = False) -> EnrichmentResult:
        """Look the product up and enrich it.

        Raises:
            NoDataError: If no product is stored under ``slug``
        """
        record = find_product(self.db_path, slug=slug, brand=self.brand)
        if record is None:
            raise NoDataError(slug, product_url_for_slug(slug))
        return self.ensure_enriched(record, force=force)
