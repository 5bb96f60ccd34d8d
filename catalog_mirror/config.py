"""Configuration and constants for the catalog mirror."""

import os
import re
from pathlib import Path
from typing import Dict, List, Pattern, Tuple

from dotenv import load_dotenv

# Project root (parent of the catalog_mirror package)
_PROJECT_ROOT = Path(__file__).parent.parent

load_dotenv(dotenv_path=_PROJECT_ROOT / ".env")

__all__ = [
    "BASE_URL",
    "BRAND_KEY",
    "ALLOWED_DOMAINS",
    "HEADERS",
    "REQUEST_TIMEOUT",
    "BATCH_MAX_RETRIES",
    "RETRY_BACKOFF_BASE",
    "RETRY_BACKOFF_STEP",
    "BATCH_DELAY",
    "HTTP_ERROR_SAMPLE_CHARS",
    "SEARCH_PATH",
    "PRODUCT_PAGE_EXTENSION",
    "MAX_QUERY_LENGTH",
    "MAX_SEARCH_CANDIDATES",
    "MIN_PRODUCT_SLUG_LENGTH",
    "MAX_LISTING_PAGES",
    "BREADCRUMB_SELECTORS",
    "MAX_BREADCRUMB_SEGMENTS",
    "BREADCRUMB_KEEP_TAIL",
    "TAB_LABELS",
    "TAB_FIELDS",
    "SPECIFICATIONS_LABEL",
    "DOC_EXTENSIONS",
    "IMAGE_NOISE_TOKENS",
    "IMAGE_NOISE_PATTERNS",
    "IMAGE_SOURCE_ATTRS",
    "GALLERY_SELECTORS",
    "GALLERY_SCORED_SELECTORS",
    "PRODUCT_SCOPE_SELECTORS",
    "CATEGORY_ROOT_SELECTORS",
    "DEFAULT_RESOURCE_SUBTITLE",
    "DB_PATH",
    "LOG_DIR",
]

# Supplier site
BASE_URL = os.getenv("CATALOG_BASE_URL", "https://www.abmgood.com").rstrip("/")
BRAND_KEY = "abm"

ALLOWED_DOMAINS = frozenset({
    "www.abmgood.com",
    "abmgood.com",
})

# The supplier serves different markup (or blocks) non-browser clients
HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,ko-KR;q=0.8,ko;q=0.7",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

# Request timeout (seconds); the only cancellation point of an enrichment
REQUEST_TIMEOUT = float(os.getenv("CATALOG_REQUEST_TIMEOUT", "20"))

# Batch retry settings (network failures only, never HTTP statuses)
BATCH_MAX_RETRIES = 2
RETRY_BACKOFF_BASE = 0.7  # seconds before the first retry
RETRY_BACKOFF_STEP = 0.6  # added per further attempt

# Delay between items in batch runs (seconds)
BATCH_DELAY = float(os.getenv("CATALOG_BATCH_DELAY", "0.6"))

HTTP_ERROR_SAMPLE_CHARS = 120

# Search resolution
SEARCH_PATH = "/search"
PRODUCT_PAGE_EXTENSION = ".html"
MAX_QUERY_LENGTH = 24
MAX_SEARCH_CANDIDATES = 20

# Product discovery on category listings; shorter slugs are info pages
MIN_PRODUCT_SLUG_LENGTH = 10
MAX_LISTING_PAGES = 20


# =============================================================================
# Product page extraction
# =============================================================================

BREADCRUMB_SELECTORS: List[str] = [
    ".breadcrumbs",
    ".breadcrumb",
    "nav[aria-label='breadcrumb']",
]

# Some templates leak the product title into the trail
MAX_BREADCRUMB_SEGMENTS = 4
BREADCRUMB_KEEP_TAIL = 3

SPECIFICATIONS_LABEL = "Specifications"

TAB_LABELS: Tuple[str, ...] = (
    "Specifications",
    "Datasheet",
    "Documents",
    "FAQs",
    "References",
    "Reviews",
)

# Tab label -> ProductRecord field
TAB_FIELDS: Dict[str, str] = {
    "Specifications": "specs_html",
    "Datasheet": "datasheet_html",
    "Documents": "documents_html",
    "FAQs": "faqs_html",
    "References": "references_html",
    "Reviews": "reviews_html",
}

DOC_EXTENSIONS: Tuple[str, ...] = (".pdf", ".doc", ".docx")

IMAGE_NOISE_TOKENS: Tuple[str, ...] = (
    "logo",
    "flag",
    "favicon",
    "sprite",
    "icon",
    "badge",
    "payment",
    "social",
    "banner",
)

# Thumbnail sizes the storefront uses for its own logo and locale flag
IMAGE_NOISE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"-229x65\.", re.IGNORECASE),
    re.compile(r"-16x11\.", re.IGNORECASE),
]

# Lazy-load attributes, most specific (largest image) first
IMAGE_SOURCE_ATTRS: Tuple[str, ...] = (
    "data-zoom-image",
    "data-large-image",
    "data-image",
    "data-original",
    "data-src",
    "data-lazy",
    "data-lazy-src",
)

GALLERY_SELECTORS: List[str] = [
    "#image-additional",
    ".image-additional",
    ".thumbnails",
    ".product-images",
    ".product-image",
]

GALLERY_SCORED_SELECTORS: List[str] = [
    ".product-media",
    ".gallery",
    ".swiper",
    ".slick",
    ".owl-carousel",
]

PRODUCT_SCOPE_SELECTORS: List[str] = [
    "#content",
    "main",
    ".product-product",
    ".product-info",
    "body",
]


# =============================================================================
# Category page extraction
# =============================================================================

CATEGORY_ROOT_SELECTORS: List[str] = [
    ".col-md-9",
    ".col-lg-9",
    ".col-sm-12",
    ".col-xs-12",
]

DEFAULT_RESOURCE_SUBTITLE = "Learning Resources"


# Storage
DB_PATH = os.getenv("CATALOG_DB_PATH", str(_PROJECT_ROOT / "data" / "catalog.db"))
LOG_DIR = Path(os.getenv("CATALOG_LOG_DIR", str(_PROJECT_ROOT / "logs")))
