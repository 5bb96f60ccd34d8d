"""ABM catalog mirror and enrichment package."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from catalog_mirror.catalog_number import is_identifier_like, normalize_query
from catalog_mirror.category_parser import extract_category
from catalog_mirror.config import BASE_URL, BRAND_KEY, DB_PATH
from catalog_mirror.db import (
    find_category,
    find_product,
    get_category_node,
    get_product_count,
    init_db,
    list_child_categories,
)
from catalog_mirror.enrichment import EnrichmentOrchestrator, NoDataError
from catalog_mirror.fetcher import (
    BATCH_FETCHER_CONFIG,
    INTERACTIVE_FETCHER_CONFIG,
    Fetcher,
    FetcherConfig,
    FetchError,
)
from catalog_mirror.models import CategoryRecord, ProductExtraction, ProductRecord
from catalog_mirror.product_parser import extract_product
from catalog_mirror.search import resolve_search
from catalog_mirror.workflows import (
    discover_products,
    enrich_products,
    import_category,
    preview_product,
    refresh_categories,
    resolve_query,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "BASE_URL",
    "BRAND_KEY",
    "DB_PATH",
    # Models
    "ProductExtraction",
    "ProductRecord",
    "CategoryRecord",
    # Fetching
    "Fetcher",
    "FetcherConfig",
    "FetchError",
    "BATCH_FETCHER_CONFIG",
    "INTERACTIVE_FETCHER_CONFIG",
    # Parsing
    "is_identifier_like",
    "normalize_query",
    "resolve_search",
    "extract_product",
    "extract_category",
    # Store
    "init_db",
    "find_product",
    "find_category",
    "get_category_node",
    "list_child_categories",
    "get_product_count",
    # Workflows
    "EnrichmentOrchestrator",
    "NoDataError",
    "resolve_query",
    "preview_product",
    "enrich_products",
    "discover_products",
    "import_category",
    "refresh_categories",
]
