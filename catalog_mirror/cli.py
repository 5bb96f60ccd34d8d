"""Command-line interface for the catalog mirror."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

__all__ = ["main", "parse_args", "show_stats"]

from catalog_mirror.config import BASE_URL, BATCH_DELAY, DB_PATH, MAX_LISTING_PAGES
from catalog_mirror.db import init_db
from catalog_mirror.enrichment import NoDataError
from catalog_mirror.fetcher import BATCH_FETCHER_CONFIG, Fetcher, FetchError
from catalog_mirror.logging_config import setup_logging
from catalog_mirror.shutdown import get_shutdown_handler
from catalog_mirror.url_validation import URLValidationError
from catalog_mirror.workflows import (
    discover_products,
    enrich_products,
    extract_category_file,
    import_category,
    preview_product,
    refresh_categories,
    refresh_specs,
    resolve_query,
    store_stats,
)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="ABM catalog mirror: enrichment, Specifications refresh and category import",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Re-enrich every stored product (tabs, docs, images, category path)
  python -m catalog_mirror.cli --enrich

  # Only products that are still missing content, first 50
  python -m catalog_mirror.cli --enrich --only-if-empty --limit 50

  # One product, including the Specifications tab, without writing
  python -m catalog_mirror.cli --enrich --slug blastaq-2x-qpcr-mastermix --with-specs --dry-run

  # Fill in missing Specifications panels
  python -m catalog_mirror.cli --specs-only --only-if-empty

  # Create records for products linked from the stored category pages
  python -m catalog_mirror.cli --discover-products --max-pages 5

  # Import a category page (and its parents) from the supplier
  python -m catalog_mirror.cli --import-category https://www.abmgood.com/general-materials.html

  # Offline extraction of a saved category page
  python -m catalog_mirror.cli --extract-category page.html --out data/category.json

  # Inspect what the parser sees on a product page
  python -m catalog_mirror.cli --preview https://www.abmgood.com/blastaq-2x-qpcr-mastermix.html
        """,
    )

    # Product jobs
    parser.add_argument(
        "--enrich",
        action="store_true",
        help="Re-enrich stored products from their supplier pages",
    )
    parser.add_argument(
        "--slug",
        help="Only the product with this slug (use with --enrich/--specs-only)",
    )
    parser.add_argument(
        "--url",
        help="Only the product with this source URL (use with --enrich/--specs-only)",
    )
    parser.add_argument(
        "--with-specs",
        action="store_true",
        help="Also extract the Specifications tab during --enrich",
    )
    parser.add_argument(
        "--specs-only",
        action="store_true",
        help="Refresh only the Specifications panel (price rows removed)",
    )

    # Category jobs
    parser.add_argument(
        "--discover-products",
        action="store_true",
        help="Crawl stored category listings and create records for new products",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=MAX_LISTING_PAGES,
        help=f"Listing pages to follow per category for --discover-products (default: {MAX_LISTING_PAGES})",
    )
    parser.add_argument(
        "--refresh-categories",
        action="store_true",
        help="Re-extract every stored category with a source URL, repairing paths",
    )
    parser.add_argument(
        "--import-category",
        metavar="URL",
        help="Seed one category (and missing parents) from a supplier category URL",
    )
    parser.add_argument(
        "--extract-category",
        metavar="FILE",
        help="Extract a saved category HTML file offline and print a summary",
    )
    parser.add_argument(
        "--base-url",
        default=BASE_URL,
        help=f"Base URL for relative links in --extract-category (default: {BASE_URL})",
    )
    parser.add_argument(
        "--out",
        metavar="PATH",
        help="Write the full --extract-category result as JSON",
    )

    # Inspection
    parser.add_argument(
        "--preview",
        metavar="URL",
        help="Fetch and parse one product page, print a summary, write nothing",
    )
    parser.add_argument(
        "--resolve",
        metavar="QUERY",
        help="Run the storefront search resolution for a query and print the target",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show content store statistics and exit",
    )

    # Common options
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and parse but do not write to the store",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=0,
        help="Maximum number of records to process (default: 0 = all)",
    )
    parser.add_argument(
        "--only-if-empty",
        action="store_true",
        help="Skip records that already have the content being refreshed",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=BATCH_DELAY,
        help=f"Seconds to wait between items (default: {BATCH_DELAY})",
    )
    parser.add_argument(
        "--db",
        default=DB_PATH,
        help=f"SQLite database path (default: {DB_PATH})",
    )
    parser.add_argument(
        "--dump",
        metavar="DIR",
        help="Write fetched HTML and parsed JSON per product to this directory",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Debug logging (shows which extraction strategy matched)",
    )

    return parser.parse_args(argv)


def show_stats(db_path: str) -> None:
    """Display content store statistics."""
    stats = store_stats(db_path)

    print(f"\n{'='*50}")
    print(f"Database: {db_path}")
    print(f"{'='*50}")
    print(f"\nProducts: {stats['products']}")
    print(f"  enriched:        {stats['enriched']}")
    print(f"  missing images:  {stats['missing_images']}")
    print(f"  missing specs:   {stats['missing_specs']}")
    print(f"\nCategories: {stats['categories']}")
    print()


def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI. Returns the process exit status."""
    args = parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.stats:
        show_stats(args.db)
        return 0

    if args.extract_category:
        _print_json(extract_category_file(
            Path(args.extract_category),
            base_url=args.base_url,
            out_path=Path(args.out) if args.out else None,
        ))
        return 0

    fetcher = Fetcher(BATCH_FETCHER_CONFIG)
    dump_dir = Path(args.dump) if args.dump else None

    try:
        if args.preview:
            _print_json(preview_product(args.preview, fetcher, include_specifications=True))
            return 0

        if args.resolve:
            init_db(args.db)
            outcome = resolve_query(args.resolve, args.db, fetcher, allow_writes=not args.dry_run)
            print(f"{outcome.reason}: {outcome.target}")
            return 0

        init_db(args.db)
        handler = get_shutdown_handler().install()
        try:
            if args.import_category:
                result = import_category(args.db, fetcher, args.import_category, dry_run=args.dry_run)
                print(f"{'/'.join(result.path)}: {result.status} {result.block_kinds}")
                if result.created_parents:
                    print(f"Created parents: {', '.join(result.created_parents)}")
                return 1 if result.error else 0

            if args.discover_products:
                summary = discover_products(
                    args.db,
                    fetcher,
                    limit=args.limit,
                    max_pages=args.max_pages,
                    dry_run=args.dry_run,
                    delay=args.delay,
                )
            elif args.refresh_categories:
                summary = refresh_categories(
                    args.db, fetcher, limit=args.limit, dry_run=args.dry_run, delay=args.delay
                )
            elif args.specs_only:
                summary = refresh_specs(
                    args.db,
                    fetcher,
                    slug=args.slug,
                    source_url=args.url,
                    limit=args.limit,
                    only_if_empty=args.only_if_empty,
                    dry_run=args.dry_run,
                    delay=args.delay,
                    dump_dir=dump_dir,
                )
            elif args.enrich:
                summary = enrich_products(
                    args.db,
                    fetcher,
                    slug=args.slug,
                    source_url=args.url,
                    limit=args.limit,
                    only_if_empty=args.only_if_empty,
                    include_specifications=args.with_specs,
                    dry_run=args.dry_run,
                    delay=args.delay,
                    dump_dir=dump_dir,
                )
            else:
                print("Nothing to do. See --help for the available jobs.")
                return 0
        finally:
            handler.uninstall()

    except NoDataError as e:
        print(f"Error: {e}. Supplier page: {e.fallback_url}", file=sys.stderr)
        return 1
    except (URLValidationError, FetchError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"\nDone: {summary}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
