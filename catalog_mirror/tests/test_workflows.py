"""Tests for the resolution flow and the batch jobs."""

import json
from unittest.mock import patch

import pytest

from catalog_mirror.db import (
    create_or_patch_category,
    create_product,
    find_category,
    find_product,
    get_product_count,
)
from catalog_mirror.enrichment import NoDataError
from catalog_mirror.models import ProductRecord
from catalog_mirror.shutdown import get_shutdown_handler
from catalog_mirror.workflows import (
    discover_products,
    enrich_products,
    extract_category_file,
    import_category,
    preview_product,
    product_location,
    refresh_categories,
    refresh_specs,
    resolve_query,
    store_stats,
    sync_category,
)

PRODUCT_URL = "https://www.abmgood.com/blastaq-2x-qpcr-mastermix.html"
CATEGORY_URL = "https://www.abmgood.com/general-materials.html"
SEARCH_G891 = "https://www.abmgood.com/search?query=G891"


def _no_sleep(seconds):
    return None


@pytest.fixture(autouse=True)
def reset_shutdown():
    get_shutdown_handler().reset()
    yield
    get_shutdown_handler().reset()


class TestProductLocation:
    def test_with_category_path(self):
        record = ProductRecord(slug="blastaq", source_url=PRODUCT_URL, category_path=["pcr", "qpcr"])
        assert product_location(record) == "/products/abm/pcr/qpcr?open=blastaq"

    def test_without_category_path(self):
        record = ProductRecord(slug="blastaq", source_url=PRODUCT_URL)
        assert product_location(record) == "/products/abm?open=blastaq"


class TestResolveQuery:
    """Where a storefront search lands."""

    def test_empty_query_goes_to_brand_root(self, temp_db, make_fetcher):
        outcome = resolve_query("   ", temp_db, make_fetcher({}))
        assert outcome.target == "/products/abm"
        assert outcome.internal is True

    def test_store_hit_by_sku(self, temp_db, make_fetcher):
        create_product(temp_db, ProductRecord(slug="blastaq", source_url=PRODUCT_URL, sku="G891", category_path=["pcr"]))
        fetcher = make_fetcher({})

        outcome = resolve_query("g891", temp_db, fetcher)

        assert outcome.reason == "store_hit"
        assert outcome.target == "/products/abm/pcr?open=blastaq"
        fetcher.session.get.assert_not_called()

    def test_keyword_goes_to_supplier_search_without_fetching(self, temp_db, make_fetcher):
        fetcher = make_fetcher({})
        outcome = resolve_query("qpcr  mastermix", temp_db, fetcher)

        assert outcome.reason == "keyword"
        assert outcome.internal is False
        assert outcome.target == "https://www.abmgood.com/search?query=qpcr+mastermix"
        fetcher.session.get.assert_not_called()
        assert get_product_count(temp_db) == 0

    def test_single_hit_creates_minimal_record(self, temp_db, make_fetcher, load_fixture):
        fetcher = make_fetcher({
            SEARCH_G891: load_fixture("search_single.html"),
            PRODUCT_URL: load_fixture("product_tabs.html"),
        })

        outcome = resolve_query("G891", temp_db, fetcher)

        assert outcome.reason == "resolved"
        assert outcome.internal is True
        assert outcome.target == "/products/abm/pcr-and-qpcr/qpcr-mastermixes?open=blastaq-2x-qpcr-mastermix"
        stored = find_product(temp_db, slug="blastaq-2x-qpcr-mastermix")
        assert stored.sku == "G891"
        assert stored.title == "BlasTaq 2X qPCR MasterMix"
        assert stored.source_url == PRODUCT_URL
        assert stored.enriched_at is None

    def test_single_hit_with_writes_disabled(self, temp_db, make_fetcher, load_fixture):
        fetcher = make_fetcher({SEARCH_G891: load_fixture("search_single.html")})
        outcome = resolve_query("G891", temp_db, fetcher, allow_writes=False)

        assert outcome.reason == "writes_disabled"
        assert outcome.target == PRODUCT_URL
        assert get_product_count(temp_db) == 0

    def test_single_hit_without_detail_page(self, temp_db, make_fetcher, load_fixture):
        fetcher = make_fetcher({SEARCH_G891: load_fixture("search_single.html")})
        outcome = resolve_query("G891", temp_db, fetcher)

        assert outcome.reason == "resolved"
        assert outcome.target == "/products/abm?open=blastaq-2x-qpcr-mastermix"
        assert find_product(temp_db, slug="blastaq-2x-qpcr-mastermix").title == "BlasTaq 2X qPCR MasterMix"

    def test_multiple_hits_go_to_supplier_search(self, temp_db, make_fetcher, load_fixture):
        fetcher = make_fetcher({"https://www.abmgood.com/search?query=T3189": load_fixture("search_multiple.html")})
        outcome = resolve_query("T3189", temp_db, fetcher)

        assert outcome.reason == "multiple"
        assert outcome.target == "https://www.abmgood.com/search?query=T3189"
        assert get_product_count(temp_db) == 0

    def test_search_failure_still_navigable(self, temp_db, make_fetcher):
        outcome = resolve_query("G891", temp_db, make_fetcher({}))

        assert outcome.reason == "search_failed"
        assert outcome.target == SEARCH_G891

    def test_broken_result_link_is_ignored(self, temp_db, make_fetcher):
        results = (
            '<a href="/blastaq-2x-qpcr-mastermix.html">BlasTaq 2X qPCR MasterMix</a>'
            '<a href="https://[x.html">Broken</a>'
        )
        outcome = resolve_query("G891", temp_db, make_fetcher({SEARCH_G891: results}))

        assert outcome.reason == "resolved"
        assert outcome.target == "/products/abm?open=blastaq-2x-qpcr-mastermix"

    def test_unparseable_results_fall_back_to_supplier_search(self, temp_db, make_fetcher, load_fixture):
        fetcher = make_fetcher({SEARCH_G891: load_fixture("search_single.html")})

        with patch("catalog_mirror.workflows.resolve_search", side_effect=ValueError("Invalid IPv6 URL")):
            outcome = resolve_query("G891", temp_db, fetcher)

        assert outcome.reason == "search_failed"
        assert outcome.target == SEARCH_G891
        assert outcome.internal is False
        assert get_product_count(temp_db) == 0

    def test_unparseable_detail_page_still_resolves(self, temp_db, make_fetcher, load_fixture):
        fetcher = make_fetcher({
            SEARCH_G891: load_fixture("search_single.html"),
            PRODUCT_URL: load_fixture("product_tabs.html"),
        })

        with patch("catalog_mirror.workflows.extract_product", side_effect=ValueError("bad markup")):
            outcome = resolve_query("G891", temp_db, fetcher)

        assert outcome.reason == "resolved"
        assert find_product(temp_db, slug="blastaq-2x-qpcr-mastermix").title == "BlasTaq 2X qPCR MasterMix"


class TestPreview:
    def test_preview_summary(self, make_fetcher, load_fixture):
        summary = preview_product(PRODUCT_URL, make_fetcher({PRODUCT_URL: load_fixture("product_tabs.html")}))
        assert summary["sku"] == "G891"
        assert summary["categoryPath"] == ["pcr-and-qpcr", "qpcr-mastermixes"]


class TestEnrichProducts:
    """Batch enrichment summaries."""

    def _seed(self, db_path):
        create_product(db_path, ProductRecord(slug="blastaq-2x-qpcr-mastermix", source_url=PRODUCT_URL))
        create_product(db_path, ProductRecord(slug="gone", source_url="https://www.abmgood.com/gone.html"))

    def test_batch_counts_failures_and_continues(self, temp_db, make_fetcher, load_fixture):
        self._seed(temp_db)
        fetcher = make_fetcher({PRODUCT_URL: load_fixture("product_tabs.html")})

        summary = enrich_products(temp_db, fetcher, sleep=_no_sleep)

        assert summary == {"total": 2, "processed": 2, "enriched": 1, "skipped": 0, "empty": 0, "failed": 1}
        assert find_product(temp_db, slug="blastaq-2x-qpcr-mastermix").enriched_at is not None

    def test_single_slug(self, temp_db, make_fetcher, load_fixture):
        self._seed(temp_db)
        fetcher = make_fetcher({PRODUCT_URL: load_fixture("product_tabs.html")})

        summary = enrich_products(temp_db, fetcher, slug="blastaq-2x-qpcr-mastermix", include_specifications=True, sleep=_no_sleep)

        assert summary["enriched"] == 1
        assert "Storage" in find_product(temp_db, slug="blastaq-2x-qpcr-mastermix").specs_html

    def test_unknown_slug_raises(self, temp_db, make_fetcher):
        with pytest.raises(NoDataError):
            enrich_products(temp_db, make_fetcher({}), slug="missing", sleep=_no_sleep)

    def test_dry_run_writes_nothing(self, temp_db, make_fetcher, load_fixture):
        self._seed(temp_db)
        fetcher = make_fetcher({PRODUCT_URL: load_fixture("product_tabs.html")})

        summary = enrich_products(temp_db, fetcher, source_url=PRODUCT_URL, dry_run=True, sleep=_no_sleep)

        assert summary["enriched"] == 1
        assert find_product(temp_db, slug="blastaq-2x-qpcr-mastermix").enriched_at is None

    def test_stops_when_shutdown_requested(self, temp_db, make_fetcher):
        self._seed(temp_db)
        get_shutdown_handler().request_shutdown()

        summary = enrich_products(temp_db, make_fetcher({}), sleep=_no_sleep)

        assert summary["processed"] == 0

    def test_refresh_specs_only_if_empty(self, temp_db, make_fetcher, load_fixture):
        create_product(temp_db, ProductRecord(slug="blastaq-2x-qpcr-mastermix", source_url=PRODUCT_URL))
        create_product(temp_db, ProductRecord(
            slug="has-specs", source_url="https://www.abmgood.com/has-specs.html", specs_html="<table><tr><td>x</td></tr></table>"
        ))
        fetcher = make_fetcher({PRODUCT_URL: load_fixture("product_tabs.html")})

        summary = refresh_specs(temp_db, fetcher, only_if_empty=True, sleep=_no_sleep)

        assert summary["total"] == 1
        assert summary["enriched"] == 1

    def test_limit_counts_only_records_that_need_work(self, temp_db, make_fetcher, load_fixture):
        for slug in ("fresh-product-one", "fresh-product-two"):
            create_product(temp_db, ProductRecord(
                slug=slug,
                source_url=f"https://www.abmgood.com/{slug}.html",
                datasheet_html="<p>Datasheet</p>",
                image_urls=[f"https://www.abmgood.com/image/catalog/{slug}.jpg"],
                category_path=["pcr-and-qpcr"],
                enriched_at="2026-01-01T00:00:00+00:00",
            ))
        create_product(temp_db, ProductRecord(slug="blastaq-2x-qpcr-mastermix", source_url=PRODUCT_URL))
        fetcher = make_fetcher({PRODUCT_URL: load_fixture("product_tabs.html")})

        summary = enrich_products(temp_db, fetcher, limit=2, only_if_empty=True, sleep=_no_sleep)

        assert summary["total"] == 1
        assert summary["enriched"] == 1
        assert find_product(temp_db, slug="blastaq-2x-qpcr-mastermix").enriched_at is not None
        requested = [c.args[0] for c in fetcher.session.get.call_args_list]
        assert requested == [PRODUCT_URL]


class TestCategoryJobs:
    """Category import, path repair and offline extraction."""

    def test_import_creates_category_and_parent(self, temp_db, make_fetcher, load_fixture):
        fetcher = make_fetcher({CATEGORY_URL: load_fixture("category_mixed.html")})

        result = import_category(temp_db, fetcher, CATEGORY_URL)

        assert result.status == "created"
        assert result.path == ["cloning", "general-materials"]
        assert result.created_parents == ["cloning"]
        parent = find_category(temp_db, ["cloning"])
        assert parent.title == "Cloning"
        assert parent.source_url == "https://www.abmgood.com/cloning.html"
        category = find_category(temp_db, ["cloning", "general-materials"])
        assert [b.kind for b in category.content_blocks] == ["html", "resources", "html", "publications"]
        assert "everyday" in category.intro_html

    def test_import_twice_is_a_sync(self, temp_db, make_fetcher, load_fixture):
        fetcher = make_fetcher({CATEGORY_URL: load_fixture("category_mixed.html")})
        import_category(temp_db, fetcher, CATEGORY_URL)

        result = import_category(temp_db, fetcher, CATEGORY_URL)

        assert result.status == "synced"
        assert result.created_parents == []

    def test_dry_run_import(self, temp_db, make_fetcher, load_fixture):
        fetcher = make_fetcher({CATEGORY_URL: load_fixture("category_mixed.html")})
        result = import_category(temp_db, fetcher, CATEGORY_URL, dry_run=True)

        assert result.status == "dry_run"
        assert result.created_parents == ["cloning"]
        assert find_category(temp_db, ["cloning"]) is None

    def test_refresh_moves_to_breadcrumb_path(self, temp_db, make_fetcher, load_fixture):
        create_or_patch_category(temp_db, ["general-materials"], {"source_url": CATEGORY_URL})
        fetcher = make_fetcher({CATEGORY_URL: load_fixture("category_mixed.html")})

        summary = refresh_categories(temp_db, fetcher, sleep=_no_sleep)

        assert summary == {"total": 1, "processed": 1, "synced": 1, "failed": 0}
        assert find_category(temp_db, ["general-materials"]) is None
        moved = find_category(temp_db, ["cloning", "general-materials"])
        assert moved.title == "General Materials"
        assert moved.parent_path == ["cloning"]

    def test_path_conflict_keeps_current_path(self, temp_db, make_fetcher, load_fixture):
        create_or_patch_category(temp_db, ["general-materials"], {"source_url": CATEGORY_URL})
        create_or_patch_category(temp_db, ["cloning", "general-materials"], {"title": "Owner"})
        fetcher = make_fetcher({CATEGORY_URL: load_fixture("category_mixed.html")})

        result = sync_category(temp_db, fetcher, CATEGORY_URL, current_path=["general-materials"])

        assert result.path == ["general-materials"]
        assert result.status == "synced"
        assert find_category(temp_db, ["cloning", "general-materials"]).title == "Owner"
        assert find_category(temp_db, ["general-materials"]).intro_html != ""

    def test_fetch_failure(self, temp_db, make_fetcher):
        result = sync_category(temp_db, make_fetcher({}), CATEGORY_URL)

        assert result.status == "fetch_failed"
        assert result.path == ["general-materials"]
        assert result.error

    def test_extract_category_file(self, fixtures_dir, tmp_path):
        out_path = tmp_path / "out" / "category.json"

        summary = extract_category_file(fixtures_dir / "category_mixed.html", out_path=out_path)

        assert summary["title"] == "General Materials"
        assert summary["resourcesCount"] == 2
        payload = json.loads(out_path.read_text(encoding="utf-8"))
        assert payload["meta"]["base_url"] == "https://www.abmgood.com"
        assert len(payload["content_blocks"]) == 4

    def test_unparseable_category_page(self, temp_db, make_fetcher, load_fixture):
        fetcher = make_fetcher({CATEGORY_URL: load_fixture("category_mixed.html")})

        with patch("catalog_mirror.workflows.extract_category", side_effect=ValueError("bad markup")):
            result = sync_category(temp_db, fetcher, CATEGORY_URL)

        assert result.status == "parse_failed"
        assert "bad markup" in result.error
        assert find_category(temp_db, ["general-materials"]) is None


class TestDiscoverProducts:
    """Creating minimal records from category listings."""

    PAGE_2 = CATEGORY_URL + "?page=2"

    def _seed(self, db_path):
        create_or_patch_category(db_path, ["cloning"], {"title": "Cloning"})
        create_or_patch_category(db_path, ["cloning", "general-materials"], {"source_url": CATEGORY_URL})

    def _fetcher(self, make_fetcher, load_fixture):
        return make_fetcher({
            CATEGORY_URL: load_fixture("category_listing.html"),
            self.PAGE_2: load_fixture("category_listing_page2.html"),
        })

    def test_creates_missing_products_with_category_path(self, temp_db, make_fetcher, load_fixture):
        self._seed(temp_db)
        create_product(temp_db, ProductRecord(
            slug="taq-dna-polymerase", source_url="https://www.abmgood.com/taq-dna-polymerase.html", title="Taq"
        ))

        summary = discover_products(temp_db, self._fetcher(make_fetcher, load_fixture), sleep=_no_sleep)

        assert summary == {"total": 1, "processed": 1, "created": 3, "existing": 1, "failed": 0}
        cells = find_product(temp_db, slug="competent-cells-dh5a")
        assert cells.title == "DH5α Competent Cells"
        assert cells.source_url == "https://www.abmgood.com/competent-cells-dh5a.html"
        assert cells.category_path == ["cloning", "general-materials"]
        assert cells.category_path_titles == ["Cloning", "General Materials"]
        assert cells.enriched_at is None
        assert find_product(temp_db, slug="1kb-dna-ladder-plus").title == "1Kb Dna Ladder Plus"
        assert find_product(temp_db, slug="agarose-gel-powder").title == "Agarose Gel Powder"
        assert find_product(temp_db, slug="taq-dna-polymerase").title == "Taq"
        assert find_product(temp_db, slug="general-materials") is None
        assert find_product(temp_db, slug="partner-transfection-kit") is None

    def test_second_run_creates_nothing(self, temp_db, make_fetcher, load_fixture):
        self._seed(temp_db)
        discover_products(temp_db, self._fetcher(make_fetcher, load_fixture), sleep=_no_sleep)

        summary = discover_products(temp_db, self._fetcher(make_fetcher, load_fixture), sleep=_no_sleep)

        assert summary["created"] == 0
        assert summary["existing"] == 4

    def test_max_pages_stops_pagination(self, temp_db, make_fetcher, load_fixture):
        self._seed(temp_db)
        fetcher = self._fetcher(make_fetcher, load_fixture)

        summary = discover_products(temp_db, fetcher, max_pages=1, sleep=_no_sleep)

        assert summary["created"] == 2
        assert find_product(temp_db, slug="taq-dna-polymerase") is None
        assert fetcher.session.get.call_count == 1

    def test_missing_second_page_keeps_first_page_links(self, temp_db, make_fetcher, load_fixture):
        self._seed(temp_db)
        fetcher = make_fetcher({CATEGORY_URL: load_fixture("category_listing.html")})

        summary = discover_products(temp_db, fetcher, sleep=_no_sleep)

        assert summary["created"] == 2
        assert summary["failed"] == 0

    def test_dry_run_writes_nothing(self, temp_db, make_fetcher, load_fixture):
        self._seed(temp_db)

        summary = discover_products(temp_db, self._fetcher(make_fetcher, load_fixture), dry_run=True, sleep=_no_sleep)

        assert summary["created"] == 4
        assert get_product_count(temp_db) == 0

    def test_fetch_failure_is_counted(self, temp_db, make_fetcher):
        self._seed(temp_db)

        summary = discover_products(temp_db, make_fetcher({}), sleep=_no_sleep)

        assert summary == {"total": 1, "processed": 1, "created": 0, "existing": 0, "failed": 1}
        assert get_product_count(temp_db) == 0

    def test_stops_when_shutdown_requested(self, temp_db, make_fetcher):
        self._seed(temp_db)
        get_shutdown_handler().request_shutdown()

        summary = discover_products(temp_db, make_fetcher({}), sleep=_no_sleep)

        assert summary["processed"] == 0



class TestStoreStats:
    def test_counts(self, temp_db):
        create_product(temp_db, ProductRecord(slug="a", source_url="https://www.abmgood.com/a.html", image_urls=["https://www.abmgood.com/a.jpg"]))
        create_product(temp_db, ProductRecord(slug="b", source_url="https://www.abmgood.com/b.html"))
        create_or_patch_category(temp_db, ["cloning"], {})

        stats = store_stats(temp_db)

        assert stats == {"products": 2, "enriched": 0, "missing_images": 1, "missing_specs": 2, "categories": 1}
