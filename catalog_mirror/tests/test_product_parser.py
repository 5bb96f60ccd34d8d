"""Tests for product detail page extraction."""

import pytest

from catalog_mirror.html_utils import parse_html
from catalog_mirror.product_parser import (
    DOC_HREF_RE,
    extract_breadcrumb,
    extract_docs,
    extract_images,
    extract_product,
    extract_sku,
    extract_specifications,
    extraction_summary,
)

PRODUCT_URL = "https://www.abmgood.com/blastaq-2x-qpcr-mastermix.html"
HEADINGS_URL = "https://www.abmgood.com/plenti-giii-cmv-vector.html"


class TestTabbedTemplate:
    """Product page with a tab navigation bar."""

    @pytest.fixture
    def extraction(self, load_fixture):
        return extract_product(load_fixture("product_tabs.html"), PRODUCT_URL)

    def test_identity_fields(self, extraction):
        assert extraction.sku == "G891"
        assert extraction.title == "BlasTaq 2X qPCR MasterMix"
        assert extraction.source_url == PRODUCT_URL

    def test_breadcrumb_drops_home(self, extraction):
        assert extraction.category_path_titles == ["PCR & qPCR", "qPCR Mastermixes"]
        assert extraction.category_path == ["pcr-and-qpcr", "qpcr-mastermixes"]

    def test_tab_html_is_sanitized(self, extraction):
        assert "ready-to-use mastermix" in extraction.datasheet_html
        assert "<script" not in extraction.datasheet_html
        assert 'href="https://www.abmgood.com/protocols/blastaq.html"' in extraction.datasheet_html
        assert 'target="_blank"' in extraction.datasheet_html

    def test_tab_label_with_count(self, extraction):
        assert "Great results" in extraction.reviews_html
        assert "onclick" not in extraction.reviews_html

    def test_empty_panel_stays_empty(self, extraction):
        assert extraction.references_html == ""

    def test_specifications_skipped_by_default(self, extraction):
        assert extraction.specs_html == ""

    def test_docs_come_from_documents_tab(self, extraction):
        assert [(d.label, d.url) for d in extraction.docs] == [
            ("User Manual", "https://www.abmgood.com/pdf/G891-manual.pdf"),
            ("SDS", "https://www.abmgood.com/pdf/G891-sds.pdf"),
        ]

    def test_gallery_images_without_noise(self, extraction):
        assert extraction.image_urls[0] == "https://www.abmgood.com/image/cache/catalog/products/G891-main-800x800.jpg"
        assert "https://www.abmgood.com/image/cache/catalog/products/G891-box-800x800.jpg" in extraction.image_urls
        assert not any("flags" in url or "logo" in url for url in extraction.image_urls)
        assert len(extraction.image_urls) == len(set(extraction.image_urls))

    def test_specifications_on_request(self, load_fixture):
        extraction = extract_product(load_fixture("product_tabs.html"), PRODUCT_URL, include_specifications=True)

        assert "Storage" in extraction.specs_html
        assert "Size" in extraction.specs_html
        assert "185" not in extraction.specs_html
        assert extraction.specs_html.index("Storage") < extraction.specs_html.index("Size")


class TestHeadingTemplate:
    """Product page without tabs, sections introduced by headings."""

    @pytest.fixture
    def extraction(self, load_fixture):
        return extract_product(load_fixture("product_headings.html"), HEADINGS_URL)

    def test_sku_from_itemprop(self, extraction):
        assert extraction.sku == "LV590"

    def test_long_breadcrumb_keeps_last_three(self, extraction):
        assert extraction.category_path_titles == ["Lentiviral", "pLenti Systems", "pLenti-GIII-CMV Vector"]
        assert extraction.category_path == ["lentiviral", "plenti-systems", "plenti-giii-cmv-vector"]

    def test_section_runs_until_next_heading_of_same_level(self, extraction):
        assert "CMV promoter" in extraction.datasheet_html
        assert "High titer packaging" in extraction.datasheet_html
        assert "Vector map" not in extraction.datasheet_html

    def test_last_section_stops_at_unrelated_heading(self, extraction):
        assert "primary cells" in extraction.faqs_html
        assert "packaging mix" not in extraction.faqs_html

    def test_relative_doc_link(self, extraction):
        assert [d.url for d in extraction.docs] == ["https://www.abmgood.com/manuals/LV590.pdf"]
        assert extraction.docs[0].label == "Vector map (PDF)"

    def test_images_from_scope_without_chrome(self, extraction):
        assert extraction.image_urls == ["https://www.abmgood.com/image/catalog/products/LV590-map.png"]

    def test_missing_tabs_are_empty(self, extraction):
        assert extraction.references_html == ""
        assert extraction.reviews_html == ""


class TestExtractSpecifications:
    def test_named_container_with_currency_row(self, load_fixture):
        specs = extract_specifications(load_fixture("specs_named.html"), "https://www.abmgood.com/proteinase-k.html")

        assert "Concentration" in specs
        assert "Unit size" in specs
        assert "Tritirachium album" in specs
        assert "USD" not in specs
        assert specs.index("Concentration") < specs.index("Unit size") < specs.index("Source")

    def test_tab_target(self, load_fixture):
        specs = extract_specifications(load_fixture("product_tabs.html"), PRODUCT_URL)
        assert "<table" in specs
        assert "Price" not in specs

    def test_no_specifications(self):
        assert extract_specifications("<html><body><p>Nothing here</p></body></html>", PRODUCT_URL) == ""


class TestBreadcrumbAndSku:
    def test_no_breadcrumb(self):
        assert extract_breadcrumb(parse_html("<div><p>No trail</p></div>")) == ([], [])

    def test_repeated_segments_collapse(self):
        soup = parse_html(
            '<ul class="breadcrumb"><li><a>Home</a></li><li><a>Antibodies</a></li>'
            "<li><a>Antibodies</a></li><li><a>Tag Antibodies</a></li></ul>"
        )
        titles, slugs = extract_breadcrumb(soup)
        assert titles == ["Antibodies", "Tag Antibodies"]
        assert slugs == ["antibodies", "tag-antibodies"]

    def test_separator_characters_are_stripped(self):
        soup = parse_html('<div class="breadcrumbs"><a>Home</a> <span>› Cloning</span></div>')
        titles, _ = extract_breadcrumb(soup)
        assert titles == ["Cloning"]

    def test_sku_label_variants(self):
        assert extract_sku(parse_html("<p>Catalog No. T3189</p>")) == "T3189"
        assert extract_sku(parse_html("<p>SKU: G950-1</p>")) == "G950-1"
        assert extract_sku(parse_html("<p>No number here</p>")) is None


class TestImagesAndSummary:
    def test_lazy_loaded_images(self):
        html = (
            '<div id="content"><div class="product-images">'
            '<img src="/image/placeholder.gif" data-src="/image/catalog/a.jpg">'
            '<img data-zoom-image="/image/catalog/b-large.jpg" src="/image/catalog/b.jpg">'
            '<img src="/image/catalog/social-share-icon.png">'
            "</div></div>"
        )
        assert extract_images(html, PRODUCT_URL) == [
            "https://www.abmgood.com/image/catalog/a.jpg",
            "https://www.abmgood.com/image/catalog/b-large.jpg",
        ]

    def test_empty_page_yields_empty_extraction(self):
        extraction = extract_product("", PRODUCT_URL)
        assert extraction.sku is None
        assert extraction.title is None
        assert extraction.category_path == []
        assert extraction.image_urls == []
        assert all(size == 0 for size in extraction.tab_sizes().values())

    def test_summary_shape(self, load_fixture):
        summary = extraction_summary(extract_product(load_fixture("product_tabs.html"), PRODUCT_URL))

        assert summary["ok"] is True
        assert summary["sku"] == "G891"
        assert summary["docsCount"] == 2
        assert summary["tabSizes"]["datasheet_html"] > 0
        assert summary["tabSizes"]["references_html"] == 0
        assert summary["imageUrls"][0].endswith("G891-main-800x800.jpg")


class TestMalformedLinks:
    def test_broken_hrefs_are_skipped(self, load_fixture):
        html = load_fixture("product_tabs.html").replace(
            "</h1>",
            '</h1><div class="thumbnails"><a href="http://[broken">x</a>'
            '<a href="http://[broken.jpg"><img src="http://[broken.png"></a></div>',
            1,
        )
        extraction = extract_product(html, PRODUCT_URL)

        assert extraction.sku == "G891"
        assert all("[" not in url for url in extraction.image_urls)

    def test_broken_doc_href(self):
        root = parse_html('<a href="http://[broken.pdf">Manual</a><a href="/manual.pdf">Manual</a>')
        assert [d.url for d in extract_docs(root, PRODUCT_URL)] == ["https://www.abmgood.com/manual.pdf"]


class TestDocHrefPattern:
    @pytest.mark.parametrize("url", [
        "https://www.abmgood.com/manual.pdf",
        "https://www.abmgood.com/protocol.DOCX",
        "https://www.abmgood.com/sheet.doc?x=1",
        "https://www.abmgood.com/msds.pdf#page=2",
    ])
    def test_document_links(self, url):
        assert DOC_HREF_RE.search(url)

    @pytest.mark.parametrize("url", [
        "https://www.abmgood.com/pdf-guide.html",
        "https://www.abmgood.com/docs/index.html",
        "https://www.abmgood.com/a.docxml",
    ])
    def test_other_links(self, url):
        assert DOC_HREF_RE.search(url) is None
