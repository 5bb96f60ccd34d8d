"""Data models for search results, products and categories."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

__all__ = [
    "SearchCandidate",
    "SearchResolution",
    "DocLink",
    "ProductExtraction",
    "ProductRecord",
    "Breadcrumb",
    "ResourceItem",
    "PublicationItem",
    "ContentBlock",
    "CategoryExtraction",
    "CategoryRecord",
    "ProductLink",
    "TAB_HTML_FIELDS",
]

# Tab fragments stored on a product, in display order
TAB_HTML_FIELDS = (
    "specs_html",
    "datasheet_html",
    "documents_html",
    "faqs_html",
    "references_html",
    "reviews_html",
)


@dataclass
class SearchCandidate:
    url: str
    title: str = ""


@dataclass
class SearchResolution:
    """Outcome of parsing a supplier search-results page.

    ``kind`` is ``single`` (safe to navigate to ``product_url``),
    ``multiple`` (needs disambiguation) or ``none``.
    """

    kind: str
    search_url: str
    candidates: List[SearchCandidate] = field(default_factory=list)
    product_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DocLink:
    url: str
    label: str = ""


@dataclass
class ProductExtraction:
    """Everything one product page yielded. Empty values mean "not found"."""

    source_url: str
    sku: Optional[str] = None
    title: Optional[str] = None
    category_path: List[str] = field(default_factory=list)
    category_path_titles: List[str] = field(default_factory=list)
    specs_html: str = ""
    datasheet_html: str = ""
    documents_html: str = ""
    faqs_html: str = ""
    references_html: str = ""
    reviews_html: str = ""
    docs: List[DocLink] = field(default_factory=list)
    image_urls: List[str] = field(default_factory=list)

    def tab_sizes(self) -> Dict[str, int]:
        return {name: len(getattr(self, name) or "") for name in TAB_HTML_FIELDS}


@dataclass
class ProductRecord:
    """A product as held by the content store.

    Identity is ``slug`` + ``source_url``; the pipeline only ever patches
    the other fields and never deletes records.
    """

    slug: str
    source_url: str
    brand: str = "abm"
    title: str = ""
    sku: Optional[str] = None
    category_path: List[str] = field(default_factory=list)
    category_path_titles: List[str] = field(default_factory=list)
    specs_html: str = ""
    datasheet_html: str = ""
    documents_html: str = ""
    faqs_html: str = ""
    references_html: str = ""
    reviews_html: str = ""
    docs: List[DocLink] = field(default_factory=list)
    image_urls: List[str] = field(default_factory=list)
    is_active: bool = True
    enriched_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    # Database ID (set after insert)
    id: Optional[int] = None

    def to_dict(self, omit_empty_tabs: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        if omit_empty_tabs:
            for name in TAB_HTML_FIELDS:
                if not data.get(name):
                    data.pop(name, None)
        return data


@dataclass
class Breadcrumb:
    title: str
    url: str = ""
    slug: str = ""


@dataclass
class ResourceItem:
    title: str
    href: str
    subtitle: str = ""
    image_url: str = ""


@dataclass
class PublicationItem:
    citation: str
    order: Optional[int] = None
    doi: str = ""
    product: str = ""


@dataclass
class ContentBlock:
    """One block of category content: ``html``, ``resources`` or ``publications``."""

    kind: str
    title: str = ""
    html: str = ""
    items: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentBlock":
        kind = data.get("kind", "html")
        raw_items = data.get("items") or []
        if kind == "resources":
            items: List[Any] = [ResourceItem(**item) for item in raw_items]
        elif kind == "publications":
            items = [PublicationItem(**item) for item in raw_items]
        else:
            items = list(raw_items)
        return cls(kind=kind, title=data.get("title", ""), html=data.get("html", ""), items=items)


@dataclass
class ProductLink:
    """A product link found on a category listing."""

    url: str
    slug: str
    text: str = ""


@dataclass
class CategoryExtraction:
    source_url: str
    title: str = ""
    intro_html: str = ""
    breadcrumbs: List[Breadcrumb] = field(default_factory=list)
    content_blocks: List[ContentBlock] = field(default_factory=list)
    root_found: bool = False

    def block_kinds(self) -> List[str]:
        return [block.kind for block in self.content_blocks]


@dataclass
class CategoryRecord:
    """A category node. ``path`` is unique per brand.

    ``virtual`` nodes are synthesized for paths that only exist because
    stored categories live beneath them; they are never persisted.
    """

    path: List[str]
    brand: str = "abm"
    title: str = ""
    source_url: str = ""
    intro_html: str = ""
    content_blocks: List[ContentBlock] = field(default_factory=list)
    parent_path: List[str] = field(default_factory=list)
    virtual: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    id: Optional[int] = None

    @property
    def path_key(self) -> str:
        return "/".join(self.path)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["path_key"] = self.path_key
        return data
