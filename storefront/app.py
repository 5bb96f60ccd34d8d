"""Flask storefront serving the mirrored ABM catalog.

Search redirects, on-demand product enrichment and the category tree all
read the same SQLite content store the batch CLI writes.
"""

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, jsonify, redirect, request

# Load environment variables from .env file (explicitly specify path)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

from catalog_mirror.db import (
    get_category_node,
    init_db,
    list_category_products,
    list_child_categories,
)
from catalog_mirror.enrichment import EnrichmentOrchestrator, NoDataError
from catalog_mirror.logging_config import get_logger, setup_logging
from catalog_mirror.models import CategoryRecord
from catalog_mirror.url_validation import is_redirect_safe, parse_url, sanitize_url
from catalog_mirror.workflows import resolve_query

from .api import api, get_fetcher
from .config import (
    ALLOW_STORE_WRITES,
    DB_PATH,
    DEFAULT_BRAND,
    FLASK_DEBUG,
    FLASK_HOST,
    FLASK_PORT,
)

__all__ = ["app", "create_app", "pages"]

logger = get_logger("storefront")

pages = Blueprint("pages", __name__)


def _db_path() -> str:
    """Store path for this app; the schema is created on first use."""
    db_path = current_app.config["DB_PATH"]
    if not current_app.config.get("DB_READY"):
        init_db(db_path)
        current_app.config["DB_READY"] = True
    return db_path


# ---------- SEARCH ----------


@pages.route("/search")
def search():
    """Send a search to the stored product, a fresh single match, or the supplier search page."""
    outcome = resolve_query(
        request.args.get("q", ""),
        _db_path(),
        get_fetcher(),
        allow_writes=current_app.config["ALLOW_STORE_WRITES"],
        brand=current_app.config["BRAND"],
    )
    logger.info(f"Search '{request.args.get('q', '')}' -> {outcome.target} ({outcome.reason})")
    return redirect(outcome.target, code=302)


@pages.route("/go")
def go():
    """Outbound redirect. Only absolute http(s) targets are followed."""
    target = sanitize_url(request.args.get("u", ""))
    if not is_redirect_safe(target):
        parsed = parse_url(target)
        absolute = parsed is not None and bool(parsed.scheme) and bool(parsed.netloc)
        return jsonify({"ok": False, "error": "Invalid protocol" if absolute else "Invalid url"}), 400
    return redirect(target, code=302)


# ---------- PRODUCTS ----------


@pages.route("/products/<brand>/item/<slug>")
def product_item(brand: str, slug: str):
    """Product detail, enriched on demand. Unknown slugs go to the supplier page."""
    orchestrator = EnrichmentOrchestrator(
        _db_path(),
        get_fetcher(),
        include_specifications=current_app.config["INCLUDE_SPECIFICATIONS"],
        brand=brand,
    )
    try:
        result = orchestrator.ensure_enriched_by_slug(slug)
    except NoDataError as e:
        logger.info(f"No stored product '{slug}', sending to {e.fallback_url}")
        return redirect(e.fallback_url, code=302)

    return jsonify({
        "ok": True,
        "enrichment": result.status,
        "product": result.record.to_dict(omit_empty_tabs=True),
    })


def _category_payload(db_path: str, node: CategoryRecord, brand: str) -> Dict[str, Any]:
    children = list_child_categories(db_path, node.path, brand=brand)
    products = list_category_products(db_path, node.path, brand=brand) if node.path else []
    return {
        "ok": True,
        "category": node.to_dict(),
        "children": [
            {"path": c.path, "title": c.title, "virtual": c.virtual}
            for c in children
        ],
        "products": [
            {"slug": p.slug, "title": p.title, "sku": p.sku, "imageUrl": p.image_urls[0] if p.image_urls else None}
            for p in products
        ],
        "open": request.args.get("open"),
    }


@pages.route("/products/<brand>", defaults={"path": ""})
@pages.route("/products/<brand>/<path:path>")
def category(brand: str, path: str):
    """Category node (stored or virtual) with its direct children."""
    segments: List[str] = [s for s in path.split("/") if s]
    db_path = _db_path()
    node = get_category_node(db_path, segments, brand=brand)
    if node is None:
        return jsonify({"ok": False, "error": f"Category not found: {brand}/{path}"}), 404
    return jsonify(_category_payload(db_path, node, brand))


# ---------- APP FACTORY ----------


def create_app(overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    """Build the storefront app.

    Args:
        overrides: Config values to set after the defaults, e.g. ``DB_PATH``
            or a ``FETCHER`` with a fake session in tests
    """
    flask_app = Flask(__name__)
    flask_app.config.update(
        DB_PATH=DB_PATH,
        BRAND=DEFAULT_BRAND,
        ALLOW_STORE_WRITES=ALLOW_STORE_WRITES,
        INCLUDE_SPECIFICATIONS=False,
        FETCHER=None,
    )
    if overrides:
        flask_app.config.update(overrides)

    flask_app.register_blueprint(api)
    flask_app.register_blueprint(pages)
    return flask_app


app = create_app()


if __name__ == "__main__":
    setup_logging()
    app.run(host=FLASK_HOST, port=FLASK_PORT, debug=FLASK_DEBUG)
