"""JSON API endpoints for search resolution and page previews.

Both endpoints always answer HTTP 200; failures are reported in the body
as ``{"ok": false, "error": ...}`` so the search box can fall back to the
supplier's own search page.
"""

import logging
from typing import Any, Dict

from flask import Blueprint, current_app, g, jsonify, request

from catalog_mirror.catalog_number import is_identifier_like, normalize_query
from catalog_mirror.fetcher import INTERACTIVE_FETCHER_CONFIG, Fetcher, FetchError
from catalog_mirror.search import resolve_search, search_url
from catalog_mirror.url_validation import URLValidationError
from catalog_mirror.workflows import preview_product

__all__ = ["api", "get_fetcher"]

logger = logging.getLogger(__name__)

# Create blueprint for API
api = Blueprint("api", __name__, url_prefix="/api")


def get_fetcher() -> Fetcher:
    """Fetcher for the current request.

    A configured ``FETCHER`` (tests) is used as is. Otherwise each request
    gets its own session, closed at teardown.
    """
    fetcher = current_app.config.get("FETCHER")
    if fetcher is not None:
        return fetcher
    if "fetcher" not in g:
        g.fetcher = Fetcher(INTERACTIVE_FETCHER_CONFIG)
    return g.fetcher


@api.teardown_app_request
def close_fetcher(exc=None) -> None:
    fetcher = g.pop("fetcher", None)
    if fetcher is not None:
        fetcher.close()


def _error(message: str) -> Dict[str, Any]:
    return {"ok": False, "error": message}


@api.route("/resolve", methods=["GET"])
def resolve():
    """Classify a query and, for catalog numbers, parse the supplier search page.

    Response:
        {"ok": true, "type": "single|multiple|none|skip", "candidates": [...],
         "productUrl": str|null, "searchUrl": str}
    """
    q = normalize_query(request.args.get("q", ""))
    if not q:
        return jsonify(_error("Missing q"))

    if not is_identifier_like(q):
        return jsonify({
            "ok": True,
            "type": "skip",
            "candidates": [],
            "productUrl": None,
            "searchUrl": search_url(q),
        })

    try:
        html = get_fetcher().fetch(search_url(q))
    except (FetchError, URLValidationError) as e:
        logger.warning(f"Resolve fetch failed for '{q}': {e}")
        return jsonify(_error(str(e)))

    try:
        resolution = resolve_search(html, q)
    except Exception as e:
        logger.warning(f"Could not parse search results for '{q}': {e}")
        return jsonify(_error(f"Could not parse search results: {e}"))

    return jsonify({
        "ok": True,
        "type": resolution.kind,
        "candidates": [{"url": c.url, "title": c.title} for c in resolution.candidates],
        "productUrl": resolution.product_url,
        "searchUrl": resolution.search_url,
    })


@api.route("/preview", methods=["GET"])
def preview():
    """Fetch and parse one supplier product page without storing anything."""
    url = (request.args.get("url") or "").strip()
    if not url:
        return jsonify(_error("Missing url"))

    try:
        summary = preview_product(url, get_fetcher())
    except (FetchError, URLValidationError) as e:
        logger.warning(f"Preview failed for {url}: {e}")
        return jsonify(_error(str(e)))
    except Exception as e:
        logger.warning(f"Could not parse {url}: {e}")
        return jsonify(_error(f"Could not parse page: {e}"))
    return jsonify(summary)
