"""SQLite content store for mirrored products and categories."""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Mapping, Optional, Sequence, Tuple

from catalog_mirror.config import BRAND_KEY, DB_PATH
from catalog_mirror.html_utils import humanize_slug
from catalog_mirror.models import CategoryRecord, ContentBlock, DocLink, ProductRecord
from catalog_mirror.url_validation import normalize_source_url

__all__ = [
    "StoreWriteError",
    "PRODUCT_PATCH_COLUMNS",
    "CATEGORY_PATCH_COLUMNS",
    "get_connection",
    "init_db",
    "utc_now",
    "find_product",
    "find_product_by_title",
    "create_product",
    "patch_product",
    "list_products",
    "list_category_products",
    "get_product_count",
    "find_category",
    "create_or_patch_category",
    "move_category",
    "list_categories",
    "list_child_categories",
    "get_category_node",
    "get_category_count",
]


class StoreWriteError(Exception):
    """A write to the content store failed. Wraps the sqlite3 error."""


# Columns the pipeline may patch. Identity (brand, slug) is never patched.
PRODUCT_PATCH_COLUMNS = frozenset({
    "title",
    "sku",
    "source_url",
    "category_path",
    "category_path_titles",
    "specs_html",
    "datasheet_html",
    "documents_html",
    "faqs_html",
    "references_html",
    "reviews_html",
    "docs",
    "image_urls",
    "is_active",
    "enriched_at",
})

CATEGORY_PATCH_COLUMNS = frozenset({
    "title",
    "source_url",
    "intro_html",
    "content_blocks",
    "parent_path",
})

_PRODUCT_JSON_COLUMNS = ("category_path", "category_path_titles", "docs", "image_urls")
_CATEGORY_JSON_COLUMNS = ("path", "content_blocks", "parent_path")


@contextmanager
def get_connection(db_path: str = DB_PATH) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database connections."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = DB_PATH) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                brand TEXT NOT NULL,
                slug TEXT NOT NULL,
                source_url TEXT NOT NULL,
                title TEXT NOT NULL DEFAULT '',
                sku TEXT,
                category_path TEXT NOT NULL DEFAULT '[]',
                category_path_titles TEXT NOT NULL DEFAULT '[]',
                specs_html TEXT NOT NULL DEFAULT '',
                datasheet_html TEXT NOT NULL DEFAULT '',
                documents_html TEXT NOT NULL DEFAULT '',
                faqs_html TEXT NOT NULL DEFAULT '',
                references_html TEXT NOT NULL DEFAULT '',
                reviews_html TEXT NOT NULL DEFAULT '',
                docs TEXT NOT NULL DEFAULT '[]',
                image_urls TEXT NOT NULL DEFAULT '[]',
                is_active INTEGER NOT NULL DEFAULT 1,
                enriched_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (brand, slug)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                brand TEXT NOT NULL,
                path_key TEXT NOT NULL,
                path TEXT NOT NULL,
                title TEXT NOT NULL DEFAULT '',
                source_url TEXT NOT NULL DEFAULT '',
                intro_html TEXT NOT NULL DEFAULT '',
                content_blocks TEXT NOT NULL DEFAULT '[]',
                parent_path TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (brand, path_key)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_products_sku ON products(sku)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_products_source_url ON products(source_url)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_categories_path_key ON categories(path_key)")

        conn.commit()


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string (seconds precision)."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _encode(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return json.dumps(
            [asdict(v) if is_dataclass(v) else v for v in value],
            ensure_ascii=False,
        )
    if isinstance(value, bool):
        return int(value)
    return value


def _decode_list(raw: Optional[str]) -> List[Any]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return value if isinstance(value, list) else []


def _path_key(path: Sequence[str]) -> str:
    return "/".join(path)


# =============================================================================
# Products
# =============================================================================


def _row_to_product(row: sqlite3.Row) -> ProductRecord:
    data = dict(row)
    for col in _PRODUCT_JSON_COLUMNS:
        data[col] = _decode_list(data.get(col))
    data["docs"] = [DocLink(url=d.get("url", ""), label=d.get("label", "")) for d in data["docs"] if isinstance(d, dict)]
    data["is_active"] = bool(data.get("is_active"))
    return ProductRecord(**data)


def find_product(
    db_path: str,
    slug: Optional[str] = None,
    sku: Optional[str] = None,
    source_url: Optional[str] = None,
    brand: str = BRAND_KEY,
) -> Optional[ProductRecord]:
    """Look a product up by slug, else SKU (case-insensitive), else source URL."""
    if slug:
        where, param = "slug = ?", slug
    elif sku:
        where, param = "sku = ? COLLATE NOCASE", sku.strip()
    elif source_url:
        where, param = "source_url = ?", normalize_source_url(source_url)
    else:
        raise ValueError("find_product needs a slug, sku or source_url")

    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(
            f"SELECT * FROM products WHERE brand = ? AND {where} ORDER BY updated_at DESC LIMIT 1",
            (brand, param),
        )
        row = cursor.fetchone()
        return _row_to_product(row) if row else None


def find_product_by_title(db_path: str, text: str, brand: str = BRAND_KEY) -> Optional[ProductRecord]:
    """Most recently updated active product whose title contains ``text``."""
    needle = (text or "").strip()
    if not needle:
        return None
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM products
            WHERE brand = ? AND is_active = 1 AND instr(lower(title), lower(?)) > 0
            ORDER BY updated_at DESC
            LIMIT 1
        """, (brand, needle))
        row = cursor.fetchone()
        return _row_to_product(row) if row else None


def create_product(db_path: str, record: ProductRecord) -> ProductRecord:
    """Insert a new product and return it as stored.

    Raises:
        StoreWriteError: On any sqlite error, including a duplicate slug
    """
    now = utc_now()
    values: Dict[str, Any] = record.to_dict()
    values.pop("id", None)
    values["source_url"] = normalize_source_url(record.source_url) or record.source_url
    values["created_at"] = record.created_at or now
    values["updated_at"] = now

    cols = list(values.keys())
    placeholders = ", ".join("?" for _ in cols)
    try:
        with get_connection(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"INSERT INTO products ({', '.join(cols)}) VALUES ({placeholders})",
                [_encode(values[c]) for c in cols],
            )
            conn.commit()
            cursor.execute("SELECT * FROM products WHERE id = ?", (cursor.lastrowid,))
            return _row_to_product(cursor.fetchone())
    except sqlite3.Error as e:
        raise StoreWriteError(f"Could not create product '{record.slug}': {e}") from e


def patch_product(
    db_path: str,
    slug: str,
    fields: Mapping[str, Any],
    brand: str = BRAND_KEY,
) -> Optional[ProductRecord]:
    """Set ``fields`` on one product in a single UPDATE.

    Returns:
        The updated record, or None if no product has that slug

    Raises:
        ValueError: If a field is not a patchable column
        StoreWriteError: On any sqlite error
    """
    invalid = set(fields) - PRODUCT_PATCH_COLUMNS
    if invalid:
        raise ValueError(f"Invalid product fields: {sorted(invalid)}")
    if not fields:
        return find_product(db_path, slug=slug, brand=brand)

    set_clause = ", ".join(f"{col} = ?" for col in fields)
    values = [_encode(v) for v in fields.values()] + [utc_now(), brand, slug]
    try:
        with get_connection(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE products SET {set_clause}, updated_at = ? WHERE brand = ? AND slug = ?",
                values,
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
            cursor.execute("SELECT * FROM products WHERE brand = ? AND slug = ?", (brand, slug))
            return _row_to_product(cursor.fetchone())
    except sqlite3.Error as e:
        raise StoreWriteError(f"Could not patch product '{slug}': {e}") from e


def list_products(
    db_path: str = DB_PATH,
    brand: str = BRAND_KEY,
    limit: int = 0,
    missing_field: Optional[str] = None,
) -> List[ProductRecord]:
    """Products of a brand in insertion order.

    Args:
        missing_field: Only products where this column is empty
        limit: Maximum number of products (0 = all)
    """
    query = "SELECT * FROM products WHERE brand = ?"
    params: List[Any] = [brand]
    if missing_field:
        if missing_field not in PRODUCT_PATCH_COLUMNS:
            raise ValueError(f"Invalid product field: {missing_field}")
        query += f" AND ({missing_field} IS NULL OR {missing_field} = '' OR {missing_field} = '[]')"
    query += " ORDER BY id"
    if limit > 0:
        query += " LIMIT ?"
        params.append(limit)

    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(query, params)
        return [_row_to_product(row) for row in cursor.fetchall()]


def list_category_products(
    db_path: str,
    path: Sequence[str],
    brand: str = BRAND_KEY,
) -> List[ProductRecord]:
    """Active products whose category path is exactly ``path``, by title."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM products
            WHERE brand = ? AND is_active = 1 AND category_path = ?
            ORDER BY title COLLATE NOCASE
        """, (brand, _encode(list(path))))
        return [_row_to_product(row) for row in cursor.fetchall()]


def get_product_count(db_path: str = DB_PATH, brand: Optional[str] = None, enriched_only: bool = False) -> int:
    """Get the number of products, optionally per brand or only enriched ones."""
    query = "SELECT COUNT(*) AS count FROM products WHERE 1 = 1"
    params: List[Any] = []
    if brand:
        query += " AND brand = ?"
        params.append(brand)
    if enriched_only:
        query += " AND enriched_at IS NOT NULL"
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(query, params)
        return cursor.fetchone()["count"]


# =============================================================================
# Categories
# =============================================================================


def _row_to_category(row: sqlite3.Row) -> CategoryRecord:
    data = dict(row)
    data.pop("path_key", None)
    for col in _CATEGORY_JSON_COLUMNS:
        data[col] = _decode_list(data.get(col))
    data["content_blocks"] = [ContentBlock.from_dict(b) for b in data["content_blocks"] if isinstance(b, dict)]
    return CategoryRecord(**data)


def find_category(db_path: str, path: Sequence[str], brand: str = BRAND_KEY) -> Optional[CategoryRecord]:
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM categories WHERE brand = ? AND path_key = ?",
            (brand, _path_key(path)),
        )
        row = cursor.fetchone()
        return _row_to_category(row) if row else None


def create_or_patch_category(
    db_path: str,
    path: Sequence[str],
    fields: Mapping[str, Any],
    brand: str = BRAND_KEY,
) -> Tuple[CategoryRecord, bool]:
    """Create the category at ``path`` or patch the given fields on it.

    A new category defaults its title to the humanized last segment and
    its parent path to ``path[:-1]``.

    Returns:
        ``(record, created)``

    Raises:
        ValueError: If ``path`` is empty or a field is not patchable
        StoreWriteError: On any sqlite error
    """
    path = list(path)
    if not path:
        raise ValueError("Category path must not be empty")
    invalid = set(fields) - CATEGORY_PATCH_COLUMNS
    if invalid:
        raise ValueError(f"Invalid category fields: {sorted(invalid)}")

    key = _path_key(path)
    now = utc_now()
    try:
        with get_connection(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id FROM categories WHERE brand = ? AND path_key = ?", (brand, key))
            existing = cursor.fetchone()

            if existing:
                created = False
                if fields:
                    set_clause = ", ".join(f"{col} = ?" for col in fields)
                    cursor.execute(
                        f"UPDATE categories SET {set_clause}, updated_at = ? WHERE id = ?",
                        [_encode(v) for v in fields.values()] + [now, existing["id"]],
                    )
            else:
                created = True
                values: Dict[str, Any] = {
                    "title": humanize_slug(path[-1]),
                    "parent_path": path[:-1],
                }
                values.update(fields)
                values.update({
                    "brand": brand,
                    "path_key": key,
                    "path": path,
                    "created_at": now,
                    "updated_at": now,
                })
                cols = list(values.keys())
                cursor.execute(
                    f"INSERT INTO categories ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                    [_encode(values[c]) for c in cols],
                )
            conn.commit()

            cursor.execute("SELECT * FROM categories WHERE brand = ? AND path_key = ?", (brand, key))
            return _row_to_category(cursor.fetchone()), created
    except sqlite3.Error as e:
        raise StoreWriteError(f"Could not write category '{key}': {e}") from e


def move_category(
    db_path: str,
    old_path: Sequence[str],
    new_path: Sequence[str],
    brand: str = BRAND_KEY,
) -> Optional[CategoryRecord]:
    """Re-key a category to ``new_path`` (and its parent path with it).

    Raises:
        StoreWriteError: If another category already owns ``new_path``
    """
    new_path = list(new_path)
    try:
        with get_connection(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE categories SET path_key = ?, path = ?, parent_path = ?, updated_at = ?
                WHERE brand = ? AND path_key = ?
            """, (
                _path_key(new_path),
                _encode(new_path),
                _encode(new_path[:-1]),
                utc_now(),
                brand,
                _path_key(old_path),
            ))
            conn.commit()
            if cursor.rowcount == 0:
                return None
    except sqlite3.Error as e:
        raise StoreWriteError(f"Could not move category '{_path_key(old_path)}': {e}") from e
    return find_category(db_path, new_path, brand=brand)


def list_categories(
    db_path: str = DB_PATH,
    brand: str = BRAND_KEY,
    limit: int = 0,
    with_source_url: bool = False,
) -> List[CategoryRecord]:
    query = "SELECT * FROM categories WHERE brand = ?"
    params: List[Any] = [brand]
    if with_source_url:
        query += " AND source_url != ''"
    query += " ORDER BY id"
    if limit > 0:
        query += " LIMIT ?"
        params.append(limit)

    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(query, params)
        return [_row_to_category(row) for row in cursor.fetchall()]


def _descendants(db_path: str, path: Sequence[str], brand: str) -> List[CategoryRecord]:
    prefix = _path_key(path) + "/" if path else ""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM categories
            WHERE brand = ? AND substr(path_key, 1, ?) = ? AND path_key != ?
            ORDER BY path_key
        """, (brand, len(prefix), prefix, _path_key(path)))
        return [_row_to_category(row) for row in cursor.fetchall()]


def _virtual_category(path: Sequence[str], brand: str) -> CategoryRecord:
    path = list(path)
    return CategoryRecord(
        path=path,
        brand=brand,
        title=humanize_slug(path[-1]) if path else brand.upper(),
        parent_path=path[:-1],
        virtual=True,
    )


def list_child_categories(
    db_path: str,
    path: Sequence[str],
    brand: str = BRAND_KEY,
) -> List[CategoryRecord]:
    """Direct children of ``path``, stored or virtual, ordered by path.

    A child segment that only exists because deeper categories are stored
    under it comes back as a virtual node.
    """
    depth = len(path)
    children: Dict[str, CategoryRecord] = {}
    for record in _descendants(db_path, path, brand):
        child_path = record.path[:depth + 1]
        key = _path_key(child_path)
        if len(record.path) == depth + 1:
            children[key] = record
        elif key not in children:
            children[key] = _virtual_category(child_path, brand)
    return [children[k] for k in sorted(children)]


def get_category_node(
    db_path: str,
    path: Sequence[str],
    brand: str = BRAND_KEY,
) -> Optional[CategoryRecord]:
    """The stored category at ``path``, or a virtual one if it has stored descendants."""
    if path:
        record = find_category(db_path, path, brand=brand)
        if record is not None:
            return record
    if _descendants(db_path, path, brand):
        return _virtual_category(path, brand)
    return None


def get_category_count(db_path: str = DB_PATH, brand: Optional[str] = None) -> int:
    query = "SELECT COUNT(*) AS count FROM categories"
    params: Iterable[Any] = ()
    if brand:
        query += " WHERE brand = ?"
        params = (brand,)
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(query, params)
        return cursor.fetchone()["count"]
