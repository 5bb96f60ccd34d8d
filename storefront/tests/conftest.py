"""Shared test fixtures for the storefront test suite."""

from pathlib import Path
from typing import Dict, Optional
from unittest.mock import MagicMock

import pytest

from catalog_mirror.db import init_db
from catalog_mirror.fetcher import Fetcher, FetcherConfig


@pytest.fixture
def fixtures_dir():
    """HTML fixtures shared with the catalog_mirror tests."""
    return Path(__file__).resolve().parents[2] / "catalog_mirror" / "tests" / "fixtures"


@pytest.fixture
def load_fixture(fixtures_dir):
    def _load(name: str) -> str:
        return (fixtures_dir / name).read_text(encoding="utf-8")

    return _load


@pytest.fixture
def temp_db(tmp_path):
    db_path = str(tmp_path / "storefront.db")
    init_db(db_path)
    return db_path


@pytest.fixture
def pages():
    """Supplier pages served by the fake session; tests add ``{url: html}`` entries."""
    return {}


@pytest.fixture
def fetcher(pages):
    """Interactive-style Fetcher over a MagicMock session. Unknown URLs get a 404."""
    session = MagicMock()

    def _get(url, **kwargs):
        resp = MagicMock()
        if url in pages:
            resp.status_code, resp.text = 200, pages[url]
        else:
            resp.status_code, resp.text = 404, "Not Found"
        return resp

    session.get.side_effect = _get
    return Fetcher(FetcherConfig(max_retries=0), session=session, sleep=lambda seconds: None)


@pytest.fixture
def app(temp_db, fetcher):
    from storefront.app import create_app

    return create_app({"TESTING": True, "DB_PATH": temp_db, "FETCHER": fetcher, "ALLOW_STORE_WRITES": True})


@pytest.fixture
def client(app):
    """Create Flask test client."""
    with app.test_client() as test_client:
        yield test_client
