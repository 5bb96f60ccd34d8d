"""Shared test fixtures for the catalog_mirror test suite."""

from pathlib import Path
from typing import Callable, Dict, Optional
from unittest.mock import MagicMock

import pytest

from catalog_mirror.db import init_db
from catalog_mirror.fetcher import Fetcher, FetcherConfig


@pytest.fixture
def test_dir():
    """Return path to test directory."""
    return Path(__file__).parent


@pytest.fixture
def fixtures_dir(test_dir):
    """Return path to fixtures directory."""
    return test_dir / "fixtures"


@pytest.fixture
def load_fixture(fixtures_dir) -> Callable[[str], str]:
    """Read an HTML fixture by file name."""

    def _load(name: str) -> str:
        return (fixtures_dir / name).read_text(encoding="utf-8")

    return _load


@pytest.fixture
def temp_db(tmp_path):
    """Initialized SQLite store in a temp directory."""
    db_path = str(tmp_path / "catalog.db")
    init_db(db_path)
    return db_path


def make_response(text: str = "", status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    return resp


@pytest.fixture
def fake_session():
    """Build a MagicMock session serving ``{url: html}``; unknown URLs get a 404."""

    def _build(pages: Optional[Dict[str, str]] = None) -> MagicMock:
        pages = pages or {}
        session = MagicMock()

        def _get(url, **kwargs):
            if url in pages:
                return make_response(pages[url])
            return make_response("Not Found", status_code=404)

        session.get.side_effect = _get
        return session

    return _build


@pytest.fixture
def make_fetcher(fake_session):
    """Fetcher wired to a fake session; retries never sleep."""

    def _build(pages: Optional[Dict[str, str]] = None, max_retries: int = 0) -> Fetcher:
        return Fetcher(
            FetcherConfig(max_retries=max_retries),
            session=fake_session(pages),
            sleep=lambda seconds: None,
        )

    return _build
