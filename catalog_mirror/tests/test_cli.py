"""Tests for the command-line interface."""

import json
from unittest.mock import patch

import pytest

from catalog_mirror.cli import main, parse_args
from catalog_mirror.config import BATCH_DELAY, MAX_LISTING_PAGES


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("catalog_mirror.cli.setup_logging"):
        yield


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.enrich is False
        assert args.limit == 0
        assert args.delay == BATCH_DELAY
        assert args.dump is None

    def test_enrich_options(self):
        args = parse_args(["--enrich", "--slug", "blastaq", "--with-specs", "--dry-run", "--limit", "5"])
        assert args.enrich and args.with_specs and args.dry_run
        assert args.slug == "blastaq"
        assert args.limit == 5

    def test_discover_options(self):
        args = parse_args(["--discover-products", "--max-pages", "3", "--limit", "2"])
        assert args.discover_products is True
        assert args.max_pages == 3
        assert args.limit == 2
        assert parse_args([]).max_pages == MAX_LISTING_PAGES


class TestMain:
    def test_stats(self, tmp_path, capsys):
        db_path = str(tmp_path / "cli.db")

        assert main(["--stats", "--db", db_path]) == 0

        out = capsys.readouterr().out
        assert "Products: 0" in out
        assert "Categories: 0" in out

    def test_extract_category(self, fixtures_dir, tmp_path, capsys):
        out_path = tmp_path / "category.json"

        code = main(["--extract-category", str(fixtures_dir / "category_mixed.html"), "--out", str(out_path)])

        assert code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["title"] == "General Materials"
        assert summary["contentBlockTypes"] == ["html", "resources", "html", "publications"]
        assert out_path.exists()

    def test_unknown_slug_fails(self, tmp_path, capsys):
        code = main(["--enrich", "--slug", "not-stored", "--db", str(tmp_path / "cli.db")])

        assert code == 1
        assert "https://www.abmgood.com/not-stored.html" in capsys.readouterr().err

    def test_nothing_to_do(self, tmp_path, capsys):
        assert main(["--db", str(tmp_path / "cli.db")]) == 0
        assert "Nothing to do" in capsys.readouterr().out

    def test_discover_products(self, tmp_path, capsys):
        db_path = str(tmp_path / "cli.db")
        summary = {"total": 1, "processed": 1, "created": 2, "existing": 0, "failed": 0}

        with patch("catalog_mirror.cli.discover_products", return_value=summary) as discover:
            code = main(["--discover-products", "--db", db_path, "--max-pages", "2", "--dry-run", "--delay", "0"])

        assert code == 0
        _, kwargs = discover.call_args
        assert discover.call_args.args[0] == db_path
        assert kwargs == {"limit": 0, "max_pages": 2, "dry_run": True, "delay": 0.0}
        assert "'created': 2" in capsys.readouterr().out
