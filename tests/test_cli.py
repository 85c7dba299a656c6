"""Integration tests for the shopfront CLI."""

import json
import subprocess
import sys
from pathlib import Path

import pytest

from shopfront.cli import create_parser, override_environment
from shopfront.config import load_settings


def run_shopfront(args: list[str], cwd: Path) -> subprocess.CompletedProcess:
    """Run shopfront CLI command."""
    return subprocess.run(
        [sys.executable, "-m", "shopfront.cli"] + args,
        cwd=cwd,
        capture_output=True,
        text=True,
    )


@pytest.fixture
def database(tmp_path) -> list[str]:
    return ["--database-url", f"sqlite+aiosqlite:///{tmp_path / 'data' / 'cli.db'}"]


class TestCLIIntegration:
    def test_init_db_creates_file(self, tmp_path, database):
        result = run_shopfront(database + ["init-db"], tmp_path)

        assert result.returncode == 0
        assert "Initialized database" in result.stdout
        assert (tmp_path / "data" / "cli.db").exists()

    def test_seed_admin(self, tmp_path, database):
        args = database + ["seed-admin", "--email", "root@example.com", "--password", "changeme"]

        result = run_shopfront(args, tmp_path)
        assert result.returncode == 0
        assert "Created admin root@example.com" in result.stdout

        # Second run leaves the existing account alone
        result = run_shopfront(args, tmp_path)
        assert result.returncode == 0
        assert "already exists" in result.stdout

    def test_seed_admin_requires_credentials(self, tmp_path, database):
        result = run_shopfront(database + ["seed-admin"], tmp_path)
        assert result.returncode == 1
        assert "required" in result.stderr

    def test_stats_json(self, tmp_path, database):
        run_shopfront(database + ["seed-admin", "--email", "root@example.com", "--password", "changeme"], tmp_path)

        result = run_shopfront(database + ["stats", "--json"], tmp_path)
        assert result.returncode == 0
        stats = json.loads(result.stdout)
        assert stats == {
            "total_orders": 0,
            "pending_orders": 0,
            "total_products": 0,
            "total_customers": 0,
            "total_revenue": "0.00",
        }

    def test_stats_text(self, tmp_path, database):
        result = run_shopfront(database + ["stats"], tmp_path)
        assert result.returncode == 0
        assert "Total orders: 0" in result.stdout

    def test_no_command_prints_help(self, tmp_path):
        result = run_shopfront([], tmp_path)
        assert result.returncode == 0
        assert "usage" in result.stdout.lower()

    def test_version(self, tmp_path):
        result = run_shopfront(["--version"], tmp_path)
        assert result.returncode == 0
        assert "shopfront 0.1.0" in result.stdout


class TestServeOverrides:
    def test_database_url_exported_for_reload(self, tmp_path, monkeypatch):
        url = f"sqlite+aiosqlite:///{tmp_path / 'reload.db'}"
        args = create_parser().parse_args(["--database-url", url, "serve", "--reload"])

        env = override_environment(args)
        assert env == {"SHOPFRONT_DATABASE_URL": url}

        for name, value in env.items():
            monkeypatch.setenv(name, value)
        assert load_settings().database_url == url

    def test_no_overrides(self):
        args = create_parser().parse_args(["serve"])
        assert override_environment(args) == {}
