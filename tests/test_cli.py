"""Tests for the command-line interface."""

import pytest
from typer.testing import CliRunner

from projectledger import __version__
from projectledger.cli import app

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, temp_db):
    path = tmp_path / "config.yaml"
    path.write_text(f"database:\n  path: {temp_db}\nlogging:\n  level: ERROR\n")
    return path


class TestCli:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_mark_overdue_bad_date(self, config_file):
        result = runner.invoke(
            app, ["invoices", "mark-overdue", "--as-of", "31/01/2025", "-c", str(config_file)]
        )
        assert result.exit_code == 1
        assert "Invalid date" in result.output

    def test_regenerate_and_resolve(self, db, project, config_file):
        """A regenerated code resolves; the old one does not."""
        old = db.get_active_code_for_project(project.id).code

        result = runner.invoke(
            app, ["tracking", "regenerate", str(project.id), "-c", str(config_file)]
        )
        assert result.exit_code == 0
        new = db.get_active_code_for_project(project.id).code
        assert new in result.output

        resolved = runner.invoke(app, ["tracking", "resolve", new, "-c", str(config_file)])
        revoked = runner.invoke(app, ["tracking", "resolve", old, "-c", str(config_file)])
        assert resolved.exit_code == 0
        assert revoked.exit_code == 1

    def test_missing_project(self, db, config_file):
        result = runner.invoke(app, ["project", "show", "9999", "-c", str(config_file)])
        assert result.exit_code == 1
