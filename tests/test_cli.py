"""Tests for the command line interface."""
import json

import pytest
import yaml
from click.testing import CliRunner

from reqgraph.cli import cli
from reqgraph.config import config


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db(tmp_path):
    return tmp_path / "requirements.yaml"


@pytest.fixture
def invoke(runner, db):
    def _invoke(*args):
        return runner.invoke(cli, ["--db", str(db), *args])
    return _invoke


@pytest.fixture
def project(invoke):
    assert invoke("init", "--name", "demo").exit_code == 0
    assert invoke("add", "Login").exit_code == 0
    assert invoke("add", "Logout").exit_code == 0
    assert invoke("add", "Session service", "--type", "System").exit_code == 0
    return invoke


class TestRequirements:
    """Test requirement commands."""

    def test_init_and_add(self, invoke, db):
        result = invoke("init")
        assert result.exit_code == 0
        assert db.exists()

        result = invoke("add", "Login", "--priority", "high", "--tag", "auth")
        assert result.exit_code == 0
        assert "Added FR-001" in result.output

        result = invoke("show", "FR-001")
        assert "=== FR-001: Login ===" in result.output
        assert "Priority: High" in result.output

    def test_update_reports_changes(self, project):
        result = project("update", "FR-001", "--title", "Sign in", "--status", "approved")
        assert result.exit_code == 0
        assert "title: 'Login' -> 'Sign in'" in result.output
        assert "status: 'Draft' -> 'Approved'" in result.output

        result = project("update", "FR-001", "--title", "Sign in")
        assert "Nothing changed" in result.output

    def test_list_and_archive(self, project):
        assert project("archive", "FR-002").exit_code == 0

        listed = project("list").output
        assert "FR-001" in listed
        assert "FR-002" not in listed
        assert "FR-002" in project("list", "--all").output

    def test_delete(self, project):
        assert project("delete", "FR-002", "--yes").exit_code == 0
        result = project("show", "FR-002")
        assert result.exit_code == 1
        assert "Error [not_found]" in result.output

    def test_invalid_field_value(self, project):
        result = project("add", "Crash", "--type", "Bug", "--field", "severity=Huge")
        assert result.exit_code == 1
        assert "Error [invalid_field]" in result.output


class TestRelationships:
    """Test relationship commands."""

    def test_add_pairs_inverse(self, project):
        assert project("rel", "add", "FR-001", "parent", "FR-002").exit_code == 0

        result = project("show", "FR-002")
        assert "child -> FR-001 Login" in result.output

    def test_cycle_rejected(self, project, db):
        project("rel", "add", "FR-001", "parent", "FR-002")
        before = db.read_bytes()

        result = project("rel", "add", "FR-002", "parent", "FR-001")

        assert result.exit_code == 1
        assert "Error [cycle_detected]" in result.output
        assert db.read_bytes() == before

    def test_custom_definition(self, project):
        result = project("reldef", "add", "implements", "--inverse", "implemented-by", "--create-inverse")
        assert result.exit_code == 0
        assert "implemented-by" in project("reldef", "list").output

        assert project("rel", "add", "FR-001", "implements", "SR-003").exit_code == 0
        assert "implemented-by" in project("rel", "list", "SR-003").output

    def test_builtin_definition_protected(self, project):
        result = project("reldef", "remove", "parent")
        assert result.exit_code == 1
        assert "Error [definition_protected]" in result.output

    def test_audit(self, project):
        project("rel", "add", "FR-001", "parent", "FR-002")
        result = project("audit")
        assert result.exit_code == 0
        assert "All relationships valid" in result.output


class TestConfiguration:
    """Test identifier configuration commands."""

    def test_rederive_digits(self, project):
        result = project("config", "rederive", "--digits", "4", "--dry-run")
        assert "FR-001 -> FR-0001" in result.output
        assert "3 key(s) would change" in result.output
        assert "FR-001" in project("show", "FR-001").output

        result = project("config", "rederive", "--digits", "4")
        assert result.exit_code == 0
        assert "=== FR-0001: Login ===" in project("show", "FR-0001").output

    def test_incompatible_numbering(self, project):
        result = project("config", "set", "--numbering", "per_feature_type")
        assert result.exit_code == 1
        assert "Error [format_incompatible]" in result.output

    def test_per_prefix_for_new_records(self, project):
        assert project("config", "set", "--numbering", "per-prefix").exit_code == 0
        assert "Added FR-003" in project("add", "Reset password").output


class TestStorage:
    """Test migration, export and import commands."""

    def test_migrate_to_sqlite(self, runner, project, db, tmp_path):
        db_path = tmp_path / "requirements.db"

        result = runner.invoke(cli, ["migrate", str(db), str(db_path)])
        assert result.exit_code == 0
        assert "Migrated 3 requirement(s)" in result.output

        result = runner.invoke(cli, ["--db", str(db_path), "show", "SR-003"])
        assert "Session service" in result.output

    def test_export_json_and_mapping(self, project, tmp_path):
        json_path = tmp_path / "export.json"
        mapping_path = tmp_path / "mapping.yaml"

        assert project("export", "json", str(json_path)).exit_code == 0
        assert len(json.loads(json_path.read_text(encoding="utf-8"))["requirements"]) == 3

        result = project("export", "mapping", str(mapping_path))
        assert "Total mappings: 3" in result.output
        assert sorted(yaml.safe_load(mapping_path.read_text(encoding="utf-8"))["mappings"].values()) == [
            "FR-001", "FR-002", "SR-003",
        ]

    def test_import_into_new_file(self, runner, project, tmp_path):
        json_path = tmp_path / "export.json"
        project("export", "json", str(json_path))
        target = tmp_path / "copy.db"

        result = runner.invoke(cli, ["import", str(json_path), "--into", str(target)])

        assert result.exit_code == 0
        assert "Imported 3 requirement(s)" in result.output
        assert target.exists()

    def test_stats(self, project):
        result = project("stats")
        assert json.loads(result.output)["total"] == 3


class TestProjects:
    """Test the project registry commands and --project."""

    @pytest.fixture
    def registry(self, tmp_path, monkeypatch):
        path = tmp_path / "registry.yaml"
        monkeypatch.setattr(config, "registry_path", path)
        monkeypatch.setattr(config, "requirements_path", tmp_path / "absent" / "requirements.yaml")
        monkeypatch.setattr(config, "project", None)
        return path

    def test_add_and_open_by_name(self, runner, project, db, registry):
        result = runner.invoke(cli, ["project", "add", "demo", str(db), "-d", "Demo project"])
        assert result.exit_code == 0

        listed = runner.invoke(cli, ["project", "list"]).output
        assert "demo:" in listed
        assert "(Demo project)" in listed

        result = runner.invoke(cli, ["-p", "demo", "show", "FR-001"])
        assert "=== FR-001: Login ===" in result.output

    def test_default_project(self, runner, project, db, tmp_path, registry):
        runner.invoke(cli, ["project", "add", "demo", str(db)])
        runner.invoke(cli, ["project", "add", "other", str(tmp_path / "other.yaml")])

        assert runner.invoke(cli, ["project", "default", "demo"]).exit_code == 0
        assert "* demo:" in runner.invoke(cli, ["project", "list"]).output
        assert "Logout" in runner.invoke(cli, ["list"]).output

        assert runner.invoke(cli, ["project", "default", "--clear"]).exit_code == 0
        assert runner.invoke(cli, ["project", "default"]).output.strip() == "No default project"

    def test_unknown_project(self, runner, registry):
        result = runner.invoke(cli, ["-p", "missing", "list"])
        assert result.exit_code == 1
        assert "Error [not_found]" in result.output

        result = runner.invoke(cli, ["project", "default", "missing"])
        assert result.exit_code == 1

    def test_remove_project(self, runner, project, db, registry):
        runner.invoke(cli, ["project", "add", "demo", str(db)])
        assert runner.invoke(cli, ["project", "remove", "demo"]).exit_code == 0
        assert "No projects registered" in runner.invoke(cli, ["project", "list"]).output
        assert db.exists()
