"""Tests for the project registry and requirements-file resolution."""
import pytest
import yaml

from reqgraph.config import config
from reqgraph.errors import BackendUnavailable, NotFound
from reqgraph.store.registry import Registry, resolve_requirements_path


@pytest.fixture
def registry_path(tmp_path, monkeypatch):
    path = tmp_path / "registry.yaml"
    monkeypatch.setattr(config, "registry_path", path)
    monkeypatch.setattr(config, "requirements_path", tmp_path / "local" / "requirements.yaml")
    monkeypatch.setattr(config, "project", None)
    return path


class TestRegistry:
    """Test registering projects and the default."""

    def test_missing_file_is_empty(self, registry_path):
        registry = Registry.load()
        assert registry.projects == {}
        assert registry.default_project is None

    def test_register_and_reload(self, registry_path, tmp_path):
        registry = Registry()
        registry.register_project("billing", tmp_path / "billing.yaml", "Billing service")
        registry.register_project("auth", tmp_path / "auth.db")
        registry.set_default_project("auth")
        registry.save()

        loaded = Registry.load()

        assert loaded == registry
        assert loaded.list_projects() == ["auth", "billing"]
        assert loaded.get_project("billing").description == "Billing service"
        assert yaml.safe_load(registry_path.read_text(encoding="utf-8"))["default_project"] == "auth"
        assert not list(tmp_path.glob(".registry.yaml.*"))

    def test_register_replaces_entry(self):
        registry = Registry()
        registry.register_project("billing", "/old/requirements.yaml")
        registry.register_project("billing", "/new/requirements.yaml")
        assert registry.get_project("billing").path == "/new/requirements.yaml"

    def test_unknown_project(self):
        registry = Registry()
        with pytest.raises(NotFound) as exc_info:
            registry.get_project("missing")
        assert exc_info.value.key == "missing"
        with pytest.raises(NotFound):
            registry.set_default_project("missing")

    def test_unregister_clears_default(self):
        registry = Registry()
        registry.register_project("billing", "/srv/billing.yaml")
        registry.set_default_project("billing")

        registry.unregister_project("billing")

        assert registry.default_project is None
        with pytest.raises(NotFound):
            registry.unregister_project("billing")

    def test_corrupt_file(self, registry_path):
        registry_path.write_text("projects: [unclosed\n", encoding="utf-8")
        with pytest.raises(BackendUnavailable):
            Registry.load()

    def test_default_path(self):
        registry = Registry()
        assert registry.default_path() is None

        registry.register_project("billing", "/srv/billing.yaml")
        assert str(registry.default_path()) == "/srv/billing.yaml"

        registry.register_project("auth", "/srv/auth.yaml")
        assert registry.default_path() is None
        registry.set_default_project("auth")
        assert str(registry.default_path()) == "/srv/auth.yaml"


class TestResolve:
    """Test which requirements file a command opens."""

    @pytest.fixture
    def registered(self, registry_path, tmp_path):
        registry = Registry()
        registry.register_project("billing", tmp_path / "billing.yaml")
        registry.register_project("auth", tmp_path / "auth.db")
        registry.save()
        return registry

    def test_explicit_path_wins(self, registered, tmp_path):
        assert resolve_requirements_path(tmp_path / "x.yaml", project="billing") == tmp_path / "x.yaml"

    def test_named_project(self, registered, tmp_path, monkeypatch):
        assert resolve_requirements_path(project="auth") == tmp_path / "auth.db"

        monkeypatch.setattr(config, "project", "billing")
        assert resolve_requirements_path() == tmp_path / "billing.yaml"

    def test_unknown_named_project(self, registered):
        with pytest.raises(NotFound):
            resolve_requirements_path(project="missing")

    def test_local_file_before_registry_default(self, registered, tmp_path):
        registered.set_default_project("billing")
        registered.save()
        assert resolve_requirements_path() == tmp_path / "billing.yaml"

        config.requirements_path.parent.mkdir()
        config.requirements_path.write_text("", encoding="utf-8")
        assert resolve_requirements_path() == config.requirements_path

    def test_falls_back_to_configured_path(self, registered):
        assert resolve_requirements_path() == config.requirements_path
