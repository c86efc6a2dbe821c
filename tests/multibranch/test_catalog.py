"""Tests for ProjectCatalog."""

import pytest

from multibranch.catalog import ProjectCatalog
from multibranch.errors import ProjectNotFoundError


@pytest.fixture
def catalog(settings, source, notifier):
    return ProjectCatalog(
        settings, source_factory=lambda config: source, notifier=notifier
    )


class TestProjectCatalog:
    """Test suite for ProjectCatalog."""

    def test_create_and_list(self, catalog):
        catalog.create("web", remote="https://example.com/web.git")
        catalog.create("api")

        assert catalog.names() == ["api", "web"]
        assert catalog.get("web").state.source.remote == "https://example.com/web.git"
        assert catalog.get("api").state.source is None

    def test_get_reuses_instance(self, catalog):
        catalog.create("web")
        assert catalog.get("web") is catalog.get("web")

    def test_get_loads_from_disk(self, catalog, settings):
        catalog.create("web")

        fresh = ProjectCatalog(settings)

        assert fresh.get("web").name == "web"

    def test_get_missing(self, catalog):
        with pytest.raises(ProjectNotFoundError):
            catalog.get("missing")

    @pytest.mark.parametrize("name", ["", ".", "..", "a/b", "has space"])
    def test_invalid_names(self, catalog, name):
        with pytest.raises(ValueError):
            catalog.create(name)

    def test_delete(self, catalog, settings):
        catalog.create("web")

        catalog.delete("web")

        assert catalog.names() == []
        assert not (settings.projects_dir / "web").exists()
        with pytest.raises(ProjectNotFoundError):
            catalog.get("web")

    def test_all_skips_unloadable_projects(self, catalog, settings):
        catalog.create("web")
        broken = settings.projects_dir / "broken"
        broken.mkdir()
        (broken / "config.json").write_text("{oops")

        assert [p.name for p in catalog.all()] == ["web"]
