"""
Tests for TemplateStore - the never-built template of a project.

The template must never carry a source and must always be disabled, no
matter how it was created, loaded or edited.
"""

import json

import pytest
from pydantic import ValidationError

from multibranch.job_kinds import FreeStyleJobKind
from multibranch.models import JobConfig, SourceBinding
from multibranch.storage import ProjectStore
from multibranch.template import TemplateStore


@pytest.fixture
def store(tmp_path):
    project_store = ProjectStore(tmp_path / "web")
    project_store.ensure_layout()
    return project_store


@pytest.fixture
def template_store(store):
    return TemplateStore(store, FreeStyleJobKind())


class TestTemplateStore:
    """Test suite for TemplateStore."""

    def test_default_template_is_disabled_without_source(self, template_store, store):
        template = template_store.load_or_create()

        assert template.disabled is True
        assert template.scm is None
        assert store.template_file.exists()

    def test_loaded_template_with_source_is_healed(self, template_store, store):
        """A template edited on disk to have a source loses it on load."""
        bad = JobConfig(
            disabled=False,
            scm=SourceBinding(remote="https://example.com/r.git", branch="main"),
        )
        store.template_file.write_text(json.dumps(bad.model_dump(mode="json")))

        template = template_store.load_or_create()

        assert template.scm is None
        assert template.disabled is True
        on_disk = json.loads(store.template_file.read_text())
        assert on_disk["scm"] is None
        assert on_disk["disabled"] is True

    def test_corrupt_template_falls_back_to_defaults(self, template_store, store):
        store.template_file.write_text("{not json")

        template = template_store.load_or_create()

        assert template == FreeStyleJobKind().new_template_config()

    def test_update_ignores_parent_owned_fields(self, template_store):
        template_store.load_or_create()

        template = template_store.update(
            {
                "display_name": "Hijacked",
                "disabled": False,
                "scm": {"remote": "https://example.com/r.git", "branch": "main"},
                "builders": [{"kind": "shell", "command": "make test"}],
                "custom_workspace": "/ws/shared",
            }
        )

        assert template.display_name is None
        assert template.disabled is True
        assert template.scm is None
        assert template.builders[0].command == "make test"
        assert template.custom_workspace == "/ws/shared"

    def test_update_persists(self, template_store, store):
        template_store.update({"description": "Built per branch", "properties": {"jdk": "17"}})

        reloaded = TemplateStore(store, FreeStyleJobKind()).load_or_create()
        assert reloaded.properties == {"jdk": "17"}
        assert reloaded.description == "Built per branch"

    def test_update_rejects_invalid_configuration(self, template_store):
        template_store.load_or_create()

        with pytest.raises(ValidationError):
            template_store.update({"builders": "not a list"})

    def test_copy_from_is_deep(self, template_store):
        other = JobConfig(disabled=True, properties={"labels": ["linux"]})

        copied = template_store.copy_from(other)
        other.properties["labels"].append("windows")

        assert copied.properties == {"labels": ["linux"]}

    def test_enforce_invariants_reports_changes(self, template_store):
        template_store.load_or_create()
        assert template_store.enforce_invariants() is False

        template_store.get().disabled = False
        assert template_store.enforce_invariants() is True
        assert template_store.get().disabled is True
