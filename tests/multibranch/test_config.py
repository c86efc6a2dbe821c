"""
Tests for configuration models and persistence.

Covers global settings, project state validation, legacy key migration
and atomic JSON writes.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from multibranch.config import (
    MINIMUM_SYNC_INTERVAL,
    PROJECT_SCHEMA_VERSION,
    ProjectState,
    SettingsManager,
    SourceConfig,
    SyncSettings,
    load_project_state,
    migrate_project_state,
    save_project_state,
)
from multibranch.errors import ConfigCorruptionError
from multibranch.storage import atomic_write_json, read_json


class TestSyncSettings:
    """Test suite for SyncSettings."""

    def test_defaults(self):
        settings = SyncSettings()

        assert settings.sync_interval == 300
        assert settings.fetch_timeout == 60.0
        assert settings.retention.policy == "immediate"

    def test_interval_minimum(self):
        with pytest.raises(ValidationError):
            SyncSettings(sync_interval=MINIMUM_SYNC_INTERVAL - 1)

    def test_projects_dir_expands_user(self):
        settings = SyncSettings(projects_dir="~/projects")
        assert settings.projects_dir == Path.home() / "projects"

    def test_unknown_retention_policy_rejected(self):
        with pytest.raises(ValidationError):
            SyncSettings(retention={"policy": "forever"})


class TestSettingsManager:
    """Test suite for SettingsManager."""

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = SettingsManager(tmp_path / "settings.json").load()
        assert settings == SyncSettings()

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "settings.json"
        manager = SettingsManager(path)

        manager.save(SyncSettings(projects_dir=tmp_path / "p", sync_interval=120))
        loaded = SettingsManager(path).load()

        assert loaded.sync_interval == 120
        assert loaded.projects_dir == tmp_path / "p"

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{broken")

        assert SettingsManager(path).load() == SyncSettings()

    def test_save_without_settings_raises(self, tmp_path):
        with pytest.raises(ValueError):
            SettingsManager(tmp_path / "settings.json").save()


class TestProjectState:
    """Test suite for project state persistence."""

    def test_round_trip(self, tmp_path):
        path = tmp_path / "config.json"
        state = ProjectState(
            disabled=True,
            disabled_sub_projects=["feature"],
            source=SourceConfig(remote="https://example.com/r.git"),
            sync_interval=600,
        )

        save_project_state(path, state)

        assert load_project_state(path) == state

    def test_legacy_keys_are_migrated(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "disabled": True,
                    "disabledSubProjects": ["feature/x"],
                    "suppressTriggerNewBranchBuild": True,
                    "displayName": "Web",
                }
            )
        )

        state = load_project_state(path)

        assert state.schema_version == PROJECT_SCHEMA_VERSION
        assert state.disabled_sub_projects == ["feature/x"]
        assert state.suppress_trigger_new_branch_build is True
        assert state.display_name == "Web"

    def test_current_schema_is_not_migrated(self):
        data = {"schema_version": PROJECT_SCHEMA_VERSION, "disabledSubProjects": ["x"]}
        assert migrate_project_state(data) is data

    def test_invalid_state_raises_corruption_error(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"schema_version": 2, "sync_interval": 5}))

        with pytest.raises(ConfigCorruptionError):
            load_project_state(path)

    def test_missing_state_raises_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_project_state(tmp_path / "config.json")


class TestAtomicJson:
    """Test suite for atomic JSON persistence."""

    def test_write_leaves_no_temp_files(self, tmp_path):
        path = tmp_path / "nested" / "data.json"

        atomic_write_json(path, {"a": 1})

        assert read_json(path) == {"a": 1}
        assert [p.name for p in path.parent.iterdir()] == ["data.json"]

    def test_non_object_is_corruption(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text("[1, 2]")

        with pytest.raises(ConfigCorruptionError):
            read_json(path)
