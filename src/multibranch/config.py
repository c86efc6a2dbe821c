"""Configuration management for multi-branch projects."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigCorruptionError
from .storage import atomic_write_json, read_json

logger = logging.getLogger(__name__)


DEFAULT_SYNC_INTERVAL = 300  # 5 minutes in seconds
MINIMUM_SYNC_INTERVAL = 60
PROJECT_SCHEMA_VERSION = 2


class RetentionConfig(BaseModel):
    """How children whose branch disappeared are handled."""

    policy: Literal["immediate", "grace"] = Field(
        default="immediate",
        description="'immediate' deletes orphans in the same pass, 'grace' keeps them for a while",
    )
    max_missed_passes: Optional[int] = Field(
        default=3,
        description="Passes an orphan survives before deletion (grace policy only)",
    )
    max_age_seconds: Optional[float] = Field(
        default=None,
        description="Seconds an orphan survives before deletion (grace policy only)",
    )

    @field_validator("max_missed_passes")
    @classmethod
    def validate_missed_passes(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("max_missed_passes must not be negative")
        return v


class SyncSettings(BaseModel):
    """Global settings shared by every project."""

    projects_dir: Path = Field(
        default=Path.home() / ".multibranch" / "projects",
        description="Directory holding one sub-directory per project",
    )
    sync_interval: int = Field(
        default=DEFAULT_SYNC_INTERVAL,
        description="Seconds between scheduled sync passes",
    )
    fetch_timeout: float = Field(
        default=60.0, description="Upper bound in seconds for fetching branch heads"
    )
    lock_timeout: float = Field(
        default=30.0,
        description="Seconds a pass waits for the project lock before coalescing",
    )
    git_binary: str = Field(default="git", description="git executable")
    retention: RetentionConfig = Field(default_factory=RetentionConfig)

    @field_validator("projects_dir", mode="before")
    @classmethod
    def convert_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v
        raise ValueError(f"Expected str or Path, got {type(v)}")

    @field_validator("sync_interval")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < MINIMUM_SYNC_INTERVAL:
            raise ValueError(
                f"Sync interval must be at least {MINIMUM_SYNC_INTERVAL} seconds. "
                f"Got: {v} seconds."
            )
        return v


class SourceConfig(BaseModel):
    """Where the branches of a project come from."""

    kind: Literal["git"] = Field(default="git", description="Source type")
    remote: str = Field(description="Remote repository URL or path")
    source_id: Optional[str] = Field(default=None, description="Stable source id")


class ProjectState(BaseModel):
    """Persisted state of a multi-branch project (its config.json)."""

    schema_version: int = Field(default=PROJECT_SCHEMA_VERSION)
    disabled: bool = Field(default=False, description="Parent disabled flag")
    disabled_sub_projects: List[str] = Field(
        default_factory=list,
        description="Children disabled independently of the parent",
    )
    description: Optional[str] = Field(default=None)
    display_name: Optional[str] = Field(default=None)
    source: Optional[SourceConfig] = Field(default=None)
    suppress_trigger_new_branch_build: bool = Field(
        default=False, description="Do not build branches when they first appear"
    )
    sync_interval: Optional[int] = Field(
        default=None, description="Per-project override of the sync interval"
    )

    @field_validator("sync_interval")
    @classmethod
    def validate_interval(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < MINIMUM_SYNC_INTERVAL:
            raise ValueError(
                f"Sync interval must be at least {MINIMUM_SYNC_INTERVAL} seconds. "
                f"Got: {v} seconds."
            )
        return v


# Keys written by schema version 1
_LEGACY_KEYS = {
    "disabledSubProjects": "disabled_sub_projects",
    "suppressTriggerNewBranchBuild": "suppress_trigger_new_branch_build",
    "displayName": "display_name",
    "scmSource": "source",
}


def migrate_project_state(data: Dict[str, Any]) -> Dict[str, Any]:
    """Upgrade a raw project state mapping to the current schema."""
    version = data.get("schema_version", 1)
    if version >= PROJECT_SCHEMA_VERSION:
        return data

    migrated = dict(data)
    for old_key, new_key in _LEGACY_KEYS.items():
        if old_key in migrated:
            value = migrated.pop(old_key)
            migrated.setdefault(new_key, value)
    migrated["schema_version"] = PROJECT_SCHEMA_VERSION
    logger.info(f"Migrated project state from schema {version}")
    return migrated


def load_project_state(path: Path) -> ProjectState:
    """
    Load project state from disk, migrating older schemas.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigCorruptionError: If the file cannot be parsed or validated
    """
    data = migrate_project_state(read_json(path))
    try:
        return ProjectState(**data)
    except ValidationError as e:
        raise ConfigCorruptionError(path, str(e))


def save_project_state(path: Path, state: ProjectState) -> None:
    atomic_write_json(path, state.model_dump(mode="json"))


class SettingsManager:
    """Manages loading and saving of global settings."""

    DEFAULT_SETTINGS_PATH = Path.home() / ".multibranch" / "settings.json"

    def __init__(self, settings_path: Optional[Path] = None):
        self.settings_path = settings_path or self.DEFAULT_SETTINGS_PATH
        self._settings: Optional[SyncSettings] = None

    def load(self) -> SyncSettings:
        """Load settings from file, falling back to defaults when unreadable."""
        if not self.settings_path.exists():
            self._settings = SyncSettings()
            return self._settings

        try:
            with open(self.settings_path, "r") as f:
                data = json.load(f)
            self._settings = SyncSettings(**data)
        except (json.JSONDecodeError, OSError, ValidationError, TypeError) as e:
            logger.warning(
                f"Failed to load settings from {self.settings_path}, using defaults: {e}"
            )
            self._settings = SyncSettings()

        return self._settings

    def save(self, settings: Optional[SyncSettings] = None) -> None:
        if settings is None:
            settings = self._settings

        if settings is None:
            raise ValueError("No settings to save")

        atomic_write_json(self.settings_path, settings.model_dump(mode="json"))
        self._settings = settings
