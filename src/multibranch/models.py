"""Data model for multi-branch projects, their template and child jobs."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .naming import decode


@dataclass(frozen=True)
class BranchHead:
    """A branch reported by the source. Re-fetched every pass."""

    name: str
    revision: Optional[str] = None


class SourceBinding(BaseModel):
    """Job-ready source configuration for one branch."""

    kind: str = Field(default="git", description="Source type")
    remote: str = Field(description="Remote repository location")
    branch: str = Field(description="Raw branch name")
    revision: Optional[str] = Field(
        default=None, description="Revision the head pointed at when bound"
    )
    source_id: Optional[str] = Field(
        default=None, description="Identifier of the source that produced it"
    )


class BuildStep(BaseModel):
    """One build step of a job configuration."""

    kind: str = Field(default="shell", description="Step type")
    command: str = Field(default="", description="Command or script body")


class JobConfig(BaseModel):
    """
    Build configuration of a job.

    The template and every child share this shape. For the template,
    ``scm`` is always None and ``disabled`` is always True.
    """

    display_name: Optional[str] = Field(default=None, description="Display name")
    description: Optional[str] = Field(default=None, description="Description")
    disabled: bool = Field(default=False, description="Whether builds are blocked")
    scm: Optional[SourceBinding] = Field(
        default=None, description="Source binding (None means no source)"
    )
    builders: List[BuildStep] = Field(default_factory=list, description="Build steps")
    triggers: List[Dict[str, Any]] = Field(
        default_factory=list, description="Triggers applied to child jobs"
    )
    custom_workspace: Optional[str] = Field(
        default=None, description="Custom workspace directory"
    )
    build_discarder: Optional[Dict[str, Any]] = Field(
        default=None, description="Build retention settings"
    )
    properties: Dict[str, Any] = Field(
        default_factory=dict, description="Additional job properties"
    )


@dataclass
class Child:
    """A generated job bound to one live branch."""

    encoded_name: str
    config: JobConfig = field(default_factory=JobConfig)
    parent_name: Optional[str] = None
    orphaned_since: Optional[datetime] = None
    missed_passes: int = 0
    # Workspace set on this child itself; None follows the template
    workspace_override: Optional[str] = None

    @property
    def branch_name(self) -> str:
        return decode(self.encoded_name)

    @property
    def display_name(self) -> str:
        return self.config.display_name or self.branch_name

    @property
    def disabled(self) -> bool:
        return self.config.disabled

    @property
    def orphaned(self) -> bool:
        return self.orphaned_since is not None

    def mark_orphaned(self, now: datetime) -> None:
        if self.orphaned_since is None:
            self.orphaned_since = now
        self.missed_passes += 1

    def clear_orphaned(self) -> None:
        self.orphaned_since = None
        self.missed_passes = 0
