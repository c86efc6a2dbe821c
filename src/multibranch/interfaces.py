"""
Collaborator interfaces consumed by the reconciliation engine.

The engine never talks to a source-control system or a job runner
directly; it is handed implementations of these interfaces.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Set

from .models import BranchHead, Child, JobConfig, SourceBinding

if TYPE_CHECKING:
    from .project import MultiBranchProject


logger = logging.getLogger(__name__)


class BranchSource(ABC):
    """Source of branch heads for one project."""

    @abstractmethod
    def fetch_heads(self) -> Set[BranchHead]:
        """
        Fetch the current branch heads.

        May block on network I/O. Must be idempotent.

        Raises:
            Exception: Any failure; the engine treats it as fatal for the pass
        """
        pass

    @abstractmethod
    def build_binding(self, head: BranchHead) -> SourceBinding:
        """Build the job-ready source configuration for one head."""
        pass


class JobBackend(ABC):
    """Job-execution system that owns the actual child jobs."""

    @abstractmethod
    def create_child(self, parent: "MultiBranchProject", encoded_name: str) -> Child:
        pass

    @abstractmethod
    def delete_child(self, child: Child) -> None:
        pass

    @abstractmethod
    def update_child_config(self, child: Child, config: JobConfig) -> None:
        pass

    @abstractmethod
    def set_enabled(self, child: Child, enabled: bool) -> None:
        pass

    @abstractmethod
    def schedule_build(self, child: Child, cause: str) -> None:
        pass

    @abstractmethod
    def load_children(self, parent: "MultiBranchProject") -> List[Child]:
        """Return the children that already exist for a parent."""
        pass


class JobKind(ABC):
    """
    Capability interface for one kind of job.

    Knows what a fresh template looks like and how a child configuration
    is derived from the template for one branch.
    """

    @abstractmethod
    def new_template_config(self) -> JobConfig:
        pass

    @abstractmethod
    def configure_from_template(
        self, child: Child, template: JobConfig, binding: SourceBinding
    ) -> JobConfig:
        pass


class ChangeNotifier(ABC):
    """Downstream systems interested in topology changes."""

    @abstractmethod
    def topology_changed(self, parent: "MultiBranchProject") -> None:
        pass


class LoggingNotifier(ChangeNotifier):
    """Notifier that only records the change in the log."""

    def topology_changed(self, parent: "MultiBranchProject") -> None:
        logger.info(f"Children of {parent.name} changed")
