"""
Project Catalog - finds, creates and deletes projects under the projects directory.

Each sub-directory of ``projects_dir`` holding a config.json is a project.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import SourceConfig, SyncSettings
from .errors import ProjectNotFoundError
from .naming import encode
from .project import MultiBranchProject
from .storage import CONFIG_FILE


logger = logging.getLogger(__name__)


class ProjectCatalog:
    """Access to all projects of one installation."""

    def __init__(self, settings: SyncSettings, **project_kwargs: Any):
        """
        Initialize the catalog.

        Args:
            settings: Global settings (projects_dir, timeouts, retention)
            **project_kwargs: Collaborators passed to every project
        """
        self.settings = settings
        self.projects_dir = Path(settings.projects_dir)
        self._project_kwargs = project_kwargs
        self._projects: Dict[str, MultiBranchProject] = {}
        self._lock = threading.Lock()

    def names(self) -> List[str]:
        if not self.projects_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.projects_dir.iterdir()
            if entry.is_dir() and (entry / CONFIG_FILE).exists()
        )

    def _root(self, name: str) -> Path:
        if not name or encode(name) != name or name in (".", ".."):
            raise ValueError(
                f"Invalid project name '{name}': use letters, digits and -_.!$&'()*+,=@"
            )
        return self.projects_dir / name

    def create(self, name: str, remote: Optional[str] = None) -> MultiBranchProject:
        """
        Create a project.

        Raises:
            ValueError: If the name is not usable as a directory name
            FileExistsError: If the project already exists
        """
        source = SourceConfig(remote=remote, source_id=name) if remote else None
        project = MultiBranchProject.create(
            self._root(name), source=source, settings=self.settings, **self._project_kwargs
        )
        with self._lock:
            self._projects[name] = project
        return project

    def get(self, name: str) -> MultiBranchProject:
        """
        Load a project, reusing the loaded instance (and its lock).

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        with self._lock:
            project = self._projects.get(name)
            if project is None:
                root = self._root(name)
                if not (root / CONFIG_FILE).exists():
                    raise ProjectNotFoundError(f"Project '{name}' not found")
                project = MultiBranchProject.load(
                    root, settings=self.settings, **self._project_kwargs
                )
                self._projects[name] = project
            return project

    def all(self) -> List[MultiBranchProject]:
        projects = []
        for name in self.names():
            try:
                projects.append(self.get(name))
            except Exception as e:
                logger.error(f"Failed to load project {name}: {e}")
        return projects

    def delete(self, name: str) -> None:
        project = self.get(name)
        project.delete()
        with self._lock:
            self._projects.pop(name, None)
