"""
Multi-branch project: the parent of one child job per branch.

Owns the template, the child registry and the disabled-set, and wires
them to the reconciliation engine. One re-entrant lock per project
serializes sync passes, enable/disable cascades and registry mutations;
different projects never share a lock.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import ProjectState, SourceConfig, SyncSettings, load_project_state, save_project_state
from .disabled_set import DisabledSetTracker, apply_cascade
from .errors import ConfigCorruptionError, PerChildError, ProjectNotFoundError
from .git_source import GitBranchSource
from .interfaces import BranchSource, ChangeNotifier, JobBackend, JobKind, LoggingNotifier
from .job_kinds import FreeStyleJobKind
from .local_backend import LocalJobBackend
from .models import Child, JobConfig
from .naming import decode, encode
from .reconciler import ReconciliationEngine, SourceFactory
from .registry import ChildRegistry
from .report import SyncReport
from .retention import RetentionPolicy, build_retention_policy
from .storage import ProjectStore
from .template import TemplateStore


logger = logging.getLogger(__name__)


def default_source_factory(settings: SyncSettings) -> SourceFactory:
    """Source factory building git sources with the configured limits."""

    def factory(source: SourceConfig) -> BranchSource:
        return GitBranchSource(
            source, git_binary=settings.git_binary, timeout=settings.fetch_timeout
        )

    return factory


class MultiBranchProject:
    """
    A project that keeps one child job per branch of its source.

    Use ``create()`` for a new project and ``load()`` for an existing one.
    """

    def __init__(
        self,
        root: Path,
        settings: Optional[SyncSettings] = None,
        backend: Optional[JobBackend] = None,
        job_kind: Optional[JobKind] = None,
        source_factory: Optional[SourceFactory] = None,
        retention: Optional[RetentionPolicy] = None,
        notifier: Optional[ChangeNotifier] = None,
        backend_factory: Optional[Callable[[ProjectStore], JobBackend]] = None,
    ):
        self.store = ProjectStore(root)
        self.settings = settings or SyncSettings()
        self.lock = threading.RLock()

        self.job_kind = job_kind or FreeStyleJobKind()
        if backend is None:
            backend = (backend_factory or LocalJobBackend)(self.store)
        self.backend = backend

        self.state = ProjectState()
        self.disabled_set = DisabledSetTracker()
        self.template_store = TemplateStore(self.store, self.job_kind)
        self.registry = ChildRegistry(self.lock)
        self.load_errors: List[ConfigCorruptionError] = []

        self.engine = ReconciliationEngine(
            project=self,
            backend=self.backend,
            job_kind=self.job_kind,
            source_factory=source_factory or default_source_factory(self.settings),
            retention=retention or build_retention_policy(self.settings.retention),
            notifier=notifier or LoggingNotifier(),
            fetch_timeout=self.settings.fetch_timeout,
            lock_timeout=self.settings.lock_timeout,
        )

    @classmethod
    def create(
        cls,
        root: Path,
        source: Optional[SourceConfig] = None,
        **kwargs: Any,
    ) -> "MultiBranchProject":
        """
        Create a new project on disk with a default template.

        Raises:
            FileExistsError: If a project already exists at root
        """
        project = cls(root, **kwargs)
        if project.store.exists():
            raise FileExistsError(f"Project already exists: {project.store.root}")

        project.store.ensure_layout()
        project.state = ProjectState(source=source)
        project.save_state()
        project.template_store.load_or_create()
        logger.info(f"Created multi-branch project {project.name}")
        return project

    @classmethod
    def load(cls, root: Path, **kwargs: Any) -> "MultiBranchProject":
        """
        Load an existing project, its template and its children.

        Raises:
            ProjectNotFoundError: If no project exists at root
            ConfigCorruptionError: If the project state is unreadable
        """
        project = cls(root, **kwargs)
        try:
            project.state = load_project_state(project.store.config_file)
        except FileNotFoundError:
            raise ProjectNotFoundError(f"No project at {project.store.root}")

        project.store.ensure_layout()
        project.disabled_set = DisabledSetTracker(project.state.disabled_sub_projects)
        project.template_store.load_or_create()

        with project.lock:
            for child in project.backend.load_children(project):
                project.registry.put(child.encoded_name, child)
            project.load_errors = list(getattr(project.backend, "load_errors", []))
            project._run_load_migrations()
            project.enforce_child_states()

        logger.info(
            f"Loaded project {project.name} with {len(project.registry)} children"
        )
        return project

    def _run_load_migrations(self) -> None:
        # Children created before display names were recorded
        for child in self.registry.list():
            decoded = decode(child.encoded_name)
            if decoded != child.encoded_name and child.config.display_name is None:
                config = child.config.model_copy()
                config.display_name = decoded
                try:
                    self.backend.update_child_config(child, config)
                except Exception as e:
                    logger.warning(
                        f"Failed to update display name for {child.encoded_name}: {e}"
                    )

        if self.disabled_set.migrate_names(self.registry.names()):
            self.save_state()

    @property
    def name(self) -> str:
        return self.store.name

    @property
    def display_name(self) -> str:
        return self.state.display_name or self.name

    @property
    def disabled(self) -> bool:
        return self.state.disabled

    @property
    def template(self) -> JobConfig:
        return self.template_store.get()

    def children(self) -> List[Child]:
        return self.registry.list()

    def get_child(self, branch_or_name: str) -> Optional[Child]:
        """Look up a child by encoded name or by raw branch name."""
        return self.registry.get(branch_or_name) or self.registry.get(
            encode(branch_or_name)
        )

    def save_state(self) -> None:
        with self.lock:
            self.state.disabled_sub_projects = self.disabled_set.names()
            save_project_state(self.store.config_file, self.state)

    def sync_branches(self, force_enable: bool = False) -> SyncReport:
        """
        Run one reconciliation pass.

        Raises:
            ConcurrencyError: If another pass or cascade holds the lock too long
        """
        report = self.engine.run_pass(force_enable=force_enable)
        if report.deleted:
            self.save_state()
        return report

    def set_disabled(self, disabled: bool) -> List[PerChildError]:
        """
        Disable or enable the project and cascade to its children.

        Children disabled on their own before the project was disabled stay
        disabled when it is enabled again.

        Returns:
            Per-child failures of the cascade
        """
        with self.lock:
            if self.state.disabled == disabled:
                return []

            self.state.disabled = disabled
            errors = apply_cascade(self.registry, self.backend, self.disabled_set, disabled)
            self.save_state()

        logger.info(f"{'Disabled' if disabled else 'Enabled'} project {self.name}")
        return errors

    def disable(self) -> List[PerChildError]:
        return self.set_disabled(True)

    def enable(self) -> List[PerChildError]:
        return self.set_disabled(False)

    def enforce_child_state(self, encoded_name: str) -> bool:
        """
        Re-disable a child that was enabled while the project is disabled.

        Returns:
            True if the child had to be disabled
        """
        with self.lock:
            child = self.registry.get(encoded_name)
            if child is None or not self.disabled or child.disabled:
                return False
            try:
                self.backend.set_enabled(child, False)
            except Exception as e:
                logger.warning(f"Unable to keep {encoded_name} disabled: {e}")
                return False
            return True

    def enforce_child_states(self) -> None:
        for name in self.registry.names():
            self.enforce_child_state(name)

    def forget_child(self, encoded_name: str) -> None:
        """Drop bookkeeping for a child that no longer exists."""
        self.disabled_set.discard(encoded_name)

    def delete_child(self, branch_or_name: str) -> bool:
        """
        Delete one child on explicit user request, bypassing retention.

        Returns:
            True if a child was deleted
        """
        with self.lock:
            child = self.get_child(branch_or_name)
            if child is None:
                return False
            self.backend.delete_child(child)
            self.registry.remove(child.encoded_name)
            self.forget_child(child.encoded_name)
            self.save_state()
        logger.info(f"Deleted child {child.encoded_name} of {self.name}")
        return True

    def set_child_workspace(self, branch_or_name: str, workspace: Optional[str]) -> bool:
        """
        Give one child its own workspace, or None to follow the template again.

        Returns:
            True if the child exists
        """
        with self.lock:
            child = self.get_child(branch_or_name)
            if child is None:
                return False
            child.workspace_override = workspace or None
            config = child.config.model_copy()
            config.custom_workspace = child.workspace_override or self.template.custom_workspace
            self.backend.update_child_config(child, config)
        return True

    def update_template(self, submitted: Mapping[str, Any]) -> JobConfig:
        with self.lock:
            return self.template_store.update(submitted)

    def copy_from(self, other: "MultiBranchProject") -> None:
        """Copy another project's template into this one."""
        with self.lock:
            self.template_store.copy_from(other.template)

    def submit_configuration(self, form: Mapping[str, Any]) -> List[PerChildError]:
        """
        Apply a configuration submission to the project and its template.

        Recognized keys: description, display_name, disabled, source,
        suppress_trigger_new_branch_build, sync_interval, template.

        Returns:
            Per-child failures of an enable/disable cascade, if one ran
        """
        errors: List[PerChildError] = []
        with self.lock:
            if "description" in form:
                self.state.description = form["description"]
            if "display_name" in form:
                self.state.display_name = form["display_name"] or None
            if "source" in form:
                self.state.source = _source_from_form(form["source"])
            if "suppress_trigger_new_branch_build" in form:
                self.state.suppress_trigger_new_branch_build = bool(
                    form["suppress_trigger_new_branch_build"]
                )
            if "sync_interval" in form:
                # Re-validate so the minimum interval is enforced
                self.state = ProjectState(
                    **{**self.state.model_dump(), "sync_interval": form["sync_interval"]}
                )
            if "disabled" in form:
                errors = self.set_disabled(bool(form["disabled"]))
            if "template" in form:
                self.template_store.update(form["template"])
            self.save_state()

        try:
            self.engine.notifier.topology_changed(self)
        except Exception as e:
            logger.warning(f"Change notification for {self.name} failed: {e}")
        return errors

    def delete(self) -> None:
        """Delete the project, every child and all persisted state."""
        with self.lock:
            for child in self.registry.list():
                try:
                    self.backend.delete_child(child)
                except Exception as e:
                    logger.error(f"Failed to delete child {child.encoded_name}: {e}")
            self.registry.clear()
            self.disabled_set.clear()
            self.store.delete_all()
        logger.info(f"Deleted project {self.name}")

    def sync_interval(self) -> int:
        return self.state.sync_interval or self.settings.sync_interval

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "disabled": self.disabled,
            "source": self.state.source.remote if self.state.source else None,
            "children": len(self.registry),
            "disabled_children": self.disabled_set.names(),
            "load_errors": [str(e) for e in self.load_errors],
        }


def _source_from_form(value: Any) -> Optional[SourceConfig]:
    if value is None:
        return None
    if isinstance(value, SourceConfig):
        return value
    if isinstance(value, str):
        return SourceConfig(remote=value)
    return SourceConfig(**value)
