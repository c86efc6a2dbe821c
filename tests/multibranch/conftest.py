"""
Shared fixtures for multi-branch project tests.

Provides an in-memory branch source and a file-backed backend that can be
told to fail for selected children.
"""

import threading
from typing import Iterable, Optional, Set, Tuple

import pytest

from multibranch.config import SourceConfig, SyncSettings
from multibranch.interfaces import BranchSource, ChangeNotifier
from multibranch.local_backend import LocalJobBackend
from multibranch.models import BranchHead, SourceBinding
from multibranch.project import MultiBranchProject

REMOTE = "https://example.com/repo.git"


def heads(*names: str) -> Set[BranchHead]:
    """Build branch heads with a deterministic revision per name."""
    return {BranchHead(name=name, revision=f"rev-{name}") for name in names}


class FakeBranchSource(BranchSource):
    """Branch source returning whatever heads the test sets."""

    def __init__(self, branch_heads: Iterable[BranchHead] = ()):
        self.heads = set(branch_heads)
        self.error: Optional[Exception] = None
        self.block: Optional[threading.Event] = None
        self.fetch_count = 0

    def fetch_heads(self) -> Set[BranchHead]:
        self.fetch_count += 1
        if self.block is not None:
            self.block.wait(5)
        if self.error is not None:
            raise self.error
        return set(self.heads)

    def build_binding(self, head: BranchHead) -> SourceBinding:
        return SourceBinding(
            remote=REMOTE, branch=head.name, revision=head.revision, source_id="test"
        )


class FlakyBackend(LocalJobBackend):
    """Local backend failing the (operation, child) pairs listed in ``failures``."""

    def __init__(self, store):
        super().__init__(store)
        self.failures: Set[Tuple[str, str]] = set()
        self.calls = []

    def _check(self, operation: str, name: str) -> None:
        self.calls.append((operation, name))
        if (operation, name) in self.failures:
            raise RuntimeError(f"simulated {operation} failure")

    def create_child(self, parent, encoded_name):
        self._check("create", encoded_name)
        return super().create_child(parent, encoded_name)

    def delete_child(self, child):
        self._check("delete", child.encoded_name)
        super().delete_child(child)

    def update_child_config(self, child, config):
        self._check("update", child.encoded_name)
        super().update_child_config(child, config)

    def set_enabled(self, child, enabled):
        self._check("enable" if enabled else "disable", child.encoded_name)
        super().set_enabled(child, enabled)

    def schedule_build(self, child, cause):
        self._check("build", child.encoded_name)
        super().schedule_build(child, cause)

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


class RecordingNotifier(ChangeNotifier):
    def __init__(self):
        self.notified = []

    def topology_changed(self, parent):
        self.notified.append(parent.name)


@pytest.fixture
def source():
    return FakeBranchSource()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def settings(tmp_path):
    return SyncSettings(projects_dir=tmp_path / "projects", fetch_timeout=2.0, lock_timeout=1.0)


@pytest.fixture
def project_kwargs(settings, source, notifier):
    """Collaborators shared by every project built in a test."""
    return {
        "settings": settings,
        "source_factory": lambda config: source,
        "notifier": notifier,
        "backend_factory": FlakyBackend,
    }


@pytest.fixture
def make_project(tmp_path, project_kwargs):
    """Factory creating a project with a git source on disk."""

    def _make(name: str = "web", with_source: bool = True, **overrides) -> MultiBranchProject:
        kwargs = {**project_kwargs, **overrides}
        source_config = SourceConfig(remote=REMOTE, source_id=name) if with_source else None
        return MultiBranchProject.create(
            tmp_path / "projects" / name, source=source_config, **kwargs
        )

    return _make


@pytest.fixture
def project(make_project):
    return make_project()
