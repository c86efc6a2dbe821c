"""
Local Job Backend - file-backed child jobs.

Stores each child's configuration under the project's branches/ directory
and records scheduled builds in a queue file. Builds are not executed
here; a build runner picks them up from the queue.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List

from pydantic import ValidationError

from .errors import ConfigCorruptionError
from .interfaces import JobBackend
from .models import Child, JobConfig
from .naming import decode
from .storage import ProjectStore, atomic_write_json, read_json

if TYPE_CHECKING:
    from .project import MultiBranchProject


logger = logging.getLogger(__name__)

BUILD_QUEUE_FILE = "build-queue.json"

# Names that would escape the branches/ directory
_RESERVED_NAMES = frozenset({"", ".", ".."})


class LocalJobBackend(JobBackend):
    """Job backend persisting children as JSON files of one project."""

    def __init__(self, store: ProjectStore):
        self._store = store
        self._queue_lock = threading.Lock()
        self.load_errors: List[ConfigCorruptionError] = []

    @property
    def queue_file(self):
        return self._store.root / BUILD_QUEUE_FILE

    def create_child(self, parent: "MultiBranchProject", encoded_name: str) -> Child:
        if encoded_name in _RESERVED_NAMES:
            raise ValueError(f"'{encoded_name}' is not a valid child name")

        config = JobConfig()
        branch_name = decode(encoded_name)
        if branch_name != encoded_name:
            config.display_name = branch_name

        child = Child(encoded_name=encoded_name, config=config, parent_name=parent.name)
        self._save(child)
        logger.info(f"Created child {encoded_name} in {parent.name}")
        return child

    def delete_child(self, child: Child) -> None:
        self._store.delete_branch(child.encoded_name)
        logger.info(f"Deleted child {child.encoded_name}")

    def update_child_config(self, child: Child, config: JobConfig) -> None:
        child.config = config
        self._save(child)

    def set_enabled(self, child: Child, enabled: bool) -> None:
        if child.config.disabled == (not enabled):
            return
        child.config.disabled = not enabled
        self._save(child)
        logger.debug(f"{'Enabled' if enabled else 'Disabled'} child {child.encoded_name}")

    def schedule_build(self, child: Child, cause: str) -> None:
        if child.disabled:
            raise RuntimeError(f"Cannot schedule build of disabled child {child.encoded_name}")

        with self._queue_lock:
            queue = self.read_queue()
            queue.append(
                {
                    "child": child.encoded_name,
                    "branch": child.branch_name,
                    "cause": cause,
                    "queued_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            atomic_write_json(self.queue_file, {"builds": queue})
        logger.info(f"Scheduled build for {child.encoded_name}: {cause}")

    def read_queue(self) -> List[Dict[str, Any]]:
        if not self.queue_file.exists():
            return []
        try:
            builds = read_json(self.queue_file).get("builds", [])
        except ConfigCorruptionError as e:
            logger.warning(f"Build queue unreadable, starting a new one: {e}")
            return []
        return list(builds) if isinstance(builds, list) else []

    def load_children(self, parent: "MultiBranchProject") -> List[Child]:
        """
        Load persisted children.

        Unreadable children are skipped and recorded in ``load_errors`` so
        they can be shown to the user; they are not silently replaced.
        """
        children: List[Child] = []
        self.load_errors = []

        for encoded_name in self._store.branch_names():
            path = self._store.branch_file(encoded_name)
            try:
                data = read_json(path)
                child = Child(
                    encoded_name=encoded_name,
                    config=JobConfig(**data.get("config", {})),
                    parent_name=parent.name,
                    orphaned_since=_parse_timestamp(data.get("orphaned_since")),
                    missed_passes=int(data.get("missed_passes", 0)),
                    workspace_override=data.get("workspace_override"),
                )
            except ConfigCorruptionError as e:
                logger.error(f"Failed to load child {encoded_name}: {e}")
                self.load_errors.append(e)
                continue
            except (ValidationError, TypeError, ValueError) as e:
                logger.error(f"Failed to load child {encoded_name}: {e}")
                self.load_errors.append(ConfigCorruptionError(path, str(e)))
                continue
            children.append(child)

        return children

    def _save(self, child: Child) -> None:
        atomic_write_json(
            self._store.branch_file(child.encoded_name),
            {
                "name": child.encoded_name,
                "config": child.config.model_dump(mode="json"),
                "orphaned_since": (
                    child.orphaned_since.isoformat() if child.orphaned_since else None
                ),
                "missed_passes": child.missed_passes,
                "workspace_override": child.workspace_override,
            },
        )


def _parse_timestamp(value: Any):
    if not value:
        return None
    return datetime.fromisoformat(value)
