"""
Disabled-Set Tracker and the parent enable/disable cascade.

When a project is disabled, every child is disabled with it. Children the
user had already disabled on their own are remembered, so re-enabling the
project does not enable them.
"""

import logging
from typing import Iterable, List, Set

from .errors import PerChildError
from .interfaces import JobBackend
from .naming import encode
from .registry import ChildRegistry


logger = logging.getLogger(__name__)


class DisabledSetTracker:
    """Names of children disabled independently of their parent."""

    def __init__(self, names: Iterable[str] = ()):
        self._names: Set[str] = set(names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)

    def is_empty(self) -> bool:
        return not self._names

    def names(self) -> List[str]:
        return sorted(self._names)

    def add(self, name: str) -> None:
        self._names.add(name)

    def discard(self, name: str) -> None:
        self._names.discard(name)

    def clear(self) -> None:
        self._names.clear()

    def migrate_names(self, existing: Iterable[str]) -> bool:
        """
        Rewrite tracked names to the encoded child names.

        Older projects tracked raw branch names. A tracked name that does
        not match a child but whose encoded form does is replaced by the
        encoded form; names matching neither are dropped.

        Returns:
            True if the tracked set changed
        """
        existing_names = set(existing)
        migrated: Set[str] = set()
        for name in self._names:
            if name in existing_names:
                migrated.add(name)
            elif encode(name) in existing_names:
                migrated.add(encode(name))
        changed = migrated != self._names
        self._names = migrated
        return changed


def apply_cascade(
    registry: ChildRegistry,
    backend: JobBackend,
    tracker: DisabledSetTracker,
    disable: bool,
) -> List[PerChildError]:
    """
    Propagate a parent enable/disable transition to every child.

    The caller holds the project lock and persists the result.

    Args:
        registry: Children of the project
        backend: Job backend used to enable/disable children
        tracker: Disabled-set of the project
        disable: True when the parent becomes disabled

    Returns:
        Per-child failures; a failing child does not stop the cascade
    """
    errors: List[PerChildError] = []
    children = registry.list()

    if disable:
        # Only capture when empty so repeated disables do not accumulate
        if tracker.is_empty():
            for child in children:
                if child.disabled:
                    tracker.add(child.encoded_name)

        for child in children:
            try:
                backend.set_enabled(child, False)
            except Exception as e:
                logger.error(f"Failed to disable {child.encoded_name}: {e}", exc_info=True)
                errors.append(PerChildError(child.encoded_name, "disable", str(e)))
    else:
        for child in children:
            if child.encoded_name in tracker:
                continue
            try:
                backend.set_enabled(child, True)
            except Exception as e:
                logger.error(f"Failed to enable {child.encoded_name}: {e}", exc_info=True)
                errors.append(PerChildError(child.encoded_name, "enable", str(e)))

        tracker.clear()

    return errors
