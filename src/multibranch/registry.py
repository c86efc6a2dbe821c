"""
Child Registry - ordered mapping from encoded branch name to child job.

All operations take the owning project's lock, the same lock a
reconciliation pass or enable/disable cascade holds while it runs, so
registry mutations never interleave with a pass of the same project.
"""

import logging
import threading
from collections import OrderedDict
from typing import Dict, Iterator, List, Optional

from .models import Child


logger = logging.getLogger(__name__)


class ChildRegistry:
    """Thread-safe, insertion-ordered registry of child jobs."""

    def __init__(self, lock: Optional[threading.RLock] = None):
        """
        Initialize the registry.

        Args:
            lock: Re-entrant lock shared with the owning project
        """
        self._lock = lock if lock is not None else threading.RLock()
        self._children: "OrderedDict[str, Child]" = OrderedDict()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def list(self) -> List[Child]:
        """Snapshot of all children in insertion order."""
        with self._lock:
            return list(self._children.values())

    def names(self) -> List[str]:
        with self._lock:
            return list(self._children.keys())

    def get(self, encoded_name: str) -> Optional[Child]:
        with self._lock:
            return self._children.get(encoded_name)

    def put(self, encoded_name: str, child: Child) -> None:
        """
        Register a child under its encoded name.

        Raises:
            ValueError: If the name does not match the child's own name
        """
        if child.encoded_name != encoded_name:
            raise ValueError(
                f"Child '{child.encoded_name}' cannot be registered as '{encoded_name}'"
            )
        with self._lock:
            self._children[encoded_name] = child
            logger.debug(f"Registered child: {encoded_name}")

    def remove(self, encoded_name: str) -> Optional[Child]:
        with self._lock:
            child = self._children.pop(encoded_name, None)
            if child is not None:
                logger.debug(f"Unregistered child: {encoded_name}")
            return child

    def clear(self) -> None:
        with self._lock:
            self._children.clear()

    def snapshot(self) -> Dict[str, Child]:
        with self._lock:
            return dict(self._children)

    def __contains__(self, encoded_name: object) -> bool:
        with self._lock:
            return encoded_name in self._children

    def __len__(self) -> int:
        with self._lock:
            return len(self._children)

    def __iter__(self) -> Iterator[Child]:
        return iter(self.list())
